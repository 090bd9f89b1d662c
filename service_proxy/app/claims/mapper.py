"""
Projection of verified claims onto outbound header values.
"""

import json
from typing import Any, Dict, Mapping, Optional

from shared.errors import ConfigurationError

from .matcher import claim_to_string


class ClaimMapper:
    """Maps claim fields onto header names.

    Every destination header must carry the auth header prefix so that the
    prefix stripping done on inbound requests also covers it; this is
    checked here, at construction time.
    """

    def __init__(self, mapping: Optional[Mapping[str, str]], auth_header_prefix: str):
        self.auth_header_prefix = auth_header_prefix
        self.mapping: Dict[str, str] = dict(mapping or {})

        check = auth_header_prefix.lower()
        for source, header in self.mapping.items():
            if not header.lower().startswith(check):
                raise ConfigurationError(
                    f"Mapper value {header} must start with {auth_header_prefix}"
                )

    def project(self, claims: Optional[Dict[str, Any]]) -> Dict[str, str]:
        """Return ``{header: value}`` for every mapped claim present in ``claims``.

        Lists are comma joined and objects become compact JSON. Values are
        not escaped; claims come from the issuer and are trusted to be
        header safe.
        """
        if not claims:
            return {}

        headers: Dict[str, str] = {}
        for source, header in self.mapping.items():
            entry = claims.get(source)
            if entry is None:
                continue
            if isinstance(entry, list):
                headers[header] = ",".join(claim_to_string(item) for item in entry)
            elif isinstance(entry, dict):
                headers[header] = json.dumps(entry, separators=(",", ":"))
            else:
                headers[header] = claim_to_string(entry)
        return headers
