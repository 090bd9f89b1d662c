"""
Declarative claim filter.

A filter is configured as a mapping of claim name to string. A value
written as ``/pattern/`` is a regular expression searched in the claim,
anything else must equal the claim once both are rendered as strings
(JWT claims are loosely typed, so ``5`` matches ``"5"``).
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Pattern

from shared.errors import ClaimMismatchError
from shared.logging import get_logger

logger = get_logger("proxy.claims.matcher")


@dataclass(frozen=True)
class ClaimFilterRule:
    """One filter rule: an exact value or a compiled pattern for a claim field."""

    field: str
    value: Optional[str] = None
    pattern: Optional[Pattern[str]] = None

    def accepts(self, entry: Any) -> bool:
        rendered = claim_to_string(entry)
        if self.pattern is not None:
            return self.pattern.search(rendered) is not None
        if self.value is not None:
            return rendered == self.value
        return True


def claim_to_string(value: Any) -> str:
    """Render a scalar claim the way it appears in the JSON payload."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def parse_filter_value(field: str, raw: str) -> ClaimFilterRule:
    """Build a rule from its configured string form.

    Raises ``ValueError`` when a ``/pattern/`` value does not compile.
    """
    if len(raw) >= 2 and raw.startswith("/") and raw.endswith("/"):
        try:
            return ClaimFilterRule(field=field, pattern=re.compile(raw[1:-1]))
        except re.error as exc:
            raise ValueError(f"Invalid regular expression {raw!r} for '{field}': {exc}") from exc
    return ClaimFilterRule(field=field, value=raw)


def build_filter_rules(config: Optional[Mapping[str, str]]) -> List[ClaimFilterRule]:
    """Build rules in configuration order."""
    return [parse_filter_value(field, raw) for field, raw in (config or {}).items()]


class ClaimMatcher:
    """Evaluates all filter rules against a claim set (AND across rules)."""

    def __init__(self, rules: List[ClaimFilterRule]):
        self.rules = list(rules)

    @classmethod
    def from_config(cls, config: Optional[Mapping[str, str]]) -> "ClaimMatcher":
        return cls(build_filter_rules(config))

    def matches(self, claims: Optional[Dict[str, Any]]) -> None:
        """Raise ``ClaimMismatchError`` at the first rule the claims fail."""
        if claims is None:
            self._fail("No JWT claim provided for validation")

        for rule in self.rules:
            entry = claims.get(rule.field)

            # A missing claim is a failure, never "no match"
            if entry is None or entry == "" or entry == [] or entry == {}:
                self._fail(f"No '{rule.field}' found in JWT claim")

            if isinstance(entry, list):
                if not any(rule.accepts(item) for item in entry):
                    self._fail(
                        f"Array {json.dumps(entry, separators=(',', ':'))} did not match '{rule.field}'"
                    )
            elif not rule.accepts(entry):
                self._fail(f"Entry '{claim_to_string(entry)}' for '{rule.field}' failed matcher")

    @staticmethod
    def _fail(message: str) -> None:
        logger.warning("Claim filter rejected token", reason=message)
        raise ClaimMismatchError(message)
