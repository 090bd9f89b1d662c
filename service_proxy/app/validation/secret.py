"""
Shared-secret authentication.

A caller presenting the configured secret as its bearer token is let
through without any JWT processing. The claims it receives are synthesized
so that the rest of the pipeline (mapper, headers) treats it like any other
identity.
"""

import hmac
import time
from typing import Any, Callable, Dict, Optional

from shared.logging import get_logger

SECRET_SUBJECT = "shared-secret"
SECRET_EMAIL = f"{SECRET_SUBJECT}@jwt-proxy.local"
SECRET_TOKEN_LIFETIME = 3600


class SecretAuthenticator:
    """Constant-time comparison of a bearer token with a shared secret."""

    def __init__(
        self,
        secret: Optional[str],
        issuer: str,
        audience: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.secret = secret
        self.issuer = issuer
        self.audience = audience
        self._clock = clock
        self.logger = get_logger("proxy.secret_auth")

    @property
    def enabled(self) -> bool:
        return bool(self.secret)

    def try_authenticate(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        """Return synthesized claims when ``token`` equals the secret, else ``None``."""
        if not self.secret or not token:
            return None

        if not hmac.compare_digest(token.encode("utf-8"), self.secret.encode("utf-8")):
            return None

        now = int(self._clock())
        self.logger.info("Request authenticated with shared secret")
        return {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": SECRET_SUBJECT,
            "email": SECRET_EMAIL,
            "iat": now,
            "exp": now + SECRET_TOKEN_LIFETIME,
        }
