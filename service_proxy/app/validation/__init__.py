"""
Credential validation for the proxy.

- token_validator: JWT signature, issuer, audience, time and filter checks.
- secret: shared-secret bypass producing synthesized claims.
"""

from .secret import SecretAuthenticator
from .token_validator import IssuerConfig, TokenValidator

__all__ = ["IssuerConfig", "SecretAuthenticator", "TokenValidator"]
