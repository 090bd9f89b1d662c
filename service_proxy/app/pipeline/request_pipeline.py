"""
Per-request authentication and rewrite pipeline.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Optional

import httpx
from starlette.requests import Request

from shared.errors import BadRequestError, TokenValidationError, UnauthorizedError
from shared.logging import get_logger, set_subject
from shared.metrics import MetricsCollector

from ..validation import SecretAuthenticator, TokenValidator


@dataclass
class ProxyRequest:
    """Transport independent view of a request on its way upstream."""

    method: str
    path: str
    query: str = ""
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: Optional[AsyncIterator[bytes]] = None
    claims: Dict[str, Any] = field(default_factory=dict)

    @property
    def url(self) -> str:
        """Path plus query string, as seen on the wire."""
        return f"{self.path}?{self.query}" if self.query else self.path

    @classmethod
    def from_request(cls, request: Request) -> "ProxyRequest":
        raw_path = request.scope.get("raw_path")
        path = raw_path.split(b"?", 1)[0].decode("latin-1") if raw_path else request.url.path
        has_body = "content-length" in request.headers or "transfer-encoding" in request.headers
        return cls(
            method=request.method,
            path=path,
            query=request.url.query,
            headers=httpx.Headers(request.headers.raw),
            body=request.stream() if has_body else None,
        )


def extract_bearer_token(authorization: Optional[str]) -> str:
    """Return the token of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        raise UnauthorizedError("Missing Authorization header")

    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise UnauthorizedError("Invalid Authorization header, expected 'Bearer <token>'")
    return token


def strip_base_url(path: str, query: str, base_url: str) -> str:
    """Remove ``base_url`` from the front of ``path``.

    One trailing slash of ``base_url`` is ignored and an empty remainder
    becomes ``/``. The prefix must end on a path segment boundary, so
    ``/api/candidatesX`` is outside ``/api/candidates`` even though it starts
    with it. A path outside the prefix raises ``BadRequestError``.
    """
    prefix = base_url[:-1] if base_url.endswith("/") else base_url
    remainder = path[len(prefix):] if path.startswith(prefix) else None

    # "/api/candidatesX" is not under "/api/candidates"
    if remainder is None or (remainder and not remainder.startswith("/")):
        url = f"{path}?{query}" if query else path
        raise BadRequestError(f"Request URL {url} does not match proxy base URL {base_url}")

    return remainder or "/"


class RequestPipeline:
    """Authenticates a request and rewrites it for the upstream service.

    Steps run in a fixed order: bearer extraction, shared secret, JWT
    validation, removal of inbound trust headers, claim headers, base URL
    rewrite. The caller forwards the returned request.
    """

    def __init__(
        self,
        token_validator: TokenValidator,
        auth_header_prefix: str,
        *,
        secret_authenticator: Optional[SecretAuthenticator] = None,
        base_url_provider: Optional[Callable[[], Optional[str]]] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.token_validator = token_validator
        self.auth_header_prefix = auth_header_prefix
        self.secret_authenticator = secret_authenticator
        self.base_url_provider = base_url_provider or (lambda: None)
        self.metrics = metrics
        self.logger = get_logger("proxy.pipeline")

    async def process(self, request: ProxyRequest) -> ProxyRequest:
        """Run every step on ``request`` and return it ready to forward."""
        token = extract_bearer_token(request.headers.get("authorization"))
        claims = await self.authenticate(token)
        request.claims = claims
        set_subject(str(claims.get("sub") or "") or None)

        self.remove_auth_headers(request.headers)
        self.apply_claim_headers(request.headers, claims)

        base_url = self.base_url_provider()
        if base_url:
            original = request.url
            request.path = strip_base_url(request.path, request.query, base_url)
            self.logger.debug("URL rewrite", original=original, rewritten=request.url)

        return request

    async def authenticate(self, token: str) -> Dict[str, Any]:
        """Try the shared secret, then the JWT validator."""
        if self.secret_authenticator is not None:
            claims = self.secret_authenticator.try_authenticate(token)
            if claims is not None:
                self._record_auth("secret", "success")
                return claims

        try:
            claims = await self.token_validator.validate_token(token)
        except TokenValidationError as exc:
            self._record_auth("jwt", "failure")
            raise UnauthorizedError(str(exc)) from exc

        self._record_auth("jwt", "success")
        return claims

    def remove_auth_headers(self, headers: httpx.Headers) -> None:
        """Drop every inbound header carrying the auth prefix."""
        prefix = self.auth_header_prefix.lower()
        for name in [n for n in headers.keys() if n.lower().startswith(prefix)]:
            del headers[name]
            self.logger.debug("Removed incoming header", header=name)

    def apply_claim_headers(self, headers: httpx.Headers, claims: Dict[str, Any]) -> None:
        mapped = self.token_validator.map_claims(claims)
        self.logger.info("Mapping JWT claims to headers", headers=sorted(mapped))
        for name, value in mapped.items():
            if value is None:
                self.logger.warning("Skipping undefined header", header=name)
                continue
            headers[name] = value

    def _record_auth(self, method: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_auth_attempt(method, outcome)
