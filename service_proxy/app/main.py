"""
JWT proxy sidecar service.

Every request outside the service endpoints is authenticated, rewritten by
the request pipeline and relayed to the configured upstream.
"""

from typing import Dict, Optional

from fastapi import Request

from shared.base_service import BaseService

from .claims import ClaimMapper, ClaimMatcher
from .config import ProxySettings, load_settings
from .forwarder import Forwarder
from .jwks import KeyResolver
from .pipeline import ProxyRequest, RequestPipeline
from .validation import IssuerConfig, SecretAuthenticator, TokenValidator

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


class ProxyService(BaseService):
    """JWT proxy service implementation."""

    def __init__(
        self,
        settings: ProxySettings,
        *,
        key_resolver: Optional[KeyResolver] = None,
        forwarder: Optional[Forwarder] = None,
    ):
        super().__init__(settings.name, settings)
        jwt_config = settings.jwt

        self.key_resolver = key_resolver or KeyResolver(
            max_cache_age_ms=jwt_config.max_cache_age_ms,
            metrics=self.metrics,
        )
        self.token_validator = TokenValidator(
            IssuerConfig.from_jwt_config(jwt_config),
            self.key_resolver,
            ClaimMatcher.from_config(jwt_config.filter),
            ClaimMapper(jwt_config.mapper, jwt_config.auth_header_prefix),
        )
        self.secret_authenticator = SecretAuthenticator(
            jwt_config.secret,
            issuer=jwt_config.issuer,
            audience=jwt_config.audience,
        )
        self.pipeline = RequestPipeline(
            self.token_validator,
            jwt_config.auth_header_prefix,
            secret_authenticator=self.secret_authenticator,
            base_url_provider=settings.get_proxy_base_url,
            metrics=self.metrics,
        )
        self.forwarder = forwarder or Forwarder(
            settings.get_proxy_target(),
            timeout=settings.proxy.timeout,
            metrics=self.metrics,
        )

        self._setup_proxy_routes()

        self.app.state.proxy_service = self
        self.logger.info(
            "Proxy configured",
            issuer=jwt_config.issuer,
            upstream=self.forwarder.target.base_url,
            base_url=settings.get_proxy_base_url(),
            secret_enabled=self.secret_authenticator.enabled,
        )

    def _setup_proxy_routes(self):
        """Register the catch-all proxy route after the service endpoints."""

        @self.app.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
        async def proxy(request: Request, path: str):
            proxy_request = await self.pipeline.process(ProxyRequest.from_request(request))
            return await self.forwarder.forward(proxy_request)

    async def shutdown(self) -> None:
        await self.forwarder.close()
        await self.key_resolver.close()
        self.logger.info("Proxy server shut down")

    async def _check_dependencies(self) -> Dict[str, str]:
        return {"upstream": self.forwarder.target.base_url}


def create_app(settings: Optional[ProxySettings] = None):
    """Create FastAPI application."""
    service = ProxyService(settings or load_settings())
    return service.app


def main():
    """Run the proxy with settings from the config file and environment."""
    ProxyService(load_settings()).run()


if __name__ == "__main__":
    main()
