"""
Configuration for the JWT proxy.

Settings are loaded once at startup from an optional YAML/JSON file and
environment variables (``JWT_PROXY_`` prefix, ``__`` for nesting), then
checked by ``validate_jwt_config``. Nothing here is mutated afterwards.
"""

import os
import ssl
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from service_proxy.app.claims.matcher import parse_filter_value
from shared.config import BaseConfig, read_config_file
from shared.errors import ConfigurationError
from shared.logging import get_logger

logger = get_logger("proxy.config")

PROXY_BASE_URL_ENV = "PROXY_BASE_URL"
DEFAULT_AUTH_HEADER_PREFIX = "X-AUTH-"
DEFAULT_CLOCK_TOLERANCE = 30
DEFAULT_MAX_CACHE_AGE_MS = 24 * 3600 * 1000


class JwtConfig(BaseModel):
    """Token verification, claim filter and claim mapper settings."""

    issuer: str = Field(min_length=1)
    audience: Optional[str] = None
    clock_tolerance: int = Field(default=DEFAULT_CLOCK_TOLERANCE, ge=0)
    max_cache_age_ms: int = Field(default=DEFAULT_MAX_CACHE_AGE_MS, ge=0)
    filter: Dict[str, str] = Field(default_factory=dict)
    mapper: Dict[str, str] = Field(default_factory=dict)
    auth_header_prefix: str = DEFAULT_AUTH_HEADER_PREFIX
    secret: Optional[str] = None


class ProxyConfig(BaseModel):
    """Upstream target settings."""

    url: str
    cert_path: Optional[str] = None
    passphrase: Optional[str] = None
    proxy_base_url: Optional[str] = None
    timeout: float = Field(default=30.0, gt=0)


@dataclass(frozen=True)
class ProxyTarget:
    """Resolved upstream address."""

    scheme: str
    host: str
    port: int
    client_cert: Optional[str] = None
    passphrase: Optional[str] = None

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    def ssl_context(self) -> Optional[ssl.SSLContext]:
        """Build a client TLS context when a certificate bundle is configured."""
        if not self.client_cert:
            return None
        context = ssl.create_default_context()
        try:
            context.load_cert_chain(self.client_cert, password=self.passphrase or None)
        except (OSError, ssl.SSLError) as exc:
            raise ConfigurationError(
                f"Failed to read certificate file {self.client_cert}: {exc}"
            ) from exc
        return context


class ProxySettings(BaseConfig):
    """Top level settings for the proxy service."""

    jwt: JwtConfig
    proxy: ProxyConfig

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        # Environment wins over values read from the config file
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    def get_proxy_base_url(self) -> Optional[str]:
        """Return the base URL prefix, preferring a non-empty environment override."""
        override = os.getenv(PROXY_BASE_URL_ENV)
        if override:
            return override
        return self.proxy.proxy_base_url

    def get_proxy_target(self) -> ProxyTarget:
        """Resolve host, port and scheme of the upstream service."""
        parts = urlsplit(self.proxy.url)
        scheme = parts.scheme or "http"
        port = parts.port or (443 if scheme == "https" else 80)
        return ProxyTarget(
            scheme=scheme,
            host=parts.hostname or "",
            port=port,
            client_cert=self.proxy.cert_path,
            passphrase=self.proxy.passphrase,
        )


@dataclass(frozen=True)
class FieldViolation:
    """One invalid configuration field."""

    field: str
    message: str


@dataclass
class ConfigValidationResult:
    """Outcome of a configuration check."""

    violations: List[FieldViolation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    def add(self, field_name: str, message: str) -> None:
        self.violations.append(FieldViolation(field_name, message))

    def raise_for_violations(self) -> None:
        if self.violations:
            summary = "; ".join(f"{v.field}: {v.message}" for v in self.violations)
            raise ConfigurationError(f"Invalid configuration: {summary}", self.violations)


def validate_jwt_config(config: JwtConfig) -> ConfigValidationResult:
    """Check the cross-field rules of a ``JwtConfig``.

    Every mapper destination must start with ``auth_header_prefix``
    (case-insensitive), otherwise an inbound request could spoof a header
    that the prefix stripping would not remove. Regex filters must compile.
    """
    result = ConfigValidationResult()

    prefix = config.auth_header_prefix
    if not prefix:
        result.add("jwt.auth_header_prefix", "must not be empty")
    else:
        for source, header in config.mapper.items():
            if not header.lower().startswith(prefix.lower()):
                result.add(
                    f"jwt.mapper.{source}",
                    f"Mapper value {header} must start with {prefix}",
                )

    for claim_field, raw in config.filter.items():
        try:
            parse_filter_value(claim_field, raw)
        except ValueError as exc:
            result.add(f"jwt.filter.{claim_field}", str(exc))

    if config.secret is not None and not config.secret.strip():
        result.add("jwt.secret", "must not be blank when set")

    return result


def validate_proxy_config(config: ProxyConfig) -> ConfigValidationResult:
    """Check the upstream URL and base URL prefix."""
    result = ConfigValidationResult()
    parts = urlsplit(config.url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        result.add("proxy.url", f"{config.url} is not an absolute http(s) URL")
    if config.proxy_base_url and not config.proxy_base_url.startswith("/"):
        result.add("proxy.proxy_base_url", "must start with '/'")
    if config.cert_path and not os.path.isfile(config.cert_path):
        result.add("proxy.cert_path", f"Failed to read certificate file {config.cert_path}")
    return result


def load_settings(path: Optional[str] = None, **overrides: Any) -> ProxySettings:
    """Load, build and validate the proxy settings."""
    data = read_config_file(path)
    data.update(overrides)

    try:
        settings = ProxySettings(**data)
    except ValueError as exc:
        logger.error("Failed to create settings", error=str(exc))
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    result = validate_jwt_config(settings.jwt)
    result.violations.extend(validate_proxy_config(settings.proxy).violations)
    if not result.ok:
        logger.error(
            "Configuration validation failed",
            fields=[v.field for v in result.violations],
        )
    result.raise_for_violations()
    return settings
