from dataclasses import dataclass
from typing import Optional

from doogle import vars as settings

DEVELOPMENT = "development"
PRODUCTION = "production"


@dataclass(frozen=True)
class ProxyConfig:
    """
    Immutable per-process relay configuration.

    Built once at startup and shared by every request. ``public_scheme`` and
    ``public_hostname`` are the pair advertised to clients for the selected mode.

    ``upstream_hostname`` serves the bare public host. Public subdomains map onto
    ``upstream_base_domain`` (derived from the hostname without ``www.`` when unset),
    so ``images.<public>`` goes to ``images.google.com``, not ``images.www.google.com``.
    """

    public_hostname: str
    public_scheme: str
    upstream_hostname: str
    upstream_scheme: str = "https"
    upstream_base_domain: str = ""
    upstream_port: Optional[int] = None
    verify_tls: bool = True
    brand_token: str = "Doogle"
    upstream_brand_token: str = "google"
    branded_search_term: str = ""
    rewrite_html: bool = True
    timeout: Optional[float] = None
    max_connections: int = 200
    max_keepalive: int = 50
    mode: str = PRODUCTION

    @property
    def public_origin(self) -> str:
        return f"{self.public_scheme}://{self.public_hostname}"

    @property
    def base_domain(self) -> str:
        if self.upstream_base_domain:
            return self.upstream_base_domain.lower()
        hostname = self.upstream_hostname.lower()
        return hostname[len("www."):] if hostname.startswith("www.") else hostname

    @property
    def upstream_default_subdomain(self) -> str:
        """Subdomain of ``upstream_hostname`` under the base domain ("www" by default)."""
        hostname = self.upstream_hostname.lower()
        suffix = "." + self.base_domain
        return hostname[: -len(suffix)] if hostname.endswith(suffix) else ""

    @property
    def is_development(self) -> bool:
        return self.mode == DEVELOPMENT

    @classmethod
    def from_env(cls) -> "ProxyConfig":
        if settings.PROXY_MODE == DEVELOPMENT:
            public_scheme, public_hostname = "http", settings.DEV_PUBLIC_HOSTNAME
        elif settings.PROXY_MODE == PRODUCTION:
            public_scheme, public_hostname = settings.PUBLIC_SCHEME, settings.PUBLIC_HOSTNAME
        else:
            raise ValueError(
                f"PROXY_MODE must be '{DEVELOPMENT}' or '{PRODUCTION}', got '{settings.PROXY_MODE}'"
            )

        return cls(
            public_hostname=public_hostname,
            public_scheme=public_scheme,
            upstream_hostname=settings.UPSTREAM_HOSTNAME,
            upstream_scheme=settings.UPSTREAM_SCHEME,
            upstream_base_domain=settings.UPSTREAM_BASE_DOMAIN,
            upstream_port=settings.UPSTREAM_PORT,
            verify_tls=settings.UPSTREAM_VERIFY_TLS,
            brand_token=settings.BRAND_TOKEN,
            upstream_brand_token=settings.UPSTREAM_BRAND_TOKEN,
            branded_search_term=settings.BRANDED_SEARCH_TERM,
            rewrite_html=settings.REWRITE_HTML,
            timeout=settings.UPSTREAM_TIMEOUT,
            max_connections=settings.UPSTREAM_MAX_CONNECTIONS,
            max_keepalive=settings.UPSTREAM_MAX_KEEPALIVE,
            mode=settings.PROXY_MODE,
        )
