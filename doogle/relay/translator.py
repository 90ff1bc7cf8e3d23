import logging
import re
from typing import Optional, Tuple
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from doogle.relay.config import ProxyConfig
from doogle.relay.errors import TranslationError
from doogle.relay.models import HeaderList, InboundRequest, OutboundRequestSpec

logger = logging.getLogger("uvicorn.error")

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "upgrade",
}

# Headers added by the edge (load balancer, function front door) describing the
# original request. They must never reach the upstream.
EDGE_HOP_PREFIXES = ("x-forwarded-", "x-original-")

BRANDED_SEARCH_PATHS = {"/search", "/imghp"}

_INVALID_PERCENT = re.compile(r"%(?![0-9A-Fa-f]{2})")
_VALID_HOST = re.compile(
    r"^(?:[a-z0-9](?:[a-z0-9.-]*[a-z0-9])?|\[[0-9a-f:.]+\])(?::\d{1,5})?$", re.IGNORECASE
)
_VALID_SCHEMES = {"http", "https"}


def is_edge_hop_header(name: str) -> bool:
    return name.lower().startswith(EDGE_HOP_PREFIXES)


def _first_value(value: Optional[str]) -> Optional[str]:
    """Edge proxies may append to these headers; the first entry is the client-facing one."""
    if not value:
        return None
    first = value.split(",", 1)[0].strip()
    return first or None


def resolve_external_url(inbound: InboundRequest, config: ProxyConfig) -> Tuple[str, str, str]:
    """
    Work out the URL the client actually requested, as (scheme, host, target).

    Edge headers win over the configured public scheme/host and the raw target.
    """
    scheme = (_first_value(inbound.header("x-forwarded-proto")) or config.public_scheme).lower()
    host = (_first_value(inbound.header("x-forwarded-host")) or config.public_hostname).lower()
    target = inbound.header("x-original-url") or inbound.target or "/"

    if "://" in target:
        parts = urlsplit(target)
        target = parts.path or "/"
        if parts.query:
            target = f"{target}?{parts.query}"
    if not target.startswith("/"):
        target = "/" + target

    if scheme not in _VALID_SCHEMES:
        raise TranslationError(f"Unsupported forwarded protocol '{scheme}'")
    if not _VALID_HOST.match(host):
        raise TranslationError(f"Invalid request host '{host}'")
    if _INVALID_PERCENT.search(target):
        raise TranslationError(f"Invalid percent-encoding in '{target}'")

    return scheme, host, target


def map_to_upstream_host(external_host: str, config: ProxyConfig) -> str:
    """
    Swap the public hostname for the upstream one, keeping any subdomain.

    The bare public host (and its ``www``-style default subdomain) maps to the
    configured upstream hostname; ``images.doogle.test`` becomes
    ``images.<base domain>``. Hosts that are not on the public domain map to the
    configured upstream host.
    """
    host = external_host.lower()
    public = config.public_hostname.lower()
    if host.endswith("." + public):
        subdomain = host[: -len(public) - 1]
        if subdomain != config.upstream_default_subdomain:
            return f"{subdomain}.{config.base_domain}"
    return config.upstream_hostname


def apply_branded_search(target: str, config: ProxyConfig) -> Tuple[str, bool]:
    """Force the branded image query on search paths when a search term is configured."""
    if not config.branded_search_term:
        return target, False
    path = target.split("?", 1)[0]
    if path.lower() not in BRANDED_SEARCH_PATHS:
        return target, False
    query = urlencode({"q": config.branded_search_term, "tbm": "isch"})
    return f"{path}?{query}", True


def rewrite_public_reference(value: str, config: ProxyConfig) -> str:
    """
    Repoint an ``origin``/``referer`` URL from the public host to the upstream host.

    Only URLs on the public domain are touched; anything else, including values
    that do not parse, is returned as-is.
    """
    try:
        parts = urlsplit(value)
    except ValueError:
        return value
    if not parts.netloc:
        return value
    host = parts.netloc.lower()
    public = config.public_hostname.lower()
    if host != public and not host.endswith("." + public):
        return value

    netloc = map_to_upstream_host(host, config)
    if config.upstream_port:
        netloc = f"{netloc}:{config.upstream_port}"
    return urlunsplit((config.upstream_scheme, netloc, parts.path, parts.query, parts.fragment))


def prepare_headers(inbound: InboundRequest, host_header: str, config: ProxyConfig) -> HeaderList:
    """
    Copy inbound headers for the upstream request.

    Edge-hop and hop-by-hop headers are dropped, ``host`` is pinned to the
    upstream and ``accept-encoding`` is forced to identity so bodies arrive
    uncompressed for rewriting.
    """
    headers: HeaderList = []
    for name, value in inbound.headers:
        name_lower = name.lower()
        if name_lower in HOP_BY_HOP_HEADERS or is_edge_hop_header(name_lower):
            continue
        if name_lower in ("host", "accept-encoding"):
            continue
        if name_lower in ("origin", "referer"):
            value = rewrite_public_reference(value, config)
        headers.append((name_lower, value))

    headers.append(("host", host_header))
    headers.append(("accept-encoding", "identity"))
    return headers


def translate_request(inbound: InboundRequest, config: ProxyConfig) -> OutboundRequestSpec:
    """Build the upstream request for an inbound client request."""
    _scheme, external_host, target = resolve_external_url(inbound, config)
    upstream_host = map_to_upstream_host(external_host, config)
    target, branded = apply_branded_search(target, config)
    host_header = f"{upstream_host}:{config.upstream_port}" if config.upstream_port else upstream_host

    spec = OutboundRequestSpec(
        method=inbound.method.upper(),
        scheme=config.upstream_scheme,
        hostname=upstream_host,
        port=config.upstream_port,
        target=target,
        headers=prepare_headers(inbound, host_header, config),
        branded_search=branded,
    )

    try:
        httpx.URL(spec.url)
    except httpx.InvalidURL as e:
        raise TranslationError(f"Cannot build upstream URL '{spec.url}': {e}") from e

    logger.debug(f"Translated {inbound.method} {inbound.target} -> {spec.url}")
    return spec
