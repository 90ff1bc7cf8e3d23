import codecs
import logging
from typing import Iterable, Optional, Tuple

from doogle.relay.config import ProxyConfig
from doogle.relay.domains import brand_pattern, replace_domain_references
from doogle.relay.errors import TransformError
from doogle.relay.models import BodyMode, HeaderList, InboundRequest

logger = logging.getLogger("uvicorn.error")

# Response headers owned by the connection between us and the client
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Recomputed or invalid once the body has been rewritten
BUFFERED_DROP_HEADERS = {"content-length", "content-encoding"}

CORS_HEADERS = {"access-control-allow-origin", "access-control-allow-credentials"}


def select_body_mode(content_type: Optional[str]) -> BodyMode:
    """HTML must be buffered for rewriting; everything else, including no content-type, streams."""
    if content_type and "html" in content_type.lower():
        return BodyMode.BUFFERED
    return BodyMode.STREAMING


def rewrite_location(location: str, config: ProxyConfig) -> str:
    """
    Rewrite a redirect target on the upstream domain family to the public host.

    The scheme of rewritten URLs becomes the configured public scheme and the
    subdomain is kept (``images.google.com`` -> ``images.<public>``). Relative
    and foreign locations are returned unchanged, and so is an already rewritten one.
    """
    if not location:
        return location
    return replace_domain_references(
        location,
        config.upstream_brand_token,
        config.public_scheme,
        config.public_hostname,
        config.upstream_default_subdomain,
    )


def transform_headers(
    upstream_headers: Iterable[Tuple[str, str]],
    inbound: InboundRequest,
    config: ProxyConfig,
    mode: BodyMode,
) -> HeaderList:
    """
    Prepare upstream response headers for the client.

    Headers are copied verbatim (repeated names included) except ``location``,
    which is rewritten, and hop-by-hop headers, which are dropped. CORS is always
    opened up to the requesting origin.
    """
    headers: HeaderList = []
    for name, value in upstream_headers:
        name_lower = name.lower()
        if name_lower in HOP_BY_HOP_HEADERS or name_lower in CORS_HEADERS:
            continue
        if mode == BodyMode.BUFFERED and name_lower in BUFFERED_DROP_HEADERS:
            continue
        if name_lower == "location":
            rewritten = rewrite_location(value, config)
            if rewritten != value:
                logger.debug(f"Rewrote location {value} -> {rewritten}")
            value = rewritten
        headers.append((name_lower, value))

    headers.append(("access-control-allow-origin", inbound.header("origin") or "*"))
    headers.append(("access-control-allow-credentials", "true"))
    return headers


def rewrite_html_text(text: str, config: ProxyConfig, branded_search: bool = False) -> str:
    # Domains first: the domain patterns contain the brand token itself.
    text = replace_domain_references(
        text,
        config.upstream_brand_token,
        config.public_scheme,
        config.public_hostname,
        config.upstream_default_subdomain,
    )
    text = brand_pattern(config.upstream_brand_token).sub(lambda _m: config.brand_token, text)
    if branded_search and config.branded_search_term:
        text = brand_pattern(config.branded_search_term).sub(lambda _m: config.brand_token, text)
    return text


def rewrite_html(
    body: bytes,
    config: ProxyConfig,
    encoding: Optional[str] = None,
    branded_search: bool = False,
) -> bytes:
    """
    Rewrite a complete HTML body.

    Raises TransformError when the body does not decode with its declared
    charset or the result cannot be encoded back.
    """
    encoding = encoding or "utf-8"
    try:
        codecs.lookup(encoding)
    except LookupError as e:
        raise TransformError(f"Unknown charset '{encoding}'") from e

    try:
        text = body.decode(encoding)
    except UnicodeDecodeError as e:
        raise TransformError(f"HTML body is not valid {encoding}: {e}") from e

    if config.rewrite_html:
        text = rewrite_html_text(text, config, branded_search)

    try:
        return text.encode(encoding)
    except UnicodeEncodeError as e:
        raise TransformError(f"Rewritten HTML cannot be encoded as {encoding}: {e}") from e
