from typing import Iterable, List, Optional, Tuple

import httpx

from doogle.relay.config import ProxyConfig
from doogle.relay.models import InboundRequest

PUBLIC_HOST = "doogle.test"
UPSTREAM_HOST = "www.google.com"


def make_config(**overrides) -> ProxyConfig:
    values = dict(
        public_hostname=PUBLIC_HOST,
        public_scheme="https",
        upstream_hostname=UPSTREAM_HOST,
        brand_token="Doogle",
    )
    values.update(overrides)
    return ProxyConfig(**values)


def make_inbound(
    method: str = "GET",
    target: str = "/",
    headers: Optional[List[Tuple[str, str]]] = None,
    body: Iterable[bytes] = (),
) -> InboundRequest:
    chunks = list(body)

    async def stream():
        for chunk in chunks:
            yield chunk

    return InboundRequest(
        method=method,
        target=target,
        headers=list(headers or []),
        body=stream(),
    )


def streaming_response(status_code: int = 200, headers=None, chunks: Iterable[bytes] = ()) -> httpx.Response:
    """An upstream response whose body has not been read yet, like one off the wire."""
    parts = list(chunks)

    async def stream():
        for part in parts:
            yield part

    return httpx.Response(status_code, headers=headers, content=stream())
