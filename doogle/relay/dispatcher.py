import logging
from typing import AsyncIterator, Optional

import httpx

from doogle.relay.config import ProxyConfig
from doogle.relay.errors import TranslationError, UpstreamError
from doogle.relay.models import OutboundRequestSpec

logger = logging.getLogger("uvicorn.error")


def build_client(config: ProxyConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """
    Create the shared upstream client.

    Redirects are handled manually so their Location can be rewritten, and the
    pool is sized for many concurrent connections to the single upstream host.
    """
    if not config.verify_tls:
        logger.warning(
            f"UPSTREAM_VERIFY_TLS is disabled: certificates from {config.upstream_hostname} "
            "will not be validated"
        )
    return httpx.AsyncClient(
        verify=config.verify_tls,
        follow_redirects=False,
        timeout=httpx.Timeout(config.timeout),
        limits=httpx.Limits(
            max_connections=config.max_connections,
            max_keepalive_connections=config.max_keepalive,
        ),
        transport=transport,
    )


class UpstreamDispatcher:
    """Sends one outbound request per relay and hands back the streaming response."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def dispatch(
        self,
        spec: OutboundRequestSpec,
        body: Optional[AsyncIterator[bytes]] = None,
    ) -> httpx.Response:
        """
        Send ``spec`` upstream, streaming ``body`` as the request content.

        Returns once the upstream response headers are in; the body is left
        unread for the caller. There is exactly one attempt, no retries.
        """
        try:
            request = self.client.build_request(
                method=spec.method,
                url=spec.url,
                headers=spec.headers,
                content=body,
            )
        except httpx.InvalidURL as e:
            raise TranslationError(f"Invalid upstream URL '{spec.url}': {e}") from e

        logger.debug(f"Dispatching {spec.method} {spec.url}")
        try:
            return await self.client.send(request, stream=True)
        except httpx.TransportError as e:
            logger.error(f"Upstream request {spec.method} {spec.url} failed: {e!r}")
            raise UpstreamError(
                f"{type(e).__name__} while contacting {spec.netloc}: {e}", cause=e
            ) from e

    async def aclose(self) -> None:
        await self.client.aclose()
