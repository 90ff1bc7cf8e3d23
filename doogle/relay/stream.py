import logging
from typing import AsyncIterator, List, Optional, Tuple

import anyio
import httpx
from opentelemetry.trace import Span
from starlette.responses import PlainTextResponse, Response, StreamingResponse
from starlette.types import Receive, Scope, Send

from doogle.relay.errors import RelayError, RelayPipelineError
from doogle.relay.models import HeaderList, OutboundResponseSpec
from doogle.relay.state import RelayContext, RelayState
from doogle.utils.exception_logging import format_exception_message

logger = logging.getLogger("uvicorn.error")


def encode_headers(headers: HeaderList) -> List[Tuple[bytes, bytes]]:
    raw = []
    for name, value in headers:
        try:
            encoded = value.encode("latin-1")
        except UnicodeEncodeError:
            encoded = value.encode("utf-8")
        raw.append((name.lower().encode("latin-1"), encoded))
    return raw


async def relay_chunks(upstream: httpx.Response, context: RelayContext) -> AsyncIterator[bytes]:
    """
    Yield upstream body chunks untouched and in arrival order.

    The next chunk is only read once the previous one has been sent, so a slow
    client throttles the upstream read.
    """
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        error = RelayError(f"Upstream body failed after headers were sent: {e!r}")
        context.fail(error)
        logger.error(f"[Relay {context.relay_id}] {error}")
        raise error from e


def finish_span(span: Optional[Span], context: RelayContext) -> None:
    """Record how the relay ended on its span and close it."""
    if span is None:
        return
    span.set_attribute("relay.state", context.state.value)
    span.set_attribute("relay.duration_ms", round(context.elapsed_ms, 1))
    span.end()


class RelayStreamingResponse(StreamingResponse):
    """Streams an upstream body to the client and owns the upstream response."""

    def __init__(
        self,
        upstream: httpx.Response,
        spec: OutboundResponseSpec,
        context: RelayContext,
        span: Optional[Span] = None,
    ):
        self.upstream = upstream
        self.context = context
        self.span = span
        super().__init__(relay_chunks(upstream, context), status_code=spec.status_code)
        self.raw_headers.extend(encode_headers(spec.headers))

    async def stream_response(self, send: Send) -> None:
        try:
            await super().stream_response(send)
        except OSError as e:
            self.context.fail(RelayError(f"Client write failed: {e!r}"))
            raise
        # The final empty body message has been sent at this point.
        self.context.complete()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            if not self.context.finished:
                self.context.fail(RelayError("Client disconnected before the response finished"))
                logger.info(
                    f"[Relay {self.context.relay_id}] client went away, aborting upstream request"
                )
            with anyio.CancelScope(shield=True):
                await self.upstream.aclose()
            finish_span(self.span, self.context)


class RelayBufferedResponse(Response):
    """Sends a fully materialized (rewritten) body in a single message."""

    def __init__(
        self,
        body: bytes,
        spec: OutboundResponseSpec,
        context: RelayContext,
        span: Optional[Span] = None,
    ):
        self.context = context
        self.span = span
        super().__init__(content=body, status_code=spec.status_code)
        self.raw_headers.extend(encode_headers(spec.headers))

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except OSError as e:
            self.context.fail(RelayError(f"Client write failed: {e!r}"))
            raise
        else:
            self.context.complete()
        finally:
            finish_span(self.span, self.context)


async def read_body(upstream: httpx.Response) -> bytes:
    """Collect the whole (decoded) upstream body."""
    chunks = []
    async for chunk in upstream.aiter_bytes():
        chunks.append(chunk)
    return b"".join(chunks)


def build_streaming_response(
    upstream: httpx.Response,
    spec: OutboundResponseSpec,
    context: RelayContext,
    span: Optional[Span] = None,
) -> RelayStreamingResponse:
    context.advance(RelayState.STREAMING)
    return RelayStreamingResponse(upstream, spec, context, span)


def build_buffered_response(
    body: bytes,
    spec: OutboundResponseSpec,
    context: RelayContext,
    span: Optional[Span] = None,
) -> RelayBufferedResponse:
    return RelayBufferedResponse(body, spec, context, span)


def build_error_response(error: BaseException, context: RelayContext) -> PlainTextResponse:
    """500 with a short diagnostic; the client connection is closed afterwards."""
    kind = error.kind if isinstance(error, RelayPipelineError) else type(error).__name__
    message = format_exception_message(error)
    return PlainTextResponse(
        f"{kind}: {message}\nrelay-id: {context.relay_id}\n",
        status_code=500,
        headers={"connection": "close"},
    )
