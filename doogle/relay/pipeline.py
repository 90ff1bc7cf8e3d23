import logging
from typing import Awaitable, Callable, Optional, Sequence

import httpx
from opentelemetry import trace
from starlette.requests import Request
from starlette.responses import Response

from doogle.relay.config import ProxyConfig
from doogle.relay.dispatcher import UpstreamDispatcher
from doogle.relay.errors import RelayPipelineError, UpstreamError
from doogle.relay.models import BodyMode, InboundRequest, OutboundResponseSpec
from doogle.relay.state import RelayContext, RelayState
from doogle.relay.stream import (
    build_buffered_response,
    build_error_response,
    build_streaming_response,
    finish_span,
    read_body,
)
from doogle.relay.transformer import rewrite_html, select_body_mode, transform_headers
from doogle.relay.translator import translate_request
from doogle.utils import redact_headers
from doogle.utils.exception_logging import log_exception_with_details
from doogle.utils.traced_requests import traced_relay

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)

# A pre-check may answer the request itself (e.g. a static override) or return None.
PreCheck = Callable[[Request], Awaitable[Optional[Response]]]


def _fail(error: BaseException, context: RelayContext, span) -> Response:
    context.fail(error)
    span.set_attribute("relay.error", type(error).__name__)
    log_exception_with_details(logger, f"[Relay {context.relay_id}]", error)
    return build_error_response(error, context)


async def relay(
    inbound: InboundRequest,
    config: ProxyConfig,
    dispatcher: UpstreamDispatcher,
) -> Response:
    """
    Run one inbound request through translate -> dispatch -> transform -> relay.

    Any failure before the response starts becomes a 500. Streaming responses
    take ownership of the upstream response and close it when they finish.
    Successful responses also own the ``relay_request`` span and end it once
    the body has been sent.
    """
    context = RelayContext(inbound.method, inbound.target)
    with traced_relay(
        tracer,
        operation="relay_request",
        relay_id=context.relay_id,
        start_message=f"[Relay {context.relay_id}] {inbound.method} {inbound.target}",
        extra_attrs={"relay.method": inbound.method, "relay.target": inbound.target},
        end_on_exit=False,
    ) as span:
        upstream: Optional[httpx.Response] = None
        response_owns_span = False
        try:
            spec = translate_request(inbound, config)
            context.advance(RelayState.TRANSLATED)
            span.set_attribute("relay.target_url", spec.url)
            logger.debug(f"[Relay {context.relay_id}] Outbound headers: {redact_headers(spec.headers)}")

            context.advance(RelayState.DISPATCHED)
            upstream = await dispatcher.dispatch(spec, inbound.body if inbound.has_body else None)
            context.advance(RelayState.RESPONSE_HEADERS_RECEIVED)
            span.set_attribute("relay.status_code", upstream.status_code)

            mode = select_body_mode(upstream.headers.get("content-type"))
            if inbound.method.upper() == "HEAD":
                mode = BodyMode.STREAMING
            span.set_attribute("relay.body_mode", mode.value)

            response_spec = OutboundResponseSpec(
                status_code=upstream.status_code,
                headers=transform_headers(upstream.headers.multi_items(), inbound, config, mode),
                mode=mode,
            )

            if mode == BodyMode.STREAMING:
                response = build_streaming_response(upstream, response_spec, context, span)
                upstream = None
                response_owns_span = True
                return response

            context.advance(RelayState.BUFFERING)
            encoding = upstream.charset_encoding
            try:
                raw = await read_body(upstream)
            except httpx.HTTPError as e:
                raise UpstreamError(f"Reading upstream body failed: {e!r}", cause=e) from e
            body = rewrite_html(raw, config, encoding, spec.branded_search)
            logger.debug(
                f"[Relay {context.relay_id}] Rewrote HTML body ({len(raw)} -> {len(body)} bytes)"
            )
            response = build_buffered_response(body, response_spec, context, span)
            response_owns_span = True
            return response

        except RelayPipelineError as e:
            return _fail(e, context, span)
        except Exception as e:
            logger.error(f"[Relay {context.relay_id}] Unexpected relay failure")
            return _fail(e, context, span)
        finally:
            if upstream is not None:
                await upstream.aclose()
            if not response_owns_span:
                finish_span(span, context)


async def relay_request(
    request: Request,
    config: ProxyConfig,
    dispatcher: UpstreamDispatcher,
    pre_checks: Sequence[PreCheck] = (),
) -> Response:
    """Entry point for the HTTP surface: run pre-checks, then relay upstream."""
    for check in pre_checks:
        response = await check(request)
        if response is not None:
            return response
    return await relay(InboundRequest.from_starlette(request), config, dispatcher)
