import logging
from contextlib import contextmanager
from typing import Dict, Optional

from opentelemetry.trace import Tracer

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_relay(
    tracer: Tracer,
    operation: str,
    relay_id: str,
    start_message: str,
    extra_attrs: Optional[Dict] = None,
    end_on_exit: bool = True,
):
    """
    Context manager to create a span, set common relay attributes, and log a start message.

    With ``end_on_exit=False`` the span outlives the block and whoever finishes
    the relay must call ``span.end()``.
    """
    with tracer.start_as_current_span(operation, end_on_exit=end_on_exit) as span:
        span.set_attribute("relay.id", relay_id)
        if extra_attrs:
            for k, v in extra_attrs.items():
                span.set_attribute(k, v)
        logger.info(start_message)
        yield span
