import logging
import time
import uuid
from enum import Enum
from typing import List, Optional

logger = logging.getLogger("uvicorn.error")


class RelayState(str, Enum):
    RECEIVED = "received"
    TRANSLATED = "translated"
    DISPATCHED = "dispatched"
    RESPONSE_HEADERS_RECEIVED = "response_headers_received"
    STREAMING = "streaming"
    BUFFERING = "buffering"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS = {
    RelayState.RECEIVED: {RelayState.TRANSLATED},
    RelayState.TRANSLATED: {RelayState.DISPATCHED},
    RelayState.DISPATCHED: {RelayState.RESPONSE_HEADERS_RECEIVED},
    RelayState.RESPONSE_HEADERS_RECEIVED: {RelayState.STREAMING, RelayState.BUFFERING},
    RelayState.STREAMING: {RelayState.COMPLETED},
    RelayState.BUFFERING: {RelayState.COMPLETED},
    RelayState.COMPLETED: set(),
    RelayState.FAILED: set(),
}


class RelayContext:
    """Tracks one relay operation through its lifecycle."""

    def __init__(self, method: str = "", target: str = ""):
        self.relay_id = uuid.uuid4().hex[:12]
        self.method = method
        self.target = target
        self.state = RelayState.RECEIVED
        self.history: List[RelayState] = [RelayState.RECEIVED]
        self.started = time.monotonic()
        self.error: Optional[BaseException] = None

    @property
    def finished(self) -> bool:
        return self.state in (RelayState.COMPLETED, RelayState.FAILED)

    def advance(self, state: RelayState) -> None:
        if state == RelayState.FAILED:
            if self.state == RelayState.COMPLETED:
                raise RuntimeError(f"Relay {self.relay_id} already completed")
        elif state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal relay transition {self.state.value} -> {state.value}"
            )
        self.state = state
        self.history.append(state)
        logger.debug(f"[Relay {self.relay_id}] -> {state.value}")

    def fail(self, error: BaseException) -> None:
        # A relay may fail only once; later errors are reported by the first one.
        if self.state == RelayState.FAILED:
            return
        self.error = error
        self.advance(RelayState.FAILED)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000

    def complete(self) -> None:
        self.advance(RelayState.COMPLETED)
        logger.info(
            f"[Relay {self.relay_id}] {self.method} {self.target} completed in {self.elapsed_ms:.1f}ms"
        )
