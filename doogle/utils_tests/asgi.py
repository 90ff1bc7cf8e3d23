import asyncio
from typing import List, Optional

from starlette.responses import Response


class SentResponse:
    """What a client would have received from an ASGI response."""

    def __init__(self, messages: List[dict]):
        self.messages = messages

    @property
    def start(self) -> dict:
        return self.messages[0]

    @property
    def status_code(self) -> int:
        return self.start["status"]

    @property
    def headers(self) -> List[tuple]:
        return [(k.decode("latin-1"), v.decode("latin-1")) for k, v in self.start["headers"]]

    def header(self, name: str) -> Optional[str]:
        for key, value in self.headers:
            if key == name:
                return value
        return None

    def header_values(self, name: str) -> List[str]:
        return [value for key, value in self.headers if key == name]

    @property
    def body_chunks(self) -> List[bytes]:
        return [m.get("body", b"") for m in self.messages[1:] if m.get("body")]

    @property
    def body(self) -> bytes:
        return b"".join(self.body_chunks)

    @property
    def ended(self) -> bool:
        last = self.messages[-1]
        return last["type"] == "http.response.body" and not last.get("more_body", False)


def http_scope(method: str = "GET", path: str = "/") -> dict:
    return {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.4"},
        "http_version": "1.1",
        "method": method,
        "path": path,
        "raw_path": path.encode("latin-1"),
        "query_string": b"",
        "headers": [],
    }


async def _never_disconnect() -> dict:
    await asyncio.Event().wait()
    return {"type": "http.disconnect"}


async def send_response(response: Response, method: str = "GET") -> SentResponse:
    """Drive ``response`` as an ASGI server would and record every message."""
    messages: List[dict] = []

    async def send(message: dict) -> None:
        messages.append(message)

    await response(http_scope(method), _never_disconnect, send)
    return SentResponse(messages)
