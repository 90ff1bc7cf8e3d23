from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, List, Optional, Tuple

from starlette.requests import Request

HeaderList = List[Tuple[str, str]]


async def _empty_body() -> AsyncIterator[bytes]:
    return
    yield  # pragma: no cover


def header_value(headers: HeaderList, name: str) -> Optional[str]:
    """Return the first value for ``name`` (case-insensitive), or None."""
    name = name.lower()
    for key, value in headers:
        if key.lower() == name:
            return value
    return None


class BodyMode(str, Enum):
    STREAMING = "streaming"
    BUFFERED = "buffered"


@dataclass
class InboundRequest:
    """
    The client request as seen by the relay.

    ``target`` is the raw path and query with percent-encoding preserved.
    Header names are lowercased and may repeat.
    """

    method: str
    target: str
    headers: HeaderList = field(default_factory=list)
    body: AsyncIterator[bytes] = field(default_factory=_empty_body)

    def header(self, name: str) -> Optional[str]:
        return header_value(self.headers, name)

    @property
    def path(self) -> str:
        return self.target.split("?", 1)[0]

    @property
    def has_body(self) -> bool:
        length = self.header("content-length")
        if length is not None:
            return length.strip() not in ("", "0")
        return self.header("transfer-encoding") is not None

    @classmethod
    def from_starlette(cls, request: Request) -> "InboundRequest":
        raw_path = request.scope.get("raw_path")
        path = raw_path.decode("latin-1") if raw_path else request.url.path
        query = request.scope.get("query_string", b"").decode("latin-1")
        target = f"{path}?{query}" if query else path
        headers = [
            (name.decode("latin-1").lower(), value.decode("latin-1"))
            for name, value in request.headers.raw
        ]
        return cls(
            method=request.method,
            target=target,
            headers=headers,
            body=request.stream(),
        )


@dataclass
class OutboundRequestSpec:
    method: str
    scheme: str
    hostname: str
    target: str
    port: Optional[int] = None
    headers: HeaderList = field(default_factory=list)
    branded_search: bool = False

    @property
    def netloc(self) -> str:
        return f"{self.hostname}:{self.port}" if self.port else self.hostname

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.netloc}{self.target}"

    def header(self, name: str) -> Optional[str]:
        return header_value(self.headers, name)


@dataclass
class OutboundResponseSpec:
    status_code: int
    headers: HeaderList
    mode: BodyMode

    def header(self, name: str) -> Optional[str]:
        return header_value(self.headers, name)
