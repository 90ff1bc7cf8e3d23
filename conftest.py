import httpx
import pytest

from doogle.relay.dispatcher import UpstreamDispatcher, build_client
from doogle.utils_tests.factories import make_config


@pytest.fixture
def proxy_config():
    """Production-mode config relaying doogle.test to www.google.com."""
    return make_config()


@pytest.fixture
def upstream_calls():
    return []


@pytest.fixture
def mock_dispatcher(proxy_config, upstream_calls):
    """
    Build a dispatcher whose upstream is ``handler``.

    Every request the upstream sees is appended to ``upstream_calls``.
    """

    def _create(handler, config=None):
        def recording_handler(request: httpx.Request):
            upstream_calls.append(request)
            return handler(request)

        client = build_client(config or proxy_config, httpx.MockTransport(recording_handler))
        return UpstreamDispatcher(client)

    return _create
