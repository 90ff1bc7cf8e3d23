import logging

from fastapi import APIRouter, Request

from doogle.relay.pipeline import relay_request

router = APIRouter()

logger = logging.getLogger("uvicorn.error")

PROXIED_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


@router.api_route("/{path:path}", methods=PROXIED_METHODS)
async def proxy_all(request: Request, path: str):
    """Catch-all route that relays every request to the upstream."""
    state = request.app.state
    return await relay_request(request, state.config, state.dispatcher, state.pre_checks)
