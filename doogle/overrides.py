import logging
import os
from typing import Optional

from fastapi import HTTPException, Request
from fastapi.responses import FileResponse

logger = logging.getLogger("uvicorn.error")


class OverrideStore:
    """
    Serves local files in place of upstream responses.

    A file at ``<root>/<request path>`` short-circuits the relay. Directories and
    missing files fall through; paths escaping ``root`` are rejected with 403.
    """

    def __init__(self, root: str):
        self.root = os.path.realpath(root)

    def resolve(self, path: str) -> Optional[str]:
        candidate = os.path.realpath(os.path.join(self.root, path.lstrip("/")))
        if candidate != self.root and not candidate.startswith(self.root + os.sep):
            logger.warning(f"[Overrides] Rejected path outside override root: {path}")
            raise HTTPException(status_code=403, detail="Forbidden")
        if not os.path.isfile(candidate):
            return None
        return candidate

    async def __call__(self, request: Request) -> Optional[FileResponse]:
        override = self.resolve(request.url.path)
        if override is None:
            return None
        logger.info(f"[Overrides] Serving {request.url.path} from {override}")
        return FileResponse(override)
