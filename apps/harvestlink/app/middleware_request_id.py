import json
import logging
import time
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


logger = logging.getLogger("harvestlink.request")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, echo it back and log one JSON line per request."""

    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = req_id
        start = time.perf_counter()
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = req_id
        logger.info(json.dumps({
            "request_id": req_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": int((time.perf_counter() - start) * 1000),
        }))
        return response
