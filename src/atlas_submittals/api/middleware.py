import time
import logging
from uuid import uuid4
from fastapi import Request
from fastapi.responses import JSONResponse
from atlas_submittals.config import settings

logger = logging.getLogger("atlas_submittals.api")

BODY_METHODS = {"POST", "PUT", "PATCH"}


async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or uuid4().hex
    request.state.request_id = rid
    response = await call_next(request)
    response.headers["x-request-id"] = rid
    return response


async def enforce_body_size(request: Request, call_next):
    """Reject oversized spreadsheet uploads before the body is read."""
    if request.method not in BODY_METHODS:
        return await call_next(request)
    limit_mb = settings.security.max_upload_mb
    header_val = request.headers.get("content-length")
    try:
        too_large = bool(header_val) and int(header_val) > limit_mb * 1024 * 1024
    except ValueError:
        too_large = False
    if too_large:
        logger.warning("upload rejected: too large", extra={"path": request.url.path, "bytes": header_val})
        return JSONResponse(
            status_code=413,
            content={"error": "request_too_large", "detail": f"Max upload size is {limit_mb}MB"},
        )
    return await call_next(request)


async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        status = getattr(response, "status_code", 500)
        level = logging.WARNING if status >= 500 else logging.INFO
        logger.log(
            level,
            "request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "request_id": getattr(request.state, "request_id", None),
            },
        )
