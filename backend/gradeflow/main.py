"""FastAPI application entrypoint.

This module builds the application: logging, CORS for local frontends,
request ids, the mapping of domain errors to HTTP responses and the
resource routers under `/api`. Controllers live in `gradeflow.routes`
and are intentionally thin: they accept requests, delegate to services,
and return JSON responses.
"""

import json
import logging
import os
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .config import settings
from .database import create_db_and_tables
from .errors import GradeflowError
from .routes import ROUTERS

app = FastAPI(title="GradeFlow API")
logger = logging.getLogger("gradeflow.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

# Wide-open CORS keeps a locally served frontend working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


def _request_log(request: Request, started: float, **extra) -> str:
    fields = {
        "request_id": getattr(request.state, "request_id", None),
        "path": request.url.path,
        "method": request.method,
        "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
        "client": request.client.host if request.client else "unknown",
    }
    fields.update(extra)
    return json.dumps(fields, ensure_ascii=True)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        if request.url.path.startswith("/api"):
            logger.exception("request_failed %s", _request_log(request, started))
        raise
    response.headers["X-Request-ID"] = req_id
    if request.url.path.startswith("/api"):
        logger.info("request_done %s", _request_log(request, started, status_code=response.status_code))
    return response


@app.exception_handler(GradeflowError)
async def gradeflow_error_handler(request: Request, exc: GradeflowError):
    headers = {}
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(
        "unhandled error request_id=%s path=%s",
        getattr(request.state, "request_id", None),
        request.url.path,
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"detail": "internal server error"})


for router in ROUTERS:
    app.include_router(router)


@app.get("/health")
def health():
    return {"status": "ok"}
