from __future__ import annotations

from contextlib import asynccontextmanager
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from assistcore.apps.api.errors import (
    assist_error_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from assistcore.apps.api.response import API_VERSION
from assistcore.apps.api.routes import briefing, health, memories, plan, risk
from assistcore.core.errors import AssistError
from assistcore.core.logging import configure_logging
from assistcore.services.insights import drain_background_tasks
from assistcore.services.telemetry import record_request


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Detached insight extractions must finish before the loop closes.
    await drain_background_tasks()


async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    start = time.monotonic()
    response = await call_next(request)
    record_request(
        path=request.url.path,
        status_code=response.status_code,
        latency_ms=(time.monotonic() - start) * 1000.0,
    )
    response.headers.setdefault("X-Request-Id", request_id)
    return response


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="AssistCore API", version=API_VERSION, lifespan=lifespan)
    app.middleware("http")(request_context_middleware)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(AssistError, assist_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    for module in (health, plan, memories, risk, briefing):
        app.include_router(module.router, prefix=f"/{API_VERSION}")
    return app


app = create_app()
