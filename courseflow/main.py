from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from courseflow.api.certificates import router as certificates_router
from courseflow.api.enrollments import router as enrollments_router
from courseflow.api.exams import router as exams_router
from courseflow.api.health import router as health_router
from courseflow.api.metrics_endpoint import router as metrics_router
from courseflow.core.config import SETTINGS
from courseflow.core.errors import DomainError
from courseflow.core.logging import setup_logging
from courseflow.db.engine import lifespan_db
from courseflow.db.redis import lifespan_redis
from courseflow.middleware.metrics import MetricsMiddleware
from courseflow.middleware.request_context import (
    RequestContextMiddleware,
    install_request_context_filter,
)

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
install_request_context_filter()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order (LIFO).
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="courseflow",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    logger.warning(
        "%s %s rejected: %s (%s)",
        request.method,
        request.url.path,
        exc.message,
        exc.code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


# Middleware execution order: last-added runs first (outermost layer).
# RequestContext (outermost) -> Metrics -> route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(enrollments_router)
app.include_router(exams_router)
app.include_router(certificates_router)

logger.info(
    "courseflow started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
