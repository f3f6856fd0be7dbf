from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tokengate.api.error_handling import register_exception_handlers
from tokengate.api.routes import check_route_scopes, router
from tokengate.config import Settings
from tokengate.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and release the store on shutdown."""
    from tokengate.service.runtime import get_runtime

    runtime = get_runtime()
    check_route_scopes(runtime.settings)
    logger.info("startup_complete", api_env=runtime.settings.api_env)

    yield

    try:
        get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="tokengate", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    if _settings.cors_allow_origins:
        return _settings.cors_allow_origins
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    # bearer tokens travel in a header, never in cookies
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=[
        "Accept",
        "Authorization",
        "Content-Type",
        "X-CSRF-Token",
        "X-Request-ID",
    ],
    expose_headers=["X-Request-ID"],
    max_age=300,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag the request with ``X-Request-ID`` (client-supplied or generated).

    The id is bound for structured logging and echoed in the response.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    # responses may carry a freshly issued token
    response.headers.setdefault("Cache-Control", "no-store")
    return response


app.include_router(router)
register_exception_handlers(app)


@app.get("/healthz")
async def health() -> JSONResponse:
    """Report whether the store answers within the health-check bound."""
    from tokengate.service.runtime import get_runtime

    runtime = get_runtime()
    checks: Dict[str, Dict[str, Any]] = {}
    store_type = type(runtime.store).__name__

    try:
        await asyncio.wait_for(
            asyncio.to_thread(runtime.store.verify_connection),
            HEALTH_CHECK_TIMEOUT_SECONDS,
        )
        store_ok = True
    except asyncio.TimeoutError:
        logger.error(
            "health_check_timeout", component="store", timeout=HEALTH_CHECK_TIMEOUT_SECONDS
        )
        store_ok = False
    except Exception as exc:
        logger.error("health_check_store_failed", error_type=type(exc).__name__, error=str(exc))
        store_ok = False

    checks["store"] = {"status": "healthy" if store_ok else "unhealthy", "type": store_type}
    body = {
        "error": not store_ok,
        "message": "healthy" if store_ok else "unhealthy",
        "checks": checks,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return JSONResponse(status_code=200 if store_ok else 503, content=body)


def create_app() -> FastAPI:
    return app
