from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tokengate.api.error_handling import register_exception_handlers
from tokengate.api.routes import router
from tokengate.config import get_settings
from tokengate.context import CallContext
from tokengate.logging import get_logger, sanitize_error_message, set_correlation_id
from tokengate.storage.memory import MemoryIdentityStore

logger = get_logger(__name__)

_settings = get_settings()

__version__ = "0.1.0"
__build__ = _settings.build_sha

HEALTH_CHECK_TIMEOUT_SECONDS = 3
_NO_STORE_PREFIXES = ("/auth/", "/me", "/healthz")


@asynccontextmanager
async def lifespan(app: FastAPI):
    from tokengate.service.runtime import get_runtime

    try:
        runtime = await asyncio.to_thread(get_runtime)
    except Exception as exc:
        logger.error("startup_runtime_failed", error_type=type(exc).__name__, error=str(exc))
        raise
    logger.info("startup_complete", version=__version__, build=__build__)

    yield

    try:
        await asyncio.to_thread(runtime.close)
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
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    if request.url.path.startswith(_NO_STORE_PREFIXES):
        response.headers.setdefault("Cache-Control", "no-store")
    response.headers.setdefault(
        "Permissions-Policy", "camera=(), microphone=(), geolocation=(), payment=()"
    )
    if request.url.scheme == "https" and _settings.enable_hsts:
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=63072000; includeSubDomains"
        )
    response.headers.setdefault(
        "Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'"
    )
    return response


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag the request with a correlation id.

    Taken from ``X-Request-ID`` when the client sends one, generated
    otherwise; bound into structlog context and echoed on the response.
    """
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health():
    """Report store reachability plus version/build info; 503 when unhealthy."""
    from tokengate.service.runtime import get_runtime

    runtime = get_runtime()
    checks: Dict[str, Dict[str, Any]] = {}

    async def _run_bounded(label: str, func) -> bool:
        try:
            await asyncio.wait_for(asyncio.to_thread(func), HEALTH_CHECK_TIMEOUT_SECONDS)
            return True
        except asyncio.TimeoutError:
            logger.error(
                "health_check_timeout", component=label, timeout=HEALTH_CHECK_TIMEOUT_SECONDS
            )
        except Exception as exc:
            logger.error(
                "health_check_failed", component=label, error=sanitize_error_message(str(exc))
            )
        return False

    store_type = "memory" if isinstance(runtime.store, MemoryIdentityStore) else "postgres"
    db_ok = await _run_bounded(
        "database",
        lambda: runtime.store.ping(CallContext(timeout=HEALTH_CHECK_TIMEOUT_SECONDS)),
    )
    checks["database"] = {"status": "healthy" if db_ok else "unhealthy", "type": store_type}

    status = "healthy" if db_ok else "unhealthy"
    body = {
        "status": status,
        "checks": checks,
        "version": __version__,
        "build": __build__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return JSONResponse(status_code=200 if db_ok else 503, content=body)


def create_app() -> FastAPI:
    return app
