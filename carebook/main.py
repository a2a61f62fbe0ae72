from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from carebook.api.v1.api import api_router
from carebook.core.config import settings
from carebook.core.exceptions import AuthError, CareBookError
from carebook.core.logging import configure_logging
from carebook.core.redis import RedisClient
from carebook.services.query_cache import SessionCacheRegistry
from carebook.services.remote_api import create_http_client

logger = structlog.get_logger(__name__)

ERROR_STATUS_CODES = {
    "validation": 422,
    "not_found": 404,
    "conflict": 409,
    "auth": 401,
    "unknown": 502,
    "invalid_state": 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up", environment=settings.ENVIRONMENT)
    app.state.redis_client = RedisClient()
    try:
        await app.state.redis_client.connect()
    except Exception as e:
        # Drafts fall back to request scope until Redis is reachable
        logger.warning("Redis unavailable at startup", error=str(e))
    app.state.http_client = create_http_client()
    app.state.session_caches = SessionCacheRegistry()

    yield

    logger.info("Application shutting down")
    await app.state.http_client.aclose()
    await app.state.redis_client.close()


async def carebook_error_handler(request: Request, exc: CareBookError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(exc.kind, 500)
    if isinstance(exc, AuthError):
        status_code = exc.status_code
    body = exc.to_dict()
    body.setdefault("field_errors", {})
    logger.info(
        "Request failed",
        path=request.url.path,
        kind=exc.kind,
        status_code=status_code,
    )
    return JSONResponse(status_code=status_code, content=body)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed requests in the same shape as domain validation errors."""
    field_errors: dict[str, list[str]] = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query")]
        field_errors.setdefault(".".join(loc) or "request", []).append(error["msg"])
    first = next(iter(field_errors.values()))[0] if field_errors else "Invalid request."
    return JSONResponse(
        status_code=422,
        content={"kind": "validation", "message": first, "field_errors": field_errors},
    )


def create_app() -> FastAPI:
    configure_logging(settings.LOG_LEVEL, json_logs=settings.ENVIRONMENT != "development")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.add_exception_handler(CareBookError, carebook_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health")
    async def health(request: Request):
        redis_ok = await request.app.state.redis_client.ping()
        return {
            "status": "ok",
            "version": settings.VERSION,
            "redis": "ok" if redis_ok else "unavailable",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "carebook.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
