import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from geochat import config
from geochat.errors import (
    AUTH_FAILED,
    INTERNAL_ERROR,
    NOT_FOUND,
    PERMISSION_DENIED,
    VALIDATION_ERROR,
    GeoChatError,
    InvariantViolation,
)
from geochat.models import group, location, message, user  # noqa: F401 (table metadata registration)
from geochat.routers.groups import router as groups_router
from geochat.routers.locations import router as locations_router
from geochat.routers.messages import router as messages_router
from geochat.routers.users import router as users_router
from geochat.schemas.common import error_body

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

_HTTP_STATUS_CODES = {
    401: AUTH_FAILED,
    403: PERMISSION_DENIED,
    404: NOT_FOUND,
}


def _run_alembic_upgrade() -> None:
    """Apply migrations (alembic upgrade head) on startup."""
    from alembic import command
    from alembic.config import Config

    root = Path(__file__).resolve().parent.parent
    cfg = Config(str(root / "alembic.ini"))
    command.upgrade(cfg, "head")


app = FastAPI(
    title="GeoChat API",
    description="Location-aware group chat: nearby groups, messages and live user locations",
    version="0.1.0",
)


@app.on_event("startup")
def _startup_migrate() -> None:
    if not config.RUN_MIGRATIONS:
        return
    try:
        _run_alembic_upgrade()
    except Exception:
        # the app still starts (e.g. locally without a database)
        logger.exception("Alembic upgrade failed on startup")


@app.exception_handler(GeoChatError)
async def geochat_error_handler(request: Request, exc: GeoChatError):
    if isinstance(exc, InvariantViolation):
        logger.error("Invariant violation on %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, "Internal server error"))
    if exc.status_code >= 500:
        logger.error("Error on %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, "Internal server error"))
    logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.message))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = f"{where}: {first.get('msg', 'invalid value')}" if where else first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content=error_body(VALIDATION_ERROR, msg))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = _HTTP_STATUS_CODES.get(exc.status_code, VALIDATION_ERROR if exc.status_code < 500 else INTERNAL_ERROR)
    return JSONResponse(status_code=exc.status_code, content=error_body(code, str(exc.detail)))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(status_code=500, content=error_body(INTERNAL_ERROR, "Internal server error"))


app.include_router(users_router)
app.include_router(groups_router)
app.include_router(messages_router)
app.include_router(locations_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    return {"status": "ok"}


@app.get("/", tags=["Root"])
async def root() -> dict:
    return {
        "message": "GeoChat API",
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("geochat.main:app", host="0.0.0.0", port=8000, reload=True)
