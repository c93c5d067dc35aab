"""FastAPI application entry point: ``uvicorn orkut.main:app``."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from orkut.apis.admin import router as admin_router
from orkut.apis.calls import missed_call_scheduler, router as calls_router
from orkut.apis.communities import router as communities_router
from orkut.apis.friendships import router as friendships_router
from orkut.apis.health import router as health_router
from orkut.apis.messages import router as messages_router
from orkut.apis.profiles import router as profiles_router
from orkut.apis.user_activity import router as user_activity_router
from orkut.libs import config
from orkut.libs.logging_config import configure_logging

logger = logging.getLogger("orkut.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Orkut API starting")
    yield
    missed_call_scheduler.cancel_all()
    logger.info("Orkut API stopped")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    if exc.status_code >= 500:
        logger.error("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, content)
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    first = details[0] if details else {}
    message = f"{'.'.join(str(part) for part in first.get('loc', []))}: {first.get('msg')}" if first else "Invalid request"
    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "message": message, "details": details},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": str(exc) or "Internal server error"},
    )


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="Orkut API",
        description="Profiles, friendships, communities, messages and calls",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    for router in (
        health_router,
        admin_router,
        communities_router,
        friendships_router,
        profiles_router,
        messages_router,
        calls_router,
        user_activity_router,
    ):
        app.include_router(router, prefix="/api")

    return app


app = create_app()
