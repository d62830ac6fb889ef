import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from app.api.main import api_router
from app.core.config import settings
from app.core.db import init_db
from app.errors import ConflictError, NotFoundError, ServiceError, StorageError, ValidationError

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[type[ServiceError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    StorageError: 500,
}


def custom_generate_unique_id(route: APIRoute) -> str:
    tag = route.tags[0] if route.tags else "default"
    return f"{tag}-{route.name}"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if settings.CREATE_TABLES_ON_STARTUP:
        await init_db()
    logger.info("%s started (%s)", settings.PROJECT_NAME, settings.ENVIRONMENT)
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    generate_unique_id_function=custom_generate_unique_id,
    lifespan=lifespan,
)

if settings.all_cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.all_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status_code = next(
        (code for kind, code in ERROR_STATUS_CODES.items() if isinstance(exc, kind)),
        500,
    )
    detail = exc.message
    if status_code >= 500 and settings.ENVIRONMENT != "local":
        detail = "Internal server error"
    content: dict = {"detail": detail}
    if exc.details:
        content["errors"] = exc.details
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in error["loc"][1:]), "message": error["msg"]}
        for error in exc.errors()
    ]
    logger.info("Validation error in %s: %s", request.url.path, errors)
    return JSONResponse(
        status_code=400,
        content={"detail": errors[0]["message"] if errors else "Validation error", "errors": errors},
    )


app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/health")
async def health() -> dict:
    return {"status": "healthy", "environment": settings.ENVIRONMENT}
