import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.core.config import require_jwt_secret, settings
from storefront.core.database import check_db_connection
from storefront.core.errors import AppError
from storefront.core.rate_limit import limiter
from storefront.routes.auth import router as auth_router
from storefront.routes.categories import router as categories_router
from storefront.routes.subcategories import router as subcategories_router

logger = logging.getLogger(__name__)

require_jwt_secret()

app = FastAPI(title="Storefront API")
logger.info(
    "Startup config: EMAIL_ENABLED=%s provider=%s RATE_LIMITING=%s REFRESH_TOKEN_ROTATION=%s",
    settings.EMAIL_ENABLED,
    settings.EMAIL_PROVIDER,
    settings.ENABLE_RATE_LIMITING,
    settings.REFRESH_TOKEN_ROTATION,
)


def _error_body(status_code: int, message: str, **extra) -> dict:
    return {"success": False, "message": message, "statusCode": int(status_code), **extra}


@app.exception_handler(AppError)
def app_error_handler(request: Request, exc: AppError):  # noqa: ARG001
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.status_code, exc.message))


@app.exception_handler(StarletteHTTPException)
def http_exception_handler(request: Request, exc: StarletteHTTPException):  # noqa: ARG001
    detail = exc.detail
    if isinstance(detail, str):
        message = detail
    elif isinstance(detail, dict) and isinstance(detail.get("message"), str):
        message = detail["message"]
    else:
        message = str(detail) if detail is not None else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.status_code, message),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):  # noqa: ARG001
    return JSONResponse(
        status_code=422,
        content=_error_body(422, "Invalid request payload", errors=jsonable_errors(exc)),
    )


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content=_error_body(500, "Internal server error"))


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # ctx may carry exception instances, which JSONResponse cannot encode.
    out: list[dict] = []
    for err in exc.errors():
        item = {k: v for k, v in err.items() if k not in {"ctx", "input", "url"}}
        out.append(item)
    return out


app.state.limiter = limiter
if settings.ENABLE_RATE_LIMITING:
    app.add_exception_handler(
        RateLimitExceeded,
        lambda request, exc: JSONResponse(  # noqa: ARG005
            status_code=429,
            content=_error_body(429, "Too many requests, please try again later."),
        ),
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(categories_router)
app.include_router(subcategories_router)


@app.get("/health")
def health_check():
    try:
        check_db_connection()
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        return JSONResponse(status_code=503, content=_error_body(503, "Database unavailable"))
    return {"status": "ok"}
