import logging
import logging.config
import json
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.domain import models  # noqa: F401
from app.domain.errors import (
    AuthenticationRejected,
    DuplicateRoleError,
    DuplicateRuleError,
    DuplicateTokenError,
    GateError,
    InvalidExpiryError,
    PermissionDeniedError,
    RoleNotFoundError,
    StoreUnavailableError,
    TokenNotFoundError,
)
from app.interfaces.api.router import api_router
from app.interfaces.http.middleware import (
    MetricsMiddleware,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
)

logging_config_path = Path(__file__).with_name("logging.json")
if logging_config_path.exists():
    logging.config.dictConfig(json.loads(logging_config_path.read_text(encoding="utf-8")))
else:
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("app")

SESSION_INVALID_MESSAGE = "session invalid, please log in again"

GATE_ERROR_STATUS: dict[type[GateError], int] = {
    PermissionDeniedError: 403,
    RoleNotFoundError: 404,
    TokenNotFoundError: 404,
    DuplicateTokenError: 409,
    DuplicateRuleError: 409,
    DuplicateRoleError: 409,
    InvalidExpiryError: 422,
    StoreUnavailableError: 503,
}

app = FastAPI(title=settings.app_name)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(MetricsMiddleware)


def _error_payload(*, request: Request, error_code: str, message: str) -> dict:
    trace_id = getattr(request.state, "request_id", None)
    return {
        "error_code": error_code,
        "message": message,
        "trace_id": trace_id,
    }


@app.exception_handler(AuthenticationRejected)
async def authentication_rejected_handler(request: Request, exc: AuthenticationRejected) -> JSONResponse:
    payload = _error_payload(request=request, error_code=exc.error_code, message=SESSION_INVALID_MESSAGE)
    payload["kind"] = exc.kind.value if settings.auth_expose_rejection_kind else exc.error_code
    return JSONResponse(status_code=401, content=payload, headers={"WWW-Authenticate": "Bearer"})


@app.exception_handler(GateError)
async def gate_error_handler(request: Request, exc: GateError) -> JSONResponse:
    status_code = GATE_ERROR_STATUS.get(type(exc), 400)
    message = str(exc)
    if isinstance(exc, (DuplicateTokenError, DuplicateRuleError)):
        logger.error("integrity_error error_code=%s path=%s detail=%s", exc.error_code, request.url.path, exc)
    elif isinstance(exc, StoreUnavailableError):
        logger.error("store_unavailable path=%s detail=%s", request.url.path, exc)
        message = "The request could not be completed; logout may not have fully propagated"
    return JSONResponse(
        status_code=status_code,
        content=_error_payload(request=request, error_code=exc.error_code, message=message),
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=_error_payload(request=request, error_code="invalid_request", message=str(exc)),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict) and "error_code" in exc.detail and "message" in exc.detail:
        error_code = str(exc.detail["error_code"])
        detail = str(exc.detail["message"])
    else:
        error_code = str(exc.status_code)
        detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_payload(request=request, error_code=error_code, message=detail),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    payload = _error_payload(request=request, error_code="validation_error", message="Request validation failed")
    payload["fields"] = sorted({".".join(str(part) for part in error.get("loc", ())) for error in exc.errors()})
    return JSONResponse(status_code=422, content=payload)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception path=%s method=%s", request.url.path, request.method)
    return JSONResponse(
        status_code=500,
        content=_error_payload(
            request=request,
            error_code="internal_server_error",
            message="Internal server error",
        ),
    )

app.include_router(api_router)
