from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette import status
import logging

from fxrelay.services.rates.errors import (
    CacheEmpty,
    InvalidAmount,
    InvalidCurrencyCode,
    RateQueryError,
    RateUnavailable,
)

logger = logging.getLogger("fxrelay.errors")

_QUERY_ERROR_STATUS = {
    CacheEmpty: (status.HTTP_503_SERVICE_UNAVAILABLE, "not_ready"),
    InvalidCurrencyCode: (status.HTTP_400_BAD_REQUEST, "invalid_currency"),
    InvalidAmount: (status.HTTP_400_BAD_REQUEST, "invalid_amount"),
    RateUnavailable: (status.HTTP_404_NOT_FOUND, "rate_unavailable"),
}


def http_exception_handler(request: Request, exc):  # type: ignore
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        detail = f"No route for {request.method} {request.url.path}"
        error = "not_found"
    else:
        detail = exc.detail
        error = "http_error"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": error, "detail": detail},
    )


def validation_error_handler(request: Request, exc: RequestValidationError):  # type: ignore
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "detail": exc.errors(),
        },
    )


def rate_query_error_handler(request: Request, exc: RateQueryError):  # type: ignore
    status_code, error = _QUERY_ERROR_STATUS.get(
        type(exc), (status.HTTP_400_BAD_REQUEST, "bad_request")
    )
    if status_code >= 500:
        logger.info("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "detail": str(exc)},
    )


def server_error_handler(request: Request, exc: Exception):  # type: ignore
    logger.exception("unhandled exception")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "detail": "An unexpected error occurred.",
        },
    )
