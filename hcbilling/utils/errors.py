"""Custom exception classes and error handling."""
from decimal import Decimal
from typing import Any, Optional, Union

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from hcbilling.utils.logger import get_logger
from hcbilling.config.sentry import capture_exception, add_breadcrumb, settings

logger = get_logger(__name__)


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or "APP_ERROR"
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    """Invalid operator or import input."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            code="VALIDATION_ERROR",
            details=details or {},
        )


class NotFoundError(AppError):
    """Resource not found error."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message += f" (id: {identifier})"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            code="NOT_FOUND",
            details={"resource": resource, "identifier": identifier},
        )


class ConfigurationError(AppError):
    """A company-level accounting reference (item, account, term) is not set."""

    def __init__(self, message: str, setting: Optional[str] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            code="CONFIGURATION_ERROR",
            details={"setting": setting},
        )


class EdiError(AppError):
    """
    Structural EDI error.

    Raised for envelope control number or count mismatches, an unexpected
    transaction set type, a missing zip entry, or an adjustment reason the
    readers do not understand. Always fatal for the whole file.
    """

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="EDI_ERROR",
            details=details or {},
        )


class ReconciliationError(AppError):
    """A declared total does not equal the sum of its components."""

    def __init__(
        self,
        message: str,
        expected: Union[str, Decimal],
        actual: Union[str, Decimal],
        details: Optional[dict] = None,
    ):
        self.expected = str(expected)
        self.actual = str(actual)
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="RECONCILIATION_ERROR",
            details={"expected": self.expected, "actual": self.actual, **(details or {})},
        )


class InvalidQualifierError(AppError):
    """Malformed element qualifier passed to the random-access segment reader."""

    def __init__(self, qualifier: str):
        super().__init__(
            message=f"Invalid qualifier: {qualifier!r}",
            status_code=status.HTTP_400_BAD_REQUEST,
            code="INVALID_QUALIFIER",
            details={"qualifier": qualifier},
        )


class ClaimCreationError(AppError):
    """A claim from an 837 file cannot be created from the stored charges."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            code="CLAIM_CREATION_ERROR",
            details=details or {},
        )


class PaymentCreationError(AppError):
    """A remittance cannot be applied to the stored claims and charges."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            code="PAYMENT_CREATION_ERROR",
            details=details or {},
        )


class AccountingApiError(AppError):
    """The accounting API rejected a request."""

    def __init__(
        self,
        message: str,
        intuit_code: Optional[str] = None,
        http_status: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        self.intuit_code = intuit_code
        self.http_status = http_status
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            code="ACCOUNTING_API_ERROR",
            details={"intuit_code": intuit_code, "http_status": http_status, **(details or {})},
        )


def error_payload(exc: AppError) -> dict:
    return {
        "error": exc.code,
        "message": exc.message,
        "details": exc.details,
    }


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle application errors."""
    add_breadcrumb(
        message=f"Application error: {exc.code}",
        category="error",
        level="warning" if exc.status_code < 500 else "error",
        data={
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
        },
    )

    logger.warning(
        "Application error",
        error=exc.code,
        message=exc.message,
        path=request.url.path,
        status_code=exc.status_code,
    )

    should_alert = settings.enable_alerts and (
        exc.status_code >= 500 or settings.alert_on_errors
    )
    if should_alert:
        capture_exception(
            exc,
            level="error" if exc.status_code >= 500 else "warning",
            context={
                "request": {
                    "path": request.url.path,
                    "method": request.method,
                },
                "error": {
                    "code": exc.code,
                    "details": exc.details,
                    "status_code": exc.status_code,
                },
            },
            tags={
                "error_type": exc.code,
                "status_code": str(exc.status_code),
            },
        )

    return JSONResponse(status_code=exc.status_code, content=error_payload(exc))


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors."""
    add_breadcrumb(
        message="Request validation failed",
        category="validation",
        level="warning",
        data={"path": request.url.path, "method": request.method},
    )

    logger.warning(
        "Validation error",
        path=request.url.path,
        errors=exc.errors(),
    )

    if settings.enable_alerts and settings.alert_on_warnings:
        capture_exception(
            exc,
            level="warning",
            context={"request": {"path": request.url.path, "method": request.method}},
            tags={"error_type": "VALIDATION_ERROR"},
        )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": _jsonable_errors(exc.errors()),
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    add_breadcrumb(
        message=f"Unexpected error: {type(exc).__name__}",
        category="exception",
        level="error",
        data={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
        },
    )

    logger.error(
        "Unexpected error",
        error=str(exc),
        path=request.url.path,
        exc_info=True,
    )

    if settings.enable_alerts:
        capture_exception(
            exc,
            level="error",
            context={"request": {"path": request.url.path, "method": request.method}},
            tags={"error_type": type(exc).__name__},
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
        },
    )


def _jsonable_errors(errors: Any) -> Any:
    # pydantic may put exception instances under "ctx"
    cleaned = []
    for error in errors:
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        cleaned.append(error)
    return cleaned
