"""
Turns exceptions escaping a route into the JSON error envelope::

    {"error": {...}, "error_id": "...", "timestamp": "..."}

Reservation errors map to a status by their error code; database
integrity and connectivity failures are translated first.
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple
from uuid import uuid4

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as SQLTimeoutError

from ..utils.exceptions import (
    ConcurrencyError,
    ErrorCode,
    ExternalServiceError,
    NotFoundError,
    ReservationError,
    ValidationError,
)

logger = logging.getLogger(__name__)


STATUS_MAP = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCode.ROOM_NOT_AVAILABLE: status.HTTP_409_CONFLICT,
    ErrorCode.CAPACITY_EXCEEDED: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_TRANSITION: status.HTTP_400_BAD_REQUEST,
    ErrorCode.CONCURRENCY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.OPTIMISTIC_LOCK_FAILURE: status.HTTP_409_CONFLICT,
    ErrorCode.TRANSACTION_TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorCode.EXTERNAL_SERVICE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.PAYMENT_SERVICE_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.EMAIL_SERVICE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def classify(exc: Exception, debug: bool = False) -> Tuple[int, ReservationError, Dict[str, str]]:
    """Map any exception to a status code, the error to report, and extra headers."""
    if isinstance(exc, ReservationError):
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else {}
        return STATUS_MAP.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR), exc, headers

    if isinstance(exc, IntegrityError):
        reason = str(exc.orig if exc.orig is not None else exc).lower()
        if "unique" in reason:
            error = ConcurrencyError("A conflicting record was written concurrently")
        elif "foreign key" in reason:
            error = ValidationError("Referenced resource does not exist")
        else:
            error = ValidationError("Data integrity constraint violation")
        return STATUS_MAP[error.error_code], error, {}

    if isinstance(exc, (OperationalError, SQLTimeoutError)):
        error = ExternalServiceError(
            "database",
            "Database service temporarily unavailable",
            details={"error_type": type(exc).__name__}
        )
        return status.HTTP_503_SERVICE_UNAVAILABLE, error, {"Retry-After": "30"}

    error = ReservationError(
        "An unexpected error occurred",
        error_code=ErrorCode.INTERNAL_ERROR,
        details={"error_type": type(exc).__name__} if debug else None
    )
    return status.HTTP_500_INTERNAL_SERVER_ERROR, error, {}


class ErrorHandlerMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            error_id = str(uuid4())
            self._log(request, exc, error_id)

            status_code, error, headers = classify(exc, self.debug)
            body = {
                "error": error.to_dict(),
                "error_id": error_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            if self.debug and status_code == status.HTTP_500_INTERNAL_SERVER_ERROR:
                body["debug"] = {"exception": str(exc), "traceback": traceback.format_exc()}

            return JSONResponse(status_code=status_code, content=body, headers=headers or None)

    def _log(self, request: Request, exc: Exception, error_id: str) -> None:
        extra: Dict[str, Optional[object]] = {
            "error_id": error_id,
            "request": {
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None,
            },
        }

        if not isinstance(exc, ReservationError):
            extra["error_type"] = type(exc).__name__
            logger.error(f"Unexpected error [{error_id}]: {exc}", extra=extra, exc_info=exc)
            return

        extra.update(error_code=exc.error_code.value, error_details=exc.details)
        if isinstance(exc, (ConcurrencyError, ExternalServiceError)):
            logger.error(f"System error [{error_id}]: {exc.message}", extra=extra)
        elif isinstance(exc, (ValidationError, NotFoundError)):
            logger.warning(f"Client error [{error_id}]: {exc.message}", extra=extra)
        else:
            logger.warning(f"Business error [{error_id}]: {exc.message}", extra=extra)
