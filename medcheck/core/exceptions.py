from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from medcheck.core.request_context import request_id_ctx_var


class BookingError(Exception):
    """Base class for failures a booking flow reports back to the user.

    Every subclass carries the HTTP status and error code it is rendered with,
    so services raise them directly and the API layer never translates.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "booking_error"
    default_message: str = "Booking request failed"

    def __init__(self, message: str | None = None, detail: Any = None) -> None:
        self.message = message or self.default_message
        self.detail = detail if detail is not None else self.message
        super().__init__(self.message)


class ValidationError(BookingError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "validation_error"
    default_message = "Please fill in all required fields"


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Booking not found"


class AlreadyApprovedError(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_approved"
    default_message = "Booking is already approved"


class StoreUnavailableError(BookingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "store_unavailable"
    default_message = "Booking service is temporarily unavailable. Please try again."


def _error_payload(code: str, message: str, detail):
    return {
        "error": {
            "code": code,
            "message": message,
            "detail": detail,
        },
        "detail": detail,
        "request_id": request_id_ctx_var.get(),
    }


async def booking_exception_handler(_: Request, exc: BookingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_payload(code=exc.code, message=exc.message, detail=jsonable_encoder(exc.detail)),
    )


async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_payload(
            code=f"http_{exc.status_code}",
            message=str(exc.detail),
            detail=exc.detail,
        ),
        headers=exc.headers,
    )


async def validation_exception_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_payload(
            code="validation_error",
            message="Request validation failed",
            detail=jsonable_encoder(exc.errors()),
        ),
    )
