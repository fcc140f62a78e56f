import logging
from collections.abc import Mapping
from datetime import UTC, date, datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from medcheck.core.config import settings
from medcheck.core.exceptions import AlreadyApprovedError, NotFoundError, ValidationError
from medcheck.core.metrics import BOOKINGS_APPROVED, BOOKINGS_SUBMITTED
from medcheck.db.models import Booking, BookingStatus
from medcheck.schemas.booking import BookingCreateRequest
from medcheck.services.booking_store import BookingStore

logger = logging.getLogger("medcheck.bookings")

PREFERRED_DATE_IN_PAST_DETAIL = "Preferred date cannot be in the past"


def compute_appointment_date(approved_at: datetime) -> date:
    return approved_at.date() + timedelta(days=settings.appointment_offset_days)


def _parse_submission(fields: BookingCreateRequest | Mapping[str, Any]) -> BookingCreateRequest:
    if isinstance(fields, BookingCreateRequest):
        return fields
    try:
        return BookingCreateRequest.model_validate(fields)
    except PydanticValidationError as exc:
        raise ValidationError(detail=exc.errors(include_url=False, include_context=False)) from None


def submit_booking(
    store: BookingStore,
    fields: BookingCreateRequest | Mapping[str, Any],
    now: datetime | None = None,
) -> Booking:
    current_time = now or datetime.now(UTC)
    submission = _parse_submission(fields)

    if submission.preferred_date < current_time.date():
        raise ValidationError(
            PREFERRED_DATE_IN_PAST_DETAIL,
            detail=[
                {
                    "loc": ["preferred_date"],
                    "msg": PREFERRED_DATE_IN_PAST_DETAIL,
                    "type": "date_in_past",
                }
            ],
        )

    booking = store.insert(
        Booking(
            full_name=submission.full_name,
            passport_number=submission.passport_number,
            email=submission.email,
            visa_type=submission.visa_type.value,
            preferred_date=submission.preferred_date,
            submitted_date=current_time,
            status=BookingStatus.PENDING.value,
            appointment_date=None,
        )
    )
    BOOKINGS_SUBMITTED.labels(visa_type=booking.visa_type).inc()
    logger.info("booking_submitted id=%s visa_type=%s", booking.id, booking.visa_type)
    return booking


def approve_booking(store: BookingStore, booking_id: int, now: datetime | None = None) -> Booking:
    """Move a pending booking to approved and fix its appointment date.

    Approving twice is an error: the appointment date is set exactly once
    and a repeated or concurrent approval leaves it untouched.
    """
    current_time = now or datetime.now(UTC)

    booking = store.get(booking_id)
    if booking is None:
        raise NotFoundError()
    if booking.is_approved:
        raise AlreadyApprovedError(detail={"id": booking.id, "appointment_date": booking.appointment_date})

    approved = store.update(
        booking_id,
        status=BookingStatus.APPROVED,
        appointment_date=compute_appointment_date(current_time),
        expected_status=BookingStatus.PENDING,
    )
    if approved is None:
        current = store.get(booking_id)
        if current is None:
            raise NotFoundError()
        raise AlreadyApprovedError(detail={"id": current.id, "appointment_date": current.appointment_date})

    BOOKINGS_APPROVED.inc()
    logger.info("booking_approved id=%s appointment_date=%s", approved.id, approved.appointment_date)
    return approved
