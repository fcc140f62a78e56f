from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from medcheck.api.deps import get_booking_store, get_current_staff
from medcheck.db.models import BookingStatus, StaffUser
from medcheck.schemas.booking import BookingResponse, BookingStatsResponse
from medcheck.services.booking_service import approve_booking
from medcheck.services.booking_store import BookingStore

router = APIRouter(prefix="/admin/bookings", tags=["admin"])

LimitParam = Annotated[int, Query(ge=1, le=100)]
OffsetParam = Annotated[int, Query(ge=0)]


@router.get("", response_model=list[BookingResponse], status_code=status.HTTP_200_OK)
def list_bookings(
    status_filter: BookingStatus | None = Query(default=None, alias="status"),
    limit: LimitParam = 20,
    offset: OffsetParam = 0,
    _: StaffUser = Depends(get_current_staff),
    store: BookingStore = Depends(get_booking_store),
) -> list[BookingResponse]:
    bookings = store.select_all(limit=limit, offset=offset, status=status_filter)
    return [BookingResponse.model_validate(booking) for booking in bookings]


@router.get("/stats", response_model=BookingStatsResponse, status_code=status.HTTP_200_OK)
def booking_stats(
    _: StaffUser = Depends(get_current_staff),
    store: BookingStore = Depends(get_booking_store),
) -> BookingStatsResponse:
    counts = store.count_by_status()
    return BookingStatsResponse(
        total=sum(counts.values()),
        pending=counts[BookingStatus.PENDING.value],
        approved=counts[BookingStatus.APPROVED.value],
    )


@router.patch("/{booking_id}/approve", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def approve(
    booking_id: int,
    _: StaffUser = Depends(get_current_staff),
    store: BookingStore = Depends(get_booking_store),
) -> BookingResponse:
    booking = approve_booking(store=store, booking_id=booking_id)
    return BookingResponse.model_validate(booking)
