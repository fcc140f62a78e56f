from datetime import date, datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Date, DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from medcheck.db.base import Base


class VisaType(str, Enum):
    TOURIST = "tourist"
    BUSINESS = "business"
    STUDENT = "student"
    WORK = "work"
    FAMILY = "family"
    TRANSIT = "transit"


class BookingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint(
            "(status = 'pending' AND appointment_date IS NULL)"
            " OR (status = 'approved' AND appointment_date IS NOT NULL)",
            name="ck_bookings_appointment_matches_status",
        ),
        Index("ix_bookings_submitted_date", "submitted_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    passport_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    visa_type: Mapped[str] = mapped_column(String(20), nullable=False)
    preferred_date: Mapped[date] = mapped_column(Date, nullable=False)
    submitted_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    appointment_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    @property
    def is_approved(self) -> bool:
        return self.status == BookingStatus.APPROVED.value
