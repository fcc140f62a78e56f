from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from medcheck.db.models.booking import BookingStatus, VisaType


class BookingCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(min_length=1, max_length=255)
    passport_number: str = Field(min_length=1, max_length=64)
    email: EmailStr
    visa_type: VisaType
    preferred_date: date


class BookingResponse(BaseModel):
    id: int
    full_name: str
    passport_number: str
    email: str
    visa_type: VisaType
    preferred_date: date
    submitted_date: datetime
    status: BookingStatus
    appointment_date: date | None

    model_config = {"from_attributes": True}


class BookingStatsResponse(BaseModel):
    total: int
    pending: int
    approved: int
