from medcheck.db.models.booking import Booking, BookingStatus, VisaType
from medcheck.db.models.staff_user import StaffUser

__all__ = [
    "Booking",
    "BookingStatus",
    "VisaType",
    "StaffUser",
]
