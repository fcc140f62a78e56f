from datetime import date
from enum import Enum

from pydantic import BaseModel


class NotificationKind(str, Enum):
    APPROVED = "approved"
    PENDING = "pending"
    NOT_FOUND = "not_found"
    ERROR = "error"


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    ERROR = "error"


class StatusNotification(BaseModel):
    type: str = "notification"
    kind: NotificationKind
    level: NotificationLevel
    message: str
    passport_number: str
    appointment_date: date | None = None
