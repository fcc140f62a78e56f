"""Tells a waiting applicant when their booking is approved.

One ``StatusNotifier`` lives for one applicant session. Approval can be learned
two ways: pushed by the store's change feed, or pulled by an explicit status
check. Either way the success notification is surfaced only once per session.
"""

import logging
import threading
from collections.abc import Callable
from datetime import date

from medcheck.core.exceptions import StoreUnavailableError
from medcheck.core.metrics import STATUS_NOTIFICATIONS
from medcheck.db.models import BookingStatus
from medcheck.schemas.notification import NotificationKind, NotificationLevel, StatusNotification
from medcheck.services.booking_store import BookingStore
from medcheck.services.change_feed import ChangeEvent, Subscription

logger = logging.getLogger("medcheck.notifier")

NotificationSink = Callable[[StatusNotification], None]

APPROVED_MESSAGE = "Your booking has been approved. Your medical examination is scheduled for {appointment_date}."
PENDING_MESSAGE = "Your booking is still pending approval. You will be notified once it's approved."
NOT_FOUND_MESSAGE = "No booking found with this passport number"
CHECK_FAILED_MESSAGE = "Error checking booking status. Please try again."


class StatusNotifier:
    def __init__(self, store: BookingStore, passport_number: str, notify: NotificationSink | None = None) -> None:
        self._store = store
        self._notify = notify
        self._lock = threading.Lock()
        self._subscription: Subscription | None = None
        self.passport_number = passport_number
        self.status: BookingStatus | None = None
        self.appointment_date: date | None = None
        self._approval_announced = False

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    @property
    def approval_announced(self) -> bool:
        return self._approval_announced

    def start(self) -> None:
        """Open the push subscription; raises ``StoreUnavailableError`` on failure."""
        if self.subscribed:
            return
        self._subscription = self._store.subscribe(
            "update",
            "passport_number",
            self.passport_number,
            on_event=self._handle_change,
        )
        logger.info("status_subscription_opened passport_number=%s", self.passport_number)

    def watch(self, passport_number: str) -> None:
        """Switch the session to a new booking, dropping what was known about the old one."""
        self.close()
        with self._lock:
            self.passport_number = passport_number
            self.status = None
            self.appointment_date = None
            self._approval_announced = False
        self.start()

    def close(self) -> None:
        if self._subscription is None:
            return
        self._store.unsubscribe(self._subscription)
        self._subscription = None
        logger.info("status_subscription_closed passport_number=%s", self.passport_number)

    def check_status(self) -> StatusNotification | None:
        """Look the booking up now.

        Returns the notification surfaced by this check, or ``None`` when the
        booking is approved and that was already announced.
        """
        try:
            booking = self._store.select_one(passport_number=self.passport_number)
        except StoreUnavailableError:
            return self._emit(NotificationKind.ERROR, NotificationLevel.ERROR, CHECK_FAILED_MESSAGE)

        if booking is None:
            return self._emit(NotificationKind.NOT_FOUND, NotificationLevel.ERROR, NOT_FOUND_MESSAGE)
        if booking.is_approved:
            return self._record_approval(booking.appointment_date)

        with self._lock:
            self.status = BookingStatus.PENDING
        return self._emit(NotificationKind.PENDING, NotificationLevel.INFO, PENDING_MESSAGE)

    def snapshot(self) -> dict:
        return {
            "type": "status",
            "passport_number": self.passport_number,
            "status": self.status.value if self.status else None,
            "appointment_date": self.appointment_date.isoformat() if self.appointment_date else None,
        }

    def _handle_change(self, event: ChangeEvent) -> None:
        record = event.record
        if record.get("passport_number") != self.passport_number:
            return
        if record.get("status") != BookingStatus.APPROVED.value:
            return
        appointment_date = record.get("appointment_date")
        self._record_approval(date.fromisoformat(appointment_date) if appointment_date else None)

    def _record_approval(self, appointment_date: date | None) -> StatusNotification | None:
        with self._lock:
            self.status = BookingStatus.APPROVED
            self.appointment_date = appointment_date
            if self._approval_announced:
                return None
            self._approval_announced = True

        message = APPROVED_MESSAGE.format(appointment_date=appointment_date.isoformat() if appointment_date else "-")
        return self._emit(NotificationKind.APPROVED, NotificationLevel.SUCCESS, message, appointment_date)

    def _emit(
        self,
        kind: NotificationKind,
        level: NotificationLevel,
        message: str,
        appointment_date: date | None = None,
    ) -> StatusNotification:
        notification = StatusNotification(
            kind=kind,
            level=level,
            message=message,
            passport_number=self.passport_number,
            appointment_date=appointment_date,
        )
        STATUS_NOTIFICATIONS.labels(kind=kind.value).inc()
        logger.info("status_notification kind=%s passport_number=%s", kind.value, self.passport_number)
        if self._notify is not None:
            self._notify(notification)
        return notification
