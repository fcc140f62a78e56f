from datetime import UTC, date, datetime

import pytest
import redis

from medcheck.core.exceptions import StoreUnavailableError
from medcheck.schemas.notification import NotificationKind, NotificationLevel
from medcheck.services.booking_service import approve_booking, submit_booking
from medcheck.services.booking_store import FILTERABLE_FIELDS, BookingStore, booking_record
from medcheck.services.change_feed import ChangeEvent, InMemoryChangeFeed
from medcheck.services.status_notifier import StatusNotifier

SUBMITTED_AT = datetime(2025, 1, 5, 9, 30, tzinfo=UTC)
APPROVED_AT = datetime(2025, 1, 8, 16, 45, tzinfo=UTC)


class UnreachableFeed(InMemoryChangeFeed):
    def subscribe(self, *args, **kwargs):
        raise redis.ConnectionError("Error 111 connecting to redis:6379. Connection refused.")


@pytest.fixture()
def feed() -> InMemoryChangeFeed:
    return InMemoryChangeFeed()


@pytest.fixture()
def store(db_session, feed) -> BookingStore:
    return BookingStore(db=db_session, feed=feed)


@pytest.fixture()
def notifications() -> list:
    return []


def _submit(store, passport_number: str = "P123"):
    return submit_booking(
        store,
        {
            "full_name": "Amina Yusuf",
            "passport_number": passport_number,
            "email": f"{passport_number.lower()}@example.com",
            "visa_type": "tourist",
            "preferred_date": "2025-01-10",
        },
        now=SUBMITTED_AT,
    )


def test_push_then_pull_announces_approval_once(store, notifications):
    booking = _submit(store)
    notifier = StatusNotifier(store=store, passport_number="P123", notify=notifications.append)
    notifier.start()

    approve_booking(store, booking.id, now=APPROVED_AT)
    pulled = notifier.check_status()

    assert pulled is None
    assert [n.kind for n in notifications] == [NotificationKind.APPROVED]
    assert notifications[0].level == NotificationLevel.SUCCESS
    assert notifications[0].appointment_date == date(2025, 1, 11)
    assert notifier.appointment_date == date(2025, 1, 11)
    notifier.close()


def test_duplicate_push_events_are_absorbed(store, feed, notifications):
    booking = _submit(store)
    notifier = StatusNotifier(store=store, passport_number="P123", notify=notifications.append)
    notifier.start()

    approved = approve_booking(store, booking.id, now=APPROVED_AT)
    feed.publish(ChangeEvent(table="bookings", event="update", record=booking_record(approved)), FILTERABLE_FIELDS)

    assert len(notifications) == 1
    notifier.close()


def test_pull_reports_pending_until_approved(store, notifications):
    booking = _submit(store)
    notifier = StatusNotifier(store=store, passport_number="P123", notify=notifications.append)

    first = notifier.check_status()
    approve_booking(store, booking.id, now=APPROVED_AT)
    second = notifier.check_status()
    third = notifier.check_status()

    assert first.kind == NotificationKind.PENDING
    assert first.level == NotificationLevel.INFO
    assert second.kind == NotificationKind.APPROVED
    assert third is None
    assert [n.kind for n in notifications] == [NotificationKind.PENDING, NotificationKind.APPROVED]


def test_pull_without_booking_reports_not_found(store, notifications):
    notifier = StatusNotifier(store=store, passport_number="P404", notify=notifications.append)

    result = notifier.check_status()

    assert result.kind == NotificationKind.NOT_FOUND
    assert notifier.status is None


def test_pull_store_failure_is_reported_not_raised(store, notifications, monkeypatch):
    def unavailable(**_):
        raise StoreUnavailableError()

    monkeypatch.setattr(store, "select_one", unavailable)
    notifier = StatusNotifier(store=store, passport_number="P123", notify=notifications.append)

    result = notifier.check_status()

    assert result.kind == NotificationKind.ERROR
    assert result.level == NotificationLevel.ERROR
    assert notifier.approval_announced is False


def test_push_ignores_other_applicants(store, notifications):
    _submit(store, "P123")
    other = _submit(store, "P999")
    notifier = StatusNotifier(store=store, passport_number="P123", notify=notifications.append)
    notifier.start()

    approve_booking(store, other.id, now=APPROVED_AT)

    assert notifications == []
    assert notifier.approval_announced is False
    notifier.close()


def test_close_unsubscribes_from_feed(store, feed, notifications):
    booking = _submit(store)
    notifier = StatusNotifier(store=store, passport_number="P123", notify=notifications.append)
    notifier.start()
    assert feed.subscriber_count() == 1

    notifier.close()
    approve_booking(store, booking.id, now=APPROVED_AT)

    assert feed.subscriber_count() == 0
    assert notifier.subscribed is False
    assert notifications == []


def test_watch_switches_to_new_booking_and_resets_state(store, feed, notifications):
    first = _submit(store, "P123")
    second = _submit(store, "P456")
    notifier = StatusNotifier(store=store, passport_number="P123", notify=notifications.append)
    notifier.start()
    approve_booking(store, first.id, now=APPROVED_AT)
    assert notifier.approval_announced is True

    notifier.watch("P456")

    assert notifier.approval_announced is False
    assert notifier.status is None
    assert feed.subscriber_count("bookings:update:passport_number:P123") == 0
    assert feed.subscriber_count("bookings:update:passport_number:P456") == 1

    approve_booking(store, second.id, now=APPROVED_AT)

    assert [n.passport_number for n in notifications] == ["P123", "P456"]
    notifier.close()


def test_subscription_failure_raises_store_unavailable(db_session):
    store = BookingStore(db=db_session, feed=UnreachableFeed())
    notifier = StatusNotifier(store=store, passport_number="P123")

    with pytest.raises(StoreUnavailableError):
        notifier.start()
    assert notifier.subscribed is False
