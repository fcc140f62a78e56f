import logging
from datetime import date
from typing import Any

import redis
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medcheck.core.exceptions import StoreUnavailableError
from medcheck.db.models import Booking, BookingStatus
from medcheck.schemas.booking import BookingResponse
from medcheck.services.change_feed import ChangeEvent, ChangeFeed, EventHandler, Subscription

logger = logging.getLogger("medcheck.store")

FILTERABLE_FIELDS = ("id", "passport_number", "email")


def booking_record(booking: Booking) -> dict[str, Any]:
    return BookingResponse.model_validate(booking).model_dump(mode="json")


class BookingStore:
    """Persistence, lookup and change notification for bookings.

    Database failures roll the session back and surface as
    ``StoreUnavailableError``. Writes are published to the change feed after
    commit; a feed failure at that point is logged, never raised, because the
    row is already stored.
    """

    table = Booking.__tablename__

    def __init__(self, db: Session, feed: ChangeFeed | None = None) -> None:
        self._db = db
        self._feed = feed

    def insert(self, booking: Booking) -> Booking:
        try:
            self._db.add(booking)
            self._db.commit()
            self._db.refresh(booking)
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.exception("store_insert_failed table=%s", self.table)
            raise StoreUnavailableError() from exc

        self._publish("insert", booking)
        return booking

    def get(self, booking_id: int) -> Booking | None:
        return self._scalar(
            select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
        )

    def select_one(self, passport_number: str | None = None, email: str | None = None) -> Booking | None:
        conditions = []
        if passport_number:
            conditions.append(Booking.passport_number == passport_number)
        if email:
            conditions.append(func.lower(Booking.email) == email.lower())
        if not conditions:
            return None

        return self._scalar(
            select(Booking)
            .where(or_(*conditions))
            .order_by(Booking.submitted_date.desc(), Booking.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )

    def select_all(
        self,
        limit: int | None = None,
        offset: int = 0,
        status: BookingStatus | None = None,
    ) -> list[Booking]:
        query = select(Booking)
        if status is not None:
            query = query.where(Booking.status == status.value)
        query = query.order_by(Booking.submitted_date.desc(), Booking.id.desc()).offset(offset)
        if limit is not None:
            query = query.limit(limit)

        try:
            return list(self._db.scalars(query.execution_options(populate_existing=True)).all())
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.exception("store_select_failed table=%s", self.table)
            raise StoreUnavailableError() from exc

    def count_by_status(self) -> dict[str, int]:
        try:
            rows = self._db.execute(select(Booking.status, func.count(Booking.id)).group_by(Booking.status)).all()
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.exception("store_count_failed table=%s", self.table)
            raise StoreUnavailableError() from exc

        counts = {item.value: 0 for item in BookingStatus}
        for status, count in rows:
            counts[status] = count
        return counts

    def update(
        self,
        booking_id: int,
        *,
        status: BookingStatus,
        appointment_date: date | None,
        expected_status: BookingStatus | None = None,
    ) -> Booking | None:
        """Set status and appointment date in a single UPDATE statement.

        Returns ``None`` when no row matched, either because the booking does
        not exist or because its current status is not ``expected_status``.
        """
        statement = (
            update(Booking)
            .where(Booking.id == booking_id)
            .values(status=status.value, appointment_date=appointment_date)
        )
        if expected_status is not None:
            statement = statement.where(Booking.status == expected_status.value)

        try:
            result = self._db.execute(statement)
            if result.rowcount != 1:
                self._db.rollback()
                return None
            self._db.commit()
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.exception("store_update_failed table=%s id=%s", self.table, booking_id)
            raise StoreUnavailableError() from exc

        booking = self.get(booking_id)
        if booking is not None:
            self._publish("update", booking)
        return booking

    def subscribe(
        self,
        event: str,
        field: str,
        value: Any,
        on_event: EventHandler | None = None,
    ) -> Subscription:
        if self._feed is None:
            raise StoreUnavailableError("Live status updates are not available")
        if field not in FILTERABLE_FIELDS:
            raise ValueError(f"Cannot subscribe on field {field!r}")
        try:
            return self._feed.subscribe(self.table, event, field, value, on_event=on_event)
        except redis.RedisError as exc:
            logger.exception("store_subscribe_failed table=%s field=%s", self.table, field)
            raise StoreUnavailableError("Could not subscribe to booking updates. Please try again.") from exc

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()

    def release(self) -> None:
        """Return the session's connection to the pool.

        Long-lived holders of a store (a WebSocket session) call this after each
        lookup; the session reconnects on its next query.
        """
        self._db.close()

    def _scalar(self, query) -> Booking | None:
        try:
            return self._db.scalar(query)
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.exception("store_select_failed table=%s", self.table)
            raise StoreUnavailableError() from exc

    def _publish(self, event: str, booking: Booking) -> None:
        if self._feed is None:
            return
        try:
            self._feed.publish(
                ChangeEvent(table=self.table, event=event, record=booking_record(booking)),
                FILTERABLE_FIELDS,
            )
        except redis.RedisError:
            logger.exception("store_publish_failed table=%s event=%s id=%s", self.table, event, booking.id)
