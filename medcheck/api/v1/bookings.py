import asyncio
import json
import logging
from functools import partial

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool

from medcheck.api.deps import get_booking_store
from medcheck.core.exceptions import NotFoundError, StoreUnavailableError, ValidationError
from medcheck.schemas.booking import BookingCreateRequest, BookingResponse
from medcheck.schemas.notification import StatusNotification
from medcheck.services.booking_service import submit_booking
from medcheck.services.booking_store import BookingStore
from medcheck.services.status_notifier import StatusNotifier

router = APIRouter(prefix="/bookings", tags=["bookings"])
logger = logging.getLogger("medcheck.status_feed")

NO_BOOKING_FOUND_DETAIL = "No booking found with this passport number or email"
EMPTY_LOOKUP_DETAIL = "Please enter a passport number or email address"
INVALID_MESSAGE_DETAIL = "Messages must be JSON objects such as {\"action\": \"check\"}"


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: BookingCreateRequest,
    store: BookingStore = Depends(get_booking_store),
) -> BookingResponse:
    booking = submit_booking(store=store, fields=payload)
    return BookingResponse.model_validate(booking)


@router.get("/status", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def lookup_booking_status(
    query: str = Query(default="", max_length=255),
    store: BookingStore = Depends(get_booking_store),
) -> BookingResponse:
    value = query.strip()
    if not value:
        raise ValidationError(EMPTY_LOOKUP_DETAIL)

    booking = store.select_one(passport_number=value, email=value)
    if booking is None:
        raise NotFoundError(NO_BOOKING_FOUND_DETAIL)
    return BookingResponse.model_validate(booking)


def log_send_failure(passport_number: str, task: asyncio.Task) -> None:
    if task.cancelled() or task.exception() is None:
        return
    logger.error(
        "status_feed_send_failed passport_number=%s",
        passport_number,
        exc_info=task.exception(),
    )


@router.websocket("/status/ws")
async def booking_status_feed(
    websocket: WebSocket,
    passport_number: str = Query(min_length=1, max_length=64),
    store: BookingStore = Depends(get_booking_store),
) -> None:
    """Live status session for one applicant.

    Approval is pushed as soon as staff approve the booking; the client may
    also send ``{"action": "check"}`` to look the booking up on demand.
    The database connection is only held for the duration of a check.
    """
    await websocket.accept()
    loop = asyncio.get_running_loop()
    outbox: asyncio.Queue[dict] = asyncio.Queue()

    def enqueue(notification: StatusNotification) -> None:
        loop.call_soon_threadsafe(outbox.put_nowait, notification.model_dump(mode="json"))

    notifier = StatusNotifier(store=store, passport_number=passport_number.strip(), notify=enqueue)

    def check_and_release() -> None:
        try:
            notifier.check_status()
        finally:
            store.release()

    try:
        await run_in_threadpool(notifier.start)
    except StoreUnavailableError as exc:
        await websocket.send_json({"type": "error", "message": exc.message})
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    async def forward_outbox() -> None:
        while True:
            message = await outbox.get()
            await websocket.send_json(message)

    await websocket.send_json({"type": "subscribed", "passport_number": notifier.passport_number})
    sender = asyncio.create_task(forward_outbox())
    sender.add_done_callback(partial(log_send_failure, notifier.passport_number))
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                outbox.put_nowait({"type": "error", "message": INVALID_MESSAGE_DETAIL})
                continue

            action = message.get("action") if isinstance(message, dict) else None
            if action == "check":
                await run_in_threadpool(check_and_release)
                outbox.put_nowait(notifier.snapshot())
            else:
                outbox.put_nowait({"type": "error", "message": f"Unknown action: {action}"})
    except WebSocketDisconnect:
        logger.info("status_feed_disconnected passport_number=%s", notifier.passport_number)
    finally:
        sender.cancel()
        notifier.close()
