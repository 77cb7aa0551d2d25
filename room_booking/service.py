from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable
import logging

from .booking import Booking, Room
from .errors import BookingNotFoundError, RoomNotFoundError
from .validation import DEFAULT_POLICY, ValidationPolicy, validate_booking_window
from .yaml_store import StoreTransaction, YamlBookingStore

logger = logging.getLogger(__name__)


class BookingService:
    """Create, list and delete bookings on top of a conflict-aware store.

    The service keeps no state between calls; every use-case reads the current
    truth from ``store``.
    """

    def __init__(
        self,
        store: YamlBookingStore,
        policy: ValidationPolicy = DEFAULT_POLICY,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.policy = policy
        self._clock: Callable[[], datetime] = clock or (lambda: datetime.now(timezone.utc))

    def create_booking(self, room_id: int, start: datetime, end: datetime) -> Booking:
        validate_booking_window(start, end, self._clock(), self.policy)

        if not self.store.room_exists(room_id):
            raise RoomNotFoundError(room_id)

        booking = self.store.insert(room_id, start, end)
        logger.info("Booking created", extra={"room_id": room_id, "booking_id": booking.booking_id})
        return booking

    def list_bookings(self, room_id: int) -> list[Booking]:
        if not self.store.room_exists(room_id):
            raise RoomNotFoundError(room_id)
        return self.store.find_by_room(room_id)

    def delete_booking(self, booking_id: int) -> Booking:
        def _delete(txn: StoreTransaction) -> Booking:
            booking = txn.find_by_id(booking_id)
            if booking is None:
                raise BookingNotFoundError(booking_id)
            txn.delete_by_id(booking_id)
            return booking

        deleted = self.store.with_transaction(_delete)
        logger.info("Booking deleted", extra={"room_id": deleted.room_id, "booking_id": booking_id})
        return deleted

    def list_rooms(self) -> list[Room]:
        return self.store.list_rooms()
