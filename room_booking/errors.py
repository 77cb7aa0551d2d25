from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    ROOM_NOT_FOUND = "room_not_found"
    BOOKING_NOT_FOUND = "booking_not_found"
    BOOKING_CONFLICT = "booking_conflict"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    UNKNOWN = "unknown"


class BookingError(Exception):
    """Base class for every error the booking core reports.

    Instances are treated as values: ``kind``, ``message`` and ``context`` are
    read-only, and ``with_context`` returns a copy instead of rewriting the
    error that is already propagating.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, context: str | None = None) -> None:
        super().__init__(message)
        self._message = message
        self._context = context

    @property
    def message(self) -> str:
        return self._message

    @property
    def context(self) -> str | None:
        return self._context

    def with_context(self, context: str) -> BookingError:
        if self._context is not None:
            raise ValueError("error context is already set")

        wrapped = type(self).__new__(type(self))
        Exception.__init__(wrapped, self._message)
        wrapped.__dict__.update(self.__dict__)
        wrapped._context = context
        wrapped.__cause__ = self.__cause__
        return wrapped

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.kind.value, "message": self._message}
        if self._context is not None:
            payload["context"] = self._context
        return payload

    def __str__(self) -> str:
        if self._context is None:
            return self._message
        return f"{self._context}: {self._message}"


class ValidationError(BookingError, ValueError):
    kind = ErrorKind.VALIDATION


class RoomNotFoundError(BookingError):
    kind = ErrorKind.ROOM_NOT_FOUND

    def __init__(self, room_id: int, *, context: str | None = None) -> None:
        super().__init__(f"Room with id {room_id} not found", context=context)
        self._room_id = room_id

    @property
    def room_id(self) -> int:
        return self._room_id


class BookingNotFoundError(BookingError):
    kind = ErrorKind.BOOKING_NOT_FOUND

    def __init__(self, booking_id: int, *, context: str | None = None) -> None:
        super().__init__(f"Booking with id {booking_id} not found", context=context)
        self._booking_id = booking_id

    @property
    def booking_id(self) -> int:
        return self._booking_id


class BookingConflictError(BookingError):
    kind = ErrorKind.BOOKING_CONFLICT

    def __init__(
        self,
        message: str = "Booking overlaps with an existing booking for this room",
        *,
        context: str | None = None,
    ) -> None:
        super().__init__(message, context=context)


class StorageUnavailable(BookingError):
    kind = ErrorKind.STORAGE_UNAVAILABLE
