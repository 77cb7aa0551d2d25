from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable


@dataclass(frozen=True)
class Room:
    room_id: int
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.room_id, "name": self.name}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Room":
        return Room(room_id=int(data["id"]), name=str(data["name"]))


@dataclass(frozen=True)
class Booking:
    booking_id: int
    room_id: int
    start: datetime
    end: datetime
    created_at: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError("Booking start time must be earlier than end time.")

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return has_time_overlap(start, end, self.start, self.end)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.booking_id,
            "room_id": self.room_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "created_at": self.created_at.isoformat(),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Booking":
        return Booking(
            booking_id=int(data["id"]),
            room_id=int(data["room_id"]),
            start=_parse_utc(data["start"]),
            end=_parse_utc(data["end"]),
            created_at=_parse_utc(data["created_at"]),
        )


def has_time_overlap(new_start: datetime, new_end: datetime, exist_start: datetime, exist_end: datetime) -> bool:
    """Return True when two time intervals share at least one instant.

    Intervals are treated as half-open ranges: [start, end)
    so touching boundaries (e.g. 10:00-11:00 and 11:00-12:00) do not overlap.
    """
    if new_start >= new_end:
        raise ValueError("new_start must be earlier than new_end.")
    if exist_start >= exist_end:
        raise ValueError("exist_start must be earlier than exist_end.")

    return exist_start < new_end and exist_end > new_start


def find_conflicts(new_start: datetime, new_end: datetime, existing_bookings: Iterable[Booking]) -> list[Booking]:
    """Return the existing bookings whose interval overlaps the requested one."""
    if new_start >= new_end:
        raise ValueError("new_start must be earlier than new_end.")

    return [booking for booking in existing_bookings if booking.overlaps(new_start, new_end)]


def sort_bookings(bookings: Iterable[Booking]) -> list[Booking]:
    return sorted(bookings, key=lambda booking: (booking.start, booking.booking_id))


def _parse_utc(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp without timezone: {value!r}")
    return parsed.astimezone(timezone.utc)
