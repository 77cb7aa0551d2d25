from __future__ import annotations

from datetime import datetime
from typing import Any

from mcp.server.fastmcp import FastMCP

from room_booking import BookingService, YamlBookingStore
from room_booking.config import get_settings

mcp = FastMCP(
    "Room Booking MCP Server",
    instructions="Create, list and delete room bookings backed by the room_booking store.",
    json_response=True,
)

SETTINGS = get_settings()
STORE = YamlBookingStore(SETTINGS.DATA_DIR, lock_timeout=SETTINGS.LOCK_TIMEOUT_SECONDS)
if SETTINGS.SEED_ROOMS:
    STORE.seed_rooms()
SERVICE = BookingService(STORE, policy=SETTINGS.validation_policy())


@mcp.resource("booking://rooms")
async def list_rooms() -> list[dict[str, Any]]:
    """List bookable rooms."""
    return [room.to_dict() for room in SERVICE.list_rooms()]


@mcp.tool()
def create_booking(room_id: int, start_iso: str, end_iso: str) -> dict[str, Any]:
    """Book a room using timezone-aware ISO timestamps."""
    start = datetime.fromisoformat(start_iso)
    end = datetime.fromisoformat(end_iso)
    return SERVICE.create_booking(room_id, start, end).to_dict()


@mcp.tool()
def list_bookings(room_id: int) -> list[dict[str, Any]]:
    """Return a room's bookings ordered by start time."""
    return [booking.to_dict() for booking in SERVICE.list_bookings(room_id)]


@mcp.tool()
def delete_booking(booking_id: int) -> dict[str, Any]:
    """Delete a booking by id and return the removed record."""
    return SERVICE.delete_booking(booking_id).to_dict()


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
