from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import tempfile
import traceback

from room_booking import (
    BookingConflictError,
    BookingService,
    RoomNotFoundError,
    ValidationError,
    YamlBookingStore,
)


def main() -> int:
    print("[INFO] Room Booking Quick Check")

    with tempfile.TemporaryDirectory() as temp_dir:
        data_dir = Path(temp_dir) / "data"
        now = datetime(2025, 12, 31, 9, 0, tzinfo=timezone.utc)
        store = YamlBookingStore(data_dir, clock=lambda: now)
        rooms = store.seed_rooms()
        print(f"[OK] Seeded rooms: {', '.join(room.name for room in rooms)}")

        service = BookingService(store, clock=lambda: now)
        room_id = rooms[0].room_id
        start = datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)
        end = datetime(2026, 1, 1, 11, 0, tzinfo=timezone.utc)

        created = service.create_booking(room_id, start, end)
        print(f"[OK] Created booking {created.booking_id}: {created.start.isoformat()}~{created.end.isoformat()}")

        try:
            service.create_booking(room_id, start, end)
            print("[ERROR] Duplicate booking was accepted")
            return 1
        except BookingConflictError as error:
            print(f"[OK] Duplicate rejected: {error.kind.value}")

        try:
            service.create_booking(room_id, datetime(2026, 1, 1, 10, 30, tzinfo=timezone.utc), datetime(2026, 1, 1, 10, 15, tzinfo=timezone.utc))
            print("[ERROR] Reversed window was accepted")
            return 1
        except ValidationError as error:
            print(f"[OK] Reversed window rejected: {error.message}")

        try:
            service.create_booking(999, start, end)
            print("[ERROR] Unknown room was accepted")
            return 1
        except RoomNotFoundError as error:
            print(f"[OK] Unknown room rejected: {error.message}")

        follow_up = service.create_booking(room_id, end, datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))
        print(f"[OK] Back-to-back booking {follow_up.booking_id} accepted")

        service.delete_booking(created.booking_id)
        print(f"[OK] Remaining bookings: {len(service.list_bookings(room_id))}")
        print(f"[OK] Events recorded in {store.log_file.name}: {len(store.read_events())}")

    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
