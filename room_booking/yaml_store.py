from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, TypeVar
import logging
import shutil
import threading

import yaml

from .booking import Booking, Room, find_conflicts, sort_bookings
from .errors import BookingConflictError, RoomNotFoundError, StorageUnavailable, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ROOM_NAMES = ("Conference Room A", "Conference Room B", "Meeting Pod 1")
DEFAULT_LOCK_TIMEOUT = 5.0

# Locks are shared by every store opened on the same directory in this process.
_REGISTRY_LOCK = threading.Lock()
_SHARED_LOCKS: dict[tuple[str, str], threading.Lock] = {}


def _shared_lock(base_dir: Path, key: str) -> threading.Lock:
    registry_key = (str(base_dir), key)
    with _REGISTRY_LOCK:
        lock = _SHARED_LOCKS.get(registry_key)
        if lock is None:
            lock = threading.Lock()
            _SHARED_LOCKS[registry_key] = lock
        return lock


class StoreTransaction:
    """Unit of work over one or more room files.

    Room locks are taken on first touch and held until the owning
    ``YamlBookingStore.transaction()`` block commits or rolls back. Writes are
    staged in memory and only reach disk on commit.
    """

    def __init__(self, store: YamlBookingStore) -> None:
        self._store = store
        self._held: dict[int, threading.Lock] = {}
        self._rows: dict[int, list[dict[str, Any]]] = {}
        self._dirty: set[int] = set()
        self.events: list[tuple[str, dict[str, Any]]] = []

    def room_exists(self, room_id: int) -> bool:
        return self._store.room_exists(room_id)

    def insert(self, room_id: int, start: datetime, end: datetime) -> Booking:
        start = _as_utc(start)
        end = _as_utc(end)
        if start >= end:
            raise ValidationError("Start time must be before end time")
        if not self._store.room_exists(room_id):
            raise RoomNotFoundError(room_id)

        rows = self._lock_room(room_id)
        existing = [_decode_booking(row) for row in rows]
        conflicts = find_conflicts(start, end, existing)
        if conflicts:
            logger.info(
                "Rejected overlapping booking",
                extra={"room_id": room_id, "booking_id": conflicts[0].booking_id},
            )
            raise BookingConflictError()

        booking_id, created_at = self._store._allocate_booking()
        booking = Booking(
            booking_id=booking_id,
            room_id=room_id,
            start=start,
            end=end,
            created_at=created_at,
        )
        rows.append(booking.to_dict())
        self._dirty.add(room_id)
        self.events.append(("BOOKING_CREATED", booking.to_dict()))
        return booking

    def find_by_id(self, booking_id: int) -> Booking | None:
        for rows in self._rows.values():
            for row in rows:
                if _row_id(row) == booking_id:
                    return _decode_booking(row)

        for room in self._store.list_rooms():
            if room.room_id in self._held:
                continue
            unlocked_rows = self._store._read_rows(self._store._room_file(room.room_id))
            if not any(_row_id(row) == booking_id for row in unlocked_rows):
                continue

            # Re-read under the room lock; a concurrent delete may have won.
            for row in self._lock_room(room.room_id):
                if _row_id(row) == booking_id:
                    return _decode_booking(row)
            return None
        return None

    def find_by_room(self, room_id: int) -> list[Booking]:
        if room_id in self._rows:
            return sort_bookings(_decode_booking(row) for row in self._rows[room_id])
        return self._store.find_by_room(room_id)

    def delete_by_id(self, booking_id: int) -> bool:
        if self.find_by_id(booking_id) is None:
            return False

        for room_id, rows in self._rows.items():
            for index, row in enumerate(rows):
                if _row_id(row) == booking_id:
                    removed = rows.pop(index)
                    self._dirty.add(room_id)
                    self.events.append(("BOOKING_DELETED", removed))
                    return True
        return False

    def _lock_room(self, room_id: int) -> list[dict[str, Any]]:
        if room_id not in self._held:
            lock = self._store._room_lock(room_id)
            if not lock.acquire(timeout=self._store.lock_timeout):
                logger.warning("Timed out waiting for room lock", extra={"room_id": room_id})
                raise StorageUnavailable("Timed out waiting for the room's booking lock")
            self._held[room_id] = lock
            self._rows[room_id] = self._store._read_rows(self._store._room_file(room_id))
        return self._rows[room_id]

    def _commit(self) -> None:
        for room_id in sorted(self._dirty):
            self._store._write_rows(self._store._room_file(room_id), self._rows[room_id])
        self._dirty.clear()

    def _release(self) -> None:
        for lock in self._held.values():
            lock.release()
        self._held.clear()
        self._rows.clear()


class YamlBookingStore:
    def __init__(
        self,
        base_dir: str | Path = "data",
        clock: Callable[[], datetime] | None = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ) -> None:
        self.base_dir = Path(base_dir).resolve()
        self.bookings_dir = self.base_dir / "bookings"
        self.rooms_file = self.base_dir / "rooms.yaml"
        self.sequence_file = self.base_dir / "sequence.yaml"
        self.log_file = self.base_dir / "booking_events.yaml"
        self.lock_timeout = lock_timeout
        self._clock: Callable[[], datetime] = clock or (lambda: datetime.now(timezone.utc))
        self._rooms_lock = _shared_lock(self.base_dir, "rooms")
        self._sequence_lock = _shared_lock(self.base_dir, "sequence")
        self._events_lock = _shared_lock(self.base_dir, "events")
        self._ensure_files()

    def _ensure_files(self) -> None:
        try:
            self.bookings_dir.mkdir(parents=True, exist_ok=True)
            if not self.rooms_file.exists():
                self.rooms_file.write_text("[]\n", encoding="utf-8")
            # The event log is append-only; an empty file is an empty list.
            self.log_file.touch(exist_ok=True)
            if not self.sequence_file.exists():
                self.sequence_file.write_text("{}\n", encoding="utf-8")
        except OSError as error:
            logger.error("Failed to initialize data directory %s: %s", self.base_dir, error)
            raise StorageUnavailable("Booking storage could not be initialized") from error

    # Rooms

    def room_exists(self, room_id: int) -> bool:
        return self.get_room(room_id) is not None

    def get_room(self, room_id: int) -> Room | None:
        for room in self.list_rooms():
            if room.room_id == room_id:
                return room
        return None

    def list_rooms(self) -> list[Room]:
        rows = self._read_rows(self.rooms_file)
        return sorted((_decode_room(row) for row in rows), key=lambda room: room.room_id)

    def add_room(self, name: str) -> Room:
        created = self._insert_rooms([name], ignore_existing=False)
        return created[0]

    def seed_rooms(self, names: Iterable[str] = DEFAULT_ROOM_NAMES) -> list[Room]:
        """Create the named rooms, skipping names that already exist."""
        return self._insert_rooms(list(names), ignore_existing=True)

    def _insert_rooms(self, names: list[str], ignore_existing: bool) -> list[Room]:
        normalized_names = [_normalize_room_name(name) for name in names]
        created: list[Room] = []
        with self._acquire(self._rooms_lock, "rooms"):
            rows = self._read_rows(self.rooms_file)
            taken = {str(row.get("name")) for row in rows}
            for name in normalized_names:
                if name in taken:
                    if ignore_existing:
                        continue
                    raise ValidationError(f"Room name already exists: {name}")
                room = Room(room_id=self._allocate_room_id(), name=name)
                rows.append(room.to_dict())
                taken.add(name)
                created.append(room)
            if created:
                self._write_rows(self.rooms_file, rows)

        for room in created:
            self._log_event("ROOM_CREATED", room.to_dict())
        return created

    # Bookings

    def insert(self, room_id: int, start: datetime, end: datetime) -> Booking:
        with self.transaction() as txn:
            return txn.insert(room_id, start, end)

    def find_by_id(self, booking_id: int) -> Booking | None:
        with self.transaction() as txn:
            return txn.find_by_id(booking_id)

    def find_by_room(self, room_id: int) -> list[Booking]:
        rows = self._read_rows(self._room_file(room_id))
        return sort_bookings(_decode_booking(row) for row in rows)

    def delete_by_id(self, booking_id: int) -> bool:
        with self.transaction() as txn:
            return txn.delete_by_id(booking_id)

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        txn = StoreTransaction(self)
        try:
            yield txn
            txn._commit()
        finally:
            txn._release()

        for event_type, payload in txn.events:
            self._log_event(event_type, payload)

    def with_transaction(self, fn: Callable[[StoreTransaction], T]) -> T:
        with self.transaction() as txn:
            return fn(txn)

    def ping(self) -> bool:
        try:
            self.list_rooms()
        except StorageUnavailable:
            return False
        return self.bookings_dir.is_dir()

    # Internals

    def _room_file(self, room_id: int) -> Path:
        return self.bookings_dir / f"room-{int(room_id)}.yaml"

    def _room_lock(self, room_id: int) -> threading.Lock:
        return _shared_lock(self.base_dir, f"room:{int(room_id)}")

    @contextmanager
    def _acquire(self, lock: threading.Lock, name: str) -> Iterator[None]:
        if not lock.acquire(timeout=self.lock_timeout):
            logger.warning("Timed out waiting for %s lock", name)
            raise StorageUnavailable("Timed out waiting for booking storage")
        try:
            yield
        finally:
            lock.release()

    def _allocate_booking(self) -> tuple[int, datetime]:
        with self._acquire(self._sequence_lock, "sequence"):
            sequence = self._read_mapping(self.sequence_file)
            booking_id = int(sequence.get("next_booking_id", 1))
            created_at = _as_utc(self._clock())
            last_created_at = sequence.get("last_created_at")
            if last_created_at:
                created_at = max(created_at, _as_utc(datetime.fromisoformat(str(last_created_at))))

            sequence["next_booking_id"] = booking_id + 1
            sequence["last_created_at"] = created_at.isoformat()
            self._write_mapping(self.sequence_file, sequence)
        return booking_id, created_at

    def _allocate_room_id(self) -> int:
        with self._acquire(self._sequence_lock, "sequence"):
            sequence = self._read_mapping(self.sequence_file)
            room_id = int(sequence.get("next_room_id", 1))
            sequence["next_room_id"] = room_id + 1
            self._write_mapping(self.sequence_file, sequence)
        return room_id

    def _read_rows(self, path: Path) -> list[dict[str, Any]]:
        payload = self._load_yaml(path)
        if payload is None:
            return []
        if not isinstance(payload, list):
            logger.error("Top-level YAML in %s is not a list", path)
            raise StorageUnavailable("Booking storage is corrupted")

        rows: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                rows.append(row)
            else:
                logger.warning("Skipping non-mapping row %d in %s", index, path.name)
        return rows

    def _read_mapping(self, path: Path) -> dict[str, Any]:
        payload = self._load_yaml(path)
        if payload is None:
            return {}
        if not isinstance(payload, dict):
            logger.error("Top-level YAML in %s is not a mapping", path)
            raise StorageUnavailable("Booking storage is corrupted")
        return payload

    def _load_yaml(self, path: Path) -> Any:
        try:
            return yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            logger.error("Failed to read %s: %s", path, error)
            raise StorageUnavailable("Booking storage could not be read") from error

    def _write_rows(self, path: Path, rows: list[dict[str, Any]]) -> None:
        self._dump_yaml(path, rows)

    def _write_mapping(self, path: Path, payload: dict[str, Any]) -> None:
        self._dump_yaml(path, payload)

    def _dump_yaml(self, path: Path, payload: Any) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(payload, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            logger.error("Failed to write %s: %s", path, error)
            raise StorageUnavailable("Booking storage could not be written") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _log_event(self, event_type: str, payload: dict[str, Any]) -> None:
        timestamp = _as_utc(self._clock()).isoformat(timespec="seconds")
        entry = {"event_time": timestamp, "event_type": event_type, "payload": payload}
        try:
            with self._acquire(self._events_lock, "events"):
                with self.log_file.open("a", encoding="utf-8") as handle:
                    handle.write(yaml.safe_dump([entry], allow_unicode=True, sort_keys=False))
        except (OSError, StorageUnavailable):
            # The change itself is already committed.
            logger.warning("Could not record %s event", event_type, exc_info=True)

    def read_events(self) -> list[dict[str, Any]]:
        """Return the recorded events, oldest first.

        A log that no longer parses is copied aside and replaced by a single
        ``YAML_RECOVERED`` event.
        """
        with self._acquire(self._events_lock, "events"):
            try:
                payload = yaml.safe_load(self.log_file.read_text(encoding="utf-8"))
            except FileNotFoundError:
                return []
            except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
                return self._recover_corrupted_log(error)

            if payload is None:
                return []
            if not isinstance(payload, list):
                return self._recover_corrupted_log(ValueError("top-level YAML is not a list"))
            return [row for row in payload if isinstance(row, dict)]

    def _recover_corrupted_log(self, error: Exception) -> list[dict[str, Any]]:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = self.log_file.with_name(f"{self.log_file.stem}.corrupt.{timestamp}{self.log_file.suffix}")
        try:
            if self.log_file.exists():
                shutil.copy2(self.log_file, backup_path)
        except OSError:
            logger.warning("Could not back up corrupted event log %s", self.log_file, exc_info=True)

        logger.warning("Recovered corrupted event log %s: %s", self.log_file.name, error)
        events = [
            {
                "event_time": _as_utc(self._clock()).isoformat(timespec="seconds"),
                "event_type": "YAML_RECOVERED",
                "payload": {"file": self.log_file.name, "backup": backup_path.name, "reason": str(error)},
            }
        ]
        self._dump_yaml(self.log_file, events)
        return events


def _row_id(row: dict[str, Any]) -> int | None:
    try:
        return int(row["id"])
    except (KeyError, TypeError, ValueError):
        return None


def _decode_booking(row: dict[str, Any]) -> Booking:
    try:
        return Booking.from_dict(row)
    except (KeyError, TypeError, ValueError) as error:
        logger.error("Malformed booking row %r: %s", row, error)
        raise StorageUnavailable("Booking storage is corrupted") from error


def _decode_room(row: dict[str, Any]) -> Room:
    try:
        return Room.from_dict(row)
    except (KeyError, TypeError, ValueError) as error:
        logger.error("Malformed room row %r: %s", row, error)
        raise StorageUnavailable("Booking storage is corrupted") from error


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError("Timestamps must include a timezone offset")
    return value.astimezone(timezone.utc)


def _normalize_room_name(name: str | None) -> str:
    if name is None:
        raise ValueError("room name must not be None")

    normalized = name.strip()
    if not normalized:
        raise ValueError("room name must not be empty")
    return normalized
