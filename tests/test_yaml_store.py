import tempfile
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path

from room_booking import (
    DEFAULT_ROOM_NAMES,
    BookingConflictError,
    BookingNotFoundError,
    RoomNotFoundError,
    StorageUnavailable,
    ValidationError,
    YamlBookingStore,
)

UTC = timezone.utc
NOW = datetime(2025, 12, 31, 9, 0, tzinfo=UTC)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 1, 1, hour, minute, tzinfo=UTC)


class YamlStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._temp_dir.name) / "data"
        self.store = YamlBookingStore(self.data_dir, clock=lambda: NOW)
        self.room = self.store.add_room("A")

    def tearDown(self) -> None:
        self._temp_dir.cleanup()


class TestRooms(YamlStoreTestCase):
    def test_room_exists(self) -> None:
        self.assertTrue(self.store.room_exists(self.room.room_id))
        self.assertFalse(self.store.room_exists(999))

    def test_room_ids_are_sequential(self) -> None:
        second = self.store.add_room("B")
        self.assertEqual(self.room.room_id, 1)
        self.assertEqual(second.room_id, 2)

    def test_duplicate_room_name_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self.store.add_room("  A ")

    def test_empty_room_name_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.store.add_room("   ")

    def test_seed_rooms_skips_existing_names(self) -> None:
        created = self.store.seed_rooms()
        again = self.store.seed_rooms()

        self.assertEqual([room.name for room in created], list(DEFAULT_ROOM_NAMES))
        self.assertEqual(again, [])
        self.assertEqual(len(self.store.list_rooms()), 1 + len(DEFAULT_ROOM_NAMES))


class TestInsert(YamlStoreTestCase):
    def test_insert_assigns_id_and_created_at(self) -> None:
        booking = self.store.insert(self.room.room_id, _at(10), _at(11))

        self.assertEqual(booking.booking_id, 1)
        self.assertEqual(booking.room_id, self.room.room_id)
        self.assertEqual(booking.created_at, NOW)
        self.assertEqual(self.store.find_by_id(booking.booking_id), booking)

    def test_overlapping_insert_conflicts(self) -> None:
        self.store.insert(self.room.room_id, _at(10), _at(11))

        with self.assertRaises(BookingConflictError):
            self.store.insert(self.room.room_id, _at(10, 30), _at(11, 30))
        with self.assertRaises(BookingConflictError):
            self.store.insert(self.room.room_id, _at(10), _at(11))
        self.assertEqual(len(self.store.find_by_room(self.room.room_id)), 1)

    def test_back_to_back_bookings_are_allowed(self) -> None:
        self.store.insert(self.room.room_id, _at(10), _at(11))
        self.store.insert(self.room.room_id, _at(11), _at(12))
        self.store.insert(self.room.room_id, _at(9), _at(10))

        self.assertEqual(len(self.store.find_by_room(self.room.room_id)), 3)

    def test_same_window_in_other_room_is_allowed(self) -> None:
        other = self.store.add_room("B")
        self.store.insert(self.room.room_id, _at(10), _at(11))
        self.store.insert(other.room_id, _at(10), _at(11))

        self.assertEqual(len(self.store.find_by_room(other.room_id)), 1)

    def test_insert_into_missing_room_fails(self) -> None:
        with self.assertRaises(RoomNotFoundError):
            self.store.insert(999, _at(10), _at(11))

    def test_insert_rejects_naive_timestamps(self) -> None:
        with self.assertRaises(ValidationError):
            self.store.insert(self.room.room_id, datetime(2026, 1, 1, 10, 0), datetime(2026, 1, 1, 11, 0))

    def test_timestamps_are_stored_in_utc(self) -> None:
        offset = timezone(timedelta(hours=2))
        booking = self.store.insert(
            self.room.room_id,
            datetime(2026, 1, 1, 12, 0, tzinfo=offset),
            datetime(2026, 1, 1, 13, 0, tzinfo=offset),
        )

        self.assertEqual(booking.start, _at(10))
        self.assertEqual(booking.start.tzinfo, UTC)
        with self.assertRaises(BookingConflictError):
            self.store.insert(self.room.room_id, _at(10, 30), _at(10, 45))

    def test_created_at_never_goes_backwards(self) -> None:
        ticks = [NOW, NOW - timedelta(minutes=5)]

        def _clock() -> datetime:
            return ticks[0] if len(ticks) == 1 else ticks.pop(0)

        store = YamlBookingStore(self.data_dir, clock=_clock)

        first = store.insert(self.room.room_id, _at(10), _at(11))
        second = store.insert(self.room.room_id, _at(12), _at(13))

        self.assertEqual(second.created_at, first.created_at)

    def test_booking_ids_are_unique_across_rooms(self) -> None:
        other = self.store.add_room("B")
        first = self.store.insert(self.room.room_id, _at(10), _at(11))
        second = self.store.insert(other.room_id, _at(10), _at(11))

        self.assertNotEqual(first.booking_id, second.booking_id)

    def test_logs_created_and_deleted_events(self) -> None:
        booking = self.store.insert(self.room.room_id, _at(10), _at(11))
        self.store.delete_by_id(booking.booking_id)

        event_types = [event["event_type"] for event in self.store.read_events()]
        self.assertEqual(event_types, ["ROOM_CREATED", "BOOKING_CREATED", "BOOKING_DELETED"])

    def test_events_are_appended_without_rewriting_the_log(self) -> None:
        self.store.insert(self.room.room_id, _at(10), _at(11))
        before = self.store.log_file.read_text(encoding="utf-8")

        self.store.insert(self.room.room_id, _at(12), _at(13))

        after = self.store.log_file.read_text(encoding="utf-8")
        self.assertTrue(after.startswith(before))
        self.assertGreater(len(after), len(before))
        self.assertEqual(len(self.store.read_events()), 3)


class TestQueries(YamlStoreTestCase):
    def test_find_by_room_orders_by_start_then_id(self) -> None:
        late = self.store.insert(self.room.room_id, _at(15), _at(16))
        early = self.store.insert(self.room.room_id, _at(8), _at(9))
        middle = self.store.insert(self.room.room_id, _at(11), _at(12))

        bookings = self.store.find_by_room(self.room.room_id)

        self.assertEqual([booking.booking_id for booking in bookings], [early.booking_id, middle.booking_id, late.booking_id])
        for before, after in zip(bookings, bookings[1:]):
            self.assertLessEqual(before.start, after.start)

    def test_find_by_room_for_room_without_bookings(self) -> None:
        self.assertEqual(self.store.find_by_room(self.room.room_id), [])

    def test_find_by_id_missing(self) -> None:
        self.assertIsNone(self.store.find_by_id(42))

    def test_delete_by_id(self) -> None:
        booking = self.store.insert(self.room.room_id, _at(10), _at(11))

        self.assertTrue(self.store.delete_by_id(booking.booking_id))
        self.assertFalse(self.store.delete_by_id(booking.booking_id))
        self.assertIsNone(self.store.find_by_id(booking.booking_id))

    def test_deleted_window_can_be_booked_again(self) -> None:
        booking = self.store.insert(self.room.room_id, _at(10), _at(11))
        self.store.delete_by_id(booking.booking_id)

        rebooked = self.store.insert(self.room.room_id, _at(10), _at(11))
        self.assertNotEqual(rebooked.booking_id, booking.booking_id)

    def test_data_survives_reopening(self) -> None:
        booking = self.store.insert(self.room.room_id, _at(10), _at(11))

        reopened = YamlBookingStore(self.data_dir)

        self.assertEqual(reopened.find_by_id(booking.booking_id), booking)
        self.assertTrue(reopened.room_exists(self.room.room_id))


class TestTransactions(YamlStoreTestCase):
    def test_exception_inside_transaction_rolls_back(self) -> None:
        with self.assertRaises(RuntimeError):
            with self.store.transaction() as txn:
                txn.insert(self.room.room_id, _at(10), _at(11))
                raise RuntimeError("boom")

        self.assertEqual(self.store.find_by_room(self.room.room_id), [])

    def test_domain_error_inside_with_transaction_rolls_back(self) -> None:
        booking = self.store.insert(self.room.room_id, _at(10), _at(11))

        def _delete_then_fail(txn) -> None:
            txn.delete_by_id(booking.booking_id)
            raise BookingNotFoundError(booking.booking_id)

        with self.assertRaises(BookingNotFoundError):
            self.store.with_transaction(_delete_then_fail)

        self.assertEqual(self.store.find_by_id(booking.booking_id), booking)

    def test_transaction_sees_its_own_writes(self) -> None:
        def _insert_and_list(txn):
            self.assertTrue(txn.room_exists(self.room.room_id))
            txn.insert(self.room.room_id, _at(12), _at(13))
            txn.insert(self.room.room_id, _at(10), _at(11))
            return txn.find_by_room(self.room.room_id)

        staged = self.store.with_transaction(_insert_and_list)

        self.assertEqual([booking.start for booking in staged], [_at(10), _at(12)])
        self.assertEqual(len(self.store.find_by_room(self.room.room_id)), 2)

    def test_conflict_is_detected_against_staged_rows(self) -> None:
        with self.assertRaises(BookingConflictError):
            with self.store.transaction() as txn:
                txn.insert(self.room.room_id, _at(10), _at(11))
                txn.insert(self.room.room_id, _at(10, 30), _at(11, 30))

        self.assertEqual(self.store.find_by_room(self.room.room_id), [])


class TestConcurrency(YamlStoreTestCase):
    def test_concurrent_overlapping_inserts_allow_one_success(self) -> None:
        workers = 8
        barrier = threading.Barrier(workers)

        def _attempt(offset: int) -> str:
            barrier.wait()
            try:
                self.store.insert(self.room.room_id, _at(10, offset), _at(11, offset))
            except BookingConflictError:
                return "conflict"
            return "created"

        with ThreadPoolExecutor(max_workers=workers) as executor:
            outcomes = list(executor.map(_attempt, range(workers)))

        self.assertEqual(outcomes.count("created"), 1)
        self.assertEqual(outcomes.count("conflict"), workers - 1)
        self.assertEqual(len(self.store.find_by_room(self.room.room_id)), 1)

    def test_separate_store_instances_share_room_locks(self) -> None:
        stores = [YamlBookingStore(self.data_dir, clock=lambda: NOW) for _ in range(4)]
        barrier = threading.Barrier(len(stores))

        def _attempt(store: YamlBookingStore) -> bool:
            barrier.wait()
            try:
                store.insert(self.room.room_id, _at(10), _at(11))
            except BookingConflictError:
                return False
            return True

        with ThreadPoolExecutor(max_workers=len(stores)) as executor:
            outcomes = list(executor.map(_attempt, stores))

        self.assertEqual(outcomes.count(True), 1)

    def test_concurrent_deletes_of_same_booking(self) -> None:
        booking = self.store.insert(self.room.room_id, _at(10), _at(11))
        workers = 4
        barrier = threading.Barrier(workers)

        def _attempt(_: int) -> bool:
            barrier.wait()
            return self.store.delete_by_id(booking.booking_id)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            outcomes = list(executor.map(_attempt, range(workers)))

        self.assertEqual(outcomes.count(True), 1)

    def test_locked_room_does_not_block_other_rooms(self) -> None:
        other = self.store.add_room("B")
        store = YamlBookingStore(self.data_dir, clock=lambda: NOW, lock_timeout=0.05)

        with store.transaction() as txn:
            txn.insert(self.room.room_id, _at(10), _at(11))
            created = store.insert(other.room_id, _at(10), _at(11))

        self.assertEqual(created.room_id, other.room_id)

    def test_lock_timeout_raises_storage_unavailable(self) -> None:
        store = YamlBookingStore(self.data_dir, clock=lambda: NOW, lock_timeout=0.05)
        lock = store._room_lock(self.room.room_id)
        lock.acquire()
        try:
            with self.assertRaises(StorageUnavailable):
                store.insert(self.room.room_id, _at(10), _at(11))
        finally:
            lock.release()

        self.assertEqual(store.insert(self.room.room_id, _at(10), _at(11)).room_id, self.room.room_id)


class TestStorageFailures(YamlStoreTestCase):
    def test_corrupted_booking_file_is_reported_not_reset(self) -> None:
        self.store.insert(self.room.room_id, _at(10), _at(11))
        room_file = self.data_dir / "bookings" / f"room-{self.room.room_id}.yaml"
        room_file.write_text("- [unclosed\n", encoding="utf-8")

        with self.assertRaises(StorageUnavailable) as context:
            self.store.insert(self.room.room_id, _at(12), _at(13))

        self.assertNotIn(str(self.data_dir), context.exception.message)
        self.assertEqual(room_file.read_text(encoding="utf-8"), "- [unclosed\n")

    def test_non_list_rooms_file_is_reported(self) -> None:
        self.store.rooms_file.write_text("name: A\n", encoding="utf-8")

        with self.assertRaises(StorageUnavailable):
            self.store.room_exists(self.room.room_id)
        self.assertFalse(self.store.ping())

    def test_malformed_booking_row_is_reported(self) -> None:
        room_file = self.data_dir / "bookings" / f"room-{self.room.room_id}.yaml"
        room_file.write_text(f"- {{id: 1, room_id: {self.room.room_id}}}\n", encoding="utf-8")

        with self.assertRaises(StorageUnavailable) as context:
            self.store.insert(self.room.room_id, _at(10), _at(11))
        self.assertEqual(context.exception.message, "Booking storage is corrupted")
        with self.assertRaises(StorageUnavailable):
            self.store.find_by_room(self.room.room_id)
        with self.assertRaises(StorageUnavailable):
            self.store.find_by_id(1)

    def test_booking_row_with_bad_timestamp_is_reported(self) -> None:
        room_file = self.data_dir / "bookings" / f"room-{self.room.room_id}.yaml"
        room_file.write_text(
            f"- {{id: 1, room_id: {self.room.room_id}, start: soon, end: later, created_at: now}}\n",
            encoding="utf-8",
        )

        with self.assertRaises(StorageUnavailable):
            self.store.find_by_room(self.room.room_id)

    def test_malformed_room_row_is_reported(self) -> None:
        self.store.rooms_file.write_text("- {name: Orphan}\n", encoding="utf-8")

        with self.assertRaises(StorageUnavailable):
            self.store.list_rooms()
        self.assertFalse(self.store.ping())

    def test_corrupted_event_log_is_recovered(self) -> None:
        self.store.log_file.write_text("- [unclosed\n", encoding="utf-8")

        self.store.insert(self.room.room_id, _at(10), _at(11))
        recovered = self.store.read_events()

        self.assertEqual([event["event_type"] for event in recovered], ["YAML_RECOVERED"])
        backups = list(self.data_dir.glob("booking_events.corrupt.*.yaml"))
        self.assertEqual(len(backups), 1)
        self.assertIn("BOOKING_CREATED", backups[0].read_text(encoding="utf-8"))

        self.store.insert(self.room.room_id, _at(12), _at(13))
        event_types = [event["event_type"] for event in self.store.read_events()]
        self.assertEqual(event_types, ["YAML_RECOVERED", "BOOKING_CREATED"])

    def test_ping_reports_healthy_store(self) -> None:
        self.assertTrue(self.store.ping())


if __name__ == "__main__":
    unittest.main()
