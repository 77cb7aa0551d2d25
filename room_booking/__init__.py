from .booking import Booking, Room, find_conflicts, has_time_overlap, sort_bookings
from .errors import (
	BookingConflictError,
	BookingError,
	BookingNotFoundError,
	ErrorKind,
	RoomNotFoundError,
	StorageUnavailable,
	ValidationError,
)
from .service import BookingService
from .validation import DEFAULT_POLICY, ValidationPolicy, is_minute_aligned, validate_booking_window
from .yaml_store import DEFAULT_ROOM_NAMES, StoreTransaction, YamlBookingStore

__all__ = [
	"Booking",
	"Room",
	"find_conflicts",
	"has_time_overlap",
	"sort_bookings",
	"BookingConflictError",
	"BookingError",
	"BookingNotFoundError",
	"ErrorKind",
	"RoomNotFoundError",
	"StorageUnavailable",
	"ValidationError",
	"BookingService",
	"DEFAULT_POLICY",
	"ValidationPolicy",
	"is_minute_aligned",
	"validate_booking_window",
	"DEFAULT_ROOM_NAMES",
	"StoreTransaction",
	"YamlBookingStore",
]
