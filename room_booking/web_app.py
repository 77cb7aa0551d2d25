from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable
import logging

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from .booking import Booking, Room
from .config import Settings, get_settings
from .errors import BookingError, ErrorKind, ValidationError
from .logging_config import configure_logging
from .service import BookingService
from .yaml_store import YamlBookingStore

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.ROOM_NOT_FOUND: 404,
    ErrorKind.BOOKING_NOT_FOUND: 404,
    ErrorKind.BOOKING_CONFLICT: 409,
    ErrorKind.STORAGE_UNAVAILABLE: 503,
    ErrorKind.UNKNOWN: 500,
}

_FAILURE_CONTEXT = {
    "create_booking": "Failed to create booking",
    "list_bookings": "Failed to fetch bookings",
    "delete_booking": "Failed to delete booking",
    "list_rooms": "Failed to fetch rooms",
}


def create_app(
    data_dir: str | Path | None = None,
    now_provider: Callable[[], datetime] | None = None,
    settings: Settings | None = None,
) -> Flask:
    app = Flask(__name__)
    settings = settings or get_settings()
    clock: Callable[[], datetime] = now_provider or (lambda: datetime.now(timezone.utc))

    store = YamlBookingStore(
        data_dir if data_dir is not None else settings.DATA_DIR,
        clock=clock,
        lock_timeout=settings.LOCK_TIMEOUT_SECONDS,
    )
    if settings.SEED_ROOMS:
        store.seed_rooms()

    service = BookingService(store, policy=settings.validation_policy(), clock=clock)
    app.extensions["booking_service"] = service

    @app.post("/rooms/<room_id>/bookings")
    def create_booking(room_id: str) -> Any:
        room_id_value = _parse_id(room_id, "roomId")
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}
        start_raw = payload.get("startTime")
        end_raw = payload.get("endTime")
        if not start_raw or not end_raw:
            raise ValidationError("Missing required fields: startTime, endTime")

        start = _parse_timestamp(start_raw)
        end = _parse_timestamp(end_raw)
        booking = service.create_booking(room_id_value, start, end)
        return jsonify({"ok": True, "booking": _serialize_booking(booking)}), 201

    @app.get("/rooms/<room_id>/bookings")
    def list_bookings(room_id: str) -> Any:
        bookings = service.list_bookings(_parse_id(room_id, "roomId"))
        return jsonify({"ok": True, "bookings": [_serialize_booking(booking) for booking in bookings]})

    @app.delete("/bookings/<booking_id>")
    def delete_booking(booking_id: str) -> Any:
        service.delete_booking(_parse_id(booking_id, "bookingId"))
        return "", 204

    @app.get("/rooms")
    def list_rooms() -> Any:
        return jsonify({"ok": True, "rooms": [_serialize_room(room) for room in service.list_rooms()]})

    @app.get("/health")
    def health() -> Any:
        if store.ping():
            return jsonify({"status": "ok"})
        return jsonify({"status": "unavailable"}), 503

    @app.errorhandler(BookingError)
    def handle_booking_error(error: BookingError) -> Any:
        if error.context is None:
            error = error.with_context(_FAILURE_CONTEXT.get(request.endpoint or "", "Request failed"))
        status = STATUS_BY_KIND.get(error.kind, 500)
        if status >= 500:
            logger.error("Booking request failed: %s", error, extra={"request_path": request.path})
        return jsonify({"ok": False, **error.to_dict()}), status

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception) -> Any:
        if isinstance(error, HTTPException):
            kind = "not_found" if error.code == 404 else "http_error"
            message = "Endpoint not found" if error.code == 404 else (error.description or error.name)
            return jsonify({"ok": False, "error": kind, "message": message}), error.code or 500

        logger.exception("Unhandled error", extra={"request_path": request.path})
        return (
            jsonify(
                {
                    "ok": False,
                    "error": ErrorKind.UNKNOWN.value,
                    "message": "An unexpected error occurred",
                    "context": _FAILURE_CONTEXT.get(request.endpoint or "", "Request failed"),
                }
            ),
            500,
        )

    return app


def _parse_id(raw: str, name: str) -> int:
    # int() would also take "1_0", " 1" and non-ASCII digits.
    if not (raw.isascii() and raw.isdigit()):
        raise ValidationError(f"Invalid {name} parameter")
    return int(raw)


def _parse_timestamp(raw: Any) -> datetime:
    try:
        return datetime.fromisoformat(str(raw))
    except ValueError:
        raise ValidationError("Invalid date format for startTime or endTime") from None


def _serialize_booking(booking: Booking) -> dict[str, Any]:
    return {
        "id": booking.booking_id,
        "roomId": booking.room_id,
        "startTime": booking.start.isoformat(),
        "endTime": booking.end.isoformat(),
        "createdAt": booking.created_at.isoformat(),
    }


def _serialize_room(room: Room) -> dict[str, Any]:
    return {"id": room.room_id, "name": room.name}


def main() -> None:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    app = create_app(settings=settings)
    app.run(host=settings.HOST, port=settings.PORT, debug=False, threaded=True)


if __name__ == "__main__":
    main()
