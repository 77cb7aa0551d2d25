from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from .errors import ValidationError


@dataclass(frozen=True)
class ValidationPolicy:
    """Optional rules applied on top of the ordering check.

    require_future_start: reject windows that start at or before ``now``.
    require_minute_alignment: reject timestamps with seconds or sub-second parts.
    """

    require_future_start: bool = True
    require_minute_alignment: bool = True


DEFAULT_POLICY = ValidationPolicy()


def validate_booking_window(
    start: datetime,
    end: datetime,
    now: datetime,
    policy: ValidationPolicy = DEFAULT_POLICY,
) -> None:
    if not _is_aware(start) or not _is_aware(end):
        raise ValidationError("Start and end time must include a timezone offset")
    if start >= end:
        raise ValidationError("Start time must be before end time")
    if policy.require_future_start and start <= now:
        raise ValidationError("Start time must be in the future")
    if policy.require_minute_alignment and not (is_minute_aligned(start) and is_minute_aligned(end)):
        raise ValidationError("Booking times must be aligned to full minutes")


def is_minute_aligned(value: datetime) -> bool:
    # Offsets may carry seconds, so check the UTC instant.
    if _is_aware(value):
        value = value.astimezone(timezone.utc)
    return value.second == 0 and value.microsecond == 0


def _is_aware(value: datetime) -> bool:
    return value.tzinfo is not None and value.utcoffset() is not None
