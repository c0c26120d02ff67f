"""Appointment scheduling rules.

Plain functions with no database access: the routes fetch rows and pass them
in, which keeps these rules testable without an app context.
"""
from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta

APPOINTMENT_STATUS = ("scheduled", "confirmed", "in_progress", "completed", "cancelled")
ACTIVE_STATUSES = ("scheduled", "confirmed", "in_progress")

STATUS_FLOW: dict[str, tuple[str, ...]] = {
    "scheduled": ("confirmed", "cancelled"),
    "confirmed": ("in_progress", "cancelled"),
    "in_progress": ("completed", "cancelled"),
    "completed": (),
    "cancelled": (),
}

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DEFAULT_OPERATING_HOURS: dict[str, dict[str, object]] = {
    "monday": {"open": "09:00", "close": "18:00", "is_open": True},
    "tuesday": {"open": "09:00", "close": "18:00", "is_open": True},
    "wednesday": {"open": "09:00", "close": "18:00", "is_open": True},
    "thursday": {"open": "09:00", "close": "18:00", "is_open": True},
    "friday": {"open": "09:00", "close": "18:00", "is_open": True},
    "saturday": {"open": "09:00", "close": "17:00", "is_open": True},
    "sunday": {"open": "10:00", "close": "16:00", "is_open": True},
}

NOTES_MAX_LENGTH = 500
NAME_MAX_LENGTH = 100
ADDRESS_MAX_LENGTH = 200

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
_PHONE_RE = re.compile(r"^[\+]?[1-9][\d]{0,15}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class ValidationError(ValueError):
    """Raised when input breaks a scheduling or billing rule."""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


def is_valid_status_transition(current: str, new: str) -> bool:
    return new in STATUS_FLOW.get(current, ())


def parse_date(value) -> date:
    """Parse a strict ``YYYY-MM-DD`` string."""
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise ValueError("date must be in YYYY-MM-DD format")
    return date.fromisoformat(value)


def parse_time(value) -> time:
    """Parse ``HH:MM`` (hour may be one digit)."""
    if not isinstance(value, str) or not _TIME_RE.match(value):
        raise ValueError("time must be in HH:MM format")
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def parse_id(value) -> int:
    """Parse a positive integer id from an int or a digit string."""
    if isinstance(value, bool):
        raise ValueError("id must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str) and value.strip().isdigit():
        result = int(value.strip())
    else:
        raise ValueError("id must be an integer")
    if result <= 0:
        raise ValueError("id must be positive")
    return result


def weekday_name(value: date) -> str:
    return WEEKDAYS[value.weekday()]


def format_time(value: time) -> str:
    return value.strftime("%H:%M")


def format_time_12h(value: time) -> str:
    """Format as ``9:30 AM`` for notification text."""
    hour = value.hour % 12 or 12
    suffix = "PM" if value.hour >= 12 else "AM"
    return f"{hour}:{value.minute:02d} {suffix}"


def is_valid_phone(phone: str) -> bool:
    return bool(_PHONE_RE.match(re.sub(r"[\s\-\(\)]", "", phone)))


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email))


def validate_client_info(client_info: dict) -> list[str]:
    errors: list[str] = []

    name = client_info.get("name") or ""
    if not isinstance(name, str):
        errors.append("Client name must be a string")
    elif not name.strip():
        errors.append("Client name is required")
    elif len(name.strip()) > NAME_MAX_LENGTH:
        errors.append("Client name must be less than 100 characters")

    phone = client_info.get("phone")
    if phone and not is_valid_phone(str(phone)):
        errors.append("Invalid phone number format")

    email = client_info.get("email")
    if email and not is_valid_email(str(email)):
        errors.append("Invalid email format")

    address = client_info.get("address")
    if address and not isinstance(address, str):
        errors.append("Address must be a string")
    elif address and len(address) > ADDRESS_MAX_LENGTH:
        errors.append("Address must be less than 200 characters")

    return errors


def validate_appointment_data(payload: dict, now: datetime) -> tuple[list[str], list[str]]:
    """Check an appointment payload and return ``(errors, warnings)``.

    ``now`` is a naive local datetime compared against the requested slot.
    """
    errors: list[str] = []
    warnings: list[str] = []

    appointment_date = None
    appointment_time = None

    raw_date = payload.get("appointment_date")
    if not raw_date:
        errors.append("appointment_date is required")
    else:
        try:
            appointment_date = parse_date(raw_date)
        except ValueError:
            errors.append("appointment_date must be a valid date in YYYY-MM-DD format")

    raw_time = payload.get("appointment_time")
    if not raw_time:
        errors.append("appointment_time is required")
    else:
        try:
            appointment_time = parse_time(raw_time)
        except ValueError:
            errors.append("appointment_time must be a valid time in HH:MM format")

    if not payload.get("branch_id"):
        errors.append("branch_id is required")

    if not payload.get("stylist_id"):
        errors.append("stylist_id is required")

    service_ids = payload.get("service_ids")
    if not isinstance(service_ids, list) or not service_ids:
        errors.append("service_ids is required and must be a non-empty array")
    else:
        try:
            for raw in service_ids:
                parse_id(raw)
        except ValueError:
            errors.append("service_ids must contain only integer ids")

    client_info = payload.get("client_info")
    if client_info and not isinstance(client_info, dict):
        errors.append("client_info must be an object")
        client_info = None

    client_name = payload.get("client_name")
    if client_name and not isinstance(client_name, str):
        errors.append("client_name must be a string")

    if payload.get("is_new_client"):
        if not client_name and not (client_info or {}).get("name"):
            errors.append("client_name is required for new clients")
    elif not payload.get("client_id"):
        errors.append("client_id is required for existing clients")

    if client_info:
        errors.extend(validate_client_info(client_info))

    if appointment_date and appointment_time:
        starts_at = datetime.combine(appointment_date, appointment_time)
        if starts_at <= now:
            errors.append("Appointment must be scheduled in the future")
        if appointment_time.hour < 9 or appointment_time.hour > 21:
            warnings.append("Appointment is outside normal business hours (9 AM - 9 PM)")

    notes = payload.get("notes")
    if notes and not isinstance(notes, str):
        errors.append("notes must be a string")
    elif notes and len(notes) > NOTES_MAX_LENGTH:
        warnings.append("Notes exceed recommended length of 500 characters")

    return errors, warnings


def _clip(value, limit: int) -> str:
    return (value or "").strip()[:limit]


def sanitize_appointment_data(payload: dict) -> dict:
    sanitized = dict(payload)

    if sanitized.get("notes"):
        sanitized["notes"] = _clip(sanitized["notes"], NOTES_MAX_LENGTH)

    if sanitized.get("client_name"):
        sanitized["client_name"] = _clip(sanitized["client_name"], NAME_MAX_LENGTH)

    if sanitized.get("client_info"):
        info = sanitized["client_info"]
        sanitized["client_info"] = {
            **info,
            "name": _clip(info.get("name"), NAME_MAX_LENGTH),
            "phone": str(info.get("phone") or "").strip(),
            "email": str(info.get("email") or "").strip().lower(),
            "address": _clip(info.get("address"), ADDRESS_MAX_LENGTH),
        }

    if isinstance(sanitized.get("service_ids"), list):
        seen: list[int] = []
        for raw in sanitized["service_ids"]:
            try:
                service_id = parse_id(raw)
            except ValueError:
                continue
            if service_id not in seen:
                seen.append(service_id)
        sanitized["service_ids"] = seen

    return sanitized


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def check_branch_hours(operating_hours, appointment_date: date, start: time, duration_minutes: int):
    """Return an error message when the slot falls outside branch hours."""
    if not operating_hours:
        return None

    day = weekday_name(appointment_date)
    day_hours = operating_hours.get(day) or {}
    if not day_hours.get("is_open"):
        return f"Branch is closed on {day.capitalize()}"

    open_at = parse_time(day_hours["open"])
    close_at = parse_time(day_hours["close"])
    start_minutes = _minutes(start)
    if start_minutes < _minutes(open_at) or start_minutes + duration_minutes > _minutes(close_at):
        return (
            f"Appointment time must be between {day_hours['open']} and "
            f"{day_hours['close']} on {day.capitalize()}"
        )
    return None


def check_stylist_availability(schedules, appointment_date: date, start: time, end: time):
    """Return an error message when the stylist is not scheduled for the slot.

    Stylists without any schedule rows are treated as always available.
    """
    if not schedules:
        return None

    day = weekday_name(appointment_date)
    row = next((s for s in schedules if s.day_of_week == day), None)
    if row is None:
        return "Stylist is not scheduled for this day"
    # end may wrap past midnight for long bookings
    if start < row.start_time or end > row.end_time or end <= start:
        return "Appointment falls outside stylist working hours"
    return None


def find_conflicts(appointments, starts_at: datetime, ends_at: datetime, exclude_id=None) -> list:
    """Active appointments overlapping ``[starts_at, ends_at)``."""
    return [
        appt
        for appt in appointments
        if appt.status in ACTIVE_STATUSES
        and appt.appointment_id != exclude_id
        and appt.starts_at < ends_at
        and appt.ends_at > starts_at
    ]


def leave_blocks(leaves, appointment_date: date, start: time, end: time):
    """Return the approved leave covering the slot, if any."""
    for leave in leaves:
        if leave.status != "approved":
            continue
        if not (leave.start_date <= appointment_date <= leave.end_date):
            continue
        if leave.is_full_day or not leave.start_time or not leave.end_time:
            return leave
        if leave.start_time < end and leave.end_time > start:
            return leave
    return None


def generate_slots(open_at: time, close_at: time, step_minutes: int, duration_minutes: int) -> list[time]:
    """Candidate start times that let the whole service finish by close."""
    slots: list[time] = []
    current = _minutes(open_at)
    close = _minutes(close_at)
    while current + duration_minutes <= close:
        slots.append(time(current // 60, current % 60))
        current += step_minutes
    return slots


def available_slots(
    target_date: date,
    duration_minutes: int,
    operating_hours=None,
    schedules=None,
    appointments=(),
    leaves=(),
    step_minutes: int = 30,
    now: datetime | None = None,
) -> list[str]:
    """Bookable ``HH:MM`` start times for one stylist on ``target_date``."""
    day = weekday_name(target_date)

    open_at, close_at = time(0, 0), time(23, 59)
    if operating_hours:
        day_hours = operating_hours.get(day) or {}
        if not day_hours.get("is_open"):
            return []
        open_at, close_at = parse_time(day_hours["open"]), parse_time(day_hours["close"])

    if schedules:
        row = next((s for s in schedules if s.day_of_week == day), None)
        if row is None:
            return []
        open_at = max(open_at, row.start_time)
        close_at = min(close_at, row.end_time)
    elif not operating_hours:
        open_at, close_at = parse_time(DEFAULT_OPERATING_HOURS[day]["open"]), parse_time(
            DEFAULT_OPERATING_HOURS[day]["close"]
        )

    result: list[str] = []
    for slot in generate_slots(open_at, close_at, step_minutes, duration_minutes):
        starts_at = datetime.combine(target_date, slot)
        ends_at = starts_at + timedelta(minutes=duration_minutes)
        if now is not None and starts_at <= now:
            continue
        if find_conflicts(appointments, starts_at, ends_at):
            continue
        if leave_blocks(leaves, target_date, slot, ends_at.time()):
            continue
        result.append(format_time(slot))
    return result


LEAVE_TYPES = ("personal", "sick", "vacation", "emergency", "other")
LEAVE_STATUS = ("pending", "approved", "denied", "cancelled")


def date_ranges_overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    return start_a <= end_b and end_a >= start_b


def validate_leave_data(payload: dict, today: date) -> tuple[list[str], dict]:
    """Check a leave request payload.

    Returns ``(errors, cleaned)`` where ``cleaned`` carries parsed dates and
    times for the fields that were valid.
    """
    errors: list[str] = []
    cleaned: dict[str, object] = {}

    if not payload.get("employee_id"):
        errors.append("Employee ID is required")
    if not payload.get("branch_id"):
        errors.append("Branch ID is required")
    else:
        try:
            cleaned["branch_id"] = parse_id(payload["branch_id"])
        except ValueError:
            errors.append("Branch ID must be an integer")

    leave_type = payload.get("leave_type")
    if not leave_type:
        errors.append("Leave type is required")
    elif leave_type not in LEAVE_TYPES:
        errors.append(f"Leave type must be one of: {', '.join(LEAVE_TYPES)}")
    else:
        cleaned["leave_type"] = leave_type

    for field, label in (("start_date", "Start date"), ("end_date", "End date")):
        raw = payload.get(field)
        if not raw:
            errors.append(f"{label} is required")
            continue
        try:
            cleaned[field] = parse_date(raw)
        except ValueError:
            errors.append(f"{label} must be in YYYY-MM-DD format")

    start, end = cleaned.get("start_date"), cleaned.get("end_date")
    if start and end:
        if start > end:
            errors.append("Start date cannot be after end date")
        if start < today:
            errors.append("Leave cannot be requested for past dates")

    is_full_day = payload.get("is_full_day", True) is not False
    cleaned["is_full_day"] = is_full_day
    if not is_full_day:
        raw_start, raw_end = payload.get("start_time"), payload.get("end_time")
        if not raw_start or not raw_end:
            errors.append("Start time and end time are required for partial day leaves")
        else:
            try:
                start_time, end_time = parse_time(raw_start), parse_time(raw_end)
            except ValueError:
                errors.append("Leave times must be in HH:MM format")
            else:
                if start_time >= end_time:
                    errors.append("Start time must be before end time")
                cleaned["start_time"], cleaned["end_time"] = start_time, end_time

    reason = payload.get("reason") or ""
    reason = reason.strip() if isinstance(reason, str) else ""
    if not reason:
        errors.append("Reason for leave is required")
    cleaned["reason"] = reason

    return errors, cleaned
