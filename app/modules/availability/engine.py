"""Pure slot generation from weekly availability templates."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from uuid import UUID

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

BUSINESS_HOURS = (time(6, 0), time(23, 0))


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Half-open [start, end) range of a day."""

    start: time
    end: time


WeeklyTemplate = Mapping[str, Sequence[TimeWindow]]


@dataclass(frozen=True, slots=True)
class BookedSession:
    """Non-cancelled session expressed in the tutor's local time."""

    id: UUID | None
    day: date
    start: time
    end: time
    tutor_id: UUID
    student_id: UUID | None = None


@dataclass(frozen=True, slots=True)
class Slot:
    day: date
    start: time
    end: time
    available: bool
    tutor_id: UUID
    start_at: datetime
    end_at: datetime


def parse_clock(value: str) -> time:
    """Parse a strict 24h HH:MM string."""
    if not isinstance(value, str):
        raise ValueError("Time must be a HH:MM string")
    parts = value.split(":")
    if len(parts) != 2 or not all(len(part) == 2 and part.isdigit() for part in parts):
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    hours, minutes = int(parts[0]), int(parts[1])
    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid time {value!r}, out of range")
    return time(hours, minutes)


def format_clock(value: time) -> str:
    return value.strftime("%H:%M")


def time_to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def minutes_to_time(minutes: int) -> time:
    if not 0 <= minutes < 24 * 60:
        raise ValueError("Minutes must fall within a single day")
    return time(minutes // 60, minutes % 60)


def iso_week_key(day: date) -> tuple[int, int]:
    iso = day.isocalendar()
    return iso.year, iso.week


def iso_week_bounds(day: date) -> tuple[date, date]:
    """Return the Monday and the following Monday of the ISO week containing `day`."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=7)


def localize(day: date, clock: time, tz: tzinfo) -> datetime:
    """Convert a local wall-clock time of the tutor into a UTC instant."""
    return datetime.combine(day, clock, tzinfo=tz).astimezone(UTC)


def booked_session_from_instants(
    *,
    session_id: UUID | None,
    tutor_id: UUID,
    student_id: UUID | None,
    start_at: datetime,
    end_at: datetime,
    tz: tzinfo,
) -> BookedSession:
    local_start = start_at.astimezone(tz)
    local_end = end_at.astimezone(tz)
    end_clock = local_end.timetz().replace(tzinfo=None)
    if local_end.date() != local_start.date():
        end_clock = time(23, 59)
    return BookedSession(
        id=session_id,
        day=local_start.date(),
        start=local_start.timetz().replace(tzinfo=None),
        end=end_clock,
        tutor_id=tutor_id,
        student_id=student_id,
    )


def windows_for_day(template: WeeklyTemplate, day: date) -> list[TimeWindow]:
    return sorted(template.get(WEEKDAYS[day.weekday()], ()), key=lambda window: window.start)


def fits_availability(template: WeeklyTemplate, day: date, start: time, end: time) -> bool:
    """Whether [start, end) lies entirely inside one window of that weekday."""
    return any(
        window.start <= start and end <= window.end
        for window in windows_for_day(template, day)
    )


def overlaps(start: int, end: int, other_start: int, other_end: int) -> bool:
    return start < other_end and other_start < end


def count_sessions_per_week(sessions: Iterable[BookedSession], tutor_id: UUID) -> Counter:
    return Counter(iso_week_key(session.day) for session in sessions if session.tutor_id == tutor_id)


def generate_slots(
    template: WeeklyTemplate,
    booked_sessions: Sequence[BookedSession],
    start_date: date,
    num_days: int,
    *,
    tutor_id: UUID,
    now: datetime,
    weekly_cap: int | None = None,
    weekly_booked_counts: Mapping[tuple[int, int], int] | None = None,
    buffer_minutes: int = 180,
    slot_minutes: int = 30,
    business_hours: tuple[time, time] = BUSINESS_HOURS,
    tz: tzinfo = UTC,
) -> list[Slot]:
    """Expand a weekly template into ordered slots for `num_days` days.

    Granules starting before ``now + buffer_minutes`` or outside business hours are
    dropped. Remaining granules are returned with ``available=False`` when they
    overlap a booked session of the tutor, or when the ISO week already holds
    ``weekly_cap`` sessions. Week counts default to counting ``booked_sessions``.
    """
    if num_days <= 0:
        return []

    earliest_start = now + timedelta(minutes=buffer_minutes)
    open_from = time_to_minutes(business_hours[0])
    open_until = time_to_minutes(business_hours[1])

    busy_by_day: dict[date, list[tuple[int, int]]] = {}
    for session in booked_sessions:
        if session.tutor_id != tutor_id:
            continue
        busy_by_day.setdefault(session.day, []).append(
            (time_to_minutes(session.start), time_to_minutes(session.end)),
        )

    if weekly_booked_counts is None:
        weekly_booked_counts = count_sessions_per_week(booked_sessions, tutor_id)

    slots: list[Slot] = []
    for offset in range(num_days):
        day = start_date + timedelta(days=offset)
        week_is_full = (
            weekly_cap is not None and weekly_booked_counts.get(iso_week_key(day), 0) >= weekly_cap
        )
        busy = busy_by_day.get(day, ())

        for window in windows_for_day(template, day):
            cursor = time_to_minutes(window.start)
            window_end = time_to_minutes(window.end)
            while cursor + slot_minutes <= window_end:
                granule_start, granule_end = cursor, cursor + slot_minutes
                cursor = granule_end

                if granule_start < open_from or granule_end > open_until:
                    continue

                start_clock = minutes_to_time(granule_start)
                end_clock = minutes_to_time(granule_end % (24 * 60))
                start_at = localize(day, start_clock, tz)
                if start_at < earliest_start:
                    continue

                taken = any(overlaps(granule_start, granule_end, bs, be) for bs, be in busy)
                slots.append(
                    Slot(
                        day=day,
                        start=start_clock,
                        end=end_clock,
                        available=not (taken or week_is_full),
                        tutor_id=tutor_id,
                        start_at=start_at,
                        end_at=start_at + timedelta(minutes=slot_minutes),
                    ),
                )
    return slots


def template_from_json(raw: Mapping[str, Iterable[Mapping[str, str]]]) -> dict[str, tuple[TimeWindow, ...]]:
    """Rebuild a template from its stored (already validated) JSON form."""
    return {
        weekday: tuple(
            TimeWindow(start=parse_clock(item["start"]), end=parse_clock(item["end"]))
            for item in windows
        )
        for weekday, windows in raw.items()
    }


def template_to_json(template: WeeklyTemplate) -> dict[str, list[dict[str, str]]]:
    return {
        weekday: [
            {"start": format_clock(window.start), "end": format_clock(window.end)}
            for window in sorted(windows, key=lambda item: item.start)
        ]
        for weekday, windows in template.items()
    }
