from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable

WEEKDAY_LABELS = ['Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun']


@dataclass(frozen=True)
class AvailabilityRange:
    start_time: str
    end_time: str


def parse_hhmm(value: str) -> int:
    """Return minutes since midnight for an ``HH:MM`` string."""
    try:
        hh, mm = str(value).strip().split(':', 1)
        hour = int(hh)
        minute = int(mm)
    except (AttributeError, ValueError) as exc:
        raise ValueError('time must be HH:MM') from exc
    if hour < 0 or hour > 23 or minute < 0 or minute > 59:
        raise ValueError('time must be HH:MM')
    return hour * 60 + minute


def format_minutes(total_minutes: int) -> str:
    total_minutes = total_minutes % (24 * 60)
    return f'{total_minutes // 60:02d}:{total_minutes % 60:02d}'


def parse_time_slot(slot: str) -> tuple[int, int]:
    try:
        start_text, end_text = str(slot).split('-', 1)
    except ValueError as exc:
        raise ValueError('time slot must be HH:MM-HH:MM') from exc
    start = parse_hhmm(start_text)
    end = parse_hhmm(end_text)
    if end <= start:
        raise ValueError('time slot must end after it starts')
    return start, end


def build_time_slot(start_time: str, end_time: str) -> str:
    start = parse_hhmm(start_time)
    end = parse_hhmm(end_time)
    if end <= start:
        raise ValueError('time slot must end after it starts')
    return f'{format_minutes(start)}-{format_minutes(end)}'


def generate_time_slot(start_time: str, duration_minutes: int) -> str:
    if duration_minutes <= 0:
        raise ValueError('duration_minutes must be positive')
    start = parse_hhmm(start_time)
    return f'{format_minutes(start)}-{format_minutes(start + duration_minutes)}'


def slot_duration_minutes(slot: str) -> int:
    start, end = parse_time_slot(slot)
    return end - start


def _intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and b_start < a_end


def is_slot_available_for_duration(
    slot: str,
    ranges: Iterable[AvailabilityRange],
    duration_minutes: int | None = None,
) -> bool:
    start, end = parse_time_slot(slot)
    if duration_minutes:
        end = start + duration_minutes
    for item in ranges:
        range_start = parse_hhmm(item.start_time)
        range_end = parse_hhmm(item.end_time)
        if range_start <= start and end <= range_end:
            return True
    return False


def is_slot_overlapping(slot: str, booked_slots: Iterable[str | None]) -> bool:
    start, end = parse_time_slot(slot)
    for booked in booked_slots:
        if not booked:
            continue
        try:
            booked_start, booked_end = parse_time_slot(booked)
        except ValueError:
            continue
        if _intervals_overlap(start, end, booked_start, booked_end):
            return True
    return False


def slot_bounds(day: date, slot: str) -> tuple[datetime, datetime]:
    """Naive local start/end datetimes of a slot on a given day."""
    start, end = parse_time_slot(slot)
    midnight = datetime.combine(day, time(0, 0))
    return midnight + timedelta(minutes=start), midnight + timedelta(minutes=end)


def iter_dates(start: date, end: date):
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
