from datetime import date, datetime

import pytest

from lingowow.core.time_slots import (
    AvailabilityRange,
    build_time_slot,
    generate_time_slot,
    is_slot_available_for_duration,
    is_slot_overlapping,
    iter_dates,
    parse_time_slot,
    slot_bounds,
    slot_duration_minutes,
)


def test_generate_time_slot_builds_end_from_duration():
    assert generate_time_slot('10:00', 60) == '10:00-11:00'
    assert generate_time_slot('9:30', 45) == '09:30-10:15'


def test_parse_time_slot_rejects_bad_input():
    assert parse_time_slot('10:00-11:30') == (600, 690)
    with pytest.raises(ValueError):
        parse_time_slot('10:00')
    with pytest.raises(ValueError):
        parse_time_slot('11:00-10:00')
    with pytest.raises(ValueError):
        build_time_slot('25:00', '26:00')


def test_overlap_treats_touching_slots_as_free():
    booked = ['10:00-11:00', None, 'garbage']
    assert is_slot_overlapping('10:30-11:30', booked)
    assert not is_slot_overlapping('11:00-12:00', booked)
    assert not is_slot_overlapping('09:00-10:00', booked)


def test_availability_requires_full_containment():
    ranges = [AvailabilityRange('08:00', '12:00')]
    assert is_slot_available_for_duration('10:00-11:00', ranges)
    assert not is_slot_available_for_duration('11:30-12:30', ranges)
    assert not is_slot_available_for_duration('11:00-11:30', ranges, duration_minutes=90)


def test_slot_bounds_and_duration():
    start, end = slot_bounds(date(2025, 1, 6), '10:00-11:00')
    assert start == datetime(2025, 1, 6, 10, 0)
    assert end == datetime(2025, 1, 6, 11, 0)
    assert slot_duration_minutes('10:00-10:45') == 45


def test_iter_dates_is_inclusive():
    days = list(iter_dates(date(2025, 1, 30), date(2025, 2, 2)))
    assert days == [date(2025, 1, 30), date(2025, 1, 31), date(2025, 2, 1), date(2025, 2, 2)]
