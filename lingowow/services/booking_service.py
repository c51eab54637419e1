"""Recurring class booking generation.

An enrollment's weekly schedule is expanded into one ``ClassBooking`` per
matching weekday of its academic period. Bookings are keyed by
(teacher, day, time slot); existing rows are reused or reported instead of
duplicated, so running the generator twice never creates extra classes.
"""
from __future__ import annotations

import hashlib
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lingowow.core.errors import ConflictError, NotFoundError, SafePermissionError
from lingowow.core.time_provider import TimeProvider, default_time_provider, local_naive
from lingowow.core.time_slots import (
    WEEKDAY_LABELS,
    AvailabilityRange,
    build_time_slot,
    is_slot_available_for_duration,
    is_slot_overlapping,
    iter_dates,
    parse_time_slot,
    slot_bounds,
)
from lingowow.metrics import timed_service
from lingowow.models import (
    BookingStatus,
    ClassBooking,
    ClassSchedule,
    Enrollment,
    EnrollmentStatus,
    Role,
    TeacherAvailability,
    User,
)


logger = logging.getLogger(__name__)

ACTIVE_BOOKING_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value)


@dataclass(frozen=True, order=True)
class ScheduleSlot:
    day_of_week: int
    start_time: str
    end_time: str
    teacher_id: int

    @property
    def time_slot(self) -> str:
        return build_time_slot(self.start_time, self.end_time)


@dataclass
class GenerationResult:
    enrollment_id: int
    created: int = 0
    reactivated: int = 0
    kept: int = 0
    cancelled: int = 0
    unchanged: bool = False
    skipped: list[dict] = field(default_factory=list)
    bookings: list[ClassBooking] = field(default_factory=list)


@dataclass
class _Plan:
    enrollment: Enrollment
    slots: list[ScheduleSlot]
    window_start: date
    window_end: date
    schedule_key: str
    now: datetime


def normalize_slots(slots: Iterable) -> list[ScheduleSlot]:
    """Validate raw slots and return them sorted by weekday and start time.

    Accepts ``ScheduleSlot`` instances, mappings or objects exposing
    ``teacher_id``, ``day_of_week``, ``start_time`` and ``end_time``.
    """
    normalized: list[ScheduleSlot] = []
    for raw in slots or []:
        if isinstance(raw, ScheduleSlot):
            item = raw
        else:
            getter = raw.get if isinstance(raw, dict) else (lambda key, _raw=raw: getattr(_raw, key, None))
            try:
                teacher_id = int(getter('teacher_id') or 0)
                day_of_week = int(getter('day_of_week'))
            except (TypeError, ValueError) as exc:
                raise ValueError('Horario inválido') from exc
            item = ScheduleSlot(
                day_of_week=day_of_week,
                start_time=str(getter('start_time') or ''),
                end_time=str(getter('end_time') or ''),
                teacher_id=teacher_id,
            )
        if item.teacher_id <= 0:
            raise ValueError('Cada horario debe indicar un profesor')
        if item.day_of_week < 0 or item.day_of_week > 6:
            raise ValueError('Día de la semana inválido')
        start, end = item.time_slot.split('-')
        normalized.append(ScheduleSlot(item.day_of_week, start, end, item.teacher_id))
    normalized.sort()

    by_day: dict[int, list[str]] = defaultdict(list)
    for item in normalized:
        if is_slot_overlapping(item.time_slot, by_day[item.day_of_week]):
            raise ValueError(f'Los horarios se superponen el día {WEEKDAY_LABELS[item.day_of_week]}')
        by_day[item.day_of_week].append(item.time_slot)
    return normalized


def schedule_fingerprint(period_id: int, slots: list[ScheduleSlot]) -> str:
    payload = json.dumps(
        {
            'period_id': period_id,
            'slots': [[s.teacher_id, s.day_of_week, s.start_time, s.end_time] for s in slots],
        },
        separators=(',', ':'),
    )
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()


def _check_teachers(db: Session, slots: list[ScheduleSlot]) -> None:
    teacher_ids = sorted({s.teacher_id for s in slots})
    teachers = {
        row.id: row
        for row in db.query(User).filter(User.id.in_(teacher_ids), User.role == Role.TEACHER.value).all()
    }
    availability: dict[int, dict[int, list[AvailabilityRange]]] = defaultdict(lambda: defaultdict(list))
    rows = db.query(TeacherAvailability).filter(TeacherAvailability.teacher_id.in_(teacher_ids)).all()
    for row in rows:
        availability[row.teacher_id][row.day_of_week].append(AvailabilityRange(row.start_time, row.end_time))

    for slot in slots:
        if slot.teacher_id not in teachers:
            raise NotFoundError('Profesor no encontrado')
        declared = availability.get(slot.teacher_id)
        if not declared:
            continue
        if not is_slot_available_for_duration(slot.time_slot, declared.get(slot.day_of_week, [])):
            raise ValueError(
                f'El profesor no está disponible el día {WEEKDAY_LABELS[slot.day_of_week]} en el horario {slot.time_slot}'
            )


def _prepare(db: Session, enrollment_id: int, slots: Iterable, time_provider: TimeProvider) -> _Plan:
    enrollment = db.query(Enrollment).filter(Enrollment.id == enrollment_id).first()
    if not enrollment:
        raise NotFoundError('Inscripción no encontrada')
    if enrollment.status == EnrollmentStatus.CANCELLED.value:
        raise ValueError('La inscripción está cancelada')
    period = enrollment.academic_period
    if period is None:
        raise ValueError('La inscripción no tiene un período académico')
    window_start = max(time_provider.today(), period.start_date)
    if window_start > period.end_date:
        raise ValueError('El período académico ya finalizó')
    normalized = normalize_slots(slots)
    if not normalized:
        raise ValueError('Debe seleccionar al menos un horario')
    _check_teachers(db, normalized)
    return _Plan(
        enrollment=enrollment,
        slots=normalized,
        window_start=window_start,
        window_end=period.end_date,
        schedule_key=schedule_fingerprint(period.id, normalized),
        now=local_naive(time_provider.now()),
    )


def _active_bookings(db: Session, enrollment_id: int) -> list[ClassBooking]:
    return (
        db.query(ClassBooking)
        .filter(
            ClassBooking.enrollment_id == enrollment_id,
            ClassBooking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
        .order_by(ClassBooking.day.asc(), ClassBooking.time_slot.asc())
        .all()
    )


def _student_slots_on(db: Session, student_id: int, day: date, exclude_id: int | None = None) -> list[str]:
    query = db.query(ClassBooking.time_slot).filter(
        ClassBooking.student_id == student_id,
        ClassBooking.day == day,
        ClassBooking.status != BookingStatus.CANCELLED.value,
    )
    if exclude_id:
        query = query.filter(ClassBooking.id != exclude_id)
    return [row[0] for row in query.all()]


def _teacher_slots_on(db: Session, teacher_id: int, day: date) -> list[str]:
    rows = (
        db.query(ClassBooking.time_slot)
        .filter(
            ClassBooking.teacher_id == teacher_id,
            ClassBooking.day == day,
            ClassBooking.status != BookingStatus.CANCELLED.value,
        )
        .all()
    )
    return [row[0] for row in rows]


def _starts_after(day: date, time_slot: str, moment: datetime) -> bool:
    start, _ = slot_bounds(day, time_slot)
    return start > moment


def _skip(result: GenerationResult, day: date, slot: ScheduleSlot, reason: str) -> None:
    result.skipped.append({'day': day.isoformat(), 'time_slot': slot.time_slot, 'teacher_id': slot.teacher_id, 'reason': reason})


def _write_bookings(db: Session, plan: _Plan, result: GenerationResult) -> None:
    enrollment = plan.enrollment
    for day in iter_dates(plan.window_start, plan.window_end):
        for slot in plan.slots:
            if slot.day_of_week != day.weekday():
                continue
            time_slot = slot.time_slot
            if not _starts_after(day, time_slot, plan.now):
                continue
            existing = (
                db.query(ClassBooking)
                .filter(
                    ClassBooking.teacher_id == slot.teacher_id,
                    ClassBooking.day == day,
                    ClassBooking.time_slot == time_slot,
                )
                .first()
            )
            if existing is not None:
                if existing.status != BookingStatus.CANCELLED.value:
                    if existing.enrollment_id == enrollment.id:
                        result.kept += 1
                    else:
                        _skip(result, day, slot, 'slot_taken')
                    continue
                if is_slot_overlapping(time_slot, _student_slots_on(db, enrollment.student_id, day, exclude_id=existing.id)):
                    _skip(result, day, slot, 'student_overlap')
                    continue
                if existing.enrollment_id != enrollment.id and is_slot_overlapping(
                    time_slot, _teacher_slots_on(db, slot.teacher_id, day)
                ):
                    _skip(result, day, slot, 'teacher_overlap')
                    continue
                # A freed slot is handed over to whichever enrollment books it next.
                existing.enrollment_id = enrollment.id
                existing.student_id = enrollment.student_id
                existing.status = BookingStatus.CONFIRMED.value
                existing.cancelled_at = None
                existing.cancelled_by = None
                db.flush()
                result.reactivated += 1
                continue

            if is_slot_overlapping(time_slot, _student_slots_on(db, enrollment.student_id, day)):
                _skip(result, day, slot, 'student_overlap')
                continue
            if is_slot_overlapping(time_slot, _teacher_slots_on(db, slot.teacher_id, day)):
                _skip(result, day, slot, 'teacher_overlap')
                continue
            db.add(
                ClassBooking(
                    teacher_id=slot.teacher_id,
                    student_id=enrollment.student_id,
                    enrollment_id=enrollment.id,
                    day=day,
                    time_slot=time_slot,
                    status=BookingStatus.CONFIRMED.value,
                )
            )
            db.flush()
            result.created += 1


def cancel_upcoming_bookings(db: Session, enrollment_id: int, now: datetime, cancelled_by: str) -> int:
    """Cancel CONFIRMED bookings of an enrollment that have not started yet.

    Classes already under way or finished today stay CONFIRMED so the
    completion job and payroll still see them. Does not commit.
    """
    rows = (
        db.query(ClassBooking)
        .filter(
            ClassBooking.enrollment_id == enrollment_id,
            ClassBooking.status == BookingStatus.CONFIRMED.value,
            ClassBooking.day >= now.date(),
        )
        .all()
    )
    cancelled = 0
    for row in rows:
        if not _starts_after(row.day, row.time_slot, now):
            continue
        row.status = BookingStatus.CANCELLED.value
        row.cancelled_at = now
        row.cancelled_by = cancelled_by
        cancelled += 1
    db.flush()
    return cancelled


def _store_schedule(db: Session, plan: _Plan) -> None:
    for slot in plan.slots:
        plan.enrollment.schedules.append(
            ClassSchedule(
                teacher_id=slot.teacher_id,
                day_of_week=slot.day_of_week,
                start_time=slot.start_time,
                end_time=slot.end_time,
            )
        )
    db.flush()


def _finish(db: Session, plan: _Plan, result: GenerationResult, time_provider: TimeProvider) -> GenerationResult:
    enrollment = plan.enrollment
    enrollment.schedule_key = plan.schedule_key
    if enrollment.status == EnrollmentStatus.PENDING.value and enrollment.academic_period.start_date <= time_provider.today():
        enrollment.status = EnrollmentStatus.ACTIVE.value
    bookings = _active_bookings(db, enrollment.id)
    enrollment.classes_total = len(bookings)
    db.commit()
    result.bookings = _active_bookings(db, enrollment.id)
    return result


def _commit_guarded(db: Session, work) -> GenerationResult:
    try:
        return work()
    except IntegrityError as exc:
        db.rollback()
        logger.warning('booking_generation_conflict error=%s', exc.orig)
        raise ConflictError('Conflicto de horario, intenta nuevamente') from exc
    except Exception:
        db.rollback()
        raise


@timed_service('generate_bookings')
def generate_bookings(
    db: Session,
    enrollment_id: int,
    slots: Iterable,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> GenerationResult:
    plan = _prepare(db, enrollment_id, slots, time_provider)
    enrollment = plan.enrollment
    result = GenerationResult(enrollment_id=enrollment.id)

    if enrollment.schedules:
        if enrollment.schedule_key == plan.schedule_key:
            result.unchanged = True
            result.bookings = _active_bookings(db, enrollment.id)
            return result
        raise ConflictError('La inscripción ya tiene un horario asignado')

    def _work() -> GenerationResult:
        _store_schedule(db, plan)
        _write_bookings(db, plan, result)
        return _finish(db, plan, result, time_provider)

    _commit_guarded(db, _work)
    logger.info(
        'bookings_generated enrollment_id=%s created=%s reactivated=%s kept=%s skipped=%s',
        enrollment.id,
        result.created,
        result.reactivated,
        result.kept,
        len(result.skipped),
    )
    return result


@timed_service('replace_schedule')
def replace_schedule(
    db: Session,
    enrollment_id: int,
    slots: Iterable,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> GenerationResult:
    """Swap an enrollment's weekly schedule and regenerate upcoming classes."""
    plan = _prepare(db, enrollment_id, slots, time_provider)
    enrollment = plan.enrollment
    result = GenerationResult(enrollment_id=enrollment.id)

    if enrollment.schedules and enrollment.schedule_key == plan.schedule_key:
        result.unchanged = True
        result.bookings = _active_bookings(db, enrollment.id)
        return result

    def _work() -> GenerationResult:
        result.cancelled = cancel_upcoming_bookings(db, enrollment.id, plan.now, 'RESCHEDULE')
        enrollment.schedules.clear()
        db.flush()
        _store_schedule(db, plan)
        _write_bookings(db, plan, result)
        return _finish(db, plan, result, time_provider)

    _commit_guarded(db, _work)
    logger.info(
        'schedule_replaced enrollment_id=%s cancelled=%s created=%s reactivated=%s skipped=%s',
        enrollment.id,
        result.cancelled,
        result.created,
        result.reactivated,
        len(result.skipped),
    )
    return result


def get_booking(db: Session, booking_id: int) -> ClassBooking:
    row = db.query(ClassBooking).filter(ClassBooking.id == booking_id).first()
    if not row:
        raise NotFoundError('Reserva no encontrada')
    return row


def list_bookings(
    db: Session,
    *,
    teacher_id: int | None = None,
    student_id: int | None = None,
    enrollment_id: int | None = None,
    status: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[ClassBooking]:
    query = db.query(ClassBooking)
    if teacher_id:
        query = query.filter(ClassBooking.teacher_id == teacher_id)
    if student_id:
        query = query.filter(ClassBooking.student_id == student_id)
    if enrollment_id:
        query = query.filter(ClassBooking.enrollment_id == enrollment_id)
    if status:
        query = query.filter(ClassBooking.status == str(status).upper())
    if start_date:
        query = query.filter(ClassBooking.day >= start_date)
    if end_date:
        query = query.filter(ClassBooking.day <= end_date)
    return query.order_by(ClassBooking.day.asc(), ClassBooking.time_slot.asc()).all()


def cancel_booking(
    db: Session,
    booking_id: int,
    actor: dict,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> ClassBooking:
    row = get_booking(db, booking_id)
    role = str(actor.get('role') or '').lower()
    actor_id = int(actor.get('user_id') or 0)
    if role != Role.ADMIN.value and actor_id not in (row.teacher_id, row.student_id):
        raise SafePermissionError('Sin permisos para esta clase')
    if row.status == BookingStatus.CANCELLED.value:
        raise ConflictError('La clase ya está cancelada')
    if row.status == BookingStatus.COMPLETED.value:
        raise ValueError('No se puede cancelar una clase completada')

    row.status = BookingStatus.CANCELLED.value
    row.cancelled_at = local_naive(time_provider.now())
    row.cancelled_by = role.upper() or 'SYSTEM'
    enrollment = row.enrollment
    db.flush()
    enrollment.classes_total = len(_active_bookings(db, enrollment.id))
    db.commit()
    db.refresh(row)
    logger.info('booking_cancelled booking_id=%s by=%s', row.id, row.cancelled_by)
    return row


def complete_elapsed_bookings(db: Session, *, time_provider: TimeProvider = default_time_provider) -> int:
    now = local_naive(time_provider.now())
    candidates = (
        db.query(ClassBooking)
        .filter(
            ClassBooking.status == BookingStatus.CONFIRMED.value,
            ClassBooking.day <= now.date(),
        )
        .all()
    )
    completed = 0
    for row in candidates:
        try:
            _, end = slot_bounds(row.day, row.time_slot)
        except ValueError:
            logger.warning('booking_invalid_time_slot booking_id=%s time_slot=%s', row.id, row.time_slot)
            continue
        if end <= now:
            row.status = BookingStatus.COMPLETED.value
            row.completed_at = now
            completed += 1
    db.commit()
    if completed:
        logger.info('bookings_completed count=%s', completed)
    return completed


def serialize_booking(row: ClassBooking) -> dict:
    start, end = parse_time_slot(row.time_slot)
    return {
        'id': row.id,
        'teacher_id': row.teacher_id,
        'student_id': row.student_id,
        'enrollment_id': row.enrollment_id,
        'day': row.day.isoformat(),
        'time_slot': row.time_slot,
        'duration_minutes': end - start,
        'status': row.status,
        'cancelled_by': row.cancelled_by,
    }
