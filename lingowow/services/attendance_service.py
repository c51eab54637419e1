from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lingowow.config import settings
from lingowow.core.errors import NotFoundError, SafePermissionError
from lingowow.core.time_provider import TimeProvider, default_time_provider, local_naive
from lingowow.core.time_slots import slot_bounds
from lingowow.models import (
    AttendanceStatus,
    BookingStatus,
    ClassAttendance,
    ClassBooking,
    Enrollment,
    TeacherAttendance,
)
from lingowow.services.rate_limit_service import limit_user_action


logger = logging.getLogger(__name__)

PARTICIPANT_ROLES = ('teacher', 'student')


class AttendanceWindowError(ValueError):
    pass


def check_attendance_window(booking: ClassBooking, now: datetime) -> None:
    """Raise unless ``now`` (naive, app-local) falls inside the entry window."""
    try:
        start, end = slot_bounds(booking.day, booking.time_slot)
    except ValueError as exc:
        raise AttendanceWindowError('Formato de horario inválido') from exc
    opens_at = start - timedelta(minutes=settings.attendance_early_entry_minutes)
    closes_at = end + timedelta(minutes=settings.attendance_late_entry_minutes)
    if now < opens_at:
        minutes = math.ceil((opens_at - now).total_seconds() / 60)
        raise AttendanceWindowError(f'La clase aún no ha comenzado. Podrás ingresar en {minutes} minutos.')
    if now > closes_at:
        raise AttendanceWindowError('El horario de la clase ya ha finalizado.')


def _existing_mark(db: Session, booking: ClassBooking, role: str):
    if role == 'teacher':
        return (
            db.query(TeacherAttendance)
            .filter(TeacherAttendance.class_id == booking.id, TeacherAttendance.teacher_id == booking.teacher_id)
            .first()
        )
    return (
        db.query(ClassAttendance)
        .filter(ClassAttendance.class_id == booking.id, ClassAttendance.student_id == booking.student_id)
        .first()
    )


def mark_attendance(
    db: Session,
    booking_id: int,
    participant_id: int,
    role: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    clean_role = str(role or '').strip().lower()
    if clean_role not in PARTICIPANT_ROLES:
        raise ValueError('Tipo de usuario inválido')

    booking = db.query(ClassBooking).filter(ClassBooking.id == booking_id).first()
    if not booking:
        raise NotFoundError('Reserva no encontrada')
    expected_id = booking.teacher_id if clean_role == 'teacher' else booking.student_id
    if int(participant_id or 0) != int(expected_id):
        raise SafePermissionError('Sin permisos para esta clase')
    if booking.status == BookingStatus.CANCELLED.value:
        raise ValueError('La clase fue cancelada')

    now = local_naive(time_provider.now())
    check_attendance_window(booking, now)
    limit_user_action(db, participant_id, 'attendance_mark', time_provider=time_provider)

    existing = _existing_mark(db, booking, clean_role)
    if existing:
        db.commit()
        return {'booking_id': booking.id, 'role': clean_role, 'already_marked': True, 'timestamp': existing.timestamp}

    try:
        if clean_role == 'teacher':
            row = TeacherAttendance(
                class_id=booking.id,
                teacher_id=booking.teacher_id,
                status=AttendanceStatus.PRESENT.value,
                timestamp=now,
            )
            db.add(row)
        else:
            row = ClassAttendance(
                class_id=booking.id,
                student_id=booking.student_id,
                enrollment_id=booking.enrollment_id,
                status=AttendanceStatus.PRESENT.value,
                timestamp=now,
            )
            db.add(row)
            enrollment = db.query(Enrollment).filter(Enrollment.id == booking.enrollment_id).first()
            if enrollment:
                enrollment.classes_attended = int(enrollment.classes_attended or 0) + 1
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info('attendance_mark_race booking_id=%s role=%s', booking_id, clean_role)
        existing = _existing_mark(db, booking, clean_role)
        return {
            'booking_id': booking_id,
            'role': clean_role,
            'already_marked': True,
            'timestamp': existing.timestamp if existing else None,
        }

    logger.info('attendance_marked booking_id=%s role=%s participant_id=%s', booking.id, clean_role, participant_id)
    return {'booking_id': booking.id, 'role': clean_role, 'already_marked': False, 'timestamp': now}


def get_booking_attendance(db: Session, booking_id: int) -> dict:
    booking = db.query(ClassBooking).filter(ClassBooking.id == booking_id).first()
    if not booking:
        raise NotFoundError('Reserva no encontrada')
    teacher_mark = _existing_mark(db, booking, 'teacher')
    student_mark = _existing_mark(db, booking, 'student')
    return {
        'booking_id': booking.id,
        'teacher_id': booking.teacher_id,
        'student_id': booking.student_id,
        'teacher_present': teacher_mark is not None,
        'student_present': student_mark is not None,
        'teacher_marked_at': teacher_mark.timestamp.isoformat() if teacher_mark else None,
        'student_marked_at': student_mark.timestamp.isoformat() if student_mark else None,
        'payable': teacher_mark is not None and student_mark is not None,
    }
