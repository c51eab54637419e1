from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from lingowow.core.errors import NotFoundError
from lingowow.core.time_provider import TimeProvider, default_time_provider, local_naive
from lingowow.models import (
    AcademicPeriod,
    Course,
    Enrollment,
    EnrollmentStatus,
    Role,
    User,
)
from lingowow.services.booking_service import cancel_upcoming_bookings


logger = logging.getLogger(__name__)


def initial_status(period: AcademicPeriod, *, time_provider: TimeProvider = default_time_provider) -> str:
    if period.start_date > time_provider.today():
        return EnrollmentStatus.PENDING.value
    return EnrollmentStatus.ACTIVE.value


def create_enrollment(
    db: Session,
    *,
    student_id: int,
    course_id: int,
    academic_period_id: int,
    time_provider: TimeProvider = default_time_provider,
    commit: bool = True,
) -> tuple[Enrollment, bool]:
    """Enroll a student; returns ``(enrollment, created)``.

    A second call for the same student, course and period returns the
    existing row untouched.
    """
    existing = (
        db.query(Enrollment)
        .filter(
            Enrollment.student_id == student_id,
            Enrollment.course_id == course_id,
            Enrollment.academic_period_id == academic_period_id,
        )
        .first()
    )
    if existing:
        return existing, False

    student = db.query(User).filter(User.id == student_id).first()
    if not student or student.role != Role.STUDENT.value:
        raise NotFoundError('Estudiante no encontrado')
    course = db.query(Course).filter(Course.id == course_id).first()
    if not course:
        raise NotFoundError('Curso no encontrado')
    period = db.query(AcademicPeriod).filter(AcademicPeriod.id == academic_period_id).first()
    if not period:
        raise NotFoundError('Período académico no encontrado')

    row = Enrollment(
        student_id=student_id,
        course_id=course_id,
        academic_period_id=academic_period_id,
        status=initial_status(period, time_provider=time_provider),
    )
    db.add(row)
    if commit:
        db.commit()
        db.refresh(row)
    else:
        db.flush()
    logger.info(
        'enrollment_created enrollment_id=%s student_id=%s course_id=%s period_id=%s status=%s',
        row.id,
        student_id,
        course_id,
        academic_period_id,
        row.status,
    )
    return row, True


def get_enrollment(db: Session, enrollment_id: int) -> Enrollment:
    row = db.query(Enrollment).filter(Enrollment.id == enrollment_id).first()
    if not row:
        raise NotFoundError('Inscripción no encontrada')
    return row


def list_student_enrollments(db: Session, student_id: int, *, active_only: bool = False) -> list[Enrollment]:
    query = db.query(Enrollment).filter(Enrollment.student_id == student_id)
    if active_only:
        query = query.filter(Enrollment.status.in_([EnrollmentStatus.PENDING.value, EnrollmentStatus.ACTIVE.value]))
    return query.order_by(Enrollment.created_at.desc(), Enrollment.id.desc()).all()


def cancel_enrollment(
    db: Session,
    enrollment_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> tuple[Enrollment, int]:
    """Cancel an enrollment and its upcoming bookings. Nothing is deleted."""
    row = get_enrollment(db, enrollment_id)
    if row.status == EnrollmentStatus.CANCELLED.value:
        return row, 0
    now = local_naive(time_provider.now())
    try:
        cancelled = cancel_upcoming_bookings(db, row.id, now, 'ENROLLMENT_CANCELLED')
        row.status = EnrollmentStatus.CANCELLED.value
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(row)
    logger.info('enrollment_cancelled enrollment_id=%s cancelled_bookings=%s', row.id, cancelled)
    return row, int(cancelled or 0)


def activate_started_enrollments(db: Session, *, time_provider: TimeProvider = default_time_provider) -> int:
    today = time_provider.today()
    rows = (
        db.query(Enrollment)
        .join(AcademicPeriod, AcademicPeriod.id == Enrollment.academic_period_id)
        .filter(
            Enrollment.status == EnrollmentStatus.PENDING.value,
            AcademicPeriod.start_date <= today,
        )
        .all()
    )
    for row in rows:
        row.status = EnrollmentStatus.ACTIVE.value
    db.commit()
    if rows:
        logger.info('enrollments_activated count=%s', len(rows))
    return len(rows)


def serialize_enrollment(row: Enrollment) -> dict:
    return {
        'id': row.id,
        'student_id': row.student_id,
        'course_id': row.course_id,
        'academic_period_id': row.academic_period_id,
        'status': row.status,
        'classes_total': int(row.classes_total or 0),
        'classes_attended': int(row.classes_attended or 0),
        'schedules': [
            {
                'teacher_id': item.teacher_id,
                'day_of_week': item.day_of_week,
                'start_time': item.start_time,
                'end_time': item.end_time,
            }
            for item in sorted(row.schedules, key=lambda s: (s.day_of_week, s.start_time))
        ],
    }
