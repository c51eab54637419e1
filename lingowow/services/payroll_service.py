"""Payable-class and teacher earnings reports.

A class is payable when both the teacher and the student marked attendance.
Reports are computed on every call from the booking and attendance tables.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session, selectinload

from lingowow.config import settings
from lingowow.core.errors import NotFoundError
from lingowow.metrics import timed_service
from lingowow.models import (
    BookingStatus,
    ClassBooking,
    Course,
    Enrollment,
    Role,
    TeacherCourse,
    TeacherIncentive,
    User,
)


logger = logging.getLogger(__name__)

PAYROLL_BOOKING_STATUSES = (BookingStatus.COMPLETED.value, BookingStatus.CONFIRMED.value)


@dataclass(frozen=True)
class PayableClass:
    booking_id: int
    teacher_id: int
    teacher_name: str
    student_id: int
    student_name: str
    course_id: int
    course_title: str
    period_id: int | None
    period_name: str
    day: date
    time_slot: str
    duration_minutes: int
    amount: float

    def as_dict(self) -> dict:
        return {
            'booking_id': self.booking_id,
            'teacher_id': self.teacher_id,
            'teacher_name': self.teacher_name,
            'student_id': self.student_id,
            'student_name': self.student_name,
            'course_id': self.course_id,
            'course_title': self.course_title,
            'period_id': self.period_id,
            'period_name': self.period_name,
            'day': self.day.isoformat(),
            'time_slot': self.time_slot,
            'duration_minutes': self.duration_minutes,
            'amount': self.amount,
        }


def is_payable(booking: ClassBooking) -> bool:
    return bool(booking.teacher_attendances) and bool(booking.attendances)


def class_duration(booking: ClassBooking, course: Course | None) -> int:
    if booking.video_calls and booking.video_calls[0].duration_minutes:
        return int(booking.video_calls[0].duration_minutes)
    if course and course.class_duration_minutes:
        return int(course.class_duration_minutes)
    return settings.default_class_duration_minutes


def class_payment(
    *,
    duration_minutes: int,
    teacher_course_rate: float | None,
    course_default_rate: float | None,
    rank_multiplier: float | None,
) -> float:
    """Per-class pay: teacher override, then course default, then hourly rate."""
    if teacher_course_rate is not None:
        amount = float(teacher_course_rate)
    elif course_default_rate is not None:
        amount = float(course_default_rate)
    else:
        hours = duration_minutes / 60
        amount = hours * settings.payroll_base_rate_per_hour * float(rank_multiplier or 1.0)
    return round(amount, 2)


def _candidate_bookings(
    db: Session,
    *,
    teacher_id: int | None,
    period_id: int | None,
    start_date: date | None,
    end_date: date | None,
) -> list[ClassBooking]:
    query = (
        db.query(ClassBooking)
        .options(
            selectinload(ClassBooking.teacher_attendances),
            selectinload(ClassBooking.attendances),
            selectinload(ClassBooking.video_calls),
            selectinload(ClassBooking.enrollment).selectinload(Enrollment.course),
            selectinload(ClassBooking.enrollment).selectinload(Enrollment.academic_period),
            selectinload(ClassBooking.teacher),
            selectinload(ClassBooking.student),
        )
        .filter(ClassBooking.status.in_(PAYROLL_BOOKING_STATUSES))
    )
    if teacher_id:
        query = query.filter(ClassBooking.teacher_id == teacher_id)
    if period_id:
        query = query.join(Enrollment, Enrollment.id == ClassBooking.enrollment_id).filter(
            Enrollment.academic_period_id == period_id
        )
    else:
        if start_date:
            query = query.filter(ClassBooking.day >= start_date)
        if end_date:
            query = query.filter(ClassBooking.day <= end_date)
    return query.order_by(ClassBooking.day.desc(), ClassBooking.time_slot.asc()).all()


def _teacher_course_rates(db: Session, teacher_ids: set[int]) -> dict[tuple[int, int], float | None]:
    if not teacher_ids:
        return {}
    rows = db.query(TeacherCourse).filter(TeacherCourse.teacher_id.in_(sorted(teacher_ids))).all()
    return {(row.teacher_id, row.course_id): row.payment_per_class for row in rows}


def _to_payable(booking: ClassBooking, rates: dict[tuple[int, int], float | None]) -> PayableClass:
    enrollment = booking.enrollment
    course = enrollment.course if enrollment else None
    period = enrollment.academic_period if enrollment else None
    teacher = booking.teacher
    duration = class_duration(booking, course)
    course_id = course.id if course else 0
    amount = class_payment(
        duration_minutes=duration,
        teacher_course_rate=rates.get((booking.teacher_id, course_id)),
        course_default_rate=course.default_payment_per_class if course else None,
        rank_multiplier=teacher.teacher_rank.rate_multiplier if teacher and teacher.teacher_rank else None,
    )
    return PayableClass(
        booking_id=booking.id,
        teacher_id=booking.teacher_id,
        teacher_name=teacher.full_name if teacher else '',
        student_id=booking.student_id,
        student_name=booking.student.full_name if booking.student else '',
        course_id=course_id,
        course_title=course.title if course else '',
        period_id=period.id if period else None,
        period_name=period.name if period else '',
        day=booking.day,
        time_slot=booking.time_slot,
        duration_minutes=duration,
        amount=amount,
    )


def list_payable_classes(
    db: Session,
    *,
    teacher_id: int | None = None,
    period_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> tuple[list[PayableClass], int]:
    """Return ``(payable_classes, considered_count)`` for the filters."""
    bookings = _candidate_bookings(
        db,
        teacher_id=teacher_id,
        period_id=period_id,
        start_date=start_date,
        end_date=end_date,
    )
    payable = [b for b in bookings if is_payable(b)]
    rates = _teacher_course_rates(db, {b.teacher_id for b in payable})
    return [_to_payable(b, rates) for b in payable], len(bookings)


@timed_service('build_payable_report')
def build_payable_report(
    db: Session,
    *,
    teacher_id: int | None = None,
    period_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict:
    classes, considered = list_payable_classes(
        db,
        teacher_id=teacher_id,
        period_id=period_id,
        start_date=start_date,
        end_date=end_date,
    )

    groups: dict[tuple[int, int | None], list[PayableClass]] = defaultdict(list)
    for item in classes:
        groups[(item.teacher_id, item.period_id)].append(item)

    teachers = []
    for (group_teacher_id, group_period_id), items in sorted(groups.items(), key=lambda kv: (kv[0][0], kv[0][1] or 0)):
        first = items[0]
        total_amount = round(sum(i.amount for i in items), 2)
        teachers.append(
            {
                'teacher_id': group_teacher_id,
                'teacher_name': first.teacher_name,
                'period_id': group_period_id,
                'period_name': first.period_name,
                'total_classes': len(items),
                'total_duration': sum(i.duration_minutes for i in items),
                'total_earnings': total_amount,
                'average_per_class': round(total_amount / len(items), 2),
                'classes': [i.as_dict() for i in items],
            }
        )

    summary = {
        'total_payable_classes': len(classes),
        'total_teachers': len({i.teacher_id for i in classes}),
        'total_duration': sum(i.duration_minutes for i in classes),
        'total_earnings': round(sum(i.amount for i in classes), 2),
        'total_considered_classes': considered,
        'total_non_payable_classes': considered - len(classes),
    }
    logger.info(
        'payable_report_built teacher_id=%s period_id=%s payable=%s considered=%s',
        teacher_id,
        period_id,
        len(classes),
        considered,
    )
    return {'summary': summary, 'teachers': teachers}


def teacher_earnings(
    db: Session,
    teacher_id: int,
    *,
    period_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict:
    teacher = db.query(User).filter(User.id == teacher_id).first()
    if not teacher or teacher.role != Role.TEACHER.value:
        raise NotFoundError('Profesor no encontrado')

    classes, considered = list_payable_classes(
        db,
        teacher_id=teacher_id,
        period_id=period_id,
        start_date=start_date,
        end_date=end_date,
    )
    total = round(sum(i.amount for i in classes), 2)
    average = round(total / len(classes), 2) if classes else 0.0

    incentive_query = db.query(TeacherIncentive).filter(TeacherIncentive.teacher_id == teacher_id)
    if period_id:
        incentive_query = incentive_query.filter(TeacherIncentive.period_id == period_id)
    incentives = incentive_query.order_by(TeacherIncentive.created_at.desc()).all()
    bonus_total = round(sum(float(i.bonus_amount or 0) for i in incentives), 2)
    bonus_paid = round(sum(float(i.bonus_amount or 0) for i in incentives if i.paid), 2)
    bonus_pending = round(bonus_total - bonus_paid, 2)

    return {
        'teacher_id': teacher.id,
        'teacher_name': teacher.full_name,
        'rank': teacher.teacher_rank.name if teacher.teacher_rank else None,
        'rate_multiplier': teacher.teacher_rank.rate_multiplier if teacher.teacher_rank else 1.0,
        'total_classes': len(classes),
        'total_considered_classes': considered,
        'total_duration': sum(i.duration_minutes for i in classes),
        'total_earnings': total,
        'average_per_class': average,
        'bonuses': {'total': bonus_total, 'paid': bonus_paid, 'pending': bonus_pending},
        'next_payout_amount': round(total + bonus_pending, 2),
        'classes': [i.as_dict() for i in classes],
    }
