from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from lingowow.core.errors import http_error
from lingowow.core.router_guard import assert_self_or_admin, authorize, can, require_auth_user
from lingowow.db import get_db
from lingowow.route_logging import EndpointNameRoute
from lingowow.schemas import EnrollmentCreateRequest, ScheduleReplaceRequest
from lingowow.services.booking_service import (
    GenerationResult,
    generate_bookings,
    list_bookings,
    replace_schedule,
    serialize_booking,
)
from lingowow.services.enrollment_service import (
    cancel_enrollment,
    create_enrollment,
    get_enrollment,
    list_student_enrollments,
    serialize_enrollment,
)


router = APIRouter(prefix='/enrollments', tags=['Enrollments'], route_class=EndpointNameRoute)


def _generation_payload(result: GenerationResult) -> dict:
    return {
        'created': result.created,
        'reactivated': result.reactivated,
        'kept': result.kept,
        'cancelled': result.cancelled,
        'unchanged': result.unchanged,
        'skipped': result.skipped,
        'bookings': [serialize_booking(b) for b in result.bookings],
    }


def _visible_enrollment(db: Session, user: dict, enrollment_id: int):
    row = get_enrollment(db, enrollment_id)
    if user['role'] == 'teacher':
        if not any(item.teacher_id == user['user_id'] for item in row.schedules):
            raise HTTPException(status_code=403, detail='Sin permisos')
    else:
        assert_self_or_admin(user, row.student_id)
    return row


@router.get('')
def enrollments_list(request: Request, student_id: int | None = None, active_only: bool = False, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'enrollments:read')
    target_id = student_id if user['role'] == 'admin' and student_id else user['user_id']
    rows = list_student_enrollments(db, target_id, active_only=active_only)
    return {'success': True, 'enrollments': [serialize_enrollment(r) for r in rows]}


@router.post('')
def enrollments_create(payload: EnrollmentCreateRequest, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'enrollments:manage')
    try:
        row, created = create_enrollment(
            db,
            student_id=payload.student_id,
            course_id=payload.course_id,
            academic_period_id=payload.academic_period_id,
        )
        generation = None
        if payload.schedule:
            generation = generate_bookings(db, row.id, [slot.model_dump() for slot in payload.schedule])
    except ValueError as exc:
        raise http_error(exc) from exc
    db.refresh(row)
    return {
        'success': True,
        'created': created,
        'enrollment': serialize_enrollment(row),
        'generation': _generation_payload(generation) if generation else None,
    }


@router.get('/{enrollment_id}')
def enrollments_get(enrollment_id: int, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'enrollments:read')
    try:
        row = _visible_enrollment(db, user, enrollment_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'success': True, 'enrollment': serialize_enrollment(row)}


@router.get('/{enrollment_id}/bookings')
def enrollments_bookings(enrollment_id: int, request: Request, status: str | None = None, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'bookings:read')
    try:
        row = _visible_enrollment(db, user, enrollment_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    rows = list_bookings(db, enrollment_id=row.id, status=status)
    return {'success': True, 'bookings': [serialize_booking(b) for b in rows]}


@router.put('/{enrollment_id}/schedule')
def enrollments_schedule(enrollment_id: int, payload: ScheduleReplaceRequest, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    if not (can(user, 'enrollments:manage') or can(user, 'enrollments:schedule')):
        raise HTTPException(status_code=403, detail='Sin permisos')
    try:
        row = get_enrollment(db, enrollment_id)
        assert_self_or_admin(user, row.student_id)
        result = replace_schedule(db, row.id, [slot.model_dump() for slot in payload.schedule])
    except ValueError as exc:
        raise http_error(exc) from exc
    db.refresh(row)
    return {'success': True, 'enrollment': serialize_enrollment(row), 'generation': _generation_payload(result)}


@router.post('/{enrollment_id}/cancel')
def enrollments_cancel(enrollment_id: int, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'enrollments:manage')
    try:
        row, cancelled = cancel_enrollment(db, enrollment_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'success': True, 'enrollment': serialize_enrollment(row), 'cancelled_bookings': cancelled}
