from datetime import date

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from lingowow.core.errors import http_error
from lingowow.core.router_guard import authorize, require_auth_user
from lingowow.db import get_db
from lingowow.route_logging import EndpointNameRoute
from lingowow.services.booking_service import cancel_booking, list_bookings, serialize_booking


router = APIRouter(prefix='/bookings', tags=['Bookings'], route_class=EndpointNameRoute)


@router.get('')
def bookings_list(
    request: Request,
    teacher_id: int | None = None,
    student_id: int | None = None,
    status: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    db: Session = Depends(get_db),
):
    user = require_auth_user(request)
    authorize(user, 'bookings:read')
    # Non-admins only ever see their own side of the calendar.
    if user['role'] == 'teacher':
        teacher_id, student_id = user['user_id'], None
    elif user['role'] == 'student':
        teacher_id, student_id = None, user['user_id']
    rows = list_bookings(
        db,
        teacher_id=teacher_id,
        student_id=student_id,
        status=status.upper() if status else None,
        start_date=start_date,
        end_date=end_date,
    )
    return {'success': True, 'bookings': [serialize_booking(r) for r in rows]}


@router.post('/{booking_id}/cancel')
def bookings_cancel(booking_id: int, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'bookings:cancel')
    try:
        row = cancel_booking(db, booking_id, user)
    except (ValueError, PermissionError) as exc:
        raise http_error(exc) from exc
    return {'success': True, 'booking': serialize_booking(row)}
