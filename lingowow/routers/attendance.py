from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from lingowow.core.errors import http_error
from lingowow.core.router_guard import authorize, is_admin, require_auth_user
from lingowow.db import get_db
from lingowow.route_logging import EndpointNameRoute
from lingowow.schemas import AttendanceMarkRequest
from lingowow.services.attendance_service import get_booking_attendance, mark_attendance


router = APIRouter(prefix='/attendance', tags=['Attendance'], route_class=EndpointNameRoute)


@router.post('/mark')
def attendance_mark(payload: AttendanceMarkRequest, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'attendance:mark')
    if payload.user_type != user['role']:
        raise HTTPException(status_code=403, detail='Sin permisos para esta clase')
    try:
        result = mark_attendance(db, payload.booking_id, user['user_id'], payload.user_type)
    except (ValueError, PermissionError) as exc:
        raise http_error(exc) from exc
    timestamp = result['timestamp']
    return {
        'success': True,
        'booking_id': result['booking_id'],
        'already_marked': result['already_marked'],
        'timestamp': timestamp.isoformat() if timestamp else None,
    }


@router.get('/{booking_id}')
def attendance_status(booking_id: int, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'attendance:read')
    try:
        data = get_booking_attendance(db, booking_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    if not is_admin(user) and user['user_id'] not in (data['teacher_id'], data['student_id']):
        raise HTTPException(status_code=403, detail='Sin permisos para esta clase')
    return {'success': True, **data}
