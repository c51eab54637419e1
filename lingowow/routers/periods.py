from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from lingowow.core.errors import http_error
from lingowow.core.router_guard import authorize, require_auth_user
from lingowow.db import get_db
from lingowow.route_logging import EndpointNameRoute
from lingowow.schemas import PeriodCreateRequest, PeriodGenerateRequest
from lingowow.services.academic_period_service import (
    activate_period,
    create_period,
    get_active_period,
    list_periods,
    persist_generated_periods,
    serialize_period,
)


router = APIRouter(prefix='/periods', tags=['Periods'], route_class=EndpointNameRoute)


@router.get('')
def periods_list(request: Request, year: int | None = None, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'periods:read')
    active = get_active_period(db)
    return {
        'success': True,
        'active_period_id': active.id if active else None,
        'periods': [serialize_period(r) for r in list_periods(db, year=year)],
    }


@router.post('')
def periods_create(payload: PeriodCreateRequest, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'periods:manage')
    try:
        row = create_period(db, **payload.model_dump())
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'success': True, 'period': serialize_period(row)}


@router.post('/generate')
def periods_generate(payload: PeriodGenerateRequest, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'periods:manage')
    rows = persist_generated_periods(db, payload.year)
    return {'success': True, 'created': len(rows), 'periods': [serialize_period(r) for r in rows]}


@router.post('/{period_id}/activate')
def periods_activate(period_id: int, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'periods:manage')
    try:
        row = activate_period(db, period_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'success': True, 'period': serialize_period(row)}
