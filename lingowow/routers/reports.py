from datetime import date

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from lingowow.core.errors import http_error
from lingowow.core.router_guard import authorize, require_auth_user
from lingowow.db import get_db
from lingowow.route_logging import EndpointNameRoute
from lingowow.services.payroll_service import build_payable_report, teacher_earnings


router = APIRouter(tags=['Reports'], route_class=EndpointNameRoute)


@router.get('/reports/payable-classes')
def payable_classes_report(
    request: Request,
    teacher_id: int | None = None,
    period_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    db: Session = Depends(get_db),
):
    user = require_auth_user(request)
    authorize(user, 'reports:payroll')
    report = build_payable_report(
        db,
        teacher_id=teacher_id,
        period_id=period_id,
        start_date=start_date,
        end_date=end_date,
    )
    return {'success': True, **report}


@router.get('/teacher/earnings')
def my_earnings(
    request: Request,
    period_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    db: Session = Depends(get_db),
):
    user = require_auth_user(request)
    authorize(user, 'earnings:read')
    try:
        data = teacher_earnings(
            db,
            user['user_id'],
            period_id=period_id,
            start_date=start_date,
            end_date=end_date,
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'success': True, **data}
