from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from lingowow.core.errors import http_error
from lingowow.core.router_guard import authorize, require_auth_user
from lingowow.db import get_db
from lingowow.route_logging import EndpointNameRoute
from lingowow.schemas import CouponCreateRequest, CouponUpdateRequest, CouponValidateRequest
from lingowow.services.coupon_service import (
    create_coupon,
    deactivate_coupon,
    list_coupons,
    serialize_coupon,
    update_coupon,
    validate_coupon,
)
from lingowow.services.rate_limit_service import limit_user_action


router = APIRouter(prefix='/coupons', tags=['Coupons'], route_class=EndpointNameRoute)


@router.get('')
def coupons_list(request: Request, active_only: bool = False, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'coupons:manage')
    return {'success': True, 'coupons': [serialize_coupon(r) for r in list_coupons(db, active_only=active_only)]}


@router.post('')
def coupons_create(payload: CouponCreateRequest, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'coupons:manage')
    try:
        row = create_coupon(db, **payload.model_dump())
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'success': True, 'coupon': serialize_coupon(row)}


@router.patch('/{coupon_id}')
def coupons_update(coupon_id: int, payload: CouponUpdateRequest, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'coupons:manage')
    try:
        row = update_coupon(db, coupon_id, **payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'success': True, 'coupon': serialize_coupon(row)}


@router.delete('/{coupon_id}')
def coupons_delete(coupon_id: int, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'coupons:manage')
    try:
        row = deactivate_coupon(db, coupon_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'success': True, 'coupon': serialize_coupon(row)}


@router.post('/validate')
def coupons_validate(payload: CouponValidateRequest, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'coupons:validate')
    try:
        limit_user_action(db, user['user_id'], 'coupon_validate')
    except ValueError as exc:
        raise http_error(exc) from exc
    result = validate_coupon(
        db,
        payload.code,
        user_id=user['user_id'],
        plan_id=payload.plan_id,
        subtotal=payload.subtotal,
    )
    return {'success': True, **result.as_dict()}
