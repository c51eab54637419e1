from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from lingowow.core.errors import http_error
from lingowow.core.router_guard import assert_self_or_admin, authorize, require_auth_user
from lingowow.db import get_db
from lingowow.models import User
from lingowow.route_logging import EndpointNameRoute
from lingowow.schemas import (
    CreditAdjustRequest,
    CreditPackageCreateRequest,
    CreditPackageUpdateRequest,
    PlanCreditPurchaseRequest,
)
from lingowow.services.credit_service import (
    InsufficientCreditsError,
    add_credits,
    create_package,
    get_or_create_balance,
    list_packages,
    list_transactions,
    purchase_plan_with_credits,
    serialize_balance,
    serialize_package,
    serialize_transaction,
    spend_credits,
    update_package,
    verify_ledger,
)


router = APIRouter(prefix='/credits', tags=['Credits'], route_class=EndpointNameRoute)


def _insufficient(exc: InsufficientCreditsError) -> JSONResponse:
    return JSONResponse(status_code=400, content={'success': False, 'error': str(exc), 'data': exc.data})


@router.get('/balance')
def credits_balance(request: Request, user_id: int | None = None, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'credits:read')
    target_id = user_id or user['user_id']
    assert_self_or_admin(user, target_id)
    balance = get_or_create_balance(db, target_id)
    db.commit()
    return {'success': True, 'balance': serialize_balance(balance)}


@router.get('/transactions')
def credits_transactions(
    request: Request,
    user_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
    transaction_type: str | None = None,
    db: Session = Depends(get_db),
):
    user = require_auth_user(request)
    authorize(user, 'credits:read')
    target_id = user_id or user['user_id']
    assert_self_or_admin(user, target_id)
    page = list_transactions(db, target_id, limit=limit, offset=offset, transaction_type=transaction_type)
    return {
        'success': True,
        'transactions': [serialize_transaction(r) for r in page['transactions']],
        'total': page['total'],
        'has_more': page['has_more'],
    }


@router.get('/verify/{user_id}')
def credits_verify(user_id: int, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'credits:adjust')
    return {'success': True, **verify_ledger(db, user_id)}


@router.post('/adjust')
def credits_adjust(payload: CreditAdjustRequest, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'credits:adjust')
    if db.query(User.id).filter(User.id == payload.user_id).first() is None:
        raise HTTPException(status_code=404, detail='Usuario no encontrado')
    metadata = {'admin_id': user['user_id']}
    try:
        if payload.transaction_type != 'EXPIRED':
            # ADMIN_ADJUSTMENT carries its own sign.
            tx, balance = add_credits(
                db,
                payload.user_id,
                payload.amount,
                transaction_type=payload.transaction_type,
                description=payload.description,
                metadata=metadata,
            )
        else:
            tx, balance = spend_credits(
                db,
                payload.user_id,
                abs(payload.amount),
                transaction_type=payload.transaction_type,
                description=payload.description,
                metadata=metadata,
            )
    except InsufficientCreditsError as exc:
        return _insufficient(exc)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'success': True, 'transaction': serialize_transaction(tx), 'balance': serialize_balance(balance)}


@router.get('/packages')
def credits_packages(db: Session = Depends(get_db)):
    return {'success': True, 'packages': [serialize_package(r) for r in list_packages(db)]}


@router.post('/packages')
def credits_packages_create(payload: CreditPackageCreateRequest, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'credits:packages')
    row = create_package(db, **payload.model_dump())
    return {'success': True, 'package': serialize_package(row)}


@router.patch('/packages/{package_id}')
def credits_packages_update(
    package_id: int,
    payload: CreditPackageUpdateRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    user = require_auth_user(request)
    authorize(user, 'credits:packages')
    try:
        row = update_package(db, package_id, **payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'success': True, 'package': serialize_package(row)}


@router.post('/purchase-plan')
def credits_purchase_plan(payload: PlanCreditPurchaseRequest, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'credits:spend')
    try:
        result = purchase_plan_with_credits(
            db,
            user['user_id'],
            payload.plan_id,
            schedule=[slot.model_dump() for slot in payload.schedule],
        )
    except InsufficientCreditsError as exc:
        return _insufficient(exc)
    except (ValueError, PermissionError) as exc:
        raise http_error(exc) from exc
    return {'success': True, **result}
