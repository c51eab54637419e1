from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from lingowow.core.errors import http_error
from lingowow.core.router_guard import assert_self_or_admin, authorize, require_auth_user
from lingowow.db import get_db
from lingowow.route_logging import EndpointNameRoute
from lingowow.services.invoice_service import get_invoice, list_user_invoices, serialize_invoice


router = APIRouter(prefix='/invoices', tags=['Invoices'], route_class=EndpointNameRoute)


@router.get('')
def invoices_list(
    request: Request,
    user_id: int | None = None,
    limit: int = 20,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    user = require_auth_user(request)
    authorize(user, 'invoices:read')
    target_id = user_id or user['user_id']
    assert_self_or_admin(user, target_id)
    page = list_user_invoices(db, target_id, limit=limit, offset=offset)
    return {
        'success': True,
        'invoices': [serialize_invoice(r) for r in page['invoices']],
        'total': page['total'],
        'has_more': page['has_more'],
    }


@router.get('/{invoice_id}')
def invoices_get(invoice_id: int, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'invoices:read')
    try:
        row = get_invoice(db, invoice_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    assert_self_or_admin(user, row.user_id)
    return {'success': True, 'invoice': serialize_invoice(row)}
