import hmac
import logging

import httpx
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from lingowow.config import settings
from lingowow.core.errors import http_error
from lingowow.core.router_guard import authorize, resolve_session_token
from lingowow.db import get_db
from lingowow.route_logging import EndpointNameRoute
from lingowow.schemas import CheckoutAuthorizeRequest, CheckoutSessionRequest
from lingowow.services.auth_service import validate_session_token
from lingowow.services.checkout_service import (
    CheckoutItem,
    authorize_checkout,
    parse_notification,
    reconcile_payment_notification,
    resolve_checkout_user,
    start_checkout,
)
from lingowow.services.observability_counters import record_observability_event
from lingowow.services.payment_gateways import GatewayError, get_gateway


logger = logging.getLogger(__name__)

router = APIRouter(prefix='/checkout', tags=['Checkout'], route_class=EndpointNameRoute)


def _optional_user(request: Request) -> dict | None:
    session = validate_session_token(resolve_session_token(request))
    if not session:
        return None
    return {
        'user_id': int(session.get('user_id') or 0),
        'role': str(session.get('role') or '').strip().lower(),
        'email': str(session.get('email') or ''),
    }


@router.post('/session')
def checkout_session(payload: CheckoutSessionRequest):
    try:
        session = start_checkout(get_gateway(payload.provider), payload.amount, payload.order_id)
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except httpx.HTTPError as exc:
        logger.warning('checkout_gateway_unreachable provider=%s error=%s', payload.provider, exc)
        raise HTTPException(status_code=502, detail='No se pudo contactar a la pasarela de pago') from exc
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'success': True, 'session': session}


@router.post('/authorize')
def checkout_authorize(payload: CheckoutAuthorizeRequest, request: Request, db: Session = Depends(get_db)):
    user = _optional_user(request)
    if user is not None:
        authorize(user, 'checkout:pay')
    try:
        buyer = resolve_checkout_user(
            db,
            user_id=user['user_id'] if user else None,
            customer=payload.customer.model_dump() if payload.customer else None,
        )
        result = authorize_checkout(
            db,
            get_gateway(payload.provider),
            user_id=buyer.id,
            token=payload.transaction_token,
            order_id=payload.order_id,
            items=[
                CheckoutItem(
                    kind=item.kind,
                    item_id=item.item_id,
                    quantity=item.quantity,
                    schedule=[slot.model_dump() for slot in item.schedule],
                )
                for item in payload.items
            ],
            coupon_code=payload.coupon_code,
            register_card=payload.register_card,
        )
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except httpx.HTTPError as exc:
        logger.warning('checkout_gateway_unreachable provider=%s error=%s', payload.provider, exc)
        raise HTTPException(status_code=502, detail='No se pudo contactar a la pasarela de pago') from exc
    except (ValueError, PermissionError) as exc:
        raise http_error(exc) from exc
    return {'success': True, 'user_id': buyer.id, **result}


def _verify_webhook_secret(provider: str, provided: str | None) -> None:
    expected = str(settings.payment_webhook_secret or '').strip()
    if not expected:
        logger.error('payment_webhook_unconfigured provider=%s', provider)
        raise HTTPException(status_code=503, detail='Webhook de pagos no configurado')
    if not hmac.compare_digest(expected.encode('utf-8'), str(provided or '').strip().encode('utf-8')):
        logger.warning('payment_webhook_bad_secret provider=%s', provider)
        record_observability_event('payment_webhook_rejected')
        raise HTTPException(status_code=403, detail='Firma de webhook inválida')


@router.post('/webhook/{provider}')
async def checkout_webhook(
    provider: str,
    request: Request,
    x_webhook_secret: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    _verify_webhook_secret(provider, x_webhook_secret)
    try:
        body = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Cuerpo inválido') from exc
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail='Cuerpo inválido')
    try:
        order_id, status = parse_notification(provider, body)
        invoice = reconcile_payment_notification(db, order_id, status)
    except ValueError as exc:
        logger.warning('payment_webhook_rejected provider=%s error=%s', provider, exc)
        record_observability_event('payment_webhook_rejected')
        raise http_error(exc) from exc
    return {'success': True, 'invoice_id': invoice.id, 'status': invoice.status}
