"""Card checkout: authorize with a provider, then invoice and fulfil the order.

Fulfilment of plans and credit packages happens in the same database
transaction as the invoice. Booking generation for a chosen weekly schedule
runs afterwards; the payment is kept even when the schedule cannot be booked.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx
from sqlalchemy.orm import Session

from lingowow.core.errors import ConflictError, NotFoundError
from lingowow.core.time_provider import TimeProvider, default_time_provider, local_naive
from lingowow.models import CreditPackage, Invoice, InvoiceStatus, Plan, Role, User
from lingowow.services.academic_period_service import get_active_period
from lingowow.services.booking_service import generate_bookings
from lingowow.services.coupon_service import redeem_coupon, validate_coupon
from lingowow.services.credit_service import process_package_purchase
from lingowow.services.enrollment_service import create_enrollment
from lingowow.services.invoice_service import LineItem, create_invoice, find_invoice_by_order_id
from lingowow.services.observability_counters import record_observability_event
from lingowow.services.payment_gateways import GatewayError, PaymentGateway


logger = logging.getLogger(__name__)

PAID_STATUSES = frozenset({'PAID', 'COMPLETED', 'APPROVED', 'AUTHORIZED', 'CAPTURED', '000'})
FAILED_STATUSES = frozenset({'CANCELLED', 'CANCELED', 'DENIED', 'DECLINED', 'FAILED', 'VOIDED', 'REFUNDED', 'REVERSED', 'EXPIRED'})
PAYPAL_EVENT_STATUS = {
    'PAYMENT.CAPTURE.COMPLETED': 'COMPLETED',
    'PAYMENT.CAPTURE.DENIED': 'DENIED',
    'PAYMENT.CAPTURE.REFUNDED': 'REFUNDED',
    'PAYMENT.CAPTURE.REVERSED': 'REVERSED',
    'CHECKOUT.ORDER.VOIDED': 'VOIDED',
}


class PaymentDeclinedError(ValueError):
    pass


@dataclass
class CheckoutItem:
    kind: str
    item_id: int
    quantity: int = 1
    schedule: list = field(default_factory=list)


def resolve_checkout_user(db: Session, *, user_id: int | None, customer: dict | None) -> User:
    """Signed-in user, or a guest account keyed by the customer's e-mail."""
    if user_id:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError('Usuario no encontrado')
        return user
    email = str((customer or {}).get('email') or '').strip().lower()
    if not email:
        raise PermissionError('Debes iniciar sesión o indicar tus datos de contacto')
    user = db.query(User).filter(User.email == email).first()
    if user:
        return user
    user = User(
        email=email,
        name=str(customer.get('first_name') or ''),
        last_name=str(customer.get('last_name') or ''),
        role=Role.GUEST.value,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info('guest_user_created user_id=%s', user.id)
    return user


def start_checkout(gateway: PaymentGateway, amount: float, order_id: str) -> dict:
    if float(amount or 0) <= 0:
        raise ValueError('El monto debe ser mayor a cero')
    if not str(order_id or '').strip():
        raise ValueError('El número de orden es obligatorio')
    session = gateway.create_session(round(float(amount), 2), str(order_id).strip())
    logger.info('checkout_session_created provider=%s order_id=%s', gateway.name, order_id)
    return session.as_dict()


def _resolve_items(db: Session, items: list[CheckoutItem]) -> list[tuple[CheckoutItem, LineItem, Plan | CreditPackage]]:
    if not items:
        raise ValueError('El carrito está vacío')
    resolved = []
    for item in items:
        quantity = max(1, int(item.quantity or 1))
        if item.kind == 'plan':
            plan = db.query(Plan).filter(Plan.id == item.item_id, Plan.is_active.is_(True)).first()
            if not plan:
                raise NotFoundError('Plan no encontrado')
            resolved.append((item, LineItem(name=plan.name, price=float(plan.price), quantity=quantity, plan_id=plan.id), plan))
        elif item.kind == 'package':
            package = db.query(CreditPackage).filter(CreditPackage.id == item.item_id, CreditPackage.is_active.is_(True)).first()
            if not package:
                raise NotFoundError('Paquete no encontrado')
            resolved.append(
                (item, LineItem(name=package.name, price=float(package.price), quantity=quantity, package_id=package.id), package)
            )
        else:
            raise ValueError('Tipo de producto inválido')
    return resolved


def authorize_checkout(
    db: Session,
    gateway: PaymentGateway,
    *,
    user_id: int,
    token: str,
    order_id: str,
    items: list[CheckoutItem],
    coupon_code: str | None = None,
    register_card: bool = False,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    clean_order_id = str(order_id or '').strip()
    if not token or not clean_order_id:
        raise ValueError('Faltan datos del pago')
    if db.query(Invoice).filter(Invoice.external_order_id == clean_order_id).first():
        raise ConflictError('Esta orden ya fue procesada')

    resolved = _resolve_items(db, items)
    subtotal = round(sum(line.total for _, line, _ in resolved), 2)
    plan_ids = [line.plan_id for _, line, _ in resolved if line.plan_id]

    coupon = None
    discount = 0.0
    if coupon_code:
        validation = validate_coupon(
            db,
            coupon_code,
            user_id=user_id,
            plan_id=plan_ids[0] if plan_ids else None,
            subtotal=subtotal,
            time_provider=time_provider,
        )
        if not validation.valid:
            raise ValueError(validation.error)
        coupon = validation.coupon
        discount = validation.discount
    total = round(max(subtotal - discount, 0.0), 2)

    authorization = gateway.authorize(token, total, clean_order_id)
    if not authorization.approved:
        logger.warning(
            'checkout_declined provider=%s order_id=%s action_code=%s',
            gateway.name,
            clean_order_id,
            authorization.action_code,
        )
        record_observability_event('checkout_declined')
        raise PaymentDeclinedError(f'Pago rechazado: {authorization.message or "Error desconocido"}')

    card_token = None
    if register_card:
        try:
            card_token = gateway.register_card(token)
        except (GatewayError, httpx.HTTPError):
            logger.exception('checkout_card_token_failed provider=%s order_id=%s', gateway.name, clean_order_id)

    provider_label = gateway.name.capitalize()
    enrollments: list[tuple[CheckoutItem, int]] = []
    try:
        invoice = create_invoice(
            db,
            user_id=user_id,
            items=[line for _, line, _ in resolved],
            discount=discount,
            status=InvoiceStatus.PAID.value,
            coupon_id=coupon.id if coupon else None,
            payment_method=gateway.name,
            external_order_id=clean_order_id,
            notes=f'{provider_label} Order ID: {clean_order_id}, Auth: {authorization.transaction_id}',
            time_provider=time_provider,
        )
        if coupon is not None:
            redeem_coupon(db, coupon)
        for item, line, product in resolved:
            if isinstance(product, CreditPackage):
                for _ in range(line.quantity):
                    process_package_purchase(db, user_id, product.id, invoice_id=invoice.id, commit=False)
                continue
            if not (product.includes_classes and product.course_id):
                continue
            period = get_active_period(db)
            if period is None:
                raise ValueError('No hay un período académico activo')
            enrollment, created = create_enrollment(
                db,
                student_id=user_id,
                course_id=product.course_id,
                academic_period_id=period.id,
                time_provider=time_provider,
                commit=False,
            )
            if created:
                enrollment.classes_total = int(product.classes_per_period or 8)
            enrollments.append((item, enrollment.id))
        db.commit()
    except Exception:
        db.rollback()
        logger.exception('checkout_fulfilment_failed order_id=%s', clean_order_id)
        raise

    bookings_created = 0
    pending_schedules: list[int] = []
    for item, enrollment_id in enrollments:
        if not item.schedule:
            pending_schedules.append(enrollment_id)
            continue
        try:
            result = generate_bookings(db, enrollment_id, item.schedule, time_provider=time_provider)
        except ValueError as exc:
            logger.warning('checkout_schedule_failed enrollment_id=%s error=%s', enrollment_id, exc)
            pending_schedules.append(enrollment_id)
            continue
        bookings_created += result.created + result.reactivated

    logger.info(
        'checkout_completed provider=%s order_id=%s invoice_id=%s total=%s',
        gateway.name,
        clean_order_id,
        invoice.id,
        total,
    )
    return {
        'invoice_id': invoice.id,
        'invoice_number': invoice.invoice_number,
        'total': total,
        'discount': discount,
        'transaction_id': authorization.transaction_id,
        'card_token': card_token,
        'enrollment_ids': [enrollment_id for _, enrollment_id in enrollments],
        'bookings_created': bookings_created,
        'needs_schedule_setup': pending_schedules,
    }


def parse_notification(provider: str, payload: dict) -> tuple[str, str]:
    """Extract ``(external_order_id, status)`` from a provider webhook body."""
    key = str(provider or '').strip().lower()
    if key == 'paypal':
        resource = payload.get('resource') or {}
        order_id = resource.get('custom_id') or resource.get('invoice_id') or ''
        status = PAYPAL_EVENT_STATUS.get(str(payload.get('event_type') or ''), str(resource.get('status') or ''))
    elif key == 'niubiz':
        data_map = payload.get('dataMap') or {}
        order = payload.get('order') or {}
        order_id = payload.get('orderId') or payload.get('purchaseNumber') or order.get('purchaseNumber') or ''
        status = payload.get('status') or data_map.get('ACTION_CODE') or data_map.get('STATUS') or ''
    else:
        raise ValueError('Proveedor de pago no soportado')
    if not order_id or not status:
        raise ValueError('Notificación incompleta')
    return str(order_id), str(status)


def reconcile_payment_notification(
    db: Session,
    external_order_id: str,
    status: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Invoice:
    normalized = str(status or '').strip().upper()
    if normalized in PAID_STATUSES:
        target = InvoiceStatus.PAID.value
    elif normalized in FAILED_STATUSES:
        target = InvoiceStatus.CANCELLED.value
    else:
        raise ValueError('Estado de pago desconocido')

    invoice = find_invoice_by_order_id(db, external_order_id)
    if invoice is None:
        raise NotFoundError('Factura no encontrada')
    if invoice.status == target:
        return invoice
    if invoice.status == InvoiceStatus.PAID.value:
        # Paid invoices were fulfilled when they were paid; refunds go through the credit ledger.
        logger.warning('payment_reversal_refused order_id=%s invoice_id=%s status=%s', external_order_id, invoice.id, normalized)
        raise ConflictError('La factura ya fue pagada y entregada; el reembolso se gestiona manualmente')

    invoice.status = target
    if target == InvoiceStatus.PAID.value and invoice.paid_at is None:
        invoice.paid_at = local_naive(time_provider.now())
    db.commit()
    db.refresh(invoice)
    logger.info('payment_reconciled order_id=%s invoice_id=%s status=%s', external_order_id, invoice.id, target)
    return invoice
