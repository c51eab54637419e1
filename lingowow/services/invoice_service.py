from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

from sqlalchemy.orm import Session

from lingowow.config import settings
from lingowow.core.errors import NotFoundError
from lingowow.core.time_provider import TimeProvider, default_time_provider, local_naive
from lingowow.models import Invoice, InvoiceItem, InvoiceStatus


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineItem:
    name: str
    price: float
    quantity: int = 1
    plan_id: int | None = None
    package_id: int | None = None

    @property
    def total(self) -> float:
        return round(self.price * self.quantity, 2)


def new_invoice_number(prefix: str = 'INV') -> str:
    return f'{prefix}-{secrets.token_hex(4).upper()}'


def create_invoice(
    db: Session,
    *,
    user_id: int,
    items: list[LineItem],
    discount: float = 0.0,
    tax: float = 0.0,
    status: str = InvoiceStatus.DRAFT.value,
    currency: str | None = None,
    coupon_id: int | None = None,
    payment_method: str = '',
    external_order_id: str | None = None,
    notes: str = '',
    number_prefix: str = 'INV',
    time_provider: TimeProvider = default_time_provider,
) -> Invoice:
    """Add an invoice with its items to the session and flush it."""
    subtotal = round(sum(item.total for item in items), 2)
    total = round(max(subtotal - discount, 0.0) + tax, 2)
    invoice = Invoice(
        invoice_number=new_invoice_number(number_prefix),
        user_id=user_id,
        status=status,
        subtotal=subtotal,
        discount=round(discount, 2),
        tax=round(tax, 2),
        total=total,
        currency=currency or settings.currency,
        coupon_id=coupon_id,
        payment_method=payment_method,
        external_order_id=external_order_id,
        notes=notes,
        paid_at=local_naive(time_provider.now()) if status == InvoiceStatus.PAID.value else None,
    )
    for item in items:
        invoice.items.append(
            InvoiceItem(
                plan_id=item.plan_id,
                package_id=item.package_id,
                name=item.name,
                price=item.price,
                quantity=item.quantity,
                total=item.total,
            )
        )
    db.add(invoice)
    db.flush()
    return invoice


def get_invoice(db: Session, invoice_id: int) -> Invoice:
    row = db.query(Invoice).filter(Invoice.id == invoice_id).first()
    if not row:
        raise NotFoundError('Factura no encontrada')
    return row


def list_user_invoices(db: Session, user_id: int, *, limit: int = 20, offset: int = 0) -> dict:
    query = db.query(Invoice).filter(Invoice.user_id == user_id)
    total = query.count()
    rows = query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).offset(max(offset, 0)).limit(max(1, min(limit, 100))).all()
    return {'invoices': rows, 'total': total, 'has_more': offset + len(rows) < total}


def find_invoice_by_order_id(db: Session, external_order_id: str) -> Invoice | None:
    order_id = str(external_order_id or '').strip()
    if not order_id:
        return None
    row = db.query(Invoice).filter(Invoice.external_order_id == order_id).first()
    if row:
        return row
    # Older invoices only carry the order id inside their notes.
    return (
        db.query(Invoice)
        .filter(Invoice.notes.contains(f'Order ID: {order_id}'))
        .order_by(Invoice.id.desc())
        .first()
    )


def serialize_invoice(row: Invoice) -> dict:
    return {
        'id': row.id,
        'invoice_number': row.invoice_number,
        'user_id': row.user_id,
        'status': row.status,
        'subtotal': row.subtotal,
        'discount': row.discount,
        'tax': row.tax,
        'total': row.total,
        'currency': row.currency,
        'payment_method': row.payment_method,
        'notes': row.notes,
        'paid_at': row.paid_at.isoformat() if row.paid_at else None,
        'items': [
            {'name': item.name, 'price': item.price, 'quantity': item.quantity, 'total': item.total}
            for item in row.items
        ],
    }
