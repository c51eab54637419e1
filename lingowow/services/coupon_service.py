from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from lingowow.core.errors import ConflictError, NotFoundError
from lingowow.core.time_provider import TimeProvider, default_time_provider, local_naive
from lingowow.models import Coupon, CouponType, Invoice, InvoiceStatus


logger = logging.getLogger(__name__)

COUPON_FIELDS = (
    'name',
    'description',
    'type',
    'value',
    'min_amount',
    'max_discount',
    'usage_limit',
    'user_limit',
    'is_active',
    'starts_at',
    'expires_at',
    'restricted_user_id',
    'restricted_plan_id',
)


@dataclass
class CouponValidation:
    valid: bool
    error: str | None = None
    coupon: Coupon | None = None
    discount: float = 0.0

    def as_dict(self) -> dict:
        payload: dict = {'valid': self.valid}
        if self.error:
            payload['error'] = self.error
        if self.coupon is not None:
            payload['coupon'] = serialize_coupon(self.coupon)
            payload['discount'] = self.discount
        return payload


def normalize_code(code: str) -> str:
    return str(code or '').strip().upper()


def calculate_discount(coupon: Coupon, subtotal: float) -> float:
    amount = max(float(subtotal or 0), 0.0)
    if coupon.type == CouponType.PERCENTAGE.value:
        discount = amount * float(coupon.value or 0) / 100
        if coupon.max_discount is not None:
            discount = min(discount, float(coupon.max_discount))
    else:
        discount = float(coupon.value or 0)
    return round(min(max(discount, 0.0), amount), 2)


def _user_redemptions(db: Session, coupon_id: int, user_id: int) -> int:
    return (
        db.query(Invoice)
        .filter(
            Invoice.coupon_id == coupon_id,
            Invoice.user_id == user_id,
            Invoice.status == InvoiceStatus.PAID.value,
        )
        .count()
    )


def validate_coupon(
    db: Session,
    code: str,
    *,
    user_id: int | None = None,
    plan_id: int | None = None,
    subtotal: float | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> CouponValidation:
    """Run the coupon checks in order; the first failing one is reported."""
    clean_code = normalize_code(code)
    coupon = db.query(Coupon).filter(Coupon.code == clean_code).first() if clean_code else None
    if coupon is None:
        return CouponValidation(valid=False, error='Cupón no encontrado')
    if not coupon.is_active:
        return CouponValidation(valid=False, error='Este cupón no está activo')

    now = local_naive(time_provider.now())
    if coupon.starts_at and coupon.starts_at > now:
        return CouponValidation(valid=False, error='Este cupón aún no está disponible')
    if coupon.expires_at and coupon.expires_at < now:
        return CouponValidation(valid=False, error='Este cupón ha expirado')
    if coupon.usage_limit is not None and int(coupon.usage_count or 0) >= int(coupon.usage_limit):
        return CouponValidation(valid=False, error='Este cupón ha alcanzado su límite de uso')
    if coupon.restricted_user_id and coupon.restricted_user_id != user_id:
        return CouponValidation(valid=False, error='Este cupón no está disponible para tu cuenta')
    if coupon.restricted_plan_id and coupon.restricted_plan_id != plan_id:
        return CouponValidation(valid=False, error='Este cupón no aplica para este plan')

    if coupon.user_limit is not None and user_id:
        if _user_redemptions(db, coupon.id, user_id) >= int(coupon.user_limit):
            return CouponValidation(valid=False, error='Ya utilizaste este cupón el máximo de veces permitido')
    if subtotal is not None and coupon.min_amount is not None and float(subtotal) < float(coupon.min_amount):
        return CouponValidation(valid=False, error=f'El monto mínimo para este cupón es {coupon.min_amount:.2f}')

    discount = calculate_discount(coupon, subtotal) if subtotal is not None else 0.0
    return CouponValidation(valid=True, coupon=coupon, discount=discount)


def redeem_coupon(db: Session, coupon: Coupon) -> None:
    """Count one use of the coupon. The caller commits."""
    db.query(Coupon).filter(Coupon.id == coupon.id).update(
        {Coupon.usage_count: Coupon.usage_count + 1},
        synchronize_session='fetch',
    )


def _apply_fields(row: Coupon, changes: dict) -> None:
    for key in COUPON_FIELDS:
        if key not in changes:
            continue
        value = changes[key]
        if key == 'type' and value is not None:
            value = str(value).upper()
            if value not in {t.value for t in CouponType}:
                raise ValueError('Tipo de cupón inválido')
        setattr(row, key, value)
    if row.value is None or float(row.value) <= 0:
        raise ValueError('El valor del cupón debe ser mayor a cero')
    if row.type == CouponType.PERCENTAGE.value and float(row.value) > 100:
        raise ValueError('El porcentaje no puede superar 100')
    if row.starts_at and row.expires_at and row.expires_at <= row.starts_at:
        raise ValueError('La fecha de expiración debe ser posterior a la de inicio')


def create_coupon(db: Session, *, code: str, **fields) -> Coupon:
    clean_code = normalize_code(code)
    if not clean_code:
        raise ValueError('El código del cupón es obligatorio')
    if db.query(Coupon).filter(Coupon.code == clean_code).first():
        raise ConflictError('Ya existe un cupón con ese código')
    row = Coupon(code=clean_code, type=CouponType.PERCENTAGE.value, usage_count=0, is_active=True)
    _apply_fields(row, fields)
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info('coupon_created coupon_id=%s code=%s', row.id, row.code)
    return row


def update_coupon(db: Session, coupon_id: int, **changes) -> Coupon:
    row = get_coupon(db, coupon_id)
    try:
        _apply_fields(row, changes)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(row)
    return row


def deactivate_coupon(db: Session, coupon_id: int) -> Coupon:
    """Retire a coupon. Rows are kept because invoices reference them."""
    row = get_coupon(db, coupon_id)
    if row.is_active:
        row.is_active = False
        db.commit()
        db.refresh(row)
        logger.info('coupon_deactivated coupon_id=%s code=%s', row.id, row.code)
    return row


def get_coupon(db: Session, coupon_id: int) -> Coupon:
    row = db.query(Coupon).filter(Coupon.id == coupon_id).first()
    if not row:
        raise NotFoundError('Cupón no encontrado')
    return row


def list_coupons(db: Session, *, active_only: bool = False) -> list[Coupon]:
    query = db.query(Coupon)
    if active_only:
        query = query.filter(Coupon.is_active.is_(True))
    return query.order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_coupon(row: Coupon) -> dict:
    return {
        'id': row.id,
        'code': row.code,
        'name': row.name,
        'description': row.description,
        'type': row.type,
        'value': row.value,
        'min_amount': row.min_amount,
        'max_discount': row.max_discount,
        'usage_limit': row.usage_limit,
        'usage_count': row.usage_count,
        'user_limit': row.user_limit,
        'is_active': bool(row.is_active),
        'starts_at': _iso(row.starts_at),
        'expires_at': _iso(row.expires_at),
    }
