"""Per-user credit ledger.

``UserCreditBalance`` holds the running totals and ``CreditTransaction`` the
append-only history. Every mutation locks the balance row, writes one
transaction whose ``balance_after`` equals ``balance_before + amount`` and
updates the counters inside the same database transaction.
"""
from __future__ import annotations

import json
import logging

from sqlalchemy.orm import Session

from lingowow.core.errors import ConflictError, NotFoundError
from lingowow.core.time_provider import TimeProvider, default_time_provider
from lingowow.models import (
    CreditPackage,
    CreditPackagePurchase,
    CreditTransaction,
    CreditTransactionType as T,
    Enrollment,
    EnrollmentStatus,
    InvoiceStatus,
    Plan,
    UserCreditBalance,
)
from lingowow.services.academic_period_service import get_active_period
from lingowow.services.booking_service import generate_bookings
from lingowow.services.enrollment_service import create_enrollment
from lingowow.services.invoice_service import LineItem, create_invoice


logger = logging.getLogger(__name__)

CREDIT_TYPES = frozenset({T.PURCHASE.value, T.BONUS.value, T.REWARD.value, T.REFUND.value})
DEBIT_TYPES = frozenset(
    {T.SPEND_PRODUCT.value, T.SPEND_PLAN.value, T.SPEND_COURSE.value, T.SPEND_CLASS.value, T.EXPIRED.value}
)


class InsufficientCreditsError(ValueError):
    def __init__(self, required: int, available: int):
        super().__init__('No tienes suficientes créditos')
        self.required = required
        self.available = available

    @property
    def data(self) -> dict:
        return {
            'required': self.required,
            'available': self.available,
            'missing': self.required - self.available,
        }


def signed_amount(transaction_type: str, amount: int) -> int:
    value = int(amount)
    if transaction_type == T.ADMIN_ADJUSTMENT.value:
        if value == 0:
            raise ValueError('El monto debe ser distinto de cero')
        return value
    if value <= 0:
        raise ValueError('El monto debe ser mayor a cero')
    if transaction_type in CREDIT_TYPES:
        return value
    if transaction_type in DEBIT_TYPES:
        return -value
    raise ValueError('Tipo de transacción inválido')


def get_or_create_balance(db: Session, user_id: int, *, lock: bool = False) -> UserCreditBalance:
    query = db.query(UserCreditBalance).filter(UserCreditBalance.user_id == user_id)
    if lock:
        query = query.with_for_update()
    row = query.first()
    if row:
        return row
    row = UserCreditBalance(user_id=user_id, total_credits=0, available_credits=0, spent_credits=0, bonus_credits=0)
    db.add(row)
    db.flush()
    return row


def _record(
    db: Session,
    user_id: int,
    transaction_type: str,
    amount: int,
    *,
    description: str = '',
    related_entity_type: str | None = None,
    related_entity_id: int | None = None,
    metadata: dict | None = None,
    bonus_portion: int = 0,
) -> tuple[CreditTransaction, UserCreditBalance]:
    """Write one ledger entry without committing."""
    signed = signed_amount(transaction_type, amount)
    balance = get_or_create_balance(db, user_id, lock=True)
    before = int(balance.available_credits or 0)
    after = before + signed
    if after < 0:
        raise InsufficientCreditsError(required=-signed, available=before)

    balance.available_credits = after
    if transaction_type in (T.PURCHASE.value, T.ADMIN_ADJUSTMENT.value):
        balance.total_credits = int(balance.total_credits or 0) + signed
    if transaction_type in (T.BONUS.value, T.REWARD.value):
        balance.bonus_credits = int(balance.bonus_credits or 0) + signed
    if bonus_portion:
        balance.bonus_credits = int(balance.bonus_credits or 0) + int(bonus_portion)
    if signed < 0 and transaction_type in DEBIT_TYPES:
        balance.spent_credits = int(balance.spent_credits or 0) - signed

    row = CreditTransaction(
        user_id=user_id,
        transaction_type=transaction_type,
        amount=signed,
        balance_before=before,
        balance_after=after,
        description=description,
        related_entity_type=related_entity_type,
        related_entity_id=related_entity_id,
        metadata_json=json.dumps(metadata or {}, default=str),
    )
    db.add(row)
    db.flush()
    return row, balance


def apply_transaction(
    db: Session,
    user_id: int,
    transaction_type: str,
    amount: int,
    *,
    description: str = '',
    related_entity_type: str | None = None,
    related_entity_id: int | None = None,
    metadata: dict | None = None,
) -> tuple[CreditTransaction, UserCreditBalance]:
    try:
        row, balance = _record(
            db,
            user_id,
            str(transaction_type).upper(),
            amount,
            description=description,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
            metadata=metadata,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(row)
    db.refresh(balance)
    logger.info(
        'credit_transaction user_id=%s type=%s amount=%s balance_after=%s',
        user_id,
        row.transaction_type,
        row.amount,
        row.balance_after,
    )
    return row, balance


def add_credits(
    db: Session,
    user_id: int,
    amount: int,
    *,
    transaction_type: str = T.BONUS.value,
    description: str = '',
    metadata: dict | None = None,
) -> tuple[CreditTransaction, UserCreditBalance]:
    if transaction_type not in CREDIT_TYPES and transaction_type != T.ADMIN_ADJUSTMENT.value:
        raise ValueError('Tipo de transacción inválido')
    return apply_transaction(db, user_id, transaction_type, amount, description=description, metadata=metadata)


def spend_credits(
    db: Session,
    user_id: int,
    amount: int,
    *,
    transaction_type: str = T.SPEND_CLASS.value,
    description: str = '',
    related_entity_type: str | None = None,
    related_entity_id: int | None = None,
    metadata: dict | None = None,
) -> tuple[CreditTransaction, UserCreditBalance]:
    if transaction_type not in DEBIT_TYPES:
        raise ValueError('Tipo de transacción inválido')
    return apply_transaction(
        db,
        user_id,
        transaction_type,
        amount,
        description=description,
        related_entity_type=related_entity_type,
        related_entity_id=related_entity_id,
        metadata=metadata,
    )


def list_transactions(
    db: Session,
    user_id: int,
    *,
    limit: int = 50,
    offset: int = 0,
    transaction_type: str | None = None,
) -> dict:
    query = db.query(CreditTransaction).filter(CreditTransaction.user_id == user_id)
    if transaction_type:
        query = query.filter(CreditTransaction.transaction_type == str(transaction_type).upper())
    total = query.count()
    rows = (
        query.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .offset(max(0, int(offset)))
        .limit(max(1, min(int(limit), 200)))
        .all()
    )
    return {
        'transactions': rows,
        'total': total,
        'has_more': offset + len(rows) < total,
    }


def verify_ledger(db: Session, user_id: int) -> dict:
    """Recompute the balance from the transaction history."""
    balance = db.query(UserCreditBalance).filter(UserCreditBalance.user_id == user_id).first()
    available = int(balance.available_credits or 0) if balance else 0
    rows = (
        db.query(CreditTransaction)
        .filter(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.id.asc())
        .all()
    )
    running = 0
    chain_ok = True
    for row in rows:
        if row.balance_before != running or row.balance_after != row.balance_before + row.amount:
            chain_ok = False
        running += row.amount
    consistent = chain_ok and running == available
    if not consistent:
        logger.warning(
            'credit_ledger_mismatch user_id=%s available=%s ledger_sum=%s',
            user_id,
            available,
            running,
        )
    return {
        'user_id': user_id,
        'available_credits': available,
        'ledger_sum': running,
        'chain_ok': chain_ok,
        'consistent': consistent,
    }


def list_packages(db: Session, *, active_only: bool = True) -> list[CreditPackage]:
    query = db.query(CreditPackage)
    if active_only:
        query = query.filter(CreditPackage.is_active.is_(True))
    return query.order_by(CreditPackage.sort_order.asc(), CreditPackage.price.asc()).all()


def get_package(db: Session, package_id: int) -> CreditPackage:
    row = db.query(CreditPackage).filter(CreditPackage.id == package_id).first()
    if not row:
        raise NotFoundError('Paquete no encontrado')
    return row


def create_package(
    db: Session,
    *,
    name: str,
    credits: int,
    price: float,
    bonus_credits: int = 0,
    description: str = '',
    is_popular: bool = False,
    sort_order: int = 0,
) -> CreditPackage:
    if int(credits) <= 0:
        raise ValueError('El paquete debe incluir créditos')
    if int(bonus_credits) < 0 or float(price) < 0:
        raise ValueError('Valores del paquete inválidos')
    row = CreditPackage(
        name=str(name).strip(),
        description=description,
        credits=int(credits),
        bonus_credits=int(bonus_credits),
        price=float(price),
        is_popular=is_popular,
        sort_order=sort_order,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def update_package(db: Session, package_id: int, **changes) -> CreditPackage:
    row = get_package(db, package_id)
    if changes.get('credits') is not None and int(changes['credits']) <= 0:
        raise ValueError('El paquete debe incluir créditos')
    for key in ('name', 'description', 'credits', 'bonus_credits', 'price', 'is_active', 'is_popular', 'sort_order'):
        if key in changes and changes[key] is not None:
            setattr(row, key, changes[key])
    db.commit()
    db.refresh(row)
    return row


def process_package_purchase(
    db: Session,
    user_id: int,
    package_id: int,
    *,
    invoice_id: int | None = None,
    commit: bool = True,
) -> CreditPackagePurchase:
    """Grant a purchased package: one PURCHASE entry for credits plus bonus."""
    package = get_package(db, package_id)
    total_credits = int(package.credits) + int(package.bonus_credits or 0)
    try:
        purchase = CreditPackagePurchase(
            user_id=user_id,
            package_id=package.id,
            invoice_id=invoice_id,
            credits_received=total_credits,
            status='CONFIRMED',
        )
        db.add(purchase)
        _record(
            db,
            user_id,
            T.PURCHASE.value,
            total_credits,
            description=f'Compra de {package.name}',
            related_entity_type='credit_package',
            related_entity_id=package.id,
            metadata={
                'package_name': package.name,
                'base_credits': package.credits,
                'bonus_credits': package.bonus_credits,
                'price': package.price,
            },
            bonus_portion=int(package.bonus_credits or 0),
        )
        if commit:
            db.commit()
    except Exception:
        db.rollback()
        raise
    if commit:
        db.refresh(purchase)
    logger.info('credit_package_purchased user_id=%s package_id=%s credits=%s', user_id, package.id, total_credits)
    return purchase


def purchase_plan_with_credits(
    db: Session,
    user_id: int,
    plan_id: int,
    *,
    schedule: list | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    """Pay a plan with credits; enrolls the user when the plan includes classes."""
    plan = db.query(Plan).filter(Plan.id == plan_id, Plan.is_active.is_(True)).first()
    if not plan:
        raise NotFoundError('Plan no encontrado')
    if not plan.accepts_credits or not plan.credit_price:
        raise ValueError('Este plan no acepta créditos')
    period = None
    if plan.includes_classes and plan.course_id:
        period = get_active_period(db)
        if period is None:
            raise ValueError('No hay un período académico activo')
        already_enrolled = (
            db.query(Enrollment.id)
            .filter(
                Enrollment.student_id == user_id,
                Enrollment.course_id == plan.course_id,
                Enrollment.academic_period_id == period.id,
                Enrollment.status != EnrollmentStatus.CANCELLED.value,
            )
            .first()
        )
        if already_enrolled:
            raise ConflictError('Ya tienes este plan en el período actual')

    enrollment = None
    generation = None
    try:
        tx, balance = _record(
            db,
            user_id,
            T.SPEND_PLAN.value,
            int(plan.credit_price),
            description=f'Compra de {plan.name}',
            related_entity_type='plan',
            related_entity_id=plan.id,
            metadata={'plan_name': plan.name, 'plan_price': plan.price, 'credit_price': plan.credit_price},
        )
        invoice = create_invoice(
            db,
            user_id=user_id,
            items=[LineItem(name=plan.name, price=0.0, plan_id=plan.id)],
            status=InvoiceStatus.PAID.value,
            currency='CREDITS',
            payment_method='credits',
            notes=f'Pagado con {plan.credit_price} créditos',
            number_prefix='INV-CREDITS',
            time_provider=time_provider,
        )
        if period is not None:
            enrollment, created = create_enrollment(
                db,
                student_id=user_id,
                course_id=plan.course_id,
                academic_period_id=period.id,
                time_provider=time_provider,
                commit=False,
            )
            if created:
                enrollment.classes_total = int(plan.classes_per_period or 8)
        if enrollment is not None and schedule:
            db.flush()
            generation = generate_bookings(db, enrollment.id, schedule, time_provider=time_provider)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info('plan_purchased_with_credits user_id=%s plan_id=%s credits=%s', user_id, plan.id, plan.credit_price)
    return {
        'transaction_id': tx.id,
        'available_credits': balance.available_credits,
        'invoice_id': invoice.id,
        'invoice_number': invoice.invoice_number,
        'enrollment_id': enrollment.id if enrollment is not None else None,
        'bookings_created': generation.created if generation is not None else 0,
    }


def serialize_balance(row: UserCreditBalance) -> dict:
    return {
        'user_id': row.user_id,
        'total_credits': int(row.total_credits or 0),
        'available_credits': int(row.available_credits or 0),
        'spent_credits': int(row.spent_credits or 0),
        'bonus_credits': int(row.bonus_credits or 0),
    }


def serialize_transaction(row: CreditTransaction) -> dict:
    return {
        'id': row.id,
        'transaction_type': row.transaction_type,
        'amount': row.amount,
        'balance_before': row.balance_before,
        'balance_after': row.balance_after,
        'description': row.description,
        'related_entity_type': row.related_entity_type,
        'related_entity_id': row.related_entity_id,
        'created_at': row.created_at.isoformat() if row.created_at else None,
    }


def serialize_package(row: CreditPackage) -> dict:
    return {
        'id': row.id,
        'name': row.name,
        'description': row.description,
        'credits': row.credits,
        'bonus_credits': row.bonus_credits,
        'total_credits': row.credits + (row.bonus_credits or 0),
        'price': row.price,
        'is_active': bool(row.is_active),
        'is_popular': bool(row.is_popular),
    }
