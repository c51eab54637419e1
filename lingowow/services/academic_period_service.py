"""Academic periods: 28-day teaching blocks plus loose "special weeks".

Each month contributes one regular period starting on its first Monday. Any
Monday-Sunday week of the year that no regular period fully covers becomes a
special-week period.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy.orm import Session

from lingowow.core.errors import ConflictError, NotFoundError
from lingowow.core.time_provider import TimeProvider, default_time_provider
from lingowow.models import AcademicPeriod


logger = logging.getLogger(__name__)

PERIOD_LENGTH_DAYS = 28


@dataclass(frozen=True)
class PeriodRange:
    name: str
    start_date: date
    end_date: date
    is_special_week: bool = False

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


def first_monday(year: int, month: int) -> date:
    first = date(year, month, 1)
    return first + timedelta(days=(7 - first.weekday()) % 7)


def generate_periods_for_year(year: int) -> list[PeriodRange]:
    year_end = date(year, 12, 31)
    regular: list[PeriodRange] = []
    for month in range(1, 13):
        start = first_monday(year, month)
        regular.append(
            PeriodRange(
                name=f'Período {month} {year}',
                start_date=start,
                end_date=start + timedelta(days=PERIOD_LENGTH_DAYS - 1),
            )
        )

    special: list[PeriodRange] = []
    week_start = first_monday(year, 1)
    while week_start <= year_end:
        week_end = week_start + timedelta(days=6)
        covered = any(p.start_date <= week_start and week_end <= p.end_date for p in regular)
        if not covered and week_end <= year_end:
            special.append(
                PeriodRange(
                    name=f'Semana Especial {len(special) + 1} {year}',
                    start_date=week_start,
                    end_date=week_end,
                    is_special_week=True,
                )
            )
        week_start += timedelta(days=7)

    return regular + special


def persist_generated_periods(
    db: Session,
    year: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> list[AcademicPeriod]:
    """Store the generated periods of ``year`` that are not stored yet."""
    today = time_provider.today()
    has_active = db.query(AcademicPeriod).filter(AcademicPeriod.is_active.is_(True)).first() is not None
    created: list[AcademicPeriod] = []
    for item in generate_periods_for_year(year):
        exists = (
            db.query(AcademicPeriod)
            .filter(AcademicPeriod.start_date == item.start_date, AcademicPeriod.end_date == item.end_date)
            .first()
        )
        if exists:
            continue
        is_active = not has_active and item.contains(today)
        if is_active:
            has_active = True
        row = AcademicPeriod(
            name=item.name,
            start_date=item.start_date,
            end_date=item.end_date,
            is_special_week=item.is_special_week,
            is_active=is_active,
        )
        db.add(row)
        created.append(row)
    db.commit()
    for row in created:
        db.refresh(row)
    logger.info('academic_periods_generated year=%s created=%s', year, len(created))
    return created


def create_period(
    db: Session,
    *,
    name: str,
    start_date: date,
    end_date: date,
    is_special_week: bool = False,
) -> AcademicPeriod:
    if end_date < start_date:
        raise ValueError('La fecha de fin debe ser posterior a la fecha de inicio')
    clean_name = str(name or '').strip()
    if not clean_name:
        raise ValueError('El nombre del período es obligatorio')
    overlapping = (
        db.query(AcademicPeriod)
        .filter(
            AcademicPeriod.is_special_week.is_(is_special_week),
            AcademicPeriod.start_date <= end_date,
            AcademicPeriod.end_date >= start_date,
        )
        .first()
    )
    if overlapping:
        raise ConflictError(f'El período se superpone con {overlapping.name}')
    row = AcademicPeriod(
        name=clean_name,
        start_date=start_date,
        end_date=end_date,
        is_special_week=is_special_week,
        is_active=False,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def list_periods(db: Session, *, year: int | None = None) -> list[AcademicPeriod]:
    query = db.query(AcademicPeriod)
    if year:
        query = query.filter(AcademicPeriod.start_date >= date(year, 1, 1), AcademicPeriod.start_date <= date(year, 12, 31))
    return query.order_by(AcademicPeriod.start_date.asc(), AcademicPeriod.id.asc()).all()


def get_period(db: Session, period_id: int) -> AcademicPeriod:
    row = db.query(AcademicPeriod).filter(AcademicPeriod.id == period_id).first()
    if not row:
        raise NotFoundError('Período académico no encontrado')
    return row


def get_active_period(db: Session) -> AcademicPeriod | None:
    return (
        db.query(AcademicPeriod)
        .filter(AcademicPeriod.is_active.is_(True))
        .order_by(AcademicPeriod.start_date.desc())
        .first()
    )


def get_period_for_date(db: Session, day: date) -> AcademicPeriod | None:
    return (
        db.query(AcademicPeriod)
        .filter(AcademicPeriod.start_date <= day, AcademicPeriod.end_date >= day)
        .order_by(AcademicPeriod.is_special_week.asc(), AcademicPeriod.start_date.asc())
        .first()
    )


def activate_period(db: Session, period_id: int) -> AcademicPeriod:
    row = get_period(db, period_id)
    db.query(AcademicPeriod).filter(AcademicPeriod.id != row.id).update({AcademicPeriod.is_active: False})
    row.is_active = True
    db.commit()
    db.refresh(row)
    logger.info('academic_period_activated period_id=%s', row.id)
    return row


def serialize_period(row: AcademicPeriod) -> dict:
    return {
        'id': row.id,
        'name': row.name,
        'start_date': row.start_date.isoformat(),
        'end_date': row.end_date.isoformat(),
        'is_active': bool(row.is_active),
        'is_special_week': bool(row.is_special_week),
    }
