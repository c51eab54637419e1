"""Deployment smoke checks: run after `alembic upgrade head` and `bootstrap.py`."""
import sys

from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import inspect, text

from lingowow.config import settings
from lingowow.db import Base, SessionLocal, engine
from lingowow.models import UserCreditBalance
from lingowow.scheduler import scheduler, start_scheduler, stop_scheduler
from lingowow.services.academic_period_service import get_active_period
from lingowow.services.credit_service import verify_ledger


SCHEDULED_JOB_IDS = frozenset({'complete_elapsed_bookings', 'activate_started_enrollments'})
LEDGER_SAMPLE_SIZE = 25

OK = '\033[32mOK  \033[0m'
BAD = '\033[31mBAD \033[0m'


class CheckFailed(RuntimeError):
    pass


def database_round_trip():
    with engine.connect() as conn:
        conn.execute(text('SELECT 1'))
    missing = sorted(set(Base.metadata.tables) - set(inspect(engine).get_table_names()))
    if missing:
        raise CheckFailed(f'tables missing: {missing}')
    return f'{len(Base.metadata.tables)} tables'


def migrations_current():
    heads = set(ScriptDirectory.from_config(Config('alembic.ini')).get_heads())
    with engine.connect() as conn:
        revision = MigrationContext.configure(conn).get_current_revision()
    if revision not in heads:
        raise CheckFailed(f'database at {revision}, repository heads {sorted(heads)}')
    return revision


def settings_sane():
    if settings.auth_secret == 'change-me':
        raise CheckFailed('AUTH_SECRET still has the default value')
    if not settings.payment_webhook_secret:
        raise CheckFailed('PAYMENT_WEBHOOK_SECRET is empty, payment notifications will be refused')
    if settings.attendance_early_entry_minutes < 0 or settings.attendance_late_entry_minutes < 0:
        raise CheckFailed('attendance window must not be negative')
    return f'timezone={settings.app_timezone}'


def gateways_configured():
    providers = [
        name
        for name, values in (
            ('niubiz', (settings.niubiz_merchant_id, settings.niubiz_user, settings.niubiz_password)),
            ('paypal', (settings.paypal_client_id, settings.paypal_client_secret)),
        )
        if all(values)
    ]
    if not providers:
        raise CheckFailed('no payment provider has credentials')
    return ', '.join(providers)


def scheduler_jobs():
    if not settings.enable_scheduler:
        return 'disabled'
    start_scheduler()
    try:
        absent = sorted(SCHEDULED_JOB_IDS - {job.id for job in scheduler.get_jobs()})
    finally:
        stop_scheduler()
    if absent:
        raise CheckFailed(f'jobs not registered: {absent}')
    return f'{len(SCHEDULED_JOB_IDS)} jobs'


def active_period():
    with SessionLocal() as db:
        period = get_active_period(db)
    if period is None:
        raise CheckFailed('no active academic period, run bootstrap.py')
    return f'{period.name} {period.start_date}..{period.end_date}'


def ledger_consistent():
    with SessionLocal() as db:
        user_ids = [
            row.user_id
            for row in db.query(UserCreditBalance.user_id)
            .order_by(UserCreditBalance.updated_at.desc())
            .limit(LEDGER_SAMPLE_SIZE)
        ]
        drifted = [user_id for user_id in user_ids if not verify_ledger(db, user_id)['consistent']]
    if drifted:
        raise CheckFailed(f'balance differs from transaction sum for users {drifted}')
    return f'{len(user_ids)} balances verified'


CHECKS = (
    ('database', database_round_trip),
    ('migrations', migrations_current),
    ('settings', settings_sane),
    ('payment gateways', gateways_configured),
    ('scheduler', scheduler_jobs),
    ('academic period', active_period),
    ('credit ledger', ledger_consistent),
)


def main() -> int:
    failures = 0
    for label, check in CHECKS:
        try:
            detail = check()
        except Exception as exc:
            failures += 1
            print(f'{BAD}{label}: {exc}')
        else:
            print(f'{OK}{label}: {detail}')
    return 1 if failures else 0


if __name__ == '__main__':
    sys.exit(main())
