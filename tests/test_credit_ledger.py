import json
import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from lingowow.core.errors import ConflictError, NotFoundError
from lingowow.core.time_provider import APP_ZONEINFO, FixedTimeProvider
from lingowow.db import Base
from lingowow.models import (
    AcademicPeriod,
    ClassBooking,
    Course,
    CreditPackage,
    CreditTransaction,
    Enrollment,
    Invoice,
    Plan,
    Role,
    User,
)
from lingowow.services.credit_service import (
    InsufficientCreditsError,
    add_credits,
    get_or_create_balance,
    list_transactions,
    process_package_purchase,
    purchase_plan_with_credits,
    spend_credits,
    verify_ledger,
)


class CreditLedgerTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tmpdir.name) / 'test_credit_ledger.db'
        self.engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        Base.metadata.create_all(bind=self.engine)
        self.db = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)()
        self.db.add_all(
            [
                User(id=1, email='s@lingowow.test', name='Lucía', role=Role.STUDENT.value),
                User(id=20, email='t@lingowow.test', name='Carmen', role=Role.TEACHER.value),
                Course(id=1, title='Inglés A1'),
                AcademicPeriod(id=1, name='Enero', start_date=date(2025, 1, 6), end_date=date(2025, 1, 31), is_active=True),
                CreditPackage(id=1, name='Pack 50', credits=50, bonus_credits=10, price=45.0),
                Plan(
                    id=1,
                    name='Plan Mensual',
                    course_id=1,
                    price=80.0,
                    includes_classes=True,
                    classes_per_period=4,
                    accepts_credits=True,
                    credit_price=40,
                ),
                Plan(id=2, name='Solo efectivo', price=50.0, accepts_credits=False),
            ]
        )
        self.db.commit()
        self.clock = FixedTimeProvider(datetime(2025, 1, 2, 9, 0, tzinfo=APP_ZONEINFO))

    def tearDown(self):
        self.db.close()
        self.engine.dispose()
        self._tmpdir.cleanup()

    def test_spend_moves_balance_and_records_before_after(self):
        add_credits(self.db, 1, 100, transaction_type='PURCHASE', description='Carga inicial')
        tx, balance = spend_credits(self.db, 1, 30, description='Clase suelta')

        self.assertEqual(tx.amount, -30)
        self.assertEqual(tx.balance_before, 100)
        self.assertEqual(tx.balance_after, 70)
        self.assertEqual(balance.available_credits, 70)
        self.assertEqual(balance.spent_credits, 30)
        self.assertEqual(balance.total_credits, 100)

    def test_insufficient_credits_change_nothing(self):
        add_credits(self.db, 1, 20, transaction_type='BONUS')
        with self.assertRaises(InsufficientCreditsError) as ctx:
            spend_credits(self.db, 1, 50)
        self.assertEqual(ctx.exception.data, {'required': 50, 'available': 20, 'missing': 30})
        self.assertEqual(get_or_create_balance(self.db, 1).available_credits, 20)
        self.assertEqual(self.db.query(CreditTransaction).count(), 1)

    def test_invalid_amounts_and_types_are_rejected(self):
        with self.assertRaises(ValueError):
            add_credits(self.db, 1, 0)
        with self.assertRaises(ValueError):
            add_credits(self.db, 1, 10, transaction_type='SPEND_CLASS')
        with self.assertRaises(ValueError):
            spend_credits(self.db, 1, 10, transaction_type='BONUS')

    def test_running_sum_matches_balance(self):
        add_credits(self.db, 1, 100, transaction_type='PURCHASE')
        spend_credits(self.db, 1, 30)
        process_package_purchase(self.db, 1, 1)
        add_credits(self.db, 1, -5, transaction_type='ADMIN_ADJUSTMENT', metadata={'admin_id': 99})
        add_credits(self.db, 1, 3, transaction_type='REWARD')

        rows = self.db.query(CreditTransaction).filter(CreditTransaction.user_id == 1).order_by(CreditTransaction.id).all()
        for row in rows:
            self.assertEqual(row.balance_after, row.balance_before + row.amount)
        for previous, current in zip(rows, rows[1:]):
            self.assertEqual(current.balance_before, previous.balance_after)

        balance = get_or_create_balance(self.db, 1)
        self.assertEqual(balance.available_credits, sum(r.amount for r in rows))
        self.assertEqual(balance.available_credits, 128)
        self.assertEqual(balance.bonus_credits, 13)
        self.assertEqual(json.loads(rows[3].metadata_json), {'admin_id': 99})

        check = verify_ledger(self.db, 1)
        self.assertTrue(check['consistent'])
        self.assertEqual(check['ledger_sum'], 128)

    def test_package_purchase_grants_credits_plus_bonus_in_one_entry(self):
        purchase = process_package_purchase(self.db, 1, 1)
        self.assertEqual(purchase.credits_received, 60)
        rows = self.db.query(CreditTransaction).all()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].transaction_type, 'PURCHASE')
        self.assertEqual(rows[0].related_entity_type, 'credit_package')
        with self.assertRaises(NotFoundError):
            process_package_purchase(self.db, 1, 99)

    def test_transaction_history_is_paginated_newest_first(self):
        for amount in (10, 20, 30):
            add_credits(self.db, 1, amount)
        page = list_transactions(self.db, 1, limit=2)
        self.assertEqual(page['total'], 3)
        self.assertTrue(page['has_more'])
        self.assertEqual([r.amount for r in page['transactions']], [30, 20])
        self.assertEqual(list_transactions(self.db, 1, transaction_type='purchase')['total'], 0)

    def test_plan_purchase_with_credits_enrolls_and_books(self):
        add_credits(self.db, 1, 50, transaction_type='PURCHASE')
        result = purchase_plan_with_credits(
            self.db,
            1,
            1,
            schedule=[{'teacher_id': 20, 'day_of_week': 0, 'start_time': '10:00', 'end_time': '11:00'}],
            time_provider=self.clock,
        )
        self.assertEqual(result['available_credits'], 10)
        self.assertEqual(result['bookings_created'], 4)
        self.assertTrue(result['invoice_number'].startswith('INV-CREDITS-'))

        invoice = self.db.query(Invoice).filter(Invoice.id == result['invoice_id']).first()
        self.assertEqual(invoice.status, 'PAID')
        self.assertEqual(invoice.currency, 'CREDITS')
        self.assertEqual(invoice.notes, 'Pagado con 40 créditos')
        enrollment = self.db.query(Enrollment).filter(Enrollment.id == result['enrollment_id']).first()
        self.assertEqual(enrollment.student_id, 1)
        self.assertEqual(self.db.query(ClassBooking).count(), 4)

    def test_plan_purchase_failures_roll_back(self):
        add_credits(self.db, 1, 10, transaction_type='PURCHASE')
        with self.assertRaises(InsufficientCreditsError):
            purchase_plan_with_credits(self.db, 1, 1, time_provider=self.clock)
        with self.assertRaises(ValueError):
            purchase_plan_with_credits(self.db, 1, 2, time_provider=self.clock)
        with self.assertRaises(NotFoundError):
            purchase_plan_with_credits(self.db, 1, 99, time_provider=self.clock)
        self.assertEqual(self.db.query(Invoice).count(), 0)
        self.assertEqual(self.db.query(Enrollment).count(), 0)
        self.assertEqual(get_or_create_balance(self.db, 1).available_credits, 10)

    def test_buying_the_same_plan_twice_is_refused_and_keeps_the_first_purchase(self):
        add_credits(self.db, 1, 100, transaction_type='PURCHASE')
        monday = [{'teacher_id': 20, 'day_of_week': 0, 'start_time': '10:00', 'end_time': '11:00'}]
        purchase_plan_with_credits(self.db, 1, 1, schedule=monday, time_provider=self.clock)

        with self.assertRaises(ConflictError):
            purchase_plan_with_credits(self.db, 1, 1, schedule=monday, time_provider=self.clock)

        fresh = sessionmaker(bind=self.engine)()
        try:
            self.assertEqual(get_or_create_balance(fresh, 1).available_credits, 60)
            self.assertEqual(
                [row.transaction_type for row in fresh.query(CreditTransaction).order_by(CreditTransaction.id)],
                ['PURCHASE', 'SPEND_PLAN'],
            )
            self.assertEqual(fresh.query(Invoice).count(), 1)
            self.assertEqual(fresh.query(Enrollment).count(), 1)
            self.assertEqual(fresh.query(ClassBooking).count(), 4)
            self.assertTrue(verify_ledger(fresh, 1)['consistent'])
        finally:
            fresh.close()

    def test_plan_purchase_without_schedule_is_committed(self):
        add_credits(self.db, 1, 50, transaction_type='PURCHASE')
        result = purchase_plan_with_credits(self.db, 1, 1, time_provider=self.clock)
        self.assertEqual(result['bookings_created'], 0)

        fresh = sessionmaker(bind=self.engine)()
        try:
            self.assertEqual(get_or_create_balance(fresh, 1).available_credits, 10)
            self.assertEqual(fresh.query(Enrollment).one().classes_total, 4)
        finally:
            fresh.close()


if __name__ == '__main__':
    unittest.main()
