import json
import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from lingowow.core.errors import ConflictError, NotFoundError
from lingowow.core.time_provider import APP_ZONEINFO, FixedTimeProvider
from lingowow.db import Base
from lingowow.models import (
    AcademicPeriod,
    ClassBooking,
    Coupon,
    Course,
    CreditPackage,
    Enrollment,
    Invoice,
    Plan,
    Role,
    User,
    UserCreditBalance,
)
from lingowow.services.checkout_service import (
    CheckoutItem,
    PaymentDeclinedError,
    authorize_checkout,
    parse_notification,
    reconcile_payment_notification,
    resolve_checkout_user,
    start_checkout,
)
from lingowow.services.observability_counters import clear_observability_events, count_observability_events
from lingowow.services.payment_gateways import (
    AuthorizationResult,
    GatewayError,
    GatewayNotConfiguredError,
    GatewaySession,
    NiubizGateway,
    PaymentGateway,
    PayPalGateway,
    get_gateway,
)


MONDAY_10 = [{'teacher_id': 20, 'day_of_week': 0, 'start_time': '10:00', 'end_time': '11:00'}]


class FakeGateway(PaymentGateway):
    name = 'fake'

    def __init__(self, approve=True):
        super().__init__()
        self.approve = approve
        self.authorized = []

    def create_session(self, amount, order_id):
        return GatewaySession(provider=self.name, order_id=order_id, amount=amount, currency='USD', session_key='sess-1')

    def authorize(self, token, amount, order_id):
        self.authorized.append((token, amount, order_id))
        if not self.approve:
            return AuthorizationResult(approved=False, action_code='101', message='Tarjeta vencida')
        return AuthorizationResult(approved=True, transaction_id='TX-1', action_code='000')

    def register_card(self, token):
        raise GatewayError('card vault down')


class CheckoutTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tmpdir.name) / 'test_checkout.db'
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
                Plan(id=1, name='Plan Mensual', course_id=1, price=80.0, includes_classes=True, classes_per_period=4),
                Coupon(id=1, code='SAVE10', type='PERCENTAGE', value=10.0, usage_count=0, is_active=True),
            ]
        )
        self.db.commit()
        self.clock = FixedTimeProvider(datetime(2025, 1, 2, 9, 0, tzinfo=APP_ZONEINFO))

    def tearDown(self):
        self.db.close()
        self.engine.dispose()
        self._tmpdir.cleanup()

    def _authorize(self, gateway, items, **kwargs):
        kwargs.setdefault('time_provider', self.clock)
        return authorize_checkout(self.db, gateway, user_id=1, token='tok-1', items=items, **kwargs)

    def test_package_checkout_with_coupon_survives_card_token_failure(self):
        gateway = FakeGateway()
        result = self._authorize(
            gateway,
            [CheckoutItem(kind='package', item_id=1)],
            order_id='ORD-1',
            coupon_code='save10',
            register_card=True,
        )

        self.assertEqual(gateway.authorized, [('tok-1', 40.5, 'ORD-1')])
        self.assertEqual(result['total'], 40.5)
        self.assertEqual(result['discount'], 4.5)
        self.assertIsNone(result['card_token'])

        invoice = self.db.query(Invoice).filter(Invoice.id == result['invoice_id']).first()
        self.assertEqual(invoice.status, 'PAID')
        self.assertEqual(invoice.external_order_id, 'ORD-1')
        self.assertEqual(invoice.notes, 'Fake Order ID: ORD-1, Auth: TX-1')
        self.assertEqual(invoice.total, 40.5)
        self.assertEqual(len(invoice.items), 1)

        self.assertEqual(self.db.query(Coupon).filter(Coupon.id == 1).first().usage_count, 1)
        balance = self.db.query(UserCreditBalance).filter(UserCreditBalance.user_id == 1).first()
        self.assertEqual(balance.available_credits, 60)

        with self.assertRaises(ConflictError):
            self._authorize(FakeGateway(), [CheckoutItem(kind='package', item_id=1)], order_id='ORD-1')

    def test_declined_payment_writes_nothing(self):
        clear_observability_events()
        with self.assertRaises(PaymentDeclinedError) as ctx:
            self._authorize(FakeGateway(approve=False), [CheckoutItem(kind='package', item_id=1)], order_id='ORD-2')
        self.assertEqual(str(ctx.exception), 'Pago rechazado: Tarjeta vencida')
        self.assertEqual(self.db.query(Invoice).count(), 0)
        self.assertEqual(self.db.query(UserCreditBalance).count(), 0)
        self.assertEqual(count_observability_events('checkout_declined'), 1)

    def test_invalid_coupon_stops_before_charging(self):
        gateway = FakeGateway()
        with self.assertRaises(ValueError):
            self._authorize(gateway, [CheckoutItem(kind='package', item_id=1)], order_id='ORD-3', coupon_code='NOPE')
        self.assertEqual(gateway.authorized, [])

    def test_plan_checkout_enrolls_and_books_the_chosen_schedule(self):
        result = self._authorize(
            FakeGateway(),
            [CheckoutItem(kind='plan', item_id=1, schedule=MONDAY_10)],
            order_id='ORD-4',
        )
        self.assertEqual(len(result['enrollment_ids']), 1)
        self.assertEqual(result['bookings_created'], 4)
        self.assertEqual(result['needs_schedule_setup'], [])
        enrollment = self.db.query(Enrollment).filter(Enrollment.id == result['enrollment_ids'][0]).first()
        self.assertEqual(enrollment.student_id, 1)
        self.assertEqual(enrollment.academic_period_id, 1)

    def test_unbookable_schedule_keeps_the_payment(self):
        result = self._authorize(
            FakeGateway(),
            [CheckoutItem(kind='plan', item_id=1, schedule=[{'teacher_id': 999, 'day_of_week': 0, 'start_time': '10:00', 'end_time': '11:00'}])],
            order_id='ORD-5',
        )
        self.assertEqual(result['bookings_created'], 0)
        self.assertEqual(result['needs_schedule_setup'], result['enrollment_ids'])
        self.assertEqual(self.db.query(Invoice).filter(Invoice.status == 'PAID').count(), 1)
        self.assertEqual(self.db.query(ClassBooking).count(), 0)

    def test_reconcile_by_notes_is_idempotent(self):
        self.db.add(Invoice(invoice_number='INV-OLD', user_id=1, status='DRAFT', total=80.0, notes='PayPal Order ID: ABC-9'))
        self.db.commit()

        invoice = reconcile_payment_notification(self.db, 'ABC-9', 'completed', time_provider=self.clock)
        self.assertEqual(invoice.status, 'PAID')
        self.assertEqual(invoice.paid_at, datetime(2025, 1, 2, 9, 0))

        again = reconcile_payment_notification(self.db, 'ABC-9', 'COMPLETED', time_provider=self.clock)
        self.assertEqual(again.id, invoice.id)

        with self.assertRaises(ValueError):
            reconcile_payment_notification(self.db, 'ABC-9', 'SOMETHING', time_provider=self.clock)
        with self.assertRaises(NotFoundError):
            reconcile_payment_notification(self.db, 'MISSING', 'PAID', time_provider=self.clock)

        self.db.add(Invoice(invoice_number='INV-PENDING', user_id=1, status='DRAFT', total=80.0, external_order_id='ABC-10'))
        self.db.commit()
        cancelled = reconcile_payment_notification(self.db, 'ABC-10', 'DENIED', time_provider=self.clock)
        self.assertEqual(cancelled.status, 'CANCELLED')
        self.assertIsNone(cancelled.paid_at)

    def test_refund_notification_cannot_unpay_a_fulfilled_order(self):
        self._authorize(FakeGateway(), [CheckoutItem(kind='package', item_id=1)], order_id='ORD-7')

        with self.assertRaises(ConflictError):
            reconcile_payment_notification(self.db, 'ORD-7', 'REFUNDED', time_provider=self.clock)

        self.db.expire_all()
        invoice = self.db.query(Invoice).filter(Invoice.external_order_id == 'ORD-7').one()
        self.assertEqual(invoice.status, 'PAID')
        balance = self.db.query(UserCreditBalance).filter(UserCreditBalance.user_id == 1).one()
        self.assertEqual(balance.available_credits, 60)

    def test_guest_checkout_creates_a_guest_account_once(self):
        guest = resolve_checkout_user(self.db, user_id=None, customer={'email': 'Nuevo@Mail.test', 'first_name': 'Nuevo'})
        self.assertEqual(guest.role, 'guest')
        self.assertEqual(guest.email, 'nuevo@mail.test')
        same = resolve_checkout_user(self.db, user_id=None, customer={'email': 'nuevo@mail.test'})
        self.assertEqual(same.id, guest.id)
        with self.assertRaises(PermissionError):
            resolve_checkout_user(self.db, user_id=None, customer=None)

    def test_start_checkout_validates_input(self):
        session = start_checkout(FakeGateway(), 40.5, 'ORD-6')
        self.assertEqual(session['session_key'], 'sess-1')
        with self.assertRaises(ValueError):
            start_checkout(FakeGateway(), 0, 'ORD-6')


def test_parse_notification_for_each_provider():
    paypal = {'event_type': 'PAYMENT.CAPTURE.COMPLETED', 'resource': {'custom_id': 'ORD-1', 'status': 'COMPLETED'}}
    assert parse_notification('paypal', paypal) == ('ORD-1', 'COMPLETED')
    assert parse_notification('niubiz', {'purchaseNumber': '123', 'dataMap': {'ACTION_CODE': '000'}}) == ('123', '000')
    with pytest.raises(ValueError):
        parse_notification('paypal', {'event_type': 'PAYMENT.CAPTURE.COMPLETED', 'resource': {}})
    with pytest.raises(ValueError):
        parse_notification('stripe', {})


def test_niubiz_gateway_authorizes_over_http():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if request.url.path.endswith('/security'):
            assert request.headers['authorization'].startswith('Basic ')
            return httpx.Response(201, text='access-token')
        if '/api.authorization/' in request.url.path:
            assert request.headers['authorization'] == 'access-token'
            body = json.loads(request.content)
            assert body['order'] == {'tokenId': 'tok-1', 'purchaseNumber': 'ORD-1', 'amount': 40.5, 'currency': 'PEN'}
            return httpx.Response(
                200,
                json={
                    'header': {'ecoreTransactionUUID': 'uuid-1'},
                    'dataMap': {'ACTION_CODE': '000', 'ACTION_DESCRIPTION': 'Aprobado'},
                },
            )
        return httpx.Response(404)

    gateway = NiubizGateway(
        api_url='https://niubiz.test',
        merchant_id='M1',
        user='api@lingowow.test',
        password='secret',
        currency='PEN',
        transport=httpx.MockTransport(handler),
    )
    result = gateway.authorize('tok-1', 40.5, 'ORD-1')
    assert result.approved
    assert result.transaction_id == 'uuid-1'
    assert seen == ['/api.security/v1/security', '/api.authorization/v3/authorization/ecommerce/M1']


def test_niubiz_decline_and_missing_configuration():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith('/security'):
            return httpx.Response(201, text='access-token')
        return httpx.Response(400, json={'data': {'ACTION_CODE': '180', 'ACTION_DESCRIPTION': 'Tarjeta inválida'}})

    gateway = NiubizGateway(
        api_url='https://niubiz.test',
        merchant_id='M1',
        user='u',
        password='p',
        transport=httpx.MockTransport(handler),
    )
    result = gateway.authorize('tok-1', 10.0, 'ORD-2')
    assert not result.approved
    assert result.action_code == '180'
    assert result.message == 'Tarjeta inválida'

    with pytest.raises(GatewayNotConfiguredError):
        NiubizGateway(merchant_id='', user='', password='', transport=httpx.MockTransport(handler)).authorize('t', 1.0, 'o')


def test_paypal_gateway_captures_order():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == '/v1/oauth2/token':
            return httpx.Response(200, json={'access_token': 'pp-token'})
        if request.url.path == '/v2/checkout/orders/PP-ORDER/capture':
            assert request.headers['authorization'] == 'Bearer pp-token'
            return httpx.Response(201, json={'id': 'PP-ORDER', 'status': 'COMPLETED'})
        return httpx.Response(404)

    gateway = PayPalGateway(client_id='id', client_secret='secret', transport=httpx.MockTransport(handler))
    result = gateway.authorize('PP-ORDER', 40.5, 'ORD-1')
    assert result.approved
    assert result.transaction_id == 'PP-ORDER'


def test_get_gateway_rejects_unknown_provider():
    assert isinstance(get_gateway('PayPal', client_id='x', client_secret='y'), PayPalGateway)
    with pytest.raises(ValueError):
        get_gateway('bitcoin')


if __name__ == '__main__':
    unittest.main()
