import tempfile
import unittest
from datetime import date
from pathlib import Path
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from lingowow.config import settings
from lingowow.core import router_guard
from lingowow.core.errors import register_exception_handlers
from lingowow.db import Base, get_db
from lingowow.models import (
    AcademicPeriod,
    ClassBooking,
    Course,
    CreditPackage,
    Enrollment,
    Invoice,
    Plan,
    Role,
    User,
)
from lingowow.routers import attendance, bookings, checkout, coupons, credits, enrollments, invoices, periods, reports, users
from lingowow.services.payment_gateways import AuthorizationResult, GatewaySession, PaymentGateway


SESSIONS = {
    'token-admin': {'user_id': 1, 'email': 'admin@lingowow.test', 'role': 'admin'},
    'token-teacher': {'user_id': 20, 'email': 't@lingowow.test', 'role': 'teacher'},
    'token-student': {'user_id': 10, 'email': 's1@lingowow.test', 'role': 'student'},
    'token-student-2': {'user_id': 11, 'email': 's2@lingowow.test', 'role': 'student'},
}


class StubGateway(PaymentGateway):
    name = 'niubiz'

    def __init__(self, approve=True):
        super().__init__()
        self.approve = approve

    def create_session(self, amount, order_id):
        return GatewaySession(provider=self.name, order_id=order_id, amount=amount, currency='USD', session_key='sess')

    def authorize(self, token, amount, order_id):
        if not self.approve:
            return AuthorizationResult(approved=False, action_code='101', message='Fondos insuficientes')
        return AuthorizationResult(approved=True, transaction_id='TX-9', action_code='000')


def _auth(token):
    return {'Authorization': f'Bearer {token}'}


class RouterScopeTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_router_scope.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

        db = cls._session_factory()
        db.add_all(
            [
                User(id=1, email='admin@lingowow.test', name='Admin', role=Role.ADMIN.value),
                User(id=10, email='s1@lingowow.test', name='Lucía', role=Role.STUDENT.value),
                User(id=11, email='s2@lingowow.test', name='Mateo', role=Role.STUDENT.value),
                User(id=20, email='t@lingowow.test', name='Carmen', role=Role.TEACHER.value),
                Course(id=1, title='Inglés A1'),
                AcademicPeriod(id=1, name='Enero', start_date=date(2025, 1, 6), end_date=date(2025, 1, 31), is_active=True),
                Enrollment(id=1, student_id=10, course_id=1, academic_period_id=1, status='ACTIVE'),
                Enrollment(id=2, student_id=11, course_id=1, academic_period_id=1, status='ACTIVE'),
                ClassBooking(id=1, teacher_id=20, student_id=10, enrollment_id=1, day=date(2025, 1, 6), time_slot='10:00-11:00'),
                ClassBooking(id=2, teacher_id=20, student_id=11, enrollment_id=2, day=date(2025, 1, 6), time_slot='12:00-13:00'),
                CreditPackage(id=1, name='Pack 50', credits=50, bonus_credits=0, price=45.0),
                Plan(id=1, name='Plan Créditos', course_id=1, price=80.0, accepts_credits=True, credit_price=40),
                Invoice(id=1, invoice_number='INV-WEBHOOK', user_id=10, status='DRAFT', total=80.0, external_order_id='ORD-9'),
            ]
        )
        db.commit()
        db.close()

        cls._orig_validate_session_token = router_guard.validate_session_token
        router_guard.validate_session_token = lambda token: SESSIONS.get(token)

        app = FastAPI()
        register_exception_handlers(app)
        for module in (users, periods, enrollments, bookings, attendance, reports, credits, coupons, checkout, invoices):
            app.include_router(module.router)

        def override_get_db():
            db = cls._session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        cls.client = TestClient(app)

    @classmethod
    def tearDownClass(cls):
        router_guard.validate_session_token = cls._orig_validate_session_token
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def test_missing_session_is_401_with_envelope(self):
        response = self.client.get('/bookings')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {'success': False, 'error': 'No autorizado'})

    def test_students_only_see_their_own_bookings(self):
        response = self.client.get('/bookings', params={'student_id': 11}, headers=_auth('token-student'))
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertEqual([b['id'] for b in body['bookings']], [1])

        teacher = self.client.get('/bookings', headers=_auth('token-teacher')).json()
        self.assertEqual(sorted(b['id'] for b in teacher['bookings']), [1, 2])

    def test_foreign_booking_cannot_be_cancelled(self):
        response = self.client.post('/bookings/2/cancel', headers=_auth('token-student'))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['error'], 'Sin permisos para esta clase')

        missing = self.client.post('/bookings/999/cancel', headers=_auth('token-admin'))
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json(), {'success': False, 'error': 'Reserva no encontrada'})

    def test_payroll_report_is_admin_only(self):
        denied = self.client.get('/reports/payable-classes', headers=_auth('token-teacher'))
        self.assertEqual(denied.status_code, 403)
        self.assertEqual(denied.json(), {'success': False, 'error': 'Sin permisos'})

        allowed = self.client.get('/reports/payable-classes', params={'period_id': 1}, headers=_auth('token-admin'))
        self.assertEqual(allowed.status_code, 200)
        self.assertEqual(allowed.json()['summary']['total_considered_classes'], 2)

        earnings = self.client.get('/teacher/earnings', headers=_auth('token-teacher'))
        self.assertEqual(earnings.status_code, 200)
        self.assertEqual(earnings.json()['teacher_id'], 20)

    def test_users_listing_filters_by_role(self):
        response = self.client.get('/users', params={'role': 'teacher'}, headers=_auth('token-admin'))
        self.assertEqual([u['id'] for u in response.json()['users']], [20])
        self.assertEqual(self.client.get('/users', headers=_auth('token-student')).status_code, 403)

    def test_overlapping_period_is_409(self):
        response = self.client.post(
            '/periods',
            json={'name': 'Choque', 'start_date': '2025-01-20', 'end_date': '2025-02-10'},
            headers=_auth('token-admin'),
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json(), {'success': False, 'error': 'El período se superpone con Enero'})

    def test_enrollment_visibility(self):
        own = self.client.get('/enrollments/1', headers=_auth('token-student'))
        self.assertEqual(own.status_code, 200)
        self.assertEqual(own.json()['enrollment']['student_id'], 10)
        self.assertEqual(self.client.get('/enrollments/2', headers=_auth('token-student')).status_code, 403)

    def test_validation_errors_use_the_envelope(self):
        response = self.client.post('/attendance/mark', json={'booking_id': 1, 'user_type': 'admin'}, headers=_auth('token-student'))
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()['success'])

        mismatch = self.client.post('/attendance/mark', json={'booking_id': 1, 'user_type': 'teacher'}, headers=_auth('token-student'))
        self.assertEqual(mismatch.status_code, 403)

    def test_insufficient_credits_return_missing_amount(self):
        adjust = self.client.post('/credits/adjust', json={'user_id': 11, 'amount': 5}, headers=_auth('token-admin'))
        self.assertEqual(adjust.status_code, 200)
        self.assertEqual(adjust.json()['balance']['available_credits'], 5)
        unknown = self.client.post('/credits/adjust', json={'user_id': 999, 'amount': 5}, headers=_auth('token-admin'))
        self.assertEqual(unknown.status_code, 404)

        response = self.client.post('/credits/purchase-plan', json={'plan_id': 1}, headers=_auth('token-student-2'))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json(),
            {
                'success': False,
                'error': 'No tienes suficientes créditos',
                'data': {'required': 40, 'available': 5, 'missing': 35},
            },
        )
        self.assertEqual(self.client.get('/credits/balance', params={'user_id': 11}, headers=_auth('token-student')).status_code, 403)

    def test_coupon_validation_endpoint(self):
        response = self.client.post('/coupons/validate', json={'code': 'NOPE'}, headers=_auth('token-student'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'success': True, 'valid': False, 'error': 'Cupón no encontrado'})
        self.assertEqual(
            self.client.post('/coupons', json={'code': 'X', 'value': 5}, headers=_auth('token-student')).status_code,
            403,
        )

    def test_coupon_delete_is_admin_only_soft_deactivation(self):
        created = self.client.post('/coupons', json={'code': 'retirar', 'value': 5}, headers=_auth('token-admin'))
        self.assertEqual(created.status_code, 200)
        coupon_id = created.json()['coupon']['id']

        self.assertEqual(self.client.delete(f'/coupons/{coupon_id}', headers=_auth('token-student')).status_code, 403)
        deleted = self.client.delete(f'/coupons/{coupon_id}', headers=_auth('token-admin'))
        self.assertEqual(deleted.status_code, 200)
        self.assertFalse(deleted.json()['coupon']['is_active'])
        self.assertEqual(self.client.delete('/coupons/999', headers=_auth('token-admin')).status_code, 404)

        listed = self.client.get('/coupons', headers=_auth('token-admin')).json()['coupons']
        self.assertIn(coupon_id, [c['id'] for c in listed])

    def test_guest_checkout_and_decline(self):
        payload = {
            'provider': 'niubiz',
            'transaction_token': 'tok',
            'order_id': 'ORD-GUEST',
            'items': [{'kind': 'package', 'item_id': 1}],
            'customer': {'email': 'guest@lingowow.test', 'first_name': 'Invitada'},
        }
        with patch.object(checkout, 'get_gateway', lambda name: StubGateway()):
            response = self.client.post('/checkout/authorize', json=payload)
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertEqual(body['total'], 45.0)

        declined = dict(payload, order_id='ORD-DECLINED')
        with patch.object(checkout, 'get_gateway', lambda name: StubGateway(approve=False)):
            response = self.client.post('/checkout/authorize', json=declined)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Pago rechazado: Fondos insuficientes')

        anonymous = dict(payload, order_id='ORD-ANON', customer=None)
        with patch.object(checkout, 'get_gateway', lambda name: StubGateway()):
            self.assertEqual(self.client.post('/checkout/authorize', json=anonymous).status_code, 403)

    def test_invoices_are_visible_to_their_owner(self):
        own = self.client.get('/invoices', headers=_auth('token-student'))
        self.assertEqual(own.status_code, 200)
        self.assertIn('INV-WEBHOOK', [i['invoice_number'] for i in own.json()['invoices']])

        self.assertEqual(self.client.get('/invoices/1', headers=_auth('token-student-2')).status_code, 403)
        self.assertEqual(self.client.get('/invoices/1', headers=_auth('token-admin')).json()['invoice']['user_id'], 10)
        self.assertEqual(self.client.get('/invoices', headers=_auth('token-teacher')).status_code, 403)

    def test_package_update_is_admin_only(self):
        denied = self.client.patch('/credits/packages/1', json={'is_popular': True}, headers=_auth('token-student'))
        self.assertEqual(denied.status_code, 403)

        response = self.client.patch('/credits/packages/1', json={'is_popular': True}, headers=_auth('token-admin'))
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['package']['is_popular'])
        self.assertEqual(response.json()['package']['price'], 45.0)

    def test_webhook_requires_the_shared_secret(self):
        paid = {'event_type': 'PAYMENT.CAPTURE.COMPLETED', 'resource': {'custom_id': 'ORD-9'}}
        with patch.object(settings, 'payment_webhook_secret', ''):
            unconfigured = self.client.post('/checkout/webhook/paypal', json=paid, headers={'X-Webhook-Secret': 'anything'})
        self.assertEqual(unconfigured.status_code, 503)

        with patch.object(settings, 'payment_webhook_secret', 'whsec-test'):
            missing = self.client.post('/checkout/webhook/paypal', json=paid)
            wrong = self.client.post('/checkout/webhook/paypal', json=paid, headers={'X-Webhook-Secret': 'guess'})
        self.assertEqual(missing.status_code, 403)
        self.assertEqual(wrong.json(), {'success': False, 'error': 'Firma de webhook inválida'})

    def test_webhook_marks_invoice_paid_and_refuses_reversal(self):
        headers = {'X-Webhook-Secret': 'whsec-test'}
        with patch.object(settings, 'payment_webhook_secret', 'whsec-test'):
            response = self.client.post(
                '/checkout/webhook/paypal',
                json={'event_type': 'PAYMENT.CAPTURE.COMPLETED', 'resource': {'custom_id': 'ORD-9'}},
                headers=headers,
            )
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json()['status'], 'PAID')

            reversal = self.client.post(
                '/checkout/webhook/paypal',
                json={'event_type': 'PAYMENT.CAPTURE.REFUNDED', 'resource': {'custom_id': 'ORD-9'}},
                headers=headers,
            )
            self.assertEqual(reversal.status_code, 409)

            unknown = self.client.post('/checkout/webhook/stripe', json={'id': 'x'}, headers=headers)
            self.assertEqual(unknown.status_code, 400)


def test_main_app_serves_health():
    from lingowow.main import app

    response = TestClient(app).get('/health')
    assert response.status_code == 200
    assert response.json() == {'success': True, 'status': 'ok'}


def test_session_token_comes_from_cookie_or_bearer_header():
    def request(*headers):
        return Request({'type': 'http', 'headers': list(headers)})

    assert router_guard.resolve_session_token(request((b'authorization', b'Bearer abc'))) == 'abc'
    assert router_guard.resolve_session_token(request((b'cookie', b'auth_session=xyz'))) == 'xyz'
    assert router_guard.resolve_session_token(request((b'authorization', b'Basic abc'))) is None
    assert router_guard.resolve_session_token(request()) is None


if __name__ == '__main__':
    unittest.main()
