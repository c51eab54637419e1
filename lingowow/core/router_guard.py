from __future__ import annotations

from fastapi import HTTPException, Request

from lingowow.services.auth_service import validate_session_token


CAPABILITIES: dict[str, set[str]] = {
    'admin': {
        'users:list',
        'periods:read',
        'periods:manage',
        'enrollments:read',
        'enrollments:manage',
        'bookings:read',
        'bookings:cancel',
        'attendance:read',
        'reports:payroll',
        'credits:read',
        'credits:adjust',
        'credits:packages',
        'credits:spend',
        'coupons:manage',
        'coupons:validate',
        'checkout:pay',
        'invoices:read',
    },
    'teacher': {
        'periods:read',
        'enrollments:read',
        'bookings:read',
        'bookings:cancel',
        'attendance:mark',
        'attendance:read',
        'earnings:read',
    },
    'student': {
        'periods:read',
        'enrollments:read',
        'enrollments:schedule',
        'bookings:read',
        'bookings:cancel',
        'attendance:mark',
        'attendance:read',
        'credits:read',
        'credits:spend',
        'coupons:validate',
        'checkout:pay',
        'invoices:read',
    },
}


def resolve_session_token(request: Request) -> str | None:
    token = request.cookies.get('auth_session')
    if token:
        return token
    authorization = request.headers.get('authorization', '')
    if authorization.lower().startswith('bearer '):
        return authorization[7:].strip()
    return None


def require_auth_user(request: Request) -> dict:
    token = resolve_session_token(request)
    session = validate_session_token(token)
    if not session:
        raise HTTPException(status_code=401, detail='No autorizado')
    user_id = int(session.get('user_id') or 0)
    if user_id <= 0:
        raise HTTPException(status_code=401, detail='No autorizado')
    return {
        'user_id': user_id,
        'role': str(session.get('role') or '').strip().lower(),
        'email': str(session.get('email') or ''),
    }


def can(user: dict, capability: str) -> bool:
    role = str(user.get('role') or '').strip().lower()
    return capability in CAPABILITIES.get(role, set())


def authorize(user: dict, capability: str) -> None:
    if not can(user, capability):
        raise HTTPException(status_code=403, detail='Sin permisos')


def is_admin(user: dict) -> bool:
    return str(user.get('role') or '').strip().lower() == 'admin'


def assert_self_or_admin(user: dict, owner_id: int | None) -> None:
    if is_admin(user):
        return
    if int(owner_id or 0) != int(user.get('user_id') or 0):
        raise HTTPException(status_code=403, detail='Sin permisos')
