from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import threading
from datetime import timedelta

from sqlalchemy.orm import Session

from lingowow.config import settings
from lingowow.core.time_provider import TimeProvider, default_time_provider
from lingowow.models import Role, User


PASSWORD_SCHEME = 'pbkdf2_sha256'
PASSWORD_ITERATIONS = 120000
MIN_PASSWORD_LENGTH = 8
TOKEN_HEADER = {'alg': 'HS256', 'typ': 'JWT'}

# token id -> expiry timestamp; entries are dropped once the token would have expired anyway
_revoked: dict[str, int] = {}
_revoked_lock = threading.Lock()
logger = logging.getLogger(__name__)


class AuthAuthorizationError(ValueError):
    """Raised when credentials are wrong or the account cannot log in."""


def _normalize_email(email: str) -> str:
    return str(email or '').strip().lower()


def _mask_email(email: str) -> str:
    local, _, domain = _normalize_email(email).partition('@')
    if not domain:
        return '***'
    return f'{local[:1]}***@{domain}'


def _derive(password: str, salt: str, iterations: int) -> str:
    return hashlib.pbkdf2_hmac('sha256', (password or '').encode('utf-8'), salt.encode('utf-8'), iterations).hex()


def hash_password(password: str) -> str:
    if len(password or '') < MIN_PASSWORD_LENGTH:
        raise ValueError(f'La contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres')
    salt = secrets.token_hex(16)
    return '$'.join((PASSWORD_SCHEME, str(PASSWORD_ITERATIONS), salt, _derive(password, salt, PASSWORD_ITERATIONS)))


def verify_password(password: str, password_hash: str) -> bool:
    parts = str(password_hash or '').split('$')
    if len(parts) != 4 or parts[0] != PASSWORD_SCHEME or not parts[1].isdigit():
        return False
    _, iterations, salt, expected = parts
    return hmac.compare_digest(_derive(password, salt, int(iterations)), expected)


def _segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode('ascii').rstrip('=')


def _unsegment(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + '=' * (-len(value) % 4))


def _signature(signing_input: str) -> bytes:
    return hmac.digest(settings.auth_secret.encode('utf-8'), signing_input.encode('ascii'), 'sha256')


def encode_token(claims: dict) -> str:
    body = '.'.join(
        _segment(json.dumps(part, separators=(',', ':')).encode('utf-8')) for part in (TOKEN_HEADER, claims)
    )
    return f'{body}.{_segment(_signature(body))}'


def decode_token(token: str) -> dict | None:
    """Return the claims of a correctly signed token, or None."""
    body, _, signature = str(token or '').rpartition('.')
    if body.count('.') != 1:
        return None
    try:
        if not hmac.compare_digest(_unsegment(signature), _signature(body)):
            return None
        claims = json.loads(_unsegment(body.split('.')[1]))
    except (ValueError, UnicodeError):
        return None
    return claims if isinstance(claims, dict) else None


def issue_session_token(user: User, *, time_provider: TimeProvider = default_time_provider) -> dict:
    now = time_provider.now()
    expires_at = now + timedelta(hours=settings.auth_session_expiry_hours)
    token = encode_token(
        {
            'sub': user.id,
            'email': user.email,
            'role': user.role,
            'jti': secrets.token_urlsafe(12),
            'iat': int(now.timestamp()),
            'exp': int(expires_at.timestamp()),
        }
    )
    return {
        'token': token,
        'user_id': user.id,
        'email': user.email,
        'role': user.role,
        'expires_at': expires_at.isoformat(),
    }


def login_password(
    db: Session,
    email: str,
    password: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    clean_email = _normalize_email(email)
    if not clean_email:
        raise AuthAuthorizationError('Credenciales inválidas')
    user = db.query(User).filter(User.email == clean_email).first()
    if not user or not user.is_active:
        logger.warning('auth_login_unknown_user email=%s', _mask_email(clean_email))
        raise AuthAuthorizationError('Credenciales inválidas')
    if user.role == Role.GUEST.value:
        raise AuthAuthorizationError('Esta cuenta no tiene acceso')
    if not user.password_hash or not verify_password(password, user.password_hash):
        logger.warning('auth_login_bad_password user_id=%s', user.id)
        raise AuthAuthorizationError('Credenciales inválidas')
    logger.info('auth_login_ok user_id=%s role=%s', user.id, user.role)
    return issue_session_token(user, time_provider=time_provider)


def validate_session_token(
    token: str | None,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict | None:
    claims = decode_token(token) if token else None
    if not claims or not claims.get('role') or claims.get('sub') is None:
        return None
    now = int(time_provider.now().timestamp())
    if int(claims.get('exp') or 0) <= now:
        return None
    with _revoked_lock:
        for jti in [jti for jti, expires in _revoked.items() if expires <= now]:
            del _revoked[jti]
        if claims.get('jti') in _revoked:
            return None
    return {
        'user_id': claims['sub'],
        'email': claims.get('email') or '',
        'role': claims['role'],
    }


def clear_session_token(token: str | None) -> None:
    claims = decode_token(token) if token else None
    if not claims or not claims.get('jti'):
        return
    with _revoked_lock:
        _revoked[claims['jti']] = int(claims.get('exp') or 0)
    logger.info('auth_logout user_id=%s', claims.get('sub'))
