"""Fixed-window request counters stored in ``rate_limit_states``.

The row for a (scope, key, action) triple is locked while it is read so every
worker process sees the same count. Callers own the transaction.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from lingowow.config import settings
from lingowow.core.errors import TooManyRequestsError
from lingowow.core.time_provider import TimeProvider, default_time_provider, local_naive
from lingowow.models import RateLimitState
from lingowow.services.observability_counters import record_observability_event


logger = logging.getLogger(__name__)

# action name -> settings attribute holding its per-window allowance
USER_ACTION_LIMITS = {
    'coupon_validate': 'rate_limit_coupon_validations',
    'attendance_mark': 'rate_limit_attendance_marks',
}


class SafeRateLimitError(TooManyRequestsError):
    pass


def _locked_state(db: Session, scope_type: str, scope_key: str, action_name: str) -> RateLimitState | None:
    return (
        db.query(RateLimitState)
        .filter(
            RateLimitState.scope_type == scope_type,
            RateLimitState.scope_key == scope_key,
            RateLimitState.action_name == action_name,
        )
        .with_for_update()
        .first()
    )


def _seconds_left(window_start: datetime, window: int, now: datetime) -> int:
    return max(1, int((window_start + timedelta(seconds=window) - now).total_seconds()))


def check_rate_limit(
    db: Session,
    *,
    scope_type: str,
    scope_key: str,
    action_name: str,
    max_requests: int,
    window_seconds: int,
    time_provider: TimeProvider = default_time_provider,
) -> bool:
    """Count one request or raise ``SafeRateLimitError`` once the window is full."""
    scope = str(scope_type or 'user').strip().lower() or 'user'
    key = str(scope_key or '').strip() or 'unknown'
    action = str(action_name or '').strip() or 'unknown_action'
    allowance = max(1, int(max_requests or 1))
    window = max(1, int(window_seconds or 60))
    now = local_naive(time_provider.now())

    state = _locked_state(db, scope, key, action)
    if state is None:
        db.add(RateLimitState(scope_type=scope, scope_key=key, action_name=action, window_start=now, request_count=1))
        db.flush()
        return True

    if (now - state.window_start).total_seconds() >= window:
        state.window_start = now
        state.request_count = 0

    if int(state.request_count or 0) >= allowance:
        record_observability_event('rate_limit_block')
        logger.warning('rate_limit_blocked scope=%s key=%s action=%s limit=%s window_seconds=%s', scope, key, action, allowance, window)
        wait = _seconds_left(state.window_start, window, now)
        raise SafeRateLimitError(f'Demasiadas solicitudes. Intenta de nuevo en {wait} segundos.')

    state.request_count = int(state.request_count or 0) + 1
    db.flush()
    return True


def limit_user_action(
    db: Session,
    user_id: int,
    action_name: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> bool:
    """Apply the configured per-user allowance for one of ``USER_ACTION_LIMITS``."""
    setting_name = USER_ACTION_LIMITS.get(action_name)
    if setting_name is None:
        raise KeyError(action_name)
    return check_rate_limit(
        db,
        scope_type='user',
        scope_key=str(user_id),
        action_name=action_name,
        max_requests=getattr(settings, setting_name),
        window_seconds=settings.rate_limit_window_seconds,
        time_provider=time_provider,
    )
