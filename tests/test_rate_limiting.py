import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from lingowow.db import Base
from lingowow.services.observability_counters import clear_observability_events, count_observability_events
from lingowow.config import settings
from lingowow.services.rate_limit_service import SafeRateLimitError, check_rate_limit, limit_user_action


def _utc(y, m, d, hh=0, mm=0, ss=0):
    return datetime(y, m, d, hh, mm, ss, tzinfo=timezone.utc)


def test_rate_limit_blocks_after_threshold_and_resets():
    tmpdir = tempfile.TemporaryDirectory()
    try:
        db_path = Path(tmpdir.name) / 'test_rate_limit.db'
        engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        Base.metadata.create_all(bind=engine)
        db = Session()
        clear_observability_events()
        try:
            base = _utc(2026, 2, 16, 12, 0, 0)
            with patch('lingowow.services.rate_limit_service.default_time_provider.now', return_value=base):
                for _ in range(5):
                    assert check_rate_limit(
                        db,
                        scope_type='user',
                        scope_key='42',
                        action_name='coupon_validate',
                        max_requests=5,
                        window_seconds=60,
                    )
                with pytest.raises(SafeRateLimitError) as excinfo:
                    check_rate_limit(
                        db,
                        scope_type='user',
                        scope_key='42',
                        action_name='coupon_validate',
                        max_requests=5,
                        window_seconds=60,
                    )
                assert 'Demasiadas solicitudes' in str(excinfo.value)
                assert count_observability_events('rate_limit_block') == 1

                # Other users and other actions have their own window.
                assert check_rate_limit(
                    db,
                    scope_type='user',
                    scope_key='43',
                    action_name='coupon_validate',
                    max_requests=5,
                    window_seconds=60,
                )
                assert check_rate_limit(
                    db,
                    scope_type='user',
                    scope_key='42',
                    action_name='attendance_mark',
                    max_requests=5,
                    window_seconds=60,
                )

            with patch('lingowow.services.rate_limit_service.default_time_provider.now', return_value=base + timedelta(seconds=61)):
                assert check_rate_limit(
                    db,
                    scope_type='user',
                    scope_key='42',
                    action_name='coupon_validate',
                    max_requests=5,
                    window_seconds=60,
                )
        finally:
            db.close()
            engine.dispose()
    finally:
        tmpdir.cleanup()


def test_user_actions_use_their_configured_allowance():
    tmpdir = tempfile.TemporaryDirectory()
    try:
        engine = create_engine(f"sqlite:///{Path(tmpdir.name) / 'test_user_actions.db'}", connect_args={'check_same_thread': False})
        Base.metadata.create_all(bind=engine)
        db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
        try:
            with patch.object(settings, 'rate_limit_coupon_validations', 2), patch(
                'lingowow.services.rate_limit_service.default_time_provider.now',
                return_value=_utc(2026, 2, 16, 12, 0, 0),
            ):
                assert limit_user_action(db, 7, 'coupon_validate')
                assert limit_user_action(db, 7, 'coupon_validate')
                with pytest.raises(SafeRateLimitError):
                    limit_user_action(db, 7, 'coupon_validate')
                assert limit_user_action(db, 7, 'attendance_mark')

            with pytest.raises(KeyError):
                limit_user_action(db, 7, 'checkout')
        finally:
            db.close()
            engine.dispose()
    finally:
        tmpdir.cleanup()
