import logging
import time

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from lingowow.config import settings
from lingowow.route_logging import current_endpoint


def _connect_args(url: str) -> dict:
    if url.startswith('sqlite'):
        return {'check_same_thread': False}
    return {}


engine = create_engine(
    settings.database_url,
    connect_args=_connect_args(settings.database_url),
    pool_pre_ping=not settings.database_url.startswith('sqlite'),
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

if settings.database_url.startswith('sqlite'):

    @event.listens_for(engine, 'connect')
    def _sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


_query_logger = logging.getLogger('lingowow.db.slow_query')
_SQL_PREVIEW_CHARS = 500


@event.listens_for(engine, 'before_cursor_execute')
def _start_query_timer(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault('query_started', []).append(time.perf_counter())


@event.listens_for(engine, 'after_cursor_execute')
def _log_slow_query(conn, cursor, statement, parameters, context, executemany):
    started = conn.info.get('query_started')
    if not started:
        return
    elapsed = (time.perf_counter() - started.pop()) * 1000.0
    if elapsed < settings.db_slow_query_ms:
        return
    _query_logger.warning(
        'slow_query endpoint=%s duration_ms=%.2f rows=%s sql=%s',
        current_endpoint.get(),
        elapsed,
        cursor.rowcount,
        ' '.join((statement or '').split())[:_SQL_PREVIEW_CHARS],
    )


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
