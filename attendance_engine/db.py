import logging
import time
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from attendance_engine.config import settings
from attendance_engine.observability import current_endpoint


_slow_logger = logging.getLogger('attendance_engine.db.slow_query')


def _is_sqlite(url: str) -> bool:
    return url.startswith('sqlite')


def build_engine(url: str):
    if _is_sqlite(url):
        # Racing conditional updates wait on the writer lock instead of failing fast.
        sqlite_engine = create_engine(
            url,
            connect_args={'check_same_thread': False, 'timeout': settings.sqlite_busy_timeout_seconds},
        )

        @event.listens_for(sqlite_engine, 'connect')
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA foreign_keys=ON')
            cursor.close()

        return sqlite_engine
    return create_engine(url, pool_pre_ping=True)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


@event.listens_for(engine, 'before_cursor_execute')
def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    context._query_start_time = time.perf_counter()


@event.listens_for(engine, 'after_cursor_execute')
def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    start = getattr(context, '_query_start_time', None)
    if start is None:
        return
    duration_ms = (time.perf_counter() - start) * 1000.0
    if duration_ms < settings.db_slow_query_ms:
        return
    _slow_logger.warning(
        'slow_query duration_ms=%.2f endpoint=%s sql=%s',
        duration_ms,
        current_endpoint.get(),
        ' '.join((statement or '').split()),
    )


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope():
    """Session for scripts running outside a request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
