from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import Settings, get_settings


def build_engine(settings: Settings) -> Engine:
    """Engine shared by request handlers and the month materializer thread.

    Both may run ``ensure_month`` at once, so SQLite connections wait on a
    locked database instead of failing immediately.
    """
    if not settings.database_url.startswith("sqlite"):
        return create_engine(settings.database_url, pool_pre_ping=True)

    eng = create_engine(
        settings.database_url, connect_args={"check_same_thread": False}
    )
    busy_timeout = settings.sqlite_busy_timeout_ms

    @event.listens_for(eng, "connect")
    def _enable_sqlite_pragmas(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout)};")
        cursor.close()

    return eng


engine = build_engine(get_settings())
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope() -> Iterator[Session]:
    """Unit of work for background jobs; commits on success."""
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
