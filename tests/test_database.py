from config import Settings
from database import build_engine


def test_sqlite_connections_wait_on_locks(tmp_path) -> None:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path / 'ledger.db'}",
        timezone="UTC",
        run_scheduler=False,
        sqlite_busy_timeout_ms=1234,
    )
    engine = build_engine(settings)
    try:
        with engine.connect() as conn:
            assert conn.exec_driver_sql("PRAGMA busy_timeout").scalar() == 1234
            assert conn.exec_driver_sql("PRAGMA journal_mode").scalar() == "wal"
            assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1
    finally:
        engine.dispose()
