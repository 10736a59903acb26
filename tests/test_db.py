from __future__ import annotations

from sqlalchemy import text

from examharvest.persistence.db import create_db_engine, display_url, normalize_url


def test_postgres_urls_use_psycopg():
    assert normalize_url("postgres://u:p@db/harvest") == "postgresql+psycopg://u:p@db/harvest"
    assert normalize_url("postgresql://u:p@db/harvest") == "postgresql+psycopg://u:p@db/harvest"
    assert normalize_url("sqlite:///data/x.db") == "sqlite:///data/x.db"


def test_display_url_masks_password():
    shown = display_url("postgres://harvest:s3cret@db:5432/harvest")

    assert "s3cret" not in shown
    assert shown.startswith("postgresql+psycopg://harvest:***@db:5432/harvest")


def test_sqlite_engine_is_tuned_for_concurrent_workers(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'nested' / 'tuned.db'}")

    with engine.connect() as conn:
        assert conn.execute(text("PRAGMA journal_mode")).scalar() == "wal"
        assert conn.execute(text("PRAGMA busy_timeout")).scalar() == 5000
        assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1

    engine.dispose()
    assert (tmp_path / "nested").is_dir()
