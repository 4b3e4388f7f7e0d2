"""Tests for the SQLite database wrapper."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from codegraph.config.models import DatabaseConfig
from codegraph.index._internal.db import Database, is_database_locked_error


@pytest.fixture
def blocker(temp_db: Database) -> Generator[sqlite3.Connection, None, None]:
    """A second connection holding the write lock on the test database."""
    conn = sqlite3.connect(temp_db.db_path, isolation_level=None, check_same_thread=False)
    conn.execute("BEGIN IMMEDIATE")
    yield conn
    if conn.in_transaction:
        conn.execute("ROLLBACK")
    conn.close()


def _impatient(db_path: Path, max_retries: int) -> Database:
    return Database(
        db_path,
        DatabaseConfig(busy_timeout_ms=1, max_retries=max_retries, retry_base_delay_sec=0.02),
    )


def _count(db: Database) -> int:
    with db.session() as session:
        return int(session.execute(text("SELECT COUNT(*) FROM graph_nodes")).scalar_one())


class TestDatabase:
    def test_wal_mode(self, temp_db: Database) -> None:
        with temp_db.session() as session:
            mode = session.execute(text("PRAGMA journal_mode")).scalar_one()
        assert mode.lower() == "wal"

    def test_transaction_rolls_back_on_error(self, temp_db: Database) -> None:
        """Nothing written inside a failed immediate transaction survives."""
        with pytest.raises(RuntimeError), temp_db.immediate_transaction() as session:
            session.execute(
                text(
                    "INSERT INTO graph_nodes (id, label, name, path, props) "
                    "VALUES ('file:a.py', 'File', 'a.py', 'a.py', '{}')"
                )
            )
            raise RuntimeError("boom")
        assert _count(temp_db) == 0

    def test_locked_begin_gives_up_after_retries(
        self, temp_db: Database, blocker: sqlite3.Connection
    ) -> None:
        db = _impatient(temp_db.db_path, max_retries=1)
        try:
            with pytest.raises(OperationalError) as exc_info, db.immediate_transaction():
                pass
            assert is_database_locked_error(exc_info.value)
        finally:
            db.dispose()

    def test_locked_begin_retried_until_released(
        self, temp_db: Database, blocker: sqlite3.Connection
    ) -> None:
        """BEGIN IMMEDIATE is retried with backoff while another writer holds the lock."""
        timer = threading.Timer(0.05, lambda: blocker.execute("ROLLBACK"))
        timer.start()
        db = _impatient(temp_db.db_path, max_retries=8)
        try:
            with db.immediate_transaction() as session:
                session.execute(text("SELECT 1"))
        finally:
            timer.join()
            db.dispose()

    def test_checkpoint(self, temp_db: Database) -> None:
        temp_db.checkpoint()
        assert temp_db.db_path.exists()
