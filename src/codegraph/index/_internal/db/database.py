"""SQLite engine and Core-SQL bulk writer for the graph store.

Every file ingest runs in one ``BEGIN IMMEDIATE`` transaction. The writer
shares that transaction's connection, so a file's nodes, edges and
fingerprint land together or not at all. Only the BEGIN is retried when
another writer holds the lock; failures inside the body propagate.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Generator, Iterable
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import bindparam, event, text
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine

from codegraph.config.models import DatabaseConfig

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

logger = structlog.get_logger()

# Upper bound on a single busy-retry sleep
_MAX_RETRY_DELAY_SEC = 2.0


def is_database_locked_error(error: Exception) -> bool:
    """Check if error is a SQLite database locked error."""
    error_str = str(error).lower()
    return "database is locked" in error_str or "database is busy" in error_str


class Database:
    """WAL-mode SQLite database holding the graph and the fingerprints."""

    def __init__(self, db_path: Path, config: DatabaseConfig | None = None) -> None:
        self.db_path = db_path
        self.config = config or DatabaseConfig()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine: Engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
        event.listen(self.engine, "connect", _pragma_listener(self.config.busy_timeout_ms))

    def create_all(self) -> None:
        """Create all tables from SQLModel metadata."""
        SQLModel.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """ORM session for reads."""
        with Session(self.engine) as session:
            yield session

    def _begin_immediate(self) -> Session:
        retries = self.config.max_retries
        attempt = 0
        while True:
            session = Session(self.engine)
            try:
                session.execute(text("BEGIN IMMEDIATE"))
                return session
            except OperationalError as e:
                session.close()
                if not is_database_locked_error(e) or attempt >= retries:
                    raise
                delay = min(self.config.retry_base_delay_sec * (2**attempt), _MAX_RETRY_DELAY_SEC)
                attempt += 1
                logger.warning(
                    "sqlite_busy_retry", attempt=attempt, max_retries=retries, delay_sec=delay
                )
                time.sleep(delay)

    @contextmanager
    def immediate_transaction(self) -> Generator[Session, None, None]:
        """Write session holding the RESERVED lock; commits on exit, rolls back on error."""
        session = self._begin_immediate()
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def checkpoint(self) -> None:
        """Fold the WAL back into the main database file without blocking readers."""
        with self.engine.connect() as conn:
            conn.execute(text("PRAGMA wal_checkpoint(PASSIVE)"))
        logger.debug("wal_checkpoint_completed", db_path=str(self.db_path))

    def dispose(self) -> None:
        """Close pooled connections."""
        self.engine.dispose()


def _pragma_listener(busy_timeout_ms: int) -> Callable[[Any, Any], None]:
    def _configure_pragmas(dbapi_conn: Any, _connection_record: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    return _configure_pragmas


class BulkWriter:
    """Bulk upserts and deletes using Core SQL on an existing connection.

    Does not own the transaction: the caller commits or rolls back.
    """

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def upsert_many(
        self,
        model_class: type[SQLModel],
        records: list[dict[str, Any]],
        conflict_columns: list[str],
        update_columns: list[str],
    ) -> int:
        """Bulk upsert (insert or update on conflict), returning count processed."""
        if not records:
            return 0

        table = model_class.__table__  # type: ignore[attr-defined]

        conflict_cols = ", ".join(conflict_columns)
        columns = list(records[0].keys())
        col_names = ", ".join(columns)
        placeholders = ", ".join(f":{col}" for col in columns)

        if update_columns:
            update_sets = ", ".join(f"{col} = excluded.{col}" for col in update_columns)
            action = f"DO UPDATE SET {update_sets}"
        else:
            action = "DO NOTHING"

        sql = f"""
            INSERT INTO {table.name} ({col_names})
            VALUES ({placeholders})
            ON CONFLICT ({conflict_cols})
            {action}
        """

        self.conn.execute(text(sql), records)
        return len(records)

    def delete_where(
        self,
        model_class: type[SQLModel],
        condition: str,
        params: dict[str, Any],
    ) -> int:
        """Bulk delete rows matching condition, returning count affected."""
        table = model_class.__table__  # type: ignore[attr-defined]
        sql = f"DELETE FROM {table.name} WHERE {condition}"
        result = self.conn.execute(text(sql), params)
        return int(result.rowcount)

    def delete_keys(
        self,
        model_class: type[SQLModel],
        key_columns: list[str],
        keys: list[dict[str, Any]],
    ) -> int:
        """Delete rows by composite key, returning count processed."""
        if not keys:
            return 0
        table = model_class.__table__  # type: ignore[attr-defined]
        condition = " AND ".join(f"{c} = :{c}" for c in key_columns)
        self.conn.execute(text(f"DELETE FROM {table.name} WHERE {condition}"), keys)
        return len(keys)

    def delete_in(
        self,
        model_class: type[SQLModel],
        column: str,
        values: Iterable[Any],
    ) -> int:
        """Delete rows whose column value is in values."""
        values = list(values)
        if not values:
            return 0
        table = model_class.__table__  # type: ignore[attr-defined]
        stmt = text(f"DELETE FROM {table.name} WHERE {column} IN :values").bindparams(
            bindparam("values", expanding=True)
        )
        result = self.conn.execute(stmt, {"values": values})
        return int(result.rowcount)
