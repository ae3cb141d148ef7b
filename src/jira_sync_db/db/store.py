"""Persistent store: generic relational primitives, health check and repair.

All primitives run through `safe_execute`, which retries failed operations
and repairs the schema when a table has gone missing. Mutations are
serialized: every write runs inside `transaction()`, and only one
transaction is open on a store at a time.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import Table, delete, func, insert, select, text, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.sql import ColumnElement, Executable

from jira_sync_db.errors import DatabaseError, ValidationError, classify_db_error
from jira_sync_db.logging import get_logger

from .engine import create_engine_for, sqlite_path
from .models import Base

if TYPE_CHECKING:
    from jira_sync_db.config import Settings

logger = get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[AsyncConnection], Awaitable[T]]

_OPERATORS: dict[str, Callable[[Any, Any], ColumnElement[bool]]] = {
    "=": lambda col, value: col == value,
    "!=": lambda col, value: col != value,
    "<": lambda col, value: col < value,
    "<=": lambda col, value: col <= value,
    ">": lambda col, value: col > value,
    ">=": lambda col, value: col >= value,
    "like": lambda col, value: col.like(value),
}

REPAIR_ATTEMPTS = 2
REPAIR_DELAY_MS = 2000


@dataclass
class StoreHealth:
    """Result of a store health check."""

    db_exists: bool = False
    tables_exist: bool = False
    indexes_exist: bool = False
    readable: bool = False
    writable: bool = False
    missing_tables: list[str] = field(default_factory=list)
    missing_indexes: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def healthy(self) -> bool:
        return all(
            (self.db_exists, self.tables_exist, self.indexes_exist, self.readable, self.writable)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "db_exists": self.db_exists,
            "tables_exist": self.tables_exist,
            "indexes_exist": self.indexes_exist,
            "readable": self.readable,
            "writable": self.writable,
            "missing_tables": self.missing_tables,
            "missing_indexes": self.missing_indexes,
            "error": self.error,
        }


@dataclass
class RepairResult:
    """What a repair pass recreated."""

    tables_repaired: list[str] = field(default_factory=list)
    indexes_repaired: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.tables_repaired or self.indexes_repaired)

    def to_dict(self) -> dict[str, Any]:
        return {"tables_repaired": self.tables_repaired, "indexes_repaired": self.indexes_repaired}


def expected_tables() -> list[str]:
    return [table.name for table in Base.metadata.sorted_tables]


def expected_indexes() -> list[str]:
    return sorted(
        index.name for table in Base.metadata.sorted_tables for index in table.indexes if index.name
    )


async def _existing_objects(conn: AsyncConnection) -> tuple[set[str], set[str]]:
    result = await conn.execute(
        text("SELECT type, name FROM sqlite_master WHERE type IN ('table', 'index')")
    )
    tables: set[str] = set()
    indexes: set[str] = set()
    for kind, name in result:
        (tables if kind == "table" else indexes).add(name)
    return tables, indexes


class Store:
    """Async SQLite store over the canonical schema.

    The engine is created lazily on first use and reused for the store's
    lifetime.

    Usage:
        store = Store.from_settings(settings)
        await store.init_schema()

        await store.upsert_row("projects", {"key": "ABC", "name": "Alpha"})
        rows = await store.select_where("tickets", {"project_key": "ABC"})

        async with store.transaction():
            await store.delete_where("comments", {"ticket_key": "ABC-1"})
            await store.delete_where("tickets", {"key": "ABC-1"})

    Where clauses map column names to values. Sequences become IN, None
    becomes IS NULL, and an operator may follow the column name:
    {"updated_date <": cutoff, "status !=": "done"}.
    """

    def __init__(
        self,
        database_url: str,
        *,
        max_attempts: int = 3,
        retry_delay_ms: int = 500,
        echo: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._url = database_url
        self._echo = echo
        self._max_attempts = max_attempts
        self._retry_delay_ms = retry_delay_ms
        self._sleep = sleep
        self._engine: AsyncEngine | None = None
        self._write_lock = asyncio.Lock()
        self._current: ContextVar[AsyncConnection | None] = ContextVar(
            f"store_connection_{id(self)}", default=None
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> Store:
        return cls(
            settings.resolved_database_url,
            max_attempts=settings.store.max_attempts,
            retry_delay_ms=settings.store.retry_delay_ms,
            echo=settings.environment == "development" and settings.log_level == "DEBUG",
        )

    @property
    def database_url(self) -> str:
        return self._url

    @property
    def engine(self) -> AsyncEngine:
        """Lazily created engine (creates the database directory and checks it is writable)."""
        if self._engine is None:
            self._engine = create_engine_for(self._url, echo=self._echo)
        return self._engine

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    def table(self, name: str | Table) -> Table:
        if isinstance(name, Table):
            return name
        try:
            return Base.metadata.tables[name]
        except KeyError:
            raise ValidationError(f"Unknown table: {name}", context="store") from None

    # -------------------------------------------------------------------------
    # Execution core
    # -------------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._current.get() is not None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """Begin/commit a transaction, rolling back on any raised error.

        Nested use joins the outermost transaction.
        """
        current = self._current.get()
        if current is not None:
            yield current
            return

        async with self._write_lock:
            async with self.engine.begin() as conn:
                token = self._current.set(conn)
                try:
                    yield conn
                finally:
                    self._current.reset(token)

    async def _run(self, operation: Operation[T], *, write: bool) -> T:
        current = self._current.get()
        if current is not None:
            return await operation(current)
        if write:
            async with self.transaction() as conn:
                return await operation(conn)
        async with self.engine.connect() as conn:
            return await operation(conn)

    async def safe_execute(self, name: str, operation: Operation[T], *, write: bool = False) -> T:
        """Run an operation with retries and missing-table repair.

        Args:
            name: Operation name for logs and errors
            operation: Coroutine taking the connection to use
            write: Run inside a transaction (joined if one is open)

        Raises:
            DatabaseError: The operation failed on every attempt
        """
        logger.debug("db: {}", name)
        repaired = False
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._run(operation, write=write)
            except IntegrityError as exc:
                raise DatabaseError(
                    f"{name}: constraint violated: {exc.orig}", context=name
                ) from exc
            except SQLAlchemyError as exc:
                info = classify_db_error(str(exc))
                if info.requires_repair and not repaired:
                    logger.warning("{}: missing table, repairing schema", name)
                    repaired = True
                    await self.repair()
                    attempt -= 1  # the retry after repair is extra
                    continue
                if attempt >= self._max_attempts:
                    logger.error("{} failed after {} attempt(s): {}", name, attempt, exc)
                    raise DatabaseError(
                        f"{name} failed: {exc}",
                        context=name,
                        details={"kind": info.kind, "recoverable": info.recoverable, "attempts": attempt},
                    ) from exc
                delay_ms = info.retry_delay_ms or self._retry_delay_ms
                logger.warning(
                    "{} failed (attempt {}/{}): {}", name, attempt, self._max_attempts, info.kind
                )
                await self._sleep(delay_ms / 1000)

    # -------------------------------------------------------------------------
    # Where clauses
    # -------------------------------------------------------------------------

    def _where(self, table: Table, where: Mapping[str, Any] | None) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        for key, value in (where or {}).items():
            column_name, _, op = key.strip().partition(" ")
            op = op.strip().lower() or "="
            if column_name not in table.c:
                raise ValidationError(f"Unknown column {table.name}.{column_name}", context="store")
            column = table.c[column_name]
            if value is None:
                clauses.append(column.is_(None) if op == "=" else column.is_not(None))
            elif isinstance(value, list | tuple | set | frozenset):
                clauses.append(column.in_(list(value)) if op == "=" else column.not_in(list(value)))
            elif op in _OPERATORS:
                clauses.append(_OPERATORS[op](column, value))
            else:
                raise ValidationError(f"Unsupported operator '{op}'", context="store")
        return clauses

    def _order_by(self, table: Table, order_by: str | Sequence[str] | None) -> list[Any]:
        if order_by is None:
            return []
        names = [order_by] if isinstance(order_by, str) else list(order_by)
        ordering = []
        for name in names:
            descending = name.startswith("-")
            column = table.c[name.lstrip("-")]
            ordering.append(column.desc() if descending else column.asc())
        return ordering

    # -------------------------------------------------------------------------
    # Primitives
    # -------------------------------------------------------------------------

    async def select_where(
        self,
        table: str | Table,
        where: Mapping[str, Any] | None = None,
        *,
        order_by: str | Sequence[str] | None = None,
        limit: int | None = None,
        columns: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Rows matching a where clause, as dictionaries."""
        tbl = self.table(table)
        cols = [tbl.c[name] for name in columns] if columns else [tbl]
        stmt = select(*cols).where(*self._where(tbl, where)).order_by(*self._order_by(tbl, order_by))
        if limit is not None:
            stmt = stmt.limit(limit)
        return await self.fetch_all(stmt, name=f"select:{tbl.name}")

    async def select_one(
        self, table: str | Table, where: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        rows = await self.select_where(table, where, limit=1)
        return rows[0] if rows else None

    async def insert_rows(self, table: str | Table, rows: Sequence[Mapping[str, Any]]) -> int:
        """Insert rows in one transaction. Returns the number inserted."""
        if not rows:
            return 0
        tbl = self.table(table)

        async def op(conn: AsyncConnection) -> int:
            for row in rows:
                await conn.execute(insert(tbl).values(**row))
            return len(rows)

        return await self.safe_execute(f"insert:{tbl.name}", op, write=True)

    async def update_where(
        self, table: str | Table, values: Mapping[str, Any], where: Mapping[str, Any] | None
    ) -> int:
        """Update matching rows. Returns the number of rows changed."""
        tbl = self.table(table)
        stmt = update(tbl).where(*self._where(tbl, where)).values(**values)
        return await self.execute_write(stmt, name=f"update:{tbl.name}")

    async def delete_where(self, table: str | Table, where: Mapping[str, Any] | None) -> int:
        """Delete matching rows. Returns the number of rows removed."""
        tbl = self.table(table)
        stmt = delete(tbl).where(*self._where(tbl, where))
        return await self.execute_write(stmt, name=f"delete:{tbl.name}")

    async def upsert_row(
        self,
        table: str | Table,
        row: Mapping[str, Any],
        conflict_columns: Sequence[str] | None = None,
    ) -> None:
        """Insert a row, or update it when the conflict key already exists.

        Args:
            table: Table name
            row: Column values
            conflict_columns: Unique column set (defaults to the primary key)
        """
        tbl = self.table(table)
        stmt = self._upsert_statement(tbl, row, conflict_columns)
        await self.execute_write(stmt, name=f"upsert:{tbl.name}")

    async def upsert_rows(
        self,
        table: str | Table,
        rows: Sequence[Mapping[str, Any]],
        conflict_columns: Sequence[str] | None = None,
    ) -> int:
        """Upsert many rows in one transaction."""
        if not rows:
            return 0
        tbl = self.table(table)

        async def op(conn: AsyncConnection) -> int:
            for row in rows:
                await conn.execute(self._upsert_statement(tbl, row, conflict_columns))
            return len(rows)

        return await self.safe_execute(f"upsert:{tbl.name}", op, write=True)

    def _upsert_statement(
        self, table: Table, row: Mapping[str, Any], conflict_columns: Sequence[str] | None
    ) -> Executable:
        keys = list(conflict_columns or [c.name for c in table.primary_key.columns])
        stmt = sqlite_insert(table).values(**row)
        changes = {name: stmt.excluded[name] for name in row if name not in keys}
        if not changes:
            return stmt.on_conflict_do_nothing(index_elements=keys)
        return stmt.on_conflict_do_update(index_elements=keys, set_=changes)

    async def count_where(self, table: str | Table, where: Mapping[str, Any] | None = None) -> int:
        tbl = self.table(table)
        stmt = select(func.count()).select_from(tbl).where(*self._where(tbl, where))
        return int(await self.fetch_scalar(stmt, name=f"count:{tbl.name}") or 0)

    async def exists(self, table: str | Table, where: Mapping[str, Any]) -> bool:
        return await self.count_where(table, where) > 0

    # -------------------------------------------------------------------------
    # Statement helpers for repositories
    # -------------------------------------------------------------------------

    async def fetch_all(self, stmt: Executable, *, name: str = "query") -> list[dict[str, Any]]:
        async def op(conn: AsyncConnection) -> list[dict[str, Any]]:
            result = await conn.execute(stmt)
            return [dict(row) for row in result.mappings()]

        return await self.safe_execute(name, op)

    async def fetch_scalar(self, stmt: Executable, *, name: str = "query") -> Any:
        async def op(conn: AsyncConnection) -> Any:
            result = await conn.execute(stmt)
            return result.scalar()

        return await self.safe_execute(name, op)

    async def execute_write(self, stmt: Executable, *, name: str = "write") -> int:
        async def op(conn: AsyncConnection) -> int:
            result = await conn.execute(stmt)
            return max(result.rowcount or 0, 0)

        return await self.safe_execute(name, op, write=True)

    async def execute_sql(
        self, sql: str, params: Mapping[str, Any] | None = None, *, write: bool = False
    ) -> list[dict[str, Any]]:
        """Run raw SQL with named parameters; returns rows when it yields any."""

        async def op(conn: AsyncConnection) -> list[dict[str, Any]]:
            result = await conn.execute(text(sql), dict(params or {}))
            if not result.returns_rows:
                return []
            return [dict(row) for row in result.mappings()]

        return await self.safe_execute("execute_sql", op, write=write)

    # -------------------------------------------------------------------------
    # Schema lifecycle
    # -------------------------------------------------------------------------

    async def init_schema(self) -> None:
        """Create every missing table and index."""

        async def op(conn: AsyncConnection) -> None:
            await conn.run_sync(Base.metadata.create_all)

        await self._run(op, write=True)
        logger.debug("Schema ready")

    async def health_check(self) -> StoreHealth:
        """Report schema presence and read/write capability.

        Never creates the database file.
        """
        health = StoreHealth()
        path = sqlite_path(self._url)
        health.db_exists = path is None or path.exists()
        if not health.db_exists:
            health.missing_tables = expected_tables()
            health.missing_indexes = expected_indexes()
            return health

        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
                health.readable = True

                tables, indexes = await _existing_objects(conn)
                health.missing_tables = [t for t in expected_tables() if t not in tables]
                health.missing_indexes = [i for i in expected_indexes() if i not in indexes]
                health.tables_exist = not health.missing_tables
                health.indexes_exist = not health.missing_indexes

                await conn.execute(text("CREATE TEMP TABLE IF NOT EXISTS _health_check (x INTEGER)"))
                await conn.execute(text("INSERT INTO _health_check (x) VALUES (1)"))
                await conn.execute(text("DROP TABLE _health_check"))
                await conn.rollback()
                health.writable = True
        except (SQLAlchemyError, DatabaseError) as exc:
            health.error = str(exc)
            logger.warning("Store health check failed: {}", exc)
        return health

    async def repair(self) -> RepairResult:
        """Recreate missing tables and indexes. Never drops anything.

        Raises:
            DatabaseError: Repair failed on every attempt
        """

        async def op(conn: AsyncConnection) -> RepairResult:
            result = RepairResult()
            tables, indexes = await _existing_objects(conn)
            for table in Base.metadata.sorted_tables:
                if table.name not in tables:
                    await conn.run_sync(table.create, checkfirst=True)
                    result.tables_repaired.append(table.name)
                    continue
                for index in table.indexes:
                    if index.name and index.name not in indexes:
                        await conn.run_sync(index.create, checkfirst=True)
                        result.indexes_repaired.append(index.name)
            return result

        attempt = 1
        while True:
            try:
                result = await self._run(op, write=True)
                break
            except SQLAlchemyError as exc:
                if attempt >= REPAIR_ATTEMPTS:
                    raise DatabaseError(f"Schema repair failed: {exc}", context="repair") from exc
                logger.warning("Schema repair failed (attempt {}), retrying: {}", attempt, exc)
                await self._sleep(REPAIR_DELAY_MS / 1000)
                attempt += 1

        if result.changed:
            logger.info(
                "Repaired schema: tables={} indexes={}",
                result.tables_repaired,
                result.indexes_repaired,
            )
        return result

