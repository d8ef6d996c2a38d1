# Copyright 2026 Pramod Kumar Voola
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# -----------------------------------------------------------------------------
# RUN DATABASE (PostgreSQL / in-memory)
# -----------------------------------------------------------------------------
# Responsibility: Persistent storage for run tracking (status + progress).
#
# Two repositories share one contract (RunRepository):
# - PostgresRunRepository: psycopg2 connection pool, "runs" table
# - InMemoryRunRepository: dict-backed, for local rendering and tests
#
# psycopg2 is blocking; the async repository runs each call in a worker
# thread.
# -----------------------------------------------------------------------------

import asyncio
import os
import uuid
from contextlib import contextmanager
from typing import Protocol

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import SimpleConnectionPool
from rich.console import Console

from blueprint.domain.models import Run, RunStatus, utcnow
from blueprint.infra.storage import StorageError

console = Console()

# Database configuration from environment
DB_CONFIG = {
    "host": os.getenv("DB_HOST", "localhost"),
    "port": int(os.getenv("DB_PORT", "5432")),
    "user": os.getenv("DB_USER", "blueprint"),
    "password": os.getenv("DB_PASSWORD", "securepass"),
    "database": os.getenv("DB_NAME", "blueprint_runs"),
    # Connection and query timeouts to prevent pool exhaustion
    "connect_timeout": 10,  # 10s connection timeout
    "options": "-c statement_timeout=30000",  # 30s query timeout (in ms)
}

# Connection pool (initialized on first use)
_pool: SimpleConnectionPool | None = None


class RunStoreError(StorageError):
    """Raised when the run repository cannot be read or written."""

    pass


def _get_pool() -> SimpleConnectionPool:
    """Get or create the connection pool."""
    global _pool

    if _pool is None:
        try:
            _pool = SimpleConnectionPool(
                minconn=1,
                maxconn=10,
                host=DB_CONFIG["host"],
                port=DB_CONFIG["port"],
                user=DB_CONFIG["user"],
                password=DB_CONFIG["password"],
                database=DB_CONFIG["database"],
                connect_timeout=DB_CONFIG["connect_timeout"],
                options=DB_CONFIG["options"],
            )
            console.print(
                f"[green][DB] Connection pool created: {DB_CONFIG['host']}:{DB_CONFIG['port']} "
                f"(timeout: {DB_CONFIG['connect_timeout']}s)[/green]"
            )
        except psycopg2.Error as e:
            console.print(f"[red][DB] Failed to create connection pool: {e}[/red]")
            raise

    return _pool


@contextmanager
def get_connection():
    """
    Context manager for database connections from the pool.

    Commits on success, rolls back on error, always returns the connection.
    """
    pool = _get_pool()
    conn = pool.getconn()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


def init_db() -> None:
    """
    Initialize the runs table. Safe to call multiple times.
    """
    with get_connection() as conn, conn.cursor() as cursor:
        cursor.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id UUID PRIMARY KEY,
                    status VARCHAR(20) NOT NULL DEFAULT 'pending',
                    progress SMALLINT NOT NULL DEFAULT 0,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMPTZ
                )
            """)

        # Listing is newest first
        cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_runs_created_at
                ON runs(created_at DESC)
            """)

    console.print(f"[green][DB] Database initialized: {DB_CONFIG['database']}[/green]")


def _row_to_run(row: dict) -> Run:
    return Run(
        id=str(row["id"]),
        status=RunStatus(row["status"]),
        progress=row["progress"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def create_run() -> Run:
    """
    Create a new pending run record.

    Returns:
        The stored Run.
    """
    run_id = str(uuid.uuid4())

    with get_connection() as conn, conn.cursor(cursor_factory=RealDictCursor) as cursor:
        cursor.execute(
            """
                INSERT INTO runs (id, status, progress, created_at)
                VALUES (%s, %s, 0, CURRENT_TIMESTAMP)
                RETURNING *
                """,
            (run_id, RunStatus.PENDING.value),
        )
        row = cursor.fetchone()

    console.print(f"[cyan][DB] Run created: {run_id[:8]}[/cyan]")
    return _row_to_run(row)


def update_run_status(run_id: str, status: RunStatus, progress: int) -> None:
    """
    Update status and progress of a run.

    Args:
        run_id: The UUID of the run.
        status: New status.
        progress: Percentage 0..100.
    """
    with get_connection() as conn, conn.cursor() as cursor:
        cursor.execute(
            """
                UPDATE runs
                SET status = %s, progress = %s, updated_at = CURRENT_TIMESTAMP
                WHERE id = %s
                """,
            (status.value, progress, run_id),
        )

    console.print(f"[cyan][DB] Run {run_id[:8]} -> {status.value} ({progress}%)[/cyan]")


def get_run(run_id: str) -> Run | None:
    """Retrieve a run by ID, or None."""
    try:
        uuid.UUID(run_id)
    except ValueError:
        return None

    with get_connection() as conn, conn.cursor(cursor_factory=RealDictCursor) as cursor:
        cursor.execute("SELECT * FROM runs WHERE id = %s", (run_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return _row_to_run(row)


def list_runs(limit: int = 50) -> list[Run]:
    """List recent runs, most recent first."""
    with get_connection() as conn, conn.cursor(cursor_factory=RealDictCursor) as cursor:
        cursor.execute(
            """
                SELECT * FROM runs
                ORDER BY created_at DESC
                LIMIT %s
                """,
            (limit,),
        )
        return [_row_to_run(row) for row in cursor.fetchall()]


def clear_all_runs() -> int:
    """Delete every run record. Returns the number of rows removed."""
    with get_connection() as conn, conn.cursor() as cursor:
        cursor.execute("DELETE FROM runs")
        deleted = cursor.rowcount

    console.print(f"[yellow][DB] Cleared {deleted} runs[/yellow]")
    return deleted


def close_pool() -> None:
    """
    Close all connections in the pool.

    Call this on application shutdown for clean cleanup.
    """
    global _pool

    if _pool is not None:
        _pool.closeall()
        _pool = None
        console.print("[cyan][DB] Connection pool closed[/cyan]")


# =============================================================================
# REPOSITORIES
# =============================================================================


class RunRepository(Protocol):
    """Persistence contract for run records."""

    async def create(self) -> Run:
        ...

    async def update_status(self, run_id: str, status: RunStatus, progress: int) -> None:
        ...

    async def get(self, run_id: str) -> Run | None:
        ...

    async def list_runs(self, limit: int = 50) -> list[Run]:
        ...


class PostgresRunRepository:
    """RunRepository backed by the PostgreSQL functions above."""

    def __init__(self, initialize: bool = True) -> None:
        self._initialized = not initialize

    async def _call(self, func, *args):
        try:
            if not self._initialized:
                await asyncio.to_thread(init_db)
                self._initialized = True
            return await asyncio.to_thread(func, *args)
        except psycopg2.Error as e:
            raise RunStoreError(f"Run database error: {e}") from e

    async def create(self) -> Run:
        return await self._call(create_run)

    async def update_status(self, run_id: str, status: RunStatus, progress: int) -> None:
        await self._call(update_run_status, run_id, status, progress)

    async def get(self, run_id: str) -> Run | None:
        return await self._call(get_run, run_id)

    async def list_runs(self, limit: int = 50) -> list[Run]:
        return await self._call(list_runs, limit)


class InMemoryRunRepository:
    """RunRepository kept in process memory. Records also keep every update."""

    def __init__(self) -> None:
        self._runs: dict[str, Run] = {}
        self.history: dict[str, list[tuple[RunStatus, int]]] = {}

    async def create(self) -> Run:
        run = Run(id=str(uuid.uuid4()))
        self._runs[run.id] = run
        self.history[run.id] = [(run.status, run.progress)]
        console.print(f"[cyan][DB] Run created: {run.id[:8]}[/cyan]")
        return run

    async def update_status(self, run_id: str, status: RunStatus, progress: int) -> None:
        run = self._runs.get(run_id)
        if run is None:
            raise RunStoreError(f"Run not found: {run_id}")
        self._runs[run_id] = run.model_copy(
            update={"status": status, "progress": progress, "updated_at": utcnow()}
        )
        self.history[run_id].append((status, progress))

    async def get(self, run_id: str) -> Run | None:
        return self._runs.get(run_id)

    async def list_runs(self, limit: int = 50) -> list[Run]:
        runs = sorted(self._runs.values(), key=lambda run: run.created_at, reverse=True)
        return runs[:limit]
