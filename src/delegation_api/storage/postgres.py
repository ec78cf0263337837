"""PostgreSQL storage backend for task records and the audit trail.

Beginner terms:
- Migration: creating/updating database tables before normal reads/writes.
- JSONB: PostgreSQL JSON type used for structured artifacts.
- Conditional update: ``UPDATE ... WHERE status = <expected>``; zero affected
  rows means another writer already moved the task.
- Row factory: returns query rows as dict-like objects instead of tuples.
"""

from __future__ import annotations

import json
import threading
import uuid
from datetime import UTC, datetime
from typing import Any

from delegation_api.models import ApiCall, AuditEntry, InterpretationResult, Task, TaskStatus


class _PostgresBackend:
    """Connection and row-parsing helpers shared by both tables."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("DELEGATION_DATABASE_URL is required")
        self.database_url = database_url
        # Lock guards DB operations done through this storage instance.
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def _connect(self) -> Any:
        """Open a psycopg connection that yields dict-like rows."""
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        """Import psycopg and helpers with a friendly install hint on failure."""
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover - exercised only without dependency
            raise RuntimeError(
                "PostgreSQL backend requires psycopg. Install with: "
                'python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json_optional(raw: Any) -> dict[str, Any] | None:
        if raw is None:
            return None
        parsed = json.loads(raw) if isinstance(raw, str) else raw
        if isinstance(parsed, dict):
            return parsed
        return None

    @staticmethod
    def _parse_json_list(raw: Any) -> list[dict[str, Any]]:
        if raw is None:
            return []
        parsed = json.loads(raw) if isinstance(raw, str) else raw
        if not isinstance(parsed, list):
            return []
        return [item for item in parsed if isinstance(item, dict)]

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _parse_datetime_optional(cls, raw: Any) -> datetime | None:
        if raw is None:
            return None
        return cls._parse_datetime(raw)


class PostgresTaskStorage(_PostgresBackend):
    """Thread-safe PostgreSQL-backed storage for Task records."""

    def migrate(self) -> None:
        """Create required table and indexes if they do not already exist."""
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id UUID PRIMARY KEY,
                    category TEXT NOT NULL,
                    prompt TEXT NOT NULL,
                    title TEXT NOT NULL,
                    status TEXT NOT NULL,
                    requester_id TEXT NOT NULL,
                    requester_contact TEXT NOT NULL,
                    interpretation_json JSONB,
                    outcome_json JSONB,
                    error_detail TEXT,
                    api_calls_json JSONB NOT NULL DEFAULT '[]'::jsonb,
                    created_at TIMESTAMPTZ NOT NULL,
                    started_at TIMESTAMPTZ,
                    completed_at TIMESTAMPTZ,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_status
                ON tasks(status)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_requester_created_at
                ON tasks(requester_id, created_at DESC)
                """)
            conn.commit()

    def create_task(
        self,
        *,
        category: str,
        prompt: str,
        title: str,
        requester_id: str,
        requester_contact: str,
        interpretation: InterpretationResult | None,
    ) -> Task:
        """Insert a new processing task row and return it."""
        task_id = uuid.uuid4()
        now = datetime.now(tz=UTC)
        interpretation_payload = (
            self._json_wrapper(interpretation.model_dump(mode="json"))
            if interpretation is not None
            else None
        )
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO tasks (
                    task_id,
                    category,
                    prompt,
                    title,
                    status,
                    requester_id,
                    requester_contact,
                    interpretation_json,
                    created_at,
                    started_at,
                    updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    task_id,
                    category,
                    prompt,
                    title,
                    "processing",
                    requester_id,
                    requester_contact,
                    interpretation_payload,
                    now,
                    now,
                    now,
                ),
            ).fetchone()
            conn.commit()
        if row is None:
            raise RuntimeError("Failed to persist task")
        return self._row_to_task(row)

    def get_task(self, task_id: str) -> Task | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE task_id::text = %s",
                (task_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(self, requester_id: str, *, limit: int = 50) -> list[Task]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE requester_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (requester_id, limit),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def transition(
        self,
        task_id: str,
        *,
        expected_status: TaskStatus,
        status: TaskStatus,
        completed_at: datetime,
        outcome: dict[str, Any] | None = None,
        error_detail: str | None = None,
        api_calls: list[ApiCall] | None = None,
    ) -> Task | None:
        """Apply a status change only if the row still holds ``expected_status``."""
        new_calls = [call.model_dump(mode="json") for call in api_calls or []]
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                UPDATE tasks
                SET status = %s,
                    completed_at = %s,
                    outcome_json = COALESCE(%s, outcome_json),
                    error_detail = COALESCE(%s, error_detail),
                    api_calls_json = api_calls_json || %s::jsonb,
                    updated_at = %s
                WHERE task_id::text = %s
                  AND status = %s
                RETURNING *
                """,
                (
                    status,
                    completed_at,
                    self._json_wrapper(outcome) if outcome is not None else None,
                    error_detail,
                    self._json_wrapper(new_calls),
                    datetime.now(tz=UTC),
                    task_id,
                    expected_status,
                ),
            ).fetchone()
            conn.commit()
        if row is None:
            return None
        return self._row_to_task(row)

    @classmethod
    def _row_to_task(cls, row: Any) -> Task:
        """Map one DB row to the canonical Task Pydantic model."""
        interpretation_raw = cls._parse_json_optional(row["interpretation_json"])
        return Task(
            task_id=str(row["task_id"]),
            category=row["category"],
            prompt=row["prompt"],
            title=row["title"],
            status=row["status"],
            requester_id=row["requester_id"],
            requester_contact=row["requester_contact"],
            interpretation=(
                InterpretationResult.model_validate(interpretation_raw)
                if interpretation_raw is not None
                else None
            ),
            outcome=cls._parse_json_optional(row["outcome_json"]),
            error_detail=row["error_detail"],
            api_calls=[
                ApiCall.model_validate(item) for item in cls._parse_json_list(row["api_calls_json"])
            ],
            created_at=cls._parse_datetime(row["created_at"]),
            started_at=cls._parse_datetime_optional(row["started_at"]),
            completed_at=cls._parse_datetime_optional(row["completed_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )


class PostgresAuditLog(_PostgresBackend):
    """Append-only audit table. No update/delete."""

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            # task_id is a reference only: audit rows outlive task retention.
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_audit_log (
                    entry_id UUID PRIMARY KEY,
                    task_id UUID NOT NULL,
                    action TEXT NOT NULL,
                    actor_id TEXT NOT NULL,
                    before_json JSONB NOT NULL DEFAULT '{}'::jsonb,
                    after_json JSONB NOT NULL DEFAULT '{}'::jsonb,
                    created_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_task_audit_log_task_id
                ON task_audit_log(task_id, created_at)
                """)
            conn.commit()

    def append(
        self,
        *,
        task_id: str,
        action: str,
        actor_id: str,
        before: dict[str, Any],
        after: dict[str, Any],
    ) -> AuditEntry:
        entry = AuditEntry(
            entry_id=str(uuid.uuid4()),
            task_id=task_id,
            action=action,
            actor_id=actor_id,
            before=dict(before),
            after=dict(after),
            timestamp=datetime.now(tz=UTC),
        )
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO task_audit_log (
                    entry_id,
                    task_id,
                    action,
                    actor_id,
                    before_json,
                    after_json,
                    created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    entry.entry_id,
                    entry.task_id,
                    entry.action,
                    entry.actor_id,
                    self._json_wrapper(entry.before),
                    self._json_wrapper(entry.after),
                    entry.timestamp,
                ),
            )
            conn.commit()
        return entry

    def list_for_task(self, task_id: str) -> list[AuditEntry]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM task_audit_log
                WHERE task_id::text = %s
                ORDER BY created_at ASC
                """,
                (task_id,),
            ).fetchall()
        return [
            AuditEntry(
                entry_id=str(row["entry_id"]),
                task_id=str(row["task_id"]),
                action=row["action"],
                actor_id=row["actor_id"],
                before=self._parse_json_optional(row["before_json"]) or {},
                after=self._parse_json_optional(row["after_json"]) or {},
                timestamp=self._parse_datetime(row["created_at"]),
            )
            for row in rows
        ]
