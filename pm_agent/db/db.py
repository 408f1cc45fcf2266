"""SQLite persistence for projects, tasks, pending actions, reports, and ideas."""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

from pm_agent.models.project_contracts import Idea, Project
from pm_agent.models.report_contracts import AnalysisReport
from pm_agent.models.task_contracts import PendingAction, SuggestedAction, Task

_TASK_COLUMNS = (
    "id",
    "project_id",
    "type",
    "priority",
    "title",
    "description",
    "context",
    "suggested_actions_json",
    "related_issues_json",
    "related_prs_json",
    "status",
    "kanban_status",
    "generated_at",
    "completed_at",
    "approved_by",
    "generated_by",
)

_PRIORITY_ORDER_SQL = """
    CASE priority
        WHEN 'critical' THEN 1
        WHEN 'high' THEN 2
        WHEN 'medium' THEN 3
        WHEN 'low' THEN 4
        ELSE 5
    END
"""


class AgentDB:
    """Small SQLite wrapper shared by every store; one connection per process."""

    def __init__(self, db_path: Path | str = ":memory:") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        # scheduler jobs run on worker threads and share this connection
        self._lock = threading.RLock()
        self._configure_connection()
        self._init_schema()

    def _configure_connection(self) -> None:
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=5000")
        self.conn.execute("PRAGMA synchronous=NORMAL")
        self.conn.execute("PRAGMA temp_store=MEMORY")

    def _init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS projects (
                id TEXT PRIMARY KEY,
                repo TEXT NOT NULL,
                payload_json TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                type TEXT NOT NULL,
                priority TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                context TEXT NOT NULL DEFAULT '',
                suggested_actions_json TEXT NOT NULL DEFAULT '[]',
                related_issues_json TEXT NOT NULL DEFAULT '[]',
                related_prs_json TEXT NOT NULL DEFAULT '[]',
                status TEXT NOT NULL DEFAULT 'pending',
                kanban_status TEXT NOT NULL DEFAULT 'not_started',
                generated_at INTEGER NOT NULL,
                completed_at INTEGER,
                approved_by TEXT,
                generated_by TEXT NOT NULL DEFAULT 'manual'
            );

            CREATE TABLE IF NOT EXISTS pending_actions (
                id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL DEFAULT 'manual',
                action_type TEXT NOT NULL,
                action_description TEXT NOT NULL DEFAULT '',
                action_payload_json TEXT NOT NULL DEFAULT '{}',
                created_at INTEGER NOT NULL,
                expires_at INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                telegram_message_id INTEGER
            );

            CREATE TABLE IF NOT EXISTS reports (
                id TEXT PRIMARY KEY,
                report_type TEXT NOT NULL,
                started_at INTEGER NOT NULL,
                payload_json TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS ideas (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                payload_json TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS crawl_sources (
                source_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                url TEXT NOT NULL DEFAULT '',
                interval_minutes INTEGER NOT NULL DEFAULT 60,
                enabled INTEGER NOT NULL DEFAULT 1,
                last_crawled_at INTEGER,
                last_status TEXT,
                last_error TEXT,
                last_item_count INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS agent_state (
                key TEXT PRIMARY KEY,
                value_json TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS audit_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                event_json TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_tasks_status_kanban
                ON tasks(status, kanban_status);
            CREATE INDEX IF NOT EXISTS idx_pending_actions_status_expiry
                ON pending_actions(status, expires_at);
            """
        )
        self.conn.commit()

    # projects

    def upsert_project(self, project: Project) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO projects (id, repo, payload_json) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  repo=excluded.repo,
                  payload_json=excluded.payload_json
                """,
                (project.id, project.repo, project.model_dump_json()),
            )
            self.conn.commit()

    def get_project(self, project_id: str) -> Project | None:
        row = self.conn.execute(
            "SELECT payload_json FROM projects WHERE id = ?", (project_id,)
        ).fetchone()
        if row is None:
            return None
        return Project.model_validate_json(row[0])

    def list_projects(self) -> list[Project]:
        rows = self.conn.execute("SELECT payload_json FROM projects ORDER BY id ASC").fetchall()
        return [Project.model_validate_json(row[0]) for row in rows]

    # tasks

    def _task_values(self, task: Task) -> tuple[Any, ...]:
        return (
            task.id,
            task.project_id,
            task.type,
            task.priority,
            task.title,
            task.description,
            task.context,
            json.dumps([action.model_dump() for action in task.suggested_actions]),
            json.dumps(task.related_issues),
            json.dumps(task.related_prs),
            task.status,
            task.kanban_status,
            task.generated_at,
            task.completed_at,
            task.approved_by,
            task.generated_by,
        )

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            project_id=row["project_id"],
            type=row["type"],
            priority=row["priority"],
            title=row["title"],
            description=row["description"],
            context=row["context"],
            suggested_actions=[
                SuggestedAction.model_validate(item)
                for item in json.loads(row["suggested_actions_json"])
            ],
            related_issues=json.loads(row["related_issues_json"]),
            related_prs=json.loads(row["related_prs_json"]),
            status=row["status"],
            kanban_status=row["kanban_status"],
            generated_at=row["generated_at"],
            completed_at=row["completed_at"],
            approved_by=row["approved_by"],
            generated_by=row["generated_by"],
        )

    def upsert_task(self, task: Task) -> None:
        placeholders = ", ".join("?" for _ in _TASK_COLUMNS)
        updates = ",\n  ".join(
            f"{column}=excluded.{column}"
            for column in _TASK_COLUMNS
            if column not in {"id", "project_id", "generated_at", "generated_by"}
        )
        with self._lock:
            self.conn.execute(
                f"""
                INSERT INTO tasks ({", ".join(_TASK_COLUMNS)}) VALUES ({placeholders})
                ON CONFLICT(id) DO UPDATE SET
                  {updates}
                """,
                self._task_values(task),
            )
            self.conn.commit()

    def get_task(self, task_id: str) -> Task | None:
        row = self.conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(
        self,
        project_id: str = "",
        status: str = "",
        kanban_status: str = "",
    ) -> list[Task]:
        clauses: list[str] = []
        params: list[Any] = []
        if project_id:
            clauses.append("project_id = ?")
            params.append(project_id)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if kanban_status:
            clauses.append("kanban_status = ?")
            params.append(kanban_status)
        where_clause = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"""
            SELECT * FROM tasks
            {where_clause}
            ORDER BY {_PRIORITY_ORDER_SQL}, generated_at DESC
            """,
            tuple(params),
        ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def next_executable_task(self) -> Task | None:
        row = self.conn.execute(
            f"""
            SELECT * FROM tasks
            WHERE status = 'approved'
              AND kanban_status IN ('backlog', 'not_started')
            ORDER BY {_PRIORITY_ORDER_SQL}, generated_at ASC
            LIMIT 1
            """
        ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    # pending actions

    def _row_to_action(self, row: sqlite3.Row) -> PendingAction:
        return PendingAction(
            id=row["id"],
            task_id=row["task_id"],
            action=SuggestedAction(
                type=row["action_type"],
                description=row["action_description"],
                payload=json.loads(row["action_payload_json"]),
            ),
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            status=row["status"],
            telegram_message_id=row["telegram_message_id"],
        )

    def create_pending_action(self, action: PendingAction) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO pending_actions (
                  id, task_id, action_type, action_description, action_payload_json,
                  created_at, expires_at, status, telegram_message_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    action.id,
                    action.task_id,
                    action.action.type,
                    action.action.description,
                    json.dumps(action.action.payload, sort_keys=True),
                    action.created_at,
                    action.expires_at,
                    action.status,
                    action.telegram_message_id,
                ),
            )
            self.conn.commit()

    def get_pending_action(self, action_id: str) -> PendingAction | None:
        row = self.conn.execute(
            "SELECT * FROM pending_actions WHERE id = ?", (action_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_action(row)

    def list_pending_actions(self, status: str = "") -> list[PendingAction]:
        if status:
            rows = self.conn.execute(
                "SELECT * FROM pending_actions WHERE status = ? ORDER BY created_at DESC",
                (status,),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM pending_actions ORDER BY created_at DESC"
            ).fetchall()
        return [self._row_to_action(row) for row in rows]

    def compare_and_set_action_status(
        self, action_id: str, expected_status: str, new_status: str
    ) -> bool:
        """Update status only if the row still holds ``expected_status``."""

        with self._lock:
            cur = self.conn.execute(
                "UPDATE pending_actions SET status = ? WHERE id = ? AND status = ?",
                (new_status, action_id, expected_status),
            )
            self.conn.commit()
            return cur.rowcount == 1

    def expire_pending_actions(self, now: int) -> int:
        with self._lock:
            cur = self.conn.execute(
                """
                UPDATE pending_actions
                SET status = 'expired'
                WHERE status = 'pending' AND expires_at < ?
                """,
                (now,),
            )
            self.conn.commit()
            return int(cur.rowcount)

    def set_action_telegram_message_id(self, action_id: str, message_id: int) -> None:
        with self._lock:
            self.conn.execute(
                "UPDATE pending_actions SET telegram_message_id = ? WHERE id = ?",
                (message_id, action_id),
            )
            self.conn.commit()

    # reports

    def upsert_report(self, report: AnalysisReport) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO reports (id, report_type, started_at, payload_json)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET payload_json=excluded.payload_json
                """,
                (report.id, report.type, report.started_at, report.model_dump_json()),
            )
            self.conn.commit()

    def get_report(self, report_id: str) -> AnalysisReport | None:
        row = self.conn.execute(
            "SELECT payload_json FROM reports WHERE id = ?", (report_id,)
        ).fetchone()
        if row is None:
            return None
        return AnalysisReport.model_validate_json(row[0])

    def list_reports(self, report_type: str = "", limit: int = 20) -> list[AnalysisReport]:
        if report_type:
            rows = self.conn.execute(
                """
                SELECT payload_json FROM reports WHERE report_type = ?
                ORDER BY started_at DESC LIMIT ?
                """,
                (report_type, limit),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT payload_json FROM reports ORDER BY started_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [AnalysisReport.model_validate_json(row[0]) for row in rows]

    # ideas

    def upsert_idea(self, idea: Idea) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO ideas (id, status, payload_json) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  status=excluded.status,
                  payload_json=excluded.payload_json
                """,
                (idea.id, idea.status, idea.model_dump_json()),
            )
            self.conn.commit()

    def get_idea(self, idea_id: str) -> Idea | None:
        row = self.conn.execute(
            "SELECT payload_json FROM ideas WHERE id = ?", (idea_id,)
        ).fetchone()
        if row is None:
            return None
        return Idea.model_validate_json(row[0])

    # crawl sources

    def upsert_crawl_source(
        self,
        source_id: str,
        name: str,
        url: str = "",
        interval_minutes: int = 60,
        enabled: bool = True,
    ) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO crawl_sources (source_id, name, url, interval_minutes, enabled)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(source_id) DO UPDATE SET
                  name=excluded.name,
                  url=excluded.url,
                  interval_minutes=excluded.interval_minutes,
                  enabled=excluded.enabled
                """,
                (source_id, name, url, max(1, int(interval_minutes)), 1 if enabled else 0),
            )
            self.conn.commit()

    def get_crawl_source(self, source_id: str) -> dict[str, Any] | None:
        row = self.conn.execute(
            "SELECT * FROM crawl_sources WHERE source_id = ?", (source_id,)
        ).fetchone()
        return self._crawl_source_row(row) if row else None

    def list_due_crawl_sources(self, now: int) -> list[dict[str, Any]]:
        rows = self.conn.execute(
            """
            SELECT * FROM crawl_sources
            WHERE enabled = 1
              AND (last_crawled_at IS NULL OR last_crawled_at + interval_minutes * 60000 <= ?)
            ORDER BY source_id ASC
            """,
            (now,),
        ).fetchall()
        return [self._crawl_source_row(row) for row in rows]

    def mark_crawl_source_crawled(
        self,
        source_id: str,
        crawled_at: int,
        status: str = "success",
        item_count: int = 0,
        error: str | None = None,
    ) -> None:
        with self._lock:
            self.conn.execute(
                """
                UPDATE crawl_sources
                SET last_crawled_at = ?, last_status = ?, last_item_count = ?, last_error = ?
                WHERE source_id = ?
                """,
                (crawled_at, status, int(item_count), error, source_id),
            )
            self.conn.commit()

    @staticmethod
    def _crawl_source_row(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "source_id": str(row["source_id"]),
            "name": str(row["name"]),
            "url": str(row["url"]),
            "interval_minutes": int(row["interval_minutes"]),
            "enabled": bool(row["enabled"]),
            "last_crawled_at": row["last_crawled_at"],
            "last_status": row["last_status"],
            "last_error": row["last_error"],
            "last_item_count": int(row["last_item_count"]),
        }

    # agent state

    def set_state(self, key: str, value: Any) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO agent_state (key, value_json) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json
                """,
                (key, json.dumps(value)),
            )
            self.conn.commit()

    def get_state(self, key: str) -> Any:
        row = self.conn.execute(
            "SELECT value_json FROM agent_state WHERE key = ?", (key,)
        ).fetchone()
        return None if row is None else json.loads(row["value_json"])

    # audit

    def append_audit_event(self, event_type: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT INTO audit_events (event_type, event_json) VALUES (?, ?)",
                (event_type, json.dumps(payload, sort_keys=True)),
            )
            self.conn.commit()

    def list_audit_events(self, event_type: str = "") -> list[dict[str, Any]]:
        if event_type:
            rows = self.conn.execute(
                "SELECT * FROM audit_events WHERE event_type = ? ORDER BY id ASC",
                (event_type,),
            ).fetchall()
        else:
            rows = self.conn.execute("SELECT * FROM audit_events ORDER BY id ASC").fetchall()
        return [
            {
                "id": int(row["id"]),
                "event_type": str(row["event_type"]),
                "payload": json.loads(row["event_json"]),
                "created_at": str(row["created_at"]),
            }
            for row in rows
        ]
