"""
Learner progress tracking.

Persists course step status, the git commits made along the way and learning
sessions (one per runtime start) in a small SQLite database.
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from .config.xdg import get_tutorspace_cache_dir
from .errors import StorageError
from .logging_config import get_logger

logger = get_logger(__name__)


class StepStatus(Enum):
    """Course step status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass
class StepProgress:
    """Progress record for one course step."""

    module_id: str
    step_id: str
    status: StepStatus
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    code_snapshot: str | None = None
    git_commit: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "module_id": self.module_id,
            "step_id": self.step_id,
            "status": self.status.value,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "code_snapshot": self.code_snapshot,
            "git_commit": self.git_commit,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class CommitRecord:
    """A git commit made by the learner."""

    commit_hash: str
    commit_message: str
    files_changed: list[str]
    created_at: datetime
    step_context: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "commit_hash": self.commit_hash,
            "commit_message": self.commit_message,
            "files_changed": self.files_changed,
            "step_context": self.step_context,
            "created_at": self.created_at.isoformat(),
        }


def _now() -> str:
    # Fixed precision keeps stored timestamps lexicographically comparable
    return datetime.now(UTC).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _step_from_row(row: sqlite3.Row) -> StepProgress:
    return StepProgress(
        module_id=row["module_id"],
        step_id=row["step_id"],
        status=StepStatus(row["status"]),
        completed_at=_parse(row["completed_at"]),
        code_snapshot=row["code_snapshot"],
        git_commit=row["git_commit"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class ProgressStore:
    """
    Persistent progress storage.

    Stores:
    - Step status per (module, step), upserted on every update
    - Git commits (deduplicated by hash)
    - Learning sessions with the number of steps completed in each

    Every public method raises StorageError when the database fails.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        """
        Initialize progress store.

        Args:
            db_path: Database path (defaults to XDG cache)
        """
        if db_path is None:
            db_path = get_tutorspace_cache_dir() / "progress.db"

        self.db_path = Path(db_path).expanduser()
        self._init_db()

        logger.debug(f"ProgressStore: {self.db_path}")

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            logger.error(f"Cannot open progress database {self.db_path}: {e}")
            raise StorageError(f"Cannot open progress database: {e}") from e

        conn.row_factory = sqlite3.Row

        try:
            with conn:  # Commits on success, rolls back on error
                yield conn
        except sqlite3.Error as e:
            logger.exception(f"Progress database error: {e}")
            raise StorageError(f"Progress database error: {e}") from e
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create progress database directory: {e}") from e

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS user_progress (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    module_id TEXT NOT NULL,
                    step_id TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    completed_at TEXT,
                    code_snapshot TEXT,
                    git_commit TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(module_id, step_id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS learning_sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_start TEXT NOT NULL,
                    session_end TEXT,
                    steps_completed INTEGER DEFAULT 0
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS git_commits (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    commit_hash TEXT UNIQUE NOT NULL,
                    commit_message TEXT NOT NULL,
                    files_changed TEXT,
                    step_context TEXT,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute("CREATE INDEX IF NOT EXISTS idx_progress_created ON user_progress(created_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_commits_created ON git_commits(created_at)")

    def record_step(
        self,
        module_id: str,
        step_id: str,
        status: StepStatus | str,
        code_snapshot: str | None = None,
        git_commit: str | None = None,
    ) -> StepProgress:
        """
        Insert or update a step's progress.

        Args:
            module_id: Course module identifier
            step_id: Step identifier within the module
            status: New status; completed steps get a completion timestamp
            code_snapshot: Optional code at this point
            git_commit: Optional commit hash for this step

        Returns:
            Stored progress record

        Raises:
            ValueError: Empty identifiers or unknown status
        """
        if not module_id or not step_id:
            raise ValueError("Module ID and step ID required")

        status = StepStatus(status)
        now = _now()

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO user_progress
                (module_id, step_id, status, completed_at, code_snapshot, git_commit, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(module_id, step_id)
                DO UPDATE SET
                    status = excluded.status,
                    completed_at = excluded.completed_at,
                    code_snapshot = excluded.code_snapshot,
                    git_commit = excluded.git_commit,
                    updated_at = excluded.updated_at
            """,
                (
                    module_id,
                    step_id,
                    status.value,
                    now if status == StepStatus.COMPLETED else None,
                    code_snapshot,
                    git_commit,
                    now,
                    now,
                ),
            )
            row = conn.execute(
                "SELECT * FROM user_progress WHERE module_id = ? AND step_id = ?", (module_id, step_id)
            ).fetchone()

        logger.info(f"Step {module_id}/{step_id} is now {status.value}")

        return _step_from_row(row)

    def get_step(self, module_id: str, step_id: str) -> StepProgress | None:
        """Get one step's progress, or None if it was never recorded."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM user_progress WHERE module_id = ? AND step_id = ?", (module_id, step_id)
            ).fetchone()

        return _step_from_row(row) if row else None

    def get_current(self) -> dict[str, Any]:
        """
        Get the most recently started step and overall counts.

        Returns:
            Dict with current_progress (or None) and stats
        """
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM user_progress ORDER BY created_at DESC, id DESC LIMIT 1").fetchone()
            counts = conn.execute(
                """
                SELECT COUNT(*) AS total_steps,
                       COALESCE(SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END), 0) AS completed_steps
                FROM user_progress
            """
            ).fetchone()

        return {
            "current_progress": _step_from_row(row).to_dict() if row else None,
            "stats": dict(counts),
        }

    def record_commit(
        self,
        commit_hash: str,
        commit_message: str,
        files_changed: list[str] | None = None,
        step_context: str | None = None,
    ) -> bool:
        """
        Record a learner commit.

        Args:
            commit_hash: Commit hash (recorded once)
            commit_message: Commit message
            files_changed: Paths touched by the commit
            step_context: Course step the commit belongs to

        Returns:
            True if recorded, False if the hash was already known

        Raises:
            ValueError: Missing hash or message
        """
        if not commit_hash or not commit_message:
            raise ValueError("Commit hash and message required")

        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO git_commits
                (commit_hash, commit_message, files_changed, step_context, created_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (commit_hash, commit_message, json.dumps(files_changed or []), step_context, _now()),
            )
            inserted = cursor.rowcount > 0

        if inserted:
            logger.info(f"Recorded commit {commit_hash[:8]}: {commit_message}")
        else:
            logger.debug(f"Commit {commit_hash[:8]} already recorded")

        return inserted

    def get_stats(self, recent_limit: int = 10) -> dict[str, Any]:
        """
        Get learning statistics.

        Args:
            recent_limit: Number of recent commits to include

        Returns:
            Dict with progress counts and recent_commits (newest first)
        """
        with self._connect() as conn:
            counts = conn.execute(
                """
                SELECT COUNT(*) AS total_steps,
                       COALESCE(SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END), 0) AS completed_steps,
                       COALESCE(SUM(CASE WHEN status = 'in_progress' THEN 1 ELSE 0 END), 0) AS in_progress_steps,
                       COUNT(DISTINCT module_id) AS modules_started
                FROM user_progress
            """
            ).fetchone()
            rows = conn.execute(
                "SELECT * FROM git_commits ORDER BY created_at DESC, id DESC LIMIT ?", (recent_limit,)
            ).fetchall()

        commits = [
            CommitRecord(
                commit_hash=row["commit_hash"],
                commit_message=row["commit_message"],
                files_changed=json.loads(row["files_changed"]) if row["files_changed"] else [],
                step_context=row["step_context"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

        return {"progress": dict(counts), "recent_commits": [c.to_dict() for c in commits]}

    def start_session(self) -> int:
        """
        Open a learning session.

        Returns:
            Session ID
        """
        with self._connect() as conn:
            cursor = conn.execute("INSERT INTO learning_sessions (session_start) VALUES (?)", (_now(),))
            session_id = cursor.lastrowid

        logger.debug(f"Learning session {session_id} started")

        return session_id

    def end_session(self, session_id: int) -> None:
        """
        Close a learning session, counting the steps completed during it.

        Args:
            session_id: Session ID from start_session()
        """
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE learning_sessions
                SET session_end = ?,
                    steps_completed = (
                        SELECT COUNT(*) FROM user_progress
                        WHERE completed_at IS NOT NULL AND completed_at >= learning_sessions.session_start
                    )
                WHERE id = ? AND session_end IS NULL
            """,
                (_now(), session_id),
            )

        logger.debug(f"Learning session {session_id} ended")

    def get_session(self, session_id: int) -> dict[str, Any] | None:
        """Get a learning session as a dict, or None if unknown."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, session_start, session_end, steps_completed FROM learning_sessions WHERE id = ?",
                (session_id,),
            ).fetchone()

        return dict(row) if row else None
