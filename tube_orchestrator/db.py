import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import (
    ChannelConfig,
    JobEvent,
    JobRecord,
    JobStatus,
    Niche,
    PromptTemplate,
)

logger = logging.getLogger(__name__)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class Database:
    """SQLite store for niches, channels, jobs and job events (last write wins)"""

    def __init__(self, db_path: str = "jobs.db"):
        self.db_path = db_path
        self.init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self):
        """Initialize database with required tables"""
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS niches (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    description TEXT NOT NULL DEFAULT ''
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS prompt_templates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    niche_id INTEGER NOT NULL,
                    stage_type TEXT NOT NULL,
                    template_text TEXT NOT NULL,
                    UNIQUE (niche_id, stage_type),
                    FOREIGN KEY (niche_id) REFERENCES niches (id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS channels (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    niche_id INTEGER,
                    require_approval BOOLEAN NOT NULL DEFAULT 0,
                    is_active BOOLEAN NOT NULL DEFAULT 1,
                    tone TEXT,
                    description TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (niche_id) REFERENCES niches (id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    channel_id INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    current_stage TEXT NOT NULL,
                    progress INTEGER NOT NULL DEFAULT 0,
                    script TEXT,
                    video_url TEXT,
                    log_output TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id INTEGER NOT NULL,
                    timestamp TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    stage TEXT,
                    message TEXT NOT NULL,
                    payload_json TEXT NOT NULL,
                    FOREIGN KEY (job_id) REFERENCES jobs (id)
                )
            """
            )

            conn.commit()
            logger.info(f"[db] Database initialized at {self.db_path}")

    # ------------------------------------------------------------------ niches

    def create_niche(self, niche: Niche) -> Niche:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO niches (name, description) VALUES (?, ?)",
                (niche.name, niche.description),
            )
            niche_id = cursor.lastrowid
            for template in niche.templates:
                conn.execute(
                    """
                    INSERT INTO prompt_templates (niche_id, stage_type, template_text)
                    VALUES (?, ?, ?)
                """,
                    (niche_id, template.stage_type, template.template_text),
                )
            conn.commit()
        logger.info(f"[db] Created niche {niche_id} ({niche.name})")
        return self.get_niche(niche_id)

    def add_prompt_template(self, niche_id: int, stage_type: str, template_text: str) -> PromptTemplate:
        """Add or replace the niche's template for a stage type"""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO prompt_templates (niche_id, stage_type, template_text)
                VALUES (?, ?, ?)
                ON CONFLICT (niche_id, stage_type) DO UPDATE SET template_text = excluded.template_text
            """,
                (niche_id, stage_type, template_text),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM prompt_templates WHERE niche_id = ? AND stage_type = ?",
                (niche_id, stage_type),
            ).fetchone()
        return self._row_to_template(row)

    def get_niche(self, niche_id: int) -> Optional[Niche]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM niches WHERE id = ?", (niche_id,)).fetchone()
            if not row:
                return None
            return self._row_to_niche(conn, row)

    def list_niches(self) -> List[Niche]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM niches ORDER BY name").fetchall()
            return [self._row_to_niche(conn, row) for row in rows]

    def count_niches(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM niches").fetchone()[0]

    def _row_to_niche(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Niche:
        template_rows = conn.execute(
            "SELECT * FROM prompt_templates WHERE niche_id = ? ORDER BY id", (row["id"],)
        ).fetchall()
        return Niche(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            templates=[self._row_to_template(t) for t in template_rows],
        )

    @staticmethod
    def _row_to_template(row: sqlite3.Row) -> PromptTemplate:
        return PromptTemplate(
            id=row["id"],
            niche_id=row["niche_id"],
            stage_type=row["stage_type"],
            template_text=row["template_text"],
        )

    # ---------------------------------------------------------------- channels

    def create_channel(self, channel: ChannelConfig) -> ChannelConfig:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO channels (name, platform, niche_id, require_approval, is_active, tone, description, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    channel.name,
                    channel.platform,
                    channel.niche_id,
                    channel.require_approval,
                    channel.is_active,
                    channel.tone,
                    channel.description,
                    channel.created_at.isoformat(),
                ),
            )
            conn.commit()
            channel_id = cursor.lastrowid
        logger.info(f"[db] Created channel {channel_id} ({channel.name})")
        return self.get_channel(channel_id)

    def get_channel(self, channel_id: int) -> Optional[ChannelConfig]:
        """Retrieve a channel with its niche and the niche's templates"""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM channels WHERE id = ?", (channel_id,)).fetchone()
            if not row:
                return None
            return self._row_to_channel(conn, row)

    def list_channels(self) -> List[ChannelConfig]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM channels ORDER BY id").fetchall()
            return [self._row_to_channel(conn, row) for row in rows]

    def list_active_channels(self) -> List[ChannelConfig]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM channels WHERE is_active = 1 ORDER BY id"
            ).fetchall()
            return [self._row_to_channel(conn, row) for row in rows]

    def update_channel(self, channel: ChannelConfig) -> ChannelConfig:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE channels
                SET name = ?, platform = ?, niche_id = ?, require_approval = ?, is_active = ?, tone = ?, description = ?
                WHERE id = ?
            """,
                (
                    channel.name,
                    channel.platform,
                    channel.niche_id,
                    channel.require_approval,
                    channel.is_active,
                    channel.tone,
                    channel.description,
                    channel.id,
                ),
            )
            conn.commit()
        logger.info(f"[db] Updated channel {channel.id}")
        return self.get_channel(channel.id)

    def delete_channel(self, channel_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM channels WHERE id = ?", (channel_id,))
            conn.commit()
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"[db] Deleted channel {channel_id}")
        return deleted

    def _row_to_channel(self, conn: sqlite3.Connection, row: sqlite3.Row) -> ChannelConfig:
        niche = None
        if row["niche_id"] is not None:
            niche_row = conn.execute(
                "SELECT * FROM niches WHERE id = ?", (row["niche_id"],)
            ).fetchone()
            if niche_row:
                niche = self._row_to_niche(conn, niche_row)
        return ChannelConfig(
            id=row["id"],
            name=row["name"],
            platform=row["platform"],
            niche_id=row["niche_id"],
            niche=niche,
            require_approval=bool(row["require_approval"]),
            is_active=bool(row["is_active"]),
            tone=row["tone"],
            description=row["description"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # -------------------------------------------------------------------- jobs

    def create_job(self, job: JobRecord) -> JobRecord:
        """Insert a job and return it with its assigned id"""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO jobs (channel_id, status, current_stage, progress, script, video_url, log_output, created_at, started_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    job.channel_id,
                    job.status.value,
                    job.current_stage,
                    job.progress,
                    job.script,
                    job.video_url,
                    job.log_output,
                    job.created_at.isoformat(),
                    _ts(job.started_at),
                    _ts(job.completed_at),
                ),
            )
            conn.commit()
            job.id = cursor.lastrowid
        logger.info(f"[db] Created job {job.id} for channel {job.channel_id}")
        return job

    def get_job(self, job_id: int) -> Optional[JobRecord]:
        """Retrieve a job by ID"""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return self._row_to_job(row) if row else None

    def update_job(self, job: JobRecord) -> None:
        """Persist every mutable field of the job"""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE jobs
                SET status = ?, current_stage = ?, progress = ?, script = ?, video_url = ?,
                    log_output = ?, started_at = ?, completed_at = ?
                WHERE id = ?
            """,
                (
                    job.status.value,
                    job.current_stage,
                    job.progress,
                    job.script,
                    job.video_url,
                    job.log_output,
                    _ts(job.started_at),
                    _ts(job.completed_at),
                    job.id,
                ),
            )
            conn.commit()
        logger.debug(f"[db] Job {job.id} saved: {job.status.value} / {job.current_stage} ({job.progress}%)")

    def list_recent_jobs(self, count: int = 10) -> List[JobRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM jobs ORDER BY created_at DESC, id DESC LIMIT ?", (count,)
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def list_jobs_by_channel(self, channel_id: int) -> List[JobRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM jobs WHERE channel_id = ? ORDER BY created_at DESC, id DESC",
                (channel_id,),
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def list_jobs_by_status(self, status: JobStatus) -> List[JobRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM jobs WHERE status = ? ORDER BY created_at ASC, id ASC",
                (status.value,),
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> JobRecord:
        return JobRecord(
            id=row["id"],
            channel_id=row["channel_id"],
            status=JobStatus(row["status"]),
            current_stage=row["current_stage"],
            progress=row["progress"],
            script=row["script"],
            video_url=row["video_url"],
            log_output=row["log_output"],
            created_at=datetime.fromisoformat(row["created_at"]),
            started_at=_parse_ts(row["started_at"]),
            completed_at=_parse_ts(row["completed_at"]),
        )

    # ------------------------------------------------------------------ events

    def add_event(self, event: JobEvent) -> None:
        """Add an event to the job's event log"""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO events (job_id, timestamp, event_type, stage, message, payload_json)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                (
                    event.job_id,
                    event.timestamp.isoformat(),
                    event.event_type,
                    event.stage,
                    event.message,
                    json.dumps(event.payload, default=str),
                ),
            )
            conn.commit()

    def get_job_events(self, job_id: int, limit: int = 100) -> List[JobEvent]:
        """Get events for a job, oldest first"""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM events WHERE job_id = ? ORDER BY id ASC LIMIT ?",
                (job_id, limit),
            ).fetchall()
        events = []
        for row in rows:
            payload: Dict[str, Any] = json.loads(row["payload_json"]) if row["payload_json"] else {}
            events.append(
                JobEvent(
                    job_id=row["job_id"],
                    event_type=row["event_type"],
                    timestamp=datetime.fromisoformat(row["timestamp"]),
                    stage=row["stage"],
                    message=row["message"],
                    payload=payload,
                )
            )
        return events
