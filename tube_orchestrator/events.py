"""
Event logging for job lifecycle.

Each event goes to the console logger, the events table and
runs/<job_id>/events.jsonl. Events are observability only; a failed write is
logged and never fails the job.
"""

import logging
from typing import Any, Dict, List, Optional

from .db import Database
from .models import JobEvent
from .storage import StorageManager

JOB_CREATED = "job_created"
STAGE_STARTED = "stage_started"
STAGE_COMPLETED = "stage_completed"
JOB_SUSPENDED = "job_suspended"
JOB_RESUMED = "job_resumed"
JOB_COMPLETED = "job_completed"
JOB_FAILED = "job_failed"

_ERROR_EVENTS = {JOB_FAILED}
_WARNING_EVENTS = {JOB_SUSPENDED}


class EventLogger:
    """Mirrors job events to the log, the database and a per-job JSONL file"""

    def __init__(self, db: Database, storage: Optional[StorageManager] = None):
        self.db = db
        self.storage = storage
        self.log = logging.getLogger("tube_orchestrator.events")

    def emit(
        self,
        job_id: int,
        event_type: str,
        stage: Optional[str] = None,
        message: str = "",
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[JobEvent]:
        event = JobEvent(
            job_id=job_id,
            event_type=event_type,
            stage=stage,
            message=message,
            payload=payload or {},
        )
        self._log_event_to_console(event)

        try:
            self.db.add_event(event)
        except Exception as e:
            self.log.error(f"[events] Failed to add event {event_type} for job {job_id} to database: {e}")

        self._write_event_to_jsonl(event)
        return event

    def _write_event_to_jsonl(self, event: JobEvent) -> None:
        if self.storage is None:
            return
        try:
            events_file = self.storage.events_file(event.job_id)
            self.storage.append_jsonl(events_file, event.model_dump(mode="json"))
            self.log.debug(f"[events] Wrote event {event.event_type} to {events_file}")
        except Exception as e:
            self.log.error(f"[events] Failed to write event to JSONL: {e}")

    def _log_event_to_console(self, event: JobEvent) -> None:
        log_parts = [f"[events] Job {event.job_id}"]
        if event.stage:
            log_parts.append(f"Stage: {event.stage}")
        log_parts.append(f"Type: {event.event_type}")
        if event.message:
            log_parts.append(f"Message: {event.message}")
        if event.payload:
            summary = []
            for key, value in event.payload.items():
                if isinstance(value, str) and len(value) < 100:
                    summary.append(f"{key}: {value}")
                elif isinstance(value, (int, float, bool)):
                    summary.append(f"{key}: {value}")
                else:
                    summary.append(f"{key}: <{type(value).__name__}>")
            log_parts.append(f"Payload: {', '.join(summary)}")

        log_message = " | ".join(log_parts)
        if event.event_type in _ERROR_EVENTS:
            self.log.error(log_message)
        elif event.event_type in _WARNING_EVENTS:
            self.log.warning(log_message)
        else:
            self.log.info(log_message)

    def get_job_events(self, job_id: int, limit: int = 100) -> List[JobEvent]:
        return self.db.get_job_events(job_id, limit=limit)
