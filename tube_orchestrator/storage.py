"""
Storage Management
Per-job run directories and the JSON/text artifacts written into them.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

logger = logging.getLogger(__name__)


class StorageManager:
    """Manages the runs directory and per-job artifact files"""

    def __init__(self, runs_dir: Union[str, Path] = "runs"):
        self.runs_dir = Path(runs_dir)
        self.runs_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[storage] Storage manager initialized at {self.runs_dir}")

    def job_dir(self, job_id: int) -> Path:
        return self.runs_dir / str(job_id)

    def create_job_directory(self, job_id: int) -> Path:
        """Create directory structure for a job (idempotent)"""
        job_dir = self.job_dir(job_id)
        if not job_dir.exists():
            (job_dir / "artifacts").mkdir(parents=True, exist_ok=True)
            logger.info(f"[storage] Created job directory: {job_dir}")
        return job_dir

    def artifact_path(self, job_id: int, filename: str) -> Path:
        return self.create_job_directory(job_id) / "artifacts" / filename

    def write_text(self, job_id: int, filename: str, text: str) -> Path:
        path = self.artifact_path(job_id, filename)
        path.write_text(text, encoding="utf-8")
        logger.debug(f"[storage] Wrote {path}")
        return path

    def write_json(self, job_id: int, filename: str, data: Dict[str, Any]) -> Path:
        path = self.artifact_path(job_id, filename)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)
        logger.debug(f"[storage] Wrote {path}")
        return path

    def list_job_artifacts(self, job_id: int) -> List[Path]:
        artifacts_dir = self.job_dir(job_id) / "artifacts"
        if not artifacts_dir.exists():
            return []
        return sorted(p for p in artifacts_dir.iterdir() if p.is_file())

    def events_file(self, job_id: int) -> Path:
        return self.create_job_directory(job_id) / "events.jsonl"

    def append_jsonl(self, path: Path, record: Dict[str, Any]) -> None:
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
