"""Device-local progress cache (JSON + fcntl.flock + atomic write)."""

import fcntl
import json
import os
import tempfile
from pathlib import Path

import structlog
from pydantic import ValidationError

from studyrank.models.progress import UserProgress

logger = structlog.get_logger()


class LocalProgressCache:
    """Best-effort mirror of one user's progress on local disk.

    ``get`` treats an unreadable or corrupt file as "no cache". Write errors
    propagate as ``OSError``; callers decide whether to swallow them.
    """

    def __init__(self, path: Path):
        self.path = path

    def get(self) -> UserProgress | None:
        if not self.path.exists():
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                fcntl.flock(f, fcntl.LOCK_SH)
                data = json.load(f)
                fcntl.flock(f, fcntl.LOCK_UN)
            return UserProgress.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning("progress_cache_unreadable", path=str(self.path), error=str(e))
            return None

    def set(self, progress: UserProgress) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", dir=self.path.parent, delete=False, suffix=".json", encoding="utf-8"
        ) as tmp:
            json.dump(progress.model_dump(mode="json"), tmp)
        os.replace(tmp.name, self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
