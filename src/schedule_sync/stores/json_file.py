"""DocumentStore persisted to a single JSON file.

The file maps document paths to payloads:

    {"artifacts/<app>/users/<uid>/dailySchedules/2025-06-01": {"activities": [...]}}

Change notification only reaches subscribers in the same process.
"""

import json
import os
from pathlib import Path
from typing import Any

from src.schedule_sync.errors import PermanentStoreError, TransientStoreError
from src.schedule_sync.logging import get_logger
from src.schedule_sync.models import ScheduleKey
from src.schedule_sync.stores.memory import InMemoryDocumentStore

logger = get_logger(__name__)


class JsonFileDocumentStore(InMemoryDocumentStore):
    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            self._payloads = self._read()
        logger.info(
            "json_store_opened", path=str(self.path), documents=len(self._payloads)
        )

    def _read(self) -> dict[str, dict[str, Any]]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise PermanentStoreError(f"Corrupt schedule file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise PermanentStoreError(f"Corrupt schedule file {self.path}: not an object")
        return data

    def _write(self, obj: dict[str, Any]) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(obj, f, indent=2, ensure_ascii=False)
            os.replace(tmp, self.path)
        except OSError as e:
            raise TransientStoreError(f"Failed to write {self.path}: {e}") from e

    def _save(self, key: ScheduleKey, payload: dict[str, Any]) -> None:
        updated = dict(self._payloads)
        updated[key.document_path] = payload
        # Only keep the new payload in memory once it is on disk
        self._write(updated)
        super()._save(key, payload)
