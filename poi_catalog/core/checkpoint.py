"""Resumable enrichment job state."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Set

from poi_catalog.core.storage import atomic_write_json
from poi_catalog.etl.transform import now_iso

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1


@dataclass
class JobState:
    processed_ids: Set[str] = field(default_factory=set)
    failed_ids: Set[str] = field(default_factory=set)
    last_index: int = -1
    started_at: str = ""
    updated_at: str = ""
    output_path: str = ""

    def mark_processed(self, record_id: str, index: int) -> None:
        self.processed_ids.add(record_id)
        self.failed_ids.discard(record_id)
        self.last_index = max(self.last_index, index)

    def mark_failed(self, record_id: str, index: int) -> None:
        self.failed_ids.add(record_id)
        self.last_index = max(self.last_index, index)

    def is_processed(self, record_id: str) -> bool:
        return record_id in self.processed_ids

    def to_dict(self) -> dict:
        return {
            "version": CHECKPOINT_VERSION,
            "startedAt": self.started_at,
            "updatedAt": self.updated_at,
            "lastIndex": self.last_index,
            "processedIds": sorted(self.processed_ids),
            "failedIds": sorted(self.failed_ids),
            "outputPath": self.output_path,
        }


class CheckpointStore:
    """Loads and atomically persists a `JobState` at a fixed path."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)

    def load(self) -> Optional[JobState]:
        if not self.path.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable checkpoint %s: %s", self.path, exc)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed checkpoint %s", self.path)
            return None

        try:
            state = JobState(
                processed_ids={str(i) for i in data.get("processedIds") or []},
                failed_ids={str(i) for i in data.get("failedIds") or []},
                last_index=int(data.get("lastIndex", -1)),
                started_at=str(data.get("startedAt") or ""),
                updated_at=str(data.get("updatedAt") or ""),
                output_path=str(data.get("outputPath") or ""),
            )
        except (TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed checkpoint %s: %s", self.path, exc)
            return None
        logger.info(
            "Resuming from checkpoint %s: %d processed, last index %d",
            self.path,
            len(state.processed_ids),
            state.last_index,
        )
        return state

    def load_or_new(self) -> JobState:
        state = self.load()
        if state is None:
            state = JobState(started_at=now_iso())
        return state

    def save(self, state: JobState) -> None:
        state.updated_at = now_iso()
        atomic_write_json(self.path, state.to_dict())
        logger.debug("Checkpoint saved: %d processed", len(state.processed_ids))

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.info("Cleared checkpoint %s", self.path)
