"""JSON-backed persistence of per-learner performance analytics."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .adaptive_scoring import apply_completion_update
from .config import get_settings
from .models import CompletionUpdate, PerformanceStore, StudyUnit, Subject

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"


def _normalize_learner_id(value: str) -> str:
    normalized = value.strip().lower()
    if not normalized:
        raise ValueError("Learner id cannot be empty.")
    return normalized


class PerformanceProfileStore:
    """Keeps one ``PerformanceStore`` per learner in a single JSON document."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        if self._path is not None:
            return self._path
        configured = get_settings().performance_store_path
        return Path(configured) if configured else DATA_DIR / "performance_profiles.json"

    def _load_unlocked(self) -> Dict[str, PerformanceStore]:
        path = self.path
        if not path.exists():
            return {}
        with path.open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
        stores: Dict[str, PerformanceStore] = {}
        for key, payload in raw.items():
            try:
                stores[key] = PerformanceStore.model_validate(payload)
            except ValidationError:
                logger.exception("Failed to parse stored performance profile %s", key)
        return stores

    def _write_unlocked(self, stores: Dict[str, PerformanceStore]) -> None:
        payload: Dict[str, Any] = {key: store.model_dump(mode="json") for key, store in stores.items()}
        path = self.path
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)

    def get(self, learner_id: str) -> PerformanceStore:
        normalized = _normalize_learner_id(learner_id)
        with self._lock:
            store = self._load_unlocked().get(normalized)
        return store.model_copy(deep=True) if store is not None else PerformanceStore()

    def save(self, learner_id: str, store: PerformanceStore) -> PerformanceStore:
        normalized = _normalize_learner_id(learner_id)
        with self._lock:
            stores = self._load_unlocked()
            stores[normalized] = store.model_copy(deep=True)
            self._write_unlocked(stores)
        return store.model_copy(deep=True)

    def record_completion(
        self,
        learner_id: str,
        unit: StudyUnit,
        subject: Optional[Subject],
        minutes_spent: float,
        now: Optional[datetime] = None,
    ) -> CompletionUpdate:
        """Apply a completion and persist the result under a single lock."""
        normalized = _normalize_learner_id(learner_id)
        with self._lock:
            stores = self._load_unlocked()
            update = apply_completion_update(
                stores.get(normalized, PerformanceStore()), unit, subject, minutes_spent, now
            )
            if update.snapshot is not None:
                stores[normalized] = update.store
                self._write_unlocked(stores)
        return update

    def delete(self, learner_id: str) -> bool:
        normalized = _normalize_learner_id(learner_id)
        with self._lock:
            stores = self._load_unlocked()
            if normalized not in stores:
                return False
            stores.pop(normalized)
            self._write_unlocked(stores)
        return True


performance_store = PerformanceProfileStore()

__all__ = ["PerformanceProfileStore", "performance_store"]
