"""Transactional object store for the recording/profile entity graph.

Entities live in an in-memory identity map. ``insert`` and ``delete`` are
staged; ``save`` applies delete rules and writes the whole graph as one JSON
document; ``rollback`` discards everything since the last save.

Delete rules:
    Recording -> its Chunks and Transcript go with it (they are embedded);
                 ProcessedResult.recording_id is nullified.
    Profile   -> ProcessedResult.profile_id and Recording.profile_id are
                 nullified. Historical results are never deleted.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from ..errors import StorageError
from ..models.profile import Profile, ProcessedResult
from ..models.recording import Recording

logger = logging.getLogger(__name__)

T = TypeVar("T")

ENTITY_TYPES: Dict[str, Type] = {
    "recordings": Recording,
    "profiles": Profile,
    "processed_results": ProcessedResult,
}


class ObjectStore:
    """JSON-file backed store with insert/save/query/delete."""

    def __init__(self, path: str):
        self.path = Path(path)
        self.lock = threading.RLock()
        self._entities: Dict[Type, Dict[str, Any]] = {t: {} for t in ENTITY_TYPES.values()}
        self._pending_deletes: List[Any] = []
        self._load()

    def _collection(self, entity_type: Type) -> Dict[str, Any]:
        if entity_type not in self._entities:
            raise TypeError(f"Unsupported entity type: {entity_type.__name__}")
        return self._entities[entity_type]

    def _load(self) -> None:
        with self.lock:
            for collection in self._entities.values():
                collection.clear()
            self._pending_deletes.clear()

            if not self.path.exists():
                logger.info(f"No store at {self.path}, starting empty")
                return

            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                raise StorageError(f"Failed to load object store {self.path}: {e}") from e

            for name, entity_type in ENTITY_TYPES.items():
                for item in data.get(name, []):
                    entity = entity_type.from_dict(item)
                    self._entities[entity_type][entity.id] = entity

            logger.info(
                f"Loaded store: {len(self._entities[Recording])} recordings, "
                f"{len(self._entities[Profile])} profiles, "
                f"{len(self._entities[ProcessedResult])} results")

    def insert(self, entity: Any) -> None:
        """Stage an entity for persistence. It is visible to queries immediately."""
        with self.lock:
            self._collection(type(entity))[entity.id] = entity

    def delete(self, entity: Any) -> None:
        """Stage an entity for deletion; delete rules run on save."""
        with self.lock:
            collection = self._collection(type(entity))
            if collection.pop(entity.id, None) is not None:
                self._pending_deletes.append(entity)

    def get(self, entity_type: Type[T], entity_id: str) -> Optional[T]:
        with self.lock:
            return self._collection(entity_type).get(entity_id)

    def query(self,
              entity_type: Type[T],
              predicate: Optional[Callable[[T], bool]] = None,
              sort_key: Optional[Callable[[T], Any]] = None,
              reverse: bool = False) -> List[T]:
        """Return entities of a type, optionally filtered and sorted."""
        with self.lock:
            items = list(self._collection(entity_type).values())
        if predicate is not None:
            items = [item for item in items if predicate(item)]
        if sort_key is not None:
            items.sort(key=sort_key, reverse=reverse)
        return items

    def processed_results_for(self, recording: Recording) -> List[ProcessedResult]:
        return self.query(
            ProcessedResult,
            lambda result: result.recording_id == recording.id,
            sort_key=lambda result: result.created_at,
        )

    def _apply_delete_rules(self) -> None:
        for entity in self._pending_deletes:
            if isinstance(entity, Recording):
                for result in self._entities[ProcessedResult].values():
                    if result.recording_id == entity.id:
                        result.recording_id = None
            elif isinstance(entity, Profile):
                for result in self._entities[ProcessedResult].values():
                    if result.profile_id == entity.id:
                        result.profile_id = None
                for recording in self._entities[Recording].values():
                    if recording.profile_id == entity.id:
                        recording.profile_id = None
        self._pending_deletes.clear()

    def save(self) -> None:
        """Persist the whole graph atomically.

        Raises:
            StorageError: if the store file cannot be written
        """
        with self.lock:
            self._apply_delete_rules()
            data = {
                name: [entity.to_dict() for entity in self._entities[entity_type].values()]
                for name, entity_type in ENTITY_TYPES.items()
            }

            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.replace(tmp_path, self.path)
            except OSError as e:
                logger.error(f"Error saving object store: {e}")
                raise StorageError(f"Failed to save object store {self.path}: {e}") from e

            logger.debug(f"Object store saved: {self.path}")

    def rollback(self) -> None:
        """Discard unsaved changes by reloading from disk."""
        logger.info("Rolling back unsaved store changes")
        self._load()
