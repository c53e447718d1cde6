"""
Persona Registry Storage

Storage adapters persist the full registry state (active + archived).
The registry owns the authoritative in-memory copy; adapters are only
called at load time and at each flush point.
"""

import os
import json
import logging
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Dict, List, Any, Union

from pydantic import ValidationError

from .errors import StorageError
from .models import PersonaRecord, RegistryState

logger = logging.getLogger("persona_registry.personas.storage")


class StorageAdapter(ABC):
    """Contract consumed by the registry core."""

    @abstractmethod
    def load(self) -> RegistryState:
        """
        Load persisted state.

        Must return an empty state (not raise) when nothing has been
        persisted yet or the persisted resource is corrupt.
        """

    @abstractmethod
    def save(self, state: RegistryState) -> None:
        """Persist both collections. Raises StorageError on failure."""


def decode_state(data: Any, source: str = "<memory>") -> RegistryState:
    """
    Build a RegistryState from a decoded ``{"active": [...], "archived": [...]}``
    document, skipping anything that doesn't validate.
    """
    if not isinstance(data, dict):
        logger.warning(
            f"Invalid data format loaded from {source}. "
            "Expected an object with 'active' and 'archived' arrays."
        )
        return RegistryState()

    active = _decode_records(data.get("active"), "active", source)
    archived = _decode_records(data.get("archived"), "archived", source)

    # A record lives in exactly one collection; active wins
    for persona_id in [pid for pid in archived if pid in active]:
        logger.warning(
            f"Skipping archived persona {persona_id} from {source}: id is also active"
        )
        del archived[persona_id]

    return RegistryState(active=active, archived=archived)


def _decode_records(items: Any, collection: str, source: str) -> Dict[str, PersonaRecord]:
    records: Dict[str, PersonaRecord] = {}
    if items is None:
        return records
    if not isinstance(items, list):
        logger.warning(f"Ignoring '{collection}' in {source}: expected an array")
        return records

    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get("id"), str):
            logger.warning(f"Skipping invalid persona object during load from {source}: {item!r}")
            continue
        try:
            record = PersonaRecord.model_validate(item)
        except ValidationError as e:
            logger.warning(
                f"Skipping persona {item['id']} in '{collection}' from {source}: "
                f"{e.error_count()} validation error(s)"
            )
            continue
        if record.id in records:
            logger.warning(f"Skipping duplicate persona id {record.id} in '{collection}' from {source}")
            continue
        records[record.id] = record

    return records


class JsonFileStorage(StorageAdapter):
    """
    JSON file storage.

    Layout::

        {
          "active":   [ {persona}, ... ],
          "archived": [ {persona}, ... ]
        }
    """

    def __init__(self, path: Union[str, Path] = "./data/personas.json"):
        if not path:
            raise ValueError("JsonFileStorage requires a file path.")
        self.path = Path(path)

    def load(self) -> RegistryState:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info(f"No persona file at {self.path}, starting empty")
            return RegistryState()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Error loading personas from {self.path}: {e}")
            return RegistryState()

        if not raw.strip():
            return RegistryState()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON found in {self.path}: {e}")
            return RegistryState()

        state = decode_state(data, source=str(self.path))
        logger.info(
            f"Loaded {len(state.active)} active / {len(state.archived)} archived "
            f"personas from {self.path}"
        )
        return state

    def save(self, state: RegistryState) -> None:
        content = json.dumps(state.to_dict(), indent=2, ensure_ascii=False)

        tmp_path: Optional[str] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Write beside the target, then swap in atomically
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_path = f.name
                f.write(content)
            os.replace(tmp_path, self.path)
        except BaseException as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            if not isinstance(e, (OSError, UnicodeError)):
                raise
            logger.error(f"Error saving personas state to {self.path}: {e}")
            raise StorageError(
                f"Failed to save personas to {self.path}: {e}", path=str(self.path)
            ) from e

        logger.debug(
            f"Saved {len(state.active)} active / {len(state.archived)} archived "
            f"personas to {self.path}"
        )


class MemoryStorage(StorageAdapter):
    """
    In-memory storage (for testing and ephemeral registries).

    Keeps a serialized snapshot, never the registry's live objects,
    so later in-process mutation can't leak into "persisted" state.
    """

    def __init__(self, initial: Union[RegistryState, Dict[str, Any], None] = None):
        self._document: Dict[str, List[Dict[str, Any]]] = {"active": [], "archived": []}
        self.load_count = 0
        self.save_count = 0
        if isinstance(initial, RegistryState):
            self._document = initial.to_dict()
        elif initial is not None:
            self._document = json.loads(json.dumps(initial))

    def load(self) -> RegistryState:
        self.load_count += 1
        return decode_state(json.loads(json.dumps(self._document)))

    def save(self, state: RegistryState) -> None:
        self.save_count += 1
        self._document = state.to_dict()

    @property
    def document(self) -> Dict[str, List[Dict[str, Any]]]:
        """The last saved document, as it would appear on disk."""
        return self._document
