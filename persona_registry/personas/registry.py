"""
Persona Registry

Core registry logic: create, update, duplicate, archive personas.
State lives in memory (active + archived); persistence goes through a
StorageAdapter, debounced for mutations and immediate on flush().
"""

import re
import json
import copy
import asyncio
import logging
from typing import Optional, List, Dict, Any, Union

from ..config import RegistryConfig
from .debounce import Debouncer
from .errors import (
    NameConflictError,
    PersonaNotFoundError,
    PersonaArchivedError,
    ArchivedImmutableError,
    InternalLimitExceededError,
)
from .models import (
    PersonaRecord, ChangelogEntry, ChangelogAction,
    PersonaCreate, PersonaUpdate, RegistryState,
    new_persona_id, utc_now,
)
from .storage import StorageAdapter

logger = logging.getLogger("persona_registry.personas.registry")

COPY_NAME_PATTERN = re.compile(r"(.*) - Copy(?: - (\d+))?")
MAX_COPY_NAME_ATTEMPTS = 1000


def _differs(old: Any, new: Any) -> bool:
    """Compare by JSON form; plain == treats True == 1 and 0 == False."""
    return (
        json.dumps(old, sort_keys=True, default=str)
        != json.dumps(new, sort_keys=True, default=str)
    )


class PersonaRegistry:
    """
    Persona Registry

    Owns the active and archived collections. Every mutation marks the
    registry dirty and re-arms a single debounce timer; when the timer
    fires and the registry is still dirty, the full state is saved.

    Usage:
        registry = PersonaRegistry.create(JsonFileStorage("personas.json"))
        persona = registry.create_persona({"name": "Solver", "tags": ["math"]})
        registry.flush()
    """

    def __init__(
        self,
        storage: StorageAdapter,
        config: RegistryConfig = None,
        loop: asyncio.AbstractEventLoop = None,
    ):
        self.storage = storage
        self.config = config or RegistryConfig()

        self._active: Dict[str, PersonaRecord] = {}
        self._archived: Dict[str, PersonaRecord] = {}
        self._dirty = False
        self._debouncer = Debouncer(
            self._save_if_dirty, self.config.debounce_interval, loop=loop
        )

        self._load()

    @classmethod
    def create(
        cls,
        storage: StorageAdapter,
        config: RegistryConfig = None,
        loop: asyncio.AbstractEventLoop = None,
    ) -> "PersonaRegistry":
        """Build a registry and load prior state from ``storage``."""
        return cls(storage, config=config, loop=loop)

    def _load(self) -> None:
        state = self.storage.load()
        self._active = dict(state.active)
        self._archived = dict(state.archived)
        self._dirty = False
        logger.info(
            f"Persona Registry loaded ({len(self._active)} active, "
            f"{len(self._archived)} archived)"
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def list_personas(self) -> List[PersonaRecord]:
        """List active personas in insertion order."""
        return list(self._active.values())

    def list_archived(self) -> List[PersonaRecord]:
        return list(self._archived.values())

    def get_persona(self, persona_id: str) -> Optional[PersonaRecord]:
        """Get an active persona by ID. Archived personas are never returned."""
        return self._active.get(persona_id)

    def find_by_tag(self, tag: str) -> List[PersonaRecord]:
        return [p for p in self._active.values() if p.has_tag(tag)]

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def has_pending_save(self) -> bool:
        return self._debouncer.pending

    def stats(self) -> Dict[str, Any]:
        """Get registry statistics."""
        return {
            "active": len(self._active),
            "archived": len(self._archived),
            "dirty": self._dirty,
            "pending_save": self._debouncer.pending,
        }

    # =========================================================================
    # Mutations
    # =========================================================================

    def create_persona(
        self,
        data: Union[PersonaCreate, Dict[str, Any]],
        duplicated_from: str = None,
    ) -> PersonaRecord:
        """Create a new persona. Raises NameConflictError on an active name clash."""
        request = data if isinstance(data, PersonaCreate) else PersonaCreate.model_validate(data)

        if self._name_taken(request.name):
            raise NameConflictError(request.name)

        now = utc_now()
        changelog = [ChangelogEntry(timestamp=now, action=ChangelogAction.CREATED)]
        if duplicated_from:
            changelog.append(ChangelogEntry(
                timestamp=now,
                action=ChangelogAction.DUPLICATED_FROM,
                details=f"Source ID: {duplicated_from}",
            ))

        persona = PersonaRecord(
            id=self._new_id(),
            name=request.name,
            description=request.description,
            instructions=request.instructions,
            tags=copy.deepcopy(request.tags),
            settings=copy.deepcopy(request.settings),
            created_at=now,
            updated_at=now,
            changelog=changelog,
        )

        self._active[persona.id] = persona
        self._mark_dirty()

        logger.info(f"Created persona: {persona.id} ({persona.name!r})")
        return persona

    def duplicate_persona(self, original_id: str) -> PersonaRecord:
        """Copy an active persona under the next free "<name> - Copy[ - N]" name."""
        original = self._active.get(original_id)
        if original is None:
            if original_id in self._archived:
                raise PersonaArchivedError(original_id)
            raise PersonaNotFoundError(original_id)

        new_name = self.find_available_copy_name(original.name)

        duplicate = self.create_persona(
            PersonaCreate(
                name=new_name,
                description=original.description,
                instructions=original.instructions,
                tags=copy.deepcopy(original.tags),
                settings=copy.deepcopy(original.settings),
            ),
            duplicated_from=original_id,
        )
        logger.info(f"Duplicated persona {original_id} -> {duplicate.id} ({new_name!r})")
        return duplicate

    def update_persona(
        self,
        persona_id: str,
        updates: Union[PersonaUpdate, Dict[str, Any]],
    ) -> PersonaRecord:
        """
        Apply a partial update to an active persona.

        Only name, description, instructions, tags and settings are honoured;
        anything else in ``updates`` is ignored. If nothing actually changes
        the stored record is returned untouched (no timestamp bump, no
        changelog entry, no save).
        """
        persona = self._active.get(persona_id)
        if persona is None:
            if persona_id in self._archived:
                raise ArchivedImmutableError(persona_id)
            raise PersonaNotFoundError(
                persona_id, f'Persona with ID "{persona_id}" not found for update.'
            )

        request = updates if isinstance(updates, PersonaUpdate) else PersonaUpdate.model_validate(updates)
        supplied = request.supplied()
        # A persona always has a name; an explicit null leaves it alone
        if supplied.get("name", "") is None:
            del supplied["name"]

        changed = sorted(
            field for field, value in supplied.items()
            if _differs(getattr(persona, field), value)
        )
        if not changed:
            logger.debug(f"No changes to persona {persona_id}")
            return persona

        if "name" in changed and self._name_taken(supplied["name"], exclude_id=persona_id):
            raise NameConflictError(supplied["name"])

        now = utc_now()
        values = {field: copy.deepcopy(supplied[field]) for field in changed}
        updated = persona.model_copy(update={
            **values,
            "updated_at": now,
            "changelog": [
                *persona.changelog,
                ChangelogEntry(
                    timestamp=now,
                    action=ChangelogAction.UPDATED,
                    details=f"Updated fields: {', '.join(changed)}",
                ),
            ],
        })

        self._active[persona_id] = updated
        self._mark_dirty()

        logger.info(f"Updated persona: {persona_id} ({', '.join(changed)})")
        return updated

    def archive_persona(self, persona_id: str) -> bool:
        """Move an active persona to the archive. Returns False if it isn't active."""
        persona = self._active.get(persona_id)
        if persona is None:
            return False

        archived = persona.model_copy(update={
            "changelog": [
                *persona.changelog,
                ChangelogEntry(timestamp=utc_now(), action=ChangelogAction.ARCHIVED),
            ],
        })

        self._archived[persona_id] = archived
        del self._active[persona_id]
        self._mark_dirty()

        logger.info(f"Archived persona: {persona_id}")
        return True

    # =========================================================================
    # Persistence
    # =========================================================================

    def flush(self) -> None:
        """Save now and drop any pending debounced save."""
        self.storage.save(self._snapshot())
        self._dirty = False
        self._debouncer.cancel()
        logger.info(
            f"Flushed {len(self._active)} active / {len(self._archived)} archived personas"
        )

    def cancel_pending_save(self) -> None:
        """Cancel the debounce timer without saving. The dirty flag is kept."""
        self._debouncer.cancel()

    def _snapshot(self) -> RegistryState:
        return RegistryState.model_construct(
            active=dict(self._active),
            archived=dict(self._archived),
        )

    def _mark_dirty(self) -> None:
        self._dirty = True
        if self.config.auto_save_enabled:
            self._debouncer.schedule()

    def _save_if_dirty(self) -> None:
        if not (self.config.auto_save_enabled and self._dirty):
            return
        try:
            self.storage.save(self._snapshot())
        except Exception:
            # Stay dirty so a later flush or mutation retries
            logger.exception("Auto-save failed")
            return
        self._dirty = False
        logger.debug("Auto-saved personas")

    # =========================================================================
    # Naming
    # =========================================================================

    def find_available_copy_name(self, base_name: str) -> str:
        """
        Next free copy name for ``base_name``, checked against active and
        archived names: "<root> - Copy", then "<root> - Copy - 2", ...
        """
        existing = {p.name for p in self._active.values()}
        existing.update(p.name for p in self._archived.values())

        match = COPY_NAME_PATTERN.fullmatch(base_name)
        root = match.group(1) if match else base_name

        for counter in range(1, MAX_COPY_NAME_ATTEMPTS + 1):
            if counter == 1:
                candidate = f"{root} - Copy"
            else:
                candidate = f"{root} - Copy - {counter}"
            if candidate not in existing:
                return candidate

        raise InternalLimitExceededError(
            f'Could not find an available copy name for "{root}" '
            f"after {MAX_COPY_NAME_ATTEMPTS} attempts.",
            {"name": root},
        )

    def _name_taken(self, name: str, exclude_id: str = None) -> bool:
        return any(
            p.name == name for pid, p in self._active.items() if pid != exclude_id
        )

    def _new_id(self) -> str:
        while True:
            persona_id = new_persona_id()
            if persona_id not in self._active and persona_id not in self._archived:
                return persona_id
