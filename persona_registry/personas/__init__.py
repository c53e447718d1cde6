"""
Persona Registry Core

In-memory store of active and archived personas with debounced
persistence through a pluggable storage adapter.
"""

from .models import (
    PersonaRecord, ChangelogEntry, ChangelogAction,
    PersonaCreate, PersonaUpdate, RegistryState,
)
from .errors import (
    PersonaRegistryError,
    NameConflictError,
    PersonaNotFoundError,
    PersonaArchivedError,
    ArchivedImmutableError,
    InternalLimitExceededError,
    StorageError,
)
from .debounce import Debouncer, DebounceState
from .registry import PersonaRegistry
from .storage import StorageAdapter, JsonFileStorage, MemoryStorage

__all__ = [
    "PersonaRecord",
    "ChangelogEntry",
    "ChangelogAction",
    "PersonaCreate",
    "PersonaUpdate",
    "RegistryState",
    "PersonaRegistryError",
    "NameConflictError",
    "PersonaNotFoundError",
    "PersonaArchivedError",
    "ArchivedImmutableError",
    "InternalLimitExceededError",
    "StorageError",
    "Debouncer",
    "DebounceState",
    "PersonaRegistry",
    "StorageAdapter",
    "JsonFileStorage",
    "MemoryStorage",
]
