"""
Persona Registry Errors

Every error carries a numeric ``code`` used by the JSON-RPC layer and a
``data`` dict naming the persona id or name involved.
"""

from typing import Optional, Dict, Any


class PersonaRegistryError(Exception):
    """Base class for errors raised by the registry core."""
    code: int = -32000

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.data = data or {}


class PersonaNotFoundError(PersonaRegistryError):
    code = -32001

    def __init__(self, persona_id: str, message: str = None):
        super().__init__(
            message or f'Persona with ID "{persona_id}" not found.',
            {"id": persona_id},
        )
        self.persona_id = persona_id


class NameConflictError(PersonaRegistryError):
    code = -32002

    def __init__(self, name: str):
        super().__init__(
            f'Persona with name "{name}" already exists.',
            {"name": name},
        )
        self.name = name


class PersonaArchivedError(PersonaRegistryError):
    """The persona exists only in the archive."""
    code = -32003

    def __init__(self, persona_id: str, message: str = None):
        super().__init__(
            message or f'Cannot duplicate Persona with ID "{persona_id}": it is archived.',
            {"id": persona_id},
        )
        self.persona_id = persona_id


class ArchivedImmutableError(PersonaArchivedError):
    """Archived personas cannot be updated."""

    def __init__(self, persona_id: str):
        super().__init__(
            persona_id,
            f'Persona with ID "{persona_id}" is archived and cannot be updated.',
        )


class InternalLimitExceededError(PersonaRegistryError):
    code = -32004


class StorageError(PersonaRegistryError):
    """Unrecoverable load/save failure from a storage adapter."""
    code = -32005

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message, {"path": path} if path else None)
        self.path = path
