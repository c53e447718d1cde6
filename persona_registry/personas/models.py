"""
Persona Registry Models

Pydantic models for persona records, their changelog, and the
create/update payloads accepted by the registry.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, List, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_persona_id() -> str:
    return str(uuid.uuid4())


class ChangelogAction(str, Enum):
    """Audit actions recorded on a persona."""
    CREATED = "created"
    UPDATED = "updated"
    ARCHIVED = "archived"
    DUPLICATED_FROM = "duplicated_from"


class ChangelogEntry(BaseModel):
    """A single audit entry. Entries are only ever appended."""
    timestamp: datetime = Field(default_factory=utc_now)
    action: ChangelogAction
    details: Optional[str] = None


# Fields a caller may set through create/update
CONTENT_FIELDS = ("name", "description", "instructions", "tags", "settings")


def has_lone_surrogate(value: Any) -> bool:
    """True if any string in a JSON value tree (keys included) can't be UTF-8 encoded."""
    if isinstance(value, str):
        try:
            value.encode("utf-8")
        except UnicodeEncodeError:
            return True
        return False
    if isinstance(value, dict):
        return any(has_lone_surrogate(k) or has_lone_surrogate(v) for k, v in value.items())
    if isinstance(value, (list, tuple)):
        return any(has_lone_surrogate(v) for v in value)
    return False


class PersonaContent(BaseModel):
    """Validation shared by records and the create/update payloads."""

    @field_validator(*CONTENT_FIELDS, check_fields=False)
    @classmethod
    def content_must_be_utf8(cls, value: Any) -> Any:
        # "\ud800" is valid JSON but can never be written back out
        if has_lone_surrogate(value):
            raise ValueError("must be valid Unicode text (lone surrogates are not allowed)")
        return value


class PersonaRecord(PersonaContent):
    """A persona managed by the registry."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Registry-generated UUID")
    name: str = Field(..., description="Unique among active personas")
    description: Optional[str] = None
    instructions: Optional[str] = None
    tags: Optional[List[str]] = None
    settings: Optional[Dict[str, Any]] = None

    # Set by the registry only
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    updated_at: datetime = Field(default_factory=utc_now, alias="updatedAt")

    # Older documents predate the changelog
    changelog: List[ChangelogEntry] = Field(default_factory=list)

    def has_tag(self, tag: str) -> bool:
        return bool(self.tags) and tag in self.tags

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase JSON form used on disk and on the wire."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Request Models
# =============================================================================

class PersonaCreate(PersonaContent):
    """Input for creating a persona. Unknown keys (id, createdAt, ...) are dropped."""
    model_config = ConfigDict(extra="ignore")

    name: str
    description: Optional[str] = None
    instructions: Optional[str] = None
    tags: Optional[List[str]] = None
    settings: Optional[Dict[str, Any]] = None


class PersonaUpdate(PersonaContent):
    """
    Partial update of a persona.

    Only keys present in the input are applied (see ``supplied()``);
    registry-owned fields are silently ignored.
    """
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    description: Optional[str] = None
    instructions: Optional[str] = None
    tags: Optional[List[str]] = None
    settings: Optional[Dict[str, Any]] = None

    def supplied(self) -> Dict[str, Any]:
        """The explicitly supplied content fields, in declaration order."""
        return {
            name: getattr(self, name)
            for name in CONTENT_FIELDS
            if name in self.model_fields_set
        }


class RegistryState(BaseModel):
    """The unit of persistence: active and archived personas keyed by id."""
    active: Dict[str, PersonaRecord] = Field(default_factory=dict)
    archived: Dict[str, PersonaRecord] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active": [p.to_dict() for p in self.active.values()],
            "archived": [p.to_dict() for p in self.archived.values()],
        }
