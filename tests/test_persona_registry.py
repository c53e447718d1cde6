"""Tests for the Persona Registry core."""

import pytest
from pydantic import ValidationError

from persona_registry.config import RegistryConfig
from persona_registry.personas import (
    PersonaRegistry,
    MemoryStorage,
    PersonaUpdate,
    ChangelogAction,
    NameConflictError,
    PersonaNotFoundError,
    PersonaArchivedError,
    ArchivedImmutableError,
    InternalLimitExceededError,
)

from conftest import persona_doc


NO_AUTOSAVE = RegistryConfig(auto_save_enabled=False)


def registry_with(active=(), archived=()):
    """Registry loaded from pre-existing persisted state."""
    storage = MemoryStorage({"active": list(active), "archived": list(archived)})
    return PersonaRegistry.create(storage, NO_AUTOSAVE), storage


# =============================================================================
# Load
# =============================================================================

def test_create_loads_active_and_archived():
    """Initialization loads both collections and starts clean."""
    registry, storage = registry_with(
        active=[persona_doc("a1", "ActiveLoader")],
        archived=[persona_doc("ar1", "ArchivedLoader")],
    )

    assert storage.load_count == 1
    assert registry.get_persona("a1").name == "ActiveLoader"
    assert registry.get_persona("ar1") is None
    assert [p.id for p in registry.list_personas()] == ["a1"]
    assert [p.id for p in registry.list_archived()] == ["ar1"]
    assert registry.is_dirty is False


def test_create_with_empty_storage(registry):
    """An empty store yields an empty registry."""
    assert registry.list_personas() == []
    assert registry.stats() == {"active": 0, "archived": 0, "dirty": False, "pending_save": False}


# =============================================================================
# Create
# =============================================================================

def test_create_persona(registry, storage):
    """Create assigns id/timestamps/changelog and marks dirty without saving."""
    persona = registry.create_persona({
        "name": "Test Persona",
        "description": "A test persona",
        "instructions": "Test instructions",
        "tags": ["test"],
        "settings": {"temp": 1},
    })

    assert persona.id
    assert persona.name == "Test Persona"
    assert persona.instructions == "Test instructions"
    assert persona.created_at == persona.updated_at
    assert [e.action for e in persona.changelog] == [ChangelogAction.CREATED]

    assert registry.get_persona(persona.id) is persona
    assert registry.list_personas() == [persona]
    assert registry.is_dirty is True
    assert storage.save_count == 0


def test_create_persona_ids_are_unique(registry):
    ids = {registry.create_persona({"name": f"P{i}"}).id for i in range(20)}
    assert len(ids) == 20


def test_create_persona_ignores_registry_fields(registry):
    """Callers can't choose the id or timestamps."""
    persona = registry.create_persona({
        "name": "Sneaky",
        "id": "chosen-id",
        "createdAt": "2000-01-01T00:00:00+00:00",
        "changelog": [],
    })

    assert persona.id != "chosen-id"
    assert persona.created_at.year != 2000
    assert len(persona.changelog) == 1


def test_create_persona_copies_input(registry):
    tags = ["a"]
    settings = {"nested": {"x": 1}}
    persona = registry.create_persona({"name": "Copy Check", "tags": tags, "settings": settings})

    tags.append("b")
    settings["nested"]["x"] = 2

    assert persona.tags == ["a"]
    assert persona.settings == {"nested": {"x": 1}}


def test_create_persona_name_conflict(registry):
    """A second active persona with the same name is rejected."""
    registry.create_persona({"name": "Duplicate Name Test", "description": "First"})

    with pytest.raises(NameConflictError) as exc:
        registry.create_persona({"name": "Duplicate Name Test", "description": "Second"})

    assert str(exc.value) == 'Persona with name "Duplicate Name Test" already exists.'
    assert len(registry.list_personas()) == 1


def test_create_persona_rejects_unwritable_text(registry):
    """Text that can't be encoded as UTF-8 is rejected before anything changes."""
    with pytest.raises(ValidationError):
        registry.create_persona({"name": "Ok", "settings": {"prompt": ["\ud800"]}})

    assert registry.list_personas() == []
    assert registry.is_dirty is False


def test_create_persona_name_check_is_exact(registry):
    """Names compare case- and whitespace-sensitively."""
    registry.create_persona({"name": "Solver"})
    registry.create_persona({"name": "solver"})
    registry.create_persona({"name": "Solver "})

    assert len(registry.list_personas()) == 3


def test_create_persona_may_reuse_archived_name():
    registry, _ = registry_with(archived=[persona_doc("old", "Reused")])

    persona = registry.create_persona({"name": "Reused"})
    assert registry.get_persona(persona.id).name == "Reused"


# =============================================================================
# Queries
# =============================================================================

def test_list_preserves_insertion_order(registry):
    names = ["Zeta", "Alpha", "Mid"]
    for name in names:
        registry.create_persona({"name": name})

    assert [p.name for p in registry.list_personas()] == names


def test_get_persona_unknown(registry):
    assert registry.get_persona("non-existent-id") is None


def test_find_by_tag_only_active():
    """Archived personas and personas without tags never match."""
    registry, _ = registry_with(
        active=[
            persona_doc("p1", "Active Tagged 1", tags=["a", "b"]),
            persona_doc("p2", "Active Tagged 2", tags=["b", "c"]),
            persona_doc("p3", "Untagged", tags=None),
        ],
        archived=[persona_doc("arch1", "Archived B", tags=["b"])],
    )

    assert {p.id for p in registry.find_by_tag("b")} == {"p1", "p2"}
    assert [p.id for p in registry.find_by_tag("c")] == ["p2"]
    assert registry.find_by_tag("B") == []
    assert registry.find_by_tag("missing") == []


# =============================================================================
# Update
# =============================================================================

@pytest.fixture
def persona_to_update(registry):
    return registry.create_persona({
        "name": "UpdateMe",
        "description": "Initial Desc",
        "instructions": "Initial Inst",
        "tags": ["initial", "update"],
        "settings": {"temp": 0.5, "keep": True},
    })


def test_update_persona(registry, persona_to_update):
    """Supplied fields are replaced; others are kept."""
    updated = registry.update_persona(persona_to_update.id, {
        "name": "UpdateMe - Updated",
        "description": "Updated Desc",
        "tags": ["updated"],
        "settings": {"temp": 0.8, "new_field": "added"},
    })

    assert updated.id == persona_to_update.id
    assert updated.name == "UpdateMe - Updated"
    assert updated.description == "Updated Desc"
    assert updated.instructions == "Initial Inst"
    assert updated.tags == ["updated"]
    assert updated.settings == {"temp": 0.8, "new_field": "added"}
    assert updated.created_at == persona_to_update.created_at
    assert updated.updated_at >= persona_to_update.updated_at
    assert registry.get_persona(persona_to_update.id) == updated


def test_update_persona_changelog(registry, persona_to_update):
    """One 'updated' entry listing the changed fields in sorted order."""
    updated = registry.update_persona(persona_to_update.id, {
        "tags": ["x"],
        "description": "New",
        "instructions": "Initial Inst",  # unchanged
    })

    entry = updated.changelog[-1]
    assert len(updated.changelog) == 2
    assert entry.action == ChangelogAction.UPDATED
    assert entry.details == "Updated fields: description, tags"
    # Earlier entries untouched
    assert updated.changelog[0] == persona_to_update.changelog[0]


def test_update_persona_partial(registry, persona_to_update):
    updated = registry.update_persona(persona_to_update.id, PersonaUpdate(description="Only Desc Updated"))

    assert updated.name == "UpdateMe"
    assert updated.description == "Only Desc Updated"
    assert updated.tags == ["initial", "update"]
    assert updated.settings == {"temp": 0.5, "keep": True}


def test_update_persona_no_changes_is_noop(registry, storage, persona_to_update):
    """Identical values: same record back, no timestamp bump, no log, not dirty."""
    registry.flush()
    saves = storage.save_count

    result = registry.update_persona(persona_to_update.id, {
        "name": "UpdateMe",
        "tags": ["initial", "update"],
        "settings": {"keep": True, "temp": 0.5},
    })

    assert result is persona_to_update
    assert result.updated_at == persona_to_update.updated_at
    assert len(result.changelog) == 1
    assert registry.is_dirty is False
    assert storage.save_count == saves


def test_update_persona_empty_update_is_noop(registry, persona_to_update):
    registry.flush()
    assert registry.update_persona(persona_to_update.id, {}) is persona_to_update
    assert registry.is_dirty is False


def test_update_persona_bool_vs_int_is_a_change(registry):
    """true and 1 are different JSON values, even nested."""
    persona = registry.create_persona({
        "name": "Typed",
        "settings": {"stream": True, "temperature": 1, "nested": [False]},
    })

    updated = registry.update_persona(persona.id, {
        "settings": {"stream": 1, "temperature": True, "nested": [0]},
    })

    assert updated is not persona
    assert updated.settings == {"stream": 1, "temperature": True, "nested": [0]}
    assert type(updated.settings["stream"]) is int
    assert type(updated.settings["temperature"]) is bool
    assert updated.changelog[-1].details == "Updated fields: settings"
    assert registry.is_dirty is True


def test_update_persona_ignores_registry_fields(registry, persona_to_update):
    """id, createdAt, updatedAt and changelog can't be overridden."""
    updated = registry.update_persona(persona_to_update.id, {
        "id": "new-id",
        "createdAt": "1970-01-01T00:00:00+00:00",
        "updatedAt": "1970-01-01T00:00:00+00:00",
        "changelog": [],
        "name": "NameChanged",
    })

    assert updated.id == persona_to_update.id
    assert updated.created_at == persona_to_update.created_at
    assert updated.updated_at.year != 1970
    assert updated.name == "NameChanged"
    assert len(updated.changelog) == 2
    assert registry.get_persona("new-id") is None


def test_update_persona_only_registry_fields_is_noop(registry, persona_to_update):
    result = registry.update_persona(persona_to_update.id, {"id": "other", "createdAt": "x"})
    assert result is persona_to_update


def test_update_persona_null_name_is_ignored(registry, persona_to_update):
    updated = registry.update_persona(persona_to_update.id, {"name": None, "description": "d"})
    assert updated.name == "UpdateMe"
    assert updated.description == "d"


def test_update_persona_name_conflict(registry, persona_to_update):
    """Renaming onto another active name fails and changes nothing."""
    registry.create_persona({"name": "Existing Name"})

    with pytest.raises(NameConflictError):
        registry.update_persona(persona_to_update.id, {"name": "Existing Name", "description": "x"})

    current = registry.get_persona(persona_to_update.id)
    assert current is persona_to_update
    assert current.description == "Initial Desc"


def test_update_persona_rename_to_archived_name():
    registry, _ = registry_with(
        active=[persona_doc("a1", "Current")],
        archived=[persona_doc("ar1", "Taken In Archive")],
    )

    updated = registry.update_persona("a1", {"name": "Taken In Archive"})
    assert updated.name == "Taken In Archive"


def test_update_persona_not_found(registry):
    with pytest.raises(PersonaNotFoundError) as exc:
        registry.update_persona("non-existent-id", {"name": "WontWork"})
    assert str(exc.value) == 'Persona with ID "non-existent-id" not found for update.'


def test_update_persona_archived():
    registry, _ = registry_with(archived=[persona_doc("archived-update-test", "ArchivedToUpdate")])

    with pytest.raises(ArchivedImmutableError) as exc:
        registry.update_persona("archived-update-test", {"name": "WontWorkArchived"})

    assert isinstance(exc.value, PersonaArchivedError)
    assert "is archived and cannot be updated" in str(exc.value)
    assert registry.list_archived()[0].name == "ArchivedToUpdate"


def test_update_keeps_list_position(registry):
    first = registry.create_persona({"name": "First"})
    registry.create_persona({"name": "Second"})

    registry.update_persona(first.id, {"description": "changed"})

    assert [p.name for p in registry.list_personas()] == ["First", "Second"]


# =============================================================================
# Archive
# =============================================================================

def test_archive_persona(registry, storage):
    """Archiving removes from all active queries and persists under archived."""
    persona = registry.create_persona({"name": "Archive Me", "tags": ["archive"]})

    assert registry.archive_persona(persona.id) is True
    assert registry.get_persona(persona.id) is None
    assert registry.list_personas() == []
    assert registry.find_by_tag("archive") == []
    assert registry.is_dirty is True

    registry.flush()
    assert [p["id"] for p in storage.document["active"]] == []
    assert [p["id"] for p in storage.document["archived"]] == [persona.id]

    archived = storage.document["archived"][0]
    assert archived["name"] == "Archive Me"
    assert [e["action"] for e in archived["changelog"]] == ["created", "archived"]


def test_archive_persona_unknown(registry):
    assert registry.archive_persona("non-existent-id") is False
    assert registry.is_dirty is False


def test_archive_persona_twice(registry):
    persona = registry.create_persona({"name": "Once"})
    registry.archive_persona(persona.id)
    registry.flush()

    assert registry.archive_persona(persona.id) is False
    assert registry.is_dirty is False
    assert len(registry.list_archived()[0].changelog) == 2


def test_archive_frees_active_name(registry):
    persona = registry.create_persona({"name": "Recycled"})
    registry.archive_persona(persona.id)

    again = registry.create_persona({"name": "Recycled"})
    assert again.id != persona.id


# =============================================================================
# Duplicate
# =============================================================================

@pytest.fixture
def original(registry):
    return registry.create_persona({
        "name": "Original Persona",
        "description": "Base for duplication",
        "instructions": "Do original things",
        "tags": ["original", "test"],
        "settings": {"temperature": 0.5, "model": "gpt-base", "nested": {"a": [1, 2]}},
    })


def test_duplicate_persona(registry, original):
    """The copy gets a new id, a copy name and deep copies of tags/settings."""
    duplicate = registry.duplicate_persona(original.id)

    assert duplicate.id != original.id
    assert duplicate.name == "Original Persona - Copy"
    assert duplicate.description == original.description
    assert duplicate.instructions == original.instructions
    assert duplicate.tags == original.tags
    assert duplicate.tags is not original.tags
    assert duplicate.settings == original.settings
    assert duplicate.settings is not original.settings
    assert duplicate.settings["nested"] is not original.settings["nested"]
    assert duplicate.created_at == duplicate.updated_at
    assert duplicate.created_at >= original.created_at
    assert registry.get_persona(duplicate.id) is duplicate
    assert len(registry.list_personas()) == 2


def test_duplicate_persona_changelog(registry, original):
    duplicate = registry.duplicate_persona(original.id)

    assert [e.action for e in duplicate.changelog] == [
        ChangelogAction.CREATED,
        ChangelogAction.DUPLICATED_FROM,
    ]
    assert duplicate.changelog[1].details == f"Source ID: {original.id}"


def test_duplicate_persona_numbering(registry, original):
    first = registry.duplicate_persona(original.id)
    second = registry.duplicate_persona(original.id)
    third = registry.duplicate_persona(first.id)

    assert first.name == "Original Persona - Copy"
    assert second.name == "Original Persona - Copy - 2"
    assert third.name == "Original Persona - Copy - 3"


def test_duplicate_persona_skips_archived_names():
    """Copy names already used in the archive are skipped."""
    registry, _ = registry_with(archived=[persona_doc("archC", "Original Persona - Copy - 2")])
    original = registry.create_persona({"name": "Original Persona"})

    duplicate1 = registry.duplicate_persona(original.id)
    assert duplicate1.name == "Original Persona - Copy"

    duplicate2 = registry.duplicate_persona(duplicate1.id)
    assert duplicate2.name == "Original Persona - Copy - 3"


def test_duplicate_persona_of_numbered_copy():
    registry, _ = registry_with(active=[persona_doc("n5", "X - Copy - 5")])

    assert registry.duplicate_persona("n5").name == "X - Copy"


def test_duplicate_persona_not_found(registry):
    with pytest.raises(PersonaNotFoundError) as exc:
        registry.duplicate_persona("non-existent-id")
    assert str(exc.value) == 'Persona with ID "non-existent-id" not found.'


def test_duplicate_persona_archived():
    registry, _ = registry_with(archived=[persona_doc("archDup", "ArchivedToDup")])

    with pytest.raises(PersonaArchivedError) as exc:
        registry.duplicate_persona("archDup")

    assert str(exc.value) == 'Cannot duplicate Persona with ID "archDup": it is archived.'
    assert registry.list_personas() == []


# =============================================================================
# Copy names
# =============================================================================

@pytest.mark.parametrize("base, expected", [
    ("X", "X - Copy"),
    ("X - Copy", "X - Copy"),
    ("X - Copy - 7", "X - Copy"),
    ("X - Copy - Copy", "X - Copy - Copy"),
    ("X - Copyright", "X - Copyright - Copy"),
])
def test_find_available_copy_name_roots(registry, base, expected):
    assert registry.find_available_copy_name(base) == expected


def test_find_available_copy_name_continues_past_existing():
    registry, _ = registry_with(
        active=[persona_doc("1", "X"), persona_doc("2", "X - Copy")],
        archived=[persona_doc("3", "X - Copy - 2"), persona_doc("4", "X - Copy - 3")],
    )

    assert registry.find_available_copy_name("X") == "X - Copy - 4"


def test_find_available_copy_name_limit():
    taken = [persona_doc("c1", "X - Copy")] + [
        persona_doc(f"c{n}", f"X - Copy - {n}") for n in range(2, 1001)
    ]
    registry, _ = registry_with(archived=taken)

    with pytest.raises(InternalLimitExceededError):
        registry.find_available_copy_name("X")


# =============================================================================
# Flush
# =============================================================================

def test_flush_saves_both_collections():
    registry, storage = registry_with(
        active=[persona_doc("a1", "To Flush")],
        archived=[persona_doc("archFlush", "Arch")],
    )

    registry.flush()

    assert storage.save_count == 1
    assert [p["id"] for p in storage.document["active"]] == ["a1"]
    assert [p["id"] for p in storage.document["archived"]] == ["archFlush"]
    assert registry.is_dirty is False


def test_round_trip_through_storage(registry, storage, original):
    """A fresh registry over the same storage sees the same state."""
    duplicate = registry.duplicate_persona(original.id)
    registry.update_persona(original.id, {"settings": {"deep": {"list": [1, {"x": "y"}]}}})
    registry.archive_persona(duplicate.id)
    registry.flush()

    reloaded = PersonaRegistry.create(storage, NO_AUTOSAVE)

    assert {p.id: p for p in reloaded.list_personas()} == {p.id: p for p in registry.list_personas()}
    assert {p.id: p for p in reloaded.list_archived()} == {p.id: p for p in registry.list_archived()}


def test_solver_scenario(registry):
    """create -> archive -> duplicate fails."""
    solver = registry.create_persona({"name": "Solver", "tags": ["math"]})
    assert [p.name for p in registry.list_personas()] == ["Solver"]

    assert registry.archive_persona(solver.id) is True
    assert registry.list_personas() == []
    assert registry.get_persona(solver.id) is None

    with pytest.raises(PersonaArchivedError):
        registry.duplicate_persona(solver.id)
