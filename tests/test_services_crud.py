import pytest

from cep_system import ConflictError, EntityType, RecordNotFoundError, UnknownEntityTypeError
from cep_system.domain import format_timestamp

USER = "tester"


def test_create_then_read_returns_same_entity(service):
    line = service.create_entity(USER, "line")
    loaded = service.get_entity_details("LINE", line.id)
    assert loaded == line
    assert loaded.name == ""
    assert loaded.created_by == USER
    assert loaded.parent_id is None


def test_create_requires_user(service):
    with pytest.raises(ValueError):
        service.create_entity("  ", EntityType.LINE)


def test_create_child_requires_existing_parent(service):
    with pytest.raises(ValueError):
        service.create_entity(USER, EntityType.STATION)
    with pytest.raises(RecordNotFoundError):
        service.create_entity(USER, EntityType.STATION, "missing-line")


def test_create_bumps_global_timestamp(service):
    before = service.global_last_update()
    service.create_entity(USER, EntityType.LINE)
    assert service.global_last_update() > before


def test_update_then_read_reflects_change(service, tree):
    updated = service.update_entity(
        "alice", EntityType.OPERATION, tree.operations[0].id, {"sequence": "12", "comment": "x"}
    )
    assert updated.sequence == 12
    assert updated.comment == "x"
    assert updated.updated_by == "alice"
    assert updated.updated_at > tree.operations[0].updated_at
    assert service.get_entity_details("operation", updated.id) == updated


def test_update_rejects_unknown_fields(service, tree):
    with pytest.raises(ValueError, match="bogus"):
        service.update_entity(USER, EntityType.LINE, tree.line.id, {"bogus": "1"})
    with pytest.raises(ValueError):
        service.update_entity(USER, EntityType.LINE, tree.line.id, {"created_by": "mallory"})


def test_update_of_missing_entity_raises(service):
    with pytest.raises(RecordNotFoundError):
        service.update_entity(USER, EntityType.TOOL, "missing", {"name": "x"})


def test_update_with_stale_timestamp_conflicts(service, tree):
    loaded_at = format_timestamp(tree.station.updated_at)
    service.update_entity("bob", EntityType.STATION, tree.station.id, {"name": "Bob's"})

    with pytest.raises(ConflictError) as excinfo:
        service.update_entity(
            USER,
            EntityType.STATION,
            tree.station.id,
            {"name": "Mine"},
            last_known_update=loaded_at,
        )
    assert excinfo.value.entity_id == tree.station.id
    assert excinfo.value.known_at == loaded_at
    assert service.get_entity_details(EntityType.STATION, tree.station.id).name == "Bob's"


def test_update_with_current_timestamp_succeeds(service, tree):
    current = format_timestamp(tree.station.updated_at)
    updated = service.update_entity(
        USER, EntityType.STATION, tree.station.id, {"name": "Mine"}, last_known_update=current
    )
    assert updated.name == "Mine"


def test_delete_then_read_returns_nothing(service, tree):
    removed = service.delete_entity(USER, EntityType.STATION, tree.station.id)

    assert removed[0] == tree.station.id
    assert set(removed) == {
        tree.station.id,
        tree.tool.id,
        *(operation.id for operation in tree.operations),
    }
    with pytest.raises(RecordNotFoundError):
        service.get_entity_details(EntityType.STATION, tree.station.id)
    with pytest.raises(RecordNotFoundError):
        service.get_entity_details(EntityType.OPERATION, tree.operations[0].id)
    assert service.get_entities(EntityType.STATION, tree.line.id) == []


def test_delete_missing_entity_raises(service):
    with pytest.raises(RecordNotFoundError):
        service.delete_entity(USER, EntityType.LINE, "missing")


def test_unknown_entity_type_is_rejected(service):
    with pytest.raises(UnknownEntityTypeError):
        service.get_entity_details("machine", "x")
    with pytest.raises(UnknownEntityTypeError):
        service.create_entity(USER, "machine")


def test_get_entities_requires_parent_below_line(service, tree):
    with pytest.raises(ValueError):
        service.get_entities(EntityType.TOOL)
    assert [line.id for line in service.get_entities(EntityType.LINE)] == [tree.line.id]
    names = [operation.name for operation in service.get_entities("operation", tree.tool.id)]
    assert names == ["Tighten", "Pick", "Check"]


def test_get_entities_status_filter(service, tree):
    service.update_entity(USER, EntityType.OPERATION, tree.operations[1].id, {"status_color": "red"})

    red = service.get_entities(EntityType.OPERATION, tree.tool.id, status="RED")
    assert [operation.id for operation in red] == [tree.operations[1].id]

    drafted = service.get_entities(
        EntityType.OPERATION,
        tree.tool.id,
        status="draft",
        draft_ids={tree.operations[2].id},
    )
    assert [operation.id for operation in drafted] == [tree.operations[2].id]

    with pytest.raises(ValueError):
        service.get_entities(EntityType.OPERATION, tree.tool.id, status="purple")
