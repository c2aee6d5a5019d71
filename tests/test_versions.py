import json

import pytest

from cep_system import EntityType, RecordNotFoundError

USER = "tester"


def test_create_version_snapshots_every_level(service, tree):
    version = service.create_version("archivist", "  Before retooling ")

    assert version.created_by == "archivist"
    assert version.description == "Before retooling"
    assert [item.version_id for item in service.list_versions()] == [version.version_id]
    database = service.database
    assert (
        len(database.line_history),
        len(database.station_history),
        len(database.tool_history),
        len(database.operation_history),
    ) == (1, 1, 1, 3)


def test_versioned_entity_keeps_old_values(service, tree):
    version = service.create_version(USER)
    service.update_entity(USER, EntityType.STATION, tree.station.id, {"name": "ST011"})

    frozen = service.get_versioned_entity(version.version_id, "Station", tree.station.id)

    assert frozen.name == "ST010"
    assert frozen.parent_id == tree.line.id
    assert service.get_entity_details(EntityType.STATION, tree.station.id).name == "ST011"


def test_versioned_entities_survive_deletion(service, tree):
    version = service.create_version(USER)
    service.delete_entity(USER, EntityType.LINE, tree.line.id)

    lines = service.get_versioned_entities(version.version_id, EntityType.LINE)
    operations = service.get_versioned_entities(
        version.version_id, EntityType.OPERATION, tree.tool.id
    )

    assert [line.id for line in lines] == [tree.line.id]
    assert [operation.name for operation in operations] == ["Tighten", "Pick", "Check"]


def test_versioned_entities_require_parent_below_line(service, tree):
    version = service.create_version(USER)
    with pytest.raises(ValueError, match="parent id is required"):
        service.get_versioned_entities(version.version_id, EntityType.TOOL)


def test_each_version_has_its_own_rows(service, tree):
    first = service.create_version(USER, "first")
    service.update_entity(USER, EntityType.TOOL, tree.tool.id, {"tool_class": "Vision"})
    second = service.create_version(USER, "second")

    before = service.get_versioned_entity(first.version_id, "tool", tree.tool.id)
    after = service.get_versioned_entity(second.version_id, "tool", tree.tool.id)
    assert (before.tool_class, after.tool_class) == ("Nutrunner", "Vision")
    assert [item.description for item in service.list_versions()] == ["first", "second"]


def test_unknown_version_or_entity_is_not_found(service, tree):
    version = service.create_version(USER)
    with pytest.raises(RecordNotFoundError):
        service.get_versioned_entity("missing", EntityType.LINE, tree.line.id)
    with pytest.raises(RecordNotFoundError):
        service.get_versioned_entities("missing", EntityType.LINE)
    with pytest.raises(RecordNotFoundError):
        service.get_versioned_entity(version.version_id, EntityType.LINE, "missing")


def test_version_requires_user(service):
    with pytest.raises(ValueError):
        service.create_version(" ")


def test_versioned_hierarchy_and_export(service, tree, tmp_path):
    version = service.create_version(USER)
    service.delete_entity(USER, EntityType.TOOL, tree.tool.id)

    hierarchy = service.get_versioned_hierarchy(
        version.version_id, EntityType.STATION, tree.station.id
    )
    assert [tool["id"] for tool in hierarchy["tools"]] == [tree.tool.id]
    assert len(hierarchy["tools"][0]["operations"]) == 3

    path = service.export_versioned_hierarchy(
        version.version_id, EntityType.LINE, tree.line.id, tmp_path / "v.json"
    )
    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["stations"][0]["tools"][0]["name"] == "Nutrunner"


def test_creating_a_version_does_not_touch_the_change_feed(service, tree):
    timestamp = service.global_last_update()
    service.create_version(USER)
    assert service.global_last_update() == timestamp
