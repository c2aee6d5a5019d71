from cep_system import (
    ChangeSet,
    DraftStore,
    EntityChange,
    EntityType,
    group_conflicts,
    reconcile_drafts,
    synchronize_drafts,
)

USER = "tester"


def _no_lookup(kind, entity_id):
    raise AssertionError("lookup should not be needed")


def test_draft_store_merges_values():
    store = DraftStore()
    store.save("s1", {"name": "A"})
    store.save("s1", {"comment": "B", "name": "C"})
    assert store.get("s1") == {"name": "C", "comment": "B"}
    assert "s1" in store
    assert store.ids() == ["s1"]
    assert store.as_dict() == {"s1": {"name": "C", "comment": "B"}}


def test_draft_store_discard():
    store = DraftStore()
    store.save("s1", {"name": "A"})
    assert store.discard("s1") is True
    assert store.discard("s1") is False
    assert store.get("s1") == {}
    assert len(store) == 0


def test_drafts_of_deleted_entities_are_discarded():
    store = DraftStore()
    store.save("t1", {"name": "Draft"})
    store.save("t2", {"name": "Other"})
    changes = ChangeSet(
        new_global_last_updated_at="2024-05-01T10:00:00.000000+00:00",
        deleted_entities={"tool": ["t1"]},
    )

    conflicts = reconcile_drafts(store, changes, _no_lookup)

    assert conflicts == []
    assert store.ids() == ["t2"]
    assert store.last_update == "2024-05-01T10:00:00.000000+00:00"


def test_conflicts_only_for_non_empty_draft_fields():
    store = DraftStore()
    store.save("s1", {"name": "Mine", "comment": "", "description": "Local"})
    changes = ChangeSet(
        new_global_last_updated_at="2024-05-01T10:00:00.000000+00:00",
        updated_entities={
            "station": [
                EntityChange(
                    id="s1",
                    changed_fields={"name": "Theirs", "comment": "x", "station_type": "auto"},
                ),
                EntityChange(id="s2", changed_fields={"name": "No draft"}),
            ]
        },
    )

    conflicts = reconcile_drafts(store, changes, _no_lookup)

    assert [(conflict.field, conflict.server_value) for conflict in conflicts] == [
        ("name", "Theirs")
    ]
    assert conflicts[0].entity_type is EntityType.STATION
    assert conflicts[0].entity_label == "Mine"


def test_conflict_label_falls_back_to_server_name():
    store = DraftStore()
    store.save("o1", {"comment": "local note"})
    changes = ChangeSet(
        new_global_last_updated_at="2024-05-01T10:00:00.000000+00:00",
        updated_entities={"operation": [EntityChange(id="o1", changed_fields={"comment": "x"})]},
    )

    conflicts = reconcile_drafts(store, changes, lambda kind, entity_id: f"{kind.value}-{entity_id}")

    assert conflicts[0].entity_label == "operation-o1"


def test_group_conflicts_keeps_feed_order():
    store = DraftStore()
    store.save("a", {"name": "A", "comment": "a"})
    store.save("b", {"name": "B"})
    changes = ChangeSet(
        new_global_last_updated_at="2024-05-01T10:00:00.000000+00:00",
        updated_entities={
            "tool": [
                EntityChange(id="b", changed_fields={"name": "B2"}),
                EntityChange(id="a", changed_fields={"name": "A2", "comment": "a2"}),
            ]
        },
    )

    grouped = group_conflicts(reconcile_drafts(store, changes, _no_lookup))

    assert list(grouped) == [(EntityType.TOOL, "B"), (EntityType.TOOL, "A")]
    assert [conflict.field for conflict in grouped[(EntityType.TOOL, "A")]] == ["name", "comment"]


def test_first_synchronization_only_records_timestamp(service, tree):
    store = DraftStore()
    store.save(tree.station.id, {"name": "Mine"})

    assert synchronize_drafts(service, store) == []
    assert store.last_update == service.global_last_update()


def test_synchronize_reports_concurrent_edits(service, tree):
    store = DraftStore()
    synchronize_drafts(service, store)
    store.save(tree.tool.id, {"tool_class": "Vision"})
    store.save(tree.operations[0].id, {"comment": "check torque"})
    service.update_entity("bob", EntityType.TOOL, tree.tool.id, {"tool_class": "Screwdriver"})
    service.delete_entity("bob", EntityType.OPERATION, tree.operations[0].id)

    conflicts = synchronize_drafts(service, store)

    assert len(conflicts) == 1
    assert conflicts[0].entity_label == "Nutrunner"
    assert conflicts[0].server_value == "Screwdriver"
    assert tree.operations[0].id not in store
    assert store.last_update == service.global_last_update()
    assert synchronize_drafts(service, store) == []
