"""Demonstration script for the line configuration editor."""

from __future__ import annotations

from pprint import pprint
from typing import Mapping, Optional

from . import ConfigService, DraftStore, EntityType, synchronize_drafts
from .domain import ConfigEntity, Line


def _create(
    service: ConfigService,
    user: str,
    kind: EntityType,
    values: Mapping[str, object],
    parent_id: Optional[str] = None,
) -> ConfigEntity:
    entity = service.create_entity(user, kind, parent_id)
    return service.update_entity(user, kind, entity.id, values)


def build_demo_line(service: ConfigService, user: str = "demo") -> Line:
    """Create a small line with two stations, their tools and operations."""

    line = _create(
        service,
        user,
        EntityType.LINE,
        {"name": "Endmontage 1", "assembly_area": "Halle 3", "status_color": "emerald"},
    )

    screwing = _create(
        service,
        user,
        EntityType.STATION,
        {
            "name": "ST010",
            "description": "Verschrauben Unterbau",
            "station_type": "manual",
            "serial_or_parallel": "serial",
        },
        line.id,
    )
    nutrunner = _create(
        service,
        user,
        EntityType.TOOL,
        {
            "name": "Schrauber 1",
            "description": "Atlas Copco Nutrunner",
            "tool_class": "Nutrunner",
            "tool_type": "PF6000",
            "ip_address_device": "10.20.1.15",
            "sps_plc_name_spa_service": "PLC_ST010",
            "sps_db_no_send": "100",
            "sps_db_no_receive": "101",
        },
        screwing.id,
    )
    for sequence, (name, group) in enumerate(
        [("Schraube M8 vorne", "A"), ("Schraube M8 hinten", "A"), ("Nachziehen", "B")],
        start=1,
    ):
        _create(
            service,
            user,
            EntityType.OPERATION,
            {
                "name": name,
                "description": f"{name} anziehen",
                "decision_criteria": "Drehmoment 25 Nm",
                "sequence_group": group,
                "sequence": sequence,
                "always_perform": "true",
                "q_gate_relevant": "true" if group == "B" else "false",
            },
            nutrunner.id,
        )

    inspection = _create(
        service,
        user,
        EntityType.STATION,
        {
            "name": "ST020",
            "description": "Sichtprüfung",
            "station_type": "automatic",
            "status_color": "amber",
        },
        line.id,
    )
    camera = _create(
        service,
        user,
        EntityType.TOOL,
        {"name": "Kamera 1", "tool_class": "Vision", "ip_address_device": "10.20.1.40"},
        inspection.id,
    )
    _create(
        service,
        user,
        EntityType.OPERATION,
        {
            "name": "Kabelführung prüfen",
            "decision_criteria": "Bildvergleich",
            "sequence": 1,
            "q_gate_relevant": "true",
            "status_color": "red",
        },
        camera.id,
    )
    return line  # type: ignore[return-value]


def main() -> None:
    service = ConfigService()
    line = build_demo_line(service, user="planner")

    print("Hierarchy:")
    pprint(service.build_tree(EntityType.LINE, line.id))

    station = service.get_entities(EntityType.STATION, line.id)[0]
    print("\nSequence groups of", station.name)
    for group in service.operations_by_sequence_group(station.id):
        pprint((group.name or "-", [operation.name for operation in group.operations]))

    # Another user edits a field this client has an unsaved draft for
    drafts = DraftStore()
    synchronize_drafts(service, drafts)
    drafts.save(station.id, {"description": "Verschrauben Unterbau (neu)"})
    service.update_entity(
        "shift-lead", EntityType.STATION, station.id, {"description": "Unterbau verschrauben"}
    )
    print("\nDraft conflicts:")
    pprint(synchronize_drafts(service, drafts))

    clipboard = service.copy_hierarchy(EntityType.STATION, station.id)
    copy = service.paste_hierarchy("planner", EntityType.STATION, clipboard, line.id)
    print("\nPasted station copy:", copy.id)
    pprint(service.breadcrumbs(EntityType.STATION, copy.id))


if __name__ == "__main__":  # pragma: no cover - manual demonstration
    main()
