from dataclasses import dataclass
from typing import List

import pytest
from fastapi.testclient import TestClient

from cep_system import ConfigService, EntityType, Settings
from cep_system.domain import Line, Operation, Station, Tool
from cep_system.web.app import create_app

USER = "tester"


@dataclass
class LineTree:
    line: Line
    station: Station
    tool: Tool
    operations: List[Operation]


@pytest.fixture
def service():
    service = ConfigService()
    yield service
    service.database.close()


@pytest.fixture
def tree(service):
    line = service.create_entity(USER, EntityType.LINE)
    line = service.update_entity(USER, EntityType.LINE, line.id, {"name": "Line 1"})
    station = service.create_entity(USER, EntityType.STATION, line.id)
    station = service.update_entity(USER, EntityType.STATION, station.id, {"name": "ST010"})
    tool = service.create_entity(USER, EntityType.TOOL, station.id)
    tool = service.update_entity(
        USER, EntityType.TOOL, tool.id, {"name": "Nutrunner", "tool_class": "Nutrunner"}
    )
    operations = []
    for name, group, sequence in [("Tighten", "B", 2), ("Pick", "A", 1), ("Check", "", 1)]:
        operation = service.create_entity(USER, EntityType.OPERATION, tool.id)
        operations.append(
            service.update_entity(
                USER,
                EntityType.OPERATION,
                operation.id,
                {"name": name, "sequence_group": group, "sequence": sequence},
            )
        )
    return LineTree(line=line, station=station, tool=tool, operations=operations)


@pytest.fixture
def app():
    return create_app(Settings(database_path=":memory:", user=USER, seed_demo_data=False))


@pytest.fixture
def client(app):
    return TestClient(app)
