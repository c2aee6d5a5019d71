from datetime import datetime, timezone

import pytest

from cep_system.domain import (
    EntityType,
    Line,
    Station,
    coerce_field_value,
    column_names,
    editable_fields,
    entity_from_dict,
    entity_to_dict,
    format_timestamp,
    parse_timestamp,
)
from cep_system.errors import UnknownEntityTypeError


def test_entity_type_parse_is_case_insensitive():
    assert EntityType.parse("Station") is EntityType.STATION
    assert EntityType.parse(" OPERATION ") is EntityType.OPERATION
    assert EntityType.parse(EntityType.TOOL) is EntityType.TOOL


def test_entity_type_parse_rejects_unknown_names():
    with pytest.raises(UnknownEntityTypeError):
        EntityType.parse("machine")


def test_entity_type_hierarchy_links():
    assert EntityType.LINE.parent_type is None
    assert EntityType.STATION.parent_type is EntityType.LINE
    assert EntityType.TOOL.child_type is EntityType.OPERATION
    assert EntityType.OPERATION.child_type is None
    assert EntityType.LINE.children_key == "stations"
    assert EntityType.OPERATION.children_key is None


def test_line_has_no_parent_column():
    assert "parent_id" not in column_names(EntityType.LINE)
    assert "parent_id" in column_names(EntityType.STATION)


def test_editable_fields_exclude_system_fields():
    fields = editable_fields(EntityType.OPERATION)
    assert "sequence" in fields
    assert "name" in fields
    assert "id" not in fields
    assert "updated_at" not in fields


@pytest.mark.parametrize(
    "text, expected",
    [
        ("2024-05-01T10:00:00Z", datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)),
        (
            "2024-05-01T10:00:00.123456789+02:00",
            datetime(2024, 5, 1, 8, 0, 0, 123456, tzinfo=timezone.utc),
        ),
        (
            "2024-05-01 10:00:00.1234567",
            datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=timezone.utc),
        ),
        ("2024-05-01 10:00:00", datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)),
    ],
)
def test_parse_timestamp_accepts_supported_formats(text, expected):
    assert parse_timestamp(text) == expected


@pytest.mark.parametrize("text", ["", "yesterday", "2024-05-01", "01.05.2024 10:00"])
def test_parse_timestamp_rejects_other_formats(text):
    with pytest.raises(ValueError):
        parse_timestamp(text)


def test_format_timestamp_is_utc_iso():
    value = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert format_timestamp(value) == "2024-05-01T10:00:00.000000+00:00"


def test_coerce_field_value():
    assert coerce_field_value("sequence", "7") == 7
    assert coerce_field_value("sequence", " ") == 0
    assert coerce_field_value("status_color", "Red") == "red"
    assert coerce_field_value("comment", None) == ""
    with pytest.raises(ValueError):
        coerce_field_value("sequence", "seven")
    with pytest.raises(ValueError):
        coerce_field_value("status_color", "purple")


def test_entity_dict_conversion_keeps_fields():
    station = Station(id="s1", parent_id="l1", name="ST010", station_type="manual")
    payload = entity_to_dict(station)
    assert payload["entity_type"] == "station"
    assert payload["parent_id"] == "l1"

    restored = entity_from_dict("station", {**payload, "unknown": "ignored"})
    assert restored == station


def test_line_dict_has_empty_parent():
    assert entity_to_dict(Line(id="l1"))["parent_id"] is None


def test_entity_from_dict_requires_id():
    with pytest.raises(ValueError):
        entity_from_dict(EntityType.TOOL, {"name": "Nutrunner"})
