"""Core data structures for the line configuration editor."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Dict, List, Optional, Tuple, Type

from .errors import UnknownEntityTypeError


class EntityType(str, Enum):
    """The four levels of a line configuration, from top to bottom."""

    LINE = "line"
    STATION = "station"
    TOOL = "tool"
    OPERATION = "operation"

    @classmethod
    def parse(cls, value: object) -> "EntityType":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise UnknownEntityTypeError(f"Unknown entity type: {value!r}")

    @property
    def parent_type(self) -> Optional["EntityType"]:
        index = _CHAIN.index(self)
        return _CHAIN[index - 1] if index > 0 else None

    @property
    def child_type(self) -> Optional["EntityType"]:
        index = _CHAIN.index(self)
        return _CHAIN[index + 1] if index + 1 < len(_CHAIN) else None

    @property
    def table(self) -> str:
        return f"{self.value}s"

    @property
    def children_key(self) -> Optional[str]:
        """Key under which nested children appear in a hierarchy document."""

        child = self.child_type
        return child.table if child is not None else None


_CHAIN: Tuple[EntityType, ...] = (
    EntityType.LINE,
    EntityType.STATION,
    EntityType.TOOL,
    EntityType.OPERATION,
)


class StatusColor(str, Enum):
    """Traffic light status shown next to an entity."""

    NONE = ""
    RED = "red"
    AMBER = "amber"
    EMERALD = "emerald"


class ChangeOperation(str, Enum):
    """Kinds of entries written to the change log."""

    UPDATE = "update"
    DELETE = "delete"
    SYSTEM_EVENT = "system_event"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_SQL_TIMESTAMP = re.compile(
    r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}(\.\d{1,7})?$"
)


def parse_timestamp(value: str) -> datetime:
    """Parse RFC 3339 or ``YYYY-MM-DD HH:MM:SS[.fffffff]`` into an aware UTC datetime."""

    text = (value or "").strip()
    if not text:
        raise ValueError("Timestamp must not be empty")
    if _SQL_TIMESTAMP.match(text):
        # datetime2 carries seven fractional digits, Python keeps six
        head, _, fraction = text.partition(".")
        if fraction:
            head = f"{head}.{fraction[:6].ljust(6, '0')}"
        parsed = datetime.strptime(head, "%Y-%m-%d %H:%M:%S.%f" if fraction else "%Y-%m-%d %H:%M:%S")
        return parsed.replace(tzinfo=timezone.utc)
    if "T" not in text:
        raise ValueError(f"Unsupported timestamp format: {value!r}")
    candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    match = re.match(r"^(.*T\d{2}:\d{2}:\d{2})\.(\d+)(.*)$", candidate)
    if match:
        # RFC 3339 allows nanoseconds; trim to microseconds
        candidate = f"{match.group(1)}.{match.group(2)[:6].ljust(6, '0')}{match.group(3)}"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError(f"Unsupported timestamp format: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


@dataclass(slots=True)
class ConfigEntity:
    """Fields shared by every level of the configuration tree."""

    entity_type: ClassVar[EntityType]

    id: str
    parent_id: Optional[str] = None
    name: str = ""
    comment: str = ""
    status_color: str = StatusColor.NONE.value
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    created_by: str = ""
    updated_by: str = ""


@dataclass(slots=True)
class Line(ConfigEntity):
    """An assembly line, the root of a configuration."""

    entity_type: ClassVar[EntityType] = EntityType.LINE

    assembly_area: str = ""


@dataclass(slots=True)
class Station(ConfigEntity):
    """A station on a line."""

    entity_type: ClassVar[EntityType] = EntityType.STATION

    description: str = ""
    station_type: str = ""
    serial_or_parallel: str = ""


@dataclass(slots=True)
class Tool(ConfigEntity):
    """A tool or device mounted at a station, optionally PLC driven."""

    entity_type: ClassVar[EntityType] = EntityType.TOOL

    description: str = ""
    tool_class: str = ""
    tool_type: str = ""
    ip_address_device: str = ""
    sps_plc_name_spa_service: str = ""
    sps_db_no_send: str = ""
    sps_db_no_receive: str = ""
    sps_pre_check: str = ""
    sps_address_in_send_db: str = ""
    sps_address_in_receive_db: str = ""


@dataclass(slots=True)
class Operation(ConfigEntity):
    """A single step a tool performs."""

    entity_type: ClassVar[EntityType] = EntityType.OPERATION

    description: str = ""
    decision_criteria: str = ""
    sequence_group: str = ""
    sequence: int = 0
    always_perform: str = ""
    q_gate_relevant: str = ""
    template: str = ""
    decision_class: str = ""
    saving_class: str = ""
    verification_class: str = ""
    generation_class: str = ""
    operation_decisions: str = ""


MODELS: Dict[EntityType, Type[ConfigEntity]] = {
    EntityType.LINE: Line,
    EntityType.STATION: Station,
    EntityType.TOOL: Tool,
    EntityType.OPERATION: Operation,
}

SYSTEM_FIELDS = frozenset(
    {"id", "parent_id", "created_at", "updated_at", "created_by", "updated_by"}
)
TIMESTAMP_FIELDS = frozenset({"created_at", "updated_at"})
INTEGER_FIELDS = frozenset({"sequence"})


def column_names(entity_type: EntityType | str) -> Tuple[str, ...]:
    """All stored columns of an entity kind, in declaration order."""

    kind = EntityType.parse(entity_type)
    names = tuple(f.name for f in fields(MODELS[kind]))
    if kind.parent_type is None:
        return tuple(name for name in names if name != "parent_id")
    return names


def editable_fields(entity_type: EntityType | str) -> Tuple[str, ...]:
    """Fields a user may change through a form or an update request."""

    return tuple(
        name for name in column_names(entity_type) if name not in SYSTEM_FIELDS
    )


def coerce_field_value(name: str, value: object) -> object:
    if name in INTEGER_FIELDS:
        if value is None or (isinstance(value, str) and not value.strip()):
            return 0
        try:
            return int(str(value).strip())
        except ValueError as exc:
            raise ValueError(f"Field {name!r} expects a whole number, got {value!r}") from exc
    if name == "status_color":
        text = "" if value is None else str(value).strip().lower()
        allowed = {color.value for color in StatusColor}
        if text not in allowed:
            raise ValueError(f"Invalid status color {value!r}")
        return text
    return "" if value is None else str(value)


def entity_to_dict(entity: ConfigEntity) -> Dict[str, object]:
    payload: Dict[str, object] = {"entity_type": entity.entity_type.value}
    for name in column_names(entity.entity_type):
        value = getattr(entity, name)
        payload[name] = format_timestamp(value) if name in TIMESTAMP_FIELDS else value
    if entity.entity_type.parent_type is None:
        payload["parent_id"] = None
    return payload


def entity_from_dict(entity_type: EntityType | str, data: Dict[str, object]) -> ConfigEntity:
    """Build an entity from a document, ignoring keys the model does not know."""

    kind = EntityType.parse(entity_type)
    values: Dict[str, object] = {}
    for name in column_names(kind):
        if name not in data or data[name] is None:
            continue
        raw = data[name]
        if name in TIMESTAMP_FIELDS:
            values[name] = parse_timestamp(str(raw))
        elif name in SYSTEM_FIELDS:
            values[name] = str(raw)
        else:
            values[name] = coerce_field_value(name, raw)
    if not values.get("id"):
        raise ValueError(f"{kind.value} document has no id")
    return MODELS[kind](**values)


@dataclass(slots=True)
class ChangeLogEntry:
    """A single row of the change log used to build the change feed."""

    log_id: str
    entity_id: str
    entity_type: str
    operation_type: ChangeOperation
    change_time: datetime
    changed_by: str = ""
    changed_fields: Dict[str, object] = field(default_factory=dict)


@dataclass(slots=True)
class EntityChange:
    """Fields of one entity that changed on the server."""

    id: str
    changed_fields: Dict[str, object] = field(default_factory=dict)


@dataclass(slots=True)
class ChangeSet:
    """Answer to "what changed since my last sync"."""

    new_global_last_updated_at: str
    updated_entities: Dict[str, List[EntityChange]] = field(default_factory=dict)
    deleted_entities: Dict[str, List[str]] = field(default_factory=dict)
    system_events: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.updated_entities or self.deleted_entities or self.system_events)

    def as_dict(self) -> Dict[str, object]:
        return {
            "new_global_last_updated_at": self.new_global_last_updated_at,
            "updated_entities": {
                entity_type: [
                    {"id": change.id, "changed_fields": dict(change.changed_fields)}
                    for change in changes
                ]
                for entity_type, changes in self.updated_entities.items()
            },
            "deleted_entities": {
                entity_type: list(ids)
                for entity_type, ids in self.deleted_entities.items()
            },
            "system_events": list(self.system_events),
        }


@dataclass(slots=True)
class Version:
    """A saved snapshot of the whole configuration tree."""

    version_id: str
    created_at: datetime = field(default_factory=utcnow)
    created_by: str = ""
    description: str = ""

    def as_dict(self) -> Dict[str, object]:
        return {
            "version_id": self.version_id,
            "created_at": format_timestamp(self.created_at),
            "created_by": self.created_by,
            "description": self.description,
        }


@dataclass(slots=True)
class Breadcrumb:
    """One step of the navigation path from a line down to an entity."""

    entity_type: EntityType
    id: str
    label: str


@dataclass(slots=True)
class SequenceGroup:
    """Operations of a station that share a sequence group."""

    name: str
    operations: List[Operation] = field(default_factory=list)


__all__ = [
    "EntityType",
    "StatusColor",
    "ChangeOperation",
    "ConfigEntity",
    "Line",
    "Station",
    "Tool",
    "Operation",
    "MODELS",
    "SYSTEM_FIELDS",
    "TIMESTAMP_FIELDS",
    "INTEGER_FIELDS",
    "column_names",
    "editable_fields",
    "coerce_field_value",
    "entity_to_dict",
    "entity_from_dict",
    "parse_timestamp",
    "format_timestamp",
    "utcnow",
    "ChangeLogEntry",
    "EntityChange",
    "ChangeSet",
    "Version",
    "Breadcrumb",
    "SequenceGroup",
]
