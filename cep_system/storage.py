"""SQLite-backed persistence for the configuration tree."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, Generic, Iterator, List, Mapping, Optional, Tuple, TypeVar
from uuid import uuid4

from .domain import (
    INTEGER_FIELDS,
    MODELS,
    SYSTEM_FIELDS,
    TIMESTAMP_FIELDS,
    ChangeLogEntry,
    ChangeOperation,
    ConfigEntity,
    EntityType,
    Line,
    Operation,
    Station,
    Tool,
    Version,
    column_names,
    format_timestamp,
    parse_timestamp,
    utcnow,
)
from .errors import DuplicateRecordError, RecordNotFoundError

T = TypeVar("T", bound=ConfigEntity)

GLOBAL_METADATA_KEY = "global"

logger = logging.getLogger(__name__)


def _column_definition(entity_type: EntityType, name: str) -> str:
    if name == "id":
        return "id TEXT PRIMARY KEY"
    if name == "parent_id":
        parent = entity_type.parent_type
        assert parent is not None
        return (
            f"parent_id TEXT NOT NULL REFERENCES {parent.table}(id) "
            "ON UPDATE CASCADE ON DELETE CASCADE"
        )
    if name in INTEGER_FIELDS:
        return f"{name} INTEGER NOT NULL DEFAULT 0"
    return f"{name} TEXT NOT NULL DEFAULT ''"


def _history_column_definition(name: str) -> str:
    if name == "id":
        return "id TEXT NOT NULL"
    if name == "parent_id":
        return "parent_id TEXT"
    if name in INTEGER_FIELDS:
        return f"{name} INTEGER NOT NULL DEFAULT 0"
    return f"{name} TEXT NOT NULL DEFAULT ''"


def _to_column(name: str, value: object) -> object:
    if name in TIMESTAMP_FIELDS and isinstance(value, datetime):
        return format_timestamp(value)
    if name in INTEGER_FIELDS:
        return int(value or 0)
    if value is None and name not in SYSTEM_FIELDS:
        return ""
    return value


def _entity_from_row(
    entity_type: EntityType, columns: Tuple[str, ...], row: sqlite3.Row
) -> ConfigEntity:
    values: Dict[str, object] = {}
    for name in columns:
        value = row[name]
        if name in TIMESTAMP_FIELDS:
            value = parse_timestamp(value)
        values[name] = value
    return MODELS[entity_type](**values)


class SQLiteEntityTable(Generic[T]):
    """Table of one entity kind with one column per model field.

    Callers own the transaction: statements are not committed here, use
    :meth:`ConfigDatabase.transaction` around mutations.
    """

    def __init__(self, connection: sqlite3.Connection, entity_type: EntityType) -> None:
        self._connection = connection
        self.entity_type = entity_type
        self._table = entity_type.table  # static names from EntityType
        self._columns = column_names(entity_type)
        definitions = ", ".join(
            _column_definition(entity_type, name) for name in self._columns
        )
        self._connection.execute(f"CREATE TABLE IF NOT EXISTS {self._table} ({definitions})")
        if entity_type.parent_type is not None:
            self._connection.execute(
                f"CREATE INDEX IF NOT EXISTS ix_{self._table}_parent_id "
                f"ON {self._table} (parent_id)"
            )
        self._connection.commit()

    def __contains__(self, item_id: object) -> bool:
        if not isinstance(item_id, str):
            return False
        cursor = self._connection.execute(
            f"SELECT 1 FROM {self._table} WHERE id = ? LIMIT 1", (item_id,)
        )
        return cursor.fetchone() is not None

    def __iter__(self) -> Iterator[T]:
        return iter(self.list())

    def __len__(self) -> int:
        cursor = self._connection.execute(f"SELECT COUNT(1) FROM {self._table}")
        value = cursor.fetchone()
        return int(value[0]) if value else 0

    # ------------------------------------------------------------------
    # CRUD operations
    # ------------------------------------------------------------------
    def add(self, item: T) -> None:
        if item.id in self:
            raise DuplicateRecordError(
                f"{self.entity_type.value} with id {item.id!r} already exists"
            )
        placeholders = ", ".join("?" for _ in self._columns)
        self._connection.execute(
            f"INSERT INTO {self._table} ({', '.join(self._columns)}) VALUES ({placeholders})",
            tuple(_to_column(name, getattr(item, name)) for name in self._columns),
        )

    def get(self, item_id: str) -> T:
        cursor = self._connection.execute(
            f"SELECT * FROM {self._table} WHERE id = ?", (item_id,)
        )
        row = cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(
                f"{self.entity_type.value} with id {item_id!r} not found"
            )
        return self._from_row(row)

    def update_fields(self, item_id: str, values: Mapping[str, object]) -> None:
        unknown = [name for name in values if name not in self._columns or name == "id"]
        if unknown:
            raise ValueError(
                f"Unknown {self.entity_type.value} field(s): {', '.join(sorted(unknown))}"
            )
        if not values:
            return
        assignments = ", ".join(f"{name} = ?" for name in values)
        params = [_to_column(name, value) for name, value in values.items()]
        cursor = self._connection.execute(
            f"UPDATE {self._table} SET {assignments} WHERE id = ?", (*params, item_id)
        )
        if cursor.rowcount == 0:
            raise RecordNotFoundError(
                f"{self.entity_type.value} with id {item_id!r} not found"
            )

    def remove(self, item_id: str) -> None:
        cursor = self._connection.execute(
            f"DELETE FROM {self._table} WHERE id = ?", (item_id,)
        )
        if cursor.rowcount == 0:
            raise RecordNotFoundError(
                f"{self.entity_type.value} with id {item_id!r} not found"
            )

    def list(self, parent_id: Optional[str] = None) -> List[T]:
        if parent_id is not None and self.entity_type.parent_type is not None:
            cursor = self._connection.execute(
                f"SELECT * FROM {self._table} WHERE parent_id = ? "
                "ORDER BY created_at, rowid",
                (parent_id,),
            )
        else:
            cursor = self._connection.execute(
                f"SELECT * FROM {self._table} ORDER BY created_at, rowid"
            )
        return [self._from_row(row) for row in cursor.fetchall()]

    def child_ids(self, parent_ids: List[str]) -> List[str]:
        if not parent_ids or self.entity_type.parent_type is None:
            return []
        placeholders = ", ".join("?" for _ in parent_ids)
        cursor = self._connection.execute(
            f"SELECT id FROM {self._table} WHERE parent_id IN ({placeholders}) "
            "ORDER BY created_at, rowid",
            tuple(parent_ids),
        )
        return [row[0] for row in cursor.fetchall()]

    def _from_row(self, row: sqlite3.Row) -> T:
        return _entity_from_row(self.entity_type, self._columns, row)  # type: ignore[return-value]


class ChangeLogTable:
    """Append-only log of updates, deletions and bulk system events."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._connection.execute(
            "CREATE TABLE IF NOT EXISTS entity_change_log ("
            "log_id TEXT PRIMARY KEY, entity_id TEXT NOT NULL, "
            "entity_type TEXT NOT NULL, operation_type TEXT NOT NULL, "
            "change_time TEXT NOT NULL, changed_by TEXT NOT NULL DEFAULT '', "
            "changed_fields TEXT NOT NULL DEFAULT '{}')"
        )
        self._connection.execute(
            "CREATE INDEX IF NOT EXISTS ix_entity_change_log_change_time "
            "ON entity_change_log (change_time)"
        )
        self._connection.commit()

    def __len__(self) -> int:
        cursor = self._connection.execute("SELECT COUNT(1) FROM entity_change_log")
        value = cursor.fetchone()
        return int(value[0]) if value else 0

    def append(
        self,
        entity_id: str,
        entity_type: str,
        operation: ChangeOperation,
        change_time: datetime,
        *,
        changed_by: str = "",
        changed_fields: Optional[Mapping[str, object]] = None,
    ) -> ChangeLogEntry:
        entry = ChangeLogEntry(
            log_id=str(uuid4()),
            entity_id=entity_id,
            entity_type=entity_type.lower(),
            operation_type=operation,
            change_time=change_time,
            changed_by=changed_by,
            changed_fields=dict(changed_fields or {}),
        )
        self._connection.execute(
            "INSERT INTO entity_change_log (log_id, entity_id, entity_type, "
            "operation_type, change_time, changed_by, changed_fields) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                entry.log_id,
                entry.entity_id,
                entry.entity_type,
                entry.operation_type.value,
                format_timestamp(entry.change_time),
                entry.changed_by,
                json.dumps(entry.changed_fields, ensure_ascii=False),
            ),
        )
        return entry

    def since(self, reference: datetime) -> List[ChangeLogEntry]:
        cursor = self._connection.execute(
            "SELECT * FROM entity_change_log WHERE change_time > ? "
            "ORDER BY change_time, rowid",
            (format_timestamp(reference),),
        )
        return [
            ChangeLogEntry(
                log_id=row["log_id"],
                entity_id=row["entity_id"],
                entity_type=row["entity_type"],
                operation_type=ChangeOperation(row["operation_type"]),
                change_time=parse_timestamp(row["change_time"]),
                changed_by=row["changed_by"],
                changed_fields=json.loads(row["changed_fields"] or "{}"),
            )
            for row in cursor.fetchall()
        ]


class AppMetadataTable:
    """Key/value rows, used for the global last-update timestamp."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._connection.execute(
            "CREATE TABLE IF NOT EXISTS app_metadata ("
            "config_key TEXT PRIMARY KEY, last_update TEXT NOT NULL)"
        )
        self._connection.execute(
            "INSERT OR IGNORE INTO app_metadata (config_key, last_update) VALUES (?, ?)",
            (GLOBAL_METADATA_KEY, format_timestamp(utcnow())),
        )
        self._connection.commit()

    def last_update(self) -> datetime:
        cursor = self._connection.execute(
            "SELECT last_update FROM app_metadata WHERE config_key = ?",
            (GLOBAL_METADATA_KEY,),
        )
        row = cursor.fetchone()
        if row is None:
            raise RecordNotFoundError("Global metadata row is missing")
        return parse_timestamp(row[0])

    def touch(self) -> datetime:
        """Advance the global timestamp and return it.

        The value is strictly increasing even when two writes land within
        the same clock tick.
        """

        previous = self.last_update()
        now = utcnow()
        if now <= previous:
            now = previous + timedelta(microseconds=1)
        self._connection.execute(
            "UPDATE app_metadata SET last_update = ? WHERE config_key = ?",
            (format_timestamp(now), GLOBAL_METADATA_KEY),
        )
        return now


class VersionTable:
    """Named snapshots of the configuration, newest last."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._connection.execute(
            "CREATE TABLE IF NOT EXISTS versions ("
            "version_id TEXT PRIMARY KEY, created_at TEXT NOT NULL, "
            "created_by TEXT NOT NULL DEFAULT '', description TEXT NOT NULL DEFAULT '')"
        )
        self._connection.execute(
            "CREATE INDEX IF NOT EXISTS ix_versions_created_at ON versions (created_at)"
        )
        self._connection.commit()

    def __contains__(self, version_id: object) -> bool:
        if not isinstance(version_id, str):
            return False
        cursor = self._connection.execute(
            "SELECT 1 FROM versions WHERE version_id = ? LIMIT 1", (version_id,)
        )
        return cursor.fetchone() is not None

    def __len__(self) -> int:
        cursor = self._connection.execute("SELECT COUNT(1) FROM versions")
        value = cursor.fetchone()
        return int(value[0]) if value else 0

    def add(self, version: Version) -> None:
        if version.version_id in self:
            raise DuplicateRecordError(f"Version {version.version_id!r} already exists")
        self._connection.execute(
            "INSERT INTO versions (version_id, created_at, created_by, description) "
            "VALUES (?, ?, ?, ?)",
            (
                version.version_id,
                format_timestamp(version.created_at),
                version.created_by,
                version.description,
            ),
        )

    def get(self, version_id: str) -> Version:
        cursor = self._connection.execute(
            "SELECT * FROM versions WHERE version_id = ?", (version_id,)
        )
        row = cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(f"Version {version_id!r} not found")
        return self._from_row(row)

    def list(self) -> List[Version]:
        cursor = self._connection.execute(
            "SELECT * FROM versions ORDER BY created_at, rowid"
        )
        return [self._from_row(row) for row in cursor.fetchall()]

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Version:
        return Version(
            version_id=row["version_id"],
            created_at=parse_timestamp(row["created_at"]),
            created_by=row["created_by"],
            description=row["description"],
        )


class HistoryTable(Generic[T]):
    """Entity rows frozen into a version.

    The same entity id appears once per version; parents are plain values
    since the live rows may have been deleted since.
    """

    def __init__(self, connection: sqlite3.Connection, entity_type: EntityType) -> None:
        self._connection = connection
        self.entity_type = entity_type
        self._table = f"{entity_type.value}_history"
        self._columns = column_names(entity_type)
        definitions = ", ".join(_history_column_definition(name) for name in self._columns)
        self._connection.execute(
            f"CREATE TABLE IF NOT EXISTS {self._table} ("
            "history_pk TEXT PRIMARY KEY, "
            "version_id TEXT NOT NULL REFERENCES versions(version_id) ON DELETE CASCADE, "
            f"{definitions})"
        )
        self._connection.execute(
            f"CREATE INDEX IF NOT EXISTS ix_{self._table}_version_id_id "
            f"ON {self._table} (version_id, id)"
        )
        self._connection.commit()

    def __len__(self) -> int:
        cursor = self._connection.execute(f"SELECT COUNT(1) FROM {self._table}")
        value = cursor.fetchone()
        return int(value[0]) if value else 0

    def add(self, version_id: str, item: T) -> None:
        columns = ("history_pk", "version_id", *self._columns)
        placeholders = ", ".join("?" for _ in columns)
        self._connection.execute(
            f"INSERT INTO {self._table} ({', '.join(columns)}) VALUES ({placeholders})",
            (
                str(uuid4()),
                version_id,
                *(_to_column(name, getattr(item, name)) for name in self._columns),
            ),
        )

    def get(self, version_id: str, item_id: str) -> T:
        cursor = self._connection.execute(
            f"SELECT * FROM {self._table} WHERE version_id = ? AND id = ?",
            (version_id, item_id),
        )
        row = cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(
                f"{self.entity_type.value} with id {item_id!r} not found in version {version_id!r}"
            )
        return _entity_from_row(self.entity_type, self._columns, row)  # type: ignore[return-value]

    def list(self, version_id: str, parent_id: Optional[str] = None) -> List[T]:
        if parent_id is not None and self.entity_type.parent_type is not None:
            cursor = self._connection.execute(
                f"SELECT * FROM {self._table} WHERE version_id = ? AND parent_id = ? "
                "ORDER BY created_at, rowid",
                (version_id, parent_id),
            )
        else:
            cursor = self._connection.execute(
                f"SELECT * FROM {self._table} WHERE version_id = ? "
                "ORDER BY created_at, rowid",
                (version_id,),
            )
        return [
            _entity_from_row(self.entity_type, self._columns, row)  # type: ignore[misc]
            for row in cursor.fetchall()
        ]


class ConfigDatabase:
    """Convenience facade bundling the SQLite tables of the editor."""

    def __init__(self, path: str) -> None:
        connection = sqlite3.connect(path, check_same_thread=False)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        self._connection = connection
        self.path = path
        self.lines = SQLiteEntityTable[Line](connection, EntityType.LINE)
        self.stations = SQLiteEntityTable[Station](connection, EntityType.STATION)
        self.tools = SQLiteEntityTable[Tool](connection, EntityType.TOOL)
        self.operations = SQLiteEntityTable[Operation](connection, EntityType.OPERATION)
        self.change_log = ChangeLogTable(connection)
        self.metadata = AppMetadataTable(connection)
        self.versions = VersionTable(connection)
        self.line_history = HistoryTable[Line](connection, EntityType.LINE)
        self.station_history = HistoryTable[Station](connection, EntityType.STATION)
        self.tool_history = HistoryTable[Tool](connection, EntityType.TOOL)
        self.operation_history = HistoryTable[Operation](connection, EntityType.OPERATION)
        self._tables: Dict[EntityType, SQLiteEntityTable] = {
            EntityType.LINE: self.lines,
            EntityType.STATION: self.stations,
            EntityType.TOOL: self.tools,
            EntityType.OPERATION: self.operations,
        }
        self._history: Dict[EntityType, HistoryTable] = {
            EntityType.LINE: self.line_history,
            EntityType.STATION: self.station_history,
            EntityType.TOOL: self.tool_history,
            EntityType.OPERATION: self.operation_history,
        }
        logger.debug("Opened configuration database at %s", path)

    def table(self, entity_type: EntityType | str) -> SQLiteEntityTable:
        """Dispatch an entity type string to its table."""

        return self._tables[EntityType.parse(entity_type)]

    def history(self, entity_type: EntityType | str) -> HistoryTable:
        return self._history[EntityType.parse(entity_type)]

    @contextmanager
    def transaction(self) -> Iterator["ConfigDatabase"]:
        try:
            yield self
        except BaseException:
            self._connection.rollback()
            raise
        else:
            self._connection.commit()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> "ConfigDatabase":  # pragma: no cover - convenience
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[BaseException],
    ) -> None:  # pragma: no cover - convenience
        self.close()


__all__ = [
    "SQLiteEntityTable",
    "ChangeLogTable",
    "AppMetadataTable",
    "VersionTable",
    "HistoryTable",
    "ConfigDatabase",
    "GLOBAL_METADATA_KEY",
]
