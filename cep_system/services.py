"""Service layer that implements the editor's use-cases."""

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Collection, Dict, List, Mapping, Optional, Tuple, Union
from uuid import uuid4

from .domain import (
    Breadcrumb,
    ChangeOperation,
    ChangeSet,
    ConfigEntity,
    EntityChange,
    EntityType,
    MODELS,
    SequenceGroup,
    StatusColor,
    Version,
    coerce_field_value,
    editable_fields,
    entity_from_dict,
    entity_to_dict,
    format_timestamp,
    parse_timestamp,
)
from .errors import ConflictError, DuplicateRecordError, RecordNotFoundError
from .storage import ConfigDatabase

logger = logging.getLogger(__name__)

DRAFT_FILTER = "draft"
STATUS_FILTERS = frozenset(
    {color.value for color in StatusColor if color.value} | {DRAFT_FILTER}
)

# Marker fields that identify the kind of a pasted document without an
# explicit ``entity_type`` key.
_TYPE_MARKERS = (
    (EntityType.LINE, "assembly_area"),
    (EntityType.STATION, "station_type"),
    (EntityType.TOOL, "tool_class"),
    (EntityType.OPERATION, "decision_criteria"),
)


@dataclass(slots=True)
class HierarchyResponse:
    """An entity with its nested descendants and its ancestor chain."""

    data: Dict[str, Any]
    ancestors: List[Dict[str, Any]] = field(default_factory=list)
    global_last_updated_at: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "ancestors": self.ancestors,
            "global_last_updated_at": self.global_last_updated_at,
        }


def _require_user(user: str, action: str) -> str:
    name = (user or "").strip()
    if not name:
        raise ValueError(f"A user name is required for {action}")
    return name


def entity_label(entity: ConfigEntity) -> str:
    return entity.name or getattr(entity, "description", "") or entity.id


class ConfigService:
    """Facade that exposes the configuration editor use-cases to clients."""

    def __init__(self, database: Optional[ConfigDatabase] = None) -> None:
        self.database = database or ConfigDatabase(":memory:")

    # ------------------------------------------------------------------
    # Entity CRUD
    # ------------------------------------------------------------------
    def get_entities(
        self,
        entity_type: EntityType | str,
        parent_id: Optional[str] = None,
        *,
        status: Optional[str] = None,
        draft_ids: Collection[str] = (),
    ) -> List[ConfigEntity]:
        kind = EntityType.parse(entity_type)
        if not parent_id and kind.parent_type is not None:
            raise ValueError(f"A parent id is required to list {kind.value} entities")
        entities = self.database.table(kind).list(parent_id or None)
        if not status:
            return entities
        status = status.strip().lower()
        if status not in STATUS_FILTERS:
            raise ValueError(f"Unknown status filter {status!r}")
        if status == DRAFT_FILTER:
            return [entity for entity in entities if entity.id in draft_ids]
        return [entity for entity in entities if entity.status_color == status]

    def get_entity_details(self, entity_type: EntityType | str, entity_id: str) -> ConfigEntity:
        return self.database.table(entity_type).get(entity_id)

    def create_entity(
        self,
        user: str,
        entity_type: EntityType | str,
        parent_id: Optional[str] = None,
    ) -> ConfigEntity:
        user = _require_user(user, "creation")
        kind = EntityType.parse(entity_type)
        parent_type = kind.parent_type
        if parent_type is not None:
            if not parent_id:
                raise ValueError(f"A parent id is required for {kind.value}")
            if parent_id not in self.database.table(parent_type):
                raise RecordNotFoundError(
                    f"{parent_type.value} {parent_id!r} does not exist"
                )
        with self.database.transaction() as database:
            now = database.metadata.touch()
            entity = MODELS[kind](
                id=str(uuid4()),
                parent_id=parent_id if parent_type is not None else None,
                created_at=now,
                updated_at=now,
                created_by=user,
                updated_by=user,
            )
            database.table(kind).add(entity)
        logger.info("%s %s created by %s", kind.value, entity.id, user)
        return self.get_entity_details(kind, entity.id)

    def update_entity(
        self,
        user: str,
        entity_type: EntityType | str,
        entity_id: str,
        updates: Mapping[str, object],
        *,
        last_known_update: Optional[str] = None,
    ) -> ConfigEntity:
        """Assign field values and return the reloaded entity.

        When ``last_known_update`` is given the write is rejected if the
        entity was changed after that moment.
        """

        user = _require_user(user, "update")
        kind = EntityType.parse(entity_type)
        allowed = editable_fields(kind)
        unknown = sorted(name for name in updates if name not in allowed)
        if unknown:
            raise ValueError(f"Unknown {kind.value} field(s): {', '.join(unknown)}")
        values = {name: coerce_field_value(name, value) for name, value in updates.items()}
        known_at = parse_timestamp(last_known_update) if last_known_update else None
        table = self.database.table(kind)
        with self.database.transaction() as database:
            current = table.get(entity_id)
            if known_at is not None and current.updated_at > known_at:
                logger.warning(
                    "Rejected update of %s %s: stored %s is newer than client %s",
                    kind.value,
                    entity_id,
                    format_timestamp(current.updated_at),
                    format_timestamp(known_at),
                )
                raise ConflictError(
                    kind.value,
                    entity_id,
                    format_timestamp(current.updated_at),
                    format_timestamp(known_at),
                )
            now = database.metadata.touch()
            table.update_fields(
                entity_id, {**values, "updated_by": user, "updated_at": now}
            )
            database.change_log.append(
                entity_id,
                kind.value,
                ChangeOperation.UPDATE,
                now,
                changed_by=user,
                changed_fields=values,
            )
        return table.get(entity_id)

    def delete_entity(
        self, user: str, entity_type: EntityType | str, entity_id: str
    ) -> List[str]:
        """Delete an entity with its subtree and return the removed ids."""

        user = _require_user(user, "deletion")
        kind = EntityType.parse(entity_type)
        table = self.database.table(kind)
        if entity_id not in table:
            raise RecordNotFoundError(f"No {kind.value} with id {entity_id!r} to delete")
        removed: List[Tuple[EntityType, str]] = [(kind, entity_id)]
        level_ids = [entity_id]
        child = kind.child_type
        while child is not None and level_ids:
            level_ids = self.database.table(child).child_ids(level_ids)
            removed.extend((child, child_id) for child_id in level_ids)
            child = child.child_type
        with self.database.transaction() as database:
            # children go with the parent through ON DELETE CASCADE
            table.remove(entity_id)
            now = database.metadata.touch()
            for removed_type, removed_id in removed:
                database.change_log.append(
                    removed_id, removed_type.value, ChangeOperation.DELETE, now, changed_by=user
                )
        logger.info(
            "%s %s deleted by %s (%d entities removed)", kind.value, entity_id, user, len(removed)
        )
        return [removed_id for _, removed_id in removed]

    # ------------------------------------------------------------------
    # Hierarchy and navigation
    # ------------------------------------------------------------------
    def build_tree(self, entity_type: EntityType | str, entity_id: str) -> Dict[str, Any]:
        kind = EntityType.parse(entity_type)
        return self._tree(kind, self.get_entity_details(kind, entity_id))

    def _tree(self, kind: EntityType, entity: ConfigEntity) -> Dict[str, Any]:
        node = entity_to_dict(entity)
        child = kind.child_type
        if child is not None and kind.children_key is not None:
            node[kind.children_key] = [
                self._tree(child, item) for item in self.database.table(child).list(entity.id)
            ]
        return node

    def ancestors(self, entity_type: EntityType | str, entity_id: str) -> List[ConfigEntity]:
        """Parents of an entity, ordered from the line downwards."""

        kind = EntityType.parse(entity_type)
        entity = self.get_entity_details(kind, entity_id)
        chain: List[ConfigEntity] = []
        parent_type = kind.parent_type
        parent_id = entity.parent_id
        while parent_type is not None and parent_id:
            parent = self.get_entity_details(parent_type, parent_id)
            chain.append(parent)
            parent_type = parent_type.parent_type
            parent_id = parent.parent_id
        chain.reverse()
        return chain

    def get_hierarchy(self, entity_type: EntityType | str, entity_id: str) -> HierarchyResponse:
        return HierarchyResponse(
            data=self.build_tree(entity_type, entity_id),
            ancestors=[entity_to_dict(item) for item in self.ancestors(entity_type, entity_id)],
            global_last_updated_at=self.global_last_update(),
        )

    def breadcrumbs(self, entity_type: EntityType | str, entity_id: str) -> List[Breadcrumb]:
        kind = EntityType.parse(entity_type)
        entity = self.get_entity_details(kind, entity_id)
        return [
            Breadcrumb(entity_type=item.entity_type, id=item.id, label=entity_label(item))
            for item in [*self.ancestors(kind, entity_id), entity]
        ]

    def operations_by_sequence_group(self, station_id: str) -> List[SequenceGroup]:
        """All operations below a station, grouped and ordered by sequence."""

        self.get_entity_details(EntityType.STATION, station_id)
        groups: "OrderedDict[str, SequenceGroup]" = OrderedDict()
        for tool in self.database.tools.list(station_id):
            for operation in self.database.operations.list(tool.id):
                key = operation.sequence_group
                groups.setdefault(key, SequenceGroup(name=key)).operations.append(operation)
        ordered = sorted(groups.values(), key=lambda group: (group.name == "", group.name))
        for group in ordered:
            group.operations.sort(key=lambda operation: operation.sequence)
        return ordered

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------
    def global_last_update(self) -> str:
        return format_timestamp(self.database.metadata.last_update())

    def get_changes_since(self, timestamp: str) -> ChangeSet:
        try:
            reference = parse_timestamp(timestamp)
        except ValueError as exc:
            raise ValueError(f"Invalid last known timestamp: {exc}") from exc
        current = self.database.metadata.last_update()
        changes = ChangeSet(new_global_last_updated_at=format_timestamp(current))
        if current <= reference:
            return changes
        updated: Dict[str, "OrderedDict[str, EntityChange]"] = {}
        for entry in self.database.change_log.since(reference):
            if entry.operation_type is ChangeOperation.SYSTEM_EVENT:
                changes.system_events.append(f"{entry.entity_type}:{entry.entity_id}")
            elif entry.operation_type is ChangeOperation.DELETE:
                changes.deleted_entities.setdefault(entry.entity_type, []).append(entry.entity_id)
                updated.get(entry.entity_type, OrderedDict()).pop(entry.entity_id, None)
            else:
                bucket = updated.setdefault(entry.entity_type, OrderedDict())
                change = bucket.setdefault(entry.entity_id, EntityChange(id=entry.entity_id))
                change.changed_fields.update(entry.changed_fields)
        changes.updated_entities = {
            entity_type: list(bucket.values())
            for entity_type, bucket in updated.items()
            if bucket
        }
        return changes

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------
    def create_version(self, user: str, description: str = "") -> Version:
        """Freeze the current tree into a new version."""

        user = _require_user(user, "creating a version")
        version = Version(
            version_id=str(uuid4()), created_by=user, description=(description or "").strip()
        )
        with self.database.transaction() as database:
            database.versions.add(version)
            for kind in EntityType:
                history = database.history(kind)
                for entity in database.table(kind).list():
                    history.add(version.version_id, entity)
        logger.info("Version %s created by %s", version.version_id, user)
        return version

    def list_versions(self) -> List[Version]:
        return self.database.versions.list()

    def get_version(self, version_id: str) -> Version:
        return self.database.versions.get(version_id)

    def get_versioned_entity(
        self, version_id: str, entity_type: EntityType | str, entity_id: str
    ) -> ConfigEntity:
        kind = EntityType.parse(entity_type)
        self.get_version(version_id)
        return self.database.history(kind).get(version_id, entity_id)

    def get_versioned_entities(
        self,
        version_id: str,
        entity_type: EntityType | str,
        parent_id: Optional[str] = None,
    ) -> List[ConfigEntity]:
        kind = EntityType.parse(entity_type)
        if not parent_id and kind.parent_type is not None:
            raise ValueError(f"A parent id is required to list {kind.value} entities")
        self.get_version(version_id)
        return self.database.history(kind).list(version_id, parent_id or None)

    def get_versioned_hierarchy(
        self, version_id: str, entity_type: EntityType | str, entity_id: str
    ) -> Dict[str, Any]:
        """Nested tree of an entity as it was stored in a version."""

        kind = EntityType.parse(entity_type)
        root = self.get_versioned_entity(version_id, kind, entity_id)
        return self._versioned_tree(version_id, kind, root)

    def _versioned_tree(
        self, version_id: str, kind: EntityType, entity: ConfigEntity
    ) -> Dict[str, Any]:
        node = entity_to_dict(entity)
        child = kind.child_type
        if child is not None and kind.children_key is not None:
            node[kind.children_key] = [
                self._versioned_tree(version_id, child, item)
                for item in self.database.history(child).list(version_id, entity.id)
            ]
        return node

    def export_versioned_hierarchy(
        self,
        version_id: str,
        entity_type: EntityType | str,
        entity_id: str,
        path: Union[str, Path],
    ) -> Path:
        if not str(path):
            raise ValueError("Export path is empty")
        document = self.get_versioned_hierarchy(version_id, entity_type, entity_id)
        target = Path(path)
        target.write_text(json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info(
            "Hierarchy of %s %s in version %s exported to %s",
            entity_type,
            entity_id,
            version_id,
            target,
        )
        return target

    # ------------------------------------------------------------------
    # Export, import, copy and paste
    # ------------------------------------------------------------------
    def hierarchy_to_json(self, entity_type: EntityType | str, entity_id: str) -> str:
        return json.dumps(self.build_tree(entity_type, entity_id), indent=2, ensure_ascii=False)

    def export_hierarchy(
        self, entity_type: EntityType | str, entity_id: str, path: Union[str, Path]
    ) -> Path:
        if not str(path):
            raise ValueError("Export path is empty")
        target = Path(path)
        target.write_text(self.hierarchy_to_json(entity_type, entity_id), encoding="utf-8")
        logger.info("Hierarchy of %s %s exported to %s", entity_type, entity_id, target)
        return target

    def import_hierarchy(self, user: str, path: Union[str, Path]) -> ConfigEntity:
        if not str(path):
            raise ValueError("Import path is empty")
        source = Path(path)
        logger.info("Starting import from %s", source)
        try:
            document = json.loads(source.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"{source} does not contain valid JSON: {exc}") from exc
        return self.import_hierarchy_data(user, document)

    def import_hierarchy_data(self, user: str, document: Mapping[str, Any]) -> ConfigEntity:
        """Insert a hierarchy document keeping its original ids.

        The whole import is rolled back when any id already exists.
        """

        user = _require_user(user, "import")
        if not isinstance(document, Mapping):
            raise ValueError("An import document must be a JSON object")
        kind = detect_entity_type(document)
        parent_id = document.get("parent_id") if kind.parent_type is not None else None
        self._check_parent(kind, parent_id)
        try:
            with self.database.transaction() as database:
                root = self._insert_original(kind, document, parent_id)
                now = database.metadata.touch()
                database.change_log.append(
                    "", "system", ChangeOperation.SYSTEM_EVENT, now, changed_by=user
                )
        except (DuplicateRecordError, ValueError) as exc:
            logger.warning("Import aborted, rolled back: %s", exc)
            raise
        logger.info("Import of %s %s committed", kind.value, root.id)
        return self.get_entity_details(kind, root.id)

    def _insert_original(
        self, kind: EntityType, document: Mapping[str, Any], parent_id: Optional[str]
    ) -> ConfigEntity:
        entity = entity_from_dict(kind, dict(document))
        if kind.parent_type is not None:
            entity.parent_id = parent_id
        self.database.table(kind).add(entity)
        for child, item in _child_documents(kind, document):
            self._insert_original(child, item, entity.id)
        return entity

    def copy_hierarchy(self, entity_type: EntityType | str, entity_id: str) -> str:
        """Serialize a subtree for the clipboard."""

        return self.hierarchy_to_json(entity_type, entity_id)

    def paste_hierarchy(
        self,
        user: str,
        expected_type: EntityType | str,
        payload: str,
        parent_id: Optional[str] = None,
    ) -> ConfigEntity:
        """Insert a copied subtree with fresh ids below ``parent_id``."""

        user = _require_user(user, "paste")
        expected = EntityType.parse(expected_type)
        try:
            document = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Clipboard does not contain valid JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise ValueError("Clipboard does not contain a JSON object")
        actual = detect_entity_type(document)
        if actual is not expected:
            raise ValueError(
                f"Type mismatch: clipboard contains {actual.value!r} but expected {expected.value!r}"
            )
        parent = parent_id if expected.parent_type is not None else None
        self._check_parent(expected, parent)
        with self.database.transaction() as database:
            now = database.metadata.touch()
            root = self._insert_copy(expected, document, parent, user, now)
            database.change_log.append(
                "", "system", ChangeOperation.SYSTEM_EVENT, now, changed_by=user
            )
        logger.info("Pasted %s as %s", expected.value, root.id)
        return self.get_entity_details(expected, root.id)

    def _insert_copy(
        self,
        kind: EntityType,
        document: Mapping[str, Any],
        parent_id: Optional[str],
        user: str,
        now: datetime,
    ) -> ConfigEntity:
        values = {name: document[name] for name in editable_fields(kind) if name in document}
        entity = entity_from_dict(kind, {**values, "id": str(uuid4())})
        entity.parent_id = parent_id
        entity.created_at = entity.updated_at = now
        entity.created_by = entity.updated_by = user
        self.database.table(kind).add(entity)
        for child, item in _child_documents(kind, document):
            self._insert_copy(child, item, entity.id, user, now)
        return entity

    def _check_parent(self, kind: EntityType, parent_id: Optional[str]) -> None:
        parent_type = kind.parent_type
        if parent_type is None:
            return
        if not parent_id:
            raise ValueError(f"A parent id is required for {kind.value}")
        if parent_id not in self.database.table(parent_type):
            raise RecordNotFoundError(f"{parent_type.value} {parent_id!r} does not exist")


def _child_documents(
    kind: EntityType, document: Mapping[str, Any]
) -> List[Tuple[EntityType, Mapping[str, Any]]]:
    child = kind.child_type
    if child is None or kind.children_key is None:
        return []
    items = document.get(kind.children_key) or []
    if not isinstance(items, list) or not all(isinstance(item, Mapping) for item in items):
        raise ValueError(f"{kind.value} children must be JSON objects")
    return [(child, item) for item in items]


def detect_entity_type(document: Mapping[str, Any]) -> EntityType:
    """Work out which entity kind a hierarchy document describes."""

    declared = document.get("entity_type")
    if declared:
        return EntityType.parse(declared)
    for kind in EntityType:
        if kind.children_key is not None and kind.children_key in document:
            return kind
    for kind, marker in _TYPE_MARKERS:
        if marker in document:
            return kind
    raise ValueError("Could not determine entity type from document")


__all__ = [
    "ConfigService",
    "HierarchyResponse",
    "detect_entity_type",
    "entity_label",
    "DRAFT_FILTER",
    "STATUS_FILTERS",
]
