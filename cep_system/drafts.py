"""Local drafts and their reconciliation against the server change feed.

A draft is a set of field values the user typed but has not saved yet. When
the client synchronizes, every draft is compared with what other users
changed since the last sync: drafts of deleted entities are dropped and
every field that was edited on both sides is reported as a conflict.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .domain import ChangeSet, EntityType
from .errors import RecordNotFoundError
from .services import ConfigService, entity_label

NameLookup = Callable[[EntityType, str], str]


@dataclass(slots=True)
class DraftConflict:
    """A field edited locally that another user changed on the server."""

    entity_type: EntityType
    entity_id: str
    entity_label: str
    field: str
    server_value: object


class DraftStore:
    """Unsaved field values keyed by entity id, plus the last sync marker."""

    def __init__(self) -> None:
        self._drafts: Dict[str, Dict[str, str]] = {}
        self.last_update: Optional[str] = None

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._drafts

    def __len__(self) -> int:
        return len(self._drafts)

    def save(self, entity_id: str, values: Mapping[str, object]) -> Dict[str, str]:
        """Merge values into the draft of an entity and return the draft."""

        draft = dict(self.get(entity_id))
        draft.update({name: "" if value is None else str(value) for name, value in values.items()})
        self._drafts[entity_id] = draft
        return draft

    def get(self, entity_id: str) -> Dict[str, str]:
        return dict(self._drafts.get(entity_id, {}))

    def discard(self, entity_id: str) -> bool:
        return self._drafts.pop(entity_id, None) is not None

    def ids(self) -> List[str]:
        return list(self._drafts)

    def as_dict(self) -> Dict[str, Dict[str, str]]:
        return {entity_id: dict(values) for entity_id, values in self._drafts.items()}


def reconcile_drafts(
    store: DraftStore, changes: ChangeSet, lookup_name: NameLookup
) -> List[DraftConflict]:
    """Apply a change set to the local drafts and return field collisions."""

    for ids in changes.deleted_entities.values():
        for entity_id in ids:
            store.discard(entity_id)
    conflicts: List[DraftConflict] = []
    for entity_type, entity_changes in changes.updated_entities.items():
        kind = EntityType.parse(entity_type)
        for change in entity_changes:
            draft = store.get(change.id)
            if not draft:
                continue
            colliding = [
                (name, value)
                for name, value in change.changed_fields.items()
                if draft.get(name)
            ]
            if not colliding:
                continue
            label = draft.get("name") or lookup_name(kind, change.id)
            conflicts.extend(
                DraftConflict(
                    entity_type=kind,
                    entity_id=change.id,
                    entity_label=label,
                    field=name,
                    server_value=value,
                )
                for name, value in colliding
            )
    store.last_update = changes.new_global_last_updated_at
    return conflicts


def group_conflicts(
    conflicts: List[DraftConflict],
) -> "OrderedDict[Tuple[EntityType, str], List[DraftConflict]]":
    """Group conflicts per entity for the conflict dialog, keeping feed order."""

    grouped: "OrderedDict[Tuple[EntityType, str], List[DraftConflict]]" = OrderedDict()
    for conflict in conflicts:
        grouped.setdefault((conflict.entity_type, conflict.entity_label), []).append(conflict)
    return grouped


def synchronize_drafts(service: ConfigService, store: DraftStore) -> List[DraftConflict]:
    """Fetch the changes since the last sync and reconcile the drafts.

    The first sync only records the current server timestamp.
    """

    if store.last_update is None:
        store.last_update = service.global_last_update()
        return []
    changes = service.get_changes_since(store.last_update)
    if changes.new_global_last_updated_at == store.last_update:
        return []

    def lookup_name(kind: EntityType, entity_id: str) -> str:
        try:
            return entity_label(service.get_entity_details(kind, entity_id))
        except RecordNotFoundError:
            return entity_id

    return reconcile_drafts(store, changes, lookup_name)


__all__ = [
    "DraftConflict",
    "DraftStore",
    "reconcile_drafts",
    "group_conflicts",
    "synchronize_drafts",
]
