"""Line configuration editor for manufacturing lines.

The package manages a four level tree of lines, stations, tools and
operations stored in SQLite, keeps a change feed so concurrent editors can
reconcile their unsaved drafts, and serves a FastAPI web interface.
"""

from .config import Settings, save_env_file
from .domain import (
    Breadcrumb,
    ChangeSet,
    ConfigEntity,
    EntityChange,
    EntityType,
    Line,
    Operation,
    SequenceGroup,
    Station,
    StatusColor,
    Tool,
    Version,
)
from .drafts import DraftConflict, DraftStore, group_conflicts, reconcile_drafts, synchronize_drafts
from .i18n import translate
from .logging_config import setup_logging
from .errors import (
    ConflictError,
    DuplicateRecordError,
    RecordNotFoundError,
    RepositoryError,
    UnknownEntityTypeError,
)
from .services import ConfigService, HierarchyResponse, detect_entity_type
from .storage import ConfigDatabase

__all__ = [
    "Breadcrumb",
    "ChangeSet",
    "ConfigDatabase",
    "ConfigEntity",
    "ConfigService",
    "ConflictError",
    "DraftConflict",
    "DraftStore",
    "DuplicateRecordError",
    "EntityChange",
    "EntityType",
    "HierarchyResponse",
    "Line",
    "Operation",
    "RecordNotFoundError",
    "RepositoryError",
    "SequenceGroup",
    "Settings",
    "Station",
    "StatusColor",
    "Tool",
    "UnknownEntityTypeError",
    "Version",
    "detect_entity_type",
    "group_conflicts",
    "reconcile_drafts",
    "save_env_file",
    "setup_logging",
    "synchronize_drafts",
    "translate",
]
