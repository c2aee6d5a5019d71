"""FastAPI-based web interface for the line configuration editor."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from fastapi import Body, FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from ..config import Settings
from ..domain import (
    ConfigEntity,
    EntityType,
    StatusColor,
    editable_fields,
    entity_to_dict,
    format_timestamp,
)
from ..drafts import DraftConflict, DraftStore, group_conflicts, synchronize_drafts
from ..i18n import LANGUAGE_NAMES, normalize_language, translate
from ..errors import (
    ConflictError,
    DuplicateRecordError,
    RecordNotFoundError,
    UnknownEntityTypeError,
)
from ..sample_usage import build_demo_line
from ..services import ConfigService, STATUS_FILTERS
from ..storage import ConfigDatabase

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.filters["t"] = translate

USER_HEADER = "X-User"
USER_COOKIE = "user"
LANGUAGE_COOKIE = "lang"

logger = logging.getLogger(__name__)


def current_user(request: Request) -> str:
    """User for mutations: request header, then cookie, then configuration."""

    settings: Settings = request.app.state.settings
    return (
        request.headers.get(USER_HEADER)
        or request.cookies.get(USER_COOKIE)
        or settings.user
        or ""
    ).strip()


def current_language(request: Request) -> str:
    settings: Settings = request.app.state.settings
    return normalize_language(
        request.query_params.get("lang")
        or request.cookies.get(LANGUAGE_COOKIE)
        or settings.language
    )


def drafts_for(request: Request, user: str, *, create: bool = False) -> DraftStore:
    """Draft store of a user.

    Stores are only kept once the user saves a draft; reads of an unknown
    user get a fresh empty store that is not registered.
    """

    stores: Dict[str, DraftStore] = request.app.state.drafts
    store = stores.get(user)
    if store is not None:
        return store
    store = DraftStore()
    if create:
        # changes made before the first draft cannot collide with it
        service: ConfigService = request.app.state.service
        store.last_update = service.global_last_update()
        stores[user] = store
    return store


def conflict_to_dict(conflict: DraftConflict) -> Dict[str, Any]:
    return {
        "entity_type": conflict.entity_type.value,
        "entity_id": conflict.entity_id,
        "entity_label": conflict.entity_label,
        "field": conflict.field,
        "server_value": conflict.server_value,
    }


def _display_value(entity: ConfigEntity, name: str) -> str:
    value = getattr(entity, name)
    return "" if value is None else str(value)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    database = ConfigDatabase(settings.database_path)
    service = ConfigService(database)
    if settings.seed_demo_data:
        ensure_demo_data(service, settings.user or "demo")

    app = FastAPI(title="Line Configuration Editor")
    app.state.settings = settings
    app.state.service = service
    app.state.database = database
    app.state.drafts = {}

    @app.on_event("shutdown")
    async def shutdown_event() -> None:  # pragma: no cover - framework hook
        database.close()

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------
    @app.exception_handler(UnknownEntityTypeError)
    @app.exception_handler(RecordNotFoundError)
    async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(DuplicateRecordError)
    @app.exception_handler(ValueError)
    async def bad_request_handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    # ------------------------------------------------------------------
    # JSON API
    # ------------------------------------------------------------------
    @app.get("/api/last-update")
    async def api_last_update(request: Request):
        service: ConfigService = request.app.state.service
        return {"global_last_updated_at": service.global_last_update()}

    @app.get("/api/changes")
    async def api_changes(request: Request, since: str):
        service: ConfigService = request.app.state.service
        return service.get_changes_since(since).as_dict()

    @app.get("/api/entities/{entity_type}")
    async def api_list_entities(
        request: Request,
        entity_type: str,
        parent_id: Optional[str] = None,
        status: Optional[str] = None,
    ):
        service: ConfigService = request.app.state.service
        store = drafts_for(request, current_user(request))
        entities = service.get_entities(
            entity_type, parent_id, status=status, draft_ids=store.ids()
        )
        return {
            "items": [entity_to_dict(entity) for entity in entities],
            "global_last_updated_at": service.global_last_update(),
        }

    @app.post("/api/entities/{entity_type}", status_code=201)
    async def api_create_entity(
        request: Request,
        entity_type: str,
        parent_id: Optional[str] = Body(None, embed=True),
    ):
        service: ConfigService = request.app.state.service
        entity = service.create_entity(current_user(request), entity_type, parent_id)
        return entity_to_dict(entity)

    @app.post("/api/entities/{entity_type}/paste", status_code=201)
    async def api_paste(
        request: Request,
        entity_type: str,
        clipboard: str = Body(...),
        parent_id: Optional[str] = Body(None),
    ):
        service: ConfigService = request.app.state.service
        entity = service.paste_hierarchy(
            current_user(request), entity_type, clipboard, parent_id
        )
        return entity_to_dict(entity)

    @app.get("/api/entities/{entity_type}/{entity_id}")
    async def api_get_entity(request: Request, entity_type: str, entity_id: str):
        service: ConfigService = request.app.state.service
        return entity_to_dict(service.get_entity_details(entity_type, entity_id))

    @app.patch("/api/entities/{entity_type}/{entity_id}")
    async def api_update_entity(
        request: Request,
        entity_type: str,
        entity_id: str,
        updates: Dict[str, Any] = Body(...),
        last_known_update: Optional[str] = Body(None),
    ):
        service: ConfigService = request.app.state.service
        entity = service.update_entity(
            current_user(request),
            entity_type,
            entity_id,
            updates,
            last_known_update=last_known_update,
        )
        return entity_to_dict(entity)

    @app.delete("/api/entities/{entity_type}/{entity_id}")
    async def api_delete_entity(request: Request, entity_type: str, entity_id: str):
        service: ConfigService = request.app.state.service
        return {"deleted": service.delete_entity(current_user(request), entity_type, entity_id)}

    @app.get("/api/entities/{entity_type}/{entity_id}/hierarchy")
    async def api_hierarchy(request: Request, entity_type: str, entity_id: str):
        service: ConfigService = request.app.state.service
        return service.get_hierarchy(entity_type, entity_id).as_dict()

    @app.get("/api/entities/{entity_type}/{entity_id}/breadcrumbs")
    async def api_breadcrumbs(request: Request, entity_type: str, entity_id: str):
        service: ConfigService = request.app.state.service
        return [
            {"entity_type": crumb.entity_type.value, "id": crumb.id, "label": crumb.label}
            for crumb in service.breadcrumbs(entity_type, entity_id)
        ]

    @app.get("/api/entities/{entity_type}/{entity_id}/export")
    async def api_export(request: Request, entity_type: str, entity_id: str):
        service: ConfigService = request.app.state.service
        kind = EntityType.parse(entity_type)
        payload = service.hierarchy_to_json(kind, entity_id)
        filename = f"{kind.value}_{entity_id}.json"
        return Response(
            content=payload,
            media_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.get("/api/entities/{entity_type}/{entity_id}/copy")
    async def api_copy(request: Request, entity_type: str, entity_id: str):
        service: ConfigService = request.app.state.service
        return {"clipboard": service.copy_hierarchy(entity_type, entity_id)}

    @app.post("/api/import", status_code=201)
    async def api_import(request: Request, file: UploadFile = File(...)):
        service: ConfigService = request.app.state.service
        document = await _read_upload(file)
        entity = service.import_hierarchy_data(current_user(request), document)
        return entity_to_dict(entity)

    @app.get("/api/versions")
    async def api_list_versions(request: Request):
        service: ConfigService = request.app.state.service
        return [version.as_dict() for version in service.list_versions()]

    @app.post("/api/versions", status_code=201)
    async def api_create_version(
        request: Request, description: str = Body("", embed=True)
    ):
        service: ConfigService = request.app.state.service
        return service.create_version(current_user(request), description).as_dict()

    @app.get("/api/versions/{version_id}")
    async def api_get_version(request: Request, version_id: str):
        service: ConfigService = request.app.state.service
        return service.get_version(version_id).as_dict()

    @app.get("/api/versions/{version_id}/entities/{entity_type}")
    async def api_list_versioned_entities(
        request: Request, version_id: str, entity_type: str, parent_id: Optional[str] = None
    ):
        service: ConfigService = request.app.state.service
        entities = service.get_versioned_entities(version_id, entity_type, parent_id)
        return {"items": [entity_to_dict(entity) for entity in entities]}

    @app.get("/api/versions/{version_id}/entities/{entity_type}/{entity_id}")
    async def api_get_versioned_entity(
        request: Request, version_id: str, entity_type: str, entity_id: str
    ):
        service: ConfigService = request.app.state.service
        return entity_to_dict(service.get_versioned_entity(version_id, entity_type, entity_id))

    @app.get("/api/versions/{version_id}/entities/{entity_type}/{entity_id}/hierarchy")
    async def api_versioned_hierarchy(
        request: Request, version_id: str, entity_type: str, entity_id: str
    ):
        service: ConfigService = request.app.state.service
        return service.get_versioned_hierarchy(version_id, entity_type, entity_id)

    @app.get("/api/stations/{station_id}/sequence-groups")
    async def api_sequence_groups(request: Request, station_id: str):
        service: ConfigService = request.app.state.service
        return [
            {
                "name": group.name,
                "operations": [entity_to_dict(operation) for operation in group.operations],
            }
            for group in service.operations_by_sequence_group(station_id)
        ]

    @app.get("/api/drafts")
    async def api_drafts(request: Request):
        store = drafts_for(request, current_user(request))
        return {"last_update": store.last_update, "drafts": store.as_dict()}

    @app.post("/api/drafts/sync")
    async def api_sync_drafts(request: Request):
        service: ConfigService = request.app.state.service
        store = drafts_for(request, current_user(request))
        conflicts = synchronize_drafts(service, store)
        return {
            "last_update": store.last_update,
            "conflicts": [conflict_to_dict(conflict) for conflict in conflicts],
        }

    @app.put("/api/drafts/{entity_id}")
    async def api_save_draft(
        request: Request, entity_id: str, values: Dict[str, Any] = Body(...)
    ):
        store = drafts_for(request, current_user(request), create=True)
        return store.save(entity_id, values)

    @app.delete("/api/drafts/{entity_id}", status_code=204)
    async def api_discard_draft(request: Request, entity_id: str):
        store = drafts_for(request, current_user(request))
        if not store.discard(entity_id):
            raise RecordNotFoundError(f"No draft for {entity_id!r}")
        return Response(status_code=204)

    # ------------------------------------------------------------------
    # HTML pages
    # ------------------------------------------------------------------
    def page_context(request: Request, **values: Any) -> Dict[str, Any]:
        service: ConfigService = request.app.state.service
        user = current_user(request)
        store = drafts_for(request, user)
        conflicts = synchronize_drafts(service, store) if user else []
        context: Dict[str, Any] = {
            "user": user,
            "lang": current_language(request),
            "languages": LANGUAGE_NAMES,
            "status_filters": sorted(STATUS_FILTERS),
            "status_colors": [color.value for color in StatusColor],
            "conflict_groups": group_conflicts(conflicts),
            "draft_ids": set(store.ids()),
            "global_last_updated_at": service.global_last_update(),
        }
        context.update(values)
        return context

    @app.get("/")
    async def index(request: Request, status: Optional[str] = None):
        service: ConfigService = request.app.state.service
        store = drafts_for(request, current_user(request))
        lines = service.get_entities(
            EntityType.LINE, status=status or None, draft_ids=store.ids()
        )
        return templates.TemplateResponse(
            request,
            "index.html",
            page_context(request, lines=lines, status=status or ""),
        )

    @app.get("/language/{language}")
    async def switch_language(request: Request, language: str):
        response = RedirectResponse(request.headers.get("referer") or "/", status_code=303)
        response.set_cookie(LANGUAGE_COOKIE, normalize_language(language))
        return response

    @app.post("/user")
    async def switch_user(request: Request, name: str = Form(...)):
        response = RedirectResponse(request.headers.get("referer") or "/", status_code=303)
        response.set_cookie(USER_COOKIE, name.strip())
        return response

    @app.post("/ui/import")
    async def import_form(request: Request, file: UploadFile = File(...)):
        service: ConfigService = request.app.state.service
        document = await _read_upload(file)
        entity = service.import_hierarchy_data(current_user(request), document)
        return RedirectResponse(f"/ui/{entity.entity_type.value}/{entity.id}", status_code=303)

    @app.post("/ui/{entity_type}/create")
    async def create_entity_form(
        request: Request, entity_type: str, parent_id: Optional[str] = Form(None)
    ):
        service: ConfigService = request.app.state.service
        entity = service.create_entity(current_user(request), entity_type, parent_id or None)
        return RedirectResponse(f"/ui/{entity.entity_type.value}/{entity.id}", status_code=303)

    @app.post("/ui/{entity_type}/paste")
    async def paste_form(
        request: Request,
        entity_type: str,
        clipboard: str = Form(...),
        parent_id: Optional[str] = Form(None),
    ):
        service: ConfigService = request.app.state.service
        entity = service.paste_hierarchy(
            current_user(request), entity_type, clipboard, parent_id or None
        )
        return RedirectResponse(f"/ui/{entity.entity_type.value}/{entity.id}", status_code=303)

    @app.get("/ui/{entity_type}/{entity_id}")
    async def entity_page(
        request: Request, entity_type: str, entity_id: str, status: Optional[str] = None
    ):
        service: ConfigService = request.app.state.service
        kind = EntityType.parse(entity_type)
        entity = service.get_entity_details(kind, entity_id)
        store = drafts_for(request, current_user(request))
        draft = store.get(entity.id)
        form_fields = [
            {
                "name": name,
                "value": draft.get(name, _display_value(entity, name)),
                "drafted": name in draft,
            }
            for name in editable_fields(kind)
        ]
        children: List[ConfigEntity] = []
        if kind.child_type is not None:
            children = service.get_entities(
                kind.child_type, entity.id, status=status or None, draft_ids=store.ids()
            )
        sequence_groups = (
            service.operations_by_sequence_group(entity.id)
            if kind is EntityType.STATION
            else []
        )
        return templates.TemplateResponse(
            request,
            "entity.html",
            page_context(
                request,
                kind=kind,
                entity=entity,
                updated_at=format_timestamp(entity.updated_at),
                form_fields=form_fields,
                has_draft=bool(draft),
                breadcrumbs=service.breadcrumbs(kind, entity.id),
                children=children,
                child_kind=kind.child_type,
                sequence_groups=sequence_groups,
                status=status or "",
                save_conflict="conflict" in request.query_params,
                clipboard=service.copy_hierarchy(kind, entity.id),
            ),
        )

    @app.post("/ui/{entity_type}/{entity_id}")
    async def save_entity_form(request: Request, entity_type: str, entity_id: str):
        service: ConfigService = request.app.state.service
        kind = EntityType.parse(entity_type)
        entity = service.get_entity_details(kind, entity_id)
        user = current_user(request)
        store = drafts_for(request, user)
        form = await request.form()
        action = str(form.get("action") or "save")
        values = {
            name: str(form.get(name) or "")
            for name in editable_fields(kind)
            if name in form
        }
        edited = {
            name: value
            for name, value in values.items()
            if value != _display_value(entity, name)
        }
        target = f"/ui/{kind.value}/{entity.id}"

        if action == "discard" or not edited:
            store.discard(entity.id)
            return RedirectResponse(target, status_code=303)
        if action == "draft":
            drafts_for(request, user, create=True).save(entity.id, edited)
            return RedirectResponse(target, status_code=303)

        try:
            service.update_entity(
                user,
                kind,
                entity.id,
                edited,
                last_known_update=str(form.get("last_known_update") or "") or None,
            )
        except ConflictError:
            logger.info("Save of %s %s conflicted, kept as draft", kind.value, entity.id)
            drafts_for(request, user, create=True).save(entity.id, edited)
            return RedirectResponse(
                target + "?" + urlencode({"conflict": "1"}), status_code=303
            )
        store.discard(entity.id)
        return RedirectResponse(target, status_code=303)

    @app.post("/ui/{entity_type}/{entity_id}/delete")
    async def delete_entity_form(request: Request, entity_type: str, entity_id: str):
        service: ConfigService = request.app.state.service
        kind = EntityType.parse(entity_type)
        entity = service.get_entity_details(kind, entity_id)
        user = current_user(request)
        store = drafts_for(request, user)
        for removed_id in service.delete_entity(user, kind, entity.id):
            store.discard(removed_id)
        if kind.parent_type is None or not entity.parent_id:
            return RedirectResponse("/", status_code=303)
        return RedirectResponse(
            f"/ui/{kind.parent_type.value}/{entity.parent_id}", status_code=303
        )

    return app


async def _read_upload(file: UploadFile) -> Dict[str, Any]:
    raw = await file.read()
    try:
        document = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError(f"{file.filename or 'Upload'} does not contain valid JSON") from exc
    if not isinstance(document, dict):
        raise ValueError("An import document must be a JSON object")
    return document


def ensure_demo_data(service: ConfigService, user: str = "demo") -> None:
    if len(service.database.lines) > 0:
        return
    line = build_demo_line(service, user)
    logger.info("Seeded empty database with demo line %s", line.id)


__all__ = ["create_app", "ensure_demo_data", "current_user", "current_language"]
