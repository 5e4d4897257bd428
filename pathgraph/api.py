"""
HTTP surface for learning paths.

Mount with::

    app = create_app()                      # settings from the environment
    app.include_router(create_router(store, settings))

Every failure answers ``{"error": message}``: 404 for an unknown path (or
an unknown node on the xapi route), 400 for a malformed request or a path
without a record store, 500 for anything else.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Body, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pathgraph import __version__
from pathgraph.config import Settings, load_settings
from pathgraph.editor.panel import ContentItem
from pathgraph.models import LearningPath, Learner
from pathgraph.node_types import NodeTypeRegistry, default_registry
from pathgraph.storage import PathNotFound, PathStore
from pathgraph.traversal import build_play_order
from pathgraph.validator import GraphValidator
from pathgraph.xapi import build_statement, send_statement

logger = logging.getLogger(__name__)

ROUTE_PREFIX = "/learning-paths"

ContentCatalog = Callable[[], List[ContentItem]]


class XapiRequest(BaseModel):
    """Body of ``POST /api/paths/{id}/xapi``."""

    model_config = ConfigDict(populate_by_name=True)

    verb: str
    node_id: str = Field(alias="nodeId")
    result: Optional[Dict[str, Any]] = None
    extensions: Optional[Dict[str, Any]] = None
    learner: Optional[Learner] = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _not_found(exc: PathNotFound) -> JSONResponse:
    logger.info("%s", exc)
    return _error(404, "Not found")


def _failure(action: str, exc: Exception) -> JSONResponse:
    logger.exception("Failed to %s: %s", action, exc)
    return _error(500, str(exc))


def create_router(
    store: PathStore,
    settings: Optional[Settings] = None,
    registry: Optional[NodeTypeRegistry] = None,
    content_catalog: Optional[ContentCatalog] = None,
) -> APIRouter:
    """Build the ``/learning-paths`` router over *store*."""
    settings = settings or Settings()
    registry = registry or default_registry()
    validator = GraphValidator(registry)
    router = APIRouter(prefix=ROUTE_PREFIX)

    # --- catalog ---

    @router.get("/api/node-types")
    def node_types():
        return registry.as_table()

    @router.get("/api/content")
    def content():
        items = content_catalog() if content_catalog is not None else []
        return [{"id": item.id, "title": item.title} for item in items]

    # --- CRUD ---

    @router.get("/api/paths")
    def list_paths():
        try:
            return store.list()
        except Exception as exc:
            return _failure("list paths", exc)

    @router.post("/api/paths", status_code=201)
    def create_path(data: Optional[Dict[str, Any]] = Body(default=None)):
        try:
            return store.create(data or {})
        except ValidationError as exc:
            return _error(400, str(exc))
        except Exception as exc:
            return _failure("create path", exc)

    @router.get("/api/paths/{path_id}")
    def get_path(path_id: str):
        try:
            return store.get(path_id)
        except PathNotFound as exc:
            return _not_found(exc)
        except Exception as exc:
            return _failure("load path", exc)

    @router.put("/api/paths/{path_id}")
    def update_path(path_id: str, data: Optional[Dict[str, Any]] = Body(default=None)):
        try:
            return store.update(path_id, data or {})
        except PathNotFound as exc:
            return _not_found(exc)
        except ValidationError as exc:
            return _error(400, str(exc))
        except Exception as exc:
            return _failure("update path", exc)

    @router.delete("/api/paths/{path_id}")
    def delete_path(path_id: str):
        try:
            store.delete(path_id)
        except PathNotFound as exc:
            return _not_found(exc)
        except Exception as exc:
            return _failure("delete path", exc)
        return {"success": True}

    @router.post("/api/paths/{path_id}/duplicate", status_code=201)
    def duplicate_path(path_id: str):
        try:
            return store.duplicate(path_id)
        except PathNotFound as exc:
            return _not_found(exc)
        except Exception as exc:
            return _failure("duplicate path", exc)

    # --- analysis ---

    @router.post("/api/paths/{path_id}/validate")
    def validate_path(path_id: str):
        try:
            path = store.load(path_id)
        except PathNotFound as exc:
            return _not_found(exc)
        except Exception as exc:
            return _failure("validate path", exc)
        return validator.validate(path).model_dump()

    @router.get("/api/paths/{path_id}/order")
    def play_order(path_id: str):
        try:
            path = store.load(path_id)
        except PathNotFound as exc:
            return _not_found(exc)
        except Exception as exc:
            return _failure("linearize path", exc)
        return {
            "order": [
                {"id": n.id, "type": n.type, "title": validator.display_title(n)}
                for n in build_play_order(path, registry)
            ]
        }

    # --- statement proxy ---

    @router.post("/api/paths/{path_id}/xapi")
    def forward_statement(path_id: str, data: Optional[Dict[str, Any]] = Body(default=None)):
        try:
            path: LearningPath = store.load(path_id)
        except PathNotFound as exc:
            return _not_found(exc)
        except Exception as exc:
            return _failure("load path", exc)

        if path.lrs_config is None or not path.lrs_config.endpoint:
            return _error(400, "No LRS configured for this learning path")

        try:
            req = XapiRequest.model_validate(data or {})
        except ValidationError as exc:
            return _error(400, str(exc))

        node = path.node(req.node_id)
        if node is None:
            return _error(404, "Node not found in learning path")

        statement = build_statement(
            req.learner, req.verb, path, node,
            result=req.result, extensions=req.extensions, base_url=settings.base_url,
        )
        lrs_result = send_statement(statement, path.lrs_config, settings.request_timeout)
        return {"statement": statement, "lrsResult": lrs_result.to_dict()}

    return router


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[PathStore] = None,
    content_catalog: Optional[ContentCatalog] = None,
) -> FastAPI:
    """FastAPI application serving the learning-path API."""
    settings = settings or load_settings()
    store = store or PathStore(settings.db_path)
    app = FastAPI(title="Learning Path Graph Engine", version=__version__)
    app.include_router(create_router(store, settings, content_catalog=content_catalog))
    app.state.settings = settings
    app.state.store = store
    logger.info("API ready on store %s", settings.db_path)
    return app
