from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import NoReturn, Optional

from memoryvista.settings import get_settings, load_env_once

# -------------------------------------------------------------------
# ENV LOADING (must run before anything reads env)
# -------------------------------------------------------------------
load_env_once()

from fastapi import FastAPI, Header, Query, Request  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402

from memoryvista import repo  # noqa: E402
from memoryvista.actor import require_actor  # noqa: E402
from memoryvista.db import db_ping, get_engine  # noqa: E402
from memoryvista.errors import ContentNotFound, PermissionDenied, WorkflowError  # noqa: E402
from memoryvista.logging_config import init_logging  # noqa: E402
from memoryvista.models import Role  # noqa: E402
from memoryvista.orchestrator import WorkflowOrchestrator  # noqa: E402
from memoryvista.permissions import PermissionOracle, seed_platform_admins  # noqa: E402
from memoryvista.schemas import (  # noqa: E402
    AllowedTransitionsOut,
    ChangeRequestIn,
    ContentCreateIn,
    ContentListOut,
    ContentOut,
    ErrorOut,
    GrantIn,
    GrantOut,
    HistoryEntryOut,
    ProfileCreateIn,
    ProfileOut,
    TransitionIn,
    UniversityCreateIn,
    UniversityOut,
)
from memoryvista.workflow import list_states  # noqa: E402

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    init_logging()
    initial_admins = get_settings().initial_platform_admin_list
    if initial_admins:
        seed_platform_admins(get_engine(), initial_admins)
        get_oracle().admin_cache.invalidate()
    yield


app = FastAPI(title="Memory Vista API", version="0.1.0", lifespan=lifespan)


# -----------------------------
# Services (one oracle per process so its admin cache is shared)
# -----------------------------
_oracle: Optional[PermissionOracle] = None
_orchestrator: Optional[WorkflowOrchestrator] = None


def get_oracle() -> PermissionOracle:
    global _oracle
    if _oracle is None:
        _oracle = PermissionOracle(get_engine(), admin_cache_ttl=get_settings().admin_cache_ttl_seconds)
    return _oracle


def get_orchestrator() -> WorkflowOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = WorkflowOrchestrator(
            get_engine(), get_oracle(), max_retries=get_settings().workflow_max_retries
        )
    return _orchestrator


def reset_services() -> None:
    global _oracle, _orchestrator
    _oracle = None
    _orchestrator = None


@app.exception_handler(WorkflowError)
async def workflow_error_handler(_request: Request, exc: WorkflowError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": exc.message},
    )


def _require_read(oracle: PermissionOracle, actor: str, resource_id: str) -> None:
    if not oracle.authorize_action(actor, resource_id, "read"):
        raise PermissionDenied()


def _hide_missing(oracle: PermissionOracle, actor: str, exc: ContentNotFound) -> NoReturn:
    """Only platform admins learn that an id does not exist; everyone else gets 403."""
    if oracle.is_platform_admin(actor):
        raise exc
    raise PermissionDenied() from exc


_WORKFLOW_ERRORS = {
    400: {"model": ErrorOut},
    403: {"model": ErrorOut},
    404: {"model": ErrorOut},
    409: {"model": ErrorOut},
    503: {"model": ErrorOut},
}


# -----------------------------
# Health checks
# -----------------------------
@app.get("/healthz")
def healthz():
    return {"status": "ok"}


@app.get("/readyz")
def readyz():
    db_ping(get_engine())
    return {"status": "ready", "db": "ok"}


@app.get("/workflow/states")
def workflow_states():
    return {"states": list_states()}


# -----------------------------
# Universities & profiles
# -----------------------------
@app.post("/universities", response_model=UniversityOut, status_code=201)
def create_university(
    body: UniversityCreateIn,
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    actor = require_actor(x_actor_id)
    if not get_oracle().is_platform_admin(actor):
        raise PermissionDenied()
    return repo.create_university(get_engine(), slug=body.slug, name=body.name)


@app.post("/universities/{university_id}/profiles", response_model=ProfileOut, status_code=201)
def create_profile(
    university_id: str,
    body: ProfileCreateIn,
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    actor = require_actor(x_actor_id)
    engine = get_engine()
    get_oracle().require(actor, university_id, Role.EDITOR)
    repo.get_university(engine, university_id)
    return repo.create_profile(engine, university_id=university_id, name=body.name)


# -----------------------------
# Content
# -----------------------------
@app.post("/content", response_model=ContentOut, status_code=201)
def create_content(
    body: ContentCreateIn,
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    actor = require_actor(x_actor_id)
    engine = get_engine()
    get_oracle().require(actor, body.profile_id, Role.CONTRIBUTOR)
    repo.get_profile(engine, body.profile_id)

    item = repo.create_content_item(engine, profile_id=body.profile_id, title=body.title, created_by=actor)
    log.info("Created content %s on profile %s", item.id, item.profile_id, extra={"actor": actor})
    return item


@app.get("/content", response_model=ContentListOut)
def list_content(
    profile_id: str = Query(..., min_length=1),
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    actor = require_actor(x_actor_id)
    _require_read(get_oracle(), actor, profile_id)
    items, total = repo.list_content(get_engine(), profile_id=profile_id, status=status, limit=limit, offset=offset)
    return {"items": items, "limit": limit, "offset": offset, "total": total}


@app.get("/content/{content_id}", response_model=ContentOut)
def get_content(
    content_id: str,
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    actor = require_actor(x_actor_id)
    oracle = get_oracle()
    try:
        item = repo.get_content(get_engine(), content_id)
    except ContentNotFound as exc:
        _hide_missing(oracle, actor, exc)
    _require_read(oracle, actor, item.profile_id)
    return item


@app.get("/content/{content_id}/history", response_model=list[HistoryEntryOut])
def get_content_history(
    content_id: str,
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    actor = require_actor(x_actor_id)
    engine = get_engine()
    oracle = get_oracle()
    try:
        item = repo.read_document(engine, content_id)
    except ContentNotFound as exc:
        _hide_missing(oracle, actor, exc)
    _require_read(oracle, actor, item.profile_id)
    return repo.list_history(engine, content_id)


@app.get("/content/{content_id}/allowed", response_model=AllowedTransitionsOut)
def content_allowed(
    content_id: str,
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    actor = require_actor(x_actor_id)
    oracle = get_oracle()
    try:
        item, allowed = get_orchestrator().available_actions(content_id, actor)
    except ContentNotFound as exc:
        _hide_missing(oracle, actor, exc)
    _require_read(oracle, actor, item.profile_id)
    return {"content_id": item.id, "from_status": item.status, "allowed": allowed}


@app.post("/content/{content_id}/transition", response_model=ContentOut, responses=_WORKFLOW_ERRORS)
def transition(
    content_id: str,
    body: TransitionIn,
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    actor = require_actor(x_actor_id)
    return get_orchestrator().request_transition(content_id, body.to_status, actor)


@app.post("/content/{content_id}/request-changes", response_model=ContentOut, responses=_WORKFLOW_ERRORS)
def request_changes(
    content_id: str,
    body: ChangeRequestIn,
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    actor = require_actor(x_actor_id)
    return get_orchestrator().request_changes(content_id, body.reason, actor)


# -----------------------------
# Permission grants
# -----------------------------
@app.get("/resources/{resource_id}/grants", response_model=list[GrantOut])
def list_grants(
    resource_id: str,
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    actor = require_actor(x_actor_id)
    return get_oracle().list_grants(actor, resource_id)


@app.put("/resources/{resource_id}/grants/{identity}", response_model=GrantOut)
def put_grant(
    resource_id: str,
    identity: str,
    body: GrantIn,
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    actor = require_actor(x_actor_id)
    return get_oracle().grant_role(actor, identity, resource_id, body.role)


@app.delete("/resources/{resource_id}/grants/{identity}", response_model=GrantOut)
def delete_grant(
    resource_id: str,
    identity: str,
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    actor = require_actor(x_actor_id)
    return get_oracle().revoke_role(actor, identity, resource_id)


# -----------------------------
# Platform administrators
# -----------------------------
@app.put("/platform-admins/{identity}", status_code=204)
def add_platform_admin(
    identity: str,
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    actor = require_actor(x_actor_id)
    get_oracle().add_platform_admin(actor, identity)


@app.delete("/platform-admins/{identity}", status_code=204)
def remove_platform_admin(
    identity: str,
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    actor = require_actor(x_actor_id)
    get_oracle().remove_platform_admin(actor, identity)
