"""Shared fixtures: a SQLite database per test, seeded with one university,
one profile and a user for every role."""

from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, event

from memoryvista import repo
from memoryvista.models import ResourceType, Role
from memoryvista.orchestrator import WorkflowOrchestrator
from memoryvista.permissions import PermissionOracle
from memoryvista.tables import metadata

ROOT = "root-admin"
UNI_ADMIN = "uma"
ADMIN = "alice"
EDITOR = "eddie"
CONTRIBUTOR = "carol"
VIEWER = "vic"
STRANGER = "mallory"


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'memoryvista.db'}", future=True)
    metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def world(engine):
    university = repo.create_university(engine, slug="state-u", name="State University")
    profile = repo.create_profile(engine, university_id=university.id, name="Ada Lovelace")
    other_profile = repo.create_profile(engine, university_id=university.id, name="Alan Turing")

    repo.add_platform_admin(engine, ROOT, added_by="bootstrap")
    repo.upsert_grant(
        engine,
        identity=UNI_ADMIN,
        resource_id=university.id,
        resource_type=ResourceType.UNIVERSITY.value,
        role=Role.ADMIN,
        granted_by=ROOT,
    )
    for identity, role in (
        (ADMIN, Role.ADMIN),
        (EDITOR, Role.EDITOR),
        (CONTRIBUTOR, Role.CONTRIBUTOR),
        (VIEWER, Role.VIEWER),
    ):
        repo.upsert_grant(
            engine,
            identity=identity,
            resource_id=profile.id,
            resource_type=ResourceType.PROFILE.value,
            role=role,
            granted_by=UNI_ADMIN,
        )

    return SimpleNamespace(university=university, profile=profile, other_profile=other_profile)


@pytest.fixture
def oracle(engine):
    return PermissionOracle(engine)


@pytest.fixture
def orchestrator(engine, oracle):
    return WorkflowOrchestrator(engine, oracle, max_retries=3, retry_jitter=0)


@pytest.fixture
def content_in(engine, world, orchestrator):
    """Factory: a fresh content item already moved to the given status."""

    paths = {
        "draft": [],
        "review": ["review"],
        "approved": ["review", "approved"],
        "archived": ["archived"],
    }

    def make(status="draft", title="Life story"):
        item = repo.create_content_item(engine, world.profile.id, title, created_by=CONTRIBUTOR)
        for step in paths[status]:
            item = orchestrator.request_transition(item.id, step, ADMIN)
        return item

    return make


@pytest.fixture
def query_counter(engine):
    """Every SQL statement sent to the engine while the test runs."""
    statements = []

    def _count(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", _count)
    yield statements
    event.remove(engine, "before_cursor_execute", _count)


@pytest.fixture
def client(engine, world):
    from fastapi.testclient import TestClient

    from memoryvista import db, main

    db.set_engine(engine)
    main.reset_services()
    try:
        yield TestClient(main.app)
    finally:
        main.reset_services()
        db.set_engine(None)
