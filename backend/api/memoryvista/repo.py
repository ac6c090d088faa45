from __future__ import annotations

import functools
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Connection, Engine, RowMapping
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from memoryvista.errors import (
    ConcurrentModification,
    ContentNotFound,
    StoreUnavailable,
    ValidationError,
)
from memoryvista.models import (
    ContentItem,
    HistoryEntry,
    HistoryType,
    PermissionGrant,
    Profile,
    ResourceType,
    Role,
    University,
)
from memoryvista.tables import (
    content_history,
    content_items,
    permission_grants,
    platform_admins,
    profiles,
    role_audit_log,
    universities,
)

log = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


# ----------------------------
# Helpers
# ----------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _store_errors(fn: F) -> F:
    """Turn connection-level failures into StoreUnavailable."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except (OperationalError, InterfaceError) as exc:
            log.error("Document store unavailable in %s", fn.__name__, exc_info=True)
            raise StoreUnavailable() from exc

    return wrapper  # type: ignore[return-value]


def _row_to_history(row: RowMapping) -> HistoryEntry:
    return HistoryEntry(
        seq=int(row["seq"]),
        type=row["entry_type"],
        from_status=row["from_status"],
        to_status=row["to_status"],
        by=row["actor_id"],
        reason=row["reason"],
        timestamp=_as_utc(row["created_at"]),
    )


def _row_to_item(row: RowMapping, history: Tuple[HistoryEntry, ...] = ()) -> ContentItem:
    return ContentItem(
        id=row["id"],
        title=row["title"],
        university_id=row["university_id"],
        profile_id=row["profile_id"],
        status=row["status"],
        version=int(row["version"]),
        created_by=row["created_by"],
        created_at=_as_utc(row["created_at"]),
        updated_by=row["updated_by"],
        updated_at=_as_utc(row["updated_at"]),
        history=history,
    )


def _row_to_grant(row: RowMapping) -> PermissionGrant:
    return PermissionGrant(
        identity=row["identity"],
        resource_id=row["resource_id"],
        resource_type=row["resource_type"],
        role=Role(row["role"]),
        granted_by=row["granted_by"],
        granted_at=_as_utc(row["granted_at"]),
    )


def _select_item(conn: Connection, content_id: str, for_update: bool = False) -> Optional[RowMapping]:
    stmt = select(content_items).where(content_items.c.id == content_id)
    if for_update:
        # Rendered as FOR UPDATE on Postgres; SQLite serializes writers anyway.
        stmt = stmt.with_for_update()
    return conn.execute(stmt).mappings().first()


def _select_history(conn: Connection, content_id: str) -> Tuple[HistoryEntry, ...]:
    rows = conn.execute(
        select(content_history)
        .where(content_history.c.content_id == content_id)
        .order_by(content_history.c.seq.asc())
    ).mappings().all()
    return tuple(_row_to_history(r) for r in rows)


# ----------------------------
# Resource scopes
# ----------------------------

@_store_errors
def create_university(engine: Engine, slug: str, name: str) -> University:
    slug = (slug or "").strip().lower()
    name = (name or "").strip()
    if not slug or not name:
        raise ValidationError("University slug and name are required")

    university = University(id=_new_id(), slug=slug, name=name)
    try:
        with engine.begin() as conn:
            conn.execute(
                insert(universities).values(
                    id=university.id, slug=slug, name=name, created_at=utcnow()
                )
            )
    except IntegrityError as exc:
        raise ValidationError(f"University slug '{slug}' is already taken") from exc
    return university


@_store_errors
def get_university(engine: Engine, university_id: str) -> University:
    with engine.begin() as conn:
        row = conn.execute(
            select(universities).where(universities.c.id == university_id)
        ).mappings().first()
    if not row:
        raise ContentNotFound("University not found")
    return University(id=row["id"], slug=row["slug"], name=row["name"])


@_store_errors
def create_profile(engine: Engine, university_id: str, name: str) -> Profile:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Profile name is required")

    profile = Profile(id=_new_id(), university_id=university_id, name=name)
    with engine.begin() as conn:
        exists = conn.execute(
            select(universities.c.id).where(universities.c.id == university_id)
        ).first()
        if not exists:
            raise ContentNotFound("University not found")
        conn.execute(
            insert(profiles).values(
                id=profile.id, university_id=university_id, name=name, created_at=utcnow()
            )
        )
    return profile


@_store_errors
def get_profile(engine: Engine, profile_id: str) -> Profile:
    with engine.begin() as conn:
        row = conn.execute(select(profiles).where(profiles.c.id == profile_id)).mappings().first()
    if not row:
        raise ContentNotFound("Profile not found")
    return Profile(id=row["id"], university_id=row["university_id"], name=row["name"])


@_store_errors
def resolve_resource(engine: Engine, resource_id: str) -> Optional[Tuple[str, Optional[str]]]:
    """
    Returns (resource_type, parent_university_id) or None if the id is unknown.

    Universities have no parent; profiles point at their university.
    """
    with engine.begin() as conn:
        prof = conn.execute(
            select(profiles.c.university_id).where(profiles.c.id == resource_id)
        ).first()
        if prof is not None:
            return ResourceType.PROFILE.value, prof[0]
        uni = conn.execute(select(universities.c.id).where(universities.c.id == resource_id)).first()
        if uni is not None:
            return ResourceType.UNIVERSITY.value, None
    return None


# ----------------------------
# Content items
# ----------------------------

@_store_errors
def create_content_item(engine: Engine, profile_id: str, title: str, created_by: str) -> ContentItem:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required")

    now = utcnow()
    content_id = _new_id()
    with engine.begin() as conn:
        prof = conn.execute(
            select(profiles.c.university_id).where(profiles.c.id == profile_id)
        ).first()
        if prof is None:
            raise ContentNotFound("Profile not found")

        conn.execute(
            insert(content_items).values(
                id=content_id,
                university_id=prof[0],
                profile_id=profile_id,
                title=title,
                status="draft",
                version=1,
                created_by=created_by,
                created_at=now,
                updated_by=created_by,
                updated_at=now,
            )
        )
        row = _select_item(conn, content_id)

    assert row is not None
    return _row_to_item(row)


@_store_errors
def read_document(engine: Engine, content_id: str) -> ContentItem:
    """Current state of one item, without its history."""
    with engine.begin() as conn:
        row = _select_item(conn, content_id)
    if not row:
        raise ContentNotFound("Content not found")
    return _row_to_item(row)


@_store_errors
def get_content(engine: Engine, content_id: str) -> ContentItem:
    with engine.begin() as conn:
        row = _select_item(conn, content_id)
        if not row:
            raise ContentNotFound("Content not found")
        history = _select_history(conn, content_id)
    return _row_to_item(row, history)


@_store_errors
def list_content(
    engine: Engine,
    profile_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[ContentItem], int]:
    conditions = []
    if profile_id:
        conditions.append(content_items.c.profile_id == profile_id)
    if status:
        conditions.append(content_items.c.status == status.strip().lower())

    items_stmt = (
        select(content_items)
        .where(*conditions)
        .order_by(content_items.c.created_at.desc(), content_items.c.id.asc())
        .limit(int(limit))
        .offset(int(offset))
    )
    total_stmt = select(func.count()).select_from(content_items).where(*conditions)

    with engine.begin() as conn:
        rows = conn.execute(items_stmt).mappings().all()
        total = conn.execute(total_stmt).scalar_one()

    return [_row_to_item(r) for r in rows], int(total)


@_store_errors
def list_history(engine: Engine, content_id: str) -> List[HistoryEntry]:
    with engine.begin() as conn:
        if _select_item(conn, content_id) is None:
            raise ContentNotFound("Content not found")
        return list(_select_history(conn, content_id))


@dataclass(frozen=True)
class StatusChange:
    """What atomic_read_modify_write should write on top of the current row."""

    to_status: str
    actor: str
    entry_type: str = HistoryType.STATUS_CHANGE.value
    reason: Optional[str] = None


@_store_errors
def atomic_read_modify_write(
    engine: Engine,
    content_id: str,
    predicate: Callable[[ContentItem], bool],
    mutation: Callable[[ContentItem], StatusChange],
) -> ContentItem:
    """
    Re-read the item inside one transaction, check `predicate` against it,
    then write the status change and its history entry together.

    Raises ConcurrentModification when the predicate no longer holds or when
    the guarded UPDATE matches no row.
    """
    with engine.begin() as conn:
        row = _select_item(conn, content_id, for_update=True)
        if not row:
            raise ContentNotFound("Content not found")
        current = _row_to_item(row)

        if not predicate(current):
            raise ConcurrentModification()

        change = mutation(current)
        # Server clock, but never earlier than the previous write on this item.
        stamp = max(utcnow(), current.updated_at)

        result = conn.execute(
            update(content_items)
            .where(content_items.c.id == content_id)
            .where(content_items.c.version == current.version)
            .values(
                status=change.to_status,
                version=current.version + 1,
                updated_by=change.actor,
                updated_at=stamp,
            )
        )
        if result.rowcount != 1:
            raise ConcurrentModification()

        last_seq = conn.execute(
            select(func.coalesce(func.max(content_history.c.seq), 0)).where(
                content_history.c.content_id == content_id
            )
        ).scalar_one()

        conn.execute(
            insert(content_history).values(
                content_id=content_id,
                seq=int(last_seq) + 1,
                entry_type=change.entry_type,
                from_status=current.status,
                to_status=change.to_status,
                actor_id=change.actor,
                reason=change.reason,
                created_at=stamp,
            )
        )

        updated = _select_item(conn, content_id)
        history = _select_history(conn, content_id)

    assert updated is not None
    return _row_to_item(updated, history)


# ----------------------------
# Permission grants
# ----------------------------

@_store_errors
def lookup_grant(engine: Engine, identity: str, resource_id: str) -> Optional[PermissionGrant]:
    with engine.begin() as conn:
        row = conn.execute(
            select(permission_grants).where(
                permission_grants.c.identity == identity,
                permission_grants.c.resource_id == resource_id,
            )
        ).mappings().first()
    return _row_to_grant(row) if row else None


@_store_errors
def list_grants(engine: Engine, resource_id: str) -> List[PermissionGrant]:
    with engine.begin() as conn:
        rows = conn.execute(
            select(permission_grants)
            .where(permission_grants.c.resource_id == resource_id)
            .order_by(permission_grants.c.granted_at.asc(), permission_grants.c.identity.asc())
        ).mappings().all()
    return [_row_to_grant(r) for r in rows]


def _append_role_audit(
    conn: Connection,
    action: str,
    resource_id: str,
    target_identity: str,
    role: Optional[str],
    acted_by: str,
) -> None:
    conn.execute(
        insert(role_audit_log).values(
            action=action,
            resource_id=resource_id,
            target_identity=target_identity,
            role=role,
            acted_by=acted_by,
            created_at=utcnow(),
        )
    )


@_store_errors
def upsert_grant(
    engine: Engine,
    *,
    identity: str,
    resource_id: str,
    resource_type: str,
    role: Role,
    granted_by: str,
) -> PermissionGrant:
    """One grant per (identity, resource); granting again overwrites the role."""
    now = utcnow()
    key = (
        permission_grants.c.identity == identity,
        permission_grants.c.resource_id == resource_id,
    )
    with engine.begin() as conn:
        existing = conn.execute(select(permission_grants.c.role).where(*key)).first()
        if existing is None:
            conn.execute(
                insert(permission_grants).values(
                    identity=identity,
                    resource_id=resource_id,
                    resource_type=resource_type,
                    role=role.value,
                    granted_by=granted_by,
                    granted_at=now,
                )
            )
        else:
            conn.execute(
                update(permission_grants)
                .where(*key)
                .values(role=role.value, granted_by=granted_by, granted_at=now)
            )
        _append_role_audit(conn, "role_added", resource_id, identity, role.value, granted_by)

    return PermissionGrant(
        identity=identity,
        resource_id=resource_id,
        resource_type=resource_type,
        role=role,
        granted_by=granted_by,
        granted_at=now,
    )


@_store_errors
def delete_grant(engine: Engine, *, identity: str, resource_id: str, removed_by: str) -> Optional[PermissionGrant]:
    key = (
        permission_grants.c.identity == identity,
        permission_grants.c.resource_id == resource_id,
    )
    with engine.begin() as conn:
        row = conn.execute(select(permission_grants).where(*key)).mappings().first()
        if not row:
            return None
        grant = _row_to_grant(row)
        conn.execute(delete(permission_grants).where(*key))
        _append_role_audit(conn, "role_removed", resource_id, identity, grant.role.value, removed_by)
    return grant


@_store_errors
def list_role_audit(engine: Engine, resource_id: str) -> List[Dict[str, Any]]:
    with engine.begin() as conn:
        rows = conn.execute(
            select(role_audit_log)
            .where(role_audit_log.c.resource_id == resource_id)
            .order_by(role_audit_log.c.id.asc())
        ).mappings().all()
    return [dict(r) for r in rows]


# ----------------------------
# Platform administrators
# ----------------------------

@_store_errors
def list_platform_admins(engine: Engine) -> List[str]:
    with engine.begin() as conn:
        return list(conn.execute(select(platform_admins.c.identity)).scalars().all())


@_store_errors
def add_platform_admin(engine: Engine, identity: str, added_by: str) -> bool:
    """Returns False if `identity` already was an admin."""
    with engine.begin() as conn:
        exists = conn.execute(
            select(platform_admins.c.identity).where(platform_admins.c.identity == identity)
        ).first()
        if exists:
            return False
        conn.execute(
            insert(platform_admins).values(identity=identity, added_by=added_by, added_at=utcnow())
        )
    return True


@_store_errors
def remove_platform_admin(engine: Engine, identity: str) -> bool:
    with engine.begin() as conn:
        result = conn.execute(delete(platform_admins).where(platform_admins.c.identity == identity))
    return result.rowcount > 0
