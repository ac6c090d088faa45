"""
Single place where authorization decisions are made.

Roles are looked up from permission grants scoped to a university or a
profile. A grant on a university also covers every profile under it; the
stronger of the two wins. Platform administrators hold admin everywhere.

Lookups fail closed: if the grant store cannot answer, the answer is no.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, FrozenSet, Iterable, List, Optional, Union

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from memoryvista import repo
from memoryvista.errors import ContentNotFound, PermissionDenied, StoreUnavailable, ValidationError
from memoryvista.models import PermissionGrant, Role

log = logging.getLogger(__name__)

# What each role may do to the resource it is granted on.
ROLE_ACTIONS: dict[Role, frozenset[str]] = {
    Role.ADMIN: frozenset({"read", "create", "update", "delete", "manage"}),
    Role.EDITOR: frozenset({"read", "create", "update"}),
    Role.CONTRIBUTOR: frozenset({"read", "create"}),
    Role.VIEWER: frozenset({"read"}),
}


def can_perform(role: Optional[Role], action: str) -> bool:
    if role is None:
        return False
    return action in ROLE_ACTIONS[role]


def parse_role(value: Union[str, Role]) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role((value or "").strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown role: {value!r}")


class PlatformAdminCache:
    """Platform admin identities, reloaded from the store after `ttl_seconds`."""

    def __init__(
        self,
        loader: Callable[[], Iterable[str]],
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._admins: Optional[FrozenSet[str]] = None
        self._loaded_at = 0.0
        # Re-entrant: the loader or clock may call back into invalidate().
        self._lock = threading.RLock()

    def _expired(self, loaded_at: float) -> bool:
        return (self._clock() - loaded_at) >= self._ttl

    @property
    def is_stale(self) -> bool:
        admins, loaded_at = self._admins, self._loaded_at
        return admins is None or self._expired(loaded_at)

    def refresh(self) -> FrozenSet[str]:
        with self._lock:
            admins = frozenset(self._loader())
            now = self._clock()
            self._admins = admins
            self._loaded_at = now
        log.debug("Platform admin cache refreshed (%d entries)", len(admins))
        return admins

    def invalidate(self) -> None:
        with self._lock:
            self._admins = None

    def contains(self, identity: str) -> bool:
        with self._lock:
            admins, loaded_at = self._admins, self._loaded_at
        if admins is None or self._expired(loaded_at):
            admins = self.refresh()
        return identity in admins


class PermissionOracle:
    def __init__(
        self,
        engine: Engine,
        admin_cache_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._engine = engine
        self.admin_cache = PlatformAdminCache(
            lambda: repo.list_platform_admins(self._engine),
            ttl_seconds=admin_cache_ttl,
            clock=clock,
        )

    # ---------------------------------
    # Lookups
    # ---------------------------------

    def is_platform_admin(self, identity: str) -> bool:
        if not identity:
            return False
        try:
            return self.admin_cache.contains(identity)
        except (StoreUnavailable, SQLAlchemyError):
            log.error("Platform admin lookup failed; denying", exc_info=True)
            return False

    def role_for(self, identity: str, resource_id: str) -> Optional[Role]:
        """
        Effective role of `identity` on `resource_id`, or None.

        Store errors propagate; `authorize` is the fail-closed wrapper.
        """
        if not identity or not resource_id:
            return None
        if self.admin_cache.contains(identity):
            return Role.ADMIN

        roles: List[Role] = []
        direct = repo.lookup_grant(self._engine, identity, resource_id)
        if direct is not None:
            roles.append(direct.role)

        resolved = repo.resolve_resource(self._engine, resource_id)
        if resolved is not None:
            _, parent_id = resolved
            if parent_id:
                inherited = repo.lookup_grant(self._engine, identity, parent_id)
                if inherited is not None:
                    roles.append(inherited.role)

        if not roles:
            return None
        return max(roles, key=lambda r: r.rank)

    def authorize(self, identity: str, resource_id: str, required: Union[str, Role]) -> bool:
        if not identity or not resource_id:
            return False
        try:
            needed = Role(required)
        except ValueError:
            log.warning("authorize() called with unknown capability %r", required)
            return False

        try:
            role = self.role_for(identity, resource_id)
        except (StoreUnavailable, SQLAlchemyError):
            log.error(
                "Permission lookup failed; denying",
                exc_info=True,
                extra={"identity": identity, "resource_id": resource_id},
            )
            return False

        return role is not None and role.satisfies(needed)

    def authorize_action(self, identity: str, resource_id: str, action: str) -> bool:
        try:
            role = self.role_for(identity, resource_id)
        except (StoreUnavailable, SQLAlchemyError):
            log.error("Permission lookup failed; denying", exc_info=True)
            return False
        return can_perform(role, action)

    def require(self, identity: str, resource_id: str, required: Union[str, Role]) -> None:
        if not self.authorize(identity, resource_id, required):
            raise PermissionDenied()

    # ---------------------------------
    # Grant management
    # ---------------------------------

    def grant_role(
        self, actor: str, identity: str, resource_id: str, role: Union[str, Role]
    ) -> PermissionGrant:
        new_role = parse_role(role)
        identity = (identity or "").strip()
        if not identity or not resource_id:
            raise ValidationError("identity and resource_id are required")

        self.require(actor, resource_id, Role.ADMIN)
        resolved = repo.resolve_resource(self._engine, resource_id)
        if resolved is None:
            raise ContentNotFound("Resource not found")

        grant = repo.upsert_grant(
            self._engine,
            identity=identity,
            resource_id=resource_id,
            resource_type=resolved[0],
            role=new_role,
            granted_by=actor,
        )
        log.info(
            "Granted %s on %s to %s", new_role.value, resource_id, identity, extra={"actor": actor}
        )
        return grant

    def revoke_role(self, actor: str, identity: str, resource_id: str) -> PermissionGrant:
        if not identity or not resource_id:
            raise ValidationError("identity and resource_id are required")
        self.require(actor, resource_id, Role.ADMIN)

        if identity == actor:
            current = repo.lookup_grant(self._engine, identity, resource_id)
            if current is not None and current.role is Role.ADMIN:
                raise ValidationError("You cannot remove your own admin role")

        removed = repo.delete_grant(
            self._engine, identity=identity, resource_id=resource_id, removed_by=actor
        )
        if removed is None:
            raise ContentNotFound("User does not have a role on this resource")
        log.info("Revoked %s on %s from %s", removed.role.value, resource_id, identity, extra={"actor": actor})
        return removed

    def list_grants(self, actor: str, resource_id: str) -> List[PermissionGrant]:
        self.require(actor, resource_id, Role.ADMIN)
        return repo.list_grants(self._engine, resource_id)

    # ---------------------------------
    # Platform administrators
    # ---------------------------------

    def add_platform_admin(self, actor: str, identity: str) -> None:
        if not self.is_platform_admin(actor):
            raise PermissionDenied()
        identity = (identity or "").strip()
        if not identity:
            raise ValidationError("identity is required")
        if not repo.add_platform_admin(self._engine, identity, added_by=actor):
            raise ValidationError("Already a platform admin")
        self.admin_cache.invalidate()
        log.info("Added platform admin %s", identity, extra={"actor": actor})

    def remove_platform_admin(self, actor: str, identity: str) -> None:
        if not self.is_platform_admin(actor):
            raise PermissionDenied()
        if not repo.remove_platform_admin(self._engine, identity):
            raise ValidationError("Not a platform admin")
        self.admin_cache.invalidate()
        log.info("Removed platform admin %s", identity, extra={"actor": actor})


SEED_ACTOR = "system"


def seed_platform_admins(engine: Engine, identities: Iterable[str]) -> List[str]:
    """
    Make sure every identity in `identities` is a platform admin.

    Runs at startup so a fresh database has someone who can create
    universities and hand out roles. Safe to run repeatedly; returns only the
    identities that were newly added.
    """
    added: List[str] = []
    for identity in identities:
        identity = (identity or "").strip()
        if not identity or identity in added:
            continue
        if repo.add_platform_admin(engine, identity, added_by=SEED_ACTOR):
            added.append(identity)
    if added:
        log.info("Seeded platform admins: %s", ", ".join(added))
    return added
