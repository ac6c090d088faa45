"""Tests for the permission oracle."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError

from memoryvista import repo
from memoryvista.errors import ContentNotFound, PermissionDenied, ValidationError
from memoryvista.models import Role
from memoryvista.permissions import (
    PermissionOracle,
    PlatformAdminCache,
    can_perform,
    parse_role,
    seed_platform_admins,
)

from conftest import ADMIN, CONTRIBUTOR, EDITOR, ROOT, STRANGER, UNI_ADMIN, VIEWER


class TestAuthorize:
    @pytest.mark.parametrize(
        "identity,required,expected",
        [
            (ADMIN, Role.ADMIN, True),
            (ADMIN, Role.VIEWER, True),
            (EDITOR, Role.EDITOR, True),
            (EDITOR, Role.ADMIN, False),
            (CONTRIBUTOR, Role.CONTRIBUTOR, True),
            (CONTRIBUTOR, Role.EDITOR, False),
            (VIEWER, Role.VIEWER, True),
            (VIEWER, Role.CONTRIBUTOR, False),
        ],
    )
    def test_role_ranks(self, oracle, world, identity, required, expected):
        assert oracle.authorize(identity, world.profile.id, required) is expected

    def test_accepts_role_names(self, oracle, world):
        assert oracle.authorize(EDITOR, world.profile.id, "editor")

    def test_unknown_identity_is_denied(self, oracle, world):
        assert oracle.authorize(STRANGER, world.profile.id, Role.VIEWER) is False

    def test_empty_inputs_are_denied(self, oracle, world):
        assert oracle.authorize("", world.profile.id, Role.VIEWER) is False
        assert oracle.authorize(ADMIN, "", Role.VIEWER) is False

    def test_unknown_capability_is_denied(self, oracle, world):
        assert oracle.authorize(ADMIN, world.profile.id, "owner") is False

    def test_grant_does_not_leak_to_other_profiles(self, oracle, world):
        assert oracle.authorize(EDITOR, world.other_profile.id, Role.VIEWER) is False

    def test_university_grant_covers_profiles(self, oracle, world):
        assert oracle.role_for(UNI_ADMIN, world.profile.id) is Role.ADMIN
        assert oracle.authorize(UNI_ADMIN, world.other_profile.id, Role.ADMIN)

    def test_stronger_of_direct_and_inherited_wins(self, engine, oracle, world):
        repo.upsert_grant(
            engine,
            identity=UNI_ADMIN,
            resource_id=world.profile.id,
            resource_type="profile",
            role=Role.VIEWER,
            granted_by=ROOT,
        )
        assert oracle.role_for(UNI_ADMIN, world.profile.id) is Role.ADMIN

    def test_platform_admin_is_admin_everywhere(self, oracle, world):
        assert oracle.authorize(ROOT, world.other_profile.id, Role.ADMIN)
        assert oracle.is_platform_admin(ROOT)
        assert not oracle.is_platform_admin(ADMIN)

    def test_fails_closed_when_store_errors(self, oracle, world, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection refused"))

        monkeypatch.setattr(repo, "lookup_grant", broken)
        assert oracle.authorize(ADMIN, world.profile.id, Role.VIEWER) is False

    def test_fails_closed_when_database_unreachable(self, tmp_path):
        unreachable = create_engine(f"sqlite:///{tmp_path / 'missing' / 'nope.db'}")
        oracle = PermissionOracle(unreachable)
        assert oracle.authorize(ADMIN, "some-profile", Role.VIEWER) is False
        assert oracle.is_platform_admin(ROOT) is False

    def test_actions(self):
        assert can_perform(Role.ADMIN, "delete")
        assert can_perform(Role.EDITOR, "update")
        assert not can_perform(Role.EDITOR, "delete")
        assert can_perform(Role.CONTRIBUTOR, "create")
        assert not can_perform(Role.VIEWER, "create")
        assert not can_perform(None, "read")

    def test_authorize_action(self, oracle, world):
        assert oracle.authorize_action(VIEWER, world.profile.id, "read")
        assert not oracle.authorize_action(VIEWER, world.profile.id, "update")
        assert not oracle.authorize_action(STRANGER, world.profile.id, "read")

    def test_parse_role(self):
        assert parse_role(" Editor ") is Role.EDITOR
        with pytest.raises(ValidationError):
            parse_role("owner")


class TestPlatformAdminCache:
    def test_reloads_after_ttl(self):
        now = [0.0]
        loads = []

        def loader():
            loads.append(now[0])
            return {"a"} if len(loads) == 1 else {"a", "b"}

        cache = PlatformAdminCache(loader, ttl_seconds=300, clock=lambda: now[0])
        assert cache.contains("a")
        assert not cache.contains("b")
        now[0] = 299.0
        assert not cache.contains("b")
        assert len(loads) == 1
        now[0] = 300.0
        assert cache.contains("b")
        assert len(loads) == 2

    def test_invalidate_forces_reload(self):
        loads = []
        cache = PlatformAdminCache(lambda: loads.append(1) or {"x"}, ttl_seconds=300, clock=lambda: 0.0)
        cache.contains("x")
        cache.invalidate()
        assert cache.is_stale
        cache.contains("x")
        assert len(loads) == 2

    def test_invalidate_between_check_and_read(self):
        racing = []

        def clock():
            if racing:
                racing[0].invalidate()
            return 0.0

        cache = PlatformAdminCache(lambda: {"x"}, ttl_seconds=300, clock=clock)
        assert cache.contains("x")
        racing.append(cache)
        assert cache.contains("x") is True
        assert cache.contains("y") is False

    def test_oracle_stays_boolean_while_cache_is_invalidated(self, engine, world):
        holder = []

        def clock():
            if holder:
                holder[0].admin_cache.invalidate()
            return 0.0

        oracle = PermissionOracle(engine, clock=clock)
        holder.append(oracle)
        for _ in range(3):
            assert oracle.authorize(ADMIN, world.profile.id, Role.VIEWER) is True
            assert oracle.authorize(STRANGER, world.profile.id, Role.VIEWER) is False
            assert oracle.is_platform_admin(ROOT) is True

    def test_oracle_invalidates_on_change(self, engine, oracle, world):
        assert not oracle.is_platform_admin("newbie")
        oracle.add_platform_admin(ROOT, "newbie")
        assert oracle.is_platform_admin("newbie")
        oracle.remove_platform_admin(ROOT, "newbie")
        assert not oracle.is_platform_admin("newbie")

    def test_only_platform_admins_manage_platform_admins(self, oracle, world):
        with pytest.raises(PermissionDenied):
            oracle.add_platform_admin(ADMIN, "newbie")
        with pytest.raises(ValidationError):
            oracle.add_platform_admin(ROOT, ROOT)
        with pytest.raises(ValidationError):
            oracle.remove_platform_admin(ROOT, "nobody")


class TestSeedPlatformAdmins:
    def test_fresh_database_gets_first_admin(self, engine):
        oracle = PermissionOracle(engine)
        assert repo.list_platform_admins(engine) == []

        assert seed_platform_admins(engine, ["first-admin", " ", "first-admin"]) == ["first-admin"]
        assert repo.list_platform_admins(engine) == ["first-admin"]
        assert oracle.is_platform_admin("first-admin")

        oracle.add_platform_admin("first-admin", "second-admin")
        assert sorted(repo.list_platform_admins(engine)) == ["first-admin", "second-admin"]

    def test_seeding_is_idempotent(self, engine):
        seed_platform_admins(engine, ["ops"])
        assert seed_platform_admins(engine, ["ops", "audit"]) == ["audit"]
        assert sorted(repo.list_platform_admins(engine)) == ["audit", "ops"]


class TestGrantManagement:
    def test_admin_grants_and_overwrites(self, engine, oracle, world):
        oracle.grant_role(ADMIN, "newcomer", world.profile.id, "contributor")
        assert oracle.role_for("newcomer", world.profile.id) is Role.CONTRIBUTOR

        grant = oracle.grant_role(ADMIN, "newcomer", world.profile.id, Role.EDITOR)
        assert grant.role is Role.EDITOR
        assert grant.resource_type == "profile"
        assert oracle.role_for("newcomer", world.profile.id) is Role.EDITOR
        grants = [g for g in repo.list_grants(engine, world.profile.id) if g.identity == "newcomer"]
        assert len(grants) == 1

    def test_non_admin_cannot_grant(self, oracle, world):
        with pytest.raises(PermissionDenied):
            oracle.grant_role(EDITOR, "newcomer", world.profile.id, "viewer")

    def test_grant_on_unknown_resource(self, oracle, world):
        with pytest.raises(ContentNotFound):
            oracle.grant_role(ROOT, "newcomer", "no-such-resource", "viewer")

    def test_unknown_resource_looks_forbidden_to_others(self, oracle, world):
        with pytest.raises(PermissionDenied):
            oracle.grant_role(ADMIN, "newcomer", "no-such-resource", "viewer")

    def test_grant_rejects_unknown_role(self, oracle, world):
        with pytest.raises(ValidationError):
            oracle.grant_role(ADMIN, "newcomer", world.profile.id, "superuser")

    def test_revoke(self, engine, oracle, world):
        removed = oracle.revoke_role(ADMIN, VIEWER, world.profile.id)
        assert removed.role is Role.VIEWER
        assert oracle.role_for(VIEWER, world.profile.id) is None

    def test_revoke_missing_grant(self, oracle, world):
        with pytest.raises(ContentNotFound):
            oracle.revoke_role(ADMIN, STRANGER, world.profile.id)

    def test_cannot_revoke_own_admin(self, oracle, world):
        with pytest.raises(ValidationError):
            oracle.revoke_role(ADMIN, ADMIN, world.profile.id)

    def test_role_changes_are_audited(self, engine, oracle, world):
        oracle.grant_role(ADMIN, "newcomer", world.profile.id, "viewer")
        oracle.revoke_role(ADMIN, "newcomer", world.profile.id)
        entries = [e for e in repo.list_role_audit(engine, world.profile.id) if e["target_identity"] == "newcomer"]
        assert [(e["action"], e["role"], e["acted_by"]) for e in entries] == [
            ("role_added", "viewer", ADMIN),
            ("role_removed", "viewer", ADMIN),
        ]

    def test_list_grants_admin_only(self, oracle, world):
        grants = oracle.list_grants(ADMIN, world.profile.id)
        assert {g.identity for g in grants} == {ADMIN, EDITOR, CONTRIBUTOR, VIEWER}
        with pytest.raises(PermissionDenied):
            oracle.list_grants(VIEWER, world.profile.id)
