from __future__ import annotations

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

_STATUS_CHECK = "status IN ('draft', 'review', 'approved', 'archived')"
_ROLE_CHECK = "role IN ('admin', 'editor', 'contributor', 'viewer')"

universities = Table(
    "universities",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("slug", String(120), nullable=False, unique=True),
    Column("name", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

profiles = Table(
    "profiles",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("university_id", String(36), ForeignKey("universities.id"), nullable=False, index=True),
    Column("name", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

content_items = Table(
    "content_items",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("university_id", String(36), ForeignKey("universities.id"), nullable=False),
    Column("profile_id", String(36), ForeignKey("profiles.id"), nullable=False, index=True),
    Column("title", Text, nullable=False),
    Column("status", String(16), nullable=False),
    # Bumped on every write; the compare-and-set token for status changes.
    Column("version", Integer, nullable=False),
    Column("created_by", String(128), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_by", String(128), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    CheckConstraint(_STATUS_CHECK, name="ck_content_items_status"),
)

# Append-only. Rows are inserted next to the status update and never touched again.
content_history = Table(
    "content_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("content_id", String(36), ForeignKey("content_items.id"), nullable=False),
    Column("seq", Integer, nullable=False),
    Column("entry_type", String(32), nullable=False),
    Column("from_status", String(16), nullable=False),
    Column("to_status", String(16), nullable=False),
    Column("actor_id", String(128), nullable=False),
    Column("reason", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("content_id", "seq", name="uq_content_history_seq"),
    CheckConstraint(
        "entry_type IN ('status_change', 'change_request')",
        name="ck_content_history_type",
    ),
)

permission_grants = Table(
    "permission_grants",
    metadata,
    Column("identity", String(128), nullable=False),
    Column("resource_id", String(36), nullable=False),
    Column("resource_type", String(16), nullable=False),
    Column("role", String(16), nullable=False),
    Column("granted_by", String(128), nullable=False),
    Column("granted_at", DateTime(timezone=True), nullable=False),
    PrimaryKeyConstraint("identity", "resource_id", name="pk_permission_grants"),
    CheckConstraint(_ROLE_CHECK, name="ck_permission_grants_role"),
)

platform_admins = Table(
    "platform_admins",
    metadata,
    Column("identity", String(128), primary_key=True),
    Column("added_by", String(128), nullable=False),
    Column("added_at", DateTime(timezone=True), nullable=False),
)

role_audit_log = Table(
    "role_audit_log",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("action", String(32), nullable=False),
    Column("resource_id", String(36), nullable=False),
    Column("target_identity", String(128), nullable=False),
    Column("role", String(16), nullable=True),
    Column("acted_by", String(128), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)
