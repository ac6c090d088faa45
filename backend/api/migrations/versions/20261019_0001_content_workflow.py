"""Content workflow schema

- universities / profiles: resource scopes
- content_items: workflow-bearing documents (status + version)
- content_history: append-only audit trail of status changes
- permission_grants: one role per (identity, resource)
- platform_admins, role_audit_log
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261019_0001_content_workflow"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "universities",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("slug", sa.String(120), nullable=False, unique=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "profiles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("university_id", sa.String(36), sa.ForeignKey("universities.id"), nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_profiles_university_id", "profiles", ["university_id"])

    op.create_table(
        "content_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("university_id", sa.String(36), sa.ForeignKey("universities.id"), nullable=False),
        sa.Column("profile_id", sa.String(36), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("created_by", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_by", sa.String(128), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('draft', 'review', 'approved', 'archived')",
            name="ck_content_items_status",
        ),
    )
    op.create_index("ix_content_items_profile_id", "content_items", ["profile_id"])

    op.create_table(
        "content_history",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("content_id", sa.String(36), sa.ForeignKey("content_items.id"), nullable=False),
        sa.Column("seq", sa.Integer, nullable=False),
        sa.Column("entry_type", sa.String(32), nullable=False),
        sa.Column("from_status", sa.String(16), nullable=False),
        sa.Column("to_status", sa.String(16), nullable=False),
        sa.Column("actor_id", sa.String(128), nullable=False),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("content_id", "seq", name="uq_content_history_seq"),
        sa.CheckConstraint(
            "entry_type IN ('status_change', 'change_request')",
            name="ck_content_history_type",
        ),
    )

    # History rows are never edited or removed.
    op.execute("""
    CREATE OR REPLACE FUNCTION content_history_append_only() RETURNS trigger AS $$
    BEGIN
        RAISE EXCEPTION 'content_history is append-only';
    END;
    $$ LANGUAGE plpgsql;
    """)
    op.execute("""
    CREATE TRIGGER trg_content_history_append_only
    BEFORE UPDATE OR DELETE ON public.content_history
    FOR EACH ROW EXECUTE FUNCTION content_history_append_only();
    """)

    op.create_table(
        "permission_grants",
        sa.Column("identity", sa.String(128), nullable=False),
        sa.Column("resource_id", sa.String(36), nullable=False),
        sa.Column("resource_type", sa.String(16), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("granted_by", sa.String(128), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("identity", "resource_id", name="pk_permission_grants"),
        sa.CheckConstraint(
            "role IN ('admin', 'editor', 'contributor', 'viewer')",
            name="ck_permission_grants_role",
        ),
    )

    op.create_table(
        "platform_admins",
        sa.Column("identity", sa.String(128), primary_key=True),
        sa.Column("added_by", sa.String(128), nullable=False),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "role_audit_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("resource_id", sa.String(36), nullable=False),
        sa.Column("target_identity", sa.String(128), nullable=False),
        sa.Column("role", sa.String(16), nullable=True),
        sa.Column("acted_by", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("role_audit_log")
    op.drop_table("platform_admins")
    op.drop_table("permission_grants")
    op.execute("DROP TRIGGER IF EXISTS trg_content_history_append_only ON public.content_history;")
    op.execute("DROP FUNCTION IF EXISTS content_history_append_only();")
    op.drop_table("content_history")
    op.drop_index("ix_content_items_profile_id", table_name="content_items")
    op.drop_table("content_items")
    op.drop_index("ix_profiles_university_id", table_name="profiles")
    op.drop_table("profiles")
    op.drop_table("universities")
