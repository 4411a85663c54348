"""Create permit tables

Revision ID: 0001_create_permit_tables
Revises:
Create Date: 2026-10-19

Adds permits, permit_id_allocations, users and audit_log.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_create_permit_tables"
down_revision = None
branch_labels = None
depends_on = None

PERMIT_STATUSES = (
    "Pending Review",
    "Pending Approval",
    "Active",
    "Renewal Pending Review",
    "Renewal Pending Approval",
    "Closure Pending Review",
    "Closure Pending Approval",
    "Closed",
    "Rejected",
)


def upgrade() -> None:
    op.create_table(
        "permit_id_allocations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("permit_id", sa.String(length=32), nullable=True, unique=True),
        sa.Column(
            "allocated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "permits",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("permit_id", sa.String(length=32), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*PERMIT_STATUSES, name="permit_status"),
            nullable=False,
        ),
        sa.Column("work_type", sa.String(length=256), nullable=True),
        # Identities bound at creation
        sa.Column("requester_email", sa.String(length=256), nullable=False),
        sa.Column("reviewer_email", sa.String(length=256), nullable=False),
        sa.Column("approver_email", sa.String(length=256), nullable=False),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_to", sa.DateTime(timezone=True), nullable=False),
        # Document and renewals (JSON)
        sa.Column("document", sa.JSON, nullable=False),
        sa.Column("renewal_history", sa.JSON, nullable=False),
        sa.Column("current_renewal", sa.JSON, nullable=True),
        sa.Column("attachment_ref", sa.String(length=512), nullable=True),
        sa.Column("final_artifact_ref", sa.String(length=512), nullable=True),
        sa.Column("revision", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_permits_permit_id", "permits", ["permit_id"], unique=True)
    op.create_index("ix_permits_status", "permits", ["status"])
    op.create_index("ix_permits_requester_email", "permits", ["requester_email"])
    op.create_index("ix_permits_reviewer_email", "permits", ["reviewer_email"])
    op.create_index("ix_permits_approver_email", "permits", ["approver_email"])
    op.create_index("ix_permits_reviewer_status", "permits", ["reviewer_email", "status"])
    op.create_index("ix_permits_approver_status", "permits", ["approver_email", "status"])

    op.create_table(
        "users",
        sa.Column("email", sa.String(length=256), primary_key=True),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column(
            "role",
            sa.Enum("Requester", "Reviewer", "Approver", name="user_role"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "ts",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        # Actor columns
        sa.Column(
            "actor_role",
            sa.Enum(
                "Requester", "Reviewer", "Approver", "system",
                name="audit_actor_role",
            ),
            nullable=False,
        ),
        sa.Column("actor_id", sa.String(length=256), nullable=False),
        sa.Column(
            "action",
            sa.Enum(
                "created", "status_changed", "renewal_changed",
                name="audit_action",
            ),
            nullable=False,
        ),
        # Entity columns
        sa.Column("entity_kind", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=False),
        # State columns (JSON)
        sa.Column("before", sa.JSON, nullable=True),
        sa.Column("after", sa.JSON, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
    )
    op.create_index("ix_audit_log_ts", "audit_log", ["ts"])
    op.create_index("ix_audit_log_actor_id", "audit_log", ["actor_id"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])
    op.create_index("ix_audit_log_entity_id", "audit_log", ["entity_id"])
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_kind", "entity_id"])
    op.create_index("ix_audit_log_actor", "audit_log", ["actor_role", "actor_id"])
    op.create_index(
        "ix_audit_log_entity_ts",
        "audit_log",
        ["entity_kind", "entity_id", "ts"],
    )


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("users")
    op.drop_table("permits")
    op.drop_table("permit_id_allocations")

    # Drop PostgreSQL enum types (no-op for SQLite)
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute("DROP TYPE IF EXISTS audit_action")
        op.execute("DROP TYPE IF EXISTS audit_actor_role")
        op.execute("DROP TYPE IF EXISTS user_role")
        op.execute("DROP TYPE IF EXISTS permit_status")
