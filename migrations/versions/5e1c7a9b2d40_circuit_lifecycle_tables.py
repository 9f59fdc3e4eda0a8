"""circuit_lifecycle_tables

Creates the circuit workflow tables and the rows the deletion engine observes:
  - circuits             — workflow definitions (CRnn keys)
  - circuit_steps        — ordered steps, order_index unique per circuit
  - circuit_statuses     — named points inside a circuit
  - circuit_transitions  — edges between statuses of one circuit
  - documents            — documents assigned to a circuit while in progress
  - approvals            — pending/decided approvals per step
  - circuit_backups      — JSON captures taken before bulk deletes

Foreign keys carry no ON DELETE rules: dependents are removed explicitly by
the cascade deleter, and a plain delete must fail while they remain.

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 5e1c7a9b2d40
Revises:
Create Date: 2026-10-19 09:12:44.318207
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5e1c7a9b2d40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Circuit ───────────────────────────────────────────────────────────
    if "circuits" not in existing:
        op.create_table(
            "circuits",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column(
                "circuit_key", sa.String(length=20), nullable=False,
                comment="CR + zero-padded sequence, e.g. CR07",
            ),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("circuit_key"),
        )

    # ── Step ──────────────────────────────────────────────────────────────
    if "circuit_steps" not in existing:
        op.create_table(
            "circuit_steps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("step_key", sa.String(length=40), nullable=False),
            sa.Column("circuit_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("order_index", sa.Integer(), nullable=False),
            sa.Column("is_final_step", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column(
                "responsible_role_id", sa.Integer(), nullable=True,
                comment="Role reference owned by the identity service",
            ),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["circuit_id"], ["circuits.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("circuit_id", "order_index", name="uq_step_circuit_order"),
        )
        op.create_index("ix_circuit_steps_circuit_id", "circuit_steps", ["circuit_id"])

    # ── Status / Transition ───────────────────────────────────────────────
    if "circuit_statuses" not in existing:
        op.create_table(
            "circuit_statuses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("circuit_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("is_initial", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_final", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.ForeignKeyConstraint(["circuit_id"], ["circuits.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_circuit_statuses_circuit_id", "circuit_statuses", ["circuit_id"])

    if "circuit_transitions" not in existing:
        op.create_table(
            "circuit_transitions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("circuit_id", sa.Integer(), nullable=False),
            sa.Column("from_status_id", sa.Integer(), nullable=False),
            sa.Column("to_status_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["circuit_id"], ["circuits.id"]),
            sa.ForeignKeyConstraint(["from_status_id"], ["circuit_statuses.id"]),
            sa.ForeignKeyConstraint(["to_status_id"], ["circuit_statuses.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("from_status_id", "to_status_id", name="uq_transition_edge"),
        )
        op.create_index("ix_circuit_transitions_circuit_id", "circuit_transitions", ["circuit_id"])

    # ── Document / Approval ───────────────────────────────────────────────
    if "documents" not in existing:
        op.create_table(
            "documents",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("document_key", sa.String(length=40), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("circuit_id", sa.Integer(), nullable=True),
            sa.Column(
                "is_circuit_completed", sa.Boolean(), nullable=False,
                server_default=sa.false(),
            ),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["circuit_id"], ["circuits.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("document_key"),
        )
        op.create_index("ix_documents_circuit_id", "documents", ["circuit_id"])

    if "approvals" not in existing:
        op.create_table(
            "approvals",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("circuit_id", sa.Integer(), nullable=False),
            sa.Column("step_id", sa.Integer(), nullable=False),
            sa.Column("document_id", sa.Integer(), nullable=False),
            sa.Column(
                "status", sa.String(length=20), nullable=False,
                server_default="pending",
                comment="pending | approved | rejected",
            ),
            sa.Column("requested_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["circuit_id"], ["circuits.id"]),
            sa.ForeignKeyConstraint(["step_id"], ["circuit_steps.id"]),
            sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approvals_circuit_id", "approvals", ["circuit_id"])

    # ── Backup ────────────────────────────────────────────────────────────
    if "circuit_backups" not in existing:
        op.create_table(
            "circuit_backups",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("filename", sa.String(length=120), nullable=False),
            sa.Column(
                "size", sa.String(length=20), nullable=False,
                comment="Approximate size, e.g. 3KB",
            ),
            sa.Column("circuit_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("payload", sa.Text(), nullable=False, comment="JSON document"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("filename"),
        )


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    if "circuit_backups" in existing:
        op.drop_table("circuit_backups")

    if "approvals" in existing:
        op.drop_index("ix_approvals_circuit_id", table_name="approvals")
        op.drop_table("approvals")

    if "documents" in existing:
        op.drop_index("ix_documents_circuit_id", table_name="documents")
        op.drop_table("documents")

    if "circuit_transitions" in existing:
        op.drop_index("ix_circuit_transitions_circuit_id", table_name="circuit_transitions")
        op.drop_table("circuit_transitions")

    if "circuit_statuses" in existing:
        op.drop_index("ix_circuit_statuses_circuit_id", table_name="circuit_statuses")
        op.drop_table("circuit_statuses")

    if "circuit_steps" in existing:
        op.drop_index("ix_circuit_steps_circuit_id", table_name="circuit_steps")
        op.drop_table("circuit_steps")

    if "circuits" in existing:
        op.drop_table("circuits")
