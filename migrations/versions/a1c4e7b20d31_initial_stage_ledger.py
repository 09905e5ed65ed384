"""initial_stage_ledger

Creates the stage progression schema:
  - users               - directory backing role-pool resolution
  - initiatives         - aggregate with frontier fields (status, current_stage, lead)
  - routing_entries     - static per-site routing for stages 1–3
  - stage_transactions  - one ledger row per (initiative, stage number)
  - notifications       - in-app stage hand-over notices

Tables are created conditionally so the migration also runs against
databases that already received them via db.create_all().

Revision ID: a1c4e7b20d31
Revises:
Create Date: 2026-10-18 09:12:40.512337
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c4e7b20d31'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())

    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("site", sa.String(length=20), nullable=False),
            sa.Column("discipline", sa.String(length=100), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False,
                      comment="STLD | SH | CTSD | HOD | IL | F&A"),
            sa.Column("role_name", sa.String(length=200), nullable=True),
            sa.Column("routing_priority", sa.Integer(), nullable=True,
                      comment="Lower value wins when several users share (site, role); NULL sorts last"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("ix_users_site", "users", ["site"])
        op.create_index("ix_users_role", "users", ["role"])
        op.create_index("ix_users_site_role", "users", ["site", "role"])

    if "initiatives" not in existing:
        op.create_table(
            "initiatives",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("initiative_number", sa.String(length=40), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("site", sa.String(length=20), nullable=False),
            sa.Column("discipline", sa.String(length=100), nullable=False),
            sa.Column("priority", sa.String(length=20), nullable=True),
            sa.Column("expected_savings", sa.Numeric(15, 2), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("current_stage", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("assigned_lead_id", sa.Integer(), nullable=True),
            sa.Column("requires_moc", sa.Boolean(), nullable=True),
            sa.Column("moc_number", sa.String(length=100), nullable=True),
            sa.Column("requires_capex", sa.Boolean(), nullable=True),
            sa.Column("capex_number", sa.String(length=100), nullable=True),
            sa.Column("created_by_id", sa.Integer(), nullable=True),
            sa.Column("initiator_name", sa.String(length=200), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["assigned_lead_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("initiative_number"),
        )
        op.create_index("ix_initiatives_site", "initiatives", ["site"])
        op.create_index("ix_initiatives_status", "initiatives", ["status"])

    if "routing_entries" not in existing:
        op.create_table(
            "routing_entries",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("site", sa.String(length=20), nullable=False),
            sa.Column("stage_number", sa.Integer(), nullable=False),
            sa.Column("stage_name", sa.String(length=200), nullable=False),
            sa.Column("required_role", sa.String(length=20), nullable=False),
            sa.Column("default_user_email", sa.String(length=200), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("site", "stage_number", name="uq_routing_site_stage"),
        )

    if "stage_transactions" not in existing:
        op.create_table(
            "stage_transactions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("initiative_id", sa.Integer(), nullable=False),
            sa.Column("stage_number", sa.Integer(), nullable=False),
            sa.Column("stage_name", sa.String(length=200), nullable=False),
            sa.Column("site", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending",
                      comment="not_started | pending | approved | rejected"),
            sa.Column("required_role", sa.String(length=20), nullable=True),
            sa.Column("pending_with", sa.String(length=200), nullable=True, comment="User e-mail or role code"),
            sa.Column("pending_with_kind", sa.String(length=10), nullable=True, comment="user | role"),
            sa.Column("assigned_user_id", sa.Integer(), nullable=True),
            sa.Column("action_by", sa.String(length=200), nullable=True),
            sa.Column("action_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("requires_moc", sa.Boolean(), nullable=True),
            sa.Column("moc_number", sa.String(length=100), nullable=True),
            sa.Column("requires_capex", sa.Boolean(), nullable=True),
            sa.Column("capex_number", sa.String(length=100), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["initiative_id"], ["initiatives.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["assigned_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("initiative_id", "stage_number", name="uq_stage_txn_initiative_stage"),
        )
        op.create_index("ix_stage_transactions_initiative_id", "stage_transactions", ["initiative_id"])
        op.create_index("ix_stage_txn_status_pending_with", "stage_transactions", ["status", "pending_with"])
        op.create_index("ix_stage_txn_stage_status", "stage_transactions", ["stage_number", "status"])

    if "notifications" not in existing:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("initiative_id", sa.Integer(), nullable=True),
            sa.Column("recipient", sa.String(length=200), nullable=False, comment="User e-mail or role code"),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["initiative_id"], ["initiatives.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_initiative_id", "notifications", ["initiative_id"])
        op.create_index("ix_notifications_recipient", "notifications", ["recipient"])


def downgrade():
    op.drop_table("notifications")
    op.drop_table("stage_transactions")
    op.drop_table("routing_entries")
    op.drop_table("initiatives")
    op.drop_table("users")
