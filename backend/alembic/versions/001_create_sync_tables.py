"""Create practitioners, clients, sessions and sync_logs

Revision ID: 001
Revises: None
Create Date: 2026-10-17 00:00:00.000000+00:00

Each synced table carries its Halaxy id in a unique column, which is what
makes repeated syncs converge instead of duplicating rows.

Rollback: downgrade() drops all four tables (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # ── practitioners ─────────────────────────────────────────────────────
    op.create_table(
        "practitioners",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "halaxy_practitioner_id",
            sa.String(100),
            nullable=False,
            comment="Halaxy Practitioner resource id (secondary unique key)",
        ),
        sa.Column("halaxy_practitioner_role_id", sa.String(100), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("display_name", sa.String(255), nullable=False, server_default=""),
        sa.Column(
            "email",
            sa.String(255),
            nullable=False,
            comment="Contact email or {remoteId}@placeholder.local",
        ),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("qualifications", sa.Text(), nullable=True),
        sa.Column("specialty", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("halaxy_practitioner_id"),
        sa.UniqueConstraint("email"),
    )

    # ── clients ───────────────────────────────────────────────────────────
    op.create_table(
        "clients",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("halaxy_patient_id", sa.String(100), nullable=False),
        sa.Column("practitioner_id", sa.Uuid(), sa.ForeignKey("practitioners.id"), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("initials", sa.String(2), nullable=False, server_default="??"),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("mhcp_total_sessions", sa.Integer(), nullable=False, server_default="10"),
        sa.Column(
            "mhcp_used_sessions",
            sa.Integer(),
            nullable=False,
            server_default="0",
            comment="Completed sessions with the owning practitioner (recomputed)",
        ),
        sa.Column("mhcp_plan_start_date", sa.Date(), nullable=True),
        sa.Column("mhcp_plan_expiry_date", sa.Date(), nullable=True),
        sa.Column("presenting_issues", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("halaxy_patient_id"),
    )
    op.create_index("idx_clients_practitioner_id", "clients", ["practitioner_id"])

    # ── sessions ──────────────────────────────────────────────────────────
    op.create_table(
        "sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("halaxy_appointment_id", sa.String(100), nullable=False),
        sa.Column("practitioner_id", sa.Uuid(), sa.ForeignKey("practitioners.id"), nullable=False),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("scheduled_start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actual_start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "session_number",
            sa.Integer(),
            nullable=False,
            comment="Sequential per (practitioner, client); never reassigned",
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("session_type", sa.String(255), nullable=True),
        sa.Column("location_type", sa.String(20), nullable=False, server_default="in-person"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("fee", sa.Numeric(10, 2), nullable=True),
        sa.Column("fee_currency", sa.String(3), nullable=False, server_default="AUD"),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("halaxy_appointment_id"),
        sa.CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'in_progress', 'completed', 'cancelled', 'no_show')",
            name="ck_sessions_status",
        ),
    )
    op.create_index("idx_sessions_client_status", "sessions", ["client_id", "status"])
    op.create_index("idx_sessions_practitioner_start", "sessions", ["practitioner_id", "scheduled_start_time"])

    # ── sync_logs ─────────────────────────────────────────────────────────
    op.create_table(
        "sync_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("sync_type", sa.String(20), nullable=False),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.String(100), nullable=True),
        sa.Column("operation", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("records_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("practitioner_id", sa.Uuid(), sa.ForeignKey("practitioners.id"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_sync_logs_practitioner_started", "sync_logs", ["practitioner_id", "started_at"])


def downgrade() -> None:
    op.drop_index("idx_sync_logs_practitioner_started", table_name="sync_logs")
    op.drop_table("sync_logs")
    op.drop_index("idx_sessions_practitioner_start", table_name="sessions")
    op.drop_index("idx_sessions_client_status", table_name="sessions")
    op.drop_table("sessions")
    op.drop_index("idx_clients_practitioner_id", table_name="clients")
    op.drop_table("clients")
    op.drop_table("practitioners")
