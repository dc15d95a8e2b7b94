"""Create migration run, parallel-run and discrepancy tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── migration_runs ───────────────────────────────────────
    op.create_table(
        "migration_runs",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("source_file", sa.String(512), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("total_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("imported_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_migration_runs_entity_status", "migration_runs", ["entity_type", "status"])

    # ── migration_row_errors ─────────────────────────────────
    op.create_table(
        "migration_row_errors",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "migration_run_id",
            sa.String(64),
            sa.ForeignKey("migration_runs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("row_number", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("field_name", sa.String(255), nullable=True),
        sa.Column("error_type", sa.String(64), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("raw_value", sa.Text(), nullable=True),
    )
    op.create_index("ix_migration_row_errors_run_id", "migration_row_errors", ["migration_run_id"])

    # ── parallel_run_results ─────────────────────────────────
    op.create_table(
        "parallel_run_results",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("migration_run_id", sa.String(64), nullable=True, unique=True),
        sa.Column("run_date", sa.Date(), nullable=False, server_default=sa.func.current_date()),
        sa.Column("comparison_type", sa.String(64), nullable=False),
        sa.Column("source_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("target_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("mismatch_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pass_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("summary", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_parallel_run_results_run_date", "parallel_run_results", ["run_date"])

    # ── parallel_run_discrepancies ───────────────────────────
    op.create_table(
        "parallel_run_discrepancies",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("run_id", sa.String(64), nullable=True),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=False),
        sa.Column(
            "discrepancy_type",
            sa.Enum(
                "field_mismatch",
                "missing_in_target",
                "missing_in_source",
                "duplicate",
                "count_mismatch",
                name="discrepancytype",
            ),
            nullable=False,
        ),
        sa.Column(
            "severity",
            sa.Enum("critical", "warning", "info", name="discrepancyseverity"),
            nullable=False,
        ),
        sa.Column("field_name", sa.String(255), nullable=True),
        sa.Column("source_value", sa.Text(), nullable=True),
        sa.Column("target_value", sa.Text(), nullable=True),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        sa.Column("detection_pass", sa.Integer(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(255), nullable=True),
        sa.Column(
            "resolution_type",
            sa.Enum("accept_source", "accept_target", "ignore", name="resolutionaction"),
            nullable=True,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "(resolved_at IS NULL AND resolved_by IS NULL AND resolution_type IS NULL)"
            " OR (resolved_at IS NOT NULL AND resolved_by IS NOT NULL AND resolution_type IS NOT NULL)",
            name="ck_discrepancy_resolution_complete",
        ),
    )
    op.create_index("ix_discrepancies_run_id", "parallel_run_discrepancies", ["run_id"])
    op.create_index("ix_discrepancies_open_severity", "parallel_run_discrepancies", ["resolved_at", "severity"])
    op.create_index("ix_discrepancies_entity", "parallel_run_discrepancies", ["entity_type", "entity_id"])

    # ── state_transition_log ─────────────────────────────────
    op.create_table(
        "state_transition_log",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("process_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=False),
        sa.Column("entity_number", sa.String(255), nullable=True),
        sa.Column("from_state", sa.String(64), nullable=True),
        sa.Column("to_state", sa.String(64), nullable=False),
        sa.Column("is_reversible", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("actor_id", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("side_effects", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_state_transition_log_process_entity",
        "state_transition_log",
        ["process_type", "entity_id"],
    )
    op.create_index(
        "ix_state_transition_log_actor_created_at",
        "state_transition_log",
        ["actor_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_state_transition_log_actor_created_at", table_name="state_transition_log")
    op.drop_index("ix_state_transition_log_process_entity", table_name="state_transition_log")
    op.drop_table("state_transition_log")

    op.drop_index("ix_discrepancies_entity", table_name="parallel_run_discrepancies")
    op.drop_index("ix_discrepancies_open_severity", table_name="parallel_run_discrepancies")
    op.drop_index("ix_discrepancies_run_id", table_name="parallel_run_discrepancies")
    op.drop_table("parallel_run_discrepancies")

    op.drop_index("ix_parallel_run_results_run_date", table_name="parallel_run_results")
    op.drop_table("parallel_run_results")

    op.drop_index("ix_migration_row_errors_run_id", table_name="migration_row_errors")
    op.drop_table("migration_row_errors")

    op.drop_index("ix_migration_runs_entity_status", table_name="migration_runs")
    op.drop_table("migration_runs")

    op.execute("DROP TYPE IF EXISTS resolutionaction")
    op.execute("DROP TYPE IF EXISTS discrepancyseverity")
    op.execute("DROP TYPE IF EXISTS discrepancytype")
