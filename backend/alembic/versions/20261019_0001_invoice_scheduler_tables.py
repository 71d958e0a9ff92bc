"""Create schedule, run log, reference data, invoice, and delivery log tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "invoice_schedules",
        sa.Column("schedule_id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=True),
        sa.Column("cadence", sa.String(length=16), nullable=False),
        sa.Column("weekday", sa.Integer(), nullable=True),
        sa.Column("day_of_month", sa.Integer(), nullable=True),
        sa.Column("hour_of_day", sa.Integer(), nullable=False, server_default="6"),
        sa.Column("recipients", sa.String(length=1000), nullable=False, server_default=""),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("schedule_id"),
    )
    op.create_index("ix_invoice_schedules_tenant_id", "invoice_schedules", ["tenant_id"], unique=False)
    op.create_index("ix_invoice_schedules_next_run_at", "invoice_schedules", ["next_run_at"], unique=False)

    op.create_table(
        "tenants",
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.PrimaryKeyConstraint("tenant_id"),
    )

    op.create_table(
        "grades",
        sa.Column("grade_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("hourly_rate", sa.Numeric(12, 2), nullable=False),
        sa.PrimaryKeyConstraint("grade_id"),
    )

    op.create_table(
        "performers",
        sa.Column("performer_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("grade_id", sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint("performer_id"),
    )

    op.create_table(
        "work_records",
        sa.Column("work_record_id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=True),
        sa.Column("performer_id", sa.String(length=64), nullable=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("hours", sa.Float(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.PrimaryKeyConstraint("work_record_id"),
    )
    op.create_index("ix_work_records_tenant_id", "work_records", ["tenant_id"], unique=False)
    op.create_index("ix_work_records_status", "work_records", ["status"], unique=False)

    op.create_table(
        "invoices",
        sa.Column("invoice_id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("number", sa.String(length=96), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("customer_name", sa.String(length=200), nullable=True),
        sa.Column("project_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column("email_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("invoice_id"),
        sa.UniqueConstraint("tenant_id", "number", name="uq_invoices_tenant_number"),
    )
    op.create_index("ix_invoices_tenant_id", "invoices", ["tenant_id"], unique=False)

    op.create_table(
        "invoice_lines",
        sa.Column("line_id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("invoice_id", sa.Integer(), nullable=False),
        sa.Column("work_record_id", sa.String(length=64), nullable=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("performer_name", sa.String(length=100), nullable=True),
        sa.Column("grade_name", sa.String(length=100), nullable=True),
        sa.Column("hourly_rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("hours", sa.Float(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.invoice_id"]),
        sa.PrimaryKeyConstraint("line_id"),
    )
    op.create_index("ix_invoice_lines_invoice_id", "invoice_lines", ["invoice_id"], unique=False)

    op.create_table(
        "invoice_counters",
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("last_sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("tenant_id"),
    )

    op.create_table(
        "invoice_schedule_runs",
        sa.Column("run_id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("schedule_id", sa.Integer(), nullable=False),
        sa.Column("run_started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("run_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invoice_id", sa.Integer(), nullable=True),
        sa.Column("tasks_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_success", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("error", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["schedule_id"], ["invoice_schedules.schedule_id"]),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.invoice_id"]),
        sa.PrimaryKeyConstraint("run_id"),
    )
    op.create_index("ix_invoice_schedule_runs_schedule_id", "invoice_schedule_runs", ["schedule_id"], unique=False)
    op.create_index(
        "ix_invoice_schedule_runs_run_started_at",
        "invoice_schedule_runs",
        ["run_started_at"],
        unique=False,
    )

    op.create_table(
        "invoice_delivery_logs",
        sa.Column("delivery_id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("invoice_id", sa.Integer(), nullable=False),
        sa.Column("recipient", sa.String(length=256), nullable=False),
        sa.Column("subject", sa.String(length=256), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("is_success", sa.Boolean(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.invoice_id"]),
        sa.PrimaryKeyConstraint("delivery_id"),
    )
    op.create_index("ix_invoice_delivery_logs_invoice_id", "invoice_delivery_logs", ["invoice_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_invoice_delivery_logs_invoice_id", table_name="invoice_delivery_logs")
    op.drop_table("invoice_delivery_logs")
    op.drop_index("ix_invoice_schedule_runs_run_started_at", table_name="invoice_schedule_runs")
    op.drop_index("ix_invoice_schedule_runs_schedule_id", table_name="invoice_schedule_runs")
    op.drop_table("invoice_schedule_runs")
    op.drop_table("invoice_counters")
    op.drop_index("ix_invoice_lines_invoice_id", table_name="invoice_lines")
    op.drop_table("invoice_lines")
    op.drop_index("ix_invoices_tenant_id", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_work_records_status", table_name="work_records")
    op.drop_index("ix_work_records_tenant_id", table_name="work_records")
    op.drop_table("work_records")
    op.drop_table("performers")
    op.drop_table("grades")
    op.drop_table("tenants")
    op.drop_index("ix_invoice_schedules_next_run_at", table_name="invoice_schedules")
    op.drop_index("ix_invoice_schedules_tenant_id", table_name="invoice_schedules")
    op.drop_table("invoice_schedules")
