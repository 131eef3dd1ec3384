"""submission owner, section notes, notifications and project drafts

Revision ID: 0002_optional_columns
Revises: 0001_initial_schema
Create Date: 2026-10-08 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_optional_columns"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("report_submission") as batch:
        batch.add_column(sa.Column("user_id", sa.String(length=255), nullable=True))
        batch.create_index("ix_report_submission_user_id", ["user_id"], unique=False)

    with op.batch_alter_table("report_section") as batch:
        batch.add_column(sa.Column("chart_caption", sa.Text(), nullable=True))
        batch.add_column(sa.Column("design_notes", sa.Text(), nullable=True))

    op.create_table(
        "notification",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("org_id", sa.String(length=64), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("link", sa.Text(), nullable=True),
        sa.Column("submission_id", sa.String(length=36), nullable=True),
        sa.Column("is_read", sa.Boolean(), server_default=sa.text("0"), nullable=False),
        sa.Column("read_at", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_org_id", "notification", ["org_id"], unique=False)
    op.create_index(
        "ix_notification_org_created", "notification", ["org_id", "created_at"], unique=False
    )

    op.create_table(
        "report_draft",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("project_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["report_project.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_report_draft_project_id", "report_draft", ["project_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_report_draft_project_id", table_name="report_draft")
    op.drop_table("report_draft")

    op.drop_index("ix_notification_org_created", table_name="notification")
    op.drop_index("ix_notification_org_id", table_name="notification")
    op.drop_table("notification")

    with op.batch_alter_table("report_section") as batch:
        batch.drop_column("design_notes")
        batch.drop_column("chart_caption")

    with op.batch_alter_table("report_submission") as batch:
        batch.drop_index("ix_report_submission_user_id")
        batch.drop_column("user_id")
