"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-01 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "organization",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "app_user",
        sa.Column("id", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=255), nullable=True),
        sa.Column("last_name", sa.String(length=255), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("public_metadata_json", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("last_sign_in_at", sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "organization_membership",
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["organization_id"], ["organization.id"]),
        sa.PrimaryKeyConstraint("organization_id", "user_id"),
    )

    op.create_table(
        "organization_invitation",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("email_address", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("inviter_user_id", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["organization_id"], ["organization.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "report_project",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("org_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("organization_name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("year", sa.String(length=16), nullable=True),
        sa.Column("share_id", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("allow_public_submissions", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.BigInteger(), nullable=False),
        sa.Column("finalized_at", sa.BigInteger(), nullable=True),
        sa.Column("finalized_by", sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("share_id"),
    )
    op.create_index("ix_report_project_org_id", "report_project", ["org_id"], unique=False)

    op.create_table(
        "contributor_session",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("project_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("draft_data", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("submission_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["report_project.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_contributor_session_project_user",
        "contributor_session",
        ["project_id", "user_id"],
        unique=False,
    )

    # user_id arrives in 0002.
    op.create_table(
        "report_submission",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("project_id", sa.String(length=36), nullable=True),
        sa.Column("contributor_session_id", sa.String(length=36), nullable=True),
        sa.Column("submitter_name", sa.String(length=255), nullable=True),
        sa.Column("submitter_email", sa.String(length=255), nullable=True),
        sa.Column("additional_notes", sa.Text(), nullable=True),
        sa.Column("organization_name", sa.String(length=255), nullable=False),
        sa.Column("report_name", sa.String(length=255), nullable=True),
        sa.Column("tagline", sa.Text(), nullable=True),
        sa.Column("include_opening_letter", sa.Boolean(), nullable=True),
        sa.Column("letter_title", sa.String(length=255), nullable=True),
        sa.Column("letter_subtitle", sa.String(length=255), nullable=True),
        sa.Column("letter_content", sa.Text(), nullable=True),
        sa.Column("letter_image1_caption", sa.Text(), nullable=True),
        sa.Column("letter_image2_caption", sa.Text(), nullable=True),
        sa.Column("department", sa.String(length=255), nullable=True),
        sa.Column("street_address", sa.String(length=255), nullable=True),
        sa.Column("city_state_zip", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("website", sa.String(length=255), nullable=True),
        sa.Column("logo_url", sa.Text(), nullable=True),
        sa.Column("letter_headshot_url", sa.Text(), nullable=True),
        sa.Column("letter_image1_url", sa.Text(), nullable=True),
        sa.Column("letter_image2_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["report_project.id"]),
        sa.ForeignKeyConstraint(["contributor_session_id"], ["contributor_session.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_report_submission_project_id", "report_submission", ["project_id"], unique=False
    )

    # chart_caption and design_notes arrive in 0002.
    op.create_table(
        "report_section",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("submission_id", sa.String(length=36), nullable=False),
        sa.Column("section_order", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("image_urls", sa.JSON(), nullable=False),
        sa.Column("image_captions", sa.JSON(), nullable=False),
        sa.Column("chart_link", sa.Text(), nullable=True),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["submission_id"], ["report_submission.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_report_section_submission_id", "report_section", ["submission_id"], unique=False
    )
    op.create_index(
        "ix_section_submission_order",
        "report_section",
        ["submission_id", "section_order"],
        unique=False,
    )

    op.create_table(
        "report_section_stat",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("section_id", sa.String(length=36), nullable=False),
        sa.Column("stat_order", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("value", sa.String(length=255), nullable=False),
        sa.ForeignKeyConstraint(["section_id"], ["report_section.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_report_section_stat_section_id", "report_section_stat", ["section_id"], unique=False
    )

    op.create_table(
        "asset",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("org_id", sa.String(length=64), nullable=False),
        sa.Column("org_name", sa.String(length=255), nullable=True),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_path", sa.Text(), nullable=False),
        sa.Column("file_type", sa.String(length=128), nullable=True),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("uploaded_by", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_asset_org_id", "asset", ["org_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_asset_org_id", table_name="asset")
    op.drop_table("asset")

    op.drop_index("ix_report_section_stat_section_id", table_name="report_section_stat")
    op.drop_table("report_section_stat")

    op.drop_index("ix_section_submission_order", table_name="report_section")
    op.drop_index("ix_report_section_submission_id", table_name="report_section")
    op.drop_table("report_section")

    op.drop_index("ix_report_submission_project_id", table_name="report_submission")
    op.drop_table("report_submission")

    op.drop_index("ix_contributor_session_project_user", table_name="contributor_session")
    op.drop_table("contributor_session")

    op.drop_index("ix_report_project_org_id", table_name="report_project")
    op.drop_table("report_project")

    op.drop_table("organization_invitation")
    op.drop_table("organization_membership")
    op.drop_table("app_user")
    op.drop_table("organization")
