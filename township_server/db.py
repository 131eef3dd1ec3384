from __future__ import annotations

import argparse
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from functools import lru_cache
from pathlib import Path

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.orm import Session

from township_server.config import settings

ROOT = Path(__file__).resolve().parents[1]

metadata = MetaData()

organization = Table(
    "organization",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("slug", String(255), nullable=False, unique=True),
    Column("image_url", Text),
    Column("created_by", String(255)),
    Column("created_at", BigInteger, nullable=False),
)

app_user = Table(
    "app_user",
    metadata,
    Column("id", String(255), primary_key=True),
    Column("email", String(255), nullable=False),
    Column("first_name", String(255)),
    Column("last_name", String(255)),
    Column("image_url", Text),
    Column("public_metadata_json", JSON, nullable=False),
    Column("created_at", BigInteger, nullable=False),
    Column("last_sign_in_at", BigInteger),
)

organization_membership = Table(
    "organization_membership",
    metadata,
    Column("organization_id", String(64), ForeignKey("organization.id"), primary_key=True),
    Column("user_id", String(255), primary_key=True),
    Column("email", String(255), nullable=False),
    Column("role", String(32), nullable=False),
    Column("created_at", BigInteger, nullable=False),
)

organization_invitation = Table(
    "organization_invitation",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("organization_id", String(64), ForeignKey("organization.id"), nullable=False),
    Column("email_address", String(255), nullable=False),
    Column("role", String(32), nullable=False),
    Column("status", String(16), nullable=False),
    Column("inviter_user_id", String(255), nullable=False),
    Column("created_at", BigInteger, nullable=False),
)

report_project = Table(
    "report_project",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("org_id", String(64), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("organization_name", String(255), nullable=False),
    Column("description", Text),
    Column("year", String(16)),
    Column("share_id", String(16), nullable=False, unique=True),
    Column("status", String(32), nullable=False),
    Column("allow_public_submissions", Boolean, nullable=False, default=True),
    Column("created_by", String(255)),
    Column("created_at", BigInteger, nullable=False),
    Column("updated_at", BigInteger, nullable=False),
    Column("finalized_at", BigInteger),
    Column("finalized_by", String(255)),
)

contributor_session = Table(
    "contributor_session",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("project_id", String(36), ForeignKey("report_project.id"), nullable=False),
    Column("user_id", String(255), nullable=False),
    Column("draft_data", JSON, nullable=False),
    Column("status", String(16), nullable=False),
    Column("submission_id", String(36)),
    Column("created_at", BigInteger, nullable=False),
    Column("updated_at", BigInteger, nullable=False),
)

report_submission = Table(
    "report_submission",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("project_id", String(36), ForeignKey("report_project.id"), index=True),
    Column("contributor_session_id", String(36), ForeignKey("contributor_session.id")),
    Column("user_id", String(255), index=True),
    Column("submitter_name", String(255)),
    Column("submitter_email", String(255)),
    Column("additional_notes", Text),
    Column("organization_name", String(255), nullable=False),
    Column("report_name", String(255)),
    Column("tagline", Text),
    Column("include_opening_letter", Boolean),
    Column("letter_title", String(255)),
    Column("letter_subtitle", String(255)),
    Column("letter_content", Text),
    Column("letter_image1_caption", Text),
    Column("letter_image2_caption", Text),
    Column("department", String(255)),
    Column("street_address", String(255)),
    Column("city_state_zip", String(255)),
    Column("phone", String(64)),
    Column("email", String(255)),
    Column("website", String(255)),
    Column("logo_url", Text),
    Column("letter_headshot_url", Text),
    Column("letter_image1_url", Text),
    Column("letter_image2_url", Text),
    Column("created_at", BigInteger, nullable=False),
    Column("updated_at", BigInteger, nullable=False),
)

report_section = Table(
    "report_section",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "submission_id", String(36), ForeignKey("report_submission.id"), nullable=False, index=True
    ),
    Column("section_order", Integer, nullable=False),
    Column("title", String(255), nullable=False),
    Column("content", Text, nullable=False),
    Column("image_urls", JSON, nullable=False),
    Column("image_captions", JSON, nullable=False),
    Column("chart_link", Text),
    Column("chart_caption", Text),
    Column("design_notes", Text),
    Column("created_at", BigInteger, nullable=False),
)

report_section_stat = Table(
    "report_section_stat",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("section_id", String(36), ForeignKey("report_section.id"), nullable=False, index=True),
    Column("stat_order", Integer, nullable=False),
    Column("label", String(255), nullable=False),
    Column("value", String(255), nullable=False),
)

notification = Table(
    "notification",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("org_id", String(64), nullable=False, index=True),
    Column("type", String(64), nullable=False),
    Column("title", String(255), nullable=False),
    Column("message", Text, nullable=False),
    Column("link", Text),
    Column("submission_id", String(36)),
    Column("is_read", Boolean, nullable=False, default=False),
    Column("read_at", BigInteger),
    Column("created_at", BigInteger, nullable=False),
)

report_draft = Table(
    "report_draft",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("project_id", String(36), ForeignKey("report_project.id"), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("data", JSON, nullable=False),
    Column("created_by", String(255), nullable=False),
    Column("created_at", BigInteger, nullable=False),
    Column("updated_at", BigInteger, nullable=False),
)

asset = Table(
    "asset",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("org_id", String(64), nullable=False, index=True),
    Column("org_name", String(255)),
    Column("file_name", String(255), nullable=False),
    Column("file_path", Text, nullable=False),
    Column("file_type", String(128)),
    Column("file_size", BigInteger, nullable=False),
    Column("category", String(64), nullable=False),
    Column("description", Text, nullable=False),
    Column("uploaded_by", String(255), nullable=False),
    Column("created_at", BigInteger, nullable=False),
)

Index(
    "ix_contributor_session_project_user",
    contributor_session.c.project_id,
    contributor_session.c.user_id,
)
Index("ix_section_submission_order", report_section.c.submission_id, report_section.c.section_order)
Index("ix_notification_org_created", notification.c.org_id, notification.c.created_at)


@lru_cache(maxsize=8)
def get_engine(db_url: str | None = None):
    url = db_url or settings.db_url
    if url.startswith("sqlite:///") and not url.startswith("sqlite:///:memory:"):
        Path(url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(url, future=True)
    if engine.dialect.name == "sqlite":
        # pysqlite defers BEGIN and breaks SAVEPOINT; emit BEGIN ourselves.
        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


@contextmanager
def session_scope(db_url: str | None = None):
    engine = get_engine(db_url)
    with Session(engine) as session:
        yield session


def init_db(db_url: str | None = None) -> None:
    engine = get_engine(db_url)
    metadata.create_all(engine)


def upgrade_db(db_url: str | None = None, revision: str = "head") -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config()
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", db_url or settings.db_url)
    command.upgrade(cfg, revision)


def now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


def ensure_dev_seed(db_url: str | None = None) -> None:
    with session_scope(db_url) as session:
        exists = session.execute(select(organization.c.id).limit(1)).first()
        if exists:
            return
        t = now_ms()
        org_id = "org_local"
        session.execute(
            organization.insert().values(
                id=org_id, name="Local Township", slug="local-township", created_at=t
            )
        )
        session.execute(
            app_user.insert(),
            [
                {
                    "id": "user_admin",
                    "email": "admin@example.com",
                    "first_name": "Ada",
                    "last_name": "Admin",
                    "public_metadata_json": {},
                    "created_at": t,
                },
                {
                    "id": "user_member",
                    "email": "member@example.com",
                    "first_name": "Max",
                    "last_name": "Member",
                    "public_metadata_json": {},
                    "created_at": t,
                },
                {
                    "id": "user_super",
                    "email": "super@example.com",
                    "first_name": "Sam",
                    "last_name": "Super",
                    "public_metadata_json": {"role": "superadmin"},
                    "created_at": t,
                },
            ],
        )
        session.execute(
            organization_membership.insert(),
            [
                {
                    "organization_id": org_id,
                    "user_id": "user_admin",
                    "email": "admin@example.com",
                    "role": "org:admin",
                    "created_at": t,
                },
                {
                    "organization_id": org_id,
                    "user_id": "user_member",
                    "email": "member@example.com",
                    "role": "org:member",
                    "created_at": t,
                },
            ],
        )
        session.execute(
            report_project.insert().values(
                id=new_id(),
                org_id=org_id,
                name="2025 Annual Report",
                organization_name="Local Township",
                description="Collecting photos, stats and stories for the annual report.",
                year="2025",
                share_id="demo2025",
                status="collecting_assets",
                allow_public_submissions=True,
                created_by="user_admin",
                created_at=t,
                updated_at=t,
            )
        )
        session.commit()


def _cli() -> None:
    parser = argparse.ArgumentParser()
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init")
    upgrade = sub.add_parser("upgrade")
    upgrade.add_argument("revision", nargs="?", default="head")
    sub.add_parser("seed")
    args = parser.parse_args()
    if args.command == "init":
        init_db()
    elif args.command == "upgrade":
        upgrade_db(revision=args.revision)
    elif args.command == "seed":
        init_db()
        ensure_dev_seed()


if __name__ == "__main__":
    _cli()
