from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from township_server.db import new_id, notification, now_ms
from township_server.observability import increment, log_event, log_warning
from township_server.schema_compat import table_exists


def notify(
    session: Session,
    *,
    org_id: str,
    type: str,
    title: str,
    message: str,
    link: str | None = None,
    submission_id: str | None = None,
) -> bool:
    """Insert a notification without ever failing the caller's operation."""
    if not table_exists(session, notification):
        log_event("notification.skipped", reason="table_missing", type=type)
        return False
    try:
        with session.begin_nested():
            session.execute(
                notification.insert().values(
                    id=new_id(),
                    org_id=org_id,
                    type=type,
                    title=title,
                    message=message,
                    link=link,
                    submission_id=submission_id,
                    is_read=False,
                    created_at=now_ms(),
                )
            )
    except SQLAlchemyError as exc:
        log_warning("notification.insert_failed", type=type, org_id=org_id, error=str(exc))
        return False
    increment("notifications.created")
    return True


def list_for_org(session: Session, org_id: str, limit: int) -> list[dict[str, Any]]:
    if not table_exists(session, notification):
        return []
    rows = (
        session.execute(
            select(notification)
            .where(notification.c.org_id == org_id)
            .order_by(notification.c.created_at.desc())
            .limit(limit)
        )
        .mappings()
        .all()
    )
    return [dict(r) for r in rows]


def mark_read(
    session: Session, org_id: str, *, notification_id: str | None = None, all_unread: bool = False
) -> int:
    if not table_exists(session, notification):
        return 0
    stmt = notification.update().where(notification.c.org_id == org_id)
    if all_unread:
        stmt = stmt.where(notification.c.is_read.is_(False))
    elif notification_id:
        stmt = stmt.where(notification.c.id == notification_id)
    else:
        return 0
    result = session.execute(stmt.values(is_read=True, read_at=now_ms()))
    return result.rowcount
