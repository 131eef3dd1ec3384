"""Cascading deletes for projects and submissions.

File URLs are collected from the rows before anything is deleted; storage
removal is best-effort and never blocks the row deletion. The store does not
enforce foreign keys for us, so rows go child-first.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from township_server.db import contributor_session, report_draft, report_project, report_submission
from township_server.observability import log_event
from township_server.schema_compat import table_exists
from township_server.storage import ObjectStore, remove_urls
from township_server.submissions import (
    attach_sections,
    collect_file_urls,
    delete_sections,
    submission_columns,
)


def _submission_tree(session: Session, submission_ids: list[str]) -> list[dict]:
    if not submission_ids:
        return []
    rows = (
        session.execute(
            select(*submission_columns(session)).where(report_submission.c.id.in_(submission_ids))
        )
        .mappings()
        .all()
    )
    return attach_sections(session, [dict(r) for r in rows])


def _detach_sessions(session: Session, submission_ids: list[str]) -> None:
    session.execute(
        contributor_session.update()
        .where(contributor_session.c.submission_id.in_(submission_ids))
        .values(submission_id=None)
    )


def delete_submission_tree(session: Session, store: ObjectStore, submission: dict) -> int:
    """Delete one submission with its sections and stats. Returns storage paths attempted."""
    tree = attach_sections(session, [dict(submission)])[0]
    urls = collect_file_urls(tree)
    delete_sections(session, [tree["id"]])
    _detach_sessions(session, [tree["id"]])
    session.execute(report_submission.delete().where(report_submission.c.id == tree["id"]))
    attempted = remove_urls(store, urls, context={"submission_id": tree["id"]})
    log_event("submission.deleted", submission_id=tree["id"], files=attempted)
    return attempted


def delete_project_tree(session: Session, store: ObjectStore, project_id: str) -> int:
    """Delete a project and everything under it. Returns storage paths attempted."""
    submission_ids = list(
        session.execute(
            select(report_submission.c.id).where(report_submission.c.project_id == project_id)
        ).scalars()
    )
    session_ids = list(
        session.execute(
            select(contributor_session.c.id).where(contributor_session.c.project_id == project_id)
        ).scalars()
    )
    urls: list[str] = []
    for submission in _submission_tree(session, submission_ids):
        urls.extend(collect_file_urls(submission))
    attempted = remove_urls(store, urls, context={"project_id": project_id})

    if submission_ids:
        delete_sections(session, submission_ids)
        _detach_sessions(session, submission_ids)
    if session_ids:
        session.execute(
            report_submission.update()
            .where(report_submission.c.contributor_session_id.in_(session_ids))
            .values(contributor_session_id=None)
        )
    session.execute(contributor_session.delete().where(contributor_session.c.project_id == project_id))
    if submission_ids:
        session.execute(report_submission.delete().where(report_submission.c.id.in_(submission_ids)))
    if table_exists(session, report_draft):
        session.execute(report_draft.delete().where(report_draft.c.project_id == project_id))
    session.execute(report_project.delete().where(report_project.c.id == project_id))
    log_event(
        "project.deleted",
        project_id=project_id,
        submissions=len(submission_ids),
        sessions=len(session_ids),
        files=attempted,
    )
    return attempted
