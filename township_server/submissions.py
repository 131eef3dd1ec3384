"""Submission persistence: the create / finalize / update phases.

A submission is written in separate requests because file uploads need the
submission id for their storage paths. ``create`` writes the flat submission
row; ``finalize`` attaches uploaded file URLs and inserts sections; ``update``
replaces every section of an existing submission.

Sections are inserted one savepoint at a time. A section that fails is rolled
back on its own and reported in the batch result; the others still commit.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from township_server.db import (
    contributor_session,
    new_id,
    now_ms,
    report_project,
    report_section,
    report_section_stat,
    report_submission,
)
from township_server.notifications import notify
from township_server.observability import increment, log_event, log_warning
from township_server.schema_compat import insert_with_optional_columns, supported_values
from township_server.schemas import (
    ContentCardIn,
    CoverIn,
    FooterIn,
    LetterIn,
    ReviewIn,
    SectionIn,
    SubmitRequest,
)

CARD_OPEN = "[CARD]"
CARD_CLOSE = "[/CARD]"
_CARD_RE = re.compile(r"\[CARD\]\n(.*?)\n\[/CARD\]", re.DOTALL)

FILE_URL_COLUMNS = ("logo_url", "letter_headshot_url", "letter_image1_url", "letter_image2_url")


class SubmissionNotFound(LookupError):
    pass


class SubmissionAlreadyFinalized(Exception):
    pass


@dataclass
class SectionBatchResult:
    succeeded: list[int] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {"succeeded": self.succeeded, "failed": self.failed}


def combine_content(content: str | None, cards: list[ContentCardIn]) -> str:
    text = content or ""
    blocks = [
        f"{CARD_OPEN}\n{(card.title or '').strip()}\n{(card.body or '').strip()}\n{CARD_CLOSE}"
        for card in cards
    ]
    if not blocks:
        return text
    cards_text = "\n\n".join(blocks)
    return f"{text}\n\n{cards_text}" if text else cards_text


def split_content(stored: str | None) -> tuple[str, list[dict[str, str]]]:
    """Inverse of ``combine_content``: free text and the card blocks."""
    if not stored:
        return "", []
    cards = []
    for match in _CARD_RE.finditer(stored):
        title, _, body = match.group(1).partition("\n")
        cards.append({"title": title, "body": body})
    text = _CARD_RE.sub("", stored).strip()
    return text, cards


def section_media(section: SectionIn) -> tuple[list[str], list[str], str | None, str | None]:
    """Fold legacy ``images`` entries into image URLs plus one chart link/caption pair."""
    urls = list(section.image_urls)
    captions = list(section.image_captions)
    chart_link = section.chart_link or None
    chart_caption = section.chart_caption or None
    for image in section.images:
        if not image.url:
            continue
        if image.is_chart:
            chart_link = chart_link or image.url
            chart_caption = chart_caption or image.caption
            continue
        urls.append(image.url)
        if image.caption:
            captions.append(image.caption)
    return urls, captions, chart_link, chart_caption


def submission_values(
    cover: CoverIn | None, letter: LetterIn | None, footer: FooterIn | None, review: ReviewIn | None
) -> dict[str, Any]:
    cover = cover or CoverIn()
    letter = letter or LetterIn()
    footer = footer or FooterIn()
    review = review or ReviewIn()
    return {
        "submitter_name": review.submitter_name,
        "submitter_email": review.submitter_email,
        "additional_notes": review.additional_notes,
        "organization_name": cover.organization_name,
        "report_name": cover.report_name,
        "tagline": cover.tagline,
        "include_opening_letter": letter.include_opening_letter,
        "letter_title": letter.letter_title,
        "letter_subtitle": letter.letter_subtitle,
        "letter_content": letter.letter_content,
        "letter_image1_caption": letter.letter_image1_caption,
        "letter_image2_caption": letter.letter_image2_caption,
        "department": footer.department,
        "street_address": footer.street_address,
        "city_state_zip": footer.city_state_zip,
        "phone": footer.phone,
        "email": footer.email,
        "website": footer.website,
    }


def partial_submission_values(
    cover: CoverIn | None, letter: LetterIn | None, footer: FooterIn | None, review: ReviewIn | None
) -> dict[str, Any]:
    """Column values for the groups that were sent; absent groups are left untouched."""
    full = submission_values(cover, letter, footer, review)
    groups = (
        (cover, CoverIn),
        (letter, LetterIn),
        (footer, FooterIn),
        (review, ReviewIn),
    )
    out = {}
    for value, model in groups:
        if value is None:
            continue
        for name in model.model_fields:
            if name in full:
                out[name] = full[name]
    return out


def create_submission(session: Session, body: SubmitRequest, user_id: str | None) -> str:
    submission_id = new_id()
    t = now_ms()
    required = {
        "id": submission_id,
        "project_id": body.project_id or None,
        "contributor_session_id": body.contributor_session_id or None,
        "created_at": t,
        "updated_at": t,
        **submission_values(body.cover, body.letter, body.footer, body.review),
    }
    optional = {"user_id": user_id} if user_id else {}
    insert_with_optional_columns(session, report_submission, required, optional)
    increment("submissions.created")
    return submission_id


def submission_columns(session: Session) -> list:
    columns = [c for c in report_submission.c if c.name != "user_id"]
    columns.extend(
        report_submission.c[name]
        for name in supported_values(session, report_submission, {"user_id": None})
    )
    return columns


def get_submission_row(session: Session, submission_id: str) -> dict[str, Any]:
    columns = submission_columns(session)
    row = (
        session.execute(select(*columns).where(report_submission.c.id == submission_id))
        .mappings()
        .one_or_none()
    )
    if row is None:
        raise SubmissionNotFound(submission_id)
    out = dict(row)
    out.setdefault("user_id", None)
    return out


def _set_file_urls(session: Session, submission_id: str, body: SubmitRequest) -> None:
    session.execute(
        report_submission.update()
        .where(report_submission.c.id == submission_id)
        .values(
            logo_url=body.logo_url,
            letter_headshot_url=body.headshot_url,
            letter_image1_url=body.letter_image1_url,
            letter_image2_url=body.letter_image2_url,
            updated_at=now_ms(),
        )
    )


def _insert_section(session: Session, submission_id: str, index: int, section: SectionIn) -> str:
    urls, captions, chart_link, chart_caption = section_media(section)
    section_id = new_id()
    required = {
        "id": section_id,
        "submission_id": submission_id,
        "section_order": section.order if section.order is not None else index,
        "title": section.title,
        "content": combine_content(section.content, section.content_cards),
        "image_urls": urls,
        "image_captions": captions,
        "chart_link": chart_link,
        "created_at": now_ms(),
    }
    optional = {}
    if chart_caption:
        optional["chart_caption"] = chart_caption
    if section.design_notes:
        optional["design_notes"] = section.design_notes
    insert_with_optional_columns(session, report_section, required, optional)

    stats = [
        {
            "id": new_id(),
            "section_id": section_id,
            "stat_order": i,
            "label": s.label or "",
            "value": s.value or "",
        }
        for i, s in enumerate(section.stats)
    ]
    if stats:
        session.execute(report_section_stat.insert(), stats)
    return section_id


def insert_sections(session: Session, submission_id: str, sections: list[SectionIn]) -> SectionBatchResult:
    result = SectionBatchResult()
    for index, section in enumerate(sections):
        try:
            with session.begin_nested():
                _insert_section(session, submission_id, index, section)
        except SQLAlchemyError as exc:
            reason = str(getattr(exc, "orig", exc))
            log_warning(
                "submission.section_insert_failed",
                submission_id=submission_id,
                index=index,
                title=section.title,
                error=reason,
            )
            result.failed.append({"index": index, "title": section.title, "reason": reason})
        else:
            result.succeeded.append(index)
    increment("sections.inserted", len(result.succeeded))
    return result


def delete_sections(session: Session, submission_ids: list[str]) -> list[str]:
    section_ids = list(
        session.execute(
            select(report_section.c.id).where(report_section.c.submission_id.in_(submission_ids))
        ).scalars()
    )
    if section_ids:
        # Stats first: the store may not cascade.
        session.execute(
            report_section_stat.delete().where(report_section_stat.c.section_id.in_(section_ids))
        )
        session.execute(report_section.delete().where(report_section.c.id.in_(section_ids)))
    return section_ids


def _mark_session_submitted(session: Session, session_id: str, submission_id: str) -> bool:
    result = session.execute(
        contributor_session.update()
        .where(contributor_session.c.id == session_id, contributor_session.c.status == "drafting")
        .values(status="submitted", submission_id=submission_id, updated_at=now_ms())
    )
    return result.rowcount > 0


def _notify_new_submission(session: Session, row: dict[str, Any]) -> None:
    if not row.get("project_id"):
        return
    org_id = session.execute(
        select(report_project.c.org_id).where(report_project.c.id == row["project_id"])
    ).scalar_one_or_none()
    if not org_id:
        return
    notify(
        session,
        org_id=org_id,
        type="new_submission",
        title="New Submission",
        message=(
            f"New submission received for {row.get('report_name') or 'report'} "
            f"from {row.get('organization_name') or 'Unknown'}"
        ),
        link=f"/projects/{row['project_id']}",
        submission_id=row["id"],
    )


def is_finalized(session: Session, submission_id: str) -> bool:
    """A submission is finalized once it has sections or a session marked submitted for it."""
    has_sections = session.execute(
        select(report_section.c.id).where(report_section.c.submission_id == submission_id).limit(1)
    ).first()
    if has_sections:
        return True
    submitted = session.execute(
        select(contributor_session.c.id)
        .where(
            contributor_session.c.submission_id == submission_id,
            contributor_session.c.status == "submitted",
        )
        .limit(1)
    ).first()
    return submitted is not None


def finalize_submission(session: Session, body: SubmitRequest) -> dict[str, Any]:
    row = get_submission_row(session, body.submission_id)
    if is_finalized(session, row["id"]):
        raise SubmissionAlreadyFinalized(row["id"])
    _set_file_urls(session, row["id"], body)
    result = insert_sections(session, row["id"], body.sections)
    session_id = body.contributor_session_id or row.get("contributor_session_id")
    session_submitted = False
    if session_id:
        session_submitted = _mark_session_submitted(session, session_id, row["id"])
    _notify_new_submission(session, row)
    log_event(
        "submission.finalized",
        submission_id=row["id"],
        sections_ok=len(result.succeeded),
        sections_failed=len(result.failed),
        session_submitted=session_submitted,
    )
    return {"submissionId": row["id"], "sections": result.as_dict()}


def replace_sections(session: Session, body: SubmitRequest) -> dict[str, Any]:
    row = get_submission_row(session, body.submission_id)
    _set_file_urls(session, row["id"], body)
    removed = delete_sections(session, [row["id"]])
    result = insert_sections(session, row["id"], body.sections)
    log_event(
        "submission.sections_replaced",
        submission_id=row["id"],
        removed=len(removed),
        sections_ok=len(result.succeeded),
        sections_failed=len(result.failed),
    )
    return {"submissionId": row["id"], "updated": True, "sections": result.as_dict()}


def update_submission_fields(session: Session, submission_id: str, values: dict[str, Any]) -> None:
    session.execute(
        report_submission.update()
        .where(report_submission.c.id == submission_id)
        .values(**values, updated_at=now_ms())
    )


def _section_out(row: dict[str, Any], stats: list[dict[str, Any]]) -> dict[str, Any]:
    out = dict(row)
    out.setdefault("chart_caption", None)
    out.setdefault("design_notes", None)
    text, cards = split_content(row["content"])
    out["content_text"] = text
    out["content_cards"] = cards
    out["stats"] = stats
    return out


def attach_sections(session: Session, submissions: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Add ordered ``sections`` (each with ordered ``stats``) to submission dicts."""
    ids = [s["id"] for s in submissions]
    for s in submissions:
        s["sections"] = []
    if not ids:
        return submissions
    live = set(supported_values(session, report_section, {"chart_caption": 1, "design_notes": 1}))
    columns = [c for c in report_section.c if c.name not in {"chart_caption", "design_notes"} or c.name in live]
    section_rows = (
        session.execute(
            select(*columns)
            .where(report_section.c.submission_id.in_(ids))
            .order_by(report_section.c.submission_id, report_section.c.section_order.asc())
        )
        .mappings()
        .all()
    )
    stats_by_section: dict[str, list[dict[str, Any]]] = {}
    section_ids = [r["id"] for r in section_rows]
    if section_ids:
        for stat in (
            session.execute(
                select(report_section_stat)
                .where(report_section_stat.c.section_id.in_(section_ids))
                .order_by(report_section_stat.c.section_id, report_section_stat.c.stat_order.asc())
            )
            .mappings()
            .all()
        ):
            stats_by_section.setdefault(stat["section_id"], []).append(dict(stat))
    by_submission = {s["id"]: s for s in submissions}
    for r in section_rows:
        by_submission[r["submission_id"]]["sections"].append(
            _section_out(dict(r), stats_by_section.get(r["id"], []))
        )
    return submissions


def load_submission(session: Session, submission_id: str) -> dict[str, Any]:
    row = get_submission_row(session, submission_id)
    return attach_sections(session, [row])[0]


def load_project_submissions(session: Session, project_id: str) -> list[dict[str, Any]]:
    columns = submission_columns(session)
    rows = (
        session.execute(
            select(*columns)
            .where(report_submission.c.project_id == project_id)
            .order_by(report_submission.c.created_at.desc())
        )
        .mappings()
        .all()
    )
    return attach_sections(session, [dict(r) for r in rows])


def collect_file_urls(submission: dict[str, Any]) -> list[str]:
    """Every file URL a submission tree references, in row order, without deduplication."""
    urls = [submission[c] for c in FILE_URL_COLUMNS if submission.get(c)]
    for section in submission.get("sections", []):
        image_urls = section.get("image_urls")
        if isinstance(image_urls, list):
            urls.extend(u for u in image_urls if u)
        if section.get("chart_link"):
            urls.append(section["chart_link"])
    return urls
