from __future__ import annotations

import pytest
from fastapi import HTTPException, Response
from sqlalchemy import select

from township_server.auth import ANONYMOUS, AuthContext
from township_server.db import contributor_session, report_project, report_section_stat, session_scope
from township_server.main import (
    finalize_project,
    get_submission,
    list_notifications,
    list_user_submissions,
    open_contributor_session,
    submit,
    update_notifications,
    update_submission,
)
from township_server.schemas import (
    ContentCardIn,
    NotificationPatchRequest,
    SessionCreateRequest,
    SubmissionUpdateRequest,
    SubmitRequest,
)
from township_server.submissions import combine_content, split_content

ADMIN = AuthContext(user_id="user_admin", org_id="org_local", role="org:admin")
MEMBER = AuthContext(user_id="user_member", org_id="org_local", role="org:member")
STRANGER = AuthContext(user_id="user_stranger", org_id="org_elsewhere", role="org:admin")


def _project_id() -> str:
    with session_scope() as session:
        return session.execute(
            select(report_project.c.id).where(report_project.c.share_id == "demo2025")
        ).scalar_one()


def _form_groups(**cover) -> dict:
    return {
        "cover": {"organizationName": "Local Township", "reportName": "Annual Report", **cover},
        "letter": {"includeOpeningLetter": False},
        "footer": {
            "streetAddress": "1 Main St",
            "cityStateZip": "Springfield, IN 46000",
            "phone": "555-0100",
            "email": "clerk@example.com",
        },
        "review": {"submitterName": "Pat Clerk", "submitterEmail": "pat@example.com", "confirmed": True},
    }


def _create(auth: AuthContext = MEMBER, **extra) -> str:
    body = SubmitRequest.model_validate(
        {"phase": "create", "projectId": _project_id(), **_form_groups(), **extra}
    )
    out = submit(body=body, auth=auth)
    assert out["success"] is True
    return out["submissionId"]


def _sections(*titles) -> list[dict]:
    return [
        {
            "order": i,
            "title": title,
            "content": f"Body of {title}",
            "stats": [{"label": "Miles paved", "value": "12"}, {"label": "Parks", "value": 3}],
        }
        for i, title in enumerate(titles)
    ]


def _finalize(submission_id: str, sections: list[dict], auth: AuthContext = MEMBER, **extra) -> dict:
    body = SubmitRequest.model_validate(
        {"phase": "finalize", "submissionId": submission_id, "sections": sections, **extra}
    )
    return submit(body=body, auth=auth)


def _load(submission_id: str, auth: AuthContext = ADMIN) -> dict:
    return get_submission(submission_id=submission_id, response=Response(), auth=auth)["submission"]


def test_create_then_finalize_keeps_section_order():
    sid = _create()
    out = _finalize(sid, _sections("Roads", "Parks", "Fire"))
    assert out["sections"] == {"succeeded": [0, 1, 2], "failed": []}

    sub = _load(sid)
    assert [s["title"] for s in sub["sections"]] == ["Roads", "Parks", "Fire"]
    assert [s["section_order"] for s in sub["sections"]] == [0, 1, 2]
    stats = sub["sections"][0]["stats"]
    assert [(s["label"], s["value"], s["stat_order"]) for s in stats] == [
        ("Miles paved", "12", 0),
        ("Parks", "3", 1),
    ]
    assert sub["user_id"] == "user_member"


def test_finalize_reports_failed_section_and_keeps_the_rest():
    sid = _create()
    sections = _sections("Roads", "Parks", "Fire")
    sections[1]["title"] = None

    out = _finalize(sid, sections)
    assert out["sections"]["succeeded"] == [0, 2]
    assert len(out["sections"]["failed"]) == 1
    assert out["sections"]["failed"][0]["index"] == 1
    assert out["sections"]["failed"][0]["reason"]

    sub = _load(sid)
    assert [s["title"] for s in sub["sections"]] == ["Roads", "Fire"]
    with session_scope() as session:
        section_ids = {s["id"] for s in sub["sections"]}
        stat_sections = set(session.execute(select(report_section_stat.c.section_id)).scalars())
    assert stat_sections == section_ids


def test_stats_are_stored_exactly_as_sent():
    sid = _create()
    sections = [
        {
            "title": "Roads",
            "stats": [{"label": "Miles", "value": ""}, {"label": "", "value": "4"}, {"label": "Bridges", "value": "2"}],
        }
    ]
    _finalize(sid, sections)
    stats = _load(sid)["sections"][0]["stats"]
    assert [(s["label"], s["value"], s["stat_order"]) for s in stats] == [
        ("Miles", "", 0),
        ("", "4", 1),
        ("Bridges", "2", 2),
    ]


def test_legacy_chart_image_becomes_chart_link():
    sid = _create()
    sections = [
        {
            "title": "Budget",
            "images": [
                {"url": "https://cdn.example.com/photo.png", "caption": "Town hall"},
                {"url": "https://cdn.example.com/chart.png", "caption": "Spending", "isChart": True},
            ],
        }
    ]
    _finalize(sid, sections)
    section = _load(sid)["sections"][0]
    assert section["image_urls"] == ["https://cdn.example.com/photo.png"]
    assert section["image_captions"] == ["Town hall"]
    assert section["chart_link"] == "https://cdn.example.com/chart.png"
    assert section["chart_caption"] == "Spending"


def test_content_cards_are_stored_inline_and_split_on_read():
    sid = _create()
    sections = [
        {
            "title": "Highlights",
            "content": "Intro text",
            "contentCards": [{"title": "New park", "body": "Opened in May"}],
            "designNotes": "Use the green palette",
        }
    ]
    _finalize(sid, sections)
    section = _load(sid)["sections"][0]
    assert section["content"] == "Intro text\n\n[CARD]\nNew park\nOpened in May\n[/CARD]"
    assert section["content_text"] == "Intro text"
    assert section["content_cards"] == [{"title": "New park", "body": "Opened in May"}]
    assert section["design_notes"] == "Use the green palette"


def test_combine_and_split_content_without_text():
    stored = combine_content("", [ContentCardIn(title="A", body="line one\nline two")])
    assert stored == "[CARD]\nA\nline one\nline two\n[/CARD]"
    assert split_content(stored) == ("", [{"title": "A", "body": "line one\nline two"}])
    assert split_content(None) == ("", [])


def test_update_phase_replaces_all_sections():
    sid = _create()
    _finalize(sid, _sections("Roads", "Parks", "Fire"))

    body = SubmitRequest.model_validate(
        {"phase": "update", "submissionId": sid, "sections": _sections("Only section")}
    )
    out = submit(body=body, auth=MEMBER)
    assert out["updated"] is True
    assert out["sections"]["succeeded"] == [0]

    sub = _load(sid)
    assert [s["title"] for s in sub["sections"]] == ["Only section"]
    with session_scope() as session:
        assert len(session.execute(select(report_section_stat.c.id)).all()) == 2


def test_second_finalize_is_rejected_and_sections_unchanged():
    sid = _create()
    _finalize(sid, _sections("A", "B"))
    with pytest.raises(HTTPException) as exc:
        _finalize(sid, _sections("A", "B"))
    assert exc.value.status_code == 409
    assert exc.value.detail["error"]["code"] == "already_finalized"
    assert [s["title"] for s in _load(sid)["sections"]] == ["A", "B"]


def test_finalize_rejected_once_session_submitted():
    opened = open_contributor_session(body=SessionCreateRequest(share_id="demo2025"), auth=MEMBER)
    session_id = opened["session"]["id"]
    sid = _create(contributorSessionId=session_id)
    _finalize(sid, [], contributorSessionId=session_id)
    with pytest.raises(HTTPException) as exc:
        _finalize(sid, _sections("Late"), auth=ANONYMOUS)
    assert exc.value.status_code == 409
    assert _load(sid)["sections"] == []


def test_update_phase_requires_auth_and_edit_rights():
    sid = _create()
    _finalize(sid, _sections("Roads"))
    body = SubmitRequest.model_validate({"phase": "update", "submissionId": sid, "sections": []})

    with pytest.raises(HTTPException) as exc:
        submit(body=body, auth=ANONYMOUS)
    assert exc.value.status_code == 401

    with pytest.raises(HTTPException) as exc:
        submit(body=body, auth=STRANGER)
    assert exc.value.status_code == 403
    assert [s["title"] for s in _load(sid)["sections"]] == ["Roads"]


def test_anonymous_update_gets_401_for_unknown_and_known_ids():
    sid = _create()
    for submission_id in (sid, "no-such-submission"):
        body = SubmitRequest.model_validate(
            {"phase": "update", "submissionId": submission_id, "sections": []}
        )
        with pytest.raises(HTTPException) as exc:
            submit(body=body, auth=ANONYMOUS)
        assert exc.value.status_code == 401


def test_submit_rejects_unknown_or_missing_phase():
    for phase in (None, "publish"):
        with pytest.raises(HTTPException) as exc:
            submit(body=SubmitRequest(phase=phase), auth=MEMBER)
        assert exc.value.status_code == 400
        assert exc.value.detail["error"]["code"] == "invalid_phase"


def test_finalize_requires_submission_id_and_existing_row():
    with pytest.raises(HTTPException) as exc:
        submit(body=SubmitRequest(phase="finalize"), auth=MEMBER)
    assert exc.value.status_code == 400

    with pytest.raises(HTTPException) as exc:
        _finalize("missing-submission", [])
    assert exc.value.status_code == 404


def test_create_requires_every_form_group():
    body = SubmitRequest.model_validate({"phase": "create", "cover": {"organizationName": "X"}})
    with pytest.raises(HTTPException) as exc:
        submit(body=body, auth=MEMBER)
    assert exc.value.status_code == 400
    assert exc.value.detail["error"]["details"]["missing"] == ["letter", "footer", "review"]


def test_create_rejects_finalized_project():
    finalize_project(project_id=_project_id(), auth=ADMIN)
    with pytest.raises(HTTPException) as exc:
        _create()
    assert exc.value.status_code == 403


def test_anonymous_create_and_finalize_are_allowed():
    sid = _create(auth=ANONYMOUS)
    out = _finalize(sid, _sections("Roads"), auth=ANONYMOUS)
    assert out["sections"]["succeeded"] == [0]
    assert _load(sid)["user_id"] is None


def test_finalize_marks_contributor_session_submitted():
    opened = open_contributor_session(body=SessionCreateRequest(share_id="demo2025"), auth=MEMBER)
    session_id = opened["session"]["id"]
    sid = _create(contributorSessionId=session_id)
    _finalize(sid, _sections("Roads"), contributorSessionId=session_id)

    with session_scope() as session:
        row = session.execute(
            select(contributor_session).where(contributor_session.c.id == session_id)
        ).mappings().one()
    assert row["status"] == "submitted"
    assert row["submission_id"] == sid


def test_finalize_notifies_project_org():
    sid = _create()
    _finalize(sid, _sections("Roads"))

    out = list_notifications(org_id=None, auth=ADMIN)
    assert out["unreadCount"] == 1
    note = out["notifications"][0]
    assert note["type"] == "new_submission"
    assert note["submission_id"] == sid
    assert note["message"] == "New submission received for Annual Report from Local Township"
    assert note["link"] == f"/projects/{_project_id()}"

    updated = update_notifications(body=NotificationPatchRequest(mark_all_read=True), auth=ADMIN)
    assert updated["updated"] == 1
    assert list_notifications(org_id=None, auth=ADMIN)["unreadCount"] == 0


def test_view_permissions():
    sid = _create()
    assert _load(sid, auth=MEMBER)["id"] == sid
    with pytest.raises(HTTPException) as exc:
        _load(sid, auth=STRANGER)
    assert exc.value.status_code == 403
    with pytest.raises(HTTPException) as exc:
        _load("missing", auth=ADMIN)
    assert exc.value.status_code == 404


def test_owner_matched_by_submitter_email():
    sid = _create(auth=ANONYMOUS)
    owner = AuthContext(user_id="user_pat", email="PAT@example.com")
    out = update_submission(
        submission_id=sid,
        body=SubmissionUpdateRequest.model_validate({"cover": {"organizationName": "Renamed Township"}}),
        auth=owner,
    )
    assert out["submission"]["organization_name"] == "Renamed Township"
    assert out["submission"]["report_name"] is None
    assert out["submission"]["street_address"] == "1 Main St"


def test_update_submission_rejects_blank_org_name():
    sid = _create()
    with pytest.raises(HTTPException) as exc:
        update_submission(
            submission_id=sid,
            body=SubmissionUpdateRequest.model_validate({"cover": {"organizationName": "  "}}),
            auth=MEMBER,
        )
    assert exc.value.status_code == 400


def test_user_submissions_by_owner_then_email():
    sid = _create()
    out = list_user_submissions(email=None, auth=MEMBER)
    assert [s["id"] for s in out["submissions"]] == [sid]

    out = list_user_submissions(email="Pat@Example.com", auth=ANONYMOUS)
    assert [s["id"] for s in out["submissions"]] == [sid]

    with pytest.raises(HTTPException) as exc:
        list_user_submissions(email=None, auth=ANONYMOUS)
    assert exc.value.status_code == 400
