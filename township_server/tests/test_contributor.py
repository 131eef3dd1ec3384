from __future__ import annotations

import pytest
from fastapi import HTTPException
from sqlalchemy import select

from township_server.auth import ANONYMOUS, AuthContext
from township_server.db import contributor_session, report_project, session_scope
from township_server.main import (
    get_contributor_draft,
    get_contributor_session,
    list_contributed_submissions,
    open_contributor_session,
    save_contributor_draft,
    submit,
)
from township_server.schemas import DraftSaveRequest, SessionCreateRequest, SubmitRequest

CONTRIBUTOR = AuthContext(user_id="user_contrib", email="contrib@example.com")
OTHER = AuthContext(user_id="user_other")


def _save(auth=CONTRIBUTOR, **payload) -> dict:
    return save_contributor_draft(body=DraftSaveRequest.model_validate(payload), auth=auth)


def _draft(auth=CONTRIBUTOR) -> dict:
    return get_contributor_draft(share_id="demo2025", auth=auth)


def test_anonymous_caller_gets_no_session():
    out = open_contributor_session(body=SessionCreateRequest(share_id="demo2025"), auth=ANONYMOUS)
    assert out["session"] is None
    assert out["isNew"] is False
    assert get_contributor_session(share_id="demo2025", session_id=None, auth=ANONYMOUS) == {
        "session": None
    }


def test_open_session_is_idempotent_per_user_and_project():
    first = open_contributor_session(body=SessionCreateRequest(share_id="demo2025"), auth=CONTRIBUTOR)
    second = open_contributor_session(body=SessionCreateRequest(share_id="demo2025"), auth=CONTRIBUTOR)
    assert first["isNew"] is True
    assert second["isNew"] is False
    assert first["session"]["id"] == second["session"]["id"]
    assert first["session"]["status"] == "drafting"

    other = open_contributor_session(body=SessionCreateRequest(share_id="demo2025"), auth=OTHER)
    assert other["session"]["id"] != first["session"]["id"]


def test_open_session_unknown_share_id():
    with pytest.raises(HTTPException) as exc:
        open_contributor_session(body=SessionCreateRequest(share_id="missing"), auth=CONTRIBUTOR)
    assert exc.value.status_code == 404


def test_save_by_share_id_creates_session_then_overwrites():
    created = _save(shareId="demo2025", draftData={"cover": {"organizationName": "Draft 1"}})
    assert created["message"] == "Session created and draft saved"

    updated = _save(shareId="demo2025", draftData={"cover": {"organizationName": "Draft 2"}})
    assert updated["sessionId"] == created["sessionId"]

    out = _draft()
    assert out["session"]["id"] == created["sessionId"]
    assert out["draftData"] == {"cover": {"organizationName": "Draft 2"}}

    by_id = get_contributor_session(share_id=None, session_id=created["sessionId"], auth=CONTRIBUTOR)
    assert by_id["session"]["draftData"]["cover"]["organizationName"] == "Draft 2"


def test_save_strips_file_objects():
    draft = {
        "cover": {"logo": {"file": {"name": "logo.png"}, "preview": "blob:1"}, "organizationName": "T"},
        "letter": {"headshot": {"existingUrl": "https://cdn.example.com/h.png"}},
    }
    _save(shareId="demo2025", draftData=draft)
    saved = _draft()["draftData"]
    assert saved["cover"]["logo"] is None
    assert saved["cover"]["organizationName"] == "T"
    assert saved["letter"]["headshot"] == {"existingUrl": "https://cdn.example.com/h.png"}


def test_draft_save_requires_data_and_target():
    with pytest.raises(HTTPException) as exc:
        _save(shareId="demo2025")
    assert exc.value.status_code == 400
    with pytest.raises(HTTPException) as exc:
        _save(draftData={})
    assert exc.value.status_code == 400


def test_save_by_session_id_rejects_someone_elses_session():
    created = _save(shareId="demo2025", draftData={"step": 1})
    with pytest.raises(HTTPException) as exc:
        _save(auth=OTHER, sessionId=created["sessionId"], draftData={"step": 9})
    assert exc.value.status_code == 404


def test_submitted_session_rejects_draft_writes():
    opened = open_contributor_session(body=SessionCreateRequest(share_id="demo2025"), auth=CONTRIBUTOR)
    session_id = opened["session"]["id"]
    _save(sessionId=session_id, draftData={"cover": {"organizationName": "Before"}})

    created = submit(
        body=SubmitRequest.model_validate(
            {
                "phase": "create",
                "contributorSessionId": session_id,
                "cover": {"organizationName": "Local Township"},
                "letter": {},
                "footer": {},
                "review": {},
            }
        ),
        auth=CONTRIBUTOR,
    )
    submit(
        body=SubmitRequest.model_validate(
            {"phase": "finalize", "submissionId": created["submissionId"], "sections": []}
        ),
        auth=CONTRIBUTOR,
    )

    with pytest.raises(HTTPException) as exc:
        _save(sessionId=session_id, draftData={"cover": {"organizationName": "After"}})
    assert exc.value.status_code == 403
    with pytest.raises(HTTPException) as exc:
        _save(shareId="demo2025", draftData={"cover": {"organizationName": "After"}})
    assert exc.value.status_code == 403

    with session_scope() as session:
        row = session.execute(
            select(contributor_session).where(contributor_session.c.id == session_id)
        ).mappings().one()
    assert row["status"] == "submitted"
    assert row["draft_data"] == {"cover": {"organizationName": "Before"}}


def test_get_draft_without_session():
    assert _draft() == {"session": None, "draftData": None}
    with pytest.raises(HTTPException) as exc:
        get_contributor_draft(share_id=None, auth=CONTRIBUTOR)
    assert exc.value.status_code == 400


def test_contributed_submissions_summary():
    created = submit(
        body=SubmitRequest.model_validate(
            {
                "phase": "create",
                "projectId": _demo_project_id(),
                "cover": {"organizationName": "Local Township", "reportName": "Annual"},
                "letter": {"includeOpeningLetter": True, "letterTitle": "Dear residents"},
                "footer": {},
                "review": {"submitterName": "Pat"},
            }
        ),
        auth=ANONYMOUS,
    )
    submit(
        body=SubmitRequest.model_validate(
            {
                "phase": "finalize",
                "submissionId": created["submissionId"],
                "logoUrl": "https://cdn.example.com/logo.png",
                "sections": [
                    {
                        "title": "Roads",
                        "imageUrls": ["https://cdn.example.com/a.png", "https://cdn.example.com/b.png"],
                        "stats": [{"label": "Miles", "value": "3"}],
                    }
                ],
            }
        ),
        auth=ANONYMOUS,
    )

    out = list_contributed_submissions(share_id="demo2025")
    assert out["totalCount"] == 1
    summary = out["submissions"][0]
    assert summary["submitterName"] == "Pat"
    assert summary["hasOpeningLetter"] is True
    assert summary["sectionCount"] == 1
    assert summary["totalImages"] == 3
    assert summary["totalStats"] == 1


def _demo_project_id() -> str:
    with session_scope() as session:
        return session.execute(
            select(report_project.c.id).where(report_project.c.share_id == "demo2025")
        ).scalar_one()
