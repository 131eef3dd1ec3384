from __future__ import annotations

import pytest
from fastapi import HTTPException, Response
from sqlalchemy import select

from township_server import main
from township_server.auth import AuthContext
from township_server.db import (
    contributor_session,
    report_draft,
    report_project,
    report_section,
    report_section_stat,
    report_submission,
    session_scope,
)
from township_server.main import (
    create_project,
    delete_project,
    delete_project_draft,
    delete_submission,
    finalize_project,
    get_project,
    get_project_draft,
    get_shared_project,
    list_projects,
    open_contributor_session,
    reopen_project,
    save_project_draft,
    submit,
    update_project,
)
from township_server.schemas import (
    ProjectCreateRequest,
    ProjectDraftRequest,
    ProjectUpdateRequest,
    SessionCreateRequest,
    SubmitRequest,
)
from township_server.storage import ObjectStore, StorageError

ADMIN = AuthContext(user_id="user_admin", org_id="org_local", role="org:admin")
MEMBER = AuthContext(user_id="user_member", org_id="org_local", role="org:member")
SUPER = AuthContext(user_id="user_super")
OUTSIDER = AuthContext(user_id="user_outsider", org_id="org_other", role="org:member")


class FailingStore(ObjectStore):
    def __init__(self):
        self.removed: list[tuple[str, list[str]]] = []

    def remove(self, bucket, paths):
        self.removed.append((bucket, list(paths)))
        raise StorageError("bucket offline")


def _project_id() -> str:
    with session_scope() as session:
        return session.execute(
            select(report_project.c.id).where(report_project.c.share_id == "demo2025")
        ).scalar_one()


def _store_file(path: str) -> str:
    bucket = "report-assets"
    main.object_store.upload(bucket, path, b"png-bytes", content_type="image/png")
    return main.object_store.public_url(bucket, path)


def _submission_with_files(project_id: str) -> tuple[str, list[str]]:
    opened = open_contributor_session(body=SessionCreateRequest(share_id="demo2025"), auth=MEMBER)
    session_id = opened["session"]["id"]
    created = submit(
        body=SubmitRequest.model_validate(
            {
                "phase": "create",
                "projectId": project_id,
                "contributorSessionId": session_id,
                "cover": {"organizationName": "Local Township"},
                "letter": {},
                "footer": {},
                "review": {"submitterEmail": "pat@example.com"},
            }
        ),
        auth=MEMBER,
    )
    sid = created["submissionId"]
    logo = _store_file(f"{sid}/logo-1.png")
    photo = _store_file(f"{sid}/sections/0/image-0-1.png")
    chart = _store_file(f"{sid}/sections/0/chart-1-1.png")
    submit(
        body=SubmitRequest.model_validate(
            {
                "phase": "finalize",
                "submissionId": sid,
                "contributorSessionId": session_id,
                "logoUrl": logo,
                "sections": [
                    {
                        "title": "Parks",
                        "imageUrls": [photo],
                        "chartLink": chart,
                        "stats": [{"label": "Acres", "value": "40"}],
                    }
                ],
            }
        ),
        auth=MEMBER,
    )
    return sid, [logo, photo, chart]


def test_create_project_generates_share_id():
    out = create_project(
        body=ProjectCreateRequest(name="2026 Report", organization_name="Local Township", year="2026"),
        auth=ADMIN,
    )
    project = out["project"]
    assert len(project["share_id"]) == 8
    assert project["share_id"].isalnum()
    assert project["status"] == "collecting_assets"
    assert project["allow_public_submissions"] is True
    assert project["org_id"] == "org_local"


def test_create_project_requires_admin_and_fields():
    with pytest.raises(HTTPException) as exc:
        create_project(
            body=ProjectCreateRequest(name="X", organization_name="Local Township"), auth=MEMBER
        )
    assert exc.value.status_code == 403

    with pytest.raises(HTTPException) as exc:
        create_project(body=ProjectCreateRequest(name="X"), auth=ADMIN)
    assert exc.value.status_code == 400


def test_list_projects_counts_submissions():
    pid = _project_id()
    _submission_with_files(pid)
    out = list_projects(org_id=None, auth=MEMBER)
    assert len(out["projects"]) == 1
    project = out["projects"][0]
    assert project["submission_count"] == 1
    assert project["derived_status"] == "collecting_assets"

    with pytest.raises(HTTPException) as exc:
        list_projects(org_id="org_local", auth=OUTSIDER)
    assert exc.value.status_code == 403

    assert len(list_projects(org_id=None, auth=SUPER)["projects"]) == 1


def test_shared_project_is_public_and_uncached():
    response = Response()
    out = get_shared_project(share_id="demo2025", response=response)
    assert out["project"]["name"] == "2025 Annual Report"
    assert "org_id" not in out["project"]
    assert response.headers["cache-control"].startswith("no-store")

    with pytest.raises(HTTPException) as exc:
        get_shared_project(share_id="nope", response=Response())
    assert exc.value.status_code == 404
    assert exc.value.headers["Cache-Control"].startswith("no-store")


def test_shared_project_closed_to_public_is_forbidden():
    update_project(
        project_id=_project_id(),
        body=ProjectUpdateRequest(allow_public_submissions=False),
        auth=ADMIN,
    )
    with pytest.raises(HTTPException) as exc:
        get_shared_project(share_id="demo2025", response=Response())
    assert exc.value.status_code == 403
    assert exc.value.headers["Cache-Control"].startswith("no-store")


def test_update_project_validates_and_scopes_to_org():
    pid = _project_id()
    with pytest.raises(HTTPException) as exc:
        update_project(project_id=pid, body=ProjectUpdateRequest(status="archived"), auth=ADMIN)
    assert exc.value.status_code == 400

    with pytest.raises(HTTPException) as exc:
        update_project(project_id=pid, body=ProjectUpdateRequest(name=""), auth=ADMIN)
    assert exc.value.status_code == 400

    with pytest.raises(HTTPException) as exc:
        update_project(project_id=pid, body=ProjectUpdateRequest(name="Hijacked"), auth=OUTSIDER)
    assert exc.value.status_code == 404

    out = update_project(
        project_id=pid, body=ProjectUpdateRequest(status="designing", year="2026"), auth=ADMIN
    )
    assert out["project"]["status"] == "designing"
    assert out["project"]["year"] == "2026"
    assert out["project"]["name"] == "2025 Annual Report"


def test_get_project_includes_submissions():
    pid = _project_id()
    sid, _ = _submission_with_files(pid)
    out = get_project(project_id=pid, auth=MEMBER)
    assert out["project"]["derived_status"] == "collecting_assets"
    assert [s["id"] for s in out["submissions"]] == [sid]
    assert out["submissions"][0]["sections"][0]["stats"][0]["label"] == "Acres"

    with pytest.raises(HTTPException) as exc:
        get_project(project_id=pid, auth=OUTSIDER)
    assert exc.value.status_code == 403


def test_finalize_and_reopen_project():
    pid = _project_id()
    out = finalize_project(project_id=pid, auth=ADMIN)
    assert out["project"]["status"] == "completed"
    assert out["project"]["finalizedBy"] == "admin@example.com"

    with pytest.raises(HTTPException) as exc:
        finalize_project(project_id=pid, auth=ADMIN)
    assert exc.value.detail["error"]["code"] == "already_finalized"

    with pytest.raises(HTTPException) as exc:
        open_contributor_session(body=SessionCreateRequest(share_id="demo2025"), auth=MEMBER)
    assert exc.value.status_code == 403

    out = reopen_project(project_id=pid, auth=ADMIN)
    assert out["project"]["status"] == "collecting_assets"

    with pytest.raises(HTTPException) as exc:
        reopen_project(project_id=pid, auth=ADMIN)
    assert exc.value.detail["error"]["code"] == "not_finalized"


def test_finalize_other_org_forbidden():
    with pytest.raises(HTTPException) as exc:
        finalize_project(project_id=_project_id(), auth=OUTSIDER)
    assert exc.value.status_code == 403


def test_delete_project_removes_tree_and_files(tmp_path):
    pid = _project_id()
    sid, _ = _submission_with_files(pid)
    save_project_draft(
        project_id=pid, body=ProjectDraftRequest(name="Layout", data={"pages": 3}), auth=ADMIN
    )

    out = delete_project(project_id=pid, auth=ADMIN)
    assert out == {"success": True, "deletedImages": 3}

    for name in ("logo-1.png", "sections/0/image-0-1.png", "sections/0/chart-1-1.png"):
        assert not (tmp_path / "storage" / "report-assets" / sid / name).exists()
    with session_scope() as session:
        for table in (
            report_project,
            report_submission,
            report_section,
            report_section_stat,
            contributor_session,
            report_draft,
        ):
            assert session.execute(select(table.c.id)).all() == []


def test_delete_project_survives_storage_failure(monkeypatch):
    pid = _project_id()
    _, urls = _submission_with_files(pid)
    store = FailingStore()
    monkeypatch.setattr(main, "object_store", store)

    out = delete_project(project_id=pid, auth=ADMIN)
    assert out["deletedImages"] == len(urls)
    assert store.removed and store.removed[0][0] == "report-assets"
    with session_scope() as session:
        assert session.execute(select(report_project.c.id)).all() == []


def test_delete_project_other_org_not_found():
    with pytest.raises(HTTPException) as exc:
        delete_project(project_id=_project_id(), auth=OUTSIDER)
    assert exc.value.status_code == 404


def test_delete_project_admin_of_other_org_cannot_delete():
    pid = _project_id()
    foreign_admin = AuthContext(user_id="user_foreign", org_id="org_foreign", role="org:admin")
    with pytest.raises(HTTPException) as exc:
        delete_project(project_id=pid, auth=foreign_admin)
    assert exc.value.status_code == 404
    with session_scope() as session:
        assert session.execute(select(report_project.c.id).where(report_project.c.id == pid)).one()


def test_delete_project_superadmin_any_org():
    out = delete_project(project_id=_project_id(), auth=SUPER)
    assert out["success"] is True
    with session_scope() as session:
        assert session.execute(select(report_project.c.id)).all() == []


def test_delete_submission_detaches_session_and_removes_files(tmp_path):
    pid = _project_id()
    sid, _ = _submission_with_files(pid)
    out = delete_submission(submission_id=sid, auth=ADMIN)
    assert out["deletedImages"] == 3
    assert not (tmp_path / "storage" / "report-assets" / sid / "logo-1.png").exists()
    with session_scope() as session:
        row = session.execute(select(contributor_session)).mappings().one()
        assert row["submission_id"] is None
        assert session.execute(select(report_section.c.id)).all() == []


def test_project_draft_round_trip():
    pid = _project_id()
    assert get_project_draft(project_id=pid, auth=MEMBER) == {"draft": None}

    save_project_draft(project_id=pid, body=ProjectDraftRequest(data={"v": 1}), auth=MEMBER)
    saved = save_project_draft(
        project_id=pid, body=ProjectDraftRequest(name="Final", data={"v": 2}), auth=MEMBER
    )
    assert saved["draft"]["name"] == "Final"

    draft = get_project_draft(project_id=pid, auth=MEMBER)["draft"]
    assert draft["data"] == {"v": 2}
    assert draft["created_by"] == "user_member"

    with pytest.raises(HTTPException) as exc:
        save_project_draft(project_id=pid, body=ProjectDraftRequest(name="No data"), auth=MEMBER)
    assert exc.value.status_code == 400

    delete_project_draft(project_id=pid, auth=MEMBER)
    assert get_project_draft(project_id=pid, auth=MEMBER) == {"draft": None}
