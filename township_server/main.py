from __future__ import annotations

import secrets
import string
import time
import uuid
from pathlib import Path
from typing import Any

from fastapi import Body, Depends, FastAPI, File, Form, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import FileResponse, JSONResponse, Response
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from township_server.auth import (
    AuthContext,
    can_edit_submission,
    can_view_submission,
    caller_email,
    get_auth,
    get_user,
    is_org_admin,
    is_org_member,
    is_superadmin,
    require_admin,
)
from township_server.cascade import delete_project_tree, delete_submission_tree
from township_server.config import settings
from township_server.db import (
    asset,
    contributor_session,
    new_id,
    now_ms,
    report_draft,
    report_project,
    report_submission,
    session_scope,
)
from township_server.errors import (
    bad_request,
    conflict,
    forbidden,
    not_found,
    payload_too_large,
    server_error,
    service_unavailable,
    unauthorized,
)
from township_server.identity import ORG_ADMIN, ORG_MEMBER, IdentityError, directory
from township_server.notifications import list_for_org, mark_read
from township_server.observability import (
    increment,
    log_error,
    log_event,
    observe_ms,
    snapshot,
    timed,
)
from township_server.schema_compat import live_columns, table_exists
from township_server.schemas import (
    DraftSaveRequest,
    ExportRequest,
    InvitationCreateRequest,
    MemberPatchRequest,
    NotificationPatchRequest,
    OrganizationCreateRequest,
    ProjectCreateRequest,
    ProjectDraftRequest,
    ProjectUpdateRequest,
    ScoringRequest,
    SessionCreateRequest,
    SubmissionUpdateRequest,
    SubmitRequest,
)
from township_server.scoring import InvalidAnswer, score
from township_server.storage import (
    LocalObjectStore,
    StorageError,
    build_store,
    remove_urls,
    storage_location,
)
from township_server.submissions import (
    SubmissionAlreadyFinalized,
    SubmissionNotFound,
    create_submission,
    finalize_submission,
    get_submission_row,
    load_project_submissions,
    load_submission,
    partial_submission_values,
    replace_sections,
    update_submission_fields,
)
from township_server.transfer import (
    ImportRejected,
    build_export_payload,
    export_filename,
    import_payload,
    strip_file_objects,
)

app = FastAPI(title="township-tools")
object_store = build_store()

SHARE_ID_ALPHABET = string.ascii_lowercase + string.digits
SHARE_ID_LENGTH = 8
SHARE_ID_ATTEMPTS = 5
PROJECT_STATUSES = {"collecting_assets", "designing", "completed"}
NO_STORE = {"Cache-Control": "no-store, no-cache, must-revalidate", "Pragma": "no-cache"}
PUBLIC_PROJECT_FIELDS = (
    "id",
    "name",
    "organization_name",
    "description",
    "year",
    "status",
    "allow_public_submissions",
    "finalized_at",
    "finalized_by",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_observability(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    t0 = time.perf_counter()
    response = None
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration_ms = (time.perf_counter() - t0) * 1000.0
        increment("http.requests.total")
        observe_ms("http.request.latency_ms", duration_ms)
        log_event(
            "http.request",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status=status_code,
            duration_ms=round(duration_ms, 2),
            user_id=request.headers.get("x-user-id"),
            org_id=request.headers.get("x-org-id"),
        )
        if response is not None:
            response.headers["x-request-id"] = request_id


@app.exception_handler(SQLAlchemyError)
async def database_error(request: Request, exc: SQLAlchemyError):
    log_error("db.error", path=request.url.path, method=request.method, error=str(exc))
    err = server_error()
    return JSONResponse(status_code=err.status_code, content={"detail": err.detail})


@app.get("/metrics")
def metrics():
    return snapshot()


@app.get("/health")
def health():
    return {"ok": True, "ts": now_ms()}


@app.get("/storage/v1/object/public/{bucket}/{path:path}")
def serve_public_object(bucket: str, path: str):
    if not isinstance(object_store, LocalObjectStore):
        raise not_found()
    try:
        target = object_store.object_path(bucket, path)
    except StorageError as exc:
        raise not_found() from exc
    if not target.is_file():
        raise not_found()
    return FileResponse(target)


# Projects


def _project_row(session, project_id: str) -> dict[str, Any]:
    row = (
        session.execute(select(report_project).where(report_project.c.id == project_id))
        .mappings()
        .one_or_none()
    )
    if row is None:
        raise not_found("Project not found")
    return dict(row)


def _project_by_share(session, share_id: str) -> dict[str, Any]:
    row = (
        session.execute(select(report_project).where(report_project.c.share_id == share_id))
        .mappings()
        .one_or_none()
    )
    if row is None:
        raise not_found("Project not found")
    return dict(row)


def _derived_status(project: dict[str, Any]) -> str:
    return project.get("status") or "collecting_assets"


def _generate_share_id(session) -> str:
    share_id = ""
    for _ in range(SHARE_ID_ATTEMPTS):
        share_id = "".join(secrets.choice(SHARE_ID_ALPHABET) for _ in range(SHARE_ID_LENGTH))
        taken = session.execute(
            select(report_project.c.id).where(report_project.c.share_id == share_id)
        ).first()
        if not taken:
            return share_id
    log_event("project.share_id_collisions", attempts=SHARE_ID_ATTEMPTS)
    return share_id


def _require_org_access(session, auth: AuthContext, org_id: str | None) -> None:
    if is_superadmin(session, auth) or is_org_member(session, auth, org_id):
        return
    raise forbidden()


@app.get(f"{settings.api_prefix}/projects")
def list_projects(
    org_id: str | None = Query(default=None, alias="orgId"), auth: AuthContext = Depends(get_user)
):
    target_org = org_id or auth.org_id
    with session_scope() as session:
        counts = (
            select(report_submission.c.project_id, func.count(report_submission.c.id).label("n"))
            .group_by(report_submission.c.project_id)
            .subquery()
        )
        q = select(report_project, func.coalesce(counts.c.n, 0).label("submission_count")).outerjoin(
            counts, counts.c.project_id == report_project.c.id
        )
        if target_org:
            _require_org_access(session, auth, target_org)
            q = q.where(report_project.c.org_id == target_org)
        elif not is_superadmin(session, auth):
            raise bad_request("bad_request", "Organization ID is required")
        rows = session.execute(q.order_by(report_project.c.created_at.desc())).mappings().all()
        projects = []
        for r in rows:
            p = dict(r)
            p["derived_status"] = _derived_status(p)
            projects.append(p)
        return {"projects": projects}


@app.post(f"{settings.api_prefix}/projects")
def create_project(body: ProjectCreateRequest, auth: AuthContext = Depends(get_user)):
    if not body.name or not body.organization_name:
        raise bad_request("bad_request", "Name and organization name are required")
    org_id = auth.org_id or body.org_id
    if not org_id:
        raise bad_request("bad_request", "Organization ID is required")
    with session_scope() as session:
        require_admin(session, auth, org_id)
        t = now_ms()
        row = {
            "id": new_id(),
            "org_id": org_id,
            "name": body.name,
            "organization_name": body.organization_name,
            "description": body.description,
            "year": body.year,
            "share_id": _generate_share_id(session),
            "status": "collecting_assets",
            "allow_public_submissions": body.allow_public_submissions,
            "created_by": auth.user_id,
            "created_at": t,
            "updated_at": t,
            "finalized_at": None,
            "finalized_by": None,
        }
        session.execute(report_project.insert().values(**row))
        session.commit()
        increment("projects.created")
        log_event("project.created", project_id=row["id"], org_id=org_id, share_id=row["share_id"])
        return {"project": row}


@app.get(f"{settings.api_prefix}/projects/share/{{share_id}}")
def get_shared_project(share_id: str, response: Response):
    response.headers.update(NO_STORE)
    with session_scope() as session:
        project = (
            session.execute(select(report_project).where(report_project.c.share_id == share_id))
            .mappings()
            .one_or_none()
        )
        if project is None:
            err = not_found("Project not found")
            err.headers = NO_STORE
            raise err
        if not project["allow_public_submissions"]:
            err = forbidden("This project is not accepting submissions")
            err.headers = NO_STORE
            raise err
        return {"project": {k: project[k] for k in PUBLIC_PROJECT_FIELDS}}


@app.get(f"{settings.api_prefix}/projects/{{project_id}}")
def get_project(project_id: str, auth: AuthContext = Depends(get_user)):
    with session_scope() as session:
        project = _project_row(session, project_id)
        _require_org_access(session, auth, project["org_id"])
        project["derived_status"] = _derived_status(project)
        return {"project": project, "submissions": load_project_submissions(session, project_id)}


@app.patch(f"{settings.api_prefix}/projects/{{project_id}}")
@app.post(f"{settings.api_prefix}/projects/{{project_id}}")
def update_project(project_id: str, body: ProjectUpdateRequest, auth: AuthContext = Depends(get_user)):
    values = body.model_dump(exclude_unset=True)
    if "status" in values and values["status"] not in PROJECT_STATUSES:
        raise bad_request("bad_request", f"Unknown status: {values['status']}")
    for required in ("name", "organization_name", "allow_public_submissions"):
        if required in values and values[required] in (None, ""):
            raise bad_request("bad_request", f"{required} cannot be empty")
    with session_scope() as session:
        q = report_project.update().where(report_project.c.id == project_id)
        if not is_superadmin(session, auth):
            q = q.where(report_project.c.org_id == auth.org_id)
        result = session.execute(q.values(**values, updated_at=now_ms()))
        if result.rowcount == 0:
            raise not_found("Project not found")
        project = _project_row(session, project_id)
        session.commit()
        log_event("project.updated", project_id=project_id, fields=sorted(values))
        return {"project": project}


@app.delete(f"{settings.api_prefix}/projects/{{project_id}}")
def delete_project(project_id: str, auth: AuthContext = Depends(get_user)):
    with session_scope() as session:
        project = session.execute(
            select(report_project.c.id, report_project.c.org_id).where(report_project.c.id == project_id)
        ).one_or_none()
        if project is None or not (
            project.org_id == auth.org_id
            or is_superadmin(session, auth)
            or is_org_admin(session, auth, project.org_id)
        ):
            raise not_found("Project not found or unauthorized")
        attempted = delete_project_tree(session, object_store, project_id)
        session.commit()
        increment("projects.deleted")
        return {"success": True, "deletedImages": attempted}


def _project_for_finalize(session, project_id: str, auth: AuthContext) -> dict[str, Any]:
    project = _project_row(session, project_id)
    if project["org_id"] != auth.org_id and not is_superadmin(session, auth):
        raise forbidden("You do not have permission to modify this project")
    return project


@app.post(f"{settings.api_prefix}/projects/{{project_id}}/finalize")
def finalize_project(project_id: str, auth: AuthContext = Depends(get_user)):
    with session_scope() as session:
        project = _project_for_finalize(session, project_id, auth)
        if project["finalized_at"]:
            raise bad_request("already_finalized", "Project is already finalized")
        t = now_ms()
        finalized_by = caller_email(session, auth) or auth.user_id or "system"
        session.execute(
            report_project.update()
            .where(report_project.c.id == project_id)
            .values(finalized_at=t, finalized_by=finalized_by, status="completed", updated_at=t)
        )
        session.execute(
            contributor_session.update()
            .where(
                contributor_session.c.project_id == project_id,
                contributor_session.c.status == "drafting",
            )
            .values(updated_at=t)
        )
        session.commit()
        log_event("project.finalized", project_id=project_id, finalized_by=finalized_by)
        return {
            "success": True,
            "project": {
                "id": project_id,
                "name": project["name"],
                "finalizedAt": t,
                "finalizedBy": finalized_by,
                "status": "completed",
            },
            "message": "Project has been finalized. No further submissions will be accepted.",
        }


@app.delete(f"{settings.api_prefix}/projects/{{project_id}}/finalize")
def reopen_project(project_id: str, auth: AuthContext = Depends(get_user)):
    with session_scope() as session:
        project = _project_for_finalize(session, project_id, auth)
        if not project["finalized_at"]:
            raise bad_request("not_finalized", "Project is not finalized")
        session.execute(
            report_project.update()
            .where(report_project.c.id == project_id)
            .values(finalized_at=None, finalized_by=None, status="collecting_assets", updated_at=now_ms())
        )
        session.commit()
        log_event("project.reopened", project_id=project_id)
        return {
            "success": True,
            "project": {"id": project_id, "name": project["name"], "status": "collecting_assets"},
            "message": "Project has been reopened for submissions.",
        }


@app.get(f"{settings.api_prefix}/projects/{{project_id}}/drafts")
def get_project_draft(project_id: str, auth: AuthContext = Depends(get_user)):
    with session_scope() as session:
        project = _project_row(session, project_id)
        _require_org_access(session, auth, project["org_id"])
        if not table_exists(session, report_draft):
            return {"draft": None}
        row = (
            session.execute(
                select(report_draft)
                .where(report_draft.c.project_id == project_id)
                .order_by(report_draft.c.updated_at.desc())
                .limit(1)
            )
            .mappings()
            .one_or_none()
        )
        return {"draft": dict(row) if row else None}


@app.post(f"{settings.api_prefix}/projects/{{project_id}}/drafts")
def save_project_draft(project_id: str, body: ProjectDraftRequest, auth: AuthContext = Depends(get_user)):
    if body.data is None:
        raise bad_request("bad_request", "Report data is required")
    with session_scope() as session:
        project = _project_row(session, project_id)
        _require_org_access(session, auth, project["org_id"])
        if not table_exists(session, report_draft):
            raise service_unavailable(
                "drafts_unavailable", "Draft feature not available - database table not created yet"
            )
        t = now_ms()
        name = body.name or "Untitled Draft"
        existing = session.execute(
            select(report_draft.c.id).where(report_draft.c.project_id == project_id).limit(1)
        ).scalar_one_or_none()
        if existing:
            session.execute(
                report_draft.update()
                .where(report_draft.c.id == existing)
                .values(name=name, data=body.data, updated_at=t)
            )
            draft_id = existing
        else:
            draft_id = new_id()
            session.execute(
                report_draft.insert().values(
                    id=draft_id,
                    project_id=project_id,
                    name=name,
                    data=body.data,
                    created_by=auth.user_id,
                    created_at=t,
                    updated_at=t,
                )
            )
        draft = dict(
            session.execute(select(report_draft).where(report_draft.c.id == draft_id)).mappings().one()
        )
        session.commit()
        return {"success": True, "draft": draft}


@app.delete(f"{settings.api_prefix}/projects/{{project_id}}/drafts")
def delete_project_draft(project_id: str, auth: AuthContext = Depends(get_user)):
    with session_scope() as session:
        project = _project_row(session, project_id)
        _require_org_access(session, auth, project["org_id"])
        if table_exists(session, report_draft):
            session.execute(report_draft.delete().where(report_draft.c.project_id == project_id))
            session.commit()
        return {"success": True}


# Contributor sessions and drafts


def _session_out(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "projectId": row["project_id"],
        "status": row["status"],
        "draftData": row["draft_data"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
        "submissionId": row["submission_id"],
    }


def _caller_session(session, project_id: str, user_id: str) -> dict[str, Any] | None:
    row = (
        session.execute(
            select(contributor_session)
            .where(
                contributor_session.c.project_id == project_id,
                contributor_session.c.user_id == user_id,
            )
            .order_by(contributor_session.c.created_at.asc())
            .limit(1)
        )
        .mappings()
        .one_or_none()
    )
    return dict(row) if row else None


def _new_session(session, project_id: str, user_id: str, draft_data: dict) -> dict[str, Any]:
    t = now_ms()
    row = {
        "id": new_id(),
        "project_id": project_id,
        "user_id": user_id,
        "draft_data": draft_data,
        "status": "drafting",
        "submission_id": None,
        "created_at": t,
        "updated_at": t,
    }
    session.execute(contributor_session.insert().values(**row))
    increment("sessions.created")
    return row


@app.get(f"{settings.api_prefix}/contribute/session")
def get_contributor_session(
    share_id: str | None = Query(default=None, alias="shareId"),
    session_id: str | None = Query(default=None, alias="sessionId"),
    auth: AuthContext = Depends(get_auth),
):
    if not auth.is_authenticated:
        return {"session": None}
    with session_scope() as session:
        if session_id:
            row = (
                session.execute(
                    select(contributor_session).where(
                        contributor_session.c.id == session_id,
                        contributor_session.c.user_id == auth.user_id,
                    )
                )
                .mappings()
                .one_or_none()
            )
            row = dict(row) if row else None
        elif share_id:
            project = _project_by_share(session, share_id)
            row = _caller_session(session, project["id"], auth.user_id)
        else:
            row = None
        return {"session": _session_out(row) if row else None}


@app.post(f"{settings.api_prefix}/contribute/session")
def open_contributor_session(body: SessionCreateRequest, auth: AuthContext = Depends(get_auth)):
    if not auth.is_authenticated:
        return {"session": None, "isNew": False, "message": "Auth not available"}
    if not body.share_id:
        raise bad_request("bad_request", "Share ID is required")
    with session_scope() as session:
        project = _project_by_share(session, body.share_id)
        if project["finalized_at"]:
            raise forbidden(
                "This project has been finalized and is no longer accepting contributions"
            )
        row = _caller_session(session, project["id"], auth.user_id)
        if row:
            return {"session": _session_out(row), "isNew": False}
        row = _new_session(session, project["id"], auth.user_id, {})
        session.commit()
        return {"session": _session_out(row), "isNew": True}


@app.get(f"{settings.api_prefix}/contribute/draft")
def get_contributor_draft(
    share_id: str | None = Query(default=None, alias="shareId"), auth: AuthContext = Depends(get_user)
):
    if not share_id:
        raise bad_request("bad_request", "Share ID is required")
    with session_scope() as session:
        project = _project_by_share(session, share_id)
        row = _caller_session(session, project["id"], auth.user_id)
        if row is None:
            return {"session": None, "draftData": None}
        return {
            "session": {"id": row["id"], "status": row["status"], "submissionId": row["submission_id"]},
            "draftData": row["draft_data"],
        }


@app.put(f"{settings.api_prefix}/contribute/draft")
def save_contributor_draft(body: DraftSaveRequest, auth: AuthContext = Depends(get_user)):
    if body.draft_data is None:
        raise bad_request("bad_request", "Draft data is required")
    if not body.session_id and not body.share_id:
        raise bad_request("bad_request", "Session ID or Share ID is required")
    draft_data = strip_file_objects(body.draft_data)
    with session_scope() as session:
        if body.session_id:
            row = (
                session.execute(
                    select(contributor_session).where(
                        contributor_session.c.id == body.session_id,
                        contributor_session.c.user_id == auth.user_id,
                    )
                )
                .mappings()
                .one_or_none()
            )
            if row is None:
                raise not_found("Session not found")
            row = dict(row)
        else:
            project = _project_by_share(session, body.share_id)
            if project["finalized_at"]:
                raise forbidden("Project is finalized")
            row = _caller_session(session, project["id"], auth.user_id)
            if row is None:
                row = _new_session(session, project["id"], auth.user_id, draft_data)
                session.commit()
                log_event("draft.saved", session_id=row["id"], created=True)
                return {"success": True, "sessionId": row["id"], "message": "Session created and draft saved"}
        if row["status"] == "submitted":
            increment("draft.rejected_submitted")
            raise forbidden("This submission has already been completed")
        session.execute(
            contributor_session.update()
            .where(contributor_session.c.id == row["id"])
            .values(draft_data=draft_data, updated_at=now_ms())
        )
        session.commit()
        log_event("draft.saved", session_id=row["id"], created=False)
        return {"success": True, "sessionId": row["id"], "message": "Draft saved"}


@app.get(f"{settings.api_prefix}/contribute/{{share_id}}/submissions")
def list_contributed_submissions(share_id: str):
    with session_scope() as session:
        project = _project_by_share(session, share_id)
        submissions = load_project_submissions(session, project["id"])
        summaries = []
        for sub in submissions:
            sections = [
                {
                    "title": s["title"],
                    "order": s["section_order"],
                    "imageCount": len(s["image_urls"] or []),
                    "statCount": len(s["stats"]),
                }
                for s in sub["sections"]
            ]
            summaries.append(
                {
                    "id": sub["id"],
                    "createdAt": sub["created_at"],
                    "submitterName": sub["submitter_name"],
                    "organizationName": sub["organization_name"],
                    "reportName": sub["report_name"],
                    "hasOpeningLetter": sub["include_opening_letter"],
                    "letterTitle": sub["letter_title"],
                    "logoUrl": sub["logo_url"],
                    "sectionCount": len(sections),
                    "sections": sections,
                    "totalImages": sum(s["imageCount"] for s in sections) + (1 if sub["logo_url"] else 0),
                    "totalStats": sum(s["statCount"] for s in sections),
                }
            )
        return {
            "project": {
                "id": project["id"],
                "name": project["name"],
                "organizationName": project["organization_name"],
                "finalizedAt": project["finalized_at"],
            },
            "submissions": summaries,
            "totalCount": len(summaries),
        }


# Submissions


def _check_create_payload(session, body: SubmitRequest) -> None:
    missing = [k for k in ("cover", "letter", "footer", "review") if getattr(body, k) is None]
    if missing:
        raise bad_request("bad_request", "Missing required form sections", {"missing": missing})
    if not (body.cover.organization_name or "").strip():
        raise bad_request("bad_request", "Organization name is required")
    if body.project_id:
        project = session.execute(
            select(report_project.c.id, report_project.c.finalized_at).where(
                report_project.c.id == body.project_id
            )
        ).one_or_none()
        if project is None:
            raise not_found("Project not found")
        if project.finalized_at:
            raise forbidden("This project has been finalized and is no longer accepting submissions")
    if body.contributor_session_id:
        exists = session.execute(
            select(contributor_session.c.id).where(contributor_session.c.id == body.contributor_session_id)
        ).first()
        if not exists:
            raise not_found("Contributor session not found")


def _project_org(session, project_id: str | None) -> str | None:
    if not project_id:
        return None
    return session.execute(
        select(report_project.c.org_id).where(report_project.c.id == project_id)
    ).scalar_one_or_none()


@app.post(f"{settings.api_prefix}/asset-collection/submit")
def submit(body: SubmitRequest, auth: AuthContext = Depends(get_auth)):
    phase = body.phase
    if phase not in {"create", "finalize", "update"}:
        raise bad_request("invalid_phase", f"Unknown phase: {phase}")
    if phase != "create" and not body.submission_id:
        raise bad_request("bad_request", "Submission ID is required")
    with timed("submit.latency_ms"), session_scope() as session:
        try:
            if phase == "create":
                _check_create_payload(session, body)
                submission_id = create_submission(session, body, auth.user_id)
                out = {"success": True, "submissionId": submission_id}
            elif phase == "finalize":
                out = {"success": True, **finalize_submission(session, body)}
            else:
                if not auth.is_authenticated:
                    raise unauthorized()
                existing = get_submission_row(session, body.submission_id)
                if not can_edit_submission(session, auth, existing, _project_org(session, existing["project_id"])):
                    raise forbidden("You do not have permission to edit this submission")
                out = {"success": True, **replace_sections(session, body)}
        except SubmissionNotFound as exc:
            raise not_found("Submission not found") from exc
        except SubmissionAlreadyFinalized as exc:
            increment("submit.finalize_replayed")
            raise conflict("already_finalized", "Submission has already been finalized") from exc
        session.commit()
    log_event("submit", phase=phase, submission_id=out["submissionId"], user_id=auth.user_id)
    return out


def _submission_for(session, submission_id: str) -> tuple[dict[str, Any], str | None]:
    try:
        submission = load_submission(session, submission_id)
    except SubmissionNotFound as exc:
        raise not_found("Submission not found") from exc
    return submission, _project_org(session, submission["project_id"])


@app.get(f"{settings.api_prefix}/submissions/user")
def list_user_submissions(
    email: str | None = Query(default=None), auth: AuthContext = Depends(get_auth)
):
    if not email and not auth.is_authenticated:
        raise bad_request("bad_request", "Email or authentication required")
    fields = (
        report_submission.c.id,
        report_submission.c.project_id,
        report_submission.c.submitter_name,
        report_submission.c.submitter_email,
        report_submission.c.created_at,
        report_submission.c.updated_at,
    )
    with session_scope() as session:
        if auth.is_authenticated and "user_id" in live_columns(session, report_submission):
            rows = session.execute(
                select(*fields)
                .where(report_submission.c.user_id == auth.user_id)
                .order_by(report_submission.c.created_at.desc())
            ).mappings().all()
            if rows:
                return {"submissions": [dict(r) for r in rows]}
        if not email:
            return {"submissions": []}
        rows = session.execute(
            select(*fields)
            .where(func.lower(report_submission.c.submitter_email) == email.lower())
            .order_by(report_submission.c.created_at.desc())
        ).mappings().all()
        return {"submissions": [dict(r) for r in rows]}


@app.get(f"{settings.api_prefix}/submissions/{{submission_id}}")
def get_submission(submission_id: str, response: Response, auth: AuthContext = Depends(get_user)):
    response.headers.update(NO_STORE)
    with session_scope() as session:
        submission, org_id = _submission_for(session, submission_id)
        if not can_view_submission(session, auth, submission, org_id):
            raise forbidden("You do not have permission to view this submission")
        return {"submission": submission}


@app.put(f"{settings.api_prefix}/submissions/{{submission_id}}")
def update_submission(
    submission_id: str, body: SubmissionUpdateRequest, auth: AuthContext = Depends(get_user)
):
    if body.cover is not None and not (body.cover.organization_name or "").strip():
        raise bad_request("bad_request", "Organization name is required")
    with session_scope() as session:
        try:
            existing = get_submission_row(session, submission_id)
        except SubmissionNotFound as exc:
            raise not_found("Submission not found") from exc
        if not can_edit_submission(session, auth, existing, _project_org(session, existing["project_id"])):
            raise forbidden("You do not have permission to edit this submission")
        values = partial_submission_values(body.cover, body.letter, body.footer, body.review)
        update_submission_fields(session, submission_id, values)
        updated = get_submission_row(session, submission_id)
        session.commit()
        log_event("submission.updated", submission_id=submission_id, fields=sorted(values))
        return {"success": True, "submission": updated}


@app.delete(f"{settings.api_prefix}/submissions/{{submission_id}}")
def delete_submission(submission_id: str, auth: AuthContext = Depends(get_user)):
    with session_scope() as session:
        try:
            existing = get_submission_row(session, submission_id)
        except SubmissionNotFound as exc:
            raise not_found("Submission not found") from exc
        if not can_edit_submission(session, auth, existing, _project_org(session, existing["project_id"])):
            raise forbidden("You do not have permission to delete this submission")
        attempted = delete_submission_tree(session, object_store, existing)
        session.commit()
        increment("submissions.deleted")
        return {"success": True, "deletedImages": attempted}


# Uploads


async def _read_upload(file: UploadFile) -> bytes:
    data = await file.read()
    if len(data) > settings.upload_max_bytes:
        raise payload_too_large(f"File exceeds {settings.upload_max_bytes} bytes")
    return data


def _extension(filename: str | None) -> str:
    return (filename or "").rsplit(".", 1)[-1]


@app.post(f"{settings.api_prefix}/asset-collection/upload")
async def upload_report_asset(
    file: UploadFile | None = File(default=None),
    path: str | None = Form(default=None),
    old_url: str | None = Form(default=None, alias="oldUrl"),
):
    if file is None or not path:
        raise bad_request("bad_request", "File and path are required")
    data = await _read_upload(file)
    bucket = settings.report_assets_bucket
    file_path = f"{path}.{_extension(file.filename)}"
    try:
        object_store.upload(bucket, file_path, data, content_type=file.content_type, upsert=True)
    except StorageError as exc:
        log_error("upload.failed", bucket=bucket, path=file_path, error=str(exc))
        raise server_error("Failed to upload file") from exc
    if old_url:
        location = storage_location(old_url)
        if location and location[0] == bucket and location[1] != file_path:
            remove_urls(object_store, [old_url], context={"replaced_by": file_path})
    increment("uploads.report_assets")
    log_event("upload.stored", bucket=bucket, path=file_path, size=len(data))
    return {"success": True, "url": object_store.public_url(bucket, file_path), "path": file_path}


@app.post(f"{settings.api_prefix}/assets/upload")
async def upload_asset(
    file: UploadFile | None = File(default=None),
    org_id: str | None = Form(default=None, alias="orgId"),
    org_name: str | None = Form(default=None, alias="orgName"),
    category: str | None = Form(default=None),
    description: str | None = Form(default=None),
    uploaded_by: str | None = Form(default=None, alias="uploadedBy"),
):
    if file is None or not org_id:
        raise bad_request("bad_request", "File and orgId are required")
    data = await _read_upload(file)
    category = category or "general"
    bucket = settings.assets_bucket
    suffix = "".join(secrets.choice(SHARE_ID_ALPHABET) for _ in range(6))
    file_path = f"{org_id}/{category}/{now_ms()}-{suffix}.{_extension(file.filename)}"
    try:
        object_store.upload(bucket, file_path, data, content_type=file.content_type, upsert=False)
    except StorageError as exc:
        log_error("upload.failed", bucket=bucket, path=file_path, error=str(exc))
        raise server_error("Failed to upload file") from exc
    row = {
        "id": new_id(),
        "org_id": org_id,
        "org_name": org_name,
        "file_name": file.filename or Path(file_path).name,
        "file_path": file_path,
        "file_type": file.content_type,
        "file_size": len(data),
        "category": category,
        "description": description or "",
        "uploaded_by": uploaded_by or "anonymous",
        "created_at": now_ms(),
    }
    with session_scope() as session:
        session.execute(asset.insert().values(**row))
        session.commit()
    increment("uploads.assets")
    return {"success": True, "asset": {**row, "url": object_store.public_url(bucket, file_path)}}


@app.get(f"{settings.api_prefix}/assets/list")
def list_assets(
    org_id: str | None = Query(default=None, alias="orgId"),
    category: str | None = Query(default=None),
):
    if not org_id:
        raise bad_request("bad_request", "orgId is required")
    with session_scope() as session:
        q = select(asset).where(asset.c.org_id == org_id)
        if category:
            q = q.where(asset.c.category == category)
        rows = session.execute(q.order_by(asset.c.created_at.desc())).mappings().all()
        return {
            "assets": [
                {**r, "url": object_store.public_url(settings.assets_bucket, r["file_path"])} for r in rows
            ]
        }


# Export / import


@app.post(f"{settings.api_prefix}/asset-collection/export")
def export_progress(body: ExportRequest):
    payload = build_export_payload(body.data, body.source)
    filename = export_filename(payload)
    increment("transfer.exports")
    return JSONResponse(
        content=payload, headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@app.post(f"{settings.api_prefix}/asset-collection/import")
def import_progress(payload: Any = Body(default=None)):
    try:
        data = import_payload(payload)
    except ImportRejected as exc:
        raise bad_request("invalid_import", str(exc)) from exc
    increment("transfer.imports")
    return {"success": True, "data": data}


# Notifications


@app.get(f"{settings.api_prefix}/notifications")
def list_notifications(
    org_id: str | None = Query(default=None, alias="orgId"), auth: AuthContext = Depends(get_user)
):
    target_org = auth.org_id or org_id
    if not target_org:
        return {"notifications": [], "unreadCount": 0}
    with session_scope() as session:
        _require_org_access(session, auth, target_org)
        notifications = list_for_org(session, target_org, settings.notification_page_size)
        return {
            "notifications": notifications,
            "unreadCount": sum(1 for n in notifications if not n["is_read"]),
        }


@app.patch(f"{settings.api_prefix}/notifications")
def update_notifications(body: NotificationPatchRequest, auth: AuthContext = Depends(get_user)):
    if not auth.org_id:
        return {"success": True, "updated": 0}
    with session_scope() as session:
        updated = mark_read(
            session, auth.org_id, notification_id=body.notification_id, all_unread=body.mark_all_read
        )
        session.commit()
        return {"success": True, "updated": updated}


# Admin


@app.get(f"{settings.api_prefix}/admin/invitations")
def list_invitations(
    organization_id: str | None = Query(default=None, alias="organizationId"),
    auth: AuthContext = Depends(get_user),
):
    if not organization_id:
        raise bad_request("bad_request", "Organization ID is required")
    with session_scope() as session:
        require_admin(session, auth, organization_id)
        return {"invitations": directory.list_invitations(session, organization_id)}


@app.post(f"{settings.api_prefix}/admin/invitations")
def create_invitation(body: InvitationCreateRequest, auth: AuthContext = Depends(get_user)):
    if not body.organization_id or not body.email_address:
        raise bad_request("bad_request", "Organization ID and email address are required")
    with session_scope() as session:
        require_admin(session, auth, body.organization_id)
        try:
            invitation = directory.create_invitation(
                session, body.organization_id, body.email_address, body.role or ORG_MEMBER, auth.user_id
            )
        except IdentityError as exc:
            raise bad_request("bad_request", str(exc)) from exc
        session.commit()
        log_event("invitation.created", organization_id=body.organization_id, role=invitation["role"])
        return {"invitation": invitation}


@app.delete(f"{settings.api_prefix}/admin/invitations")
def revoke_invitation(
    organization_id: str | None = Query(default=None, alias="organizationId"),
    invitation_id: str | None = Query(default=None, alias="invitationId"),
    auth: AuthContext = Depends(get_user),
):
    if not organization_id or not invitation_id:
        raise bad_request("bad_request", "Organization ID and invitation ID are required")
    with session_scope() as session:
        require_admin(session, auth, organization_id)
        try:
            directory.revoke_invitation(session, organization_id, invitation_id)
        except IdentityError as exc:
            raise not_found(str(exc)) from exc
        session.commit()
        return {"success": True}


@app.get(f"{settings.api_prefix}/admin/members")
def list_members(
    organization_id: str | None = Query(default=None, alias="organizationId"),
    auth: AuthContext = Depends(get_user),
):
    if not organization_id:
        raise bad_request("bad_request", "Organization ID is required")
    with session_scope() as session:
        require_admin(session, auth, organization_id)
        return {"members": directory.list_org_members(session, organization_id)}


@app.patch(f"{settings.api_prefix}/admin/members")
def update_member(body: MemberPatchRequest, auth: AuthContext = Depends(get_user)):
    if not body.organization_id or not body.member_id or not body.role:
        raise bad_request("bad_request", "Organization ID, member ID, and role are required")
    if body.member_id == auth.user_id and body.role != ORG_ADMIN:
        raise bad_request("self_demotion", "You cannot demote yourself")
    with session_scope() as session:
        require_admin(session, auth, body.organization_id)
        try:
            directory.update_membership_role(session, body.organization_id, body.member_id, body.role)
        except IdentityError as exc:
            raise bad_request("bad_request", str(exc)) from exc
        session.commit()
        log_event("member.role_updated", organization_id=body.organization_id, member_id=body.member_id)
        return {"success": True}


@app.delete(f"{settings.api_prefix}/admin/members")
def remove_member(
    organization_id: str | None = Query(default=None, alias="organizationId"),
    member_id: str | None = Query(default=None, alias="memberId"),
    auth: AuthContext = Depends(get_user),
):
    if not organization_id or not member_id:
        raise bad_request("bad_request", "Organization ID and member ID are required")
    if member_id == auth.user_id:
        raise bad_request("self_removal", "You cannot remove yourself from the organization")
    with session_scope() as session:
        require_admin(session, auth, organization_id)
        try:
            directory.delete_membership(session, organization_id, member_id)
        except IdentityError as exc:
            raise not_found(str(exc)) from exc
        session.commit()
        log_event("member.removed", organization_id=organization_id, member_id=member_id)
        return {"success": True}


@app.get(f"{settings.api_prefix}/admin/organizations")
def list_organizations(auth: AuthContext = Depends(get_user)):
    with session_scope() as session:
        require_admin(session, auth)
        return {"organizations": directory.list_organizations(session)}


@app.post(f"{settings.api_prefix}/admin/organizations")
def create_organization(body: OrganizationCreateRequest, auth: AuthContext = Depends(get_user)):
    if not body.name or not body.name.strip():
        raise bad_request("bad_request", "Organization name is required")
    with session_scope() as session:
        require_admin(session, auth)
        try:
            org = directory.create_organization(session, body.name.strip(), body.slug, auth.user_id)
        except IdentityError as exc:
            raise conflict("slug_taken", str(exc)) from exc
        session.commit()
        log_event("organization.created", organization_id=org["id"], slug=org["slug"])
        return {"organization": org}


@app.get(f"{settings.api_prefix}/admin/users")
def list_users(auth: AuthContext = Depends(get_user)):
    with session_scope() as session:
        require_admin(session, auth)
        return {"users": directory.list_users(session)}


# Tools


@app.post(f"{settings.api_prefix}/tools/scoring")
def scoring(body: ScoringRequest):
    try:
        result = score(body.answers)
    except InvalidAnswer as exc:
        raise bad_request(
            "invalid_answer",
            f"Invalid value for {exc.field}",
            {"field": exc.field, "value": exc.value, "allowed": list(exc.allowed)},
        ) from exc
    if result["status"]:
        log_event("scoring.calculated", score=result["score"], status=result["status"])
    return result
