from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from township_server.errors import forbidden, unauthorized
from township_server.identity import ORG_ADMIN, SUPERADMIN, directory

ADMIN_CLAIMS = {ORG_ADMIN, "admin"}


@dataclass(frozen=True)
class AuthContext:
    """Identity claims for one request, as asserted by the identity layer."""

    user_id: str | None = None
    org_id: str | None = None
    role: str | None = None
    email: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)


ANONYMOUS = AuthContext()


def get_auth(
    x_user_id: str | None = Header(default=None),
    x_org_id: str | None = Header(default=None),
    x_org_role: str | None = Header(default=None),
    x_user_email: str | None = Header(default=None),
) -> AuthContext:
    if not x_user_id:
        return ANONYMOUS
    return AuthContext(user_id=x_user_id, org_id=x_org_id, role=x_org_role, email=x_user_email)


def get_user(auth: AuthContext = Depends(get_auth)) -> AuthContext:
    if not auth.is_authenticated:
        raise unauthorized()
    return auth


def is_superadmin(session: Session, auth: AuthContext) -> bool:
    if not auth.is_authenticated:
        return False
    user = directory.get_user(session, auth.user_id)
    return bool(user) and user["publicMetadata"].get("role") == SUPERADMIN


def is_org_admin(session: Session, auth: AuthContext, org_id: str | None) -> bool:
    if not auth.is_authenticated or not org_id:
        return False
    if org_id == auth.org_id and auth.role in ADMIN_CLAIMS:
        return True
    return directory.membership_role(session, org_id, auth.user_id) == ORG_ADMIN


def is_org_member(session: Session, auth: AuthContext, org_id: str | None) -> bool:
    if not auth.is_authenticated or not org_id:
        return False
    if org_id == auth.org_id:
        return True
    return directory.membership_role(session, org_id, auth.user_id) is not None


def require_admin(session: Session, auth: AuthContext, org_id: str | None = None) -> None:
    """Superadmins pass everywhere; org admins pass for ``org_id`` (or their active org)."""
    if not auth.is_authenticated:
        raise unauthorized()
    if is_superadmin(session, auth):
        return
    if is_org_admin(session, auth, org_id or auth.org_id):
        return
    raise forbidden("Forbidden - Admin access required")


def caller_email(session: Session, auth: AuthContext) -> str | None:
    if auth.email:
        return auth.email
    if not auth.is_authenticated:
        return None
    user = directory.get_user(session, auth.user_id)
    return user["email"] if user else None


def owns_submission(session: Session, auth: AuthContext, submission: dict[str, Any]) -> bool:
    if not auth.is_authenticated:
        return False
    if submission.get("user_id") and submission["user_id"] == auth.user_id:
        return True
    email = caller_email(session, auth)
    submitter = submission.get("submitter_email")
    return bool(email and submitter and email.lower() == submitter.lower())


def can_edit_submission(
    session: Session, auth: AuthContext, submission: dict[str, Any], project_org_id: str | None
) -> bool:
    if not auth.is_authenticated:
        return False
    if is_superadmin(session, auth) or is_org_admin(session, auth, project_org_id):
        return True
    return owns_submission(session, auth, submission)


def can_view_submission(
    session: Session, auth: AuthContext, submission: dict[str, Any], project_org_id: str | None
) -> bool:
    if can_edit_submission(session, auth, submission, project_org_id):
        return True
    return is_org_member(session, auth, project_org_id)
