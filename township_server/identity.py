from __future__ import annotations

import re
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from township_server.db import (
    app_user,
    new_id,
    now_ms,
    organization,
    organization_invitation,
    organization_membership,
)

ORG_ADMIN = "org:admin"
ORG_MEMBER = "org:member"
SUPERADMIN = "superadmin"
ORG_ROLES = {ORG_ADMIN, ORG_MEMBER}


class IdentityError(Exception):
    """Raised when the directory rejects a request; the message is user-facing."""


def slugify(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


class DatabaseIdentityProvider:
    """Organization and user directory kept in the relational store.

    Mirrors the hosted identity provider's contract: users carry a free-form
    public metadata bag, memberships carry an ``org:*`` role string.
    """

    def get_user(self, session: Session, user_id: str) -> dict[str, Any] | None:
        row = (
            session.execute(select(app_user).where(app_user.c.id == user_id))
            .mappings()
            .one_or_none()
        )
        return self._user_out(row) if row else None

    def membership_role(self, session: Session, org_id: str, user_id: str) -> str | None:
        return session.execute(
            select(organization_membership.c.role).where(
                organization_membership.c.organization_id == org_id,
                organization_membership.c.user_id == user_id,
            )
        ).scalar_one_or_none()

    def list_org_members(self, session: Session, org_id: str) -> list[dict[str, Any]]:
        rows = (
            session.execute(
                select(
                    organization_membership,
                    app_user.c.first_name,
                    app_user.c.last_name,
                    app_user.c.image_url,
                )
                .outerjoin(app_user, app_user.c.id == organization_membership.c.user_id)
                .where(organization_membership.c.organization_id == org_id)
                .order_by(organization_membership.c.created_at.asc())
            )
            .mappings()
            .all()
        )
        return [
            {
                "userId": r["user_id"],
                "email": r["email"],
                "firstName": r["first_name"],
                "lastName": r["last_name"],
                "imageUrl": r["image_url"],
                "role": r["role"],
            }
            for r in rows
        ]

    def update_membership_role(self, session: Session, org_id: str, user_id: str, role: str) -> None:
        if role not in ORG_ROLES:
            raise IdentityError(f"Unknown role: {role}")
        result = session.execute(
            organization_membership.update()
            .where(
                organization_membership.c.organization_id == org_id,
                organization_membership.c.user_id == user_id,
            )
            .values(role=role)
        )
        if result.rowcount == 0:
            raise IdentityError("Membership not found")

    def delete_membership(self, session: Session, org_id: str, user_id: str) -> None:
        result = session.execute(
            organization_membership.delete().where(
                organization_membership.c.organization_id == org_id,
                organization_membership.c.user_id == user_id,
            )
        )
        if result.rowcount == 0:
            raise IdentityError("Membership not found")

    def list_invitations(self, session: Session, org_id: str) -> list[dict[str, Any]]:
        rows = (
            session.execute(
                select(organization_invitation)
                .where(
                    organization_invitation.c.organization_id == org_id,
                    organization_invitation.c.status == "pending",
                )
                .order_by(organization_invitation.c.created_at.desc())
            )
            .mappings()
            .all()
        )
        return [self._invitation_out(r) for r in rows]

    def create_invitation(
        self, session: Session, org_id: str, email_address: str, role: str, inviter_user_id: str
    ) -> dict[str, Any]:
        if role not in ORG_ROLES:
            raise IdentityError(f"Unknown role: {role}")
        email = email_address.strip().lower()
        already_member = session.execute(
            select(organization_membership.c.user_id).where(
                organization_membership.c.organization_id == org_id,
                organization_membership.c.email == email,
            )
        ).first()
        if already_member:
            raise IdentityError(f"{email} is already a member of this organization")
        pending = session.execute(
            select(organization_invitation.c.id).where(
                organization_invitation.c.organization_id == org_id,
                organization_invitation.c.email_address == email,
                organization_invitation.c.status == "pending",
            )
        ).first()
        if pending:
            raise IdentityError(f"{email} already has a pending invitation")
        row = {
            "id": new_id(),
            "organization_id": org_id,
            "email_address": email,
            "role": role,
            "status": "pending",
            "inviter_user_id": inviter_user_id,
            "created_at": now_ms(),
        }
        session.execute(organization_invitation.insert().values(**row))
        return self._invitation_out(row)

    def revoke_invitation(self, session: Session, org_id: str, invitation_id: str) -> None:
        result = session.execute(
            organization_invitation.update()
            .where(
                organization_invitation.c.id == invitation_id,
                organization_invitation.c.organization_id == org_id,
                organization_invitation.c.status == "pending",
            )
            .values(status="revoked")
        )
        if result.rowcount == 0:
            raise IdentityError("Invitation not found")

    def list_organizations(self, session: Session, limit: int = 100) -> list[dict[str, Any]]:
        rows = (
            session.execute(select(organization).order_by(organization.c.created_at.asc()).limit(limit))
            .mappings()
            .all()
        )
        out = []
        for r in rows:
            members = self.list_org_members(session, r["id"])
            out.append(
                {
                    "id": r["id"],
                    "name": r["name"],
                    "slug": r["slug"],
                    "imageUrl": r["image_url"],
                    "createdAt": r["created_at"],
                    "membersCount": len(members),
                    "members": members,
                }
            )
        return out

    def create_organization(
        self, session: Session, name: str, slug: str | None, created_by: str
    ) -> dict[str, Any]:
        slug = slug or slugify(name)
        taken = session.execute(select(organization.c.id).where(organization.c.slug == slug)).first()
        if taken:
            raise IdentityError(f"Organization slug '{slug}' is already taken")
        row = {
            "id": f"org_{new_id().replace('-', '')[:24]}",
            "name": name,
            "slug": slug,
            "image_url": None,
            "created_by": created_by,
            "created_at": now_ms(),
        }
        session.execute(organization.insert().values(**row))
        creator = self.get_user(session, created_by)
        session.execute(
            organization_membership.insert().values(
                organization_id=row["id"],
                user_id=created_by,
                email=(creator or {}).get("email") or created_by,
                role=ORG_ADMIN,
                created_at=row["created_at"],
            )
        )
        return {"id": row["id"], "name": name, "slug": slug, "createdAt": row["created_at"]}

    def list_users(self, session: Session, limit: int = 100) -> list[dict[str, Any]]:
        rows = (
            session.execute(select(app_user).order_by(app_user.c.created_at.asc()).limit(limit))
            .mappings()
            .all()
        )
        out = []
        for r in rows:
            memberships = session.execute(
                select(organization.c.id, organization.c.name, organization_membership.c.role)
                .join(
                    organization_membership,
                    organization_membership.c.organization_id == organization.c.id,
                )
                .where(organization_membership.c.user_id == r["id"])
            ).all()
            user = self._user_out(r)
            user["organizations"] = [
                {"id": m.id, "name": m.name, "role": m.role} for m in memberships
            ]
            out.append(user)
        return out

    @staticmethod
    def _user_out(row) -> dict[str, Any]:
        return {
            "id": row["id"],
            "email": row["email"],
            "firstName": row["first_name"],
            "lastName": row["last_name"],
            "imageUrl": row["image_url"],
            "createdAt": row["created_at"],
            "lastSignInAt": row["last_sign_in_at"],
            "publicMetadata": row["public_metadata_json"] or {},
        }

    @staticmethod
    def _invitation_out(row) -> dict[str, Any]:
        return {
            "id": row["id"],
            "emailAddress": row["email_address"],
            "role": row["role"],
            "status": row["status"],
            "createdAt": row["created_at"],
        }


directory = DatabaseIdentityProvider()
