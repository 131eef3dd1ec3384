from __future__ import annotations

import pytest
from fastapi import HTTPException

from township_server.auth import ANONYMOUS, AuthContext, get_user
from township_server.main import (
    create_invitation,
    create_organization,
    list_invitations,
    list_members,
    list_organizations,
    list_users,
    remove_member,
    revoke_invitation,
    update_member,
)
from township_server.schemas import (
    InvitationCreateRequest,
    MemberPatchRequest,
    OrganizationCreateRequest,
)

ADMIN = AuthContext(user_id="user_admin", org_id="org_local", role="org:admin")
MEMBER = AuthContext(user_id="user_member", org_id="org_local", role="org:member")
SUPER = AuthContext(user_id="user_super")


def test_get_user_rejects_anonymous():
    with pytest.raises(HTTPException) as exc:
        get_user(auth=ANONYMOUS)
    assert exc.value.status_code == 401


def test_members_listed_for_admin_only():
    out = list_members(organization_id="org_local", auth=ADMIN)
    assert {m["userId"] for m in out["members"]} == {"user_admin", "user_member"}

    with pytest.raises(HTTPException) as exc:
        list_members(organization_id="org_local", auth=MEMBER)
    assert exc.value.status_code == 403

    assert len(list_members(organization_id="org_local", auth=SUPER)["members"]) == 2


def test_self_removal_is_rejected_regardless_of_role():
    for auth in (ADMIN, MEMBER):
        with pytest.raises(HTTPException) as exc:
            remove_member(organization_id="org_local", member_id=auth.user_id, auth=auth)
        assert exc.value.status_code == 400
        assert exc.value.detail["error"]["code"] == "self_removal"
    assert len(list_members(organization_id="org_local", auth=ADMIN)["members"]) == 2


def test_admin_removes_member():
    remove_member(organization_id="org_local", member_id="user_member", auth=ADMIN)
    members = list_members(organization_id="org_local", auth=ADMIN)["members"]
    assert [m["userId"] for m in members] == ["user_admin"]

    with pytest.raises(HTTPException) as exc:
        remove_member(organization_id="org_local", member_id="user_member", auth=ADMIN)
    assert exc.value.status_code == 404


def test_member_role_update_and_self_demotion():
    with pytest.raises(HTTPException) as exc:
        update_member(
            body=MemberPatchRequest(organization_id="org_local", member_id="user_admin", role="org:member"),
            auth=ADMIN,
        )
    assert exc.value.detail["error"]["code"] == "self_demotion"

    update_member(
        body=MemberPatchRequest(organization_id="org_local", member_id="user_member", role="org:admin"),
        auth=ADMIN,
    )
    roles = {m["userId"]: m["role"] for m in list_members(organization_id="org_local", auth=ADMIN)["members"]}
    assert roles["user_member"] == "org:admin"

    with pytest.raises(HTTPException) as exc:
        update_member(
            body=MemberPatchRequest(organization_id="org_local", member_id="user_member", role="owner"),
            auth=ADMIN,
        )
    assert exc.value.status_code == 400


def test_invitation_lifecycle():
    out = create_invitation(
        body=InvitationCreateRequest(organization_id="org_local", email_address="New.Clerk@Example.com"),
        auth=ADMIN,
    )
    invitation = out["invitation"]
    assert invitation["emailAddress"] == "new.clerk@example.com"
    assert invitation["role"] == "org:member"
    assert invitation["status"] == "pending"

    with pytest.raises(HTTPException) as exc:
        create_invitation(
            body=InvitationCreateRequest(organization_id="org_local", email_address="new.clerk@example.com"),
            auth=ADMIN,
        )
    assert exc.value.status_code == 400

    with pytest.raises(HTTPException) as exc:
        create_invitation(
            body=InvitationCreateRequest(organization_id="org_local", email_address="member@example.com"),
            auth=ADMIN,
        )
    assert exc.value.status_code == 400

    listed = list_invitations(organization_id="org_local", auth=ADMIN)["invitations"]
    assert [i["id"] for i in listed] == [invitation["id"]]

    revoke_invitation(organization_id="org_local", invitation_id=invitation["id"], auth=ADMIN)
    assert list_invitations(organization_id="org_local", auth=ADMIN)["invitations"] == []
    with pytest.raises(HTTPException) as exc:
        revoke_invitation(organization_id="org_local", invitation_id=invitation["id"], auth=ADMIN)
    assert exc.value.status_code == 404


def test_invitations_require_admin():
    with pytest.raises(HTTPException) as exc:
        create_invitation(
            body=InvitationCreateRequest(organization_id="org_local", email_address="x@example.com"),
            auth=MEMBER,
        )
    assert exc.value.status_code == 403


def test_organizations_and_users_for_superadmin():
    out = create_organization(body=OrganizationCreateRequest(name="North Township"), auth=SUPER)
    org = out["organization"]
    assert org["slug"] == "north-township"

    with pytest.raises(HTTPException) as exc:
        create_organization(body=OrganizationCreateRequest(name="North Township"), auth=SUPER)
    assert exc.value.status_code == 409

    orgs = {o["slug"]: o for o in list_organizations(auth=SUPER)["organizations"]}
    assert orgs["north-township"]["membersCount"] == 1
    assert orgs["local-township"]["membersCount"] == 2

    users = {u["id"]: u for u in list_users(auth=SUPER)["users"]}
    assert users["user_super"]["publicMetadata"]["role"] == "superadmin"
    assert {o["id"] for o in users["user_super"]["organizations"]} == {org["id"]}

    with pytest.raises(HTTPException) as exc:
        list_users(auth=MEMBER)
    assert exc.value.status_code == 403
