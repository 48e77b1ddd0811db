"""
Membership and user-administration rule tests.

Tests that verify:
1. Duplicate memberships are rejected (AlreadyMember)
2. The project owner can never be removed or demoted, whoever asks
3. Removing a member unassigns their tasks in that project only
4. An Admin cannot drop their own system Admin role
5. User deletion is refused for self and for project owners

Run: pytest tracker/test_memberships.py -v
"""

import pytest

from tracker.allocator import allocate_and_insert
from tracker.errors import (
    AccessDeniedError,
    AlreadyMember,
    CannotDeleteSelf,
    CannotDemoteOwner,
    CannotRemoveOwner,
    CannotSelfDemoteFromAdmin,
    EmailAlreadyRegistered,
    InvalidCurrentPassword,
    MembershipNotFound,
    ProjectNotFound,
    UserNotFound,
    UserOwnsProjects,
)
from tracker.memberships import (
    add_member,
    change_member_role,
    get_membership,
    is_member,
    list_assignable_users,
    list_members,
    remove_member,
)
from tracker.models import Role, TaskFields
from tracker.projects import create_project
from tracker.tasks import get_task
from tracker.users import (
    authenticate,
    change_password,
    change_system_role,
    create_user,
    delete_user,
    get_user,
    update_profile,
    verify_password,
)


# ---------------------------------------------------------
# add / remove / change role
# ---------------------------------------------------------
def test_add_member(store, make_user, acme):
    project_id = acme["project"].id
    user = make_user()

    membership = add_member(store, project_id, user.id, Role.reader)

    assert membership.role is Role.reader
    assert get_membership(store, project_id, user.id) == membership
    assert {m["user_id"] for m in list_members(store, project_id)} == {acme["owner"].id, user.id}


def test_add_member_twice_is_rejected(store, make_user, acme):
    project_id = acme["project"].id
    user = make_user()
    add_member(store, project_id, user.id, Role.member)

    with pytest.raises(AlreadyMember):
        add_member(store, project_id, user.id, Role.admin)
    assert get_membership(store, project_id, user.id).role is Role.member


def test_add_member_unknown_project_or_user(store, make_user, acme):
    user = make_user()
    with pytest.raises(ProjectNotFound):
        add_member(store, 31337, user.id)
    with pytest.raises(UserNotFound):
        add_member(store, acme["project"].id, 31337)


def test_owner_is_member_from_creation(store, acme):
    membership = get_membership(store, acme["project"].id, acme["owner"].id)
    assert membership is not None
    assert membership.role is Role.admin


def test_owner_cannot_be_removed(store, make_user, acme):
    project_id = acme["project"].id
    owner_id = acme["owner"].id

    # The rule does not depend on who asks; even a system Admin's request fails
    make_user(system_role=Role.admin)
    with pytest.raises(CannotRemoveOwner):
        remove_member(store, project_id, owner_id)
    assert get_membership(store, project_id, owner_id) is not None


def test_remove_member(store, make_user, acme):
    project_id = acme["project"].id
    user = make_user()
    add_member(store, project_id, user.id)

    remove_member(store, project_id, user.id)

    assert get_membership(store, project_id, user.id) is None
    with pytest.raises(MembershipNotFound):
        remove_member(store, project_id, user.id)


def test_remove_member_unassigns_their_tasks(store, make_user, acme):
    project_id = acme["project"].id
    owner = acme["owner"]
    worker = make_user()
    add_member(store, project_id, worker.id)
    theirs = allocate_and_insert(
        store, project_id, TaskFields(title="Theirs", reporter_id=owner.id, assignee_id=worker.id)
    )
    owners = allocate_and_insert(
        store, project_id, TaskFields(title="Owner's", reporter_id=owner.id, assignee_id=owner.id)
    )
    # Same user assigned in another project keeps that assignment
    beta = create_project(store, owner.as_principal(), name="Beta", key="BETA")
    add_member(store, beta.id, worker.id)
    elsewhere = allocate_and_insert(
        store, beta.id, TaskFields(title="Elsewhere", reporter_id=owner.id, assignee_id=worker.id)
    )

    remove_member(store, project_id, worker.id)

    assert get_task(store, theirs.id).assignee_id is None
    assert get_task(store, theirs.id).reporter_id == owner.id
    assert get_task(store, owners.id).assignee_id == owner.id
    assert get_task(store, elsewhere.id).assignee_id == worker.id
    assert not is_member(store, project_id, worker.id)


def test_list_assignable_users_is_project_members(store, make_user, acme):
    project_id = acme["project"].id
    owner = acme["owner"]
    reader = make_user()
    add_member(store, project_id, reader.id, Role.reader)
    make_user()  # not a member

    assignable = list_assignable_users(store, project_id)
    assert {u.id for u in assignable} == {owner.id, reader.id}

    remove_member(store, project_id, reader.id)
    assert [u.id for u in list_assignable_users(store, project_id)] == [owner.id]

    with pytest.raises(ProjectNotFound):
        list_assignable_users(store, 424242)


def test_owner_cannot_be_demoted(store, acme):
    with pytest.raises(CannotDemoteOwner):
        change_member_role(store, acme["project"].id, acme["owner"].id, Role.member)
    # Re-affirming Admin is harmless
    assert change_member_role(store, acme["project"].id, acme["owner"].id, Role.admin).role is Role.admin


def test_change_member_role(store, make_user, acme):
    project_id = acme["project"].id
    user = make_user()
    add_member(store, project_id, user.id, Role.reader)

    assert change_member_role(store, project_id, user.id, Role.admin).role is Role.admin
    with pytest.raises(MembershipNotFound):
        change_member_role(store, project_id, make_user().id, Role.member)


# ---------------------------------------------------------
# System roles
# ---------------------------------------------------------
def test_admin_cannot_self_demote(store, make_user):
    admin = make_user(system_role=Role.admin)

    with pytest.raises(CannotSelfDemoteFromAdmin):
        change_system_role(store, admin.as_principal(), admin.id, Role.member)
    assert get_user(store, admin.id).system_role is Role.admin


def test_admin_changes_other_users_role(store, make_user):
    admin = make_user(system_role=Role.admin)
    other_admin = make_user(system_role=Role.admin)

    demoted = change_system_role(store, admin.as_principal(), other_admin.id, Role.reader)
    assert demoted.system_role is Role.reader


def test_only_admins_change_system_roles(store, make_user):
    member = make_user()
    with pytest.raises(AccessDeniedError):
        change_system_role(store, member.as_principal(), member.id, Role.admin)


def test_change_system_role_unknown_user(store, make_user):
    admin = make_user(system_role=Role.admin)
    with pytest.raises(UserNotFound):
        change_system_role(store, admin.as_principal(), 31337, Role.member)


# ---------------------------------------------------------
# Users
# ---------------------------------------------------------
def test_create_user_normalizes_email_and_hashes_password(store):
    user = create_user(store, "  Ada@Example.COM ", "s3cret-pass", "Ada")

    assert user.email == "ada@example.com"
    assert user.system_role is Role.member
    assert user.password_hash != "s3cret-pass"
    assert verify_password("s3cret-pass", user.password_hash)
    assert authenticate(store, "ADA@example.com", "s3cret-pass").id == user.id
    assert authenticate(store, "ada@example.com", "wrong") is None
    assert authenticate(store, "nobody@example.com", "s3cret-pass") is None


def test_duplicate_email_is_rejected(store, make_user):
    make_user(email="dup@example.com")
    with pytest.raises(EmailAlreadyRegistered):
        create_user(store, "DUP@example.com", "password123", "Again")


def test_update_profile(store, make_user):
    user = make_user()
    taken = make_user()

    updated = update_profile(store, user.id, display_name="  Grace  ", email="Grace@Example.com")
    assert updated.display_name == "Grace"
    assert updated.email == "grace@example.com"
    assert updated.system_role is user.system_role

    with pytest.raises(EmailAlreadyRegistered):
        update_profile(store, user.id, email=taken.email)


def test_change_password(store, make_user):
    user = make_user(password="old-password")

    with pytest.raises(InvalidCurrentPassword):
        change_password(store, user.id, "not-it", "new-password")
    assert authenticate(store, user.email, "old-password") is not None

    with pytest.raises(ValueError):
        change_password(store, user.id, "old-password", "short")

    change_password(store, user.id, "old-password", "new-password")
    assert authenticate(store, user.email, "new-password").id == user.id
    assert authenticate(store, user.email, "old-password") is None

    with pytest.raises(UserNotFound):
        change_password(store, 424242, "old-password", "new-password")


def test_delete_user_rules(store, make_user, acme):
    admin = make_user(system_role=Role.admin)

    with pytest.raises(CannotDeleteSelf):
        delete_user(store, admin.as_principal(), admin.id)
    with pytest.raises(UserOwnsProjects):
        delete_user(store, admin.as_principal(), acme["owner"].id)
    with pytest.raises(AccessDeniedError):
        delete_user(store, acme["owner"].as_principal(), admin.id)


def test_delete_user_detaches_tasks_and_memberships(store, make_user, acme):
    admin = make_user(system_role=Role.admin)
    project_id = acme["project"].id
    worker = make_user()
    add_member(store, project_id, worker.id)
    task = allocate_and_insert(
        store, project_id, TaskFields(title="Work", reporter_id=worker.id, assignee_id=worker.id)
    )

    delete_user(store, admin.as_principal(), worker.id)

    with pytest.raises(UserNotFound):
        get_user(store, worker.id)
    assert get_membership(store, project_id, worker.id) is None
    remaining = get_task(store, task.id)
    assert remaining.assignee_id is None
    assert remaining.reporter_id is None
