import pytest

from visitor_desk import services
from visitor_desk.exceptions import (
    LastAdminProtected,
    RoleNotPermitted,
    SelfDeleteForbidden,
    ValidationFailed,
)
from visitor_desk.models import AuditLog, User

pytestmark = pytest.mark.django_db


def test_admin_creates_resident_with_hashed_password(desk_admin):
    user = services.create_user(desk_admin, "resident305", "pw", User.RESIDENT, unit_no="c-305")

    assert user.role == User.RESIDENT
    assert user.unit_no == "C-305"
    assert user.password != "pw"
    assert user.check_password("pw")


def test_unit_number_is_dropped_for_staff_roles(desk_admin):
    user = services.create_user(desk_admin, "guard2", "pw", User.SECURITY, unit_no="A-101")
    assert user.unit_no == ""


def test_duplicate_username_is_refused_and_store_unchanged(desk_admin, security):
    before = User.objects.count()

    with pytest.raises(ValidationFailed) as excinfo:
        services.create_user(desk_admin, "security", "pw", User.OFFICER)

    assert excinfo.value.error_code == "UsernameTaken"
    assert User.objects.count() == before


def test_blank_username_is_refused(desk_admin):
    with pytest.raises(ValidationFailed) as excinfo:
        services.create_user(desk_admin, "   ", "pw", User.OFFICER)
    assert excinfo.value.error_code == "UsernameEmpty"


def test_unknown_role_is_refused(desk_admin):
    with pytest.raises(ValidationFailed) as excinfo:
        services.create_user(desk_admin, "someone", "pw", "JANITOR")
    assert excinfo.value.error_code == "InvalidRole"


@pytest.mark.parametrize("role_fixture", ["security", "officer", "resident"])
def test_only_admin_manages_users(request, role_fixture):
    actor = request.getfixturevalue(role_fixture)
    before = User.objects.count()

    with pytest.raises(RoleNotPermitted):
        services.create_user(actor, "intruder", "pw", User.ADMIN)
    with pytest.raises(RoleNotPermitted):
        services.list_users(actor)

    assert User.objects.count() == before


def test_sole_admin_cannot_demote_self(desk_admin):
    with pytest.raises(LastAdminProtected):
        services.change_role(desk_admin, desk_admin.id, User.SECURITY)

    desk_admin.refresh_from_db()
    assert desk_admin.role == User.ADMIN


def test_sole_admin_cannot_delete_self(desk_admin):
    with pytest.raises(SelfDeleteForbidden):
        services.delete_user(desk_admin, desk_admin.id)
    assert User.objects.filter(pk=desk_admin.pk).exists()


def test_last_admin_scenario(desk_admin):
    second = services.create_user(desk_admin, "admin2", "pw", User.ADMIN)
    assert services.admin_count() == 2

    # With a second admin around the first may step down
    services.change_role(desk_admin, desk_admin.id, User.OFFICER)
    assert desk_admin.role == User.OFFICER
    assert services.admin_count() == 1

    # The demoted user has lost admin rights in the same session
    with pytest.raises(RoleNotPermitted):
        services.change_role(desk_admin, second.id, User.OFFICER)

    # And the remaining admin is now protected
    with pytest.raises(LastAdminProtected):
        services.change_role(second, second.id, User.RESIDENT)
    second.refresh_from_db()
    assert second.role == User.ADMIN


def test_deleting_one_of_two_admins(desk_admin):
    second = services.create_user(desk_admin, "admin2", "pw", User.ADMIN)

    services.delete_user(desk_admin, second.id)

    assert not User.objects.filter(pk=second.pk).exists()
    assert services.admin_count() == 1
    assert AuditLog.objects.filter(action="DELETE", object_id=str(second.id)).exists()


def test_demoted_admin_loses_role_rights_even_with_a_stale_copy(desk_admin):
    second = services.create_user(desk_admin, "admin2", "pw", User.ADMIN)
    stale = User.objects.get(pk=desk_admin.pk)

    services.change_role(second, desk_admin.id, User.OFFICER)

    # stale still carries role=ADMIN in memory
    with pytest.raises(RoleNotPermitted):
        services.change_role(stale, second.id, User.OFFICER)
    with pytest.raises(RoleNotPermitted):
        services.delete_user(stale, second.id)
    assert services.admin_count() == 1


def test_admin_changes_another_users_role(desk_admin, security):
    updated = services.change_role(desk_admin, security.id, User.OFFICER)

    assert updated.role == User.OFFICER
    security.refresh_from_db()
    assert security.role == User.OFFICER


def test_delete_user_removes_their_sessions(desk_admin, security):
    session = services.login("security", "secret")

    services.delete_user(desk_admin, security.id)

    assert not User.objects.filter(pk=security.pk).exists()
    assert services.resolve(session.key) is None


def test_edit_credentials_renames_and_keeps_password_when_blank(desk_admin, officer):
    services.edit_credentials(desk_admin, officer.id, "chief-officer")

    officer.refresh_from_db()
    assert officer.username == "chief-officer"
    assert officer.check_password("secret")


def test_edit_credentials_sets_new_password(desk_admin, officer):
    services.edit_credentials(desk_admin, officer.id, "officer", "n3w", "n3w")

    officer.refresh_from_db()
    assert officer.check_password("n3w")


def test_edit_credentials_password_mismatch(desk_admin, officer):
    with pytest.raises(ValidationFailed) as excinfo:
        services.edit_credentials(desk_admin, officer.id, "officer", "one", "two")

    assert excinfo.value.error_code == "PasswordMismatch"
    officer.refresh_from_db()
    assert officer.check_password("secret")


def test_edit_credentials_username_taken(desk_admin, officer, security):
    with pytest.raises(ValidationFailed) as excinfo:
        services.edit_credentials(desk_admin, officer.id, "security")

    assert excinfo.value.error_code == "UsernameTaken"
    officer.refresh_from_db()
    assert officer.username == "officer"


def test_edit_credentials_rejects_blank_username(desk_admin, officer):
    with pytest.raises(ValidationFailed) as excinfo:
        services.edit_credentials(desk_admin, officer.id, "")
    assert excinfo.value.error_code == "UsernameEmpty"
