"""
User lifecycle tests.

Verifies:
- registration creates both the provider account and the local row, and
  removes the provider account when the local insert fails
- update/promote/demote/deactivate keep the provider in step
- the last active manager can never be demoted or deactivated
- provider writes are undone when the local commit fails
"""

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from warehouse.errors import (
    ForbiddenError,
    IdpError,
    InvalidRoleTransitionError,
    NotFoundError,
    UserInactiveError,
    UsernameConflictError,
    ValidationError,
)
from warehouse.extensions import db
from warehouse.models import Role, User
from warehouse.services import user_service

from conftest import make_user


def _failing_commit():
    raise OperationalError("COMMIT", {}, Exception("database is locked"))


class TestRegister:

    def test_register_creates_employee_everywhere(self, db_session, fake_idp):
        user = user_service.register_user("u1", "pw12345678", "Jan", "Muster")

        assert user.role == "EMPLOYEE"
        assert user.active is True
        account = fake_idp.accounts[user.external_id]
        assert account["username"] == "u1"
        assert account["roles"] == {"EMPLOYEE"}
        assert account["password"] == "pw12345678"

    def test_local_username_conflict_skips_provider(self, db_session, fake_idp):
        make_user(db_session, fake_idp, "taken")
        calls_before = list(fake_idp.calls)

        with pytest.raises(UsernameConflictError):
            user_service.register_user("taken", "pw12345678")

        assert fake_idp.calls == calls_before

    def test_provider_conflict_surfaces(self, db_session, fake_idp):
        fake_idp.add_account("remote_only")

        with pytest.raises(UsernameConflictError):
            user_service.register_user("remote_only", "pw12345678")
        assert db.session.query(User).filter_by(username="remote_only").count() == 0

    def test_local_insert_failure_removes_provider_account(self, db_session, fake_idp, monkeypatch):
        def broken_persist(*args, **kwargs):
            raise SQLAlchemyError("insert failed")

        monkeypatch.setattr(user_service, "_persist_new_user", broken_persist)

        with pytest.raises(IdpError):
            user_service.register_user("u1", "pw12345678")

        assert fake_idp.by_username("u1") == (None, None)
        assert ("delete_user", "kc-1") in fake_idp.calls
        assert db.session.query(User).filter_by(username="u1").count() == 0

    def test_compensation_failure_does_not_mask_original(self, db_session, fake_idp, monkeypatch):
        def broken_persist(*args, **kwargs):
            raise SQLAlchemyError("insert failed")

        monkeypatch.setattr(user_service, "_persist_new_user", broken_persist)
        fake_idp.fail("delete_user")

        with pytest.raises(IdpError) as exc:
            user_service.register_user("u1", "pw12345678")

        assert exc.value.operation == "user registration"
        assert isinstance(exc.value.__cause__, SQLAlchemyError)


class TestUpdate:

    def test_manager_update_propagates_username(self, db_session, fake_idp, employee):
        user = user_service.update_user(employee.id, username="renamed", first_name="Anna")

        assert user.username == "renamed"
        assert user.first_name == "Anna"
        account = fake_idp.accounts[employee.external_id]
        assert (account["username"], account["first_name"]) == ("renamed", "Anna")

    def test_username_taken_locally(self, db_session, fake_idp, employee, manager):
        with pytest.raises(UsernameConflictError):
            user_service.update_user(employee.id, username=manager.username)
        assert fake_idp.accounts[employee.external_id]["username"] == employee.username

    def test_inactive_user_cannot_be_updated(self, db_session, fake_idp):
        user = make_user(db_session, fake_idp, "gone", active=False)
        with pytest.raises(UserInactiveError):
            user_service.update_user(user.id, first_name="New")

    def test_self_update_cannot_change_username(self, db_session, fake_idp, employee):
        with pytest.raises(ForbiddenError):
            user_service.update_current_user(employee.username, username="other")

    def test_self_update_same_username_is_allowed(self, db_session, fake_idp, employee):
        user = user_service.update_current_user(employee.username, username=employee.username, last_name="Meier")
        assert user.last_name == "Meier"

    def test_self_update_password_only_reaches_provider(self, db_session, fake_idp, employee):
        user_service.update_current_user(employee.username, password="newpassword1")
        assert fake_idp.accounts[employee.external_id]["password"] == "newpassword1"

    def test_provider_failure_leaves_local_row(self, db_session, fake_idp, employee):
        fake_idp.fail("update_user")
        with pytest.raises(IdpError):
            user_service.update_user(employee.id, first_name="Changed")

        db.session.expire_all()
        assert db.session.get(User, employee.id).first_name is None

    def test_local_failure_restores_provider_profile(self, db_session, fake_idp, employee, monkeypatch):
        employee_id, external_id, original = employee.id, employee.external_id, employee.username
        monkeypatch.setattr(db.session, "commit", _failing_commit)

        with pytest.raises(OperationalError):
            user_service.update_user(employee_id, username="renamed")

        monkeypatch.undo()
        assert fake_idp.accounts[external_id]["username"] == original


class TestRoleChanges:

    def test_promote_and_demote(self, db_session, fake_idp, manager, employee):
        promoted = user_service.promote_user(employee.id)
        assert promoted.role == "MANAGER"
        assert fake_idp.accounts[employee.external_id]["roles"] == {"MANAGER"}

        demoted = user_service.demote_user(employee.id)
        assert demoted.role == "EMPLOYEE"
        assert fake_idp.accounts[employee.external_id]["roles"] == {"EMPLOYEE"}

    def test_same_role_is_invalid_transition(self, db_session, fake_idp, manager, employee):
        with pytest.raises(InvalidRoleTransitionError):
            user_service.promote_user(manager.id)
        with pytest.raises(InvalidRoleTransitionError):
            user_service.demote_user(employee.id)

    def test_cannot_demote_last_manager(self, db_session, fake_idp, manager):
        with pytest.raises(ValidationError, match="last manager"):
            user_service.demote_user(manager.id)
        assert fake_idp.accounts[manager.external_id]["roles"] == {"MANAGER"}
        assert not any(call[0] == "set_role" for call in fake_idp.calls)

    def test_inactive_managers_do_not_count(self, db_session, fake_idp, manager):
        make_user(db_session, fake_idp, "old_boss", Role.MANAGER, active=False)
        with pytest.raises(ValidationError):
            user_service.demote_user(manager.id)

    def test_unknown_user(self, db_session, fake_idp):
        with pytest.raises(NotFoundError):
            user_service.promote_user(99999)

    def test_local_failure_restores_previous_role(self, db_session, fake_idp, manager, employee, monkeypatch):
        employee_id, external_id = employee.id, employee.external_id
        monkeypatch.setattr(db.session, "commit", _failing_commit)

        with pytest.raises(OperationalError):
            user_service.promote_user(employee_id)

        monkeypatch.undo()
        assert fake_idp.accounts[external_id]["roles"] == {"EMPLOYEE"}
        assert [c for c in fake_idp.calls if c[0] == "set_role"] == [
            ("set_role", external_id, "MANAGER"),
            ("set_role", external_id, "EMPLOYEE"),
        ]


class TestDeactivate:

    def test_deactivate_soft_deletes(self, db_session, fake_idp, manager, employee):
        user = user_service.deactivate_user(employee.id)

        assert user.active is False
        assert employee.external_id not in fake_idp.accounts
        assert db.session.get(User, employee.id) is not None

    def test_two_managers_then_last_one_is_protected(self, db_session, fake_idp):
        a = make_user(db_session, fake_idp, "manager_a", Role.MANAGER)
        b = make_user(db_session, fake_idp, "manager_b", Role.MANAGER)

        user_service.delete_user(a.id)
        assert a.active is False
        assert a.external_id not in fake_idp.accounts

        with pytest.raises(ValidationError, match="last manager"):
            user_service.delete_user(b.id)

        db.session.expire_all()
        assert db.session.get(User, b.id).active is True
        assert b.external_id in fake_idp.accounts

    def test_already_inactive(self, db_session, fake_idp, manager):
        user = make_user(db_session, fake_idp, "gone", active=False)
        with pytest.raises(ValidationError, match="already inactive"):
            user_service.deactivate_user(user.id)

    def test_provider_failure_keeps_user_active(self, db_session, fake_idp, manager, employee):
        fake_idp.fail("delete_user")
        with pytest.raises(IdpError):
            user_service.deactivate_user(employee.id)

        db.session.expire_all()
        assert db.session.get(User, employee.id).active is True


class TestReads:

    def test_list_and_lookup(self, db_session, fake_idp, manager, employee):
        make_user(db_session, fake_idp, "gone", active=False)

        assert len(user_service.list_users()) == 3
        assert {u.username for u in user_service.list_users(active_only=True)} == {
            manager.username, employee.username,
        }
        assert user_service.get_user(manager.id).username == manager.username
        assert user_service.get_user_by_username(employee.username).id == employee.id

        with pytest.raises(NotFoundError):
            user_service.get_user_by_username("nobody")
