"""
tests/test_credentials.py -- Unit tests for auth.store and auth.credentials.

Covers:
  - UserStore lookups are case-insensitive on username and email
  - get_by_login accepts either identifier
  - authenticate_user: success, wrong password, unknown login, inactive user
  - register_user: every validation problem reported together, conflicts
    reported as ConflictError, stored user never exposes a hash
  - Passwords longer than bcrypt's 72-byte input are a validation error,
    and never match at verification
  - change_password: wrong current password, weak new password, success
  - ensure_seed_users only runs against an empty table
"""

from __future__ import annotations

import os

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from sqlalchemy import update

from auth.credentials import (
    MAX_PASSWORD_BYTES,
    SeedUser,
    authenticate_user,
    change_password,
    ensure_seed_users,
    hash_password,
    register_user,
    verify_password,
)
from auth.errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from auth.models import Role
from auth.store import UserStore, _users

PASSWORD = "Cl1nic!Vet#Secure"
# Passes every policy rule; 84 bytes.
OVERLONG = "Ab1!" + "xY9#" * 20


@pytest.fixture
def store(request):
    s = UserStore(f"sqlite:///file:test_credentials_{request.node.name}?mode=memory&cache=shared&uri=true")
    yield s
    s.close()


@pytest.fixture
def vet(store):
    return register_user(store, "dr.smith", "Dr.Smith@VetClinic.com", PASSWORD, "vet")


class TestHashing:
    def test_hash_and_verify(self):
        hashed = hash_password(PASSWORD)
        assert hashed != PASSWORD
        assert verify_password(PASSWORD, hashed)
        assert not verify_password("wrong", hashed)

    def test_malformed_hash_is_a_mismatch(self):
        assert verify_password(PASSWORD, "not-a-bcrypt-hash") is False

    def test_overlong_password_never_matches(self):
        assert verify_password(OVERLONG, hash_password(PASSWORD)) is False


class TestUserStore:
    def test_lookups_are_case_insensitive(self, store, vet):
        assert store.get_by_username("DR.SMITH").id == vet.id
        assert store.get_by_email("dr.smith@vetclinic.com").id == vet.id

    def test_get_by_login_accepts_email_or_username(self, store, vet):
        assert store.get_by_login("dr.smith").id == vet.id
        assert store.get_by_login("dr.smith@vetclinic.com").id == vet.id
        assert store.get_by_login("nobody") is None

    def test_role_round_trips_as_enum(self, store, vet):
        assert store.get_by_id(vet.id).role is Role.vet

    def test_has_users(self, store):
        assert store.has_users() is False
        register_user(store, "assistant1", "a1@vetclinic.com", PASSWORD, "assistant")
        assert store.has_users() is True

    def test_update_last_login(self, store, vet):
        assert store.get_by_id(vet.id).last_login is None
        store.update_last_login(vet.id)
        assert store.get_by_id(vet.id).last_login is not None


class TestAuthenticateUser:
    def test_success_by_username_and_email(self, store, vet):
        assert authenticate_user(store, "dr.smith", PASSWORD).id == vet.id
        assert authenticate_user(store, "dr.smith@vetclinic.com", PASSWORD).id == vet.id

    def test_wrong_password(self, store, vet):
        assert authenticate_user(store, "dr.smith", "Wr0ng!Password#x") is None

    def test_unknown_login(self, store):
        assert authenticate_user(store, "ghost", PASSWORD) is None

    def test_inactive_user_cannot_log_in(self, store, vet):
        with store.engine.begin() as conn:
            conn.execute(update(_users).where(_users.c.id == vet.id).values(is_active=0))
        assert authenticate_user(store, "dr.smith", PASSWORD) is None


class TestRegisterUser:
    def test_returns_stored_user_without_hash(self, store):
        user = register_user(store, "  nurse.joy ", "joy@vetclinic.com", PASSWORD, "assistant")
        assert user.id is not None
        assert user.username == "nurse.joy"
        assert user.role is Role.assistant
        assert not hasattr(user, "hashed_password")

    def test_short_fields_report_every_problem(self, store):
        with pytest.raises(ValidationError) as exc_info:
            register_user(store, "ab", "not-an-email", "short", "owner")
        errors = exc_info.value.errors
        assert any("Username" in e for e in errors)
        assert "Invalid email format" in errors
        assert any("Password" in e for e in errors)
        assert any("Invalid role" in e for e in errors)
        assert store.has_users() is False

    def test_overlong_password_is_a_validation_error(self, store):
        with pytest.raises(ValidationError) as exc_info:
            register_user(store, "dr.longpass", "long@vetclinic.com", OVERLONG, "vet")
        assert exc_info.value.errors == [f"Password must be at most {MAX_PASSWORD_BYTES} bytes long"]
        assert store.has_users() is False

    def test_multibyte_characters_count_as_bytes(self, store):
        # 60 characters, 80 bytes in UTF-8.
        password = "Ab1!" + "\u00e9" * 20 + "Zz9#" * 9
        with pytest.raises(ValidationError):
            register_user(store, "dr.accent", "accent@vetclinic.com", password, "vet")

    def test_duplicate_email_is_a_conflict(self, store, vet):
        with pytest.raises(ConflictError):
            register_user(store, "dr.jones", "DR.SMITH@vetclinic.com", PASSWORD, "vet")

    def test_duplicate_username_is_a_conflict(self, store, vet):
        with pytest.raises(ConflictError):
            register_user(store, "Dr.Smith", "other@vetclinic.com", PASSWORD, "vet")

    def test_invalid_input_wins_over_conflict(self, store, vet):
        """A duplicate email with a weak password is reported as validation, not conflict."""
        with pytest.raises(ValidationError):
            register_user(store, "dr.jones", "dr.smith@vetclinic.com", "weak", "vet")


class TestChangePassword:
    NEW = "N3w!Stronger#Pass"

    def test_success(self, store, vet):
        change_password(store, vet.id, PASSWORD, self.NEW)
        assert authenticate_user(store, "dr.smith", PASSWORD) is None
        assert authenticate_user(store, "dr.smith", self.NEW).id == vet.id

    def test_wrong_current_password(self, store, vet):
        with pytest.raises(AuthenticationError):
            change_password(store, vet.id, "Wr0ng!Password#x", self.NEW)

    def test_weak_new_password(self, store, vet):
        with pytest.raises(ValidationError):
            change_password(store, vet.id, PASSWORD, "weak")

    def test_overlong_new_password(self, store, vet):
        with pytest.raises(ValidationError):
            change_password(store, vet.id, PASSWORD, OVERLONG)
        assert authenticate_user(store, "dr.smith", PASSWORD).id == vet.id

    def test_unknown_user(self, store):
        with pytest.raises(NotFoundError):
            change_password(store, 999, PASSWORD, self.NEW)


class TestSeedUsers:
    def test_seeds_empty_database_once(self, store):
        seeds = [SeedUser("headadmin", "head@vetclinic.com", PASSWORD, "admin")]
        assert ensure_seed_users(store, seeds) == 1
        assert ensure_seed_users(store, seeds) == 0
        assert store.get_by_username("headadmin").role is Role.admin

    def test_weak_seed_password_fails_loudly(self, store):
        with pytest.raises(ValidationError):
            ensure_seed_users(store, [SeedUser("headadmin", "head@vetclinic.com", "VetPass456!", "admin")])
