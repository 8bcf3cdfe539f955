"""
auth/credentials.py -- Password hashing, login verification and registration.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper) with the configured
       cost factor (BCRYPT_ROUNDS). The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether a login identifier exists [C1].

  Registration: every input problem is collected into one ValidationError so
       the client can fix everything in a single round trip. Conflicts are
       only checked once the input is valid, and are reported as
       ConflictError -- never as a validation failure.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import bcrypt
from sqlalchemy.exc import IntegrityError

from auth.errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from auth.models import Role, User
from auth.password_policy import validate_password
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("vetclinic.auth.credentials")

_settings = get_settings()

MIN_USERNAME_LENGTH = 5
# bcrypt only ever reads the first 72 bytes; newer releases refuse longer input.
MAX_PASSWORD_BYTES = 72
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Callers must reject passwords over MAX_PASSWORD_BYTES first (see
    password_length_errors); bcrypt raises ValueError for longer input.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES:
        # No stored password can be this long, so it cannot match.
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage. Treat as a mismatch rather than a 500.
        logger.error("Stored password hash is malformed")
        return False


def password_length_errors(password: str) -> list[str]:
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return [f"Password must be at most {MAX_PASSWORD_BYTES} bytes long"]
    return []


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("vetclinic_timing_dummy")


# ---------------------------------------------------------------------------
# Login (constant-time) [C1]
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, login: str, password: str) -> User | None:
    """Verify a username-or-email plus password pair.

    Always runs bcrypt whether or not the user exists:
    - Unknown login: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure.
    """
    user = store.get_by_login(login)
    hashed = store.get_password_hash(user.id) if user is not None else None
    if user is None or hashed is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, hashed):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def validate_user_data(username: str, email: str, password: str, role: str) -> list[str]:
    """Return every validation problem with a registration payload (empty if valid)."""
    errors: list[str] = []
    if len(username.strip()) < MIN_USERNAME_LENGTH:
        errors.append(f"Username must be at least {MIN_USERNAME_LENGTH} characters long")
    if not _EMAIL_PATTERN.match(email.strip()):
        errors.append("Invalid email format")
    policy = validate_password(password)
    errors.extend(policy.errors)
    errors.extend(password_length_errors(password))
    if Role.parse(role) is None:
        errors.append(f"Invalid role. Must be one of: {', '.join(r.value for r in Role)}")
    return errors


def register_user(store: UserStore, username: str, email: str, password: str, role: str) -> User:
    """Validate, hash and persist a new user. Returns the stored User.

    Raises:
        ValidationError: any field fails validation (all problems listed).
        ConflictError:   email or username already taken (case-insensitive).
    """
    errors = validate_user_data(username, email, password, role)
    if errors:
        raise ValidationError(errors)

    username = username.strip()
    email = email.strip()
    if store.get_by_email(email) is not None:
        raise ConflictError("A user with this email already exists.")
    if store.get_by_username(username) is not None:
        raise ConflictError("A user with this username already exists.")

    new_user = User(username=username, email=email, role=Role(role))
    try:
        user_id = store.create_user(new_user, hash_password(password))
    except IntegrityError as exc:
        # A concurrent registration won the race between the check and the insert.
        raise ConflictError("A user with this email or username already exists.") from exc

    created = store.get_by_id(user_id)
    if created is None:
        raise NotFoundError("User not found after write.")
    logger.info("Registered user %s (%s)", created.username, created.role.value)
    return created


def change_password(store: UserStore, user_id: int, current_password: str, new_password: str) -> None:
    """Replace a user's password after re-verifying the current one.

    Raises:
        NotFoundError:       user_id does not exist.
        AuthenticationError: current_password is wrong.
        ValidationError:     new_password fails the policy.
    """
    hashed = store.get_password_hash(user_id)
    if hashed is None:
        raise NotFoundError("User not found.")
    if not verify_password(current_password, hashed):
        raise AuthenticationError("Current password is incorrect.")
    errors = validate_password(new_password).errors + password_length_errors(new_password)
    if errors:
        raise ValidationError(errors)
    store.set_password_hash(user_id, hash_password(new_password))
    logger.info("Password changed for user_id=%s", user_id)


@dataclass
class SeedUser:
    username: str
    email: str
    password: str
    role: str


def ensure_seed_users(store: UserStore, seeds: list[SeedUser]) -> int:
    """Create the given users on an empty database. Returns how many were created.

    A no-op once any user exists, so it is safe to call on every startup.
    Seeds go through register_user() and therefore through the password
    policy -- a weak bootstrap password fails startup loudly.
    """
    if store.has_users():
        return 0
    for seed in seeds:
        register_user(store, seed.username, seed.email, seed.password, seed.role)
    return len(seeds)
