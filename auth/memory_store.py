"""
auth/memory_store.py -- Store interfaces for token/session/2FA state plus
thread-safe in-memory implementations.

Pattern: Repository behind a Protocol. TokenService, SessionRegistry and
TwoFactorService receive their stores through the constructor, so tests can
pass fresh in-memory stores and a deployment can swap in a shared backend
(Redis, SQL) without touching call sites.

Concurrency:
  FastAPI runs sync handlers in a threadpool, so several requests can touch
  the same store at once. Each store owns one threading.Lock and every
  read-modify-write (claim, revoke, consume, touch) happens inside it. No
  operation holds more than one store's lock, so there is no lock ordering
  to get wrong.

  Records handed back to callers are copies. Mutating them never changes
  stored state -- all writes go through store methods.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Protocol

from auth.models import LoginSession, RefreshToken, TwoFactorCredential

# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------


class RefreshTokenStore(Protocol):
    def add(self, record: RefreshToken) -> None: ...

    def get(self, token: str) -> RefreshToken | None: ...

    def claim(self, token: str, now: datetime) -> RefreshToken | None: ...

    def revoke(self, token: str) -> bool: ...

    def purge(self, now: datetime) -> int: ...


class SessionStore(Protocol):
    def add(self, session: LoginSession) -> None: ...

    def get(self, session_id: str) -> LoginSession | None: ...

    def pop(self, session_id: str) -> LoginSession | None: ...

    def list_for_user(self, user_id: int) -> list[LoginSession]: ...

    def find_by_refresh_token(self, refresh_token: str) -> LoginSession | None: ...

    def find_by_access_token(self, access_token: str) -> LoginSession | None: ...

    def replace_tokens(
        self, session_id: str, access_token: str, refresh_token: str, now: datetime
    ) -> LoginSession | None: ...

    def touch(self, session_id: str, now: datetime) -> bool: ...

    def snapshot(self) -> list[LoginSession]: ...


class TwoFactorStore(Protocol):
    def put(self, credential: TwoFactorCredential) -> None: ...

    def get(self, user_id: int) -> TwoFactorCredential | None: ...

    def enable(self, user_id: int, secret: str) -> bool: ...

    def consume_backup_code(self, user_id: int, code: str) -> bool: ...

    def delete(self, user_id: int) -> bool: ...


class TokenBlacklist(Protocol):
    def add(self, token: str, expires_at: datetime) -> None: ...

    def contains(self, token: str) -> bool: ...

    def purge(self, now: datetime) -> int: ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


class MemoryRefreshTokenStore:
    """Refresh tokens keyed by their opaque string."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: dict[str, RefreshToken] = {}

    def add(self, record: RefreshToken) -> None:
        with self._lock:
            self._tokens[record.token] = replace(record)

    def get(self, token: str) -> RefreshToken | None:
        with self._lock:
            record = self._tokens.get(token)
            return replace(record) if record is not None else None

    def claim(self, token: str, now: datetime) -> RefreshToken | None:
        """Atomically revoke a still-valid token and return it.

        Returns None when the token is unknown, already revoked or expired.
        Two concurrent claims on the same token: exactly one wins.
        """
        with self._lock:
            record = self._tokens.get(token)
            if record is None or record.is_revoked or record.expires_at <= now:
                return None
            record.is_revoked = True
            return replace(record)

    def revoke(self, token: str) -> bool:
        with self._lock:
            record = self._tokens.get(token)
            if record is None:
                return False
            record.is_revoked = True
            return True

    def purge(self, now: datetime) -> int:
        """Drop revoked and expired records. Returns how many were removed."""
        with self._lock:
            stale = [t for t, r in self._tokens.items() if r.is_revoked or r.expires_at <= now]
            for token in stale:
                del self._tokens[token]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


class MemorySessionStore:
    """Login sessions keyed by session id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, LoginSession] = {}

    def add(self, session: LoginSession) -> None:
        with self._lock:
            self._sessions[session.id] = replace(session)

    def get(self, session_id: str) -> LoginSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session is not None else None

    def pop(self, session_id: str) -> LoginSession | None:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def list_for_user(self, user_id: int) -> list[LoginSession]:
        with self._lock:
            return [replace(s) for s in self._sessions.values() if s.user_id == user_id]

    def find_by_refresh_token(self, refresh_token: str) -> LoginSession | None:
        with self._lock:
            for session in self._sessions.values():
                if session.refresh_token == refresh_token:
                    return replace(session)
        return None

    def find_by_access_token(self, access_token: str) -> LoginSession | None:
        with self._lock:
            for session in self._sessions.values():
                if session.access_token == access_token:
                    return replace(session)
        return None

    def replace_tokens(
        self, session_id: str, access_token: str, refresh_token: str, now: datetime
    ) -> LoginSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            session.access_token = access_token
            session.refresh_token = refresh_token
            session.last_activity = now
            return replace(session)

    def touch(self, session_id: str, now: datetime) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            session.last_activity = now
            return True

    def snapshot(self) -> list[LoginSession]:
        with self._lock:
            return [replace(s) for s in self._sessions.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class MemoryTwoFactorStore:
    """Two-factor credentials keyed by user id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._credentials: dict[int, TwoFactorCredential] = {}

    def put(self, credential: TwoFactorCredential) -> None:
        with self._lock:
            self._credentials[credential.user_id] = replace(credential, backup_codes=list(credential.backup_codes))

    def get(self, user_id: int) -> TwoFactorCredential | None:
        with self._lock:
            credential = self._credentials.get(user_id)
            if credential is None:
                return None
            return replace(credential, backup_codes=list(credential.backup_codes))

    def enable(self, user_id: int, secret: str) -> bool:
        """Flip is_enabled, but only if the stored secret is still `secret`.

        Guards against a second begin_setup() replacing the secret between the
        caller's code check and this write.
        """
        with self._lock:
            credential = self._credentials.get(user_id)
            if credential is None or credential.secret != secret:
                return False
            credential.is_enabled = True
            return True

    def consume_backup_code(self, user_id: int, code: str) -> bool:
        """Remove `code` from the user's backup codes. True if it was present."""
        with self._lock:
            credential = self._credentials.get(user_id)
            if credential is None or code not in credential.backup_codes:
                return False
            credential.backup_codes.remove(code)
            return True

    def delete(self, user_id: int) -> bool:
        with self._lock:
            return self._credentials.pop(user_id, None) is not None


class MemoryTokenBlacklist:
    """Revoked access tokens, each kept until its own expiry instant."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, datetime] = {}

    def add(self, token: str, expires_at: datetime) -> None:
        with self._lock:
            self._entries[token] = expires_at

    def contains(self, token: str) -> bool:
        with self._lock:
            return token in self._entries

    def purge(self, now: datetime) -> int:
        """Drop entries whose token would have expired anyway."""
        with self._lock:
            stale = [t for t, exp in self._entries.items() if exp <= now]
            for token in stale:
                del self._entries[token]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
