"""
auth/sessions.py -- Login-session tracking on top of TokenService.

A LoginSession ties one access/refresh pair to the client that logged in
(IP, user agent) and records activity. Sessions are what a user sees on the
"active sessions" screen and what logout / terminate act on.

Lifecycle:
  create_session()  -> fresh token pair + record
  touch()           -> last_activity = now (requests carrying X-Session-Id)
  refresh()         -> rotate the pair, rebind it to the same session
  terminate()       -> blacklist access token, revoke refresh token, delete
  sweep_expired()   -> terminate sessions idle past SESSION_IDLE_SECONDS and
                       purge dead refresh tokens / blacklist entries

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import NamedTuple

from auth.memory_store import MemorySessionStore, SessionStore
from auth.models import LoginSession, User
from auth.tokens import TokenService

logger = logging.getLogger("vetclinic.auth.sessions")


class IssuedSession(NamedTuple):
    access_token: str
    refresh_token: str
    session_id: str


class SessionRegistry:
    """Tracks active login sessions per user."""

    def __init__(
        self,
        tokens: TokenService,
        store: SessionStore | None = None,
        *,
        idle_timeout_seconds: int = 24 * 60 * 60,
    ) -> None:
        self._tokens = tokens
        self._store = store if store is not None else MemorySessionStore()
        self.idle_timeout = timedelta(seconds=idle_timeout_seconds)

    def create_session(self, user: User, ip_address: str, user_agent: str) -> IssuedSession:
        """Issue a fresh token pair for `user` and record the client that asked for it."""
        pair = self._tokens.issue_pair(user)
        now = self._tokens.now()
        session = LoginSession(
            id=uuid.uuid4().hex,
            user_id=user.id,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now,
            last_activity=now,
        )
        self._store.add(session)
        logger.info("Session %s created for user_id=%s from %s", session.id, user.id, ip_address)
        return IssuedSession(pair.access_token, pair.refresh_token, session.id)

    def get(self, session_id: str) -> LoginSession | None:
        return self._store.get(session_id)

    def find_by_access_token(self, access_token: str) -> LoginSession | None:
        """Return the session currently bound to `access_token`, if any."""
        return self._store.find_by_access_token(access_token)

    def list_active(self, user_id: int) -> list[LoginSession]:
        """Return the user's active sessions, most recently used first."""
        sessions = [s for s in self._store.list_for_user(user_id) if s.is_active]
        return sorted(sessions, key=lambda s: s.last_activity, reverse=True)

    def touch(self, session_id: str) -> bool:
        return self._store.touch(session_id, self._tokens.now())

    def terminate(self, session_id: str) -> bool:
        """End a session. Returns False when there was nothing to end.

        Safe to call repeatedly: the record is popped atomically, so only the
        first call does the blacklisting and revocation.
        """
        session = self._store.pop(session_id)
        if session is None:
            return False
        self._tokens.blacklist(session.access_token)
        self._tokens.revoke_refresh_token(session.refresh_token)
        logger.info("Session %s terminated for user_id=%s", session_id, session.user_id)
        return True

    def refresh(self, refresh_token: str) -> IssuedSession | None:
        """Rotate `refresh_token` and move its session onto the new pair.

        Returns None when rotation fails (see TokenService.rotate_refresh_token).
        A refresh token minted outside any session still rotates; the result
        then carries an empty session_id.
        """
        session = self._store.find_by_refresh_token(refresh_token)
        pair = self._tokens.rotate_refresh_token(refresh_token)
        if pair is None:
            return None
        if session is None:
            return IssuedSession(pair.access_token, pair.refresh_token, "")
        updated = self._store.replace_tokens(session.id, pair.access_token, pair.refresh_token, self._tokens.now())
        if updated is None:
            # Session was terminated between lookup and rotation; do not hand
            # out tokens for a session the user just ended.
            self._tokens.blacklist(pair.access_token)
            self._tokens.revoke_refresh_token(pair.refresh_token)
            return None
        # The superseded access token must not outlive its session binding.
        self._tokens.blacklist(session.access_token)
        return IssuedSession(pair.access_token, pair.refresh_token, session.id)

    def sweep_expired(self) -> int:
        """Terminate idle sessions and purge dead token state. Returns sessions removed.

        Works on a snapshot, then deletes by id, so sessions created while the
        sweep runs are neither skipped into an inconsistent state nor deleted.
        """
        now = self._tokens.now()
        idle = [s.id for s in self._store.snapshot() if now - s.last_activity > self.idle_timeout]
        removed = sum(1 for session_id in idle if self.terminate(session_id))
        refresh_removed, blacklist_removed = self._tokens.purge()
        if removed or refresh_removed or blacklist_removed:
            logger.info(
                "Sweep removed %d idle sessions, %d refresh tokens, %d blacklist entries",
                removed,
                refresh_removed,
                blacklist_removed,
            )
        return removed
