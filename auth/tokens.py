"""
auth/tokens.py -- Access-token (JWT) and refresh-token issuance and verification.

Security design decisions:
  Access tokens: python-jose with HS256, signed with SECRET_KEY. Short-lived
       (ACCESS_TOKEN_EXPIRE_SECONDS, 15 minutes by default). Claims carry id,
       username, email, role and type="access". A uuid4 jti makes every token
       string unique, so blacklisting one token never affects a sibling minted
       in the same second.

  Verification returns None on ANY failure -- bad signature, expiry,
       malformed payload, wrong type, unknown role, blacklisted string. It
       never raises, so a forgotten except clause cannot turn into an
       accidental pass-through. The dependency layer turns None into a 401.

  Refresh tokens: secrets.token_hex(64), opaque, no claims. The server-side
       record (RefreshTokenStore) is the only source of truth. Rotation is
       single-use: the old token is claimed (revoked) atomically before the
       new pair is minted.

  Blacklist: access tokens revoked on logout stay listed until their own
       exp passes; the sweep then drops them.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

from jose import JWTError, jwt

from auth.memory_store import MemoryRefreshTokenStore, MemoryTokenBlacklist, RefreshTokenStore, TokenBlacklist
from auth.models import RefreshToken, Role, User

logger = logging.getLogger("vetclinic.auth.tokens")

_ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"


class TokenPair(NamedTuple):
    access_token: str
    refresh_token: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issues and verifies access tokens; owns refresh tokens and the blacklist.

    Args:
        secret_key:       HMAC signing key (validated >= 32 chars by Settings).
        user_loader:      Returns the current User for an id, or None. Used by
                          rotation so a deleted or deactivated user cannot
                          refresh their way back in.
        refresh_store:    Refresh-token records. Defaults to in-memory.
        blacklist:        Revoked access tokens. Defaults to in-memory.
        access_ttl_seconds / refresh_ttl_days: token lifetimes.
        clock:            Returns "now" as an aware datetime. Tests inject a
                          fixed or shifted clock.
    """

    def __init__(
        self,
        secret_key: str,
        user_loader: Callable[[int], User | None],
        *,
        refresh_store: RefreshTokenStore | None = None,
        blacklist: TokenBlacklist | None = None,
        access_ttl_seconds: int = 15 * 60,
        refresh_ttl_days: int = 7,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret_key = secret_key
        self._user_loader = user_loader
        self._refresh_store = refresh_store if refresh_store is not None else MemoryRefreshTokenStore()
        self._blacklist = blacklist if blacklist is not None else MemoryTokenBlacklist()
        self.access_ttl = timedelta(seconds=access_ttl_seconds)
        self.refresh_ttl = timedelta(days=refresh_ttl_days)
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def issue_access_token(self, user: User) -> str:
        """Encode a signed access token for `user`.

        Raises ValueError if the user's role is not a valid Role. This is
        checked here, at issuance, not only on the verify side.
        """
        role = Role.parse(user.role)
        if role is None:
            raise ValueError(f"Invalid user role: {user.role!r}")
        if user.id is None:
            raise ValueError("Cannot issue a token for an unsaved user")
        now = self.now()
        payload = {
            "sub": user.username,
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "role": role.value,
            "type": ACCESS_TOKEN_TYPE,
            "iat": now,
            "exp": now + self.access_ttl,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify_access_token(self, token: str) -> User | None:
        """Verify a token and return the principal it encodes, or None."""
        if not isinstance(token, str) or not token:
            return None
        if self._blacklist.contains(token):
            return None
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError:
            return None

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            return None
        role = Role.parse(payload.get("role"))
        if role is None:
            return None
        user_id = payload.get("id")
        username = payload.get("username")
        email = payload.get("email")
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            return None
        if not isinstance(username, str) or not isinstance(email, str):
            return None
        return User(id=user_id, username=username, email=email, role=role)

    # ------------------------------------------------------------------
    # Blacklist
    # ------------------------------------------------------------------

    def blacklist(self, token: str) -> None:
        """Reject `token` from now on, even though it is still validly signed.

        The entry is kept until the token's own exp. Tokens whose claims cannot
        be read are kept for a full access-token lifetime.
        """
        expires_at = self.now() + self.access_ttl
        try:
            exp = jwt.get_unverified_claims(token).get("exp")
        except JWTError:
            exp = None
        if isinstance(exp, (int, float)) and not isinstance(exp, bool):
            expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        self._blacklist.add(token, expires_at)

    def is_blacklisted(self, token: str) -> bool:
        return self._blacklist.contains(token)

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def issue_refresh_token(self, user_id: int) -> str:
        now = self.now()
        token = secrets.token_hex(64)
        self._refresh_store.add(
            RefreshToken(
                id=uuid.uuid4().hex,
                token=token,
                user_id=user_id,
                expires_at=now + self.refresh_ttl,
                created_at=now,
            )
        )
        return token

    def issue_pair(self, user: User) -> TokenPair:
        return TokenPair(self.issue_access_token(user), self.issue_refresh_token(user.id))

    def rotate_refresh_token(self, old_token: str) -> TokenPair | None:
        """Exchange a refresh token for a new access/refresh pair.

        Returns None when the token is unknown, revoked, expired, or its owner
        no longer exists or is inactive. The old token is revoked before
        anything else happens, so it can never be used twice.
        """
        if not isinstance(old_token, str) or not old_token:
            return None
        claimed = self._refresh_store.claim(old_token, self.now())
        if claimed is None:
            return None
        user = self._user_loader(claimed.user_id)
        if user is None or not user.is_active:
            logger.warning("Refresh token presented for missing/inactive user_id=%s", claimed.user_id)
            return None
        return self.issue_pair(user)

    def revoke_refresh_token(self, token: str) -> bool:
        return self._refresh_store.revoke(token)

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        return self._refresh_store.get(token)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def purge(self) -> tuple[int, int]:
        """Drop dead refresh tokens and expired blacklist entries.

        Returns (refresh_tokens_removed, blacklist_entries_removed).
        """
        now = self.now()
        return self._refresh_store.purge(now), self._blacklist.purge(now)
