"""
auth/two_factor.py -- TOTP two-factor authentication with backup codes.

Flow:
  1. begin_setup()  -- new base32 secret + 10 backup codes, stored DISABLED.
  2. enable(code)   -- user proves the authenticator app works; only a valid
                       TOTP code for the pending secret flips is_enabled.
  3. verify(code)   -- login-time check: current TOTP code, or an unused
                       backup code (single use, case-insensitive).

Clock drift: codes are accepted within `valid_window` 30-second steps either
side of now (TOTP_VALID_WINDOW, default 1 -> +-30 s). A code two steps away
is rejected.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timezone
from typing import NamedTuple

import pyotp

from auth.memory_store import MemoryTwoFactorStore, TwoFactorStore
from auth.models import TwoFactorCredential

logger = logging.getLogger("vetclinic.auth.two_factor")

BACKUP_CODE_COUNT = 10
TOTP_INTERVAL = 30


class TwoFactorSetup(NamedTuple):
    secret: str
    provisioning_uri: str
    backup_codes: list[str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _generate_backup_code() -> str:
    return secrets.token_hex(4).upper()


class TwoFactorService:
    def __init__(
        self,
        store: TwoFactorStore | None = None,
        *,
        issuer: str = "VetClinic",
        valid_window: int = 1,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store if store is not None else MemoryTwoFactorStore()
        self.issuer = issuer
        self.valid_window = valid_window
        self._clock = clock

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, interval=TOTP_INTERVAL, issuer=self.issuer)

    def _totp_matches(self, secret: str, code: str) -> bool:
        code = code.strip()
        if not (code.isascii() and code.isdigit()):
            return False
        return self._totp(secret).verify(code, for_time=self._clock(), valid_window=self.valid_window)

    def begin_setup(self, user_id: int, account_name: str) -> TwoFactorSetup:
        """Generate a new secret and backup codes for `user_id`.

        Replaces any previous credential, enabled or not: re-running setup
        is how a user moves to a new device.
        """
        secret = pyotp.random_base32()
        backup_codes = [_generate_backup_code() for _ in range(BACKUP_CODE_COUNT)]
        self._store.put(
            TwoFactorCredential(
                user_id=user_id,
                secret=secret,
                created_at=self._clock(),
                backup_codes=backup_codes,
            )
        )
        uri = self._totp(secret).provisioning_uri(name=account_name, issuer_name=self.issuer)
        return TwoFactorSetup(secret=secret, provisioning_uri=uri, backup_codes=list(backup_codes))

    def is_enabled(self, user_id: int) -> bool:
        credential = self._store.get(user_id)
        return credential is not None and credential.is_enabled

    def verify(self, user_id: int, code: str) -> bool:
        """Check a login-time code. False unless 2FA is enabled for the user."""
        credential = self._store.get(user_id)
        if credential is None or not credential.is_enabled or not code:
            return False
        if self._totp_matches(credential.secret, code):
            return True
        normalized = code.strip().upper()
        if not normalized.isascii():
            # Backup codes are hex; compare_digest rejects non-ASCII str input.
            return False
        for backup in credential.backup_codes:
            if hmac.compare_digest(backup, normalized):
                # consume_backup_code is the atomic step; a concurrent use of
                # the same code loses here.
                if self._store.consume_backup_code(user_id, backup):
                    logger.info("Backup code used for user_id=%s", user_id)
                    return True
                return False
        return False

    def enable(self, user_id: int, code: str) -> bool:
        """Activate 2FA if `code` is a valid TOTP code for the pending secret."""
        credential = self._store.get(user_id)
        if credential is None or not code:
            return False
        if not self._totp_matches(credential.secret, code):
            return False
        enabled = self._store.enable(user_id, credential.secret)
        if enabled:
            logger.info("Two-factor authentication enabled for user_id=%s", user_id)
        return enabled

    def disable(self, user_id: int) -> bool:
        return self._store.delete(user_id)
