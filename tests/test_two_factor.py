"""
tests/test_two_factor.py -- Unit tests for auth.two_factor.TwoFactorService.

Covers:
  - begin_setup returns a secret, an otpauth:// URI and 10 backup codes,
    and leaves 2FA disabled
  - enable accepts only a valid TOTP code; backup codes cannot finish setup
  - verify is False until enabled
  - clock drift: +-1 step accepted, 2 steps rejected
  - backup codes are single use and case-insensitive
  - re-running setup invalidates a pending code check
  - non-ASCII codes (accented letters, non-Latin digits) are rejected, not raised on
"""

from __future__ import annotations

from datetime import datetime, timezone

import pyotp
import pytest

from auth.two_factor import BACKUP_CODE_COUNT, TOTP_INTERVAL, TwoFactorService

# Aligned 10 s into a 30 s TOTP step, so +-30 s lands cleanly in the
# neighbouring steps.
BASE_TS = 1_700_000_010
USER_ID = 7


class FixedClock:
    def __init__(self, ts: int) -> None:
        self.ts = ts

    def __call__(self) -> datetime:
        return datetime.fromtimestamp(self.ts, tz=timezone.utc)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(BASE_TS)


@pytest.fixture
def service(clock) -> TwoFactorService:
    return TwoFactorService(issuer="VetClinic", valid_window=1, clock=clock)


def _code(secret: str, ts: int) -> str:
    return pyotp.TOTP(secret, interval=TOTP_INTERVAL).at(ts)


@pytest.fixture
def enabled(service):
    """A user with 2FA switched on. Returns the setup."""
    setup = service.begin_setup(USER_ID, "dr.smith@vetclinic.com")
    assert service.enable(USER_ID, _code(setup.secret, BASE_TS))
    return setup


class TestSetup:
    def test_begin_setup(self, service):
        setup = service.begin_setup(USER_ID, "dr.smith@vetclinic.com")
        assert len(setup.secret) >= 16
        assert setup.provisioning_uri.startswith("otpauth://totp/")
        assert "issuer=VetClinic" in setup.provisioning_uri
        assert len(setup.backup_codes) == BACKUP_CODE_COUNT
        assert len(set(setup.backup_codes)) == BACKUP_CODE_COUNT
        assert all(len(c) == 8 and c == c.upper() for c in setup.backup_codes)
        assert service.is_enabled(USER_ID) is False

    def test_enable_with_wrong_code(self, service):
        setup = service.begin_setup(USER_ID, "dr.smith@vetclinic.com")
        wrong = "000000" if _code(setup.secret, BASE_TS) != "000000" else "111111"
        assert service.enable(USER_ID, wrong) is False
        assert service.is_enabled(USER_ID) is False

    def test_backup_code_cannot_finish_setup(self, service):
        setup = service.begin_setup(USER_ID, "dr.smith@vetclinic.com")
        assert service.enable(USER_ID, setup.backup_codes[0]) is False

    def test_enable_without_setup(self, service):
        assert service.enable(USER_ID, "123456") is False

    def test_verify_before_enable_is_false(self, service):
        setup = service.begin_setup(USER_ID, "dr.smith@vetclinic.com")
        assert service.verify(USER_ID, _code(setup.secret, BASE_TS)) is False

    def test_disable(self, service, enabled):
        assert service.disable(USER_ID) is True
        assert service.is_enabled(USER_ID) is False
        assert service.disable(USER_ID) is False


class TestClockDrift:
    def test_current_step(self, service, enabled):
        assert service.verify(USER_ID, _code(enabled.secret, BASE_TS))

    @pytest.mark.parametrize("offset", [-TOTP_INTERVAL, TOTP_INTERVAL])
    def test_one_step_away_is_accepted(self, service, enabled, offset):
        assert service.verify(USER_ID, _code(enabled.secret, BASE_TS + offset))

    @pytest.mark.parametrize("offset", [-2 * TOTP_INTERVAL, 2 * TOTP_INTERVAL])
    def test_two_steps_away_is_rejected(self, service, enabled, offset):
        code = _code(enabled.secret, BASE_TS + offset)
        window = {_code(enabled.secret, BASE_TS + d) for d in (-TOTP_INTERVAL, 0, TOTP_INTERVAL)}
        if code in window:
            pytest.skip("TOTP collision between steps")
        assert service.verify(USER_ID, code) is False

    def test_non_digit_code(self, service, enabled):
        assert service.verify(USER_ID, "abcdef") is False


class TestBackupCodes:
    def test_single_use(self, service, enabled):
        code = enabled.backup_codes[0]
        assert service.verify(USER_ID, code) is True
        assert service.verify(USER_ID, code) is False

    def test_case_insensitive(self, service, enabled):
        assert service.verify(USER_ID, enabled.backup_codes[1].lower()) is True

    def test_other_codes_survive(self, service, enabled):
        service.verify(USER_ID, enabled.backup_codes[0])
        assert service.verify(USER_ID, enabled.backup_codes[2]) is True


def test_resetup_replaces_secret(service, enabled):
    """A second begin_setup() disables 2FA until the new secret is confirmed."""
    old_code = _code(enabled.secret, BASE_TS)
    second = service.begin_setup(USER_ID, "dr.smith@vetclinic.com")
    assert service.is_enabled(USER_ID) is False
    if old_code != _code(second.secret, BASE_TS):
        assert service.enable(USER_ID, old_code) is False
    assert service.enable(USER_ID, _code(second.secret, BASE_TS)) is True


@pytest.mark.parametrize("code", ["é", "١٢٣٤٥٦", "１２３４５６"])
def test_non_ascii_code_is_rejected(service, enabled, code):
    assert service.verify(USER_ID, code) is False


def test_non_ascii_digits_cannot_finish_setup(service):
    service.begin_setup(USER_ID, "dr.smith@vetclinic.com")
    assert service.enable(USER_ID, "١٢٣٤٥٦") is False
    assert service.is_enabled(USER_ID) is False
