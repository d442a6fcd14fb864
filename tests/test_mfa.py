"""
Tests for the MFA strategies.

Covers:
- Email OTP issuance, single use and expiry
- TOTP enrollment and verification
- Strategy resolution from stored user state
"""
from datetime import timedelta

import pyotp
import pytest
from sqlalchemy import select

from app.core.db import db_now
from app.core.errors import DeliveryError, ValidationError
from app.models.mfa_code import MfaCode
from app.models.user import MfaMethod, User
from app.services.mfa import (
    CODE_MAX, CODE_MIN, EmailOtpStrategy, TotpStrategy, generate_numeric_code, resolve_strategy,
)
from conftest import STRONG_PASSWORD


@pytest.fixture
async def user_id(store):
    return await store.create("alice", "alice@x.com", STRONG_PASSWORD)


@pytest.fixture
def email_otp(db_session, mailer, store):
    return EmailOtpStrategy(db_session, mailer, store)


class TestNumericCode:
    """Test code generation."""

    def test_always_six_digits(self):
        """Codes never start with zero and stay in range."""
        for _ in range(500):
            code = generate_numeric_code()
            assert len(code) == 6
            assert CODE_MIN <= int(code) <= CODE_MAX


class TestEmailOtp:
    """Test the email one-time code strategy."""

    async def test_issue_persists_and_sends(self, email_otp, mailer, user_id, db_session):
        """issue stores an unused code expiring in about five minutes and mails it."""
        await email_otp.issue(user_id, "alice@x.com")
        recipient, code = mailer.sent[-1]
        assert recipient == "alice@x.com"
        row = (await db_session.execute(select(MfaCode).where(MfaCode.user_id == user_id))).scalar_one()
        assert row.code == code
        assert row.used is False
        remaining = row.expires_at - db_now()
        assert timedelta(minutes=4) < remaining <= timedelta(minutes=5)

    async def test_code_is_single_use(self, email_otp, mailer, user_id):
        """The first verify succeeds, a replay fails."""
        await email_otp.issue(user_id, "alice@x.com")
        assert await email_otp.verify(user_id, mailer.last_code) is True
        assert await email_otp.verify(user_id, mailer.last_code) is False

    async def test_wrong_code(self, email_otp, mailer, user_id):
        """A code that was never issued fails."""
        await email_otp.issue(user_id, "alice@x.com")
        wrong = "100000" if mailer.last_code != "100000" else "100001"
        assert await email_otp.verify(user_id, wrong) is False

    async def test_code_bound_to_user(self, email_otp, mailer, user_id, store):
        """Another user's code does not verify."""
        other = await store.create("bob", "bob@x.com", STRONG_PASSWORD)
        await email_otp.issue(user_id, "alice@x.com")
        assert await email_otp.verify(other, mailer.last_code) is False

    async def test_expired_code_fails(self, email_otp, user_id, db_session):
        """A correct code past expires_at never verifies."""
        db_session.add(MfaCode(user_id=user_id, code="123456", expires_at=db_now() - timedelta(seconds=1)))
        await db_session.commit()
        assert await email_otp.verify(user_id, "123456") is False

    async def test_verify_after_ttl(self, email_otp, mailer, user_id):
        """Checking at a time past the TTL fails even for an unused code."""
        await email_otp.issue(user_id, "alice@x.com")
        later = db_now() + timedelta(minutes=5, seconds=1)
        assert await email_otp.verify(user_id, mailer.last_code, now=later) is False

    async def test_new_code_voids_previous(self, email_otp, mailer, user_id, db_session):
        """Issuing again leaves only the newest code live."""
        await email_otp.issue(user_id, "alice@x.com")
        first = mailer.last_code
        await email_otp.issue(user_id, "alice@x.com")
        second = mailer.last_code

        live = (await db_session.execute(
            select(MfaCode.code).where(MfaCode.user_id == user_id, MfaCode.used.is_(False))
        )).scalars().all()
        assert live == [second]
        if first != second:
            assert await email_otp.verify(user_id, first) is False
        assert await email_otp.verify(user_id, second) is True

    async def test_most_recent_duplicate_consumed_first(self, email_otp, user_id, db_session):
        """With two live rows for the same code the newest is consumed."""
        now = db_now()
        older = MfaCode(user_id=user_id, code="654321", expires_at=now + timedelta(minutes=5),
                        created_at=now - timedelta(minutes=1))
        newer = MfaCode(user_id=user_id, code="654321", expires_at=now + timedelta(minutes=5),
                        created_at=now)
        db_session.add_all([older, newer])
        await db_session.commit()

        assert await email_otp.verify(user_id, "654321") is True
        used = (await db_session.execute(
            select(MfaCode.id).where(MfaCode.used.is_(True))
        )).scalars().all()
        assert used == [newer.id]

    async def test_mark_used_is_compare_and_set(self, email_otp, mailer, user_id, db_session):
        """Marking an already used code reports failure."""
        await email_otp.issue(user_id, "alice@x.com")
        code_id = (await db_session.execute(select(MfaCode.id))).scalar_one()
        assert await email_otp.mark_used(code_id) is True
        assert await email_otp.mark_used(code_id) is False

    async def test_delivery_failure_keeps_code(self, email_otp, mailer, user_id):
        """If mailing fails the stored code stays valid."""
        mailer.fail = True
        with pytest.raises(DeliveryError):
            await email_otp.issue(user_id, "alice@x.com")
        assert await email_otp.verify(user_id, mailer.last_code) is True

    async def test_start_mails_decrypted_address(self, email_otp, mailer, user_id, store):
        """start() sends to the plaintext address of the user."""
        user = await store.get_by_id(user_id)
        await email_otp.start(user)
        assert mailer.sent[-1][0] == "alice@x.com"


class TestTotp:
    """Test the TOTP strategy."""

    async def test_setup_persists_secret(self, store, user_id):
        """setup enables MFA and returns a scannable payload."""
        enrollment = await TotpStrategy(store).setup(user_id, "alice@x.com")
        assert await store.get_mfa_secret(user_id) == enrollment.secret
        assert await store.has_mfa_enabled(user_id) is True
        assert f"secret={enrollment.secret}" in enrollment.otpauth_url
        assert enrollment.qr_data_url.startswith("data:image/png;base64,")

    async def test_confirm_current_code(self, store, user_id):
        """confirm accepts the code from the authenticator."""
        strategy = TotpStrategy(store)
        enrollment = await strategy.setup(user_id, "alice@x.com")
        user = await store.get_by_id(user_id)
        assert await strategy.confirm(user, pyotp.TOTP(enrollment.secret).now()) is True

    async def test_confirm_reads_stored_secret(self, store, user_id):
        """confirm checks against the persisted secret, not the loaded object."""
        strategy = TotpStrategy(store)
        enrollment = await strategy.setup(user_id, "alice@x.com")
        stale = User(id=user_id, mfa_secret=pyotp.random_base32(length=32))
        assert await strategy.confirm(stale, pyotp.TOTP(enrollment.secret).now()) is True

    async def test_confirm_without_secret(self, store, user_id):
        """An account with no stored secret never confirms."""
        user = await store.get_by_id(user_id)
        assert await TotpStrategy(store).confirm(user, "123456") is False

    def test_verify_is_pure(self, store):
        """verify depends only on secret, code and time."""
        secret = pyotp.random_base32(length=32)
        at = 1_700_000_000
        code = pyotp.TOTP(secret).at(at)
        strategy = TotpStrategy(store)
        assert strategy.verify(secret, code, now=at) is True
        assert strategy.verify(secret, code, now=at) is True

    def test_window_is_configurable(self, store):
        """A zero window only accepts the current step."""
        secret = pyotp.random_base32(length=32)
        at = 1_700_000_000
        previous = pyotp.TOTP(secret).at(at - 30)
        if previous == pyotp.TOTP(secret).at(at):
            pytest.skip("code collision")
        assert TotpStrategy(store, valid_window=0).verify(secret, previous, now=at) is False
        assert TotpStrategy(store, valid_window=1).verify(secret, previous, now=at) is True


class TestResolveStrategy:
    """Test strategy selection from user state."""

    async def test_resolution(self, store, user_id, db_session, mailer):
        """The stored method picks the strategy."""
        user = await store.get_by_id(user_id)
        with pytest.raises(ValidationError):
            resolve_strategy(user, db_session, mailer, store)

        await store.enable_email_mfa(user_id)
        user = await store.get_by_id(user_id)
        assert resolve_strategy(user, db_session, mailer, store).method is MfaMethod.email

        await store.save_mfa_secret(user_id, pyotp.random_base32(length=32))
        user = await store.get_by_id(user_id)
        assert resolve_strategy(user, db_session, mailer, store).method is MfaMethod.totp
