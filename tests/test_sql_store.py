"""
Integration Tests for the SQLAlchemy Store
==========================================
Runs the engine against an in-memory SQLite database through aiosqlite.
"""

from datetime import timedelta, timezone

import pytest
import pytest_asyncio

from accessotp.errors import DuplicateUserError, OTPErrorCode
from accessotp.models import DeliveryMethod, OTPStatus
from accessotp.storage import SQLAlchemyStore, create_store
from accessotp.storage.database import create_async_engine
from accessotp.storage.memory import InMemoryStore

from conftest import ALICE_EMAIL, ALICE_PHONE, wrong_code


@pytest_asyncio.fixture
async def store():
    store = SQLAlchemyStore(create_async_engine("sqlite+aiosqlite:///:memory:"))
    await store.create_schema()
    yield store
    await store.close()


async def _requests(store, user):
    async with store.transaction() as tx:
        return await tx.requests_for_user(user.id)


async def _user(store, user):
    async with store.transaction() as tx:
        return await tx.get_user(user.id)


class TestStoreSelection:

    def test_memory_url(self):
        assert isinstance(create_store("memory://"), InMemoryStore)

    def test_sqlite_url(self):
        assert isinstance(create_store("sqlite+aiosqlite:///:memory:"), SQLAlchemyStore)


class TestSQLAlchemyStore:
    """Tests for persistence details."""

    @pytest.mark.asyncio
    async def test_health_check(self, store):
        await store.health_check()

    @pytest.mark.asyncio
    async def test_datetimes_round_trip_as_utc(self, store, alice, clock):
        """SQLite drops tzinfo; values still come back timezone-aware."""
        loaded = await _user(store, alice)

        assert loaded is not alice
        assert loaded.created_at.tzinfo is timezone.utc
        assert loaded.created_at == clock.now()

    @pytest.mark.asyncio
    async def test_duplicate_user(self, identity, alice):
        with pytest.raises(DuplicateUserError):
            await identity.register(email=ALICE_EMAIL)
        with pytest.raises(DuplicateUserError):
            await identity.register(email="other@example.com", phone_number=ALICE_PHONE)

    @pytest.mark.asyncio
    async def test_failed_transaction_rolls_back(self, store, alice):
        with pytest.raises(RuntimeError):
            async with store.transaction() as tx:
                user = await tx.get_user(alice.id)
                user.first_name = "Mallory"
                raise RuntimeError("abort")

        assert (await _user(store, alice)).first_name == "Alice"

    @pytest.mark.asyncio
    async def test_resolve_by_phone(self, identity, alice):
        assert (await identity.resolve("+1 415 555 0100")).id == alice.id


class TestEngineOnSQL:
    """End-to-end OTP flows persisted through SQLAlchemy."""

    @pytest.mark.asyncio
    async def test_login_flow(self, engine, store, alice, clock):
        generated = await engine.generate(ALICE_EMAIL, DeliveryMethod.EMAIL)
        assert generated.success is True

        clock.advance(seconds=10)
        wrong = await engine.validate(ALICE_EMAIL, wrong_code(generated.otp_code))
        assert wrong.error_code == OTPErrorCode.INVALID_CODE
        assert (await _requests(store, alice))[0].attempts == 1

        ok = await engine.validate(ALICE_EMAIL, generated.otp_code, user_agent="pytest")
        assert ok.success is True

        requests = await _requests(store, alice)
        assert requests[0].status == OTPStatus.VERIFIED
        assert requests[0].verified_at == clock.now()
        user = await _user(store, alice)
        assert user.last_login_at == clock.now()
        assert user.otp_attempts == 0
        assert (await engine.status(ALICE_EMAIL)).has_active_otp is False

    @pytest.mark.asyncio
    async def test_regenerate_cancels_previous(self, engine, store, alice, clock):
        await engine.generate(ALICE_EMAIL, DeliveryMethod.EMAIL)
        clock.advance(seconds=1)
        await engine.generate(ALICE_EMAIL, DeliveryMethod.SMS)

        statuses = [r.status for r in await _requests(store, alice)]

        assert statuses == [OTPStatus.PENDING, OTPStatus.CANCELLED]

    @pytest.mark.asyncio
    async def test_lockout_is_persisted(self, engine, store, alice, clock):
        """Failed attempts and the lockout survive the transaction."""
        generated = await engine.generate(ALICE_EMAIL, DeliveryMethod.EMAIL)
        bad = wrong_code(generated.otp_code)

        results = [await engine.validate(ALICE_EMAIL, bad) for _ in range(3)]

        assert results[-1].error_code == OTPErrorCode.MAX_ATTEMPTS_REACHED
        user = await _user(store, alice)
        assert user.otp_blocked_until == clock.now() + timedelta(minutes=15)
        request = (await _requests(store, alice))[0]
        assert request.status == OTPStatus.MAX_ATTEMPTS_REACHED
        assert request.attempts == 3

        status = await engine.status(ALICE_EMAIL)
        assert status.is_blocked is True
        assert status.blocked_until == user.otp_blocked_until

    @pytest.mark.asyncio
    async def test_resend_and_cancel(self, engine, store, alice, clock):
        await engine.generate(ALICE_EMAIL, DeliveryMethod.SMS)

        first = await engine.resend(ALICE_EMAIL, DeliveryMethod.SMS)
        second = await engine.resend(ALICE_EMAIL, DeliveryMethod.EMAIL)

        assert first.next_retry_at == clock.now() + timedelta(seconds=30)
        assert second.retry_count == 2
        request = (await _requests(store, alice))[0]
        assert request.retry_count == 2
        assert request.delivery_method == DeliveryMethod.EMAIL

        assert await engine.cancel(ALICE_EMAIL) is True
        assert (await _requests(store, alice))[0].status == OTPStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_session_refresh(self, engine, sessions, alice):
        generated = await engine.generate(ALICE_PHONE, DeliveryMethod.SMS)
        ok = await engine.validate(ALICE_PHONE, generated.otp_code)

        refreshed = await sessions.refresh(ok.refresh_token)

        assert refreshed.refresh_token != ok.refresh_token
        assert (await sessions.authenticate(refreshed.access_token)).user_id == alice.id
        assert await sessions.authenticate(ok.access_token) is None
