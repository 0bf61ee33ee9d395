"""
Unit Tests for Session Issuing
==============================
"""

from datetime import timedelta

import pytest

from accessotp.errors import SessionError
from accessotp.otp.hashing import hash_token


async def _issue(store, sessions, user, **kwargs):
    async with store.transaction() as tx:
        return await sessions.issue(tx, user, **kwargs)


class TestSessionIssuer:
    """Tests for the session lifecycle."""

    @pytest.mark.asyncio
    async def test_issue_stores_hashes_only(self, store, sessions, alice, clock, metrics):
        """Tokens are returned once and stored as digests."""
        issued = await _issue(store, sessions, alice, user_agent="pytest", ip_address="10.0.0.1")

        assert issued.access_token.startswith("at_")
        assert issued.refresh_token.startswith("rt_")
        assert issued.expires_at == clock.now() + timedelta(minutes=60)

        record = store.sessions[0]
        assert record.access_token_hash == hash_token(issued.access_token)
        assert record.refresh_token_hash == hash_token(issued.refresh_token)
        assert issued.access_token not in (record.access_token_hash, record.refresh_token_hash)
        assert record.user_agent == "pytest"
        assert record.ip_address == "10.0.0.1"
        assert metrics.value("accessotp_sessions_total", event="issued") == 1.0

    @pytest.mark.asyncio
    async def test_refresh_rotates_tokens(self, store, sessions, alice, clock):
        """The old refresh token stops working after a refresh."""
        issued = await _issue(store, sessions, alice)
        clock.advance(minutes=30)

        refreshed = await sessions.refresh(issued.refresh_token)

        assert refreshed.session.id == issued.session.id
        assert refreshed.refresh_token != issued.refresh_token
        assert refreshed.access_token != issued.access_token
        assert refreshed.expires_at == clock.now() + timedelta(minutes=60)
        assert refreshed.session.last_used_at == clock.now()

        with pytest.raises(SessionError, match="Invalid or expired refresh token"):
            await sessions.refresh(issued.refresh_token)

    @pytest.mark.asyncio
    async def test_refresh_expired_session(self, store, sessions, alice, clock, metrics):
        issued = await _issue(store, sessions, alice)
        clock.advance(minutes=61)

        with pytest.raises(SessionError):
            await sessions.refresh(issued.refresh_token)
        assert metrics.value("accessotp_sessions_total", event="refresh_rejected") == 1.0

    @pytest.mark.asyncio
    async def test_refresh_unknown_token(self, sessions):
        with pytest.raises(SessionError):
            await sessions.refresh("rt_unknown")

    @pytest.mark.asyncio
    async def test_refresh_inactive_user(self, store, sessions, alice):
        """Deactivated users cannot keep their sessions alive."""
        issued = await _issue(store, sessions, alice)
        alice.is_active = False

        with pytest.raises(SessionError, match="User is not active"):
            await sessions.refresh(issued.refresh_token)

    @pytest.mark.asyncio
    async def test_revoke(self, store, sessions, alice, clock):
        """Revoked sessions refuse refresh and authentication."""
        issued = await _issue(store, sessions, alice)

        assert await sessions.revoke(issued.refresh_token) is True
        assert store.sessions[0].revoked_at == clock.now()
        assert await sessions.authenticate(issued.access_token) is None
        with pytest.raises(SessionError):
            await sessions.refresh(issued.refresh_token)

        assert await sessions.revoke(issued.refresh_token) is True
        assert await sessions.revoke("rt_unknown") is False

    @pytest.mark.asyncio
    async def test_authenticate(self, store, sessions, alice, clock):
        issued = await _issue(store, sessions, alice)
        clock.advance(minutes=5)

        session = await sessions.authenticate(issued.access_token)

        assert session is not None
        assert session.user_id == alice.id
        assert session.last_used_at == clock.now()
        assert await sessions.authenticate("at_unknown") is None

        clock.advance(hours=2)
        assert await sessions.authenticate(issued.access_token) is None
