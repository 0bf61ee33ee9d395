"""
Shared fixtures: an in-memory store, a manual clock and capturing gateways.
"""

from contextlib import asynccontextmanager

import pytest
import pytest_asyncio

from accessotp.clock import ManualClock
from accessotp.config import OTPConfig, SessionConfig
from accessotp.delivery import DeliveryDispatcher, LoggingGateway
from accessotp.identity import IdentityResolver
from accessotp.metrics import ServiceMetrics
from accessotp.models import DeliveryMethod
from accessotp.otp.engine import OTPEngine
from accessotp.sessions import SessionIssuer
from accessotp.storage.memory import InMemoryStore


ALICE_EMAIL = "alice@example.com"
ALICE_PHONE = "+14155550100"


def wrong_code(code: str) -> str:
    """A code of the same shape that is guaranteed not to match."""
    return "000000" if code != "000000" else "111111"


class BrokenStore(InMemoryStore):
    """A store whose every transaction fails to open."""

    @asynccontextmanager
    async def transaction(self):
        raise RuntimeError("connection refused")
        yield


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def otp_config():
    return OTPConfig(expose_code=True)


@pytest.fixture
def metrics():
    return ServiceMetrics()


@pytest.fixture
def sms_gateway():
    return LoggingGateway(DeliveryMethod.SMS)


@pytest.fixture
def email_gateway():
    return LoggingGateway(DeliveryMethod.EMAIL)


@pytest.fixture
def dispatcher(sms_gateway, email_gateway, metrics):
    return DeliveryDispatcher(
        {DeliveryMethod.SMS: sms_gateway, DeliveryMethod.EMAIL: email_gateway},
        metrics=metrics,
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def identity(store, clock):
    return IdentityResolver(store, clock)


@pytest.fixture
def sessions(store, clock, metrics):
    return SessionIssuer(store, SessionConfig(), clock, metrics)


@pytest.fixture
def engine(store, dispatcher, sessions, otp_config, clock, identity, metrics):
    return OTPEngine(
        store,
        dispatcher,
        sessions,
        config=otp_config,
        clock=clock,
        identity=identity,
        metrics=metrics,
    )


@pytest_asyncio.fixture
async def alice(identity):
    return await identity.register(
        email=ALICE_EMAIL,
        first_name="Alice",
        last_name="Smith",
        phone_number=ALICE_PHONE,
    )
