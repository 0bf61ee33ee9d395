"""
API Tests
=========
HTTP surface exercised through Starlette's ``TestClient`` with an in-memory
store, capturing gateways and a manual clock.
"""

import pytest
from fastapi.testclient import TestClient

from accessotp.api.app import DEMO_USER, create_app
from accessotp.clock import ManualClock
from accessotp.config import OTPConfig, Settings
from accessotp.delivery import DeliveryDispatcher, LoggingGateway
from accessotp.delivery.templates import MessageKind
from accessotp.metrics import ServiceMetrics
from accessotp.models import DeliveryMethod
from accessotp.storage.memory import InMemoryStore

from conftest import BrokenStore

DEMO_EMAIL = DEMO_USER["email"]


def _build(environment="development", rate_limit_per_minute=30):
    settings = Settings(
        environment=environment,
        log_json=False,
        database_url="memory://",
        rate_limit_per_minute=rate_limit_per_minute,
        seed_demo_user=True,
        otp=OTPConfig(expose_code=True),
    )
    gateways = {
        DeliveryMethod.SMS: LoggingGateway(DeliveryMethod.SMS),
        DeliveryMethod.EMAIL: LoggingGateway(DeliveryMethod.EMAIL),
    }
    metrics = ServiceMetrics()
    app = create_app(
        settings,
        store=InMemoryStore(),
        dispatcher=DeliveryDispatcher(gateways, metrics=metrics),
        clock=ManualClock(),
        metrics=metrics,
        configure_logging=False,
    )
    return app, gateways


@pytest.fixture
def app_and_gateways():
    return _build()


@pytest.fixture
def client(app_and_gateways):
    app, _ = app_and_gateways
    with TestClient(app) as client:
        yield client


@pytest.fixture
def gateways(app_and_gateways):
    return app_and_gateways[1]


def _login(client):
    generated = client.post(
        "/otp/generate", json={"identifier": DEMO_EMAIL, "deliveryMethod": "Email"}
    ).json()
    return client.post(
        "/otp/validate", json={"identifier": DEMO_EMAIL, "otpCode": generated["otpCode"]}
    ).json()


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["components"]["store"]["status"] == "connected"
        assert body["components"]["gateway:SMS"]["status"] == "ready"

    def test_probes(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}
        assert client.get("/health/ready").json() == {"status": "ready"}

    def test_metrics_endpoint(self, client):
        client.post("/otp/generate", json={"identifier": DEMO_EMAIL, "deliveryMethod": "Email"})

        response = client.get("/metrics/")

        assert response.status_code == 200
        assert 'accessotp_otp_operations_total{operation="generate",outcome="success"} 1.0' in response.text

    def test_request_id_is_echoed(self, client):
        response = client.get("/health/live", headers={"X-Request-ID": "req-42"})
        assert response.headers["x-request-id"] == "req-42"

        generated = client.get("/health/live").headers["x-request-id"]
        assert len(generated) == 16


class TestOTPEndpoints:
    """Tests for the OTP lifecycle over HTTP."""

    def test_generate(self, client, gateways):
        response = client.post(
            "/otp/generate", json={"identifier": DEMO_EMAIL, "deliveryMethod": "Email"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "OTP sent to your Email"
        assert body["deliveryMethod"] == "Email"
        assert body["retryCount"] == 0
        assert body["expiresAt"].startswith("2026-01-01T12:05:00")
        assert "nextRetryAt" not in body
        assert body["otpCode"] == gateways[DeliveryMethod.EMAIL].last_code(DEMO_EMAIL)

    def test_login_scenario(self, client):
        """Wrong code first, then the right one, then no active OTP."""
        generated = client.post(
            "/otp/generate", json={"identifier": DEMO_EMAIL, "deliveryMethod": "Email"}
        ).json()
        wrong = "000000" if generated["otpCode"] != "000000" else "111111"

        rejected = client.post("/otp/validate", json={"identifier": DEMO_EMAIL, "otpCode": wrong})
        assert rejected.status_code == 400
        assert rejected.json() == {
            "error": "Invalid OTP. 2 attempts remaining.",
            "code": "InvalidCode",
            "remainingAttempts": 2,
        }

        accepted = client.post(
            "/otp/validate",
            json={"identifier": DEMO_EMAIL, "otpCode": generated["otpCode"]},
            headers={"User-Agent": "pytest"},
        )
        assert accepted.status_code == 200
        body = accepted.json()
        assert body["accessToken"].startswith("at_")
        assert body["refreshToken"].startswith("rt_")
        assert body["user"]["email"] == DEMO_EMAIL
        assert body["user"]["fullName"] == "Test User"

        status = client.get(f"/otp/status/{DEMO_EMAIL}").json()
        assert status["hasActiveOTP"] is False

    def test_lockout_response(self, client):
        generated = client.post(
            "/otp/generate", json={"identifier": DEMO_EMAIL, "deliveryMethod": "SMS"}
        ).json()
        wrong = "000000" if generated["otpCode"] != "000000" else "111111"

        for _ in range(2):
            client.post("/otp/validate", json={"identifier": DEMO_EMAIL, "otpCode": wrong})
        locked = client.post("/otp/validate", json={"identifier": DEMO_EMAIL, "otpCode": wrong})

        assert locked.status_code == 400
        assert locked.json()["code"] == "MaxAttemptsReached"
        assert locked.json()["blockedUntil"].startswith("2026-01-01T12:15:00")

        blocked = client.post(
            "/otp/generate", json={"identifier": DEMO_EMAIL, "deliveryMethod": "SMS"}
        )
        assert blocked.json()["code"] == "AccountBlocked"
        assert client.get(f"/otp/status/{DEMO_EMAIL}").json()["isBlocked"] is True

    def test_resend(self, client):
        client.post("/otp/generate", json={"identifier": DEMO_EMAIL, "deliveryMethod": "Email"})

        response = client.post(
            "/otp/resend", json={"identifier": DEMO_EMAIL, "deliveryMethod": "SMS"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "OTP resent to your SMS"
        assert body["retryCount"] == 1
        assert body["nextRetryAt"].startswith("2026-01-01T12:00:30")

    def test_resend_without_active_request(self, client):
        response = client.post(
            "/otp/resend", json={"identifier": DEMO_EMAIL, "deliveryMethod": "Email"}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "NoActiveOTP"

    def test_cancel(self, client):
        client.post("/otp/generate", json={"identifier": DEMO_EMAIL, "deliveryMethod": "Email"})

        assert client.post("/otp/cancel", json={"identifier": DEMO_EMAIL}).json() is True
        assert client.post("/otp/cancel", json={"identifier": DEMO_EMAIL}).json() is True
        assert client.post("/otp/cancel", json={"identifier": "ghost@example.com"}).json() is False
        assert client.get(f"/otp/status/{DEMO_EMAIL}").json()["hasActiveOTP"] is False

    def test_status_unknown_user(self, client):
        body = client.get("/otp/status/ghost@example.com").json()

        assert body["hasActiveOTP"] is False
        assert body["isBlocked"] is False

    def test_unknown_user(self, client):
        response = client.post(
            "/otp/generate", json={"identifier": "ghost@example.com", "deliveryMethod": "Email"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "User not found", "code": "UserNotFound"}

    @pytest.mark.parametrize("payload", [
        {"identifier": DEMO_EMAIL, "deliveryMethod": "Pigeon"},
        {"identifier": "", "deliveryMethod": "Email"},
        {"deliveryMethod": "Email"},
    ])
    def test_invalid_requests(self, client, payload):
        response = client.post("/otp/generate", json=payload)

        assert response.status_code == 400
        assert response.json()["code"] == "ValidationError"

    def test_rate_limit(self):
        app, _ = _build(rate_limit_per_minute=2)
        payload = {"identifier": DEMO_EMAIL, "deliveryMethod": "Email"}

        with TestClient(app) as client:
            responses = [client.post("/otp/generate", json=payload) for _ in range(3)]

        assert [r.status_code for r in responses] == [200, 200, 429]
        assert responses[2].json()["code"] == "RateLimited"
        assert responses[2].headers["Retry-After"] == "60"

    def test_production_hides_code(self):
        app, gateways = _build(environment="production")

        with TestClient(app) as client:
            body = client.post(
                "/otp/generate", json={"identifier": DEMO_EMAIL, "deliveryMethod": "Email"}
            ).json()

        assert body["success"] is True
        assert "otpCode" not in body
        assert gateways[DeliveryMethod.EMAIL].last_code(DEMO_EMAIL) is not None

    def test_production_without_credentials(self):
        """Production never reports success for a channel with no provider."""
        settings = Settings(
            environment="production",
            log_json=False,
            database_url="memory://",
            seed_demo_user=True,
        )
        app = create_app(settings, store=InMemoryStore(), clock=ManualClock(), configure_logging=False)

        with TestClient(app) as client:
            response = client.post(
                "/otp/generate", json={"identifier": DEMO_EMAIL, "deliveryMethod": "Email"}
            )
            health = client.get("/health").json()

        assert response.status_code == 400
        assert response.json() == {
            "error": "Failed to send OTP. Please try again.",
            "code": "DeliveryFailed",
        }
        assert app.state.dispatcher.gateways == {}
        assert health["components"]["gateway:Email"]["status"] == "unavailable"


class TestSessionEndpoints:
    """Tests for refresh, revoke and session lookup."""

    def test_refresh_rotates(self, client):
        login = _login(client)

        refreshed = client.post("/auth/refresh", json={"refreshToken": login["refreshToken"]})
        assert refreshed.status_code == 200
        assert refreshed.json()["refreshToken"] != login["refreshToken"]

        reused = client.post("/auth/refresh", json={"refreshToken": login["refreshToken"]})
        assert reused.status_code == 401
        assert reused.json()["code"] == "InvalidSession"

    def test_revoke(self, client):
        login = _login(client)

        assert client.post("/auth/revoke", json={"refreshToken": login["refreshToken"]}).json() == {
            "revoked": True
        }
        assert client.post("/auth/refresh", json={"refreshToken": login["refreshToken"]}).status_code == 401
        assert client.post("/auth/revoke", json={"refreshToken": "rt_unknown"}).json() == {"revoked": False}

    def test_current_session(self, client):
        login = _login(client)

        response = client.get(
            "/auth/session", headers={"Authorization": f"Bearer {login['accessToken']}"}
        )

        assert response.status_code == 200
        assert response.json()["userId"] == login["user"]["id"]

    def test_session_requires_token(self, client):
        missing = client.get("/auth/session")
        invalid = client.get("/auth/session", headers={"Authorization": "Bearer at_nope"})

        assert missing.status_code == 401
        assert missing.headers["WWW-Authenticate"] == "Bearer"
        assert invalid.status_code == 401


class TestFaults:
    """Store faults surface as 500s without leaking internals."""

    @pytest.fixture
    def broken_client(self):
        settings = Settings(
            environment="development",
            log_json=False,
            database_url="memory://",
            seed_demo_user=False,
        )
        app = create_app(
            settings,
            store=BrokenStore(),
            dispatcher=DeliveryDispatcher({
                DeliveryMethod.SMS: LoggingGateway(DeliveryMethod.SMS),
                DeliveryMethod.EMAIL: LoggingGateway(DeliveryMethod.EMAIL),
            }),
            clock=ManualClock(),
            configure_logging=False,
        )
        with TestClient(app, raise_server_exceptions=False) as client:
            yield client

    def test_generate_and_validate(self, broken_client):
        generated = broken_client.post(
            "/otp/generate", json={"identifier": DEMO_EMAIL, "deliveryMethod": "Email"}
        )
        validated = broken_client.post(
            "/otp/validate", json={"identifier": DEMO_EMAIL, "otpCode": "123456"}
        )

        assert generated.status_code == 500
        assert generated.json() == {
            "error": "An error occurred while generating OTP",
            "code": "Unexpected",
        }
        assert validated.status_code == 500
        assert validated.json() == {
            "error": "An error occurred while validating OTP",
            "code": "Unexpected",
        }

    def test_unhandled_error(self, broken_client):
        """Errors outside the engine reach the catch-all handler."""
        response = broken_client.post("/auth/refresh", json={"refreshToken": "rt_anything"})

        assert response.status_code == 500
        assert response.json() == {"error": "An unexpected error occurred", "code": "Unexpected"}
        assert "connection refused" not in response.text


class TestUserEndpoints:

    def test_register(self, client, gateways):
        response = client.post("/users/register", json={
            "firstName": "Alice",
            "lastName": "Smith",
            "email": "Alice@Example.com",
            "phoneNumber": "+1 415 555 0100",
        })

        assert response.status_code == 201
        body = response.json()
        assert body["email"] == "alice@example.com"
        assert body["phoneNumber"] == "+14155550100"
        assert body["fullName"] == "Alice Smith"
        welcome = gateways[DeliveryMethod.EMAIL].messages(MessageKind.WELCOME)
        assert [e.recipient for e in welcome] == ["alice@example.com"]

    def test_register_duplicate(self, client):
        response = client.post("/users/register", json={
            "firstName": "Test",
            "lastName": "Again",
            "email": DEMO_EMAIL,
        })

        assert response.status_code == 409
        assert response.json() == {
            "error": "A user with this email already exists",
            "code": "DuplicateUser",
        }

    def test_register_invalid_email(self, client):
        response = client.post("/users/register", json={
            "firstName": "No",
            "lastName": "Domain",
            "email": "nobody@",
        })

        assert response.status_code == 400
        assert response.json()["code"] == "ValidationError"
