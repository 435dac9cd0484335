"""
Unit tests for EncryptedSessionMiddleware.
"""

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from service_session.app.crypto.codec import SessionCodec
from service_session.app.crypto.keys import validate_secret
from service_session.app.lifecycle.policy import LifecyclePolicy
from service_session.app.middleware import EncryptedSessionMiddleware
from shared.metrics import MetricsCollector

SECRET = (
    "b6a30e998806a238c4bad45cc720ed55e56e50d9f00fff58552e78a20fe8262df61"
    "42fcfdb0676018bb9767ed560d4a624fb7f3603b4e53c77ec189ae3853bd1"
)
MINUTE = 60
DAY = 24 * 60 * MINUTE


class FakeClock:
    """Settable clock shared by the codec and the test."""

    def __init__(self, now: float = 1_700_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now


def create_app(handler=None, *, expire_after=None, refresh_interval=5 * MINUTE, clock=None, metrics=None, **options):
    """Build a bare app whose only route runs ``handler`` against the session."""
    codec = SessionCodec(validate_secret(SECRET), clock=clock)
    policy = LifecyclePolicy(expire_after=expire_after, refresh_interval=refresh_interval)

    app = FastAPI()
    app.add_middleware(EncryptedSessionMiddleware, codec=codec, policy=policy, metrics=metrics, **options)

    @app.get("/")
    async def endpoint(request: Request):
        if handler:
            handler(request.session)
        return {"status": request.state.session_status, "session": request.session}

    app.state.codec = codec
    return app


def set_hello(session):
    session["hello"] = "world"


class TestSessionCookie:
    """Test cases for cookie issuance."""

    def test_no_cookie_for_untouched_empty_session(self):
        """Test that a request that never uses the session gets no cookie."""
        client = TestClient(create_app())

        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "missing"
        assert "set-cookie" not in response.headers

    def test_should_not_refresh_unchanged_session(self):
        """Test that an unchanged session does not produce a new cookie."""
        client = TestClient(create_app(set_hello))

        first = client.get("/")
        assert "set-cookie" in first.headers

        second = client.get("/")
        assert "set-cookie" not in second.headers
        assert second.json() == {"status": "ok", "session": {"hello": "world"}}

    def test_should_refresh_when_deep_object_changed(self):
        """Test that a nested mutation produces a new cookie."""
        def handler(session):
            if "hello" in session:
                session["hello"]["other_key"] = 2
            else:
                session["hello"] = {"one_key": 1}

        client = TestClient(create_app(handler))

        first = client.get("/")
        assert "set-cookie" in first.headers

        second = client.get("/")
        assert "set-cookie" in second.headers
        assert second.json()["session"] == {"hello": {"one_key": 1, "other_key": 2}}

        third = client.get("/")
        assert "set-cookie" not in third.headers

    def test_should_refresh_when_timestamp_is_old_enough(self):
        """Test sliding renewal of an unchanged expiring session."""
        clock = FakeClock()
        app = create_app(set_hello, expire_after=DAY, refresh_interval=5 * MINUTE, clock=clock)
        client = TestClient(app)

        first = client.get("/")
        assert "set-cookie" in first.headers
        original_token = client.cookies.get("session")

        # request right away doesn't refresh
        second = client.get("/")
        assert "set-cookie" not in second.headers

        # but in 10 minutes, it does
        clock.now += 10 * MINUTE
        third = client.get("/")
        assert "set-cookie" in third.headers

        refreshed_token = client.cookies.get("session")
        assert refreshed_token != original_token
        assert refreshed_token.split(".")[0] != original_token.split(".")[0]

        codec = app.state.codec
        original = codec.decode(original_token, DAY)
        refreshed = codec.decode(refreshed_token, DAY)
        assert refreshed.timestamp == original.timestamp + 10 * MINUTE
        assert refreshed.session == original.session == {"hello": "world"}

    def test_cookie_attributes_for_expiring_session(self):
        """Test that Max-Age follows the expiry and attributes are applied."""
        client = TestClient(create_app(
            set_hello,
            expire_after=DAY,
            cookie_name="app_session",
            path="/app",
            secure=True,
            samesite="Strict",
        ))

        header = client.get("/").headers["set-cookie"].lower()

        assert header.startswith("app_session=")
        assert f"max-age={DAY}" in header
        assert "path=/app" in header
        assert "httponly" in header
        assert "secure" in header
        assert "samesite=strict" in header

    def test_browser_session_cookie_without_expiry(self):
        """Test that a non-expiring session sets no Max-Age."""
        header = TestClient(create_app(set_hello)).get("/").headers["set-cookie"].lower()

        assert "max-age" not in header
        assert "samesite=lax" in header

    def test_compressed_token_survives_cookie_round_trip(self):
        """Test that a compressed token, which contains a space, comes back intact."""
        def handler(session):
            session.setdefault("some_key", "value" * 50)

        client = TestClient(create_app(handler))

        client.get("/")
        response = client.get("/")

        assert response.json()["status"] == "ok"
        assert response.json()["session"] == {"some_key": "value" * 50}
        assert "set-cookie" not in response.headers


class TestInvalidCookies:
    """Test cases for rejected, expired and cleared sessions."""

    def test_garbage_cookie_is_cleared(self):
        """Test that a garbage cookie yields an empty session and is deleted."""
        client = TestClient(create_app())

        response = client.get("/", headers={"Cookie": "session=not-a-real-token"})

        assert response.json() == {"status": "invalid", "session": {}}
        header = response.headers["set-cookie"].lower()
        assert header.startswith("session=")
        assert "max-age=0" in header

    def test_foreign_key_cookie_is_replaced(self):
        """Test that a cookie from another key is discarded and reissued."""
        other_key = "dd" * 64
        foreign = SessionCodec(validate_secret(other_key)).encode({"user_id": 1})
        client = TestClient(create_app(set_hello))

        response = client.get("/", headers={"Cookie": f"session={foreign}"})

        assert response.json() == {"status": "invalid", "session": {"hello": "world"}}
        assert "set-cookie" in response.headers
        assert foreign not in response.headers["set-cookie"]

    def test_expired_cookie(self):
        """Test that an expired session is empty and its cookie removed."""
        clock = FakeClock()
        writes = {"enabled": True}

        def handler(session):
            if writes["enabled"]:
                session["hello"] = "world"

        client = TestClient(create_app(handler, expire_after=DAY, clock=clock))
        client.get("/")

        writes["enabled"] = False
        clock.now += 2 * DAY
        response = client.get("/")

        assert response.json() == {"status": "expired", "session": {}}
        assert "max-age=0" in response.headers["set-cookie"].lower()

    def test_cleared_session_deletes_cookie(self):
        """Test that clearing a session removes the cookie."""
        calls = {"count": 0}

        def handler(session):
            calls["count"] += 1
            if calls["count"] == 1:
                session["hello"] = "world"
            else:
                session.clear()

        client = TestClient(create_app(handler))
        client.get("/")

        response = client.get("/")

        assert "max-age=0" in response.headers["set-cookie"].lower()
        assert client.cookies.get("session") is None


class TestOverflowAndMetrics:
    """Test cases for oversize cookies and instrumentation."""

    def test_overflow_returns_error(self):
        """Test that a session too large for a cookie is refused."""
        client = TestClient(create_app(set_hello, max_cookie_size=16))

        response = client.get("/")

        assert response.status_code == 500
        assert response.json()["code"] == "SESSION_OVERFLOW"
        assert "set-cookie" not in response.headers

    @pytest.fixture
    def metrics(self):
        """Metrics collector with session metrics."""
        return MetricsCollector("session")

    def test_decode_and_reissue_metrics(self, metrics):
        """Test that decode outcomes and reissue reasons are counted."""
        client = TestClient(create_app(set_hello, metrics=metrics))

        client.get("/")
        client.get("/")

        registry = metrics.registry
        assert registry.get_sample_value("session_decode_total", {"outcome": "missing"}) == 1
        assert registry.get_sample_value("session_decode_total", {"outcome": "ok"}) == 1
        assert registry.get_sample_value("session_reissue_total", {"reason": "changed"}) == 1
        assert registry.get_sample_value("session_token_bytes_count") == 1

    def test_unserializable_value_returns_error(self, metrics):
        """Test that a handler storing a non-JSON value gets a structured error."""
        def handler(session):
            session["tags"] = {"a", "b"}

        client = TestClient(create_app(handler, metrics=metrics))

        response = client.get("/")

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert "set-cookie" not in response.headers
        assert metrics.registry.get_sample_value(
            "errors_total", {"error_type": "VALIDATION_ERROR", "service": "session"}
        ) == 1
