"""HTTP tests for the limit and throttle admin routes."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from admission.core.app_factory import create_app
from admission.core.config import AdmissionSettings
from admission.core.container import ADMIN_LIMIT, build_admission_control


@pytest.fixture
def client() -> TestClient:
    admission = build_admission_control(AdmissionSettings(register_presets=True))
    return TestClient(create_app(admission=admission))


def test_presets_are_registered(client: TestClient) -> None:
    resp = client.get("/v1/limits")

    assert resp.status_code == 200
    assert resp.json()["limits"] == ["admin", "anonymous", "api", "auth", "checkout"]

    auth = client.get("/v1/limits/auth").json()
    assert auth["strategy"] == "fixed-window"
    assert auth["max_requests"] == 5
    assert auth["window_size_ms"] == 15 * 60 * 1000


def test_put_then_check_limit(client: TestClient) -> None:
    resp = client.put(
        "/v1/limits/search",
        json={"strategy": "sliding-window", "window_size_ms": 1000, "max_requests": 1},
    )
    assert resp.status_code == 200
    assert resp.json()["name"] == "search"

    first = client.post("/v1/limits/search/check", json={"client_id": "c1"})
    second = client.post("/v1/limits/search/check", json={"client_id": "c1"})

    assert first.json()["allowed"] is True
    assert first.headers["X-RateLimit-Remaining"] == "0"
    assert second.status_code == 200
    assert second.json()["allowed"] is False
    assert second.json()["retry_after_ms"] == 1000
    assert second.headers["Retry-After"] == "1"


def test_unknown_strategy_is_rejected_with_400(client: TestClient) -> None:
    resp = client.put(
        "/v1/limits/bad",
        json={"strategy": "random-drop", "window_size_ms": 1000, "max_requests": 1},
    )

    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "rate_limit_unknown_strategy"
    assert "request_id" in error
    assert client.get("/v1/limits/bad").status_code == 404


def test_check_unknown_limit_is_unmetered(client: TestClient) -> None:
    resp = client.post("/v1/limits/ghost/check", json={})

    assert resp.status_code == 200
    body = resp.json()
    assert body["allowed"] is True
    assert body["remaining"] == -1
    assert "X-RateLimit-Limit" not in resp.headers


def test_metrics_and_reset(client: TestClient) -> None:
    client.put(
        "/v1/limits/once",
        json={"strategy": "fixed-window", "window_size_ms": 60000, "max_requests": 1},
    )
    assert client.get("/v1/limits/once/metrics").status_code == 404

    client.post("/v1/limits/once/check", json={"client_id": "c"})
    client.post("/v1/limits/once/check", json={"client_id": "c"})

    metrics = client.get("/v1/limits/once/metrics").json()
    assert metrics["total_requests"] == 2
    assert metrics["blocked_requests"] == 1
    assert metrics["block_rate"] == 0.5

    assert client.post("/v1/limits/once/reset").status_code == 204
    after = client.post("/v1/limits/once/check", json={"client_id": "c"}).json()
    assert after["allowed"] is True
    assert client.get("/v1/limits/once/metrics").json()["total_requests"] == 3


def test_throttle_status_of_idle_name(client: TestClient) -> None:
    resp = client.get("/v1/throttles/payments")

    assert resp.status_code == 200
    assert resp.json() == {"last_call_at": 0.0, "concurrent": 0, "queued": 0}


def test_admin_routes_are_guarded_by_admin_preset() -> None:
    admission = build_admission_control(AdmissionSettings(register_presets=True))
    admission.limiter.set_config(
        ADMIN_LIMIT, {"strategy": "fixed-window", "window_size_ms": 60000, "max_requests": 1}
    )
    client = TestClient(create_app(admission=admission))

    assert client.get("/v1/limits").status_code == 200
    blocked = client.get("/v1/limits")
    assert blocked.status_code == 429
    assert blocked.headers["Retry-After"] == "1"


def test_health_is_not_rate_limited() -> None:
    admission = build_admission_control(AdmissionSettings(register_presets=True))
    admission.limiter.set_config(
        ADMIN_LIMIT, {"strategy": "fixed-window", "window_size_ms": 60000, "max_requests": 0}
    )
    client = TestClient(create_app(admission=admission))

    assert client.get("/health").json() == {"status": "ok"}


def test_admin_guard_cannot_be_replaced_through_the_api(client: TestClient) -> None:
    resp = client.put(
        "/v1/limits/admin",
        json={"strategy": "fixed-window", "window_size_ms": 60000, "max_requests": 0},
    )

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "rate_limit_protected"
    assert client.get("/v1/limits/admin").json()["max_requests"] == 60
    assert client.get("/v1/limits").status_code == 200


def test_tightening_api_preset_does_not_lock_out_admin_routes(client: TestClient) -> None:
    resp = client.put(
        "/v1/limits/api",
        json={"strategy": "fixed-window", "window_size_ms": 60000, "max_requests": 0},
    )
    assert resp.status_code == 200

    restored = client.put(
        "/v1/limits/api",
        json={"strategy": "fixed-window", "window_size_ms": 60000, "max_requests": 100},
    )
    assert restored.status_code == 200


def test_metrics_listing_covers_every_checked_limit(client: TestClient) -> None:
    client.put(
        "/v1/limits/once",
        json={"strategy": "fixed-window", "window_size_ms": 60000, "max_requests": 1},
    )
    client.post("/v1/limits/once/check", json={"client_id": "c"})
    client.post("/v1/limits/once/check", json={"client_id": "c"})

    resp = client.get("/v1/metrics")

    assert resp.status_code == 200
    metrics = resp.json()["metrics"]
    assert metrics["once"]["total_requests"] == 2
    assert metrics["once"]["blocked_requests"] == 1
    # Every admin call is itself checked against the guard limit.
    assert metrics[ADMIN_LIMIT]["total_requests"] == 4
    assert "auth" not in metrics
