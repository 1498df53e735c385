import asyncio

import pytest
from fastapi.testclient import TestClient

from safelink_sandbox import main
from safelink_sandbox.ai_judge import AISkipped
from safelink_sandbox.analyzer import batch_check
from safelink_sandbox.config import Settings
from safelink_sandbox.fusion import fuse
from safelink_sandbox.urls import InvalidURLError


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main, "settings", Settings(batch_max_urls=3))
    main.limiter.reset()
    return TestClient(main.app)


def test_health_endpoints(client):
    assert client.get("/healthz").json() == {"ok": True}
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["service"] == "safe-link-sandbox"


def test_api_info_lists_levels(client):
    body = client.get("/api").json()
    assert body["riskLevels"]["warning"] == "31-70"
    assert "POST /api/batch-check" in body["endpoints"]


def test_status(client):
    body = client.get("/api/status").json()
    assert body["success"] is True
    assert body["data"]["status"] == "running"


def test_security_headers_present(client):
    res = client.get("/healthz")
    assert res.headers["x-content-type-options"] == "nosniff"
    assert res.headers["x-frame-options"] == "DENY"


def test_unknown_route_uses_error_envelope(client):
    res = client.get("/nope")
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "NOT_FOUND"


def test_quick_check(client):
    res = client.post("/api/quick-check", json={"url": "https://192.0.2.10/login"})
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["risk_score"] == 25
    assert data["risk_level"] == "safe"
    assert data["issues"] == ["direct IP address access"]


def test_quick_check_invalid_url_is_a_result_not_an_error(client):
    res = client.post("/api/quick-check", json={"url": "ftp://example.com"})
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["valid"] is False
    assert data["risk_level"] == "unknown"
    assert "issues" not in data


@pytest.mark.parametrize(
    "payload,code",
    [({}, "MISSING_URL"), ({"url": ""}, "MISSING_URL"), ({"url": 123}, "INVALID_URL_TYPE")],
)
def test_quick_check_input_errors(client, payload, code):
    res = client.post("/api/quick-check", json=payload)
    assert res.status_code == 400
    assert res.json()["success"] is False
    assert res.json()["error"]["code"] == code


def test_non_json_body(client):
    res = client.post("/api/quick-check", content=b"url=x", headers={"content-type": "text/plain"})
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "INVALID_REQUEST"


def test_batch_check(client):
    urls = ["https://example.com", "not a url", "http://198.51.100.7:8080/"]
    res = client.post("/api/batch-check", json={"urls": urls})
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["total"] == 3
    assert [r["url"] for r in data["results"]] == urls
    assert data["summary"] == {"safe": 1, "warning": 1, "danger": 0, "invalid": 1}


def test_batch_check_limits(client):
    res = client.post("/api/batch-check", json={"urls": ["https://a.example"] * 4})
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "TOO_MANY_URLS"

    res = client.post("/api/batch-check", json={"urls": "https://a.example"})
    assert res.json()["error"]["code"] == "MISSING_URLS"


def test_analyze_rejects_long_urls(client):
    res = client.post("/api/analyze", json={"url": "https://example.com/" + "a" * 3000})
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "URL_TOO_LONG"


def test_analyze_invalid_url(client, monkeypatch):
    async def fake_analyze(url, **kwargs):
        raise InvalidURLError("Only http(s) URLs can be analyzed.")

    monkeypatch.setattr(main, "analyze_url", fake_analyze)
    res = client.post("/api/analyze", json={"url": "ftp://example.com"})
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "INVALID_URL"


def test_analyze_passes_options(client, monkeypatch, make_heuristic):
    seen = {}

    async def fake_analyze(url, **kwargs):
        seen.update(kwargs)
        return fuse(make_heuristic(domain=25, url=url), AISkipped(reason="disabled"))

    monkeypatch.setattr(main, "analyze_url", fake_analyze)
    res = client.post(
        "/api/analyze",
        json={"url": "https://192.0.2.10/", "options": {"timeout": 5000, "takeScreenshot": False, "use_ai": False}},
    )
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["risk_score"] == 25
    assert data["ai_analysis"]["enabled"] is False
    assert seen["timeout_ms"] == 5000
    assert seen["take_screenshot"] is False
    assert seen["use_ai"] is False


def test_analyze_rejects_bad_timeout(client):
    res = client.post("/api/analyze", json={"url": "https://example.com", "options": {"timeout": 10}})
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "INVALID_REQUEST"


def test_api_routes_are_rate_limited(client, monkeypatch):
    monkeypatch.setattr(main, "settings", Settings(rate_limit="2/minute"))
    for _ in range(2):
        assert client.post("/api/quick-check", json={"url": "https://example.com"}).status_code == 200

    res = client.post("/api/quick-check", json={"url": "https://example.com"})
    assert res.status_code == 429
    assert res.json()["success"] is False
    assert res.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"
    assert client.get("/api/status").status_code == 429
    assert client.get("/health").status_code == 200


def test_batch_check_runs_in_a_worker_thread(client, monkeypatch):
    seen = {}

    def recording_batch(urls, *, max_workers):
        try:
            asyncio.get_running_loop()
            seen["on_loop"] = True
        except RuntimeError:
            seen["on_loop"] = False
        return batch_check(urls, max_workers=max_workers)

    monkeypatch.setattr(main, "batch_check", recording_batch)
    res = client.post("/api/batch-check", json={"urls": ["https://example.com"]})
    assert res.status_code == 200
    assert res.json()["data"]["total"] == 1
    assert seen["on_loop"] is False
