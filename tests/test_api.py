"""End-to-end tests for the HTTP dispatcher."""

import json

import pytest
from fastapi.testclient import TestClient

from contact_relay.api import create_app
from contact_relay.errors import MailTransportError
from contact_relay.mailer import Mailer
from contact_relay.prometheus import RelayMetrics
from contact_relay.rate_limit import RateLimiter

KNOWN = "https://known.example"
VALID_BODY = {"email": "a@b.com", "name": "X", "message": "hi"}


@pytest.fixture
def limiter():
    return RateLimiter(limit=5, window=60.0)


@pytest.fixture
def metrics():
    return RelayMetrics()


@pytest.fixture
def client(store, mailer, limiter, metrics):
    return TestClient(create_app(store, mailer, limiter, metrics=metrics))


def assert_cors(response, allowed):
    assert response.headers["access-control-allow-origin"] == allowed
    assert response.headers["access-control-allow-methods"] == "POST, OPTIONS"
    assert response.headers["access-control-allow-headers"] == "Content-Type"


def test_preflight_returns_204_with_cors(client):
    response = client.options("/api/send", headers={"Origin": KNOWN})
    assert response.status_code == 204
    assert response.content == b""
    assert_cors(response, KNOWN)


def test_preflight_on_any_path(client):
    response = client.options("/anything", headers={"Origin": "https://evil.example"})
    assert response.status_code == 204
    assert_cors(response, "")


def test_valid_submission_is_relayed(client, mailer, store):
    response = client.post("/api/send", json=VALID_BODY, headers={"Origin": KNOWN})

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert_cors(response, KNOWN)
    assert len(mailer.calls) == 1
    data, cfg = mailer.calls[0]
    assert cfg is store.resolve(KNOWN)
    assert data.email == "a@b.com"
    assert data.name == "X"
    assert data.message == "hi"


def test_each_origin_gets_its_own_config(client, mailer, store):
    client.post("/api/send", json=VALID_BODY, headers={"Origin": KNOWN})
    client.post("/api/send", json=VALID_BODY, headers={"Origin": "https://other.example"})

    assert [cfg for _data, cfg in mailer.calls] == [
        store.resolve(KNOWN),
        store.resolve("https://other.example"),
    ]


@pytest.mark.parametrize("origin", ["https://unknown.example", None])
def test_unknown_origin_forbidden(client, mailer, limiter, origin):
    headers = {"Origin": origin} if origin else {}
    response = client.post("/api/send", json=VALID_BODY, headers=headers)

    assert response.status_code == 403
    assert response.json() == {"error": "Forbidden"}
    assert_cors(response, "")
    assert mailer.calls == []
    assert len(limiter) == 0


@pytest.mark.parametrize(
    "method, path",
    [
        ("GET", "/api/send"),
        ("GET", "/"),
        ("POST", "/api/other"),
        ("PUT", "/api/send"),
        ("GET", "/docs"),
        ("POST", "/api/send/"),
        ("GET", "/api/send/"),
    ],
)
def test_other_routes_not_found(client, method, path):
    response = client.request(method, path, headers={"Origin": KNOWN})
    assert response.status_code == 404
    assert response.json() == {"error": "Not found"}
    assert_cors(response, KNOWN)


def test_malformed_json_returns_400(client, mailer, limiter):
    response = client.post(
        "/api/send",
        content=b"{not json",
        headers={"Origin": KNOWN, "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON"}
    assert_cors(response, KNOWN)
    assert mailer.calls == []
    assert limiter.get("testclient").count == 1


def test_empty_body_returns_400(client):
    response = client.post("/api/send", content=b"", headers={"Origin": KNOWN})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON"}


@pytest.mark.parametrize(
    "body",
    [
        {"name": "X", "message": "hi"},
        {"email": "a@b.com", "name": "", "message": "hi"},
        {"email": "ab.com", "name": "X", "message": "hi"},
        {"email": "a@b.com", "name": "X", "message": "hi", "phone": ""},
        ["a@b.com", "X", "hi"],
        None,
        "a@b.com",
    ],
)
def test_invalid_body_returns_400(client, mailer, body):
    response = client.post("/api/send", content=json.dumps(body), headers={"Origin": KNOWN})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid body. Required: email, name, message"}
    assert_cors(response, KNOWN)
    assert mailer.calls == []


def test_mail_failure_returns_generic_500(client, mailer, caplog):
    mailer.error = MailTransportError("SMTP delivery via smtp.known.example:587 failed: 535 auth")

    with caplog.at_level("ERROR", logger="contact_relay.api"):
        response = client.post("/api/send", json=VALID_BODY, headers={"Origin": KNOWN})

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to send email"}
    assert "535" not in response.text
    assert_cors(response, KNOWN)
    record = next(r for r in caplog.records if r.getMessage() == "Failed to send email")
    assert "535 auth" in record.error
    assert record.origin == KNOWN
    assert record.client == "testclient"


def test_sixth_request_in_window_is_rate_limited(client, mailer):
    statuses = [
        client.post("/api/send", json=VALID_BODY, headers={"Origin": KNOWN}).status_code
        for _ in range(6)
    ]

    assert statuses == [200, 200, 200, 200, 200, 429]
    assert len(mailer.calls) == 5


def test_rate_limited_response_carries_cors(client):
    for _ in range(5):
        client.post("/api/send", json=VALID_BODY, headers={"Origin": KNOWN})
    response = client.post("/api/send", json=VALID_BODY, headers={"Origin": KNOWN})

    assert response.status_code == 429
    assert response.json() == {"error": "Too many requests"}
    assert_cors(response, KNOWN)


def test_rate_limit_buckets_by_forwarded_for(client, mailer):
    for _ in range(5):
        client.post("/api/send", json=VALID_BODY, headers={"Origin": KNOWN, "X-Forwarded-For": "203.0.113.7"})

    blocked = client.post("/api/send", json=VALID_BODY, headers={"Origin": KNOWN, "X-Forwarded-For": "203.0.113.7"})
    other = client.post(
        "/api/send", json=VALID_BODY, headers={"Origin": KNOWN, "X-Forwarded-For": "198.51.100.9, 203.0.113.7"}
    )

    assert blocked.status_code == 429
    assert other.status_code == 200
    assert len(mailer.calls) == 6


def test_metrics_track_outcomes(client, mailer, metrics):
    client.post("/api/send", json=VALID_BODY, headers={"Origin": KNOWN})
    client.post("/api/send", json=VALID_BODY, headers={"Origin": "https://unknown.example"})
    client.post("/api/send", content=b"nope", headers={"Origin": KNOWN})

    output = metrics.generate_latest().decode()
    assert 'relay_sent_total{origin="https://known.example"} 1.0' in output
    assert 'relay_rejected_total{reason="forbidden"} 1.0' in output
    assert 'relay_rejected_total{reason="invalid_json"} 1.0' in output
    assert "relay_rate_limit_keys 1.0" in output


def test_apps_do_not_share_state(store, mailer):
    first = TestClient(create_app(store, mailer, RateLimiter(limit=1)))
    second = TestClient(create_app(store, mailer, RateLimiter(limit=1)))

    assert first.post("/api/send", json=VALID_BODY, headers={"Origin": KNOWN}).status_code == 200
    assert first.post("/api/send", json=VALID_BODY, headers={"Origin": KNOWN}).status_code == 429
    assert second.post("/api/send", json=VALID_BODY, headers={"Origin": KNOWN}).status_code == 200


@pytest.mark.parametrize("address", ["a@", "a@["])
def test_unparseable_address_returns_500_with_cors(store, address):
    client = TestClient(create_app(store, Mailer(), RateLimiter()))
    body = {"email": address, "name": "X", "message": "hi"}

    response = client.post("/api/send", json=body, headers={"Origin": KNOWN})

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to send email"}
    assert_cors(response, KNOWN)


def test_unexpected_error_returns_json_500_with_cors(client, mailer):
    mailer.error = RuntimeError("boom")

    response = client.post("/api/send", json=VALID_BODY, headers={"Origin": KNOWN})

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to send email"}
    assert_cors(response, KNOWN)


@pytest.mark.parametrize("raw", [b'{"email": NaN}', b"Infinity", b"-Infinity"])
def test_non_finite_constants_are_malformed_json(client, mailer, raw):
    response = client.post("/api/send", content=raw, headers={"Origin": KNOWN})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON"}
    assert mailer.calls == []
