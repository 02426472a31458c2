"""Tests for the Flask webhook endpoints."""

import pytest

import app as app_module
from tally_bitrix.crm_client import CRMApplicationError

from .conftest import WEBHOOK_BASE


@pytest.fixture
def bridge_env(monkeypatch: pytest.MonkeyPatch, fake_crm):
    monkeypatch.setenv("B24_WEBHOOK_BASE", WEBHOOK_BASE)
    monkeypatch.setenv("DEAL_STAGE_ID", "C2:NEW")
    monkeypatch.setattr(app_module, "_build_client", lambda settings: fake_crm)
    return fake_crm


@pytest.fixture
def client():
    app_module.app.config["TESTING"] = True
    return app_module.app.test_client()


def test_preflight_returns_204_with_cors(client, bridge_env) -> None:
    resp = client.options("/api/request-to-deal", headers={"Origin": "https://shop.example.com"})
    assert resp.status_code == 204
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    assert "POST" in resp.headers["Access-Control-Allow-Methods"]


def test_get_reports_readiness(client, bridge_env) -> None:
    resp = client.get("/api/quote-to-deal")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["stage"] == "ready"
    assert body["form"] == "quote"
    assert body["crmConfigured"] is True
    assert WEBHOOK_BASE not in resp.get_data(as_text=True)


def test_other_methods_are_rejected(client, bridge_env) -> None:
    resp = client.put("/api/request-to-deal", json={})
    assert resp.status_code == 405
    assert resp.get_json() == {"error": "Method not allowed"}


def test_disallowed_origin_is_forbidden(client, bridge_env, monkeypatch) -> None:
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://shop.example.com")
    resp = client.post(
        "/api/request-to-deal",
        json={"email": "jane@example.com"},
        headers={"Origin": "https://evil.example.net"},
    )
    assert resp.status_code == 403
    assert bridge_env.calls == []


def test_allowed_origin_is_echoed(client, bridge_env, monkeypatch) -> None:
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://shop.example.com,https://www.example.com")
    resp = client.options(
        "/api/lead-to-bitrix", headers={"Origin": "https://www.example.com"}
    )
    assert resp.status_code == 204
    assert resp.headers["Access-Control-Allow-Origin"] == "https://www.example.com"


def test_tally_webhook_creates_deal(client, bridge_env, tally_payload) -> None:
    resp = client.post("/api/request-to-deal", json=tally_payload)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "created"
    assert body["entity"] == "deal"
    deal = bridge_env.deals[body["id"]]
    assert deal["CONTACT_ID"] == body["contact_id"]
    assert "40' HC Double Doors" in deal["COMMENTS"]


def test_form_encoded_lead(client, bridge_env) -> None:
    resp = client.post(
        "/api/lead-to-bitrix",
        data={"name": "Jane Doe", "phone": "416-555-0100"},
    )
    assert resp.status_code == 200
    lead = bridge_env.leads[resp.get_json()["id"]]
    assert lead["NAME"] == "Jane"
    assert lead["PHONE"] == [{"VALUE": "4165550100", "VALUE_TYPE": "WORK"}]


def test_lead_without_identity_is_bad_request(client, bridge_env) -> None:
    resp = client.post("/api/lead-to-bitrix", json={"name": "Jane"})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Email or phone required"}


def test_missing_webhook_is_server_error(client, monkeypatch) -> None:
    monkeypatch.setenv("DEAL_STAGE_ID", "C2:NEW")
    resp = client.post("/api/request-to-deal", json={"email": "jane@example.com"})
    assert resp.status_code == 500
    assert "B24_WEBHOOK_BASE" in resp.get_json()["error"]


def test_invalid_overrides_are_server_error(client, bridge_env, monkeypatch) -> None:
    monkeypatch.setenv("OPTION_OVERRIDES", "{oops")
    resp = client.post("/api/request-to-deal", json={"email": "jane@example.com"})
    assert resp.status_code == 500


def test_bitrix_error_is_bad_gateway(client, bridge_env) -> None:
    bridge_env.failures["crm.deal.add"] = CRMApplicationError(
        "crm.deal.add", "ERROR_CORE", "Stage not found"
    )
    resp = client.post("/api/request-to-deal", json={"email": "jane@example.com"})
    assert resp.status_code == 502
    assert resp.get_json() == {
        "error": "Bitrix error",
        "kind": "application",
        "code": "ERROR_CORE",
        "description": "Stage not found",
    }


def test_health(client) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "healthy"}


def test_preflight_from_unlisted_origin_gets_empty_204(client, bridge_env, monkeypatch) -> None:
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://shop.example.com")
    resp = client.options(
        "/api/request-to-deal", headers={"Origin": "https://evil.example.net"}
    )
    assert resp.status_code == 204
    assert resp.get_data() == b""
    assert resp.headers["Access-Control-Allow-Origin"] == "https://shop.example.com"
