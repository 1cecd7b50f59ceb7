# MIT License
# Copyright (c) 2025 Hashborn

"""
RPC API Tests

Operations submitted over HTTP, error mapping and read endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from stakeyield.engine.rpc import api
from stakeyield.protocol.types.common import ERR_NOT_INITIALIZED, ERR_ONLY_OWNER, ERR_WITHDRAW_NOT_SYNCED

from .conftest import OWNER, PROVIDER, DELEGATOR, STAKE, WEEK


@pytest.fixture
def client(engine):
    api.engine = engine
    yield TestClient(api.app)
    api.engine = None


def _tx(client, op, **body):
    return client.post(f"/tx/{op}", json=body)


def _stake(client, address, amount=STAKE):
    assert client.post("/dev/mint", json={"address": address, "amount": amount}).status_code == 200
    assert client.post("/dev/stake", json={"address": address, "amount": amount}).status_code == 200


def test_status(client):
    resp = client.get("/status")
    assert resp.status_code == 200
    data = resp.json()
    assert data["epoch"] == 0
    assert data["provider_fee_bps"] == 1000
    assert data["whitelist_enabled"] is True


def test_engine_not_initialized():
    api.engine = None
    resp = TestClient(api.app).get("/epoch")
    assert resp.status_code == 503


def test_delegate_and_claim(client, clock):
    _stake(client, DELEGATOR)
    resp = _tx(client, "DELEGATE", caller=DELEGATOR, provider=PROVIDER)
    assert resp.status_code == 200
    assert resp.json()["status"] == "committed"

    clock.advance(5 * WEEK)
    assert client.get(f"/estimate/yield/{DELEGATOR}").json()["yield"] == "315000"

    resp = _tx(client, "CLAIM_YIELD", caller=DELEGATOR)
    assert resp.status_code == 200
    assert resp.json()["result"] == "315000"

    stake_state = client.get(f"/provider/{PROVIDER}/stake-state").json()
    assert stake_state["delegation_reward"] == 35_000

    delegator = client.get(f"/delegator/{DELEGATOR}").json()
    assert delegator["delegated_to"] == PROVIDER
    assert delegator["total_yield_claimed"] == 315_000

    total = client.get(f"/delegation/{PROVIDER}/5").json()
    assert total["total"] == str(STAKE)


def test_precondition_maps_to_400(client):
    resp = _tx(client, "CLAIM_YIELD", caller=DELEGATOR)
    assert resp.status_code == 400
    assert resp.json()["detail"] == {"error": "PreconditionError", "reason": ERR_NOT_INITIALIZED}


def test_authorization_maps_to_403(client):
    resp = _tx(client, "ADD_TO_WHITELIST", caller=DELEGATOR, address=DELEGATOR)
    assert resp.status_code == 403
    assert resp.json()["detail"]["reason"] == ERR_ONLY_OWNER


def test_desync_maps_to_409(client, clock):
    _stake(client, DELEGATOR)
    _tx(client, "DELEGATE", caller=DELEGATOR, provider=PROVIDER)
    client.post("/dev/request-withdraw", json={"address": DELEGATOR})

    resp = _tx(client, "CLAIM_YIELD", caller=DELEGATOR)
    assert resp.status_code == 409
    assert resp.json()["detail"]["reason"] == ERR_WITHDRAW_NOT_SYNCED

    assert _tx(client, "SYNC_WITHDRAW_REQUEST", caller=DELEGATOR).status_code == 200
    assert _tx(client, "CLAIM_YIELD", caller=DELEGATOR).status_code == 200


def test_missing_provider_field(client):
    resp = _tx(client, "DELEGATE", caller=DELEGATOR)
    assert resp.status_code == 422


def test_unknown_operation(client):
    resp = _tx(client, "MINT_EVERYTHING", caller=OWNER)
    assert resp.status_code == 422


def test_provider_lookup(client):
    assert client.get(f"/provider/{PROVIDER}").json()["is_whitelisted"] is True
    assert client.get("/provider/0xNobody").status_code == 404


def test_grant_defaults_to_current_epoch(client, clock):
    clock.advance(2 * WEEK)
    resp = _tx(client, "GRANT_ADDITIONAL_REWARD", caller=OWNER, provider=PROVIDER, amount=900)
    assert resp.json()["result"] == "900"
    assert client.get(f"/provider/{PROVIDER}/stake-state").json()["bonus_reward"] == 900


def test_operations_endpoint(client):
    ops = client.get("/operations", params={"caller": OWNER}).json()["operations"]
    assert ops[0]["op"] == "ADD_TO_WHITELIST"


def test_metrics_endpoint(client):
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "stakeyield_operations_total" in resp.text
