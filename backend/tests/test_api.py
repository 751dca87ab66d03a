import pytest
from fastapi.testclient import TestClient

from zk_oracle.core.config import Settings
from zk_oracle.main import create_app

from conftest import (
    ATTEMPT_ID,
    CONTEST_ID,
    GAME_CONFIG_ID,
    SECRET,
    RevertingLedger,
    add_attempt,
)


@pytest.fixture
def settings():
    return Settings(ENVIRONMENT="test", API_PREFIX="/api", LOG_LEVEL="WARNING")


@pytest.fixture
def client(settings, oracle):
    with TestClient(create_app(settings=settings, orchestrator=oracle)) as test_client:
        yield test_client


def _commit(client, **overrides):
    body = {"answer": SECRET, "contestId": CONTEST_ID, "gameConfigId": GAME_CONFIG_ID, "gameId": 1}
    body.update(overrides)
    return client.post("/api/zk/create-commitment", json=body)

# ═══════════════════════════════════════════════════════════════════════════════
# SYSTEM
# ═══════════════════════════════════════════════════════════════════════════════

def test_root_banner(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "operational"

def test_health(client):
    body = client.get("/api/health").json()
    assert body["ledger"]["connected"] is True
    assert body["archive"]["ready"] is True
    assert "uptime_seconds" in body

def test_network_info(client):
    body = client.get("/api/network-info").json()
    assert "oracleAddress" in body
    assert "timestamp" in body

# ═══════════════════════════════════════════════════════════════════════════════
# ZK ROUTES
# ═══════════════════════════════════════════════════════════════════════════════

def test_create_commitment_route(client, store):
    response = _commit(client)
    assert response.status_code == 200

    body = response.json()
    assert set(body) >= {"commitmentHash", "salt", "archive", "proofHash", "anchor", "provingTimeMs"}
    assert body["anchor"]["txHash"].startswith("0x")
    assert body["archive"]["cid"] == store.get_commitment(CONTEST_ID, GAME_CONFIG_ID).archive_cid

def test_missing_contest_id_is_400(client, store, ledger):
    response = client.post("/api/zk/create-commitment", json={"answer": SECRET, "gameConfigId": GAME_CONFIG_ID})

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_INPUT"
    assert store.commitments == {}
    assert ledger.submissions == []

def test_verify_response_route(client, store):
    _commit(client)
    add_attempt(store, submitted_answer="ALPHA-111")

    response = client.post("/api/zk/verify-response", json={"attemptId": ATTEMPT_ID})
    assert response.status_code == 200

    body = response.json()
    assert body["verified"] is True
    assert body["result"] == "incorrect"
    assert body["proof"]["anchor"]["anchorId"] == 1
    assert body["transparency"]["commitmentHash"] == body["publicInputs"][0]

def test_verify_requires_attempt_id(client):
    response = client.post("/api/zk/verify-response", json={})
    assert response.status_code == 400
    assert response.json()["error"] == "attemptId required"

def test_unknown_attempt_is_404(client):
    response = client.post("/api/zk/verify-response", json={"attemptId": ATTEMPT_ID})
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"

def test_proof_lookup(client):
    cid = _commit(client).json()["archive"]["cid"]

    response = client.get(f"/api/zk/proof/{cid}")
    assert response.status_code == 200
    assert response.json()["proof"]["type"] == "answer_existence"

def test_unknown_proof_is_502(client):
    response = client.get("/api/zk/proof/sha256-missing")
    assert response.status_code == 502
    assert response.json()["code"] == "ARCHIVE_FAILED"

def test_ledger_revert_is_502_with_reason(settings, oracle):
    oracle.ledger = RevertingLedger("Not oracle")
    with TestClient(create_app(settings=settings, orchestrator=oracle)) as client:
        response = _commit(client)

    assert response.status_code == 502
    assert response.json()["reason"] == "Not oracle"
