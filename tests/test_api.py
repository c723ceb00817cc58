"""HTTP surface tests: FastAPI app wired to in-memory services.

The database dependency is overridden with an AsyncMock and the lifespan
is not entered, so no engine is ever created.
"""

import uuid

import pytest
from fastapi.testclient import TestClient

from aegis_server.app import create_app
from aegis_server.config import ServerSettings
from aegis_server.dependencies import get_db

from helpers.factories import (
    ELIGIBLE_ANSWERS,
    INELIGIBLE_ANSWERS,
    TENANT_A,
    TENANT_B,
)

ADMIN_KEY = "admin-secret"
TENANT = {"X-Tenant-ID": TENANT_A}
OTHER_TENANT = {"X-Tenant-ID": TENANT_B}
PARTNER = {**TENANT, "X-Partner-ID": "pharmacy-042"}
ADMIN = {**TENANT, "X-Admin-Key": ADMIN_KEY}


def _client(stack, db, **settings) -> TestClient:
    app = create_app(ServerSettings(admin_api_key=ADMIN_KEY, **settings))
    app.state.questionnaires = stack.questionnaires
    app.state.screening = stack.screening
    app.state.codes = stack.codes

    async def override_db():
        yield db

    app.dependency_overrides[get_db] = override_db
    return TestClient(app)


@pytest.fixture
def client(stack, mock_db):
    return _client(stack, mock_db)


def _publish(client, definition, headers=ADMIN) -> str:
    resp = client.post("/api/v1/admin/programs", json={"name": "OTC"}, headers=headers)
    assert resp.status_code == 201, resp.text
    program_id = resp.json()["id"]
    resp = client.post(f"/api/v1/admin/programs/{program_id}/versions", json=definition, headers=headers)
    assert resp.status_code == 201, resp.text
    return program_id


def _session(client, program_id, headers=TENANT) -> str:
    resp = client.post(f"/api/v1/programs/{program_id}/sessions", headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["sessionId"]


def _eligible_code(client, definition, **body) -> str:
    session_id = _session(client, _publish(client, definition))
    resp = client.post(f"/api/v1/sessions/{session_id}/answers", json={"answers": ELIGIBLE_ANSWERS}, headers=TENANT)
    assert resp.status_code == 200, resp.text
    resp = client.post(f"/api/v1/sessions/{session_id}/code", json=body, headers=TENANT)
    assert resp.status_code == 201, resp.text
    return resp.json()["code"]


# =====================================================================
# Sessions
# =====================================================================

class TestSessionEndpoints:

    def test_start_session(self, client, age_pregnancy):
        program_id = _publish(client, age_pregnancy)
        resp = client.post(f"/api/v1/programs/{program_id}/sessions", headers=TENANT)

        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "started"
        assert data["versionNumber"] == 1
        assert [q["id"] for q in data["questions"]] == ["age_check", "pregnancy_check"]
        assert data["questions"][1]["helpText"] == "Answer yes if you are unsure."

    def test_submit_and_read_back(self, client, age_pregnancy):
        session_id = _session(client, _publish(client, age_pregnancy))
        resp = client.post(
            f"/api/v1/sessions/{session_id}/answers",
            json={"answers": INELIGIBLE_ANSWERS},
            headers=TENANT,
        )
        assert resp.status_code == 200
        assert resp.json()["outcome"] == "ineligible"

        data = client.get(f"/api/v1/sessions/{session_id}", headers=TENANT).json()
        assert data["status"] == "completed"
        assert data["outcome"] == "ineligible"

    def test_answer_errors_are_listed(self, client, age_pregnancy):
        session_id = _session(client, _publish(client, age_pregnancy))
        resp = client.post(
            f"/api/v1/sessions/{session_id}/answers",
            json={"answers": {"age_check": "maybe", "colour": "blue"}},
            headers=TENANT,
        )
        assert resp.status_code == 422
        body = resp.json()
        assert body["code"] == "answer_validation_failed"
        assert set(body["errors"]) == {"age_check", "colour", "pregnancy_check"}

    def test_second_submission_conflicts(self, client, age_pregnancy):
        session_id = _session(client, _publish(client, age_pregnancy))
        url = f"/api/v1/sessions/{session_id}/answers"
        assert client.post(url, json={"answers": ELIGIBLE_ANSWERS}, headers=TENANT).status_code == 200

        resp = client.post(url, json={"answers": INELIGIBLE_ANSWERS}, headers=TENANT)
        assert resp.status_code == 409
        assert resp.json()["code"] == "already_completed"

    def test_unknown_program(self, client):
        resp = client.post(f"/api/v1/programs/{uuid.uuid4()}/sessions", headers=TENANT)
        assert resp.status_code == 404
        assert resp.json()["code"] == "program_not_found"

    def test_other_tenant_sees_nothing(self, client, age_pregnancy):
        session_id = _session(client, _publish(client, age_pregnancy))
        resp = client.get(f"/api/v1/sessions/{session_id}", headers=OTHER_TENANT)
        assert resp.status_code == 404
        assert session_id not in resp.text


class TestTenantHeader:

    def test_missing_tenant_header(self, client):
        resp = client.get(f"/api/v1/sessions/{uuid.uuid4()}")
        assert resp.status_code == 401

    @pytest.mark.parametrize("value", ["acme", "1 OR 1=1", TENANT_A.replace("-", "")])
    def test_malformed_tenant_header(self, client, value):
        resp = client.get(f"/api/v1/sessions/{uuid.uuid4()}", headers={"X-Tenant-ID": value})
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_tenant_id"

    def test_proxy_secret_enforced(self, stack, mock_db):
        client = _client(stack, mock_db, trusted_proxy_secret="gateway")
        url = f"/api/v1/sessions/{uuid.uuid4()}"
        assert client.get(url, headers=TENANT).status_code == 403
        assert client.get(url, headers={**TENANT, "X-Proxy-Secret": "wrong"}).status_code == 403
        assert client.get(url, headers={**TENANT, "X-Proxy-Secret": "gateway"}).status_code == 404


# =====================================================================
# Codes and partner verification
# =====================================================================

class TestCodeEndpoints:

    def test_issue_code(self, client, age_pregnancy):
        code = _eligible_code(client, age_pregnancy, codeType="ecommerce_jwt", expiresInHours=24)
        assert code.count("-") == 3

    def test_ineligible_session_refused(self, client, age_pregnancy):
        session_id = _session(client, _publish(client, age_pregnancy))
        client.post(f"/api/v1/sessions/{session_id}/answers", json={"answers": INELIGIBLE_ANSWERS}, headers=TENANT)

        resp = client.post(f"/api/v1/sessions/{session_id}/code", headers=TENANT)
        assert resp.status_code == 409
        assert resp.json()["code"] == "not_eligible"

    def test_issue_twice_returns_same_code(self, client, age_pregnancy):
        session_id = _session(client, _publish(client, age_pregnancy))
        client.post(f"/api/v1/sessions/{session_id}/answers", json={"answers": ELIGIBLE_ANSWERS}, headers=TENANT)
        first = client.post(f"/api/v1/sessions/{session_id}/code", headers=TENANT).json()
        second = client.post(f"/api/v1/sessions/{session_id}/code", headers=TENANT).json()
        assert first["code"] == second["code"]

    @pytest.mark.parametrize("body", [{"codeType": "sms"}, {"expiresInHours": -1}])
    def test_bad_issue_body(self, client, body):
        resp = client.post(f"/api/v1/sessions/{uuid.uuid4()}/code", json=body, headers=TENANT)
        assert resp.status_code == 422


class TestVerifyEndpoints:

    def test_redeem_once(self, client, age_pregnancy):
        code = _eligible_code(client, age_pregnancy)
        body = {"code": code.lower(), "transactionId": "txn-1", "metadata": {"store": "12"}}

        resp = client.post("/api/v1/verify", json=body, headers=PARTNER)
        assert resp.status_code == 200
        data = resp.json()
        assert data["valid"] is True
        assert data["code"]["code"] == code
        assert data["session"]["outcome"] == "eligible"

        again = client.post("/api/v1/verify", json=body, headers=PARTNER)
        assert again.status_code == 409
        assert again.json() == {"valid": False, "error": "already_used"}

    def test_expired_code(self, client, age_pregnancy):
        code = _eligible_code(client, age_pregnancy, expiresInHours=0)
        resp = client.post("/api/v1/verify", json={"code": code, "transactionId": "t"}, headers=PARTNER)
        assert resp.status_code == 410
        assert resp.json() == {"valid": False, "error": "expired"}

    @pytest.mark.parametrize("code", ["AEGIS-AAAA-BBBB-CCCC", "not-a-code"])
    def test_unknown_or_malformed_code(self, client, code):
        resp = client.post("/api/v1/verify", json={"code": code, "transactionId": "t"}, headers=PARTNER)
        assert resp.status_code == 404
        assert resp.json() == {"valid": False, "error": "not_found"}

    def test_partner_header_required(self, client):
        resp = client.post("/api/v1/verify", json={"code": "AEGIS-AAAA-BBBB-CCCC", "transactionId": "t"}, headers=TENANT)
        assert resp.status_code == 401

    def test_other_tenant_cannot_redeem(self, client, age_pregnancy):
        code = _eligible_code(client, age_pregnancy)
        headers = {**OTHER_TENANT, "X-Partner-ID": "pharmacy-042"}
        resp = client.post("/api/v1/verify", json={"code": code, "transactionId": "t"}, headers=headers)
        assert resp.status_code == 404

    def test_check_does_not_consume(self, client, age_pregnancy):
        code = _eligible_code(client, age_pregnancy)
        for _ in range(2):
            resp = client.get(f"/api/v1/verify/{code}", headers=PARTNER)
            assert resp.status_code == 200
            data = resp.json()
            assert data["valid"] is True
            assert "error" not in data
            assert "expiresAt" in data

        client.post("/api/v1/verify", json={"code": code, "transactionId": "t"}, headers=PARTNER)
        data = client.get(f"/api/v1/verify/{code}", headers=PARTNER).json()
        assert data["valid"] is False
        assert data["error"] == "already_used"


# =====================================================================
# Admin
# =====================================================================

class TestAdminEndpoints:

    def test_key_required(self, client):
        assert client.post("/api/v1/admin/programs", json={"name": "x"}, headers=TENANT).status_code == 401
        wrong = {**TENANT, "X-Admin-Key": "nope"}
        assert client.post("/api/v1/admin/programs", json={"name": "x"}, headers=wrong).status_code == 403

    def test_disabled_without_configured_key(self, stack, mock_db):
        client = _client(stack, mock_db)
        client.app.state.settings = ServerSettings()
        resp = client.post("/api/v1/admin/programs", json={"name": "x"}, headers=ADMIN)
        assert resp.status_code == 403

    def test_invalid_definition_lists_problems(self, client, age_pregnancy):
        resp = client.post("/api/v1/admin/programs", json={"name": "OTC"}, headers=ADMIN)
        program_id = resp.json()["id"]
        age_pregnancy["ruleset"]["eligible"][0]["question_id"] = "weight"

        resp = client.post(f"/api/v1/admin/programs/{program_id}/versions", json=age_pregnancy, headers=ADMIN)
        assert resp.status_code == 422
        body = resp.json()
        assert body["code"] == "ruleset_configuration_error"
        assert any("weight" in p for p in body["problems"])

    def test_versions_and_activation(self, client, age_pregnancy):
        program_id = _publish(client, age_pregnancy)
        url = f"/api/v1/admin/programs/{program_id}/versions"
        v2 = client.post(url, params={"activate": "false"}, json=age_pregnancy, headers=ADMIN).json()
        assert v2["versionNumber"] == 2
        assert v2["isActive"] is False

        versions = client.get(url, headers=ADMIN).json()
        assert [v["versionNumber"] for v in versions] == [2, 1]

        resp = client.post(f"{url}/{v2['id']}/activate", headers=ADMIN)
        assert resp.status_code == 200
        assert resp.json()["activeVersionId"] == v2["id"]

    def test_migrate_then_publish(self, client, legacy_screener):
        resp = client.post("/api/v1/admin/questionnaires/migrate-legacy", json=legacy_screener, headers=ADMIN)
        assert resp.status_code == 200
        definition = resp.json()
        assert [c["question_id"] for c in definition["ruleset"]["ineligible"]] == ["pregnant"]

        program_id = _publish(client, definition)
        session_id = _session(client, program_id)
        resp = client.post(
            f"/api/v1/sessions/{session_id}/answers",
            json={"answers": {"age": 30, "pregnant": False, "severity": "Mild"}},
            headers=TENANT,
        )
        assert resp.json()["outcome"] == "eligible"

    def test_migrate_rejects_disjunction(self, client, legacy_screener):
        legacy_screener["logic"]["rules"][2]["condition"] = "age >= 12 || pregnant == 'No'"
        resp = client.post("/api/v1/admin/questionnaires/migrate-legacy", json=legacy_screener, headers=ADMIN)
        assert resp.status_code == 422
        assert resp.json()["problems"][0].startswith("rules[2]:")

    def test_sweep_and_stats(self, client, age_pregnancy):
        _eligible_code(client, age_pregnancy, expiresInHours=0)

        resp = client.post("/api/v1/admin/codes/mark-expired", headers=ADMIN)
        assert resp.json() == {"affectedRows": 1, "action": "mark_expired"}
        resp = client.post("/api/v1/admin/codes/mark-expired", headers=ADMIN)
        assert resp.json()["affectedRows"] == 0

        stats = client.get("/api/v1/admin/codes/stats", headers=ADMIN).json()
        assert stats == {"total": 1, "unused": 0, "used": 0, "expired": 1}
