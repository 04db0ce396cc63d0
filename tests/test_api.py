"""
API tests for the medication safety routes
"""

from datetime import date

import pytest
from fastapi.testclient import TestClient

from medsafety.main import app
from medsafety.modules.safety_engine import MedicationSafetyEngine
from medsafety.routes.safety import get_engine
from medsafety.services.unknown_drugs import UnknownDrugRecorder


@pytest.fixture
def recorder():
    return UnknownDrugRecorder()


@pytest.fixture
def client(recorder):
    """Test client with an in-memory recorder in place of the file log"""
    engine = MedicationSafetyEngine(recorder=recorder, clock=lambda: date(2026, 1, 15))
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class TestHealth:
    """Test health endpoints"""

    def test_health(self, client):
        """Test liveness"""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_ready_after_startup(self, client):
        """Test readiness once knowledge tables are loaded"""
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"


class TestEvaluateEndpoint:
    """Test POST /api/v1/safety/evaluate"""

    def test_blocking_alert(self, client):
        """Test metformin in severe CKD"""
        response = client.post("/api/v1/safety/evaluate", json={
            "egfr": 25,
            "current_medications": [{"name": "metformin", "class": "biguanide"}]
        })

        assert response.status_code == 200
        body = response.json()
        assert body["alerts"][0]["alert_code"] == "RENAL_METFORMIN_CONTRAINDICATED"
        assert body["alerts"][0]["severity"] == "CRITICAL"
        assert body["has_blocking_alerts"] is True
        assert "RENAL" in body["timing_ms"]

    def test_alert_extras_serialized(self, client):
        """Test module-specific alert fields reach the response"""
        response = client.post("/api/v1/safety/evaluate", json={
            "patient_age": 80,
            "current_medications": [
                {"name": "diphenhydramine"}, {"name": "oxybutynin"}, {"name": "amitriptyline"}
            ]
        })

        acb = [a for a in response.json()["alerts"] if a["alert_code"] == "BEERS_ACB_HIGH"]
        assert acb[0]["acb_score"] == 9

    def test_malformed_input_returns_alerts(self, client):
        """Test invalid fields come back as CRITICAL alerts, not a 422"""
        response = client.post("/api/v1/safety/evaluate", json={"egfr": "low"})

        assert response.status_code == 200
        body = response.json()
        assert body["alerts"][0]["alert_code"] == "VALIDATION_INPUT_INVALID"
        assert body["alerts"][0]["field"] == "egfr"

    def test_non_object_body_rejected(self, client):
        """Test a body that is not a JSON object"""
        response = client.post("/api/v1/safety/evaluate", json=[1, 2, 3])

        assert response.status_code == 422


class TestToxidromeEndpoint:
    """Test POST /api/v1/safety/toxidromes"""

    def test_opioid_toxidrome(self, client):
        """Test the opioid triad"""
        response = client.post("/api/v1/safety/toxidromes", json={
            "symptoms": ["miosis", "respiratory_depression", "decreased LOC"]
        })

        assert response.status_code == 200
        assert response.json()[0]["toxidrome"] == "opioid"


class TestConditionEndpoint:
    """Test GET /api/v1/safety/conditions/derive"""

    def test_derive_conditions(self, client):
        """Test condition keys and avoid-effects from codes"""
        response = client.get("/api/v1/safety/conditions/derive", params=[("codes", "I50.32"), ("codes", "G30.9")])

        assert response.status_code == 200
        body = response.json()
        assert body["condition_keys"] == ["heart_failure", "dementia"]
        assert "anticholinergic" in body["avoid_effects"]
        assert body["by_condition"]["dementia"]["reason"]

    def test_codes_required(self, client):
        """Test the codes parameter is mandatory"""
        assert client.get("/api/v1/safety/conditions/derive").status_code == 422


class TestUnknownDrugEndpoint:
    """Test GET /api/v1/safety/unknown-drugs/summary"""

    def test_summary_after_evaluation(self, client):
        """Test unknown drugs surface in the summary"""
        client.post("/api/v1/safety/evaluate", json={
            "patient_age": 75,
            "current_medications": [{"name": "zorbitrex"}]
        })
        response = client.get("/api/v1/safety/unknown-drugs/summary")

        assert response.status_code == 200
        assert response.json()["drugs"] == ["zorbitrex"]

    def test_summary_disabled(self):
        """Test 404 when recording is disabled"""
        app.dependency_overrides[get_engine] = lambda: MedicationSafetyEngine(recorder=None)
        try:
            with TestClient(app) as test_client:
                response = test_client.get("/api/v1/safety/unknown-drugs/summary")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 404
        assert "disabled" in response.json()["error"]
        assert response.json()["path"] == "/api/v1/safety/unknown-drugs/summary"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
