"""
HTTP tests for the leveling, training and health routes.
Stores and the completion gateway are swapped in through dependency overrides.
"""

import json

import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedGateway, make_item
from app.config import settings
from app.dependencies import get_comparison_store, get_gateway, get_training_store
from app.main import create_app
from app.models.enums import ModerationStatus
from app.schemas.comparison import ComparisonResult
from app.schemas.leveling import LevelingConfig
from app.schemas.training import PromptVariant, TrainingContribution


@pytest.fixture
def seeded_store(comparison_store):
    rows = (("doc-a", 10000, 100, 100), ("doc-b", 6000, 50, 120), ("doc-c", 13500, 150, 90))
    for doc_id, total, quantity, unit_price in rows:
        comparison_store.items[doc_id] = [
            make_item(doc_id, "Duplex receptacles", total, quantity=quantity, unit_price=unit_price, id=f"{doc_id}-1"),
        ]
    comparison_store.comparisons["proj-1"] = ComparisonResult(project_id="proj-1", total_bids=3)
    comparison_store.leveling["proj-1"] = LevelingConfig(enabled=False)
    return comparison_store


@pytest.fixture
def client(seeded_store, training_store):
    app = create_app()
    app.dependency_overrides[get_comparison_store] = lambda: seeded_store
    app.dependency_overrides[get_training_store] = lambda: training_store
    app.dependency_overrides[get_gateway] = lambda: ScriptedGateway(configured=False)
    return TestClient(app)


BASELINE_URL = "/api/v1/projects/proj-1/leveling/baselines/Duplex receptacles"


class TestLevelingRoutes:

    def test_get_initial_state(self, client):
        response = client.get("/api/v1/projects/proj-1/leveling")

        assert response.status_code == 200
        body = response.json()
        assert body["config"]["enabled"] is False
        assert body["result"]["ranking_changed"] is False

    def test_set_baseline(self, client, seeded_store):
        response = client.put(BASELINE_URL, json={"contractor_id": "doc-a", "quantity": 100, "unit": "ea"})

        assert response.status_code == 200
        body = response.json()
        assert body["config"]["version"] == 1
        totals = {t["contractor_id"]: t["leveled_total"] for t in body["result"]["totals"]}
        assert totals == {"doc-a": 10000, "doc-b": 12000, "doc-c": 9000}
        assert body["result"]["ranking_changed"] is True
        assert seeded_store.items["doc-b"][0].leveled_price == 12000

    def test_unknown_project_is_404(self, client):
        response = client.get("/api/v1/projects/nope/leveling")
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"

    def test_invalid_baseline_is_422(self, client):
        response = client.put(BASELINE_URL, json={"contractor_id": "doc-z", "quantity": 100})
        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "invalid_baseline"

    def test_stale_version_is_409(self, client):
        client.put(BASELINE_URL, json={"contractor_id": "doc-a", "quantity": 100})

        response = client.put(BASELINE_URL, json={"contractor_id": "doc-c", "quantity": 150, "expected_version": 0})

        assert response.status_code == 409
        assert response.json()["detail"]["current_version"] == 1

    def test_clear_baseline_and_leveling(self, client):
        client.put(BASELINE_URL, json={"contractor_id": "doc-a", "quantity": 100})

        cleared = client.delete(BASELINE_URL, params={"expected_version": 1})
        assert cleared.status_code == 200
        assert cleared.json()["config"]["baselines"] == []

        reset = client.delete("/api/v1/projects/proj-1/leveling")
        assert reset.status_code == 200
        assert reset.json()["config"]["enabled"] is False

    def test_item_key_with_slash(self, client, seeded_store):
        for items in seeded_store.items.values():
            items[0].description = "Receptacles 20A/120V"
        url = "/api/v1/projects/proj-1/leveling/baselines/Receptacles 20A/120V"

        response = client.put(url, json={"contractor_id": "doc-a", "quantity": 100})

        assert response.status_code == 200
        body = response.json()
        assert body["config"]["baselines"][0]["item_key"] == "Receptacles 20A/120V"
        totals = {t["contractor_id"]: t["leveled_total"] for t in body["result"]["totals"]}
        assert totals == {"doc-a": 10000, "doc-b": 12000, "doc-c": 9000}

        cleared = client.delete(url)
        assert cleared.status_code == 200
        assert cleared.json()["config"]["baselines"] == []

    def test_replace_config(self, client):
        response = client.put("/api/v1/projects/proj-1/leveling", json={
            "leveling": {
                "enabled": True,
                "baselines": [{"item_key": "Duplex receptacles", "contractor_id": "doc-c", "quantity": 150}],
            },
        })

        assert response.status_code == 200
        assert response.json()["result"]["leveled_order"][0] == "doc-c"


class TestTrainingRoutes:

    def test_validate_jsonl(self, client):
        bad = json.dumps({"messages": [{"role": "system", "content": "s"}, {"role": "user", "content": "u"}]})

        response = client.post("/api/v1/training/exports/validate", json={"content": bad})

        assert response.status_code == 200
        assert response.json() == {
            "is_valid": False,
            "errors": ["Line 1: Missing assistant message"],
            "example_count": 1,
        }

    def test_export_without_corrections_is_422(self, client):
        response = client.post("/api/v1/training/exports", json={})
        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "no_approved_corrections"

    def test_export(self, client, training_store):
        training_store.contributions.append(TrainingContribution(
            id="c1",
            trade_type="electrical",
            correction_type="description",
            original_value={"text": "elec rough"},
            corrected_value={"text": "Electrical rough-in wiring"},
            raw_text_snippet="Elec rough $45,000",
            moderation_status=ModerationStatus.APPROVED,
        ))

        response = client.post("/api/v1/training/exports", json={"include_metadata": True})

        assert response.status_code == 200
        assert response.json()["total_examples"] == 1
        assert len(training_store.exports) == 1

    def test_create_and_activate_variant(self, client, training_store):
        training_store.variants["old"] = PromptVariant(
            id="old", trade_type="electrical", pipeline_stage="extraction",
            name="old", content="old", is_active=True,
        )

        created = client.post("/api/v1/training/variants", json={
            "trade_type": "electrical", "pipeline_stage": "extraction",
            "name": "terse", "content": "Be terse.", "is_active": True,
        })

        assert created.status_code == 201
        assert created.json()["is_active"] is True
        assert training_store.variants["old"].is_active is False

    def test_activate_unknown_variant_is_404(self, client):
        assert client.post("/api/v1/training/variants/missing/activate").status_code == 404

    def test_pattern_analysis(self, client):
        response = client.post("/api/v1/training/patterns/analyze", json={"trade_type": "electrical"})
        assert response.status_code == 200
        assert response.json()["analyzed"] == 0


class TestHealthAndAuth:

    def test_health_reports_missing_credential(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["completion_service"] == "missing_credential"

    def test_api_key_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "API_KEY", "secret")

        assert client.get("/api/v1/projects/proj-1/leveling").status_code == 401
        ok = client.get("/api/v1/projects/proj-1/leveling", headers={"X-API-Key": "secret"})
        assert ok.status_code == 200
