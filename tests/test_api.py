"""Tests for the API routes and error mapping."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from dashboard.api.deps import (
    get_connections,
    get_gbp_factory,
    get_hubspot_opener,
    get_pipeline,
    get_store,
)
from dashboard.api.main import app
from models.report_models import ReportSettings, TrackedForm, TrackedList
from reporting.goals import merge_goal_update
from scripts.lib.errors import (
    APINotFoundError,
    APIPermissionError,
    MissingConfigurationError,
    NarrativeGenerationError,
)


class FakePipeline:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def generate(self, account_id, year=None, focus_areas=None, timeout=None):
        self.calls.append((account_id, year, focus_areas, timeout))
        if self.error:
            raise self.error
        return {"id": 1, "title": "2025 Quarterly KPI Report", "report_data": {"year": 2025}}


class FakeCipher:
    def decrypt(self, value):
        return f"plain-{value}"


class FakeConnections:
    def __init__(self):
        self.invalidated = []

    def invalidate(self, account_id):
        self.invalidated.append(account_id)


class FakePortal:
    """HubSpot client stand-in for the picker and name lookups."""

    async def get_all_forms(self):
        return [{"id": "f1", "name": "Contact"}, {"id": "f2", "name": "Demo"}]

    async def get_form(self, form_guid):
        return {"id": form_guid, "name": "Demo Request"}

    async def get_all_lists(self):
        return [{"listId": "7", "name": "Newsletter", "size": 42}]

    async def get_list(self, list_id):
        return {"list": {"listId": list_id, "name": "VIPs", "size": 3}}


class FakeStore:
    def __init__(self):
        self.goals = {}
        self.settings = ReportSettings(hubspot_account_id="acc", gbp_refresh_token="encrypted")
        self.created = []
        self.updates = []
        self.deleted_accounts = []
        self.cipher = FakeCipher()

    def list_goals(self, account_id, year=None):
        return [g for g in self.goals.values() if year is None or g.year == year]

    def upsert_goal(self, account_id, update):
        key = (update.goal_type, update.target_id, update.year)
        self.goals[key] = merge_goal_update(self.goals.get(key), update, account_id)
        return self.goals[key]

    def get_settings(self, account_id):
        return self.settings

    def list_tracked_forms(self, account_id):
        return [TrackedForm(id=3, hubspot_account_id=account_id, form_guid="f1", form_name="Contact")]

    def add_tracked_form(self, account_id, form_guid, form_name):
        return TrackedForm(id=4, hubspot_account_id=account_id, form_guid=form_guid, form_name=form_name)

    def delete_tracked_form(self, row_id):
        self.deleted = row_id

    def add_tracked_list(self, account_id, list_id, list_name):
        return TrackedList(id=5, hubspot_account_id=account_id, list_id=list_id, list_name=list_name)

    def save_settings(self, account_id, update):
        self.updates.append(update)
        data = self.settings.model_dump()
        data.update(update.model_dump(exclude_unset=True))
        self.settings = ReportSettings(**data)
        return self.settings

    def delete_account(self, account_id):
        self.deleted_accounts.append(account_id)

    def list_reports(self, account_id, limit=20):
        return [{"id": 1, "title": "2025 Quarterly KPI Report"}][:limit]

    def create_account(self, user_id, api_key, account_name, portal_id=None):
        self.created.append((user_id, api_key, account_name, portal_id))
        return {"id": "acc", "account_name": account_name, "portal_id": portal_id}


@pytest.fixture
def store():
    return FakeStore()


def fake_opener():
    async def open_client(account_id):
        return FakePortal()
    return open_client


@pytest.fixture
def connections():
    return FakeConnections()


@pytest.fixture
def client(store, connections):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_hubspot_opener] = fake_opener
    app.dependency_overrides[get_connections] = lambda: connections
    yield TestClient(app)
    app.dependency_overrides.clear()


def use_pipeline(pipeline):
    app.dependency_overrides[get_pipeline] = lambda: pipeline


class TestReports:
    def test_generate(self, client):
        pipeline = FakePipeline()
        use_pipeline(pipeline)
        response = client.post("/api/reports/generate", json={"account_id": "acc", "year": 2025})
        assert response.status_code == 200
        assert response.json()["id"] == 1
        assert pipeline.calls[0][:3] == ("acc", 2025, None)

    @pytest.mark.parametrize("error, status", [
        (APIPermissionError("/crm/v3/objects/contacts", missing_scopes=["crm.objects.contacts.read"]), 403),
        (APINotFoundError("hubspot_accounts/acc"), 404),
        (MissingConfigurationError("HubSpot", "api_key"), 400),
        (NarrativeGenerationError("model down"), 502),
    ])
    def test_error_mapping(self, client, error, status):
        use_pipeline(FakePipeline(error))
        response = client.post("/api/reports/generate", json={"account_id": "acc"})
        assert response.status_code == status
        assert response.json()["error"] == error.code

    def test_missing_scopes_in_body(self, client):
        use_pipeline(FakePipeline(APIPermissionError("/x", missing_scopes=["forms"])))
        response = client.post("/api/reports/generate", json={"account_id": "acc"})
        assert response.json()["missing_scopes"] == ["forms"]

    def test_rejects_non_positive_timeout(self, client):
        use_pipeline(FakePipeline())
        response = client.post("/api/reports/generate", json={"account_id": "acc", "timeout": 0})
        assert response.status_code == 422

    def test_list(self, client):
        response = client.get("/api/reports/acc?limit=5")
        assert response.json()["count"] == 1


class TestGoals:
    def test_put_then_get(self, client):
        response = client.put("/api/goals/acc", json={"goals": [
            {"goal_type": "metric", "target_id": "new_contacts", "year": 2025, "q1_goal": "1,000", "q2_goal": -2},
        ]})
        assert response.status_code == 200
        saved = response.json()["results"][0]
        assert saved["q1_goal"] == 1000
        assert saved["q2_goal"] == 0

        client.put("/api/goals/acc", json={"goals": [
            {"target_id": "new_contacts", "year": 2025, "q3_goal": 5},
        ]})
        goals = client.get("/api/goals/acc?year=2025").json()["results"]
        assert len(goals) == 1
        assert (goals[0]["q1_goal"], goals[0]["q3_goal"]) == (1000, 5)


class TestSettingsAndTracked:
    def test_settings_hide_refresh_token(self, client):
        data = client.get("/api/settings/acc").json()
        assert "gbp_refresh_token" not in data
        assert data["gbp_connected"] is True
        assert data["mql_stage"] == "marketingqualifiedlead"

    def test_tracked_forms(self, client, store):
        assert client.get("/api/tracked/acc/forms").json()["count"] == 1
        created = client.post("/api/tracked/acc/forms", json={"form_guid": "f9"})
        assert created.status_code == 201
        assert created.json()["form_name"] == "Demo Request"
        assert client.delete("/api/tracked/forms/4").status_code == 204
        assert store.deleted == "4"

    def test_named_form_skips_lookup(self, client):
        created = client.post("/api/tracked/acc/forms", json={"form_guid": "f9", "form_name": "Mine"})
        assert created.json()["form_name"] == "Mine"

    def test_available_forms(self, client):
        data = client.get("/api/tracked/acc/available-forms").json()
        assert data["count"] == 2
        assert data["results"][0] == {"form_guid": "f1", "form_name": "Contact"}

    def test_available_lists(self, client):
        data = client.get("/api/tracked/acc/available-lists").json()
        assert data["results"] == [{"list_id": "7", "list_name": "Newsletter", "size": 42}]

    def test_add_list_looks_up_name(self, client):
        created = client.post("/api/tracked/acc/lists", json={"list_id": "12"})
        assert created.status_code == 201
        assert created.json()["list_name"] == "VIPs"

    def test_settings_accept_refresh_token(self, client, store):
        response = client.put("/api/settings/acc", json={"gbp_refresh_token": "rt", "gbp_location": "locations/1"})
        assert response.status_code == 200
        assert store.updates[0].gbp_refresh_token == "rt"
        data = response.json()
        assert "gbp_refresh_token" not in data
        assert data["gbp_connected"] is True
        assert data["gbp_location"] == "locations/1"

    def test_gbp_locations(self, client):
        seen = {}

        class FakeProfile:
            def __init__(self, refresh_token):
                seen["token"] = refresh_token

            async def all_locations(self):
                return [{"account": "Acme", "name": "locations/1", "title": "Acme", "address": ""}]

        app.dependency_overrides[get_gbp_factory] = lambda: FakeProfile
        data = client.get("/api/settings/acc/gbp-locations").json()
        assert data["count"] == 1
        assert seen["token"] == "plain-encrypted"

    def test_gbp_locations_need_a_token(self, client, store):
        store.settings = ReportSettings(hubspot_account_id="acc")
        response = client.get("/api/settings/acc/gbp-locations")
        assert response.status_code == 400


class TestAccounts:
    def test_invalid_key_is_rejected(self, client):
        with patch("dashboard.api.routers.accounts.validate_api_key",
                   AsyncMock(return_value={"valid": False, "error": "Invalid API key"})):
            response = client.post("/api/accounts", json={"user_id": "u1", "api_key": "bad"})
        assert response.status_code == 400

    def test_valid_key_is_stored(self, client, store):
        check = {"valid": True, "portalId": "123", "accountName": "HubSpot Account 123"}
        with patch("dashboard.api.routers.accounts.validate_api_key", AsyncMock(return_value=check)):
            response = client.post("/api/accounts", json={"user_id": "u1", "api_key": "pat"})
        assert response.status_code == 201
        assert store.created == [("u1", "pat", "HubSpot Account 123", "123")]

    def test_validate_key(self, client, store):
        check = {"valid": True, "portalId": "123", "accountName": "HubSpot Account 123"}
        with patch("dashboard.api.routers.accounts.validate_api_key", AsyncMock(return_value=check)):
            response = client.post("/api/accounts/validate-key", json={"api_key": "pat"})
        assert response.json() == check
        assert store.created == []

    def test_validate_key_requires_key(self, client):
        assert client.post("/api/accounts/validate-key", json={"api_key": ""}).status_code == 422

    def test_disconnect(self, client, store, connections):
        assert client.delete("/api/accounts/acc").status_code == 204
        assert store.deleted_accounts == ["acc"]
        assert connections.invalidated == ["acc"]


def test_health(client):
    with patch("scripts.lib.supabase_client.get_client", side_effect=RuntimeError("offline")):
        data = client.get("/api/health").json()
    assert data["status"] == "healthy"
    assert data["integrations"]["supabase"] is False
