"""End-to-end tests for report generation with fake CRM and store."""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest
from cryptography.fernet import Fernet

from integrations.google_analytics import GoogleAnalyticsClient
from integrations.google_business_profile import GoogleBusinessProfileClient

from models.report_models import ReportSettings, TrackedForm, TrackedList
from reporting.narrative import NarrativeGenerator, NarrativeInsights
from reporting.pipeline import ReportPipeline
from scripts.lib.credentials import CredentialCipher
from scripts.lib.errors import (
    APIAuthError,
    APIError,
    APINotFoundError,
    NarrativeGenerationError,
    ReportGenerationError,
)
from scripts.lib.pagination import Page, PaginationResult
from scripts.lib.token_cache import AccessToken, ConnectionManager

NOW = datetime(2026, 1, 10, tzinfo=timezone.utc)


def ms(*args):
    return str(int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000))


class FakeHubSpot:
    def __init__(self, token, deals_error=None, deals_delay=0.0):
        self.token = token
        self.deals_error = deals_error
        self.deals_delay = deals_delay
        self.count_calls = []

    async def fetch_owners(self):
        return [{"id": "1", "firstName": "Ada", "lastName": "Lovelace"}]

    async def fetch_pipelines(self):
        return [{
            "id": "default", "label": "Sales Pipeline",
            "stages": [
                {"id": "open", "label": "Open", "metadata": {"isClosed": "false", "probability": "0.5"}},
                {"id": "won", "label": "Won", "metadata": {"isClosed": "true", "probability": "1.0"}},
            ],
        }]

    async def fetch_deals(self):
        if self.deals_delay:
            await asyncio.sleep(self.deals_delay)
        if self.deals_error:
            raise self.deals_error
        return PaginationResult(records=[
            {"id": "d1", "properties": {
                "amount": "1000", "dealstage": "won", "pipeline": "default", "hubspot_owner_id": "1",
                "createdate": "2025-02-01T00:00:00Z", "closedate": "2025-05-01T00:00:00Z"}},
            {"id": "d2", "properties": {
                "amount": "250", "dealstage": "open", "pipeline": "default",
                "createdate": "2025-08-15T00:00:00Z"}},
        ], pages=1)

    async def fetch_contacts(self):
        return PaginationResult(records=[
            {"id": "c1", "properties": {
                "lifecyclestage": "salesqualifiedlead",
                "hs_lifecyclestage_marketingqualifiedlead_date": "2025-01-20T00:00:00Z",
                "hs_lifecyclestage_salesqualifiedlead_date": "2025-02-20T00:00:00Z"}},
            {"id": "c2", "properties": {"lifecyclestage": "lead"}},
        ], pages=1)

    async def fetch_companies(self):
        return PaginationResult(records=[
            {"id": "co1", "properties": {"createdate": "2025-11-02T00:00:00Z"}},
        ], pages=1)

    async def fetch_deal_contact_ids(self, deal_ids):
        return {"d1": ["c1"], "d2": ["c2"]}

    async def count_created_between(self, object_type, start_ms, end_ms):
        self.count_calls.append((start_ms, end_ms))
        return 3

    async def form_submissions_page(self, guid, after=None):
        if guid == "missing":
            raise APINotFoundError(f"/form-integrations/v1/submissions/forms/{guid}")
        return Page([{"submittedAt": ms(2025, 3, 1)}, {"submittedAt": ms(2024, 12, 1)}], None)

    async def get_list(self, list_id):
        return {"list": {"listId": list_id, "name": "Newsletter", "size": 42}}


class FakeStore:
    def __init__(self, **settings):
        self.cipher = CredentialCipher(Fernet.generate_key())
        self.settings = settings
        self.saved = []

    def get_account(self, account_id):
        return {"id": account_id, "account_name": "Acme Ltd"}

    def get_settings(self, account_id):
        return ReportSettings(hubspot_account_id=account_id, **self.settings)

    def list_tracked_forms(self, account_id):
        return [
            TrackedForm(hubspot_account_id=account_id, form_guid="f1", form_name="Contact Us"),
            TrackedForm(hubspot_account_id=account_id, form_guid="missing"),
        ]

    def list_tracked_lists(self, account_id):
        return [TrackedList(hubspot_account_id=account_id, list_id="7")]

    def list_goals(self, account_id, year):
        return []

    def get_terminology(self, account_id):
        return [("MQL", "Marketing qualified lead")]

    def save_report(self, account_id, title, report_data, generated_at):
        row = {"id": len(self.saved) + 1, "hubspot_account_id": account_id,
               "title": title, "report_data": report_data}
        self.saved.append(row)
        return row


class FakeNarrative(NarrativeGenerator):
    def __init__(self, error=None):
        self.error = error
        self.summaries = []

    async def generate(self, verified_summary, focus_areas=None, terminology=()):
        self.summaries.append((verified_summary, focus_areas, list(terminology)))
        if self.error:
            raise self.error
        return NarrativeInsights(["Won deals: 1"], ["Leads steady"], ["Track more forms"])


async def no_sleep(delay):
    return None


async def refresher(account):
    return AccessToken("tok", None)


def build(store=None, narrative=None, analytics=None, gbp_factory=None, **hubspot_kwargs):
    hubspots = []

    def factory(token):
        client = FakeHubSpot(token, **hubspot_kwargs)
        hubspots.append(client)
        return client

    pipeline = ReportPipeline(
        store or FakeStore(),
        ConnectionManager(refresher),
        narrative=narrative or FakeNarrative(),
        hubspot_factory=factory,
        analytics=analytics,
        gbp_factory=gbp_factory or GoogleBusinessProfileClient,
        clock=lambda: NOW,
        quarter_delay=0,
        sleep=no_sleep,
    )
    return pipeline, hubspots


class TestReportPipeline:
    @pytest.mark.asyncio
    async def test_full_report(self):
        store = FakeStore()
        narrative = FakeNarrative()
        pipeline, hubspots = build(store, narrative)

        row = await pipeline.generate("acc", 2025, focus_areas="pipeline")

        assert row["id"] == 1
        assert len(store.saved) == 1
        assert hubspots[0].token == "tok"
        report = row["report_data"]
        assert report["title"] == "2025 Quarterly KPI Report"
        assert report["subtitle"] == "Acme Ltd"

        rows = {r["metric"]: r for r in report["kpiTable"]["rows"]}
        assert rows["new_contacts"]["actual"] == {"Q1": 3, "Q2": 3, "Q3": 3, "Q4": 3, "total": 12}
        assert rows["new_deals"]["actual"]["total"] == 2
        assert rows["closed_won"]["actual"]["Q2"] == 1
        assert rows["closed_won"]["valueActual"]["Q2"] == 1000.0
        assert rows["new_companies"]["actual"]["Q4"] == 1
        assert rows["mql_deals"]["actual"]["Q1"] == 1
        assert rows["sql_deals"]["actual"]["Q1"] == 1
        assert rows["pipeline:default"]["actual"]["total"] == 2
        assert rows["form:f1"]["actual"]["total"] == 1
        assert len(hubspots[0].count_calls) == 4

        assert report["dealsByOwner"][0] == {"owner": "Ada Lovelace", "count": 1, "value": 1000.0}
        assert report["lists"][0]["size"] == 42
        assert report["forms"][1]["status"].startswith("Form unavailable")
        assert report["traffic"]["websiteSessionsStatus"].startswith("Google Analytics is not configured")
        assert "Google Business Profile is not connected" in report["dataNotes"]
        assert report["revenueInsights"] == ["Won deals: 1"]

        summary, focus, terms = narrative.summaries[0]
        assert "- Total Deals: 2" in summary
        assert focus == "pipeline"
        assert terms == [("MQL", "Marketing qualified lead")]

    @pytest.mark.asyncio
    async def test_year_defaults_to_current(self):
        pipeline, _ = build()
        row = await pipeline.generate("acc")
        assert row["report_data"]["year"] == 2026

    @pytest.mark.asyncio
    async def test_narrative_failure_writes_nothing(self):
        store = FakeStore()
        pipeline, _ = build(store, FakeNarrative(error=NarrativeGenerationError("model down")))
        with pytest.raises(NarrativeGenerationError):
            await pipeline.generate("acc", 2025)
        assert store.saved == []

    @pytest.mark.asyncio
    async def test_core_fetch_failure_aborts(self):
        store = FakeStore()
        pipeline, _ = build(store, deals_error=APIError("boom", status_code=500, url="/deals"))
        with pytest.raises(APIError):
            await pipeline.generate("acc", 2025)
        assert store.saved == []

    @pytest.mark.asyncio
    async def test_auth_failure_invalidates_cached_token(self):
        pipeline, _ = build(deals_error=APIAuthError("/crm/v3/objects/deals"))
        await pipeline.connections.get_access_token({"id": "acc"})
        with pytest.raises(APIAuthError):
            await pipeline.generate("acc", 2025)
        assert pipeline.connections.cache_for("acc").get() is None

    @pytest.mark.asyncio
    async def test_timeout(self):
        store = FakeStore()
        pipeline, _ = build(store, deals_delay=5)
        with pytest.raises(ReportGenerationError) as exc:
            await pipeline.generate("acc", 2025, timeout=0.05)
        assert exc.value.details["step"] == "timeout"
        assert store.saved == []


class TestSupplementarySourcesDegrade:
    @pytest.mark.asyncio
    async def test_malformed_service_account_still_saves_report(self):
        store = FakeStore(ga_property_id="123")
        analytics = GoogleAnalyticsClient(service_account_info={"type": "service_account"})
        pipeline, _ = build(store, analytics=analytics)

        row = await pipeline.generate("acc", 2025)

        assert len(store.saved) == 1
        traffic = row["report_data"]["traffic"]
        assert traffic["websiteSessionsStatus"].startswith("Google Analytics API error for every quarter")
        assert traffic["channelsStatus"].startswith("Channel breakdown unavailable")

    @pytest.mark.asyncio
    async def test_non_json_analytics_body_still_saves_report(self):
        async def token():
            return "ga-token"

        store = FakeStore(ga_property_id="123")
        analytics = GoogleAnalyticsClient(
            token_provider=token,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"<html>")),
        )
        pipeline, _ = build(store, analytics=analytics)

        row = await pipeline.generate("acc", 2025)

        assert len(store.saved) == 1
        assert "unreadable response" in row["report_data"]["traffic"]["websiteSessionsStatus"]

    @pytest.mark.asyncio
    async def test_business_profile_network_error_still_saves_report(self):
        def handler(request):
            raise httpx.ConnectError("network down", request=request)

        def gbp_factory(refresh_token):
            return GoogleBusinessProfileClient(
                refresh_token, client_id="id", client_secret="secret",
                transport=httpx.MockTransport(handler),
            )

        store = FakeStore(gbp_location="locations/1")
        store.settings["gbp_refresh_token"] = store.cipher.encrypt("refresh")
        pipeline, _ = build(store, gbp_factory=gbp_factory)

        row = await pipeline.generate("acc", 2025)

        assert len(store.saved) == 1
        report = row["report_data"]
        assert report["businessProfile"] is None
        assert report["businessProfileStatus"].startswith("Business profile unavailable")
