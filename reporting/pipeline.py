"""
Quarterly report generation.

One ``ReportPipeline.generate`` call is one request-scoped task graph:

    load account/settings/goals
      -> token (shared ConnectionManager)
      -> concurrent fetches: owners, pipelines, deals, contacts, companies,
         contacts-by-quarter, GA traffic, business profile, forms, lists
         (deal -> contact associations start once deals are in)
      -> enrichment + aggregation + goal join
      -> narrative -> assembly -> insert report row

Core CRM failures and narrative failures abort the run. Analytics, business
profile, tracked forms and lists degrade to empty results with a note. The
report row is written last, so an aborted or timed-out run writes nothing.
"""
from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from integrations.google_analytics import GoogleAnalyticsClient
from integrations.google_business_profile import GoogleBusinessProfileClient
from integrations.hubspot import HubSpotClient
from models.report_models import ReportSettings, TrackedForm, TrackedList
from reporting.aggregators import (
    QUARTER_QUERY_DELAY,
    channel_breakdown,
    closed_won_by_quarter,
    companies_by_quarter,
    contacts_by_quarter,
    deal_summary,
    deals_by_owner,
    deals_by_quarter,
    deals_by_stage,
    filter_pipelines,
    form_submissions_by_quarter,
    lifecycle_stage_became,
    mql_sql_deals_by_quarter,
    page_views_by_quarter,
    website_sessions_by_quarter,
)
from reporting.assembler import (
    FormResult,
    ListResult,
    ReportInputs,
    assemble_report,
    build_verified_summary,
)
from reporting.enrichment import ReferenceMaps, enrich_deals
from reporting.narrative import AINarrativeGenerator, NarrativeGenerator
from reporting.parsers import parse_company, parse_contact, parse_list
from scripts.lib.errors import APIAuthError, HubError, ReportGenerationError
from scripts.lib.logger import setup_logger
from scripts.lib.pagination import PaginationResult
from scripts.lib.token_cache import ConnectionManager

logger = setup_logger("report_pipeline")

REPORT_TIMEOUT_SECONDS = float(os.getenv("REPORT_TIMEOUT_SECONDS", "300"))


def _partial_note(what: str, result: PaginationResult) -> Optional[str]:
    if result.rate_limited:
        return f"{what} are incomplete: HubSpot kept rate limiting after {result.pages} pages"
    if result.truncated:
        return f"{what} were capped at {len(result.records)} records"
    return None


class ReportPipeline:
    """
    Builds and stores quarterly reports.

    Args:
        store: ReportStore (or any object with the same methods).
        connections: shared ConnectionManager handing out HubSpot tokens.
        narrative: generator for the insight lists; defaults to the AI one.
        hubspot_factory: builds a CRM client from an access token.
        analytics: GA4 client; built from the environment when omitted.
    """

    def __init__(
        self,
        store,
        connections: ConnectionManager,
        narrative: Optional[NarrativeGenerator] = None,
        hubspot_factory: Callable[[str], Any] = HubSpotClient,
        analytics: Optional[Any] = None,
        gbp_factory: Callable[..., Any] = GoogleBusinessProfileClient,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        quarter_delay: float = QUARTER_QUERY_DELAY,
        sleep=asyncio.sleep,
    ):
        self.store = store
        self.connections = connections
        self.narrative = narrative
        self.hubspot_factory = hubspot_factory
        self.analytics = analytics
        self.gbp_factory = gbp_factory
        self.clock = clock
        self.quarter_delay = quarter_delay
        self.sleep = sleep

    async def generate(
        self,
        account_id: str,
        year: Optional[int] = None,
        focus_areas: Optional[str] = None,
        timeout: Optional[float] = REPORT_TIMEOUT_SECONDS,
    ) -> Dict[str, Any]:
        """Generate, persist and return a new report row."""
        year = year or self.clock().year
        logger.info("Generating %d report for account %s", year, account_id)

        run = self._generate(str(account_id), year, focus_areas)
        if not timeout:
            return await run
        try:
            return await asyncio.wait_for(run, timeout)
        except asyncio.TimeoutError:
            logger.error("Report for account %s timed out after %.0fs", account_id, timeout)
            raise ReportGenerationError(
                f"Report generation timed out after {timeout:.0f}s",
                account_id=account_id, step="timeout",
            )

    async def _generate(self, account_id: str, year: int, focus_areas: Optional[str]) -> Dict[str, Any]:
        account = self.store.get_account(account_id)
        settings = self.store.get_settings(account_id)
        tracked_forms = self.store.list_tracked_forms(account_id)
        tracked_lists = self.store.list_tracked_lists(account_id)
        goals = self.store.list_goals(account_id, year)
        terminology = self.store.get_terminology(account_id)

        token = await self.connections.get_access_token(account)
        hubspot = self.hubspot_factory(token)

        try:
            fetched = await self._fetch_all(hubspot, settings, tracked_forms, tracked_lists, year)
        except APIAuthError:
            self.connections.invalidate(account_id)
            raise

        inputs = self._aggregate(fetched, settings, goals, account, year)

        narrative = self.narrative or AINarrativeGenerator(account_id=account_id)
        insights = await narrative.generate(
            build_verified_summary(inputs), focus_areas=focus_areas, terminology=terminology,
        )

        generated_at = self.clock()
        report = assemble_report(inputs, insights, generated_at)
        row = self.store.save_report(account_id, report["title"], report, generated_at)
        logger.info("Report %s ready for account %s", row.get("id"), account_id)
        return row

    # ─── Fetch graph ─────────────────────────────────────────

    async def _fetch_all(
        self,
        hubspot,
        settings: ReportSettings,
        tracked_forms: List[TrackedForm],
        tracked_lists: List[TrackedList],
        year: int,
    ) -> Dict[str, Any]:
        deals_task = asyncio.ensure_future(hubspot.fetch_deals())

        async def associations():
            deals = await asyncio.shield(deals_task)
            ids = [str(d.get("id")) for d in deals.records if d.get("id")]
            return await hubspot.fetch_deal_contact_ids(ids)

        async def count_contacts(start_ms, end_ms):
            return await hubspot.count_created_between("contacts", start_ms, end_ms)

        jobs = {
            "owners": hubspot.fetch_owners(),
            "pipelines": hubspot.fetch_pipelines(),
            "deals": deals_task,
            "contacts": hubspot.fetch_contacts(),
            "companies": hubspot.fetch_companies(),
            "deal_contacts": associations(),
            "contacts_by_quarter": contacts_by_quarter(
                count_contacts, year, delay=self.quarter_delay, sleep=self.sleep,
            ),
            "traffic": self._traffic(settings, year),
            "business_profile": self._business_profile(settings),
            "forms": self._forms(hubspot, tracked_forms, year),
            "lists": self._lists(hubspot, tracked_lists),
        }
        tasks = [asyncio.ensure_future(job) for job in jobs.values()]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return dict(zip(jobs.keys(), results))

    async def _traffic(self, settings: ReportSettings, year: int) -> Dict[str, Any]:
        analytics = self.analytics
        if analytics is None and settings.ga_property_id:
            try:
                analytics = GoogleAnalyticsClient()
            except HubError as e:
                logger.warning("Google Analytics unavailable: %s", e.message)

        property_id = settings.ga_property_id
        sessions, sessions_status = await website_sessions_by_quarter(
            analytics, property_id, year, delay=self.quarter_delay, sleep=self.sleep,
        )
        page_views, page_views_status = await page_views_by_quarter(
            analytics, property_id, year, delay=self.quarter_delay, sleep=self.sleep,
        )
        channels, channels_status = await channel_breakdown(analytics, property_id, year)
        return {
            "sessions": sessions, "sessions_status": sessions_status,
            "page_views": page_views, "page_views_status": page_views_status,
            "channels": channels, "channels_status": channels_status,
        }

    async def _business_profile(self, settings: ReportSettings) -> Dict[str, Any]:
        if not (settings.gbp_location and settings.gbp_refresh_token):
            return {"info": None, "status": "Google Business Profile is not connected"}
        try:
            refresh_token = self.store.cipher.decrypt(settings.gbp_refresh_token)
            client = self.gbp_factory(refresh_token)
            return {"info": await client.get_business_info(settings.gbp_location), "status": None}
        except HubError as e:
            logger.warning("Business profile unavailable: %s", e.message)
            return {"info": None, "status": f"Business profile unavailable: {e.message}"}

    async def _forms(self, hubspot, tracked: List[TrackedForm], year: int) -> List[FormResult]:
        results = []
        for form in tracked:
            name = form.form_name or form.form_guid

            async def fetch_page(cursor, guid=form.form_guid):
                return await hubspot.form_submissions_page(guid, cursor)

            try:
                submissions = await form_submissions_by_quarter(fetch_page, year, sleep=self.sleep)
                status = None
                if submissions.rate_limited:
                    status = "Submission count is partial: HubSpot rate limit"
                results.append(FormResult(form.form_guid, name, submissions, status))
            except HubError as e:
                logger.warning("Form %s unavailable: %s", form.form_guid, e.message)
                results.append(FormResult(form.form_guid, name, None, f"Form unavailable: {e.message}"))
        return results

    async def _lists(self, hubspot, tracked: List[TrackedList]) -> List[ListResult]:
        results = []
        for lst in tracked:
            name = lst.list_name or lst.list_id
            try:
                info = parse_list(await hubspot.get_list(lst.list_id))
                results.append(ListResult(lst.list_id, info.name or name, info))
            except HubError as e:
                logger.warning("List %s unavailable: %s", lst.list_id, e.message)
                results.append(ListResult(lst.list_id, name, None, f"List unavailable: {e.message}"))
        return results

    # ─── Aggregation ─────────────────────────────────────────

    def _aggregate(
        self, fetched: Dict[str, Any], settings: ReportSettings, goals, account: dict, year: int,
    ) -> ReportInputs:
        maps = ReferenceMaps.build(fetched["owners"], fetched["pipelines"])
        deals_result: PaginationResult = fetched["deals"]
        contacts_result: PaginationResult = fetched["contacts"]
        companies_result: PaginationResult = fetched["companies"]

        deals = enrich_deals(deals_result.records, maps)
        contacts = [parse_contact(c) for c in contacts_result.records]
        companies = [parse_company(c) for c in companies_result.records]
        contacts_by_id = {c.id: c for c in contacts}
        pipeline_ids = settings.pipeline_ids

        in_scope = filter_pipelines(deals, pipeline_ids)
        pipeline_deals: Dict[str, Any] = {}
        for pid in pipeline_ids or list(maps.pipelines):
            pipeline_deals[pid] = (maps.pipelines.get(pid, pid), deals_by_quarter(deals, year, [pid]))

        notes = [
            note for note in (
                _partial_note("Deals", deals_result),
                _partial_note("Contacts", contacts_result),
                _partial_note("Companies", companies_result),
            ) if note
        ]

        traffic = fetched["traffic"]
        profile = fetched["business_profile"]
        for status in (traffic["sessions_status"], profile["status"]):
            if status:
                notes.append(status)

        return ReportInputs(
            account_name=account.get("account_name") or "",
            year=year,
            summary=deal_summary(in_scope),
            total_contacts=len(contacts),
            total_companies=len(companies),
            new_deals=deals_by_quarter(deals, year, pipeline_ids),
            closed_won=closed_won_by_quarter(deals, year, pipeline_ids),
            new_contacts=fetched["contacts_by_quarter"],
            new_companies=companies_by_quarter(companies, year),
            website_sessions=traffic["sessions"],
            website_sessions_status=traffic["sessions_status"],
            page_views=traffic["page_views"],
            page_views_status=traffic["page_views_status"],
            channels=traffic["channels"],
            channels_status=traffic["channels_status"],
            lifecycle=lifecycle_stage_became(contacts, year),
            mql_sql=mql_sql_deals_by_quarter(
                deals, contacts_by_id, fetched["deal_contacts"], year,
                settings.mql_stage, settings.sql_stage, pipeline_ids,
            ),
            deals_by_stage=deals_by_stage(in_scope),
            deals_by_owner=deals_by_owner(in_scope),
            pipeline_deals=pipeline_deals,
            forms=fetched["forms"],
            lists=fetched["lists"],
            business_profile=profile["info"],
            business_profile_status=profile["status"],
            goals=goals,
            projections=settings.projections,
            data_notes=notes,
        )
