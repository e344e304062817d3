"""
Quarterly metric aggregators.

Every quarterly figure is a ``QuarterlyBucket``, so ``total`` is the sum of
the four quarters by construction. The in-memory aggregators are pure
functions of their inputs; the per-quarter query aggregators run their four
queries strictly one after another with a fixed delay in between, to stay
under the source API's rate limit.
"""
from __future__ import annotations

import asyncio
import os
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from reporting.parsers import Company, Contact, Deal, parse_submission_time
from reporting.quarters import (
    LIFECYCLE_STAGES,
    QUARTERS,
    QuarterlyBucket,
    bucket,
    quarter_bounds,
    quarter_date_ranges,
    to_epoch_ms,
    year_start,
)
from scripts.lib.errors import HubError
from scripts.lib.logger import setup_logger
from scripts.lib.pagination import FetchPage, paginate

logger = setup_logger("aggregators")

QUARTER_QUERY_DELAY = float(os.getenv("QUARTER_QUERY_DELAY", "0.5"))
QUARTER_RETRY_DELAY = float(os.getenv("QUARTER_RETRY_DELAY", "2.0"))
FORM_EXTRA_PAGES = int(os.getenv("FORM_EXTRA_PAGES", "2"))

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class DealQuarterly:
    count: QuarterlyBucket = field(default_factory=QuarterlyBucket)
    value: QuarterlyBucket = field(default_factory=QuarterlyBucket.money)

    def add(self, quarter: Optional[str], amount: Decimal) -> None:
        if quarter is not None:
            self.count.add(quarter)
            self.value.add(quarter, amount)

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count.to_dict(), "value": self.value.to_dict()}


def filter_pipelines(deals: Iterable[Deal], pipeline_ids: Optional[Iterable[str]]) -> List[Deal]:
    """Deals in the selected pipelines; no selection keeps everything."""
    selected = {str(p) for p in pipeline_ids or [] if p}
    if not selected:
        return list(deals)
    return [d for d in deals if d.pipeline_id in selected]


# ─── Deals & companies ───────────────────────────────────────

def deals_by_quarter(
    deals: Iterable[Deal], year: int, pipeline_ids: Optional[Iterable[str]] = None,
) -> DealQuarterly:
    """New deals (count and value) by creation quarter."""
    result = DealQuarterly()
    for deal in filter_pipelines(deals, pipeline_ids):
        result.add(bucket(deal.created_at, year), deal.amount)
    return result


def closed_won_by_quarter(
    deals: Iterable[Deal], year: int, pipeline_ids: Optional[Iterable[str]] = None,
) -> DealQuarterly:
    """Won deals (count and value) by close quarter."""
    result = DealQuarterly()
    for deal in filter_pipelines(deals, pipeline_ids):
        if deal.is_won:
            result.add(bucket(deal.closed_at, year), deal.amount)
    return result


def companies_by_quarter(companies: Iterable[Company], year: int) -> QuarterlyBucket:
    result = QuarterlyBucket()
    for company in companies:
        result.add(bucket(company.created_at, year))
    return result


def _breakdown(deals: Iterable[Deal], key: Callable[[Deal], str], name: str) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = {}
    values: Dict[str, Decimal] = {}
    for deal in deals:
        k = key(deal)
        counts[k] = counts.get(k, 0) + 1
        values[k] = values.get(k, Decimal(0)) + deal.amount
    rows = [{name: k, "count": counts[k], "value": float(values[k])} for k in counts]
    rows.sort(key=lambda r: (-r["value"], -r["count"], r[name]))
    return rows


def deals_by_stage(deals: Iterable[Deal]) -> List[Dict[str, Any]]:
    return _breakdown(deals, lambda d: d.stage_label, "stage")


def deals_by_owner(deals: Iterable[Deal]) -> List[Dict[str, Any]]:
    return _breakdown(deals, lambda d: d.owner_name, "owner")


def deal_summary(deals: Iterable[Deal]) -> Dict[str, Any]:
    """Headline totals over the full deal set."""
    deals = list(deals)
    won = [d for d in deals if d.is_won]
    open_deals = [d for d in deals if not d.is_closed]
    return {
        "totalDeals": len(deals),
        "totalValue": float(sum((d.amount for d in deals), Decimal(0))),
        "closedWonCount": len(won),
        "closedWonValue": float(sum((d.amount for d in won), Decimal(0))),
        "openDealCount": len(open_deals),
        "openDealValue": float(sum((d.amount for d in open_deals), Decimal(0))),
    }


# ─── Per-quarter remote queries ──────────────────────────────

async def contacts_by_quarter(
    search_count: Callable[[int, int], Awaitable[int]],
    year: int,
    delay: float = QUARTER_QUERY_DELAY,
    retry_delay: float = QUARTER_RETRY_DELAY,
    sleep: Sleep = asyncio.sleep,
) -> QuarterlyBucket:
    """
    New contacts per quarter, one CRM search per quarter.

    ``search_count(start_ms, end_ms)`` returns the number of contacts with
    ``start <= createdate < end``. Each quarter is retried once after
    ``retry_delay``; a second failure propagates.
    """
    result = QuarterlyBucket()
    for i, (quarter, (start, end)) in enumerate(quarter_bounds(year).items()):
        if i:
            await sleep(delay)
        start_ms, end_ms = to_epoch_ms(start), to_epoch_ms(end)
        try:
            count = await search_count(start_ms, end_ms)
        except HubError as e:
            logger.warning(
                "Contact count for %s %d failed (%s), retrying in %.1fs",
                quarter, year, e.message, retry_delay,
            )
            await sleep(retry_delay)
            count = await search_count(start_ms, end_ms)
        result.add(quarter, int(count))
        logger.debug("Contacts created in %s %d: %d", quarter, year, count)
    logger.info("Contacts by quarter for %d: %s", year, result.to_dict())
    return result


async def _analytics_by_quarter(
    fetch: Callable[[str, str], Awaitable[int]],
    configured: bool,
    what: str,
    year: int,
    delay: float,
    sleep: Sleep,
) -> Tuple[QuarterlyBucket, Optional[str]]:
    result = QuarterlyBucket()
    if not configured:
        return result, f"Google Analytics is not configured; {what} not available"

    errors: Dict[str, str] = {}
    for i, (quarter, (start, end)) in enumerate(quarter_date_ranges(year).items()):
        if i:
            await sleep(delay)
        try:
            result.add(quarter, int(await fetch(start, end)))
        except HubError as e:
            errors[quarter] = e.message
            logger.warning("GA %s for %s %d failed: %s", what, quarter, year, e.message)

    if len(errors) == len(QUARTERS):
        return result, f"Google Analytics API error for every quarter of {year}: {errors['Q4']}"
    if result.total == 0:
        return result, f"Google Analytics recorded no {what} for {year}"
    if errors:
        return result, f"{what.capitalize()} unavailable for {', '.join(errors)}"
    return result, None


async def website_sessions_by_quarter(
    analytics,
    property_id: Optional[str],
    year: int,
    delay: float = QUARTER_QUERY_DELAY,
    sleep: Sleep = asyncio.sleep,
) -> Tuple[QuarterlyBucket, Optional[str]]:
    """
    Sessions per quarter and a status note.

    The note is None only when data came back cleanly; a zero year always
    carries an explanation.
    """
    configured = bool(analytics is not None and analytics.is_configured and property_id)

    async def fetch(start, end):
        return await analytics.sessions(property_id, start, end)

    return await _analytics_by_quarter(fetch, configured, "sessions", year, delay, sleep)


async def page_views_by_quarter(
    analytics,
    property_id: Optional[str],
    year: int,
    delay: float = QUARTER_QUERY_DELAY,
    sleep: Sleep = asyncio.sleep,
) -> Tuple[QuarterlyBucket, Optional[str]]:
    configured = bool(analytics is not None and analytics.is_configured and property_id)

    async def fetch(start, end):
        return await analytics.page_views(property_id, start, end)

    return await _analytics_by_quarter(fetch, configured, "page views", year, delay, sleep)


async def channel_breakdown(
    analytics, property_id: Optional[str], year: int,
) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """Year's sessions per channel group with whole-number percentages."""
    if not (analytics is not None and analytics.is_configured and property_id):
        return [], "Google Analytics is not configured"
    try:
        rows = await analytics.channel_sessions(property_id, f"{year}-01-01", f"{year}-12-31")
    except HubError as e:
        logger.warning("GA channel breakdown for %d failed: %s", year, e.message)
        return [], f"Channel breakdown unavailable: {e.message}"

    total = sum(r["sessions"] for r in rows)
    return [
        {
            "channel": r["channel"],
            "sessions": r["sessions"],
            "percentage": int(r["sessions"] * 100 / total + 0.5) if total else 0,
        }
        for r in rows
    ], None


# ─── Form submissions ────────────────────────────────────────

@dataclass
class FormSubmissions:
    counts: QuarterlyBucket
    pages: int = 0
    out_of_order: bool = False
    rate_limited: bool = False
    truncated: bool = False


async def form_submissions_by_quarter(
    fetch_page: FetchPage,
    year: int,
    extra_pages: int = FORM_EXTRA_PAGES,
    **paginate_kwargs,
) -> FormSubmissions:
    """
    Submissions of one form per quarter.

    Precondition: ``fetch_page`` returns submissions newest first. Paging
    stops after the first page holding a submission older than the year.
    If a submission newer than its predecessor has been seen, up to
    ``extra_pages`` more pages are read before stopping.
    """
    cutoff = year_start(year)
    state = {"previous": None, "out_of_order": False, "seen_old": False, "pages_after_old": 0}

    def stop_when(page_results: List[dict]) -> bool:
        if state["seen_old"]:
            state["pages_after_old"] += 1
        for submission in page_results:
            ts = parse_submission_time(submission)
            if ts is None:
                continue
            previous = state["previous"]
            if previous is not None and ts > previous and not state["out_of_order"]:
                state["out_of_order"] = True
                logger.warning(
                    "Form submissions out of order (%s after %s); reading up to "
                    "%d extra pages", ts.isoformat(), previous.isoformat(), extra_pages,
                )
            state["previous"] = ts
            if ts < cutoff:
                state["seen_old"] = True
        if not state["seen_old"]:
            return False
        if not state["out_of_order"]:
            return True
        return state["pages_after_old"] >= extra_pages

    result = await paginate(
        fetch_page, label="form submissions", stop_when=stop_when, **paginate_kwargs,
    )

    counts = QuarterlyBucket()
    for submission in result.records:
        counts.add(bucket(parse_submission_time(submission), year))
    return FormSubmissions(
        counts=counts,
        pages=result.pages,
        out_of_order=state["out_of_order"],
        rate_limited=result.rate_limited,
        truncated=result.truncated,
    )


# ─── Lifecycle stages ────────────────────────────────────────

@dataclass
class LifecycleBreakdown:
    current: Dict[str, int]
    became: Dict[str, QuarterlyBucket]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": [
                {"stage": stage, "label": LIFECYCLE_STAGES[stage][0], "count": self.current.get(stage, 0)}
                for stage in LIFECYCLE_STAGES
            ],
            "became": [
                {"stage": stage, "label": LIFECYCLE_STAGES[stage][0], **self.became[stage].to_dict()}
                for stage in LIFECYCLE_STAGES
            ],
        }


def lifecycle_stage_became(contacts: Iterable[Contact], year: int) -> LifecycleBreakdown:
    """
    Contacts reaching each stage per quarter, plus current-stage counts.

    A contact adds to every stage it has a "became" timestamp for inside
    ``year``, whatever its current stage is.
    """
    became = {stage: QuarterlyBucket() for stage in LIFECYCLE_STAGES}
    current: Counter = Counter()
    for contact in contacts:
        stage = contact.lifecycle_stage if contact.lifecycle_stage in LIFECYCLE_STAGES else "other"
        current[stage] += 1
        for stage_name, moment in contact.became.items():
            if stage_name in became:
                became[stage_name].add(bucket(moment, year))
    return LifecycleBreakdown(current=dict(current), became=became)


# ─── MQL / SQL deals ─────────────────────────────────────────

@dataclass
class MqlSqlDeals:
    mql: DealQuarterly
    sql: DealQuarterly
    # distinct deals per stage for the year; quarter counts may repeat a deal
    unique_mql: int = 0
    unique_sql: int = 0

    @property
    def conversion_rates(self) -> Dict[str, float]:
        rates = {}
        for quarter in QUARTERS + ("total",):
            if quarter == "total":
                mql, sql = self.mql.count.total, self.sql.count.total
            else:
                mql, sql = self.mql.count.get(quarter), self.sql.count.get(quarter)
            rates[quarter] = round(sql / mql * 100, 1) if mql else 0.0
        return rates

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mql": self.mql.to_dict(),
            "sql": self.sql.to_dict(),
            "uniqueDeals": {"mql": self.unique_mql, "sql": self.unique_sql},
            "conversionRates": self.conversion_rates,
        }


def _deals_reaching_stage(
    deals: List[Deal],
    contacts_by_id: Mapping[str, Contact],
    deal_contacts: Mapping[str, List[str]],
    year: int,
    stage: Optional[str],
) -> Tuple[DealQuarterly, int]:
    result = DealQuarterly()
    unique = 0
    if not stage:
        return result, 0
    for deal in deals:
        quarters = set()
        for contact_id in deal_contacts.get(deal.id, []):
            contact = contacts_by_id.get(str(contact_id))
            if contact is not None:
                quarters.add(bucket(contact.became.get(stage), year))
        quarters.discard(None)
        if quarters:
            unique += 1
        for quarter in sorted(quarters):
            result.add(quarter, deal.amount)
    return result, unique


def mql_sql_deals_by_quarter(
    deals: Iterable[Deal],
    contacts_by_id: Mapping[str, Contact],
    deal_contacts: Mapping[str, List[str]],
    year: int,
    mql_stage: Optional[str],
    sql_stage: Optional[str],
    pipeline_ids: Optional[Iterable[str]] = None,
) -> MqlSqlDeals:
    """
    Deals whose associated contacts reached the MQL / SQL stage per quarter.

    A deal counts at most once per quarter however many of its contacts
    qualify. Contacts reaching the stage in different quarters credit the
    deal to each of those quarters.
    """
    in_scope = filter_pipelines(deals, pipeline_ids)
    mql, unique_mql = _deals_reaching_stage(in_scope, contacts_by_id, deal_contacts, year, mql_stage)
    sql, unique_sql = _deals_reaching_stage(in_scope, contacts_by_id, deal_contacts, year, sql_stage)
    return MqlSqlDeals(mql=mql, sql=sql, unique_mql=unique_mql, unique_sql=unique_sql)
