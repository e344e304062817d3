"""
Report assembly.

Turns aggregator outputs plus goals into the report document. Every number
in the document comes from here; the narrative generator contributes only
the three insight lists, stored as they were returned.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from models.report_models import Goal
from reporting.aggregators import DealQuarterly, FormSubmissions, LifecycleBreakdown, MqlSqlDeals
from reporting.goals import KPIRow, index_goals, join_goal
from reporting.narrative import NarrativeInsights
from reporting.parsers import ListInfo
from reporting.quarters import QUARTERS, QuarterlyBucket


@dataclass
class FormResult:
    form_guid: str
    name: str
    submissions: Optional[FormSubmissions] = None
    status: Optional[str] = None


@dataclass
class ListResult:
    list_id: str
    name: str
    info: Optional[ListInfo] = None
    status: Optional[str] = None


@dataclass
class ReportInputs:
    """Everything the assembler needs, already aggregated."""
    account_name: str
    year: int
    summary: Dict[str, Any]
    total_contacts: int
    total_companies: int
    new_deals: DealQuarterly
    closed_won: DealQuarterly
    new_contacts: QuarterlyBucket
    new_companies: QuarterlyBucket
    website_sessions: QuarterlyBucket
    page_views: QuarterlyBucket
    lifecycle: LifecycleBreakdown
    mql_sql: MqlSqlDeals
    deals_by_stage: List[Dict[str, Any]] = field(default_factory=list)
    deals_by_owner: List[Dict[str, Any]] = field(default_factory=list)
    pipeline_deals: Dict[str, Tuple[str, DealQuarterly]] = field(default_factory=dict)
    website_sessions_status: Optional[str] = None
    page_views_status: Optional[str] = None
    channels: List[Dict[str, Any]] = field(default_factory=list)
    channels_status: Optional[str] = None
    forms: List[FormResult] = field(default_factory=list)
    lists: List[ListResult] = field(default_factory=list)
    business_profile: Optional[Dict[str, Any]] = None
    business_profile_status: Optional[str] = None
    goals: List[Goal] = field(default_factory=list)
    projections: Dict[str, int] = field(default_factory=dict)
    data_notes: List[str] = field(default_factory=list)


# metric id -> (label, subtext)
METRIC_LABELS = {
    "website_sessions": ("Website Sessions", "Sessions from Google Analytics"),
    "page_views": ("Page Views", "Page views from Google Analytics"),
    "new_contacts": ("New Contacts", "Contacts created in HubSpot"),
    "new_companies": ("New Companies", "Companies created in HubSpot"),
    "new_deals": ("New Deals", "Deals created in the selected pipelines"),
    "closed_won": ("Closed Won Deals", "Deals won, by close date"),
    "mql_deals": ("MQL Deals", "Deals with a contact that became an MQL"),
    "sql_deals": ("SQL Deals", "Deals with a contact that became an SQL"),
}


def build_kpi_rows(inputs: ReportInputs) -> List[KPIRow]:
    goals = index_goals(inputs.goals, inputs.year)

    def metric_row(metric: str, actual: QuarterlyBucket, value: Optional[QuarterlyBucket] = None):
        label = METRIC_LABELS[metric][0]
        return join_goal(
            metric, label, actual, goals.get(("metric", metric)),
            projection=inputs.projections.get(metric), value_actual=value,
        )

    rows = [
        metric_row("website_sessions", inputs.website_sessions),
        metric_row("page_views", inputs.page_views),
        metric_row("new_contacts", inputs.new_contacts),
        metric_row("new_companies", inputs.new_companies),
        metric_row("new_deals", inputs.new_deals.count, inputs.new_deals.value),
        metric_row("closed_won", inputs.closed_won.count, inputs.closed_won.value),
        metric_row("mql_deals", inputs.mql_sql.mql.count, inputs.mql_sql.mql.value),
        metric_row("sql_deals", inputs.mql_sql.sql.count, inputs.mql_sql.sql.value),
    ]

    for pipeline_id, (label, deals) in inputs.pipeline_deals.items():
        rows.append(join_goal(
            f"pipeline:{pipeline_id}", f"{label} Deals", deals.count,
            goals.get(("pipeline", pipeline_id)), value_actual=deals.value,
        ))

    for form in inputs.forms:
        counts = form.submissions.counts if form.submissions else QuarterlyBucket()
        rows.append(join_goal(
            f"form:{form.form_guid}", form.name or form.form_guid, counts,
            goals.get(("form", form.form_guid)),
        ))
    return rows


def _subtext(row: KPIRow, inputs: ReportInputs) -> str:
    if row.metric == "website_sessions" and inputs.website_sessions_status:
        return inputs.website_sessions_status
    if row.metric == "page_views" and inputs.page_views_status:
        return inputs.page_views_status
    if row.metric in ("mql_deals", "sql_deals"):
        unique = inputs.mql_sql.unique_mql if row.metric == "mql_deals" else inputs.mql_sql.unique_sql
        return (
            f"{METRIC_LABELS[row.metric][1]} ({inputs.year}); {unique} unique deals, "
            f"the total counts a deal once in each quarter it qualified"
        )
    if row.metric in METRIC_LABELS:
        return f"{METRIC_LABELS[row.metric][1]} ({inputs.year})"
    if row.metric.startswith("form:"):
        guid = row.metric.split(":", 1)[1]
        form = next((f for f in inputs.forms if f.form_guid == guid), None)
        if form and form.status:
            return form.status
        return f"Form submissions ({inputs.year})"
    return f"Pipeline deals by create date ({inputs.year})"


def _money(value) -> str:
    return f"${float(value):,.2f}"


def build_verified_summary(inputs: ReportInputs) -> str:
    """Plain-text restatement of the verified numbers for the narrative."""
    s = inputs.summary
    stages = ", ".join(
        f"{r['stage']}: {r['count']} deals worth {_money(r['value'])}" for r in inputs.deals_by_stage
    ) or "None"
    owners = ", ".join(
        f"{r['owner']}: {r['count']} deals worth {_money(r['value'])}" for r in inputs.deals_by_owner
    ) or "None"
    quarterly = " ".join(
        f"{q}: {inputs.new_contacts.get(q)} contacts, {inputs.new_deals.count.get(q)} deals "
        f"({_money(inputs.new_deals.value.get(q))}), {inputs.website_sessions.get(q)} sessions."
        for q in QUARTERS
    )
    lines = [
        f"- Total Deals: {s['totalDeals']}",
        f"- Total Deal Value: {_money(s['totalValue'])}",
        f"- Closed/Won Deals: {s['closedWonCount']} worth {_money(s['closedWonValue'])}",
        f"- Open Deals: {s['openDealCount']} worth {_money(s['openDealValue'])}",
        f"- Total Contacts: {inputs.total_contacts}",
        f"- Total Companies: {inputs.total_companies}",
        f"- Deals by Stage: {stages}",
        f"- Deals by Owner: {owners}",
        f"- Quarterly Breakdown ({inputs.year}): {quarterly}",
        f"- MQL Deals ({inputs.year}): {inputs.mql_sql.mql.count.total}, "
        f"SQL Deals: {inputs.mql_sql.sql.count.total}, "
        f"MQL to SQL conversion: {inputs.mql_sql.conversion_rates['total']}%",
    ]
    if inputs.channels:
        lines.append("- Traffic by Channel: " + ", ".join(
            f"{c['channel']} {c['sessions']} sessions ({c['percentage']}%)" for c in inputs.channels
        ))
    for form in inputs.forms:
        if form.submissions:
            lines.append(f"- Form '{form.name}': {form.submissions.counts.total} submissions")
    for lst in inputs.lists:
        if lst.info:
            lines.append(f"- List '{lst.name}': {lst.info.size} members")
    return "\n".join(lines)


def assemble_report(
    inputs: ReportInputs,
    narrative: NarrativeInsights,
    generated_at: datetime,
) -> Dict[str, Any]:
    """Build the report document; same inputs give the same document."""
    kpi_rows = []
    for row in build_kpi_rows(inputs):
        data = row.to_dict()
        data["subtext"] = _subtext(row, inputs)
        kpi_rows.append(data)

    verified = dict(inputs.summary)
    verified["totalContacts"] = inputs.total_contacts
    verified["totalCompanies"] = inputs.total_companies

    report = {
        "title": f"{inputs.year} Quarterly KPI Report",
        "subtitle": inputs.account_name or "Key Insights & Findings",
        "year": inputs.year,
        "generatedAt": generated_at.isoformat(),
        "verifiedData": verified,
        "kpiTable": {"year": inputs.year, "rows": kpi_rows},
        "dealsByStage": inputs.deals_by_stage,
        "dealsByOwner": inputs.deals_by_owner,
        "mqlSql": inputs.mql_sql.to_dict(),
        "lifecycleStages": inputs.lifecycle.to_dict(),
        "traffic": {
            "websiteSessions": inputs.website_sessions.to_dict(),
            "websiteSessionsStatus": inputs.website_sessions_status,
            "pageViews": inputs.page_views.to_dict(),
            "pageViewsStatus": inputs.page_views_status,
            "channels": inputs.channels,
            "channelsStatus": inputs.channels_status,
        },
        "forms": [
            {
                "formGuid": f.form_guid,
                "name": f.name,
                "submissions": f.submissions.counts.to_dict() if f.submissions else QuarterlyBucket().to_dict(),
                "status": f.status,
            }
            for f in inputs.forms
        ],
        "lists": [
            {
                "listId": lst.list_id,
                "name": lst.name,
                "size": lst.info.size if lst.info else 0,
                "status": lst.status,
            }
            for lst in inputs.lists
        ],
        "businessProfile": inputs.business_profile,
        "businessProfileStatus": inputs.business_profile_status,
        "dataNotes": list(inputs.data_notes),
        **narrative.to_dict(),
    }
    return copy.deepcopy(report)
