"""
KPI Report Hub — Reports Router
=================================
Generate and list quarterly KPI reports.

Endpoints:
  POST /api/reports/generate      - Build and store a new report
  GET  /api/reports/{account_id}  - Recent reports for an account
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from dashboard.api.deps import get_pipeline, get_store
from models.report_models import GenerateReportRequest
from reporting.pipeline import REPORT_TIMEOUT_SECONDS
from scripts.lib.logger import setup_logger

logger = setup_logger("reports_router")

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.post("/generate")
async def generate_report(body: GenerateReportRequest, pipeline=Depends(get_pipeline)):
    """Generate a report. Returns the stored report row."""
    row = await pipeline.generate(
        body.account_id,
        year=body.year,
        focus_areas=body.focus_areas,
        timeout=body.timeout or REPORT_TIMEOUT_SECONDS,
    )
    return row


@router.get("/{account_id}")
async def list_reports(
    account_id: str,
    limit: int = Query(20, ge=1, le=100, description="Max results"),
    store=Depends(get_store),
):
    """Recent reports for an account, newest first."""
    reports = store.list_reports(account_id, limit=limit)
    return {"results": reports, "count": len(reports)}
