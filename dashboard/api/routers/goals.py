"""
KPI Report Hub — Goals Router
===============================
Quarterly goals per metric, tracked form or pipeline.

Endpoints:
  GET /api/goals/{account_id}  - Goals (optionally for one year)
  PUT /api/goals/{account_id}  - Upsert goals; omitted quarters keep their value
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from dashboard.api.deps import get_store
from models.report_models import GoalBatch
from scripts.lib.logger import setup_logger

logger = setup_logger("goals_router")

router = APIRouter(prefix="/api/goals", tags=["goals"])


@router.get("/{account_id}")
async def list_goals(
    account_id: str,
    year: Optional[int] = Query(None, description="Filter by year"),
    store=Depends(get_store),
):
    goals = store.list_goals(account_id, year)
    return {"results": [g.model_dump(mode="json") for g in goals], "count": len(goals)}


@router.put("/{account_id}")
async def upsert_goals(account_id: str, body: GoalBatch, store=Depends(get_store)):
    saved = [store.upsert_goal(account_id, goal) for goal in body.goals]
    logger.info("Saved %d goals for account %s", len(saved), account_id)
    return {"results": [g.model_dump(mode="json") for g in saved], "count": len(saved)}
