"""
KPI Report Hub — Report Pydantic Models
=========================================

Goals, per-account report settings, tracked forms/lists and the request
bodies accepted by the API.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from scripts.lib.utils import coerce_non_negative_decimal, coerce_non_negative_int

GoalType = Literal["metric", "form", "pipeline"]

QUARTER_GOAL_FIELDS = ("q1_goal", "q2_goal", "q3_goal", "q4_goal")
QUARTER_VALUE_GOAL_FIELDS = ("q1_value_goal", "q2_value_goal", "q3_value_goal", "q4_value_goal")


# ─── Goals ──────────────────────────────────────────────────

class Goal(BaseModel):
    """One stored goal row, keyed by (account, type, target, year)."""
    id: Optional[int | str] = None
    hubspot_account_id: str
    goal_type: GoalType = "metric"
    target_id: str
    year: int
    q1_goal: Optional[int] = None
    q2_goal: Optional[int] = None
    q3_goal: Optional[int] = None
    q4_goal: Optional[int] = None
    q1_value_goal: Optional[Decimal] = None
    q2_value_goal: Optional[Decimal] = None
    q3_value_goal: Optional[Decimal] = None
    q4_value_goal: Optional[Decimal] = None
    updated_at: Optional[datetime] = None

    @field_validator(*QUARTER_GOAL_FIELDS, mode="before")
    @classmethod
    def _coerce_count(cls, v):
        return None if v is None else coerce_non_negative_int(v)

    @field_validator(*QUARTER_VALUE_GOAL_FIELDS, mode="before")
    @classmethod
    def _coerce_value(cls, v):
        return None if v is None else coerce_non_negative_decimal(v)

    @property
    def key(self) -> tuple:
        return (self.hubspot_account_id, self.goal_type, self.target_id, self.year)

    def quarter_goal(self, quarter: str) -> Optional[int]:
        return getattr(self, f"{quarter.lower()}_goal")

    def quarter_value_goal(self, quarter: str) -> Optional[Decimal]:
        return getattr(self, f"{quarter.lower()}_value_goal")


class GoalUpsert(BaseModel):
    """Goal write request; quarters left out keep their stored value."""
    goal_type: GoalType = "metric"
    target_id: str
    year: int
    q1_goal: Optional[int | str | float] = None
    q2_goal: Optional[int | str | float] = None
    q3_goal: Optional[int | str | float] = None
    q4_goal: Optional[int | str | float] = None
    q1_value_goal: Optional[Decimal | str | float] = None
    q2_value_goal: Optional[Decimal | str | float] = None
    q3_value_goal: Optional[Decimal | str | float] = None
    q4_value_goal: Optional[Decimal | str | float] = None


class GoalBatch(BaseModel):
    goals: List[GoalUpsert] = Field(default_factory=list)


# ─── Settings ───────────────────────────────────────────────

class ReportSettings(BaseModel):
    """Per-account report configuration."""
    hubspot_account_id: str
    pipeline_ids: List[str] = Field(default_factory=list)
    mql_stage: Optional[str] = "marketingqualifiedlead"
    sql_stage: Optional[str] = "salesqualifiedlead"
    ga_property_id: Optional[str] = None
    gbp_location: Optional[str] = None
    gbp_refresh_token: Optional[str] = None   # encrypted at rest
    projections: Dict[str, int] = Field(default_factory=dict)

    @field_validator("projections", mode="before")
    @classmethod
    def _coerce_projections(cls, v):
        return {str(k): coerce_non_negative_int(n) for k, n in (v or {}).items()}


class SettingsUpdate(BaseModel):
    pipeline_ids: Optional[List[str]] = None
    mql_stage: Optional[str] = None
    sql_stage: Optional[str] = None
    ga_property_id: Optional[str] = None
    gbp_location: Optional[str] = None
    gbp_refresh_token: Optional[str] = None   # plain text in, encrypted by the store
    projections: Optional[Dict[str, int | str | float]] = None


# ─── Tracked entities ───────────────────────────────────────

class TrackedForm(BaseModel):
    id: Optional[int | str] = None
    hubspot_account_id: str
    form_guid: str
    form_name: Optional[str] = ""


class TrackedList(BaseModel):
    id: Optional[int | str] = None
    hubspot_account_id: str
    list_id: str
    list_name: Optional[str] = ""


class TrackedFormCreate(BaseModel):
    form_guid: str
    form_name: Optional[str] = None


class TrackedListCreate(BaseModel):
    list_id: str
    list_name: Optional[str] = None


# ─── Accounts & reports ─────────────────────────────────────

class AccountCreate(BaseModel):
    user_id: str
    api_key: str
    account_name: Optional[str] = None


class ApiKeyCheck(BaseModel):
    api_key: str = Field(min_length=1)


class GenerateReportRequest(BaseModel):
    account_id: str
    year: Optional[int] = None
    focus_areas: Optional[str] = None
    timeout: Optional[float] = Field(default=None, gt=0)
