"""
KPI Report Hub — Settings Router
==================================
Per-account report settings: pipeline filter, MQL/SQL stages, GA property,
Business Profile connection and legacy year-end projections. The Business
Profile refresh token is write-only.

Endpoints:
  GET /api/settings/{account_id}
  PUT /api/settings/{account_id}
  GET /api/settings/{account_id}/gbp-locations  - Locations the stored token can see
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from dashboard.api.deps import get_gbp_factory, get_store
from models.report_models import SettingsUpdate
from scripts.lib.errors import MissingConfigurationError

router = APIRouter(prefix="/api/settings", tags=["settings"])


def _public(settings) -> dict:
    data = settings.model_dump(exclude={"gbp_refresh_token"})
    data["gbp_connected"] = bool(settings.gbp_refresh_token)
    return data


@router.get("/{account_id}")
async def get_settings(account_id: str, store=Depends(get_store)):
    return _public(store.get_settings(account_id))


@router.put("/{account_id}")
async def update_settings(account_id: str, body: SettingsUpdate, store=Depends(get_store)):
    return _public(store.save_settings(account_id, body))


@router.get("/{account_id}/gbp-locations")
async def gbp_locations(account_id: str, store=Depends(get_store), gbp_factory=Depends(get_gbp_factory)):
    settings = store.get_settings(account_id)
    if not settings.gbp_refresh_token:
        raise MissingConfigurationError("Google Business Profile", "gbp_refresh_token")
    client = gbp_factory(store.cipher.decrypt(settings.gbp_refresh_token))
    locations = await client.all_locations()
    return {"results": locations, "count": len(locations)}
