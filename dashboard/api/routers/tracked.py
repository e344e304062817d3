"""
KPI Report Hub — Tracked Forms & Lists Router
===============================================
Forms and lists whose numbers appear in reports. Only the reference is
stored; submissions and list sizes are read live at report time. Names
left out of a POST are looked up in HubSpot.

Endpoints:
  GET    /api/tracked/{account_id}/available-forms  - Forms in the portal (picker)
  GET    /api/tracked/{account_id}/forms
  POST   /api/tracked/{account_id}/forms
  DELETE /api/tracked/forms/{row_id}
  GET    /api/tracked/{account_id}/available-lists  - Lists in the portal (picker)
  GET    /api/tracked/{account_id}/lists
  POST   /api/tracked/{account_id}/lists
  DELETE /api/tracked/lists/{row_id}
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from dashboard.api.deps import get_hubspot_opener, get_store
from models.report_models import TrackedFormCreate, TrackedListCreate
from reporting.parsers import parse_list
from scripts.lib.logger import setup_logger

logger = setup_logger("tracked_router")

router = APIRouter(prefix="/api/tracked", tags=["tracked"])


# ─── Forms ──────────────────────────────────────────────────

@router.get("/{account_id}/available-forms")
async def available_forms(account_id: str, open_hubspot=Depends(get_hubspot_opener)):
    hubspot = await open_hubspot(account_id)
    forms = [
        {"form_guid": f.get("id") or f.get("guid"), "form_name": f.get("name", "")}
        for f in await hubspot.get_all_forms()
    ]
    return {"results": forms, "count": len(forms)}


@router.get("/{account_id}/forms")
async def list_forms(account_id: str, store=Depends(get_store)):
    forms = store.list_tracked_forms(account_id)
    return {"results": [f.model_dump() for f in forms], "count": len(forms)}


@router.post("/{account_id}/forms", status_code=201)
async def add_form(
    account_id: str,
    body: TrackedFormCreate,
    store=Depends(get_store),
    open_hubspot=Depends(get_hubspot_opener),
):
    name = body.form_name
    if not name:
        hubspot = await open_hubspot(account_id)
        name = (await hubspot.get_form(body.form_guid)).get("name") or body.form_guid
    form = store.add_tracked_form(account_id, body.form_guid, name)
    logger.info("Tracking form %s for account %s", body.form_guid, account_id)
    return form.model_dump()


@router.delete("/forms/{row_id}", status_code=204)
async def delete_form(row_id: str, store=Depends(get_store)):
    store.delete_tracked_form(row_id)


# ─── Lists ──────────────────────────────────────────────────

@router.get("/{account_id}/available-lists")
async def available_lists(account_id: str, open_hubspot=Depends(get_hubspot_opener)):
    hubspot = await open_hubspot(account_id)
    lists = []
    for raw in await hubspot.get_all_lists():
        info = parse_list(raw)
        lists.append({"list_id": info.list_id, "list_name": info.name, "size": info.size})
    return {"results": lists, "count": len(lists)}


@router.get("/{account_id}/lists")
async def list_lists(account_id: str, store=Depends(get_store)):
    lists = store.list_tracked_lists(account_id)
    return {"results": [lst.model_dump() for lst in lists], "count": len(lists)}


@router.post("/{account_id}/lists", status_code=201)
async def add_list(
    account_id: str,
    body: TrackedListCreate,
    store=Depends(get_store),
    open_hubspot=Depends(get_hubspot_opener),
):
    name = body.list_name
    if not name:
        hubspot = await open_hubspot(account_id)
        name = parse_list(await hubspot.get_list(body.list_id)).name or body.list_id
    lst = store.add_tracked_list(account_id, body.list_id, name)
    logger.info("Tracking list %s for account %s", body.list_id, account_id)
    return lst.model_dump()


@router.delete("/lists/{row_id}", status_code=204)
async def delete_list(row_id: str, store=Depends(get_store)):
    store.delete_tracked_list(row_id)
