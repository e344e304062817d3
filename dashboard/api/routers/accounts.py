"""
KPI Report Hub — Accounts Router
==================================
Connected HubSpot portals. Private-app keys are validated against HubSpot
and stored encrypted; they are never returned.

Endpoints:
  GET    /api/accounts/{user_id}      - Accounts connected by a user
  POST   /api/accounts                - Connect a portal with a private-app key
  POST   /api/accounts/validate-key   - Check a key without storing it
  DELETE /api/accounts/{account_id}   - Disconnect a portal
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from dashboard.api.deps import get_connections, get_store
from integrations.hubspot import validate_api_key
from models.report_models import AccountCreate, ApiKeyCheck
from scripts.lib.logger import setup_logger

logger = setup_logger("accounts_router")

router = APIRouter(prefix="/api/accounts", tags=["accounts"])


@router.get("/{user_id}")
async def list_accounts(user_id: str, store=Depends(get_store)):
    accounts = store.list_accounts(user_id)
    return {"results": accounts, "count": len(accounts)}


@router.post("", status_code=201)
async def connect_account(body: AccountCreate, store=Depends(get_store)):
    check = await validate_api_key(body.api_key)
    if not check["valid"]:
        logger.warning("Rejected HubSpot key for user %s: %s", body.user_id, check["error"])
        raise HTTPException(status_code=400, detail=check["error"])

    return store.create_account(
        body.user_id,
        body.api_key,
        body.account_name or check["accountName"],
        portal_id=check["portalId"],
    )


@router.post("/validate-key")
async def validate_key(body: ApiKeyCheck):
    return await validate_api_key(body.api_key)


@router.delete("/{account_id}", status_code=204)
async def disconnect_account(account_id: str, store=Depends(get_store), connections=Depends(get_connections)):
    store.delete_account(account_id)
    connections.invalidate(account_id)
