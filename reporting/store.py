"""
Supabase persistence for the report hub.

Tables: hubspot_accounts, report_settings, tracked_forms, tracked_lists,
goals, learned_context, reports. Reports are insert-only.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from models.report_models import (
    Goal,
    GoalUpsert,
    ReportSettings,
    SettingsUpdate,
    TrackedForm,
    TrackedList,
)
from reporting.goals import merge_goal_update
from scripts.lib.credentials import CredentialCipher
from scripts.lib.errors import APINotFoundError, DataFetchError
from scripts.lib.logger import setup_logger
from scripts.lib.supabase_client import delete_row, get_client, query_table, upsert_row
from scripts.lib.token_cache import AccessToken

logger = setup_logger("report_store")

MAX_ROWS = 1000


class ReportStore:
    """Typed access to the hub's Supabase tables."""

    def __init__(self, client=None, cipher: Optional[CredentialCipher] = None):
        self._client = client
        self.cipher = cipher or CredentialCipher()

    @property
    def client(self):
        if self._client is None:
            self._client = get_client()
        return self._client

    # ─── Accounts ────────────────────────────────────────────

    def get_account(self, account_id: str) -> Dict[str, Any]:
        rows = query_table("hubspot_accounts", filters={"id": account_id}, limit=1, client=self.client)
        if not rows:
            raise APINotFoundError(f"hubspot_accounts/{account_id}")
        return rows[0]

    def list_accounts(self, user_id: str) -> List[Dict[str, Any]]:
        rows = query_table(
            "hubspot_accounts",
            select="id,user_id,account_name,portal_id,created_at",
            filters={"user_id": user_id}, order_by="created_at", limit=MAX_ROWS,
            client=self.client,
        )
        return rows

    def create_account(self, user_id: str, api_key: str, account_name: str,
                       portal_id: Optional[str] = None) -> Dict[str, Any]:
        row = upsert_row("hubspot_accounts", {
            "user_id": user_id,
            "account_name": account_name,
            "portal_id": portal_id,
            "api_key": self.cipher.encrypt(api_key),
        }, client=self.client)
        if row is None:
            raise DataFetchError("Account insert returned no row", source="hubspot_accounts")
        logger.info("Connected HubSpot account %s for user %s", row.get("id"), user_id)
        return {k: v for k, v in row.items() if k not in ("api_key", "refresh_token", "access_token")}

    def delete_account(self, account_id: str) -> None:
        """Remove a connected portal row."""
        delete_row("hubspot_accounts", account_id, client=self.client)
        logger.info("Disconnected HubSpot account %s", account_id)

    def save_token(self, account_id: str, token: AccessToken) -> None:
        """Persist a refreshed, expiring token so other workers reuse it."""
        if token.expires_at is None:
            return
        self.client.table("hubspot_accounts").update({
            "access_token": self.cipher.encrypt(token.token),
            "token_expires_at": token.expires_at,
        }).eq("id", account_id).execute()

    # ─── Settings ────────────────────────────────────────────

    def get_settings(self, account_id: str) -> ReportSettings:
        rows = query_table("report_settings", filters={"hubspot_account_id": account_id},
                           limit=1, client=self.client)
        if not rows:
            return ReportSettings(hubspot_account_id=account_id)
        return ReportSettings(**rows[0])

    def save_settings(self, account_id: str, update: SettingsUpdate) -> ReportSettings:
        """
        Apply the fields present in ``update``. An explicit null resets a field
        to its default; a Business Profile refresh token is stored encrypted.
        """
        current = self.get_settings(account_id).model_dump()
        for name in update.model_fields_set:
            value = getattr(update, name)
            if value is None:
                current.pop(name, None)
            elif name == "gbp_refresh_token":
                current[name] = self.cipher.encrypt(value)
            else:
                current[name] = value
        settings = ReportSettings(**current)
        upsert_row(
            "report_settings", settings.model_dump(),
            on_conflict="hubspot_account_id", client=self.client,
        )
        return settings

    # ─── Tracked forms & lists ───────────────────────────────

    def list_tracked_forms(self, account_id: str) -> List[TrackedForm]:
        rows = query_table("tracked_forms", filters={"hubspot_account_id": account_id},
                           order_by="form_name", desc=False, limit=MAX_ROWS, client=self.client)
        return [TrackedForm(**r) for r in rows]

    def add_tracked_form(self, account_id: str, form_guid: str, form_name: str) -> TrackedForm:
        row = upsert_row("tracked_forms", {
            "hubspot_account_id": account_id, "form_guid": form_guid, "form_name": form_name,
        }, on_conflict="hubspot_account_id,form_guid", client=self.client)
        return TrackedForm(**(row or {"hubspot_account_id": account_id,
                                      "form_guid": form_guid, "form_name": form_name}))

    def delete_tracked_form(self, row_id: str) -> None:
        delete_row("tracked_forms", row_id, client=self.client)

    def list_tracked_lists(self, account_id: str) -> List[TrackedList]:
        rows = query_table("tracked_lists", filters={"hubspot_account_id": account_id},
                           order_by="list_name", desc=False, limit=MAX_ROWS, client=self.client)
        return [TrackedList(**r) for r in rows]

    def add_tracked_list(self, account_id: str, list_id: str, list_name: str) -> TrackedList:
        row = upsert_row("tracked_lists", {
            "hubspot_account_id": account_id, "list_id": list_id, "list_name": list_name,
        }, on_conflict="hubspot_account_id,list_id", client=self.client)
        return TrackedList(**(row or {"hubspot_account_id": account_id,
                                      "list_id": list_id, "list_name": list_name}))

    def delete_tracked_list(self, row_id: str) -> None:
        delete_row("tracked_lists", row_id, client=self.client)

    # ─── Goals ───────────────────────────────────────────────

    def list_goals(self, account_id: str, year: Optional[int] = None) -> List[Goal]:
        filters: Dict[str, Any] = {"hubspot_account_id": account_id}
        if year is not None:
            filters["year"] = year
        rows = query_table("goals", filters=filters, limit=MAX_ROWS, client=self.client)
        return [Goal(**r) for r in rows]

    def upsert_goal(self, account_id: str, update: GoalUpsert) -> Goal:
        existing = next(
            (g for g in self.list_goals(account_id, update.year)
             if g.goal_type == update.goal_type and g.target_id == update.target_id),
            None,
        )
        goal = merge_goal_update(existing, update, account_id)
        row = goal.model_dump(mode="json", exclude_none=True, exclude={"updated_at"})
        row["updated_at"] = datetime.now(timezone.utc).isoformat()
        stored = upsert_row(
            "goals", row,
            on_conflict="hubspot_account_id,goal_type,target_id,year", client=self.client,
        )
        return Goal(**stored) if stored else goal

    # ─── Terminology ─────────────────────────────────────────

    def get_terminology(self, account_id: str) -> List[Tuple[str, str]]:
        rows = query_table("learned_context", filters={"hubspot_account_id": account_id},
                           limit=MAX_ROWS, client=self.client)
        return [(r["key"], r["value"]) for r in rows if r.get("key") and r.get("value")]

    # ─── Reports ─────────────────────────────────────────────

    def save_report(self, account_id: str, title: str, report_data: Dict[str, Any],
                    generated_at: datetime) -> Dict[str, Any]:
        row = upsert_row("reports", {
            "hubspot_account_id": account_id,
            "title": title,
            "report_data": report_data,
            "generated_at": generated_at.isoformat(),
        }, client=self.client)
        if row is None:
            raise DataFetchError("Report insert returned no row", source="reports")
        logger.info("Saved report %s for account %s", row.get("id"), account_id)
        return row

    def list_reports(self, account_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        return query_table("reports", filters={"hubspot_account_id": account_id},
                           order_by="generated_at", limit=limit, client=self.client)
