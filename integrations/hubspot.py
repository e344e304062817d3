"""
HubSpot Integration
====================

Async HubSpot API client used by the quarterly report pipeline:
- Deals, contacts and companies (cursor-paginated, rate-limit aware)
- Contact search counts per date range
- Owners and deal pipeline/stage metadata
- Deal -> contact associations
- Marketing forms and form submissions
- Contact lists
- Account info (used to validate a private-app key)

Every non-2xx response is turned into a typed error from scripts.lib.errors
so callers can tell "rate limited" from "missing scope" from "not found".

Setup:
1. Create a Private App in HubSpot -> Settings -> Integrations -> Private Apps
2. Grant crm.objects.{deals,contacts,companies}.read, crm.lists.read, forms
3. Add the token through POST /api/accounts (stored encrypted)
"""
from __future__ import annotations

import asyncio
import os
import time
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from scripts.lib.credentials import CredentialCipher
from scripts.lib.errors import (
    APIAuthError,
    APIError,
    APINotFoundError,
    APIPermissionError,
    APIRateLimitError,
    APITimeoutError,
    MissingConfigurationError,
)
from scripts.lib.logger import setup_logger
from scripts.lib.pagination import Page, PaginationResult, call_with_backoff, paginate
from scripts.lib.token_cache import AccessToken

logger = setup_logger("hubspot")

HUBSPOT_API_URL = "https://api.hubapi.com"
HUBSPOT_PAGE_LIMIT = int(os.getenv("HUBSPOT_PAGE_LIMIT", "100"))
FORM_SUBMISSIONS_PAGE_LIMIT = 50
ASSOCIATION_BATCH_SIZE = 100
LIST_SEARCH_PAGE_SIZE = 100
REQUEST_TIMEOUT = float(os.getenv("HUBSPOT_REQUEST_TIMEOUT", "30"))

LIFECYCLE_STAGE_PROPERTIES = [
    "hs_lifecyclestage_subscriber_date",
    "hs_lifecyclestage_lead_date",
    "hs_lifecyclestage_marketingqualifiedlead_date",
    "hs_lifecyclestage_salesqualifiedlead_date",
    "hs_lifecyclestage_opportunity_date",
    "hs_lifecyclestage_customer_date",
    "hs_lifecyclestage_evangelist_date",
    "hs_lifecyclestage_other_date",
]

DEAL_PROPERTIES = [
    "dealname", "amount", "dealstage", "pipeline", "hubspot_owner_id",
    "createdate", "closedate", "hs_lastmodifieddate",
]

CONTACT_PROPERTIES = [
    "firstname", "lastname", "email", "company", "hubspot_owner_id",
    "lifecyclestage", "createdate",
] + LIFECYCLE_STAGE_PROPERTIES

COMPANY_PROPERTIES = [
    "name", "domain", "industry", "numberofemployees", "annualrevenue",
    "createdate", "lifecyclestage",
]


def _next_after(data: dict) -> Optional[str]:
    return ((data.get("paging") or {}).get("next") or {}).get("after")


def _missing_scopes(body: Any) -> List[str]:
    """Pull required scopes out of a HubSpot MISSING_SCOPES error body."""
    if not isinstance(body, dict):
        return []
    scopes: List[str] = []
    for err in body.get("errors") or []:
        context = err.get("context") or {}
        for key in ("requiredGranularScopes", "requiredScopes"):
            for scope in context.get(key) or []:
                if scope not in scopes:
                    scopes.append(scope)
    return scopes


class HubSpotClient:
    """HubSpot CRM connector bound to one access token."""

    def __init__(
        self,
        access_token: str,
        base_url: str = HUBSPOT_API_URL,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.access_token = access_token
        self.base_url = base_url
        self.timeout = timeout
        self._session = session

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)

    def _headers(self) -> Dict[str, str]:
        """Build authorization headers."""
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> Tuple[int, Dict[str, str], Any]:
        """Perform the HTTP call. Returns (status, headers, parsed body)."""
        url = f"{self.base_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        async def _do(session: aiohttp.ClientSession):
            async with session.request(
                method, url, headers=self._headers(), params=params,
                json=json_body, timeout=timeout,
            ) as resp:
                if resp.content_type == "application/json":
                    body = await resp.json()
                else:
                    body = await resp.text()
                return resp.status, dict(resp.headers), body

        if self._session is not None:
            return await _do(self._session)
        async with aiohttp.ClientSession() as session:
            return await _do(session)

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> Any:
        """Make an authenticated request; raise a typed error on failure."""
        if not self.is_configured:
            raise MissingConfigurationError("HubSpot", "access token")

        try:
            status, headers, body = await self._send(method, path, params, json_body)
        except asyncio.TimeoutError:
            raise APITimeoutError(path, self.timeout)
        except aiohttp.ClientError as e:
            logger.error("HubSpot API %s %s connection error: %s", method, path, e)
            raise APIError(f"HubSpot connection error: {e}", url=path)

        if 200 <= status < 300:
            return body if body != "" else {}

        message = body.get("message", "") if isinstance(body, dict) else str(body)[:300]

        if status == 429:
            retry_after = headers.get("Retry-After")
            raise APIRateLimitError(path, float(retry_after) if retry_after else None)
        if status == 401:
            raise APIAuthError(path)
        if status == 403:
            scopes = _missing_scopes(body)
            logger.error("HubSpot denied %s %s (scopes: %s)", method, path, scopes or "n/a")
            raise APIPermissionError(path, missing_scopes=scopes, message=message or None)
        if status == 404:
            raise APINotFoundError(path)

        logger.error("HubSpot API %s %s returned %s: %s", method, path, status, message)
        raise APIError(
            f"HubSpot API {method} {path} returned {status}: {message}",
            status_code=status, url=path,
        )

    # ─── CRM objects ─────────────────────────────────────────

    async def list_objects_page(
        self, object_type: str, properties: List[str], after: Optional[str] = None,
    ) -> Page:
        params = {"limit": HUBSPOT_PAGE_LIMIT, "properties": ",".join(properties)}
        if after:
            params["after"] = after
        data = await self._request("GET", f"/crm/v3/objects/{object_type}", params=params)
        return Page(data.get("results", []), _next_after(data))

    async def fetch_objects(
        self, object_type: str, properties: List[str], **paginate_kwargs,
    ) -> PaginationResult:
        logger.info("Fetching %s (%d properties)...", object_type, len(properties))

        async def fetch_page(cursor):
            return await self.list_objects_page(object_type, properties, cursor)

        result = await paginate(fetch_page, label=object_type, **paginate_kwargs)
        logger.info("Fetched %d %s in %d pages", len(result.records), object_type, result.pages)
        return result

    async def fetch_deals(self, **paginate_kwargs) -> PaginationResult:
        return await self.fetch_objects("deals", DEAL_PROPERTIES, **paginate_kwargs)

    async def fetch_contacts(self, **paginate_kwargs) -> PaginationResult:
        return await self.fetch_objects("contacts", CONTACT_PROPERTIES, **paginate_kwargs)

    async def fetch_companies(self, **paginate_kwargs) -> PaginationResult:
        return await self.fetch_objects("companies", COMPANY_PROPERTIES, **paginate_kwargs)

    async def count_created_between(
        self, object_type: str, start_ms: int, end_ms: int,
    ) -> int:
        """Count objects with start <= createdate < end via the search API."""
        body = {
            "filterGroups": [{
                "filters": [
                    {"propertyName": "createdate", "operator": "GTE", "value": str(start_ms)},
                    {"propertyName": "createdate", "operator": "LT", "value": str(end_ms)},
                ]
            }],
            "properties": ["createdate"],
            "limit": 1,
        }

        async def _search():
            return await self._request(
                "POST", f"/crm/v3/objects/{object_type}/search", json_body=body,
            )

        data = await call_with_backoff(_search, label=f"{object_type} search")
        return int(data.get("total", 0) or 0)

    # ─── Reference data ──────────────────────────────────────

    async def fetch_owners(self) -> List[dict]:
        logger.info("Fetching owners...")

        async def fetch_page(cursor):
            params = {"limit": HUBSPOT_PAGE_LIMIT}
            if cursor:
                params["after"] = cursor
            data = await self._request("GET", "/crm/v3/owners/", params=params)
            return Page(data.get("results", []), _next_after(data))

        result = await paginate(fetch_page, label="owners")
        logger.info("Fetched %d owners", len(result.records))
        return result.records

    async def fetch_pipelines(self) -> List[dict]:
        logger.info("Fetching pipeline definitions...")
        data = await call_with_backoff(
            self._request, "GET", "/crm/v3/pipelines/deals", label="pipelines",
        )
        pipelines = data.get("results", [])
        logger.info("Fetched %d pipelines", len(pipelines))
        return pipelines

    async def fetch_deal_contact_ids(self, deal_ids: List[str]) -> Dict[str, List[str]]:
        """Map deal id -> associated contact ids (v4 batch read)."""
        associations: Dict[str, List[str]] = {}
        for i in range(0, len(deal_ids), ASSOCIATION_BATCH_SIZE):
            batch = deal_ids[i:i + ASSOCIATION_BATCH_SIZE]
            body = {"inputs": [{"id": str(did)} for did in batch]}
            data = await call_with_backoff(
                self._request, "POST",
                "/crm/v4/associations/deals/contacts/batch/read", None, body,
                label="deal associations",
            )
            for result in data.get("results", []):
                from_id = (result.get("from") or {}).get("id")
                if from_id:
                    associations[str(from_id)] = [
                        str(t.get("toObjectId")) for t in result.get("to", [])
                        if t.get("toObjectId") is not None
                    ]
        logger.info("Fetched contact associations for %d deals", len(associations))
        return associations

    # ─── Forms ───────────────────────────────────────────────

    async def form_submissions_page(self, form_guid: str, after: Optional[str] = None) -> Page:
        """One page of a form's submissions, newest first."""
        params = {"limit": FORM_SUBMISSIONS_PAGE_LIMIT}
        if after:
            params["after"] = after
        data = await self._request(
            "GET", f"/form-integrations/v1/submissions/forms/{form_guid}", params=params,
        )
        return Page(data.get("results", []), _next_after(data))

    async def get_form(self, form_guid: str) -> dict:
        return await self._request("GET", f"/marketing/v3/forms/{form_guid}")

    async def get_all_forms(self) -> List[dict]:
        async def fetch_page(cursor):
            params = {"limit": HUBSPOT_PAGE_LIMIT}
            if cursor:
                params["after"] = cursor
            data = await self._request("GET", "/marketing/v3/forms", params=params)
            return Page(data.get("results", []), _next_after(data))

        result = await paginate(fetch_page, label="forms")
        return result.records

    # ─── Lists ───────────────────────────────────────────────

    async def get_list(self, list_id: str) -> dict:
        return await self._request("GET", f"/crm/v3/lists/{list_id}")

    async def get_all_lists(self) -> List[dict]:
        async def fetch_page(cursor):
            offset = int(cursor or 0)
            data = await self._request(
                "POST", "/crm/v3/lists/search",
                json_body={"query": "", "count": LIST_SEARCH_PAGE_SIZE, "offset": offset},
            )
            lists = data.get("lists", [])
            next_cursor = str(data.get("offset")) if data.get("hasMore") else None
            return Page(lists, next_cursor)

        result = await paginate(fetch_page, label="lists")
        return result.records

    # ─── Account ─────────────────────────────────────────────

    async def get_account_info(self) -> dict:
        return await self._request("GET", "/account-info/v3/details")


async def validate_api_key(api_key: str) -> Dict[str, Any]:
    """Check a private-app key by reading account details."""
    client = HubSpotClient(api_key)
    try:
        info = await client.get_account_info()
    except APIAuthError:
        return {"valid": False, "error": "Invalid API key"}
    except APIPermissionError as e:
        return {"valid": False, "error": e.message}
    except APIError as e:
        return {"valid": False, "error": e.message}

    portal_id = str(info.get("portalId", "")) or None
    return {
        "valid": True,
        "portalId": portal_id,
        "accountName": f"HubSpot Account {portal_id or 'Connected'}",
    }


class HubSpotTokenRefresher:
    """
    Produces access tokens for stored HubSpot account rows.

    Private-app keys never expire. Accounts connected through OAuth carry an
    encrypted refresh token that is exchanged at the HubSpot token endpoint.
    """

    TOKEN_PATH = "/oauth/v1/token"

    def __init__(
        self,
        cipher: Optional[CredentialCipher] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        base_url: str = HUBSPOT_API_URL,
        clock=time.time,
    ):
        self.cipher = cipher or CredentialCipher()
        self.client_id = client_id or os.getenv("HUBSPOT_CLIENT_ID")
        self.client_secret = client_secret or os.getenv("HUBSPOT_CLIENT_SECRET")
        self.base_url = base_url
        self.clock = clock

    async def __call__(self, account: dict) -> AccessToken:
        stored = account.get("access_token")
        expires_at = account.get("token_expires_at")
        if stored and expires_at and float(expires_at) > self.clock() + 60:
            return AccessToken(self.cipher.decrypt(stored), float(expires_at))

        if account.get("refresh_token"):
            return await self._refresh_oauth(self.cipher.decrypt(account["refresh_token"]))

        api_key = account.get("api_key")
        if not api_key:
            raise MissingConfigurationError("HubSpot", "api_key")
        return AccessToken(self.cipher.decrypt(api_key), None)

    async def _refresh_oauth(self, refresh_token: str) -> AccessToken:
        if not (self.client_id and self.client_secret):
            raise MissingConfigurationError("HubSpot OAuth", "HUBSPOT_CLIENT_ID/SECRET")

        form = {
            "grant_type": "refresh_token",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
        }
        url = f"{self.base_url}{self.TOKEN_PATH}"
        async with aiohttp.ClientSession() as session:
            async with session.post(url, data=form, timeout=aiohttp.ClientTimeout(total=30)) as resp:
                if resp.status != 200:
                    logger.error("HubSpot token refresh returned %s", resp.status)
                    raise APIAuthError(self.TOKEN_PATH, status_code=resp.status)
                data = await resp.json()

        return AccessToken(
            data["access_token"],
            self.clock() + float(data.get("expires_in", 1800)),
        )
