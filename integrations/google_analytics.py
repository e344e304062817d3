"""
Google Analytics 4 Integration
================================

Reads website traffic from the GA4 Data API (``properties/{id}:runReport``)
using a service account:
- Scalar totals for a date range (sessions, page views)
- Channel group breakdown (sessionDefaultChannelGroup x sessions)

Setup:
1. Create a service account in Google Cloud and enable the Analytics Data API
2. Add the service account email as a Viewer on the GA4 property
3. Put the JSON key in GOOGLE_SERVICE_ACCOUNT_JSON (or a path in
   GOOGLE_SERVICE_ACCOUNT_FILE)
"""
from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from scripts.lib.errors import (
    APIAuthError,
    APIError,
    APINotFoundError,
    APIPermissionError,
    APIRateLimitError,
    APITimeoutError,
    ConfigError,
    MissingConfigurationError,
)
from scripts.lib.logger import setup_logger

logger = setup_logger("google_analytics")

GA_DATA_API_URL = "https://analyticsdata.googleapis.com/v1beta"
GA_SCOPES = ["https://www.googleapis.com/auth/analytics.readonly"]
REQUEST_TIMEOUT = float(os.getenv("GA_REQUEST_TIMEOUT", "30"))


def load_service_account_info() -> Optional[Dict[str, Any]]:
    """Service account JSON from the environment, or None when unset."""
    raw = os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON")
    path = os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE")
    if not raw and path:
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = f.read()
        except OSError as e:
            raise ConfigError(f"Cannot read service account file: {e}", config_path=path)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"GOOGLE_SERVICE_ACCOUNT_JSON is not valid JSON: {e}")


def _metric_value(row: dict, index: int = 0) -> int:
    values = row.get("metricValues") or []
    if len(values) <= index:
        return 0
    try:
        return int(float(values[index].get("value") or 0))
    except (TypeError, ValueError):
        return 0


class GoogleAnalyticsClient:
    """
    GA4 Data API connector.

    ``token_provider`` replaces the service-account flow (tests, or callers
    that already hold a token). ``transport`` is handed to httpx.
    """

    def __init__(
        self,
        service_account_info: Optional[Dict[str, Any]] = None,
        token_provider: Optional[Callable[[], Awaitable[str]]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        base_url: str = GA_DATA_API_URL,
        timeout: float = REQUEST_TIMEOUT,
    ):
        if service_account_info is None and token_provider is None:
            service_account_info = load_service_account_info()
        self.service_account_info = service_account_info
        self._token_provider = token_provider
        self._transport = transport
        self.base_url = base_url
        self.timeout = timeout
        self._credentials = None

    @property
    def is_configured(self) -> bool:
        return bool(self.service_account_info or self._token_provider)

    async def _access_token(self) -> str:
        if self._token_provider is not None:
            return await self._token_provider()
        if not self.service_account_info:
            raise MissingConfigurationError("Google Analytics", "GOOGLE_SERVICE_ACCOUNT_JSON")

        from google.auth.exceptions import GoogleAuthError
        from google.auth.transport.requests import Request
        from google.oauth2 import service_account

        if self._credentials is None:
            try:
                self._credentials = service_account.Credentials.from_service_account_info(
                    self.service_account_info, scopes=GA_SCOPES,
                )
            except (ValueError, GoogleAuthError) as e:
                logger.error("Google service account key is malformed: %s", e)
                raise ConfigError(f"Google service account key is malformed: {e}") from e
        if not self._credentials.valid:
            try:
                await asyncio.to_thread(self._credentials.refresh, Request())
            except (GoogleAuthError, ValueError) as e:
                self._credentials = None
                logger.error("Google Analytics authentication failed: %s", type(e).__name__)
                raise APIAuthError("oauth2.googleapis.com/token") from e
        return self._credentials.token

    async def run_report(self, property_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST one runReport request; raise a typed error on failure."""
        token = await self._access_token()
        path = f"/properties/{property_id}:runReport"
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport,
        ) as client:
            try:
                response = await client.post(path, headers=headers, json=body)
            except httpx.TimeoutException:
                raise APITimeoutError(path, self.timeout)
            except httpx.HTTPError as e:
                raise APIError(f"Google Analytics request failed: {e}", url=path)

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise APIRateLimitError(path, float(retry_after) if retry_after else None)
        if response.status_code == 401:
            raise APIAuthError(path)
        if response.status_code == 403:
            raise APIPermissionError(
                path, message="Service account has no access to this GA4 property",
            )
        if response.status_code == 404:
            raise APINotFoundError(path)
        if response.status_code >= 400:
            logger.error(
                "GA API error %s for property %s: %s",
                response.status_code, property_id, response.text[:300],
            )
            raise APIError(
                f"Google Analytics returned {response.status_code}",
                status_code=response.status_code, url=path,
            )
        try:
            return response.json()
        except ValueError:
            logger.error("GA returned a non-JSON body for property %s", property_id)
            raise APIError("Google Analytics returned an unreadable response", url=path)

    async def metric_total(
        self, property_id: str, metric: str, start_date: str, end_date: str,
    ) -> int:
        """Sum of ``metric`` over every row of an inclusive date range."""
        data = await self.run_report(property_id, {
            "dateRanges": [{"startDate": start_date, "endDate": end_date}],
            "metrics": [{"name": metric}],
        })
        return sum(_metric_value(row) for row in data.get("rows") or [])

    async def sessions(self, property_id: str, start_date: str, end_date: str) -> int:
        return await self.metric_total(property_id, "sessions", start_date, end_date)

    async def page_views(self, property_id: str, start_date: str, end_date: str) -> int:
        return await self.metric_total(property_id, "screenPageViews", start_date, end_date)

    async def channel_sessions(self, property_id: str, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """Sessions per default channel group, largest first."""
        data = await self.run_report(property_id, {
            "dateRanges": [{"startDate": start_date, "endDate": end_date}],
            "dimensions": [{"name": "sessionDefaultChannelGroup"}],
            "metrics": [{"name": "sessions"}],
            "orderBys": [{"metric": {"metricName": "sessions"}, "desc": True}],
        })
        channels = []
        for row in data.get("rows") or []:
            dims = row.get("dimensionValues") or [{}]
            channels.append({
                "channel": dims[0].get("value") or "Unknown",
                "sessions": _metric_value(row),
            })
        logger.info("GA channel breakdown: %d channels", len(channels))
        return channels
