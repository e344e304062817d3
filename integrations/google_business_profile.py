"""
Google Business Profile Integration
=====================================

Reads the business card shown in reports (name, address, phone, categories,
opening hours, rating) for a location the account has linked. Uses a stored
OAuth refresh token; the consent flow itself lives outside this hub.
"""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import httpx

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
from scripts.lib.token_cache import AccessToken

logger = setup_logger("google_business_profile")

TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
GBP_API_BASE = "https://mybusinessbusinessinformation.googleapis.com/v1"
GBP_ACCOUNT_API_BASE = "https://mybusinessaccountmanagement.googleapis.com/v1"
GBP_REVIEWS_API_BASE = "https://mybusiness.googleapis.com/v4"
LOCATION_READ_MASK = "name,title,storefrontAddress,phoneNumbers,websiteUri,categories,regularHours"

DAY_NAMES = ["SUNDAY", "MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY"]


def _check(response: httpx.Response, what: str) -> None:
    if response.status_code < 400:
        return
    if response.status_code == 401:
        raise APIAuthError(what)
    if response.status_code == 403:
        raise APIPermissionError(what, message="Business Profile access denied")
    if response.status_code == 404:
        raise APINotFoundError(what)
    if response.status_code == 429:
        raise APIRateLimitError(what)
    raise APIError(
        f"Business Profile API returned {response.status_code}",
        status_code=response.status_code, url=what,
    )


def _format_time(value: Optional[dict], default: str) -> str:
    if not value or "hours" not in value:
        return default
    return f"{value['hours']}:{int(value.get('minutes') or 0):02d}"


def parse_business_info(location: dict) -> Dict[str, Any]:
    """Flatten a v1 location resource into the report's business card."""
    address = location.get("storefrontAddress") or {}
    address_parts = list(address.get("addressLines") or []) + [
        address.get("locality"), address.get("administrativeArea"), address.get("postalCode"),
    ]

    categories: List[str] = []
    cats = location.get("categories") or {}
    primary = (cats.get("primaryCategory") or {}).get("displayName")
    if primary:
        categories.append(primary)
    categories.extend(
        c["displayName"] for c in cats.get("additionalCategories") or [] if c.get("displayName")
    )

    grouped: Dict[str, List[str]] = {}
    for period in (location.get("regularHours") or {}).get("periods") or []:
        day = period.get("openDay")
        if isinstance(day, int):
            day = DAY_NAMES[day % 7]
        grouped.setdefault(str(day).title(), []).append(
            f"{_format_time(period.get('openTime'), '00:00')} - "
            f"{_format_time(period.get('closeTime'), '23:59')}"
        )
    hours = [
        {"day": day.title(), "hours": ", ".join(grouped[day.title()])}
        for day in DAY_NAMES if day.title() in grouped
    ]

    return {
        "businessName": location.get("title", ""),
        "address": ", ".join(p for p in address_parts if p),
        "phone": (location.get("phoneNumbers") or {}).get("primaryPhone", ""),
        "website": location.get("websiteUri", ""),
        "categories": categories,
        "hours": hours,
        "averageRating": 0,
        "totalReviewCount": 0,
    }


class GoogleBusinessProfileClient:
    """Business Profile connector for one stored refresh token."""

    def __init__(
        self,
        refresh_token: Optional[str],
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.refresh_token = refresh_token
        self.client_id = client_id or os.getenv("GBP_CLIENT_ID")
        self.client_secret = client_secret or os.getenv("GBP_CLIENT_SECRET")
        self._transport = transport
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.refresh_token and self.client_id and self.client_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _call(self, client: httpx.AsyncClient, method: str, url: str, what: str, **kwargs) -> dict:
        """Send one request and return its JSON body; raise a typed error on failure."""
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            raise APITimeoutError(what, self.timeout)
        except httpx.HTTPError as e:
            raise APIError(f"Business Profile request failed: {e}", url=what)
        _check(response, what)
        try:
            return response.json()
        except ValueError:
            raise APIError("Business Profile returned an unreadable response", url=what)

    async def refresh_access_token(self) -> AccessToken:
        if not self.is_configured:
            raise MissingConfigurationError("Google Business Profile", "GBP refresh token")

        async with self._client() as client:
            data = await self._call(client, "POST", TOKEN_ENDPOINT, "oauth2 token", data={
                "refresh_token": self.refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
            })
        if not data.get("access_token"):
            raise APIAuthError("oauth2 token")
        return AccessToken(data["access_token"], None)

    async def list_accounts(self, access_token: str) -> List[dict]:
        async with self._client() as client:
            data = await self._call(
                client, "GET", f"{GBP_ACCOUNT_API_BASE}/accounts", "accounts",
                headers={"Authorization": f"Bearer {access_token}"},
            )
        return data.get("accounts", [])

    async def list_locations(self, access_token: str, account_name: str) -> List[dict]:
        async with self._client() as client:
            data = await self._call(
                client, "GET", f"{GBP_API_BASE}/{account_name}/locations", f"{account_name}/locations",
                params={"readMask": "name,title,storefrontAddress"},
                headers={"Authorization": f"Bearer {access_token}"},
            )
        return data.get("locations", [])

    async def all_locations(self) -> List[Dict[str, str]]:
        """Every location reachable with the stored token, for the settings picker."""
        token = (await self.refresh_access_token()).token
        locations = []
        for account in await self.list_accounts(token):
            for location in await self.list_locations(token, account["name"]):
                locations.append({
                    "account": account.get("accountName", account["name"]),
                    "name": location.get("name", ""),
                    "title": location.get("title", ""),
                    "address": parse_business_info(location)["address"],
                })
        logger.info("Found %d Business Profile locations", len(locations))
        return locations

    async def get_business_info(self, location_name: str) -> Dict[str, Any]:
        """Business card for ``location_name`` (e.g. ``locations/123``)."""
        token = (await self.refresh_access_token()).token
        headers = {"Authorization": f"Bearer {token}"}

        async with self._client() as client:
            location = await self._call(
                client, "GET", f"{GBP_API_BASE}/{location_name}", location_name,
                params={"readMask": LOCATION_READ_MASK}, headers=headers,
            )
            info = parse_business_info(location)

            # Ratings live on the legacy v4 API, which many projects cannot call
            try:
                reviews = await client.get(
                    f"{GBP_REVIEWS_API_BASE}/{location_name}/reviews", headers=headers,
                )
                if reviews.status_code == 200:
                    data = reviews.json()
                    info["averageRating"] = data.get("averageRating", 0) or 0
                    info["totalReviewCount"] = data.get("totalReviewCount", 0) or 0
                else:
                    logger.debug("Reviews API returned %s for %s", reviews.status_code, location_name)
            except (httpx.HTTPError, ValueError) as e:
                logger.debug("Reviews API unavailable: %s", e)

        logger.info("Fetched business profile for %s", info["businessName"] or location_name)
        return info
