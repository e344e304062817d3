"""
Shared FastAPI dependencies.

The store and connection manager live on ``app.state`` (see the lifespan in
dashboard.api.main); tests swap them through ``app.dependency_overrides``.
"""
from __future__ import annotations

from fastapi import Request

from integrations.google_business_profile import GoogleBusinessProfileClient
from integrations.hubspot import HubSpotClient
from reporting.pipeline import ReportPipeline


def get_store(request: Request):
    return request.app.state.store


def get_connections(request: Request):
    return request.app.state.connections


def get_pipeline(request: Request) -> ReportPipeline:
    return ReportPipeline(request.app.state.store, request.app.state.connections)


def get_hubspot_opener(request: Request):
    """Async callable turning an account id into a ready HubSpot client."""
    store = request.app.state.store
    connections = request.app.state.connections

    async def open_client(account_id: str) -> HubSpotClient:
        token = await connections.get_access_token(store.get_account(account_id))
        return HubSpotClient(token)

    return open_client


def get_gbp_factory():
    return GoogleBusinessProfileClient
