"""
Supabase Client Helper for KPI Report Hub.
Provides the shared connection plus generic table query/upsert helpers.

Usage:
    from scripts.lib.supabase_client import get_client, query_table, upsert_row

    client = get_client()
    rows = query_table("goals", filters={"hubspot_account_id": "abc", "year": 2025})
"""
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from scripts.lib.errors import MissingConfigurationError
from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

# Load .env from project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(PROJECT_ROOT / ".env")

SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_KEY = (
    os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
    or os.environ.get("SUPABASE_KEY", "")
)

_client = None


def get_client():
    """Shared Supabase client, created on first use from SUPABASE_URL and the service-role key."""
    global _client
    if _client is not None:
        return _client

    if not SUPABASE_URL:
        raise MissingConfigurationError("Supabase", "SUPABASE_URL")
    if not SUPABASE_KEY:
        raise MissingConfigurationError("Supabase", "SUPABASE_SERVICE_ROLE_KEY")

    from supabase import create_client
    _client = create_client(SUPABASE_URL, SUPABASE_KEY)
    logger.info("Supabase client connected to %s", SUPABASE_URL)
    return _client


def query_table(
    table: str,
    select: str = "*",
    filters: Dict[str, Any] = None,
    order_by: str = None,
    desc: bool = True,
    limit: int = 100,
    offset: int = 0,
    client=None,
) -> List[Dict]:
    """
    Query a Supabase table with optional equality filters, ordering, and paging.

    Args:
        table: Table name.
        select: Columns to select (default "*").
        filters: Dict of column=value equality filters.
        order_by: Column to order by.
        desc: Descending order (default True).
        limit: Max rows to return.
        offset: Rows to skip.
        client: Explicit client (defaults to the shared singleton).

    Returns:
        List of row dicts. Errors propagate to the caller.
    """
    client = client or get_client()
    query = client.table(table).select(select)

    if filters:
        for col, val in filters.items():
            query = query.eq(col, val)

    if order_by:
        query = query.order(order_by, desc=desc)

    query = query.range(offset, offset + limit - 1)
    result = query.execute()
    return result.data or []


def upsert_row(
    table: str,
    row: Dict,
    on_conflict: str = None,
    client=None,
) -> Optional[Dict]:
    """
    Upsert (or insert, without on_conflict) a single row.

    Returns:
        The stored row as echoed by Supabase, or None if nothing came back.
    """
    client = client or get_client()
    query = client.table(table)
    if on_conflict:
        result = query.upsert(row, on_conflict=on_conflict).execute()
    else:
        result = query.insert(row).execute()
    data = result.data or []
    return data[0] if data else None


def delete_row(table: str, row_id: str, client=None) -> None:
    """Delete one row by primary key."""
    client = client or get_client()
    client.table(table).delete().eq("id", row_id).execute()
