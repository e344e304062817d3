"""
Cursor pagination with rate-limit back-off.

Every CRM listing in the hub goes through ``paginate``: it follows the
``after`` cursor page by page, retries a page that was rate limited
(exponential back-off via tenacity, honouring Retry-After), and stops at a
safety cap so a runaway portal cannot exhaust memory.

Usage:
    from scripts.lib.pagination import Page, paginate

    async def fetch_page(cursor):
        data = await client.list_page("deals", after=cursor)
        return Page(data["results"], data.get("paging", {}).get("next", {}).get("after"))

    result = await paginate(fetch_page, label="deals")
    deals = result.records
"""
from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from scripts.lib.errors import APIRateLimitError
from scripts.lib.logger import setup_logger

logger = setup_logger("pagination")

PAGINATION_SAFETY_CAP = int(os.getenv("PAGINATION_SAFETY_CAP", "100000"))
RATE_LIMIT_MAX_RETRIES = int(os.getenv("RATE_LIMIT_MAX_RETRIES", "5"))
RATE_LIMIT_INITIAL_DELAY = float(os.getenv("RATE_LIMIT_INITIAL_DELAY", "1.0"))
RATE_LIMIT_MAX_DELAY = float(os.getenv("RATE_LIMIT_MAX_DELAY", "60.0"))


@dataclass
class Page:
    """One page of results plus the cursor for the next one (None = last page)."""
    results: List[Any]
    next_cursor: Optional[str] = None


@dataclass
class PaginationResult:
    records: List[Any] = field(default_factory=list)
    pages: int = 0
    truncated: bool = False      # safety cap reached
    rate_limited: bool = False   # retries exhausted, records are partial
    last_cursor: Optional[str] = None


FetchPage = Callable[[Optional[str]], Awaitable[Page]]


def _backoff_wait(initial_delay: float, max_delay: float):
    exponential = wait_exponential(multiplier=initial_delay, max=max_delay)

    def _wait(retry_state) -> float:
        delay = exponential(retry_state)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(exc, "retry_after", None)
        if retry_after:
            delay = max(delay, min(float(retry_after), max_delay))
        return delay

    return _wait


async def call_with_backoff(
    call: Callable[..., Awaitable[Any]],
    *args,
    label: str = "request",
    max_retries: int = RATE_LIMIT_MAX_RETRIES,
    initial_delay: float = RATE_LIMIT_INITIAL_DELAY,
    max_delay: float = RATE_LIMIT_MAX_DELAY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Any:
    """
    Await ``call(*args)``, retrying the identical call while rate limited.

    Raises:
        APIRateLimitError: once max_retries retries have been used up.
        Any other exception from the call, unchanged and unretried.
    """
    def _log_retry(retry_state):
        logger.warning(
            "Rate limited fetching %s (attempt %d/%d), retrying in %.1fs",
            label, retry_state.attempt_number, max_retries + 1,
            retry_state.next_action.sleep,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=_backoff_wait(initial_delay, max_delay),
        retry=retry_if_exception_type(APIRateLimitError),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )
    return await retrying(call, *args)


async def fetch_with_backoff(
    fetch_page: FetchPage,
    cursor: Optional[str],
    *,
    label: str = "records",
    max_retries: int = RATE_LIMIT_MAX_RETRIES,
    initial_delay: float = RATE_LIMIT_INITIAL_DELAY,
    max_delay: float = RATE_LIMIT_MAX_DELAY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Page:
    """Fetch a single page, retrying the same cursor while rate limited."""
    return await call_with_backoff(
        fetch_page, cursor,
        label=label,
        max_retries=max_retries,
        initial_delay=initial_delay,
        max_delay=max_delay,
        sleep=sleep,
    )


async def paginate(
    fetch_page: FetchPage,
    *,
    label: str = "records",
    max_records: int = PAGINATION_SAFETY_CAP,
    max_retries: int = RATE_LIMIT_MAX_RETRIES,
    initial_delay: float = RATE_LIMIT_INITIAL_DELAY,
    max_delay: float = RATE_LIMIT_MAX_DELAY,
    stop_when: Optional[Callable[[List[Any]], bool]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> PaginationResult:
    """
    Retrieve every page reachable from the first cursor.

    Stops when the cursor runs out, when ``max_records`` is reached (the
    result is trimmed to the cap and a warning logged), when
    ``stop_when(page_results)`` returns True, or when a page stays rate
    limited after ``max_retries`` retries. In the last case the records
    gathered so far are returned with ``rate_limited=True``.
    """
    result = PaginationResult()
    cursor: Optional[str] = None

    while True:
        try:
            page = await fetch_with_backoff(
                fetch_page, cursor,
                label=label,
                max_retries=max_retries,
                initial_delay=initial_delay,
                max_delay=max_delay,
                sleep=sleep,
            )
        except APIRateLimitError:
            result.rate_limited = True
            logger.warning(
                "Giving up on %s after %d retries; returning %d partial records "
                "from %d pages",
                label, max_retries, len(result.records), result.pages,
            )
            break

        result.pages += 1
        result.records.extend(page.results)
        logger.debug(
            "%s page %d: %d records (total: %d)",
            label, result.pages, len(page.results), len(result.records),
        )

        if len(result.records) >= max_records:
            if len(result.records) > max_records or page.next_cursor:
                result.truncated = True
                logger.warning(
                    "Safety cap of %d records hit while fetching %s; "
                    "results are truncated",
                    max_records, label,
                )
            del result.records[max_records:]
            break

        if stop_when is not None and stop_when(page.results):
            logger.debug("%s: stop condition met after page %d", label, result.pages)
            break

        if not page.next_cursor:
            break
        if page.next_cursor == cursor:
            logger.warning("%s: cursor %s repeated, stopping", label, cursor)
            break

        cursor = page.next_cursor
        result.last_cursor = cursor

    return result
