"""
Calendar-quarter bucketing.

Quarters are UTC half-open intervals ``[start, next_start)``, so an event at
exactly ``2025-04-01T00:00:00Z`` belongs to Q2 and never to Q1. Every
timestamp shape HubSpot, GA and Supabase hand us (epoch seconds, epoch
milliseconds, ISO strings, plain dates) goes through ``parse_timestamp``;
anything that cannot be read is treated as "no timestamp", never an error.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple, Union

QUARTERS = ("Q1", "Q2", "Q3", "Q4")

# Epoch values above this are milliseconds (HubSpot stores ms)
EPOCH_MS_THRESHOLD = 1e12

Number = Union[int, Decimal]

# internal value -> (display label, "became" property)
LIFECYCLE_STAGES: Dict[str, Tuple[str, str]] = {
    "subscriber": ("Subscriber", "hs_lifecyclestage_subscriber_date"),
    "lead": ("Lead", "hs_lifecyclestage_lead_date"),
    "marketingqualifiedlead": ("Marketing Qualified Lead", "hs_lifecyclestage_marketingqualifiedlead_date"),
    "salesqualifiedlead": ("Sales Qualified Lead", "hs_lifecyclestage_salesqualifiedlead_date"),
    "opportunity": ("Opportunity", "hs_lifecyclestage_opportunity_date"),
    "customer": ("Customer", "hs_lifecyclestage_customer_date"),
    "evangelist": ("Evangelist", "hs_lifecyclestage_evangelist_date"),
    "other": ("Other", "hs_lifecyclestage_other_date"),
}


@dataclass
class QuarterlyBucket:
    """Four quarterly counters. ``total`` is always their sum."""
    Q1: Number = 0
    Q2: Number = 0
    Q3: Number = 0
    Q4: Number = 0

    @classmethod
    def money(cls) -> "QuarterlyBucket":
        return cls(Decimal(0), Decimal(0), Decimal(0), Decimal(0))

    @property
    def total(self) -> Number:
        return self.Q1 + self.Q2 + self.Q3 + self.Q4

    def add(self, quarter: Optional[str], amount: Number = 1) -> bool:
        """Add ``amount`` to ``quarter``; a None quarter is ignored."""
        if quarter is None:
            return False
        setattr(self, quarter, getattr(self, quarter) + amount)
        return True

    def get(self, quarter: str) -> Number:
        return getattr(self, quarter)

    def to_dict(self) -> Dict[str, Any]:
        def _plain(v):
            return float(v) if isinstance(v, Decimal) else v

        out = {q: _plain(self.get(q)) for q in QUARTERS}
        out["total"] = _plain(self.total)
        return out


def _from_epoch(value: float) -> Optional[datetime]:
    if value <= 0:
        return None
    if value > EPOCH_MS_THRESHOLD:
        value = value / 1000.0
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Read a timestamp into an aware UTC datetime.

    Returns None for empty strings, "0", 0, None and anything unparseable.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    if isinstance(value, (int, float, Decimal)):
        try:
            return _from_epoch(float(value))
        except (TypeError, ValueError):
            return None

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text or text == "0":
        return None

    try:
        return _from_epoch(float(text))
    except ValueError:
        pass

    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def year_start(year: int) -> datetime:
    return datetime(year, 1, 1, tzinfo=timezone.utc)


def quarter_bounds(year: int) -> Dict[str, Tuple[datetime, datetime]]:
    """``{"Q1": (start, next_start), ...}`` for ``year``; end is exclusive."""
    starts = [datetime(year, month, 1, tzinfo=timezone.utc) for month in (1, 4, 7, 10)]
    starts.append(year_start(year + 1))
    return {q: (starts[i], starts[i + 1]) for i, q in enumerate(QUARTERS)}


def quarter_date_ranges(year: int) -> Dict[str, Tuple[str, str]]:
    """Inclusive ``YYYY-MM-DD`` ranges, as reporting APIs expect them."""
    return {
        "Q1": (f"{year}-01-01", f"{year}-03-31"),
        "Q2": (f"{year}-04-01", f"{year}-06-30"),
        "Q3": (f"{year}-07-01", f"{year}-09-30"),
        "Q4": (f"{year}-10-01", f"{year}-12-31"),
    }


def bucket(timestamp: Any, year: int) -> Optional[str]:
    """Quarter of ``year`` containing ``timestamp``, or None."""
    ts = parse_timestamp(timestamp)
    if ts is None or ts.year != year:
        return None
    for quarter, (start, end) in quarter_bounds(year).items():
        if start <= ts < end:
            return quarter
    return None


def to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)
