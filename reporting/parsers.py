"""
Typed views over HubSpot response objects.

HubSpot returns every property as an optional string inside
``properties``; these parsers read them once into dataclasses so the
aggregators never poke at raw dicts.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from reporting.quarters import LIFECYCLE_STAGES, parse_timestamp
from scripts.lib.utils import coerce_non_negative_int, safe_decimal


@dataclass
class Deal:
    id: str
    name: str = ""
    amount: Decimal = Decimal(0)
    stage_id: str = ""
    stage_label: str = ""
    stage_probability: float = 0.0
    is_closed: bool = False
    is_won: bool = False
    pipeline_id: str = ""
    pipeline_label: str = ""
    owner_id: str = ""
    owner_name: str = ""
    created_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None


@dataclass
class Contact:
    id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    company: str = ""
    owner_id: str = ""
    lifecycle_stage: str = ""
    became: Dict[str, Optional[datetime]] = field(default_factory=dict)
    created_at: Optional[datetime] = None


@dataclass
class Company:
    id: str
    name: str = ""
    domain: str = ""
    industry: str = ""
    employee_count: int = 0
    annual_revenue: Decimal = Decimal(0)
    created_at: Optional[datetime] = None
    lifecycle_stage: str = ""


def _props(raw: dict) -> dict:
    return raw.get("properties") or {}


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def parse_contact(raw: dict) -> Contact:
    props = _props(raw)
    return Contact(
        id=_text(raw.get("id")),
        first_name=_text(props.get("firstname")),
        last_name=_text(props.get("lastname")),
        email=_text(props.get("email")),
        company=_text(props.get("company")),
        owner_id=_text(props.get("hubspot_owner_id")),
        lifecycle_stage=_text(props.get("lifecyclestage")).lower(),
        became={
            stage: parse_timestamp(props.get(prop))
            for stage, (_, prop) in LIFECYCLE_STAGES.items()
        },
        created_at=parse_timestamp(props.get("createdate") or raw.get("createdAt")),
    )


def parse_company(raw: dict) -> Company:
    props = _props(raw)
    return Company(
        id=_text(raw.get("id")),
        name=_text(props.get("name")),
        domain=_text(props.get("domain")),
        industry=_text(props.get("industry")),
        employee_count=coerce_non_negative_int(props.get("numberofemployees")),
        annual_revenue=safe_decimal(props.get("annualrevenue")),
        created_at=parse_timestamp(props.get("createdate") or raw.get("createdAt")),
        lifecycle_stage=_text(props.get("lifecyclestage")).lower(),
    )


def parse_submission_time(raw: dict) -> Optional[datetime]:
    """Submission timestamp from a form-integrations v1 result."""
    return parse_timestamp(raw.get("submittedAt"))


# Locations HubSpot has used for a list's member count, most specific first
LIST_SIZE_FIELDS: Tuple[Tuple[str, ...], ...] = (
    ("size",),
    ("hs_list_size",),
    ("listSize",),
    ("metaData", "size"),
    ("additionalProperties", "hs_list_size"),
)


@dataclass
class ListInfo:
    list_id: str
    name: str
    size: int
    size_source: Optional[str] = None  # which field supplied the size


def parse_list(raw: dict) -> ListInfo:
    """
    Read a list response into ``ListInfo``.

    The first field in ``LIST_SIZE_FIELDS`` that is present wins; a list
    with none of them reports size 0 and ``size_source=None``.
    """
    data = raw.get("list") if isinstance(raw.get("list"), dict) else raw

    size, source = 0, None
    for path in LIST_SIZE_FIELDS:
        node: Any = data
        for key in path:
            node = node.get(key) if isinstance(node, dict) else None
        if node is not None and node != "":
            size, source = coerce_non_negative_int(node), ".".join(path)
            break

    return ListInfo(
        list_id=_text(data.get("listId") or data.get("id")),
        name=_text(data.get("name")),
        size=size,
        size_source=source,
    )
