"""
Reference-map enrichment for deals.

Owners and pipeline stages are fetched once per report and reused by every
aggregator. Unresolved ids fall back to a sentinel instead of failing.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from reporting.parsers import Deal
from reporting.quarters import parse_timestamp
from scripts.lib.logger import setup_logger
from scripts.lib.utils import safe_decimal, safe_float

logger = setup_logger("enrichment")

UNASSIGNED = "Unassigned"
UNKNOWN = "Unknown"
CLOSED_WON_STAGE = "closedwon"
CLOSED_LOST_STAGE = "closedlost"


@dataclass
class StageInfo:
    label: str
    probability: float = 0.0
    is_closed: bool = False
    pipeline_id: str = ""

    @property
    def is_won(self) -> bool:
        return self.is_closed and self.probability >= 1.0


@dataclass
class ReferenceMaps:
    owners: Dict[str, str] = field(default_factory=dict)
    stages: Dict[str, StageInfo] = field(default_factory=dict)
    pipelines: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def build(cls, owners_raw: List[dict], pipelines_raw: List[dict]) -> "ReferenceMaps":
        owners = {}
        for owner in owners_raw or []:
            oid = str(owner.get("id", ""))
            if not oid:
                continue
            name = f"{owner.get('firstName', '')} {owner.get('lastName', '')}".strip()
            owners[oid] = name or owner.get("email") or oid

        stages: Dict[str, StageInfo] = {}
        pipelines: Dict[str, str] = {}
        for pipeline in pipelines_raw or []:
            pid = str(pipeline.get("id", ""))
            pipelines[pid] = pipeline.get("label") or pid
            for stage in pipeline.get("stages", []):
                meta = stage.get("metadata") or {}
                stages[str(stage.get("id", ""))] = StageInfo(
                    label=stage.get("label") or str(stage.get("id", "")),
                    probability=safe_float(meta.get("probability")),
                    is_closed=str(meta.get("isClosed", "")).lower() == "true",
                    pipeline_id=pid,
                )

        logger.info(
            "Reference maps: %d owners, %d pipelines, %d stages",
            len(owners), len(pipelines), len(stages),
        )
        return cls(owners=owners, stages=stages, pipelines=pipelines)

    def owner_name(self, owner_id: Optional[str]) -> str:
        if not owner_id:
            return UNASSIGNED
        return self.owners.get(str(owner_id), UNKNOWN)

    def stage(self, stage_id: str) -> StageInfo:
        info = self.stages.get(stage_id)
        if info is not None:
            return info
        # No metadata: only HubSpot's default stage ids tell us the outcome
        if stage_id == CLOSED_WON_STAGE:
            return StageInfo(label=stage_id, probability=1.0, is_closed=True)
        if stage_id == CLOSED_LOST_STAGE:
            return StageInfo(label=stage_id, probability=0.0, is_closed=True)
        return StageInfo(label=stage_id or UNKNOWN)


def enrich_deal(raw: dict, maps: ReferenceMaps) -> Deal:
    """Build a typed Deal with owner, stage and pipeline resolved."""
    props = raw.get("properties") or {}
    stage_id = str(props.get("dealstage") or "")
    pipeline_id = str(props.get("pipeline") or "")
    owner_id = str(props.get("hubspot_owner_id") or "")
    stage = maps.stage(stage_id)

    return Deal(
        id=str(raw.get("id", "")),
        name=props.get("dealname") or "",
        amount=safe_decimal(props.get("amount")),
        stage_id=stage_id,
        stage_label=stage.label,
        stage_probability=stage.probability,
        is_closed=stage.is_closed,
        is_won=stage.is_won,
        pipeline_id=pipeline_id,
        pipeline_label=maps.pipelines.get(pipeline_id, pipeline_id or UNKNOWN),
        owner_id=owner_id,
        owner_name=maps.owner_name(owner_id),
        created_at=parse_timestamp(props.get("createdate") or raw.get("createdAt")),
        closed_at=parse_timestamp(props.get("closedate")),
        modified_at=parse_timestamp(props.get("hs_lastmodifieddate") or raw.get("updatedAt")),
    )


def enrich_deals(raw_deals: List[dict], maps: ReferenceMaps) -> List[Deal]:
    return [enrich_deal(raw, maps) for raw in raw_deals]
