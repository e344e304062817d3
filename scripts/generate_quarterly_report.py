"""
Quarterly KPI Report Generator
================================
Generates a quarterly KPI report for one connected HubSpot account, stores
it in Supabase and optionally writes the report document to a JSON file.

Usage:
    python scripts/generate_quarterly_report.py --account-id 3f1c...
    python scripts/generate_quarterly_report.py --account-id 3f1c... --year 2024
    python scripts/generate_quarterly_report.py --account-id 3f1c... \
        --focus-areas "webinar leads" --output reports/q_2025.json
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv(PROJECT_ROOT / ".env")

from integrations.hubspot import HubSpotTokenRefresher  # noqa: E402
from reporting.pipeline import REPORT_TIMEOUT_SECONDS, ReportPipeline  # noqa: E402
from reporting.store import ReportStore  # noqa: E402
from scripts.lib.errors import HubError  # noqa: E402
from scripts.lib.logger import setup_logger  # noqa: E402
from scripts.lib.token_cache import ConnectionManager  # noqa: E402
from scripts.lib.utils import atomic_write_json  # noqa: E402

logger = setup_logger("generate_quarterly_report")


def _parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Generate a quarterly KPI report for a HubSpot account",
    )
    parser.add_argument("--account-id", required=True, help="hubspot_accounts row id")
    parser.add_argument("--year", type=int, default=None, help="Report year. Default: current year")
    parser.add_argument("--focus-areas", default=None, help="Topics the narrative should focus on")
    parser.add_argument(
        "--timeout",
        type=float,
        default=REPORT_TIMEOUT_SECONDS,
        help=f"Abort after this many seconds. Default: {REPORT_TIMEOUT_SECONDS:.0f}",
    )
    parser.add_argument("--output", default=None, help="Also write the report JSON to this file")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace, pipeline: ReportPipeline = None) -> dict:
    if pipeline is None:
        store = ReportStore()
        connections = ConnectionManager(
            HubSpotTokenRefresher(cipher=store.cipher), persist=store.save_token,
        )
        pipeline = ReportPipeline(store, connections)

    row = await pipeline.generate(
        args.account_id, year=args.year, focus_areas=args.focus_areas, timeout=args.timeout,
    )

    if args.output:
        if atomic_write_json(row.get("report_data", row), args.output):
            logger.info("  JSON: %s", args.output)
        else:
            logger.warning("Report stored but could not be written to %s", args.output)
    return row


def main(argv=None) -> int:
    """Main entry point."""
    args = _parse_args(argv)
    logger.info("Quarterly report generator starting")
    logger.info("  Account: %s", args.account_id)
    logger.info("  Year: %s", args.year or "current")

    try:
        row = asyncio.run(run(args))
    except HubError as e:
        logger.error("Report generation failed: %s", e)
        return 1

    report = row.get("report_data") or {}
    logger.info("=== Quarterly Report Complete ===")
    logger.info("  Report id: %s", row.get("id"))
    logger.info("  Title: %s", report.get("title", ""))
    logger.info("  KPI rows: %d", len((report.get("kpiTable") or {}).get("rows", [])))
    for note in report.get("dataNotes", []):
        logger.info("  Note: %s", note)
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as exc:
        logger.error("Quarterly report generation failed: %s", exc, exc_info=True)
        sys.exit(1)
