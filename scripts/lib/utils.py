"""
Utility functions for KPI Report Hub.
Atomic file writes and the numeric coercion used wherever user-entered or
CRM-supplied values may arrive as strings, numbers, or garbage.

Usage:
    from scripts.lib.utils import atomic_write_json, coerce_non_negative_int
"""
import json
import math
import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict

from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)


def atomic_write_json(data: Dict, file_path: str | Path, indent: int = 2) -> bool:
    """
    Write JSON data to file atomically using temp file + rename.
    Prevents data corruption if the program crashes during write.

    Args:
        data: Dictionary to serialize as JSON.
        file_path: Target file path.
        indent: JSON indentation level.

    Returns:
        True if successful, False otherwise.
    """
    file_path = Path(file_path)
    temp_path = file_path.with_suffix(file_path.suffix + ".tmp")

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=indent, default=str)

        os.replace(temp_path, file_path)
        logger.debug("Atomically wrote JSON to %s", file_path)
        return True

    except (OSError, TypeError, ValueError) as e:
        logger.error("Failed to write JSON to %s: %s", file_path, e)
        if temp_path.exists():
            temp_path.unlink(missing_ok=True)
        return False


def _clean_numeric_string(val: str) -> str:
    return val.strip().replace(",", "").replace("$", "").replace("_", "")


def coerce_non_negative_int(val: Any) -> int:
    """
    Coerce a goal-like value to a non-negative integer.

    Accepts ints, floats and numeric strings ("1,200", " 40 ", "12.0").
    None, booleans, negatives, NaN/inf and anything unparseable become 0.
    """
    if val is None or isinstance(val, bool):
        return 0
    if isinstance(val, int):
        return max(val, 0)
    if isinstance(val, Decimal):
        if not val.is_finite():
            return 0
        return max(int(val), 0)
    try:
        if isinstance(val, str):
            val = _clean_numeric_string(val)
            if not val:
                return 0
        number = float(val)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0
    return int(number)


def coerce_non_negative_decimal(val: Any) -> Decimal:
    """Monetary twin of coerce_non_negative_int; never rounds."""
    if val is None or isinstance(val, bool):
        return Decimal(0)
    try:
        if isinstance(val, str):
            val = _clean_numeric_string(val)
            if not val:
                return Decimal(0)
        if isinstance(val, float):
            val = repr(val)
        number = Decimal(val)
    except (InvalidOperation, TypeError, ValueError):
        return Decimal(0)
    if not number.is_finite() or number < 0:
        return Decimal(0)
    return number


def safe_decimal(val: Any, default: Decimal = Decimal(0)) -> Decimal:
    """Parse a CRM currency value (string or number); default on failure."""
    if val is None or val == "" or isinstance(val, bool):
        return default
    try:
        if isinstance(val, float):
            val = repr(val)
        number = Decimal(str(val).strip())
    except (InvalidOperation, TypeError, ValueError):
        return default
    if not number.is_finite():
        return default
    return number


def safe_float(val: Any, default: float = 0.0) -> float:
    """Safely convert a value to float."""
    if val is None or val == "":
        return default
    try:
        return float(val)
    except (ValueError, TypeError):
        return default
