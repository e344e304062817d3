"""
Logging setup for KPI Report Hub.

Every module asks for its logger once at import time:

    from scripts.lib.logger import setup_logger
    logger = setup_logger("report_pipeline")

Records go to stdout and, unless LOG_TO_FILE=false, to logs/YYYYMMDD_kpi_hub.log.
LOG_LEVEL sets the threshold. Loggers still propagate to the root logger so
pytest's caplog and uvicorn's own handlers see the same records.
"""
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_DIR = Path(__file__).resolve().parent.parent.parent / "logs"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")


def _daily_file_handler(log_dir: Path, formatter: logging.Formatter) -> Optional[logging.Handler]:
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        path = log_dir / f"{datetime.now():%Y%m%d}_kpi_hub.log"
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as e:
        sys.stderr.write(f"File logging disabled ({log_dir}): {e}\n")
        return None
    handler.setFormatter(formatter)
    return handler


def setup_logger(
    name: str,
    level: Optional[str] = None,
    log_to_file: Optional[bool] = None,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """
    Return the named logger, attaching handlers on first use only.

    Args:
        name: Logger name, usually the module's short name.
        level: Threshold name; falls back to LOG_LEVEL, then INFO.
        log_to_file: Also write the daily file; falls back to LOG_TO_FILE.
        log_dir: Where the daily file goes (default: <project>/logs).
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_to_file is None:
        log_to_file = _env_flag("LOG_TO_FILE", True)
    if log_to_file:
        handler = _daily_file_handler(Path(log_dir) if log_dir else LOG_DIR, formatter)
        if handler is not None:
            logger.addHandler(handler)

    return logger
