import logging
import re
import sys
import io
from pathlib import Path
from datetime import datetime
from typing import Optional

from mailbridge.utils.config import settings

EMAIL_RE = re.compile(r"([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+)\.[A-Za-z]{2,}")
TOKEN_RE = re.compile(r"(Bearer\s+)?([A-Za-z0-9-_]{20,})")


def mask_secret(value: Optional[str]) -> str:
    """Render a credential as its first and last 4 characters only."""
    if not value:
        return "<empty>"
    if len(value) <= 8:
        return "<redacted>"
    return f"{value[:4]}...{value[-4:]}"


class MaskPIIFilter(logging.Filter):
    """Filter to mask PII (emails, tokens) in log messages."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        msg = EMAIL_RE.sub(lambda m: f"{m.group(1)[:2]}***@***", message)
        msg = TOKEN_RE.sub("***TOKEN***", msg)
        record.msg = msg
        record.args = ()
        return True

def configure_logging(
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
    to_file: Optional[bool] = None,
) -> Optional[Path]:
    """
    Configure logging with console and (optionally) file output.

    - Console output for real-time monitoring
    - Daily file under LOG_DIR, skipped when LOG_TO_FILE is false
      (stderr-only mode for read-only environments)
    - PII and token masking on every handler

    Returns the log file path, or None in stderr-only mode.
    """
    # Set console output to UTF-8 encoding (especially for Windows)
    if sys.platform == "win32":
        try:
            if hasattr(sys.stdout, 'buffer'):
                sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
            if hasattr(sys.stderr, 'buffer'):
                sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')
        except (AttributeError, OSError):
            pass

    level_name = (level or settings.LOG_LEVEL).upper()
    write_file = settings.LOG_TO_FILE if to_file is None else to_file

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s:%(funcName)s:%(lineno)d - %(message)s"
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level_name)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(MaskPIIFilter())

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()
    logger.addHandler(console_handler)

    log_file = None
    if write_file:
        directory = Path(log_dir or settings.LOG_DIR)
        directory.mkdir(parents=True, exist_ok=True)
        log_file = directory / f"mailbridge_{datetime.now().strftime('%Y%m%d')}.log"

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)  # More detailed in file
        file_handler.setFormatter(formatter)
        file_handler.addFilter(MaskPIIFilter())
        logger.addHandler(file_handler)

    logger.info(
        "Logging configured - Console: %s, File: %s",
        level_name,
        log_file if log_file else "disabled (stderr only)",
    )
    return log_file
