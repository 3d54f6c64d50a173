"""
Centralized logging configuration for the AI Gateway.

Usage:
    from config.logging_config import setup_logging, get_logger

    setup_logging(log_level="INFO")
    logger = get_logger(__name__)

Sensitive values (provider API keys, bearer tokens, JWTs) are masked
before records reach any handler when filter_sensitive_data is enabled.
"""

import os
import re
import logging
import logging.handlers
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DIAGNOSTIC_FORMAT = (
    "%(asctime)s %(levelname)s [%(name)s] "
    "%(module)s.%(funcName)s:%(lineno)d - %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_SENSITIVE_PATTERNS = [
    # Anthropic style keys
    (re.compile(r"sk-ant-[A-Za-z0-9_\-]{8,}"), "sk-ant-***"),
    # Authorization: Bearer <token>
    (re.compile(r"(Bearer\s+)[A-Za-z0-9_\-\.=]+", re.IGNORECASE), r"\1***"),
    # Bare JWTs
    (re.compile(r"eyJ[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+"), "***jwt***"),
    # x-api-key / apikey headers rendered into messages
    (re.compile(r"((?:x-api-key|apikey)['\"]?\s*[:=]\s*['\"]?)[^'\"\s,}]+", re.IGNORECASE), r"\1***"),
]


class SensitiveDataFilter(logging.Filter):
    """Mask credentials in log messages and arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True

        masked = mask_sensitive(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def mask_sensitive(text: str) -> str:
    """Replace anything that looks like a credential with a placeholder."""
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def setup_logging(
    log_level: str = "INFO",
    enable_diagnostic: bool = False,
    log_to_console: bool = True,
    log_to_file: bool = False,
    filter_sensitive_data: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure the root logger.

    Safe to call more than once; later calls replace the handlers installed
    by earlier ones.

    Args:
        log_level: Root log level name (DEBUG, INFO, WARNING, ...)
        enable_diagnostic: Include module/function/line in every record
        log_to_console: Attach a stream handler
        log_to_file: Attach a rotating file handler
        filter_sensitive_data: Mask credentials before output
        log_file: Target file (defaults to LOG_FILE env or logs/ai_gateway.log)
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_ai_gateway_handler", False):
            root.removeHandler(handler)

    level = getattr(logging, str(log_level).upper(), logging.INFO)
    root.setLevel(level)

    formatter = logging.Formatter(
        DIAGNOSTIC_FORMAT if enable_diagnostic else LOG_FORMAT,
        DATE_FORMAT
    )

    handlers: list[logging.Handler] = []
    if log_to_console:
        handlers.append(logging.StreamHandler())

    if log_to_file:
        path = Path(log_file or os.getenv("LOG_FILE", "logs/ai_gateway.log"))
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
            )
        )

    for handler in handlers:
        handler.setFormatter(formatter)
        if filter_sensitive_data:
            handler.addFilter(SensitiveDataFilter())
        handler._ai_gateway_handler = True
        root.addHandler(handler)

    # httpx logs every request URL at INFO, which includes PostgREST filters
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a module logger."""
    return logging.getLogger(name or "ai_gateway")
