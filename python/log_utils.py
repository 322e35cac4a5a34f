"""
Logging helpers for the Conflict Check System

Shared by every component that writes user-supplied names or identifiers
to the logs.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from config_manager import LoggingConfig


def sanitize_for_logging(text: str) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text

    Returns:
        Sanitized text safe for logging
    """
    if not text:
        return ''
    sanitized = re.sub(r'[\r\n\x00-\x1f\x7f-\x9f]', ' ', str(text))
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()
    return sanitized[:500] if len(sanitized) > 500 else sanitized


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """Configure the root logger from the logging section of config.yaml

    Args:
        config: Logging configuration (defaults are used when omitted)
    """
    config = config or LoggingConfig()
    root = logging.getLogger()
    root.setLevel(str(config.level).upper())
    root.handlers.clear()

    formatter = logging.Formatter(config.format)

    if config.console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
