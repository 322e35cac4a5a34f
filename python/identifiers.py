"""
Identifier normalization for company tax numbers (INN) and personal
identification numbers (PINFL).

Invalid input is never an error: it normalizes to None and is treated
as "unknown" by every caller.
"""

import logging
import re
from typing import Any, Optional

from log_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

COMPANY_ID_PATTERN = re.compile(r'^([0-9]{9}|[0-9]{12})$')
PERSON_ID_PATTERN = re.compile(r'^[0-9]{14}$')

_SEPARATORS = re.compile(r'[\s\-]')


def _strip(raw: Any) -> str:
    return _SEPARATORS.sub('', str(raw)).strip()


def normalize_company_id(raw: Any, warn: bool = True) -> Optional[str]:
    """Canonicalize a company identifier (INN)

    Whitespace and dashes are removed; the result must be 9 or 12 digits.

    Args:
        raw: Identifier as entered (str or int)
        warn: Log rejected non-empty input

    Returns:
        Normalized identifier, or None when absent or malformed
    """
    if raw is None or raw == '':
        return None
    normalized = _strip(raw)
    if not COMPANY_ID_PATTERN.match(normalized):
        if normalized and warn:
            logger.warning("Invalid company identifier format: %s", sanitize_for_logging(str(raw)))
        return None
    return normalized


def normalize_person_id(raw: Any, warn: bool = True) -> Optional[str]:
    """Canonicalize a personal identifier (PINFL)

    Whitespace and dashes are removed; the result must be 14 digits.

    Args:
        raw: Identifier as entered (str or int)
        warn: Log rejected non-empty input

    Returns:
        Normalized identifier, or None when absent or malformed
    """
    if raw is None or raw == '':
        return None
    normalized = _strip(raw)
    if not PERSON_ID_PATTERN.match(normalized):
        if normalized and warn:
            logger.warning("Invalid person identifier format: %s", sanitize_for_logging(str(raw)))
        return None
    return normalized
