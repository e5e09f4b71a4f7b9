"""
parsing.py
-----------
Tolerant parsing of the amount and date fields of raw transaction rows.

Neither function raises on bad data: an unparsable amount becomes 0.0 and an
unparsable date becomes None, so one malformed row never aborts a batch.
"""

import logging
import re
import unicodedata
from datetime import datetime
from decimal import Decimal

import pandas as pd

logger = logging.getLogger(__name__)

_AMOUNT_STRIP_RE = re.compile(r"[^0-9.\-]")

_COMPACT_DATE_RE = re.compile(r"^\d{8}$")

# Japanese ledgers mark negative amounts with a triangle.
NEGATIVE_MARKS = ("△", "▲")

EPOCH = datetime(1970, 1, 1)


def parse_amount(value) -> float:
    """
    Parse a signed amount such as "-1,490", "¥1,490", "△500" or -1490.

    Everything except digits, "." and "-" is stripped before conversion; a
    leading △ or ▲ counts as a minus sign.
    Returns 0.0 when nothing numeric remains.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        amount = float(value)
        return 0.0 if amount != amount else amount  # NaN from pandas

    text = unicodedata.normalize("NFKC", str(value)).strip()
    cleaned = _AMOUNT_STRIP_RE.sub("", text)
    negative = cleaned.startswith("-") or text.startswith(NEGATIVE_MARKS)
    cleaned = cleaned.replace("-", "")
    if not cleaned or cleaned == ".":
        logger.debug(f"Unparsable amount {value!r}, treating as 0.")
        return 0.0

    try:
        amount = float(cleaned)
    except ValueError:
        logger.debug(f"Unparsable amount {value!r}, treating as 0.")
        return 0.0
    return -amount if negative else amount


def parse_date(value) -> datetime | None:
    """
    Parse YYYY/MM/DD, YYYY-MM-DD or YYYYMMDD; anything else goes through
    pandas' general parser. Returns None when the value cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value

    text = unicodedata.normalize("NFKC", str(value)).strip()
    if not text:
        return None

    try:
        if "/" in text and len(text.split("/")) == 3:
            return datetime.strptime(text, "%Y/%m/%d")
        if "-" in text and len(text.split("-")) == 3:
            return datetime.strptime(text, "%Y-%m-%d")
        if _COMPACT_DATE_RE.match(text):
            return datetime.strptime(text, "%Y%m%d")
    except ValueError:
        pass

    parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed):
        logger.debug(f"Unparsable date {value!r}, excluded from pattern analysis.")
        return None
    return parsed.to_pydatetime().replace(tzinfo=None)


def date_or_epoch(value) -> datetime:
    """Date used for "most recent" comparisons: unparsable sorts first."""
    return parse_date(value) or EPOCH
