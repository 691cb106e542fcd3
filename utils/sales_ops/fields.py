# utils/sales_ops/fields.py
"""
Value helpers for rows coming out of the database / DataFrames.

Rows reach the business rules either as dicts from execute_query or as
DataFrame records, where a missing value may be None, NaN or NaT and JSON
columns may be dicts or raw JSON text.
"""

import json
import logging
from datetime import datetime, date
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def is_missing(value: Any) -> bool:
    """None, NaN, NaT and blank strings count as missing."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ''
    if isinstance(value, (dict, list, tuple, set)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def clean_str(value: Any) -> Optional[str]:
    """Trimmed string or None."""
    if is_missing(value):
        return None
    return str(value).strip()


def as_dict(value: Any) -> Dict[str, Any]:
    """Decode a JSON column (dict, JSON text or missing) to a dict."""
    if isinstance(value, dict):
        return value
    if is_missing(value):
        return {}
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            logger.debug(f"Ignoring non-JSON value: {value[:50]}")
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def as_bool(value: Any) -> bool:
    if is_missing(value):
        return False
    if isinstance(value, str):
        return value.strip().lower() in ('true', 't', '1', 'yes', 'y')
    return bool(value)


def to_float(value: Any, default: float = 0.0) -> float:
    if is_missing(value):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def to_timestamp(value: Any) -> Optional[pd.Timestamp]:
    """
    Parse to a timezone-aware UTC Timestamp.

    Naive values are treated as UTC, matching timestamptz columns read
    without a session time zone.
    """
    if is_missing(value):
        return None
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError):
        return None
    if pd.isna(ts):
        return None
    if ts.tzinfo is None:
        return ts.tz_localize('UTC')
    return ts.tz_convert('UTC')


def utc_now(now: Optional[datetime] = None) -> pd.Timestamp:
    """Current time (or the injected `now`) as a UTC Timestamp."""
    if now is None:
        return pd.Timestamp.now(tz='UTC')
    return to_timestamp(now)


def to_date(value: Any) -> Optional[date]:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    ts = to_timestamp(value)
    return ts.date() if ts is not None else None


def to_native(value: Any) -> Any:
    """numpy scalars -> Python scalars, for JSON payloads and SQL params."""
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    return value


def to_records(data) -> list:
    """DataFrame, list of dicts or None -> list of dicts."""
    if data is None:
        return []
    if isinstance(data, pd.DataFrame):
        if data.empty:
            return []
        return data.to_dict('records')
    return list(data)
