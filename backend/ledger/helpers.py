"""Shared parsing, money and settings helpers for the ledger.

Sheet cells arrive as loosely formatted text ("1,250.00", "15/10/2025",
Excel serials, blanks). Everything here is lenient on read and strict only
where a caller asks for it (``require_amount``).
"""

from __future__ import annotations

import logging
import os
import uuid
import warnings
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Optional

import pandas as pd
from django.conf import settings
from django.utils import timezone

from .exceptions import BestEffortFailure, ValidationError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"

_BLANK_MARKERS = ("nat", "nan", "null", "none", "<na>")
_EXCEL_ORIGIN = datetime(1899, 12, 30)


def get_setting(key: str, default: Any = None) -> Any:
    """Read a setting from Django settings, then the environment."""
    if hasattr(settings, key):
        value = getattr(settings, key)
        if value not in (None, ""):
            return value
    value = os.getenv(key)
    if value not in (None, ""):
        return value
    return default


def setting_int(key: str, default: int) -> int:
    value = get_setting(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Setting %s=%r is not an integer; using %s", key, value, default)
        return default


def setting_bool(key: str, default: bool) -> bool:
    value = get_setting(key, default)
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def local_now() -> datetime:
    """Naive wall-clock time in the configured TIME_ZONE."""
    return timezone.localtime().replace(tzinfo=None)


def clean_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and pd.isna(value):
        return ""
    text = str(value).strip()
    if text.lower() in _BLANK_MARKERS:
        return ""
    return text


def parse_amount(value: Any) -> Decimal:
    """Parse a money cell; unreadable or blank values count as zero."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    if isinstance(value, bool):
        return ZERO
    if isinstance(value, (int, float)):
        if isinstance(value, float) and pd.isna(value):
            return ZERO
        return Decimal(str(value))
    text = clean_cell(value)
    if not text:
        return ZERO
    text = text.replace(",", "").replace("EGP", "").replace("%", "").strip()
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return ZERO
    return parsed if parsed.is_finite() else ZERO


def require_amount(value: Any, field: str = "amount", *, allow_zero: bool = False) -> Decimal:
    """Strict variant of ``parse_amount`` used for caller input."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", field=field)
    try:
        amount = Decimal(str(value).replace(",", "").strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number", field=field)
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number", field=field)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{field} must be greater than zero", field=field)
    return amount


def to_money(value: Any) -> Decimal:
    return parse_amount(value).quantize(CENT, rounding=ROUND_HALF_UP)


def whole_units(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def parse_datetime_cell(value: Any) -> Optional[datetime]:
    """Parse diverse sheet date values into a naive datetime.

    Handles datetime/date objects, pandas Timestamps, Excel serial numbers
    (> 25000) and any string pandas can read. Returns None when the value
    is blank or unparseable; never returns NaT.
    """
    if value is None:
        return None
    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            return None
        if value.tzinfo is not None:
            value = value.tz_localize(None)
        return value.to_pydatetime()
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if pd.isna(value):
            return None
        if value > 25000:
            return _EXCEL_ORIGIN + timedelta(days=float(value))
        return None
    text = clean_cell(value)
    if not text:
        return None
    try:
        serial = float(text)
    except ValueError:
        serial = None
    if serial is not None:
        return _EXCEL_ORIGIN + timedelta(days=serial) if serial > 25000 else None
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        try:
            parsed = pd.to_datetime(text, errors="coerce")
        except (ValueError, OverflowError, TypeError):
            return None
    if pd.isna(parsed):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.tz_localize(None)
    return parsed.to_pydatetime()


def parse_date_cell(value: Any) -> Optional[date]:
    parsed = parse_datetime_cell(value)
    return parsed.date() if parsed else None


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT)


def format_date(value: Optional[date]) -> str:
    return value.strftime(DATE_FORMAT) if value else ""


def generate_id(prefix: str, when: datetime) -> str:
    return f"{prefix}{when:%Y%m%d}{uuid.uuid4().hex[:6].upper()}"


def normalize_phone(raw: Any, country_code: Optional[str] = None) -> str:
    digits = "".join(ch for ch in clean_cell(raw) if ch.isdigit())
    if not digits:
        return ""
    code = str(country_code or get_setting("DEFAULT_COUNTRY_CODE", "20"))
    if digits.startswith("0"):
        return code + digits[1:]
    if not digits.startswith(code):
        return code + digits
    return digits


def best_effort(label: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a secondary side effect; log and swallow its failure."""
    try:
        return func(*args, **kwargs)
    except Exception as exc:
        logger.warning("%s", BestEffortFailure(label, exc), exc_info=True)
        return None
