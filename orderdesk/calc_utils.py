from __future__ import annotations

import math
import re
from datetime import date, datetime, timezone
from typing import Any, Optional

from dateutil import parser as date_parser


_QUANTITY_RE = re.compile(r"^-?\d+([.,]\d+)?$")
_ISO_DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

BARCODE_MIN_LENGTH = 16


def round2(value: float) -> float:
    """Round half up to 2 decimals, the same as Math.round(x * 100) / 100."""
    return math.floor(value * 100 + 0.5) / 100


def round_int(value: float) -> int:
    return int(math.floor(value + 0.5))


def to_number(value: Any, default: float = 0) -> float:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return default
        try:
            number = float(text)
        except ValueError:
            return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(value, upper))


def parse_item_data(value: Any) -> dict[str, Any]:
    """Split scanner input into a barcode or a quantity.

    Long codes are always barcodes; short numeric strings ("12", "3,5") are
    quantities; anything else is treated as a barcode.
    """
    if value is None or value == "":
        return {"barcode": None, "quantity": None}

    text = str(value).strip()
    if len(text) >= BARCODE_MIN_LENGTH:
        return {"barcode": text, "quantity": None}

    if _QUANTITY_RE.match(text):
        return {"barcode": None, "quantity": float(text.replace(",", "."))}

    return {"barcode": text or None, "quantity": None}


def parse_date(value: str | None, dayfirst: bool = False) -> Optional[date]:
    if not value:
        return None

    cleaned = value.strip()
    if not cleaned:
        return None

    try:
        parsed = date_parser.parse(cleaned, dayfirst=dayfirst)
    except (ValueError, TypeError, OverflowError):
        return None

    return parsed.date()


def normalize_date(value: Any) -> Any:
    """Turn a bare YYYY-MM-DD into the ISO timestamp Strapi filters expect."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    if isinstance(value, date):
        return f"{value.isoformat()}T00:00:00.000Z"
    if not value or not isinstance(value, str):
        return value
    if "T" in value:
        return value
    if _ISO_DAY_RE.match(value):
        parsed = parse_date(value)
        if parsed:
            return f"{parsed.isoformat()}T00:00:00.000Z"
    return value
