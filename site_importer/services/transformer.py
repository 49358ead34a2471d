"""Row transformation: raw spreadsheet rows into normalized site records."""
import logging
import math
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from site_importer.schemas.site import NormalizedRecord

logger = logging.getLogger(__name__)

SITE_ID_COLUMN = "SITE ID"
EXP_DATE_COLUMN = "EXP DATE"
TOTAL_RENTAL_COLUMN = "TOTAL RENTAL (RM)"
TOTAL_PAYMENT_COLUMN = "TOTAL PAYMENT TO PAY (RM)"
DEPOSIT_COLUMN = "DEPOSIT (RM)"

MAPPED_COLUMNS = {
    SITE_ID_COLUMN,
    EXP_DATE_COLUMN,
    TOTAL_RENTAL_COLUMN,
    TOTAL_PAYMENT_COLUMN,
    DEPOSIT_COLUMN,
}

# Natural key for rows without a SITE ID; all such rows collapse into one site
NO_ID = "NO ID"

# Tried in order; day-first wins for ambiguous dates like 01/02/2024
DATE_FORMATS = [
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%Y/%m/%d",
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
]

_CURRENCY_NOISE = re.compile(r"[RM,\s]")
_LEADING_NUMBER = re.compile(r"^[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?")


def parse_currency(value: Any) -> float:
    """
    Parse a ringgit amount such as ``"RM 1,250.50"``.

    Returns 0.0 for empty or unparsable values.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0

    cleaned = _CURRENCY_NOISE.sub("", str(value))
    match = _LEADING_NUMBER.match(cleaned)
    if not match:
        return 0.0
    amount = float(match.group(0))
    return amount if math.isfinite(amount) else 0.0


def parse_date(value: Any) -> Optional[date]:
    """
    Parse an expiry date in any of DATE_FORMATS, falling back to ISO-8601.

    Returns None for blanks, ``"-"`` and anything unparsable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text or text == "-":
        return None

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def format_date(value: date) -> str:
    """Format a date the way the source spreadsheets write it (dd/mm/yyyy)."""
    return value.strftime("%d/%m/%Y")


def days_until_expiration(exp_date: Optional[date], today: Optional[date] = None) -> Optional[int]:
    """Whole days from ``today`` until ``exp_date``; negative once expired."""
    if exp_date is None:
        return None
    today = today or date.today()
    return (exp_date - today).days


def _natural_key(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    key = "" if value is None else str(value).strip()
    return key or NO_ID


def _json_scalar(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def transform_row(row: Mapping[str, Any]) -> NormalizedRecord:
    """
    Map one raw row onto a NormalizedRecord.

    Never raises: missing or malformed amounts become 0, dates become None
    and a missing SITE ID becomes NO_ID. Unmapped columns are carried as
    pass-through attributes.
    """
    attributes: Dict[str, Any] = {
        str(column): _json_scalar(value)
        for column, value in row.items()
        if column is not None and column not in MAPPED_COLUMNS
    }

    return NormalizedRecord(
        site_id=_natural_key(row.get(SITE_ID_COLUMN)),
        exp_date=parse_date(row.get(EXP_DATE_COLUMN)),
        total_rental=parse_currency(row.get(TOTAL_RENTAL_COLUMN)),
        total_payment_to_pay=parse_currency(row.get(TOTAL_PAYMENT_COLUMN)),
        deposit=parse_currency(row.get(DEPOSIT_COLUMN)),
        attributes=attributes,
    )


def transform_rows(rows: Iterable[Mapping[str, Any]]) -> List[NormalizedRecord]:
    """Transform every row, logging how many fell back to the NO_ID key."""
    records = [transform_row(row) for row in rows]
    missing_ids = sum(1 for record in records if record.site_id == NO_ID)
    if missing_ids:
        logger.warning(f"⚠️ {missing_ids} rows have no {SITE_ID_COLUMN}, keyed as '{NO_ID}'")
    return records
