# certgen/domain/formatters.py
import math
import numbers
from datetime import date, datetime, timedelta
from typing import Dict, Mapping, Optional, Union

INDONESIAN_MONTHS = (
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
)
ENGLISH_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

DATE_FORMATS = (
    "dd-mm-yyyy", "mm-dd-yyyy", "yyyy-mm-dd",
    "dd/mm/yyyy", "mm/dd/yyyy", "yyyy/mm/dd",
    "dd-mmm-yyyy", "dd-mmmm-yyyy", "mmm-dd-yyyy", "mmmm-dd-yyyy",
    "dd-indonesian-yyyy",
)
DEFAULT_DATE_FORMAT = "dd-indonesian-yyyy"

# Excel's day zero (accounts for the 1900 leap-year bug)
EXCEL_EPOCH = date(1899, 12, 30)

PREDICATE_TABLE = (
    (90, 100, "SANGAT BAIK"),
    (75, 89, "BAIK"),
    (0, 74, "KURANG BAIK"),
)

DateLike = Union[date, datetime, str, int, float, None]


def to_date(value: DateLike) -> Optional[date]:
    """Coerce an ISO string, Excel serial number, date or datetime; ``None`` when unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if hasattr(value, "to_pydatetime"):  # pandas.Timestamp
        return value.to_pydatetime().date()
    if isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        if not math.isfinite(float(value)):
            return None
        return EXCEL_EPOCH + timedelta(days=int(value))
    text = str(value).strip()
    if not text:
        return None
    for fmt in ("%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%d-%m-%Y", "%d/%m/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(text[:19] if "T" in text else text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def format_date(value: DateLike, fmt: str = DEFAULT_DATE_FORMAT) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        return ""
    parsed = to_date(value)
    if parsed is None:
        return str(value)

    dd = f"{parsed.day:02d}"
    mm = f"{parsed.month:02d}"
    yyyy = f"{parsed.year:04d}"
    mmmm = ENGLISH_MONTHS[parsed.month - 1]
    mmm = mmmm[:3]

    formats = {
        "dd-mm-yyyy": f"{dd}-{mm}-{yyyy}",
        "mm-dd-yyyy": f"{mm}-{dd}-{yyyy}",
        "yyyy-mm-dd": f"{yyyy}-{mm}-{dd}",
        "dd/mm/yyyy": f"{dd}/{mm}/{yyyy}",
        "mm/dd/yyyy": f"{mm}/{dd}/{yyyy}",
        "yyyy/mm/dd": f"{yyyy}/{mm}/{dd}",
        "dd-mmm-yyyy": f"{dd} {mmm} {yyyy}",
        "dd-mmmm-yyyy": f"{dd} {mmmm} {yyyy}",
        "mmm-dd-yyyy": f"{mmm} {dd}, {yyyy}",
        "mmmm-dd-yyyy": f"{mmmm} {dd}, {yyyy}",
        "dd-indonesian-yyyy": f"{dd} {INDONESIAN_MONTHS[parsed.month - 1]} {yyyy}",
    }
    return formats.get(fmt, parsed.isoformat())


def stringify_cell(value) -> str:
    """Spreadsheet cell to text; blank for None/NaN, integral floats without '.0'."""
    if value is None:
        return ""
    if isinstance(value, numbers.Real) and not isinstance(value, (bool, numbers.Integral)):
        value = float(value)
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    text = str(value)
    return "" if text.strip().lower() == "nan" else text.strip()


def get_score_predicate(score) -> str:
    if score is None or (isinstance(score, str) and not score.strip()):
        return ""
    try:
        numeric = float(score)
    except (TypeError, ValueError):
        return ""
    for low, high, predicate in PREDICATE_TABLE:
        if low <= numeric <= high:
            return predicate
    return ""


def auto_populate_prestasi(values: Mapping[str, str]) -> Dict[str, str]:
    """Fill a blank ``prestasi`` from a numeric ``nilai``."""
    result = dict(values)
    nilai = result.get("nilai")
    if nilai and not str(result.get("prestasi") or "").strip():
        predicate = get_score_predicate(nilai)
        if predicate:
            result["prestasi"] = predicate
    return result


def generate_certificate_no(issued: DateLike, sequence: int) -> str:
    """``yymmdd`` of the issue date followed by a 3-digit running number."""
    day = to_date(issued) or date.today()
    return f"{day:%y%m%d}{sequence:03d}"
