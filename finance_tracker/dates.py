import re
from datetime import date, datetime, time, timedelta

EXCEL_EPOCH = datetime(1899, 12, 30)
MAX_EXCEL_SERIAL = 2958465

DAY_FIRST_PATTERN = re.compile(
    r"^(?P<day>\d{1,2})(?P<sep>[/-])(?P<month>\d{1,2})(?P=sep)(?P<year>\d{4})"
    r"(?:[\sT]+(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?"
    r"\s*(?P<meridiem>[AaPp][Mm])?)?$"
)
ISO_PATTERN = re.compile(
    r"^(?P<year>\d{4})-(?P<month>\d{1,2})-(?P<day>\d{1,2})"
    r"(?:[T\s](?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2})(?:\.\d+)?)?)?"
    r"\s*(?:Z|[+-]\d{2}:?\d{2})?$"
)
EXCEL_SERIAL_PATTERN = re.compile(r"^\d+\.\d+$")
FALLBACK_FORMATS = [
    "%Y/%m/%d",
    "%d.%m.%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%B %d, %Y",
]


def format_date(value):
    return f"{value.day:02d}/{value.month:02d}/{value.year:04d}"


def _build(year, month, day, hour=0, minute=0, second=0):
    try:
        return datetime(int(year), int(month), int(day), int(hour), int(minute), int(second))
    except (TypeError, ValueError, OverflowError):
        return None


def _from_day_first(match):
    hour = int(match.group("hour") or 0)
    meridiem = (match.group("meridiem") or "").upper()
    if meridiem == "PM" and hour != 12:
        hour += 12
    elif meridiem == "AM" and hour == 12:
        hour = 0
    return _build(
        match.group("year"),
        match.group("month"),
        match.group("day"),
        hour,
        match.group("minute") or 0,
        match.group("second") or 0,
    )


def _from_iso(match):
    # Offsets are ignored: the calendar date as written is the one we keep.
    return _build(
        match.group("year"),
        match.group("month"),
        match.group("day"),
        match.group("hour") or 0,
        match.group("minute") or 0,
        match.group("second") or 0,
    )


def _from_excel_serial(serial):
    if not 0 < serial <= MAX_EXCEL_SERIAL:
        return None
    return EXCEL_EPOCH + timedelta(seconds=round(float(serial) * 86400))


def _parse_generic(text):
    cleaned = re.sub(r"\s+", " ", text.replace(",", ", ")).replace(" ,", ",").strip()
    for fmt in FALLBACK_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt)
        except ValueError:
            continue
    return None


def parse_date_parts(raw):
    """Return ``(datetime, has_time)`` for ``raw`` or ``(None, False)``."""
    if raw is None or isinstance(raw, bool):
        return None, False
    if isinstance(raw, datetime):
        value = raw.replace(tzinfo=None)
        return value, value.time() != time(0, 0)
    if isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day), False
    if isinstance(raw, (int, float)):
        value = _from_excel_serial(raw)
        return value, value is not None and value.time() != time(0, 0)

    text = str(raw).strip()
    if not text:
        return None, False

    match = DAY_FIRST_PATTERN.match(text)
    if match:
        return _from_day_first(match), match.group("hour") is not None

    match = ISO_PATTERN.match(text)
    if match:
        return _from_iso(match), match.group("hour") is not None

    if EXCEL_SERIAL_PATTERN.match(text):
        value = _from_excel_serial(float(text))
        return value, value is not None and value.time() != time(0, 0)

    return _parse_generic(text), False


def parse_date_value(raw):
    return parse_date_parts(raw)[0]


def normalize_date(raw):
    value = parse_date_value(raw)
    if value is None:
        return None
    return format_date(value)


def extract_time(raw):
    value, has_time = parse_date_parts(raw)
    if value is None or not has_time:
        return ""
    return value.strftime("%H:%M:%S")


def split_date_time(raw):
    value, has_time = parse_date_parts(raw)
    if value is None:
        return None, ""
    return format_date(value), value.strftime("%H:%M:%S") if has_time else ""
