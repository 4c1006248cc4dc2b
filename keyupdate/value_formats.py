import datetime
import re

from openpyxl.utils.datetime import from_excel

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def is_iso_date(value) -> bool:
    return isinstance(value, str) and bool(ISO_DATE_RE.match(value.strip()))


def serial_to_iso_date(value) -> str:
    """
    Convert a spreadsheet serial date to an ISO calendar date string.

    Accepts the serial as a number or numeric string (43831 -> '2020-01-01'),
    or a date/datetime already decoded from a date-formatted cell.
    Raises ValueError / TypeError / OverflowError when the value is not a date.
    """
    if isinstance(value, datetime.datetime):
        return value.date().isoformat()
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, bool):
        raise TypeError(f"not a serial date: {value!r}")
    if isinstance(value, str):
        value = float(value.strip())
    if not isinstance(value, (int, float)):
        raise TypeError(f"not a serial date: {value!r}")
    if value != value or value <= 0:
        raise ValueError(f"not a serial date: {value!r}")
    converted = from_excel(value)
    if isinstance(converted, datetime.datetime):
        return converted.date().isoformat()
    if isinstance(converted, datetime.date):
        return converted.isoformat()
    raise ValueError(f"not a serial date: {value!r}")


def needs_date_conversion(value) -> bool:
    """True when a stored value is present and not already an ISO date string."""
    if value is None:
        return False
    if isinstance(value, str) and (not value.strip() or is_iso_date(value)):
        return False
    return True
