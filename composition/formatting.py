"""Money, number and date formatting shared by every token and block."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from enhanced_error_handler import error_handler

logger = logging.getLogger(__name__)

FALLBACK_CURRENCY = "USD"

# keeps a spaced symbol on the same line as its amount
SYMBOL_SEPARATOR = "\u00a0"

# code -> (symbol, symbol_after_amount, decimal separator, group separator)
CURRENCY_FORMATS = {
    "USD": ("$", False, ".", ","),
    "GBP": ("£", False, ".", ","),
    "EUR": ("€", True, ",", "."),
    "AUD": ("A$", False, ".", ","),
    "NZD": ("NZ$", False, ".", ","),
    "CAD": ("C$", False, ".", ","),
    "INR": ("₹", False, ".", ","),
    "ZAR": ("R", False, ".", " "),
    "SGD": ("S$", False, ".", ","),
    "HKD": ("HK$", False, ".", ","),
    "IDR": ("Rp", False, ",", "."),
    "CHF": ("CHF", False, ".", "'"),
    "PLN": ("zł", True, ",", " "),
}

DATE_FORMATS = {
    "MM/dd/yyyy": "%m/%d/%Y",
    "dd/MM/yyyy": "%d/%m/%Y",
    "yyyy-MM-dd": "%Y-%m-%d",
    "dd-MM-yyyy": "%d-%m-%Y",
    "dd.MM.yyyy": "%d.%m.%Y",
    "MMM d, yyyy": "%b {day}, %Y",
    "d MMMM yyyy": "{day} %B %Y",
}
DEFAULT_DATE_FORMAT = "dd/MM/yyyy"

# Input formats accepted besides ISO 8601
_PARSE_FORMATS = [
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%Y-%m-%d %H:%M:%S",
]


def to_decimal(value) -> Decimal:
    if value is None or isinstance(value, bool):
        return Decimal(0)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(0)


def sum_money(values: Iterable) -> float:
    """Exact decimal sum of float amounts, returned as float."""
    total = Decimal(0)
    for value in values:
        total += to_decimal(value)
    return float(total)


def resolve_currency(*candidates: Optional[str], default: str = FALLBACK_CURRENCY) -> str:
    """First non-empty ISO code among candidates, else the default."""
    for code in candidates:
        if isinstance(code, str) and code.strip():
            return code.strip().upper()
    return (default or FALLBACK_CURRENCY).upper()


def currency_symbol(currency_code: Optional[str]) -> str:
    code = resolve_currency(currency_code)
    fmt = CURRENCY_FORMATS.get(code)
    return fmt[0] if fmt else code


def _group_digits(digits: str, separator: str) -> str:
    parts = []
    while len(digits) > 3:
        parts.insert(0, digits[-3:])
        digits = digits[:-3]
    parts.insert(0, digits)
    return separator.join(parts)


def format_number(value, decimals: int = 2, decimal_sep: str = ".", group_sep: str = ",") -> str:
    """Format a number with grouping, return empty string if None/invalid."""
    if value is None or isinstance(value, bool):
        return ""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ""
    quantum = Decimal(1).scaleb(-decimals)
    rounded = amount.quantize(quantum, rounding=ROUND_HALF_UP)
    sign = "-" if rounded < 0 else ""
    text = f"{abs(rounded):.{decimals}f}"
    whole, _, frac = text.partition(".")
    out = _group_digits(whole, group_sep)
    if decimals:
        out = f"{out}{decimal_sep}{frac}"
    return sign + out


def format_currency(value, currency_code: Optional[str] = None) -> str:
    """The single currency formatter: symbol placement and separators come from the code."""
    if value is None or isinstance(value, bool):
        return ""
    code = resolve_currency(currency_code)
    symbol, after, decimal_sep, group_sep = CURRENCY_FORMATS.get(code, (code, False, ".", ","))
    number = format_number(value, 2, decimal_sep, group_sep)
    if not number:
        return ""
    negative = number.startswith("-")
    number = number.lstrip("-")
    if after:
        text = f"{number}{SYMBOL_SEPARATOR}{symbol}"
    elif len(symbol) > 1 and symbol.isalpha():
        text = f"{symbol}{SYMBOL_SEPARATOR}{number}"
    else:
        text = f"{symbol}{number}"
    return f"-{text}" if negative else text


def format_quantity(value) -> str:
    if value is None:
        return ""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return ""
    return f"{number:g}"


def format_percent(rate) -> str:
    """Rates at or below 1 are fractions (0.085 -> 8.5%), larger ones are already percent."""
    if rate is None or isinstance(rate, bool):
        return ""
    try:
        number = Decimal(str(rate))
    except (InvalidOperation, ValueError):
        return ""
    if abs(number) <= 1:
        number *= 100
    text = format_number(number, 2)
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text}%"


def get_timezone(name: Optional[str], default: str = "UTC"):
    for candidate in (name, default):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError) as e:
            error_handler.log_error('locale_config', e, {'timezone': candidate}, level=logging.WARNING)
    return timezone.utc


def parse_date(value):
    """Return a date or datetime for strings/dates, None when unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (datetime, date)):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        if len(text) == 10 and text[4] == "-":
            return date.fromisoformat(text)
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _PARSE_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return parsed.date() if fmt.count("%") == 3 else parsed
    return None


def localize(value, tz) -> Optional[date]:
    """Calendar date of value in tz.  Naive datetimes are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        aware = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return aware.astimezone(tz).date()
    return value


def format_date(value, date_format: Optional[str] = None, tz=None) -> str:
    """Format a date value in the business timezone and preferred pattern."""
    parsed = parse_date(value)
    if parsed is None:
        return ""
    day = localize(parsed, tz or timezone.utc)
    pattern = DATE_FORMATS.get(date_format or DEFAULT_DATE_FORMAT)
    if pattern is None:
        error_handler.log_error('locale_config', ValueError(f"unknown date format {date_format!r}"),
                                {'operation': 'format_date'}, level=logging.WARNING)
        pattern = DATE_FORMATS[DEFAULT_DATE_FORMAT]
    return day.strftime(pattern.replace("{day}", str(day.day)))
