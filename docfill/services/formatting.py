"""
formatting.py: locale-aware template filters.

Every filter resolves its input the same way plain interpolation does (so a filter
applied to the output of another filter sees the display text, not the span), parses
it tolerantly, and emits an ``imported`` marker with the formatted text. Unparseable
input becomes a ``format-error`` placeholder such as ``[[Invalid amount]]``; absent
input becomes the usual ``[[path]]`` missing marker. With ``raw=True`` the bare string
is returned and nothing is counted.

Jinja's own string filters (upper, lower, title, capitalize, trim, replace) and
``default``/``join`` are replaced by versions that go through the same path, so
``{{ name|upper }}`` still marks ``name`` and a failed format stays failed.

    {{ order.total|currency }}                      -> 1.234,56 €
    {{ order.total|currency("USD") }}               -> $1,234.56
    {{ ratio|number(style="percent") }}             -> 12,5%
    {{ signed_on|date("FULL") }}                    -> 1 de marzo de 2024
    {{ signed_on|add_years(2) }}                    -> 1 de marzo de 2026
    {{ contact.email|email }}                       -> <a href="mailto:...">...</a>
"""
from __future__ import annotations
import logging
import math
import re
from datetime import date, datetime, time, tzinfo
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta
from jinja2 import pass_context
from jinja2.filters import do_capitalize, do_default, do_title, sync_do_join
from jinja2.runtime import Context
from markupsafe import Markup

from docfill.errors import FormattingError, ProcessingError
from docfill.services.annotations import AnnotationEmitter
from docfill.services.binding import Bound, MissingValue, lookup
from docfill.services.iteration import EMITTER_KEY
from docfill.services.locales import (CURRENCIES, CURRENCY_SYMBOLS, DEFAULT_TIMEZONE, Locale,
                                      get_currency, get_locale, is_currency_code)
from docfill.services.markers import Annotation, parse_marker
from docfill.services.paths import Path
from docfill.services.resolver import Absent, Resolved, resolve_value, stringify

log = logging.getLogger(__name__)

LOCALE_KEY = "__docfill_locale__"
TIMEZONE_KEY = "__docfill_timezone__"

INVALID_NUMBER = "[[Invalid number]]"
INVALID_AMOUNT = "[[Invalid amount]]"
INVALID_CURRENCY = "[[Invalid currency]]"
INVALID_DATE = "[[Invalid date]]"
INVALID_EMAIL = "[[Invalid email]]"
ERROR_TEXT = "[[Error formatting text]]"
INVALID_VALUE = "[[Invalid value]]"

# style -> (min, max) fraction digits; None means "as many as needed" up to AUTO_MAX_DECIMALS
STYLE_DEFAULTS = {
    "decimal": (0, None),
    "percent": (0, 2),
    "currency": (2, 2),
}
AUTO_MAX_DECIMALS = 3

NUMERIC_KEYS = ("decimal", "EUR", "USD", "numero", "number", "value", "importe_numero", "amount")
DATE_KEYS = ("value", "date", "fecha")

DATE_FORMATS = {
    "DEFAULT": "%d/%m/%Y",
    "SHORT": "%d/%m/%Y",
    "ISO": "%Y-%m-%d",
    "ISO8601": "%Y-%m-%d %H:%M:%S",
    "TIME": "%H:%M:%S",
}
FULL_FORMAT = "FULL"

_NUMBER = re.compile(r"[-+]?(?:\d[\d.,]*|[.,]\d+)")
_CODE_AFFIX = re.compile(r"([A-Z]{3})?([^A-Z]*?)([A-Z]{3})?")
_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")


# parsing

def _separators(digits: str, locale: Locale) -> Optional[str]:
    """Normalize ``digits`` (no sign) to a plain ``1234.56`` string.

    Both separators present: the last one is the decimal separator. One separator
    used once and followed by exactly three digits is grouping when it is the
    locale's grouping separator (``1.234`` is 1234 in es-ES, 1.234 in en-US).
    """
    has_dot, has_comma = "." in digits, "," in digits
    if has_dot and has_comma:
        decimal = "." if digits.rfind(".") > digits.rfind(",") else ","
        group = "," if decimal == "." else "."
        if digits.count(decimal) > 1:
            return None
        return digits.replace(group, "").replace(decimal, ".")
    sep = "." if has_dot else "," if has_comma else None
    if sep is None:
        return digits
    if digits.count(sep) > 1:
        return digits.replace(sep, "")
    head, tail = digits.split(sep)
    if head and len(tail) == 3 and sep == locale.thousands:
        return head + tail
    return f"{head or '0'}.{tail}"


def parse_number_text(text: str, locale: Locale) -> Tuple[Optional[Decimal], Optional[str]]:
    s = text.strip()
    for symbol in CURRENCY_SYMBOLS:
        s = s.replace(symbol, "")
    s = re.sub(r"\s+", "", s)
    code = None
    match = _CODE_AFFIX.fullmatch(s)
    if match:
        code = match.group(1) or match.group(3)
        s = match.group(2)
    if not _NUMBER.fullmatch(s):
        return None, code
    sign = ""
    if s[0] in "+-":
        sign = "-" if s[0] == "-" else ""
        s = s[1:]
    normalized = _separators(s, locale)
    if normalized is None:
        return None, code
    try:
        return Decimal(sign + normalized), code
    except InvalidOperation:
        return None, code


def parse_amount(value: Any, locale: Optional[Locale] = None) -> Tuple[Optional[Decimal], Optional[str]]:
    """``(number, currency code or None)`` from a scalar or an amount-carrying object."""
    locale = locale or get_locale()
    if value is None or isinstance(value, bool):
        return None, None
    if isinstance(value, Decimal):
        return (value if value.is_finite() else None), None
    if isinstance(value, int):
        return Decimal(value), None
    if isinstance(value, float):
        return (Decimal(repr(value)) if math.isfinite(value) else None), None
    if isinstance(value, Mapping):
        if "amount" in value and "currency" in value:
            number, _ = parse_amount(value["amount"], locale)
            return number, str(value["currency"]).strip().upper() or None
        for key in NUMERIC_KEYS:
            if key in value:
                number, code = parse_amount(value[key], locale)
                if key in CURRENCIES:
                    code = code or key
                return number, code
        return None, None
    if isinstance(value, str):
        return parse_number_text(value, locale)
    return None, None


def parse_number(value: Any, locale: Optional[Locale] = None) -> Optional[Decimal]:
    return parse_amount(value, locale)[0]


def parse_date(value: Any, locale: Optional[Locale] = None, tz: Optional[tzinfo] = None) -> Optional[datetime]:
    locale = locale or get_locale()
    tz = tz or ZoneInfo(DEFAULT_TIMEZONE)
    if isinstance(value, Mapping):
        value = next((value[k] for k in DATE_KEYS if k in value), None)
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time())
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            if _ISO_DATE.match(text):
                dt = date_parser.isoparse(text)
            else:
                dt = date_parser.parse(text, dayfirst=locale.dayfirst)
        except (ValueError, OverflowError):
            return None
    else:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


# formatting

def _digits(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    try:
        digits = int(value)
    except (TypeError, ValueError):
        raise FormattingError(INVALID_NUMBER, {"option": name, "value": str(value)})
    if digits < 0 or digits > 20:
        raise FormattingError(INVALID_NUMBER, {"option": name, "value": digits})
    return digits


def format_decimal(number: Decimal, locale: Locale, min_decimals: Optional[int] = 0,
                   max_decimals: Optional[int] = None, grouping: bool = True) -> str:
    min_decimals = min_decimals or 0
    if max_decimals is None:
        max_decimals = max(min_decimals, AUTO_MAX_DECIMALS)
    max_decimals = max(max_decimals, min_decimals)
    try:
        rounded = number.quantize(Decimal(1).scaleb(-max_decimals), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise FormattingError(INVALID_NUMBER, {"value": str(number)})
    whole, _, frac = format(abs(rounded), "f").partition(".")
    frac = frac.rstrip("0").ljust(min_decimals, "0")
    if grouping:
        whole = f"{int(whole):,}".replace(",", locale.thousands)
    sign = "-" if rounded < 0 else ""
    return sign + whole + (locale.decimal + frac if frac else "")


def format_currency(number: Decimal, code: Optional[str], locale: Locale,
                    min_decimals: Optional[int] = None, max_decimals: Optional[int] = None,
                    use_code: bool = False) -> str:
    """EUR/USD/GBP follow their home locale (``1.234,56 €``, ``$1,234.56``, ``£1,234.56``);
    other ISO codes are written after a number in ``locale`` (``1.234,56 CHF``)."""
    code = (code or locale.currency).strip().upper()
    if not is_currency_code(code):
        raise FormattingError(INVALID_CURRENCY, {"currency": code})
    default_min, default_max = STYLE_DEFAULTS["currency"]
    if max_decimals == 0 and min_decimals is None:
        min_decimals = 0
    min_decimals = default_min if min_decimals is None else min_decimals
    max_decimals = default_max if max_decimals is None else max_decimals

    currency = get_currency(code)
    if currency is None:
        return f"{format_decimal(number, locale, min_decimals, max_decimals)} {code}"
    home = get_locale(currency.locale)
    formatted = format_decimal(number, home, min_decimals, max_decimals)
    negative = formatted.startswith("-")
    amount = formatted.lstrip("-")
    if use_code:
        text = f"{code} {amount}" if currency.prefix else f"{amount} {code}"
    elif currency.prefix:
        text = f"{currency.symbol}{amount}"
    else:
        text = f"{amount} {currency.symbol}"
    return "-" + text if negative else text


def format_number(number: Decimal, locale: Locale, style: str = "decimal",
                  min_decimals: Optional[int] = None, max_decimals: Optional[int] = None,
                  currency: Optional[str] = None, use_code: bool = False) -> str:
    style = (style or "decimal").lower()
    if style not in STYLE_DEFAULTS:
        raise FormattingError(INVALID_NUMBER, {"style": style})
    if style == "currency":
        return format_currency(number, currency, locale, min_decimals, max_decimals, use_code)
    default_min, default_max = STYLE_DEFAULTS[style]
    min_decimals = default_min if min_decimals is None else min_decimals
    max_decimals = default_max if max_decimals is None else max_decimals
    if style == "percent":
        return format_decimal(number * 100, locale, min_decimals, max_decimals) + "%"
    return format_decimal(number, locale, min_decimals, max_decimals)


def format_date(value: datetime, fmt: Optional[str] = None, locale: Optional[Locale] = None) -> str:
    """Named formats (DEFAULT, SHORT, ISO, ISO8601, FULL, TIME) or a strftime pattern."""
    locale = locale or get_locale()
    name = fmt or "DEFAULT"
    month = locale.months[value.month - 1]
    if name.upper() == FULL_FORMAT:
        return locale.full_date.format(day=value.day, month=month, year=value.year)
    pattern = DATE_FORMATS.get(name.upper(), name)
    pattern = pattern.replace("%B", month).replace("%b", month[:3])
    return value.strftime(pattern)


# template glue

def _emitter(context: Context) -> AnnotationEmitter:
    emitter = context.get(EMITTER_KEY)
    return emitter if emitter is not None else AnnotationEmitter()


def _option(value: Any) -> Any:
    if value is None:
        return None
    resolution = resolve_value(value)
    return None if isinstance(resolution, Absent) else resolution.value


def _locale(context: Context, code: Any = None) -> Locale:
    return get_locale(_option(code) or context.get(LOCALE_KEY))


def _timezone(context: Context) -> tzinfo:
    return context.get(TIMEZONE_KEY) or ZoneInfo(DEFAULT_TIMEZONE)


def _apply(context: Context, value: Any, style: str, fn: Callable[[Any], Any],
           raw: bool = False, empty_is_absent: bool = True):
    emitter = _emitter(context)
    marker = parse_marker(value)
    if marker is not None and marker.error:
        # a failed input stays failed through later helpers
        if not raw:
            return value
        if isinstance(value, Annotation):
            emitter.stats.discard(value)
        return marker.display
    if isinstance(value, Annotation):
        # the marker being reformatted is replaced, not counted twice
        emitter.stats.discard(value)
    resolution = resolve_value(value, treat_empty_as_absent=empty_is_absent)
    if isinstance(resolution, Absent):
        return "" if raw else emitter.missing(resolution.path)
    try:
        display = fn(resolution.value)
    except FormattingError as e:
        if raw:
            log.warning("Formatting failed for %s (%s): %s", resolution.path, style, e.message)
            return e.message
        return emitter.error(resolution.path, style, e.message)
    if raw:
        return display.striptags() if isinstance(display, Markup) else display
    return emitter.emit(resolution, resolution.path, display_override=display)


@pass_context
def number_filter(context, value, style="decimal", min_decimals=None, max_decimals=None,
                  currency=None, use_code=False, locale=None, raw=False):
    loc = _locale(context, locale)
    style = str(_option(style) or "decimal").lower()
    placeholder = INVALID_AMOUNT if style == "currency" else INVALID_NUMBER

    def fmt(v):
        number, code = parse_amount(v, loc)
        if number is None:
            raise FormattingError(placeholder)
        return format_number(number, loc, style, _digits(_option(min_decimals), "min_decimals"),
                             _digits(_option(max_decimals), "max_decimals"),
                             _option(currency) or code, bool(use_code))

    return _apply(context, value, style, fmt, raw)


@pass_context
def currency_filter(context, value, code=None, min_decimals=None, max_decimals=None,
                    use_code=False, locale=None, raw=False):
    loc = _locale(context, locale)

    def fmt(v):
        number, data_code = parse_amount(v, loc)
        if number is None:
            raise FormattingError(INVALID_AMOUNT)
        return format_currency(number, _option(code) or data_code, loc,
                               _digits(_option(min_decimals), "min_decimals"),
                               _digits(_option(max_decimals), "max_decimals"), bool(use_code))

    return _apply(context, value, "currency", fmt, raw)


@pass_context
def date_filter(context, value, fmt="DEFAULT", locale=None, raw=False):
    loc = _locale(context, locale)
    pattern = _option(fmt)

    def render(v):
        parsed = parse_date(v, loc, _timezone(context))
        if parsed is None:
            raise FormattingError(INVALID_DATE)
        return format_date(parsed, pattern, loc)

    return _apply(context, value, "date", render, raw)


@pass_context
def add_years_filter(context, value, years=1, fmt=FULL_FORMAT, locale=None, raw=False):
    loc = _locale(context, locale)
    pattern = _option(fmt)

    def render(v):
        parsed = parse_date(v, loc, _timezone(context))
        amount = parse_number(_option(years), loc)
        if parsed is None or amount is None or amount != amount.to_integral_value():
            raise FormattingError(INVALID_DATE)
        try:
            shifted = parsed + relativedelta(years=int(amount))
        except (ValueError, OverflowError):
            raise FormattingError(INVALID_DATE)
        return format_date(shifted, pattern, loc)

    return _apply(context, value, "date", render, raw)


@pass_context
def text_filter(context, value, capitalize=False, upper=False, lower=False, raw=False):
    def render(v):
        try:
            s = stringify(v)
        except ProcessingError:
            raise FormattingError(ERROR_TEXT)
        if capitalize:
            s = s[:1].upper() + s[1:]
        if upper:
            s = s.upper()
        if lower:
            s = s.lower()
        return s

    return _apply(context, value, "text", render, raw, empty_is_absent=False)


@pass_context
def email_filter(context, value, raw=False):
    def render(v):
        address = stringify(v).strip() if isinstance(v, str) else ""
        if "@" not in address:
            raise FormattingError(INVALID_EMAIL)
        return Markup('<a href="mailto:{0}">{0}</a>').format(address)

    return _apply(context, value, "email", render, raw)


# jinja's own string filters, kept path-aware

def _is_data(value: Any) -> bool:
    return isinstance(value, (Bound, MissingValue)) or parse_marker(value) is not None


def _replace(s: str, old: Any, new: Any, count: Any = None) -> str:
    return s.replace(str(old), str(new), -1 if count is None else int(count))


def _trim(s: str, chars: Any = None) -> str:
    return s.strip(None if chars is None else str(chars))


def _string_filter(name: str, transform: Callable[..., str]):
    @pass_context
    def string_filter(context, value, *args, **kwargs):
        args = [_option(a) for a in args]
        kwargs = {k: _option(v) for k, v in kwargs.items()}
        if not _is_data(value):
            return transform(str(value), *args, **kwargs)

        def render(v):
            try:
                s = stringify(v)
            except ProcessingError:
                raise FormattingError(ERROR_TEXT)
            return transform(s, *args, **kwargs)

        return _apply(context, value, "text", render, empty_is_absent=False)

    string_filter.__name__ = f"{name}_filter"
    return string_filter


@pass_context
def default_filter(context, value, default_value="", boolean=False):
    """``default``/``d``: a missing field yields the fallback and is not counted."""
    if not _is_data(value):
        return do_default(value, default_value, boolean)
    marker = parse_marker(value)
    if marker is not None and marker.error:
        return value
    resolution = resolve_value(value)
    if isinstance(resolution, Absent):
        use_default = True
    else:
        use_default = bool(boolean) and not Bound(resolution.value, resolution.path)
    if not use_default:
        return value
    if isinstance(value, Annotation):
        _emitter(context).stats.discard(value)
    return default_value


@pass_context
def join_filter(context, value, d="", attribute=None):
    """Joins a data list with one marker per item."""
    if not isinstance(value, (Bound, MissingValue)):
        return sync_do_join(context.eval_ctx, value, d, attribute)
    resolution = resolve_value(value)
    if isinstance(resolution, Absent):
        return _emitter(context).missing(resolution.path)
    if not isinstance(resolution.value, (Mapping, tuple, list)):
        return value
    items = list(value)
    if attribute is not None:
        items = [lookup(item, attribute) for item in items]
    separator = stringify(_option(d))
    return separator.join(str(annotate(context, item)) for item in items)


@pass_context
def annotate(context, value):
    """Interpolation hook: data values become markers, everything else prints as-is."""
    if isinstance(value, Annotation):
        return value.serialize()
    if isinstance(value, (Bound, MissingValue)):
        emitter = _emitter(context)
        try:
            return emitter.emit(resolve_value(value)).serialize()
        except ProcessingError as e:
            log.warning("Cannot interpolate %s: %s", value.path, e)
            return emitter.error(value.path, "value", INVALID_VALUE).serialize()
    if value is None:
        return ""
    return value


@pass_context
def now(context, fmt="DEFAULT", raw=False):
    loc = _locale(context)
    display = format_date(datetime.now(_timezone(context)), _option(fmt), loc)
    if raw:
        return display
    path = Path(("now",))
    return _emitter(context).emit(Resolved(display, path), path)


def _loose(value: Any) -> Any:
    resolution = resolve_value(value)
    if isinstance(resolution, Absent) or resolution.value is None:
        return None
    v = resolution.value
    if isinstance(v, str) and v.strip().lower() in ("true", "false"):
        return v.strip().lower() == "true"
    return v


def eq(a: Any, b: Any) -> bool:
    """Loose equality: booleans by truth, numbers numerically, strings case-insensitively."""
    x, y = _loose(a), _loose(b)
    if x is None or y is None:
        return False
    if isinstance(x, bool) or isinstance(y, bool):
        return bool(x) == bool(y)
    nx, ny = parse_number(x), parse_number(y)
    if nx is not None and ny is not None:
        return nx == ny
    return stringify(x).lower() == stringify(y).lower()


FILTERS = {
    "number": number_filter,
    "currency": currency_filter,
    "date": date_filter,
    "add_years": add_years_filter,
    "text": text_filter,
    "email": email_filter,
    "upper": _string_filter("upper", str.upper),
    "lower": _string_filter("lower", str.lower),
    "title": _string_filter("title", do_title),
    "capitalize": _string_filter("capitalize", do_capitalize),
    "trim": _string_filter("trim", _trim),
    "replace": _string_filter("replace", _replace),
    "default": default_filter,
    "d": default_filter,
    "join": join_filter,
}

GLOBALS = {
    "now": now,
    "eq": eq,
    "lookup": lookup,
}
