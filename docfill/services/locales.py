# locales.py: number/currency/date conventions for the supported document locales
from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

log = logging.getLogger(__name__)

DEFAULT_LOCALE = "es-ES"
DEFAULT_TIMEZONE = "Europe/Madrid"

CURRENCY_CODE = re.compile(r"[A-Z]{3}")


@dataclass(frozen=True)
class Locale:
    code: str
    thousands: str
    decimal: str
    currency: str
    dayfirst: bool
    months: Tuple[str, ...]
    full_date: str

    @property
    def lang(self) -> str:
        return self.code.split("-")[0]


@dataclass(frozen=True)
class Currency:
    code: str
    symbol: str
    locale: str
    prefix: bool


_ES_MONTHS = ("enero", "febrero", "marzo", "abril", "mayo", "junio", "julio",
              "agosto", "septiembre", "octubre", "noviembre", "diciembre")
_EN_MONTHS = ("January", "February", "March", "April", "May", "June", "July",
              "August", "September", "October", "November", "December")

LOCALES: Dict[str, Locale] = {
    "es-ES": Locale("es-ES", ".", ",", "EUR", True, _ES_MONTHS, "{day} de {month} de {year}"),
    "en-US": Locale("en-US", ",", ".", "USD", False, _EN_MONTHS, "{month} {day}, {year}"),
    "en-GB": Locale("en-GB", ",", ".", "GBP", True, _EN_MONTHS, "{day} {month} {year}"),
}

CURRENCIES: Dict[str, Currency] = {
    "EUR": Currency("EUR", "€", "es-ES", prefix=False),
    "USD": Currency("USD", "$", "en-US", prefix=True),
    "GBP": Currency("GBP", "£", "en-GB", prefix=True),
}

CURRENCY_SYMBOLS = "".join(c.symbol for c in CURRENCIES.values())


def get_locale(code: Optional[str] = None) -> Locale:
    """Exact match, then language match (``en`` -> ``en-US``), then the default."""
    if not code:
        return LOCALES[DEFAULT_LOCALE]
    code = str(code).strip().replace("_", "-")
    for key, locale in LOCALES.items():
        if key.lower() == code.lower():
            return locale
    lang = code.split("-")[0].lower()
    for locale in LOCALES.values():
        if locale.lang == lang:
            return locale
    log.warning("Unsupported locale %r, using %s", code, DEFAULT_LOCALE)
    return LOCALES[DEFAULT_LOCALE]


def get_currency(code: Optional[str]) -> Optional[Currency]:
    return CURRENCIES.get((code or "").upper())


def is_currency_code(code: Optional[str]) -> bool:
    return bool(code) and CURRENCY_CODE.fullmatch(code) is not None
