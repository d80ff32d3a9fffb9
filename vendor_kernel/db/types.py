"""
Module: vendor_kernel.db.types
Responsibility: Money and currency helpers shared by the domain and the
    services: Decimal coercion of caller input and ISO 4217 validation.
Architecture position: Kernel > DB.  May be imported by models/, domain/ and
    services/.  MUST NOT import from any of those layers.

Invariants enforced:
    - ISO 4217 enforcement: validate_currency() rejects anything that is not
      a recognised 3-letter code.
    - No floats: to_money() refuses float input; amounts are Decimal end to end.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from vendor_kernel.exceptions import InvalidCurrencyError, ValidationError


def to_money(value: Any, field: str = "amount") -> Decimal:
    """
    Coerce caller input to a Decimal amount.

    Accepts Decimal, int and numeric strings.  Floats are rejected because
    their binary representation already carries rounding noise.

    Raises:
        ValidationError: on None, float, non-numeric or non-finite input.
    """
    if value is None:
        raise ValidationError(field, "is required")
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(field, "must be Decimal, int or numeric string", value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(field, "is not a number", value) from None
    if not amount.is_finite():
        raise ValidationError(field, "must be finite", value)
    return amount


ISO_4217_CURRENCIES: frozenset[str] = frozenset({
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD",
    "AED", "AFN", "ALL", "AMD", "ANG", "AOA", "ARS", "AWG", "AZN",
    "BAM", "BBD", "BDT", "BGN", "BHD", "BIF", "BMD", "BND", "BOB", "BRL", "BSD", "BTN", "BWP", "BYN", "BZD",
    "CDF", "CLP", "CNY", "COP", "CRC", "CUP", "CVE", "CZK",
    "DJF", "DKK", "DOP", "DZD",
    "EGP", "ERN", "ETB",
    "FJD", "FKP",
    "GEL", "GHS", "GIP", "GMD", "GNF", "GTQ", "GYD",
    "HKD", "HNL", "HTG", "HUF",
    "IDR", "ILS", "INR", "IQD", "IRR", "ISK",
    "JMD", "JOD",
    "KES", "KGS", "KHR", "KMF", "KRW", "KWD", "KYD", "KZT",
    "LAK", "LBP", "LKR", "LRD", "LSL", "LYD",
    "MAD", "MDL", "MGA", "MKD", "MMK", "MNT", "MOP", "MRU", "MUR", "MVR", "MWK", "MXN", "MYR", "MZN",
    "NAD", "NGN", "NIO", "NOK", "NPR",
    "OMR",
    "PAB", "PEN", "PGK", "PHP", "PKR", "PLN", "PYG",
    "QAR",
    "RON", "RSD", "RUB", "RWF",
    "SAR", "SBD", "SCR", "SDG", "SEK", "SGD", "SHP", "SLE", "SOS", "SRD", "SSP", "STN", "SYP", "SZL",
    "THB", "TJS", "TMT", "TND", "TOP", "TRY", "TTD", "TWD", "TZS",
    "UAH", "UGX", "UYU", "UZS",
    "VES", "VND", "VUV",
    "WST",
    "XAF", "XCD", "XOF", "XPF",
    "YER",
    "ZAR", "ZMW", "ZWL",
})


def validate_currency(currency: Any) -> str:
    """
    Validate and normalise an ISO 4217 currency code.

    Returns:
        The upper-cased, trimmed code.

    Raises:
        InvalidCurrencyError: if the code is not recognised.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(currency)

    normalized = currency.upper().strip()
    if normalized not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(currency)
    return normalized
