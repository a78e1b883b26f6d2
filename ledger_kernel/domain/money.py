"""
Money helpers -- Decimal discipline for ledger amounts.

Responsibility:
    Normalise user-supplied amounts to ``Decimal``, quantize to currency
    precision, and convert to the base currency through a supplied rate.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Invariants enforced:
    - Amounts are ``Decimal``; ``float`` inputs are rejected.
    - Conversion divides by the rate (``base = amount / rate``) where the
      rate is units of the currency per one unit of base currency.

Failure modes:
    - TypeError when a float reaches the ledger.
    - ValueError when an exchange rate is zero or negative.
"""

from decimal import ROUND_HALF_UP, Decimal

# Currencies without minor units.
ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "VND", "IDR"})

ZERO = Decimal("0")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Coerce an int/str/Decimal amount to Decimal.  Floats are refused."""
    if isinstance(value, float):
        raise TypeError("amount must be Decimal, not float")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize(amount: Decimal, currency: str | None = None) -> Decimal:
    """Round half-up to the currency's minor unit (2 places by default)."""
    places = 0 if currency and currency.upper() in ZERO_DECIMAL_CURRENCIES else 2
    exponent = Decimal("1") if places == 0 else Decimal("0.01")
    return amount.quantize(exponent, rounding=ROUND_HALF_UP)


def to_base(amount: Decimal, rate: Decimal) -> Decimal:
    """Convert an amount to base currency (``amount / rate``)."""
    if rate <= ZERO:
        raise ValueError(f"Exchange rate must be positive, got {rate}")
    return (amount / rate).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)
