"""
Montants en Decimal: arrondi au centime "half-up" et conversions en centimes
(Stripe, répartition caritative).
"""

from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP

Money = Decimal
CENT = Decimal("0.01")

def D(x) -> Money:
    return x if isinstance(x, Decimal) else Decimal(str(x or "0"))

def round_money(x) -> Money:
    return D(x).quantize(CENT, rounding=ROUND_HALF_UP)

def floor_int(x) -> int:
    return int(D(x).to_integral_value(rounding=ROUND_FLOOR))

def to_cents(x) -> int:
    return int(round_money(x) * 100)

def from_cents(cents: int) -> Money:
    return (Decimal(cents) / 100).quantize(CENT)
