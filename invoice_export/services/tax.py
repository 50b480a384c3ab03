"""Bolivian VAT (IVA) arithmetic.

Invoice totals are VAT-inclusive at a fixed 13%, so the tax-exclusive amount
is recovered by dividing by 1.13 rather than multiplying by 0.87.
"""

VAT_DIVISOR = 1.13


def amount_without_vat(total: float) -> float:
    """Tax-exclusive part of a VAT-inclusive total."""
    return total / VAT_DIVISOR


def vat_amount(total: float) -> float:
    """VAT contained in a VAT-inclusive total."""
    return total - total / VAT_DIVISOR


def format_amount(value: float) -> str:
    """Two-decimal amount with thousands separators."""
    return f"{value:,.2f}"
