"""
MONEY HELPERS
=============

All amounts are decimal.Decimal, never float.

- Persisted values carry 2 decimal places, rounded half away from zero.
- EPSILON is the single tolerance below which a balance counts as settled.
- Even splits truncate to the cent and hand the remainder to one named
  participant (the first in input order unless configured otherwise).
"""

from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP

from splitledger.errors import ValidationError

CENT = Decimal('0.01')
ZERO = Decimal('0')
EPSILON = Decimal('0.01')

REMAINDER_FIRST = 'first'
REMAINDER_LAST = 'last'
REMAINDER_POLICIES = (REMAINDER_FIRST, REMAINDER_LAST)


def to_money(value) -> Decimal:
    """Parse a str/int/float/Decimal into a 2dp Decimal (ROUND_HALF_UP)."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"Invalid amount: {value!r}")

    try:
        if isinstance(value, float):
            amount = Decimal(str(value))
        elif isinstance(value, Decimal):
            amount = value
        else:
            amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}")

    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")

    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(value) -> str:
    return f"{to_money(value):.2f}"


def money_sum(values) -> Decimal:
    return sum(values, ZERO)


def is_settled(value) -> bool:
    """True when the amount is within EPSILON of zero."""
    return abs(value) <= EPSILON


def split_evenly(total, count, remainder_to=REMAINDER_FIRST):
    """
    Split `total` into `count` parts that add up exactly to `total`.

    Every part is the even share truncated to the cent; the leftover cents
    go to the first (or last) part.

    >>> split_evenly(Decimal('100.00'), 3)
    [Decimal('33.34'), Decimal('33.33'), Decimal('33.33')]
    """
    if count <= 0:
        raise ValidationError("Cannot split an amount between zero participants")
    if remainder_to not in REMAINDER_POLICIES:
        raise ValidationError(f"Unknown remainder policy: {remainder_to!r}")

    total = to_money(total)
    base = (total / count).quantize(CENT, rounding=ROUND_DOWN)
    parts = [base] * count

    remainder = total - base * count
    index = 0 if remainder_to == REMAINDER_FIRST else count - 1
    parts[index] += remainder

    return parts


def equal_shares(base_amount, user_ids, tax_amount=None, remainder_to=REMAINDER_FIRST):
    """
    Equal split of `base_amount` plus an even split of `tax_amount`.

    Returns a list of (user_id, share_amount) in input order summing to
    base_amount + tax_amount.
    """
    user_ids = list(user_ids)
    base_parts = split_evenly(base_amount, len(user_ids), remainder_to)
    return _with_tax(list(zip(user_ids, base_parts)), tax_amount, remainder_to)


def exact_shares(amounts_by_user, tax_amount=None, remainder_to=REMAINDER_FIRST):
    """
    Explicit per-user amounts plus an even split of `tax_amount`.

    `amounts_by_user` is an iterable of (user_id, amount) pairs or a dict;
    input order decides who receives the tax remainder.
    """
    if isinstance(amounts_by_user, dict):
        amounts_by_user = amounts_by_user.items()
    pairs = [(user_id, to_money(amount)) for user_id, amount in amounts_by_user]
    if not pairs:
        raise ValidationError("At least one participant is required")
    return _with_tax(pairs, tax_amount, remainder_to)


def _with_tax(pairs, tax_amount, remainder_to):
    if tax_amount is None:
        return pairs

    tax_amount = to_money(tax_amount)
    if tax_amount < ZERO:
        raise ValidationError("Tax amount cannot be negative")

    tax_parts = split_evenly(tax_amount, len(pairs), remainder_to)
    return [
        (user_id, amount + tax)
        for (user_id, amount), tax in zip(pairs, tax_parts)
    ]
