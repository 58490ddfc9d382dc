"""Split ratio resolution and amount allocation between the two parties."""

from collections.abc import Iterable
from datetime import date
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, localcontext

from .identity import normalize_key
from .models import (
    WORKING_PRECISION,
    ZERO,
    RatioResolution,
    SplitEntry,
    round_whole,
    to_decimal,
)


ONE = Decimal("1")
EVEN_SPLIT = Decimal("0.5")
RATIO_PRECISION = Decimal("0.0001")


def resolve_ratios(
    split: Iterable[SplitEntry], party_keys: frozenset[str] | set[str]
) -> RatioResolution:
    """
    Sum the ratios that belong to a party and the ratios seen overall.

    Zero and unusable ratios are skipped, so they count as absent.

    Args:
        split: Split entries of an expense
        party_keys: Member keys identifying the party

    Returns:
        Party ratio sum and total ratio sum
    """
    party_ratio = ZERO
    total_ratio_seen = ZERO

    for entry in split:
        ratio = to_decimal(entry.ratio)
        if not ratio:
            continue
        total_ratio_seen += ratio
        if normalize_key(entry.uid_or_email) in party_keys:
            party_ratio += ratio

    return RatioResolution(party_ratio=party_ratio, total_ratio_seen=total_ratio_seen)


def normalized_ratio(resolution: RatioResolution) -> Decimal:
    """
    Scale a party's ratio so the split sums to one.

    Splits that don't sum to exactly 1 (drift, partial entries) are
    rescaled by their total and clamped to [0, 1]. Without usable split data
    the expense divides evenly.
    """
    total = resolution.total_ratio_seen
    if total <= 0:
        return EVEN_SPLIT

    ratio = resolution.party_ratio / total
    return max(ZERO, min(ONE, ratio))


def allocate_amount(amount: Decimal, party_ratio: Decimal) -> tuple[Decimal, Decimal]:
    """
    Divide an amount between the party and the partner.

    The party's share is rounded down to the currency unit and the partner
    gets the remainder, so the shares always sum to the amount. Unusable
    amounts and ratios count as zero.

    Args:
        amount: Expense amount
        party_ratio: Normalized ratio of the party

    Returns:
        Tuple of (party_share, partner_share)
    """
    amount = to_decimal(amount)
    with localcontext(prec=WORKING_PRECISION):
        party_share = round_whole(amount * to_decimal(party_ratio), ROUND_DOWN)
        partner_share = amount - party_share
    return party_share, partner_share


def complement_ratio(ratio: Decimal | float | str) -> Decimal:
    """Ratio left for the other party, rounded to four decimals."""
    with localcontext(prec=WORKING_PRECISION):
        value = ONE - to_decimal(ratio)
        return value.quantize(RATIO_PRECISION, rounding=ROUND_HALF_UP)


def week_label_from_iso(date_iso: str) -> str:
    """
    Compute the `YYYY-WW` week label stored alongside each expense.

    Week 1 is the week containing January 1st, with weeks starting on Sunday.
    """
    d = date.fromisoformat(date_iso)
    start = date(d.year, 1, 1)
    days = (d - start).days
    # Sunday-based weekday of Jan 1st (0 = Sunday)
    start_weekday = (start.weekday() + 1) % 7
    week = -(-(days + start_weekday + 1) // 7)
    return f"{d.year}-{week:02d}"
