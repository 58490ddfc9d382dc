"""Balance aggregation over expense snapshots."""

from collections.abc import Iterable
from decimal import Decimal, localcontext

from .identity import normalize_key
from .models import (
    WORKING_PRECISION,
    ZERO,
    BalanceSummary,
    ExpenseRecord,
    PartyTotals,
    to_decimal,
)
from .splits import allocate_amount, normalized_ratio, resolve_ratios


def _shares(
    expense: ExpenseRecord, you_keys: frozenset[str] | set[str]
) -> tuple[Decimal, Decimal, Decimal]:
    """Return (amount, your_share, partner_share) for one expense."""
    amount = to_decimal(expense.amount)
    if amount <= 0:
        return ZERO, ZERO, ZERO
    your_ratio = normalized_ratio(resolve_ratios(expense.split, you_keys))
    your_share, partner_share = allocate_amount(amount, your_ratio)
    return amount, your_share, partner_share


def _is_member(key: str, keys: frozenset[str] | set[str]) -> bool:
    return bool(key) and key in keys


def compute_balances(
    expenses: Iterable[ExpenseRecord],
    you_keys: frozenset[str] | set[str],
    partner_keys: frozenset[str] | set[str] = frozenset(),
) -> BalanceSummary:
    """
    Fold expenses into per-party gasto/aporto/balance totals.

    Every split entry and payer not recognized as you is attributed to the
    partner, and its key is added to the discovered partner keys. The
    caller's partner_keys are never mutated.

    Records with a zero, negative or unusable amount contribute nothing.

    Args:
        expenses: Expense records (typically the unsettled, filtered view)
        you_keys: Member keys of the signed-in party
        partner_keys: Known partner keys, widened from the data

    Returns:
        Balance summary for you and the partner
    """
    discovered = set(partner_keys)
    you_gasto = you_aporto = ZERO
    partner_gasto = partner_aporto = ZERO

    with localcontext(prec=WORKING_PRECISION):
        for expense in expenses:
            amount, your_share, partner_share = _shares(expense, you_keys)
            if not amount:
                continue

            you_gasto += your_share
            partner_gasto += partner_share

            for entry in expense.split:
                key = normalize_key(entry.uid_or_email)
                if key and key not in you_keys:
                    discovered.add(key)

            payer = normalize_key(expense.payer_uid)
            if _is_member(payer, you_keys):
                you_aporto += amount
            elif payer:
                partner_aporto += amount
                discovered.add(payer)

        you = PartyTotals(
            gasto=you_gasto, aporto=you_aporto, balance=you_aporto - you_gasto
        )
        partner = PartyTotals(
            gasto=partner_gasto,
            aporto=partner_aporto,
            balance=partner_aporto - partner_gasto,
        )

    return BalanceSummary(
        you=you, partner=partner, partner_keys=frozenset(discovered)
    )


def net_for_user(
    expense: ExpenseRecord, your_keys: frozenset[str] | set[str]
) -> Decimal:
    """
    Net effect of a single expense on your balance.

    Positive means the partner owes you for this row, negative means you owe.
    Summed over a set it equals compute_balances(...).you.balance.
    """
    amount, your_share, _ = _shares(expense, your_keys)
    if not amount:
        return ZERO
    paid = amount if _is_member(normalize_key(expense.payer_uid), your_keys) else ZERO
    with localcontext(prec=WORKING_PRECISION):
        return paid - your_share
