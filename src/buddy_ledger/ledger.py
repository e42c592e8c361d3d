"""Member balance ledger: how an expense moves balances, and how to undo it.

Both directions are derived from the expense alone, never from current
balances, so a reversal stays exact no matter what was applied in between.
"""

from collections import defaultdict

from .exceptions import (
    InvalidExpenseError,
    LedgerInvariantViolation,
    SplitMismatchError,
    UnknownMemberError,
)
from .models import Expense, Member
from .money import Money


def expense_deltas(expense: Expense) -> dict[str, int]:
    """
    Compute the balance change, in minor units, that an expense causes.

    The payer gains ``amount - own share``; every other sharer loses their
    share. Members not involved do not appear.

    Args:
        expense: The expense to evaluate

    Returns:
        Mapping of member id to signed delta (sums to zero)

    Raises:
        InvalidExpenseError: If nobody shares the expense or a member is listed twice
        SplitMismatchError: If the shares do not add up to the amount
    """
    if not expense.shared_by:
        raise InvalidExpenseError(f"Expense {expense.id} is not shared by anyone")

    sharer_ids = [share.member_id for share in expense.shared_by]
    if len(sharer_ids) != len(set(sharer_ids)):
        raise InvalidExpenseError(f"Expense {expense.id} lists a sharer more than once")

    if expense.shared_total() != expense.amount:
        raise SplitMismatchError(
            f"Expense {expense.id} shares sum to {expense.shared_total()} "
            f"but amount is {expense.amount}"
        )

    deltas: dict[str, int] = defaultdict(int)
    deltas[expense.paid_by.id] += expense.amount.minor_units
    for share in expense.shared_by:
        deltas[share.member_id] -= share.share_amount.minor_units

    return dict(deltas)


def check_closed(members: list[Member]) -> None:
    """Raise LedgerInvariantViolation unless balances sum to exactly zero."""
    imbalance = sum(member.balance.minor_units for member in members)
    if imbalance != 0:
        raise LedgerInvariantViolation(imbalance)


def _shift(members: list[Member], expense: Expense, sign: int) -> list[Member]:
    deltas = expense_deltas(expense)

    roster = {member.id for member in members}
    for member_id in deltas:
        if member_id not in roster:
            raise UnknownMemberError(member_id, expense.group_id)

    updated = [
        member.model_copy(
            update={
                "balance": Money(
                    minor_units=member.balance.minor_units + sign * deltas[member.id]
                )
            }
        )
        if member.id in deltas
        else member
        for member in members
    ]

    check_closed(updated)
    return updated


def apply_expense(members: list[Member], expense: Expense) -> list[Member]:
    """
    Apply an expense to a roster.

    Returns a new list; the input members are not modified.

    Raises:
        UnknownMemberError: If the payer or a sharer is not in ``members``
        LedgerInvariantViolation: If the result does not sum to zero
    """
    return _shift(members, expense, 1)


def reverse_expense(members: list[Member], expense: Expense) -> list[Member]:
    """
    Undo an expense using its stored split.

    Exact inverse of ``apply_expense``: applying then reversing the same
    expense restores every balance to the minor unit.
    """
    return _shift(members, expense, -1)
