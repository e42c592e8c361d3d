"""Cross-group settlement summaries.

Everything here is a pure projection of group and expense state. Nothing is
stored.
"""

import logging
from collections import defaultdict

from .models import (
    Expense,
    Group,
    GroupSummary,
    SettlementSuggestion,
    SpendingTotals,
)
from .money import Money

logger = logging.getLogger(__name__)


def _latest_by_id(groups: list[Group]) -> list[Group]:
    """Drop repeated deliveries of the same group, keeping the last one."""
    return list({group.id: group for group in groups}.values())


def summarize_balances(groups: list[Group], user_id: str) -> GroupSummary:
    """
    Fold a user's balances across groups into one summary.

    Positive group balances count towards ``total_owed_to_user``, negative
    ones towards ``total_user_owes`` (as magnitudes). Every other member's
    balance is summed into a single ``per_counterparty`` bucket across all
    groups, so relationships from unrelated groups share one entry.

    Args:
        groups: Groups to consider; groups the user is not in are skipped
        user_id: The user to summarize for

    Returns:
        The user's summary
    """
    owed_to_user = 0
    user_owes = 0
    per_counterparty: dict[str, int] = defaultdict(int)
    names: dict[str, str] = {}

    for group in _latest_by_id(groups):
        me = group.get_member(user_id)
        if me is None:
            logger.debug(f"User {user_id} is not in group {group.id}, skipping")
            continue

        balance = me.balance.minor_units
        if balance > 0:
            owed_to_user += balance
        elif balance < 0:
            user_owes += -balance

        for member in group.members:
            if member.id == user_id:
                continue
            per_counterparty[member.id] += member.balance.minor_units
            names.setdefault(member.id, member.name)

    return GroupSummary(
        user_id=user_id,
        total_owed_to_user=Money(minor_units=owed_to_user),
        total_user_owes=Money(minor_units=user_owes),
        net_balance=Money(minor_units=owed_to_user - user_owes),
        per_counterparty={
            member_id: Money(minor_units=amount)
            for member_id, amount in per_counterparty.items()
        },
        counterparty_names=names,
    )


def summarize_spending(expenses: list[Expense], user_id: str) -> SpendingTotals:
    """Total what the user paid and what their shares came to."""
    spent = Money.zero()
    share = Money.zero()

    seen: set[str] = set()
    for expense in expenses:
        if expense.id in seen:
            continue
        seen.add(expense.id)

        if expense.paid_by.id == user_id:
            spent += expense.amount
        own_share = expense.share_of(user_id)
        if own_share is not None:
            share += own_share

    return SpendingTotals(user_id=user_id, spent=spent, share=share, net=spent - share)


def suggest_settlements(group: Group) -> list[SettlementSuggestion]:
    """
    Suggest transfers that bring every balance in a group to zero.

    Greedy: the largest debtor pays the largest creditor until one of them
    is square, then move on. Amounts are exact minor units.
    """
    debtors = []
    creditors = []
    for member in group.members:
        if member.balance.is_negative():
            debtors.append([member.id, -member.balance.minor_units])
        elif member.balance.is_positive():
            creditors.append([member.id, member.balance.minor_units])
    debtors.sort(key=lambda entry: (-entry[1], entry[0]))
    creditors.sort(key=lambda entry: (-entry[1], entry[0]))

    suggestions = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        debtor, creditor = debtors[i], creditors[j]
        amount = min(debtor[1], creditor[1])

        suggestions.append(
            SettlementSuggestion(
                group_id=group.id,
                from_member_id=debtor[0],
                to_member_id=creditor[0],
                amount=Money(minor_units=amount),
            )
        )

        debtor[1] -= amount
        creditor[1] -= amount
        if debtor[1] == 0:
            i += 1
        if creditor[1] == 0:
            j += 1

    return suggestions
