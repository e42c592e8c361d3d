"""Expense drafts: validation, exact splitting and delete authorization."""

import logging
from datetime import datetime

from .exceptions import (
    AuthorizationError,
    InvalidExpenseError,
    SplitMismatchError,
    UnknownMemberError,
    ValidationError,
)
from .models import DraftStatus, Expense, ExpenseDraft, ExpenseShare, Group
from .money import Money

logger = logging.getLogger(__name__)


def validate_draft(
    draft: ExpenseDraft, group: Group, maximum: Money | None = None
) -> Money:
    """
    Validate a draft against the group roster.

    Moves the draft to VALIDATED on success or REJECTED (with a reason) on
    failure. Nothing is written anywhere.

    Args:
        draft: The caller's expense input
        group: Current state of the group the expense belongs to
        maximum: Optional upper bound for the amount

    Returns:
        The parsed expense amount

    Raises:
        InvalidExpenseError: If the title is blank or nobody is selected
        InvalidAmountError: If the amount is not a positive number within bounds
        UnknownMemberError: If the payer or a selected member is not in the group
    """
    try:
        if not draft.title.strip():
            raise InvalidExpenseError("Expense title is required")

        amount = Money.parse(draft.amount, maximum)

        if not draft.shared_with:
            raise InvalidExpenseError("Select at least one member to split with")

        if not group.is_member(draft.paid_by.id):
            raise UnknownMemberError(draft.paid_by.id, group.id)

        for member_id in draft.shared_with:
            if not group.is_member(member_id):
                raise UnknownMemberError(member_id, group.id)

    except ValidationError as e:
        draft.status = DraftStatus.REJECTED
        draft.rejection_reason = str(e)
        logger.warning(f"Rejected expense draft '{draft.title}': {e}")
        raise

    draft.status = DraftStatus.VALIDATED
    draft.rejection_reason = None
    return amount


def build_expense(
    draft: ExpenseDraft,
    group: Group,
    expense_id: str,
    amount: Money,
    now: datetime,
) -> Expense:
    """
    Split a validated draft into an Expense.

    Shares follow roster order, so with a remainder the earliest members in
    the group carry the extra minor unit.
    """
    selected_ids = set(draft.shared_with)
    sharers = [member for member in group.members if member.id in selected_ids]
    if len(sharers) != len(selected_ids):
        missing = sorted(selected_ids - {member.id for member in sharers})
        raise UnknownMemberError(missing[0], group.id)

    shares = amount.split_evenly(len(sharers))

    expense = Expense(
        id=expense_id,
        group_id=group.id,
        title=draft.title.strip(),
        amount=amount,
        paid_by=draft.paid_by,
        shared_by=tuple(
            ExpenseShare(
                member_id=member.id,
                name=member.name,
                profile_ref=member.profile_ref,
                share_amount=share,
            )
            for member, share in zip(sharers, shares, strict=True)
        ),
        date=now,
    )

    if expense.shared_total() != amount:
        raise SplitMismatchError(
            f"Split of {amount} across {len(sharers)} members sums to "
            f"{expense.shared_total()}"
        )

    return expense


def authorize(expense: Expense, acting_member_id: str) -> None:
    """Only the member who paid an expense may delete it."""
    if expense.paid_by.id != acting_member_id:
        raise AuthorizationError(
            f"{acting_member_id} cannot delete expense {expense.id}: "
            f"only the payer ({expense.paid_by.id}) can"
        )
