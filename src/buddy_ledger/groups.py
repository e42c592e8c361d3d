"""Group aggregate: creation, membership and expense totals."""

import logging
from datetime import datetime

from .exceptions import (
    AlreadyMemberError,
    AuthorizationError,
    InvalidDescriptionError,
    InvalidExpenseError,
    InvalidNameError,
)
from .ledger import apply_expense, reverse_expense
from .models import Expense, Group, Member, MemberRef
from .money import Money

logger = logging.getLogger(__name__)

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 50
DESCRIPTION_MAX_LENGTH = 200


def validate_group_name(name: str) -> str:
    """Return the trimmed name, or raise InvalidNameError."""
    trimmed = name.strip()
    if len(trimmed) < NAME_MIN_LENGTH:
        raise InvalidNameError(
            f"Group name must be at least {NAME_MIN_LENGTH} characters long"
        )
    if len(trimmed) > NAME_MAX_LENGTH:
        raise InvalidNameError(
            f"Group name must be less than {NAME_MAX_LENGTH} characters"
        )
    return trimmed


def validate_description(description: str | None) -> str | None:
    """Return the trimmed description (None when blank)."""
    if description is None:
        return None
    trimmed = description.strip()
    if len(trimmed) > DESCRIPTION_MAX_LENGTH:
        raise InvalidDescriptionError(
            f"Description must be less than {DESCRIPTION_MAX_LENGTH} characters"
        )
    return trimmed or None


def create_group(
    group_id: str,
    creator: MemberRef,
    name: str,
    description: str | None,
    now: datetime,
) -> Group:
    """
    Create a group with the creator as its only member.

    Raises:
        InvalidNameError: If the trimmed name is not 3-50 characters
        InvalidDescriptionError: If the trimmed description exceeds 200 characters
    """
    return Group(
        id=group_id,
        name=validate_group_name(name),
        description=validate_description(description),
        created_by=creator.id,
        member_ids={creator.id},
        members=[
            Member(id=creator.id, name=creator.name, profile_ref=creator.profile_ref)
        ],
        created_at=now,
        updated_at=now,
    )


def join_group(group: Group, new_member: MemberRef, now: datetime) -> Group:
    """
    Add a member with a zero balance.

    Existing balances are left alone; the newcomer only takes part in
    expenses created after joining.

    Raises:
        AlreadyMemberError: If the member id is already on the roster
    """
    if group.is_member(new_member.id):
        raise AlreadyMemberError(new_member.id, group.id)

    return group.model_copy(
        update={
            "member_ids": group.member_ids | {new_member.id},
            "members": [
                *group.members,
                Member(
                    id=new_member.id,
                    name=new_member.name,
                    profile_ref=new_member.profile_ref,
                ),
            ],
            "updated_at": now,
        }
    )


def _check_belongs(group: Group, expense: Expense) -> None:
    if expense.group_id != group.id:
        raise InvalidExpenseError(
            f"Expense {expense.id} belongs to group {expense.group_id}, not {group.id}"
        )


def add_expense_to_group(group: Group, expense: Expense, now: datetime) -> Group:
    """Apply an expense to the group's balances and raise its totals."""
    _check_belongs(group, expense)

    return group.model_copy(
        update={
            "members": apply_expense(group.members, expense),
            "total_expenses": group.total_expenses + expense.amount,
            "total_balance": group.total_balance + expense.amount,
            "updated_at": now,
        }
    )


def _clamped(total: Money, amount: Money, label: str, group_id: str) -> Money:
    remaining = total - amount
    if remaining.is_negative():
        logger.warning(
            f"Group {group_id} {label} would drop to {remaining}, clamping to 0"
        )
        return Money.zero()
    return remaining


def remove_expense_from_group(group: Group, expense: Expense, now: datetime) -> Group:
    """Reverse an expense's balance changes and lower the totals (never below 0)."""
    _check_belongs(group, expense)

    return group.model_copy(
        update={
            "members": reverse_expense(group.members, expense),
            "total_expenses": _clamped(
                group.total_expenses, expense.amount, "total_expenses", group.id
            ),
            "total_balance": _clamped(
                group.total_balance, expense.amount, "total_balance", group.id
            ),
            "updated_at": now,
        }
    )


def authorize_group_deletion(group: Group, acting_member_id: str) -> None:
    """Only the creator may delete a group."""
    if group.created_by != acting_member_id:
        raise AuthorizationError(
            f"{acting_member_id} cannot delete group {group.id}: "
            f"only the group creator can"
        )
