"""Pydantic domain models for Buddy Ledger."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .money import Money

# ============================================================================
# Members
# ============================================================================


class MemberRef(BaseModel):
    """Identity of a person as shown on an expense."""

    id: str
    name: str
    profile_ref: str | None = None


class Member(BaseModel):
    """A group member and their running balance.

    Positive balance = the group owes the member.
    Negative balance = the member owes the group.
    """

    id: str
    name: str
    profile_ref: str | None = None
    balance: Money = Field(default_factory=Money.zero)

    def ref(self) -> MemberRef:
        return MemberRef(id=self.id, name=self.name, profile_ref=self.profile_ref)


# ============================================================================
# Expenses
# ============================================================================


class ExpenseShare(BaseModel):
    """One member's part of an expense."""

    model_config = ConfigDict(frozen=True)

    member_id: str
    name: str = ""
    profile_ref: str | None = None
    share_amount: Money


class Expense(BaseModel):
    """A committed expense. Never edited, only deleted."""

    model_config = ConfigDict(frozen=True)

    id: str
    group_id: str
    title: str
    amount: Money
    paid_by: MemberRef
    shared_by: tuple[ExpenseShare, ...]
    date: datetime

    def share_of(self, member_id: str) -> Money | None:
        """Get the share owed by a member, or None if they were not in the split."""
        for share in self.shared_by:
            if share.member_id == member_id:
                return share.share_amount
        return None

    def shared_total(self) -> Money:
        return sum((share.share_amount for share in self.shared_by), Money.zero())


class DraftStatus(StrEnum):
    """Lifecycle of an expense before it reaches the ledger."""

    DRAFT = "draft"
    VALIDATED = "validated"
    COMMITTED = "committed"
    REJECTED = "rejected"


class ExpenseDraft(BaseModel):
    """Caller input for a new expense.

    ``amount`` is untrusted and parsed during validation. ``shared_with``
    holds the ids of the selected members; the payer may leave themselves out.
    """

    title: str
    amount: Decimal | str
    paid_by: MemberRef
    shared_with: list[str]
    status: DraftStatus = DraftStatus.DRAFT
    rejection_reason: str | None = None


# ============================================================================
# Groups
# ============================================================================


class Group(BaseModel):
    """A group aggregate: roster, ledger balances and running totals."""

    id: str
    name: str
    description: str | None = None
    created_by: str
    member_ids: set[str]
    members: list[Member]
    total_expenses: Money = Field(default_factory=Money.zero)
    total_balance: Money = Field(default_factory=Money.zero)
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _roster_matches_member_ids(self) -> "Group":
        roster = [member.id for member in self.members]
        if len(roster) != len(set(roster)):
            raise ValueError(f"Group {self.id} lists a member more than once")
        if set(roster) != self.member_ids:
            raise ValueError(f"Group {self.id} member_ids do not match its members")
        return self

    def get_member(self, member_id: str) -> Member | None:
        for member in self.members:
            if member.id == member_id:
                return member
        return None

    def is_member(self, member_id: str) -> bool:
        return member_id in self.member_ids

    def member_balance(self, member_id: str) -> Money:
        """Balance of a member, zero if they are not in the group."""
        member = self.get_member(member_id)
        return member.balance if member else Money.zero()

    def balance_sum(self) -> Money:
        return sum((member.balance for member in self.members), Money.zero())


# ============================================================================
# Summaries (derived, never persisted)
# ============================================================================


class GroupSummary(BaseModel):
    """A user's position across every group they belong to.

    ``per_counterparty`` sums each other member's group balance across all
    shared groups into one bucket keyed by member id.
    """

    user_id: str
    total_owed_to_user: Money
    total_user_owes: Money
    net_balance: Money
    per_counterparty: dict[str, Money] = Field(default_factory=dict)
    counterparty_names: dict[str, str] = Field(default_factory=dict)


class SpendingTotals(BaseModel):
    """What a user paid versus what they consumed, over a set of expenses."""

    user_id: str
    spent: Money
    share: Money
    net: Money


class SettlementSuggestion(BaseModel):
    """A suggested transfer that moves a group towards all-zero balances."""

    group_id: str
    from_member_id: str
    to_member_id: str
    amount: Money
