"""Buddy Ledger - Shared-expense group ledger with exact splits and summaries."""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .db import Database
from .ledger import apply_expense, reverse_expense
from .models import (
    Expense,
    ExpenseDraft,
    ExpenseShare,
    Group,
    GroupSummary,
    Member,
    MemberRef,
)
from .money import Money
from .service import LedgerService
from .summary import summarize_balances

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "apply_expense",
    "reverse_expense",
    "Expense",
    "ExpenseDraft",
    "ExpenseShare",
    "Group",
    "GroupSummary",
    "Member",
    "MemberRef",
    "Money",
    "LedgerService",
    "summarize_balances",
]
