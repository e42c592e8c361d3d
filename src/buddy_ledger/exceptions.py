"""Custom exceptions for Buddy Ledger.

Every core operation either returns its result or raises one of these.
Storage-specific errors are wrapped before they leave the store.
"""


class BuddyLedgerError(Exception):
    """Base exception for all Buddy Ledger errors."""

    pass


class ConfigurationError(BuddyLedgerError):
    """Raised when configuration is invalid or missing."""

    pass


# ============================================================================
# Validation (caller-correctable, never touches storage)
# ============================================================================


class ValidationError(BuddyLedgerError):
    """Base class for bad input."""

    pass


class InvalidAmountError(ValidationError):
    """Raised when an amount is non-numeric, not positive, or above the maximum."""

    def __init__(self, raw: object, reason: str):
        self.raw = raw
        self.reason = reason
        super().__init__(f"Invalid amount {raw!r}: {reason}")


class InvalidNameError(ValidationError):
    """Raised when a group name is outside the allowed length."""

    pass


class InvalidDescriptionError(ValidationError):
    """Raised when a group description is too long."""

    pass


class InvalidExpenseError(ValidationError):
    """Raised when an expense is incomplete or its sharers are inconsistent."""

    pass


class UnknownMemberError(ValidationError):
    """Raised when an expense references someone outside the group roster."""

    def __init__(self, member_id: str, group_id: str | None = None):
        self.member_id = member_id
        self.group_id = group_id
        where = f" of group {group_id}" if group_id else ""
        super().__init__(f"{member_id} is not a member{where}")


class AlreadyMemberError(ValidationError):
    """Raised when joining a group the member already belongs to."""

    def __init__(self, member_id: str, group_id: str):
        self.member_id = member_id
        self.group_id = group_id
        super().__init__(f"{member_id} is already a member of group {group_id}")


# ============================================================================
# Authorization
# ============================================================================


class AuthorizationError(BuddyLedgerError):
    """Raised when the acting member lacks rights for an operation."""

    pass


# ============================================================================
# Concurrency
# ============================================================================


class ConflictError(BuddyLedgerError):
    """Raised when a transaction lost a race. Safe to retry."""

    pass


CommitConflict = ConflictError


# ============================================================================
# Invariants (programming defects, never committed)
# ============================================================================


class InvariantViolation(BuddyLedgerError):
    """Base class for broken ledger invariants."""

    pass


class LedgerInvariantViolation(InvariantViolation):
    """Raised when member balances of a group no longer sum to zero."""

    def __init__(self, imbalance_minor_units: int):
        self.imbalance_minor_units = imbalance_minor_units
        super().__init__(
            f"Ledger is not closed: balances sum to {imbalance_minor_units} "
            f"minor units instead of 0"
        )


class SplitMismatchError(InvariantViolation):
    """Raised when an expense's shares do not add up to its amount."""

    pass


# ============================================================================
# Lookup
# ============================================================================


class NotFoundError(BuddyLedgerError):
    """Base class for missing groups, expenses or members."""

    pass


class GroupNotFoundError(NotFoundError):
    """Raised when a group id does not resolve."""

    def __init__(self, group_id: str):
        self.group_id = group_id
        super().__init__(f"Group {group_id} not found")


class ExpenseNotFoundError(NotFoundError):
    """Raised when an expense id does not resolve."""

    def __init__(self, expense_id: str):
        self.expense_id = expense_id
        super().__init__(f"Expense {expense_id} not found")


# ============================================================================
# Storage
# ============================================================================


class StorageError(BuddyLedgerError):
    """Raised when the document store fails for a reason other than a conflict."""

    pass


class CascadeIncompleteError(StorageError):
    """Raised when a group deletion could not remove every expense."""

    def __init__(self, group_id: str, remaining: int, message: str | None = None):
        self.group_id = group_id
        self.remaining = remaining
        super().__init__(
            message
            or f"Group {group_id} was not deleted: {remaining} expense(s) remain"
        )
