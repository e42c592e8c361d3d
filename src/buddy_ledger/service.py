"""Service layer that runs ledger workflows against the document store.

Each mutation reads the latest committed group state inside a transaction,
computes the new state with the pure functions in ``groups``/``ledger``,
and commits group and expense changes together.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

from .config import Settings
from .exceptions import (
    CascadeIncompleteError,
    ConflictError,
    ExpenseNotFoundError,
    GroupNotFoundError,
    StorageError,
)
from .expenses import authorize, build_expense, validate_draft
from .groups import (
    add_expense_to_group,
    authorize_group_deletion,
    create_group,
    join_group,
    remove_expense_from_group,
)
from .models import (
    DraftStatus,
    Expense,
    ExpenseDraft,
    Group,
    GroupSummary,
    MemberRef,
    SettlementSuggestion,
    SpendingTotals,
)
from .money import Money
from .store import (
    EXPENSES,
    GROUPS,
    DocumentStore,
    LiveView,
    Query,
    Transaction,
    new_document_id,
)
from .summary import summarize_balances, summarize_spending, suggest_settlements

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _dump(model: Group | Expense) -> dict[str, Any]:
    return model.model_dump(mode="json")


def _group_from(tx: Transaction, group_id: str) -> Group:
    document = tx.get(GROUPS, group_id)
    if document is None:
        raise GroupNotFoundError(group_id)
    return Group.model_validate(document)


class LedgerService:
    """Service for managing groups, expenses and balances."""

    def __init__(
        self,
        settings: Settings,
        store: DocumentStore,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the ledger service."""
        self.settings = settings
        self.store = store
        self._clock = clock or (lambda: datetime.now(UTC))

    def _with_retries(self, description: str, operation: Callable[[], T]) -> T:
        """Run an operation, retrying ConflictError up to the configured limit."""
        limit = max(1, self.settings.commit_retry_limit)
        last_error = None
        for attempt in range(1, limit + 1):
            try:
                return operation()
            except ConflictError as e:
                last_error = e
                logger.warning(
                    f"Conflict while {description} (attempt {attempt}/{limit}): {e}"
                )
        else:
            logger.error(f"Giving up on {description} after {limit} attempts")
            raise ConflictError(
                f"Gave up on {description} after {limit} attempts: {last_error}"
            ) from last_error

    # ========================================================================
    # Groups
    # ========================================================================

    def create_group(
        self, creator: MemberRef, name: str, description: str | None = None
    ) -> Group:
        """
        Create a group with the creator as its only member.

        Args:
            creator: The user creating the group
            name: Group name (3-50 characters once trimmed)
            description: Optional description (up to 200 characters)

        Returns:
            The stored group
        """
        group = create_group(
            group_id=new_document_id(),
            creator=creator,
            name=name,
            description=description,
            now=self._clock(),
        )
        self.store.create_document(GROUPS, _dump(group))

        logger.info(f"Created group {group.id} '{group.name}' for {creator.id}")
        return group

    def get_group(self, group_id: str) -> Group:
        """Get a group, raising GroupNotFoundError if it does not exist."""
        return Group.model_validate(self.store.read_group(group_id))

    def list_groups(self, member_id: str) -> list[Group]:
        """Get every group a member belongs to."""
        documents = self.store.query(Query.groups_for_member(member_id))
        return [Group.model_validate(doc) for doc in documents]

    def watch_groups(
        self,
        member_id: str,
        on_change: Callable[[list[Group]], None] | None = None,
    ) -> LiveView[Group]:
        """Keep a live list of a member's groups. Call ``close()`` to stop."""
        view: LiveView[Group] = LiveView(
            parse=Group.model_validate, on_change=on_change
        )
        query = Query.groups_for_member(member_id)
        view.subscription = self.store.subscribe(query, view)
        return view

    def join_group(self, group_id: str, member: MemberRef) -> Group:
        """
        Add a member to a group with a zero balance.

        Raises:
            GroupNotFoundError: If the group does not exist
            AlreadyMemberError: If the member is already in the group
        """

        def mutate(tx: Transaction) -> Group:
            group = join_group(_group_from(tx, group_id), member, self._clock())
            tx.set(GROUPS, group.id, _dump(group))
            return group

        group = self._with_retries(
            f"joining group {group_id}",
            lambda: self.store.transact([(GROUPS, group_id)], mutate),
        )

        logger.info(f"{member.id} joined group {group_id}")
        return group

    def delete_group(self, group_id: str, acting_member_id: str) -> int:
        """
        Delete a group and all of its expenses.

        Expenses are removed in batches first. The group itself is only
        deleted once no expense of it is left; otherwise the group stays and
        CascadeIncompleteError is raised.

        Args:
            group_id: Group to delete
            acting_member_id: Member asking for the deletion (must be the creator)

        Returns:
            Number of expenses deleted
        """
        group = self.get_group(group_id)
        authorize_group_deletion(group, acting_member_id)

        try:
            deleted = self._with_retries(
                f"deleting group {group_id}", lambda: self._cascade_delete(group_id)
            )
        except ConflictError as e:
            remaining = len(self.store.query(Query.expenses_for_group(group_id)))
            raise CascadeIncompleteError(group_id, remaining) from e

        logger.info(f"Deleted group {group_id} and {deleted} expense(s)")
        return deleted

    def _cascade_delete(self, group_id: str) -> int:
        expense_query = Query.expenses_for_group(group_id)
        expense_ids = [doc["id"] for doc in self.store.query(expense_query)]
        batch_size = max(1, self.settings.delete_batch_size)

        deleted = 0
        for start in range(0, len(expense_ids), batch_size):
            batch = expense_ids[start : start + batch_size]
            try:
                self.store.transact(
                    [], lambda tx, batch=batch: [tx.delete(EXPENSES, i) for i in batch]
                )
            except StorageError as e:
                raise CascadeIncompleteError(
                    group_id, len(expense_ids) - deleted
                ) from e
            deleted += len(batch)
            logger.debug(f"Deleted {deleted}/{len(expense_ids)} expenses of {group_id}")

        def delete_group_document(tx: Transaction) -> None:
            if tx.get(GROUPS, group_id) is None:
                raise GroupNotFoundError(group_id)
            # Expenses added after the batches ran bump the group version,
            # so this check and the commit cannot both miss them
            if self.store.query(expense_query):
                raise ConflictError(f"New expenses were added to {group_id}")
            tx.delete(GROUPS, group_id)

        try:
            self.store.transact([(GROUPS, group_id)], delete_group_document)
        except StorageError as e:
            remaining = len(self.store.query(expense_query))
            raise CascadeIncompleteError(group_id, remaining) from e

        return deleted

    # ========================================================================
    # Expenses
    # ========================================================================

    def add_expense(self, group_id: str, draft: ExpenseDraft) -> Expense:
        """
        Validate a draft, split it and commit it with the group update.

        Validation runs against the stored group before any write. The commit
        re-reads the group so balances are always updated from the latest
        committed state.

        Raises:
            ValidationError: If the draft is invalid (draft ends REJECTED)
            GroupNotFoundError: If the group does not exist
            ConflictError: If the commit kept losing races
        """
        group = self.get_group(group_id)
        maximum = Money.of(self.settings.max_expense_amount)
        amount = validate_draft(draft, group, maximum)
        expense_id = new_document_id()

        def mutate(tx: Transaction) -> Expense:
            current = _group_from(tx, group_id)
            expense = build_expense(draft, current, expense_id, amount, self._clock())
            updated = add_expense_to_group(current, expense, expense.date)
            tx.create(EXPENSES, _dump(expense))
            tx.set(GROUPS, updated.id, _dump(updated))
            return expense

        expense = self._with_retries(
            f"adding expense to {group_id}",
            lambda: self.store.transact([(GROUPS, group_id)], mutate),
        )
        draft.status = DraftStatus.COMMITTED

        logger.info(
            f"Added expense {expense.id} '{expense.title}' {expense.amount} "
            f"to group {group_id}, split {len(expense.shared_by)} ways"
        )
        return expense

    def get_expense(self, expense_id: str) -> Expense:
        document = self.store.read(EXPENSES, expense_id)
        if document is None:
            raise ExpenseNotFoundError(expense_id)
        return Expense.model_validate(document)

    def list_expenses(self, group_id: str) -> list[Expense]:
        """Get a group's expenses, newest first."""
        documents = self.store.query(Query.expenses_for_group(group_id))
        return [Expense.model_validate(doc) for doc in documents]

    def watch_expenses(
        self,
        group_id: str,
        on_change: Callable[[list[Expense]], None] | None = None,
    ) -> LiveView[Expense]:
        """Keep a live, newest-first list of a group's expenses."""
        view: LiveView[Expense] = LiveView(
            parse=Expense.model_validate, on_change=on_change
        )
        query = Query.expenses_for_group(group_id)
        view.subscription = self.store.subscribe(query, view)
        return view

    def delete_expense(self, expense_id: str, acting_member_id: str) -> Group:
        """
        Delete an expense and reverse its effect on the group.

        The reversal uses the split stored on the expense, never one
        recomputed from current balances.

        Raises:
            ExpenseNotFoundError: If the expense does not exist
            AuthorizationError: If the acting member did not pay for it
        """
        group_id = self.get_expense(expense_id).group_id

        def mutate(tx: Transaction) -> Group:
            document = tx.get(EXPENSES, expense_id)
            if document is None:
                raise ExpenseNotFoundError(expense_id)
            expense = Expense.model_validate(document)
            authorize(expense, acting_member_id)

            group = remove_expense_from_group(
                _group_from(tx, group_id), expense, self._clock()
            )
            tx.delete(EXPENSES, expense_id)
            tx.set(GROUPS, group.id, _dump(group))
            return group

        group = self._with_retries(
            f"deleting expense {expense_id}",
            lambda: self.store.transact(
                [(EXPENSES, expense_id), (GROUPS, group_id)], mutate
            ),
        )

        logger.info(f"Deleted expense {expense_id} from group {group_id}")
        return group

    # ========================================================================
    # Summaries
    # ========================================================================

    def summarize(self, user_id: str) -> GroupSummary:
        """Summarize a user's balances across all their groups."""
        return summarize_balances(self.list_groups(user_id), user_id)

    def spending(self, user_id: str) -> SpendingTotals:
        """Total what a user paid and owed across all their groups' expenses."""
        expenses = [
            expense
            for group in self.list_groups(user_id)
            for expense in self.list_expenses(group.id)
        ]
        return summarize_spending(expenses, user_id)

    def settlement_suggestions(self, group_id: str) -> list[SettlementSuggestion]:
        """Suggest transfers that would square a group."""
        return suggest_settlements(self.get_group(group_id))
