"""Tests for LedgerService workflows."""

from datetime import UTC, datetime, timedelta
from itertools import count
from unittest.mock import patch

import pytest

from buddy_ledger.config import Settings
from buddy_ledger.db import Database
from buddy_ledger.exceptions import (
    AlreadyMemberError,
    AuthorizationError,
    CascadeIncompleteError,
    ConflictError,
    ExpenseNotFoundError,
    GroupNotFoundError,
    InvalidAmountError,
    InvalidNameError,
    StorageError,
)
from buddy_ledger.models import DraftStatus, ExpenseDraft, MemberRef
from buddy_ledger.money import Money
from buddy_ledger.service import LedgerService
from buddy_ledger.store import EXPENSES, GROUPS, Query

ALICE = MemberRef(id="alice", name="Alice")
BOB = MemberRef(id="bob", name="Bob")
CAROL = MemberRef(id="carol", name="Carol")
EVERYONE = ["alice", "bob", "carol"]


@pytest.fixture
def settings(tmp_path):
    """Create test settings."""
    return Settings(database_path=tmp_path / "ledger.db", delete_batch_size=2)


@pytest.fixture
def clock():
    """A clock that moves forward one second per call."""
    ticks = count()
    start = datetime(2024, 1, 15, 12, 0, 0, tzinfo=UTC)
    return lambda: start + timedelta(seconds=next(ticks))


@pytest.fixture
def mock_db(settings):
    """Create a temporary database."""
    db = Database(settings.database_path)
    yield db
    db.close()


@pytest.fixture
def service(settings, mock_db, clock):
    """Create a LedgerService instance."""
    return LedgerService(settings, mock_db, clock=clock)


@pytest.fixture
def group(service):
    """A group with Alice (creator), Bob and Carol."""
    g = service.create_group(ALICE, "Trip to Lisbon")
    service.join_group(g.id, BOB)
    return service.join_group(g.id, CAROL)


def draft(payer: MemberRef, amount: str, shared_with: list[str], title: str = "Dinner"):
    return ExpenseDraft(
        title=title, amount=amount, paid_by=payer, shared_with=shared_with
    )


def balances(service: LedgerService, group_id: str) -> dict[str, Money]:
    return {m.id: m.balance for m in service.get_group(group_id).members}


class TestGroups:
    """Tests for group creation and membership."""

    def test_create_group_is_stored(self, service):
        created = service.create_group(ALICE, "  Flatmates ", "Rent and bills")

        stored = service.get_group(created.id)
        assert stored == created
        assert stored.name == "Flatmates"
        assert stored.member_ids == {"alice"}

    def test_create_group_validates_name(self, service, mock_db):
        with pytest.raises(InvalidNameError):
            service.create_group(ALICE, "ab")

        assert service.list_groups("alice") == []

    def test_join_group(self, group):
        assert group.member_ids == {"alice", "bob", "carol"}
        assert all(m.balance.is_zero() for m in group.members)

    def test_join_twice(self, service, group, mock_db):
        version = mock_db.version(GROUPS, group.id)

        with pytest.raises(AlreadyMemberError):
            service.join_group(group.id, BOB)

        stored = service.get_group(group.id)
        assert [m.id for m in stored.members] == ["alice", "bob", "carol"]
        assert mock_db.version(GROUPS, group.id) == version

    def test_join_missing_group(self, service):
        with pytest.raises(GroupNotFoundError):
            service.join_group("does-not-exist", BOB)

    def test_list_groups_for_member(self, service, group):
        other = service.create_group(BOB, "Football")

        assert [g.id for g in service.list_groups("bob")] == [group.id, other.id]
        assert [g.id for g in service.list_groups("alice")] == [group.id]
        assert service.list_groups("nobody") == []

    def test_get_missing_group(self, service):
        with pytest.raises(GroupNotFoundError):
            service.get_group("does-not-exist")


class TestAddExpense:
    """Tests for add_expense."""

    def test_dinner_scenario(self, service, group):
        """A pays 30.00 for A, B, C: A +20, B -10, C -10, total 30."""
        d = draft(ALICE, "30.00", EVERYONE)

        expense = service.add_expense(group.id, d)

        assert d.status == DraftStatus.COMMITTED
        assert balances(service, group.id) == {
            "alice": Money.of("20.00"),
            "bob": Money.of("-10.00"),
            "carol": Money.of("-10.00"),
        }
        stored = service.get_group(group.id)
        assert stored.total_expenses == Money.of("30.00")
        assert stored.total_balance == Money.of("30.00")
        assert service.get_expense(expense.id) == expense

    def test_uneven_split(self, service, group):
        """10.00 split three ways is stored as 3.34/3.33/3.33."""
        expense = service.add_expense(group.id, draft(BOB, "10.00", EVERYONE))

        assert [s.share_amount for s in expense.shared_by] == [
            Money.of("3.34"),
            Money.of("3.33"),
            Money.of("3.33"),
        ]
        assert service.get_group(group.id).balance_sum() == Money.zero()

    def test_validation_failure_touches_nothing(self, service, group, mock_db):
        version = mock_db.version(GROUPS, group.id)
        d = draft(ALICE, "abc", ["alice", "bob"])

        with pytest.raises(InvalidAmountError):
            service.add_expense(group.id, d)

        assert d.status == DraftStatus.REJECTED
        assert mock_db.version(GROUPS, group.id) == version
        assert service.list_expenses(group.id) == []

    def test_amount_over_configured_maximum(self, settings, mock_db, clock, group):
        strict = LedgerService(
            settings.model_copy(update={"max_expense_amount": 50}), mock_db, clock=clock
        )

        with pytest.raises(InvalidAmountError):
            strict.add_expense(group.id, draft(ALICE, "50.01", ["alice", "bob"]))

    def test_missing_group(self, service):
        with pytest.raises(GroupNotFoundError):
            service.add_expense("does-not-exist", draft(ALICE, "5.00", ["alice"]))

    def test_concurrent_adds_do_not_lose_updates(
        self, service, group, mock_db, settings, clock
    ):
        """A commit that loses a race is retried against the latest balances."""
        other_db = Database(settings.database_path)
        other_service = LedgerService(settings, other_db, clock=clock)
        real_transact = mock_db.transact
        raced = []

        def racing_transact(read_keys, mutate_fn):
            def mutate(tx):
                result = mutate_fn(tx)
                if not raced:
                    raced.append(True)
                    other_service.add_expense(
                        group.id, draft(BOB, "12.00", ["alice", "bob", "carol"], "Taxi")
                    )
                return result

            return real_transact(read_keys, mutate)

        try:
            with patch.object(mock_db, "transact", side_effect=racing_transact) as tx:
                service.add_expense(group.id, draft(ALICE, "30.00", EVERYONE))
        finally:
            other_db.close()

        assert tx.call_count == 2
        assert balances(service, group.id) == {
            "alice": Money.of("16.00"),
            "bob": Money.of("-2.00"),
            "carol": Money.of("-14.00"),
        }
        assert service.get_group(group.id).total_expenses == Money.of("42.00")
        assert len(service.list_expenses(group.id)) == 2

    def test_gives_up_after_retry_limit(self, service, group, mock_db, settings):
        d = draft(ALICE, "30.00", ["alice", "bob"])

        with patch.object(mock_db, "transact", side_effect=ConflictError("lost race")) as tx:
            with pytest.raises(ConflictError, match="Gave up"):
                service.add_expense(group.id, d)

        assert tx.call_count == settings.commit_retry_limit
        assert d.status == DraftStatus.VALIDATED
        assert service.list_expenses(group.id) == []


class TestDeleteExpense:
    """Tests for delete_expense."""

    def test_delete_restores_balances(self, service, group):
        expense = service.add_expense(group.id, draft(ALICE, "30.00", EVERYONE))

        updated = service.delete_expense(expense.id, "alice")

        assert all(m.balance == Money.zero() for m in updated.members)
        assert updated.total_expenses == Money.zero()
        assert updated.total_balance == Money.zero()
        assert service.get_group(group.id) == updated
        assert service.list_expenses(group.id) == []

    def test_delete_with_interleaved_expenses(self, service, group):
        """Deleting an older expense leaves exactly the newer one's effect."""
        first = service.add_expense(group.id, draft(ALICE, "10.00", EVERYONE))
        service.add_expense(group.id, draft(CAROL, "7.00", ["alice", "bob"]))

        service.delete_expense(first.id, "alice")

        assert balances(service, group.id) == {
            "alice": Money.of("-3.50"),
            "bob": Money.of("-3.50"),
            "carol": Money.of("7.00"),
        }
        assert service.get_group(group.id).total_expenses == Money.of("7.00")

    def test_only_payer_may_delete(self, service, group, mock_db):
        expense = service.add_expense(group.id, draft(ALICE, "30.00", EVERYONE))
        before = service.get_group(group.id)

        with pytest.raises(AuthorizationError):
            service.delete_expense(expense.id, "bob")

        assert service.get_group(group.id) == before
        assert service.get_expense(expense.id) == expense

    def test_missing_expense(self, service):
        with pytest.raises(ExpenseNotFoundError):
            service.delete_expense("does-not-exist", "alice")


class TestDeleteGroup:
    """Tests for delete_group."""

    def test_cascades_to_expenses(self, service, group):
        for amount in ("1.00", "2.00", "3.00"):
            service.add_expense(group.id, draft(ALICE, amount, ["alice", "bob"]))

        deleted = service.delete_group(group.id, "alice")

        assert deleted == 3
        assert service.list_expenses(group.id) == []
        with pytest.raises(GroupNotFoundError):
            service.get_group(group.id)

    def test_only_creator_may_delete(self, service, group):
        with pytest.raises(AuthorizationError):
            service.delete_group(group.id, "bob")

        assert service.get_group(group.id).id == group.id

    def test_partial_failure_reports_incomplete(self, service, group, mock_db):
        service.add_expense(group.id, draft(ALICE, "1.00", ["alice", "bob"]))
        service.add_expense(group.id, draft(ALICE, "2.00", ["alice", "bob"]))

        with patch.object(mock_db, "transact", side_effect=StorageError("disk full")):
            with pytest.raises(CascadeIncompleteError) as exc_info:
                service.delete_group(group.id, "alice")

        assert exc_info.value.remaining == 2
        assert service.get_group(group.id).id == group.id

    def test_deletes_in_batches(self, service, group, mock_db, settings):
        for amount in ("1.00", "2.00", "3.00", "4.00", "5.00"):
            service.add_expense(group.id, draft(ALICE, amount, EVERYONE))

        with patch.object(mock_db, "transact", wraps=mock_db.transact) as tx:
            deleted = service.delete_group(group.id, "alice")

        assert deleted == 5
        # Three batches of at most two expenses, then the group itself
        assert settings.delete_batch_size == 2
        assert tx.call_count == 4
        assert mock_db.query(Query.expenses_for_group(group.id)) == []
        with pytest.raises(GroupNotFoundError):
            service.get_group(group.id)

    def test_expense_added_during_delete_keeps_group(
        self, service, group, mock_db, settings
    ):
        """An expense that lands after the batches ran must stop the group delete."""
        service.add_expense(group.id, draft(ALICE, "1.00", EVERYONE))
        real_transact = mock_db.transact
        late_ids = []

        def racing_transact(read_keys, mutate_fn):
            if read_keys == [(GROUPS, group.id)]:
                late_id = f"late-{len(late_ids)}"
                late_ids.append(late_id)
                real_transact(
                    [],
                    lambda tx: tx.create(
                        EXPENSES,
                        {"id": late_id, "group_id": group.id, "date": "2024-02-01"},
                    ),
                )
            return real_transact(read_keys, mutate_fn)

        with patch.object(mock_db, "transact", side_effect=racing_transact):
            with pytest.raises(CascadeIncompleteError) as exc_info:
                service.delete_group(group.id, "alice")

        assert len(late_ids) == settings.commit_retry_limit
        assert exc_info.value.remaining == 1
        assert mock_db.read(EXPENSES, late_ids[-1]) is not None
        assert service.get_group(group.id).id == group.id


class TestSummaries:
    """Tests for cross-group summaries."""

    def test_two_group_scenario(self, service):
        """+15.00 in one group and -5.00 in another nets to +10.00 for the user."""
        g1 = service.create_group(ALICE, "Flat")
        service.join_group(g1.id, BOB)
        service.add_expense(g1.id, draft(ALICE, "30.00", ["alice", "bob"]))

        g2 = service.create_group(CAROL, "Trip")
        service.join_group(g2.id, ALICE)
        service.add_expense(g2.id, draft(CAROL, "10.00", ["carol", "alice"]))

        summary = service.summarize("alice")

        assert summary.total_owed_to_user == Money.of("15.00")
        assert summary.total_user_owes == Money.of("5.00")
        assert summary.net_balance == Money.of("10.00")
        assert summary.per_counterparty == {
            "bob": Money.of("-15.00"),
            "carol": Money.of("5.00"),
        }

    def test_spending(self, service, group):
        service.add_expense(group.id, draft(ALICE, "30.00", EVERYONE))
        service.add_expense(group.id, draft(BOB, "9.00", EVERYONE))

        totals = service.spending("alice")

        assert totals.spent == Money.of("30.00")
        assert totals.share == Money.of("13.00")
        assert totals.net == Money.of("17.00")

    def test_settlement_suggestions(self, service, group):
        service.add_expense(group.id, draft(ALICE, "30.00", EVERYONE))

        suggestions = service.settlement_suggestions(group.id)

        assert {(s.from_member_id, s.to_member_id) for s in suggestions} == {
            ("bob", "alice"),
            ("carol", "alice"),
        }


class TestWatch:
    """Tests for live views."""

    def test_watch_groups(self, service):
        updates = []
        view = service.watch_groups("bob", on_change=updates.append)

        g = service.create_group(ALICE, "Flatmates")
        service.join_group(g.id, BOB)

        assert [grp.id for grp in view.items] == [g.id]
        assert [len(u) for u in updates] == [0, 0, 1]

        view.close()
        service.create_group(BOB, "Football")
        assert len(view.items) == 1

    def test_watch_expenses_newest_first(self, service, group):
        view = service.watch_expenses(group.id)

        first = service.add_expense(group.id, draft(ALICE, "1.00", ["alice"], "First"))
        second = service.add_expense(group.id, draft(BOB, "2.00", ["bob"], "Second"))

        assert [e.id for e in view.items] == [second.id, first.id]

        service.delete_expense(second.id, "bob")
        assert [e.id for e in view.items] == [first.id]
        view.close()
