"""Storage collaborator contract.

The ledger never talks to a database directly. It needs a document store
that can read, query, run optimistic read-modify-write transactions, and
push full snapshots of a query's results whenever they change.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, Literal, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

GROUPS = "groups"
EXPENSES = "expenses"

T = TypeVar("T")

DocumentKey = tuple[str, str]  # (collection, document id)


def new_document_id() -> str:
    """Generate a random document id."""
    return uuid.uuid4().hex


# ============================================================================
# Queries and snapshots
# ============================================================================


class Query(BaseModel):
    """A single-field filter over one collection."""

    model_config = ConfigDict(frozen=True)

    collection: str
    field: str
    op: Literal["==", "array-contains"] = "=="
    value: Any
    order_by: str | None = None
    descending: bool = False

    @classmethod
    def groups_for_member(cls, member_id: str) -> "Query":
        return cls(
            collection=GROUPS,
            field="member_ids",
            op="array-contains",
            value=member_id,
            order_by="created_at",
        )

    @classmethod
    def expenses_for_group(cls, group_id: str) -> "Query":
        return cls(
            collection=EXPENSES,
            field="group_id",
            value=group_id,
            order_by="date",
            descending=True,
        )

    def matches(self, document: dict[str, Any]) -> bool:
        value = document.get(self.field)
        if self.op == "array-contains":
            return isinstance(value, list) and self.value in value
        return bool(value == self.value)

    def apply(self, documents: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Filter and order documents the way this query describes."""
        matched = [doc for doc in documents if self.matches(doc)]
        if self.order_by:
            order_by = self.order_by
            matched.sort(
                key=lambda doc: (doc.get(order_by) or "", doc.get("id", "")),
                reverse=self.descending,
            )
        return matched


class Snapshot(BaseModel):
    """The complete result of a query at one point in time."""

    sequence: int
    documents: list[dict[str, Any]]


# ============================================================================
# Transactions
# ============================================================================


@dataclass
class Write:
    """A staged change to one document."""

    op: Literal["create", "set", "delete"]
    collection: str
    doc_id: str
    data: dict[str, Any] | None = None


class Transaction:
    """
    The view a transaction function works against.

    Reads come from the documents captured when the transaction started.
    Writes are only staged here; the store applies them all together at
    commit, or none of them.
    """

    def __init__(self, documents: dict[DocumentKey, dict[str, Any] | None]):
        self._documents = documents
        self.writes: list[Write] = []

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        key = (collection, doc_id)
        if key not in self._documents:
            raise KeyError(f"{collection}/{doc_id} was not declared as a read key")
        return self._documents[key]

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self.writes.append(Write("set", collection, doc_id, _without_id(data)))

    def create(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = str(data.get("id") or new_document_id())
        self.writes.append(Write("create", collection, doc_id, _without_id(data)))
        return doc_id

    def delete(self, collection: str, doc_id: str) -> None:
        self.writes.append(Write("delete", collection, doc_id))


def _without_id(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key != "id"}


# ============================================================================
# Subscriptions
# ============================================================================


class Subscription:
    """Handle returned by ``subscribe``; call ``unsubscribe`` to stop deliveries."""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._cancel()
            self.active = False

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.unsubscribe()


@dataclass
class LiveView(Generic[T]):
    """
    Local state kept in step with a subscription.

    Each snapshot replaces the whole state. A snapshot whose sequence is not
    newer than the last one applied is a duplicate or arrived out of order,
    and is dropped.
    """

    parse: Callable[[dict[str, Any]], T]
    on_change: Callable[[list[T]], None] | None = None
    items: list[T] = field(default_factory=list)
    sequence: int = -1
    subscription: Subscription | None = None

    def apply(self, snapshot: Snapshot) -> bool:
        if snapshot.sequence <= self.sequence:
            logger.debug(
                f"Dropping stale snapshot {snapshot.sequence} "
                f"(already at {self.sequence})"
            )
            return False

        self.items = [self.parse(doc) for doc in snapshot.documents]
        self.sequence = snapshot.sequence
        if self.on_change:
            self.on_change(self.items)
        return True

    __call__ = apply

    def close(self) -> None:
        if self.subscription:
            self.subscription.unsubscribe()


# ============================================================================
# Store contract
# ============================================================================


class DocumentStore(Protocol):
    """What the ledger needs from persistence."""

    def read(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    def read_group(self, group_id: str) -> dict[str, Any]:
        """Read a group document or raise GroupNotFoundError."""
        ...

    def query(self, query: Query) -> list[dict[str, Any]]: ...

    def transact(
        self,
        read_keys: list[DocumentKey],
        mutate_fn: Callable[[Transaction], T],
    ) -> T:
        """
        Run ``mutate_fn`` against the current ``read_keys`` and commit its writes.

        Raises:
            ConflictError: If any read key changed before the commit
            StorageError: If the store failed otherwise
        """
        ...

    def subscribe(
        self, query: Query, callback: Callable[[Snapshot], None]
    ) -> Subscription: ...

    def create_document(self, collection: str, data: dict[str, Any]) -> str: ...

    def delete_document(self, collection: str, doc_id: str) -> None: ...
