"""SQLite document store for Buddy Ledger."""

import json
import logging
import sqlite3
import threading
from collections.abc import Callable
from datetime import datetime
from itertools import count
from pathlib import Path
from typing import Any, TypeVar

from .exceptions import ConflictError, GroupNotFoundError, StorageError
from .store import (
    GROUPS,
    DocumentKey,
    Query,
    Snapshot,
    Subscription,
    Transaction,
    Write,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Database:
    """
    SQLite-backed document store.

    Documents are JSON objects stored per (collection, id) with a version
    that increases on every write. Transactions are optimistic: versions of
    the read keys are captured up front and re-checked inside a write lock
    before anything is written.

    Subscriptions are notified for commits made through this instance.
    """

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(
            str(db_path), isolation_level=None, check_same_thread=False, timeout=5.0
        )
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._sequence = count()
        self._subscription_ids = count()
        self._subscriptions: dict[int, tuple[Query, Callable[[Snapshot], None]]] = {}
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                data TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (collection, id)
            )
        """
        )

    def close(self):
        """Close database connection."""
        self._subscriptions.clear()
        self.conn.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    # ========================================================================
    # Reads
    # ========================================================================

    def _read_row(
        self, collection: str, doc_id: str
    ) -> tuple[dict[str, Any] | None, int]:
        """Get a document and its version (0 when absent)."""
        cursor = self.conn.execute(
            "SELECT data, version FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        )
        row = cursor.fetchone()
        cursor.close()
        if not row:
            return None, 0
        return {"id": doc_id, **json.loads(row["data"])}, int(row["version"])

    def read(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Get a document by id."""
        with self._lock:
            try:
                document, _version = self._read_row(collection, doc_id)
            except sqlite3.Error as e:
                raise StorageError(f"Failed to read {collection}/{doc_id}: {e}") from e
        return document

    def read_group(self, group_id: str) -> dict[str, Any]:
        """Get a group document, raising GroupNotFoundError if it is absent."""
        document = self.read(GROUPS, group_id)
        if document is None:
            raise GroupNotFoundError(group_id)
        return document

    def version(self, collection: str, doc_id: str) -> int:
        """Get the current version of a document (0 when absent)."""
        with self._lock:
            return self._read_row(collection, doc_id)[1]

    def query(self, query: Query) -> list[dict[str, Any]]:
        """Get every document of a collection matching a query."""
        with self._lock:
            try:
                cursor = self.conn.execute(
                    "SELECT id, data FROM documents WHERE collection = ?",
                    (query.collection,),
                )
                documents = [
                    {"id": row["id"], **json.loads(row["data"])}
                    for row in cursor.fetchall()
                ]
            except sqlite3.Error as e:
                raise StorageError(f"Failed to query {query.collection}: {e}") from e
        return query.apply(documents)

    # ========================================================================
    # Writes
    # ========================================================================

    def transact(
        self,
        read_keys: list[DocumentKey],
        mutate_fn: Callable[[Transaction], T],
    ) -> T:
        """
        Run an optimistic read-modify-write transaction.

        Args:
            read_keys: Documents the transaction depends on
            mutate_fn: Called with the captured documents; stages writes

        Returns:
            Whatever ``mutate_fn`` returned

        Raises:
            ConflictError: If a read key changed before the commit, or the
                database was locked by another writer
            StorageError: For any other database failure
        """
        with self._lock:
            try:
                captured = {key: self._read_row(*key) for key in read_keys}
            except sqlite3.Error as e:
                raise StorageError(f"Failed to read transaction keys: {e}") from e

            tx = Transaction({key: doc for key, (doc, _version) in captured.items()})
            result = mutate_fn(tx)

            if not tx.writes:
                return result

            try:
                self.conn.execute("BEGIN IMMEDIATE")
                for (collection, doc_id), (_doc, version) in captured.items():
                    current = self._read_row(collection, doc_id)[1]
                    if current != version:
                        raise ConflictError(
                            f"{collection}/{doc_id} changed during transaction "
                            f"(version {version} -> {current})"
                        )
                for write in tx.writes:
                    self._apply_write(write)
                self.conn.execute("COMMIT")
            except ConflictError:
                self._rollback()
                raise
            except sqlite3.OperationalError as e:
                self._rollback()
                if "locked" in str(e) or "busy" in str(e):
                    raise ConflictError(f"Database is busy: {e}") from e
                raise StorageError(f"Transaction failed: {e}") from e
            except sqlite3.Error as e:
                self._rollback()
                raise StorageError(f"Transaction failed: {e}") from e

            logger.debug(f"Committed {len(tx.writes)} write(s)")
            self._notify({write.collection for write in tx.writes})
            return result

    def _rollback(self):
        if self.conn.in_transaction:
            self.conn.execute("ROLLBACK")

    def _apply_write(self, write: Write):
        now = datetime.now().isoformat()
        if write.op == "delete":
            self.conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (write.collection, write.doc_id),
            )
        elif write.op == "create":
            self.conn.execute(
                """
                INSERT INTO documents (collection, id, data, version, updated_at)
                VALUES (?, ?, ?, 1, ?)
                """,
                (write.collection, write.doc_id, json.dumps(write.data), now),
            )
        else:
            self.conn.execute(
                """
                INSERT INTO documents (collection, id, data, version, updated_at)
                VALUES (?, ?, ?, 1, ?)
                ON CONFLICT(collection, id) DO UPDATE SET
                    data = excluded.data,
                    version = documents.version + 1,
                    updated_at = excluded.updated_at
                """,
                (write.collection, write.doc_id, json.dumps(write.data), now),
            )

    def create_document(self, collection: str, data: dict[str, Any]) -> str:
        """Insert a new document and return its id."""
        return self.transact([], lambda tx: tx.create(collection, data))

    def delete_document(self, collection: str, doc_id: str) -> None:
        """Delete a document if it exists."""
        self.transact([], lambda tx: tx.delete(collection, doc_id))

    # ========================================================================
    # Subscriptions
    # ========================================================================

    def subscribe(
        self, query: Query, callback: Callable[[Snapshot], None]
    ) -> Subscription:
        """
        Deliver the query's results now and after every relevant commit.

        Each delivery is a full snapshot tagged with an increasing sequence.
        """
        with self._lock:
            subscription_id = next(self._subscription_ids)
            self._subscriptions[subscription_id] = (query, callback)
            self._deliver(query, callback)

        return Subscription(lambda: self._subscriptions.pop(subscription_id, None))

    def _deliver(self, query: Query, callback: Callable[[Snapshot], None]):
        snapshot = Snapshot(sequence=next(self._sequence), documents=self.query(query))
        logger.debug(
            f"Delivering snapshot {snapshot.sequence} for {query.collection} "
            f"({len(snapshot.documents)} document(s))"
        )
        callback(snapshot)

    def _notify(self, collections: set[str]):
        for query, callback in list(self._subscriptions.values()):
            if query.collection not in collections:
                continue
            try:
                self._deliver(query, callback)
            except Exception:
                # Commit already happened; keep notifying the rest
                logger.exception(f"Subscriber for {query.collection} failed")
