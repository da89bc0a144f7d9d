"""
Merge Executor.

Applies one MergeInstruction: every duplicate is folded into the primary in
its own transaction. For each duplicate the executor

1. relinks crm_invoices, crm_messages, galleries and digital_files,
2. fills the primary's blank contact fields from the duplicate,
3. deletes the duplicate row,

and commits. A failure rolls back that duplicate only; the instruction moves
on to the next duplicate and the failure is reported on its outcome.

Merges touching the same client id are serialized by a per-id lock held for
the whole transaction, on top of SQLite's own write lock.
"""
import sqlite3
import threading
import time
import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator, Optional

from config.dedup_config import DedupConfig

from api.services.client_store import ClientStore, coalesce_fields
from api.services.merge_models import (
    DuplicateOutcome,
    ErrorKind,
    MergeFailure,
    MergeInstruction,
    MergeResult,
    MergeSuccess,
    OutcomeStatus,
    RelinkFailed,
    StoreUnavailable,
    TransactionAborted,
)

logger = logging.getLogger(__name__)


class KeyedLock:
    """One lock per client id. Ids are always acquired in sorted order."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    @contextmanager
    def hold(self, *keys: str, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold the locks for all keys.

        Raises:
            TransactionAborted: a lock was not obtained within timeout
        """
        acquired: list[threading.Lock] = []
        try:
            for key in sorted(set(keys)):
                lock = self._lock_for(key)
                ok = lock.acquire() if timeout is None else lock.acquire(timeout=timeout)
                if not ok:
                    raise TransactionAborted(f"Timed out waiting for merge lock on client {key}")
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


# Shared by every executor in the process
_merge_locks = KeyedLock()


def _is_lock_error(error: sqlite3.Error) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


# SQLite messages meaning the database itself is gone or unreadable
_CONNECTIVITY_MESSAGES = (
    "unable to open database",
    "disk i/o error",
    "database disk image is malformed",
    "file is not a database",
)


def _is_connectivity_error(error: sqlite3.Error) -> bool:
    message = str(error).lower()
    return any(text in message for text in _CONNECTIVITY_MESSAGES)


class MergeExecutor:
    """Executes merge instructions against an injected ClientStore."""

    def __init__(self, store: ClientStore, locks: Optional[KeyedLock] = None):
        self._store = store
        self._locks = locks or _merge_locks

    def execute(
        self,
        instruction: MergeInstruction,
        dry_run: bool = False,
        deadline: Optional[float] = None,
    ) -> MergeResult:
        """
        Merge instruction.duplicate_ids into instruction.primary_id.

        Args:
            instruction: Primary and duplicate ids
            dry_run: Validate and count only; nothing is written
            deadline: Absolute time.monotonic() value after which any open
                transaction is rolled back

        Returns:
            MergeFailure if the primary does not exist, else MergeSuccess with
            one outcome per distinct duplicate id

        Raises:
            StoreUnavailable: the store cannot be reached, before or during a merge
        """
        primary_id = instruction.primary_id
        primary = self._store.get_by_id(primary_id)
        if primary is None:
            logger.warning(f"Merge skipped: primary client {primary_id} not found")
            return MergeFailure(
                primary_id=primary_id,
                dry_run=dry_run,
                kind=ErrorKind.PRIMARY_NOT_FOUND,
                detail=f"Primary client not found: {primary_id}",
            )

        outcomes: list[DuplicateOutcome] = []
        seen: set[str] = set()
        for duplicate_id in instruction.duplicate_ids:
            if duplicate_id == primary_id or duplicate_id in seen:
                continue
            seen.add(duplicate_id)

            duplicate = self._store.get_by_id(duplicate_id)
            if duplicate is None:
                logger.info(f"   - {duplicate_id}: not found, skipped")
                outcomes.append(DuplicateOutcome(
                    duplicate_id=duplicate_id,
                    status=OutcomeStatus.SKIPPED,
                    error_kind=ErrorKind.DUPLICATE_NOT_FOUND,
                    detail=f"Duplicate client not found: {duplicate_id}",
                ))
                continue

            if dry_run:
                outcome = self._preview_one(primary, duplicate)
                # Later duplicates only fill what earlier ones left blank
                primary = replace(primary, **coalesce_fields(primary, duplicate))
            else:
                outcome = self._merge_one(primary_id, duplicate_id, deadline)
            outcomes.append(outcome)

        result = MergeSuccess(
            primary_id=primary_id,
            merged_count=sum(
                1 for o in outcomes if o.status in (OutcomeStatus.MERGED, OutcomeStatus.WOULD_MERGE)
            ),
            dry_run=dry_run,
            outcomes=outcomes,
        )
        logger.info(
            f"{'DRY RUN ' if dry_run else ''}Merge into {primary_id}: "
            f"{result.merged_count} merged, {len(result.failed)} failed, {len(result.skipped)} skipped"
        )
        return result

    def _preview_one(self, primary, duplicate) -> DuplicateOutcome:
        relinked = {
            table: self._store.count_references(table, duplicate.id)
            for table in DedupConfig.DEPENDENT_TABLES
        }
        return DuplicateOutcome(
            duplicate_id=duplicate.id,
            status=OutcomeStatus.WOULD_MERGE,
            relinked=relinked,
            filled_fields=list(coalesce_fields(primary, duplicate)),
        )

    def _merge_one(self, primary_id: str, duplicate_id: str, deadline: Optional[float]) -> DuplicateOutcome:
        """Fold one duplicate into the primary inside a single transaction."""
        try:
            with self._locks.hold(primary_id, duplicate_id, timeout=self._lock_timeout(deadline)):
                with self._store.transaction(timeout=self._lock_timeout(deadline)) as conn:
                    return self._apply(conn, primary_id, duplicate_id, deadline)
        except RelinkFailed as e:
            kind, detail = ErrorKind.RELINK_FAILED, e.message
        except TransactionAborted as e:
            kind, detail = ErrorKind.TRANSACTION_ABORTED, e.message
        except sqlite3.Error as e:
            if _is_connectivity_error(e):
                logger.error(f"Client store lost while merging {duplicate_id} into {primary_id}: {e}")
                raise StoreUnavailable(f"Client store failed during merge: {e}") from e
            kind = ErrorKind.TRANSACTION_ABORTED if _is_lock_error(e) else ErrorKind.RELINK_FAILED
            detail = str(e)

        logger.warning(f"   ! {duplicate_id}: merge into {primary_id} rolled back ({kind.value}: {detail})")
        return DuplicateOutcome(
            duplicate_id=duplicate_id,
            status=OutcomeStatus.FAILED,
            error_kind=kind,
            detail=detail,
        )

    def _apply(self, conn: sqlite3.Connection, primary_id: str, duplicate_id: str, deadline: Optional[float]) -> DuplicateOutcome:
        # Re-read under the write lock; either row may have gone since validation
        primary = self._store.fetch_for_update(conn, primary_id)
        if primary is None:
            return DuplicateOutcome(
                duplicate_id=duplicate_id,
                status=OutcomeStatus.FAILED,
                error_kind=ErrorKind.PRIMARY_NOT_FOUND,
                detail=f"Primary client not found: {primary_id}",
            )
        duplicate = self._store.fetch_for_update(conn, duplicate_id)
        if duplicate is None:
            return DuplicateOutcome(
                duplicate_id=duplicate_id,
                status=OutcomeStatus.SKIPPED,
                error_kind=ErrorKind.DUPLICATE_NOT_FOUND,
                detail=f"Duplicate client not found: {duplicate_id}",
            )

        relinked: dict[str, int] = {}
        for table in DedupConfig.DEPENDENT_TABLES:
            self._check_deadline(deadline)
            try:
                relinked[table] = self._store.relink(conn, table, duplicate_id, primary_id)
            except sqlite3.Error as e:
                if _is_connectivity_error(e):
                    raise
                raise RelinkFailed(table, str(e)) from e

        self._check_deadline(deadline)
        filled = self._store.coalesce_into(conn, primary, duplicate)

        self._check_deadline(deadline)
        try:
            self._store.delete_client(conn, duplicate_id)
        except sqlite3.IntegrityError as e:
            raise RelinkFailed(DedupConfig.CLIENT_TABLE, f"duplicate still referenced: {e}") from e

        self._check_deadline(deadline)
        logger.info(
            f"   + {duplicate_id} -> {primary_id}: "
            + ", ".join(f"{table}={count}" for table, count in relinked.items())
            + (f"; filled {', '.join(filled)}" if filled else "")
        )
        return DuplicateOutcome(
            duplicate_id=duplicate_id,
            status=OutcomeStatus.MERGED,
            relinked=relinked,
            filled_fields=filled,
        )

    def _lock_timeout(self, deadline: Optional[float]) -> Optional[float]:
        """Seconds left before deadline, bounded by the store's lock timeout."""
        if deadline is None:
            return self._store.lock_timeout
        # One clock reading, so the result can never be negative
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TransactionAborted("Deadline elapsed")
        return min(self._store.lock_timeout, remaining)

    @staticmethod
    def _check_deadline(deadline: Optional[float]):
        if deadline is not None and time.monotonic() >= deadline:
            raise TransactionAborted("Deadline elapsed")
