"""
Client Dedupe Services Package.

This package contains the merge engine and its data access.
Use this module to import commonly-used services.

Example:
    from api.services import (
        get_client_store,
        DuplicateGrouper,
        MergePlanner,
        MergeExecutor,
    )

Key service modules:
- key_normalizer: email/phone matching keys
- client_store: ClientStore over crm_clients and its dependent tables
- duplicate_grouper: groups clients sharing a key
- merge_planner: picks the surviving client per group
- merge_executor: transactional relink + coalesce + delete
- batch_merge: runs many merges with per-instruction isolation
"""

from api.services.merge_models import (
    BatchSummary,
    ClientRecord,
    DedupKey,
    DuplicateOutcome,
    ErrorKind,
    MergeFailure,
    MergeGroup,
    MergeInstruction,
    MergeResult,
    MergeSuccess,
    MergeSuggestion,
    OutcomeStatus,
    StoreUnavailable,
    TransactionAborted,
)

from api.services.key_normalizer import (
    dedup_key,
    normalize_email,
    normalize_phone,
)

from api.services.client_store import (
    ClientStore,
    get_client_store,
)

from api.services.duplicate_grouper import DuplicateGrouper
from api.services.merge_planner import MergePlanner
from api.services.merge_executor import MergeExecutor
from api.services.batch_merge import BatchMergeOrchestrator

__all__ = [
    "BatchSummary",
    "ClientRecord",
    "DedupKey",
    "DuplicateOutcome",
    "ErrorKind",
    "MergeFailure",
    "MergeGroup",
    "MergeInstruction",
    "MergeResult",
    "MergeSuccess",
    "MergeSuggestion",
    "OutcomeStatus",
    "StoreUnavailable",
    "TransactionAborted",
    "dedup_key",
    "normalize_email",
    "normalize_phone",
    "ClientStore",
    "get_client_store",
    "DuplicateGrouper",
    "MergePlanner",
    "MergeExecutor",
    "BatchMergeOrchestrator",
]
