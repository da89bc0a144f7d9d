"""
Data types shared by the duplicate grouper, merge planner and merge executor.

Results are explicit tagged types: MergeSuccess / MergeFailure, each carrying
per-duplicate DuplicateOutcome entries so callers see exactly what happened
to every id they asked about.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Failure kinds reported by the merge engine."""
    STORE_UNAVAILABLE = "StoreUnavailable"
    PRIMARY_NOT_FOUND = "PrimaryNotFound"
    DUPLICATE_NOT_FOUND = "DuplicateNotFound"
    RELINK_FAILED = "RelinkFailed"
    TRANSACTION_ABORTED = "TransactionAborted"


class OutcomeStatus(str, Enum):
    MERGED = "merged"
    WOULD_MERGE = "would_merge"
    SKIPPED = "skipped"
    FAILED = "failed"


class MergeEngineError(Exception):
    """Base class for merge engine errors."""

    kind: ErrorKind

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class StoreUnavailable(MergeEngineError):
    """Raised when the client store cannot be reached. Fatal for the whole call."""

    kind = ErrorKind.STORE_UNAVAILABLE


class TransactionAborted(MergeEngineError):
    """Raised when a merge transaction hits its deadline or a lock conflict."""

    kind = ErrorKind.TRANSACTION_ABORTED


class RelinkFailed(MergeEngineError):
    """Raised when updating one dependent table fails."""

    kind = ErrorKind.RELINK_FAILED

    def __init__(self, table: str, message: str):
        self.table = table
        super().__init__(f"{table}: {message}")


@dataclass(frozen=True)
class DedupKey:
    """Canonical value derived from an email or phone."""
    kind: str  # "email" or "phone"
    value: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, "value": self.value}


@dataclass
class ClientRecord:
    """A row of crm_clients."""

    id: str
    created_at: datetime
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or self.email or self.id

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return data


@dataclass
class MergeGroup:
    """Client ids sharing one DedupKey. Always has two or more members."""

    key: DedupKey
    member_ids: list[str]

    @property
    def size(self) -> int:
        return len(self.member_ids)

    def to_dict(self) -> dict:
        return {
            "key": self.key.to_dict(),
            "member_ids": list(self.member_ids),
            "size": self.size,
        }


@dataclass
class MergeSuggestion:
    """Proposed consolidation of one group. Nothing is mutated to produce it."""

    key: DedupKey
    primary: ClientRecord
    duplicates: list[ClientRecord]
    strategy: str

    def to_instruction(self) -> "MergeInstruction":
        return MergeInstruction(
            primary_id=self.primary.id,
            duplicate_ids=[d.id for d in self.duplicates],
        )

    def to_dict(self) -> dict:
        return {
            "key": self.key.to_dict(),
            "primary": self.primary.to_dict(),
            "duplicates": [d.to_dict() for d in self.duplicates],
            "strategy": self.strategy,
        }


@dataclass
class MergeInstruction:
    """Explicit request to fold duplicate_ids into primary_id."""
    primary_id: str
    duplicate_ids: list[str]


@dataclass
class DuplicateOutcome:
    """What happened to a single duplicate id during a merge."""

    duplicate_id: str
    status: OutcomeStatus
    relinked: dict[str, int] = field(default_factory=dict)
    filled_fields: list[str] = field(default_factory=list)
    error_kind: Optional[ErrorKind] = None
    detail: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.error_kind == ErrorKind.TRANSACTION_ABORTED

    def to_dict(self) -> dict:
        return {
            "duplicate_id": self.duplicate_id,
            "status": self.status.value,
            "relinked": dict(self.relinked),
            "filled_fields": list(self.filled_fields),
            "error": self.error_kind.value if self.error_kind else None,
            "detail": self.detail,
            "retryable": self.retryable,
        }


@dataclass
class MergeResult:
    """Base result of executing one MergeInstruction."""

    primary_id: str
    merged_count: int = 0
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return False

    @property
    def error(self) -> Optional[ErrorKind]:
        return None

    def to_dict(self) -> dict:
        return {
            "primary_id": self.primary_id,
            "merged_count": self.merged_count,
            "dry_run": self.dry_run,
            "error": self.error.value if self.error else None,
        }


@dataclass
class MergeSuccess(MergeResult):
    """The instruction ran. Individual duplicates may still have failed."""

    outcomes: list[DuplicateOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return True

    @property
    def failed(self) -> list[DuplicateOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.FAILED]

    @property
    def skipped(self) -> list[DuplicateOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.SKIPPED]

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["outcomes"] = [o.to_dict() for o in self.outcomes]
        return data


@dataclass
class MergeFailure(MergeResult):
    """The instruction could not run at all; nothing was mutated."""

    kind: ErrorKind = ErrorKind.PRIMARY_NOT_FOUND
    detail: str = ""

    @property
    def error(self) -> Optional[ErrorKind]:
        return self.kind

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["detail"] = self.detail
        return data


@dataclass
class BatchSummary:
    """Outcome of merging every discovered group in one call."""

    groups: int
    total_merged: int
    dry_run: bool
    preview: list[dict] = field(default_factory=list)
    results: list[MergeResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "groups": self.groups,
            "total_merged": self.total_merged,
            "dry_run": self.dry_run,
            "preview": list(self.preview),
            "results": [r.to_dict() for r in self.results],
        }
