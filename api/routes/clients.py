"""
Client dedupe API endpoints.

Admin surface over the merge engine: list duplicate groups, suggest merges,
execute one merge, execute a batch. Authorization is handled upstream.
"""
from typing import Literal, Optional
import logging

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from config.dedup_config import DedupConfig
from config.settings import settings
from api.services.batch_merge import BatchMergeOrchestrator
from api.services.client_store import get_client_store
from api.services.duplicate_grouper import DuplicateGrouper
from api.services.merge_executor import MergeExecutor
from api.services.merge_models import ErrorKind, MergeInstruction
from api.services.merge_planner import MergePlanner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clients", tags=["clients"])

Mode = Literal["email", "phone", "both"]
Strategy = Literal["keep-oldest", "keep-newest"]


class MergeRequest(BaseModel):
    """Request for merging clients into one primary."""
    primary_id: str = Field(..., description="ID of the client to keep (survivor)")
    duplicate_ids: list[str] = Field(..., min_length=1, description="IDs of clients to merge into primary")
    dry_run: bool = Field(default=False, description="Count what would be merged without writing")


class BatchMergeItem(BaseModel):
    """One explicit merge inside a batch. Dry run is set for the whole batch."""
    model_config = ConfigDict(extra="forbid")

    primary_id: str = Field(..., description="ID of the client to keep (survivor)")
    duplicate_ids: list[str] = Field(..., min_length=1, description="IDs of clients to merge into primary")


class BatchMergeRequest(BaseModel):
    """
    Request for a batch merge.

    Either pass explicit merges, or leave them out to merge every discovered
    group using mode/strategy/limit. Strategy and limit default to the
    configured DEDUP_DEFAULT_STRATEGY and DEDUP_DEFAULT_LIMIT.
    """
    merges: Optional[list[BatchMergeItem]] = None
    dry_run: bool = True
    mode: Mode = "email"
    strategy: Optional[Strategy] = None
    limit: Optional[int] = Field(default=None, ge=1, le=DedupConfig.MAX_GROUP_LIMIT)


def _build_planner(store) -> MergePlanner:
    return MergePlanner(store, DuplicateGrouper(store, settings.country_code))


def _default_limit(limit: Optional[int]) -> int:
    return settings.default_limit if limit is None else limit


def _default_strategy(strategy: Optional[str]) -> str:
    return strategy or settings.default_strategy


@router.get("/duplicates")
async def list_duplicates(
    mode: Mode = Query(default="email", description="Key to group by: email, phone, or both"),
    limit: Optional[int] = Query(default=None, ge=1, le=DedupConfig.MAX_GROUP_LIMIT),
):
    """List groups of clients sharing a normalized email or phone."""
    store = get_client_store()
    groups = DuplicateGrouper(store, settings.country_code).find_groups(mode=mode, limit=_default_limit(limit))
    return {
        "groups": [g.to_dict() for g in groups],
        "count": len(groups),
    }


@router.get("/merge-suggestions")
async def merge_suggestions(
    mode: Mode = Query(default="email"),
    strategy: Optional[Strategy] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1, le=DedupConfig.MAX_GROUP_LIMIT),
):
    """Suggest which client to keep for each duplicate group. Nothing is changed."""
    store = get_client_store()
    suggestions = _build_planner(store).suggest_all(
        mode=mode, strategy=_default_strategy(strategy), limit=_default_limit(limit),
    )
    return {
        "suggestions": [s.to_dict() for s in suggestions],
        "count": len(suggestions),
    }


@router.post("/merge")
async def merge_clients(request: MergeRequest):
    """
    Merge duplicate clients into a primary client.

    For each duplicate, in its own transaction:
    - Relinks invoices, messages, galleries and files to the primary
    - Fills blank contact fields on the primary from the duplicate
    - Deletes the duplicate

    Duplicates that no longer exist are reported as skipped.
    """
    store = get_client_store()
    result = MergeExecutor(store).execute(
        MergeInstruction(primary_id=request.primary_id, duplicate_ids=request.duplicate_ids),
        dry_run=request.dry_run,
    )
    if result.error == ErrorKind.PRIMARY_NOT_FOUND:
        raise HTTPException(status_code=404, detail=f"Primary client '{request.primary_id}' not found")

    logger.info(f"Merged {result.merged_count} clients into {request.primary_id}")
    return result.to_dict()


@router.post("/merge/batch")
async def merge_batch(request: BatchMergeRequest):
    """
    Run many merges.

    With explicit merges, returns one result per merge in request order. Without,
    discovers duplicate groups and returns a summary with a keep/remove preview.
    """
    store = get_client_store()
    orchestrator = BatchMergeOrchestrator(MergeExecutor(store), _build_planner(store))

    if request.merges is not None:
        instructions = [
            MergeInstruction(primary_id=m.primary_id, duplicate_ids=m.duplicate_ids)
            for m in request.merges
        ]
        results = orchestrator.execute_batch(instructions, dry_run=request.dry_run)
        return {
            "results": [r.to_dict() for r in results],
            "total_merged": sum(r.merged_count for r in results),
            "dry_run": request.dry_run,
        }

    summary = orchestrator.execute_discovered(
        mode=request.mode,
        strategy=_default_strategy(request.strategy),
        limit=_default_limit(request.limit),
        dry_run=request.dry_run,
    )
    return summary.to_dict()
