"""
Batch Orchestrator.

Runs many merge instructions, one at a time and in the order given. A bad
instruction (missing primary, failed duplicate) is reported in its own result
and never stops the rest of the batch; only losing the store does.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from api.services.merge_executor import MergeExecutor
from api.services.merge_models import BatchSummary, MergeInstruction, MergeResult
from api.services.merge_planner import MergePlanner

logger = logging.getLogger(__name__)


class BatchMergeOrchestrator:
    """Executes batches of MergeInstructions."""

    def __init__(self, executor: MergeExecutor, planner: Optional[MergePlanner] = None, max_workers: int = 1):
        self._executor = executor
        self._planner = planner
        self._max_workers = max(1, max_workers)

    def execute_batch(
        self,
        instructions: list[MergeInstruction],
        dry_run: bool = False,
        deadline: Optional[float] = None,
    ) -> list[MergeResult]:
        """
        Execute every instruction and return one result per instruction, in order.

        With max_workers > 1 instructions run on a thread pool; merges that
        share a client id still serialize on the executor's per-id locks.

        Raises:
            StoreUnavailable: the store connection was lost
        """
        if self._max_workers == 1 or len(instructions) < 2:
            results = [self._executor.execute(i, dry_run=dry_run, deadline=deadline) for i in instructions]
        else:
            with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="merge") as pool:
                results = list(pool.map(
                    lambda i: self._executor.execute(i, dry_run=dry_run, deadline=deadline),
                    instructions,
                ))

        failed = [r.primary_id for r in results if not r.ok]
        logger.info(
            f"{'DRY RUN ' if dry_run else ''}Batch of {len(instructions)}: "
            f"{sum(r.merged_count for r in results)} duplicates merged"
            + (f", {len(failed)} instructions failed ({', '.join(failed)})" if failed else "")
        )
        return results

    def execute_discovered(
        self,
        mode: str = "email",
        strategy: str = "keep-oldest",
        limit: int = 50,
        dry_run: bool = True,
        deadline: Optional[float] = None,
    ) -> BatchSummary:
        """
        Discover duplicate groups, plan each with strategy, and merge them.

        Returns:
            Summary with the number of groups, the total merged (or, for a dry
            run, mergeable) duplicates, and a keep/remove preview per group
        """
        if self._planner is None:
            raise ValueError("Discovery batches need a MergePlanner")

        suggestions = self._planner.suggest_all(mode=mode, strategy=strategy, limit=limit)
        preview = [
            {
                "key": s.key.to_dict(),
                "keep": s.primary.id,
                "remove": [d.id for d in s.duplicates],
            }
            for s in suggestions
        ]
        results = self.execute_batch([s.to_instruction() for s in suggestions], dry_run=dry_run, deadline=deadline)

        return BatchSummary(
            groups=len(suggestions),
            total_merged=sum(r.merged_count for r in results),
            dry_run=dry_run,
            preview=preview,
            results=results,
        )
