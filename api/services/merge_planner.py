"""
Merge Planner.

Turns duplicate groups into reviewable suggestions: which record survives and
which are folded into it. Planning never writes to the store.
"""
import logging
from typing import Optional

from config.dedup_config import DedupConfig

from api.services.client_store import ClientStore
from api.services.duplicate_grouper import DuplicateGrouper
from api.services.merge_models import ClientRecord, MergeGroup, MergeSuggestion

logger = logging.getLogger(__name__)


def order_members(records: list[ClientRecord], strategy: str) -> list[ClientRecord]:
    """
    Order group members so the intended primary comes first.

    keep-oldest sorts by created_at ascending, keep-newest descending. Equal
    timestamps are always broken by ascending id.
    """
    if strategy not in DedupConfig.STRATEGIES:
        raise ValueError(f"Unknown strategy: {strategy}")

    by_id = sorted(records, key=lambda r: r.id)
    # Stable sort keeps the id order among equal timestamps
    return sorted(by_id, key=lambda r: r.created_at, reverse=(strategy == "keep-newest"))


class MergePlanner:
    """Builds MergeSuggestions for duplicate groups."""

    def __init__(self, store: ClientStore, grouper: Optional[DuplicateGrouper] = None):
        self._store = store
        self._grouper = grouper or DuplicateGrouper(store)

    def plan(self, group: MergeGroup, strategy: str = "keep-oldest") -> Optional[MergeSuggestion]:
        """
        Pick a primary for one group.

        Returns:
            The suggestion, or None when fewer than two members still exist
        """
        records = self._store.get_many(group.member_ids)
        if len(records) < 2:
            logger.warning(
                f"Dropping group {group.key.kind}:{group.key.value}: "
                f"only {len(records)} of {group.size} members still exist"
            )
            return None

        ordered = order_members(records, strategy)
        return MergeSuggestion(
            key=group.key,
            primary=ordered[0],
            duplicates=ordered[1:],
            strategy=strategy,
        )

    def suggest_all(self, mode: str = "email", strategy: str = "keep-oldest", limit: int = 50) -> list[MergeSuggestion]:
        """Find duplicate groups and plan each one."""
        if strategy not in DedupConfig.STRATEGIES:
            raise ValueError(f"Unknown strategy: {strategy}")

        suggestions = []
        for group in self._grouper.find_groups(mode, limit):
            suggestion = self.plan(group, strategy)
            if suggestion is not None:
                suggestions.append(suggestion)
        return suggestions
