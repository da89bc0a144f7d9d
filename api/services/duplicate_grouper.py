"""
Duplicate Grouper.

Finds clients that share a normalized email or phone key. Grouping is exact
key equality only; there is no fuzzy matching here.
"""
import logging
from collections import defaultdict
from typing import Optional

from config.dedup_config import DedupConfig
from config.settings import settings

from api.services.client_store import ClientStore
from api.services.key_normalizer import dedup_key
from api.services.merge_models import MergeGroup

logger = logging.getLogger(__name__)


class DuplicateGrouper:
    """Groups client ids by normalized key."""

    def __init__(self, store: ClientStore, default_country_code: Optional[str] = None):
        self._store = store
        self._country_code = default_country_code if default_country_code is not None else settings.country_code

    def find_groups(self, mode: str = "email", limit: int = 50) -> list[MergeGroup]:
        """
        Find duplicate groups.

        Args:
            mode: "email", "phone", or "both"
            limit: Maximum groups returned per key kind

        Returns:
            Groups of 2+ members, largest first. For "both", email groups come
            first, then phone groups; a client can be in one of each.

        Raises:
            StoreUnavailable: the client store cannot be reached
        """
        if mode not in DedupConfig.MODES:
            raise ValueError(f"Unknown mode: {mode}")
        limit = max(0, min(limit, DedupConfig.MAX_GROUP_LIMIT))

        rows = self._store.get_contact_rows()
        kinds = DedupConfig.KEY_KINDS if mode == "both" else (mode,)

        groups: list[MergeGroup] = []
        for kind in kinds:
            groups.extend(self._group_by(kind, rows, limit))

        logger.info(f"Found {len(groups)} duplicate groups (mode={mode}, clients={len(rows)})")
        return groups

    def _group_by(self, kind: str, rows: list[tuple], limit: int) -> list[MergeGroup]:
        by_key: dict = defaultdict(list)
        for client_id, email, phone in rows:
            raw = email if kind == "email" else phone
            key = dedup_key(kind, raw, self._country_code)
            if key is not None:
                by_key[key].append(client_id)

        groups = [
            MergeGroup(key=key, member_ids=sorted(ids))
            for key, ids in by_key.items()
            if len(ids) >= 2
        ]
        groups.sort(key=lambda g: (-g.size, g.key.value))
        return groups[:limit]
