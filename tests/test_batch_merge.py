"""
Tests for batch merging.
"""
from unittest.mock import MagicMock

import pytest

from api.services.batch_merge import BatchMergeOrchestrator
from api.services.duplicate_grouper import DuplicateGrouper
from api.services.merge_executor import KeyedLock, MergeExecutor
from api.services.merge_models import (
    ErrorKind,
    MergeInstruction,
    StoreUnavailable,
)
from api.services.merge_planner import MergePlanner
from tests.fixtures.client_data import add_client, row_counts

pytestmark = pytest.mark.requires_db


@pytest.fixture
def three_groups(client_store):
    """Email groups of sizes 2, 3 and 2, plus one unique client."""
    add_client(client_store, "a1", "2023-01-01", email="a@x.com")
    add_client(client_store, "a2", "2023-02-01", email="A@x.com")
    add_client(client_store, "b1", "2022-05-01", email="b@x.com")
    add_client(client_store, "b2", "2021-05-01", email="b@x.com", city="Graz")
    add_client(client_store, "b3", "2024-05-01", email=" b@X.com")
    add_client(client_store, "c1", "2023-01-01", email="c@x.com")
    add_client(client_store, "c2", "2023-01-01", email="c@x.com")
    add_client(client_store, "z1", "2023-01-01", email="z@x.com")
    client_store.add_dependent("crm_invoices", "b3", "INV-9", row_id="inv-9")
    return client_store


def _orchestrator(store, max_workers=1):
    executor = MergeExecutor(store, KeyedLock())
    planner = MergePlanner(store, DuplicateGrouper(store, ""))
    return BatchMergeOrchestrator(executor, planner, max_workers=max_workers)


class TestExecuteDiscovered:
    """Tests for merging every discovered group."""

    def test_dry_run_counts_and_previews(self, three_groups):
        before = row_counts(three_groups)

        summary = _orchestrator(three_groups).execute_discovered(mode="email", dry_run=True)

        assert summary.dry_run
        assert summary.groups == 3
        # Every member but the primary of each group
        assert summary.total_merged == 4
        assert summary.preview == [
            {"key": {"kind": "email", "value": "b@x.com"}, "keep": "b2", "remove": ["b1", "b3"]},
            {"key": {"kind": "email", "value": "a@x.com"}, "keep": "a1", "remove": ["a2"]},
            {"key": {"kind": "email", "value": "c@x.com"}, "keep": "c1", "remove": ["c2"]},
        ]
        assert row_counts(three_groups) == before

    def test_execute_merges_every_group(self, three_groups):
        summary = _orchestrator(three_groups).execute_discovered(mode="email", dry_run=False)

        assert summary.total_merged == 4
        assert three_groups.count() == 4
        assert sorted(c.id for c in three_groups.get_many(["a1", "b2", "c1", "z1"])) == ["a1", "b2", "c1", "z1"]
        assert three_groups.count_references("crm_invoices", "b2") == 1

    def test_keep_newest(self, three_groups):
        summary = _orchestrator(three_groups).execute_discovered(strategy="keep-newest", dry_run=True)

        assert [p["keep"] for p in summary.preview] == ["b3", "a2", "c1"]

    def test_second_run_finds_nothing(self, three_groups):
        orchestrator = _orchestrator(three_groups)
        orchestrator.execute_discovered(dry_run=False)

        summary = orchestrator.execute_discovered(dry_run=False)
        assert summary.groups == 0
        assert summary.total_merged == 0

    def test_needs_planner(self, client_store):
        orchestrator = BatchMergeOrchestrator(MergeExecutor(client_store, KeyedLock()))
        with pytest.raises(ValueError):
            orchestrator.execute_discovered()


class TestExecuteBatch:
    """Tests for explicit instruction batches."""

    def test_missing_primary_does_not_stop_batch(self, three_groups):
        instructions = [
            MergeInstruction("deleted", ["a2"]),
            MergeInstruction("b2", ["b1", "b3"]),
        ]

        results = _orchestrator(three_groups).execute_batch(instructions)

        assert [r.to_dict()["error"] for r in results] == ["PrimaryNotFound", None]
        assert [r.merged_count for r in results] == [0, 2]
        assert results[0].primary_id == "deleted"
        assert results[1].primary_id == "b2"
        assert three_groups.exists("a2")

    def test_results_keep_input_order_with_workers(self, three_groups):
        instructions = [
            MergeInstruction("c1", ["c2"]),
            MergeInstruction("a1", ["a2"]),
            MergeInstruction("b2", ["b1"]),
            MergeInstruction("b2", ["b3"]),
        ]

        results = _orchestrator(three_groups, max_workers=4).execute_batch(instructions)

        assert [r.primary_id for r in results] == ["c1", "a1", "b2", "b2"]
        assert all(r.merged_count == 1 for r in results)
        assert three_groups.count() == 4

    def test_empty_batch(self, client_store):
        assert _orchestrator(client_store).execute_batch([]) == []

    def test_store_unavailable_stops_batch(self):
        executor = MagicMock()
        executor.execute.side_effect = StoreUnavailable("gone")

        with pytest.raises(StoreUnavailable):
            BatchMergeOrchestrator(executor).execute_batch([MergeInstruction("1", ["2"])])

    def test_failure_kind_is_reported(self, three_groups):
        results = _orchestrator(three_groups).execute_batch([MergeInstruction("nope", ["a1"])])

        assert results[0].error == ErrorKind.PRIMARY_NOT_FOUND
        assert results[0].to_dict()["merged_count"] == 0
