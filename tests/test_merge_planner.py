"""
Tests for merge planning.
"""
import pytest

from api.services.duplicate_grouper import DuplicateGrouper
from api.services.merge_models import ClientRecord, DedupKey, MergeGroup
from api.services.merge_planner import MergePlanner, order_members
from tests.fixtures.client_data import add_client, row_counts, ts


class TestOrderMembers:
    """Tests for strategy ordering."""

    pytestmark = pytest.mark.unit

    @pytest.fixture
    def records(self):
        return [
            ClientRecord(id="b", created_at=ts("2023-05-01")),
            ClientRecord(id="c", created_at=ts("2022-01-01")),
            ClientRecord(id="a", created_at=ts("2023-05-01")),
            ClientRecord(id="d", created_at=ts("2024-01-01")),
        ]

    def test_keep_oldest(self, records):
        assert [r.id for r in order_members(records, "keep-oldest")] == ["c", "a", "b", "d"]

    def test_keep_newest(self, records):
        assert [r.id for r in order_members(records, "keep-newest")] == ["d", "a", "b", "c"]

    def test_ties_broken_by_id(self):
        records = [
            ClientRecord(id="z", created_at=ts("2023-01-01")),
            ClientRecord(id="m", created_at=ts("2023-01-01")),
        ]
        for strategy in ("keep-oldest", "keep-newest"):
            assert order_members(records, strategy)[0].id == "m"

    def test_unknown_strategy_raises(self, records):
        with pytest.raises(ValueError):
            order_members(records, "keep-richest")


@pytest.mark.requires_db
class TestPlan:
    """Tests for MergePlanner.plan and suggest_all."""

    def test_keep_oldest_plan(self, vienna_store):
        group = DuplicateGrouper(vienna_store).find_groups("email")[0]
        suggestion = MergePlanner(vienna_store).plan(group, "keep-oldest")

        assert suggestion.primary.id == "1"
        assert [d.id for d in suggestion.duplicates] == ["2"]
        assert suggestion.key == DedupKey(kind="email", value="a@x.com")
        assert suggestion.strategy == "keep-oldest"

    def test_keep_newest_plan(self, vienna_store):
        group = DuplicateGrouper(vienna_store).find_groups("email")[0]
        suggestion = MergePlanner(vienna_store).plan(group, "keep-newest")

        assert suggestion.primary.id == "2"
        assert [d.id for d in suggestion.duplicates] == ["1"]

    def test_plan_is_repeatable(self, vienna_store):
        planner = MergePlanner(vienna_store)
        group = DuplicateGrouper(vienna_store).find_groups("email")[0]

        assert planner.plan(group).primary.id == planner.plan(group).primary.id

    def test_group_with_vanished_member_is_dropped(self, vienna_store):
        group = MergeGroup(key=DedupKey(kind="email", value="a@x.com"), member_ids=["1", "ghost"])
        assert MergePlanner(vienna_store).plan(group) is None

    def test_vanished_member_does_not_break_larger_group(self, vienna_store):
        group = MergeGroup(key=DedupKey(kind="email", value="a@x.com"), member_ids=["1", "2", "ghost"])
        suggestion = MergePlanner(vienna_store).plan(group)

        assert suggestion.primary.id == "1"
        assert [d.id for d in suggestion.duplicates] == ["2"]

    def test_suggest_all(self, client_store):
        add_client(client_store, "1", "2023-01-01", email="a@x.com", phone="0664 1")
        add_client(client_store, "2", "2022-01-01", email="a@x.com")
        add_client(client_store, "3", "2021-01-01", email="c@x.com", phone="+43 664 1")
        add_client(client_store, "4", "2024-01-01", email="c@x.com")

        planner = MergePlanner(client_store, DuplicateGrouper(client_store, "43"))
        suggestions = planner.suggest_all(mode="both", strategy="keep-newest", limit=10)

        plans = [(s.key.kind, s.primary.id, [d.id for d in s.duplicates]) for s in suggestions]
        assert plans == [
            ("email", "1", ["2"]),
            ("email", "4", ["3"]),
            ("phone", "1", ["3"]),
        ]

    def test_planning_does_not_mutate(self, vienna_store):
        before = row_counts(vienna_store)
        MergePlanner(vienna_store).suggest_all("both", "keep-oldest", 10)
        assert row_counts(vienna_store) == before
