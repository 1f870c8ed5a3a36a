"""Unit tests for id synthesis, field diffs and result-set merging."""

from __future__ import annotations

import re

from src.crm_client.crm.identity import compute_changes, generate_id, merge_by_id


class TestGenerateId:
    def test_format(self):
        assert re.fullmatch(r"lead_\d{13}_[0-9a-z]{9}", generate_id("lead"))

    def test_unique(self):
        assert len({generate_id("opp") for _ in range(1000)}) == 1000


class TestComputeChanges:
    def test_only_changed_keys(self):
        changes = compute_changes(
            {"status": "NEW", "name": "Jane"},
            {"status": "CONTACTED", "name": "Jane", "notes": "called"},
        )

        assert set(changes) == {"status", "notes"}
        assert changes["notes"].old is None
        assert changes["notes"].new == "called"

    def test_containers_always_count_as_changed(self):
        changes = compute_changes({"tags": ["a"]}, {"tags": ["a"]})

        assert set(changes) == {"tags"}


class TestMergeById:
    def test_local_wins_and_union(self):
        merged = merge_by_id(
            [{"id": "a", "name": "Remote A"}, {"id": "c", "name": "Remote C"}],
            [{"id": "a", "name": "Local A"}, {"id": "b", "name": "Local B"}],
        )

        assert merged == [
            {"id": "a", "name": "Local A"},
            {"id": "c", "name": "Remote C"},
            {"id": "b", "name": "Local B"},
        ]

    def test_records_without_id_dropped(self):
        assert merge_by_id([{"name": "no id"}], [{"id": ""}]) == []
