# tests/unit/core/test_similarity.py — v2
"""Tests for core/similarity.py — LCS ratio and ranking."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from gen3d.core.similarity import lcs_length, rank, score


class TestLcsLength:
    def test_classic_example(self):
        assert lcs_length("ABCBDAB", "BDCABA") == 4

    def test_disjoint(self):
        assert lcs_length("abc", "xyz") == 0

    def test_prefix(self):
        assert lcs_length("A cube", "A cube with holes") == 6

    def test_empty(self):
        assert lcs_length("", "abc") == 0
        assert lcs_length("abc", "") == 0

    def test_unicode(self):
        assert lcs_length("立方体", "红色立方体") == 3


class TestScore:
    def test_identity(self):
        assert score("A red cube", "A red cube") == 1.0

    def test_empty_is_zero(self):
        assert score("", "A cube") == 0.0
        assert score("A cube", "") == 0.0

    def test_both_empty_is_zero(self):
        assert score("", "") == 0.0

    def test_none_is_zero(self):
        assert score(None, "A cube") == 0.0
        assert score(None, None) == 0.0

    @pytest.mark.parametrize(
        "a,b",
        [("A red cube", "A blue cube"), ("chair", "chairs"), ("abc", "cab")],
    )
    def test_symmetric(self, a, b):
        assert score(a, b) == score(b, a)

    def test_ratio_uses_longer_length(self):
        # LCS("A cube", "A cubes") = 6, max len = 7
        assert score("A cube", "A cubes") == pytest.approx(6 / 7)

    def test_case_sensitive(self):
        assert score("cube", "CUBE") == 0.0

    def test_whitespace_sensitive(self):
        assert score("a cube", "acube") < 1.0

    def test_in_unit_interval(self):
        s = score("wooden chair with armrests", "metal chair")
        assert 0.0 <= s <= 1.0


class TestRank:
    def test_filters_below_threshold(self):
        result = rank("A red cube", [("A red cube!", "x", None, 0), ("tree", "y", None, 0)], 0.8)
        assert [m.item for m in result] == ["x"]

    def test_threshold_is_inclusive(self):
        result = rank("A cube", [("A cubes", "x", None, 0)], 6 / 7)
        assert len(result) == 1

    def test_orders_by_score(self):
        result = rank(
            "A red cube",
            [("A red cub", "close", None, 0), ("A red cube", "exact", None, 0)],
            0.5,
        )
        assert [m.item for m in result] == ["exact", "close"]

    def test_ties_broken_by_recent_hit_then_hits(self):
        t0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
        result = rank(
            "A cube",
            [
                ("A cube", "never", None, 9),
                ("A cube", "old", t0, 1),
                ("A cube", "new_few", t0 + timedelta(hours=1), 1),
                ("A cube", "new_many", t0 + timedelta(hours=1), 5),
            ],
            0.5,
        )
        assert [m.item for m in result] == ["new_many", "new_few", "old", "never"]

    def test_empty_query_matches_nothing(self):
        assert rank("", [("", "x", None, 0)], 0.1) == []
