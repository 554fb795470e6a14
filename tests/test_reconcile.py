"""Tests for identifier set reconciliation."""

from board_sync.reconcile import difference


class TestDifference:

    def test_empty_b_returns_a(self):
        assert difference(["a", "b", "c"], []) == ["a", "b", "c"]

    def test_subset_returns_empty(self):
        assert difference(["a", "c"], ["c", "b", "a"]) == []

    def test_self_difference_is_empty(self):
        ids = ["x", "y", "x"]
        assert difference(ids, ids) == []

    def test_preserves_order_of_a(self):
        assert difference(["d", "b", "a", "c"], ["b"]) == ["d", "a", "c"]

    def test_keeps_duplicates(self):
        assert difference(["a", "b", "a"], ["b"]) == ["a", "a"]

    def test_exact_string_equality(self):
        assert difference(["abc", "ABC", "abc "], ["abc"]) == ["ABC", "abc "]

    def test_does_not_mutate_inputs(self):
        a = ["a", "b"]
        b = ["b"]
        difference(a, b)
        assert a == ["a", "b"]
        assert b == ["b"]
