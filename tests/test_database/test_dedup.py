"""Tests for merging local expenses with expenses read from Sheets."""

from __future__ import annotations

from voxledger.database.dedup import dedup_key, is_duplicate, merge_with_local
from voxledger.database.models import Expense


def _e(id_: str, ts: int, amount: float = 5.0, description: str | None = "coffee", **kw) -> Expense:
    return Expense(id=id_, timestamp=ts, amount=amount, category="Еда",
                   description=description, **kw)


class TestDedupKey:
    def test_key_fields(self):
        assert dedup_key(_e("a", 1000)) == (1000, 5.0, "coffee")

    def test_int_and_float_amount_equal(self):
        assert is_duplicate(_e("a", 1000, amount=5), _e("b", 1000, amount=5.0))

    def test_missing_description_equals_empty(self):
        assert is_duplicate(_e("a", 1000, description=None), _e("b", 1000, description=""))

    def test_other_fields_ignored(self):
        assert is_duplicate(_e("a", 1000, currency="EUR"), _e("Sheet!2", 1000, currency="USD"))

    def test_any_key_difference(self):
        base = _e("a", 1000)
        assert not is_duplicate(base, _e("b", 1001))
        assert not is_duplicate(base, _e("b", 1000, amount=5.01))
        assert not is_duplicate(base, _e("b", 1000, description="Coffee"))


class TestMergeWithLocal:
    def test_matching_remote_record_appears_once(self):
        local = [_e("local-1", 1000)]
        remote = [_e("Sheet!2", 1000)]
        merged = merge_with_local(local, remote)
        assert len(merged) == 1
        assert merged[0].id == "local-1"

    def test_new_remote_records_added_sorted(self):
        local = [_e("l1", 2000, description="lunch")]
        remote = [_e("r1", 1000, description="tea"), _e("r2", 3000, description="taxi")]
        merged = merge_with_local(local, remote)
        assert [e.id for e in merged] == ["r2", "l1", "r1"]

    def test_remote_repeats_kept_once(self):
        remote = [_e("r1", 1000), _e("r2", 1000)]
        assert [e.id for e in merge_with_local([], remote)] == ["r1"]

    def test_local_duplicates_preserved(self):
        local = [_e("l1", 1000), _e("l2", 1000)]
        assert len(merge_with_local(local, [])) == 2

    def test_inputs_not_mutated(self):
        local = [_e("l1", 1000)]
        remote = [_e("r1", 2000)]
        merge_with_local(local, remote)
        assert [e.id for e in local] == ["l1"]
        assert [e.id for e in remote] == ["r1"]

    def test_empty(self):
        assert merge_with_local([], []) == []
