import pytest
import pyarrow as pa
import numpy as np
from hypothesis import given, strategies as st

from analytics.distinct import build_sketches, distinct_by_group, estimate_distinct, overlap
from sketches.errors import InvalidConfiguration


def spread(n: int, index_bits: int = 10) -> list:
    """n hashes in n different registers, each with rank 1"""
    return [(j << (32 - index_bits)) | (1 << (31 - index_bits)) for j in range(n)]


class TestEstimateDistinct:
    def test_small_exact(self):
        assert estimate_distinct(pa.array(spread(3), pa.uint32()), 1024) == 3

    def test_duplicates_do_not_count(self):
        values = pa.array(spread(2) * 50, pa.uint32())
        assert estimate_distinct(values, 1024) == 2

    def test_random_stream(self):
        rng = np.random.default_rng(5)
        values = rng.integers(0, 2**32, size=50_000, dtype=np.uint32)
        actual = len(np.unique(values))
        estimate = estimate_distinct(pa.array(values), 4096)
        assert abs(estimate - actual) / actual < 0.08

    def test_rejects_bad_register_count(self):
        with pytest.raises(InvalidConfiguration):
            estimate_distinct([1, 2, 3], 1000)


class TestDistinctByGroup:
    def table(self):
        return pa.table({
            "domain": ["a", "b", "a", "a", None, "b"],
            "agent_hash": pa.array(
                [spread(3)[0], spread(3)[0], spread(3)[1], spread(3)[2],
                 spread(3)[1], spread(3)[0]],
                pa.uint32(),
            ),
        })

    def test_estimates_per_key(self):
        result = distinct_by_group(self.table(), "domain", "agent_hash", 1024)
        assert result.column_names == ["key", "estimate"]
        assert result["key"].to_pylist() == ["a", "b"]
        assert result["estimate"].to_pylist() == [3, 1]
        assert result.schema.field("estimate").type == pa.uint64()

    def test_sketches_merge_to_overall_estimate(self):
        sketches = build_sketches(self.table(), "domain", "agent_hash", 1024)
        assert set(sketches) == {"a", "b"}
        total = sketches["a"].copy()
        total.merge(sketches["b"])
        assert total.count() == 3

    def test_empty_table(self):
        table = pa.table({
            "domain": pa.array([], pa.string()),
            "agent_hash": pa.array([], pa.uint32()),
        })
        result = distinct_by_group(table, "domain", "agent_hash", 1024)
        assert result.num_rows == 0


class TestOverlap:
    def test_identical_columns(self):
        values = pa.array(spread(3), pa.uint32())
        assert overlap(values, values, 1024) == 3

    def test_disjoint_columns(self):
        values = spread(6)
        assert overlap(values[:3], values[3:], 1024) == 0

    @given(st.lists(st.integers(0, 2**32 - 1), max_size=200),
           st.lists(st.integers(0, 2**32 - 1), max_size=200))
    def test_never_negative(self, left, right):
        assert overlap(left, right, 256) >= 0
