import logging

import pyarrow as pa

from sketches.config import DEFAULTS
from sketches.hyper_log_log import HyperLogLog

log = logging.getLogger(__name__)


def estimate_distinct(hashes, register_count: int = DEFAULTS["register_count"]) -> int:
    """Estimate the number of distinct values behind a column of 32-bit hashes"""
    hll = HyperLogLog(register_count)
    hll.add_batch(hashes)
    return hll.count()


def build_sketches(table: pa.Table, key: str, hash_column: str,
                   register_count: int = DEFAULTS["register_count"]) -> dict:
    """One HyperLogLog per distinct key value
    Args:
    table: Arrow table holding the key column and a uint32 hash column
    key: Column to group by
    hash_column: Column of pre-hashed 32-bit values
    Returns:
    dict mapping each non-null key value to its estimator
    """
    grouped = table.group_by(key).aggregate([(hash_column, "list")])
    keys = grouped[key].combine_chunks()
    lists = grouped[f"{hash_column}_list"].combine_chunks()

    sketches = {}
    for i in range(len(keys)):
        if not keys[i].is_valid:
            continue
        hll = HyperLogLog(register_count)
        hll.add_batch(lists[i].values)
        sketches[keys[i].as_py()] = hll
    log.debug("built %d sketches over %s grouped by %s", len(sketches), hash_column, key)
    return sketches


def distinct_by_group(table: pa.Table, key: str, hash_column: str,
                      register_count: int = DEFAULTS["register_count"]) -> pa.Table:
    """Estimated distinct hashes per key
    Returns:
    Arrow Table with columns: key, estimate (sorted by key)
    """
    sketches = build_sketches(table, key, hash_column, register_count)
    result = pa.table({
        "key": pa.array(list(sketches), type=table.schema.field(key).type),
        "estimate": pa.array([h.count() for h in sketches.values()], pa.uint64()),
    })
    return result.sort_by("key")


def overlap(left, right, register_count: int = DEFAULTS["register_count"]) -> int:
    """Approximate number of distinct values shared by two hash columns"""
    a = HyperLogLog(register_count)
    b = HyperLogLog(register_count)
    a.add_batch(left)
    b.add_batch(right)
    return a.intersect(b)
