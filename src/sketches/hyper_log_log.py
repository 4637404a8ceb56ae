import logging
import math
import operator

import numpy as np
import pyarrow as pa

from sketches import snapshot
from sketches.config import DEFAULTS
from sketches.errors import (
    DeserializationFailure,
    IncompatibleEstimators,
    InvalidConfiguration,
)

log = logging.getLogger(__name__)

EXP32 = 2.0 ** 32
MAX_REGISTERS = 1 << 32


def get_alpha(m: int) -> float:
    """Bias correction constant alpha_m"""
    if m == 16:
        return 0.673
    if m == 32:
        return 0.697
    if m == 64:
        return 0.709
    return 0.7213 / (1.0 + 1.079 / m)


def rho(w: int, max_rank: int) -> int:
    """Position of the leftmost 1-bit of a 32-bit word, capped at max_rank + 1"""
    return min(33 - w.bit_length(), max_rank + 1)


class HyperLogLog:
    """Cardinality estimator over pre-hashed 32-bit values.

    HyperLogLog estimates the number of distinct elements of a multiset
    using one byte per register, whatever the size of the input. Each
    incoming hash is split in two: the top `index_bits` bits pick a
    register, and the position of the leftmost 1-bit in the rest is the
    rank. Every register keeps the highest rank it has seen, and the
    harmonic mean of 2^register across the array gives the estimate.

    The caller supplies the hash. Any function with good uniformity and
    avalanche behaviour works (murmur3, xxhash, a truncated blake2b digest),
    as long as every estimator that will be merged uses the same one.

    Approximate standard error is 1.04 / sqrt(register_count).

    Estimators of the same size combine: `merge` yields the estimator of the
    union, and `intersect` approximates the overlap by inclusion-exclusion.
    An instance is not safe for concurrent mutation; guard it with a lock
    if several threads add to or merge into it.

    Attributes:
        register_count (int): Number of registers m, a power of two.
        index_bits (int): Bits of each hash used to select a register.
        alpha (float): Bias correction constant for m.
        registers (pyarrow.UInt8Array): Read-only view of the register values.

    Example:
        >>> hll = HyperLogLog(1024)
        >>> hll.add(0x9E3779B9)
        >>> hll.add_batch(pa.array([1, 2, 3], pa.uint32()))
        >>> estimated_count = hll.count()

    """
    def __init__(self, register_count: int = DEFAULTS["register_count"]):
        if isinstance(register_count, bool) or not isinstance(register_count, int):
            raise InvalidConfiguration(
                f"number of registers must be an integer, got {register_count!r}",
                register_count,
            )
        if register_count <= 0 or register_count > MAX_REGISTERS:
            raise InvalidConfiguration(
                f"number of registers {register_count} out of range 1..{MAX_REGISTERS}",
                register_count,
            )
        if register_count & (register_count - 1) != 0:
            raise InvalidConfiguration(
                f"number of registers {register_count} not a power of two",
                register_count,
            )
        self._m = register_count
        self._b = math.ceil(math.log2(register_count))
        self._alpha = get_alpha(register_count)
        self._registers = np.zeros(register_count, dtype=np.uint8)
        log.debug("new HyperLogLog m=%d b=%d alpha=%r", self._m, self._b, self._alpha)

    @classmethod
    def from_config(cls, cfg: dict, text=None) -> "HyperLogLog":
        """Build an estimator from loaded settings
        Args:
        cfg: mapping as returned by config.load_config
        text: optional JSON snapshot, decoded with the `strict_decode` setting
        """
        if text is None:
            return cls(cfg.get("register_count", DEFAULTS["register_count"]))
        return cls.from_json(text, strict=cfg.get("strict_decode", DEFAULTS["strict_decode"]))

    @property
    def register_count(self) -> int:
        return self._m

    @property
    def index_bits(self) -> int:
        return self._b

    @property
    def alpha(self) -> float:
        return self._alpha

    @property
    def registers(self) -> pa.UInt8Array:
        return pa.array(self._registers.copy(), type=pa.uint8())

    def reset(self):
        """Set every register back to zero"""
        self._registers[:] = 0

    def add(self, value: int):
        """Record one element given its 32-bit hash"""
        value = operator.index(value)
        if not 0 <= value <= 0xFFFFFFFF:
            raise ValueError(f"hash {value} is not an unsigned 32-bit integer")
        k = 32 - self._b
        r = rho((value << self._b) & 0xFFFFFFFF, k)
        j = value >> k
        if r > self._registers[j]:
            self._registers[j] = r

    def add_batch(self, values):
        """Record many elements at once
        Args:
        values: pyarrow Array/ChunkedArray, numpy array or iterable of 32-bit hashes
        """
        if isinstance(values, pa.ChunkedArray):
            values = values.combine_chunks()
        if not isinstance(values, pa.Array):
            values = pa.array(values, type=pa.uint32())
        elif values.type != pa.uint32():
            values = values.cast(pa.uint32())
        if values.null_count:
            values = values.drop_null()
        if len(values) == 0:
            return

        # Widen to 64 bits so the shifts below are defined for index_bits == 0
        h = values.to_numpy(zero_copy_only=False).astype(np.uint64)
        k = 32 - self._b
        idx = (h >> np.uint64(k)).astype(np.intp)
        w = (h << np.uint64(self._b)) & np.uint64(0xFFFFFFFF)
        # frexp exponent of a positive integer is its bit length; 0 maps to 0
        bit_length = np.frexp(w.astype(np.float64))[1]
        ranks = np.minimum(33 - bit_length, k + 1).astype(np.uint8)
        np.maximum.at(self._registers, idx, ranks)

    def count(self) -> int:
        """Get cardinality estimate"""
        if self._m <= 0 or len(self._registers) == 0:
            return 0
        m = float(self._m)
        indicator = np.ldexp(1.0, -self._registers.astype(np.int32)).sum()
        estimate = self._alpha * m * m / float(indicator)

        if estimate <= 2.5 * m:
            # Small range correction: linear counting over empty registers
            zeros = int(np.count_nonzero(self._registers == 0))
            if zeros > 0:
                estimate = m * math.log(m / zeros)
        elif estimate > EXP32 / 30.0:
            if estimate < EXP32:
                # Large range correction for hash collisions near 2^32
                estimate = -EXP32 * math.log(1.0 - estimate / EXP32)
            else:
                log.warning(
                    "estimate %.0f saturates the 32-bit hash space, returning raw value",
                    estimate,
                )
        if not math.isfinite(estimate):
            log.warning("estimate is not finite, returning 0")
            return 0
        return max(int(estimate), 0)

    def merge(self, other: "HyperLogLog"):
        """Fold another estimator into this one (union)"""
        self._check_compatible(other)
        np.maximum(self._registers, other._registers, out=self._registers)
        log.debug("merged HyperLogLog m=%d", self._m)

    def intersect(self, other: "HyperLogLog") -> int:
        """Estimate the overlap of two estimators.

        Uses |A n B| = |A| + |B| - |A u B|. Three noisy estimates go into
        the result, so its relative error is much larger than that of
        `count`. Noise can push the union above the sum of both counts, in
        which case the overlap is reported as 0.
        """
        self._check_compatible(other)
        union = HyperLogLog(self._m)
        union.merge(self)
        union.merge(other)
        union_count = union.count()
        cumulative_count = self.count() + other.count()
        if union_count > cumulative_count:
            return 0
        return cumulative_count - union_count

    def copy(self) -> "HyperLogLog":
        clone = HyperLogLog.__new__(HyperLogLog)
        clone._m = self._m
        clone._b = self._b
        clone._alpha = self._alpha
        clone._registers = self._registers.copy()
        return clone

    def standard_error(self) -> float:
        return 1.04 / math.sqrt(self._m)

    def memory_bytes(self) -> int:
        return self._registers.nbytes

    def snapshot(self) -> dict:
        """Plain mapping of the full state: M, B, A and R"""
        return {
            "M": self._m,
            "B": self._b,
            "A": self._alpha,
            "R": self._registers.tolist(),
        }

    def serialize(self) -> str:
        """Encode the state as compact JSON text"""
        return snapshot.encode_json(self.snapshot())

    def to_arrow(self) -> pa.RecordBatch:
        """Encode the state as a one-row Arrow record batch"""
        return snapshot.to_record_batch(self.snapshot())

    def restore(self, data: dict, strict: bool = DEFAULTS["strict_decode"]):
        """Replace this estimator's state with a decoded snapshot.

        Fields are applied as given. With strict=False, as in the wire
        format's other readers, neither the power-of-two register count nor
        the register array length is checked; strict=True rejects snapshots
        that break either. On any failure the instance is left untouched.
        """
        data = snapshot.check_shape(data)
        if strict:
            _check_invariants(data)
        registers = np.array(data["R"], dtype=np.uint8)
        self._m = data["M"]
        self._b = data["B"]
        self._alpha = data["A"]
        self._registers = registers
        log.debug("restored HyperLogLog m=%d from snapshot", self._m)

    def unserialize(self, text, strict: bool = DEFAULTS["strict_decode"]):
        """Replace this estimator's state with a JSON snapshot"""
        self.restore(snapshot.decode_json(text), strict=strict)

    @classmethod
    def from_snapshot(cls, data: dict, strict: bool = DEFAULTS["strict_decode"]) -> "HyperLogLog":
        hll = cls.__new__(cls)
        hll.restore(data, strict=strict)
        return hll

    @classmethod
    def from_json(cls, text, strict: bool = DEFAULTS["strict_decode"]) -> "HyperLogLog":
        return cls.from_snapshot(snapshot.decode_json(text), strict=strict)

    @classmethod
    def from_arrow(cls, batch, strict: bool = DEFAULTS["strict_decode"]) -> "HyperLogLog":
        return cls.from_snapshot(snapshot.from_record_batch(batch), strict=strict)

    def _check_compatible(self, other: "HyperLogLog"):
        if self._m != other._m:
            raise IncompatibleEstimators(self._m, other._m)
        # Leniently decoded snapshots may carry fewer registers than M
        if len(self._registers) != len(other._registers):
            raise IncompatibleEstimators(len(self._registers), len(other._registers))

    def __eq__(self, other):
        if not isinstance(other, HyperLogLog):
            return NotImplemented
        return (
            self._m == other._m
            and self._b == other._b
            and self._alpha == other._alpha
            and np.array_equal(self._registers, other._registers)
        )

    def __repr__(self):
        return f"HyperLogLog(register_count={self._m})"


def _check_invariants(data: dict):
    m = data["M"]
    if m <= 0 or m > MAX_REGISTERS or m & (m - 1) != 0:
        raise DeserializationFailure(f"snapshot register count {m} not a power of two")
    expected_bits = math.ceil(math.log2(m))
    if data["B"] != expected_bits:
        raise DeserializationFailure(
            f"snapshot index bits {data['B']} do not match {m} registers (want {expected_bits})"
        )
    if len(data["R"]) != m:
        raise DeserializationFailure(
            f"snapshot holds {len(data['R'])} registers, expected {m}"
        )
