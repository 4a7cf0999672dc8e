"""A single alignment column as a vector of states."""

import typing

import numba
import numpy
import numpy.typing as npt

from typing_extensions import Self

if typing.TYPE_CHECKING:  # pragma: no cover
    from phylopat.core.state import StateCodec

HASH_SEED = 0
_GOLDEN = 0x9E3779B9
_MASK64 = (1 << 64) - 1
_MASK32 = (1 << 32) - 1


def hash_combine(states: typing.Iterable[int], seed: int = HASH_SEED) -> int:
    """order and position sensitive hash of a series of states

    Notes
    -----
    States are treated as unsigned 32-bit values and the accumulator wraps
    at 64 bits, so any state value, sentinels included, can be hashed.
    """
    h = seed
    for v in states:
        v = int(v) & _MASK32
        h ^= (v + _GOLDEN + (h << 6) + (h >> 2)) & _MASK64
    return h


@numba.njit(cache=True)
def hash_columns(
    matrix: npt.NDArray[numpy.uint32],
) -> npt.NDArray[numpy.uint64]:  # pragma: no cover
    """hash_combine applied to every column of a 2D array"""
    nrow, ncol = matrix.shape
    result = numpy.zeros(ncol, dtype=numpy.uint64)
    golden = numpy.uint64(_GOLDEN)
    six = numpy.uint64(6)
    two = numpy.uint64(2)
    for j in range(ncol):
        h = numpy.uint64(HASH_SEED)
        for i in range(nrow):
            v = numpy.uint64(matrix[i, j])
            h ^= v + golden + (h << six) + (h >> two)
        result[j] = h
    return result


@numba.njit(cache=True)
def pattern_flags(
    matrix: npt.NDArray[numpy.int32],
    appearance: npt.NDArray[numpy.bool_],
    resolved: npt.NDArray[numpy.int32],
    num_states: int,
    unknown: int,
) -> tuple[
    npt.NDArray[numpy.int32],
    npt.NDArray[numpy.bool_],
    npt.NDArray[numpy.int32],
    npt.NDArray[numpy.bool_],
]:  # pragma: no cover
    """character diversity and constant / informative flags of patterns

    Parameters
    ----------
    matrix
        2D array, one pattern per row
    appearance
        appearance[code] is the set of concrete states compatible with code
    resolved
        resolved[code] is the concrete state a code stands for, or the code
        itself if it has none
    num_states
        number of concrete states
    unknown
        the unknown state

    Returns
    -------
    num_chars, is_const, const_char, is_informative arrays
    """
    npattern, nseq = matrix.shape
    num_chars = numpy.zeros(npattern, dtype=numpy.int32)
    is_const = numpy.zeros(npattern, dtype=numpy.bool_)
    const_char = numpy.full(npattern, unknown, dtype=numpy.int32)
    is_informative = numpy.zeros(npattern, dtype=numpy.bool_)
    counts = numpy.zeros(num_states, dtype=numpy.int64)
    shared = numpy.ones(num_states, dtype=numpy.bool_)
    for p in range(npattern):
        counts[:] = 0
        shared[:] = True
        first = -1
        same_code = True
        for i in range(nseq):
            code = matrix[p, i]
            if code < 0 or code > unknown:
                continue
            if code != unknown:
                if first < 0:
                    first = code
                elif code != first:
                    same_code = False
            for s in range(num_states):
                shared[s] = shared[s] and appearance[code, s]
            state = resolved[code]
            if state < num_states:
                counts[state] += 1

        chars = 0
        repeated = 0
        for s in range(num_states):
            if counts[s] > 0:
                chars += 1
            if counts[s] >= 2:
                repeated += 1
        num_chars[p] = chars
        is_informative[p] = repeated >= 2

        lowest = -1
        for s in range(num_states):
            if shared[s]:
                lowest = s
                break
        is_const[p] = lowest >= 0
        if lowest < 0 or first < 0:
            const_char[p] = unknown
        elif same_code:
            const_char[p] = first
        else:
            const_char[p] = lowest
    return num_chars, is_const, const_char, is_informative


class Pattern:
    """states of all sequences at one alignment column

    Two patterns are equal when their state vectors are equal, frequency
    and flags are not part of the comparison.
    """

    __slots__ = (
        "states",
        "frequency",
        "num_chars",
        "is_const",
        "is_informative",
        "is_invariant",
        "const_char",
        "_hash",
    )

    def __init__(self, states: typing.Iterable[int], frequency: int = 1) -> None:
        states = numpy.array(states, dtype=numpy.int32)
        states.flags.writeable = False
        self.states = states
        self.frequency = frequency
        self.num_chars = 0
        self.is_const = False
        self.is_informative = False
        self.is_invariant = False
        self.const_char = -1
        self._hash = None

    def __len__(self) -> int:
        return len(self.states)

    def __getitem__(self, index):
        return self.states[index]

    def __iter__(self):
        return iter(self.states.tolist())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Pattern):
            return NotImplemented
        return numpy.array_equal(self.states, other.states)

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash_combine(self.states.tolist())
        return self._hash

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.states.tolist()}, "
            f"frequency={self.frequency})"
        )

    def copy(self) -> Self:
        new = self.__class__(self.states, frequency=self.frequency)
        new.set_flags(
            self.num_chars, self.is_const, self.const_char, self.is_informative
        )
        return new

    def take(self, seq_ids: typing.Sequence[int]) -> Self:
        """a new pattern with the states of the selected sequences"""
        return self.__class__(self.states[numpy.asarray(seq_ids, dtype=int)])

    def set_flags(
        self, num_chars: int, is_const: bool, const_char: int, is_informative: bool
    ) -> None:
        self.num_chars = int(num_chars)
        self.is_const = bool(is_const)
        self.const_char = int(const_char)
        self.is_informative = bool(is_informative)
        self.is_invariant = self.num_chars <= 1

    def compute_const(self, codec: "StateCodec") -> None:
        """recomputes num_chars and the constant, informative and invariant
        flags from the states"""
        num_chars, is_const, const_char, is_informative = pattern_flags(
            self.states.reshape(1, -1),
            codec.appearance_table(),
            codec.resolved_states(),
            codec.num_states,
            codec.unknown_state,
        )
        self.set_flags(num_chars[0], is_const[0], const_char[0], is_informative[0])

    def compute_gap_char(self, unknown: int) -> int:
        """number of unknown entries"""
        return int((self.states == unknown).sum())

    def compute_ambiguous_char(self, num_states: int, unknown: int) -> int:
        """number of entries that are neither concrete nor unknown"""
        return int(((self.states >= num_states) & (self.states != unknown)).sum())

    def is_gaps_only(self, unknown: int) -> bool:
        return bool((self.states == unknown).all())

    def site_info_label(self, num_states: int, unknown: int) -> str:
        """I informative, C constant, c constant with ambiguity, - gaps only,
        U uninformative"""
        if self.is_informative:
            return "I"
        if self.is_const:
            if self.const_char == unknown:
                return "-"
            return "C" if self.const_char < num_states else "c"
        return "U"


def compute_flags(patterns: typing.Sequence[Pattern], codec: "StateCodec") -> None:
    """recomputes the flags of many patterns at once"""
    if not patterns:
        return
    matrix = numpy.array([p.states for p in patterns], dtype=numpy.int32)
    flags = pattern_flags(
        matrix,
        codec.appearance_table(),
        codec.resolved_states(),
        codec.num_states,
        codec.unknown_state,
    )
    for pattern, values in zip(patterns, zip(*flags)):
        pattern.set_flags(*values)
