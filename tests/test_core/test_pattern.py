import numpy
import pytest

from phylopat.core.pattern import (
    Pattern,
    compute_flags,
    hash_columns,
    hash_combine,
)
from phylopat.core.state import SeqType, StateCodec

DNA = StateCodec(SeqType.DNA)


def test_equality_ignores_frequency():
    a = Pattern([0, 1, 2], frequency=3)
    b = Pattern([0, 1, 2])
    assert a == b
    assert hash(a) == hash(b)
    assert Pattern([0, 2, 1]) != a


def test_states_are_read_only():
    p = Pattern([0, 1])
    with pytest.raises(ValueError):
        p.states[0] = 3


def test_copy_is_independent():
    p = Pattern([0, 0, 1], frequency=2)
    p.compute_const(DNA)
    c = p.copy()
    c.frequency = 9
    assert p.frequency == 2
    assert c == p
    assert c.num_chars == p.num_chars


def test_hash_combine_order_sensitive():
    assert hash_combine([1, 2]) != hash_combine([2, 1])
    # negative sentinels are hashed as unsigned 32-bit values
    assert hash_combine([-1]) == hash_combine([2**32 - 1])


def test_hash_columns_matches_hash_combine():
    matrix = numpy.array([[0, 3, 18], [1, 3, 0], [2, 3, 1]], dtype=numpy.uint32)
    got = hash_columns(matrix).tolist()
    expect = [hash_combine(matrix[:, j].tolist()) for j in range(3)]
    assert got == expect


@pytest.mark.parametrize(
    "states,num_chars,is_const,is_informative,const_char",
    [
        ([0, 0, 0, 0], 1, True, False, 0),
        ([0, 0, 0, 1], 2, False, False, 18),
        ([0, 0, 1, 1], 2, False, True, 18),
        ([18, 18, 18], 0, True, False, 18),
        # A and R (A or G) can both be A
        ([0, 8, 0], 1, True, False, 0),
        # all R, constant with an ambiguous character
        ([8, 8, 8], 0, True, False, 8),
    ],
)
def test_compute_const(states, num_chars, is_const, is_informative, const_char):
    p = Pattern(states)
    p.compute_const(DNA)
    assert p.num_chars == num_chars
    assert p.is_const is is_const
    assert p.is_informative is is_informative
    assert p.is_invariant is (num_chars <= 1)
    if is_const:
        assert p.const_char == const_char


def test_flags_idempotent():
    p = Pattern([0, 1, 1, 2, 2, 18])
    p.compute_const(DNA)
    first = (p.num_chars, p.is_const, p.const_char, p.is_informative, p.is_invariant)
    p.compute_const(DNA)
    second = (p.num_chars, p.is_const, p.const_char, p.is_informative, p.is_invariant)
    assert first == second


def test_compute_flags_bulk_matches_single():
    patterns = [Pattern(s) for s in ([0, 0, 0], [0, 1, 1], [1, 2, 3], [18, 0, 0])]
    singles = []
    for p in patterns:
        q = p.copy()
        q.compute_const(DNA)
        singles.append((q.num_chars, q.is_const, q.const_char, q.is_informative))
    compute_flags(patterns, DNA)
    bulk = [(p.num_chars, p.is_const, p.const_char, p.is_informative) for p in patterns]
    assert bulk == singles


def test_take():
    p = Pattern([5, 6, 7])
    assert p.take([2, 0]).states.tolist() == [7, 5]


def test_gap_counts():
    p = Pattern([0, 18, 8, 18])
    assert p.compute_gap_char(18) == 2
    assert p.compute_ambiguous_char(4, 18) == 1
    assert not p.is_gaps_only(18)
    assert Pattern([18, 18]).is_gaps_only(18)


@pytest.mark.parametrize(
    "states,label",
    [
        ([0, 0, 1, 1], "I"),
        ([0, 0, 0, 0], "C"),
        ([8, 8, 8, 8], "c"),
        ([18, 18, 18, 18], "-"),
        ([0, 0, 0, 1], "U"),
    ],
)
def test_site_info_label(states, label):
    p = Pattern(states)
    p.compute_const(DNA)
    assert p.site_info_label(DNA.num_states, DNA.unknown_state) == label
