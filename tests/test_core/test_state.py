import numpy
import pytest

from phylopat.core import state
from phylopat.core.genetic_code import GeneticCodeError


@pytest.mark.parametrize(
    "seqs,expect",
    [
        (["ACGT", "ACGA", "AC-T"], state.SeqType.DNA),
        (["0101", "0011", "1?10"], state.SeqType.BINARY),
        (["MKLV", "MKIV", "WYEE"], state.SeqType.PROTEIN),
        (["0123", "4567", "89AB"], state.SeqType.MORPH),
        (["----", "????", "...."], state.SeqType.UNKNOWN),
    ],
)
def test_detect_sequence_type(seqs, expect):
    assert state.detect_sequence_type(seqs) is expect


@pytest.mark.parametrize(
    "text,expect",
    [
        ("dna", (state.SeqType.DNA, "", False)),
        ("AA", (state.SeqType.PROTEIN, "", False)),
        ("BIN", (state.SeqType.BINARY, "", False)),
        ("CODON2", (state.SeqType.CODON, "2", False)),
        ("NT2AA11", (state.SeqType.PROTEIN, "11", True)),
    ],
)
def test_parse_sequence_type(text, expect):
    assert state.parse_sequence_type(text) == expect


def test_parse_sequence_type_invalid():
    with pytest.raises(state.SequenceTypeError):
        state.parse_sequence_type("RNA-ish")


@pytest.mark.parametrize(
    "seqs,num",
    [(["012", "120"], 3), (["0A", "B1"], 12), (["--", "??"], 0)],
)
def test_get_morph_states(seqs, num):
    assert state.get_morph_states(seqs) == num


@pytest.mark.parametrize("num", [1, 33])
def test_invalid_morph_states(num):
    with pytest.raises(state.SequenceTypeError):
        state.validate_morph_states(num)


@pytest.mark.parametrize(
    "seq_type,num_states,unknown",
    [
        (state.SeqType.DNA, 4, 18),
        (state.SeqType.PROTEIN, 20, 23),
        (state.SeqType.BINARY, 2, 2),
    ],
)
def test_codec_num_and_unknown_states(seq_type, num_states, unknown):
    codec = state.StateCodec(seq_type)
    assert codec.num_states == num_states
    assert codec.unknown_state == unknown


def test_dna_conversion():
    codec = state.StateCodec(state.SeqType.DNA)
    assert [codec.convert_state(c) for c in "ACGTU"] == [0, 1, 2, 3, 3]
    assert codec.convert_state("r") == 1 + 4 + 3
    assert codec.convert_state("-") == state.DNA_UNKNOWN
    assert codec.convert_state("N") == state.DNA_UNKNOWN
    assert codec.convert_state("J") == state.STATE_INVALID


@pytest.mark.parametrize(
    "seq_type,chars",
    [
        (state.SeqType.DNA, "ACGTRYWSMKBHDV"),
        (state.SeqType.PROTEIN, "ARNDCQEGHILKMFPSTWYVBZJ"),
        (state.SeqType.BINARY, "01"),
    ],
)
def test_state_round_trip(seq_type, chars):
    codec = state.StateCodec(seq_type)
    for char in chars:
        code = codec.convert_state(char)
        assert code != state.STATE_INVALID
        assert codec.convert_state(codec.convert_state_back(code)) == code


def test_morph_round_trip():
    codec = state.StateCodec(state.SeqType.MORPH, num_states=12)
    for char in "0123456789AB":
        code = codec.convert_state(char)
        assert codec.convert_state_back(code) == char
    # beyond the number of states
    assert codec.convert_state("C") == state.STATE_INVALID


def test_unknown_writes_as_gap():
    codec = state.StateCodec(state.SeqType.PROTEIN)
    assert codec.convert_state_back(codec.unknown_state) == "-"
    assert codec.convert_state_back(state.STATE_INVALID) == "?"


def test_codon_codec():
    codec = state.StateCodec(state.SeqType.CODON, genetic_code=1)
    assert codec.num_states == 61
    assert codec.unknown_state == 61
    assert codec.step == 3
    assert codec.sequence_type == "CODON1"
    atg, problem = codec.convert_codon("ATG")
    assert problem is None
    assert codec.convert_state_back_str(atg) == "ATG"
    assert codec.convert_codon("TGA") == (codec.unknown_state, "stop")
    assert codec.convert_codon("A?G") == (codec.unknown_state, "ambiguous")
    assert codec.convert_codon("---") == (codec.unknown_state, None)
    assert codec.convert_codon("AJG") == (state.STATE_INVALID, "invalid")
    assert codec.convert_state_back_str(codec.unknown_state) == "---"


def test_codon_tables_consistent():
    codec = state.StateCodec(state.SeqType.CODON, genetic_code=2)
    for compact, raw in enumerate(codec.codon_table.tolist()):
        assert codec.non_stop_codon[raw] == compact
        assert not codec.is_stop_codon(raw)
    stops = numpy.flatnonzero(codec.non_stop_codon == state.STATE_INVALID)
    assert len(stops) + codec.num_states == 64
    assert {state.codon_string(s) for s in stops} == codec.genetic_code.stop_codons
    assert [state.codon_string(s) for s in codec.codon_table] == list(
        codec.genetic_code.sense_codons
    )


def test_codon_stops_follow_genetic_code():
    codec = state.StateCodec(state.SeqType.CODON, genetic_code=2)
    # vertebrate mitochondrial: AGA stops, TGA codes for W
    assert codec.convert_codon("AGA") == (codec.unknown_state, "stop")
    trp, problem = codec.convert_codon("TGA")
    assert problem is None
    assert codec.convert_state_back_str(trp) == "TGA"


def test_nt2aa_codec():
    codec = state.StateCodec(state.SeqType.PROTEIN, genetic_code=1, nt2aa=True)
    assert codec.seq_type is state.SeqType.PROTEIN
    assert codec.num_states == 20
    assert codec.sequence_type == "NT2AA1"
    met, _ = codec.convert_codon("ATG")
    assert codec.convert_state_back(met) == "M"


def test_bad_genetic_code():
    with pytest.raises(GeneticCodeError):
        state.StateCodec(state.SeqType.CODON, genetic_code=7)


def test_dna_appearance():
    codec = state.StateCodec(state.SeqType.DNA)
    table = codec.appearance_table()
    assert table.shape == (19, 4)
    assert table[0].tolist() == [True, False, False, False]
    # R is A or G
    assert table[1 + 4 + 3].tolist() == [True, False, True, False]
    assert table[codec.unknown_state].all()


def test_protein_appearance():
    codec = state.StateCodec(state.SeqType.PROTEIN)
    b_state = codec.convert_state("B")
    app = codec.get_appearance(b_state)
    assert numpy.flatnonzero(app).tolist() == [2, 3]


def test_codec_copy_is_independent():
    codec = state.StateCodec(
        state.SeqType.POMO, num_states=58, virtual_pop_size=9
    )
    codec.add_pomo_sampled_state(1 | (3 << 2))
    other = codec.copy()
    other.add_pomo_sampled_state(2 | (5 << 2))
    assert len(codec.pomo_sampled_states) == 1
    assert len(other.pomo_sampled_states) == 2
    assert other.unknown_state == codec.unknown_state + 1


def test_pomo_sampled_states():
    codec = state.StateCodec(state.SeqType.POMO, num_states=58, virtual_pop_size=9)
    assert codec.unknown_state == 58
    first = codec.add_pomo_sampled_state(7)
    assert first == 58
    assert codec.add_pomo_sampled_state(7) == 58
    assert codec.add_pomo_sampled_state(11) == 59
    assert codec.unknown_state == 60


@pytest.mark.parametrize(
    "counts,expect",
    [
        # only allele A observed
        (((0, 5), None), 0),
        # 3 A and 1 C of N=9, 6.75 rounds to 7
        (((0, 3), (1, 1)), 4 + 0 * 8 + 7 - 1),
        # a tie at 4.5 goes to the first allele, 5
        (((0, 1), (3, 1)), 4 + 2 * 8 + 5 - 1),
        # almost all of the second allele
        (((0, 1), (1, 99)), 1),
    ],
)
def test_convert_pomo_state(counts, expect):
    codec = state.StateCodec(state.SeqType.POMO, num_states=58, virtual_pop_size=9)
    (id1, v1), second = counts
    value = id1 | (v1 << 2)
    if second is not None:
        id2, v2 = second
        value |= (id2 | (v2 << 2)) << 16
    code = codec.add_pomo_sampled_state(value)
    assert codec.convert_pomo_state(code) == expect


def test_make_codec():
    assert state.make_codec("DNA").seq_type is state.SeqType.DNA
    assert state.make_codec(state.SeqType.PROTEIN).num_states == 20
    assert state.make_codec("CODON11").genetic_code.ID == 11
    with pytest.raises(TypeError):
        state.make_codec(4)


def test_states_from_string():
    codec = state.StateCodec(state.SeqType.DNA)
    assert codec.states_from_string("AC-") == [0, 1, 18]
    codon = state.StateCodec(state.SeqType.CODON)
    assert len(codon.states_from_string("ATGAAA")) == 2
