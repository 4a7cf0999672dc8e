import numpy
import pytest

from phylopat.core import derive
from phylopat.core.alignment import (
    AlignmentFormatError,
    AlignmentWarning,
    IncompatibleAlignmentError,
    make_alignment,
)
from phylopat.core.counts import read_counts
from phylopat.core.state import SeqType

SEQS = {
    "s1": "ACGTAC-TGA",
    "s2": "ACGTTCATGA",
    "s3": "ACCTTC-TGG",
    "s4": "AGGTAC-AGA",
}


@pytest.fixture
def aln():
    return make_alignment(dict(SEQS))


@pytest.fixture
def codon_aln():
    return make_alignment(
        {"a": "ATGAAACCC", "b": "ATGAAGCCC", "c": "ATGTTT---"},
        sequence_type="CODON1",
    )


def _freq_sum(aln):
    return sum(p.frequency for p in aln.patterns)


def test_extract_sub_alignment(aln):
    sub = derive.extract_sub_alignment(aln, [3, 0])
    assert sub.seq_names == ["s4", "s1"]
    assert sub.to_dict() == {"s4": SEQS["s4"], "s1": SEQS["s1"]}
    assert sub.num_patterns <= aln.num_patterns
    assert _freq_sum(sub) == sub.num_sites
    assert aln.num_seqs == 4


def test_extract_sub_alignment_min_true_char(aln):
    sub = derive.extract_sub_alignment(aln, [0, 2], min_true_char=2)
    # the column where both s1 and s3 have a gap is dropped
    assert sub.num_sites == aln.num_sites - 1
    assert sub.get_sequence("s1") == "ACGTACTGA"


def test_extract_sub_alignment_merges_patterns():
    aln = make_alignment(["a", "b", "c"], ["AC", "AC", "AG"])
    assert aln.num_patterns == 2
    sub = derive.extract_sub_alignment(aln, [0, 1])
    assert sub.num_patterns == 2
    sub = derive.extract_sub_alignment(
        make_alignment(["a", "b", "c"], ["AA", "AC", "AC"]), [0]
    )
    assert sub.num_patterns == 1
    assert sub.patterns[0].frequency == 2


def test_extract_patterns(aln):
    new = derive.extract_patterns(aln, [1, 0])
    freqs = aln.get_pattern_freq()
    assert new.num_sites == freqs[0] + freqs[1]
    assert new.patterns[0] == aln.patterns[1]
    assert _freq_sum(new) == new.num_sites


def test_extract_pattern_freqs(aln):
    freqs = [0] * aln.num_patterns
    freqs[0] = 3
    freqs[2] = 1
    new = derive.extract_pattern_freqs(aln, freqs)
    assert new.num_sites == 4
    assert new.get_pattern_freq().tolist() == [3, 1]


def test_extract_sites(aln):
    new = derive.extract_sites(aln, [9, 0, 0])
    assert new.get_sequence("s3") == "GAA"
    assert new.num_patterns == 2


@pytest.mark.parametrize(
    "spec,expect",
    [
        ("1-3", [0, 1, 2]),
        ("1-10\\3", [0, 3, 6, 9]),
        ("2,5-6", [1, 4, 5]),
        ("8 - .", [7, 8, 9]),
        ("4 1", [3, 0]),
    ],
)
def test_parse_site_spec(aln, spec, expect):
    assert derive.parse_site_spec(aln, spec) == expect


@pytest.mark.parametrize(
    "spec,msg",
    [
        ("1-11", "Too large site ID"),
        ("0-2", "Negative site ID"),
        ("5-2", "Wrong range"),
        ("1-5\\0", "Wrong step size"),
        ("x", "Expecting integer"),
    ],
)
def test_parse_site_spec_errors(aln, spec, msg):
    with pytest.raises(AlignmentFormatError, match=msg):
        derive.parse_site_spec(aln, spec)


def test_parse_site_spec_codon(codon_aln):
    assert derive.parse_site_spec(codon_aln, "4-9") == [1, 2]
    with pytest.raises(AlignmentFormatError, match="multiple of 3"):
        derive.parse_site_spec(codon_aln, "1-4")


def test_extract_sites_from_spec(aln):
    new = derive.extract_sites_from_spec(aln, "1-2,9-10")
    assert new.get_sequence("s2") == "ACGA"


def test_build_retaining_sites(aln):
    kept = derive.build_retaining_sites(aln, site_ranges=[(2, 3), (10, 10)])
    assert numpy.flatnonzero(kept).tolist() == [1, 2, 9]
    no_gaps = derive.build_retaining_sites(aln, exclude_gaps=True)
    assert not no_gaps[6]
    variable = derive.build_retaining_sites(aln, exclude_const=True)
    assert numpy.flatnonzero(variable).tolist() == [1, 2, 4, 7, 9]
    informative = derive.build_retaining_sites(aln, exclude_uninformative=True)
    assert numpy.flatnonzero(informative).tolist() == [4]


def test_build_retaining_sites_reference(aln):
    # residues 6 to 7 of s1 skip its gap at site 7
    kept = derive.build_retaining_sites(aln, site_ranges=[(6, 7)], ref_seq_name="s1")
    assert numpy.flatnonzero(kept).tolist() == [5, 6, 7]
    with pytest.raises(AlignmentFormatError, match="not found"):
        derive.build_retaining_sites(aln, site_ranges=[(1, 2)], ref_seq_name="zz")


@pytest.mark.parametrize(
    "ranges,msg",
    [
        ([(0, 2)], "positive"),
        ([(3, 2)], "bigger than right"),
        ([(1, 11)], "alignment size"),
    ],
)
def test_build_retaining_sites_errors(aln, ranges, msg):
    with pytest.raises(AlignmentFormatError, match=msg):
        derive.build_retaining_sites(aln, site_ranges=ranges)


def test_right_residue_beyond_sequence_warns():
    aln = make_alignment({"a": "AC--", "b": "ACGT", "c": "ACGA"})
    with pytest.warns(AlignmentWarning, match="alignment length"):
        kept = derive.build_retaining_sites(
            aln, site_ranges=[(1, 3)], ref_seq_name="a"
        )
    assert kept.all()


@pytest.mark.parametrize(
    "spec,nsite",
    [(None, 10), ("GENE,5,5", 10), ("GENESITE,5,5", 10), ("4,2,6,3", 5)],
)
def test_bootstrap_frequency_conservation(aln, spec, nsite):
    boot = derive.create_bootstrap_alignment(aln, spec, rng=1)
    assert boot.num_sites == nsite
    assert _freq_sum(boot) == nsite
    assert set(boot.pattern_index) <= set(aln.pattern_index)
    assert boot.seq_names == aln.seq_names


def test_bootstrap_gene_blocks(aln):
    boot = derive.create_bootstrap_alignment(aln, "GENE,5,5", rng=3)
    first = boot.site_matrix()[:, :5].tolist()
    blocks = [aln.site_matrix()[:, :5].tolist(), aln.site_matrix()[:, 5:].tolist()]
    assert first in blocks


def test_bootstrap_seeded_reproducible(aln):
    one = derive.create_bootstrap_alignment(aln, rng=42)
    two = derive.create_bootstrap_alignment(aln, rng=42)
    assert one.site_pattern.tolist() == two.site_pattern.tolist()


@pytest.mark.parametrize(
    "spec,msg",
    [
        ("GENE,6,6", "exceeded alignment length"),
        ("4,2,6", "divisible by 2"),
        ("GENE,a", "invalid bootstrap"),
    ],
)
def test_bootstrap_spec_errors(aln, spec, msg):
    with pytest.raises(AlignmentFormatError, match=msg):
        derive.create_bootstrap_alignment(aln, spec, rng=0)


def test_bootstrap_site_state_freq(aln):
    aln.site_state_freq = [numpy.full(4, 0.25) for _ in aln.patterns]
    with pytest.raises(AlignmentFormatError, match="Unsupported bootstrap"):
        derive.create_bootstrap_alignment(aln, "GENE,5,5")
    boot = derive.create_bootstrap_alignment(aln, rng=0)
    assert len(boot.site_state_freq) == boot.num_patterns


@pytest.mark.parametrize("spec", [None, "GENE,5,5", "5,4,5,4"])
def test_bootstrap_pattern_freqs(aln, spec):
    freqs = derive.bootstrap_pattern_freqs(aln, spec, rng=7)
    assert len(freqs) == aln.num_patterns
    expect = 8 if spec == "5,4,5,4" else aln.num_sites
    assert freqs.sum() == expect


def test_bootstrap_pattern_freqs_scale(aln):
    freqs = derive.bootstrap_pattern_freqs(aln, "SCALE=2.5", rng=7)
    assert freqs.sum() == 25
    with pytest.raises(AlignmentFormatError):
        derive.bootstrap_pattern_freqs(aln, "SCALE=x")


def test_bootstrap_pattern_freqs_many_sites():
    aln = make_alignment(["a", "b", "c"], ["A" * 40, "A" * 40, "A" * 39 + "C"])
    freqs = derive.bootstrap_pattern_freqs(aln, rng=0)
    assert freqs.sum() == 40
    assert len(freqs) == 2


def test_concatenate_alignment(aln):
    other = make_alignment({"s2": "TT", "s1": "GG", "s4": "CC", "s3": "AA"})
    both = derive.concatenate_alignment(aln, other)
    assert both.num_sites == 12
    assert both.get_sequence("s1") == SEQS["s1"] + "GG"
    assert both.get_sequence("s3") == SEQS["s3"] + "AA"
    assert _freq_sum(both) == 12


def test_concatenate_incompatible(aln):
    fewer = make_alignment({"s1": "A", "s2": "A", "s3": "A"})
    with pytest.raises(IncompatibleAlignmentError, match="number of sequences"):
        derive.concatenate_alignment(aln, fewer)
    renamed = make_alignment({"s1": "A", "s2": "A", "s3": "A", "x": "A"})
    with pytest.raises(IncompatibleAlignmentError, match="does not contain taxon"):
        derive.concatenate_alignment(aln, renamed)
    protein = make_alignment(
        {"s1": "MK", "s2": "MK", "s3": "ML", "s4": "WW"}, sequence_type="AA"
    )
    with pytest.raises(IncompatibleAlignmentError):
        derive.concatenate_alignment(aln, protein)


def _counts_alignment(*sites):
    lines = [f"COUNTSFILE NPOP 2 NSITES {len(sites)}", "CHROM POS p1 p2"]
    lines.extend(f"chr1 {i + 1} {site}" for i, site in enumerate(sites))
    return read_counts(lines, "HKY+P")


def test_concatenate_pomo_state_spaces():
    first = _counts_alignment("4,0,0,0 0,5,0,0", "4,0,0,0 0,5,0,0")
    second = _counts_alignment("4,0,0,0 0,5,0,0", "6,0,0,0 0,0,5,0")
    assert first.num_states == second.num_states
    assert first.unknown_state != second.unknown_state
    with pytest.raises(IncompatibleAlignmentError, match="Unknown state"):
        derive.concatenate_alignment(first, second)
    with pytest.raises(IncompatibleAlignmentError, match="Unknown state"):
        derive.create_gap_masked_alignment(second, first)

    # same unknown state, different compound states
    third = _counts_alignment("6,0,0,0 0,0,5,0", "6,0,0,0 0,0,5,0")
    assert first.unknown_state == third.unknown_state
    with pytest.raises(IncompatibleAlignmentError, match="sampled states"):
        derive.concatenate_alignment(first, third)

    both = derive.concatenate_alignment(first, first.copy())
    assert both.num_sites == 4
    assert both.unknown_state == first.unknown_state


def test_create_gap_masked_alignment(aln):
    mask = make_alignment(
        {
            "s4": "-AAAAAAAAA",
            "s1": "AAAAAAAAA-",
            "s2": "AAAAAAAAAA",
            "s3": "AAAAAAAAAA",
        }
    )
    masked = derive.create_gap_masked_alignment(mask, aln)
    assert masked.get_sequence("s1") == SEQS["s1"][:-1] + "-"
    assert masked.get_sequence("s4") == "-" + SEQS["s4"][1:]
    assert masked.get_sequence("s2") == SEQS["s2"]


def test_create_gap_masked_incompatible(aln):
    short = make_alignment({"s1": "A", "s2": "A", "s3": "A", "s4": "A"})
    with pytest.raises(IncompatibleAlignmentError, match="number of sites"):
        derive.create_gap_masked_alignment(short, aln)


def test_shuffle_alignment(aln):
    shuffled = derive.shuffle_alignment(aln, rng=5)
    assert sorted(shuffled.site_pattern.tolist()) == sorted(aln.site_pattern.tolist())
    assert shuffled.get_pattern_freq().tolist() == aln.get_pattern_freq().tolist()


def test_convert_to_codon():
    dna = make_alignment(
        {"a": "ATGAAA", "b": "ATGAAG", "c": "ATGNNN"}, sequence_type="DNA"
    )
    codon = derive.convert_to_codon_or_aa(dna, code_id=1)
    assert codon.seq_type is SeqType.CODON
    assert codon.to_dict() == {"a": "ATGAAA", "b": "ATGAAG", "c": "ATG---"}
    aa = derive.convert_to_codon_or_aa(dna, nt2aa=True)
    assert aa.to_dict() == {"a": "MK", "b": "MK", "c": "M-"}


def test_convert_to_codon_errors():
    dna = make_alignment({"a": "ATGTAA", "b": "ATGAAG", "c": "ATGAAA"})
    with pytest.raises(AlignmentFormatError, match="stop codon TAA"):
        derive.convert_to_codon_or_aa(dna)
    odd = make_alignment({"a": "ATGA", "b": "ATGA", "c": "ATGA"})
    with pytest.raises(AlignmentFormatError, match="divisible by 3"):
        derive.convert_to_codon_or_aa(odd)
    protein = make_alignment(
        {"a": "MKW", "b": "MKW", "c": "MLW"}, sequence_type="AA"
    )
    with pytest.raises(IncompatibleAlignmentError):
        derive.convert_to_codon_or_aa(protein)


def test_convert_codon_to_aa(codon_aln):
    aa = derive.convert_codon_to_aa(codon_aln)
    assert aa.seq_type is SeqType.PROTEIN
    assert aa.to_dict() == {"a": "MKP", "b": "MKP", "c": "MF-"}


def test_convert_codon_to_dna(codon_aln):
    dna = derive.convert_codon_to_dna(codon_aln)
    assert dna.seq_type is SeqType.DNA
    assert dna.to_dict() == {"a": "ATGAAACCC", "b": "ATGAAGCCC", "c": "ATGTTT---"}
    assert _freq_sum(dna) == 9


def test_convert_rejects_non_codon(aln):
    with pytest.raises(IncompatibleAlignmentError):
        derive.convert_codon_to_aa(aln)
    with pytest.raises(IncompatibleAlignmentError):
        derive.convert_codon_to_dna(aln)
