"""Alignment algebra, every operation returns a new PatternAlignment."""

import re
import typing
import warnings

import numpy

from phylopat.core.alignment import (
    AlignmentFormatError,
    AlignmentWarning,
    ErrorCollector,
    IncompatibleAlignmentError,
    PatternAlignment,
)
from phylopat.core.pattern import Pattern
from phylopat.core.state import (
    STATE_INVALID,
    SeqType,
    StateCodec,
    round_half_up,
)

RandomSource = typing.Union[int, numpy.random.Generator, None]

_INT = re.compile(r"\s*([+-]?\d+)")


def _fill(new: PatternAlignment, columns: typing.Iterable) -> PatternAlignment:
    """adds one pattern per site in order, then computes flags in bulk"""
    old_count = new.num_patterns
    for site, states in enumerate(columns):
        pattern = states if isinstance(states, Pattern) else Pattern(states)
        new.add_pattern_lazy(pattern, site)
    new.update_patterns(old_count)
    new.count_const_site()
    return new


def _sites_as_patterns(aln: PatternAlignment, site_ids: typing.Iterable[int]):
    for site in site_ids:
        yield aln.patterns[aln.site_pattern[site]]


def extract_sub_alignment(
    aln: PatternAlignment, seq_ids: typing.Sequence[int], min_true_char: int = 0
) -> PatternAlignment:
    """the alignment of a subset, or reordering, of the sequences

    Parameters
    ----------
    aln
        source alignment
    seq_ids
        indices of the sequences to keep, in their new order
    min_true_char
        sites with fewer non-gap entries in the subset are dropped
    """
    seq_ids = list(seq_ids)
    assert all(0 <= i < aln.num_seqs for i in seq_ids)
    new = PatternAlignment.empty_like(
        aln, seq_names=[aln.seq_names[i] for i in seq_ids], num_sites=aln.num_sites
    )
    projected = [p.take(seq_ids) for p in aln.patterns]
    unknown = aln.unknown_state
    kept = []
    for index in aln.site_pattern.tolist():
        pattern = projected[index]
        if len(seq_ids) - pattern.compute_gap_char(unknown) >= min_true_char:
            kept.append(pattern)
    new.resize_sites(len(kept))
    _fill(new, kept)
    assert new.num_patterns <= aln.num_patterns
    return new


def extract_patterns(
    aln: PatternAlignment, pattern_ids: typing.Sequence[int]
) -> PatternAlignment:
    """an alignment of the selected patterns, each at its full frequency"""
    freqs = [aln.patterns[i].frequency for i in pattern_ids]
    new = PatternAlignment.empty_like(aln, num_sites=sum(freqs))
    site = 0
    for index, freq in zip(pattern_ids, freqs):
        assert 0 <= index < aln.num_patterns
        new.add_pattern(aln.patterns[index], site, freq)
        slot = new.pattern_index[aln.patterns[index]]
        new.site_pattern[site : site + freq] = slot
        site += freq
    new.resize_sites(site)
    new.count_const_site()
    return new


def extract_pattern_freqs(
    aln: PatternAlignment, freqs: typing.Sequence[int]
) -> PatternAlignment:
    """an alignment where pattern i of aln occurs freqs[i] times"""
    assert len(freqs) <= aln.num_patterns
    freqs = [int(f) for f in freqs]
    new = PatternAlignment.empty_like(aln, num_sites=sum(freqs))
    site = 0
    for index, freq in enumerate(freqs):
        if not freq:
            continue
        assert freq > 0
        new.add_pattern(aln.patterns[index], site, freq)
        slot = new.pattern_index[aln.patterns[index]]
        new.site_pattern[site : site + freq] = slot
        site += freq
    new.resize_sites(site)
    new.count_const_site()
    return new


def extract_sites(
    aln: PatternAlignment, site_ids: typing.Sequence[int]
) -> PatternAlignment:
    """an alignment of the given sites, in the given order"""
    new = PatternAlignment.empty_like(aln, num_sites=len(site_ids))
    return _fill(new, _sites_as_patterns(aln, site_ids))


def _parse_int(spec: str, pos: int) -> tuple[int, int]:
    match = _INT.match(spec, pos)
    if match is None:
        raise AlignmentFormatError(
            f'Expecting integer, but found "{spec[pos:]}" instead'
        )
    return int(match.group(1)), match.end()


def _skip_blanks(spec: str, pos: int) -> int:
    while pos < len(spec) and spec[pos] == " ":
        pos += 1
    return pos


def parse_site_spec(aln: PatternAlignment, spec: str) -> list[int]:
    """0-based site indices described by a range list

    Parameters
    ----------
    spec
        comma or space separated ranges ``lower[-upper][\\step]`` with
        1-based inclusive bounds, ``.`` as upper bound means the last site.
        For codon alignments positions refer to nucleotides.
    """
    is_codon = aln.seq_type is SeqType.CODON
    nsite = aln.num_sites
    site_ids = []
    nchars = 0
    pos = 0
    while pos < len(spec):
        lower, pos = _parse_int(spec, pos)
        upper, step = lower, 1
        pos = _skip_blanks(spec, pos)
        if pos < len(spec) and spec[pos] == "-":
            pos = _skip_blanks(spec, pos + 1)
            if spec.startswith(".", pos):
                upper = nsite
                pos += 1
            else:
                upper, pos = _parse_int(spec, pos)
            pos = _skip_blanks(spec, pos)
            if spec.startswith("\\", pos):
                step, pos = _parse_int(spec, pos + 1)

        lower -= 1
        upper -= 1
        if step >= 1:
            nchars += (upper - lower + 1) // step
        if is_codon:
            lower = int(lower / 3)
            upper = int(upper / 3)
        if upper >= nsite:
            raise AlignmentFormatError("Too large site ID")
        if lower < 0:
            raise AlignmentFormatError("Negative site ID")
        if lower > upper:
            raise AlignmentFormatError("Wrong range")
        if step < 1:
            raise AlignmentFormatError("Wrong step size")
        site_ids.extend(range(lower, upper + 1, step))
        if spec.startswith((",", " "), pos):
            pos += 1

    if is_codon and nchars % 3:
        raise AlignmentFormatError(
            f"Range {spec} length is not multiple of 3 (necessary for codon data)"
        )
    return site_ids


def extract_sites_from_spec(aln: PatternAlignment, spec: str) -> PatternAlignment:
    """extract_sites on the sites of a range list, see parse_site_spec"""
    return extract_sites(aln, parse_site_spec(aln, spec))


def _site_from_residue(
    aln: PatternAlignment, seq_id: int, left: int, right: int
) -> tuple[int, int]:
    """converts residue positions of one sequence into site positions"""
    residue_sites = numpy.flatnonzero(aln.site_matrix()[seq_id] != aln.unknown_state)
    if left >= len(residue_sites):
        raise AlignmentFormatError("Left residue range is too high")
    site_left = int(residue_sites[left])
    if right > len(residue_sites):
        warnings.warn(
            "Right residue range is set to alignment length",
            AlignmentWarning,
            stacklevel=3,
        )
        site_right = aln.num_sites
    else:
        site_right = int(residue_sites[right - 1]) + 1
    return site_left, site_right


def build_retaining_sites(
    aln: PatternAlignment,
    site_ranges: typing.Sequence[tuple[int, int]] | None = None,
    exclude_gaps: bool = False,
    exclude_const: bool = False,
    exclude_uninformative: bool = False,
    ref_seq_name: str | None = None,
) -> numpy.ndarray:
    """boolean mask of sites to keep

    Parameters
    ----------
    aln
        the alignment
    site_ranges
        1-based inclusive (left, right) ranges to keep, all sites if None
    exclude_gaps
        drop sites with any gap or ambiguous entry
    exclude_const
        drop invariant sites
    exclude_uninformative
        drop parsimony uninformative sites
    ref_seq_name
        site_ranges are residue positions of this sequence
    """
    nsite = aln.num_sites
    if site_ranges is None:
        kept = numpy.ones(nsite, dtype=bool)
    else:
        seq_id = -1
        if ref_seq_name:
            seq_id = aln.get_seq_id(ref_seq_name)
            if seq_id < 0:
                raise AlignmentFormatError(
                    f"Reference sequence name not found: {ref_seq_name}"
                )
        kept = numpy.zeros(nsite, dtype=bool)
        for left, right in site_ranges:
            if left <= 0 or right <= 0:
                raise AlignmentFormatError("Range must be positive")
            if left > right:
                raise AlignmentFormatError("Left range is bigger than right range")
            left -= 1
            if right > nsite:
                raise AlignmentFormatError("Right range is bigger than alignment size")
            if seq_id >= 0:
                left, right = _site_from_residue(aln, seq_id, left, right)
            kept[left:right] = True

    patterns = [aln.patterns[i] for i in aln.site_pattern.tolist()]
    if exclude_gaps:
        gappy = [bool((p.states >= aln.num_states).any()) for p in patterns]
        kept &= ~numpy.array(gappy, dtype=bool)
    if exclude_const:
        kept &= ~numpy.array([p.is_invariant for p in patterns], dtype=bool)
    if exclude_uninformative:
        kept &= numpy.array([p.is_informative for p in patterns], dtype=bool)
    return kept


def _parse_lengths(text: str) -> list[int]:
    try:
        return [int(v) for v in text.split(",") if v.strip()]
    except ValueError as err:
        raise AlignmentFormatError(
            f"invalid bootstrap specification {text!r}"
        ) from err


def _block_starts(lengths: list[int], nsite: int) -> list[int]:
    starts = numpy.cumsum([0] + lengths).tolist()
    if starts[-1] > nsite:
        raise AlignmentFormatError("Sum of lengths exceeded alignment length")
    return starts[:-1]


def _resample_sites(
    aln: PatternAlignment, spec: str | None, rng: numpy.random.Generator
) -> list[int]:
    """source sites of a bootstrap replicate, in output order"""
    nsite = aln.num_sites
    if not spec:
        sample = rng.multinomial(nsite, numpy.full(nsite, 1.0 / nsite))
        return numpy.repeat(numpy.arange(nsite), sample).tolist()

    if spec.startswith("GENESITE,"):
        lengths = _parse_lengths(spec[9:])
        starts = _block_starts(lengths, nsite)
        sites = []
        for _ in lengths:
            part = int(rng.integers(len(lengths)))
            draws = rng.integers(lengths[part], size=lengths[part]) + starts[part]
            sites.extend(draws.tolist())
        return sites

    if spec.startswith("GENE,"):
        lengths = _parse_lengths(spec[5:])
        starts = _block_starts(lengths, nsite)
        sites = []
        for _ in lengths:
            part = int(rng.integers(len(lengths)))
            sites.extend(range(starts[part], starts[part] + lengths[part]))
        return sites

    values = _parse_lengths(spec)
    if len(values) % 2:
        raise AlignmentFormatError(
            "Bootstrap specification length is not divisible by 2"
        )
    sites = []
    begin = 0
    for length, count in zip(values[::2], values[1::2]):
        if begin + length > nsite:
            raise AlignmentFormatError("Sum of lengths exceeded alignment length")
        sites.extend((rng.integers(length, size=count) + begin).tolist())
        begin += length
    return sites


def create_bootstrap_alignment(
    aln: PatternAlignment, spec: str | None = None, rng: RandomSource = None
) -> PatternAlignment:
    """a bootstrap replicate of aln

    Parameters
    ----------
    aln
        the alignment to resample
    spec
        None resamples sites, ``GENE,l1,l2,...`` resamples whole blocks of
        the given lengths, ``GENESITE,l1,l2,...`` resamples blocks then the
        sites within them, ``len1,count1,len2,count2,...`` draws count sites
        from each consecutive block of length len
    rng
        seed or numpy Generator

    Notes
    -----
    Resampled sites are numbered consecutively in the order drawn.
    """
    rng = numpy.random.default_rng(rng)
    if aln.site_state_freq and spec:
        raise AlignmentFormatError(
            "Unsupported bootstrap feature, site specific state frequencies "
            "can only be resampled by the plain bootstrap"
        )
    sites = _resample_sites(aln, spec, rng)
    new = PatternAlignment.empty_like(aln, num_sites=len(sites))
    old_count = new.num_patterns
    for out_site, site in enumerate(sites):
        index = aln.get_pattern_id(site)
        if new.add_pattern_lazy(aln.patterns[index], out_site) and aln.site_state_freq:
            new.site_state_freq.append(aln.site_state_freq[index].copy())
    new.update_patterns(old_count)
    new.count_const_site()
    return new


def bootstrap_pattern_freqs(
    aln: PatternAlignment, spec: str | None = None, rng: RandomSource = None
) -> numpy.ndarray:
    """resampled pattern frequencies, without building an alignment

    Parameters
    ----------
    spec
        as for create_bootstrap_alignment, plus ``SCALE=x`` which draws
        round(x * num_sites) sites uniformly
    rng
        seed or numpy Generator

    Notes
    -----
    When the alignment has many more sites than patterns the plain
    bootstrap draws pattern frequencies from a multinomial over the
    pattern frequencies directly.
    """
    rng = numpy.random.default_rng(rng)
    nsite = aln.num_sites
    nptn = aln.num_patterns
    if spec and spec.startswith("SCALE="):
        try:
            scale = float(spec[6:])
        except ValueError as err:
            raise AlignmentFormatError(f"invalid scale in {spec!r}") from err
        sites = rng.integers(nsite, size=round_half_up(scale * nsite))
    elif not spec and nsite // 8 >= nptn:
        probs = aln.get_pattern_freq() / nsite
        return rng.multinomial(nsite, probs).astype(numpy.int64)
    else:
        sites = numpy.array(_resample_sites(aln, spec, rng), dtype=numpy.int64)
    return numpy.bincount(aln.site_pattern[sites], minlength=nptn).astype(numpy.int64)


def _name_map(aln: PatternAlignment, other: PatternAlignment, msg: str) -> list[int]:
    mapping = []
    for name in aln.seq_names:
        seq_id = other.get_seq_id(name)
        if seq_id < 0:
            raise IncompatibleAlignmentError(f"{msg} {name}")
        mapping.append(seq_id)
    return mapping


def concatenate_alignment(
    aln: PatternAlignment, other: PatternAlignment
) -> PatternAlignment:
    """sites of other appended to those of aln, sequences matched by name"""
    if aln.num_seqs != other.num_seqs:
        raise IncompatibleAlignmentError(
            "Different number of sequences in two alignments"
        )
    aln.check_compatible(other, check_sites=False)
    name_map = _name_map(aln, other, "The other alignment does not contain taxon")
    columns = list(_sites_as_patterns(aln, range(aln.num_sites)))
    remapped = [p.take(name_map) for p in other.patterns]
    columns.extend(remapped[i] for i in other.site_pattern.tolist())
    new = PatternAlignment.empty_like(aln, num_sites=len(columns))
    return _fill(new, columns)


def create_gap_masked_alignment(
    masked: PatternAlignment, aln: PatternAlignment
) -> PatternAlignment:
    """aln with entries set to unknown wherever masked has an unknown state

    Sequences are matched by name.
    """
    if masked.num_seqs != aln.num_seqs:
        raise IncompatibleAlignmentError(
            "Different number of sequences in masked alignment"
        )
    if masked.num_sites != aln.num_sites:
        raise IncompatibleAlignmentError(
            "Different number of sites in masked alignment"
        )
    aln.check_compatible(masked, check_sites=False)
    name_map = _name_map(aln, masked, "Masked alignment does not contain taxon")
    states = aln.site_matrix().copy()
    mask = masked.site_matrix()[name_map] == masked.unknown_state
    states[mask] = aln.unknown_state
    new = PatternAlignment.empty_like(aln, num_sites=aln.num_sites)
    return _fill(new, states.T)


def shuffle_alignment(
    aln: PatternAlignment, rng: RandomSource = None
) -> PatternAlignment:
    """a copy of aln with the site order permuted"""
    rng = numpy.random.default_rng(rng)
    new = aln.copy()
    rng.shuffle(new.site_pattern)
    return new


def convert_to_codon_or_aa(
    aln: PatternAlignment, code_id: str | int | None = None, nt2aa: bool = False
) -> PatternAlignment:
    """a DNA alignment as codons, or translated into amino acids

    Raises
    ------
    IncompatibleAlignmentError
        if aln is not DNA
    AlignmentFormatError
        if the length is not a multiple of 3 or stop codons or invalid
        states are present
    """
    if aln.seq_type is not SeqType.DNA:
        raise IncompatibleAlignmentError(
            "Cannot convert non-DNA alignment into codon alignment"
        )
    if aln.num_sites % 3:
        raise AlignmentFormatError(
            "Sequence length is not divisible by 3 when converting to codon "
            "sequences"
        )
    if nt2aa:
        codec = StateCodec(SeqType.PROTEIN, genetic_code=code_id, nt2aa=True)
    else:
        codec = StateCodec(SeqType.CODON, genetic_code=code_id)

    new = PatternAlignment(aln.seq_names, codec=codec, config=aln.config, name=aln.name)
    new.logger = aln.logger
    new.resize_sites(aln.num_sites // 3)
    errors = ErrorCollector(max_lines=aln.config.max_error_lines)
    ambiguous = ErrorCollector(max_lines=aln.config.max_error_lines)
    lookup = codec.codon_to_aa_state if nt2aa else codec.non_stop_codon
    matrix = aln.site_matrix()
    dna_unknown = aln.unknown_state
    columns = []
    for site in range(0, aln.num_sites, 3):
        triplets = matrix[:, site : site + 3]
        column = numpy.full(aln.num_seqs, codec.unknown_state, dtype=numpy.int32)
        for seq, nucs in enumerate(triplets.tolist()):
            name = aln.seq_names[seq]
            codon = "".join(aln.codec.convert_state_back(n) for n in nucs)
            if all(0 <= n < 4 for n in nucs):
                raw = nucs[0] * 16 + nucs[1] * 4 + nucs[2]
                if codec.is_stop_codon(raw):
                    errors.add(
                        f"Sequence {name} has stop codon {codon} at site {site + 1}"
                    )
                else:
                    column[seq] = lookup[raw]
            elif STATE_INVALID in nucs:
                column[seq] = STATE_INVALID
                errors.add(
                    f"Sequence {name} has invalid character {codon} at site {site + 1}"
                )
            elif any(n != dna_unknown for n in nucs):
                ambiguous.add(
                    f"Sequence {name} has ambiguous character {codon} at site "
                    f"{site + 1}"
                )
        columns.append(column)
    ambiguous.warn()
    errors.raise_errors()
    return _fill(new, columns)


def convert_codon_to_aa(aln: PatternAlignment) -> PatternAlignment:
    """translates a codon alignment"""
    if aln.seq_type is not SeqType.CODON:
        raise IncompatibleAlignmentError("Cannot convert non-codon alignment into AA")
    codec = StateCodec(SeqType.PROTEIN)
    new = PatternAlignment(aln.seq_names, codec=codec, config=aln.config, name=aln.name)
    new.logger = aln.logger
    new.resize_sites(aln.num_sites)
    source = aln.codec
    translate = numpy.append(
        source.codon_to_aa_state[source.codon_table], codec.unknown_state
    ).astype(numpy.int32)
    translate_index = numpy.minimum(aln.site_matrix(), source.num_states)
    states = translate[translate_index]
    return _fill(new, states.T)


def convert_codon_to_dna(aln: PatternAlignment) -> PatternAlignment:
    """expands every codon site into three nucleotide sites"""
    if aln.seq_type is not SeqType.CODON:
        raise IncompatibleAlignmentError("Cannot convert non-codon alignment into DNA")
    codec = StateCodec(SeqType.DNA)
    new = PatternAlignment(aln.seq_names, codec=codec, config=aln.config, name=aln.name)
    new.logger = aln.logger
    new.resize_sites(aln.num_sites * 3)
    table = aln.codec.codon_table
    unknown = codec.unknown_state
    nucs = numpy.stack([table // 16, (table % 16) // 4, table % 4], axis=1)
    nucs = numpy.vstack([nucs, [unknown] * 3]).astype(numpy.int32)
    index = numpy.minimum(aln.site_matrix(), aln.num_states)
    expanded = nucs[index]  # seqs x sites x 3
    columns = expanded.reshape(aln.num_seqs, -1).T
    return _fill(new, columns)
