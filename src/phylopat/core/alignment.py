"""Frequency-compressed alignment of unique site patterns.

An alignment of N sequences by L sites is held as the list of its distinct
columns (``PatternAlignment.patterns``), each with the number of sites it
occurs at, plus ``site_pattern`` mapping every site onto its pattern slot.
Patterns are kept in the order their first site appears.
"""

import dataclasses
import typing
import warnings

import numpy
import numpy.typing as npt

from scitrack import CachingLogger
from typing_extensions import Self

from phylopat.core.config import DEFAULT_CONFIG, AlignmentConfig
from phylopat.core.pattern import Pattern, compute_flags, pattern_flags
from phylopat.core.state import (
    DNA_UNKNOWN,
    STATE_INVALID,
    SeqType,
    SequenceTypeError,
    StateCodec,
    detect_sequence_type,
    get_morph_states,
    parse_sequence_type,
    validate_morph_states,
)
from phylopat.util import parallel
from phylopat.util.misc import progress_series

MAX_GENETIC_DIST = 9.0
SITE_BLOCK_SIZE = 4096
_PARS_BITS = 32

_NEXUS_DATATYPES = {
    SeqType.DNA: "nucleotide",
    SeqType.CODON: "nucleotide",
    SeqType.MORPH: "standard",
    SeqType.BINARY: "standard",
    SeqType.PROTEIN: "protein",
}


class AlignmentWarning(UserWarning):
    """non-fatal problems found in alignment data"""


class AlignmentError(Exception):
    pass


class AlignmentFormatError(ValueError, AlignmentError):
    """alignment data that cannot be turned into patterns

    Attributes
    ----------
    errors
        the individual problems, one line each
    """

    def __init__(self, message: str, errors: typing.Sequence[str] = ()):
        super().__init__(message)
        self.errors = list(errors) or [message]


class IncompatibleAlignmentError(ValueError, AlignmentError):
    pass


@dataclasses.dataclass
class ErrorCollector:
    """problem messages with a cap on how many are kept verbatim

    Messages beyond ``max_lines`` are counted and replaced by a single
    "...many more..." line.
    """

    max_lines: int = 100
    lines: list[str] = dataclasses.field(default_factory=list)
    count: int = 0

    def __bool__(self) -> bool:
        return self.count > 0

    def add(self, message: str) -> None:
        if self.count < self.max_lines:
            self.lines.append(message)
        elif self.count == self.max_lines:
            self.lines.append("...many more...")
        self.count += 1

    def extend(self, messages: typing.Iterable[str]) -> None:
        for message in messages:
            self.add(message)

    def text(self) -> str:
        return "\n".join(self.lines)

    def raise_errors(self) -> None:
        if self:
            raise AlignmentFormatError(self.text(), errors=self.lines)

    def warn(self, stacklevel: int = 3) -> None:
        if self:
            warnings.warn(self.text(), AlignmentWarning, stacklevel=stacklevel)


def check_logger(logger: CachingLogger | None) -> CachingLogger | None:
    if logger is not None and not isinstance(logger, CachingLogger):
        raise TypeError(f"logger must be of type CachingLogger not {type(logger)}")
    return logger


def log_note(logger: CachingLogger | None, text: str, label: str) -> None:
    """writes text to logger, if there is one"""
    if logger is not None:
        logger.log_message(text, label=label)


def _char_table(codec: StateCodec, seq_type: SeqType | None = None) -> numpy.ndarray:
    """state of every 8-bit character code"""
    return numpy.array(
        [codec.convert_state(chr(i), seq_type) for i in range(256)], dtype=numpy.int32
    )


def _char_codes(seq: str) -> numpy.ndarray:
    codes = numpy.fromiter(map(ord, seq), dtype=numpy.int64, count=len(seq))
    # everything beyond latin-1 is invalid for every sequence type
    return numpy.minimum(codes, 255)


@dataclasses.dataclass
class SiteBlock:
    """a contiguous range of alignment columns to be transcribed"""

    codec: StateCodec
    names: list[str]
    rows: list[str]
    first_char: int


@dataclasses.dataclass
class TranscribedBlock:
    matrix: npt.NDArray[numpy.int32]
    errors: dict[int, list[str]]
    warnings: list[str]
    flags: tuple


def _codon_row(
    codec: StateCodec, dna_table: numpy.ndarray, row: str
) -> tuple[numpy.ndarray, numpy.ndarray, numpy.ndarray, numpy.ndarray]:
    """codon states of one sequence fragment plus stop, invalid and
    ambiguous masks"""
    nucs = dna_table[_char_codes(row)].reshape(-1, 3)
    concrete = ((nucs >= 0) & (nucs < 4)).all(axis=1)
    invalid = (nucs == STATE_INVALID).any(axis=1) & ~concrete
    all_unknown = (nucs == DNA_UNKNOWN).all(axis=1)
    raw = numpy.where(concrete, nucs[:, 0] * 16 + nucs[:, 1] * 4 + nucs[:, 2], 0)
    stop_table = numpy.array([codec.is_stop_codon(i) for i in range(64)], dtype=bool)
    stop = concrete & stop_table[raw]
    lookup = codec.codon_to_aa_state if codec.nt2aa else codec.non_stop_codon
    states = numpy.full(len(nucs), codec.unknown_state, dtype=numpy.int32)
    sense = concrete & ~stop
    states[sense] = lookup[raw[sense]]
    states[invalid] = STATE_INVALID
    ambiguous = ~concrete & ~invalid & ~all_unknown
    return states, stop, invalid, ambiguous


def transcribe_block(block: SiteBlock) -> TranscribedBlock:
    """converts a block of columns into states

    Returns
    -------
    TranscribedBlock with one row per site, the error messages of sites
    with invalid characters or stop codons, ambiguity warnings and the
    pattern flags of every row
    """
    codec = block.codec
    step = codec.step
    nseq = len(block.rows)
    nsite = len(block.rows[0]) // step if nseq else 0
    matrix = numpy.empty((nseq, nsite), dtype=numpy.int32)
    problems = []
    notes = []
    if step == 3:
        dna_table = _char_table(codec, SeqType.CODON)
        for seq, (name, row) in enumerate(zip(block.names, block.rows)):
            states, stop, invalid, ambiguous = _codon_row(codec, dna_table, row)
            matrix[seq] = states
            for site in numpy.flatnonzero(stop | invalid | ambiguous).tolist():
                pos = 3 * site
                codon = row[pos : pos + 3]
                where = f"at site {block.first_char + pos + 1}"
                if stop[site]:
                    message = f"Sequence {name} has stop codon {codon} {where}"
                    problems.append((site, seq, message))
                elif invalid[site]:
                    message = f"Sequence {name} has invalid character {codon} {where}"
                    problems.append((site, seq, message))
                else:
                    message = f"Sequence {name} has ambiguous character {codon} {where}"
                    notes.append((site, seq, message))
    else:
        table = _char_table(codec)
        for seq, (name, row) in enumerate(zip(block.names, block.rows)):
            states = table[_char_codes(row)]
            matrix[seq] = states
            for site in numpy.flatnonzero(states == STATE_INVALID).tolist():
                problems.append(
                    (
                        site,
                        seq,
                        f"Sequence {name} has invalid character {row[site]} at site "
                        f"{block.first_char + site + 1}",
                    )
                )

    errors: dict[int, list[str]] = {}
    for site, _, message in sorted(problems, key=lambda x: x[:2]):
        errors.setdefault(site, []).append(message)

    columns = numpy.ascontiguousarray(matrix.T)
    flags = pattern_flags(
        columns,
        codec.appearance_table(),
        codec.resolved_states(),
        codec.num_states,
        codec.unknown_state,
    )
    return TranscribedBlock(
        matrix=columns,
        errors=errors,
        warnings=[m for *_, m in sorted(notes, key=lambda x: x[:2])],
        flags=flags,
    )


def check_sequence_names(names: typing.Sequence[str]) -> None:
    """raises AlignmentFormatError for empty or duplicated names"""
    errors = []
    seen = set()
    for i, name in enumerate(names):
        if not name:
            errors.append(f"Sequence number {i + 1} has no names")
        if name in seen:
            errors.append(f"The sequence name {name} is duplicated")
        seen.add(name)
    if errors:
        raise AlignmentFormatError("\n".join(errors), errors=errors)


def check_sequence_lengths(
    names: typing.Sequence[str], sequences: typing.Sequence[str], nsite: int
) -> None:
    errors = []
    for name, seq in zip(names, sequences):
        if len(seq) != nsite:
            amount = "not enough" if len(seq) < nsite else "too many"
            errors.append(f"Sequence {name} contains {amount} characters ({len(seq)})")
    if errors:
        raise AlignmentFormatError("\n".join(errors), errors=errors)


def check_sequence_characters(
    names: typing.Sequence[str], sequences: typing.Sequence[str]
) -> None:
    """raises AlignmentFormatError for characters outside ASCII, which no
    sequence type accepts and whose upper case may differ in length"""
    errors = []
    for name, seq in zip(names, sequences):
        if seq.isascii():
            continue
        site = next(i for i, c in enumerate(seq) if not c.isascii())
        errors.append(
            f"Sequence {name} has invalid character {seq[site]} at site {site + 1}"
        )
    if errors:
        raise AlignmentFormatError("\n".join(errors), errors=errors)


def check_data_type(
    sequences: typing.Sequence[str], sequence_type: str | None = None
) -> StateCodec:
    """returns the codec for the detected or user specified sequence type

    Parameters
    ----------
    sequences
        upper case sequences
    sequence_type
        a type string accepted by parse_sequence_type, None means detect
    """
    detected = detect_sequence_type(sequences)
    if not sequence_type:
        if detected is SeqType.UNKNOWN:
            raise SequenceTypeError("Unknown sequence type.")
        num_states = get_morph_states(sequences) if detected is SeqType.MORPH else None
        return StateCodec(detected, num_states=num_states)

    user_type, code_id, nt2aa = parse_sequence_type(sequence_type)
    if user_type is SeqType.CODON:
        if detected is not SeqType.DNA:
            warnings.warn(
                "You want to use codon models but the sequences were not "
                "detected as DNA",
                AlignmentWarning,
                stacklevel=3,
            )
        return StateCodec(SeqType.CODON, genetic_code=code_id)
    if nt2aa:
        if detected is not SeqType.DNA:
            warnings.warn(
                "Sequence type detected as non DNA!", AlignmentWarning, stacklevel=3
            )
        return StateCodec(SeqType.PROTEIN, genetic_code=code_id, nt2aa=True)
    if user_type is SeqType.POMO:
        raise SequenceTypeError("PoMo alignments are built from counts files")
    if detected is not user_type:
        warnings.warn(
            f"Your specified sequence type ({user_type.value}) is different "
            f"from the detected one ({detected.value})",
            AlignmentWarning,
            stacklevel=3,
        )
    num_states = None
    if user_type is SeqType.MORPH:
        num_states = validate_morph_states(get_morph_states(sequences))
    return StateCodec(user_type, num_states=num_states)


class PatternAlignment:
    """an alignment stored as its unique columns

    Attributes
    ----------
    seq_names
        sequence names, in row order
    patterns
        the distinct columns in first-seen order
    site_pattern
        pattern slot of every site
    pattern_index
        maps a pattern onto its slot
    codec
        the state space shared by all patterns
    """

    def __init__(
        self,
        seq_names: typing.Sequence[str] = (),
        codec: StateCodec | None = None,
        config: AlignmentConfig | None = None,
        name: str = "",
        logger: CachingLogger | None = None,
    ) -> None:
        self.seq_names = list(seq_names)
        self.codec = codec
        self.config = config or DEFAULT_CONFIG
        self.name = name
        self.logger = check_logger(logger)
        self.patterns: list[Pattern] = []
        self.pattern_index: dict[Pattern, int] = {}
        self.site_pattern = numpy.zeros(0, dtype=numpy.int64)
        self.num_const_sites = 0
        self.num_informative_sites = 0
        self.num_invariant_sites = 0
        self.num_variant_sites = 0
        self.num_parsimony_sites = 0
        self.frac_const_sites = 0.0
        self.frac_invariant_sites = 0.0
        self.num_gaps_only = 0
        self.pars_lower_bound: numpy.ndarray | None = None
        self.ordered_patterns: list[Pattern] = []
        self.site_state_freq: list[numpy.ndarray] = []
        self.singleton_parsimony_states = numpy.zeros(
            len(self.seq_names), dtype=numpy.int64
        )
        self._seq_hashes: list[int] | None = None

    @classmethod
    def from_sequences(
        cls,
        names: typing.Sequence[str],
        sequences: typing.Sequence[str],
        sequence_type: str | None = None,
        config: AlignmentConfig | None = None,
        logger: CachingLogger | None = None,
        name: str = "",
    ) -> Self:
        """builds the pattern table from raw sequences

        Parameters
        ----------
        names
            unique, non-empty sequence names
        sequences
            equal length character strings, parallel to names
        sequence_type
            a type string such as DNA, AA, CODON1 or NT2AA11, None means
            the type is detected from the data
        config
            thresholds and parallelism settings
        logger
            receives construction notes

        Raises
        ------
        AlignmentFormatError
            for too few sequences, bad names or lengths, invalid characters
            or stop codons
        SequenceTypeError
            if the type cannot be determined
        """
        if len(sequences) < 3:
            raise AlignmentFormatError("Alignment must have at least 3 sequences")
        if len(names) != len(sequences):
            raise AlignmentFormatError("Different number of sequences than specified")
        names = [str(n) for n in names]
        check_sequence_names(names)
        check_sequence_characters(names, sequences)
        sequences = [s.upper() for s in sequences]
        nsite = len(sequences[0])
        check_sequence_lengths(names, sequences, nsite)

        codec = check_data_type(sequences, sequence_type)
        if codec.step == 3 and nsite % 3 != 0:
            raise AlignmentFormatError("Number of sites is not multiple of 3")

        aln = cls(names, codec=codec, config=config, name=name, logger=logger)
        log_note(
            aln.logger,
            f"{len(names)} sequences with {nsite} columns of type "
            f"{codec.sequence_type}",
            label="alignment",
        )
        aln.construct_patterns(sequences)
        return aln

    def construct_patterns(self, sequences: typing.Sequence[str]) -> None:
        """two pass construction, transcription of site blocks (possibly in
        parallel) then sequential compression in site order"""
        codec = self.codec
        config = self.config
        step = codec.step
        nchar = len(sequences[0])
        nsite = nchar // step
        width = SITE_BLOCK_SIZE * step
        blocks = [
            SiteBlock(
                codec=codec,
                names=self.seq_names,
                rows=[s[start : start + width] for s in sequences],
                first_char=start,
            )
            for start in range(0, nchar, width)
        ]
        transcribed = parallel.imap(
            transcribe_block, blocks, max_workers=config.num_workers
        )

        self.patterns = []
        self.pattern_index = {}
        self.site_pattern = numpy.full(nsite, -1, dtype=numpy.int64)
        errors = ErrorCollector(max_lines=config.max_error_lines)
        ambiguous = ErrorCollector(max_lines=config.max_error_lines)
        site = 0
        kept = 0
        for result in progress_series(
            transcribed,
            show_progress=config.show_progress,
            total=len(blocks),
            desc="Constructing alignment",
            unit="block",
        ):
            ambiguous.extend(result.warnings)
            for row, states in enumerate(result.matrix):
                if row in result.errors:
                    errors.extend(result.errors[row])
                    site += 1
                    continue
                pattern = Pattern(states)
                if pattern.is_gaps_only(codec.unknown_state):
                    self.num_gaps_only += 1
                if self.add_pattern_lazy(pattern, kept):
                    self.patterns[-1].set_flags(*(f[row] for f in result.flags))
                kept += 1
                site += 1

        self.site_pattern = self.site_pattern[:kept]
        ambiguous.warn()
        if self.num_gaps_only:
            warnings.warn(
                f"{self.num_gaps_only} sites contain only gaps or ambiguous "
                "characters.",
                AlignmentWarning,
                stacklevel=3,
            )
        errors.raise_errors()
        self.count_const_site()
        self.count_singleton_parsimony_states()

    @classmethod
    def empty_like(
        cls,
        other: "PatternAlignment",
        seq_names: typing.Sequence[str] | None = None,
        num_sites: int = 0,
    ) -> Self:
        """a new, empty table sharing the state space and settings of other"""
        new = cls(
            other.seq_names if seq_names is None else seq_names,
            config=other.config,
            name=other.name,
            logger=other.logger,
        )
        new.copy_state_info_from(other)
        new.resize_sites(num_sites)
        return new

    def copy_state_info_from(self, other: "PatternAlignment") -> None:
        """copies the state space (type, states, genetic code, PoMo tables)"""
        self.codec = other.codec.copy()

    def copy(self) -> Self:
        new = self.__class__.empty_like(self, num_sites=self.num_sites)
        for site, index in enumerate(self.site_pattern.tolist()):
            new.add_pattern(self.patterns[index], site)
        new.count_const_site()
        return new

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(num_seqs={self.num_seqs}, "
            f"num_sites={self.num_sites}, num_patterns={self.num_patterns}, "
            f"type={self.codec.sequence_type!r})"
        )

    def __len__(self) -> int:
        return self.num_sites

    @property
    def num_seqs(self) -> int:
        return len(self.seq_names)

    @property
    def num_sites(self) -> int:
        return len(self.site_pattern)

    @property
    def num_patterns(self) -> int:
        return len(self.patterns)

    @property
    def num_states(self) -> int:
        return self.codec.num_states

    @property
    def unknown_state(self) -> int:
        return self.codec.unknown_state

    @property
    def seq_type(self) -> SeqType:
        return self.codec.seq_type

    @property
    def max_seq_name_length(self) -> int:
        return max((len(n) for n in self.seq_names), default=0)

    def resize_sites(self, num_sites: int) -> None:
        """grows or truncates site_pattern, new sites are unassigned (-1)"""
        current = len(self.site_pattern)
        if num_sites <= current:
            self.site_pattern = self.site_pattern[:num_sites].copy()
            return
        extra = numpy.full(num_sites - current, -1, dtype=numpy.int64)
        self.site_pattern = numpy.concatenate([self.site_pattern, extra])

    def get_seq_id(self, name: str) -> int:
        """index of a sequence name, -1 if absent"""
        try:
            return self.seq_names.index(name)
        except ValueError:
            return -1

    def get_pattern_id(self, site: int) -> int:
        return int(self.site_pattern[site])

    def get_pattern(self, site: int) -> Pattern:
        return self.patterns[self.site_pattern[site]]

    def get_pattern_freq(self) -> npt.NDArray[numpy.int64]:
        return numpy.array([p.frequency for p in self.patterns], dtype=numpy.int64)

    def pattern_matrix(self) -> npt.NDArray[numpy.int32]:
        """states as a 2D array, one row per pattern"""
        if not self.patterns:
            return numpy.zeros((0, self.num_seqs), dtype=numpy.int32)
        return numpy.array([p.states for p in self.patterns], dtype=numpy.int32)

    def site_matrix(self) -> npt.NDArray[numpy.int32]:
        """states as a 2D array, one row per sequence and one column per site"""
        return self.pattern_matrix()[self.site_pattern].T

    def add_pattern_lazy(self, pattern: Pattern, site: int, freq: int = 1) -> bool:
        """stores pattern for site without computing its flags

        Returns
        -------
        True if the pattern is new to the table, False if an equal pattern
        was already present and had its frequency increased.
        """
        if site >= len(self.site_pattern):
            self.resize_sites(site + 1)
        index = self.pattern_index.get(pattern)
        if index is None:
            pattern = pattern.copy()
            pattern.frequency = freq
            self.patterns.append(pattern)
            index = len(self.patterns) - 1
            self.pattern_index[pattern] = index
            self.site_pattern[site] = index
            self._seq_hashes = None
            return True

        self.patterns[index].frequency += freq
        self.site_pattern[site] = index
        return False

    def add_pattern(self, pattern: Pattern, site: int, freq: int = 1) -> bool:
        """as add_pattern_lazy, and computes the flags of a new pattern"""
        added = self.add_pattern_lazy(pattern, site, freq)
        if added:
            self.patterns[-1].compute_const(self.codec)
        return added

    def update_patterns(self, old_count: int) -> None:
        """computes flags of all patterns from slot old_count onwards"""
        compute_flags(self.patterns[old_count:], self.codec)

    def add_const_patterns(self, freqs: str | typing.Sequence[int]) -> None:
        """appends constant sites, freqs[i] sites of state i

        Parameters
        ----------
        freqs
            a frequency per state, or a comma separated string of them
        """
        if isinstance(freqs, str):
            try:
                freqs = [int(v) for v in freqs.split(",")]
            except ValueError as err:
                raise AlignmentFormatError(
                    f"Const pattern frequency vector is not a list of integers: {freqs}"
                ) from err
        freqs = list(freqs)
        if len(freqs) != self.num_states:
            raise AlignmentFormatError(
                "Const pattern frequency vector has different number of states: "
                f"{freqs}"
            )
        if any(f < 0 for f in freqs):
            raise AlignmentFormatError("Const pattern frequency must be non-negative")

        site = self.num_sites
        self.resize_sites(site + sum(freqs))
        old_count = self.num_patterns
        for state, freq in enumerate(freqs):
            if freq <= 0:
                continue
            pattern = Pattern([state] * self.num_seqs)
            for _ in range(freq):
                self.add_pattern_lazy(pattern, site)
                site += 1
        self.update_patterns(old_count)
        self.count_const_site()

    def count_const_site(self) -> None:
        """recomputes the constant, informative, invariant and variant site
        counts from the pattern flags"""
        const = informative = invariant = variant = 0
        for pattern in self.patterns:
            freq = pattern.frequency
            if pattern.is_const:
                const += freq
            if pattern.is_informative:
                informative += freq
            if pattern.is_invariant:
                invariant += freq
            else:
                variant += freq
        self.num_const_sites = const
        self.num_informative_sites = informative
        self.num_invariant_sites = invariant
        self.num_variant_sites = variant
        self.num_parsimony_sites = 0
        nsite = self.num_sites
        self.frac_const_sites = const / nsite if nsite else 0.0
        self.frac_invariant_sites = invariant / nsite if nsite else 0.0

    def count_singleton_parsimony_states(self) -> int:
        """per sequence number of sites at which it alone carries a state

        Only variable patterns count. Returns the total over sequences.
        """
        counts = numpy.zeros(self.num_seqs, dtype=numpy.int64)
        resolved = self.codec.resolved_states()
        num_states = self.num_states
        for pattern in self.patterns:
            if pattern.num_chars < 2:
                continue
            states = pattern.states
            valid = (states >= 0) & (states <= self.unknown_state)
            concrete = numpy.full(len(states), num_states)
            concrete[valid] = resolved[states[valid]]
            occurs = numpy.bincount(concrete, minlength=num_states + 1)[:num_states]
            for state in numpy.flatnonzero(occurs == 1):
                counts[concrete == state] += pattern.frequency
        self.singleton_parsimony_states = counts
        return int(counts.sum())

    @property
    def total_singleton_parsimony_states(self) -> int:
        return int(self.singleton_parsimony_states.sum())

    def order_pattern_by_num_chars(self, pat_type: str = "ALL") -> list[int]:
        """orders variable patterns by decreasing character diversity

        Parameters
        ----------
        pat_type
            'ALL' keeps every variant pattern, 'INFORMATIVE' only the
            parsimony informative ones

        Returns
        -------
        the slots of the ordered patterns. ``ordered_patterns`` and
        ``pars_lower_bound`` are set as a side effect, the latter holding
        for every 32-site bucket the sum of ``num_chars - 1`` over that
        bucket and all following ones.
        """
        pat_type = pat_type.upper()
        if pat_type not in ("ALL", "INFORMATIVE"):
            raise ValueError(f"unknown pattern type {pat_type!r}")
        informative_only = pat_type == "INFORMATIVE"
        self.num_parsimony_sites = (
            self.num_informative_sites if informative_only else self.num_variant_sites
        )
        keys = [-p.num_chars + p.is_invariant * 1024 for p in self.patterns]
        order = sorted(range(self.num_patterns), key=keys.__getitem__)
        order = [
            i
            for i in order
            if not self.patterns[i].is_invariant
            and (not informative_only or self.patterns[i].is_informative)
        ]
        self.ordered_patterns = [self.patterns[i] for i in order]

        contributions = numpy.repeat(
            [p.num_chars - 1 for p in self.ordered_patterns],
            [p.frequency for p in self.ordered_patterns],
        ).astype(numpy.int64)
        if len(contributions):
            buckets = numpy.add.reduceat(
                contributions, numpy.arange(0, len(contributions), _PARS_BITS)
            )
        else:
            buckets = numpy.zeros(0, dtype=numpy.int64)
        suffix = numpy.cumsum(buckets[::-1])[::-1]
        self.pars_lower_bound = numpy.append(suffix, 0).astype(numpy.int64)
        return order

    def ungroup_site_pattern(self) -> None:
        """one pattern per site, each with frequency 1

        Equal columns are no longer merged afterwards, so pattern_index is
        cleared.
        """
        patterns = []
        for index in self.site_pattern.tolist():
            pattern = self.patterns[index].copy()
            pattern.frequency = 1
            patterns.append(pattern)
        self.patterns = patterns
        self.site_pattern = numpy.arange(len(patterns), dtype=numpy.int64)
        self.pattern_index = {}
        self._seq_hashes = None

    def regroup_site_pattern(
        self, groups: int, site_group: typing.Sequence[int]
    ) -> None:
        """compresses patterns separately within each site group

        Equal columns in different groups occupy separate slots, so no single
        slot represents a column and pattern_index is left empty afterwards.

        Parameters
        ----------
        groups
            number of groups
        site_group
            group of every site, in 0 .. groups - 1
        """
        stored = self.patterns
        stored_sites = self.site_pattern.tolist()
        assert len(site_group) == len(stored_sites)
        self.patterns = []
        self.site_pattern = numpy.full(len(stored_sites), -1, dtype=numpy.int64)
        count = 0
        for group in range(groups):
            self.pattern_index = {}
            for site, site_grp in enumerate(site_group):
                if site_grp == group:
                    count += 1
                    self.add_pattern(stored[stored_sites[site]], site)
        assert count == len(stored_sites)
        assert sum(p.frequency for p in self.patterns) == self.num_sites
        self.pattern_index = {}
        self._seq_hashes = None

    # statistics

    def _resolved_matrix(self) -> numpy.ndarray:
        """pattern matrix with PoMo states mapped onto PoMo states proper and
        anything out of range onto the unknown state"""
        matrix = self.pattern_matrix()
        unknown = self.unknown_state
        invalid = (matrix < 0) | (matrix > unknown)
        matrix = numpy.where(invalid, unknown, matrix)
        return self.codec.resolved_states()[matrix]

    def count_states(self, num_unknown_states: int = 0) -> npt.NDArray[numpy.int64]:
        """site-weighted count of every code from 0 to the unknown state"""
        matrix = self._resolved_matrix()
        freqs = numpy.repeat(self.get_pattern_freq(), self.num_seqs)
        counts = numpy.bincount(
            matrix.ravel(), weights=freqs, minlength=self.unknown_state + 1
        ).astype(numpy.int64)
        counts[self.unknown_state] += num_unknown_states
        return counts

    def _convfreq(self, freqs: numpy.ndarray) -> numpy.ndarray:
        """floors frequencies at min_state_freq and restores their sum to 1
        by adjusting the most frequent state"""
        if self.config.keep_zero_freq:
            return freqs
        original = freqs.copy()
        if self.seq_type is not SeqType.POMO:
            freqs = numpy.where(
                original < self.config.min_state_freq, self.config.min_state_freq, freqs
            )
        maxi = int(numpy.argmax(original))
        freqs[maxi] += 1.0 - freqs.sum()
        return freqs

    def _em_freqs(self, counts: numpy.ndarray) -> numpy.ndarray:
        """state frequencies from code counts, resolving ambiguity codes by
        eight rounds of expectation maximisation"""
        num_states = self.num_states
        appearance = self.codec.appearance_table().astype(float)
        freqs = numpy.full(num_states, 1.0 / num_states)
        observed = numpy.flatnonzero(counts)
        app = appearance[observed]
        weights = counts[observed].astype(float)
        for _ in range(8):
            expected = freqs * app
            totals = expected.sum(axis=1)
            usable = totals > 0
            new = (
                expected[usable] / totals[usable, None] * weights[usable, None]
            ).sum(axis=0)
            total = new.sum()
            if total == 0:
                break
            freqs = new / total
        return freqs

    def compute_state_freq(self, num_unknown_states: int = 0) -> numpy.ndarray:
        """empirical state frequencies, ambiguity codes resolved by EM"""
        freqs = self._em_freqs(self.count_states(num_unknown_states))
        return self._convfreq(freqs)

    def compute_state_freq_for_subset(
        self, seq_ids: typing.Sequence[int]
    ) -> numpy.ndarray:
        matrix = self._resolved_matrix()[:, list(seq_ids)]
        freqs = numpy.repeat(self.get_pattern_freq(), len(seq_ids))
        counts = numpy.bincount(
            matrix.ravel(), weights=freqs, minlength=self.unknown_state + 1
        )
        return self._convfreq(self._em_freqs(counts))

    def compute_state_freq_per_sequence(self) -> numpy.ndarray:
        """EM state frequencies of every sequence, one row per sequence"""
        matrix = self.pattern_matrix()
        freqs = self.get_pattern_freq()
        result = numpy.empty((self.num_seqs, self.num_states))
        for seq in range(self.num_seqs):
            counts = numpy.bincount(
                matrix[:, seq], weights=freqs, minlength=self.unknown_state + 1
            )
            result[seq] = self._em_freqs(counts)
        return result

    def count_state_per_sequence(self) -> npt.NDArray[numpy.int64]:
        """counts of concrete states, one row per sequence"""
        matrix = self._resolved_matrix()
        freqs = self.get_pattern_freq()
        result = numpy.zeros((self.num_seqs, self.num_states), dtype=numpy.int64)
        for seq in range(self.num_seqs):
            states = matrix[:, seq]
            keep = states < self.num_states
            result[seq] = numpy.bincount(
                states[keep], weights=freqs[keep], minlength=self.num_states
            )[: self.num_states]
        return result

    def compute_absolute_state_freq(self) -> npt.NDArray[numpy.int64]:
        """site-weighted counts of concrete states over all sequences"""
        return self.count_state_per_sequence().sum(axis=0)

    def compute_empirical_frequencies(self) -> numpy.ndarray:
        """frequencies of concrete states, ambiguous entries are ignored"""
        matrix = self.pattern_matrix()
        freqs = numpy.repeat(self.get_pattern_freq(), self.num_seqs)
        states = matrix.ravel()
        keep = (states >= 0) & (states < self.num_states)
        counts = numpy.bincount(
            states[keep], weights=freqs[keep], minlength=self.num_states
        )
        total = counts.sum()
        if not total:
            return numpy.full(self.num_states, 1.0 / self.num_states)
        return counts / total

    def compute_codon_freq(
        self, kind: str = "F3X4"
    ) -> tuple[numpy.ndarray, numpy.ndarray]:
        """codon frequencies from nucleotide frequencies

        Parameters
        ----------
        kind
            F1X4 pools nucleotides over codon positions, F3X4 keeps the
            positions apart, EMPIRICAL and ESTIMATE count codons directly

        Returns
        -------
        codon frequencies, and the 12 nucleotide frequencies (4 per codon
        position) they were built from
        """
        kind = kind.upper()
        ntfreq = numpy.zeros(12)
        if kind == "F3X4C":
            raise NotImplementedError("F3X4C not yet implemented.")
        if kind in ("EMPIRICAL", "ESTIMATE"):
            return self._convfreq(self.compute_empirical_frequencies()), ntfreq
        if kind not in ("F1X4", "F3X4"):
            raise ValueError(f"Unsupported codon frequency {kind!r}")
        if self.seq_type is not SeqType.CODON:
            raise IncompatibleAlignmentError(
                "codon frequencies need a codon alignment not "
                f"{self.codec.sequence_type}"
            )

        table = self.codec.codon_table
        nucs = numpy.stack([table // 16, (table % 16) // 4, table % 4], axis=1)
        matrix = self.pattern_matrix()
        freqs = numpy.repeat(self.get_pattern_freq(), self.num_seqs)
        states = matrix.ravel()
        keep = (states >= 0) & (states < self.num_states)
        for pos in range(3):
            ntfreq[4 * pos : 4 * pos + 4] = numpy.bincount(
                nucs[states[keep], pos], weights=freqs[keep], minlength=4
            )
        if kind == "F1X4":
            pooled = ntfreq.reshape(3, 4).sum(axis=0)
            ntfreq = numpy.tile(pooled / pooled.sum(), 3)
        else:
            by_pos = ntfreq.reshape(3, 4)
            ntfreq = (by_pos / by_pos.sum(axis=1)[:, None]).ravel()

        state_freq = (
            ntfreq[nucs[:, 0]] * ntfreq[4 + nucs[:, 1]] * ntfreq[8 + nucs[:, 2]]
        )
        state_freq = state_freq / state_freq.sum()
        return self._convfreq(state_freq), ntfreq

    def count_proper_char(self, seq_id: int) -> int:
        """number of sites at which a sequence has a known state"""
        limit = self.num_states + len(self.codec.pomo_sampled_states)
        return sum(
            p.frequency for p in self.patterns if p.states[seq_id] < limit
        )

    def compute_obs_dist(self, seq1: int, seq2: int) -> float:
        """proportion of differing sites among those where both sequences
        have a concrete state"""
        resolved = self.codec.resolved_states()
        unknown = self.unknown_state
        total = self.num_sites - self.num_variant_sites
        diff = 0
        for pattern in self.patterns:
            if pattern.is_const:
                continue
            state1 = int(resolved[min(pattern.states[seq1], unknown)])
            state2 = int(resolved[min(pattern.states[seq2], unknown)])
            if state1 < self.num_states and state2 < self.num_states:
                total += pattern.frequency
                if state1 != state2:
                    diff += pattern.frequency
        if not total:
            return MAX_GENETIC_DIST
        return diff / total

    def jc_distance(self, obs_dist: float) -> float:
        z = self.num_states / (self.num_states - 1)
        x = 1.0 - z * obs_dist
        if x <= 0:
            return MAX_GENETIC_DIST
        return -numpy.log(x) / z

    def compute_jc_dist(self, seq1: int, seq2: int) -> float:
        """Jukes-Cantor corrected distance between two sequences"""
        return float(self.jc_distance(self.compute_obs_dist(seq1, seq2)))

    def compute_unconstrained_log_likelihood(self) -> float:
        freqs = self.get_pattern_freq().astype(float)
        return float(((numpy.log(freqs) - numpy.log(self.num_sites)) * freqs).sum())

    def is_compatible(
        self, other: "PatternAlignment", check_sites: bool = True
    ) -> list[str]:
        """reasons why other cannot be combined with self, empty if it can

        Parameters
        ----------
        other
            the alignment to compare with
        check_sites
            if False, only the state spaces are compared
        """
        reasons = []
        if self.seq_type is not other.seq_type:
            reasons.append(f"Sequence type ({other.codec.sequence_type}) disagrees")
        if self.num_states != other.num_states:
            reasons.append(f"Number of states ({other.num_states}) disagrees")
        if self.unknown_state != other.unknown_state:
            reasons.append(f"Unknown state ({other.unknown_state}) disagrees")
        elif self.codec.pomo_sampled_states != other.codec.pomo_sampled_states:
            reasons.append("PoMo sampled states disagree")
        if check_sites and self.num_sites != other.num_sites:
            reasons.append(f"Number of sites ({other.num_sites}) disagrees")
        return reasons

    def check_compatible(
        self, other: "PatternAlignment", check_sites: bool = True
    ) -> None:
        """raises IncompatibleAlignmentError listing the reasons from
        is_compatible"""
        if reasons := self.is_compatible(other, check_sites=check_sites):
            raise IncompatibleAlignmentError(
                "Incompatible alignments: " + "; ".join(reasons)
            )

    # sequences and output

    def get_sequence(self, seq_id: int | str) -> str:
        """the sequence as a string, unknown states written as '-'"""
        if isinstance(seq_id, str):
            name, seq_id = seq_id, self.get_seq_id(seq_id)
            if seq_id < 0:
                raise KeyError(f"no sequence named {name!r}")
        return self._row_string(seq_id)

    def _state_strings(self) -> dict[int, str]:
        return {s: self.codec.convert_state_back_str(s) for s in range(self.num_states)}

    def _row_string(
        self,
        seq_id: int,
        kept: numpy.ndarray | None = None,
        strings: dict[int, str] | None = None,
    ) -> str:
        strings = self._state_strings() if strings is None else strings
        column = numpy.array(
            [p.states[seq_id] for p in self.patterns], dtype=numpy.int32
        )
        row = column[self.site_pattern] if len(column) else column
        if kept is not None:
            row = row[kept]
        convert = self.codec.convert_state_back_str
        return "".join(
            strings[s] if s in strings else convert(s) for s in row.tolist()
        )

    def get_all_sequences(self, kept: numpy.ndarray | None = None) -> list[str]:
        """all sequences as strings, in row order

        Parameters
        ----------
        kept
            boolean mask of the sites to include, all if None
        """
        strings = self._state_strings()
        return [
            self._row_string(i, kept=kept, strings=strings)
            for i in range(self.num_seqs)
        ]

    def to_dict(self) -> dict[str, str]:
        return dict(zip(self.seq_names, self.get_all_sequences()))

    def _kept_sites(self, **kwargs) -> numpy.ndarray:
        from phylopat.core.derive import build_retaining_sites

        return build_retaining_sites(self, **kwargs)

    def _output_length(self, kept: numpy.ndarray) -> int:
        length = int(kept.sum())
        return length * 3 if self.seq_type is SeqType.CODON else length

    def _padded_names(self, taxon_ids: bool = False) -> list[str]:
        names = [str(i) for i in range(self.num_seqs)] if taxon_ids else self.seq_names
        width = 10 if taxon_ids else max(self.max_seq_name_length, 10)
        return [n.ljust(width) for n in names]

    def to_phylip(self, taxon_ids: bool = False, **kwargs) -> str:
        """PHYLIP text, names padded to at least 10 characters

        Parameters
        ----------
        taxon_ids
            write row numbers instead of names
        kwargs
            passed to build_retaining_sites to select the sites written
        """
        kept = self._kept_sites(**kwargs)
        lines = [f"{self.num_seqs} {self._output_length(kept)}"]
        names = self._padded_names(taxon_ids)
        for name, seq in zip(names, self.get_all_sequences(kept)):
            lines.append(f"{name} {seq}")
        return "\n".join(lines) + "\n"

    def to_fasta(self, **kwargs) -> str:
        kept = self._kept_sites(**kwargs)
        lines = []
        for name, seq in zip(self.seq_names, self.get_all_sequences(kept)):
            lines.extend([f">{name}", seq])
        return "\n".join(lines) + "\n"

    def to_nexus(self, taxon_ids: bool = False, **kwargs) -> str:
        """NEXUS data block with missing=? and gap=-"""
        if self.seq_type not in _NEXUS_DATATYPES:
            raise AlignmentFormatError(
                f"Unsupported datatype for NEXUS file: {self.codec.sequence_type}"
            )
        kept = self._kept_sites(**kwargs)
        lines = [
            "#nexus",
            "begin data;",
            f"  dimensions ntax={self.num_seqs} nchar={self._output_length(kept)};",
            f"  format datatype={_NEXUS_DATATYPES[self.seq_type]} missing=? gap=-;",
            "  matrix",
        ]
        names = self._padded_names(taxon_ids)
        for name, seq in zip(names, self.get_all_sequences(kept)):
            lines.append(f"  {name} {seq}")
        lines.extend(["  ;", "end;"])
        return "\n".join(lines) + "\n"

    def site_info(self, part_id: int | None = None) -> list[tuple]:
        """per site statistic label, see Pattern.site_info_label

        Returns
        -------
        (site, label) with 1-based sites, or (part_id, site, label) if
        part_id is given
        """
        rows = []
        for site, index in enumerate(self.site_pattern.tolist(), start=1):
            label = self.patterns[index].site_info_label(
                self.num_states, self.unknown_state
            )
            rows.append((site, label) if part_id is None else (part_id, site, label))
        return rows


def make_alignment(
    names: typing.Sequence[str] | dict[str, str],
    sequences: typing.Sequence[str] | None = None,
    sequence_type: str | None = None,
    config: AlignmentConfig | None = None,
    logger: CachingLogger | None = None,
    name: str = "",
) -> PatternAlignment:
    """returns a PatternAlignment

    Parameters
    ----------
    names
        sequence names, or a dict of name to sequence
    sequences
        sequences parallel to names, omitted when names is a dict
    sequence_type
        DNA, AA, BIN, MORPH, CODON<code id> or NT2AA<code id>, detected
        from the data if None
    config
        an AlignmentConfig
    logger
        a scitrack CachingLogger that receives notes
    """
    if isinstance(names, dict):
        names, sequences = list(names), list(names.values())
    return PatternAlignment.from_sequences(
        names,
        sequences,
        sequence_type=sequence_type,
        config=config,
        logger=logger,
        name=name,
    )
