"""Checks on whole sequences: duplicates, gap content and composition."""

import collections
import dataclasses
import warnings

import numpy

from scitrack import CachingLogger

from phylopat.core.alignment import (
    AlignmentFormatError,
    AlignmentWarning,
    PatternAlignment,
    check_logger,
    check_sequence_names,
    log_note,
)
from phylopat.core.config import AlignmentConfig
from phylopat.core.derive import extract_sub_alignment
from phylopat.core.pattern import hash_columns
from phylopat.core.state import SeqType
from phylopat.maths.stats.distribution import chi_high

MIN_SEQUENCES = 3
COMPOSITION_ALPHA = 0.05


def sequence_hashes(aln: PatternAlignment) -> list[int]:
    """hash of every sequence over the patterns, once per pattern

    The result is cached on the alignment until its patterns change.
    """
    if aln._seq_hashes is None:
        matrix = aln.pattern_matrix().astype(numpy.uint32)
        aln._seq_hashes = hash_columns(matrix).tolist()
    return aln._seq_hashes


def _identical(matrix: numpy.ndarray, seq1: int, seq2: int) -> bool:
    return bool(numpy.array_equal(matrix[:, seq1], matrix[:, seq2]))


def _candidates(aln: PatternAlignment) -> tuple[list[int], collections.Counter]:
    hashes = sequence_hashes(aln)
    return hashes, collections.Counter(hashes)


def check_identical_seq(aln: PatternAlignment) -> list[tuple[str, str]]:
    """warns about identical sequences

    Returns
    -------
    (first, duplicate) name pairs, the first member being the earliest
    sequence of its group
    """
    hashes, counts = _candidates(aln)
    matrix = aln.pattern_matrix()
    checked = numpy.zeros(aln.num_seqs, dtype=bool)
    pairs = []
    for seq1 in range(aln.num_seqs):
        if checked[seq1] or counts[hashes[seq1]] == 1:
            continue
        group = []
        for seq2 in range(seq1 + 1, aln.num_seqs):
            if hashes[seq1] == hashes[seq2] and _identical(matrix, seq1, seq2):
                group.append(aln.seq_names[seq2])
                pairs.append((aln.seq_names[seq1], aln.seq_names[seq2]))
                checked[seq2] = True
        if group:
            names = ", ".join([aln.seq_names[seq1]] + group)
            warnings.warn(
                f"Identical sequences {names}", AlignmentWarning, stacklevel=2
            )
    if pairs:
        warnings.warn(
            "Some identical sequences found that should be discarded before "
            "the analysis",
            AlignmentWarning,
            stacklevel=2,
        )
    return pairs


def remove_identical_seq(
    aln: PatternAlignment,
    not_remove: str | None = None,
    keep_two: bool = False,
    logger: CachingLogger | None = None,
) -> tuple[PatternAlignment, list[str], list[str]]:
    """drops all but the first of every group of identical sequences

    Parameters
    ----------
    aln
        the alignment
    not_remove
        name of a sequence that is never removed
    keep_two
        keep the first duplicate of every group too
    logger
        receives a note for every duplicate that is kept

    Returns
    -------
    the reduced alignment (aln itself if nothing was removed), the removed
    names and, parallel to them, the names of the sequences they duplicate

    Notes
    -----
    At least three sequences always remain.
    """
    logger = check_logger(logger) or aln.logger
    nseq = aln.num_seqs
    hashes, counts = _candidates(aln)
    matrix = aln.pattern_matrix()
    checked = numpy.zeros(nseq, dtype=bool)
    removed = numpy.zeros(nseq, dtype=bool)
    removed_names: list[str] = []
    target_names: list[str] = []
    for seq1 in range(nseq):
        if checked[seq1] or counts[hashes[seq1]] == 1:
            continue
        first = True
        for seq2 in range(seq1 + 1, nseq):
            name = aln.seq_names[seq2]
            if name == not_remove or removed[seq2]:
                continue
            if hashes[seq1] != hashes[seq2] or not _identical(matrix, seq1, seq2):
                continue
            can_remove = len(removed_names) + MIN_SEQUENCES < nseq
            if can_remove and (not keep_two or not first):
                removed_names.append(name)
                target_names.append(aln.seq_names[seq1])
                removed[seq2] = True
            else:
                log_note(
                    logger,
                    f"{name} is identical to {aln.seq_names[seq1]} but kept for "
                    "subsequent analysis",
                    label="identical",
                )
            checked[seq2] = True
            first = False
        checked[seq1] = True

    if not removed_names:
        return aln, removed_names, target_names

    if len(removed_names) + MIN_SEQUENCES >= nseq:
        warnings.warn(
            "Your alignment contains too many identical sequences!",
            AlignmentWarning,
            stacklevel=2,
        )
    new = extract_sub_alignment(aln, numpy.flatnonzero(~removed).tolist())
    log_note(
        logger,
        f"removed {len(removed_names)} identical sequences: "
        + ", ".join(removed_names),
        label="identical",
    )
    return new, removed_names, target_names


def is_gap_only_seq(aln: PatternAlignment, seq_id: int) -> bool:
    """True if the sequence is unknown at every site"""
    assert 0 <= seq_id < aln.num_seqs
    column = aln.pattern_matrix()[:, seq_id]
    return bool((column == aln.unknown_state).all())


def remove_gappy_seq(aln: PatternAlignment) -> PatternAlignment:
    """drops sequences consisting only of gaps

    Returns aln itself when there are none. Gap-only sequences are added
    back, in their original order after the others, until at least three
    sequences remain.
    """
    gappy = [is_gap_only_seq(aln, i) for i in range(aln.num_seqs)]
    keep = [i for i, gap in enumerate(gappy) if not gap]
    if len(keep) == aln.num_seqs:
        return aln
    if len(keep) < MIN_SEQUENCES <= aln.num_seqs:
        for i, gap in enumerate(gappy):
            if len(keep) >= MIN_SEQUENCES:
                break
            if gap:
                keep.append(i)
    return extract_sub_alignment(aln, keep)


def check_gappy_seq(aln: PatternAlignment) -> int:
    """warns about every gap-only sequence, returns their number"""
    wrong = 0
    for i, name in enumerate(aln.seq_names):
        if is_gap_only_seq(aln, i):
            warnings.warn(
                f"Sequence {name} ({i + 1}th sequence in alignment) contains only "
                "gaps or missing data",
                AlignmentWarning,
                stacklevel=2,
            )
            wrong += 1
    return wrong


def check_absent_states(aln: PatternAlignment, msg: str = "the alignment") -> int:
    """number of states never observed

    Raises
    ------
    AlignmentFormatError
        if at most one state is observed
    """
    if aln.seq_type is SeqType.POMO:
        return 0
    freqs = aln.compute_state_freq()
    absent = [i for i in range(aln.num_states) if freqs[i] == 0.0]
    rare = [
        i
        for i in range(aln.num_states)
        if 0.0 < freqs[i] <= aln.config.min_state_freq
    ]
    if len(absent) >= aln.num_states - 1:
        raise AlignmentFormatError(f"Only one state is observed in {msg}")
    back = aln.codec.convert_state_back_str
    if absent:
        log_note(
            aln.logger,
            f"State(s) {', '.join(back(i) for i in absent)} not present in {msg} "
            "and thus removed from Markov process to prevent numerical problems",
            label="absent states",
        )
    if rare:
        warnings.warn(
            f"States(s) {', '.join(back(i) for i in rare)} rarely appear in {msg} "
            "and may cause numerical problems",
            AlignmentWarning,
            stacklevel=2,
        )
    return len(absent)


@dataclasses.dataclass
class SequenceInfo:
    name: str
    percent_gaps: float
    pvalue: float
    failed: bool


@dataclasses.dataclass
class CompositionReport:
    """gap content and chi-squared composition test of every sequence

    Attributes
    ----------
    sequences
        one SequenceInfo per sequence, in row order
    df
        degrees of freedom of the test, shared by all sequences
    total_gap_percent
        percentage of gap or ambiguous entries over the whole alignment
    num_failed
        sequences with p-value below 0.05
    num_problem_seq
        sequences with more than 50% gaps
    """

    sequences: list[SequenceInfo]
    df: int
    total_gap_percent: float
    num_failed: int
    num_problem_seq: int

    def to_text(self, list_sequences: bool = True) -> str:
        width = max((len(s.name) for s in self.sequences), default=0) + 1
        lines = []
        if list_sequences:
            lines.append(f"{'Gap/Ambiguity':>{width + 14}}  Composition  p-value")
            for i, info in enumerate(self.sequences, start=1):
                verdict = "failed" if info.failed else "passed"
                lines.append(
                    f"{i:>4}  {info.name:<{width}} {info.percent_gaps:>6.2f}%    "
                    f"{verdict} {info.pvalue * 100:>9.2f}%"
                )
        lines.append(
            f"**** {' TOTAL  ':<{width + 2}}{self.total_gap_percent:>6.2f}%  "
            f"{self.num_failed} sequences failed composition chi2 test "
            f"(p-value<5%; df={self.df})"
        )
        return "\n".join(lines)


def _chi_squared(expected: numpy.ndarray, counts: numpy.ndarray) -> float:
    total = counts.sum()
    if not total:
        return 0.0
    observed = counts / total
    keep = expected > 0
    diff = expected[keep] - observed[keep]
    return float((diff * diff / expected[keep]).sum() * total)


def check_seq_name(
    aln: PatternAlignment,
    config: AlignmentConfig | None = None,
    logger: CachingLogger | None = None,
) -> CompositionReport | None:
    """checks names are distinct, then tests the composition of every
    sequence against that of the whole alignment

    Returns
    -------
    None if composition testing is disabled in config, otherwise the
    CompositionReport, which is also written to the logger
    """
    config = config or aln.config
    logger = check_logger(logger) or aln.logger
    check_sequence_names(aln.seq_names)
    if not config.compute_seq_composition:
        return None

    state_freq = aln.compute_state_freq()
    counts = aln.count_state_per_sequence()
    df = int((state_freq > 0).sum()) - 1
    is_pomo = aln.seq_type is SeqType.POMO
    if is_pomo:
        log_note(
            logger,
            "The composition test for PoMo only tests the proportion of fixed "
            "states!",
            label="composition",
        )
        expected = state_freq / state_freq.sum()
        seq_df = aln.num_states - 1
    else:
        expected = state_freq
        seq_df = df

    nsite = aln.num_sites
    infos = []
    total_gaps = 0
    for seq, name in enumerate(aln.seq_names):
        num_gaps = nsite - aln.count_proper_char(seq)
        total_gaps += num_gaps
        percent = num_gaps / nsite * 100.0 if nsite else 0.0
        if counts[seq].sum():
            pvalue = chi_high(_chi_squared(expected, counts[seq]), seq_df)
        else:
            pvalue = 1.0
        infos.append(
            SequenceInfo(
                name=name,
                percent_gaps=percent,
                pvalue=pvalue,
                failed=pvalue < COMPOSITION_ALPHA,
            )
        )

    num_problem_seq = sum(info.percent_gaps > 50.0 for info in infos)
    cells = nsite * aln.num_seqs
    report = CompositionReport(
        sequences=infos,
        df=df,
        total_gap_percent=total_gaps / cells * 100.0 if cells else 0.0,
        num_failed=sum(info.failed for info in infos),
        num_problem_seq=num_problem_seq,
    )
    log_note(logger, report.to_text(config.list_sequences), label="composition")
    if num_problem_seq:
        warnings.warn(
            f"{num_problem_seq} sequences contain more than 50% gaps/ambiguity",
            AlignmentWarning,
            stacklevel=2,
        )
    return report

