"""Reader for allele counts files, the input of polymorphism-aware models.

A counts file has optional ``#`` comment lines, an identification line
``COUNTSFILE NPOP <n> NSITES <m>``, a header ``CHROM POS <pop1> ...`` and
one line per site giving, for every population, comma separated counts of
A, C, G and T.
"""

import dataclasses
import os
import pathlib
import typing
import warnings

import numpy

from scitrack import CachingLogger

from phylopat.core.alignment import (
    AlignmentFormatError,
    AlignmentWarning,
    PatternAlignment,
    check_logger,
    log_note,
)
from phylopat.core.config import AlignmentConfig
from phylopat.core.pattern import Pattern
from phylopat.core.state import POMO_MAX_COUNT, PomoSampling, SeqType, StateCodec

NUM_NUCLEOTIDES = 4
DEFAULT_POP_SIZE = 9


@dataclasses.dataclass(frozen=True)
class PomoSettings:
    virtual_pop_size: int = DEFAULT_POP_SIZE
    sampling: PomoSampling = PomoSampling.WEIGHTED_BINOMIAL

    @property
    def num_states(self) -> int:
        """fixed states plus N - 1 polymorphic states per allele pair"""
        pairs = NUM_NUCLEOTIDES * (NUM_NUCLEOTIDES - 1) // 2
        return NUM_NUCLEOTIDES + pairs * (self.virtual_pop_size - 1)


def _valid_pop_size(size: int) -> bool:
    return size in (2, 10) or (3 <= size <= 19 and size % 2 == 1)


def parse_pomo_model(model_name: str) -> PomoSettings:
    """virtual population size and sampling method from a model name

    Parameters
    ----------
    model_name
        e.g. ``HKY+P+N7+WH``. ``+N<k>`` sets the virtual population size,
        ``+WB`` (default), ``+WH`` or ``+S`` the sampling method.
    """
    pop_size = DEFAULT_POP_SIZE
    start = model_name.find("+N")
    if start >= 0:
        end = model_name.find("+", start + 1)
        text = model_name[start + 2 : None if end < 0 else end]
        try:
            pop_size = int(text)
        except ValueError as err:
            raise AlignmentFormatError(
                "The virtual population size N is not clear when reading in "
                'data. Use, e.g., "+N7".'
            ) from err
        if not _valid_pop_size(pop_size):
            raise AlignmentFormatError(
                "Custom virtual population size of PoMo not 2, 10 or any other "
                "odd number between 3 and 19."
            )

    found = [
        sampling
        for sampling in PomoSampling
        if f"+{sampling.value}" in model_name
    ]
    if len(found) > 1:
        raise AlignmentFormatError("Multiple sampling methods specified.")
    sampling = found[0] if found else PomoSampling.WEIGHTED_BINOMIAL
    return PomoSettings(virtual_pop_size=pop_size, sampling=sampling)


def _iter_lines(data: str | os.PathLike | typing.Iterable[str]) -> typing.Iterator[str]:
    if isinstance(data, (str, os.PathLike)):
        with pathlib.Path(data).open() as infile:
            yield from (line.rstrip("\n") for line in infile)
    else:
        yield from (line.rstrip("\n") for line in data)


class _CountsParser:
    """line oriented state of a counts file being read"""

    def __init__(self, lines: typing.Iterable[str]) -> None:
        self._lines = iter(lines)
        self.line = ""
        self.line_num = 0

    def next_line(self) -> str | None:
        for line in self._lines:
            self.line_num += 1
            self.line = line
            return line
        return None

    def skip_comments(self) -> str:
        line = self.next_line()
        while line is not None and line.startswith("#"):
            line = self.next_line()
        return line or ""

    def identification(self) -> tuple[int, int]:
        fields = self.skip_comments().split()
        failed = AlignmentFormatError(
            "Counts-File identification line could not be read."
        )
        if len(fields) < 5:
            raise failed
        ftype, npop_str, npop, nsites_str, nsites = fields[:5]
        if (ftype, npop_str, nsites_str) != ("COUNTSFILE", "NPOP", "NSITES"):
            raise failed
        try:
            return int(npop), int(nsites)
        except ValueError as err:
            raise failed from err

    def header(self, npop: int) -> list[str]:
        fields = self.skip_comments().split()
        for field, allowed in zip(fields[:2], (("Chrom", "CHROM"), ("Pos", "POS"))):
            if field not in allowed:
                raise AlignmentFormatError(f"Unrecognized header field {field}.")
        names = fields[2:]
        if len(names) != npop:
            raise AlignmentFormatError(
                "Number of populations in headerline doesn't match NPOP."
            )
        return names

    def values(self, field: str) -> list[int]:
        try:
            values = [int(v) for v in field.split(",")]
        except ValueError as err:
            raise AlignmentFormatError(
                f"Could not read value {field} on line {self.line_num}."
            ) from err
        if len(values) != NUM_NUCLEOTIDES:
            raise AlignmentFormatError(
                f"Number of bases does not match on line {self.line_num}."
            )
        return values


@dataclasses.dataclass
class _SiteTally:
    samples: int = 0
    sites: int = 0


def _binomial_state(
    values: list[int],
    id1: int,
    id2: int,
    pop_size: int,
    rng: numpy.random.Generator,
) -> int:
    """draws pop_size individuals from the observed allele counts"""
    picks = int(rng.binomial(pop_size, values[id1] / (values[id1] + values[id2])))
    if picks == 0:
        return id2
    if picks == pop_size:
        return id1
    j = id2 - 1 if id1 == 0 else id1 + id2
    return NUM_NUCLEOTIDES + j * (pop_size - 1) + picks - 1


def _population_state(
    values: list[int],
    codec: StateCodec,
    settings: PomoSettings,
    rng: numpy.random.Generator,
    tally: _SiteTally,
) -> tuple[int | None, bool]:
    """state of one population at one site

    Returns
    -------
    the state, None for missing data, and whether the site can be used
    """
    present = [i for i, v in enumerate(values) if v]
    if not present:
        return None, True
    if len(present) > 2:
        return None, False

    tally.samples += sum(values[i] for i in present)
    tally.sites += 1
    ok = all(values[i] < POMO_MAX_COUNT for i in present)
    if len(present) == 1:
        (id1,) = present
        if settings.sampling is PomoSampling.SAMPLED:
            return id1, ok
        return codec.add_pomo_sampled_state(id1 | (values[id1] << 2)), ok

    id1, id2 = present
    if settings.sampling is PomoSampling.SAMPLED:
        return _binomial_state(values, id1, id2, settings.virtual_pop_size, rng), ok
    value = (id1 | (values[id1] << 2)) | ((id2 | (values[id2] << 2)) << 16)
    return codec.add_pomo_sampled_state(value), ok


def read_counts(
    data: str | os.PathLike | typing.Iterable[str],
    model_name: str = "",
    rng: int | numpy.random.Generator | None = None,
    config: AlignmentConfig | None = None,
    logger: CachingLogger | None = None,
) -> PatternAlignment:
    """builds a PoMo alignment from a counts file

    Parameters
    ----------
    data
        path to the file, or its lines
    model_name
        model string holding the PoMo options, see parse_pomo_model
    rng
        seed or numpy Generator, used by the sampled method only
    config
        an AlignmentConfig
    logger
        receives a summary of the sites read

    Notes
    -----
    Sites where a population has more than two alleles, or an allele count
    of 16384 or more, are skipped and counted as fails. Under weighted
    sampling the unknown state is only known once every site has been read,
    so sites with missing data are added last, at their original positions.
    """
    logger = check_logger(logger)
    rng = numpy.random.default_rng(rng)
    settings = parse_pomo_model(model_name)
    codec = StateCodec(
        SeqType.POMO,
        num_states=settings.num_states,
        virtual_pop_size=settings.virtual_pop_size,
        pomo_sampling=settings.sampling,
    )
    weighted = settings.sampling.is_weighted

    parser = _CountsParser(_iter_lines(data))
    npop, nsites = parser.identification()
    if nsites <= 0:
        raise AlignmentFormatError("Number of sites is 0.")
    names = parser.header(npop)

    aln = PatternAlignment(names, codec=codec, config=config, logger=logger)
    aln.resize_sites(nsites)
    tally = _SiteTally()
    with_unknown: list[tuple[list, int]] = []
    site = 0
    fails = 0
    for line in iter(parser.next_line, None):
        if not line.strip():
            continue
        fields = line.split()[2:]
        states = []
        usable = True
        for field in fields:
            state, ok = _population_state(
                parser.values(field), codec, settings, rng, tally
            )
            usable = usable and ok
            states.append(state)
        if len(states) != npop:
            raise AlignmentFormatError(
                f"Number of species does not match on line {parser.line_num}."
            )
        if not usable:
            fails += 1
            continue
        if None in states and weighted:
            with_unknown.append((states, site))
        else:
            unknown = codec.unknown_state
            aln.add_pattern_lazy(
                Pattern([unknown if s is None else s for s in states]), site
            )
        site += 1

    if site + fails != nsites:
        raise AlignmentFormatError("Number of sites does not match NSITES.")

    unknown = codec.unknown_state
    for states, index in with_unknown:
        pattern = Pattern([unknown if s is None else s for s in states])
        aln.add_pattern_lazy(pattern, index)
    aln.resize_sites(site)
    aln.update_patterns(0)
    aln.count_const_site()

    summary = [
        f"Number of populations:     {npop}",
        f"Number of sites:           {nsites}",
        f"Normal sites:              {site - len(with_unknown)}",
        f"Sites with unknown states: {len(with_unknown)}",
        f"Total sites read:          {site}",
        f"Fails:                     {fails}",
    ]
    if weighted:
        summary.append(f"Compound states:           {len(codec.pomo_sampled_states)}")
    mean_samples = tally.samples / tally.sites if tally.sites else 0.0
    summary.append(f"The average number of samples is {mean_samples:.4g}")
    log_note(logger, "\n".join(summary), label="counts file")

    if (
        settings.sampling is PomoSampling.WEIGHTED_BINOMIAL
        and mean_samples * 3.0 <= settings.virtual_pop_size
    ):
        warnings.warn(
            "The virtual population size N is much larger than the average "
            "number of samples. This setting together with weighted binomial "
            "sampling may be numerically unstable.",
            AlignmentWarning,
            stacklevel=2,
        )
    return aln
