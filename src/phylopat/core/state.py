"""Character to state mapping for the supported sequence types.

States are small integers. ``0 .. num_states - 1`` are concrete states,
ambiguity codes (DNA, protein) sit above them and ``StateCodec.unknown_state``
is reserved for gaps, missing data and fully ambiguous characters.
``STATE_INVALID`` marks characters that cannot be parsed and is never stored
in a pattern.
"""

import enum
import functools
import math
import typing

import numpy
import numpy.typing as npt

from typing_extensions import Self

from phylopat.core.genetic_code import GeneticCode, get_code

STATE_INVALID = -1

GAP_CHARS = "?-.~"
DNA_SYMBOLS = "ACGT"
PROTEIN_SYMBOLS = "ARNDCQEGHILKMFPSTWYVX"
MORPH_SYMBOLS = "0123456789ABCDEFGHIJKLMNOPQRSTUV"
BINARY_SYMBOLS = "01"

DNA_UNKNOWN = 18
PROTEIN_UNKNOWN = 23

# bit sums over A=1, C=2, G=4, T=8, offset by 3. Order matters when
# converting back, the first symbol for a state wins.
_DNA_MAP = (
    ("A", 0),
    ("C", 1),
    ("G", 2),
    ("T", 3),
    ("U", 3),
    ("R", 1 + 4 + 3),
    ("Y", 2 + 8 + 3),
    ("W", 1 + 8 + 3),
    ("S", 2 + 4 + 3),
    ("M", 1 + 2 + 3),
    ("K", 4 + 8 + 3),
    ("B", 2 + 4 + 8 + 3),
    ("H", 1 + 2 + 8 + 3),
    ("D", 1 + 4 + 8 + 3),
    ("V", 1 + 2 + 4 + 3),
)
_DNA_CHAR_TO_STATE = dict(_DNA_MAP)
_DNA_STATE_TO_CHAR = {}
for _char, _state in _DNA_MAP:
    _DNA_STATE_TO_CHAR.setdefault(_state, _char)

_PROTEIN_AMBIGUITY = {"B": 20, "Z": 21, "J": 22}
# N|D, Q|E, I|L as bit sets over PROTEIN_SYMBOLS
_PROTEIN_AMBIGUITY_BITS = (4 + 8, 32 + 64, 512 + 1024)

# PoMo sampled-state encoding
POMO_ALLELE_MASK = 3
POMO_COUNT_MASK = 16383
POMO_MAX_COUNT = 16384


class SequenceTypeError(ValueError):
    pass


class SeqType(enum.Enum):
    BINARY = "BIN"
    DNA = "DNA"
    PROTEIN = "AA"
    CODON = "CODON"
    MORPH = "MORPH"
    POMO = "POMO"
    UNKNOWN = "UNKNOWN"


class PomoSampling(enum.Enum):
    WEIGHTED_BINOMIAL = "WB"
    WEIGHTED_HYPERGEOMETRIC = "WH"
    SAMPLED = "S"

    @property
    def is_weighted(self) -> bool:
        return self is not PomoSampling.SAMPLED


def _char_counts(sequences: typing.Iterable[str]) -> dict[str, int]:
    counts = dict(nuc=0, ungap=0, bin=0, alpha=0, digit=0)
    for seq in sequences:
        for char in seq:
            if char in "ACGTU":
                counts["nuc"] += 1
                counts["ungap"] += 1
                counts["alpha"] += 1
                continue
            if char in "?-.":
                continue
            if char not in "NX~":
                counts["ungap"] += 1
                if char.isdigit():
                    counts["digit"] += 1
                    if char in BINARY_SYMBOLS:
                        counts["bin"] += 1
            if char.isalpha():
                counts["alpha"] += 1
    return counts


def detect_sequence_type(sequences: typing.Iterable[str]) -> SeqType:
    """returns the most likely sequence type of upper case sequences

    Notes
    -----
    Types are checked in the order DNA, binary, protein, morphological.
    The first whose characters make up more than 90% of the ungapped
    characters is returned.
    """
    counts = _char_counts(sequences)
    ungap = counts["ungap"]
    if ungap == 0:
        return SeqType.UNKNOWN
    if counts["nuc"] / ungap > 0.9:
        return SeqType.DNA
    if counts["bin"] / ungap > 0.9:
        return SeqType.BINARY
    if counts["alpha"] / ungap > 0.9:
        return SeqType.PROTEIN
    if (counts["alpha"] + counts["digit"]) / ungap > 0.9:
        return SeqType.MORPH
    return SeqType.UNKNOWN


def get_morph_states(sequences: typing.Iterable[str]) -> int:
    """number of morphological states implied by the largest symbol"""
    max_state = max(
        (c for seq in sequences for c in seq if c.isalnum() and c.isascii()),
        default="",
    )
    if "0" <= max_state <= "9":
        return ord(max_state) - ord("0") + 1
    if "A" <= max_state <= "V":
        return ord(max_state) - ord("A") + 11
    return 0


def validate_morph_states(num_states: int) -> int:
    if num_states < 2 or num_states > 32:
        raise SequenceTypeError("Invalid number of states.")
    return num_states


def parse_sequence_type(text: str) -> tuple[SeqType, str, bool]:
    """parses a user sequence type string

    Parameters
    ----------
    text
        one of BIN, DNA, AA, PROT, PROTEIN, MORPH, POMO, CODON[<code id>] or
        NT2AA[<code id>]

    Returns
    -------
    sequence type, genetic code id (empty if not applicable) and whether
    nucleotides are to be translated into amino acids
    """
    text = text.strip().upper()
    simple = {
        "BIN": SeqType.BINARY,
        "DNA": SeqType.DNA,
        "AA": SeqType.PROTEIN,
        "PROT": SeqType.PROTEIN,
        "PROTEIN": SeqType.PROTEIN,
        "MORPH": SeqType.MORPH,
        "POMO": SeqType.POMO,
    }
    if text in simple:
        return simple[text], "", False
    if text.startswith("CODON"):
        return SeqType.CODON, text[5:], False
    if text.startswith("NT2AA"):
        return SeqType.PROTEIN, text[5:], True
    raise SequenceTypeError("Invalid sequence type.")


def codon_string(raw_codon: int) -> str:
    """three letter codon for an ACGT-ordered codon index"""
    return (
        DNA_SYMBOLS[raw_codon // 16]
        + DNA_SYMBOLS[(raw_codon % 16) // 4]
        + DNA_SYMBOLS[raw_codon % 4]
    )


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class StateCodec:
    """maps characters to integer states, and back, for one sequence type

    Parameters
    ----------
    seq_type
        the sequence type
    num_states
        required for MORPH and POMO, ignored otherwise
    genetic_code
        genetic code id for CODON data, or for translating nucleotides into
        amino acids
    nt2aa
        codons are translated into amino-acid states
    virtual_pop_size
        PoMo virtual population size
    pomo_sampling
        PoMo sampling method
    """

    def __init__(
        self,
        seq_type: SeqType,
        num_states: int | None = None,
        genetic_code: str | int | None = None,
        nt2aa: bool = False,
        virtual_pop_size: int = 0,
        pomo_sampling: PomoSampling = PomoSampling.WEIGHTED_BINOMIAL,
    ) -> None:
        self.seq_type = seq_type
        self.nt2aa = nt2aa
        self.genetic_code: GeneticCode | None = None
        self.codon_table: numpy.ndarray | None = None
        self.non_stop_codon: numpy.ndarray | None = None
        self.codon_to_aa_state: numpy.ndarray | None = None
        self.virtual_pop_size = virtual_pop_size
        self.pomo_sampling = pomo_sampling
        self.pomo_sampled_states: list[int] = []
        self.pomo_sampled_states_index: dict[int, int] = {}

        if seq_type is SeqType.CODON or nt2aa:
            self.init_codon(genetic_code, nt2aa)
        elif seq_type is SeqType.BINARY:
            self.num_states = 2
        elif seq_type is SeqType.DNA:
            self.num_states = 4
        elif seq_type is SeqType.PROTEIN:
            self.num_states = 20
        elif seq_type is SeqType.MORPH:
            self.num_states = validate_morph_states(num_states or 0)
        elif seq_type is SeqType.POMO:
            if not num_states:
                raise SequenceTypeError("PoMo data requires the number of states")
            self.num_states = num_states
        else:
            raise SequenceTypeError("Unknown sequence type.")

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(seq_type={self.sequence_type!r}, "
            f"num_states={self.num_states}, unknown_state={self.unknown_state})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StateCodec):
            return NotImplemented
        return (
            self.sequence_type == other.sequence_type
            and self.num_states == other.num_states
            and self.unknown_state == other.unknown_state
        )

    def __hash__(self) -> int:
        return hash((self.sequence_type, self.num_states, self.unknown_state))

    @property
    def sequence_type(self) -> str:
        """the type as a string accepted by parse_sequence_type"""
        code_id = "" if self.genetic_code is None else str(self.genetic_code.ID)
        if self.nt2aa:
            return f"NT2AA{code_id}"
        if self.seq_type is SeqType.CODON:
            return f"CODON{code_id}"
        return self.seq_type.value

    @property
    def unknown_state(self) -> int:
        if self.seq_type is SeqType.DNA:
            return DNA_UNKNOWN
        if self.seq_type is SeqType.PROTEIN:
            return PROTEIN_UNKNOWN
        if self.seq_type is SeqType.POMO and self.pomo_sampling.is_weighted:
            return self.num_states + len(self.pomo_sampled_states)
        return self.num_states

    @property
    def step(self) -> int:
        """number of input characters per state"""
        return 3 if (self.seq_type is SeqType.CODON or self.nt2aa) else 1

    def copy(self) -> Self:
        new = self.__class__.__new__(self.__class__)
        new.__dict__.update(self.__dict__)
        new.pomo_sampled_states = list(self.pomo_sampled_states)
        new.pomo_sampled_states_index = dict(self.pomo_sampled_states_index)
        for attr in ("codon_table", "non_stop_codon", "codon_to_aa_state"):
            value = getattr(self, attr)
            setattr(new, attr, None if value is None else value.copy())
        new._clear_cache()
        return new

    def init_codon(self, code_id: str | int | None, nt2aa: bool = False) -> None:
        """builds the codon tables from a genetic code

        Notes
        -----
        ``codon_table[state]`` is the ACGT-ordered index of a sense codon,
        ``non_stop_codon[codon]`` the compact state of a codon, or
        STATE_INVALID for stop codons. When nt2aa is True, states are the
        protein states of the encoded amino acids.
        """
        self.genetic_code = get_code(code_id)
        codons = [codon_string(i) for i in range(64)]
        code = [self.genetic_code[c] for c in codons]
        sense_codons = set(self.genetic_code.sense_codons)
        sense = [i for i, c in enumerate(codons) if c in sense_codons]
        self.codon_table = numpy.array(sense, dtype=numpy.int32)
        self.non_stop_codon = numpy.full(64, STATE_INVALID, dtype=numpy.int32)
        self.non_stop_codon[self.codon_table] = numpy.arange(
            len(sense), dtype=numpy.int32
        )
        self.codon_to_aa_state = numpy.array(
            [
                STATE_INVALID if aa == "*" else PROTEIN_SYMBOLS.index(aa)
                for aa in code
            ],
            dtype=numpy.int32,
        )
        self.nt2aa = nt2aa
        if nt2aa:
            self.seq_type = SeqType.PROTEIN
            self.num_states = len({aa for aa in code if aa != "*"})
        else:
            self.seq_type = SeqType.CODON
            self.num_states = len(sense)
        self._clear_cache()

    def is_stop_codon(self, state: int) -> bool:
        """True if a raw ACGT-ordered codon index is a stop codon"""
        return self.genetic_code is not None and self.genetic_code.is_stop(
            codon_string(state)
        )

    def _convert_dna(self, char: str) -> int:
        if char in "ONX":
            return DNA_UNKNOWN
        return _DNA_CHAR_TO_STATE.get(char, STATE_INVALID)

    def _convert_protein(self, char: str) -> int:
        if char in _PROTEIN_AMBIGUITY:
            return _PROTEIN_AMBIGUITY[char]
        if char in "*UO":
            return PROTEIN_UNKNOWN
        index = PROTEIN_SYMBOLS.find(char)
        if index < 0:
            return STATE_INVALID
        return index if index < 20 else PROTEIN_UNKNOWN

    def convert_state(self, char: str, seq_type: SeqType | None = None) -> int:
        """returns the state of a single character

        Gap and missing characters always map to the unknown state of the
        codec's type. CODON data converts nucleotides.
        """
        char = char.upper()
        seq_type = seq_type or self.seq_type
        if char in GAP_CHARS:
            return DNA_UNKNOWN if seq_type is SeqType.CODON else self.unknown_state
        if seq_type is SeqType.BINARY:
            index = BINARY_SYMBOLS.find(char)
            return index if index >= 0 else STATE_INVALID
        if seq_type in (SeqType.DNA, SeqType.CODON):
            return self._convert_dna(char)
        if seq_type is SeqType.PROTEIN:
            return self._convert_protein(char)
        if seq_type is SeqType.MORPH:
            index = MORPH_SYMBOLS.find(char)
            return index if 0 <= index < self.num_states else STATE_INVALID
        return STATE_INVALID

    def convert_codon(self, triplet: str) -> tuple[int, str | None]:
        """returns the state of three nucleotides and a problem label

        Returns
        -------
        (state, problem) where problem is None, 'invalid', 'stop' or
        'ambiguous'. A stop codon or an ambiguous nucleotide gives the unknown
        state, an unparseable nucleotide gives STATE_INVALID. Fully unknown
        codons are not flagged as ambiguous.
        """
        nucs = [self.convert_state(c, SeqType.CODON) for c in triplet]
        if all(0 <= n < 4 for n in nucs):
            raw = nucs[0] * 16 + nucs[1] * 4 + nucs[2]
            if self.is_stop_codon(raw):
                return self.unknown_state, "stop"
            if self.nt2aa:
                return int(self.codon_to_aa_state[raw]), None
            return int(self.non_stop_codon[raw]), None
        if STATE_INVALID in nucs:
            return STATE_INVALID, "invalid"
        if all(n == DNA_UNKNOWN for n in nucs):
            return self.unknown_state, None
        return self.unknown_state, "ambiguous"

    def convert_state_back(self, state: int) -> str:
        """returns the character for a state"""
        if state == self.unknown_state:
            return "-"
        if state == STATE_INVALID:
            return "?"
        if self.seq_type is SeqType.BINARY:
            return BINARY_SYMBOLS[state] if 0 <= state < 2 else "?"
        if self.seq_type is SeqType.DNA:
            return _DNA_STATE_TO_CHAR.get(state, "?")
        if self.seq_type is SeqType.PROTEIN:
            if 0 <= state < 20:
                return PROTEIN_SYMBOLS[state]
            return {20: "B", 21: "Z", 22: "J"}.get(state, "-")
        if self.seq_type is SeqType.MORPH:
            return MORPH_SYMBOLS[state] if 0 <= state < len(MORPH_SYMBOLS) else "-"
        return self.convert_state_back_str(state)

    def convert_state_back_str(self, state: int) -> str:
        """returns the string for a state, three letters for codons"""
        if self.seq_type is SeqType.POMO:
            return f"POMO{state}"
        if self.seq_type is SeqType.CODON:
            if state == self.unknown_state:
                return "---"
            if not 0 <= state < self.num_states:
                return "???"
            return codon_string(int(self.codon_table[state]))
        return self.convert_state_back(state)

    def convert_pomo_state(self, state: int) -> int:
        """maps a weighted PoMo state onto the closest PoMo state

        Notes
        -----
        The allele frequency is rounded to the nearest of the N - 1
        polymorphic states, ties going towards the first allele.
        """
        if self.seq_type is not SeqType.POMO:
            return state
        if state < self.num_states or state == self.unknown_state:
            return state
        value = self.pomo_sampled_states[state - self.num_states]
        id1 = value & POMO_ALLELE_MASK
        id2 = (value >> 16) & POMO_ALLELE_MASK
        value1 = (value >> 2) & POMO_COUNT_MASK
        value2 = value >> 18
        pop_size = self.virtual_pop_size
        pick = round_half_up(value1 * pop_size / (value1 + value2))
        if pick <= 0:
            return id2
        if pick >= pop_size:
            return id1
        j = id2 - 1 if id1 == 0 else id1 + id2
        return 3 + j * (pop_size - 1) + pick

    def add_pomo_sampled_state(self, value: int) -> int:
        """returns the state of an encoded weighted allele count"""
        if value not in self.pomo_sampled_states_index:
            self.pomo_sampled_states_index[value] = len(self.pomo_sampled_states)
            self.pomo_sampled_states.append(value)
            self._clear_cache()
        return self.num_states + self.pomo_sampled_states_index[value]

    def get_appearance(self, state: int) -> npt.NDArray[numpy.bool_]:
        """the concrete states compatible with a state"""
        num_states = self.num_states
        if state == self.unknown_state:
            return numpy.ones(num_states, dtype=bool)

        result = numpy.zeros(num_states, dtype=bool)
        if self.seq_type is SeqType.POMO:
            state = self.convert_pomo_state(state)

        if 0 <= state < num_states:
            result[state] = True
        elif self.seq_type is SeqType.DNA:
            bits = state - 3
            for i in range(num_states):
                result[i] = bool(bits & (1 << i))
        elif self.seq_type is SeqType.PROTEIN:
            assert state < PROTEIN_UNKNOWN, f"invalid protein state {state}"
            bits = _PROTEIN_AMBIGUITY_BITS[state - 20]
            for i in range(11):
                result[i] = bool(bits & (1 << i))
        else:
            raise AssertionError(f"state {state} has no appearance")
        return result

    def _clear_cache(self) -> None:
        self.__dict__.pop("_appearance", None)
        self.__dict__.pop("_resolved", None)

    def appearance_table(self) -> npt.NDArray[numpy.bool_]:
        """appearance of every code from 0 to unknown_state, by row"""
        if "_appearance" not in self.__dict__:
            table = numpy.zeros((self.unknown_state + 1, self.num_states), dtype=bool)
            for state in range(self.unknown_state + 1):
                table[state] = self.get_appearance(state)
            self._appearance = table
        return self._appearance

    def resolved_states(self) -> npt.NDArray[numpy.int32]:
        """concrete state of every code, codes that are not concrete map to
        themselves"""
        if "_resolved" not in self.__dict__:
            self._resolved = numpy.array(
                [self.convert_pomo_state(s) for s in range(self.unknown_state + 1)],
                dtype=numpy.int32,
            )
        return self._resolved

    def states_from_string(self, seq: str) -> list[int]:
        """states for every character, or codon, of a sequence"""
        if self.step == 3:
            return [
                self.convert_codon(seq[i : i + 3])[0] for i in range(0, len(seq), 3)
            ]
        return [self.convert_state(c) for c in seq]


@functools.singledispatch
def make_codec(seq_type, *args, **kwargs) -> StateCodec:
    """returns a StateCodec for a SeqType or a user type string"""
    raise TypeError(f"cannot make a codec from {type(seq_type)}")


@make_codec.register
def _(seq_type: SeqType, *args, **kwargs) -> StateCodec:
    return StateCodec(seq_type, *args, **kwargs)


@make_codec.register
def _(seq_type: str, num_states: int | None = None, **kwargs) -> StateCodec:
    parsed, code_id, nt2aa = parse_sequence_type(seq_type)
    if parsed is SeqType.CODON or nt2aa:
        return StateCodec(parsed, genetic_code=code_id, nt2aa=nt2aa)
    return StateCodec(parsed, num_states=num_states, **kwargs)
