"""NCBI genetic codes used to build codon state spaces.

Notes
-----

* is used to denote termination (as per NCBI standard).

The NCBI code sequences are written in TCAG codon order. Codons are
looked up by their letters, so callers indexing codons in ACGT order
(``16*first + 4*second + third`` with A=0, C=1, G=2, T=3) translate the
index to letters first. ``GeneticCode.sense_codons`` is in ACGT order.
"""

import contextlib
import dataclasses
import itertools
import typing

StrORInt = typing.Union[str, int]
SetStr = typing.Set[str]

NCBI_BASE_ORDER = "TCAG"
STATE_BASE_ORDER = "ACGT"

# NCBI table ids above this are not supported
MAX_TRANSLATION_TABLE = 25


class GeneticCodeError(Exception):
    pass


class GeneticCodeInitError(ValueError, GeneticCodeError):
    pass


class InvalidCodonError(KeyError, GeneticCodeError):
    pass


def _all_codons(order: str) -> typing.Tuple[str, ...]:
    return tuple("".join(c) for c in itertools.product(order, repeat=3))


def _make_mappings(
    codons: typing.Tuple[str, ...], code_sequence: str
) -> typing.Tuple[typing.Dict[str, str], SetStr]:
    """makes the codon to amino acid mapping and stop codon group

    Parameters
    ----------
    codons
        the 64 codons in the order of code_sequence
    code_sequence
        64-character string containing NCBI representation of the genetic code.

    Returns
    -------
    codon to amino acid mapping, the set of stop codons
    """
    stops = set()
    codon_to_aa = {}
    for codon, aa in zip(codons, code_sequence):
        if aa == "*":
            stops.add(codon)
        codon_to_aa[codon] = aa
    return codon_to_aa, stops


@dataclasses.dataclass
class GeneticCode:
    """Holds codon to amino acid mapping, and vice versa."""

    ID: int
    name: str
    ncbi_code_sequence: str
    _codon_to_aa: typing.Dict[str, str] = dataclasses.field(init=False, default=None)
    _stop_codons: SetStr = dataclasses.field(init=False, default=None)

    def __post_init__(self):
        if len(self.ncbi_code_sequence) != 64:
            raise GeneticCodeInitError(
                f"genetic code {self.ID} has {len(self.ncbi_code_sequence)} "
                "codons, expected 64"
            )
        self._codon_to_aa, self._stop_codons = _make_mappings(
            _all_codons(NCBI_BASE_ORDER), self.ncbi_code_sequence
        )

    def __hash__(self):
        return hash(self.name)

    def __eq__(self, other):
        return self.name == getattr(other, "name", None)

    def __repr__(self):
        return f"{self.__class__.__name__}(ID={self.ID}, name={self.name!r})"

    @property
    def stop_codons(self) -> SetStr:
        return self._stop_codons

    @property
    def sense_codons(self) -> typing.Tuple[str, ...]:
        """the non-stop codons, in ACGT order"""
        return tuple(
            c for c in _all_codons(STATE_BASE_ORDER) if c not in self._stop_codons
        )

    def __getitem__(self, codon: str) -> str:
        """Returns amino acid corresponding to codon, '*' for a stop codon.

        Returns 'X' for a codon containing non-canonical characters.
        """
        codon = str(codon)
        if len(codon) != 3:
            raise InvalidCodonError(f"Codon {codon} has wrong length")

        key = codon.upper().replace("U", "T")
        return self._codon_to_aa.get(key, "X")

    def is_stop(self, codon: str) -> bool:
        """Returns True if codon is a stop codon, False otherwise."""
        return codon.upper().replace("U", "T") in self.stop_codons


_mapping_cols = "ncbi_code_sequence", "ID", "name"
# code mappings are based on the product of bases in order TCAG
code_mapping = (
    (
        "FFLLSSSSYY**CC*WLLLLPPPPHHQQRRRRIIIMTTTTNNKKSSRRVVVVAAAADDEEGGGG",
        1,
        "Standard",
    ),
    (
        "FFLLSSSSYY**CCWWLLLLPPPPHHQQRRRRIIMMTTTTNNKKSS**VVVVAAAADDEEGGGG",
        2,
        "Vertebrate Mitochondrial",
    ),
    (
        "FFLLSSSSYY**CCWWTTTTPPPPHHQQRRRRIIMMTTTTNNKKSSRRVVVVAAAADDEEGGGG",
        3,
        "Yeast Mitochondrial",
    ),
    (
        "FFLLSSSSYY**CCWWLLLLPPPPHHQQRRRRIIIMTTTTNNKKSSRRVVVVAAAADDEEGGGG",
        4,
        "Mold Mitochondrial; Protozoan Mitochondrial; Coelenterate "
        "Mitochondrial; Mycoplasma; Spiroplasma",
    ),
    (
        "FFLLSSSSYY**CCWWLLLLPPPPHHQQRRRRIIMMTTTTNNKKSSSSVVVVAAAADDEEGGGG",
        5,
        "Invertebrate Mitochondrial",
    ),
    (
        "FFLLSSSSYYQQCC*WLLLLPPPPHHQQRRRRIIIMTTTTNNKKSSRRVVVVAAAADDEEGGGG",
        6,
        "Ciliate Nuclear; Dasycladacean Nuclear; Hexamita Nuclear",
    ),
    (
        "FFLLSSSSYY**CCWWLLLLPPPPHHQQRRRRIIIMTTTTNNNKSSSSVVVVAAAADDEEGGGG",
        9,
        "Echinoderm Mitochondrial; Flatworm Mitochondrial",
    ),
    (
        "FFLLSSSSYY**CCCWLLLLPPPPHHQQRRRRIIIMTTTTNNKKSSRRVVVVAAAADDEEGGGG",
        10,
        "Euplotid Nuclear",
    ),
    (
        "FFLLSSSSYY**CC*WLLLLPPPPHHQQRRRRIIIMTTTTNNKKSSRRVVVVAAAADDEEGGGG",
        11,
        "Bacterial, Archaeal and Plant Plastid",
    ),
    (
        "FFLLSSSSYY**CC*WLLLSPPPPHHQQRRRRIIIMTTTTNNKKSSRRVVVVAAAADDEEGGGG",
        12,
        "Alternative Yeast Nuclear",
    ),
    (
        "FFLLSSSSYY**CCWWLLLLPPPPHHQQRRRRIIMMTTTTNNKKSSGGVVVVAAAADDEEGGGG",
        13,
        "Ascidian Mitochondrial",
    ),
    (
        "FFLLSSSSYYY*CCWWLLLLPPPPHHQQRRRRIIIMTTTTNNNKSSSSVVVVAAAADDEEGGGG",
        14,
        "Alternative Flatworm Mitochondrial",
    ),
    (
        "FFLLSSSSYY*QCC*WLLLLPPPPHHQQRRRRIIIMTTTTNNKKSSRRVVVVAAAADDEEGGGG",
        15,
        "Blepharisma Macronuclear",
    ),
    (
        "FFLLSSSSYY*LCC*WLLLLPPPPHHQQRRRRIIIMTTTTNNKKSSRRVVVVAAAADDEEGGGG",
        16,
        "Chlorophycean Mitochondrial",
    ),
    (
        "FFLLSSSSYY**CCWWLLLLPPPPHHQQRRRRIIMMTTTTNNNKSSSSVVVVAAAADDEEGGGG",
        21,
        "Trematode Mitochondrial",
    ),
    (
        "FFLLSS*SYY*LCC*WLLLLPPPPHHQQRRRRIIIMTTTTNNKKSSRRVVVVAAAADDEEGGGG",
        22,
        "Scenedesmus obliquus Mitochondrial",
    ),
    (
        "FF*LSSSSYY**CC*WLLLLPPPPHHQQRRRRIIIMTTTTNNKKSSRRVVVVAAAADDEEGGGG",
        23,
        "Thraustochytrium Mitochondrial",
    ),
    (
        "FFLLSSSSYY**CCWWLLLLPPPPHHQQRRRRIIIMTTTTNNKKSSSKVVVVAAAADDEEGGGG",
        24,
        "Rhabdopleuridae Mitochondrial",
    ),
    (
        "FFLLSSSSYY**CCGWLLLLPPPPHHQQRRRRIIIMTTTTNNKKSSRRVVVVAAAADDEEGGGG",
        25,
        "Candidate Division SR1 and Gracilibacteria",
    ),
)
_CODES = {}
for mapping in code_mapping:
    code = GeneticCode(**dict(zip(_mapping_cols, mapping)))
    _CODES[code.ID] = code
    _CODES[code.name] = code


DEFAULT = _CODES[1]


def get_code(code_id: typing.Optional[StrORInt] = 1) -> GeneticCode:
    """returns the genetic code

    Parameters
    ----------
    code_id
        genetic code identifier, name, number or string(number). None or an
        empty string give the standard genetic code.

    Raises
    ------
    GeneticCodeError if the code is unknown, or is one of the unavailable
    NCBI table numbers (7, 8, 17-20) or is above 25.
    """
    if code_id is None or code_id == "":
        code_id = 1

    if isinstance(code_id, GeneticCode):
        code_id = code_id.ID

    with contextlib.suppress(ValueError, TypeError):
        code_id = int(code_id)

    if code_id not in _CODES:
        raise GeneticCodeError(f"Wrong genetic code {code_id}")
    return _CODES[code_id]


def available_codes() -> typing.List[typing.Tuple[int, str]]:
    """returns (Code ID, Name) pairs for the supported genetic codes"""
    return [(k, code.name) for k, code in _CODES.items() if isinstance(k, int)]
