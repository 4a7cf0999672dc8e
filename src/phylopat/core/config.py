import dataclasses
import typing

from typing_extensions import Self


@dataclasses.dataclass(frozen=True)
class AlignmentConfig:
    """settings consulted when building and checking alignments

    Attributes
    ----------
    min_state_freq
        floor applied to state frequencies, also the threshold below which
        a state is reported as rare
    keep_zero_freq
        if True, zero state frequencies are kept as they are
    compute_seq_composition
        run the per-sequence composition test
    list_sequences
        include one row per sequence in the composition report
    max_error_lines
        number of invalid character messages kept verbatim
    num_workers
        number of processes used for site transcription, 1 is serial
    show_progress
        display a progress bar during site transcription
    """

    min_state_freq: float = 0.0001
    keep_zero_freq: bool = True
    compute_seq_composition: bool = True
    list_sequences: bool = True
    max_error_lines: int = 100
    num_workers: int = 1
    show_progress: bool = False

    def __post_init__(self):
        if self.min_state_freq < 0:
            raise ValueError(f"min_state_freq={self.min_state_freq} is negative")
        if self.max_error_lines < 0:
            raise ValueError(f"max_error_lines={self.max_error_lines} is negative")
        if self.num_workers < 1:
            raise ValueError(f"num_workers={self.num_workers} must be >= 1")

    @classmethod
    def from_dict(cls, data: typing.Mapping[str, typing.Any]) -> Self:
        fields = {f.name for f in dataclasses.fields(cls)}
        if unknown := sorted(set(data) - fields):
            raise ValueError(f"unknown config keys {unknown}")
        return cls(**data)

    def to_dict(self) -> dict[str, typing.Any]:
        return dataclasses.asdict(self)

    def replace(self, **kwargs) -> Self:
        return dataclasses.replace(self, **kwargs)


DEFAULT_CONFIG = AlignmentConfig()
