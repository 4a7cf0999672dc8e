import pytest

from phylopat.core.config import DEFAULT_CONFIG, AlignmentConfig


def test_defaults():
    assert DEFAULT_CONFIG.min_state_freq == 0.0001
    assert DEFAULT_CONFIG.max_error_lines == 100
    assert DEFAULT_CONFIG.num_workers == 1
    assert DEFAULT_CONFIG.compute_seq_composition


def test_frozen():
    with pytest.raises(AttributeError):
        DEFAULT_CONFIG.num_workers = 4


def test_dict_round_trip():
    config = AlignmentConfig(num_workers=3, keep_zero_freq=False)
    assert AlignmentConfig.from_dict(config.to_dict()) == config


def test_from_dict_unknown_key():
    with pytest.raises(ValueError, match="unknown config keys"):
        AlignmentConfig.from_dict({"num_workers": 2, "threads": 2})


def test_replace():
    config = DEFAULT_CONFIG.replace(show_progress=True)
    assert config.show_progress
    assert not DEFAULT_CONFIG.show_progress


@pytest.mark.parametrize(
    "kwargs",
    [{"min_state_freq": -1}, {"max_error_lines": -1}, {"num_workers": 0}],
)
def test_invalid_values(kwargs):
    with pytest.raises(ValueError):
        AlignmentConfig(**kwargs)
