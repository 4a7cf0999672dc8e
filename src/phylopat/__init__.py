"""phylopat: site-pattern compressed alignments and the expression language
of user-defined substitution models."""

import logging
import os
import typing
import warnings
from importlib import import_module

from phylopat._version import __version__

__license__ = "BSD-3"


def __getattr__(name: str) -> typing.Any:  # noqa: ANN401
    if (attr := globals().get(name)) is not None:
        return attr

    if name not in _import_mapping:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module_name = _import_mapping[name]
    module = import_module(f".{module_name}", package=__name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


_import_mapping = {
    "AlignmentConfig": "core.config",
    "DEFAULT_CONFIG": "core.config",
    "PatternAlignment": "core.alignment",
    "make_alignment": "core.alignment",
    "AlignmentError": "core.alignment",
    "AlignmentFormatError": "core.alignment",
    "AlignmentWarning": "core.alignment",
    "IncompatibleAlignmentError": "core.alignment",
    "Pattern": "core.pattern",
    "SeqType": "core.state",
    "StateCodec": "core.state",
    "make_codec": "core.state",
    "get_code": "core.genetic_code",
    "available_codes": "core.genetic_code",
    "read_counts": "core.counts",
    "extract_sub_alignment": "core.derive",
    "create_bootstrap_alignment": "core.derive",
    "concatenate_alignment": "core.derive",
    "remove_identical_seq": "core.quality",
    "check_seq_name": "core.quality",
    "InterpretedExpression": "model.expression",
    "ModelExpressionError": "model.expression",
    "ModelInfo": "model.model_info",
    "ModelDefinitionError": "model.model_info",
    "load_model_definition": "model.model_info",
    "load_model_list": "model.model_info",
}

__all__ = list(_import_mapping.keys())

warn_env = "PHYLOPAT_WARNINGS"

if warn := os.environ.get(warn_env):
    warnings.simplefilter(warn)

# suppress numba warnings
__numba_logger = logging.getLogger("numba")
__numba_logger.setLevel(logging.WARNING)
