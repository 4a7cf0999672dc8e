"""Substitution models defined by (already parsed) YAML-style documents.

A model definition is a mapping. The recognised keys are

``frommodel``
    name of a previously loaded model to start from
``numStates``, ``reversible``, ``citation``, ``doi``, ``datatype``
    scalar properties
``parameters``
    a list of parameter declarations, each a mapping with ``name`` (a
    string or list of strings, optionally subscripted as ``name(1..4)`` or
    ``name(4)``), ``type``, ``range``, ``initValue`` and ``description``.
    Parameters of type ``matrix`` define ``rateMatrix`` or
    ``tipLikelihood`` by ``value`` or by ``formula`` and ``rank``
``constraints``
    a list of assignments, ``name = expression``, fixing variables
``rateMatrix``
    a square list of rows of expressions
``stateFrequency``
    ``estimate``, ``empirical``, ``uniform``, the name of a frequency
    parameter, or a list of expressions
``errormodel``
    a string property
"""

import dataclasses
import enum
import math
import typing

import numpy

from scitrack import CachingLogger

from phylopat.core.alignment import check_logger, log_note
from phylopat.model.expression import InterpretedExpression, ModelExpressionError

DEFAULT_NUM_STATES = 4
MATRIX_NAMES = ("ratematrix", "tiplikelihood")
STRING_PROPERTIES = ("errormodel",)
_TRUE_WORDS = ("true", "yes", "t", "y", "1")


class ModelDefinitionError(ValueError):
    """a model definition that cannot be loaded"""


class ModelParameterType(enum.Enum):
    RATE = "rate"
    FREQUENCY = "frequency"
    WEIGHT = "weight"
    OTHER = "other"

    @classmethod
    def from_name(cls, type_name: str) -> "ModelParameterType":
        try:
            return cls(type_name)
        except ValueError:
            return cls.OTHER


class StateFreqType(enum.Enum):
    ESTIMATE = "estimate"
    EMPIRICAL = "empirical"
    EQUAL = "uniform"
    USER_DEFINED = "user defined"


@dataclasses.dataclass
class ParameterRange:
    lower: float = 0.0
    upper: float = 0.0
    is_set: bool = False

    def clamp(self, value: float) -> float:
        if not self.is_set:
            return value
        return min(max(value, self.lower), self.upper)


@dataclasses.dataclass
class ModelVariable:
    type: ModelParameterType = ModelParameterType.OTHER
    range: ParameterRange = dataclasses.field(default_factory=ParameterRange)
    value: float = 0.0
    is_fixed: bool = False

    def mark_as_fixed(self) -> None:
        self.is_fixed = True


@dataclasses.dataclass
class ModelParameter:
    """a declared parameter, possibly a vector of subscripted variables"""

    name: str
    description: str = ""
    is_subscripted: bool = False
    minimum_subscript: int = 1
    maximum_subscript: int = 1
    type_name: str = ""
    type: ModelParameterType = ModelParameterType.OTHER
    range: ParameterRange = dataclasses.field(default_factory=ParameterRange)
    value: float = 0.0

    @property
    def count(self) -> int:
        return self.maximum_subscript - self.minimum_subscript + 1

    def subscripted_name(self, subscript: int) -> str:
        return f"{self.name}({subscript})"

    def variable_names(self) -> list[str]:
        if not self.is_subscripted:
            return [self.name]
        return [
            self.subscripted_name(i)
            for i in range(self.minimum_subscript, self.maximum_subscript + 1)
        ]


@dataclasses.dataclass
class MatrixDefinition:
    """cell expressions, or a formula applied over a rank by rank grid"""

    expressions: list[list[str]] = dataclasses.field(default_factory=list)
    formula: str = ""
    rank: int = 0

    def __bool__(self) -> bool:
        return bool(self.expressions or self.formula)

    def copy(self) -> "MatrixDefinition":
        return MatrixDefinition(
            expressions=[list(row) for row in self.expressions],
            formula=self.formula,
            rank=self.rank,
        )


class ModelInfo:
    """the variables, parameters and matrices of one model

    Variables are held by name, subscripted variables as ``name(i)``. The
    reserved variables ``num_states``, ``row`` and ``column`` are created
    when matrices are evaluated.
    """

    def __init__(self, name: str = "", num_states: int = DEFAULT_NUM_STATES):
        self.name = name
        self.source = ""
        self.citation = ""
        self.doi = ""
        self.data_type_name = ""
        self.num_states = num_states
        self.reversible = True
        self.rate_matrix = MatrixDefinition()
        self.tip_likelihood = MatrixDefinition()
        self.parameters: list[ModelParameter] = []
        self.frequency_type: StateFreqType | None = None
        self.string_properties: dict[str, str] = {}
        self.variables: dict[str, ModelVariable] = {}

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(name={self.name!r}, "
            f"num_states={self.num_states}, num_parameters={len(self.parameters)})"
        )

    def copy(self) -> "ModelInfo":
        new = self.__class__(self.name, self.num_states)
        new.source = self.source
        new.citation = self.citation
        new.doi = self.doi
        new.data_type_name = self.data_type_name
        new.reversible = self.reversible
        new.rate_matrix = self.rate_matrix.copy()
        new.tip_likelihood = self.tip_likelihood.copy()
        new.parameters = [dataclasses.replace(p) for p in self.parameters]
        new.frequency_type = self.frequency_type
        new.string_properties = dict(self.string_properties)
        new.variables = {k: dataclasses.replace(v) for k, v in self.variables.items()}
        return new

    @property
    def long_name(self) -> str:
        return f"{self.name} from YAML model file {self.source}"

    def has_variable(self, name: str) -> bool:
        return name in self.variables

    def has_subscripted_variable(self, base: str) -> bool:
        prefix = f"{base}("
        return any(name.startswith(prefix) for name in self.variables)

    def get_variable_value(self, name: str) -> float:
        variable = self.variables.get(name)
        return 0.0 if variable is None else variable.value

    def assign(self, name: str, value: float) -> ModelVariable:
        """sets the value of an existing variable

        Raises
        ------
        ModelExpressionError
            if the variable does not exist
        """
        if name not in self.variables:
            raise ModelExpressionError(
                f"Could not assign to unrecognized variable {name} of model "
                f"{self.name}"
            )
        variable = self.variables[name]
        variable.value = value
        return variable

    def force_assign(self, name: str, value: float) -> ModelVariable:
        """sets the value of a variable, creating it if need be"""
        variable = self.variables.setdefault(name, ModelVariable())
        variable.value = value
        return variable

    def add_parameter(self, param: ModelParameter) -> None:
        """adds or replaces param, creating its variables"""
        for i, existing in enumerate(self.parameters):
            if existing.name == param.name:
                self.parameters[i] = param
                break
        else:
            self.parameters.append(param)

        for name in param.variable_names():
            variable = self.variables.get(name)
            if variable is None:
                self.variables[name] = ModelVariable(
                    type=param.type, range=param.range, value=param.value
                )
            else:
                variable.type = param.type
                variable.range = param.range
                variable.value = param.value

    def get_parameter(self, name: str) -> ModelParameter | None:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    def is_frequency_parameter(self, name: str) -> bool:
        name = name.lower()
        return any(
            p.name.lower() == name and p.type is ModelParameterType.FREQUENCY
            for p in self.parameters
        )

    def free_variable_names(self) -> list[str]:
        """names of the parameter variables not fixed by constraints"""
        return [
            name
            for param in self.parameters
            for name in param.variable_names()
            if not self.variables[name].is_fixed
        ]

    def bounds(self) -> tuple[numpy.ndarray, numpy.ndarray, numpy.ndarray]:
        """lower and upper bounds of the free variables

        Returns
        -------
        lower, upper and a boolean array that is True where the range was
        declared
        """
        names = self.free_variable_names()
        ranges = [self.variables[n].range for n in names]
        lower = numpy.array([r.lower for r in ranges], dtype=float)
        upper = numpy.array([r.upper for r in ranges], dtype=float)
        checked = numpy.array([r.is_set for r in ranges], dtype=bool)
        return lower, upper, checked

    def update_variables(self, values: typing.Sequence[float]) -> None:
        """sets the free variables, in the order of free_variable_names"""
        names = self.free_variable_names()
        if len(values) != len(names):
            raise ValueError(
                f"expected {len(names)} values for model {self.name}, "
                f"got {len(values)}"
            )
        for name, value in zip(names, values):
            self.variables[name].value = float(value)

    def evaluate(self, text: str) -> float:
        return InterpretedExpression(self, text).evaluate()

    def _matrix_definition(self, name: str) -> MatrixDefinition:
        lower = name.lower()
        if lower in ("rate", "ratematrix"):
            return self.rate_matrix
        if lower == "tiplikelihood":
            return self.tip_likelihood
        raise ValueError(f"unknown matrix {name!r}")

    def evaluate_matrix(self, name: str = "rateMatrix") -> numpy.ndarray:
        """values of the named matrix, for the current variable values

        Parameters
        ----------
        name
            ``rateMatrix`` or ``tipLikelihood``

        Notes
        -----
        ``row`` and ``column`` are zero-based while a cell is evaluated.
        Blank cells are 0, except that a blank diagonal entry of the rate
        matrix is minus the sum of the rest of its row.

        Raises
        ------
        ModelExpressionError
            if a cell cannot be evaluated
        """
        definition = self._matrix_definition(name)
        self.force_assign("num_states", float(self.num_states))
        if definition.expressions:
            cells = definition.expressions
            rank = len(cells)
            ncols = max(len(row) for row in cells)
        else:
            rank = ncols = definition.rank
            cells = [[definition.formula] * rank for _ in range(rank)]
        result = numpy.zeros((rank, ncols), dtype=float)
        blank = numpy.zeros((rank, ncols), dtype=bool)
        for row in range(rank):
            self.force_assign("row", float(row))
            for col in range(ncols):
                self.force_assign("column", float(col))
                text = cells[row][col] if col < len(cells[row]) else ""
                if not text.strip():
                    blank[row, col] = True
                    continue
                result[row, col] = self.evaluate(text)

        if definition is self.rate_matrix and rank == ncols:
            for i in range(rank):
                if blank[i, i]:
                    result[i, i] = -(result[i].sum() - result[i, i])
        return result

    def get_rate_matrix(self) -> numpy.ndarray:
        return self.evaluate_matrix("rateMatrix")

    def dump_matrix(self, name: str = "rate") -> str:
        """text listing of a matrix

        Cell expressions are listed verbatim. A matrix defined by a formula
        is listed with the value of the formula in every cell, or ERROR
        where it cannot be evaluated.
        """
        definition = self._matrix_definition(name)
        self.force_assign("num_states", float(self.num_states))
        row_var = self.force_assign("row", 0.0)
        column_var = self.force_assign("column", 0.0)
        lines = []
        with_formula = ""
        if definition.expressions:
            for row, cells in enumerate(definition.expressions):
                row_var.value = float(row)
                lines.append(" : ".join(cells))
        else:
            with_formula = f" (with formula {definition.formula})"
            for row in range(definition.rank):
                row_var.value = float(row)
                cells = []
                for col in range(definition.rank):
                    column_var.value = float(col)
                    try:
                        cells.append(f"{self.evaluate(definition.formula):g}")
                    except ModelExpressionError:
                        cells.append(" ERROR")
                lines.append(" : ".join(cells))
        body = "".join(f"{line}\n" for line in lines)
        return f"{name} matrix for {self.name}{with_formula} is...\n{body}"


def _is_sequence(node) -> bool:
    return isinstance(node, (list, tuple))


def _is_scalar(node) -> bool:
    return isinstance(node, (str, int, float, bool))


def _scalar_text(node) -> str:
    if isinstance(node, bool):
        return "true" if node else "false"
    return str(node)


def _string_value(mapping: typing.Mapping, key: str, default: str) -> str:
    node = mapping.get(key)
    if node is None or not _is_scalar(node):
        return default
    return _scalar_text(node)


def _boolean_value(mapping: typing.Mapping, key: str, default: bool) -> bool:
    node = mapping.get(key)
    if node is None:
        return default
    if isinstance(node, bool):
        return node
    return _scalar_text(node).strip().lower() in _TRUE_WORDS


def _integer_value(mapping: typing.Mapping, key: str, default: int) -> int:
    text = _string_value(mapping, key, "").strip()
    if not text or not text[0].isdigit():
        return default
    digits = text[: len(text) - len(text.lstrip("0123456789"))]
    return int(digits)


def _to_float(node, default: float) -> float:
    try:
        return float(node)
    except (TypeError, ValueError):
        return default


def _parse_range(node, default: ParameterRange) -> ParameterRange:
    if node is None:
        return default
    bounds = list(node) if _is_sequence(node) else [node]
    if not bounds:
        return default
    if len(bounds) > 2:
        raise ModelDefinitionError("Range may only have two bounds (lower, upper)")
    lower = _to_float(bounds[0], 0.0)
    upper = _to_float(bounds[-1], lower)
    if upper < lower:
        raise ModelDefinitionError(
            f"Range has lower bound ({lower:g}) greater than its upper bound "
            f"({upper:g})"
        )
    return ParameterRange(lower=lower, upper=upper, is_set=True)


def _leading_int(text: str) -> tuple[int, str]:
    digits = text[: len(text) - len(text.lstrip("0123456789"))]
    if not digits:
        raise ModelDefinitionError(f"Could not read subscript from {text!r}")
    return int(digits), text[len(digits) :]


def _split_subscript(declared: str) -> tuple[str, bool, int, int]:
    """name, whether subscripted, and the subscript range of a declaration"""
    bracket = declared.find("(")
    if bracket < 0:
        return declared, False, 1, 1
    rest = declared[bracket + 1 :]
    minimum, rest = _leading_int(rest)
    if rest.startswith(".."):
        maximum, rest = _leading_int(rest[2:])
    else:
        minimum, maximum = 1, minimum
    if not rest.startswith(")"):
        raise ModelDefinitionError(
            "Subscript range does not end with right parenthesis"
        )
    return declared[:bracket], True, minimum, maximum


class _ModelLoader:
    """reads one model definition into a ModelInfo"""

    def __init__(
        self,
        info: ModelInfo,
        logger: CachingLogger | None,
    ):
        self.info = info
        self.logger = logger

    def note(self, text: str) -> None:
        log_note(self.logger, text, label="model")

    def matrix_rows(self, rows, context: str) -> list[list[str]]:
        expressions = []
        for number, row in enumerate(rows, start=1):
            where = f"Row {number} of {context}"
            if not _is_sequence(row):
                raise ModelDefinitionError(f"{where} is not a sequence")
            cells = []
            for col in row:
                if col is None:
                    cells.append("")
                elif not _is_scalar(col):
                    raise ModelDefinitionError(
                        f"Column {len(cells) + 1} of {where} is not a scalar"
                    )
                else:
                    cells.append(_scalar_text(col))
            expressions.append(cells)
        width = max((len(row) for row in expressions), default=0)
        for row in expressions:
            row.extend([""] * (width - len(row)))
        return expressions

    def parameters(self, params) -> None:
        if not _is_sequence(params):
            raise ModelDefinitionError(
                f"Parameters of model {self.info.long_name} not a sequence"
            )
        for param in params:
            names = param.get("name")
            if names is None:
                continue
            if _is_scalar(names):
                self.parameter(param, _scalar_text(names))
            elif _is_sequence(names):
                for name in names:
                    if _is_scalar(name):
                        self.parameter(param, _scalar_text(name))
            else:
                raise ModelDefinitionError("Model parameter must have a name")

    def parameter(self, param: typing.Mapping, declared: str) -> None:
        info = self.info
        name, is_subscripted, minimum, maximum = _split_subscript(declared)
        type_name = _string_value(param, "type", "").lower()
        if type_name == "matrix":
            if is_subscripted:
                raise ModelDefinitionError(
                    "Matrix subscripts are implied by the matrix value itself, but "
                    f"{name} parameter of model {info.name} was explicitly "
                    "subscripted (which is not supported)."
                )
            if "value" not in param and not ("formula" in param and "rank" in param):
                raise ModelDefinitionError(
                    f"{name} matrix parameter's value must be defined in model "
                    f"{info.name}."
                )
            self.matrix_parameter(param, name)
            return

        p = ModelParameter(
            name=name,
            is_subscripted=is_subscripted,
            minimum_subscript=minimum,
            maximum_subscript=maximum,
        )
        old = info.get_parameter(name)
        overriding = old is not None
        if overriding:
            if old.is_subscripted != is_subscripted:
                raise ModelDefinitionError(
                    "Cannot redefine subscripted parameter as unsubscripted "
                    "(or vice versa)"
                )
            if (old.minimum_subscript, old.maximum_subscript) != (minimum, maximum):
                raise ModelDefinitionError("Cannot redefine parameter subscript range")
            p = dataclasses.replace(old)
            if "type" in param:
                p.type_name = type_name
        else:
            p.type_name = type_name
        p.type = ModelParameterType.from_name(p.type_name)

        assert p.count > 0, f"empty subscript range for {name}"
        if p.type in (ModelParameterType.FREQUENCY, ModelParameterType.WEIGHT):
            default = 1.0 / p.count
        elif p.type is ModelParameterType.RATE:
            default = 1.0
        else:
            default = 0.0

        p.range = _parse_range(param.get("range"), p.range)
        init_value = param.get("initValue")
        if init_value is not None and _scalar_text(init_value) != "":
            p.value = _to_float(init_value, default)
        elif not overriding:
            p.value = p.range.clamp(default)
        p.description = _string_value(param, "description", p.description)
        self.note(
            f"Parsed parameter {p.name} of type {p.type_name}, with range "
            f"{p.range.lower:g} to {p.range.upper:g}, and initial value {p.value:g}"
        )
        info.add_parameter(p)

    def matrix_parameter(self, param: typing.Mapping, name: str) -> None:
        info = self.info
        definition = MatrixDefinition()
        value = param.get("value")
        if value is not None:
            if not _is_sequence(value):
                raise ModelDefinitionError(
                    f"value of {name} matrix of model {info.name} was not a matrix"
                )
            definition.expressions = self.matrix_rows(
                value, f"{name} matrix for model {info.long_name}"
            )
            definition.rank = len(definition.expressions)

        rank = param.get("rank")
        if rank is not None:
            if not _is_scalar(rank):
                raise ModelDefinitionError(
                    f"rank of {name} matrix of model {info.name} was not a scalar"
                )
            info.force_assign("num_states", float(info.num_states))
            rank_text = _scalar_text(rank)
            definition.rank = int(math.floor(info.evaluate(rank_text)))
            if definition.rank <= 0:
                raise ModelDefinitionError(
                    f"rank of {name} matrix of model {info.name} was invalid "
                    f"({rank_text})"
                )
            self.note(
                f"Rank of {info.name}.{name} was {rank_text} ... or {definition.rank}"
            )

        formula = param.get("formula")
        if formula is not None:
            if not _is_scalar(formula):
                raise ModelDefinitionError(
                    f"formula of {name} matrix of model {info.name} was not a scalar"
                )
            definition.formula = _scalar_text(formula)

        lower = name.lower()
        if lower not in MATRIX_NAMES:
            raise ModelDefinitionError(
                f"{name} matrix parameter not recognized in {info.name} model"
            )
        if lower == "ratematrix":
            info.rate_matrix = definition
        else:
            info.tip_likelihood = definition
        self.note(info.dump_matrix(lower))

    def constraints(self, constraints) -> None:
        info = self.info
        if not _is_sequence(constraints):
            raise ModelDefinitionError(
                f"Constraints for model {info.long_name} not a sequence"
            )
        for constraint in constraints:
            if not _is_scalar(constraint):
                raise ModelDefinitionError(
                    f"Constraint setting for model {info.name} was not a scalar."
                )
            text = _scalar_text(constraint)
            root = InterpretedExpression(info, text).expression
            if root is None or not root.is_assignment:
                raise ModelDefinitionError(
                    f"Constraint setting for model {info.name} was not an "
                    f"assignment: {text}"
                )
            target = root.target_variable
            if target is None:
                raise ModelDefinitionError(
                    f"Constraint setting for model {info.name} did not assign a "
                    f"variable: {text}"
                )
            setting = root.expression.evaluate()
            name = target.target_name()
            info.assign(name, setting).mark_as_fixed()
            self.note(f"Assigned {name} := {setting:g}")

    def rate_matrix(self, rows) -> None:
        info = self.info
        if not _is_sequence(rows):
            raise ModelDefinitionError(
                f"Rate matrix for model {info.long_name} is not a sequence"
            )
        expressions = self.matrix_rows(rows, f"rate matrix for model {info.long_name}")
        num_rows = len(expressions)
        num_cols = len(expressions[0]) if expressions else 0
        if num_rows != num_cols:
            raise ModelDefinitionError(
                f"Rate matrix for model {info.long_name} was not square: it had "
                f"{num_rows} rows and {num_cols} columns."
            )
        info.rate_matrix = MatrixDefinition(
            expressions=expressions, formula=info.rate_matrix.formula, rank=num_rows
        )
        self.note(info.dump_matrix("rate"))

    def state_frequency(self, node) -> None:
        info = self.info
        if _is_scalar(node):
            text = _scalar_text(node).lower()
            if text == "estimate":
                info.frequency_type = StateFreqType.ESTIMATE
            elif text == "empirical":
                info.frequency_type = StateFreqType.EMPIRICAL
            elif text == "uniform":
                info.frequency_type = StateFreqType.EQUAL
            elif info.is_frequency_parameter(text):
                info.frequency_type = StateFreqType.USER_DEFINED
            else:
                raise ModelDefinitionError(
                    f"Model {info.long_name} has unrecognized frequency {node}"
                )
            return
        if not _is_sequence(node):
            raise ModelDefinitionError(
                f"Model {info.long_name} has unrecognized frequency {node}"
            )

        info.frequency_type = StateFreqType.USER_DEFINED
        freq = ModelParameter(
            name="freq",
            is_subscripted=True,
            minimum_subscript=1,
            maximum_subscript=info.num_states,
            type_name="frequency",
            type=ModelParameterType.FREQUENCY,
            value=1.0 / info.num_states,
        )
        info.add_parameter(freq)
        if len(node) > freq.count:
            raise ModelDefinitionError(
                f"Too many frequencies specified for Model {info.long_name}"
            )
        for subscript, entry in enumerate(node, start=freq.minimum_subscript):
            if not _is_scalar(entry):
                raise ModelDefinitionError(
                    f"Model {info.long_name} has unrecognized frequency {entry}"
                )
            name = freq.subscripted_name(subscript)
            value = info.evaluate(_scalar_text(entry))
            info.assign(name, value)
            self.note(f"Assigned frequency: {name} := {value:g}")

    def load(self, document: typing.Mapping, name: str) -> None:
        info = self.info
        for key in ("weight", "scale"):
            if key in document:
                raise ModelDefinitionError(
                    f"Model {name} in file {info.source} is not part of a mixture "
                    "model"
                )
        info.citation = _string_value(document, "citation", info.citation)
        info.doi = _string_value(document, "doi", info.doi)
        info.reversible = _boolean_value(document, "reversible", info.reversible)
        info.data_type_name = _string_value(document, "datatype", info.data_type_name)
        info.num_states = _integer_value(document, "numStates", info.num_states)

        if "parameters" in document:
            self.parameters(document["parameters"])
        if "constraints" in document:
            self.constraints(document["constraints"])

        rate_matrix = document.get("rateMatrix")
        if rate_matrix is None and not info.rate_matrix:
            raise ModelDefinitionError(
                f"Model {name} in file {info.source} does not specify a rateMatrix"
            )
        if rate_matrix is not None:
            self.rate_matrix(rate_matrix)

        if "stateFrequency" in document:
            self.state_frequency(document["stateFrequency"])

        for key in STRING_PROPERTIES:
            value = document.get(key)
            if value is not None and _is_scalar(value):
                info.string_properties[key] = _scalar_text(value)
                self.note(f"string property {key} set to {value}")


def load_model_definition(
    document: typing.Mapping,
    name: str = "",
    models: typing.Mapping[str, ModelInfo] | None = None,
    source: str = "",
    logger: CachingLogger | None = None,
) -> ModelInfo:
    """builds a ModelInfo from a parsed model definition

    Parameters
    ----------
    document
        the definition, see the module docstring for its keys
    name
        the model name, defaults to that of the ``frommodel`` model
    models
        previously loaded models, by name, that ``frommodel`` may refer to
    source
        where the definition came from, used in messages
    logger
        receives notes on every parameter, constraint and matrix read

    Raises
    ------
    ModelDefinitionError
        for malformed definitions, including expressions that cannot be
        parsed or evaluated
    """
    logger = check_logger(logger)
    models = models or {}
    base_name = _string_value(document, "frommodel", "")
    if base_name:
        if base_name not in models:
            raise ModelDefinitionError(
                f"Model {name} specifies frommodel {base_name}, but that model "
                "was not found."
            )
        info = models[base_name].copy()
        log_note(logger, f"Model {name} is based on model {base_name}", label="model")
    else:
        info = ModelInfo()
    info.name = name or base_name
    info.source = source

    loader = _ModelLoader(info, logger)
    try:
        loader.load(document, info.name)
    except ModelExpressionError as err:
        raise ModelDefinitionError(f"{info.long_name}: {err.message}") from err
    return info


def load_model_list(
    document: typing.Mapping[str, typing.Mapping],
    source: str = "",
    logger: CachingLogger | None = None,
) -> dict[str, ModelInfo]:
    """loads every model of a document mapping names to definitions

    Later definitions may name earlier ones as ``frommodel``.
    """
    models: dict[str, ModelInfo] = {}
    for name, definition in document.items():
        models[name] = load_model_definition(
            definition, name=name, models=models, source=source, logger=logger
        )
    return models
