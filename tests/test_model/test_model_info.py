import numpy
import pytest

from scitrack import CachingLogger

from phylopat.model.expression import ModelExpressionError
from phylopat.model.model_info import (
    ModelDefinitionError,
    ModelInfo,
    ModelParameter,
    ModelParameterType,
    ParameterRange,
    StateFreqType,
    load_model_definition,
    load_model_list,
)

GTR_MATRIX = [
    ["", "rate(1)", "rate(2)", "rate(3)"],
    ["rate(1)", "", "rate(4)", "rate(5)"],
    ["rate(2)", "rate(4)", "", "rate(6)"],
    ["rate(3)", "rate(5)", "rate(6)", None],
]


def gtr_document(**extra):
    document = {
        "citation": "Tavare 1986",
        "parameters": [
            {
                "name": "rate(1..6)",
                "type": "rate",
                "range": [0.001, 100],
                "initValue": 1,
                "description": "exchangeabilities",
            }
        ],
        "constraints": ["rate(6) = 1"],
        "rateMatrix": GTR_MATRIX,
        "stateFrequency": "estimate",
    }
    document.update(extra)
    return document


@pytest.fixture
def gtr():
    return load_model_definition(gtr_document(), name="GTR", source="test.yaml")


def test_load_properties(gtr):
    assert gtr.name == "GTR"
    assert gtr.citation == "Tavare 1986"
    assert gtr.num_states == 4
    assert gtr.reversible
    assert gtr.frequency_type is StateFreqType.ESTIMATE
    assert gtr.long_name == "GTR from YAML model file test.yaml"


def test_parameters(gtr):
    param = gtr.get_parameter("rate")
    assert param.is_subscripted
    assert param.count == 6
    assert param.type is ModelParameterType.RATE
    assert param.description == "exchangeabilities"
    assert param.variable_names()[0] == "rate(1)"
    assert gtr.get_variable_value("rate(3)") == 1
    assert gtr.get_parameter("missing") is None


def test_constraints_fix_variables(gtr):
    assert gtr.variables["rate(6)"].is_fixed
    assert gtr.free_variable_names() == [f"rate({i})" for i in range(1, 6)]
    lower, upper, checked = gtr.bounds()
    assert lower.tolist() == [0.001] * 5
    assert upper.tolist() == [100.0] * 5
    assert checked.all()


def test_rate_matrix(gtr):
    gtr.update_variables([1, 2, 3, 4, 5])
    matrix = gtr.get_rate_matrix()
    assert matrix.shape == (4, 4)
    assert matrix[0, 1] == 1
    assert matrix[1, 2] == 4
    assert matrix[2, 3] == 1
    numpy.testing.assert_allclose(matrix.sum(axis=1), 0)
    assert matrix[0, 0] == -6
    numpy.testing.assert_allclose(matrix, matrix.T)


def test_update_variables_wrong_length(gtr):
    with pytest.raises(ValueError):
        gtr.update_variables([1, 2])


def test_dump_matrix(gtr):
    text = gtr.dump_matrix()
    assert text.startswith("rate matrix for GTR is...\n")
    assert " : rate(1) : rate(2) : rate(3)\n" in text


def test_default_values():
    document = {
        "parameters": [
            {"name": "pi(4)", "type": "frequency"},
            {"name": "kappa", "type": "rate", "range": [2, 5]},
            {"name": ["x", "y"], "range": 3},
        ],
        "rateMatrix": [["", "kappa"], ["kappa", ""]],
        "stateFrequency": "pi",
        "numStates": "2",
    }
    info = load_model_definition(document, name="toy")
    assert info.get_variable_value("pi(1)") == 0.25
    assert info.get_parameter("pi").count == 4
    # the default rate of 1 is clamped into the declared range
    assert info.get_variable_value("kappa") == 2
    assert info.get_parameter("kappa").count == 1
    assert info.variables["x"].range == ParameterRange(3, 3, True)
    assert info.get_variable_value("y") == 3
    assert info.frequency_type is StateFreqType.USER_DEFINED
    assert info.num_states == 2
    assert info.get_rate_matrix().tolist() == [[-2, 2], [2, -2]]


@pytest.mark.parametrize(
    "freq,expect",
    [
        ("Empirical", StateFreqType.EMPIRICAL),
        ("uniform", StateFreqType.EQUAL),
        ("estimate", StateFreqType.ESTIMATE),
    ],
)
def test_state_frequency_names(freq, expect):
    info = load_model_definition(gtr_document(stateFrequency=freq), name="m")
    assert info.frequency_type is expect


def test_state_frequency_list():
    document = gtr_document(stateFrequency=[0.1, "0.1*2", 0.3, "1-0.6"])
    info = load_model_definition(document, name="m")
    assert info.frequency_type is StateFreqType.USER_DEFINED
    assert info.is_frequency_parameter("FREQ")
    values = [info.get_variable_value(f"freq({i})") for i in range(1, 5)]
    assert values == pytest.approx([0.1, 0.2, 0.3, 0.4])


@pytest.mark.parametrize(
    "freq,msg",
    [
        ("bogus", "unrecognized frequency"),
        ([0.2] * 5, "Too many frequencies"),
        ({"a": 1}, "unrecognized frequency"),
    ],
)
def test_state_frequency_errors(freq, msg):
    with pytest.raises(ModelDefinitionError, match=msg):
        load_model_definition(gtr_document(stateFrequency=freq), name="m")


def test_formula_matrix():
    document = {
        "parameters": [
            {
                "name": "rateMatrix",
                "type": "matrix",
                "formula": "row==column ? 0-(num_states-1) : 1",
                "rank": "num_states",
            }
        ],
    }
    info = load_model_definition(document, name="JC")
    assert info.rate_matrix.rank == 4
    matrix = info.get_rate_matrix()
    assert numpy.diag(matrix).tolist() == [-3] * 4
    assert matrix[0, 3] == 1
    text = info.dump_matrix("rate")
    assert "(with formula row==column ? 0-(num_states-1) : 1)" in text
    assert "-3 : 1 : 1 : 1\n" in text


def test_formula_matrix_dump_reports_errors():
    document = {
        "parameters": [
            {"name": "rate(1..3)", "type": "rate"},
            {
                "name": "tipLikelihood",
                "type": "matrix",
                "formula": "rate(column+1)",
                "rank": 4,
            },
        ],
        "rateMatrix": [["", "1"], ["1", ""]],
    }
    info = load_model_definition(document, name="m")
    assert "1 : 1 : 1 :  ERROR" in info.dump_matrix("tipLikelihood")
    with pytest.raises(ModelExpressionError):
        info.evaluate_matrix("tipLikelihood")


def test_value_matrix_parameter():
    document = {
        "parameters": [
            {"name": "a", "initValue": 0.5},
            {"name": "rateMatrix", "type": "matrix", "value": [["", "a"], ["a"]]},
        ],
    }
    info = load_model_definition(document, name="m")
    assert info.rate_matrix.expressions == [["", "a"], ["a", ""]]
    assert info.get_rate_matrix().tolist() == [[-0.5, 0.5], [0.5, -0.5]]


def test_scalar_properties():
    document = gtr_document(
        reversible="false",
        doi="10.1000/xyz",
        datatype="DNA",
        errormodel="+E",
        numStates=4,
    )
    info = load_model_definition(document, name="m")
    assert not info.reversible
    assert info.doi == "10.1000/xyz"
    assert info.data_type_name == "DNA"
    assert info.string_properties == {"errormodel": "+E"}


def test_frommodel_inherits():
    document = {
        "GTR": gtr_document(),
        "GTR2": {
            "frommodel": "GTR",
            "parameters": [{"name": "rate(1..6)", "range": [0, 10]}],
            "constraints": ["rate(5) = 2*rate(6)"],
        },
    }
    models = load_model_list(document, source="models.yaml")
    derived = models["GTR2"]
    assert derived.name == "GTR2"
    # the inherited value is kept when no initValue is given
    assert derived.get_variable_value("rate(1)") == 1
    assert derived.variables["rate(1)"].range == ParameterRange(0, 10, True)
    assert derived.get_variable_value("rate(5)") == 2
    assert derived.free_variable_names() == [f"rate({i})" for i in range(1, 5)]
    assert derived.get_rate_matrix().shape == (4, 4)
    # the base model is untouched
    assert models["GTR"].variables["rate(1)"].range.upper == 100
    assert not models["GTR"].variables["rate(5)"].is_fixed


def test_frommodel_missing():
    with pytest.raises(ModelDefinitionError, match="was not found"):
        load_model_definition({"frommodel": "GTR"}, name="m")


@pytest.mark.parametrize(
    "params,msg",
    [
        ([{"name": "rate"}], "Cannot redefine subscripted"),
        ([{"name": "rate(1..5)"}], "subscript range"),
    ],
)
def test_redefinition_errors(gtr, params, msg):
    with pytest.raises(ModelDefinitionError, match=msg):
        load_model_definition(
            {"frommodel": "GTR", "parameters": params}, name="m", models={"GTR": gtr}
        )


@pytest.mark.parametrize(
    "extra,msg",
    [
        ({"rateMatrix": None}, "does not specify a rateMatrix"),
        ({"rateMatrix": [["", "1", "1"], ["1", "", "1"]]}, "not square"),
        ({"rateMatrix": ["", "1"]}, "not a sequence"),
        ({"rateMatrix": [["", {"a": 1}], ["1", ""]]}, "not a scalar"),
        ({"constraints": ["rate(1)+1"]}, "not an assignment"),
        ({"constraints": ["2 = 3"]}, "did not assign a variable"),
        ({"constraints": "rate(1) = 2"}, "not a sequence"),
        ({"weight": 0.5}, "not part of a mixture model"),
        ({"scale": 2}, "not part of a mixture model"),
        ({"parameters": {"name": "x"}}, "not a sequence"),
        ({"parameters": [{"name": {"x": 1}}]}, "must have a name"),
        ({"parameters": [{"name": "x", "range": [1, 2, 3]}]}, "two bounds"),
        ({"parameters": [{"name": "x", "range": [2, 1]}]}, "greater than"),
        ({"parameters": [{"name": "x(1..y)"}]}, "Could not read subscript"),
        ({"parameters": [{"name": "x(1..3"}]}, "right parenthesis"),
        (
            {"parameters": [{"name": "rateMatrix(2)", "type": "matrix"}]},
            "explicitly subscripted",
        ),
        (
            {"parameters": [{"name": "rateMatrix", "type": "matrix"}]},
            "value must be defined",
        ),
        (
            {"parameters": [{"name": "Q", "type": "matrix", "value": [["1"]]}]},
            "not recognized",
        ),
        (
            {"parameters": [{"name": "rateMatrix", "type": "matrix", "value": "1"}]},
            "was not a matrix",
        ),
        (
            {
                "parameters": [
                    {"name": "rateMatrix", "type": "matrix", "formula": 1, "rank": 0}
                ]
            },
            "was invalid",
        ),
    ],
)
def test_definition_errors(extra, msg):
    with pytest.raises(ModelDefinitionError, match=msg):
        load_model_definition(gtr_document(**extra), name="m")


def test_expression_errors_become_definition_errors():
    document = gtr_document(constraints=["kappa = 1"])
    with pytest.raises(ModelDefinitionError, match="variable kappa") as err:
        load_model_definition(document, name="m", source="x.yaml")
    assert isinstance(err.value.__cause__, ModelExpressionError)
    assert "m from YAML model file x.yaml" in str(err.value)


def test_assign_unknown_variable():
    info = ModelInfo("m")
    with pytest.raises(ModelExpressionError, match="unrecognized variable"):
        info.assign("x", 1.0)
    assert info.force_assign("x", 2.0).value == 2.0


def test_add_parameter_replaces():
    info = ModelInfo("m")
    info.add_parameter(ModelParameter("k", value=1.0))
    info.add_parameter(ModelParameter("k", value=3.0, type=ModelParameterType.RATE))
    assert len(info.parameters) == 1
    assert info.variables["k"].value == 3.0
    assert info.variables["k"].type is ModelParameterType.RATE


def test_copy_is_independent(gtr):
    other = gtr.copy()
    other.assign("rate(1)", 9.0)
    other.rate_matrix.expressions[0][1] = "2"
    assert gtr.get_variable_value("rate(1)") == 1
    assert gtr.rate_matrix.expressions[0][1] == "rate(1)"


def test_logger_receives_notes(tmp_path):
    logger = CachingLogger(create_dir=True)
    logger.log_file_path = str(tmp_path / "model.log")
    load_model_definition(gtr_document(), name="GTR", logger=logger)
    logger.shutdown()
    text = (tmp_path / "model.log").read_text()
    assert "Parsed parameter rate of type rate" in text
    assert "Assigned rate(6) := 1" in text


def test_rejects_bad_logger():
    with pytest.raises(TypeError):
        load_model_definition(gtr_document(), name="m", logger="model.log")
