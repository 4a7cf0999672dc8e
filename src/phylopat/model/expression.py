"""Infix expressions for the entries and constraints of model definitions.

Expressions are parsed with the shunting-yard algorithm into a tree of
nodes, then evaluated against the variables of a model. Recognised, from
highest to lowest precedence::

    ^    * /    + -    =    < >    == !=    &&    ||    :    ?

plus the unary functions ``exp`` and ``ln`` and parentheses. Operators of
equal precedence group to the right. Variables may carry a subscript,
``rate(3)`` or ``freq(row+1)``.
"""

import math
import re
import typing

NUMBER = re.compile(r"\d+\.?\d*(?:[eE][+-]?\d+)?")


class ModelExpressionError(ValueError):
    """a malformed expression, or one that cannot be evaluated"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class VariableEnvironment(typing.Protocol):
    """what an expression needs from the model it is evaluated against"""

    long_name: str

    def has_variable(self, name: str) -> bool: ...

    def has_subscripted_variable(self, base: str) -> bool: ...

    def get_variable_value(self, name: str) -> float: ...

    def assign(self, name: str, value: float): ...


class Expression:
    """base node, evaluates to 0"""

    kind = "expression"
    precedence = 0
    is_boolean = False
    is_list = False
    is_assignment = False

    def __init__(self, model: VariableEnvironment):
        self.model = model

    def evaluate(self) -> float:
        return 0.0

    def is_token(self, char: str) -> bool:
        return False


class Token(Expression):
    """a parenthesis, only present while parsing"""

    kind = "token"

    def __init__(self, model: VariableEnvironment, char: str):
        super().__init__(model)
        self.char = char

    def is_token(self, char: str) -> bool:
        return self.char == char


class Constant(Expression):
    kind = "constant"

    def __init__(self, model: VariableEnvironment, value: float):
        super().__init__(model)
        self.value = value

    def evaluate(self) -> float:
        return self.value


class Variable(Expression):
    """a named variable of the model, looked up when evaluated

    Raises
    ------
    ModelExpressionError
        if the model has no variable of that name
    """

    kind = "variable"

    def __init__(self, model: VariableEnvironment, name: str):
        super().__init__(model)
        if not model.has_variable(name):
            raise ModelExpressionError(
                f"Could not evaluate variable {name} for model {model.long_name}"
            )
        self.name = name

    def target_name(self) -> str:
        return self.name

    def evaluate(self) -> float:
        return self.model.get_variable_value(self.target_name())


class SubscriptedVariable(Variable):
    """``base(expression)``, the subscript is evaluated on every lookup"""

    def __init__(
        self, model: VariableEnvironment, base: str, subscript: "InterpretedExpression"
    ):
        Expression.__init__(self, model)
        if not model.has_subscripted_variable(base):
            raise ModelExpressionError(
                f"Could not evaluate variable {base} for model {model.long_name}"
            )
        self.base = base
        self.subscript = subscript

    @property
    def name(self) -> str:
        return self.target_name()

    def target_name(self) -> str:
        index = self.subscript.evaluate()
        name = f"{self.base}({int(math.floor(index))})"
        if not self.model.has_variable(name):
            raise ModelExpressionError(
                f"Could not evaluate variable {name} for model {self.model.long_name}"
            )
        return name


class UnaryFunction(Expression):
    kind = "function"

    def __init__(
        self,
        model: VariableEnvironment,
        name: str,
        body: typing.Callable[[float], float],
    ):
        super().__init__(model)
        self.name = name
        self.body = body
        self.parameter: Expression | None = None

    def set_parameter(self, parameter: Expression) -> None:
        self.parameter = parameter

    def evaluate(self) -> float:
        return self.body(self.parameter.evaluate())


def _ln(value: float) -> float:
    # follows C: log(0) is -inf, log of a negative number is nan
    if value == 0:
        return -math.inf
    if value < 0:
        return math.nan
    return math.log(value)


def _exp(value: float) -> float:
    try:
        return math.exp(value)
    except OverflowError:
        return math.inf


BUILT_IN_FUNCTIONS = {"exp": _exp, "ln": _ln}


class InfixOperator(Expression):
    kind = "operator"

    def __init__(self, model: VariableEnvironment):
        super().__init__(model)
        self.lhs: Expression | None = None
        self.rhs: Expression | None = None

    def set_operands(self, lhs: Expression, rhs: Expression) -> None:
        self.lhs = lhs
        self.rhs = rhs


class Exponentiation(InfixOperator):
    precedence = 12

    def evaluate(self) -> float:
        try:
            return math.pow(self.lhs.evaluate(), self.rhs.evaluate())
        except OverflowError:
            return math.inf
        except ValueError:
            return math.nan


class Multiplication(InfixOperator):
    precedence = 11

    def evaluate(self) -> float:
        return self.lhs.evaluate() * self.rhs.evaluate()


class Division(InfixOperator):
    precedence = 11

    def evaluate(self) -> float:
        numerator = self.lhs.evaluate()
        denominator = self.rhs.evaluate()
        if denominator == 0:
            if numerator == 0 or math.isnan(numerator):
                return math.nan
            return math.copysign(math.inf, numerator) * math.copysign(1, denominator)
        return numerator / denominator


class Addition(InfixOperator):
    precedence = 10

    def evaluate(self) -> float:
        return self.lhs.evaluate() + self.rhs.evaluate()


class Subtraction(InfixOperator):
    precedence = 10

    def evaluate(self) -> float:
        return self.lhs.evaluate() - self.rhs.evaluate()


class Assignment(InfixOperator):
    """stores the value of the right operand in the variable on the left"""

    precedence = 9
    is_assignment = True

    @property
    def target(self) -> Expression:
        return self.lhs

    @property
    def target_variable(self) -> Variable | None:
        return self.lhs if self.lhs.kind == "variable" else None

    @property
    def expression(self) -> Expression:
        return self.rhs

    def evaluate(self) -> float:
        value = self.rhs.evaluate()
        if self.lhs.kind != "variable":
            raise ModelExpressionError("Can only assign to variables")
        self.model.assign(self.lhs.target_name(), value)
        return value


class BooleanOperator(InfixOperator):
    """operators evaluating to 1.0 for true and 0.0 for false"""

    is_boolean = True


class LessThanOperator(BooleanOperator):
    precedence = 8

    def evaluate(self) -> float:
        return 1.0 if self.lhs.evaluate() < self.rhs.evaluate() else 0.0


class GreaterThanOperator(BooleanOperator):
    precedence = 8

    def evaluate(self) -> float:
        return 1.0 if self.lhs.evaluate() > self.rhs.evaluate() else 0.0


class EqualityOperator(BooleanOperator):
    precedence = 7

    def evaluate(self) -> float:
        return 1.0 if self.lhs.evaluate() == self.rhs.evaluate() else 0.0


class InequalityOperator(BooleanOperator):
    precedence = 7

    def evaluate(self) -> float:
        return 1.0 if self.lhs.evaluate() != self.rhs.evaluate() else 0.0


class ShortcutAndOperator(BooleanOperator):
    precedence = 6

    def evaluate(self) -> float:
        return 1.0 if self.lhs.evaluate() != 0 and self.rhs.evaluate() != 0 else 0.0


class ShortcutOrOperator(BooleanOperator):
    precedence = 5

    def evaluate(self) -> float:
        return 1.0 if self.lhs.evaluate() != 0 or self.rhs.evaluate() != 0 else 0.0


class ListOperator(InfixOperator):
    """``a : b : c``, a flat list of entries

    Evaluating a list gives the value of its last entry.
    """

    precedence = 4
    is_list = True

    def __init__(self, model: VariableEnvironment):
        super().__init__(model)
        self.entries: list[Expression] = []

    def set_operands(self, lhs: Expression, rhs: Expression) -> None:
        # operators of equal precedence nest to the right, so both sides
        # may already be lists
        self.entries = [
            entry
            for side in (lhs, rhs)
            for entry in (side.entries if side.is_list else [side])
        ]

    def __len__(self) -> int:
        return len(self.entries)

    def evaluate(self) -> float:
        value = 0.0
        for entry in self.entries:
            value = entry.evaluate()
        return value

    def evaluate_entry(self, index: int) -> float:
        if index < 0:
            raise ModelExpressionError(
                f"Cannot select list element with zero-based index {index}."
            )
        if index >= len(self.entries):
            raise ModelExpressionError(
                f"Cannot select list element with zero-based index {index} from "
                f"a list of {len(self.entries)} entries."
            )
        return self.entries[index].evaluate()


class SelectOperator(InfixOperator):
    """``condition ? a : b`` or ``index ? a : b : c``

    A boolean left operand picks the first list entry when true, the second
    when false. Without a list on the right, the right operand is the value
    when the condition holds and 0 otherwise. A numeric left operand is a
    zero-based index into the list.
    """

    precedence = 3

    def evaluate(self) -> float:
        lhs = self.lhs
        rhs = self.rhs
        if lhs.is_boolean:
            condition = lhs.evaluate()
            if rhs.is_list:
                return rhs.evaluate_entry(0 if condition else 1)
            return rhs.evaluate() if condition else 0.0

        index = lhs.evaluate()
        if index < 0:
            raise ModelExpressionError(
                f"Cannot select list element with zero-based index {index:g} from "
                "a list."
            )
        if rhs.is_list:
            if index >= len(rhs):
                raise ModelExpressionError(
                    f"Cannot select list element with zero-based index {index:g} "
                    f"from a list of {len(rhs)} entries."
                )
            return rhs.evaluate_entry(int(math.floor(index)))
        if index == 0:
            return 0.0
        return rhs.evaluate()


_OPERATORS = {
    "^": Exponentiation,
    "*": Multiplication,
    "/": Division,
    "+": Addition,
    "-": Subtraction,
    "<": LessThanOperator,
    ">": GreaterThanOperator,
    ":": ListOperator,
    "?": SelectOperator,
}

# first character: (required second character, two character operator,
# one character operator or None, complaint when the second is missing)
_DOUBLED = {
    "=": ("=", EqualityOperator, Assignment, None),
    "!": ("=", InequalityOperator, None, "unary not (!) operator not supported"),
    "&": ("&", ShortcutAndOperator, None, "bitwise-and & operator not supported"),
    "|": ("|", ShortcutOrOperator, None, "bitwise-or | operator not supported"),
}

_IDENTIFIER_TAIL = re.compile(r"[A-Za-z0-9._]*")


class InterpretedExpression:
    """an expression parsed from text and bound to a model

    Parameters
    ----------
    model
        supplies variable values, see VariableEnvironment
    text
        the expression, empty text gives an unset expression

    Raises
    ------
    ModelExpressionError
        for unsupported characters, unknown variables or missing operands
    """

    def __init__(self, model: VariableEnvironment, text: str):
        self.model = model
        self.text = text
        self.is_set = bool(text.strip())
        self.root = self._parse(text) if self.is_set else None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.text!r})"

    @property
    def expression(self) -> Expression | None:
        return self.root

    def evaluate(self) -> float:
        assert self.root is not None, "evaluating an unset expression"
        return self.root.evaluate()

    def _tokens(self, text: str) -> typing.Iterator[Expression]:
        ix = 0
        size = len(text)
        while True:
            while ix < size and text[ix] == " ":
                ix += 1
            if ix >= size:
                return
            ch = text[ix]
            if ch.isascii() and ch.isalpha():
                end = _IDENTIFIER_TAIL.match(text, ix + 1).end()
                name = text[ix:end]
                ix = end
                while ix < size and text[ix] == " ":
                    ix += 1
                if name in BUILT_IN_FUNCTIONS:
                    yield UnaryFunction(self.model, name, BUILT_IN_FUNCTIONS[name])
                    continue
                if ix < size and text[ix] == "(":
                    close = text.find(")", ix)
                    close = size if close < 0 else close + 1
                    subscript = text[ix:close]
                    ix = close
                    yield self._variable(name, subscript)
                    continue
                yield Variable(self.model, name)
                continue

            if ch.isdigit():
                match = NUMBER.match(text, ix)
                ix = match.end()
                yield Constant(self.model, float(match.group()))
                continue

            following = text[ix + 1] if ix + 1 < size else ""
            if ch in "()":
                yield Token(self.model, ch)
            elif ch in _OPERATORS:
                yield _OPERATORS[ch](self.model)
            elif ch in _DOUBLED:
                second, doubled, single, complaint = _DOUBLED[ch]
                if following == second:
                    ix += 1
                    yield doubled(self.model)
                elif single is None:
                    raise ModelExpressionError(complaint)
                else:
                    yield single(self.model)
            else:
                raise ModelExpressionError(
                    f"unrecognized character '{ch}' in expression"
                )
            ix += 1

    def _variable(self, name: str, subscript: str) -> Variable:
        """a plain numeric subscript is part of the variable name"""
        inner = subscript[1:-1] if subscript.endswith(")") else subscript[1:]
        if inner.strip().isdigit():
            return Variable(self.model, f"{name}({int(inner)})")
        if not inner.strip():
            return Variable(self.model, name + subscript)
        return SubscriptedVariable(
            self.model, name, InterpretedExpression(self.model, inner)
        )

    def _parse(self, text: str) -> Expression:
        output: list[Expression] = []
        operators: list[Expression] = []
        for token in self._tokens(text):
            if token.kind in ("constant", "variable"):
                output.append(token)
            elif token.kind == "function":
                operators.append(token)
            elif token.kind == "operator":
                while (
                    operators
                    and operators[-1].kind == "operator"
                    and operators[-1].precedence > token.precedence
                ):
                    output.append(operators.pop())
                operators.append(token)
            elif token.is_token("("):
                operators.append(token)
            elif token.is_token(")"):
                while operators and not operators[-1].is_token("("):
                    output.append(operators.pop())
                if operators and operators[-1].is_token("("):
                    operators.pop()
                if operators and operators[-1].kind == "function":
                    output.append(operators.pop())
        output.extend(reversed(operators))

        operands: list[Expression] = []
        for token in output:
            if token.kind == "operator":
                rhs = self._pop_operand(operands, token)
                lhs = self._pop_operand(operands, token)
                token.set_operands(lhs, rhs)
                operands.append(token)
            elif token.kind == "function":
                token.set_parameter(self._pop_operand(operands, token))
                operands.append(token)
            else:
                operands.append(token)
        assert len(operands) == 1, f"malformed expression {text!r}"
        return operands[0]

    def _pop_operand(self, operands: list[Expression], node: Expression) -> Expression:
        if not operands or operands[-1].kind == "token":
            raise ModelExpressionError(
                f"missing operand for {type(node).__name__} in expression {self.text!r}"
            )
        return operands.pop()
