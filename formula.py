"""
Arithmetic formula evaluator for admin-configured pricing formulas.

Formulas are parsed with the `ast` module and the tree is checked node by node
before anything is computed: only numbers, bound variable names, + - * /,
unary signs, parentheses and calls to min/max/round/abs are accepted.
Anything else (attribute access, subscripts, comparisons, lambdas, strings,
names outside the binding set) is rejected.
"""
import ast
import math
import operator
from typing import Mapping

from errors import FormulaError

FUNCTIONS = {
    "min": min,
    "max": max,
    "round": round,
    "abs": abs,
}

_BINARY = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}

_UNARY = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


class _Checker(ast.NodeVisitor):
    """Walks a parsed formula and raises on the first forbidden construct."""

    def __init__(self, names):
        self.names = names

    def visit_Expression(self, node):
        self.visit(node.body)

    def visit_BinOp(self, node):
        if type(node.op) not in _BINARY:
            raise FormulaError(f"Operator not allowed: {type(node.op).__name__}")
        self.visit(node.left)
        self.visit(node.right)

    def visit_UnaryOp(self, node):
        if type(node.op) not in _UNARY:
            raise FormulaError(f"Operator not allowed: {type(node.op).__name__}")
        self.visit(node.operand)

    def visit_Constant(self, node):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise FormulaError(f"Literal not allowed: {node.value!r}")

    def visit_Name(self, node):
        if node.id not in self.names:
            raise FormulaError(f"Unknown variable: {node.id}")

    def visit_Call(self, node):
        if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
            raise FormulaError("Only min, max, round and abs may be called")
        if node.keywords:
            raise FormulaError("Keyword arguments are not allowed")
        if not node.args:
            raise FormulaError(f"{node.func.id}() needs at least one argument")
        for arg in node.args:
            self.visit(arg)

    def generic_visit(self, node):
        raise FormulaError(f"Construct not allowed: {type(node).__name__}")


def parse(formula: str, names) -> ast.Expression:
    """Parse and check `formula` against the allowed variable `names`."""
    if formula is None or not str(formula).strip():
        raise FormulaError("Formula is empty")
    try:
        tree = ast.parse(str(formula).strip(), mode="eval")
    except SyntaxError as e:
        raise FormulaError(f"Invalid formula syntax: {e.msg}") from e
    except (RecursionError, MemoryError, ValueError) as e:
        raise FormulaError("Formula is too long or too deeply nested") from e
    try:
        _Checker(frozenset(names) - frozenset(FUNCTIONS)).visit(tree)
    except RecursionError as e:
        raise FormulaError("Formula is too long or too deeply nested") from e
    return tree


def _eval(node, variables):
    if isinstance(node, ast.Expression):
        return _eval(node.body, variables)
    if isinstance(node, ast.Constant):
        return node.value
    if isinstance(node, ast.Name):
        return variables[node.id]
    if isinstance(node, ast.UnaryOp):
        return _UNARY[type(node.op)](_eval(node.operand, variables))
    if isinstance(node, ast.BinOp):
        return _BINARY[type(node.op)](_eval(node.left, variables), _eval(node.right, variables))
    if isinstance(node, ast.Call):
        args = [_eval(arg, variables) for arg in node.args]
        if node.func.id == "round":
            if len(args) > 2:
                raise FormulaError("round() takes at most 2 arguments")
            if len(args) == 2:
                return round(args[0], int(args[1]))
            return round(args[0])
        return FUNCTIONS[node.func.id](*args)
    raise FormulaError(f"Construct not allowed: {type(node).__name__}")


def evaluate(formula: str, variables: Mapping[str, float]) -> float:
    """
    Evaluate `formula` with `variables` bound.

    Returns a finite float; raises FormulaError on rejected syntax, unknown
    names, division by zero, or a non-finite result.
    """
    bound = {}
    for name, value in variables.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise FormulaError(f"Variable '{name}' is not numeric")
        bound[name] = value

    tree = parse(formula, bound.keys())
    try:
        result = _eval(tree, bound)
    except ZeroDivisionError as e:
        raise FormulaError("Division by zero in formula") from e
    except RecursionError as e:
        raise FormulaError("Formula is too long or too deeply nested") from e
    except (OverflowError, TypeError, ValueError) as e:
        raise FormulaError(f"Formula evaluation failed: {e}") from e

    if isinstance(result, bool) or not isinstance(result, (int, float)):
        raise FormulaError("Formula did not return a number")
    result = float(result)
    if not math.isfinite(result):
        raise FormulaError("Formula did not return a finite number")
    return result
