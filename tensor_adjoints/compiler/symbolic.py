"""
File: tensor_adjoints/compiler/symbolic.py

SymPy-backed simplifier and equation solver for index expressions.
"""

import sympy as sp
from dataclasses import dataclass
from typing import Dict, Optional
from ..ir.node import Expr, const, eq, min_, max_
from ..ir.dtypes import DType
from ..ops.expr_kinds import ExprKind
from ..config import DEBUG_DETAILED


class SymbolTable:
    """Two-way mapping between IR nodes and SymPy symbols for one conversion."""

    def __init__(self):
        self.by_name: Dict[str, sp.Symbol] = {}
        self.nodes: Dict[sp.Symbol, Expr] = {}
        self._opaque: Dict[Expr, sp.Symbol] = {}

    def variable(self, node: Expr) -> sp.Symbol:
        sym = self.by_name.get(node.name)
        if sym is None:
            if node.dtype == DType.FP32:
                sym = sp.Symbol(node.name, real=True)
            else:
                sym = sp.Symbol(node.name, integer=True)
            self.by_name[node.name] = sym
            self.nodes[sym] = node
        return sym

    def opaque(self, node: Expr) -> sp.Symbol:
        sym = self._opaque.get(node)
        if sym is None:
            sym = sp.Dummy(f"opaque_{node.kind}", integer=node.dtype == DType.INT32)
            self._opaque[node] = sym
            self.nodes[sym] = node
        return sym

    def lookup(self, name: str) -> Optional[sp.Symbol]:
        return self.by_name.get(name)


def to_sympy(expr: Expr, table: SymbolTable, opaque: bool = True) -> sp.Expr:
    """
    Converts an IR expression into SymPy. Unsupported sub-expressions become
    opaque dummy symbols, or raise ValueError when 'opaque' is False.
    """
    k = expr.kind
    if k == ExprKind.CONSTANT:
        if expr.dtype == DType.FP32:
            return sp.Float(expr.value)
        if expr.dtype == DType.INT32:
            return sp.Integer(expr.value)
    elif k == ExprKind.VARIABLE:
        return table.variable(expr)
    elif k in (ExprKind.ADD, ExprKind.SUB, ExprKind.MUL, ExprKind.MIN, ExprKind.MAX):
        a = to_sympy(expr.operands[0], table, opaque)
        b = to_sympy(expr.operands[1], table, opaque)
        if k == ExprKind.ADD:
            return a + b
        if k == ExprKind.SUB:
            return a - b
        if k == ExprKind.MUL:
            return a * b
        if k == ExprKind.MIN:
            return sp.Min(a, b)
        return sp.Max(a, b)
    elif k == ExprKind.DIV and expr.dtype == DType.FP32:
        # Integer division floors, so only float division is exact here
        a = to_sympy(expr.operands[0], table, opaque)
        b = to_sympy(expr.operands[1], table, opaque)
        return a / b

    if not opaque:
        raise ValueError(f"Cannot convert {k} node '{expr}' to SymPy")
    return table.opaque(expr)


def from_sympy(e: sp.Expr, table: SymbolTable) -> Expr:
    if e in table.nodes:
        return table.nodes[e]
    if e.is_Integer:
        return const(int(e))
    if e.is_Rational or e.is_Float:
        return const(float(e))

    if isinstance(e, sp.Add):
        terms = e.as_ordered_terms()
        result = from_sympy(terms[0], table)
        for term in terms[1:]:
            if term.could_extract_minus_sign():
                result = result - from_sympy(-term, table)
            else:
                result = result + from_sympy(term, table)
        return result

    if isinstance(e, sp.Mul):
        coeff, rest = e.as_coeff_Mul()
        factors = rest.as_ordered_factors()
        result = from_sympy(factors[0], table)
        for factor in factors[1:]:
            result = result * from_sympy(factor, table)
        if coeff == -1:
            return -result
        if coeff != 1:
            return from_sympy(coeff, table) * result
        return result

    if isinstance(e, sp.Pow):
        base, power = e.as_base_exp()
        if power.is_Integer and power > 0:
            b = from_sympy(base, table)
            result = b
            for _ in range(int(power) - 1):
                result = result * b
            return result
        if power == -1:
            return 1.0 / from_sympy(base, table)

    if isinstance(e, (sp.Min, sp.Max)):
        combine = min_ if isinstance(e, sp.Min) else max_
        args = [from_sympy(a, table) for a in e.args]
        result = args[0]
        for a in args[1:]:
            result = combine(result, a)
        return result

    raise ValueError(f"Cannot convert SymPy expression {e} back to IR")


def simplify(expr: Expr) -> Expr:
    """
    Normalizes an expression. Safe on arbitrary input: anything that cannot be
    reasoned about is kept opaque, and if the result cannot be expressed back
    in the IR with the same type the input is returned unchanged.
    """
    if expr.kind in (ExprKind.CONSTANT, ExprKind.VARIABLE):
        return expr
    table = SymbolTable()
    try:
        result = from_sympy(sp.simplify(to_sympy(expr, table)), table)
    except (ValueError, TypeError) as e:
        if DEBUG_DETAILED:
            print(f"[simplify] keeping {expr} unchanged: {e}")
        return expr
    if result.dtype != expr.dtype:
        return expr
    return result


@dataclass
class SolverResult:
    fully_solved: bool
    result: Expr


def solve(equation: Expr, unknown: str) -> SolverResult:
    """
    Solves an EQ node for the variable named 'unknown'. On success 'result' is
    EQ(unknown, rhs) where rhs is an integer-coefficient polynomial of the
    remaining variables (a closed-form integer inverse).
    """
    if equation.kind != ExprKind.EQ:
        raise ValueError(f"solve() expects an equality, got {equation.kind}")

    unsolved = SolverResult(False, equation)
    table = SymbolTable()
    try:
        lhs = to_sympy(equation.operands[0], table, opaque=False)
        rhs = to_sympy(equation.operands[1], table, opaque=False)
    except ValueError:
        return unsolved

    target = table.lookup(unknown)
    if target is None:
        return unsolved

    try:
        solutions = sp.solve(sp.Eq(lhs, rhs), target)
    except NotImplementedError:
        return unsolved
    if len(solutions) != 1:
        return unsolved

    sol = solutions[0]
    free = sorted(sol.free_symbols, key=str)
    if free:
        if not sol.is_polynomial(*free):
            return unsolved
        coeffs = sp.Poly(sol, *free).coeffs()
        if not all(c.is_integer for c in coeffs):
            return unsolved
    elif not sol.is_integer:
        return unsolved

    try:
        inverse = from_sympy(sp.expand(sol), table)
    except ValueError:
        return unsolved
    return SolverResult(True, eq(table.nodes[target], inverse))
