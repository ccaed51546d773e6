import pytest

from tensor_adjoints.backend.reference import Realizer
from tensor_adjoints.compiler.symbolic import simplify, solve
from tensor_adjoints.ir.dtypes import DType
from tensor_adjoints.ir.func import Func, RDom, Var
from tensor_adjoints.ir.graph import substitute
from tensor_adjoints.ir.hashing import equal
from tensor_adjoints.ir.node import cast, const, eq, exp


def _at(expr, **values):
    env = {name: const(v) for name, v in values.items()}
    return Realizer().concrete(substitute(env, expr))


def test_simplify_folds_constants():
    result = simplify(const(2) * 3 + 1)
    assert result.is_const
    assert result.value == 7


def test_simplify_cancels_terms():
    x = Var("x")
    assert equal(simplify(x + 1 - 1), x)
    assert equal(simplify((x + 2) - (x + 1)), const(1))


def test_simplify_keeps_unsupported_nodes():
    x = Var("x")
    f = Func("f")
    f[x] = cast(DType.FP32, x)
    call = f(x)
    assert simplify(call + 0) is call

    e = exp(call)
    assert simplify(e) is e


def test_solve_shift():
    x, v = Var("x"), Var("v")
    solved = solve(eq(v, x + 1), "x")
    assert solved.fully_solved
    assert solved.result.operands[0].name == "x"
    assert _at(solved.result.operands[1], v=5) == 4


def test_solve_with_reduction_variable():
    x, v = Var("x"), Var("v")
    r = RDom(0, 3, name="r")
    solved = solve(eq(v, x - r.x + 2), "x")
    assert solved.fully_solved
    inverse = solved.result.operands[1]
    assert _at(inverse, v=10, **{"r.x": 1}) == 9


def test_solve_two_variables():
    x, y, v = Var("x"), Var("y"), Var("v")
    solved = solve(eq(v, y + x * 4), "y")
    assert solved.fully_solved
    assert _at(solved.result.operands[1], v=11, x=2) == 3


@pytest.mark.parametrize(
    "build",
    [
        lambda x: x * x,
        lambda x: x + x,
        lambda x: x * 2,
    ],
)
def test_solve_rejects_non_integer_inverses(build):
    x, v = Var("x"), Var("v")
    assert not solve(eq(v, build(x)), "x").fully_solved


def test_solve_missing_unknown():
    x, v = Var("x"), Var("v")
    assert not solve(eq(v, x + 1), "y").fully_solved


def test_solve_requires_equality():
    x = Var("x")
    with pytest.raises(ValueError):
        solve(x + 1, "x")
