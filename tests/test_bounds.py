import numpy as np
import pytest

from tensor_adjoints.backend.reference import Realizer
from tensor_adjoints.compiler.bounds import (
    BoundsInferencer,
    FuncKey,
    get_min_max_bounds,
)
from tensor_adjoints.compiler.errors import UnsupportedBoundsExpressionError
from tensor_adjoints.compiler.symbolic import simplify
from tensor_adjoints.ir.dtypes import DType
from tensor_adjoints.ir.func import Buffer, Func, RDom, Var
from tensor_adjoints.ir.graph import substitute
from tensor_adjoints.ir.node import cast, clamp, const, max_, min_


def _values(domain):
    return [(int(mn.value), int(extent.value)) for mn, extent in domain]


def _blur_1d(width):
    x = Var("x")
    data = Buffer(np.arange(16, dtype=np.float32), "input")
    clamped = Func("clamped")
    clamped[x] = data(clamp(x, 0, data.width - 1))
    blur = Func("blur")
    blur[x] = clamped(x) + clamped(x + 1) + clamped(x + 2)
    r = RDom(0, width - 2)
    return blur(r.x)


def test_interval_add_sub():
    x = Var("x")
    r = RDom(0, 3)
    lo, hi = get_min_max_bounds(x - r.x, [x], [(const(2), const(5))], 0)
    assert simplify(lo).value == 0
    assert simplify(hi).value == 6

    lo, hi = get_min_max_bounds(x + r.x + 1, [x], [(const(2), const(5))], 0)
    assert simplify(lo).value == 3
    assert simplify(hi).value == 9


def test_interval_min_max():
    x = Var("x")
    domain = [(const(0), const(10))]
    lo, hi = get_min_max_bounds(min_(x, 3), [x], domain, 0)
    assert (simplify(lo).value, simplify(hi).value) == (0, 3)
    lo, hi = get_min_max_bounds(max_(x, 3), [x], domain, 0)
    assert (simplify(lo).value, simplify(hi).value) == (3, 9)


def test_interval_reduction_variable_uses_its_own_dimension():
    x = Var("x")
    r = RDom(0, 2, 5, 3)
    lo, hi = get_min_max_bounds(r.y, [x], [(const(0), const(10))], 0)
    assert (simplify(lo).value, simplify(hi).value) == (5, 7)


def test_interval_unsupported_node():
    x = Var("x")
    with pytest.raises(UnsupportedBoundsExpressionError):
        get_min_max_bounds(x * 2, [x], [(const(0), const(4))], 0)
    with pytest.raises(UnsupportedBoundsExpressionError):
        get_min_max_bounds(Var("y"), [x], [(const(0), const(4))], 0)


def test_blur_bounds():
    width = 16
    bounds = BoundsInferencer().inference(_blur_1d(width))

    assert _values(bounds[FuncKey("blur", -1)]) == [(0, width - 2)]
    assert _values(bounds[FuncKey("clamped", -1)]) == [(0, width)]


def test_blur_bounds_symbolic_width():
    w = Var("w")
    bounds = BoundsInferencer().inference(_blur_1d(w))

    mn, extent = bounds[FuncKey("clamped", -1)][0]
    realizer = Realizer()
    for width in (8, 16, 33):
        env = {"w": const(width)}
        assert realizer.concrete(substitute(env, mn)) == 0
        assert realizer.concrete(substitute(env, extent)) == width


def test_2d_blur_bounds():
    x, y = Var("x"), Var("y")
    data = Buffer(np.zeros((16, 32), dtype=np.float32), "input")
    clamped = Func("clamped")
    clamped[x, y] = data(clamp(x, 0, data.width - 1), clamp(y, 0, data.height - 1))
    blur_x = Func("blur_x")
    blur_x[x, y] = clamped(x - 1, y) + clamped(x, y) + clamped(x + 1, y)
    blur_y = Func("blur_y")
    blur_y[x, y] = blur_x(x, y - 1) + blur_x(x, y) + blur_x(x, y + 1)

    r = RDom(0, data.width, 0, data.height)
    bounds = BoundsInferencer().inference(blur_y(r.x, r.y))

    assert _values(bounds[FuncKey("blur_y", -1)]) == [(0, 16), (0, 32)]
    assert _values(bounds[FuncKey("blur_x", -1)]) == [(0, 16), (-1, 34)]
    assert _values(bounds[FuncKey("clamped", -1)]) == [(-1, 18), (-1, 34)]


def test_self_recurrence_staging():
    n = 8
    x = Var("x")
    g = Func("g")
    g[x] = cast(DType.FP32, x)
    f = Func("f")
    f[x] = 0.0
    f[x] = f(x) + g(x)

    r = RDom(0, n)
    bounds = BoundsInferencer().inference(f(r.x))

    assert _values(bounds[FuncKey("f", 0)]) == [(0, n)]
    assert _values(bounds[FuncKey("f", -1)]) == [(0, n)]
    assert _values(bounds[FuncKey("g", -1)]) == [(0, n)]


def test_stage_without_self_read_inherits_domain():
    x = Var("x")
    a = Func("a")
    a[x] = cast(DType.FP32, x)
    f = Func("f")
    f[x] = a(x)
    f[x] = a(x + 1)

    bounds = BoundsInferencer().inference(f(RDom(0, 4).x))

    assert _values(bounds[FuncKey("f", 0)]) == [(0, 4)]
    assert _values(bounds[FuncKey("f", -1)]) == [(0, 4)]
    assert _values(bounds[FuncKey("a", -1)]) == [(0, 5)]


def test_reduction_update_bounds():
    x = Var("x")
    k = Func("k")
    k[x] = cast(DType.FP32, x)
    inp = Func("inp")
    inp[x] = cast(DType.FP32, x)
    conv = Func("conv")
    conv[x] = 0.0
    r = RDom(0, 3)
    conv[x] = conv(x) + k(r.x) * inp(x + r.x)

    bounds = BoundsInferencer().inference(conv(RDom(0, 4).x))

    assert _values(bounds[FuncKey("conv", 0)]) == [(0, 4)]
    assert _values(bounds[FuncKey("k", -1)]) == [(0, 3)]
    assert _values(bounds[FuncKey("inp", -1)]) == [(0, 6)]


def test_inference_is_idempotent():
    loss = _blur_1d(16)
    inferencer = BoundsInferencer()
    first = {k: _values(v) for k, v in inferencer.inference(loss).items()}
    second = {k: _values(v) for k, v in inferencer.inference(loss).items()}
    assert first == second


def test_uninvertible_expression_is_not_bounded():
    x = Var("x")
    g = Func("g")
    g[x] = cast(DType.FP32, x)
    f = Func("f")
    f[x] = g(x * x)

    with pytest.raises(UnsupportedBoundsExpressionError):
        BoundsInferencer().inference(f(RDom(0, 4).x))
