import numpy as np
import pytest

from tensor_adjoints.backend.reference import realize
from tensor_adjoints.compiler.boundary import constant_exterior
from tensor_adjoints.ir.dtypes import DType
from tensor_adjoints.ir.func import Buffer, Func, RDom, Var
from tensor_adjoints.ir.node import cast, clamp, exp, select, let, variable


def test_realize_pure_function():
    x, y = Var("x"), Var("y")
    f = Func("f")
    f[x, y] = cast(DType.FP32, x) + cast(DType.FP32, y) * 10

    result = realize(f, [3, 2])

    expected = np.array([[0, 10], [1, 11], [2, 12]], dtype=np.float32)
    np.testing.assert_allclose(result, expected)


def test_realize_with_mins():
    x = Var("x")
    f = Func("f")
    f[x] = cast(DType.FP32, x * 2)

    np.testing.assert_allclose(realize(f, [3], mins=[-1]), [-2.0, 0.0, 2.0])


def test_realize_integer_division_floors():
    x = Var("x")
    f = Func("f")
    f[x] = x / 2

    np.testing.assert_array_equal(realize(f, [4], mins=[-2]), [-1, -1, 0, 0])


def test_realize_chain_and_image():
    data = np.array([1.0, 2.0, 4.0], dtype=np.float32)
    img = Buffer(data, "img")
    x = Var("x")
    clamped = Func("clamped")
    clamped[x] = img(clamp(x, 0, 2))
    blur = Func("blur")
    blur[x] = clamped(x - 1) + clamped(x + 1)

    np.testing.assert_allclose(realize(blur, [3]), [3.0, 5.0, 6.0])


def test_realize_reduction_update():
    x = Var("x")
    f = Func("f")
    f[x] = cast(DType.FP32, x)
    r = RDom(0, 4)
    f[x] += cast(DType.FP32, r.x)

    np.testing.assert_allclose(realize(f, [2]), [6.0, 7.0])


def test_realize_update_reads_previous_value():
    x = Var("x")
    f = Func("f")
    f[x] = 1.0
    r = RDom(0, 3)
    f[x] = f(x) * 2.0 + cast(DType.FP32, r.x)

    # ((1 * 2 + 0) * 2 + 1) * 2 + 2
    np.testing.assert_allclose(realize(f, [2]), [12.0, 12.0])


def test_realize_zero_dimensional_sum():
    img = Buffer(np.array([1.0, 2.0, 3.0], dtype=np.float32), "img")
    total = Func("total")
    total[()] = 0.0
    r = RDom(0, 3)
    total[()] = total() + img(r.x)

    assert float(realize(total, [])) == pytest.approx(6.0)


def test_realize_select_and_let():
    x = Var("x")
    t = variable("t", DType.FP32)
    f = Func("f")
    f[x] = let("t", cast(DType.FP32, x) * 3.0, select(x > 1, t, -t))

    np.testing.assert_allclose(realize(f, [4]), [0.0, -3.0, 6.0, 9.0])


def test_realize_primitive():
    x = Var("x")
    f = Func("f")
    f[x] = exp(cast(DType.FP32, x))

    np.testing.assert_allclose(realize(f, [3]), np.exp([0.0, 1.0, 2.0]), rtol=1e-6)


def test_image_read_out_of_range():
    img = Buffer(np.array([1.0, 2.0], dtype=np.float32), "img")
    x = Var("x")
    f = Func("f")
    f[x] = img(x)

    with pytest.raises(IndexError):
        realize(f, [3])


def test_realize_requires_concrete_reduction_domain():
    x = Var("x")
    f = Func("f")
    f[x] = 0.0
    r = RDom(0, Var("n"))
    f[x] = f(x) + cast(DType.FP32, r.x)

    with pytest.raises(ValueError):
        realize(f, [2])


def test_constant_exterior():
    img = Buffer(np.array([1.0, 2.0], dtype=np.float32), "img")
    x = Var("x")
    f = Func("f")
    f[x] = img(x)

    wrapped = constant_exterior(f, 0.0, [(0, 2)])

    np.testing.assert_allclose(realize(wrapped, [4], mins=[-1]), [0.0, 1.0, 2.0, 0.0])


def test_constant_exterior_2d():
    x, y = Var("x"), Var("y")
    f = Func("f")
    f[x, y] = cast(DType.FP32, x + y * 10)

    wrapped = constant_exterior(f, -1.0, [(0, 2), (1, 2)])

    expected = np.array(
        [
            [-1.0, -1.0, -1.0, -1.0],
            [-1.0, 10.0, 20.0, -1.0],
            [-1.0, 11.0, 21.0, -1.0],
            [-1.0, -1.0, -1.0, -1.0],
        ]
    )
    np.testing.assert_allclose(realize(wrapped, [4, 4], mins=[-1, 0]), expected)
