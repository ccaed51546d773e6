import numpy as np
import pytest

from tensor_adjoints import Buffer, Func, RDom, Var, propagate_adjoints, realize
from tensor_adjoints.backend import kernels  # noqa: F401
from tensor_adjoints.backend.registry import KernelRegistry
from tensor_adjoints.compiler.errors import UnrecognizedPrimitiveError
from tensor_adjoints.ir.node import call_primitive
from tensor_adjoints.ops.registry import (
    _DERIVATIVE_REGISTRY,
    get_derivative_rule,
    list_derivative_rules,
    register_derivative,
)


def _loss_with_floor():
    x = Var("x")
    fa = Func("fa")
    fa[x] = Buffer(np.array([0.5, 1.5, 2.5], dtype=np.float32), "a")(x)
    r = RDom(0, 3)
    return fa, call_primitive("floor", fa(r.x)) + fa(r.x) * 2.0


def test_builtin_rules_registered():
    names = list_derivative_rules()
    for name in ("exp", "log", "sin", "cos", "sqrt", "tanh", "pow"):
        assert name in names
    assert get_derivative_rule("floor") is None


def test_every_rule_has_a_kernel():
    for name in list_derivative_rules():
        assert KernelRegistry.has_kernel(name)


def test_duplicate_kernel_rejected():
    with pytest.raises(ValueError):
        KernelRegistry.register("exp")(np.exp)


def test_unknown_primitive_contributes_zero():
    fa, loss = _loss_with_floor()
    adjoints = propagate_adjoints(loss)
    np.testing.assert_allclose(realize(adjoints["fa"], [3]), [2.0, 2.0, 2.0])


def test_unknown_primitive_policy_error():
    _, loss = _loss_with_floor()
    with pytest.raises(UnrecognizedPrimitiveError):
        propagate_adjoints(loss, unknown_primitive_policy="error")


def test_invalid_policy():
    _, loss = _loss_with_floor()
    with pytest.raises(ValueError):
        propagate_adjoints(loss, unknown_primitive_policy="ignore")


@pytest.fixture
def square_primitive():
    @register_derivative("square")
    def square_derivative(args, adjoint):
        return [adjoint * 2.0 * args[0]]

    KernelRegistry.register("square")(np.square)
    yield "square"
    _DERIVATIVE_REGISTRY.pop("square", None)
    KernelRegistry._kernels.pop("square", None)


def test_registered_rule_is_used(square_primitive):
    x = Var("x")
    fa = Func("fa")
    fa[x] = Buffer(np.array([1.0, -3.0], dtype=np.float32), "a")(x)
    r = RDom(0, 2)

    adjoints = propagate_adjoints(call_primitive(square_primitive, fa(r.x)))
    np.testing.assert_allclose(realize(adjoints["fa"], [2]), [2.0, -6.0])


def test_registries_hold_only_builtins():
    assert get_derivative_rule("square") is None
    assert not KernelRegistry.has_kernel("square")
