from typing import List
from ..ir.node import Expr, call_primitive, exp, cos, log, sin, sqrt, tanh
from .registry import register_derivative


@register_derivative("exp")
def exp_derivative(args: List[Expr], adjoint: Expr) -> List[Expr]:
    # d/dx exp(x) = exp(x)
    return [adjoint * exp(args[0])]


@register_derivative("log")
def log_derivative(args: List[Expr], adjoint: Expr) -> List[Expr]:
    # d/dx log(x) = 1 / x
    return [adjoint / args[0]]


@register_derivative("sin")
def sin_derivative(args: List[Expr], adjoint: Expr) -> List[Expr]:
    return [adjoint * cos(args[0])]


@register_derivative("cos")
def cos_derivative(args: List[Expr], adjoint: Expr) -> List[Expr]:
    return [-adjoint * sin(args[0])]


@register_derivative("sqrt")
def sqrt_derivative(args: List[Expr], adjoint: Expr) -> List[Expr]:
    # d/dx sqrt(x) = 0.5 / sqrt(x)
    return [adjoint * 0.5 / sqrt(args[0])]


@register_derivative("tanh")
def tanh_derivative(args: List[Expr], adjoint: Expr) -> List[Expr]:
    t = tanh(args[0])
    return [adjoint * (1.0 - t * t)]


@register_derivative("pow")
def pow_derivative(args: List[Expr], adjoint: Expr) -> List[Expr]:
    x, y = args
    p = call_primitive("pow", x, y)
    # d/dx x^y = y * x^(y - 1), d/dy x^y = x^y * log(x)
    return [adjoint * y * call_primitive("pow", x, y - 1.0), adjoint * p * log(x)]
