from dataclasses import dataclass, field
from typing import List, Dict, Any, Union
import numpy as np
from .dtypes import DType, promote, dtype_of_value
from ..ops.expr_kinds import ExprKind, CallType


@dataclass(eq=False)
class Expr:
    """
    Immutable IR value. Nodes are shared between consumers (DAG, not tree) and
    are hashed by identity, so structurally equal nodes are still distinct keys.

    attrs:
      Constant -> {"value"}
      Variable -> {"rdom", "index"} for reduction variables
      Call     -> {"call_type", "func" | "buffer"}
    """

    kind: str
    dtype: DType
    operands: List["Expr"] = field(default_factory=list)
    name: str = ""
    attrs: Dict[str, Any] = field(default_factory=dict)

    def get_attr(self, key: str, default: Any = None) -> Any:
        return self.attrs.get(key, default)

    @property
    def value(self):
        if self.kind != ExprKind.CONSTANT:
            raise ValueError(f"{self.kind} node has no constant value")
        return self.attrs["value"]

    @property
    def is_const(self) -> bool:
        return self.kind == ExprKind.CONSTANT

    @property
    def is_reduction_var(self) -> bool:
        return self.kind == ExprKind.VARIABLE and "rdom" in self.attrs

    @property
    def is_pure_var(self) -> bool:
        return self.kind == ExprKind.VARIABLE and "rdom" not in self.attrs

    def is_call(self, call_type: str = None) -> bool:
        if self.kind != ExprKind.CALL:
            return False
        return call_type is None or self.attrs.get("call_type") == call_type

    def __bool__(self):
        raise TypeError(
            f"Truth value of expression '{self}' is symbolic; use select() instead"
        )

    # --- Arithmetic ---

    def __add__(self, other):
        return _binary(ExprKind.ADD, self, other)

    def __radd__(self, other):
        return _binary(ExprKind.ADD, other, self)

    def __sub__(self, other):
        return _binary(ExprKind.SUB, self, other)

    def __rsub__(self, other):
        return _binary(ExprKind.SUB, other, self)

    def __mul__(self, other):
        return _binary(ExprKind.MUL, self, other)

    def __rmul__(self, other):
        return _binary(ExprKind.MUL, other, self)

    def __truediv__(self, other):
        return _binary(ExprKind.DIV, self, other)

    def __rtruediv__(self, other):
        return _binary(ExprKind.DIV, other, self)

    def __neg__(self):
        zero = const(0.0) if self.dtype.is_float else const(0)
        return _binary(ExprKind.SUB, zero, self)

    # --- Comparison (== stays identity, see eq()) ---

    def __lt__(self, other):
        return _binary(ExprKind.LT, self, other)

    def __le__(self, other):
        return _binary(ExprKind.LE, self, other)

    def __gt__(self, other):
        return _binary(ExprKind.GT, self, other)

    def __ge__(self, other):
        return _binary(ExprKind.GE, self, other)

    def __repr__(self):
        return to_string(self)


ExprLike = Union[Expr, int, float]


def as_expr(value: ExprLike) -> Expr:
    if isinstance(value, Expr):
        return value
    if isinstance(value, (int, float, np.integer, np.floating, bool, np.bool_)):
        return const(value)
    raise ValueError(f"Cannot convert {type(value).__name__} to an expression")


def const(value, dtype: DType = None) -> Expr:
    if dtype is None:
        dtype = dtype_of_value(value)
    if dtype == DType.FP32:
        value = float(value)
    elif dtype == DType.INT32:
        value = int(value)
    else:
        value = bool(value)
    return Expr(ExprKind.CONSTANT, dtype, [], "", {"value": value})


def variable(name: str, dtype: DType = DType.INT32, **attrs) -> Expr:
    return Expr(ExprKind.VARIABLE, dtype, [], name, dict(attrs))


def _binary(kind: str, a: ExprLike, b: ExprLike) -> Expr:
    a = as_expr(a)
    b = as_expr(b)
    if ExprKind.is_boolean(kind):
        dtype = DType.BOOL
    else:
        dtype = promote(a.dtype, b.dtype)
    return Expr(kind, dtype, [a, b])


def cast(dtype: DType, x: ExprLike) -> Expr:
    x = as_expr(x)
    return Expr(ExprKind.CAST, dtype, [x])


def select(cond: Expr, true_value: ExprLike, false_value: ExprLike) -> Expr:
    t = as_expr(true_value)
    f = as_expr(false_value)
    return Expr(ExprKind.SELECT, promote(t.dtype, f.dtype), [as_expr(cond), t, f])


def min_(a: ExprLike, b: ExprLike) -> Expr:
    return _binary(ExprKind.MIN, a, b)


def max_(a: ExprLike, b: ExprLike) -> Expr:
    return _binary(ExprKind.MAX, a, b)


def clamp(x: ExprLike, lo: ExprLike, hi: ExprLike) -> Expr:
    return max_(min_(x, hi), lo)


def eq(a: ExprLike, b: ExprLike) -> Expr:
    return _binary(ExprKind.EQ, a, b)


def ne(a: ExprLike, b: ExprLike) -> Expr:
    return _binary(ExprKind.NE, a, b)


def logical_and(a: Expr, b: Expr) -> Expr:
    return _binary(ExprKind.AND, a, b)


def let(name: str, value: ExprLike, body: ExprLike) -> Expr:
    body = as_expr(body)
    return Expr(ExprKind.LET, body.dtype, [as_expr(value), body], name)


def make_call(
    call_type: str, name: str, args: List[ExprLike], dtype: DType, **attrs
) -> Expr:
    attrs["call_type"] = call_type
    return Expr(ExprKind.CALL, dtype, [as_expr(a) for a in args], name, attrs)


def call_primitive(name: str, *args: ExprLike) -> Expr:
    return make_call(CallType.PRIMITIVE, name, list(args), DType.FP32)


def exp(x: ExprLike) -> Expr:
    return call_primitive("exp", x)


def log(x: ExprLike) -> Expr:
    return call_primitive("log", x)


def sin(x: ExprLike) -> Expr:
    return call_primitive("sin", x)


def cos(x: ExprLike) -> Expr:
    return call_primitive("cos", x)


def sqrt(x: ExprLike) -> Expr:
    return call_primitive("sqrt", x)


def tanh(x: ExprLike) -> Expr:
    return call_primitive("tanh", x)


# --- Printing ---

_INFIX = {
    ExprKind.ADD: "+",
    ExprKind.SUB: "-",
    ExprKind.MUL: "*",
    ExprKind.DIV: "/",
    ExprKind.LT: "<",
    ExprKind.LE: "<=",
    ExprKind.GT: ">",
    ExprKind.GE: ">=",
    ExprKind.EQ: "==",
    ExprKind.NE: "!=",
    ExprKind.AND: "&&",
    ExprKind.OR: "||",
}


def to_string(expr: Expr) -> str:
    k = expr.kind
    if k == ExprKind.CONSTANT:
        v = expr.value
        return f"{v}f" if expr.dtype == DType.FP32 else str(v)
    if k == ExprKind.VARIABLE:
        return expr.name
    ops = [to_string(o) for o in expr.operands]
    if k in _INFIX:
        return f"({ops[0]} {_INFIX[k]} {ops[1]})"
    if k == ExprKind.MIN:
        return f"min({ops[0]}, {ops[1]})"
    if k == ExprKind.MAX:
        return f"max({ops[0]}, {ops[1]})"
    if k == ExprKind.CAST:
        return f"{expr.dtype.value}({ops[0]})"
    if k == ExprKind.SELECT:
        return f"select({ops[0]}, {ops[1]}, {ops[2]})"
    if k == ExprKind.LET:
        return f"(let {expr.name} = {ops[0]} in {ops[1]})"
    if k == ExprKind.CALL:
        return f"{expr.name}({', '.join(ops)})"
    return f"<{k}>"
