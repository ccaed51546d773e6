"""
Bounds Inference

Determines, for every (function, stage) reachable from a loss expression, the
index domain over which that stage is called. Each call site contributes one
interval per argument (computed from the caller's own domain); intervals from
different call sites are merged by widening union.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple, NamedTuple, Optional

from ..ir.node import Expr, min_, max_
from ..ir.func import Func
from ..ir.hashing import equal
from ..ops.expr_kinds import ExprKind, CallType
from ..config import DEBUG_EXECUTION, DEBUG_DETAILED
from .errors import UnsupportedBoundsExpressionError
from .symbolic import simplify

# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

# Inclusive (min, max) of one argument.
Interval = Tuple[Expr, Expr]
# (min, extent) per dimension, the form reduction domains are built from.
Domain = List[Tuple[Expr, Expr]]


class FuncKey(NamedTuple):
    """(function name, stage); stage -1 is the initialization."""

    name: str
    stage: int


@dataclass
class CallContext:
    """The stage currently being walked: its key, declared variables and domain."""

    key: FuncKey
    args: List[Expr]
    domain: Domain


ROOT_CONTEXT = CallContext(FuncKey("", -1), [], [])

# ---------------------------------------------------------------------------
# Interval evaluator
# ---------------------------------------------------------------------------


def get_min_max_bounds(
    expr: Expr, current_args: List[Expr], current_domain: Domain, index: int
) -> Interval:
    """
    Conservative [min, max] of an index expression, given the caller's declared
    variables and their (min, extent) domain. 'index' is the argument position
    being bounded (used in error messages).
    """
    k = expr.kind
    if k in (ExprKind.ADD, ExprKind.SUB, ExprKind.MIN, ExprKind.MAX):
        a_min, a_max = get_min_max_bounds(
            expr.operands[0], current_args, current_domain, index
        )
        b_min, b_max = get_min_max_bounds(
            expr.operands[1], current_args, current_domain, index
        )
        if k == ExprKind.ADD:
            return a_min + b_min, a_max + b_max
        if k == ExprKind.SUB:
            return a_min - b_max, a_max - b_min
        if k == ExprKind.MIN:
            return min_(a_min, b_min), min_(a_max, b_max)
        return max_(a_min, b_min), max_(a_max, b_max)

    if k == ExprKind.VARIABLE:
        rdom = expr.get_attr("rdom")
        if rdom is not None:
            dim = expr.get_attr("index")
            mn = rdom.min(dim)
            return mn, mn + rdom.extent(dim) - 1
        for i, arg in enumerate(current_args):
            if arg.name == expr.name:
                mn, extent = current_domain[i]
                return mn, mn + extent - 1
        raise UnsupportedBoundsExpressionError(
            f"Can't infer bounds of argument {index}: variable '{expr.name}' is "
            f"neither a declared variable {[a.name for a in current_args]} "
            f"nor a reduction variable"
        )

    if k == ExprKind.CONSTANT:
        return expr, expr

    raise UnsupportedBoundsExpressionError(
        f"Can't infer bounds of argument {index}: {k} node '{expr}' not handled"
    )


def merge_bounds(bounds0: Interval, bounds1: Interval) -> Interval:
    return (
        simplify(min_(bounds0[0], bounds1[0])),
        simplify(max_(bounds0[1], bounds1[1])),
    )


def to_domain(intervals: List[Interval]) -> Domain:
    domain = []
    for mn, mx in intervals:
        lower = simplify(mn)
        domain.append((lower, simplify(mx - lower + 1)))
    return domain


# ---------------------------------------------------------------------------
# Inferencer
# ---------------------------------------------------------------------------


class BoundsInferencer:
    """
    Visits function calls reachable from an expression and records the
    accumulated call-site intervals of every (function, stage).
    """

    def __init__(self):
        self.func_bounds: Dict[FuncKey, List[Interval]] = {}
        self.recursion_depth = 0

    def inference(self, expr: Expr) -> Dict[FuncKey, Domain]:
        self.func_bounds = {}
        self.recursion_depth = 0
        self._visit(expr, ROOT_CONTEXT)
        return self.get_func_bounds()

    def get_func_bounds(self) -> Dict[FuncKey, Domain]:
        ret = {}
        for key, intervals in self.func_bounds.items():
            ret[key] = to_domain(intervals)
            if DEBUG_EXECUTION:
                print(f"[BoundsInferencer] Computed bounds for {key.name}[{key.stage}]:")
                for i, (mn, extent) in enumerate(ret[key]):
                    print(f"  arg{i} ({mn}, {extent})")
        return ret

    def _infer_func(self, func: Func):
        # Traverse from the last update to first
        later: Optional[FuncKey] = None
        for stage in range(func.num_updates() - 1, -2, -1):
            key = FuncKey(func.name, stage)
            if key not in self.func_bounds:
                # Stage never read by the next one: it spans the same domain
                self.func_bounds[key] = list(self.func_bounds[later])
            ctx = CallContext(key, func.args, to_domain(self.func_bounds[key]))
            self._visit(func.value(stage), ctx)
            later = key

    def _visit(self, node: Expr, ctx: CallContext):
        if node.is_call(CallType.FUNC):
            self._visit_call(node, ctx)
            return
        for operand in node.operands:
            self._visit(operand, ctx)

    def _visit_call(self, op: Expr, ctx: CallContext):
        func: Func = op.get_attr("func")
        if DEBUG_DETAILED:
            print(f"[BoundsInferencer] {self.recursion_depth} Visiting {func.name}")

        arg_bounds = [
            get_min_max_bounds(arg, ctx.args, ctx.domain, i)
            for i, arg in enumerate(op.operands)
        ]

        # A function reading itself reads its previous stage
        is_self = ctx.key.name == func.name
        if is_self:
            key = FuncKey(func.name, ctx.key.stage - 1)
        else:
            key = FuncKey(func.name, func.num_updates() - 1)

        prev_bounds = self.func_bounds.get(key)
        if prev_bounds is not None:
            if len(prev_bounds) != len(arg_bounds):
                raise ValueError(
                    f"Call to '{func.name}' has {len(arg_bounds)} args, "
                    f"previous calls had {len(prev_bounds)}"
                )
            arg_bounds = [merge_bounds(p, b) for p, b in zip(prev_bounds, arg_bounds)]

        self.func_bounds[key] = arg_bounds

        if is_self:
            return
        if prev_bounds is not None and all(
            equal(p[0], b[0]) and equal(p[1], b[1])
            for p, b in zip(prev_bounds, arg_bounds)
        ):
            # Already walked with this domain
            return

        self.recursion_depth += 1
        self._infer_func(func)
        self.recursion_depth -= 1
