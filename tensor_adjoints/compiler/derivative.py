"""
File: tensor_adjoints/compiler/derivative.py

Reverse-mode differentiation of a loss expression with respect to every Func it
reaches. Adjoints of expression nodes are accumulated per pass (one pass for the
loss, then one per Func stage, consumers first); adjoints of Funcs are new Funcs
built up by scatter-add updates.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Union

from tqdm import tqdm

from ..ir.node import (
    Expr,
    const,
    eq,
    let,
    logical_and,
    select,
)
from ..ir.func import Func, Buffer, RDom, _unique_name, Var
from ..ir.graph import (
    find_variable,
    free_variables,
    print_func,
    replace_calls,
    sort_expression,
    sort_functions,
    substitute,
)
from ..ops.expr_kinds import ExprKind, CallType
from ..ops.registry import get_derivative_rule
from ..config import (
    ADJOINT_SUFFIX,
    DEBUG_DETAILED,
    DEBUG_EXECUTION,
    UNKNOWN_PRIMITIVE_POLICY,
)
from .bounds import ROOT_CONTEXT, BoundsInferencer, CallContext, Domain, FuncKey
from .boundary import constant_exterior
from .errors import (
    AdjointOrderError,
    MissingAdjointError,
    UninvertibleIndexExpressionError,
    UnrecognizedPrimitiveError,
)
from .symbolic import simplify, solve

_POLICIES = ("zero", "error")


def _is_zero(expr: Expr) -> bool:
    return expr.is_const and expr.value == 0


@dataclass
class Derivative:
    """
    Result of differentiating a loss: the adjoint Func of every reached
    (function, stage), and the domain each stage was inferred to be read over.
    """

    adjoints: Dict[FuncKey, Func]
    reductions: Dict[FuncKey, Domain]

    def __call__(self, func: Union[Func, str], stage: int = -1) -> Func:
        name = func if isinstance(func, str) else func.name
        key = FuncKey(name, stage)
        if key not in self.adjoints:
            raise KeyError(f"No adjoint for {name}[{stage}]")
        return self.adjoints[key]


class ReverseAccumulationVisitor:
    """
    Walks a loss expression and every reached Func stage in reverse topological
    order, accumulating node adjoints and scattering them into adjoint Funcs.
    """

    def __init__(self, unknown_primitive_policy: Optional[str] = None):
        policy = unknown_primitive_policy or UNKNOWN_PRIMITIVE_POLICY
        if policy not in _POLICIES:
            raise ValueError(
                f"Unknown primitive policy '{policy}', expected one of {_POLICIES}"
            )
        self.unknown_primitive_policy = policy

        self.adjoint_funcs: Dict[FuncKey, Func] = {}
        self.func_bounds: Dict[FuncKey, Domain] = {}
        self.finalized: Set[FuncKey] = set()
        self.funcs_by_name: Dict[str, Func] = {}
        # Values of updated functions after each of their earlier stages
        self.stage_funcs: Dict[FuncKey, Func] = {}

        # Per-pass state
        self.expr_adjoints: Dict[Expr, Expr] = {}
        self.let_bindings: Dict[str, Expr] = {}

        self._rules = {
            ExprKind.CAST: self._visit_cast,
            ExprKind.ADD: self._visit_add,
            ExprKind.SUB: self._visit_sub,
            ExprKind.MUL: self._visit_mul,
            ExprKind.DIV: self._visit_div,
            ExprKind.MIN: self._visit_min,
            ExprKind.MAX: self._visit_max,
            ExprKind.SELECT: self._visit_select,
            ExprKind.LET: self._visit_let,
            ExprKind.VARIABLE: self._visit_variable,
            ExprKind.CALL: self._visit_call,
        }

    # --- Driver ---

    def propagate_adjoints(self, loss: Expr) -> Derivative:
        self.func_bounds = BoundsInferencer().inference(loss)
        funcs = sort_functions(loss)

        self.adjoint_funcs = {}
        self.finalized = set()
        self.stage_funcs = {}
        self.funcs_by_name = {f.name: f for f in funcs}
        for func in funcs:
            _check_update_args(func)
            for stage in range(-1, func.num_updates()):
                adjoint_func = Func(f"{func.name}_{stage + 1}{ADJOINT_SUFFIX}")
                adjoint_func[func.args] = 0.0
                self.adjoint_funcs[FuncKey(func.name, stage)] = adjoint_func

        if DEBUG_EXECUTION:
            print(
                f"[ReverseAccumulationVisitor.propagate_adjoints] "
                f"{len(funcs)} funcs: {[f.name for f in funcs]}"
            )

        self._propagate(loss, const(1.0), ROOT_CONTEXT)

        for func in tqdm(funcs, desc="adjoint funcs", disable=not DEBUG_EXECUTION):
            # Traverse from the last update to first
            for stage in range(func.num_updates() - 1, -2, -1):
                key = FuncKey(func.name, stage)
                domain = self.func_bounds[key]

                # Reads of the adjoint outside the stage's domain are zero
                wrapped = constant_exterior(self.adjoint_funcs[key], 0.0, domain)
                self.adjoint_funcs[key] = wrapped
                self.finalized.add(key)

                ctx = CallContext(key, func.args, domain)
                self._propagate(func.value(stage), wrapped(*func.args), ctx)

        if DEBUG_DETAILED:
            for key, adjoint_func in self.adjoint_funcs.items():
                if key.stage == -1:
                    print_func(adjoint_func)

        return Derivative(dict(self.adjoint_funcs), dict(self.func_bounds))

    def _propagate(self, expr: Expr, seed: Expr, ctx: CallContext):
        self.expr_adjoints = {expr: seed}
        self.let_bindings = {}

        order = sort_expression(expr)
        if DEBUG_DETAILED:
            print(
                f"[ReverseAccumulationVisitor._propagate] {ctx.key.name}[{ctx.key.stage}]: "
                f"{len(order)} nodes"
            )

        for node in reversed(order):
            adjoint = self.expr_adjoints.get(node)
            if adjoint is None:
                raise MissingAdjointError(
                    f"Node '{node}' in {ctx.key.name}[{ctx.key.stage}] was visited "
                    f"before any of its consumers"
                )
            rule = self._rules.get(node.kind)
            if rule is not None:
                rule(node, adjoint, ctx)

    def _accumulate(self, node: Expr, adjoint: Expr):
        prev = self.expr_adjoints.get(node)
        if prev is None or _is_zero(prev):
            self.expr_adjoints[node] = adjoint
        elif not _is_zero(adjoint):
            self.expr_adjoints[node] = prev + adjoint

    # --- Rules ---

    def _visit_cast(self, op: Expr, adjoint: Expr, ctx: CallContext):
        self._accumulate(op.operands[0], adjoint)

    def _visit_add(self, op: Expr, adjoint: Expr, ctx: CallContext):
        a, b = op.operands
        self._accumulate(a, adjoint)
        self._accumulate(b, adjoint)

    def _visit_sub(self, op: Expr, adjoint: Expr, ctx: CallContext):
        a, b = op.operands
        self._accumulate(a, adjoint)
        self._accumulate(b, -adjoint)

    def _visit_mul(self, op: Expr, adjoint: Expr, ctx: CallContext):
        a, b = op.operands
        self._accumulate(a, adjoint * b)
        self._accumulate(b, adjoint * a)

    def _visit_div(self, op: Expr, adjoint: Expr, ctx: CallContext):
        a, b = op.operands
        self._accumulate(a, adjoint / b)
        self._accumulate(b, -adjoint * a / (b * b))

    def _visit_min(self, op: Expr, adjoint: Expr, ctx: CallContext):
        a, b = op.operands
        self._accumulate(a, select(a <= b, adjoint, 0.0))
        self._accumulate(b, select(b <= a, adjoint, 0.0))

    def _visit_max(self, op: Expr, adjoint: Expr, ctx: CallContext):
        a, b = op.operands
        self._accumulate(a, select(a >= b, adjoint, 0.0))
        self._accumulate(b, select(b >= a, adjoint, 0.0))

    def _visit_select(self, op: Expr, adjoint: Expr, ctx: CallContext):
        cond, true_value, false_value = op.operands
        self._accumulate(true_value, select(cond, adjoint, 0.0))
        self._accumulate(false_value, select(cond, 0.0, adjoint))

    def _visit_let(self, op: Expr, adjoint: Expr, ctx: CallContext):
        value, body = op.operands
        self._accumulate(body, adjoint)
        # The value gets its adjoint through uses of the bound name, if any
        self._accumulate(value, const(0.0))
        self.let_bindings[op.name] = value

    def _visit_variable(self, op: Expr, adjoint: Expr, ctx: CallContext):
        value = self.let_bindings.get(op.name)
        if value is None:
            return
        if find_variable(adjoint, op.name):
            adjoint = let(op.name, value, adjoint)
        self._accumulate(value, adjoint)

    def _visit_call(self, op: Expr, adjoint: Expr, ctx: CallContext):
        call_type = op.get_attr("call_type")
        if call_type == CallType.FUNC:
            self._accumulate_func_call(op, adjoint, ctx)
        elif call_type == CallType.PRIMITIVE:
            self._accumulate_primitive_call(op, adjoint)
        # Images are inputs, they have no adjoint

    def _accumulate_primitive_call(self, op: Expr, adjoint: Expr):
        rule = get_derivative_rule(op.name)
        if rule is None:
            if self.unknown_primitive_policy == "error":
                raise UnrecognizedPrimitiveError(
                    f"No derivative rule for primitive '{op.name}' in '{op}'"
                )
            if DEBUG_EXECUTION:
                print(
                    f"[ReverseAccumulationVisitor._accumulate_primitive_call] "
                    f"'{op.name}' has no derivative rule, treating it as constant"
                )
            for arg in op.operands:
                self._accumulate(arg, const(0.0))
            return

        contributions = rule(op.operands, adjoint)
        if len(contributions) != len(op.operands):
            raise ValueError(
                f"Derivative rule of '{op.name}' returned {len(contributions)} "
                f"contributions for {len(op.operands)} args"
            )
        for arg, contribution in zip(op.operands, contributions):
            self._accumulate(arg, contribution)

    def _accumulate_func_call(self, op: Expr, adjoint: Expr, ctx: CallContext):
        func: Func = op.get_attr("func")

        # A function reading itself reads its previous stage
        if func.name == ctx.key.name:
            key = FuncKey(func.name, ctx.key.stage - 1)
        else:
            key = FuncKey(func.name, func.num_updates() - 1)

        if key in self.finalized:
            raise AdjointOrderError(
                f"Adjoint of {key.name}[{key.stage}] is already final, but "
                f"{ctx.key.name}[{ctx.key.stage}] still contributes to it via '{op}'"
            )

        if _is_zero(adjoint):
            return

        adjoint = self._bind_lets(adjoint)
        if ctx.key.stage >= 0:
            # Inside an update, the function's own value is the previous stage's
            func_prev = self._stage_func(ctx.args, ctx.key.name, ctx.key.stage - 1)
            adjoint = replace_calls(adjoint, ctx.key.name, func_prev)
        adjoint = self._canonicalize(op, adjoint, ctx)

        if DEBUG_DETAILED:
            print(
                f"[ReverseAccumulationVisitor._accumulate_func_call] "
                f"{key.name}[{key.stage}] += {adjoint}"
            )

        target = self.adjoint_funcs[key]
        target[func.args] = target(*func.args) + adjoint

    def _stage_func(self, args: List[Expr], name: str, stage: int) -> Func:
        """A Func holding the value of 'name' right after 'stage'."""
        key = FuncKey(name, stage)
        if key not in self.stage_funcs:
            func = self.funcs_by_name[name]
            snapshot = Func(f"{name}_s{stage + 1}")
            snapshot[args] = func.value(-1)
            for update in range(stage + 1):
                snapshot[func.stage_args(update)] = replace_calls(
                    func.value(update), name, snapshot
                )
            self.stage_funcs[key] = snapshot
        return self.stage_funcs[key]

    def _bind_lets(self, adjoint: Expr) -> Expr:
        """Wraps the adjoint in the Let bindings its free variables refer to."""
        bound: Set[str] = set()
        while True:
            pending = [
                v.name
                for v in free_variables(adjoint)
                if v.name in self.let_bindings and v.name not in bound
            ]
            if not pending:
                return adjoint
            for name in pending:
                adjoint = let(name, self.let_bindings[name], adjoint)
                bound.add(name)

    def _canonicalize(self, op: Expr, adjoint: Expr, ctx: CallContext) -> Expr:
        """
        Rewrites an adjoint written in the caller's variables so that it is
        indexed by the callee's declared variables.

        Argument i of the call is matched against a pivot variable: the first
        caller variable it uses, else the first reduction variable it uses.
          - argument is the pivot:    rename pivot -> v_i
          - argument uses the pivot:  solve v_i == arg for the pivot and substitute
          - no variable left to use:  keep only points where v_i == arg
        Caller variables left in the adjoint afterwards are summed over the
        caller's domain.
        """
        func: Func = op.get_attr("func")
        caller_vars = {a.name: i for i, a in enumerate(ctx.args)}
        placeholders = [Var(_unique_name(f"{v.name}_p")) for v in func.args]

        args = list(op.operands)
        for i, placeholder in enumerate(placeholders):
            arg = args[i]
            pivot = _choose_pivot(arg, caller_vars)
            if pivot is None:
                adjoint = select(eq(placeholder, arg), adjoint, 0.0)
                continue

            if arg.kind == ExprKind.VARIABLE:
                inverse = placeholder
            else:
                solved = solve(eq(placeholder, arg), pivot.name)
                if not solved.fully_solved:
                    raise UninvertibleIndexExpressionError(
                        f"Can't invert argument {i} '{arg}' of call '{op}' in "
                        f"{ctx.key.name}[{ctx.key.stage}] for '{pivot.name}'"
                    )
                inverse = solved.result.operands[1]

            replacement = {pivot.name: inverse}
            adjoint = substitute(replacement, adjoint)
            if pivot.is_reduction_var:
                # The reduction only reads inside its own domain
                rdom: RDom = pivot.get_attr("rdom")
                dim = pivot.get_attr("index")
                lo = rdom.min(dim)
                hi = simplify(lo + rdom.extent(dim) - 1)
                adjoint = select(
                    logical_and(inverse >= lo, inverse <= hi), adjoint, 0.0
                )
            for j in range(i + 1, len(args)):
                args[j] = substitute(replacement, args[j])

        # Caller variables the callee's index does not determine
        leftover = [v for v in free_variables(adjoint) if v.name in caller_vars]
        if leftover:
            rdom = RDom(ctx.domain)
            adjoint = substitute(
                {v.name: rdom[caller_vars[v.name]] for v in leftover}, adjoint
            )

        return substitute(
            {p.name: v for p, v in zip(placeholders, func.args)}, adjoint
        )


def _choose_pivot(arg: Expr, caller_vars: Dict[str, int]) -> Optional[Expr]:
    variables = free_variables(arg)
    for v in variables:
        if v.is_pure_var and v.name in caller_vars:
            return v
    for v in variables:
        if v.is_reduction_var:
            return v
    return None


def _check_update_args(func: Func):
    names = [a.name for a in func.args]
    for stage in range(func.num_updates()):
        lhs = func.stage_args(stage)
        if [a.name if a.is_pure_var else None for a in lhs] != names:
            raise ValueError(
                f"Update {stage} of '{func.name}' writes at "
                f"({', '.join(str(a) for a in lhs)}); differentiable updates must "
                f"write at its declared variables ({', '.join(names)})"
            )


# --- Entry points ---


def compute_derivative(
    loss: Expr, unknown_primitive_policy: Optional[str] = None
) -> Derivative:
    return ReverseAccumulationVisitor(unknown_primitive_policy).propagate_adjoints(loss)


def propagate_adjoints(
    loss: Expr, unknown_primitive_policy: Optional[str] = None
) -> Dict[str, Func]:
    """
    Differentiates 'loss' and returns, for every Func it reaches, the adjoint of
    that Func's final value keyed by name. Free reduction variables in 'loss'
    are summed over.
    """
    derivative = compute_derivative(loss, unknown_primitive_policy)
    return {
        key.name: adjoint_func
        for key, adjoint_func in derivative.adjoints.items()
        if key.stage == -1
    }


def propagate_func_adjoints(
    output: Func,
    adjoint: Union[Func, Buffer, None] = None,
    output_bounds: Optional[List[tuple]] = None,
    unknown_primitive_policy: Optional[str] = None,
) -> Dict[str, Func]:
    """
    Backpropagates 'adjoint' (the gradient of some scalar w.r.t. every element
    of 'output' over 'output_bounds') into the Funcs 'output' depends on.
    A missing adjoint is taken as 1 everywhere.
    """
    if output_bounds is None:
        if not isinstance(adjoint, Buffer):
            raise ValueError("output_bounds is required unless adjoint is a Buffer")
        output_bounds = [(0, adjoint.dim(i)) for i in range(adjoint.dimensions)]
    if len(output_bounds) != output.dimensions:
        raise ValueError(
            f"{len(output_bounds)} output bounds for {output.dimensions}-D Func "
            f"'{output.name}'"
        )

    r = RDom(output_bounds)
    points = [r[i] for i in range(len(r))]
    loss = output(*points)
    if adjoint is not None:
        loss = loss * adjoint(*points)
    return propagate_adjoints(loss, unknown_primitive_policy)
