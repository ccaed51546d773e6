from typing import List, Tuple
from ..ir.node import Expr, ExprLike, as_expr, clamp, logical_and, select
from ..ir.func import Func, Var
from .symbolic import simplify


def constant_exterior(
    func: Func, value: ExprLike, bounds: List[Tuple[Expr, Expr]]
) -> Func:
    """
    Wraps 'func' so that reads outside 'bounds' (one (min, extent) pair per
    dimension) return 'value'. Reads inside are clamped before delegating, so
    the wrapped function is never evaluated outside its bounds.
    """
    if len(bounds) != func.dimensions:
        raise ValueError(
            f"constant_exterior: {len(bounds)} bounds for {func.dimensions}-D Func '{func.name}'"
        )

    args = [Var(a.name) for a in func.args]
    in_bounds = None
    clamped_args = []
    for arg, (mn, extent) in zip(args, bounds):
        mn = as_expr(mn)
        hi = simplify(mn + as_expr(extent) - 1)
        cond = logical_and(arg >= mn, arg <= hi)
        in_bounds = cond if in_bounds is None else logical_and(in_bounds, cond)
        clamped_args.append(clamp(arg, mn, hi))

    wrapper = Func(f"{func.name}_ce")
    if in_bounds is None:
        # 0-D function: nothing can be out of bounds
        wrapper[()] = func()
    else:
        wrapper[args] = select(in_bounds, func(*clamped_args), value)
    return wrapper
