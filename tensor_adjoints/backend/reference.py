"""
File: tensor_adjoints/backend/reference.py

Reference realizer: evaluates a Func over a box of indices with numpy. Pure
stages are vectorized over the whole box; update stages run serially over the
reduction points they reference and are vectorized over the pure variables.
"""

import itertools
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from tqdm import tqdm

from ..config import DEBUG_DETAILED, DEBUG_EXECUTION
from ..ir.func import Func
from ..ir.graph import free_variables
from ..ir.node import Expr
from ..ops.expr_kinds import CallType, ExprKind
from .registry import KernelRegistry
from . import kernels  # noqa: F401

_BINARY = {
    ExprKind.ADD: np.add,
    ExprKind.SUB: np.subtract,
    ExprKind.MUL: np.multiply,
    ExprKind.MIN: np.minimum,
    ExprKind.MAX: np.maximum,
    ExprKind.LT: np.less,
    ExprKind.LE: np.less_equal,
    ExprKind.GT: np.greater,
    ExprKind.GE: np.greater_equal,
    ExprKind.EQ: np.equal,
    ExprKind.NE: np.not_equal,
    ExprKind.AND: np.logical_and,
    ExprKind.OR: np.logical_or,
}


class Realizer:
    """
    Realizes Funcs on demand. Every Func computed while serving one request is
    kept (with the box it covers) and recomputed over the union box if a later
    read falls outside it.
    """

    def __init__(self):
        self.cache: Dict[Func, Tuple[List[int], np.ndarray]] = {}
        # Funcs whose update stages are running: reads go to the partial buffer
        self.in_progress: Dict[Func, Tuple[List[int], np.ndarray]] = {}

    def realize(
        self, func: Func, sizes: Sequence[int], mins: Optional[Sequence[int]] = None
    ) -> np.ndarray:
        sizes = [int(s) for s in sizes]
        mins = [0] * len(sizes) if mins is None else [int(m) for m in mins]
        if len(sizes) != func.dimensions or len(mins) != func.dimensions:
            raise ValueError(
                f"Func '{func.name}' has {func.dimensions} dims, got sizes {sizes} "
                f"and mins {mins}"
            )
        buf_mins, buf = self._realize_box(func, mins, sizes)
        window = tuple(
            slice(m - bm, m - bm + s) for m, bm, s in zip(mins, buf_mins, sizes)
        )
        return np.array(buf[window])

    def _realize_box(
        self, func: Func, mins: List[int], sizes: List[int]
    ) -> Tuple[List[int], np.ndarray]:
        cached = self.cache.get(func)
        if cached is not None:
            c_mins, c_buf = cached
            c_maxs = [m + s for m, s in zip(c_mins, c_buf.shape)]
            maxs = [m + s for m, s in zip(mins, sizes)]
            if all(cm <= m for cm, m in zip(c_mins, mins)) and all(
                cM >= M for cM, M in zip(c_maxs, maxs)
            ):
                return cached
            lo = [min(a, b) for a, b in zip(c_mins, mins)]
            hi = [max(a, b) for a, b in zip(c_maxs, maxs)]
            mins, sizes = lo, [h - l for l, h in zip(lo, hi)]

        if DEBUG_EXECUTION:
            print(f"[Realizer._realize_box] {func.name} mins={mins} sizes={sizes}")

        buf = self._compute(func, mins, sizes)
        self.cache[func] = (mins, buf)
        return mins, buf

    def _compute(self, func: Func, mins: List[int], sizes: List[int]) -> np.ndarray:
        coords = []
        if mins:
            coords = np.meshgrid(
                *[np.arange(m, m + s) for m, s in zip(mins, sizes)], indexing="ij"
            )
        env = {a.name: c for a, c in zip(func.args, coords)}

        buf = np.empty(tuple(sizes), dtype=func.dtype.numpy)
        buf[...] = self._eval(func.value(-1), env, {})

        self.in_progress[func] = (mins, buf)
        try:
            for stage in range(func.num_updates()):
                self._run_update(func, stage, env, mins, buf)
        finally:
            del self.in_progress[func]
        return buf

    def _run_update(
        self,
        func: Func,
        stage: int,
        env: Dict[str, np.ndarray],
        mins: List[int],
        buf: np.ndarray,
    ):
        definition = func.definition(stage)
        rvars = {}
        for expr in definition.args + [definition.value]:
            for v in free_variables(expr):
                if v.is_reduction_var and v.name not in rvars:
                    rvars[v.name] = v

        ranges = []
        for v in rvars.values():
            rdom = v.get_attr("rdom")
            dim = v.get_attr("index")
            lo = self.concrete(rdom.min(dim))
            ranges.append(range(lo, lo + self.concrete(rdom.extent(dim))))

        total = int(np.prod([len(r) for r in ranges])) if ranges else 1
        for point in tqdm(
            itertools.product(*ranges),
            total=total,
            desc=f"{func.name}[{stage}]",
            disable=not DEBUG_EXECUTION,
        ):
            step_env = dict(env)
            step_env.update({name: np.int64(p) for name, p in zip(rvars, point)})
            memo = {}
            value = self._eval(definition.value, step_env, memo)
            index = [self._eval(a, step_env, memo) for a in definition.args]
            if buf.ndim == 0:
                buf[...] = value
                continue
            *index, value = np.broadcast_arrays(*index, value)
            local = tuple(np.asarray(i) - m for i, m in zip(index, mins))
            for d, i in enumerate(local):
                if i.size and (i.min() < 0 or i.max() >= buf.shape[d]):
                    raise IndexError(
                        f"Update {stage} of '{func.name}' writes outside the "
                        f"realized box in dim {d}"
                    )
            buf[local] = value

    def concrete(self, expr: Expr) -> int:
        if free_variables(expr):
            raise ValueError(
                f"Bound '{expr}' is not concrete: {[v.name for v in free_variables(expr)]}"
            )
        return int(self._eval(expr, {}, {}))

    # --- Expression evaluation ---

    def _eval(self, expr: Expr, env: Dict[str, np.ndarray], memo: Dict[Expr, np.ndarray]):
        if expr in memo:
            return memo[expr]

        k = expr.kind
        if k == ExprKind.CONSTANT:
            val = np.asarray(expr.value, dtype=expr.dtype.numpy)
        elif k == ExprKind.VARIABLE:
            if expr.name not in env:
                raise ValueError(f"Variable '{expr.name}' is not bound")
            val = env[expr.name]
        elif k == ExprKind.LET:
            value = self._eval(expr.operands[0], env, memo)
            inner = dict(env)
            inner[expr.name] = value
            val = self._eval(expr.operands[1], inner, {})
        elif k == ExprKind.CAST:
            val = np.asarray(self._eval(expr.operands[0], env, memo)).astype(
                expr.dtype.numpy
            )
        elif k == ExprKind.SELECT:
            c, t, f = [self._eval(o, env, memo) for o in expr.operands]
            val = np.where(c, t, f)
        elif k == ExprKind.DIV:
            a, b = [self._eval(o, env, memo) for o in expr.operands]
            if expr.dtype.is_float:
                val = np.true_divide(a, b)
            else:
                val = np.floor_divide(a, b)
        elif k in _BINARY:
            a, b = [self._eval(o, env, memo) for o in expr.operands]
            val = _BINARY[k](a, b)
        elif k == ExprKind.CALL:
            val = self._eval_call(expr, env, memo)
        else:
            raise NotImplementedError(f"Cannot evaluate {k} node '{expr}'")

        memo[expr] = val
        return val

    def _eval_call(self, op: Expr, env, memo):
        args = [self._eval(a, env, memo) for a in op.operands]
        call_type = op.get_attr("call_type")

        if call_type == CallType.PRIMITIVE:
            kernel = KernelRegistry.get_kernel(op.name)
            if kernel is None:
                raise NotImplementedError(f"No registered kernel for primitive '{op.name}'")
            return kernel(*args)

        if args:
            args = np.broadcast_arrays(*args)
        index = [np.asarray(a).astype(np.int64) for a in args]

        if call_type == CallType.IMAGE:
            data = op.get_attr("buffer").data
            for d, i in enumerate(index):
                if i.size and (i.min() < 0 or i.max() >= data.shape[d]):
                    raise IndexError(
                        f"Read of image '{op.name}' outside [0, {data.shape[d]}) "
                        f"in dim {d}: [{i.min()}, {i.max()}]"
                    )
            return data[tuple(index)]

        func: Func = op.get_attr("func")
        if func in self.in_progress:
            mins, buf = self.in_progress[func]
            for d, i in enumerate(index):
                if i.size and (i.min() < mins[d] or i.max() >= mins[d] + buf.shape[d]):
                    raise IndexError(
                        f"'{func.name}' reads itself outside its realized box in dim {d}"
                    )
        else:
            if any(i.size == 0 for i in index):
                return np.zeros(index[0].shape, dtype=func.dtype.numpy)
            box_mins = [int(i.min()) for i in index]
            box_sizes = [int(i.max()) - m + 1 for i, m in zip(index, box_mins)]
            if DEBUG_DETAILED:
                print(f"[Realizer._eval_call] {func.name} box {box_mins} {box_sizes}")
            mins, buf = self._realize_box(func, box_mins, box_sizes)
        return buf[tuple(i - m for i, m in zip(index, mins))]


def realize(
    func: Func,
    sizes: Union[int, Sequence[int]],
    mins: Optional[Sequence[int]] = None,
) -> np.ndarray:
    """Evaluates 'func' over the box [mins, mins + sizes) (mins default to 0)."""
    if isinstance(sizes, (int, np.integer)):
        sizes = [sizes]
    return Realizer().realize(func, sizes, mins)
