from dataclasses import dataclass
from typing import List, Tuple, Optional, Union
import uuid
import numpy as np
from .dtypes import DType
from .node import Expr, ExprLike, as_expr, cast, make_call
from ..ops.expr_kinds import ExprKind, CallType

_DIM_NAMES = "xyzw"


def _unique_name(prefix: str) -> str:
    return f"{prefix}_{str(uuid.uuid4())[:8]}"


def _as_key(key) -> Tuple:
    if isinstance(key, list):
        key = tuple(key)
    if not isinstance(key, tuple):
        key = (key,)
    return key


class Var(Expr):
    """A pure (non-reduction) integer index variable."""

    def __init__(self, name: Optional[str] = None):
        super().__init__(ExprKind.VARIABLE, DType.INT32, [], name or _unique_name("v"), {})


class RDom:
    """
    Reduction domain: an ordered list of (min, extent) pairs. Each dimension owns
    one reduction variable node, shared by every expression that uses it.

    RDom(0, 3, 0, 3) and RDom([(0, 3), (0, 3)]) are equivalent.
    """

    def __init__(self, *bounds, name: Optional[str] = None):
        if len(bounds) == 1 and isinstance(bounds[0], (list, tuple)):
            pairs = list(bounds[0])
        else:
            if len(bounds) % 2 != 0:
                raise ValueError("RDom expects (min, extent) pairs")
            pairs = [(bounds[i], bounds[i + 1]) for i in range(0, len(bounds), 2)]

        self.name = name or _unique_name("r")
        self.bounds: List[Tuple[Expr, Expr]] = [
            (as_expr(mn), as_expr(ext)) for mn, ext in pairs
        ]
        self._vars: List[Expr] = []
        for i in range(len(self.bounds)):
            suffix = _DIM_NAMES[i] if i < len(_DIM_NAMES) else str(i)
            self._vars.append(
                Expr(
                    ExprKind.VARIABLE,
                    DType.INT32,
                    [],
                    f"{self.name}.{suffix}",
                    {"rdom": self, "index": i},
                )
            )

    def __len__(self) -> int:
        return len(self.bounds)

    def __getitem__(self, index: int) -> Expr:
        return self._vars[index]

    def min(self, index: int) -> Expr:
        return self.bounds[index][0]

    def extent(self, index: int) -> Expr:
        return self.bounds[index][1]

    @property
    def x(self) -> Expr:
        return self._vars[0]

    @property
    def y(self) -> Expr:
        return self._vars[1]

    @property
    def z(self) -> Expr:
        return self._vars[2]

    @property
    def w(self) -> Expr:
        return self._vars[3]

    def __repr__(self):
        dims = ", ".join(f"[{mn}, {ext}]" for mn, ext in self.bounds)
        return f"RDom({self.name}: {dims})"


@dataclass
class Definition:
    """One stage of a Func: lhs index expressions and the value stored there."""

    args: List[Expr]
    value: Expr


class Func:
    """
    A named tensor function defined by an initialization stage (stage -1)
    followed by zero or more update stages (0..k-1).

        f = Func("f")
        f[x] = g(x)          # initialization, declares x
        f[x] += g(x + 1)     # update 0: f(x) = f(x) + g(x + 1)
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name or _unique_name("f")
        self._init: Optional[Definition] = None
        self._updates: List[Definition] = []

    @property
    def args(self) -> List[Expr]:
        """Declared index variables of the initialization stage, in order."""
        if self._init is None:
            raise ValueError(f"Func '{self.name}' is not defined")
        return list(self._init.args)

    @property
    def dimensions(self) -> int:
        return len(self.args)

    @property
    def dtype(self) -> DType:
        if self._init is None:
            raise ValueError(f"Func '{self.name}' is not defined")
        return self._init.value.dtype

    def num_updates(self) -> int:
        return len(self._updates)

    def definition(self, stage: int = -1) -> Definition:
        if self._init is None:
            raise ValueError(f"Func '{self.name}' is not defined")
        if stage == -1:
            return self._init
        if not 0 <= stage < len(self._updates):
            raise ValueError(
                f"Func '{self.name}' has no update stage {stage} "
                f"({len(self._updates)} updates)"
            )
        return self._updates[stage]

    def value(self, stage: int = -1) -> Expr:
        return self.definition(stage).value

    def stage_args(self, stage: int = -1) -> List[Expr]:
        return list(self.definition(stage).args)

    def __setitem__(self, key, value: ExprLike):
        key = [as_expr(k) for k in _as_key(key)]
        value = as_expr(value)

        if self._init is None:
            names = set()
            for k in key:
                if not k.is_pure_var:
                    raise ValueError(
                        f"Pure definition of '{self.name}' must use pure variables, got {k}"
                    )
                if k.name in names:
                    raise ValueError(
                        f"Variable '{k.name}' appears twice in the definition of '{self.name}'"
                    )
                names.add(k.name)
            self._init = Definition(key, value)
            return

        if len(key) != self.dimensions:
            raise ValueError(
                f"Update of '{self.name}' has {len(key)} args, expected {self.dimensions}"
            )
        if value.dtype != self.dtype:
            value = cast(self.dtype, value)
        self._updates.append(Definition(key, value))

    def __getitem__(self, key) -> Expr:
        return self(*_as_key(key))

    def __call__(self, *args: ExprLike) -> Expr:
        if self._init is None:
            raise ValueError(f"Cannot call undefined Func '{self.name}'")
        if len(args) != self.dimensions:
            raise ValueError(
                f"Func '{self.name}' takes {self.dimensions} args, got {len(args)}"
            )
        return make_call(CallType.FUNC, self.name, list(args), self.dtype, func=self)

    def __repr__(self):
        return f"Func({self.name})"


def _dtype_from_numpy(dtype) -> DType:
    if np.issubdtype(dtype, np.bool_):
        return DType.BOOL
    if np.issubdtype(dtype, np.integer):
        return DType.INT32
    return DType.FP32


class Buffer:
    """Concrete input image. Reads are Calls of type IMAGE and never receive adjoints."""

    def __init__(self, data: Union[np.ndarray, list], name: Optional[str] = None):
        self.data = np.asarray(data)
        self.name = name or _unique_name("buf")
        self.dtype = _dtype_from_numpy(self.data.dtype)

    @property
    def dimensions(self) -> int:
        return self.data.ndim

    def dim(self, index: int) -> int:
        return self.data.shape[index]

    @property
    def width(self) -> int:
        return self.data.shape[0]

    @property
    def height(self) -> int:
        return self.data.shape[1]

    def __getitem__(self, key) -> Expr:
        return self(*_as_key(key))

    def __call__(self, *args: ExprLike) -> Expr:
        if len(args) != self.dimensions:
            raise ValueError(
                f"Buffer '{self.name}' has {self.dimensions} dims, got {len(args)} args"
            )
        return make_call(CallType.IMAGE, self.name, list(args), self.dtype, buffer=self)

    def __repr__(self):
        return f"Buffer({self.name}, shape={self.data.shape})"
