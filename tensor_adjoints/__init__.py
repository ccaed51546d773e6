# Expose main components for easy access
from .ir.node import Expr, const, cast, select, min_, max_, clamp, eq, ne, let
from .ir.node import exp, log, sin, cos, sqrt, tanh, call_primitive
from .ir.func import Var, RDom, Func, Buffer
from .ir.graph import print_func
from .ir.dtypes import DType
from .compiler.bounds import FuncKey, BoundsInferencer
from .compiler.boundary import constant_exterior
from .compiler.derivative import (
    Derivative,
    compute_derivative,
    propagate_adjoints,
    propagate_func_adjoints,
)
from .compiler.errors import DerivativeError
from .backend.reference import realize
