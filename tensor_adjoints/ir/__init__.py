from .node import Expr, const, cast, select, min_, max_, clamp, eq, ne, let
from .func import Var, RDom, Func, Buffer
from .graph import sort_functions, sort_expression, substitute, print_func
from .hashing import equal
from .dtypes import DType

__all__ = [
    "Expr",
    "const",
    "cast",
    "select",
    "min_",
    "max_",
    "clamp",
    "eq",
    "ne",
    "let",
    "Var",
    "RDom",
    "Func",
    "Buffer",
    "sort_functions",
    "sort_expression",
    "substitute",
    "print_func",
    "equal",
    "DType",
]
