import hashlib
from typing import Dict, Optional
from .node import Expr
from ..ops.expr_kinds import ExprKind


def _hash_string(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def get_structural_hash(node: Expr, memo: Optional[Dict[Expr, str]] = None) -> str:
    if memo is None:
        memo = {}
    if node in memo:
        return memo[node]

    # 1. Base Cases
    if node.kind == ExprKind.CONSTANT:
        h = _hash_string(f"CONST|{node.dtype.value}|{node.value!r}")
        memo[node] = h
        return h

    if node.kind == ExprKind.VARIABLE:
        rdom = node.get_attr("rdom")
        tag = f"{rdom.name}[{node.get_attr('index')}]" if rdom is not None else ""
        h = _hash_string(f"VAR|{node.dtype.value}|{node.name}|{tag}")
        memo[node] = h
        return h

    # 2. Recurse
    operand_hashes = [get_structural_hash(o, memo) for o in node.operands]

    # 3. Call targets are identified by name, the callee itself is not hashed
    call_type = node.get_attr("call_type", "")

    content = (
        f"{node.kind}|{node.dtype.value}|{node.name}|{call_type}|"
        f"{','.join(operand_hashes)}"
    )
    h = _hash_string(content)

    memo[node] = h
    return h


def equal(a: Expr, b: Expr) -> bool:
    """Structural equality (node identity is not required)."""
    if a is b:
        return True
    return get_structural_hash(a) == get_structural_hash(b)
