from typing import Set, Dict, List
from .node import Expr
from .func import Func
from ..ops.expr_kinds import ExprKind, CallType


def sort_functions(root: Expr) -> List[Func]:
    """
    Collects every Func reachable from 'root' (through all update stages) and
    returns them consumers-first: each Func appears before every Func it calls.
    Each Func is listed once.
    """
    visited_nodes: Set[Expr] = set()
    traversed: Set[str] = set()
    postorder: List[Func] = []

    def _visit_func(func: Func):
        traversed.add(func.name)
        # Traverse from the last update to first
        for stage in range(func.num_updates() - 1, -2, -1):
            _visit(func.value(stage))
        postorder.append(func)

    def _visit(node: Expr):
        if node in visited_nodes:
            return
        visited_nodes.add(node)
        if node.is_call(CallType.FUNC):
            func = node.get_attr("func")
            if func.name not in traversed:
                _visit_func(func)
            return
        for operand in node.operands:
            _visit(operand)

    _visit(root)
    return list(reversed(postorder))


def sort_expression(root: Expr) -> List[Expr]:
    """
    Returns operands-before-consumers order of the differentiable sub-DAG of
    'root', ending with 'root'. Arguments of Func and image calls are not
    expanded (they live in a different bounds domain), nor are boolean nodes
    and Select conditions.
    """
    visited: Set[Expr] = set()
    order: List[Expr] = []

    def _children(node: Expr) -> List[Expr]:
        if node.kind == ExprKind.CALL:
            if node.get_attr("call_type") in (CallType.FUNC, CallType.IMAGE):
                return []
            return node.operands
        if ExprKind.is_boolean(node.kind):
            return []
        if node.kind == ExprKind.SELECT:
            return node.operands[1:]
        return node.operands

    def _include(node: Expr):
        if node in visited:
            return
        visited.add(node)
        for child in _children(node):
            _include(child)
        order.append(node)

    visited.add(root)
    for child in _children(root):
        _include(child)
    order.append(root)
    return order


def find_variable(expr: Expr, name: str) -> bool:
    """True if a Variable called 'name' occurs anywhere in 'expr' (call args included)."""
    visited: Set[Expr] = set()
    stack = [expr]
    while stack:
        node = stack.pop()
        if node in visited:
            continue
        visited.add(node)
        if node.kind == ExprKind.VARIABLE and node.name == name:
            return True
        stack.extend(node.operands)
    return False


def free_variables(expr: Expr) -> List[Expr]:
    """
    Variables of 'expr' in first-appearance order, one node per name.
    Names bound by an enclosing Let are excluded.
    """
    seen: Dict[str, Expr] = {}

    def _visit(node: Expr, bound: frozenset):
        if node.kind == ExprKind.VARIABLE:
            if node.name not in bound and node.name not in seen:
                seen[node.name] = node
            return
        if node.kind == ExprKind.LET:
            _visit(node.operands[0], bound)
            _visit(node.operands[1], bound | {node.name})
            return
        for operand in node.operands:
            _visit(operand, bound)

    _visit(expr, frozenset())
    return list(seen.values())


def substitute(replacements: Dict[str, Expr], expr: Expr) -> Expr:
    """
    Simultaneously replaces free Variables by name. Untouched sub-trees are
    returned as the same nodes, so sharing is preserved.
    """
    if not replacements:
        return expr
    memo: Dict[tuple, Expr] = {}

    def _sub(node: Expr, shadowed: frozenset) -> Expr:
        key = (id(node), shadowed)
        if key in memo:
            return memo[key]
        if node.kind == ExprKind.VARIABLE:
            if node.name in replacements and node.name not in shadowed:
                result = replacements[node.name]
            else:
                result = node
        elif node.kind == ExprKind.LET:
            value = _sub(node.operands[0], shadowed)
            body = _sub(node.operands[1], shadowed | {node.name})
            result = _rebuild(node, [value, body])
        else:
            result = _rebuild(node, [_sub(o, shadowed) for o in node.operands])
        memo[key] = result
        return result

    return _sub(expr, frozenset())


def replace_calls(expr: Expr, name: str, replacement: Func) -> Expr:
    """Redirects every call of the Func called 'name' in 'expr' to 'replacement'."""
    memo: Dict[Expr, Expr] = {}

    def _sub(node: Expr) -> Expr:
        if node in memo:
            return memo[node]
        operands = [_sub(o) for o in node.operands]
        if node.is_call(CallType.FUNC) and node.name == name:
            result = replacement(*operands)
        else:
            result = _rebuild(node, operands)
        memo[node] = result
        return result

    return _sub(expr)


def _rebuild(node: Expr, operands: List[Expr]) -> Expr:
    if all(a is b for a, b in zip(operands, node.operands)):
        return node
    return Expr(node.kind, node.dtype, operands, node.name, dict(node.attrs))


def print_func(func: Func):
    """Prints 'func' and every Func it depends on, stage by stage."""
    print(f"Printing function: {func.name}")
    funcs = sort_functions(func(*func.args))
    for i in range(len(funcs) - 1, -1, -1):
        f = funcs[i]
        print(f"  funcs[{i}]: {f.name}")
        for stage in range(-1, f.num_updates()):
            lhs = ", ".join(str(a) for a in f.stage_args(stage))
            label = "init" if stage < 0 else "update"
            print(f"    {label}: {f.name}({lhs}) = {f.value(stage)}")
