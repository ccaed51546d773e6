"""
File: tensor_adjoints/ops/registry.py
"""

from typing import Dict, Callable, List, Optional
from ..ir.node import Expr

# rule(args, adjoint) -> one adjoint contribution per argument
DerivativeRule = Callable[[List[Expr], Expr], List[Expr]]

_DERIVATIVE_REGISTRY: Dict[str, DerivativeRule] = {}


def register_derivative(name: str):
    """Decorator to register the reverse-mode rule of a scalar primitive."""

    def decorator(func):
        _DERIVATIVE_REGISTRY[name] = func
        return func

    return decorator


def get_derivative_rule(name: str) -> Optional[DerivativeRule]:
    # Populate built-in rules on first lookup
    from . import primitives  # noqa: F401

    return _DERIVATIVE_REGISTRY.get(name, None)


def list_derivative_rules() -> List[str]:
    from . import primitives  # noqa: F401

    return sorted(_DERIVATIVE_REGISTRY)
