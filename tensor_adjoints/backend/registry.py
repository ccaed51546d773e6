# tensor_adjoints/backend/registry.py
from typing import Dict, Callable, Optional


class KernelRegistry:
    # Primitive name -> numpy kernel
    _kernels: Dict[str, Callable] = {}

    @classmethod
    def has_kernel(cls, name: str) -> bool:
        return name in cls._kernels

    @classmethod
    def register(cls, name: str):
        def decorator(func):
            if name in cls._kernels:
                raise ValueError(f"Kernel for primitive '{name}' is already registered")
            cls._kernels[name] = func
            return func

        return decorator

    @classmethod
    def get_kernel(cls, name: str) -> Optional[Callable]:
        return cls._kernels.get(name, None)
