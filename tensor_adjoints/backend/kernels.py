import numpy as np
from .registry import KernelRegistry


@KernelRegistry.register("exp")
def exp_kernel(x):
    return np.exp(x)


@KernelRegistry.register("log")
def log_kernel(x):
    return np.log(x)


@KernelRegistry.register("sin")
def sin_kernel(x):
    return np.sin(x)


@KernelRegistry.register("cos")
def cos_kernel(x):
    return np.cos(x)


@KernelRegistry.register("sqrt")
def sqrt_kernel(x):
    return np.sqrt(x)


@KernelRegistry.register("tanh")
def tanh_kernel(x):
    return np.tanh(x)


@KernelRegistry.register("floor")
def floor_kernel(x):
    # No derivative rule: differentiated under UNKNOWN_PRIMITIVE_POLICY
    return np.floor(x)


@KernelRegistry.register("pow")
def pow_kernel(x, y):
    return np.power(x, y)
