from enum import Enum
import numpy as np


class DType(Enum):
    FP32 = "float32"
    INT32 = "int32"
    BOOL = "bool"

    @property
    def numpy(self):
        return np.dtype(self.value)

    @property
    def is_float(self) -> bool:
        return self == DType.FP32


def promote(a: DType, b: DType) -> DType:
    """Result type of an arithmetic op between two operands."""
    if a == DType.FP32 or b == DType.FP32:
        return DType.FP32
    return DType.INT32


def dtype_of_value(value) -> DType:
    if isinstance(value, (bool, np.bool_)):
        return DType.BOOL
    if isinstance(value, (int, np.integer)):
        return DType.INT32
    if isinstance(value, (float, np.floating)):
        return DType.FP32
    raise ValueError(f"Unsupported constant type: {type(value)}")
