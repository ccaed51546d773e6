DEBUG_EXECUTION = False
DEBUG_DETAILED = False

# What to do with a primitive call (e.g. "floor") that has no registered
# derivative rule: "zero" treats it as a constant, "error" raises
# UnrecognizedPrimitiveError.
UNKNOWN_PRIMITIVE_POLICY = "zero"

# Adjoint functions are named f"{func.name}_{stage + 1}{ADJOINT_SUFFIX}"
ADJOINT_SUFFIX = "_d__"
