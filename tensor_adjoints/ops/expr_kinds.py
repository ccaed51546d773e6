class ExprKind:
    # --- Leaves ---
    CONSTANT = "Constant"
    VARIABLE = "Variable"

    # --- Math ---
    CAST = "Cast"
    ADD = "Add"
    SUB = "Sub"
    MUL = "Mul"
    DIV = "Div"
    MIN = "Min"
    MAX = "Max"
    SELECT = "Select"

    # --- Structure ---
    CALL = "Call"
    LET = "Let"

    # --- Boolean (Select conditions, solver equations) ---
    LT = "LT"
    LE = "LE"
    GT = "GT"
    GE = "GE"
    EQ = "EQ"
    NE = "NE"
    AND = "And"
    OR = "Or"

    @classmethod
    def is_boolean(cls, kind: str) -> bool:
        """Returns True for comparison and logic kinds. These never carry adjoints."""
        return kind in (cls.LT, cls.LE, cls.GT, cls.GE, cls.EQ, cls.NE, cls.AND, cls.OR)


class CallType:
    FUNC = "Func"  # Call into another tensor function
    IMAGE = "Image"  # Read of an input buffer
    PRIMITIVE = "Primitive"  # Scalar math primitive (exp, sin, ...)
