class DerivativeError(RuntimeError):
    """Base class for fatal conditions of the differentiation pass."""


class UnsupportedBoundsExpressionError(DerivativeError):
    """Interval evaluation reached a node kind it cannot bound."""


class UninvertibleIndexExpressionError(DerivativeError):
    """A call argument has no closed-form integer inverse."""


class MissingAdjointError(DerivativeError):
    """A node was visited before any consumer gave it an adjoint (broken ordering)."""


class UnrecognizedPrimitiveError(DerivativeError):
    """A primitive call has no derivative rule and the policy is "error"."""


class AdjointOrderError(DerivativeError):
    """A contribution targeted an adjoint stage that was already finalized."""
