"""Contains the errors raised by drmplan. All of them extend Python's base errors."""
from __future__ import annotations


class LogicError(RuntimeError):
    """Generic error to indicate that any kind of algorithmic problem occurred.

    This error is generally used when some assumption of the planner is violated, but it's (probably) not the user's fault.
    As a rule of thumb, if the user supplies faulty input, a `ValueError` should be raised instead.
    Therefore, encoutering a `LogicError` indicates a bug in the optimizer or the physical lowering.
    """
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)


class StateError(RuntimeError):
    """Indicates that an object is not in the right state to perform an operation."""
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)


class InvariantViolationError(LogicError):
    """Indicates that some contract of an expression was violated. The arguments should provide further details.

    The most prominent example is a transposition of a matrix with non-integer row keys that survives the optimizer. Such
    an expression cannot be flipped physically and must not be approximated silently.
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)


class UnsupportedOperatorError(LogicError):
    """Indicates that the planner encountered an operator for which it has no rewrite rule or no physical mapping.

    This is never a data error. It means that the optimizer and the physical lowering are out of sync.
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)


class UnsupportedOperationError(RuntimeError):
    """Indicates that some metadata (e.g. the number of non-zero elements) cannot be derived for a logical operator."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)


class ConfigurationError(ValueError):
    """Indicates that a session could not be set up because the environment is configured incorrectly.

    Typical causes are a missing home directory, a helper executable without execution permission or helper output that
    cannot be parsed.
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
