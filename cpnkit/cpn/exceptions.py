"""
Exceptions raised by the colored Petri net classes.

Everything inherits from CPNError. Errors that a simulation loop is expected
to recover from (re-check enabling, pick another transition) derive from
FiringError.
"""


class CPNError(Exception):
    """Base exception for all cpnkit errors."""


class ConfigurationError(CPNError, ValueError):
    """A net element was built or connected in an invalid way."""


class ColorSetParseError(ConfigurationError):
    """A 'colset' definition could not be parsed."""


class UnsupportedColorError(CPNError, TypeError):
    """A value has no color tag, or cannot be converted to the requested one."""


class ColorMismatchError(CPNError, ValueError):
    """A token does not belong to the color set of the place receiving it."""


class ExpressionError(CPNError):
    """An arc expression could not be evaluated."""


class FiringError(CPNError, RuntimeError):
    """A transition could not fire. The caller may re-check enabling and retry."""


class TransitionNotEnabledError(FiringError):
    """execute() was called on a transition that is not enabled."""


class InsufficientTokensError(FiringError):
    """A place cannot supply the tokens a firing needs."""
