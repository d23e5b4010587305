"""
Exceptions raised by the star matcher.

Every failure a caller can recover from derives from ``MatchError`` so the
registration layer can catch one type at the call boundary.
"""


class MatchError(Exception):
    """Base class for all matching failures."""


class InsufficientPoints(MatchError):
    """Too few points or pairs for the requested polynomial order."""


class SingularSystem(MatchError):
    """The normal equations cannot be solved."""


class NoMatchFound(MatchError):
    """No triangle pair led to an acceptable transform."""


class ConstraintViolation(MatchError):
    """A transform was found but breaks the scale or rotation bounds."""
