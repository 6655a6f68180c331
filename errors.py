"""
Exceptions for the Bottle Thaw Model.
"""


class BottleModelError(Exception):
    """Base exception for bottle thaw simulation errors."""


class InvalidConfiguration(BottleModelError, ValueError):
    """Geometry, resolution, material or region parameters that cannot start a session."""


class NumericalInstability(BottleModelError, RuntimeError):
    """Explicit time stepping left the stable or physically plausible range."""


__all__ = [
    "BottleModelError",
    "InvalidConfiguration",
    "NumericalInstability",
]
