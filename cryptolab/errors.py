"""
Exception hierarchy.

Callers catch CryptoLabError to handle anything raised by the library.
The optimizer maps every evaluation failure to a penalty fitness, so
these mostly surface from data loading and configuration.
"""


class CryptoLabError(Exception):
    """Base class for all library errors."""


class DataError(CryptoLabError):
    """Historical series missing, malformed, or too short to use."""


class SimulationError(CryptoLabError):
    """A strategy or indicator failed while the simulation was running."""


class InsufficientDataError(SimulationError):
    """An indicator was asked for a value it has too little look-back to compute."""

    def __init__(self, indicator: str, required: int, available: int):
        self.indicator = indicator
        self.required = required
        self.available = available
        super().__init__(
            f"{indicator} needs {required} bars, only {available} available"
        )


class ConfigurationError(CryptoLabError):
    """Invalid parameters, settings, or an unknown strategy/codec name."""
