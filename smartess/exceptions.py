"""
Error types raised by the Smart ESS controller.

Core errors (everything under ControllerError) are terminal for the current
tick. The polling loop decides whether to hold the previous dispatch, skip
the tick or halt.
"""


class SmartEssError(Exception):
    """Base class for all Smart ESS errors."""


class RateError(SmartEssError, ValueError):
    """An invalid time of day, weekday or rate window in the tariff table."""


class ControllerError(SmartEssError):
    """The dispatch controller could not produce a decision for this tick."""


class ConfigurationError(ControllerError):
    """The tariff table cannot produce a usable schedule."""


class NoNextChargeError(ControllerError):
    """No tariff in the table ever enables charging."""


class NoNextRateError(ControllerError):
    """The merged schedule holds fewer than two entries."""


class AdapterError(SmartEssError):
    """Transport-level failure talking to the energy system."""
