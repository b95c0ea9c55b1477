"""Errors raised by the fair-odds and EV engine."""

from __future__ import annotations


class EvBetsError(Exception):
    """Base error for engine operations."""


class EmptySampleError(EvBetsError, ValueError):
    """Raised when a summary statistic is requested for an empty sample."""


class InvalidPriceError(EvBetsError, ValueError):
    """Raised when an American price is outside the valid <= -100 / >= +100 range."""


class PayloadError(EvBetsError, ValueError):
    """Raised when a provider payload does not have the expected structure."""


class UnknownMethodError(EvBetsError, KeyError):
    """Raised when a fair-odds method name is not registered."""
