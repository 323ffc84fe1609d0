# src/pricer/errors.py
from __future__ import annotations


class PricerError(Exception):
    """Base class for pricing pipeline errors."""

    code = "PRICER_ERROR"

    def __init__(self, message: str = "", **metadata):
        super().__init__(message or self.__class__.__name__)
        self.metadata = metadata


class ConfigError(PricerError):
    """
    Fatal configuration problem (missing oracle credentials, inverted bounds).
    Never swallowed.
    """
    code = "CONFIG_ERROR"


class SignalValidationError(PricerError):
    code = "VALIDATION_ERROR"


class OracleError(PricerError):
    """Oracle unreachable or returned something unusable. Recoverable."""
    code = "ORACLE_ERROR"


class PersistenceError(PricerError):
    """The authoritative pricing state could not be written."""
    code = "PERSISTENCE_ERROR"
