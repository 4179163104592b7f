from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    QUOTE_UNAVAILABLE = "quote_unavailable"
    GAS_ESTIMATE_UNAVAILABLE = "gas_estimate_unavailable"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    THRESHOLD_NOT_MET = "threshold_not_met"
    DEADLINE_EXPIRED = "deadline_expired"
    SUBMISSION_FAILED = "submission_failed"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    TOKEN_UNIVERSE_UNAVAILABLE = "token_universe_unavailable"
    INTERNAL = "internal"


class ArbitrageError(Exception):
    """Base error for the arbitrage bot."""

    kind: ErrorKind = ErrorKind.INTERNAL


class ConfigurationError(ArbitrageError):
    """Raised at startup when settings or credentials are unusable."""


class GasEstimateUnavailable(ArbitrageError):
    kind = ErrorKind.GAS_ESTIMATE_UNAVAILABLE


class DeadlineExpired(ArbitrageError):
    """Raised instead of submitting a descriptor whose deadline has passed."""

    kind = ErrorKind.DEADLINE_EXPIRED


class SubmissionFailed(ArbitrageError):
    kind = ErrorKind.SUBMISSION_FAILED


class ConfirmationTimeout(ArbitrageError):
    kind = ErrorKind.CONFIRMATION_TIMEOUT


class TokenUniverseError(ArbitrageError):
    """Raised when the token list cannot be fetched."""

    kind = ErrorKind.TOKEN_UNIVERSE_UNAVAILABLE


class NotificationError(ArbitrageError):
    """Raised when telegram notifications fail."""
