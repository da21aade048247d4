"""
Exception hierarchy for stretchcore.

- ValidationError: caller contract violation, raised before any work starts
- CancellationError: the cancellation token fired mid-stage
- ComputationError: unexpected numerical or backend failure (never retried)
"""


class StretchError(Exception):
    """Base class for all stretchcore errors."""


class ValidationError(StretchError, ValueError):
    """Invalid parameter (chunk size, overlap, rate, channels, factor)."""


class CancellationError(StretchError):
    """Processing was cancelled; the source buffer was left untouched."""


class ComputationError(StretchError, RuntimeError):
    """Numerical or backend failure while processing."""
