"""
stretchcore - in-memory audio time-stretching and resampling.

Import the public API from :mod:`stretchcore.core`.
"""
from .core import *  # noqa: F401,F403
from .core import __all__  # noqa: F401

__version__ = "0.1.0"
