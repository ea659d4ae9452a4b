"""
Utility modules for the XSCard events backend.

- instants: UTC normalization of loosely-typed date values
- logging_config: Structured logging setup
"""

from backend.src.utils.instants import (
    as_aware_utc,
    to_instant,
    to_naive_utc,
    utc_now,
)

__all__ = [
    "as_aware_utc",
    "to_instant",
    "to_naive_utc",
    "utc_now",
]
