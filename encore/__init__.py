"""
encore — request deduplication for side-effecting service calls.

    from encore import idempotency as I   # Interceptor, stores, policy
    from encore import graph as G         # nodnod graph runner
"""

from encore import graph
from encore import idempotency
from encore._log import configure_logging, current_seq
from encore._types import (
    Lazy,
    Operation,
)
from encore.config import EncoreSettings

__version__ = "0.1.0"

__all__ = (
    "graph",
    "idempotency",
    "configure_logging",
    "current_seq",
    "EncoreSettings",
    "Lazy",
    "Operation",
)
