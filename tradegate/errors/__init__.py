"""
Error handling and exception classes.

Providers and ledger input validation raise these. The core operations
(decide, can_trade, is_tradable) never let them escape and report the
matching ErrorKind on their result instead.

Example usage:
    from tradegate.errors import PolicyDenied, ErrorKind
"""

from tradegate.errors.exceptions import (
    ErrorKind, TradeGateError, ValidationError, PolicyDenied, NotTradable,
    RouteUnavailable, ExecutionFailed, PersistenceWarning, DataUnavailable,
    ConfigurationError,
)

__all__ = [
    "ErrorKind", "TradeGateError", "ValidationError", "PolicyDenied",
    "NotTradable", "RouteUnavailable", "ExecutionFailed", "PersistenceWarning",
    "DataUnavailable", "ConfigurationError",
]
