"""Custom exception hierarchy."""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Failure category carried on structured results."""
    VALIDATION = "validation_error"
    POLICY_DENIED = "policy_denied"
    NOT_TRADABLE = "not_tradable"
    EXECUTION_FAILED = "execution_failed"
    PERSISTENCE_WARNING = "persistence_warning"
    DATA_UNAVAILABLE = "data_unavailable"
    CONFIGURATION = "configuration_error"


class TradeGateError(Exception):
    """Base exception for all tradegate errors."""
    code: str = "SYS_001"
    kind: ErrorKind = ErrorKind.EXECUTION_FAILED

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "kind": self.kind.value,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(TradeGateError):
    """Malformed intent or ledger input."""
    code = "VAL_001"
    kind = ErrorKind.VALIDATION


class PolicyDenied(TradeGateError):
    """Size, cooldown, loss cap or position cap refused the trade."""
    code = "POL_001"
    kind = ErrorKind.POLICY_DENIED


class NotTradable(TradeGateError):
    """No executable route exists for the asset."""
    code = "ROUTE_001"
    kind = ErrorKind.NOT_TRADABLE

    def __init__(self, message: str, address: str = None):
        super().__init__(message, {"address": address})
        self.address = address


class RouteUnavailable(NotTradable):
    """Swap router answered with an error or without a route."""
    code = "ROUTE_002"


class ExecutionFailed(TradeGateError):
    """Swap or network failure while executing."""
    code = "EXEC_001"
    kind = ErrorKind.EXECUTION_FAILED

    def __init__(self, message: str, tx_id: str = None, upstream: str = None):
        super().__init__(message, {"tx_id": tx_id, "upstream": upstream})
        self.tx_id = tx_id
        self.upstream = upstream


class PersistenceWarning(TradeGateError):
    """Ledger save failed. Logged, never blocks a decision."""
    code = "STATE_001"
    kind = ErrorKind.PERSISTENCE_WARNING


class DataUnavailable(TradeGateError):
    """Provider returned nothing usable, or the payload failed validation."""
    code = "DATA_001"
    kind = ErrorKind.DATA_UNAVAILABLE

    def __init__(self, message: str, provider: str = None):
        super().__init__(message, {"provider": provider})
        self.provider = provider


class ConfigurationError(TradeGateError):
    """Configuration error."""
    code = "CFG_001"
    kind = ErrorKind.CONFIGURATION
