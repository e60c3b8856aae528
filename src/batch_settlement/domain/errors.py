"""
Domain Error Taxonomy.

Only truly exceptional conditions are raised. A busy batch lock is an
expected outcome and is reported through RunOutcome.BUSY instead.
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """
    Base class for all domain errors.

    Includes structured error info for logging and debugging.
    """

    error_code: str = "DOMAIN_ERROR"

    def __init__(
        self,
        message: str,
        *,
        batch_id: int | None = None,
        trade_id: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.batch_id = batch_id
        self.trade_id = trade_id
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for logging."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "batch_id": self.batch_id,
            "trade_id": self.trade_id,
            "details": self.details,
        }


# =============================================================================
# State Machine Errors (programming / data-integrity, never retried)
# =============================================================================


class StateMachineError(DomainError):
    """Base class for status transition errors."""

    error_code = "STATE_MACHINE_ERROR"


class InvalidTransitionError(StateMachineError):
    """Requested target status is not reachable from the current status."""

    error_code = "INVALID_TRANSITION"

    def __init__(self, entity: str, from_status: str, to_status: str, **kwargs: Any):
        super().__init__(
            f"Invalid {entity} status transition from {from_status} to {to_status}",
            **kwargs,
        )
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status
        self.details.update({"entity": entity, "from": from_status, "to": to_status})


class UnknownStatusError(StateMachineError):
    """Status value is not a member of the entity's status enum."""

    error_code = "UNKNOWN_STATUS"

    def __init__(self, entity: str, value: Any, **kwargs: Any):
        super().__init__(f"Unknown {entity} status: {value!r}", **kwargs)
        self.entity = entity
        self.value = value
        self.details.update({"entity": entity, "value": str(value)})


# =============================================================================
# Lookup Errors
# =============================================================================


class NotFoundError(DomainError):
    """Requested entity does not exist."""

    error_code = "NOT_FOUND"


class BatchNotFoundError(NotFoundError):
    error_code = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: int, **kwargs: Any):
        super().__init__(f"Batch {batch_id} not found", batch_id=batch_id, **kwargs)


class TradeNotFoundError(NotFoundError):
    error_code = "TRADE_NOT_FOUND"

    def __init__(self, trade_id: int, **kwargs: Any):
        super().__init__(f"Trade {trade_id} not found", trade_id=trade_id, **kwargs)


# =============================================================================
# Batch Management Errors
# =============================================================================


class BatchActiveError(DomainError):
    """Operation requires a terminal batch (e.g. delete)."""

    error_code = "BATCH_ACTIVE"


class ValidationError(DomainError):
    """Invalid input."""

    error_code = "VALIDATION_ERROR"


# =============================================================================
# Gateway Errors (recovered locally: the trade is marked FAILED)
# =============================================================================


class GatewayError(DomainError):
    """Error returned by the settlement gateway."""

    error_code = "GATEWAY_ERROR"


class QuoteRejectedError(GatewayError):
    error_code = "QUOTE_REJECTED"


class ExecutionRejectedError(GatewayError):
    error_code = "EXECUTION_REJECTED"


class GatewayTimeoutError(GatewayError):
    """Gateway call did not complete within execution.gateway_timeout_seconds."""

    error_code = "GATEWAY_TIMEOUT"


# =============================================================================
# Admission Errors
# =============================================================================


class AdmissionTimeoutError(DomainError):
    """No concurrency slot became free within execution.admission_timeout_seconds."""

    error_code = "ADMISSION_TIMEOUT"


# =============================================================================
# Persistence Errors (fatal for the current operation)
# =============================================================================


class PersistenceError(DomainError):
    """Storage layer failure; the operation must abort."""

    error_code = "PERSISTENCE_ERROR"
