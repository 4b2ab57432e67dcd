"""Custom exceptions for the reconciliation engine.

This module provides the error taxonomy returned to callers of the engine.
All exceptions inherit from ReconError, so a caller can catch every
engine-specific failure with a single handler while still discriminating
on the concrete type when it matters.

Example:
    try:
        result = await apply_transition(document, request, ledger=ledger)
    except InvalidTransition as e:
        # Document was left untouched; report the guard failure
        return {"error": e.message, **e.details}
    except DependencyUnavailable as e:
        if e.recoverable:
            # Ledger timed out, retry later
            ...
    except ReconError as e:
        logger.error("recon_failed", error=str(e))
"""

from typing import Any, Optional


class ReconError(Exception):
    """Base exception for all reconciliation engine errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context.
        recoverable: Whether the error is potentially recoverable.

    Example:
        >>> raise ReconError("Something went wrong", details={"code": 500})
        ReconError: Something went wrong
    """

    def __init__(
        self,
        message: str,
        *,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        """Initialize ReconError.

        Args:
            message: Human-readable error description.
            details: Optional dictionary with additional context about the error.
            recoverable: Whether the error is potentially recoverable through
                retry or caller correction. Defaults to False.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        """Return string representation of the error."""
        return self.message

    def __repr__(self) -> str:
        """Return detailed representation of the error."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable!r})"
        )


class ValidationError(ReconError):
    """Error raised when an incoming source record is malformed.

    Raised before classification; the target document is never touched.

    Attributes:
        field: The field that failed validation.
        value: The invalid value (if safe to include).
        constraint: The validation constraint that was violated.

    Example:
        >>> raise ValidationError(
        ...     "Amount is not numeric",
        ...     field="amount",
        ...     value="12,00x",
        ...     constraint="Must be a finite decimal number",
        ... )
        ValidationError: Amount is not numeric
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        constraint: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = True,
    ) -> None:
        """Initialize ValidationError.

        Args:
            message: Human-readable error description.
            field: The name of the field that failed validation.
            value: The invalid value.
            constraint: Description of the validation rule violated.
            details: Optional dictionary with additional context.
            recoverable: Whether the error can be fixed by caller correction.
                Defaults to True since the caller can resubmit fixed input.
        """
        super().__init__(message, details=details, recoverable=recoverable)
        self.field = field
        self.value = value
        self.constraint = constraint

        if field:
            self.details["field"] = field
        if value is not None:
            self.details["value"] = value
        if constraint:
            self.details["constraint"] = constraint


class InvalidTransition(ReconError):
    """Error raised when a workflow transition request is rejected.

    The current status must exactly match the predecessor required by the
    requested status; no step may be skipped and terminal statuses never
    move. The document is left untouched.

    Attributes:
        current_status: Status the document was in.
        requested_status: Status the caller asked for.
        reason: Short machine-friendly reason code.

    Example:
        >>> raise InvalidTransition(
        ...     "Cannot move from draft to approved",
        ...     current_status="draft",
        ...     requested_status="approved",
        ...     reason="skipped_step",
        ... )
        InvalidTransition: Cannot move from draft to approved
    """

    def __init__(
        self,
        message: str,
        *,
        current_status: Optional[str] = None,
        requested_status: Optional[str] = None,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        """Initialize InvalidTransition.

        Args:
            message: Human-readable error description.
            current_status: Status the document was in when the request arrived.
            requested_status: Status the caller requested.
            reason: Machine-friendly reason code (e.g. "skipped_step").
            details: Optional dictionary with additional context.
            recoverable: Defaults to False; the same request will keep failing.
        """
        super().__init__(message, details=details, recoverable=recoverable)
        self.current_status = current_status
        self.requested_status = requested_status
        self.reason = reason

        if current_status:
            self.details["current_status"] = current_status
        if requested_status:
            self.details["requested_status"] = requested_status
        if reason:
            self.details["reason"] = reason


class DocumentLockedError(ReconError):
    """Error raised when a mutation targets a document that no longer accepts edits.

    Attributes:
        document_id: Identifier of the locked document.
        status: Status that locks the document.
    """

    def __init__(
        self,
        message: str,
        *,
        document_id: Optional[str] = None,
        status: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message, details=details, recoverable=recoverable)
        self.document_id = document_id
        self.status = status

        if document_id:
            self.details["document_id"] = document_id
        if status:
            self.details["status"] = status


class DuplicateDocumentError(ReconError):
    """Error raised when a document identity is already registered.

    Attributes:
        identity: The identity tuple that collided.
    """

    def __init__(
        self,
        message: str,
        *,
        identity: Optional[tuple[str, ...]] = None,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message, details=details, recoverable=recoverable)
        self.identity = identity

        if identity:
            self.details["identity"] = list(identity)


class StaleDocumentError(ReconError):
    """Error raised when a snapshot is replaced from an outdated base version.

    Attributes:
        document_id: Identifier of the document.
        expected_version: Version the caller based its change on.
        actual_version: Version currently stored.
    """

    def __init__(
        self,
        message: str,
        *,
        document_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message, details=details, recoverable=recoverable)
        self.document_id = document_id
        self.expected_version = expected_version
        self.actual_version = actual_version

        if document_id:
            self.details["document_id"] = document_id
        if expected_version is not None:
            self.details["expected_version"] = expected_version
        if actual_version is not None:
            self.details["actual_version"] = actual_version


class DependencyUnavailable(ReconError):
    """Error raised when an external collaborator cannot be reached.

    The ledger-dependent computation is aborted. Callers must never
    substitute a zero balance, since that could mark a document falsely
    reconciled.

    Attributes:
        dependency: Name of the collaborator (e.g. "ledger").
        operation: The operation being attempted.

    Example:
        >>> raise DependencyUnavailable(
        ...     "Ledger query timed out after 10.0s",
        ...     dependency="ledger",
        ...     operation="posted_lines",
        ... )
        DependencyUnavailable: Ledger query timed out after 10.0s
    """

    def __init__(
        self,
        message: str,
        *,
        dependency: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = True,
    ) -> None:
        """Initialize DependencyUnavailable.

        Args:
            message: Human-readable error description.
            dependency: Name of the unreachable collaborator.
            operation: The operation that was attempted.
            details: Optional dictionary with additional context.
            recoverable: Defaults to True since outages and timeouts are
                usually transient.
        """
        super().__init__(message, details=details, recoverable=recoverable)
        self.dependency = dependency
        self.operation = operation

        if dependency:
            self.details["dependency"] = dependency
        if operation:
            self.details["operation"] = operation


class RoundingInvariantViolation(ReconError):
    """Internal assertion: derived totals disagree with their inputs.

    This must never occur in correct code. It is raised instead of
    persisting a drifted snapshot and is not meant to be handled.

    Attributes:
        expected: The value the invariant required.
        actual: The value that was computed.
        scope: Which invariant failed (e.g. "buckets_vs_records").
    """

    def __init__(
        self,
        message: str,
        *,
        expected: Optional[Any] = None,
        actual: Optional[Any] = None,
        scope: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details, recoverable=False)
        self.expected = expected
        self.actual = actual
        self.scope = scope

        if expected is not None:
            self.details["expected"] = str(expected)
        if actual is not None:
            self.details["actual"] = str(actual)
        if scope:
            self.details["scope"] = scope


class ConfigurationError(ReconError):
    """Error raised when configuration is invalid or missing.

    Attributes:
        config_key: The configuration key that is problematic.
        expected: Description of the expected value or format.
        actual: The actual value found (if any).

    Example:
        >>> raise ConfigurationError(
        ...     "No bank account configured for WHT deposits",
        ...     config_key="RECON_LEDGER_DEFAULT_BANK_ACCOUNT",
        ...     expected="Ledger account reference",
        ... )
        ConfigurationError: No bank account configured for WHT deposits
    """

    def __init__(
        self,
        message: str,
        *,
        config_key: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[Any] = None,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message, details=details, recoverable=recoverable)
        self.config_key = config_key
        self.expected = expected
        self.actual = actual

        if config_key:
            self.details["config_key"] = config_key
        if expected:
            self.details["expected"] = expected
        if actual is not None:
            self.details["actual"] = actual


__all__ = [
    "ReconError",
    "ValidationError",
    "InvalidTransition",
    "DocumentLockedError",
    "DuplicateDocumentError",
    "StaleDocumentError",
    "DependencyUnavailable",
    "RoundingInvariantViolation",
    "ConfigurationError",
]
