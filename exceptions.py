# ============================================================================
# EXCEPTIONS
# ============================================================================
# STATUS: Core - shared by every layer
# PURPOSE: Exception hierarchy separating contract violations, business
#          failures and external API failures
# EXPORTS: ContractViolationError, BusinessLogicError, ValidationError,
#          AssessmentValidationError, InvalidJobStateError, ResourceNotFoundError,
#          ModuleExecutionError, ModuleTimeoutError, ExternalApiError,
#          ThrottledError, TransientApiError, MetricsApiError, DatabaseError,
#          ReconciliationError, ServiceBusError, ConfigurationError
# DEPENDENCIES: None (standard library only)
# ============================================================================

"""
Custom Exception Hierarchy

Distinguishes between:
1. Contract Violations (programming bugs that need fixing)
2. Business Logic Failures (expected runtime issues)
3. External API Failures (throttling and transport problems talking to
   third-party services)

HTTP triggers map ValidationError to 400, ResourceNotFoundError to 404 and
InvalidJobStateError to 409. Module-level failures never leave the module
executor; they are recorded on the module result.
"""

from typing import Optional


class ContractViolationError(TypeError):
    """
    Raised when component contracts are violated (programming bugs).

    These should NEVER be caught and handled - they indicate bugs
    that need to be fixed in the code.

    Examples:
        - Audit module yields a dict instead of FindingInput
        - Repository receives a string instead of JobStatus
    """
    pass


class BusinessLogicError(Exception):
    """
    Base class for expected runtime business logic failures.

    These are normal failures that occur during system operation
    and should be handled gracefully without crashing.
    """
    pass


class ValidationError(BusinessLogicError):
    """
    Business validation failed.

    Note: This is different from ContractViolationError.
    This is for business rule validation, not type contracts.
    """
    pass


class AssessmentValidationError(ValidationError):
    """
    Start request rejected before any job was created.

    Examples:
        - Empty module list
        - Unknown module code
        - Connection belongs to a different customer
        - Connection is inactive
    """
    pass


class InvalidJobStateError(BusinessLogicError):
    """
    Operation not valid for the job's current state.

    Examples:
        - Force restart of a job that is not flagged stuck
        - Cancel of a completed job
    """

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


class ResourceNotFoundError(BusinessLogicError):
    """
    Requested resource does not exist.

    Examples:
        - Assessment ID not in database
        - Connection ID not in database
        - Module code not registered
    """
    pass


class ModuleExecutionError(BusinessLogicError):
    """
    An audit module failed while collecting findings.

    Raised by modules themselves for expected failures (audit runner
    reported an error, tenant unreachable). Unexpected exceptions are
    normalized by the executor in the same way.
    """

    def __init__(self, module_code: str, message: str):
        super().__init__(f"{module_code}: {message}")
        self.module_code = module_code


class ModuleTimeoutError(ModuleExecutionError):
    """
    An audit module exceeded its per-module timeout.
    """

    def __init__(self, module_code: str, timeout_seconds: float):
        super().__init__(module_code, f"timed out after {timeout_seconds:.0f}s")
        self.timeout_seconds = timeout_seconds


class ExternalApiError(Exception):
    """
    Base class for failures talking to an external HTTP API.
    """
    pass


class ThrottledError(ExternalApiError):
    """
    The external API kept answering 429 after every retry was spent.

    Attributes:
        attempts: Total requests sent (initial + retries)
        retry_after: Last server-supplied Retry-After in seconds, if any
    """

    def __init__(self, path: str, attempts: int, retry_after: Optional[float] = None):
        super().__init__(
            f"Throttled by external API on {path} after {attempts} attempts"
        )
        self.path = path
        self.attempts = attempts
        self.retry_after = retry_after


class TransientApiError(ExternalApiError):
    """
    Network-level failures (timeout, connection reset) persisted after
    every retry was spent.
    """

    def __init__(self, path: str, attempts: int, cause: Optional[BaseException] = None):
        super().__init__(
            f"Transport failure calling {path} after {attempts} attempts: {cause}"
        )
        self.path = path
        self.attempts = attempts
        self.cause = cause


class MetricsApiError(ExternalApiError):
    """
    The external API answered with a non-retryable error status.
    """

    def __init__(self, path: str, status_code: int, body: str = ""):
        super().__init__(f"External API returned {status_code} for {path}: {body[:200]}")
        self.path = path
        self.status_code = status_code


class DatabaseError(BusinessLogicError):
    """
    Database operation failures.

    Examples:
        - Connection lost
        - Deadlock detected
        - Query timeout
    """
    pass


class ReconciliationError(DatabaseError):
    """
    Ledger reconciliation failed and was rolled back.

    No part of the ledger delta was applied; the job stays running so the
    watchdog can finalize it again.
    """

    def __init__(self, job_id: str, message: str):
        super().__init__(f"Reconciliation failed for job {job_id}: {message}")
        self.job_id = job_id


class ServiceBusError(BusinessLogicError):
    """
    Service Bus communication failures.

    Examples:
        - Service Bus unavailable
        - Queue not found
        - Authentication failure
    """
    pass


class ConfigurationError(Exception):
    """
    System configuration error.

    These are typically fatal and indicate misconfiguration
    that prevents the system from operating.
    """
    pass


# Errors the module executor treats as expected module failures (no traceback)
EXPECTED_MODULE_EXCEPTIONS = (
    ModuleExecutionError,
    ExternalApiError,
    ValidationError,
    ResourceNotFoundError,
)
