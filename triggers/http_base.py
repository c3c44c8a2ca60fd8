"""
HTTP Trigger Base Class.

Abstract base class for the assessment engine's HTTP triggers providing
consistent request/response handling.

Error Mapping (handle_request):
    ValidationError / ValueError     → 400
    PermissionError                  → 403
    ResourceNotFoundError            → 404
    InvalidJobStateError             → 409
    anything else                    → 500

Specialized Trigger Types:
    BaseHttpTrigger: Generic HTTP endpoint
    AssessmentTrigger: Assessment operations (start, status, cancel, restart, findings)
    SystemMonitoringTrigger: Health and diagnostics

Exports:
    BaseHttpTrigger: Base class for HTTP triggers
    AssessmentTrigger: Base class for assessment endpoints
    SystemMonitoringTrigger: Base class for monitoring
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List
import traceback
import uuid
import json
from datetime import datetime, timezone

import azure.functions as func

from exceptions import InvalidJobStateError, ResourceNotFoundError, ValidationError
from util_logger import LoggerFactory
from util_logger import ComponentType


class BaseHttpTrigger(ABC):
    """
    Abstract base class for Azure Functions HTTP triggers.

    Subclasses implement process_request() and raise; the base class turns
    exceptions into JSON error responses.
    """

    # Status code of a successful response (202 for accepted-for-processing)
    success_status_code: int = 200

    def __init__(self, trigger_name: str):
        """
        Initialize HTTP trigger with name for logging context.

        Args:
            trigger_name: Name of the trigger for logging (e.g., "start_assessment")
        """
        self.trigger_name = trigger_name
        self.logger = LoggerFactory.create_logger(ComponentType.TRIGGER, f"HttpTrigger.{trigger_name}")

    # ========================================================================
    # ABSTRACT METHODS - Must be implemented by concrete triggers
    # ========================================================================

    @abstractmethod
    def process_request(self, req: func.HttpRequest) -> Dict[str, Any]:
        """
        Process the HTTP request and return response data.

        Args:
            req: Azure Functions HTTP request object

        Returns:
            Dictionary to be serialized as JSON response

        Raises:
            ValidationError / ValueError: Client errors (400)
            ResourceNotFoundError: Unknown resource (404)
            InvalidJobStateError: Operation not allowed in the current state (409)
        """
        pass

    @abstractmethod
    def get_allowed_methods(self) -> List[str]:
        """Return list of allowed HTTP methods for this trigger."""
        pass

    # ========================================================================
    # CONCRETE INFRASTRUCTURE METHODS
    # ========================================================================

    def handle_request(self, req: func.HttpRequest) -> func.HttpResponse:
        """
        Main entry point for HTTP request handling.

        Args:
            req: Azure Functions HTTP request object

        Returns:
            Azure Functions HTTP response with JSON content
        """
        request_id = self._generate_request_id()

        self.logger.info(
            f"🌐 [{self.trigger_name}] Request {request_id} started: "
            f"{req.method} {req.url}"
        )

        try:
            if req.method not in self.get_allowed_methods():
                return self._create_error_response(
                    error="Method not allowed",
                    message=f"Method {req.method} not allowed. Allowed: {', '.join(self.get_allowed_methods())}",
                    status_code=405,
                    request_id=request_id
                )

            response_data = self.process_request(req)
            response = self._create_success_response(response_data, request_id)

            self.logger.info(
                f"✅ [{self.trigger_name}] Request {request_id} completed ({response.status_code})"
            )
            return response

        except (ValidationError, ValueError) as e:
            self.logger.warning(f"❌ [{self.trigger_name}] Client error: {e}")
            return self._create_error_response(
                error="Bad request",
                message=str(e),
                status_code=400,
                request_id=request_id
            )

        except PermissionError as e:
            self.logger.warning(f"🚫 [{self.trigger_name}] Permission denied: {e}")
            return self._create_error_response(
                error="Forbidden",
                message=str(e),
                status_code=403,
                request_id=request_id
            )

        except ResourceNotFoundError as e:
            self.logger.info(f"🔍 [{self.trigger_name}] Not found: {e}")
            return self._create_error_response(
                error="Not found",
                message=str(e),
                status_code=404,
                request_id=request_id
            )

        except InvalidJobStateError as e:
            self.logger.info(f"⛔ [{self.trigger_name}] Conflict: {e}")
            response = self._create_error_response(
                error="Conflict",
                message=str(e),
                status_code=409,
                request_id=request_id,
                extra={"currentStatus": e.current_status} if e.current_status else None
            )
            return response

        except Exception as e:
            self.logger.error(f"💥 [{self.trigger_name}] Internal error: {e}")
            self.logger.debug(f"📍 Full traceback: {traceback.format_exc()}")

            return self._create_error_response(
                error="Internal server error",
                message=str(e),
                status_code=500,
                request_id=request_id,
                include_debug_info=True
            )

    # ========================================================================
    # UTILITY METHODS FOR SUBCLASSES
    # ========================================================================

    def extract_path_params(self, req: func.HttpRequest, required_params: List[str]) -> Dict[str, str]:
        """
        Extract and validate path parameters.

        Raises:
            ValueError: If required parameters are missing
        """
        params = {}
        missing_params = []

        for param_name in required_params:
            value = req.route_params.get(param_name)
            if not value:
                missing_params.append(param_name)
            else:
                params[param_name] = value

        if missing_params:
            raise ValueError(f"Missing required path parameters: {', '.join(missing_params)}")

        return params

    def extract_query_params(self, req: func.HttpRequest,
                             required_params: Optional[List[str]] = None,
                             optional_params: Optional[List[str]] = None) -> Dict[str, str]:
        """
        Extract and validate query parameters.

        Raises:
            ValueError: If required parameters are missing
        """
        params = {}
        missing_params = []

        for param_name in required_params or []:
            value = req.params.get(param_name)
            if not value:
                missing_params.append(param_name)
            else:
                params[param_name] = value

        for param_name in optional_params or []:
            value = req.params.get(param_name)
            if value:
                params[param_name] = value

        if missing_params:
            raise ValueError(f"Missing required query parameters: {', '.join(missing_params)}")

        return params

    def extract_json_body(self, req: func.HttpRequest, required: bool = True) -> Optional[Dict[str, Any]]:
        """
        Extract and parse JSON request body.

        Raises:
            ValueError: If body is required but missing, invalid JSON, or not an object
        """
        if not req.get_body():
            if required:
                raise ValueError("Request body is required")
            return None

        try:
            body = req.get_json()
        except ValueError as e:
            raise ValueError(f"Invalid JSON in request body: {e}") from None

        if not isinstance(body, dict):
            raise ValueError("Request body must be a JSON object")
        return body

    def validate_required_fields(self, data: Dict[str, Any], required_fields: List[str]) -> None:
        """
        Raises:
            ValueError: If required fields are missing
        """
        missing_fields = [field for field in required_fields if field not in data or data[field] is None]

        if missing_fields:
            raise ValueError(f"Missing required fields: {', '.join(missing_fields)}")

    # ========================================================================
    # PRIVATE INFRASTRUCTURE METHODS
    # ========================================================================

    def _generate_request_id(self) -> str:
        """Generate unique request ID for tracing."""
        return str(uuid.uuid4())[:8]

    def _create_success_response(self, data: Dict[str, Any], request_id: str) -> func.HttpResponse:
        """Create standardized success response."""
        response_data = {
            **data,
            "requestId": request_id,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

        return func.HttpResponse(
            json.dumps(response_data, default=str),
            status_code=self.success_status_code,
            mimetype="application/json",
            headers={"X-Request-ID": request_id}
        )

    def _create_error_response(self, error: str, message: str, status_code: int,
                               request_id: str, include_debug_info: bool = False,
                               extra: Optional[Dict[str, Any]] = None) -> func.HttpResponse:
        """Create standardized error response."""
        response_data = {
            "error": error,
            "message": message,
            "requestId": request_id,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
        if extra:
            response_data.update(extra)

        if include_debug_info:
            response_data["debug"] = {
                "trigger_name": self.trigger_name,
                "python_version": __import__("sys").version.split()[0]
            }

        return func.HttpResponse(
            json.dumps(response_data, default=str),
            status_code=status_code,
            mimetype="application/json",
            headers={"X-Request-ID": request_id}
        )


# ============================================================================
# SPECIALIZED BASE CLASSES FOR COMMON PATTERNS
# ============================================================================

class AssessmentTrigger(BaseHttpTrigger):
    """
    Base class for assessment HTTP triggers.

    Services are built lazily from configuration on first use; tests pass
    them in directly.
    """

    def __init__(self, trigger_name: str, orchestrator=None, ledger_service=None):
        super().__init__(trigger_name)
        self._orchestrator = orchestrator
        self._ledger_service = ledger_service

    @property
    def orchestrator(self):
        if self._orchestrator is None:
            from services import AssessmentOrchestrator
            self._orchestrator = AssessmentOrchestrator.create()
        return self._orchestrator

    @property
    def ledger_service(self):
        if self._ledger_service is None:
            from services import LedgerService
            self._ledger_service = LedgerService.create()
        return self._ledger_service

    def get_job_id(self, req: func.HttpRequest) -> str:
        """
        Path job_id, validated as a UUID.

        Raises:
            ValueError: Missing or malformed job_id
        """
        job_id = self.extract_path_params(req, ["job_id"])["job_id"]
        try:
            return str(uuid.UUID(job_id))
        except ValueError:
            raise ValueError(f"job_id must be a UUID, got '{job_id}'") from None


class SystemMonitoringTrigger(BaseHttpTrigger):
    """Base class for system monitoring triggers (health, diagnostics)."""

    def get_system_timestamp(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def check_component_health(
        self,
        component_name: str,
        check_function,
        description: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Run one component check.

        Status: "unhealthy" if the check raises or returns a truthy "error",
        the "_status" value if present, otherwise "healthy".
        """
        try:
            result = check_function()
            if isinstance(result, dict) and "_status" in result:
                status = result.pop("_status")
            elif isinstance(result, dict) and result.get("error"):
                status = "unhealthy"
            else:
                status = "healthy"

            return {
                "component": component_name,
                "description": description or f"{component_name} health check",
                "status": status,
                "details": result,
                "checked_at": self.get_system_timestamp()
            }
        except Exception as e:
            return {
                "component": component_name,
                "description": description or f"{component_name} health check",
                "status": "unhealthy",
                "error": str(e),
                "checked_at": self.get_system_timestamp()
            }
