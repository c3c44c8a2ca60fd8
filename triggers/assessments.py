# ============================================================================
# ASSESSMENT HTTP TRIGGERS
# ============================================================================
# STATUS: Trigger layer - assessment lifecycle endpoints
# PURPOSE: Start, poll, cancel and force-restart assessments
# EXPORTS: StartAssessmentTrigger, AssessmentStatusTrigger,
#          CancelAssessmentTrigger, RestartAssessmentTrigger + singletons
# DEPENDENCIES: services.assessment_orchestrator
# ============================================================================
"""
Assessment Lifecycle HTTP Triggers.

Routes:
    POST /api/customers/{customer_id}/assessments      start (202)
    GET  /api/assessments/{job_id}/status              status
    POST /api/assessments/{job_id}/cancel              request cancellation
    POST /api/assessments/{job_id}/restart?force=true  force restart of a stuck job

Start body:
    {
        "connectionId": "conn-1",
        "moduleCodes": ["NETWORK", "BACKUP"],
        "triggerType": "manual",
        "startedBy": "jane@example.com"
    }
"""

from typing import Any, Dict, List

import azure.functions as func

from .http_base import AssessmentTrigger


class StartAssessmentTrigger(AssessmentTrigger):
    """Queue a new assessment."""

    success_status_code = 202

    def __init__(self, orchestrator=None):
        super().__init__("start_assessment", orchestrator=orchestrator)

    def get_allowed_methods(self) -> List[str]:
        return ["POST"]

    def process_request(self, req: func.HttpRequest) -> Dict[str, Any]:
        customer_id = self.extract_path_params(req, ["customer_id"])["customer_id"]
        body = self.extract_json_body(req)
        self.validate_required_fields(body, ["connectionId", "moduleCodes"])

        module_codes = body["moduleCodes"]
        if isinstance(module_codes, str) or not isinstance(module_codes, list):
            raise ValueError("moduleCodes must be a list of module codes")

        job = self.orchestrator.start(
            customer_id=customer_id,
            connection_id=str(body["connectionId"]),
            module_codes=module_codes,
            trigger_type=body.get("triggerType") or "manual",
            started_by=body.get("startedBy"),
        )
        return {
            "jobId": job.job_id,
            "status": job.status.value,
            "moduleCodes": job.module_codes,
            "statusUrl": f"/api/assessments/{job.job_id}/status",
        }


class AssessmentStatusTrigger(AssessmentTrigger):
    """Progress and per-module status of one job."""

    def __init__(self, orchestrator=None):
        super().__init__("assessment_status", orchestrator=orchestrator)

    def get_allowed_methods(self) -> List[str]:
        return ["GET"]

    def process_request(self, req: func.HttpRequest) -> Dict[str, Any]:
        job_id = self.get_job_id(req)
        self.logger.debug(f"🔍 Retrieving status for {job_id}")
        return self.orchestrator.get_status(job_id).to_response()


class CancelAssessmentTrigger(AssessmentTrigger):
    """Request cancellation; honoured at the next module boundary."""

    def __init__(self, orchestrator=None):
        super().__init__("cancel_assessment", orchestrator=orchestrator)

    def get_allowed_methods(self) -> List[str]:
        return ["POST"]

    def process_request(self, req: func.HttpRequest) -> Dict[str, Any]:
        job_id = self.get_job_id(req)
        job = self.orchestrator.request_cancel(job_id)
        return {
            "jobId": job.job_id,
            "status": job.status.value,
            "cancelRequested": job.cancel_requested,
        }


class RestartAssessmentTrigger(AssessmentTrigger):
    """Force restart of a job flagged stuck by the watchdog."""

    def __init__(self, orchestrator=None):
        super().__init__("restart_assessment", orchestrator=orchestrator)

    def get_allowed_methods(self) -> List[str]:
        return ["POST"]

    def process_request(self, req: func.HttpRequest) -> Dict[str, Any]:
        job_id = self.get_job_id(req)
        if req.params.get("force", "").lower() != "true":
            raise ValueError("Force restart requires ?force=true")

        job = self.orchestrator.force_restart(job_id)
        return {
            "jobId": job.job_id,
            "status": job.status.value,
            "redriveCount": job.redrive_count,
            "message": "Job re-enqueued; completed modules will not run again",
        }


# Singleton instances for use in function_app.py
start_assessment_trigger = StartAssessmentTrigger()
assessment_status_trigger = AssessmentStatusTrigger()
cancel_assessment_trigger = CancelAssessmentTrigger()
restart_assessment_trigger = RestartAssessmentTrigger()
