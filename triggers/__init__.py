"""
Triggers Package.

Azure Functions HTTP, Timer and Service Bus trigger implementations.

HTTP Endpoints:
    /api/customers/{customer_id}/assessments: Start an assessment
    /api/assessments/{job_id}/*: Status, cancel, force restart
    /api/customers/{customer_id}/findings[/changes]: Ledger read surface
    /api/watchdog/*, /api/scheduler/run, /api/admin/schema/deploy: Maintenance
    /api/health: System health

Exports:
    Base classes only; trigger instances are imported from their modules
"""

from .http_base import BaseHttpTrigger, AssessmentTrigger, SystemMonitoringTrigger

__all__ = [
    'BaseHttpTrigger',
    'AssessmentTrigger',
    'SystemMonitoringTrigger',
]
