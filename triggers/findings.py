"""
Findings HTTP Triggers.

Read surface over the customer findings ledger.

Routes:
    GET /api/customers/{customer_id}/findings?moduleCode=NETWORK&severity=high
    GET /api/customers/{customer_id}/findings/changes

Exports:
    OpenFindingsTrigger, FindingChangesTrigger
    open_findings_trigger, finding_changes_trigger: Singleton instances
"""

from typing import Any, Dict, List

import azure.functions as func

from .http_base import AssessmentTrigger


class OpenFindingsTrigger(AssessmentTrigger):
    """Open findings with remediation metadata."""

    def __init__(self, ledger_service=None):
        super().__init__("open_findings", ledger_service=ledger_service)

    def get_allowed_methods(self) -> List[str]:
        return ["GET"]

    def process_request(self, req: func.HttpRequest) -> Dict[str, Any]:
        customer_id = self.extract_path_params(req, ["customer_id"])["customer_id"]
        filters = self.extract_query_params(req, optional_params=["moduleCode", "severity"])
        module_code = filters.get("moduleCode")

        findings = self.ledger_service.list_open_findings(
            customer_id,
            module_code=module_code.strip().upper() if module_code else None,
            severity=filters.get("severity"),
        )
        return {
            "customerId": customer_id,
            "count": len(findings),
            "findings": [f.model_dump(mode='json', by_alias=True) for f in findings],
        }


class FindingChangesTrigger(AssessmentTrigger):
    """Changes introduced by the latest reconciled assessment."""

    def __init__(self, ledger_service=None):
        super().__init__("finding_changes", ledger_service=ledger_service)

    def get_allowed_methods(self) -> List[str]:
        return ["GET"]

    def process_request(self, req: func.HttpRequest) -> Dict[str, Any]:
        customer_id = self.extract_path_params(req, ["customer_id"])["customer_id"]
        view = self.ledger_service.get_changes(customer_id)
        response = view.to_response()
        response["summary"] = {
            "new": len(view.new),
            "recurring": len(view.recurring),
            "resolved": len(view.resolved),
        }
        return response


open_findings_trigger = OpenFindingsTrigger()
finding_changes_trigger = FindingChangesTrigger()
