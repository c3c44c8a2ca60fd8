"""
Service Layer - Explicit Registration (No Decorators!)

Assessment modules are registered in services/audit_modules.py in the
ALL_MODULES dict. No decorators, no auto-discovery, no import magic.
If you don't see it in ALL_MODULES, it's not registered and start() will
reject the module code.

Registration Process:
1. Subclass AuditModule (or use AuditRunnerModule for runner-backed checks)
2. Implement collect(context) as a generator of FindingInput
3. Add an entry to ALL_MODULES: `"CODE": YourModule()`
4. Done!

Module Contract (ENFORCED BY ModuleExecutor):
    class MyModule(AuditModule):
        module_code = "MYCODE"

        def collect(self, context: ModuleContext) -> Iterator[FindingInput]:
            yield FindingInput(...)

    - Anything other than a FindingInput yielded → ContractViolationError,
      module recorded as failed
    - Exceptions raised by collect() → module recorded as failed, the job
      continues with the other modules
    - Exceeding the per-module timeout → module recorded as failed, findings
      yielded before the timeout are kept

Services:
    AssessmentOrchestrator  start / run / status / cancel / force restart
    ModuleExecutor          single-module execution with timeout
    FindingReconciler       raw findings → customer ledger
    WatchdogService         stuck job detection and recovery
    LedgerService           open findings and change views
    ScheduleService         daily scheduled assessments
"""

from .audit_modules import (
    ALL_MODULES,
    AuditModule,
    AuditRunnerModule,
    ModuleContext,
    MonitoringAlertsModule,
    get_module,
)
from .module_executor import ModuleExecutor, ModuleExecution
from .finding_reconciler import FindingReconciler
from .assessment_orchestrator import AssessmentOrchestrator
from .watchdog_service import WatchdogService, WatchdogConfig, WatchdogRunResult
from .ledger_service import LedgerService
from .schedule_service import ScheduleService, ScheduleRunResult


def validate_module_registry():
    """
    Check every registered module's code matches its registry key.

    Raises:
        RuntimeError: On mismatch
    """
    mismatched = [
        key for key, module in ALL_MODULES.items()
        if module.module_code != key
    ]
    if mismatched:
        raise RuntimeError(f"Module registry keys do not match module codes: {mismatched}")
    return {"modules": len(ALL_MODULES), "codes": sorted(ALL_MODULES)}


__all__ = [
    'ALL_MODULES',
    'AuditModule',
    'AuditRunnerModule',
    'ModuleContext',
    'MonitoringAlertsModule',
    'get_module',
    'ModuleExecutor',
    'ModuleExecution',
    'FindingReconciler',
    'AssessmentOrchestrator',
    'WatchdogService',
    'WatchdogConfig',
    'WatchdogRunResult',
    'LedgerService',
    'ScheduleService',
    'ScheduleRunResult',
    'validate_module_registry',
]
