"""
Azure Functions entry point for the Assessment Execution Engine.

Runs cloud tenant assessments, tracks their progress, recovers stalled runs
and reconciles each run's findings into a per-customer findings ledger.

Architecture:
    HTTP start ──► AssessmentOrchestrator.start ──► Service Bus (assessment-jobs)
                                                          │
                   Service Bus trigger ◄──────────────────┘
                          │
                   AssessmentOrchestrator.run
                     ├── ModuleExecutor (per-module timeout, bounded pool)
                     │     └── audit modules ──► RateLimitedApiClient / audit runner
                     └── finalize ──► FindingReconciler ──► findings ledger
                                                          (PostgreSQL)
    Timer (5 min) ──► WatchdogService ──► stuck flag / re-enqueue / force-complete
    Timer (daily) ──► ScheduleService ──► start scheduled assessments

Exports:
    app: Azure Function App instance
    rate_limiter: Process-wide RateLimiter shared by all metrics API clients

Endpoints:
    Assessments:
        POST /api/customers/{customer_id}/assessments - Start (202)
        GET  /api/assessments/{job_id}/status - Progress and per-module status
        POST /api/assessments/{job_id}/cancel - Request cancellation
        POST /api/assessments/{job_id}/restart?force=true - Force restart a stuck job

    Findings:
        GET  /api/customers/{customer_id}/findings - Open findings (moduleCode, severity filters)
        GET  /api/customers/{customer_id}/findings/changes - New / recurring / resolved

    Maintenance:
        POST /api/watchdog/run - Manual watchdog sweep
        GET  /api/watchdog/status - Watchdog configuration
        POST /api/scheduler/run - Manual scheduled-assessment pass
        POST /api/admin/schema/deploy?confirm=yes - Deploy schema DDL
        GET  /api/health - System health

    Queue / Timers:
        Service Bus assessment-jobs - worker (AssessmentOrchestrator.run)
        Timer 0 */5 * * * * - watchdog sweep
        Timer 0 0 6 * * * - scheduled assessments

Environment Variables:
    ASSESSMENT_STORAGE_BACKEND: postgres | memory
    ASSESSMENT_DB_HOST / ASSESSMENT_DB_NAME / ASSESSMENT_DB_USER / ASSESSMENT_DB_PASSWORD
    ServiceBusConnection or SERVICE_BUS_NAMESPACE
    KEY_VAULT_NAME: tenant and metrics API secrets
    METRICS_API_COMPANY / METRICS_API_ACCESS_ID
    AUDIT_API_URL / AUDIT_API_KEY
    WATCHDOG_* / SCHEDULER_ENABLED
"""

import logging
import threading

# Azure SDK modules (3rd party - Microsoft)
import azure.functions as func

# Suppress Azure Identity and Azure SDK authentication/HTTP logging
logging.getLogger("azure.identity").setLevel(logging.WARNING)
logging.getLogger("azure.identity._internal").setLevel(logging.WARNING)
logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)
logging.getLogger("azure.servicebus").setLevel(logging.WARNING)
logging.getLogger("azure.core").setLevel(logging.WARNING)
logging.getLogger("msal").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

# ========================================================================
# APPLICATION IMPORTS
# ========================================================================

from config import get_config
from config.defaults import QueueDefaults
from infrastructure import RateLimiter
from services import ALL_MODULES, AssessmentOrchestrator
from util_logger import LoggerFactory, ComponentType

from triggers.assessments import (
    start_assessment_trigger,
    assessment_status_trigger,
    cancel_assessment_trigger,
    restart_assessment_trigger,
)
from triggers.findings import open_findings_trigger, finding_changes_trigger
from triggers.health import health_check_trigger
from triggers.admin import (
    watchdog_run_handler,
    watchdog_status_handler,
    scheduler_run_handler,
    schema_deploy_handler,
)
from triggers.service_bus import handle_assessment_message
from triggers.timers import timer_bp

logger = LoggerFactory.create_logger(ComponentType.TRIGGER, "FunctionApp")

# ========================================================================
# PROCESS-WIDE STATE
# ========================================================================
# One RateLimiter per worker process: every metrics API client in every
# concurrently running job shares its semaphore and quota.
rate_limiter = RateLimiter.from_config(get_config().metrics_api)

_orchestrator = None
_orchestrator_lock = threading.Lock()


def get_orchestrator() -> AssessmentOrchestrator:
    """Worker orchestrator, built on first message with the shared limiter."""
    global _orchestrator
    if _orchestrator is None:
        with _orchestrator_lock:
            if _orchestrator is None:
                _orchestrator = AssessmentOrchestrator.create(limiter=rate_limiter)
    return _orchestrator


logger.info(f"✅ Assessment engine loaded: {len(ALL_MODULES)} modules registered")
logger.info(f"   Modules: {list(ALL_MODULES.keys())}")

app = func.FunctionApp(http_auth_level=func.AuthLevel.FUNCTION)

# ============================================================================
# BLUEPRINT REGISTRATIONS
# ============================================================================
app.register_functions(timer_bp)
logger.info("✅ Blueprints registered: timers")


@app.route(route="health", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def health(req: func.HttpRequest) -> func.HttpResponse:
    """Health check endpoint using HTTP trigger base class."""
    return health_check_trigger.handle_request(req)


# ============================================================================
# ASSESSMENT ENDPOINTS
# ============================================================================

@app.route(route="customers/{customer_id}/assessments", methods=["POST"])
def start_assessment(req: func.HttpRequest) -> func.HttpResponse:
    """Validate, persist and enqueue a new assessment (202)."""
    return start_assessment_trigger.handle_request(req)


@app.route(route="assessments/{job_id}/status", methods=["GET"])
def get_assessment_status(req: func.HttpRequest) -> func.HttpResponse:
    """Progress, per-module status, isStale and isStuck."""
    return assessment_status_trigger.handle_request(req)


@app.route(route="assessments/{job_id}/cancel", methods=["POST"])
def cancel_assessment(req: func.HttpRequest) -> func.HttpResponse:
    """Cancellation is honoured between modules."""
    return cancel_assessment_trigger.handle_request(req)


@app.route(route="assessments/{job_id}/restart", methods=["POST"])
def restart_assessment(req: func.HttpRequest) -> func.HttpResponse:
    """Force restart; 400 without force=true, 409 unless the job is flagged stuck."""
    return restart_assessment_trigger.handle_request(req)


# ============================================================================
# FINDINGS ENDPOINTS
# ============================================================================

@app.route(route="customers/{customer_id}/findings", methods=["GET"])
def list_open_findings(req: func.HttpRequest) -> func.HttpResponse:
    return open_findings_trigger.handle_request(req)


@app.route(route="customers/{customer_id}/findings/changes", methods=["GET"])
def get_finding_changes(req: func.HttpRequest) -> func.HttpResponse:
    return finding_changes_trigger.handle_request(req)


# ============================================================================
# MAINTENANCE ENDPOINTS
# ============================================================================

@app.route(route="watchdog/run", methods=["POST"])
def watchdog_run(req: func.HttpRequest) -> func.HttpResponse:
    return watchdog_run_handler(req)


@app.route(route="watchdog/status", methods=["GET"])
def watchdog_status(req: func.HttpRequest) -> func.HttpResponse:
    return watchdog_status_handler(req)


@app.route(route="scheduler/run", methods=["POST"])
def scheduler_run(req: func.HttpRequest) -> func.HttpResponse:
    return scheduler_run_handler(req)


@app.route(route="admin/schema/deploy", methods=["POST"])
def schema_deploy(req: func.HttpRequest) -> func.HttpResponse:
    return schema_deploy_handler(req)


# ============================================================================
# SERVICE BUS WORKER
# ============================================================================
# Concurrency per instance is host.json maxConcurrentCalls; module
# parallelism inside a job is ASSESSMENT_MODULE_CONCURRENCY.

@app.service_bus_queue_trigger(
    arg_name="msg",
    queue_name=QueueDefaults.ASSESSMENT_JOBS_QUEUE,
    connection="ServiceBusConnection"
)
def process_assessment_job(msg: func.ServiceBusMessage) -> None:
    """
    Run one assessment job.

    Errors are logged, never re-raised: the watchdog re-enqueues the job
    after the stale threshold instead of Service Bus retrying immediately.
    """
    handle_assessment_message(msg, get_orchestrator())
