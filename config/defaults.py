"""
Configuration Defaults - Single source of truth for all default values.

Organization:
    - DatabaseDefaults: PostgreSQL connection and schema
    - QueueDefaults: Service Bus queue names and retry settings
    - AssessmentDefaults: Orchestrator pool sizes, timeouts and staleness
    - WatchdogDefaults: Sweep thresholds
    - MetricsApiDefaults: Rate-limited monitoring API
    - AuditRunnerDefaults: External audit runner
    - KeyVaultDefaults: Secret naming
    - AppDefaults: Environment and logging

Usage:
    from config.defaults import AssessmentDefaults

    # In Pydantic Field definitions:
    module_concurrency: int = Field(default=AssessmentDefaults.MODULE_CONCURRENCY, ...)
"""


# =============================================================================
# DATABASE DEFAULTS
# =============================================================================

class DatabaseDefaults:
    """
    PostgreSQL defaults.

    All assessment tables live in one schema (ASSESSMENT_DB_SCHEMA).
    """

    PORT = 5432
    SCHEMA = "assessments"
    CONNECTION_TIMEOUT_SECONDS = 30


# =============================================================================
# QUEUE DEFAULTS
# =============================================================================

class QueueDefaults:
    """
    Service Bus queue defaults.

    One queue carries assessment work items. A message references a job by
    id; the worker always re-reads job state from the database.
    """

    ASSESSMENT_JOBS_QUEUE = "assessment-jobs"
    RETRY_COUNT = 3
    MESSAGE_TTL_HOURS = 24


# =============================================================================
# ASSESSMENT DEFAULTS
# =============================================================================

class AssessmentDefaults:
    """
    Orchestrator defaults.

    MODULE_CONCURRENCY bounds parallel modules inside one job so the audited
    tenant's own API limits are respected.
    """

    MODULE_CONCURRENCY = 3
    MODULE_TIMEOUT_SECONDS = 600
    STALE_THRESHOLD_MINUTES = 10
    HEARTBEAT_INTERVAL_SECONDS = 60
    STORAGE_BACKEND = "postgres"  # postgres | memory
    VALID_STORAGE_BACKENDS = ("postgres", "memory")


class WatchdogDefaults:
    """
    Watchdog sweep defaults.

    Runs from the timer trigger every 5 minutes (see function_app.py).
    """

    ENABLED = True
    STALE_THRESHOLD_MINUTES = 10
    QUEUED_TIMEOUT_MINUTES = 15
    MAX_REDRIVES = 3
    AUTO_REDRIVE = True
    TIMER_SCHEDULE = "0 */5 * * * *"


class SchedulerDefaults:
    """
    Scheduled assessment defaults.

    Frequency names map to day counts for due-module calculation.
    """

    ENABLED = True
    TIMER_SCHEDULE = "0 0 6 * * *"
    FREQUENCY_DAYS = {
        "weekly": 7,
        "monthly": 30,
        "quarterly": 90,
    }


# =============================================================================
# EXTERNAL API DEFAULTS
# =============================================================================

class MetricsApiDefaults:
    """
    Monitoring (metrics) API rate-limit defaults.

    BACKOFF_SCHEDULE_SECONDS is used when a 429 carries no Retry-After and for
    transport errors. MAX_RETRIES counts retries after the first request.
    """

    BASE_URL_TEMPLATE = "https://{company}.logicmonitor.com/santaba/rest"
    API_VERSION = "3"
    MAX_CONCURRENT_REQUESTS = 3
    SAFETY_BUFFER = 5
    INITIAL_QUOTA = 100
    BACKOFF_SCHEDULE_SECONDS = (1.0, 5.0, 15.0)
    MAX_RETRIES = 3
    REQUEST_TIMEOUT_SECONDS = 30.0
    PAGE_SIZE = 1000


class AuditRunnerDefaults:
    """
    External audit runner defaults.

    The runner executes module collection scripts against the tenant and
    answers with findings JSON.
    """

    BASE_URL = "https://your-audit-runner-url/api"
    REQUEST_TIMEOUT_SECONDS = 360.0


class KeyVaultDefaults:
    """
    Key Vault secret naming.

    Per-customer monitoring credentials override the global ones when present.
    """

    METRICS_ACCESS_KEY_SECRET = "LM-AccessKey"
    CUSTOMER_METRICS_SECRET_TEMPLATE = "LM-{customer_id}-{field}"


# =============================================================================
# APPLICATION DEFAULTS
# =============================================================================

class AppDefaults:
    """
    Application-wide defaults.
    """

    DEBUG_MODE = False
    ENVIRONMENT = "dev"
    LOG_LEVEL = "INFO"


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "DatabaseDefaults",
    "QueueDefaults",
    "AssessmentDefaults",
    "WatchdogDefaults",
    "SchedulerDefaults",
    "MetricsApiDefaults",
    "AuditRunnerDefaults",
    "KeyVaultDefaults",
    "AppDefaults",
]
