"""
Assessment Schema DDL.

Idempotent DDL for the engine's tables plus reference DDL for the
read-only portal tables it queries (connections, customers, tier modules,
finding metadata rules). Portal tables are owned by the CRUD surface; the
CREATE IF NOT EXISTS statements exist so a fresh development database works.

Exports:
    build_schema_statements: Ordered list of sql.Composed statements
    PostgreSQLSchemaDeployer: Executes the statements in one transaction
"""

from typing import List

from psycopg import sql

from util_logger import ComponentType, log_exceptions
from .postgresql import PostgreSQLRepository


_ENGINE_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS {schema}.assessment_jobs (
        job_id              TEXT PRIMARY KEY,
        customer_id         TEXT NOT NULL,
        connection_id       TEXT NOT NULL,
        status              TEXT NOT NULL DEFAULT 'queued',
        module_codes        JSONB NOT NULL,
        trigger_type        TEXT NOT NULL DEFAULT 'manual',
        started_by          TEXT,
        created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        started_at          TIMESTAMPTZ,
        completed_at        TIMESTAMPTZ,
        last_progress_at    TIMESTAMPTZ,
        last_enqueued_at    TIMESTAMPTZ,
        findings_total      INTEGER NOT NULL DEFAULT 0,
        findings_high       INTEGER NOT NULL DEFAULT 0,
        findings_medium     INTEGER NOT NULL DEFAULT 0,
        findings_low        INTEGER NOT NULL DEFAULT 0,
        score               INTEGER,
        findings_new        INTEGER NOT NULL DEFAULT 0,
        findings_recurring  INTEGER NOT NULL DEFAULT 0,
        findings_resolved   INTEGER NOT NULL DEFAULT 0,
        reconciled_at       TIMESTAMPTZ,
        is_stuck            BOOLEAN NOT NULL DEFAULT FALSE,
        stuck_since         TIMESTAMPTZ,
        cancel_requested    BOOLEAN NOT NULL DEFAULT FALSE,
        redrive_count       INTEGER NOT NULL DEFAULT 0,
        worker_id           TEXT,
        error_details       TEXT,
        updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT assessment_jobs_status_check
            CHECK (status IN ('queued', 'running', 'completed', 'failed'))
    )
    """,
    """
    ALTER TABLE {schema}.assessment_jobs ADD COLUMN IF NOT EXISTS last_enqueued_at TIMESTAMPTZ
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_assessment_jobs_status_progress
        ON {schema}.assessment_jobs (status, last_progress_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_assessment_jobs_customer_reconciled
        ON {schema}.assessment_jobs (customer_id, reconciled_at DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS {schema}.assessment_module_results (
        job_id          TEXT NOT NULL REFERENCES {schema}.assessment_jobs (job_id),
        module_code     TEXT NOT NULL,
        sequence        INTEGER NOT NULL DEFAULT 0,
        status          TEXT NOT NULL DEFAULT 'pending',
        findings_count  INTEGER NOT NULL DEFAULT 0,
        error_message   TEXT,
        duration_ms     INTEGER,
        started_at      TIMESTAMPTZ,
        completed_at    TIMESTAMPTZ,
        PRIMARY KEY (job_id, module_code),
        CONSTRAINT assessment_module_results_status_check
            CHECK (status IN ('pending', 'running', 'completed', 'failed', 'skipped'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS {schema}.assessment_findings (
        finding_id      TEXT PRIMARY KEY,
        job_id          TEXT NOT NULL REFERENCES {schema}.assessment_jobs (job_id),
        module_code     TEXT NOT NULL,
        fingerprint     CHAR(64) NOT NULL,
        severity        TEXT NOT NULL,
        category        TEXT,
        resource_type   TEXT,
        resource_id     TEXT,
        resource_name   TEXT,
        finding_text    TEXT NOT NULL,
        recommendation  TEXT,
        change_status   TEXT,
        created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_assessment_findings_job_module
        ON {schema}.assessment_findings (job_id, module_code)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_assessment_findings_job_fingerprint
        ON {schema}.assessment_findings (job_id, fingerprint)
    """,
    """
    CREATE TABLE IF NOT EXISTS {schema}.customer_findings (
        customer_id         TEXT NOT NULL,
        fingerprint         CHAR(64) NOT NULL,
        module_code         TEXT NOT NULL,
        severity            TEXT NOT NULL,
        category            TEXT,
        resource_type       TEXT,
        resource_id         TEXT,
        resource_name       TEXT,
        finding_text        TEXT NOT NULL,
        recommendation      TEXT,
        status              TEXT NOT NULL DEFAULT 'open',
        occurrence_count    INTEGER NOT NULL DEFAULT 1,
        first_seen_at       TIMESTAMPTZ NOT NULL,
        last_seen_at        TIMESTAMPTZ NOT NULL,
        resolved_at         TIMESTAMPTZ,
        last_job_id         TEXT NOT NULL,
        resolved_by_job_id  TEXT,
        PRIMARY KEY (customer_id, fingerprint),
        CONSTRAINT customer_findings_status_check CHECK (status IN ('open', 'resolved'))
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_customer_findings_open_module
        ON {schema}.customer_findings (customer_id, status, module_code)
    """,
    """
    CREATE TABLE IF NOT EXISTS {schema}.watchdog_runs (
        run_id          TEXT PRIMARY KEY,
        trigger         TEXT NOT NULL,
        started_at      TIMESTAMPTZ NOT NULL,
        completed_at    TIMESTAMPTZ,
        duration_ms     INTEGER,
        status          TEXT NOT NULL,
        items_scanned   INTEGER NOT NULL DEFAULT 0,
        items_fixed     INTEGER NOT NULL DEFAULT 0,
        actions_taken   JSONB NOT NULL DEFAULT '[]'::jsonb,
        error_details   TEXT
    )
    """,
]

_PORTAL_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS {schema}.customers (
        customer_id          TEXT PRIMARY KEY,
        name                 TEXT NOT NULL,
        tier_id              TEXT,
        monitoring_group_id  INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS {schema}.tenant_connections (
        connection_id     TEXT PRIMARY KEY,
        customer_id       TEXT NOT NULL REFERENCES {schema}.customers (customer_id),
        tenant_id         TEXT NOT NULL,
        client_id         TEXT NOT NULL,
        secret_reference  TEXT NOT NULL,
        display_name      TEXT,
        is_active         BOOLEAN NOT NULL DEFAULT TRUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS {schema}.tier_modules (
        tier_id      TEXT NOT NULL,
        module_code  TEXT NOT NULL,
        frequency    TEXT NOT NULL DEFAULT 'monthly',
        is_enabled   BOOLEAN NOT NULL DEFAULT TRUE,
        PRIMARY KEY (tier_id, module_code)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS {schema}.finding_metadata_rules (
        rule_id                 SERIAL PRIMARY KEY,
        priority                INTEGER NOT NULL DEFAULT 100,
        module_code             TEXT,
        category                TEXT,
        finding_pattern         TEXT,
        recommendation_pattern  TEXT,
        base_hours              NUMERIC(6, 2) NOT NULL DEFAULT 1,
        per_resource_hours      NUMERIC(6, 2) NOT NULL DEFAULT 0,
        impact_override         TEXT,
        default_owner           TEXT,
        is_active               BOOLEAN NOT NULL DEFAULT TRUE
    )
    """,
]


def build_schema_statements(schema_name: str, include_portal_tables: bool = True) -> List[sql.Composed]:
    """Ordered DDL statements for schema_name."""
    schema = sql.Identifier(schema_name)
    statements = [sql.SQL("CREATE SCHEMA IF NOT EXISTS {schema}").format(schema=schema)]
    templates = (_PORTAL_TABLES if include_portal_tables else []) + _ENGINE_TABLES
    statements.extend(sql.SQL(t).format(schema=schema) for t in templates)
    return statements


class PostgreSQLSchemaDeployer(PostgreSQLRepository):
    """
    Applies the DDL in a single transaction.
    """

    @log_exceptions(ComponentType.REPOSITORY, "SchemaDeployer")
    def deploy(self, include_portal_tables: bool = True) -> int:
        statements = build_schema_statements(self.schema_name, include_portal_tables)
        with self._error_context("schema deployment", self.schema_name):
            with self._get_connection() as conn:
                with conn.cursor() as cursor:
                    for statement in statements:
                        cursor.execute(statement)
                conn.commit()
        self.logger.info(f"✅ Schema deployed: {self.schema_name} ({len(statements)} statements)")
        return len(statements)
