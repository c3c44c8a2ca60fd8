# ============================================================================
# POSTGRESQL REPOSITORIES
# ============================================================================
# STATUS: Infrastructure - PostgreSQL database repositories
# PURPOSE: Direct psycopg access for assessment jobs, module results, raw
#          findings, the customer ledger, portal reads and watchdog audit
# EXPORTS: PostgreSQLRepository, PostgreSQLAssessmentRepository,
#          PostgreSQLLedgerRepository, PostgreSQLPortalRepository,
#          PostgreSQLWatchdogRepository
# DEPENDENCIES: psycopg, psycopg.sql, azure-identity, config, core.models
# ============================================================================

"""
PostgreSQL Repository Implementation - Direct Database Access

Architecture:
    BaseRepository (abstract)
        |
    PostgreSQLRepository (connection management, query execution)
        |
    Assessment / Ledger / Portal / Watchdog repositories

Key Features:
- Direct PostgreSQL access using psycopg3
- SQL composition (psycopg.sql) for injection safety
- Conditional UPDATE ... RETURNING for atomic claims
- Per-customer advisory transaction locks for ledger reconciliation
- Password or Azure Managed Identity authentication
"""

import json
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from config import AppConfig, get_config
from core.models import (
    AssessmentJob,
    ChangeStatus,
    FindingMetadataRule,
    JobStatus,
    LedgerDelta,
    LedgerEntry,
    LedgerStatus,
    ModuleResult,
    ModuleStatus,
    RawFinding,
    ScheduleTarget,
    TenantConnection,
    WatchdogRun,
)
from core.schema.updates import JobUpdateModel, ModuleResultUpdateModel
from exceptions import DatabaseError, ResourceNotFoundError
from .base import BaseRepository
from .interface_repository import (
    IAssessmentRepository,
    ILedgerRepository,
    IPortalRepository,
    IReconciliationUnit,
    IWatchdogRepository,
)

POSTGRES_AAD_SCOPE = "https://ossrdbms-aad.database.windows.net/.default"

_JOB_COLUMNS = (
    "job_id", "customer_id", "connection_id", "status", "module_codes", "trigger_type",
    "started_by", "created_at", "started_at", "completed_at", "last_progress_at", "last_enqueued_at",
    "findings_total", "findings_high", "findings_medium", "findings_low", "score",
    "findings_new", "findings_recurring", "findings_resolved", "reconciled_at",
    "is_stuck", "stuck_since", "cancel_requested", "redrive_count", "worker_id",
    "error_details",
)

_FINDING_COLUMNS = (
    "finding_id", "job_id", "module_code", "fingerprint", "severity", "category",
    "resource_type", "resource_id", "resource_name", "finding_text", "recommendation",
    "change_status", "created_at",
)

_LEDGER_COLUMNS = (
    "customer_id", "fingerprint", "module_code", "severity", "category", "resource_type",
    "resource_id", "resource_name", "finding_text", "recommendation", "status",
    "occurrence_count", "first_seen_at", "last_seen_at", "resolved_at", "last_job_id",
    "resolved_by_job_id",
)


def _columns(names: Sequence[str]) -> sql.Composed:
    return sql.SQL(", ").join(sql.Identifier(n) for n in names)


def _placeholders(count: int) -> sql.Composed:
    return sql.SQL(", ").join(sql.Placeholder() * count)


def _set_clause(update_dict: Dict[str, Any]) -> sql.Composed:
    return sql.SQL(", ").join(
        sql.SQL("{} = %s").format(sql.Identifier(field)) for field in update_dict
    )


def _ledger_params(entry: LedgerEntry) -> Tuple:
    data = entry.model_dump()
    data['severity'] = entry.severity.value
    data['status'] = entry.status.value
    return tuple(data[c] for c in _LEDGER_COLUMNS)


# ============================================================================
# POSTGRESQL BASE REPOSITORY - Connection and common operations
# ============================================================================

class PostgreSQLRepository(BaseRepository):
    """
    PostgreSQL-specific repository base class with connection management.

    Connection Management:
    ---------------------
    - One connection per operation, closed in a finally block
    - Rows returned as dicts (psycopg.rows.dict_row)
    - Managed identity: a fresh Entra ID token is requested per connection,
      so long-lived workers never present an expired token

    Thread Safety:
    -------------
    Each operation creates its own connection, making repositories safe to
    share across the orchestrator's module pool.
    """

    _credential = None

    def __init__(self, connection_string: Optional[str] = None,
                 schema_name: Optional[str] = None,
                 config: Optional[AppConfig] = None):
        super().__init__()
        self.config = config or get_config()
        self.db_config = self.config.database
        self.schema_name = schema_name or self.db_config.schema_name
        self._explicit_conn_string = connection_string
        self.logger.debug(f"✅ {self.__class__.__name__} initialized with schema: {self.schema_name}")

    def _get_connection_string(self) -> str:
        """
        Build the psycopg connection string.

        Priority: explicit string > managed identity token > password auth.
        """
        if self._explicit_conn_string:
            return self._explicit_conn_string
        if self.db_config.use_managed_identity:
            return self._build_managed_identity_connection_string()
        return self.db_config.connection_string

    def _build_managed_identity_connection_string(self) -> str:
        from azure.identity import DefaultAzureCredential
        from azure.core.exceptions import ClientAuthenticationError

        if PostgreSQLRepository._credential is None:
            PostgreSQLRepository._credential = DefaultAzureCredential()

        try:
            token = PostgreSQLRepository._credential.get_token(POSTGRES_AAD_SCOPE).token
        except ClientAuthenticationError as e:
            self.logger.error(f"❌ Failed to acquire managed identity token: {e}")
            raise DatabaseError(
                "Managed identity token acquisition failed. "
                "Ensure the Function App identity is a PostgreSQL role."
            ) from e

        user = self.db_config.managed_identity_name or self.db_config.user
        if not user:
            raise DatabaseError("DB_MANAGED_IDENTITY_NAME is required with managed identity")

        self.logger.debug(f"🔐 Managed identity connection for user {user}")
        return (
            f"host={self.db_config.host} "
            f"port={self.db_config.port} "
            f"dbname={self.db_config.database} "
            f"user={user} "
            f"password={token} "
            f"sslmode=require "
            f"connect_timeout={self.db_config.connection_timeout_seconds}"
        )

    @contextmanager
    def _get_connection(self) -> Iterator[psycopg.Connection]:
        """
        Context manager for PostgreSQL connections.

        Autocommit is off; the caller commits. On psycopg errors the
        transaction is rolled back, and the connection is always closed.
        """
        conn = None
        try:
            conn = psycopg.connect(self._get_connection_string(), row_factory=dict_row)
            yield conn
        except psycopg.Error as e:
            self.logger.error(f"❌ PostgreSQL error: {type(e).__name__}: {e}")
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                conn.close()

    @contextmanager
    def _get_cursor(self, conn=None):
        """
        Cursor context manager.

        With conn: the caller controls the transaction.
        Without conn: a new connection is opened and committed on success.
        """
        if conn:
            with conn.cursor() as cursor:
                yield cursor
        else:
            with self._get_connection() as conn:
                with conn.cursor() as cursor:
                    yield cursor
                    conn.commit()

    def _execute_query(self, query: sql.Composed, params: Optional[Tuple] = None,
                       fetch: Optional[str] = None) -> Optional[Any]:
        """
        Execute a single statement and always commit.

        Returns fetched row(s) for fetch='one'|'all', otherwise the rowcount.
        psycopg errors are wrapped in DatabaseError.
        """
        if not isinstance(query, sql.Composed):
            raise TypeError(f"❌ SECURITY: Query must be sql.Composed, got {type(query)}")

        if fetch and fetch not in ('one', 'all'):
            raise ValueError(f"❌ INVALID FETCH MODE: {fetch}")

        with self._get_connection() as conn:
            try:
                with conn.cursor() as cursor:
                    try:
                        cursor.execute(query, params)
                    except psycopg.errors.Error as e:
                        self.logger.error(f"❌ QUERY EXECUTION FAILED: {e} (SQL State: {e.sqlstate})")
                        raise DatabaseError(f"Query execution failed: {e}") from e

                    result = None
                    if fetch == 'one':
                        result = cursor.fetchone()
                    elif fetch == 'all':
                        result = cursor.fetchall()

                    try:
                        conn.commit()
                    except psycopg.Error as e:
                        self.logger.error(f"❌ COMMIT FAILED: {e}")
                        raise DatabaseError(f"Transaction commit failed: {e}") from e

                    if fetch:
                        return result
                    return cursor.rowcount
            except Exception:
                try:
                    conn.rollback()
                except psycopg.Error as rollback_error:
                    self.logger.error(f"❌ ROLLBACK ALSO FAILED: {rollback_error}")
                raise

    def _table(self, name: str) -> sql.Composed:
        return sql.SQL("{}.{}").format(sql.Identifier(self.schema_name), sql.Identifier(name))


# ============================================================================
# ASSESSMENT REPOSITORY - jobs, module results, raw findings
# ============================================================================

class PostgreSQLAssessmentRepository(PostgreSQLRepository, IAssessmentRepository):
    """
    PostgreSQL implementation of the assessment repository.
    """

    def create_job(self, job: AssessmentJob, module_results: Sequence[ModuleResult]) -> bool:
        with self._error_context("job creation", job.job_id):
            job_data = job.model_dump()
            params = tuple(
                json.dumps(job_data[c]) if c == "module_codes"
                else (job_data[c].value if hasattr(job_data[c], 'value') else job_data[c])
                for c in _JOB_COLUMNS
            )
            with self._get_connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute(
                        sql.SQL(
                            "INSERT INTO {table} ({cols}) VALUES ({vals}) ON CONFLICT (job_id) DO NOTHING"
                        ).format(
                            table=self._table("assessment_jobs"),
                            cols=_columns(_JOB_COLUMNS),
                            vals=_placeholders(len(_JOB_COLUMNS)),
                        ),
                        params
                    )
                    created = cursor.rowcount > 0
                    if created and module_results:
                        cursor.executemany(
                            sql.SQL("""
                                INSERT INTO {table} (job_id, module_code, sequence, status)
                                VALUES (%s, %s, %s, %s)
                            """).format(table=self._table("assessment_module_results")),
                            [(m.job_id, m.module_code, m.sequence, m.status.value) for m in module_results]
                        )
                conn.commit()

            if created:
                self.logger.info(f"✅ Job created: {job.job_id} modules={job.module_codes}")
            else:
                self.logger.info(f"📋 Job already exists: {job.job_id} (idempotent)")
            return created

    def get_job(self, job_id: str) -> Optional[AssessmentJob]:
        with self._error_context("job retrieval", job_id):
            row = self._execute_query(
                sql.SQL("SELECT * FROM {table} WHERE job_id = %s").format(
                    table=self._table("assessment_jobs")
                ),
                (job_id,),
                fetch='one'
            )
            return AssessmentJob(**row) if row else None

    def update_job(self, job_id: str, updates: JobUpdateModel) -> bool:
        with self._error_context("job update", job_id):
            update_dict = updates.to_dict(exclude_unset=True)
            if not update_dict:
                return False

            if 'status' in update_dict:
                current = self.get_job(job_id)
                if current is None:
                    raise ResourceNotFoundError(f"Assessment {job_id} not found")
                self._validate_job_transition(job_id, current.status, JobStatus(update_dict['status']))

            query = sql.SQL("UPDATE {table} SET {sets}, updated_at = NOW() WHERE job_id = %s").format(
                table=self._table("assessment_jobs"),
                sets=_set_clause(update_dict),
            )
            rowcount = self._execute_query(query, tuple(update_dict.values()) + (job_id,))
            if rowcount > 0:
                self.logger.debug(f"✅ Job updated: {job_id} fields={list(update_dict.keys())}")
            else:
                self.logger.warning(f"⚠️ Job not found for update: {job_id}")
            return rowcount > 0

    def claim_job(self, job_id: str, worker_id: str, stale_before: datetime,
                  now: datetime) -> Optional[AssessmentJob]:
        with self._error_context("job claim", job_id):
            row = self._execute_query(
                sql.SQL("""
                    UPDATE {table}
                    SET status = 'running',
                        worker_id = %s,
                        started_at = COALESCE(started_at, %s),
                        last_progress_at = %s,
                        is_stuck = FALSE,
                        stuck_since = NULL,
                        updated_at = NOW()
                    WHERE job_id = %s
                      AND (
                        status = 'queued'
                        OR (status = 'running' AND (
                            is_stuck OR last_progress_at IS NULL OR last_progress_at < %s
                        ))
                      )
                    RETURNING *
                """).format(table=self._table("assessment_jobs")),
                (worker_id, now, now, job_id, stale_before),
                fetch='one'
            )
            if row is None:
                self.logger.info(f"📋 Claim refused for {job_id}: held by another worker or terminal")
                return None
            self.logger.info(f"🔒 Job {job_id} claimed by {worker_id}")
            return AssessmentJob(**row)

    def record_progress(self, job_id: str, now: datetime) -> bool:
        with self._error_context("progress heartbeat", job_id):
            rowcount = self._execute_query(
                sql.SQL("""
                    UPDATE {table}
                    SET last_progress_at = %s, is_stuck = FALSE, stuck_since = NULL, updated_at = NOW()
                    WHERE job_id = %s AND status = 'running'
                """).format(table=self._table("assessment_jobs")),
                (now, job_id)
            )
            return rowcount > 0

    def finish_job(self, job_id: str, status: JobStatus, updates: JobUpdateModel) -> bool:
        with self._error_context("job finish", job_id):
            self._validate_job_transition(job_id, JobStatus.RUNNING, status)
            update_dict = updates.to_dict(exclude_unset=True)
            update_dict.pop('status', None)
            update_dict = {'status': status.value, **update_dict}

            rowcount = self._execute_query(
                sql.SQL("""
                    UPDATE {table} SET {sets}, updated_at = NOW()
                    WHERE job_id = %s AND status = 'running'
                """).format(table=self._table("assessment_jobs"), sets=_set_clause(update_dict)),
                tuple(update_dict.values()) + (job_id,)
            )
            if rowcount == 0:
                self.logger.warning(f"⚠️ Job {job_id} was not running; finish to {status.value} skipped")
            return rowcount > 0

    def list_jobs(self, status_filter: Optional[JobStatus] = None,
                  customer_id: Optional[str] = None, limit: int = 100) -> List[AssessmentJob]:
        with self._error_context("job listing"):
            conditions = []
            params: List[Any] = []
            if status_filter is not None:
                conditions.append(sql.SQL("status = %s"))
                params.append(status_filter.value)
            if customer_id:
                conditions.append(sql.SQL("customer_id = %s"))
                params.append(customer_id)
            where = sql.SQL(" WHERE ") + sql.SQL(" AND ").join(conditions) if conditions else sql.SQL("")
            params.append(limit)
            rows = self._execute_query(
                sql.SQL("SELECT * FROM {table}{where} ORDER BY created_at DESC LIMIT %s").format(
                    table=self._table("assessment_jobs"), where=where
                ),
                tuple(params),
                fetch='all'
            )
            return [AssessmentJob(**row) for row in rows]

    def list_stale_running_jobs(self, stale_before: datetime, limit: int = 100) -> List[AssessmentJob]:
        with self._error_context("stale running job scan"):
            rows = self._execute_query(
                sql.SQL("""
                    SELECT * FROM {table}
                    WHERE status = 'running'
                      AND (last_progress_at IS NULL OR last_progress_at < %s)
                    ORDER BY last_progress_at ASC NULLS FIRST
                    LIMIT %s
                """).format(table=self._table("assessment_jobs")),
                (stale_before, limit),
                fetch='all'
            )
            return [AssessmentJob(**row) for row in rows]

    def list_stale_queued_jobs(self, enqueued_before: datetime, limit: int = 100) -> List[AssessmentJob]:
        with self._error_context("stale queued job scan"):
            rows = self._execute_query(
                sql.SQL("""
                    SELECT * FROM {table}
                    WHERE status = 'queued' AND COALESCE(last_enqueued_at, created_at) < %s
                    ORDER BY COALESCE(last_enqueued_at, created_at) ASC
                    LIMIT %s
                """).format(table=self._table("assessment_jobs")),
                (enqueued_before, limit),
                fetch='all'
            )
            return [AssessmentJob(**row) for row in rows]

    def list_reconciled_jobs(self, customer_id: str, limit: int = 2) -> List[AssessmentJob]:
        with self._error_context("reconciled job listing", customer_id):
            rows = self._execute_query(
                sql.SQL("""
                    SELECT * FROM {table}
                    WHERE customer_id = %s AND reconciled_at IS NOT NULL
                    ORDER BY reconciled_at DESC
                    LIMIT %s
                """).format(table=self._table("assessment_jobs")),
                (customer_id, limit),
                fetch='all'
            )
            return [AssessmentJob(**row) for row in rows]

    def get_module_results(self, job_id: str) -> List[ModuleResult]:
        with self._error_context("module result retrieval", job_id):
            rows = self._execute_query(
                sql.SQL("SELECT * FROM {table} WHERE job_id = %s ORDER BY sequence").format(
                    table=self._table("assessment_module_results")
                ),
                (job_id,),
                fetch='all'
            )
            return [ModuleResult(**row) for row in rows]

    def _lock_module_result(self, cursor, job_id: str, module_code: str) -> ModuleStatus:
        cursor.execute(
            sql.SQL("""
                SELECT status FROM {table}
                WHERE job_id = %s AND module_code = %s
                FOR UPDATE
            """).format(table=self._table("assessment_module_results")),
            (job_id, module_code)
        )
        row = cursor.fetchone()
        if row is None:
            raise ResourceNotFoundError(f"Module {module_code} not found for assessment {job_id}")
        return ModuleStatus(row['status'])

    def _apply_module_update(self, cursor, job_id: str, module_code: str,
                             updates: ModuleResultUpdateModel) -> int:
        update_dict = updates.to_dict(exclude_unset=True)
        if not update_dict:
            return 0
        if 'status' in update_dict:
            current = self._lock_module_result(cursor, job_id, module_code)
            self._validate_module_transition(job_id, module_code, current, ModuleStatus(update_dict['status']))
        cursor.execute(
            sql.SQL("UPDATE {table} SET {sets} WHERE job_id = %s AND module_code = %s").format(
                table=self._table("assessment_module_results"),
                sets=_set_clause(update_dict),
            ),
            tuple(update_dict.values()) + (job_id, module_code)
        )
        return cursor.rowcount

    def update_module_result(self, job_id: str, module_code: str,
                             updates: ModuleResultUpdateModel) -> bool:
        with self._error_context("module result update", f"{job_id}/{module_code}"):
            with self._get_connection() as conn:
                with conn.cursor() as cursor:
                    rowcount = self._apply_module_update(cursor, job_id, module_code.upper(), updates)
                conn.commit()
            return rowcount > 0

    def save_module_outcome(self, job_id: str, module_code: str,
                            updates: ModuleResultUpdateModel,
                            findings: Sequence[RawFinding]) -> bool:
        module_code = module_code.upper()
        with self._error_context("module outcome save", f"{job_id}/{module_code}"):
            with self._get_connection() as conn:
                with conn.cursor() as cursor:
                    rowcount = self._apply_module_update(cursor, job_id, module_code, updates)
                    cursor.execute(
                        sql.SQL("DELETE FROM {table} WHERE job_id = %s AND module_code = %s").format(
                            table=self._table("assessment_findings")
                        ),
                        (job_id, module_code)
                    )
                    if findings:
                        cursor.executemany(
                            sql.SQL("INSERT INTO {table} ({cols}) VALUES ({vals})").format(
                                table=self._table("assessment_findings"),
                                cols=_columns(_FINDING_COLUMNS),
                                vals=_placeholders(len(_FINDING_COLUMNS)),
                            ),
                            [self._finding_params(f) for f in findings]
                        )
                conn.commit()
            self.logger.info(f"💾 Module {module_code} saved for {job_id}: {len(findings)} findings")
            return rowcount > 0

    @staticmethod
    def _finding_params(finding: RawFinding) -> Tuple:
        return (
            finding.finding_id, finding.job_id, finding.module_code, finding.fingerprint,
            finding.severity.value, finding.category, finding.resource_type,
            finding.resource_id, finding.resource_name, finding.finding_text,
            finding.recommendation,
            finding.change_status.value if finding.change_status else None,
            finding.created_at,
        )

    def list_raw_findings(self, job_id: str,
                          module_codes: Optional[Sequence[str]] = None) -> List[RawFinding]:
        with self._error_context("raw finding listing", job_id):
            if module_codes is not None:
                if not module_codes:
                    return []
                query = sql.SQL("""
                    SELECT * FROM {table}
                    WHERE job_id = %s AND module_code = ANY(%s)
                    ORDER BY module_code, created_at
                """).format(table=self._table("assessment_findings"))
                params = (job_id, [c.upper() for c in module_codes])
            else:
                query = sql.SQL("""
                    SELECT * FROM {table} WHERE job_id = %s ORDER BY module_code, created_at
                """).format(table=self._table("assessment_findings"))
                params = (job_id,)
            rows = self._execute_query(query, params, fetch='all')
            return [RawFinding(**row) for row in rows]


# ============================================================================
# LEDGER REPOSITORY - customer findings, reconciliation transaction
# ============================================================================

class PostgreSQLReconciliationUnit(IReconciliationUnit):
    """
    Ledger operations bound to one open transaction.

    Created by PostgreSQLLedgerRepository.reconciliation_unit() after the
    per-customer advisory lock and the job row lock are held.
    """

    def __init__(self, repository: "PostgreSQLLedgerRepository", conn: psycopg.Connection,
                 customer_id: str, job_row: Dict[str, Any]):
        self._repo = repository
        self._conn = conn
        self.customer_id = customer_id
        self.job_id = job_row['job_id']
        self._job_row = job_row

    def get_existing_delta(self) -> Optional[LedgerDelta]:
        if self._job_row.get('reconciled_at') is None:
            return None
        return LedgerDelta(
            job_id=self.job_id,
            customer_id=self.customer_id,
            new=self._job_row['findings_new'],
            recurring=self._job_row['findings_recurring'],
            resolved=self._job_row['findings_resolved'],
            already_reconciled=True,
        )

    def get_entries(self, fingerprints: Sequence[str]) -> Dict[str, LedgerEntry]:
        if not fingerprints:
            return {}
        with self._conn.cursor() as cursor:
            cursor.execute(
                sql.SQL("""
                    SELECT * FROM {table}
                    WHERE customer_id = %s AND fingerprint = ANY(%s)
                    FOR UPDATE
                """).format(table=self._repo._table("customer_findings")),
                (self.customer_id, list(fingerprints))
            )
            return {row['fingerprint']: LedgerEntry(**row) for row in cursor.fetchall()}

    def list_open_entries(self, module_codes: Sequence[str]) -> List[LedgerEntry]:
        if not module_codes:
            return []
        with self._conn.cursor() as cursor:
            cursor.execute(
                sql.SQL("""
                    SELECT * FROM {table}
                    WHERE customer_id = %s AND status = 'open' AND module_code = ANY(%s)
                    FOR UPDATE
                """).format(table=self._repo._table("customer_findings")),
                (self.customer_id, [c.upper() for c in module_codes])
            )
            return [LedgerEntry(**row) for row in cursor.fetchall()]

    def insert_entry(self, entry: LedgerEntry) -> None:
        with self._conn.cursor() as cursor:
            cursor.execute(
                sql.SQL("INSERT INTO {table} ({cols}) VALUES ({vals})").format(
                    table=self._repo._table("customer_findings"),
                    cols=_columns(_LEDGER_COLUMNS),
                    vals=_placeholders(len(_LEDGER_COLUMNS)),
                ),
                _ledger_params(entry)
            )

    def update_entry(self, entry: LedgerEntry) -> None:
        mutable = [c for c in _LEDGER_COLUMNS if c not in ("customer_id", "fingerprint", "first_seen_at")]
        data = dict(zip(_LEDGER_COLUMNS, _ledger_params(entry)))
        with self._conn.cursor() as cursor:
            cursor.execute(
                sql.SQL("UPDATE {table} SET {sets} WHERE customer_id = %s AND fingerprint = %s").format(
                    table=self._repo._table("customer_findings"),
                    sets=_set_clause({c: None for c in mutable}),
                ),
                tuple(data[c] for c in mutable) + (entry.customer_id, entry.fingerprint)
            )

    def set_change_statuses(self, changes: Dict[str, ChangeStatus]) -> None:
        grouped: Dict[str, List[str]] = {}
        for fingerprint, status in changes.items():
            grouped.setdefault(ChangeStatus(status).value, []).append(fingerprint)
        with self._conn.cursor() as cursor:
            for status_value, fingerprints in grouped.items():
                cursor.execute(
                    sql.SQL("""
                        UPDATE {table} SET change_status = %s
                        WHERE job_id = %s AND fingerprint = ANY(%s)
                    """).format(table=self._repo._table("assessment_findings")),
                    (status_value, self.job_id, fingerprints)
                )

    def mark_reconciled(self, delta: LedgerDelta, now: datetime) -> None:
        with self._conn.cursor() as cursor:
            cursor.execute(
                sql.SQL("""
                    UPDATE {table}
                    SET findings_new = %s, findings_recurring = %s, findings_resolved = %s,
                        reconciled_at = %s, updated_at = NOW()
                    WHERE job_id = %s AND reconciled_at IS NULL
                """).format(table=self._repo._table("assessment_jobs")),
                (delta.new, delta.recurring, delta.resolved, now, self.job_id)
            )


class PostgreSQLLedgerRepository(PostgreSQLRepository, ILedgerRepository):
    """
    PostgreSQL implementation of the customer findings ledger.

    Reconciliations for the same customer are serialised with a transaction
    scoped advisory lock keyed on the customer id; the job row is locked
    FOR UPDATE so the reconciled check and the write happen atomically.
    """

    @contextmanager
    def reconciliation_unit(self, customer_id: str, job_id: str):
        with self._error_context("ledger reconciliation", job_id):
            with self._get_connection() as conn:
                try:
                    with conn.cursor() as cursor:
                        cursor.execute(
                            sql.SQL("SELECT pg_advisory_xact_lock(hashtext(%s))"),
                            (f"ledger:{customer_id}",)
                        )
                        cursor.execute(
                            sql.SQL("SELECT * FROM {table} WHERE job_id = %s FOR UPDATE").format(
                                table=self._table("assessment_jobs")
                            ),
                            (job_id,)
                        )
                        job_row = cursor.fetchone()
                    if job_row is None:
                        raise ResourceNotFoundError(f"Assessment {job_id} not found")
                    yield PostgreSQLReconciliationUnit(self, conn, customer_id, job_row)
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise

    def get_entry(self, customer_id: str, fingerprint: str) -> Optional[LedgerEntry]:
        with self._error_context("ledger entry retrieval", fingerprint[:12]):
            row = self._execute_query(
                sql.SQL("SELECT * FROM {table} WHERE customer_id = %s AND fingerprint = %s").format(
                    table=self._table("customer_findings")
                ),
                (customer_id, fingerprint),
                fetch='one'
            )
            return LedgerEntry(**row) if row else None

    def get_entries(self, customer_id: str, fingerprints: Sequence[str]) -> Dict[str, LedgerEntry]:
        if not fingerprints:
            return {}
        with self._error_context("ledger entry batch retrieval", customer_id):
            rows = self._execute_query(
                sql.SQL("SELECT * FROM {table} WHERE customer_id = %s AND fingerprint = ANY(%s)").format(
                    table=self._table("customer_findings")
                ),
                (customer_id, list(fingerprints)),
                fetch='all'
            )
            return {row['fingerprint']: LedgerEntry(**row) for row in rows}

    def list_entries(self, customer_id: str, status: Optional[LedgerStatus] = None,
                     module_code: Optional[str] = None) -> List[LedgerEntry]:
        with self._error_context("ledger listing", customer_id):
            conditions = [sql.SQL("customer_id = %s")]
            params: List[Any] = [customer_id]
            if status is not None:
                conditions.append(sql.SQL("status = %s"))
                params.append(LedgerStatus(status).value)
            if module_code:
                conditions.append(sql.SQL("module_code = %s"))
                params.append(module_code.upper())
            rows = self._execute_query(
                sql.SQL("""
                    SELECT * FROM {table} WHERE {where}
                    ORDER BY module_code, last_seen_at DESC
                """).format(
                    table=self._table("customer_findings"),
                    where=sql.SQL(" AND ").join(conditions),
                ),
                tuple(params),
                fetch='all'
            )
            return [LedgerEntry(**row) for row in rows]

    def list_resolved_by_job(self, customer_id: str, job_id: str) -> List[LedgerEntry]:
        with self._error_context("resolved entry listing", job_id):
            rows = self._execute_query(
                sql.SQL("""
                    SELECT * FROM {table}
                    WHERE customer_id = %s AND resolved_by_job_id = %s AND status = 'resolved'
                    ORDER BY module_code
                """).format(table=self._table("customer_findings")),
                (customer_id, job_id),
                fetch='all'
            )
            return [LedgerEntry(**row) for row in rows]


# ============================================================================
# PORTAL REPOSITORY - read-only connections, schedules, metadata rules
# ============================================================================

class PostgreSQLPortalRepository(PostgreSQLRepository, IPortalRepository):
    """
    Read-only queries against portal-owned tables.
    """

    def get_connection(self, connection_id: str) -> Optional[TenantConnection]:
        with self._error_context("connection lookup", connection_id):
            row = self._execute_query(
                sql.SQL("""
                    SELECT tc.connection_id, tc.customer_id, tc.tenant_id, tc.client_id,
                           tc.secret_reference, tc.is_active, tc.display_name,
                           c.monitoring_group_id
                    FROM {connections} tc
                    LEFT JOIN {customers} c ON c.customer_id = tc.customer_id
                    WHERE tc.connection_id = %s
                """).format(
                    connections=self._table("tenant_connections"),
                    customers=self._table("customers"),
                ),
                (connection_id,),
                fetch='one'
            )
            return TenantConnection(**row) if row else None

    def list_schedule_targets(self) -> List[ScheduleTarget]:
        with self._error_context("schedule target listing"):
            rows = self._execute_query(
                sql.SQL("""
                    SELECT tc.customer_id, tc.connection_id, UPPER(tm.module_code) AS module_code,
                           tm.frequency,
                           (SELECT MAX(mr.completed_at)
                              FROM {results} mr
                              JOIN {jobs} j ON j.job_id = mr.job_id
                             WHERE j.customer_id = tc.customer_id
                               AND mr.module_code = UPPER(tm.module_code)
                               AND mr.status = 'completed') AS last_completed_at
                    FROM {connections} tc
                    JOIN {customers} c ON c.customer_id = tc.customer_id
                    JOIN {tier_modules} tm ON tm.tier_id = c.tier_id
                    WHERE tc.is_active AND tm.is_enabled
                    ORDER BY tc.customer_id, tc.connection_id, tm.module_code
                """).format(
                    results=self._table("assessment_module_results"),
                    jobs=self._table("assessment_jobs"),
                    connections=self._table("tenant_connections"),
                    customers=self._table("customers"),
                    tier_modules=self._table("tier_modules"),
                ),
                fetch='all'
            )
            return [ScheduleTarget(**row) for row in rows]

    def list_finding_metadata_rules(self) -> List[FindingMetadataRule]:
        with self._error_context("metadata rule listing"):
            rows = self._execute_query(
                sql.SQL("""
                    SELECT * FROM {table} WHERE is_active ORDER BY priority, rule_id
                """).format(table=self._table("finding_metadata_rules")),
                fetch='all'
            )
            return [FindingMetadataRule(**row) for row in rows]


# ============================================================================
# WATCHDOG REPOSITORY - audit trail
# ============================================================================

class PostgreSQLWatchdogRepository(PostgreSQLRepository, IWatchdogRepository):
    """
    Writes the watchdog_runs audit table.
    """

    def log_watchdog_run(self, run: WatchdogRun) -> Optional[str]:
        with self._error_context("watchdog run log", run.run_id):
            self._execute_query(
                sql.SQL("""
                    INSERT INTO {table} (
                        run_id, trigger, started_at, status, items_scanned, items_fixed, actions_taken
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb)
                """).format(table=self._table("watchdog_runs")),
                (
                    run.run_id, run.trigger, run.started_at, run.status.value,
                    run.items_scanned, run.items_fixed,
                    json.dumps(run.model_dump(mode='json')['actions_taken']),
                )
            )
            return run.run_id

    def update_watchdog_run(self, run: WatchdogRun) -> bool:
        with self._error_context("watchdog run update", run.run_id):
            rowcount = self._execute_query(
                sql.SQL("""
                    UPDATE {table}
                    SET completed_at = %s, duration_ms = %s, status = %s,
                        items_scanned = %s, items_fixed = %s,
                        actions_taken = %s::jsonb, error_details = %s
                    WHERE run_id = %s
                """).format(table=self._table("watchdog_runs")),
                (
                    run.completed_at or datetime.now(timezone.utc), run.duration_ms, run.status.value,
                    run.items_scanned, run.items_fixed,
                    json.dumps(run.model_dump(mode='json')['actions_taken']),
                    run.error_details, run.run_id,
                )
            )
            return rowcount > 0


__all__ = [
    'PostgreSQLRepository',
    'PostgreSQLAssessmentRepository',
    'PostgreSQLReconciliationUnit',
    'PostgreSQLLedgerRepository',
    'PostgreSQLPortalRepository',
    'PostgreSQLWatchdogRepository',
]
