# ============================================================================
# MODULE EXECUTOR
# ============================================================================
# STATUS: Service layer - runs one audit module with a timeout
# PURPOSE: Invoke a registered module, enforce the per-module timeout and
#          turn every failure into a captured outcome
# EXPORTS: ModuleExecutor, ModuleExecution
# DEPENDENCIES: services.audit_modules
# ============================================================================
"""
Module Executor.

execute() never raises for module problems. The outcome carries the
findings collected so far, an error message when the module failed, the
duration and whether the timeout fired.

Timeout model:
    The module runs in a daemon thread that appends findings to a shared
    sink. The caller joins with the timeout; on expiry it takes a snapshot
    of the sink and sets an abandon flag, after which the collecting thread
    stops consuming the module's generator. A module blocked inside a
    network call keeps its thread until the call returns, but its later
    findings are discarded.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import threading
import time
import traceback

from config import get_config
from core.models import AssessmentJob, FindingInput
from exceptions import (
    ContractViolationError,
    EXPECTED_MODULE_EXCEPTIONS,
    ModuleTimeoutError,
)
from util_logger import LoggerFactory, ComponentType
from .audit_modules import AuditModule, ModuleContext, get_module

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "ModuleExecutor")


@dataclass
class ModuleExecution:
    """Outcome of one module run."""
    module_code: str
    findings: List[FindingInput] = field(default_factory=list)
    error: Optional[str] = None
    duration_ms: int = 0
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None


class _FindingSink:
    """Thread-safe collector shared between the module thread and the caller."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: List[FindingInput] = []
        self.abandoned = threading.Event()
        self.error: Optional[BaseException] = None

    def add(self, finding: FindingInput) -> None:
        with self._lock:
            if not self.abandoned.is_set():
                self._items.append(finding)

    def snapshot(self) -> List[FindingInput]:
        with self._lock:
            return list(self._items)


class ModuleExecutor:
    """
    Runs audit modules with a per-module timeout.

    Example:
        executor = ModuleExecutor()
        outcome = executor.execute(job, "NETWORK", context)
        if not outcome.succeeded:
            print(outcome.error)
    """

    def __init__(
        self,
        registry: Optional[Dict[str, AuditModule]] = None,
        timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._registry = registry
        self.timeout_seconds = timeout_seconds or get_config().assessment.module_timeout_seconds
        self._clock = clock

    def execute(self, job: AssessmentJob, module_code: str,
                context: Optional[ModuleContext] = None) -> ModuleExecution:
        code = module_code.strip().upper()
        started = self._clock()
        outcome = ModuleExecution(module_code=code)

        try:
            module = get_module(code, self._registry)
        except EXPECTED_MODULE_EXCEPTIONS as e:
            outcome.error = str(e)
            return outcome

        if context is None:
            context = ModuleContext(job=job, connection=None)

        sink = _FindingSink()
        thread = threading.Thread(
            target=self._collect,
            args=(module, context, sink),
            name=f"module-{code}-{job.job_id[:8]}",
            daemon=True,
        )
        logger.info(f"▶️ [EXECUTOR] {code} started for job {job.job_id[:8]} (timeout {self.timeout_seconds:.0f}s)")
        thread.start()
        thread.join(self.timeout_seconds)

        if thread.is_alive():
            sink.abandoned.set()
            outcome.timed_out = True
            outcome.error = str(ModuleTimeoutError(code, self.timeout_seconds))
            logger.warning(f"⏱️ [EXECUTOR] {outcome.error}; keeping {len(sink.snapshot())} partial findings")
        elif sink.error is not None:
            outcome.error = self._describe(code, sink.error)

        outcome.findings = sink.snapshot()
        outcome.duration_ms = int((self._clock() - started) * 1000)

        if outcome.succeeded:
            logger.info(
                f"✅ [EXECUTOR] {code} completed: {len(outcome.findings)} findings in {outcome.duration_ms}ms"
            )
        else:
            logger.warning(
                f"❌ [EXECUTOR] {code} failed after {outcome.duration_ms}ms "
                f"({len(outcome.findings)} partial findings): {outcome.error}"
            )
        return outcome

    @staticmethod
    def _collect(module: AuditModule, context: ModuleContext, sink: _FindingSink) -> None:
        try:
            for finding in module.collect(context):
                if sink.abandoned.is_set():
                    return
                if not isinstance(finding, FindingInput):
                    raise ContractViolationError(
                        f"{module.module_code} yielded {type(finding).__name__}, expected FindingInput"
                    )
                sink.add(finding)
        except Exception as e:
            sink.error = e
            if not isinstance(e, EXPECTED_MODULE_EXCEPTIONS):
                logger.error(f"💥 [EXECUTOR] {module.module_code} raised {type(e).__name__}: {e}")
                logger.debug(traceback.format_exc())

    @staticmethod
    def _describe(module_code: str, error: BaseException) -> str:
        if isinstance(error, EXPECTED_MODULE_EXCEPTIONS):
            return str(error)
        return f"{module_code}: {type(error).__name__}: {error}"


__all__ = ['ModuleExecutor', 'ModuleExecution']
