"""
State Transition Logic for Assessment Jobs and Module Results.

Contains business rules for valid state transitions.
Separated from data models for clean architecture.

Exports:
    can_job_transition: Check if job state transition is valid
    can_module_transition: Check if module state transition is valid
    get_job_terminal_states: Get terminal states for jobs
    get_module_terminal_states: Get terminal states for modules
    is_job_terminal: Check if job is in terminal state
    is_module_terminal: Check if module is in terminal state

Dependencies:
    core.models.enums: JobStatus, ModuleStatus
"""

from typing import List

from ..models.enums import JobStatus, ModuleStatus


def can_job_transition(current: JobStatus, target: JobStatus) -> bool:
    """
    Check if a job can transition from current to target status.

    RUNNING -> RUNNING is the re-claim of a stalled job and is allowed like
    any other same-status no-op.
    """
    if current == target:
        return True

    transitions = {
        JobStatus.QUEUED: [JobStatus.RUNNING, JobStatus.FAILED],
        JobStatus.RUNNING: [JobStatus.COMPLETED, JobStatus.FAILED],
        JobStatus.COMPLETED: [],  # Terminal state
        JobStatus.FAILED: [],  # Terminal state
    }

    return target in transitions.get(current, [])


def can_module_transition(current: ModuleStatus, target: ModuleStatus) -> bool:
    """
    Check if a module result can transition from current to target status.

    RUNNING -> RUNNING covers a re-driven module whose previous worker died.
    """
    if current == target:
        return current in get_module_active_states()

    transitions = {
        ModuleStatus.PENDING: [ModuleStatus.RUNNING, ModuleStatus.SKIPPED, ModuleStatus.FAILED],
        ModuleStatus.RUNNING: [ModuleStatus.COMPLETED, ModuleStatus.FAILED],
        ModuleStatus.COMPLETED: [],  # Terminal state
        ModuleStatus.FAILED: [],  # Terminal state
        ModuleStatus.SKIPPED: [],  # Terminal state
    }

    return target in transitions.get(current, [])


def get_job_terminal_states() -> List[JobStatus]:
    return [JobStatus.COMPLETED, JobStatus.FAILED]


def get_job_active_states() -> List[JobStatus]:
    return [JobStatus.QUEUED, JobStatus.RUNNING]


def get_module_terminal_states() -> List[ModuleStatus]:
    return [ModuleStatus.COMPLETED, ModuleStatus.FAILED, ModuleStatus.SKIPPED]


def get_module_active_states() -> List[ModuleStatus]:
    return [ModuleStatus.PENDING, ModuleStatus.RUNNING]


def is_job_terminal(status: JobStatus) -> bool:
    """Check if a job status is terminal."""
    return status in get_job_terminal_states()


def is_module_terminal(status: ModuleStatus) -> bool:
    """Check if a module status is terminal."""
    return status in get_module_terminal_states()
