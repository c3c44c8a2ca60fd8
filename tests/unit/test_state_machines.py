"""
Exhaustive state machine transition tests.

Anti-overfitting: Every (current, target) enum pair is tested.
No cherry-picked transitions - all combinations covered.
"""

import pytest

from core.models.enums import JobStatus, ModuleStatus
from core.logic.transitions import (
    can_job_transition,
    can_module_transition,
    get_job_terminal_states,
    get_job_active_states,
    get_module_terminal_states,
    get_module_active_states,
    is_job_terminal,
    is_module_terminal,
)


# ============================================================================
# DATA: Expected transition maps (source of truth for tests)
# ============================================================================

_JOB_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.RUNNING, JobStatus.FAILED},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

_MODULE_TRANSITIONS = {
    ModuleStatus.PENDING: {ModuleStatus.RUNNING, ModuleStatus.SKIPPED, ModuleStatus.FAILED},
    ModuleStatus.RUNNING: {ModuleStatus.COMPLETED, ModuleStatus.FAILED},
    ModuleStatus.COMPLETED: set(),
    ModuleStatus.FAILED: set(),
    ModuleStatus.SKIPPED: set(),
}

ALL_JOB_STATUSES = list(JobStatus)
ALL_MODULE_STATUSES = list(ModuleStatus)

_JOB_PAIRS = [
    (current, target) for current in ALL_JOB_STATUSES for target in ALL_JOB_STATUSES
]

_MODULE_PAIRS = [
    (current, target) for current in ALL_MODULE_STATUSES for target in ALL_MODULE_STATUSES
]


def _expected_job_transition(current: JobStatus, target: JobStatus) -> bool:
    if current == target:
        return True
    return target in _JOB_TRANSITIONS.get(current, set())


def _expected_module_transition(current: ModuleStatus, target: ModuleStatus) -> bool:
    """Same-status writes are only allowed while the module is still active."""
    if current == target:
        return current in (ModuleStatus.PENDING, ModuleStatus.RUNNING)
    return target in _MODULE_TRANSITIONS.get(current, set())


# ============================================================================
# TestJobTransitionsExhaustive
# ============================================================================

class TestJobTransitionsExhaustive:
    """Exhaustive tests for can_job_transition()."""

    @pytest.mark.parametrize("current,target", _JOB_PAIRS,
                             ids=[f"{c.value}->{t.value}" for c, t in _JOB_PAIRS])
    def test_transition_pair(self, current, target):
        expected = _expected_job_transition(current, target)
        result = can_job_transition(current, target)
        assert result == expected, (
            f"can_job_transition({current.value}, {target.value}) "
            f"returned {result}, expected {expected}"
        )

    def test_terminal_states_are_exactly_two(self):
        assert set(get_job_terminal_states()) == {JobStatus.COMPLETED, JobStatus.FAILED}

    def test_active_plus_terminal_covers_all_statuses(self):
        active = set(get_job_active_states())
        terminal = set(get_job_terminal_states())
        assert active & terminal == set()
        assert active | terminal == set(ALL_JOB_STATUSES)

    @pytest.mark.parametrize("terminal", [JobStatus.COMPLETED, JobStatus.FAILED])
    def test_terminal_jobs_never_leave(self, terminal):
        valid = {t for t in ALL_JOB_STATUSES if t != terminal and can_job_transition(terminal, t)}
        assert valid == set()

    def test_running_reclaim_is_allowed(self):
        """A stalled job is re-claimed RUNNING -> RUNNING."""
        assert can_job_transition(JobStatus.RUNNING, JobStatus.RUNNING) is True

    def test_queued_cannot_complete_directly(self):
        assert can_job_transition(JobStatus.QUEUED, JobStatus.COMPLETED) is False

    @pytest.mark.parametrize("status", ALL_JOB_STATUSES,
                             ids=[s.value for s in ALL_JOB_STATUSES])
    def test_is_job_terminal_agrees_with_terminal_list(self, status):
        assert is_job_terminal(status) == (status in get_job_terminal_states())


# ============================================================================
# TestModuleTransitionsExhaustive
# ============================================================================

class TestModuleTransitionsExhaustive:
    """Exhaustive tests for can_module_transition()."""

    @pytest.mark.parametrize("current,target", _MODULE_PAIRS,
                             ids=[f"{c.value}->{t.value}" for c, t in _MODULE_PAIRS])
    def test_transition_pair(self, current, target):
        expected = _expected_module_transition(current, target)
        result = can_module_transition(current, target)
        assert result == expected, (
            f"can_module_transition({current.value}, {target.value}) "
            f"returned {result}, expected {expected}"
        )

    def test_terminal_states_are_exactly_three(self):
        assert set(get_module_terminal_states()) == {
            ModuleStatus.COMPLETED, ModuleStatus.FAILED, ModuleStatus.SKIPPED
        }

    def test_active_plus_terminal_covers_all(self):
        active = set(get_module_active_states())
        terminal = set(get_module_terminal_states())
        assert active & terminal == set()
        assert active | terminal == set(ALL_MODULE_STATUSES)

    @pytest.mark.parametrize("terminal", [ModuleStatus.COMPLETED, ModuleStatus.FAILED, ModuleStatus.SKIPPED])
    def test_terminal_modules_reject_every_write(self, terminal):
        """A late write from a worker that lost its claim is rejected."""
        assert not any(can_module_transition(terminal, t) for t in ALL_MODULE_STATUSES)

    def test_pending_can_be_skipped_but_running_cannot(self):
        assert can_module_transition(ModuleStatus.PENDING, ModuleStatus.SKIPPED) is True
        assert can_module_transition(ModuleStatus.RUNNING, ModuleStatus.SKIPPED) is False

    def test_redriven_running_module_may_restart(self):
        assert can_module_transition(ModuleStatus.RUNNING, ModuleStatus.RUNNING) is True

    @pytest.mark.parametrize("status", ALL_MODULE_STATUSES,
                             ids=[s.value for s in ALL_MODULE_STATUSES])
    def test_is_module_terminal_agrees_with_terminal_list(self, status):
        assert is_module_terminal(status) == (status in get_module_terminal_states())
