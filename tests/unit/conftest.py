"""
Unit test fixtures - services wired against the in-memory store.
"""

import pytest


@pytest.fixture
def reconciler(store, clock):
    from services.finding_reconciler import FindingReconciler
    return FindingReconciler(store, clock=clock)
