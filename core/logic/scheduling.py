"""
Scheduled Assessment Planning.

Decides which tier modules are due for a connection. A module is due when
it never completed for the customer or its frequency in days has elapsed
since the last completion.

Exports:
    frequency_days
    is_module_due
    plan_due_modules
"""

from collections import OrderedDict
from datetime import datetime
from typing import Dict, Iterable, List, Tuple

from config.defaults import SchedulerDefaults
from ..models.job import normalize_module_codes
from ..models.schedule import ModuleFrequency, ScheduleTarget


def frequency_days(frequency: ModuleFrequency) -> int:
    return SchedulerDefaults.FREQUENCY_DAYS[ModuleFrequency(frequency).value]


def is_module_due(target: ScheduleTarget, now: datetime) -> bool:
    if target.last_completed_at is None:
        return True
    days_since = (now - target.last_completed_at).total_seconds() / 86400
    return days_since >= frequency_days(target.frequency)


def plan_due_modules(
    targets: Iterable[ScheduleTarget],
    now: datetime
) -> Dict[Tuple[str, str], List[str]]:
    """
    Group due modules by (customer_id, connection_id).

    Connections with nothing due are omitted. Module order follows the
    order targets were supplied in.
    """
    plan: "OrderedDict[Tuple[str, str], List[str]]" = OrderedDict()
    for target in targets:
        if not is_module_due(target, now):
            continue
        key = (target.customer_id, target.connection_id)
        plan.setdefault(key, []).append(target.module_code)
    return OrderedDict((key, normalize_module_codes(codes)) for key, codes in plan.items())
