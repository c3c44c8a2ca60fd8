"""
Scheduled Assessment Models.

One ScheduleTarget row describes a module enabled for a connection through
the customer's service tier, with its run frequency and the last time that
module completed for the customer.

Exports:
    ModuleFrequency
    ScheduleTarget
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class ModuleFrequency(str, Enum):
    """How often a tier runs a module."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class ScheduleTarget(BaseModel):
    customer_id: str
    connection_id: str
    module_code: str
    frequency: ModuleFrequency = Field(default=ModuleFrequency.MONTHLY)
    last_completed_at: Optional[datetime] = Field(default=None)


__all__ = ['ModuleFrequency', 'ScheduleTarget']
