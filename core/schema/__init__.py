"""
Core Schema Package.

Transport and update contracts shared by services and repositories.

Exports:
    AssessmentQueueMessage, QueueReason: Queue message schema
    JobUpdateModel, ModuleResultUpdateModel: Database update models
"""

from .queue import AssessmentQueueMessage, QueueReason
from .updates import JobUpdateModel, ModuleResultUpdateModel

__all__ = [
    'AssessmentQueueMessage',
    'QueueReason',
    'JobUpdateModel',
    'ModuleResultUpdateModel',
]
