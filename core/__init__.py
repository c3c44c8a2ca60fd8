"""
Core Assessment Components.

Contains the fundamental building blocks shared by every layer.

Structure:
    models/: Pure data structures (no business logic)
    logic/: Business logic separated from models
    schema/: Queue and update contracts
"""

from . import models
from . import logic
from . import schema

__all__ = ['models', 'logic', 'schema']
