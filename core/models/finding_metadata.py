"""
Finding Remediation Metadata Model.

A rule attaches remediation estimates (effort, owner, impact) to ledger
entries whose module, category, finding text and recommendation match.
Rules are evaluated in ascending priority number; the first full match wins.

Exports:
    FindingMetadataRule
"""

from typing import Optional
from pydantic import BaseModel, Field

from .enums import Severity


class FindingMetadataRule(BaseModel):
    """
    Remediation metadata rule.

    Null criteria match anything. Pattern criteria are case-insensitive
    substring matches.
    """

    rule_id: int = Field(..., description="Stable rule identifier")
    priority: int = Field(default=100, description="Lower numbers are evaluated first")
    module_code: Optional[str] = Field(default=None)
    category: Optional[str] = Field(default=None)
    finding_pattern: Optional[str] = Field(default=None)
    recommendation_pattern: Optional[str] = Field(default=None)
    base_hours: float = Field(default=1.0, ge=0)
    per_resource_hours: float = Field(default=0.0, ge=0)
    impact_override: Optional[Severity] = Field(default=None)
    default_owner: Optional[str] = Field(default=None)
    is_active: bool = Field(default=True)


__all__ = ['FindingMetadataRule']
