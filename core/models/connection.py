"""
Tenant Connection Model.

Read-only view of a customer's cloud tenant connection. Connection CRUD is
owned elsewhere; the engine only reads it to validate start requests and
to build tenant credentials for modules.

Exports:
    TenantConnection
"""

from typing import Optional
from pydantic import BaseModel, Field


class TenantConnection(BaseModel):
    """
    A customer's cloud tenant connection.

    secret_reference names the Key Vault secret holding the client secret.
    monitoring_group_id is the customer's device group on the monitoring
    platform (None when the customer is not monitored).
    """

    connection_id: str = Field(...)
    customer_id: str = Field(...)
    tenant_id: str = Field(...)
    client_id: str = Field(...)
    secret_reference: str = Field(..., description="Key Vault secret name for the client secret")
    is_active: bool = Field(default=True)
    display_name: Optional[str] = Field(default=None)
    monitoring_group_id: Optional[int] = Field(default=None)


__all__ = ['TenantConnection']
