"""
PostgreSQL Database Configuration.

Provides configuration for:
    - Connection settings (host, port, database)
    - Password or Azure Managed Identity authentication
    - Schema holding the assessment tables

Exports:
    DatabaseConfig: Pydantic database configuration model
    get_postgres_connection_string: Password-auth connection string helper
"""

import os
from typing import Optional
from pydantic import BaseModel, Field

from .defaults import DatabaseDefaults


# ============================================================================
# DATABASE CONFIGURATION
# ============================================================================

class DatabaseConfig(BaseModel):
    """
    PostgreSQL configuration with managed identity support.

    Supports both password-based and Azure Managed Identity authentication.
    """

    host: str = Field(
        default="localhost",
        description="PostgreSQL server hostname",
        examples=["portal-pg.postgres.database.azure.com"]
    )

    port: int = Field(
        default=DatabaseDefaults.PORT,
        description="PostgreSQL server port number"
    )

    database: str = Field(
        default="portal",
        description="Database name"
    )

    user: Optional[str] = Field(
        default=None,
        description="PostgreSQL username for password-based authentication. "
                    "With managed identity the user is the identity name."
    )

    password: Optional[str] = Field(
        default=None,
        repr=False,
        description="PostgreSQL password (password authentication only)"
    )

    schema_name: str = Field(
        default=DatabaseDefaults.SCHEMA,
        description="Schema holding assessment_jobs, module results, findings and the ledger"
    )

    use_managed_identity: bool = Field(
        default=False,
        description="Acquire an Entra ID token with azure-identity instead of using a password"
    )

    managed_identity_name: Optional[str] = Field(
        default=None,
        description="PostgreSQL role name matching the function app identity"
    )

    connection_timeout_seconds: int = Field(
        default=DatabaseDefaults.CONNECTION_TIMEOUT_SECONDS,
        ge=1,
        description="Connect timeout in seconds"
    )

    @property
    def connection_string(self) -> str:
        """
        Build PostgreSQL connection string for password authentication.

        Managed identity connections are built by PostgreSQLRepository with a
        fresh token per connection.
        """
        if self.use_managed_identity:
            return f"host={self.host} port={self.port} dbname={self.database}"
        if not self.user:
            raise ValueError("ASSESSMENT_DB_USER is required for password authentication")
        password_part = f" password={self.password}" if self.password else ""
        return (
            f"host={self.host} port={self.port} dbname={self.database} "
            f"user={self.user}{password_part} connect_timeout={self.connection_timeout_seconds}"
        )

    def debug_dict(self) -> dict:
        """Debug output with masked password."""
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": "***MASKED***" if self.password else None,
            "schema_name": self.schema_name,
            "managed_identity": self.use_managed_identity,
            "managed_identity_name": self.managed_identity_name,
        }

    @classmethod
    def from_environment(cls):
        """Load from environment variables."""
        return cls(
            host=os.environ.get("ASSESSMENT_DB_HOST", "localhost"),
            port=int(os.environ.get("ASSESSMENT_DB_PORT", str(DatabaseDefaults.PORT))),
            database=os.environ.get("ASSESSMENT_DB_NAME", "portal"),
            user=os.environ.get("ASSESSMENT_DB_USER"),
            password=os.environ.get("ASSESSMENT_DB_PASSWORD"),
            schema_name=os.environ.get("ASSESSMENT_DB_SCHEMA", DatabaseDefaults.SCHEMA),
            use_managed_identity=os.environ.get("USE_MANAGED_IDENTITY", "false").lower() == "true",
            managed_identity_name=os.environ.get("DB_MANAGED_IDENTITY_NAME"),
            connection_timeout_seconds=int(
                os.environ.get("DB_CONNECTION_TIMEOUT", str(DatabaseDefaults.CONNECTION_TIMEOUT_SECONDS))
            ),
        )


def get_postgres_connection_string(config: Optional[DatabaseConfig] = None) -> str:
    """
    Connection string for password authentication.

    Used by schema deployment scripts; repositories build their own.
    """
    if config is None:
        config = DatabaseConfig.from_environment()
    return config.connection_string
