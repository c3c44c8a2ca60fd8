"""
External Integration Configuration.

Provides configuration for:
    - MetricsApiConfig: quota-constrained monitoring API (rate limits, retries)
    - AuditRunnerConfig: external audit runner that executes module scripts
    - VaultConfig: Key Vault holding tenant and monitoring secrets

Exports:
    MetricsApiConfig
    AuditRunnerConfig
    VaultConfig
"""

import os
from typing import Optional, Tuple
from pydantic import BaseModel, Field, field_validator

from .defaults import MetricsApiDefaults, AuditRunnerDefaults, KeyVaultDefaults


def _parse_schedule(raw: Optional[str]) -> Tuple[float, ...]:
    """Parse "1,5,15" into (1.0, 5.0, 15.0)."""
    if not raw:
        return MetricsApiDefaults.BACKOFF_SCHEDULE_SECONDS
    return tuple(float(part) for part in raw.split(",") if part.strip())


class MetricsApiConfig(BaseModel):
    """
    Monitoring API configuration.

    The rate-limit fields feed the process-wide RateLimiter; credentials are
    resolved per customer through Key Vault with these values as fallback.
    """

    company: Optional[str] = Field(
        default=None,
        description="Monitoring portal company (subdomain)"
    )

    access_id: Optional[str] = Field(
        default=None,
        description="API access id used for LMv1 request signing"
    )

    access_key_secret_name: str = Field(
        default=KeyVaultDefaults.METRICS_ACCESS_KEY_SECRET,
        description="Key Vault secret holding the API access key"
    )

    max_concurrent_requests: int = Field(
        default=MetricsApiDefaults.MAX_CONCURRENT_REQUESTS,
        ge=1,
        description="Semaphore capacity: calls in flight across the whole process"
    )

    safety_buffer: int = Field(
        default=MetricsApiDefaults.SAFETY_BUFFER,
        ge=0,
        description="Block new calls when remaining quota drops below this value"
    )

    backoff_schedule_seconds: Tuple[float, ...] = Field(
        default=MetricsApiDefaults.BACKOFF_SCHEDULE_SECONDS,
        description="Delays between retries when no Retry-After is supplied"
    )

    max_retries: int = Field(
        default=MetricsApiDefaults.MAX_RETRIES,
        ge=0,
        le=10,
        description="Retries after the first request, counted separately for 429 and transport errors"
    )

    request_timeout_seconds: float = Field(
        default=MetricsApiDefaults.REQUEST_TIMEOUT_SECONDS,
        gt=0,
        description="httpx timeout per request"
    )

    @field_validator("backoff_schedule_seconds")
    @classmethod
    def validate_schedule(cls, v: Tuple[float, ...]) -> Tuple[float, ...]:
        if not v:
            raise ValueError("backoff_schedule_seconds must contain at least one delay")
        if any(delay < 0 for delay in v):
            raise ValueError("backoff delays must be non-negative")
        return v

    @property
    def base_url(self) -> Optional[str]:
        if not self.company:
            return None
        return MetricsApiDefaults.BASE_URL_TEMPLATE.format(company=self.company)

    def debug_dict(self) -> dict:
        return {
            "company": self.company,
            "access_id": self.access_id[:4] + "..." if self.access_id else None,
            "max_concurrent_requests": self.max_concurrent_requests,
            "safety_buffer": self.safety_buffer,
            "backoff_schedule_seconds": list(self.backoff_schedule_seconds),
            "max_retries": self.max_retries,
        }

    @classmethod
    def from_environment(cls):
        """Load from environment variables."""
        return cls(
            company=os.environ.get("METRICS_API_COMPANY"),
            access_id=os.environ.get("METRICS_API_ACCESS_ID"),
            access_key_secret_name=os.environ.get(
                "METRICS_API_ACCESS_KEY_SECRET", KeyVaultDefaults.METRICS_ACCESS_KEY_SECRET
            ),
            max_concurrent_requests=int(os.environ.get(
                "METRICS_API_MAX_CONCURRENT", str(MetricsApiDefaults.MAX_CONCURRENT_REQUESTS)
            )),
            safety_buffer=int(os.environ.get(
                "METRICS_API_SAFETY_BUFFER", str(MetricsApiDefaults.SAFETY_BUFFER)
            )),
            backoff_schedule_seconds=_parse_schedule(os.environ.get("METRICS_API_BACKOFF_SECONDS")),
            max_retries=int(os.environ.get("METRICS_API_MAX_RETRIES", str(MetricsApiDefaults.MAX_RETRIES))),
            request_timeout_seconds=float(os.environ.get(
                "METRICS_API_TIMEOUT_SECONDS", str(MetricsApiDefaults.REQUEST_TIMEOUT_SECONDS)
            )),
        )


class AuditRunnerConfig(BaseModel):
    """
    External audit runner configuration.

    The function key is sent as the `code` query parameter and never logged.
    """

    base_url: str = Field(
        default=AuditRunnerDefaults.BASE_URL,
        description="Audit runner API base URL"
    )

    function_key: Optional[str] = Field(
        default=None,
        repr=False,
        description="Function key for the audit runner"
    )

    request_timeout_seconds: float = Field(
        default=AuditRunnerDefaults.REQUEST_TIMEOUT_SECONDS,
        gt=0,
        description="Timeout for one module run on the audit runner"
    )

    @classmethod
    def from_environment(cls):
        """Load from environment variables."""
        return cls(
            base_url=os.environ.get("AUDIT_API_URL", AuditRunnerDefaults.BASE_URL).rstrip("/"),
            function_key=os.environ.get("AUDIT_API_KEY"),
            request_timeout_seconds=float(os.environ.get(
                "AUDIT_API_TIMEOUT_SECONDS", str(AuditRunnerDefaults.REQUEST_TIMEOUT_SECONDS)
            )),
        )


class VaultConfig(BaseModel):
    """
    Key Vault configuration.
    """

    vault_name: Optional[str] = Field(
        default=None,
        description="Key Vault name (https://{vault_name}.vault.azure.net)"
    )

    @property
    def vault_url(self) -> Optional[str]:
        if not self.vault_name:
            return None
        return f"https://{self.vault_name}.vault.azure.net/"

    @classmethod
    def from_environment(cls):
        """Load from environment variables."""
        return cls(vault_name=os.environ.get("KEY_VAULT_NAME"))
