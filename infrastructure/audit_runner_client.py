# ============================================================================
# AUDIT RUNNER CLIENT
# ============================================================================
# STATUS: Infrastructure - HTTP client for the external audit runner
# PURPOSE: Execute one audit module's collection scripts against a tenant
# EXPORTS: AuditRunnerClient
# DEPENDENCIES: httpx, config
# ============================================================================
"""
Audit Runner Client.

The audit runner is a separate function app that executes the per-module
collection scripts. It is called with its function key in the ?code= query
parameter, the same way the portal proxies to it.

    POST {AUDIT_API_URL}/modules/{module_code}/run?code={AUDIT_API_KEY}
    {
        "customerId": ..., "connectionId": ..., "tenantId": ...,
        "clientId": ..., "accessToken": ...
    }
    -> {"status": "ok", "findings": [{"Severity": ..., "Detail": ...}, ...]}
"""

from typing import Any, Dict, List, Optional

import httpx

from config import AuditRunnerConfig, get_config
from exceptions import ConfigurationError, ModuleExecutionError, TransientApiError
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.CLIENT, "AuditRunnerClient")


class AuditRunnerClient:
    """
    Client for the audit runner function app.
    """

    def __init__(self, config: Optional[AuditRunnerConfig] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        self._config = config or get_config().audit_runner
        self._transport = transport

    def run_module(self, module_code: str, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Run one module and return its raw finding rows.

        Raises:
            ConfigurationError: AUDIT_API_KEY not set
            ModuleExecutionError: Runner returned an error status or malformed body
            TransientApiError: Runner unreachable or timed out
        """
        if not self._config.function_key:
            raise ConfigurationError("AUDIT_API_KEY is not configured")

        path = f"/modules/{module_code.lower()}/run"
        logger.info(f"📤 Audit runner call: {module_code} for customer {payload.get('customerId')}")

        try:
            with httpx.Client(
                base_url=self._config.base_url,
                timeout=self._config.request_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = client.post(path, params={"code": self._config.function_key}, json=payload)
        except httpx.TransportError as e:
            raise TransientApiError(path, 1, e) from e

        if response.is_error:
            raise ModuleExecutionError(
                module_code,
                f"audit runner returned {response.status_code}: {response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ModuleExecutionError(module_code, "audit runner returned a non-JSON response") from e

        if isinstance(body, dict) and str(body.get("status", "ok")).lower() == "error":
            raise ModuleExecutionError(module_code, str(body.get("error") or "audit runner reported an error"))

        findings = body.get("findings") if isinstance(body, dict) else body
        if not isinstance(findings, list):
            raise ModuleExecutionError(module_code, "audit runner response has no findings list")

        logger.info(f"📥 Audit runner returned {len(findings)} rows for {module_code}")
        return findings


__all__ = ['AuditRunnerClient']
