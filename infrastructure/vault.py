# ============================================================================
# KEY VAULT REPOSITORY
# ============================================================================
# STATUS: Infrastructure - Azure Key Vault secret access
# PURPOSE: Secret retrieval with a short-lived cache, and tenant credentials
#          for audit modules built from vault-held client secrets
# EXPORTS: VaultRepository, VaultAccessError, TenantCredentialProvider
# DEPENDENCIES: azure-keyvault-secrets, azure-identity
# ============================================================================

"""
Azure Key Vault Repository.

Usage:
    vault_repo = VaultRepository()
    access_key = vault_repo.get_secret("LM-AccessKey")

    provider = TenantCredentialProvider(vault_repo)
    credential = provider.get_credential(connection)
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import threading

from azure.core.exceptions import AzureError
from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.keyvault.secrets import SecretClient

from core.models import TenantConnection
from exceptions import ConfigurationError, ExternalApiError
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.REPOSITORY, "VaultRepository")


class VaultAccessError(ExternalApiError):
    """Secret could not be read from Key Vault."""
    pass


class VaultRepository:
    """
    Azure Key Vault repository for secure credential management.

    Secrets are cached in-process for cache_ttl_minutes.
    """

    def __init__(self, vault_name: Optional[str] = None, cache_ttl_minutes: int = 15):
        from config import get_config
        vault_config = get_config().vault

        self.vault_name = vault_name or vault_config.vault_name
        if not self.vault_name:
            raise ConfigurationError("KEY_VAULT_NAME is not configured")
        self.vault_url = f"https://{self.vault_name}.vault.azure.net/"

        self.client = SecretClient(vault_url=self.vault_url, credential=DefaultAzureCredential())
        self._secret_cache: Dict[str, Dict[str, Any]] = {}
        self._cache_lock = threading.Lock()
        self._cache_ttl = timedelta(minutes=cache_ttl_minutes)
        logger.info(f"🔐 VaultRepository initialized for vault: {self.vault_name}")

    def get_secret(self, secret_name: str, use_cache: bool = True) -> str:
        """
        Retrieve secret value from Azure Key Vault.

        Raises:
            VaultAccessError: If the secret cannot be retrieved or is empty
        """
        if use_cache:
            cached = self._get_cached(secret_name)
            if cached is not None:
                return cached

        try:
            secret_value = self.client.get_secret(secret_name).value
        except AzureError as e:
            error_msg = f"Failed to retrieve secret '{secret_name}' from vault '{self.vault_name}': {e}"
            logger.error(f"❌ {error_msg}")
            raise VaultAccessError(error_msg) from e

        if not secret_value:
            raise VaultAccessError(f"Secret '{secret_name}' is empty or null")

        if use_cache:
            with self._cache_lock:
                self._secret_cache[secret_name] = {
                    'value': secret_value,
                    'cached_at': datetime.now(timezone.utc)
                }
        logger.debug(f"✅ Retrieved secret: {secret_name}")
        return secret_value

    def _get_cached(self, secret_name: str) -> Optional[str]:
        with self._cache_lock:
            entry = self._secret_cache.get(secret_name)
            if entry is None:
                return None
            if datetime.now(timezone.utc) > entry['cached_at'] + self._cache_ttl:
                del self._secret_cache[secret_name]
                return None
            return entry['value']


class TenantCredentialProvider:
    """
    Builds azure-identity credentials for customer tenant connections.

    The client secret is read from the vault on first use per connection.
    """

    def __init__(self, vault: VaultRepository):
        self._vault = vault
        self._credentials: Dict[str, ClientSecretCredential] = {}
        self._lock = threading.Lock()

    def get_credential(self, connection: TenantConnection) -> ClientSecretCredential:
        with self._lock:
            credential = self._credentials.get(connection.connection_id)
        if credential is not None:
            return credential

        client_secret = self._vault.get_secret(connection.secret_reference)
        credential = ClientSecretCredential(
            tenant_id=connection.tenant_id,
            client_id=connection.client_id,
            client_secret=client_secret
        )
        with self._lock:
            self._credentials[connection.connection_id] = credential
        logger.debug(f"🔑 Tenant credential built for connection {connection.connection_id}")
        return credential


__all__ = ['VaultRepository', 'VaultAccessError', 'TenantCredentialProvider']
