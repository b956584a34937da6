"""
Azure credential acquisition.

Builds an ``azure.identity`` credential for the configured cloud and
proves it works by requesting a Resource Manager token. Failure here is
fatal for the process: without an identity there is nothing to collect.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError
from azure.identity import (
    AzureAuthorityHosts,
    ClientSecretCredential,
    DefaultAzureCredential,
)

from keyvault_exporter.common.exceptions import ConfigurationError, CredentialError
from keyvault_exporter.common.logging_config import get_logger
from keyvault_exporter.common.retry import retry_on_azure_error

logger = get_logger(__name__)


@dataclass(frozen=True)
class CloudEnvironment:
    """Endpoints that differ between Azure clouds."""
    name: str
    authority_host: str
    resource_manager: str
    vault_dns_suffix: str

    @property
    def management_scope(self) -> str:
        return self.resource_manager.rstrip("/") + "/.default"


CLOUD_ENVIRONMENTS = {
    "azurepubliccloud": CloudEnvironment(
        "AzurePublicCloud",
        AzureAuthorityHosts.AZURE_PUBLIC_CLOUD,
        "https://management.azure.com",
        "vault.azure.net",
    ),
    "azurechinacloud": CloudEnvironment(
        "AzureChinaCloud",
        AzureAuthorityHosts.AZURE_CHINA,
        "https://management.chinacloudapi.cn",
        "vault.azure.cn",
    ),
    "azureusgovernmentcloud": CloudEnvironment(
        "AzureUSGovernmentCloud",
        AzureAuthorityHosts.AZURE_GOVERNMENT,
        "https://management.usgovcloudapi.net",
        "vault.usgovcloudapi.net",
    ),
}


def get_cloud_environment(name: str) -> CloudEnvironment:
    """
    Look up a cloud by name (case-insensitive, ``AZUREPUBLICCLOUD`` style).

    Raises:
        ConfigurationError: unknown cloud name
    """
    key = name.replace("_", "").replace("-", "").lower()
    try:
        return CLOUD_ENVIRONMENTS[key]
    except KeyError:
        raise ConfigurationError(
            f"Unknown Azure environment '{name}'. "
            f"Supported: {', '.join(env.name for env in CLOUD_ENVIRONMENTS.values())}"
        ) from None


def resolve_secret(value: Optional[str]) -> Optional[str]:
    """
    Resolve a client secret reference.

    Supported schemes:
        - ``file:<path>`` - read from a mounted secret file (trailing newline stripped)
        - ``env:<VAR_NAME>`` - read from another environment variable
        - anything else - returned as-is

    Raises:
        ConfigurationError: referenced file or variable does not exist
    """
    if value is None:
        return None

    if value.startswith("file:"):
        path = Path(value[5:])
        if not path.exists():
            raise ConfigurationError(f"Secret file not found: {path}")
        return path.read_text(encoding="utf-8").strip()

    if value.startswith("env:"):
        var_name = value[4:]
        env_value = os.environ.get(var_name)
        if env_value is None:
            raise ConfigurationError(f"Environment variable not set: {var_name}")
        return env_value

    return value


class CredentialProvider:
    """
    Supplies the token credential shared by every Azure client.

    Uses a service principal when tenant, client ID and secret are all
    configured, and ``DefaultAzureCredential`` (environment, workload
    identity, managed identity, Azure CLI) otherwise.
    """

    def __init__(
        self,
        environment: CloudEnvironment,
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
    ):
        self.environment = environment
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self._credential: Optional[TokenCredential] = None

    @property
    def uses_service_principal(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)

    def _build_credential(self) -> TokenCredential:
        if self.uses_service_principal:
            logger.info(
                f"Using service principal credential (client_id={self.client_id}, "
                f"cloud={self.environment.name})"
            )
            return ClientSecretCredential(
                tenant_id=self.tenant_id,
                client_id=self.client_id,
                client_secret=resolve_secret(self.client_secret),
                authority=self.environment.authority_host,
            )

        logger.info(f"Using DefaultAzureCredential (cloud={self.environment.name})")
        return DefaultAzureCredential(authority=self.environment.authority_host)

    def acquire(self) -> TokenCredential:
        """
        Build and validate the credential.

        Returns:
            A credential that has successfully obtained a management token

        Raises:
            CredentialError: no usable identity
        """
        if self._credential is not None:
            return self._credential

        credential = self._build_credential()
        try:
            self._validate(credential)
        except AzureError as e:
            raise CredentialError(f"Azure credential validation failed: {e}") from e

        self._credential = credential
        logger.info("Azure credential validated")
        return credential

    @retry_on_azure_error(max_attempts=3)
    def _validate(self, credential: TokenCredential) -> None:
        credential.get_token(self.environment.management_scope)

    def close(self) -> None:
        if self._credential is not None and hasattr(self._credential, "close"):
            self._credential.close()
        self._credential = None
