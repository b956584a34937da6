"""
Configuration management using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from pathlib import Path
from dotenv import load_dotenv
from pydantic_settings import BaseSettings
from pydantic import Field, ValidationError
from typing import List, Optional

from keyvault_exporter.common.exceptions import ConfigurationError

# Load .env file into os.environ so all nested BaseSettings pick up values
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path)


def _split(value: str) -> List[str]:
    return [part for part in value.split() if part]


class AzureSettings(BaseSettings):
    """Azure environment, scope and authentication"""
    environment: str = Field(default="AzurePublicCloud")
    subscription_id: str = Field(default="")
    resource_group: str = Field(default="")
    resource_tag: str = Field(default="owner")
    tenant_id: Optional[str] = Field(default=None)
    client_id: Optional[str] = Field(default=None)
    client_secret: Optional[str] = Field(default=None)
    request_timeout_seconds: float = Field(default=60.0, gt=0)

    class Config:
        env_prefix = "AZURE_"

    @property
    def subscription_ids(self) -> List[str]:
        """Configured subscriptions; empty means every visible subscription."""
        return _split(self.subscription_id)

    @property
    def resource_tags(self) -> List[str]:
        return _split(self.resource_tag)


class KeyVaultSettings(BaseSettings):
    """Vault selection and item labelling"""
    filter: str = Field(default="")
    content_tags: str = Field(default="")

    class Config:
        env_prefix = "KEYVAULT_"

    @property
    def content_tag_names(self) -> List[str]:
        return _split(self.content_tags)


class ScrapeSettings(BaseSettings):
    """Collection cycle timing and concurrency"""
    interval_seconds: float = Field(default=300.0, gt=0)
    jitter_seconds: float = Field(default=0.0, ge=0)
    concurrency: int = Field(default=10, ge=1)
    cycle_timeout_seconds: float = Field(default=300.0, gt=0)
    run_immediately: bool = Field(default=True)

    class Config:
        env_prefix = "SCRAPE_"


class ServerSettings(BaseSettings):
    """HTTP server for /metrics and health endpoints"""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=0, le=65535)

    class Config:
        env_prefix = "SERVER_"


class LoggingSettings(BaseSettings):
    """Logging configuration"""
    level: str = Field(default="INFO")
    format: str = Field(default="json")

    class Config:
        env_prefix = "LOG_"


class Settings(BaseSettings):
    """Main settings aggregating all configuration sections"""
    azure: AzureSettings = Field(default_factory=AzureSettings)
    keyvault: KeyVaultSettings = Field(default_factory=KeyVaultSettings)
    scrape: ScrapeSettings = Field(default_factory=ScrapeSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    class Config:
        extra = "ignore"


def load_settings() -> Settings:
    """
    Build settings from the environment.

    Raises:
        ConfigurationError: a value failed validation
    """
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


# Singleton instance - import this in other modules
try:
    settings = load_settings()
except ConfigurationError as e:
    # During testing or initial setup, settings might not be fully configured
    print(f"Warning: Could not load settings: {e}")
    settings = None
