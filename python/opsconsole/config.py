"""Application settings loaded from environment variables.

Environment Configuration:
    OPSCONSOLE_ENV: Deployment environment (local | test | staging | prod)
    LOG_FORMAT: Log renderer (json | console)
    USE_FAKE_BACKENDS: Serve in-memory backends instead of Azure (local/test only)

Service Bus Configuration (one of):
    SERVICE_BUS_FQDN: Namespace host name, authenticates with DefaultAzureCredential
    AZURE_SERVICE_BUS_CONNECTION_STRING: Shared access connection string
    AZURE_CLIENT_ID: Optional user-assigned managed identity client id

Cosmos DB Configuration:
    COSMOS_DB_CONNECTION_STRING: Account connection string

Every Azure variable also accepts the hyphenated Key Vault spelling
(e.g. SERVICE-BUS-FQDN), which is how App Service surfaces secret references.

Browsing limits:
    DOCUMENT_PAGE_SIZE: Documents per page (default 25)
    DOCUMENT_SEARCH_MAX: Documents returned by a field search (default 50)
    MESSAGE_PEEK_MAX: Messages peeked per listing (default 100)
    MAX_SESSIONS: Open browsing sessions kept in memory (default 64)
    DISPLAY_TIMEZONE: IANA zone used for display timestamps (default UTC)
"""

from enum import Enum
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class LogFormat(str, Enum):
    JSON = "json"
    CONSOLE = "console"


class Settings(BaseSettings):
    """Application configuration.

    Validation rules:
    - All limits must be >= 1
    - DISPLAY_TIMEZONE must name a known IANA zone
    - USE_FAKE_BACKENDS is refused in staging and prod

    Backend credentials are not required at startup. The gateway checks them
    lazily on first use and raises ConfigurationError when they are missing.
    """

    opsconsole_env: Environment = Field(default=Environment.LOCAL, alias="OPSCONSOLE_ENV")
    log_format: LogFormat = Field(default=LogFormat.JSON, alias="LOG_FORMAT")
    use_fake_backends: bool = Field(default=False, alias="USE_FAKE_BACKENDS")

    # Service Bus
    service_bus_fqdn: str | None = Field(
        default=None, validation_alias=AliasChoices("SERVICE_BUS_FQDN", "SERVICE-BUS-FQDN")
    )
    service_bus_connection_string: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "AZURE_SERVICE_BUS_CONNECTION_STRING", "AZURE-SERVICE-BUS-CONNECTION-STRING"
        ),
    )
    azure_client_id: str | None = Field(
        default=None, validation_alias=AliasChoices("AZURE_CLIENT_ID", "AZURE-CLIENT-ID")
    )

    # Cosmos DB
    cosmos_connection_string: str | None = Field(
        default=None,
        validation_alias=AliasChoices("COSMOS_DB_CONNECTION_STRING", "COSMOS-DB-CONNECTION-STRING"),
    )

    # Browsing limits
    document_page_size: int = Field(default=25, alias="DOCUMENT_PAGE_SIZE")
    document_search_max: int = Field(default=50, alias="DOCUMENT_SEARCH_MAX")
    message_peek_max: int = Field(default=100, alias="MESSAGE_PEEK_MAX")
    max_sessions: int = Field(default=64, alias="MAX_SESSIONS")
    display_timezone: str = Field(default="UTC", alias="DISPLAY_TIMEZONE")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Reject non-positive limits, unknown zones and fakes outside local/test."""
        limits = {
            "DOCUMENT_PAGE_SIZE": self.document_page_size,
            "DOCUMENT_SEARCH_MAX": self.document_search_max,
            "MESSAGE_PEEK_MAX": self.message_peek_max,
            "MAX_SESSIONS": self.max_sessions,
        }
        for name, value in limits.items():
            if value < 1:
                raise ValueError(f"{name} must be >= 1 (got {value})")

        try:
            ZoneInfo(self.display_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(
                f"DISPLAY_TIMEZONE is not a known time zone: {self.display_timezone}"
            ) from None

        if self.use_fake_backends and self.opsconsole_env in (
            Environment.STAGING,
            Environment.PROD,
        ):
            raise ValueError(
                f"USE_FAKE_BACKENDS is not allowed for OPSCONSOLE_ENV={self.opsconsole_env.value}"
            )

        return self

    @property
    def display_zone(self) -> ZoneInfo:
        """Return the display time zone object."""
        return ZoneInfo(self.display_timezone)

    @property
    def service_bus_configured(self) -> bool:
        """Whether either Service Bus authentication mode is configured."""
        return bool(self.service_bus_fqdn or self.service_bus_connection_string)

    @property
    def cosmos_configured(self) -> bool:
        return bool(self.cosmos_connection_string)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
