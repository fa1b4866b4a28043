"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Endpoint and credential values default to empty strings and are not
    validated here; a missing value surfaces as an authentication failure
    the first time the client is used.
    """

    # --- App ---
    app_name: str = "fhir-sync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Source (OpenEMR, OAuth2 client credentials) ---
    source_base_url: str = ""
    source_client_id: str = ""
    source_client_secret: str = ""
    source_scope: str = "api:fhir"
    source_token_path: str = "/oauth2/default/token"
    source_fhir_path: str = "/apis/default/fhir"

    # --- Destination (Azure Health Data Services, Azure AD client credentials) ---
    destination_fhir_endpoint: str = ""
    destination_tenant_id: str = ""
    destination_client_id: str = ""
    destination_client_secret: str = ""
    destination_authority_host: str = "https://login.microsoftonline.com"

    # --- Transport / retry ---
    http_timeout_seconds: float = 30.0
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_backoff_factor: float = 2.0
    sync_concurrency: int = 1  # 1 = strictly sequential batches

    # --- Scheduled trigger ---
    auto_sync_enabled: bool = False
    auto_sync_interval_seconds: int = 60
    auto_sync_lookback_seconds: int | None = None  # None = no _lastUpdated filter

    # --- Security ---
    function_key: str = ""  # empty disables x-functions-key checks

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
