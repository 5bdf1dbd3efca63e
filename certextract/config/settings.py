"""
Process settings with environment variable support.

Provider credentials, endpoints and resilience defaults are loaded from
environment variables with an optional .env file. Azure OpenAI overrides
OpenAI when fully configured.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # OpenAI settings (default AI provider)
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    openai_vision_model: str = Field(default="gpt-4o", alias="OPENAI_VISION_MODEL")

    # Azure OpenAI settings (overrides OpenAI if all are set)
    azure_openai_endpoint: Optional[str] = Field(
        default=None, alias="AZURE_OPENAI_ENDPOINT"
    )
    azure_openai_api_key: Optional[str] = Field(
        default=None, alias="AZURE_OPENAI_API_KEY"
    )
    azure_openai_deployment_name: Optional[str] = Field(
        default=None, alias="AZURE_OPENAI_DEPLOYMENT_NAME"
    )
    azure_openai_api_version: str = Field(
        default="2024-02-15-preview", alias="AZURE_OPENAI_API_VERSION"
    )

    # Azure Document Intelligence
    azure_di_endpoint: Optional[str] = Field(
        default=None, alias="AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT"
    )
    azure_di_key: Optional[str] = Field(
        default=None, alias="AZURE_DOCUMENT_INTELLIGENCE_KEY"
    )
    azure_di_model: str = Field(default="prebuilt-layout", alias="AZURE_DI_MODEL")
    azure_di_api_version: str = Field(default="2024-11-30", alias="AZURE_DI_API_VERSION")
    azure_di_poll_interval_seconds: float = Field(
        default=2.0, ge=0.0, alias="AZURE_DI_POLL_INTERVAL_SECONDS"
    )
    azure_di_max_polls: int = Field(default=30, ge=1, alias="AZURE_DI_MAX_POLLS")

    # Local model fallback
    ollama_base_url: Optional[str] = Field(default=None, alias="OLLAMA_BASE_URL")
    ollama_model: str = Field(default="llama3.1", alias="OLLAMA_MODEL")
    ollama_vision_model: Optional[str] = Field(default="llava", alias="OLLAMA_VISION_MODEL")

    # Firebase settings (audit store and settings source)
    google_application_credentials: Optional[str] = Field(
        default=None, alias="GOOGLE_APPLICATION_CREDENTIALS"
    )
    firebase_project_id: Optional[str] = Field(
        default=None, alias="FIREBASE_PROJECT_ID"
    )
    firestore_audit_collection: str = Field(
        default="extraction_tier_audits", alias="FIRESTORE_AUDIT_COLLECTION"
    )
    firestore_settings_document: str = Field(
        default="factory_settings/extraction", alias="FIRESTORE_SETTINGS_DOCUMENT"
    )

    # Resilience defaults
    provider_timeout_seconds: float = Field(
        default=30.0, gt=0.0, alias="PROVIDER_TIMEOUT_SECONDS"
    )
    retry_max_attempts: int = Field(default=3, ge=1, alias="RETRY_MAX_ATTEMPTS")
    retry_initial_delay_seconds: float = Field(
        default=1.0, ge=0.0, alias="RETRY_INITIAL_DELAY_SECONDS"
    )
    retry_max_delay_seconds: float = Field(
        default=10.0, ge=0.0, alias="RETRY_MAX_DELAY_SECONDS"
    )
    retry_backoff_multiplier: float = Field(
        default=2.0, ge=1.0, alias="RETRY_BACKOFF_MULTIPLIER"
    )
    circuit_failure_threshold: int = Field(
        default=5, ge=1, alias="CIRCUIT_FAILURE_THRESHOLD"
    )
    circuit_reset_timeout_seconds: float = Field(
        default=60.0, ge=0.0, alias="CIRCUIT_RESET_TIMEOUT_SECONDS"
    )
    circuit_half_open_requests: int = Field(
        default=3, ge=1, alias="CIRCUIT_HALF_OPEN_REQUESTS"
    )

    # Runtime settings cache and audit queue
    settings_cache_ttl_seconds: float = Field(
        default=60.0, ge=0.0, alias="SETTINGS_CACHE_TTL_SECONDS"
    )
    audit_queue_size: int = Field(default=1000, ge=1, alias="AUDIT_QUEUE_SIZE")

    # LLM behavior settings
    llm_temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(default=2048, ge=1)

    def is_azure_configured(self) -> bool:
        """Check if Azure OpenAI is fully configured."""
        return all([
            self.azure_openai_endpoint,
            self.azure_openai_api_key,
            self.azure_openai_deployment_name,
        ])

    def is_openai_configured(self) -> bool:
        """Check if either Azure OpenAI or OpenAI can be used."""
        return self.is_azure_configured() or bool(self.openai_api_key)

    def is_document_intelligence_configured(self) -> bool:
        return bool(self.azure_di_endpoint and self.azure_di_key)

    def is_ollama_configured(self) -> bool:
        return bool(self.ollama_base_url)

    def is_firebase_configured(self) -> bool:
        return bool(self.firebase_project_id or self.google_application_credentials)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
