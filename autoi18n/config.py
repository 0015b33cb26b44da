"""
Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from __future__ import annotations

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

from autoi18n.core.locales import parse_locale_list


class Settings(BaseSettings):
    """Application settings loaded from environment."""
    
    # ==========================================================================
    # Environment
    # ==========================================================================
    
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    
    # ==========================================================================
    # API Server
    # ==========================================================================
    
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    
    # ==========================================================================
    # Storage
    # ==========================================================================
    
    # Root for uploads, translations and batch artifacts
    data_dir: str = Field(
        default="./tmp",
        validation_alias=AliasChoices("auto_i18n_temp_dir", "data_dir"),
    )
    
    # ==========================================================================
    # Translation providers
    # ==========================================================================
    
    # openai, anthropic or mock; empty means pick from configured credentials
    translation_provider: str = ""
    mock_translations: bool = False
    provider_timeout_seconds: float = 60.0
    
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = Field(
        default="",
        validation_alias=AliasChoices("openai_api_url", "openai_base_url"),
    )
    openai_max_completion_tokens: int = 32768
    
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-5-haiku-20241022"
    anthropic_base_url: str = Field(
        default="",
        validation_alias=AliasChoices("anthropic_api_url", "anthropic_base_url"),
    )
    anthropic_max_tokens: int = 8192
    
    # ==========================================================================
    # Locales
    # ==========================================================================
    
    supported_locales: str = "en,ru,zh"
    
    # ==========================================================================
    # Batch polling
    # ==========================================================================
    
    batch_polling_enabled: bool = True
    batch_poll_interval_seconds: float = 30.0
    batch_poll_concurrency: int = 8
    
    # ==========================================================================
    # Helpers
    # ==========================================================================
    
    @property
    def supported_locale_codes(self) -> list[str]:
        return parse_locale_list(self.supported_locales)
    
    @property
    def is_production(self) -> bool:
        return self.environment == "production"
    
    @property
    def is_mock_mode(self) -> bool:
        """Whether every batch should be routed to the mock adapter."""
        return self.mock_translations or self.translation_provider.lower() == "mock"
    
    @property
    def has_openai(self) -> bool:
        return bool(self.openai_api_key)
    
    @property
    def has_anthropic(self) -> bool:
        return bool(self.anthropic_api_key)
    
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        populate_by_name = True
        extra = "ignore"
