"""Configuration settings for testarchitect."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or overrides."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, populate_by_name=True
    )

    llm_provider: str = Field(default="openai", validation_alias="LLM_PROVIDER")
    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL"
    )
    openai_model: str = Field(default="gpt-4o", validation_alias="OPENAI_MODEL")
    openai_timeout_seconds: int = Field(
        default=60, validation_alias="OPENAI_TIMEOUT_SECONDS"
    )
    openai_extra_headers: str | None = Field(
        default=None, validation_alias="OPENAI_EXTRA_HEADERS"
    )
    ollama_base_url: str = Field(
        default="http://localhost:11434", validation_alias="OLLAMA_BASE_URL"
    )
    ollama_model: str = Field(default="deepseek-r1:14b", validation_alias="OLLAMA_MODEL")

    max_steps: int = Field(default=10, validation_alias="MAX_STEPS")
    tool_timeout_seconds: float = Field(default=120.0, validation_alias="TOOL_TIMEOUT_SECONDS")
    navigation_timeout_ms: int = Field(default=30_000, validation_alias="NAVIGATION_TIMEOUT_MS")
    settle_timeout_ms: int = Field(default=1_000, validation_alias="SETTLE_TIMEOUT_MS")
    verify_timeout_ms: int = Field(default=5_000, validation_alias="VERIFY_TIMEOUT_MS")
    headless: bool = Field(default=True, validation_alias="HEADLESS")

    output_dir: str = Field(default=".", validation_alias="OUTPUT_DIR")
    visual_dir: str = Field(default="visual-tests", validation_alias="VISUAL_DIR")
    trace_dir: str | None = Field(default=None, validation_alias="TRACE_DIR")
    pattern_dir: str = Field(default="shared", validation_alias="PATTERN_DIR")
    pattern_glob: str = Field(default="**/*.ts", validation_alias="PATTERN_GLOB")

    test_id_attribute: str = Field(default="data-testid", validation_alias="TEST_ID_ATTRIBUTE")
    heal_cascade: bool = Field(default=False, validation_alias="HEAL_CASCADE")
    visual_threshold: float = Field(default=0.2, validation_alias="VISUAL_THRESHOLD")
    visual_include_aa: bool = Field(default=False, validation_alias="VISUAL_INCLUDE_AA")
