"""Configuration management for Switchyard."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CompressionSettings(BaseModel):
    """Context window compression policy."""

    max_exchanges: int = Field(default=4, ge=1, description="Exchanges kept verbatim")
    reduced_exchanges: int = Field(default=2, ge=1, description="Exchanges kept verbatim above the high-water mark")
    trigger_tokens: int = Field(default=2000, ge=1, description="Estimated tokens that trigger compression")
    target_tokens: int = Field(default=1200, ge=64, description="Upper bound for compressed context tokens")
    reference_cutoff: float = Field(default=0.7, ge=0.0, le=1.0, description="Minimum relevance for kept references")
    max_references: int = Field(default=8, ge=0, description="Maximum preserved contextual references")
    chars_per_token: int = Field(default=4, ge=1, description="Characters per estimated token")

    @model_validator(mode="after")
    def _check_exchanges(self) -> CompressionSettings:
        if self.reduced_exchanges > self.max_exchanges:
            raise ValueError("reduced_exchanges must not exceed max_exchanges")
        return self


class ScoringSettings(BaseModel):
    """Confidence scoring and dynamic threshold constants."""

    intent_baseline: float = Field(default=0.85, description="Prior confidence of a valid intent action")
    completeness_weight: float = Field(default=0.1, description="Weight of required-field completeness")
    clarity_weight: float = Field(default=0.05, description="Weight of lexical keyword overlap")
    efficiency_weight: float = Field(default=0.02, description="Weight of response token efficiency")
    efficiency_reference_tokens: int = Field(default=200, description="Token count treated as fully efficient")
    entity_min_confidence: float = Field(default=0.7, description="Entities below this are discarded")
    primary_entity_cutoff: float = Field(default=0.8, description="Entities at or above this are primary")
    primary_entity_weight: float = Field(default=2.0, description="Aggregation weight of primary entities")
    base_threshold: float = Field(default=0.8, description="Acceptance threshold before adjustments")
    threshold_floor: float = Field(default=0.5, description="Lowest threshold after adjustments")
    entity_density_step: float = Field(default=0.02, description="Threshold reduction per extracted entity")
    entity_density_cap: float = Field(default=0.1, description="Maximum entity density reduction")
    specialized_entity_bonus: float = Field(default=0.15, description="Reduction when specialised entities exist")
    high_intent_confidence: float = Field(default=0.95, description="Raw intent confidence that lowers the bar")
    marginal_intent_confidence: float = Field(default=0.7, description="Raw intent confidence that raises the bar")
    intent_quality_adjustment: float = Field(default=0.05, description="Size of the intent quality adjustment")
    override_band: float = Field(default=0.1, description="Band below threshold eligible for attachment override")
    attachment_override_enabled: bool = Field(default=True, description="Route borderline turns with attachments")
    fallback_confidence: float = Field(default=0.3, description="Synthetic confidence attached to fallbacks")


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="SWITCHYARD_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Inference
    model: str = Field(default="openai:gpt-4o-mini", description="Handler model in provider:model format")
    classifier_model: Optional[str] = Field(None, description="Classifier model, defaults to the handler model")
    api_key: Optional[str] = Field(None, description="API key for the LLM provider")
    api_base: Optional[str] = Field(None, description="Optional API base URL")
    max_tokens: int = Field(default=2048, description="Maximum tokens for handler responses")
    model_timeout_seconds: Optional[float] = Field(default=90, description="Timeout while waiting for each model event")
    max_inference_retries: int = Field(default=2, ge=0, le=5, description="Bounded retries for inference failures")

    # Routing
    fallback_handler: str = Field(default="socratic", description="Handler used when routing degrades")

    # Tools
    tool_timeout_seconds: float = Field(default=20.0, gt=0, description="Bounded wait for one tool invocation")
    max_inflight_tools: int = Field(default=3, ge=1, description="Concurrent tool invocations per turn")

    # Sessions
    max_resident_sessions: int = Field(default=256, ge=1, description="Idle sessions kept in memory between turns")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")

    compression: CompressionSettings = Field(default_factory=CompressionSettings)
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)

    @property
    def resolved_classifier_model(self) -> str:
        return self.classifier_model or self.model


def load_settings(**overrides: object) -> Settings:
    """Load settings from environment and `.env`, then apply explicit overrides.

    Args:
        **overrides: Field values taking precedence over the environment

    Returns:
        Settings instance
    """
    return Settings(**overrides)
