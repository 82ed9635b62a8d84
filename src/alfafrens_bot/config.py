"""Configuration loading and validation."""

from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Protocol

import yaml
from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_API_URL = "https://friendx-git-ai-api.preview.superfluid.finance"
DEFAULT_AGENT_ID = "alfafrens-agent"


class ConfigError(ValueError):
    """A required setting is missing or unusable."""


class ModelTier(str, Enum):
    """Generation quality/cost class."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class APIConfig(BaseModel):
    """Remote channel API configuration."""

    api_key: SecretStr | None = None
    base_url: str = DEFAULT_API_URL
    channel_id: str = ""
    user_id: str = ""
    username: str = "AI Assistant"
    request_timeout_seconds: Annotated[float, Field(gt=0)] = 10.0

    @property
    def agent_id(self) -> str:
        """Identity the agent authors claims under; never empty."""
        return self.user_id or self.username or DEFAULT_AGENT_ID


class PollingConfig(BaseModel):
    """Message polling configuration."""

    poll_interval_seconds: Annotated[int, Field(ge=1)] = 15
    batch_size: Annotated[int, Field(ge=1)] = 10
    history_size: Annotated[int, Field(ge=1)] = 50
    context_messages: Annotated[int, Field(ge=0)] = 10
    initial_lookback_seconds: Annotated[int, Field(ge=0)] = 300
    sent_registry_size: Annotated[int, Field(ge=1)] = 1000
    stats_log_interval: Annotated[int, Field(ge=1)] = 50


class PostingConfig(BaseModel):
    """Autonomous posting configuration."""

    enabled: bool = False
    interval_min_seconds: Annotated[int, Field(ge=1)] = 3600
    interval_max_seconds: Annotated[int, Field(ge=1)] = 7200
    announce_on_start: bool = False
    startup_message: str = (
        "Hey AlfaFrens! I'm back online and ready to help with your questions. "
        "Feel free to ask anything!"
    )

    @model_validator(mode="after")
    def _check_interval_order(self) -> "PostingConfig":
        if self.interval_max_seconds < self.interval_min_seconds:
            raise ValueError("interval_max_seconds must be >= interval_min_seconds")
        return self


class KindConfig(BaseModel):
    """Template and model tier for one kind of generation."""

    template: str = ""
    model_tier: ModelTier | None = None


class GenerationConfig(BaseModel):
    """Generation templates, tiers and limits."""

    default_model_tier: ModelTier = ModelTier.MEDIUM
    evaluation: KindConfig = Field(default_factory=lambda: KindConfig(model_tier=ModelTier.SMALL))
    response: KindConfig = Field(default_factory=KindConfig)
    post: KindConfig = Field(default_factory=KindConfig)
    timeout_seconds: Annotated[float, Field(gt=0)] = 30.0
    stop_sequences: list[str] = Field(default_factory=lambda: ["\n\n"])
    max_output_tokens: Annotated[int, Field(ge=1)] = 1024
    system_prompt: str = "You are a helpful assistant that responds as accurately as possible."

    def tier_for(self, kind: str) -> ModelTier:
        """Resolve the model tier for a generation kind."""
        kind_config: KindConfig = getattr(self, kind)
        return kind_config.model_tier or self.default_model_tier


class LLMConfig(BaseModel):
    """LLM provider configuration."""

    google_api_key: SecretStr | None = None
    anthropic_api_key: SecretStr | None = None
    tier_models: dict[ModelTier, str] = Field(
        default_factory=lambda: {
            ModelTier.SMALL: "gemini-2.0-flash",
            ModelTier.MEDIUM: "gemini-2.5-flash",
            ModelTier.LARGE: "claude-sonnet-4-20250514",
        }
    )


class EvaluationStrategy(str, Enum):
    """How the pipeline decides whether to reply."""

    ALWAYS = "always"
    LLM = "llm"


class EvaluationConfig(BaseModel):
    """Response-worthiness evaluation configuration."""

    strategy: EvaluationStrategy = EvaluationStrategy.ALWAYS


class FactConfig(BaseModel):
    """Fact validation thresholds."""

    enabled: bool = True
    acceptance_threshold: Annotated[float, Field(ge=0.0, le=1.0)] = 0.7
    relevance_threshold: Annotated[float, Field(ge=0.0, le=1.0)] = 0.5
    contradiction_similarity: Annotated[float, Field(ge=0.0, le=1.0)] = 0.8
    contradiction_confidence: Annotated[float, Field(ge=0.0, le=1.0)] = 0.7
    recent_window: Annotated[int, Field(ge=1)] = 100


class MemoryConfig(BaseModel):
    """Memory store configuration."""

    chroma_path: Path = Path("./data/chroma")
    embedding_model: str = "all-MiniLM-L6-v2"
    checkpoint_path: Path = Path("./data/cache.db")
    knowledge_results: Annotated[int, Field(ge=0)] = 3


class CharacterConfig(BaseModel):
    """Persona used to fill generation templates."""

    name: str = "AI Assistant"
    adjectives: list[str] = Field(default_factory=lambda: ["helpful", "concise"])
    topics: list[str] = Field(default_factory=list)


class Config(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ALFAFRENS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    api: APIConfig = Field(default_factory=APIConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    posting: PostingConfig = Field(default_factory=PostingConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    evaluation: EvaluationConfig = Field(default_factory=EvaluationConfig)
    facts: FactConfig = Field(default_factory=FactConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    character: CharacterConfig = Field(default_factory=CharacterConfig)


def load_config(config_path: Path | str | None = None) -> Config:
    """Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
    1. YAML config file
    2. Environment variables (ALFAFRENS_* prefix, ``__`` between section and key)
    3. Default values

    Args:
        config_path: Path to YAML config file. If None, tries ./config.yaml

    Returns:
        Validated configuration object
    """
    if config_path is None:
        config_path = Path("config.yaml")
    else:
        config_path = Path(config_path)

    yaml_config: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}

    # "api:" with no values parses as None
    yaml_config = {k: v for k, v in yaml_config.items() if v is not None}

    return Config(**yaml_config)


def require_api_settings(config: Config) -> None:
    """Raise ConfigError unless the settings needed for remote calls are present."""
    if not config.api.api_key or not config.api.api_key.get_secret_value():
        raise ConfigError("AlfaFrens API key is required")
    if not config.api.channel_id:
        raise ConfigError("AlfaFrens channel id is required")


class SettingsProvider(Protocol):
    """Source of string-valued named options supplied by a host."""

    def get_setting(self, name: str) -> str | None: ...


class MappingSettings:
    """SettingsProvider over any mapping, e.g. ``os.environ``."""

    def __init__(self, values: Mapping[str, str]):
        self._values = values

    def get_setting(self, name: str) -> str | None:
        value = self._values.get(name)
        return value if value else None


def parse_model_tier(value: str | None) -> ModelTier | None:
    """Parse SMALL/MEDIUM/LARGE (any case); anything else is None."""
    if not value:
        return None
    try:
        return ModelTier(value.strip().lower())
    except ValueError:
        return None


def _int_setting(provider: SettingsProvider, name: str) -> int | None:
    value = provider.get_setting(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def config_from_settings(provider: SettingsProvider, base: Config | None = None) -> Config:
    """Build a Config from flat ALFAFRENS_* host settings.

    Settings that are absent keep the value from ``base`` (or the defaults).
    """
    data: dict[str, Any] = (base or Config()).model_dump()
    get = provider.get_setting

    api = data["api"]
    if get("ALFAFRENS_API_KEY"):
        api["api_key"] = get("ALFAFRENS_API_KEY")
    for setting, key in (
        ("ALFAFRENS_API_URL", "base_url"),
        ("ALFAFRENS_CHANNEL_ID", "channel_id"),
        ("ALFAFRENS_USER_ID", "user_id"),
        ("ALFAFRENS_USERNAME", "username"),
    ):
        if get(setting):
            api[key] = get(setting)
    polling = data["polling"]
    if (interval := _int_setting(provider, "ALFAFRENS_POLL_INTERVAL")) is not None:
        polling["poll_interval_seconds"] = interval
    if (history := _int_setting(provider, "ALFAFRENS_HISTORY_COUNT")) is not None:
        polling["context_messages"] = history

    posting = data["posting"]
    if get("ALFAFRENS_ENABLE_POST") is not None:
        posting["enabled"] = get("ALFAFRENS_ENABLE_POST") == "true"
    if (low := _int_setting(provider, "ALFAFRENS_POST_INTERVAL_MIN")) is not None:
        posting["interval_min_seconds"] = low
    if (high := _int_setting(provider, "ALFAFRENS_POST_INTERVAL_MAX")) is not None:
        posting["interval_max_seconds"] = high

    generation = data["generation"]
    default_tier = parse_model_tier(get("ALFAFRENS_MODEL_CLASS"))
    if default_tier:
        generation["default_model_tier"] = default_tier
    for kind in ("evaluation", "response", "post"):
        upper = kind.upper()
        tier = parse_model_tier(get(f"ALFAFRENS_{upper}_MODEL_CLASS"))
        if tier:
            generation[kind]["model_tier"] = tier
        template = get(f"ALFAFRENS_{upper}_TEMPLATE")
        if template:
            generation[kind]["template"] = template

    return Config(**data)
