"""Configuration models for tiersum components."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

DEFAULT_MODEL = "deepseek-chat"

DEFAULT_SYSTEM_PROMPT = (
    "You are a professional dialogue-summarization assistant who accurately "
    "extracts the key information from a conversation."
)


class GenerationConfig(BaseModel):
    """
    Credential and model selection for the text-generation backend.

    ``base_url`` and ``actual_model`` form a routing override for
    OpenAI-compatible relay services. Supply both or neither.

    Example::

        GenerationConfig(api_key="sk-...", model="gemini-2.5-flash", thinking_budget=512)
        GenerationConfig(
            api_key="sk-...",
            base_url="https://relay.example.com",
            actual_model="gpt-4o-mini",
        )
    """

    api_key: SecretStr
    """Backend credential. Required and non-empty; never logged."""

    model: str = Field(default=DEFAULT_MODEL, min_length=1)

    base_url: str | None = None
    actual_model: str | None = None

    thinking_budget: int | None = Field(
        default=None,
        ge=0,
        description="Reasoning-token hint. Forwarded only to models that accept it.",
    )

    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    max_tokens: int = Field(default=2_000, ge=1)

    timeout_secs: float = Field(
        default=60.0,
        gt=0,
        description="Upper bound on one generation call. Expiry is reported as unavailability.",
    )

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value().strip():
            raise ValueError("api_key must be non-empty")
        return value

    @model_validator(mode="after")
    def validate_routing_pair(self) -> GenerationConfig:
        if (self.base_url is None) != (self.actual_model is None):
            raise ValueError("base_url and actual_model must be supplied together or not at all")
        return self

    @property
    def has_routing_override(self) -> bool:
        return self.base_url is not None and self.actual_model is not None


class PromptConfig(BaseModel):
    """Wording and length policy for leaf and merge prompts."""

    user_label: str = Field(default="User", min_length=1)
    """Speaker label for messages with role ``user``."""

    leaf_max_chars: int = Field(default=200, ge=20)
    merge_max_chars: int = Field(default=300, ge=20)

    leaf_template: str | None = Field(
        default=None,
        description="Jinja2 override for leaf prompts. Must reference {{ transcript }}.",
    )
    merge_template: str | None = Field(
        default=None,
        description="Jinja2 override for merge prompts. Must reference {{ summaries }}.",
    )


class StoreConfig(BaseModel):
    """Configuration for the SQLite persistence layer."""

    db_path: str = Field(
        default="~/.tiersum/tiersum.db",
        description="Path to the SQLite database file. ~ and relative paths are resolved eagerly.",
    )

    wal_mode: bool = True
    """Use WAL journal mode for better concurrent read performance."""

    connection_timeout: float = 30.0
    """Seconds to wait for the database connection before raising."""

    @field_validator("db_path", mode="before")
    @classmethod
    def expand_db_path(cls, value: str | Path) -> str:
        return str(Path(value).expanduser().resolve())


class TiersumConfig(BaseModel):
    """
    Top-level configuration, built once at process start and passed to constructors.

    Only ``generation`` is required; the remaining sub-configs have defaults.

    Example::

        config = TiersumConfig(
            generation=GenerationConfig(api_key="sk-..."),
            prompts=PromptConfig(leaf_max_chars=150),
            store=StoreConfig(db_path="/var/lib/tiersum/summaries.db"),
        )
    """

    generation: GenerationConfig
    prompts: PromptConfig = Field(default_factory=PromptConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
