"""Configuration settings models using Pydantic."""

from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SpeakerSelection = Literal["auto", "round_robin", "random"]


class GenerationParams(BaseModel):
    """Generation parameters sent to the backend with every prompt.

    Every field is optional so a job can carry a partial set that is laid
    over the session defaults. Keys the backend understands but this model
    does not name are passed through untouched.
    """

    model_config = ConfigDict(extra="allow")

    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    top_k: Optional[int] = Field(default=None, ge=0)
    repetition_penalty: Optional[float] = Field(default=None, ge=0.0)
    stop: Optional[list[str]] = None
    stream: Optional[bool] = None

    def merged_over(self, defaults: "GenerationParams") -> "GenerationParams":
        """Return the defaults with every parameter set here taking precedence."""
        overrides = self.model_dump(exclude_none=True)
        base = defaults.model_dump(exclude_none=True)
        return GenerationParams(**{**base, **overrides})

    def to_payload(self) -> dict[str, Any]:
        """Parameters as they appear in a request body."""
        return self.model_dump(exclude_none=True)


class BackendConfig(BaseModel):
    """Where and how generation requests are sent."""

    base_url: str = "http://localhost:8000"
    path: str = "/api/user/writersroom/generate"
    api_key: Optional[str] = None
    timeout_seconds: float = Field(default=120.0, gt=0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("base_url cannot be empty")
        return v.strip().rstrip("/")


class ConversationConfig(BaseModel):
    """Configuration for turn-taking behavior."""

    speaker_selection: SpeakerSelection = "auto"
    allow_repeat_speaker: bool = False
    username: str = "user"
    moderator_timeout_seconds: float = Field(default=15.0, gt=0)
    moderator_window: int = Field(default=8, ge=1)


class StorageConfig(BaseModel):
    """Configuration for data storage."""

    database_path: str = "~/.troupe/prompts.db"

    @property
    def resolved_database_path(self) -> Path:
        """Get the resolved database path with ~ expanded."""
        return Path(self.database_path).expanduser()


def _default_generation() -> GenerationParams:
    return GenerationParams(temperature=0.7, max_tokens=300, top_p=1.0, stream=False)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TROUPE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("api_key", "TROUPE_API_KEY"),
    )

    # Nested configurations
    backend: BackendConfig = Field(default_factory=BackendConfig)
    generation: GenerationParams = Field(default_factory=_default_generation)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @field_validator("generation", mode="before")
    @classmethod
    def merge_generation_defaults(cls, v: Any) -> Any:
        """A partial ``generation`` section only replaces the keys it names."""
        if isinstance(v, dict):
            return {**_default_generation().model_dump(exclude_none=True), **v}
        return v

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        """Validate API keys are not empty strings."""
        if v is not None and not v.strip():
            return None
        return v

    @property
    def resolved_api_key(self) -> Optional[str]:
        """The top-level key wins over one nested under ``backend``."""
        return self.api_key or self.backend.api_key
