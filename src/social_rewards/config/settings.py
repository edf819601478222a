"""Runtime settings loaded from environment variables."""

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from social_rewards.domain.subject_keys import normalize_handle

NonEmptyStr = Annotated[str, Field(min_length=1)]
NonNegativeFloat = Annotated[float, Field(ge=0.0)]
PositiveFloat = Annotated[float, Field(gt=0.0)]
PositiveInt = Annotated[int, Field(gt=0)]
StateTtlSeconds = Annotated[int, Field(ge=300, le=600)]


class Settings(BaseSettings):
    """Environment-driven application settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: NonEmptyStr = Field(validation_alias="DATABASE_URL")
    x_client_id: NonEmptyStr = Field(
        validation_alias=AliasChoices("X_CLIENT_ID", "TWITTER_CLIENT_ID"),
    )
    x_client_secret: NonEmptyStr | None = Field(
        default=None,
        validation_alias=AliasChoices("X_CLIENT_SECRET", "TWITTER_CLIENT_SECRET"),
    )
    x_redirect_uri: HttpUrl = Field(
        validation_alias=AliasChoices("X_REDIRECT_URI", "TWITTER_REDIRECT_URI"),
    )
    x_target_handle: NonEmptyStr = Field(
        default="joinfroggys",
        validation_alias=AliasChoices("X_TARGET_HANDLE", "X_APP_HANDLE"),
    )
    x_required_phrase: NonEmptyStr = Field(
        default="RIBBIT",
        validation_alias=AliasChoices("X_REQUIRED_PHRASE", "X_REQUIRED_TWEET_PHRASE"),
    )
    x_api_base_url: HttpUrl = Field(
        default=HttpUrl("https://api.x.com"),
        validation_alias="X_API_BASE_URL",
    )
    x_authorize_url: HttpUrl = Field(
        default=HttpUrl("https://x.com/i/oauth2/authorize"),
        validation_alias="X_AUTHORIZE_URL",
    )
    x_bearer_token: NonEmptyStr | None = Field(
        default=None,
        validation_alias=AliasChoices("X_BEARER_TOKEN", "TWITTER_BEARER_TOKEN"),
    )
    x_target_post_id: NonEmptyStr | None = Field(
        default=None,
        validation_alias="X_TARGET_POST_ID",
    )
    x_http_timeout_seconds: PositiveFloat = Field(
        default=20.0,
        validation_alias="X_HTTP_TIMEOUT_SECONDS",
    )
    pkce_state_ttl_seconds: StateTtlSeconds = Field(
        default=300,
        validation_alias="PKCE_STATE_TTL_SECONDS",
    )
    pkce_sweep_interval_seconds: PositiveFloat = Field(
        default=60.0,
        validation_alias="PKCE_SWEEP_INTERVAL_SECONDS",
    )
    pending_auth_store: Literal["database", "memory"] = Field(
        default="database",
        validation_alias="PENDING_AUTH_STORE",
    )
    scan_window_hours: PositiveInt = Field(default=12, validation_alias="SCAN_WINDOW_HOURS")
    scan_trigger_secret: NonEmptyStr = Field(
        validation_alias=AliasChoices("SCAN_TRIGGER_SECRET", "CRON_SECRET"),
    )
    signing_secret: NonEmptyStr = Field(validation_alias="SIGNING_SECRET")
    credential_cookie_max_age_seconds: PositiveInt = Field(
        default=7 * 24 * 60 * 60,
        validation_alias="CREDENTIAL_COOKIE_MAX_AGE_SECONDS",
    )
    follow_reward_points: PositiveInt = Field(default=10, validation_alias="FOLLOW_REWARD_POINTS")
    post_reward_points: PositiveInt = Field(default=10, validation_alias="POST_REWARD_POINTS")
    reply_reward_points: PositiveInt = Field(default=1, validation_alias="REPLY_REWARD_POINTS")
    windowed_reward_points: PositiveInt = Field(
        default=1,
        validation_alias="WINDOWED_REWARD_POINTS",
    )
    post_auth_redirect_url: HttpUrl | None = Field(
        default=None,
        validation_alias="POST_AUTH_REDIRECT_URL",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @field_validator("x_target_handle", mode="before")
    @classmethod
    def _strip_handle_prefix(cls, value: object) -> object:
        if isinstance(value, str):
            return normalize_handle(handle=value)
        return value


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Load and cache application settings."""

    return Settings()  # type: ignore[call-arg]
