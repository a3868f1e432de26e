"""Central configuration for the SensAI controller service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"

PLACEHOLDER_PREFIX = "your-"


def is_configured(value: Optional[str]) -> bool:
    """Return False for empty credentials and ``your-...-here`` placeholders."""

    if value is None:
        return False
    stripped = value.strip()
    return bool(stripped) and not stripped.lower().startswith(PLACEHOLDER_PREFIX)


# ============================================================
# Nested Configuration Classes
# ============================================================

class FlowSettings(BaseModel):
    """View flow and timer configuration."""
    variant: Literal["classic", "coached"] = Field("classic", description="Which entry flow the controller starts in")
    reveal_delay_seconds: float = Field(0.05, description="Delay before a state's options reveal (phase 2)")
    countdown_tick_seconds: float = Field(1.0, description="Session countdown tick")
    simulated_sample_seconds: float = Field(3.0, description="Simulated sensor tick")
    remote_sample_seconds: float = Field(5.0, description="Remote sensor polling tick")
    heating_seconds: float = Field(3.0, description="Minimum time shown on the generating screen")
    sensor_source: Literal["auto", "simulated", "remote"] = Field(
        "auto", description="auto = remote when hardware credentials are configured"
    )
    interventions_enabled: bool = Field(True, description="Ask the coach for mid-session messages (coached flow)")


class TemperatureBounds(BaseModel):
    """Valid sauna setting ranges."""
    min_temperature: int = Field(60, description="Lowest selectable temperature (C)")
    max_temperature: int = Field(100, description="Highest selectable temperature (C)")
    newbie_temperature: int = Field(75, description="Temperature used for new users (C)")
    newbie_timer_options: List[int] = Field(default_factory=lambda: [10, 15], description="Durations offered to new users")
    min_timer_minutes: int = Field(5, description="Shortest experiment duration")
    max_timer_minutes: int = Field(60, description="Longest experiment duration")
    recommended_unlock_sessions: int = Field(2, description="Sessions required before recommended settings are offered")


class FirebaseSettings(BaseModel):
    """Firebase auth + Firestore configuration."""
    api_key: str = Field("your-firebase-api-key-here", description="Web API key")
    project_id: str = Field("sauna-senseai", description="Firestore project id")
    app_id: str = Field("default-sens-ai-app", description="Artifact namespace for user documents")
    initial_auth_token: Optional[str] = Field(None, description="Custom token; anonymous sign-in when unset")
    auth_retry_seconds: float = Field(5.0, description="Delay between sign-in attempts")
    subscription_poll_seconds: float = Field(2.0, description="Session document refresh interval")
    auth_url: str = Field("https://identitytoolkit.googleapis.com/v1", description="Identity Toolkit base URL")
    token_url: str = Field("https://securetoken.googleapis.com/v1", description="Secure token base URL")
    firestore_url: str = Field("https://firestore.googleapis.com/v1", description="Firestore REST base URL")


class HarviaSettings(BaseModel):
    """Sauna hardware vendor API."""
    base_url: str = Field("https://api.harvia.io", description="Vendor API base URL")
    email: str = Field("your-harvia-email-here", description="Account e-mail")
    password: str = Field("your-harvia-password-here", description="Account password")
    device_id: str = Field("sauna-1", description="Device controlled during a session")
    login_path: str = Field("/auth/token", description="Token endpoint")
    sensors_path: str = Field("/sensors/latest", description="Latest telemetry endpoint")
    control_path: str = Field("/devices/control", description="Device command endpoint")


class SpeechSettings(BaseModel):
    """Speech synthesis providers."""
    provider: Literal["gemini", "elevenlabs"] = Field("gemini", description="Which synthesis backend to use")
    gemini_api_key: str = Field("your-gemini-api-key-here", description="Gemini API key")
    gemini_model: str = Field("gemini-2.5-flash-preview-tts", description="Gemini TTS model")
    gemini_voice: str = Field("Callirrhoe", description="Prebuilt Gemini voice")
    gemini_url: str = Field("https://generativelanguage.googleapis.com/v1beta", description="Gemini base URL")
    sample_rate: int = Field(24000, description="Gemini PCM sample rate (Hz)")
    elevenlabs_api_key: str = Field("your-elevenlabs-api-key-here", description="ElevenLabs API key")
    elevenlabs_voice_id: str = Field("21m00Tcm4TlvDq8ikWAM", description="ElevenLabs voice")
    elevenlabs_url: str = Field("https://api.elevenlabs.io/v1", description="ElevenLabs base URL")
    elevenlabs_bitrate_kbps: int = Field(128, description="Bitrate of returned mp3, used for duration")
    voice_prompt: str = Field(
        "Say in a relaxed, easy-going, medium-pitched voice: ",
        description="Style prefix sent with every utterance",
    )


class ChatSettings(BaseModel):
    """Chat-completion recommendation delegate."""
    api_key: str = Field("your-openai-api-key-here", description="OpenAI API key")
    base_url: str = Field("https://api.openai.com/v1", description="Chat completion base URL")
    model: str = Field("gpt-4o-mini", description="Chat model")
    temperature: float = Field(0.7, description="Sampling temperature")
    max_tokens: int = Field(160, description="Completion length cap")
    reply_timeout_seconds: float = Field(
        6.0, description="Longest wait for a coach reply before the local rules answer"
    )


class Settings(BaseSettings):
    """Environment-driven settings for controller subsystems."""

    # Controller HTTP Server
    controller_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    controller_port: int = Field(5000, description="Port for FastAPI server")
    ui_event_queue_size: int = Field(16, description="Max buffered UI events per subscriber")
    http_timeout_seconds: float = Field(15.0, description="Timeout for outbound HTTP calls")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")
    log_quiet_loggers: List[str] = Field(
        default_factory=lambda: ["httpx", "httpcore"], description="Loggers held at WARNING"
    )

    # Nested Configuration Objects
    flow: FlowSettings = Field(default_factory=FlowSettings, description="Flow and timer settings")
    bounds: TemperatureBounds = Field(default_factory=TemperatureBounds, description="Setting ranges")
    firebase: FirebaseSettings = Field(default_factory=FirebaseSettings, description="Persistence + auth")
    harvia: HarviaSettings = Field(default_factory=HarviaSettings, description="Sauna hardware API")
    speech: SpeechSettings = Field(default_factory=SpeechSettings, description="Narration providers")
    chat: ChatSettings = Field(default_factory=ChatSettings, description="Recommendation delegate")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper() or "INFO"
        return value

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def persistence_enabled(self) -> bool:
        return is_configured(self.firebase.api_key)

    @property
    def hardware_enabled(self) -> bool:
        return is_configured(self.harvia.email) and is_configured(self.harvia.password)

    @property
    def chat_enabled(self) -> bool:
        return is_configured(self.chat.api_key)

    @property
    def speech_enabled(self) -> bool:
        if self.speech.provider == "elevenlabs":
            return is_configured(self.speech.elevenlabs_api_key)
        return is_configured(self.speech.gemini_api_key)


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
