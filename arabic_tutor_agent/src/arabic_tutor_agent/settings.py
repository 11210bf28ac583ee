"""
Runtime Settings

Reads provider credentials and tuning knobs from the environment (and a
local .env file). Settings are loaded once by the application and handed to
the factories that build gateways; core classes never read the environment
themselves.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


@dataclass(frozen=True)
class TutorSettings:
    """Provider and persistence configuration."""
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4-1106-preview"
    whisper_api_key: Optional[str] = None
    transcription_model: str = "whisper-1"
    transcription_language: str = "ar"
    transcription_timeout_s: float = 30.0
    chat_max_tokens: int = 1000
    chat_max_attempts: int = 3
    chat_retry_base_delay: float = 0.5
    chat_retry_max_delay: float = 4.0
    max_active_sessions: int = 1000
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])

    @property
    def transcription_api_key(self) -> Optional[str]:
        """Key used for speech-to-text (dedicated key first, then the OpenAI key)."""
        return self.whisper_api_key or self.openai_api_key

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "TutorSettings":
        """Build settings from environment variables."""
        load_dotenv(dotenv_path)

        origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4-1106-preview"),
            whisper_api_key=os.getenv("WHISPER_API_KEY") or None,
            transcription_model=os.getenv("TRANSCRIPTION_MODEL", "whisper-1"),
            transcription_language=os.getenv("TRANSCRIPTION_LANGUAGE", "ar"),
            transcription_timeout_s=_env_float("TRANSCRIPTION_TIMEOUT_S", 30.0),
            chat_max_tokens=_env_int("CHAT_MAX_TOKENS", 1000),
            chat_max_attempts=_env_int("CHAT_MAX_ATTEMPTS", 3),
            chat_retry_base_delay=_env_float("CHAT_RETRY_BASE_DELAY", 0.5),
            chat_retry_max_delay=_env_float("CHAT_RETRY_MAX_DELAY", 4.0),
            max_active_sessions=_env_int("MAX_ACTIVE_SESSIONS", 1000),
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY") or None,
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )
