"""
Transcription Gateway

Admits an uploaded audio clip and turns it into text, either through the mock
transcriber (default, offline) or a real speech-to-text provider.

Admission rules (checked before anything else, in this order):
1. Audio must be present
2. Audio must be an AudioPayload holding bytes
3. At most MAX_AUDIO_BYTES (5 MiB)
4. A declared MIME type must be in ALLOWED_MIME_TYPES (an empty type is accepted)
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from openai import AsyncOpenAI

from arabic_tutor_agent.errors import (
    AudioTooLargeError,
    ConfigurationError,
    InvalidAudioError,
    InvalidModeError,
    MissingAudioError,
    UnsupportedAudioTypeError,
)
from arabic_tutor_agent.mock_transcriber import MockTranscriber
from arabic_tutor_agent.pronunciation import PhonemeAnalysis
from arabic_tutor_agent.retry_policy import RetryPolicy
from arabic_tutor_agent.settings import TutorSettings

logger = logging.getLogger(__name__)

MAX_AUDIO_BYTES = 5 * 1024 * 1024

ALLOWED_MIME_TYPES = frozenset({
    "audio/wav",
    "audio/x-wav",
    "audio/mpeg",
    "audio/mp3",
    "audio/webm",
    "audio/ogg",
    "audio/x-m4a",
    "audio/m4a",
})

MODE_MOCK = "mock"
MODE_REAL = "real"
MODES = (MODE_MOCK, MODE_REAL)


@dataclass(frozen=True)
class AudioPayload:
    """Audio bytes as received from the client."""
    data: bytes
    mime_type: str = ""
    filename: str = "recording.webm"

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class TranscriptionResult:
    """
    Outcome of a transcription.

    confidence and phonemes are only known on the mock path; the real provider
    returns text only, so they stay None there.
    """
    transcribed_text: str
    expected_text: str
    mode: str
    confidence: Optional[float] = None
    phonemes: Optional[PhonemeAnalysis] = None


def normalize_mime_type(mime_type: Optional[str]) -> str:
    """Lower-case the type and drop parameters such as ';codecs=opus'."""
    return (mime_type or "").split(";", 1)[0].strip().lower()


def validate_audio(audio: Any) -> AudioPayload:
    """Apply the admission rules and return the accepted payload."""
    if audio is None:
        raise MissingAudioError("No audio file provided (field name `audio`)")

    if not isinstance(audio, AudioPayload) or not isinstance(audio.data, (bytes, bytearray)):
        raise InvalidAudioError("Uploaded audio is not a valid file")

    if audio.size > MAX_AUDIO_BYTES:
        raise AudioTooLargeError(f"Audio file too large. Max {MAX_AUDIO_BYTES} bytes allowed.")

    mime = normalize_mime_type(audio.mime_type)
    if mime and mime not in ALLOWED_MIME_TYPES:
        raise UnsupportedAudioTypeError(f"Unsupported audio mime type: {mime}")

    return audio


class TranscriptionGateway:
    """Mock or real speech-to-text behind one call."""

    def __init__(
        self,
        mock_transcriber: Optional[MockTranscriber] = None,
        client: Optional[AsyncOpenAI] = None,
        model: str = "whisper-1",
        language: str = "ar",
        retry_policy: Optional[RetryPolicy] = None,
        timeout_s: Optional[float] = None,
    ):
        self.mock_transcriber = mock_transcriber or MockTranscriber()
        self.client = client
        self.model = model
        self.language = language
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout_s = timeout_s

    @classmethod
    def from_settings(
        cls,
        settings: TutorSettings,
        mock_transcriber: Optional[MockTranscriber] = None,
    ) -> "TranscriptionGateway":
        api_key = settings.transcription_api_key
        client = AsyncOpenAI(api_key=api_key, max_retries=0) if api_key else None
        return cls(
            mock_transcriber=mock_transcriber,
            client=client,
            model=settings.transcription_model,
            language=settings.transcription_language,
            retry_policy=RetryPolicy(
                max_attempts=settings.chat_max_attempts,
                base_delay=settings.chat_retry_base_delay,
                max_delay=settings.chat_retry_max_delay,
            ),
            timeout_s=settings.transcription_timeout_s,
        )

    @property
    def real_configured(self) -> bool:
        return self.client is not None

    async def transcribe(
        self,
        audio: Any,
        expected_text: str = "",
        mode: str = MODE_MOCK,
    ) -> TranscriptionResult:
        """
        Validate the clip and transcribe it.

        Raises:
            ValidationError subclasses: the clip or mode was rejected
            ConfigurationError: real mode without a credential
            GatewayError subclasses: the provider call failed
        """
        payload = validate_audio(audio)
        mode = mode or MODE_MOCK

        if mode not in MODES:
            raise InvalidModeError(f"Unknown transcription mode: {mode}")

        if mode == MODE_MOCK:
            simulated = self.mock_transcriber.simulate(expected_text)
            return TranscriptionResult(
                transcribed_text=simulated.transcribed,
                expected_text=expected_text,
                mode=MODE_MOCK,
                confidence=simulated.confidence,
                phonemes=simulated.phonemes,
            )

        if not self.real_configured:
            raise ConfigurationError(
                "Real transcription mode requested but server is not configured (missing API key)"
            )

        text = await self._transcribe_real(payload)
        return TranscriptionResult(
            transcribed_text=text,
            expected_text=expected_text,
            mode=MODE_REAL,
        )

    async def _transcribe_real(self, payload: AudioPayload) -> str:
        upload = (
            payload.filename or "recording.webm",
            bytes(payload.data),
            normalize_mime_type(payload.mime_type) or "audio/webm",
        )

        async def _call():
            return await self.client.audio.transcriptions.create(
                file=upload,
                model=self.model,
                language=self.language,
            )

        logger.info(f"🎙️ [Transcription] Sending {payload.size} bytes to {self.model}")
        transcription = await self.retry_policy.run(
            _call, description="Transcription", timeout=self.timeout_s
        )
        return getattr(transcription, "text", "") or ""
