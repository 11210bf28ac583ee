"""
Error Taxonomy

Every failure the tutoring pipeline can surface to a caller. Each error
carries an HTTP-equivalent status code and a stable machine-readable code so
the backend can map it to a response without inspecting messages.
"""

from typing import Optional


class TutorError(Exception):
    """Base class for all pipeline errors."""
    status_code: int = 500
    code: str = "tutor_error"

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


# ==================== Validation (4xx, never retried) ====================

class ValidationError(TutorError):
    """Bad or missing caller input."""
    status_code = 400
    code = "validation_error"


class MissingAudioError(ValidationError):
    code = "audio_missing"


class InvalidAudioError(ValidationError):
    code = "audio_invalid"


class AudioTooLargeError(ValidationError):
    status_code = 413
    code = "audio_too_large"


class UnsupportedAudioTypeError(ValidationError):
    status_code = 415
    code = "audio_unsupported_type"


class InvalidModeError(ValidationError):
    code = "transcription_mode_invalid"


# ==================== Configuration ====================

class ConfigurationError(TutorError):
    """A real provider was requested but no credential is configured."""
    status_code = 501
    code = "not_configured"


# ==================== External services ====================

class GatewayError(TutorError):
    """Failure talking to an external AI service."""
    status_code = 502
    code = "gateway_error"


class TransientServiceError(GatewayError):
    """Network failure, timeout or provider 5xx that outlived the retry budget."""
    code = "service_unavailable"


class UpstreamClientError(GatewayError):
    """The provider rejected the request (4xx). Retrying will not help."""
    code = "upstream_rejected"
