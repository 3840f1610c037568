"""Exception hierarchy shared by the server and the recorder client."""


class VoiceScribeError(Exception):
    """Base class for all VoiceScribe errors."""


# Server side

class InvalidInput(VoiceScribeError):
    """Upload missing or not an audio file."""


class ServiceUnavailable(VoiceScribeError):
    """A required external credential is not configured."""


class UpstreamFailure(VoiceScribeError):
    """Speech-to-text or language-model call failed or returned unusable output."""


class StorageFailure(VoiceScribeError):
    """Object storage upload or delete failed."""


class NotFound(VoiceScribeError):
    """Requested transcription record does not exist."""


class InternalError(VoiceScribeError):
    """Unexpected failure; details are only logged."""


class ConfigurationError(VoiceScribeError):
    """Required settings are missing."""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(
            f"Missing required settings: {', '.join(self.missing)}"
        )


# Recorder side

class CaptureError(VoiceScribeError):
    """Base class for microphone capture errors."""


class CapturePermissionError(CaptureError):
    """The input device could not be opened."""


class CaptureStateError(CaptureError):
    """Operation not allowed in the current recording state."""


class TranscriptionRequestError(VoiceScribeError):
    """Upload to the transcription server failed; message is user-displayable."""


class SubmissionInProgress(VoiceScribeError):
    """A transcription request is already in flight."""
