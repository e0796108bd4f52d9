from __future__ import annotations


class TranscriberError(Exception):
    """Base class for errors raised by the transcription client."""


class ConfigurationError(TranscriberError):
    """Required configuration (e.g. the API key) is missing or invalid."""


class DeviceUnavailable(TranscriberError):
    """No input device matches the requested audio format."""


class AuthenticationError(TranscriberError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(TranscriberError):
    """The remote service answered with something we cannot interpret."""


class MalformedEventError(ProtocolError):
    pass


class SessionFailed(TranscriberError):
    """The streaming session ended because of an I/O or device failure."""
