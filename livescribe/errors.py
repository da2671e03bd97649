"""Error taxonomy for the live transcription subsystem."""


class LiveScribeError(Exception):
    """Base class for all livescribe errors."""
    pass


class CaptureUnavailable(LiveScribeError):
    """Raised when the microphone cannot be opened. Fatal to the session."""
    pass


class ConnectionFailed(LiveScribeError):
    """Raised when the speech backend cannot be reached at session start."""
    pass


class DecodeError(LiveScribeError):
    """Raised when an audio chunk cannot be decoded. The chunk is dropped."""
    pass


class ProtocolError(LiveScribeError):
    """Raised for malformed or unrecognized inbound messages. Logged and ignored."""
    pass
