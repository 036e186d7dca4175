"""
Error taxonomy for the voice agent.

Fatal at startup:      ConfigurationError, PrewarmError
Ends the session:      TransportConnectionError
Recovered per turn:    TranscriptionError, GenerationError, SynthesisError
Recovered per tool:    ToolArgumentError, ToolExecutionError, ToolLoopExceeded

Recoverable failures are never silent: get_user_message() gives the line the
agent speaks instead.
"""
from typing import Optional


class VoiceAgentError(Exception):
    """Base exception for voice agent errors."""

    pass


class ConfigurationError(VoiceAgentError):
    """Raised when required configuration is missing or invalid."""

    def __init__(self, message: str, missing: Optional[list[str]] = None):
        super().__init__(message)
        self.missing = missing or []


class PrewarmError(VoiceAgentError):
    """Raised when the detector model cannot be loaded."""

    pass


class TransportConnectionError(VoiceAgentError, ConnectionError):
    """Raised when the room or the participant connection is lost."""

    pass


class StageError(VoiceAgentError):
    """Base class for capability stage failures."""

    pass


class TranscriptionError(StageError):
    """Raised when a speech segment cannot be transcribed."""

    pass


class GenerationError(StageError):
    """Raised when the language model fails to produce a response."""

    pass


class SynthesisError(StageError):
    """Raised when an utterance cannot be synthesized or played."""

    pass


class ToolError(VoiceAgentError):
    """Base class for tool invocation failures."""

    def __init__(self, message: str, tool_name: Optional[str] = None):
        super().__init__(message)
        self.tool_name = tool_name


class ToolArgumentError(ToolError):
    """Raised when a tool call names an unknown tool or has invalid arguments."""

    pass


class ToolExecutionError(ToolError):
    """Raised when a tool handler fails; keeps the upstream status if any."""

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, tool_name=tool_name)
        self.status_code = status_code


class ToolLoopExceeded(ToolError):
    """Raised when the responder keeps requesting tools past the round limit."""

    def __init__(self, limit: int):
        super().__init__(f"Tool call limit of {limit} rounds exceeded")
        self.limit = limit


DEFAULT_USER_MESSAGE = "Sorry, something went wrong. Could you say that again?"

USER_MESSAGES = {
    TranscriptionError: "Sorry, I didn't catch that.",
    GenerationError: "I'm having trouble responding right now.",
    ToolLoopExceeded: "Sorry, I couldn't finish looking that up.",
}


def get_user_message(error: BaseException) -> str:
    """Spoken fallback line for a recoverable error."""
    for error_type, message in USER_MESSAGES.items():
        if isinstance(error, error_type):
            return message
    return DEFAULT_USER_MESSAGE
