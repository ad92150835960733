from .errors import AIChatError, ErrorKind, strerror
from .session import (
    BUFFER_SIZE,
    DEFAULT_MODEL,
    DEFAULT_TEMPERATURE,
    MAX_MESSAGES,
    SUPPORTED_MODELS,
    Message,
    Model,
    Role,
    Session,
)

__all__ = [
    "AIChatError",
    "ErrorKind",
    "strerror",
    "BUFFER_SIZE",
    "DEFAULT_MODEL",
    "DEFAULT_TEMPERATURE",
    "MAX_MESSAGES",
    "SUPPORTED_MODELS",
    "Message",
    "Model",
    "Role",
    "Session",
]
