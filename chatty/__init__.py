"""Persistent command-line conversations with OpenAI chat models.

Features
--------
1. Session persistence: every conversation is a JSON document under the data home
   (``$XDG_DATA_HOME/chatty`` or ``~/.local/share/chatty``) and is extended in place.
2. Bounded sessions: message text lives in a fixed-size arena, so a session can never
   exceed 4096 messages or 32768 bytes of text.
3. Pipe friendly: user text is read from stdin and the reply written to stdout.

Run `python -m chatty --help` or use the `chatty` console script.
"""
# Re-export useful symbols for convenience
from .core import AIChatError, ErrorKind, Message, Model, Role, Session, SUPPORTED_MODELS, strerror
from .core.client import CompletionClient, CompletionResult, ResponseParser, extend
from .store import SessionStore
from .cli import ChatCLI, run_cli

__version__ = "0.1.0"

__all__ = [
    "AIChatError",
    "ErrorKind",
    "Message",
    "Model",
    "Role",
    "Session",
    "SUPPORTED_MODELS",
    "strerror",
    "CompletionClient",
    "CompletionResult",
    "ResponseParser",
    "extend",
    "SessionStore",
    "ChatCLI",
    "run_cli",
]
