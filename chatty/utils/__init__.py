from .ansi import (
    Ansi,
    ERROR_LABEL,
    LAST_SESSION_LABEL,
    console,
    err_console,
)
from .spinner import Spinner

__all__ = [
    "Ansi",
    "ERROR_LABEL",
    "LAST_SESSION_LABEL",
    "console",
    "err_console",
    "Spinner",
]
