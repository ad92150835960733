"""Spinner shown while waiting on the completion endpoint."""
from __future__ import annotations

from yaspin import yaspin  # type: ignore

from .ansi import console


class Spinner:
    """Display a small spinner on an interactive terminal while work is done.

    Nothing is drawn when stdout is not a terminal so piped replies stay clean.
    """

    def __init__(self, text: str = "", enabled: bool | None = None):
        self._text = text
        self._enabled = console.is_terminal if enabled is None else enabled
        self._started = False
        self._spinner = yaspin(text=text, side="right") if self._enabled else None

    def __enter__(self) -> "Spinner":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def start(self) -> None:
        if self._started or self._spinner is None:
            return
        self._spinner.start()
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return
        self._spinner.stop()
        self._started = False
