"""Colour and styling helpers built on :mod:`rich`."""

import os
from rich.console import Console


# stdout carries replies and exported JSON only; everything else goes to stderr.
console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)


class Ansi:
    """Lightweight collection of style names used throughout the app."""

    BOLD = "bold"

    FG_GREEN = "green"
    FG_RED = "red"

    @staticmethod
    def style(text: str, *codes: str) -> str:
        """Return *text* wrapped in rich markup unless ``NO_COLOR`` is set."""
        if os.getenv("NO_COLOR") is not None:
            return text
        style = " ".join(codes)
        return f"[{style}]{text}[/]"


# Common labels used throughout the application
ERROR_LABEL = Ansi.style("error", Ansi.FG_RED, Ansi.BOLD)
LAST_SESSION_LABEL = Ansi.style("(last session)", Ansi.FG_GREEN)
