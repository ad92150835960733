"""Runtime configuration read from the environment."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from loguru import logger

APP_NAME = "chatty"

_ZSHRC_KEY = re.compile(r"(?:export\s+)?OPENAI_API_KEY\s*=\s*['\"]?([^'\"\n]+)['\"]?")


class ConfigError(Exception):
    """Raised when no usable configuration can be derived."""


def _key_from_zshrc(home: Optional[str]) -> Optional[str]:
    # Convenience for shells where the key is exported in ~/.zshrc but the
    # variable did not make it into this process.
    if not home:
        return None
    zshrc_path = Path(home) / ".zshrc"
    if not zshrc_path.is_file():
        return None
    match = _ZSHRC_KEY.search(zshrc_path.read_text(errors="replace"))
    if match:
        logger.debug("using OPENAI_API_KEY from {}", zshrc_path)
        return match.group(1).strip()
    return None


def _data_home(environ: Mapping[str, str]) -> Path:
    xdg = environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / APP_NAME
    home = environ.get("HOME")
    if home:
        return Path(home) / ".local" / "share" / APP_NAME
    raise ConfigError("could not find session directory, one of $HOME and $XDG_DATA_HOME must be set")


@dataclass
class ChattyConfig:
    data_home: Path
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: Optional[float] = None
    log_level: str = "WARNING"

    @property
    def sessions_dir(self) -> Path:
        return self.data_home / "sessions"

    @property
    def last_session_path(self) -> Path:
        return self.data_home / ".last_session"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ChattyConfig":
        env = os.environ if environ is None else environ

        timeout: Optional[float] = None
        raw_timeout = env.get("CHATTY_TIMEOUT")
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError:
                raise ConfigError(f"CHATTY_TIMEOUT must be a number, got {raw_timeout!r}") from None

        return cls(
            data_home=_data_home(env),
            api_key=env.get("OPENAI_API_KEY") or _key_from_zshrc(env.get("HOME")),
            base_url=env.get("OPENAI_BASE_URL") or None,
            timeout=timeout,
            log_level=env.get("CHATTY_LOG_LEVEL", "WARNING"),
        )
