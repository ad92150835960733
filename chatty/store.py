"""On-disk session files under the chatty data home."""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional, Tuple

from loguru import logger

from .config import ChattyConfig
from .core import Session

TMP_SUFFIX = ".tmp"


def validate_name(name: str) -> str:
    """Return *name* if it is usable as a session file name, else raise ``ValueError``."""
    if not name:
        raise ValueError("session name must not be empty")
    if name in (".", "..") or "/" in name or "\\" in name:
        raise ValueError('session name must not be "." or ".." and must not contain a slash or a backslash')
    return name


class SessionStore:
    """Session documents stored as one JSON file per session.

    ``name=None`` everywhere means "the last session", which is a symlink in
    the data home pointing at one of the session files.
    """

    def __init__(self, sessions_dir: Path, last_session_path: Path):
        self.sessions_dir = Path(sessions_dir)
        self.last_session_path = Path(last_session_path)

    @classmethod
    def from_config(cls, config: ChattyConfig) -> "SessionStore":
        return cls(config.sessions_dir, config.last_session_path)

    def ensure_directories(self) -> None:
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self.last_session_path.parent.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: Optional[str]) -> Path:
        if name is None:
            return self.last_session_path
        return self.sessions_dir / validate_name(name)

    @staticmethod
    def _describe(name: Optional[str]) -> str:
        return f"session '{name}'" if name is not None else "last session"

    # ------------------------------------------------------------------
    # Reading / writing
    # ------------------------------------------------------------------

    def exists(self, name: Optional[str]) -> bool:
        return self.path_for(name).is_file()

    def load(self, name: Optional[str]) -> Session:
        path = self.path_for(name)
        try:
            with path.open("rb") as fh:
                return Session.read_json(fh)
        except FileNotFoundError:
            if name is None:
                raise FileNotFoundError("there is no last session") from None
            raise FileNotFoundError(f"session '{name}' does not exist") from None

    def save(self, name: Optional[str], session: Session) -> Path:
        """Replace an existing session file via a temp file and rename."""
        target = self.path_for(name).resolve()
        tmp_path = target.with_name(target.name + TMP_SUFFIX)
        with tmp_path.open("w", encoding="utf-8") as fh:
            session.write_json(fh)
        tmp_path.replace(target)
        logger.debug("saved {} to {}", self._describe(name), target)
        return target

    def create(self, name: str, session: Session) -> Path:
        """Write a brand new session file, refusing to overwrite one."""
        path = self.path_for(name)
        try:
            with path.open("x", encoding="utf-8") as fh:
                session.write_json(fh)
        except FileExistsError:
            raise FileExistsError(f"session '{name}' already exists") from None
        logger.debug("created session '{}' at {}", name, path)
        return path

    def delete(self, name: str) -> None:
        was_last = self.last_name() == name
        try:
            self.path_for(name).unlink()
        except FileNotFoundError:
            raise FileNotFoundError(f"session '{name}' does not exist") from None
        if was_last:
            self.last_session_path.unlink()

    # ------------------------------------------------------------------
    # Last-session link
    # ------------------------------------------------------------------

    def set_last(self, name: str) -> None:
        link = self.last_session_path
        if link.is_symlink() or link.exists():
            link.unlink()
        link.symlink_to(self.path_for(name).absolute())

    def last_name(self) -> Optional[str]:
        link = self.last_session_path
        if not link.is_symlink():
            return None
        target = Path(os.readlink(link))
        if not link.exists():
            return None
        return target.name

    def list(self) -> List[Tuple[str, bool]]:
        """Return ``(name, is_last)`` for every stored session, sorted by name."""
        if not self.sessions_dir.is_dir():
            return []
        last = self.last_name()
        entries = []
        for path in sorted(self.sessions_dir.iterdir()):
            if not path.is_file() or path.is_symlink() or path.name.endswith(TMP_SUFFIX):
                continue
            entries.append((path.name, path.name == last))
        return entries
