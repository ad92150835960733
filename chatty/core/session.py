"""Bounded in-memory representation of a chat session.

All message text lives in a single pre-sized byte arena. Each message is a
small record ``(role, offset, length)`` pointing into it, so appending and
popping the most recent message are O(1) and a session can never grow past
``BUFFER_SIZE`` bytes of text or ``MAX_MESSAGES`` messages.

Every stored message occupies ``len(text) + 1`` bytes: the UTF-8 encoded text
followed by a NUL terminator.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import IO, Any, Dict, List, NamedTuple, Optional, Union

from loguru import logger

from .errors import AIChatError, ErrorKind

# A token is somewhere between 1 and 128 characters long; 8 characters per
# token over a 4096 token window is a generous ceiling for one conversation.
MAX_TOKENS = 4096
MAX_CHARACTERS_PER_TOKEN = 8

BUFFER_SIZE = MAX_TOKENS * MAX_CHARACTERS_PER_TOKEN
MAX_MESSAGES = 4096


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Model(str, Enum):
    GPT_3_5_TURBO = "gpt-3.5-turbo"
    GPT_3_5_TURBO_16K = "gpt-3.5-turbo-16k"


SUPPORTED_MODELS = [m.value for m in Model]
DEFAULT_MODEL = Model.GPT_3_5_TURBO
DEFAULT_TEMPERATURE = 0.7


@dataclass(frozen=True)
class Message:
    """Read-only snapshot of one stored message."""

    role: Role
    text: str


class _Record(NamedTuple):
    role: Role
    offset: int
    length: int


class Session:
    """An ordered, size-bounded list of role-tagged messages."""

    def __init__(
        self,
        model: Union[Model, str] = DEFAULT_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> None:
        self.model = Model(model)
        self.temperature = float(temperature)
        self._arena = bytearray(BUFFER_SIZE)
        self._records: List[_Record] = []
        self.remaining_capacity = BUFFER_SIZE

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return (
            f"Session(model={self.model.value!r}, temperature={self.temperature!r}, "
            f"messages={len(self._records)}, remaining_capacity={self.remaining_capacity})"
        )

    @property
    def message_count(self) -> int:
        return len(self._records)

    @property
    def position(self) -> int:
        """Offset of the first unused arena byte."""
        return BUFFER_SIZE - self.remaining_capacity

    @property
    def messages(self) -> List[Message]:
        return [Message(r.role, self._text(r)) for r in self._records]

    @property
    def last_role(self) -> Optional[Role]:
        if not self._records:
            return None
        return self._records[-1].role

    def _text(self, record: _Record) -> str:
        raw = self._arena[record.offset:record.offset + record.length]
        return raw.decode("utf-8", errors="replace")

    def peek_last_message_text(self) -> str:
        if not self._records:
            raise AIChatError(ErrorKind.SESSION_NO_MESSAGES)
        return self._text(self._records[-1])

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _commit(self, role: Role, length: int) -> None:
        # The text is already in the arena at ``position``; terminate and record it.
        offset = self.position
        self._arena[offset + length] = 0
        self._records.append(_Record(role, offset, length))
        self.remaining_capacity -= length + 1

    def append_message(self, role: Union[Role, str], text: str) -> None:
        """Copy *text* into the arena as a new message. No trimming is done."""
        role = Role(role)
        if len(self._records) >= MAX_MESSAGES:
            raise AIChatError(ErrorKind.SESSION_FULL)

        data = text.encode("utf-8")
        if len(data) + 1 > self.remaining_capacity:
            raise AIChatError(ErrorKind.SESSION_BUFFER_FULL)

        offset = self.position
        self._arena[offset:offset + len(data)] = data
        self._commit(role, len(data))

    def append_message_from_source(self, role: Union[Role, str], reader: IO[bytes]) -> None:
        """Read a message from a binary source straight into the free arena space.

        At most ``remaining_capacity`` bytes are read. A read that fills all of
        them is rejected with ``SESSION_BUFFER_FULL`` because no room is left
        for the terminator, even if the source happened to end exactly there.
        """
        role = Role(role)
        if len(self._records) >= MAX_MESSAGES:
            raise AIChatError(ErrorKind.SESSION_FULL)

        filled = 0
        try:
            with memoryview(self._arena) as arena, arena[self.position:] as free:
                while filled < len(free):
                    n = reader.readinto(free[filled:])
                    if not n:
                        break
                    filled += n
        except OSError as exc:
            raise AIChatError(ErrorKind.IO, str(exc)) from exc

        if filled == self.remaining_capacity:
            raise AIChatError(ErrorKind.SESSION_BUFFER_FULL)

        self._commit(role, filled)
        logger.debug("read {} byte {} message from source", filled, role.value)

    def remove_last_message(self) -> None:
        if not self._records:
            raise AIChatError(ErrorKind.SESSION_NO_MESSAGES)
        record = self._records.pop()
        self.remaining_capacity += record.length + 1

    # ------------------------------------------------------------------
    # JSON import / export
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model.value,
            "temperature": self.temperature,
            "messages": [
                {"role": r.role.value, "content": self._text(r)} for r in self._records
            ],
        }

    def to_json(self) -> str:
        """Compact JSON, the form sent to the completion endpoint."""
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    def write_json(self, file: IO[str]) -> None:
        """Write the pretty-printed on-disk form of the session to *file*."""
        try:
            json.dump(self.to_dict(), file, ensure_ascii=False, indent=2)
            file.write("\n")
        except OSError as exc:
            raise AIChatError(ErrorKind.IO, str(exc)) from exc

    @classmethod
    def from_dict(cls, data: Any) -> "Session":
        """Build a session from a parsed JSON document.

        A new session is returned only when every message fits; on failure
        nothing half-populated escapes to the caller.
        """
        if not isinstance(data, dict):
            raise AIChatError(ErrorKind.JSON_PARSE, "session document must be an object")

        model = data.get("model", DEFAULT_MODEL.value)
        if model not in SUPPORTED_MODELS:
            raise AIChatError(ErrorKind.JSON_PARSE, f"unknown model {model!r}")

        temperature = data.get("temperature", DEFAULT_TEMPERATURE)
        if isinstance(temperature, bool) or not isinstance(temperature, (int, float)):
            raise AIChatError(ErrorKind.JSON_PARSE, "temperature must be a number")

        messages = data.get("messages")
        if not isinstance(messages, list):
            raise AIChatError(ErrorKind.JSON_PARSE, "missing 'messages' array")

        session = cls(model=model, temperature=temperature)
        for index, item in enumerate(messages):
            if not isinstance(item, dict):
                raise AIChatError(ErrorKind.JSON_PARSE, f"message {index} is not an object")
            role = item.get("role")
            content = item.get("content")
            if not isinstance(role, str) or not isinstance(content, str):
                raise AIChatError(ErrorKind.JSON_PARSE, f"message {index} needs string role and content")
            try:
                role_enum = Role(role)
            except ValueError:
                raise AIChatError(ErrorKind.JSON_PARSE, f"message {index} has unknown role {role!r}") from None
            session.append_message(role_enum, content)

        logger.debug(
            "loaded session with {} messages, {} bytes free",
            session.message_count,
            session.remaining_capacity,
        )
        return session

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "Session":
        try:
            parsed = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise AIChatError(ErrorKind.JSON_PARSE, str(exc)) from exc
        return cls.from_dict(parsed)

    @classmethod
    def read_json(cls, file: IO[Any]) -> "Session":
        try:
            data = file.read()
        except OSError as exc:
            raise AIChatError(ErrorKind.IO, str(exc)) from exc
        return cls.from_json(data)
