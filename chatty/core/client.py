"""Completion exchange: one synchronous round trip to the chat completion API.

The session is posted through the OpenAI SDK and the raw response body is fed
chunk by chunk into :class:`ResponseParser`, an incremental JSON parser built
on ``ijson``. The parser returns ``False`` from :meth:`ResponseParser.feed` as
soon as the body can no longer be valid JSON, which makes the transport stop
reading.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

import ijson
import openai
from loguru import logger
from openai import OpenAI  # type: ignore

from .errors import AIChatError, ErrorKind
from .session import Role, Session

# Returns True to keep reading, False to ask the transport to stop.
ChunkSink = Callable[[bytes], bool]

# Stand-in key for the SDK when no credential is configured; never sent.
NO_CREDENTIAL = "no-credential"


@dataclass
class CompletionResult:
    error: Optional[ErrorKind] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ParseState(Enum):
    AWAITING_DATA = "awaiting_data"
    PARSING = "parsing"
    COMPLETE = "complete"
    FAILED = "failed"


class ResponseParser:
    """Incrementally parse one JSON response body.

    ``AWAITING_DATA -> PARSING (per chunk) -> COMPLETE | FAILED``. Once
    ``FAILED`` the parser ignores further input.
    """

    def __init__(self) -> None:
        self._values = ijson.sendable_list()
        self._coro = ijson.items_coro(self._values, "", use_float=True)
        self.state = ParseState.AWAITING_DATA
        self.value: Any = None
        self.error: Optional[str] = None

    def _fail(self, exc: Exception) -> None:
        self.state = ParseState.FAILED
        self.error = str(exc)
        logger.debug("response body is not valid JSON: {}", exc)

    def feed(self, chunk: bytes) -> bool:
        if self.state in (ParseState.FAILED, ParseState.COMPLETE):
            return False
        self.state = ParseState.PARSING
        try:
            self._coro.send(chunk)
        except (ijson.JSONError, ValueError) as exc:
            self._fail(exc)
            return False
        return True

    def finish(self) -> ParseState:
        """Signal end of body and settle on a terminal state."""
        if self.state in (ParseState.FAILED, ParseState.COMPLETE):
            return self.state
        try:
            self._coro.close()
        except (ijson.JSONError, ValueError) as exc:
            self._fail(exc)
            return self.state

        if not self._values:
            self._fail(ValueError("empty response body"))
            return self.state

        self.value = self._values[0]
        self.state = ParseState.COMPLETE
        return self.state

    def resolve(self) -> Tuple[Optional[str], CompletionResult]:
        """Extract the assistant text and token usage from the parsed body."""
        result = CompletionResult()

        if self.state is not ParseState.COMPLETE:
            result.error = ErrorKind.JSON_PARSE
            result.detail = self.error
            return None, result

        body = self.value
        if not isinstance(body, dict):
            result.error = ErrorKind.API_RESPONSE
            return None, result

        if "error" in body:
            result.error = ErrorKind.API_ERROR
            err = body["error"]
            if isinstance(err, dict):
                result.detail = err.get("message")
            elif isinstance(err, str):
                result.detail = err
            return None, result

        usage = body.get("usage")
        if isinstance(usage, dict):
            if isinstance(usage.get("prompt_tokens"), int):
                result.prompt_tokens = usage["prompt_tokens"]
            if isinstance(usage.get("completion_tokens"), int):
                result.completion_tokens = usage["completion_tokens"]

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None

        if not isinstance(content, str):
            result.error = ErrorKind.API_RESPONSE
            return None, result

        return content, result


class CompletionClient:
    """Thin wrapper around the OpenAI SDK exposing a single ``extend`` call."""

    def __init__(self, client: OpenAI):
        self.client = client

    @classmethod
    def from_credential(
        cls,
        credential: Optional[str],
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Any = None,
    ) -> "CompletionClient":
        # Retries are left to the caller, so the SDK's own retry loop is disabled.
        client_kwargs: Dict[str, Any] = {
            "api_key": credential or NO_CREDENTIAL,
            "max_retries": 0,
            "timeout": timeout,
        }
        if not credential:
            # The SDK insists on a key; send none at all instead of a placeholder.
            client_kwargs["default_headers"] = {"Authorization": openai.Omit()}
        if base_url:
            client_kwargs["base_url"] = base_url
        if http_client is not None:
            client_kwargs["http_client"] = http_client
        try:
            return cls(OpenAI(**client_kwargs))  # type: ignore[arg-type]
        except openai.OpenAIError as exc:
            raise AIChatError(ErrorKind.TRANSPORT, str(exc)) from exc

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _post(self, payload: Dict[str, Any], sink: ChunkSink) -> None:
        """POST *payload* and push the response body into *sink* as it arrives."""
        with self.client.chat.completions.with_streaming_response.create(**payload) as response:
            for chunk in response.iter_bytes():
                if not sink(chunk):
                    logger.debug("response parser requested early stop")
                    break

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extend(self, session: Session) -> CompletionResult:
        """Ask the model for the next assistant message and append it to *session*.

        The session is left untouched unless a reply was received and stored.
        """
        if session.message_count == 0:
            raise AIChatError(ErrorKind.SESSION_NO_MESSAGES)
        if session.last_role is Role.ASSISTANT:
            raise AIChatError(ErrorKind.SESSION_LAST_MESSAGE_ASSISTANT)

        payload = session.to_dict()
        parser = ResponseParser()
        logger.debug("posting {} messages to {}", session.message_count, payload["model"])

        try:
            self._post(payload, parser.feed)
        except openai.APIStatusError as exc:
            # The SDK has already read the error body; run it through the same parser.
            parser.feed(exc.response.content)
            parser.finish()
            _, result = parser.resolve()
            result.error = ErrorKind.API_ERROR
            result.detail = result.detail or f"HTTP {exc.status_code}"
            raise AIChatError(result.error, result.detail, result) from exc
        except openai.APIConnectionError as exc:
            raise AIChatError(
                ErrorKind.TRANSPORT, str(exc), CompletionResult(error=ErrorKind.TRANSPORT)
            ) from exc
        except openai.OpenAIError as exc:
            raise AIChatError(
                ErrorKind.TRANSPORT, str(exc), CompletionResult(error=ErrorKind.TRANSPORT)
            ) from exc

        parser.finish()
        text, result = parser.resolve()
        if result.error is not None:
            logger.debug("exchange failed: {}", result.error.name)
            raise AIChatError(result.error, result.detail, result)

        session.append_message(Role.ASSISTANT, text)
        logger.debug(
            "exchange complete: prompt_tokens={} completion_tokens={}",
            result.prompt_tokens,
            result.completion_tokens,
        )
        return result


def extend(
    session: Session,
    credential: Optional[str],
    *,
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CompletionResult:
    """Extend *session* by one assistant message using a fresh client."""
    client = CompletionClient.from_credential(credential, base_url=base_url, timeout=timeout)
    return client.extend(session)
