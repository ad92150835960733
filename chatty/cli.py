"""Command-line front end for chatty.

Each invocation performs one action on one session: user text is read from
stdin, the assistant reply is written to stdout and the session file is
updated only after the exchange succeeded.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import IO, Callable, List, Optional

from loguru import logger
from rich.markup import escape

from .config import ChattyConfig, ConfigError
from .core import DEFAULT_TEMPERATURE, SUPPORTED_MODELS, AIChatError, ErrorKind, Role, Session
from .core.client import CompletionClient
from .log import setup_logging
from .store import SessionStore, validate_name
from .utils import ERROR_LABEL, LAST_SESSION_LABEL, Spinner, console, err_console

USAGE_ERROR = 1

# ---------------------------------------------------------------------------
# Helper classes
# ---------------------------------------------------------------------------


class ChatCLI:
    """Carries out the individual chatty commands against a session store."""

    def __init__(
        self,
        store: SessionStore,
        client: Optional[CompletionClient] = None,
        stdin: Optional[IO[bytes]] = None,
        stdout: Optional[IO[str]] = None,
        client_factory: Optional[Callable[[], CompletionClient]] = None,
    ):
        self.store = store
        self._client = client
        self._client_factory = client_factory
        self.stdin = stdin if stdin is not None else sys.stdin.buffer
        self.stdout = stdout if stdout is not None else sys.stdout

    @property
    def client(self) -> CompletionClient:
        """The API client, built on first use so offline commands never need one."""
        if self._client is None:
            if self._client_factory is None:
                raise RuntimeError("ChatCLI needs a client or a client_factory")
            self._client = self._client_factory()
        return self._client

    # ---------------- Utility ----------------

    def _load(self, name: Optional[str], hint: str = "") -> Session:
        try:
            return self.store.load(name)
        except FileNotFoundError as exc:
            if hint:
                raise FileNotFoundError(f"{exc}: {hint}") from None
            raise

    def _extend(self, session: Session) -> None:
        with Spinner(f"waiting for {session.model.value}"):
            result = self.client.extend(session)
        logger.info(
            "tokens used: prompt={} completion={}",
            result.prompt_tokens,
            result.completion_tokens,
        )
        self.stdout.write(session.peek_last_message_text() + "\n")
        self.stdout.flush()

    def _new_session(self, prompt_file: Path, model: Optional[str], temperature: Optional[float]) -> Session:
        session = Session(
            model=model or SUPPORTED_MODELS[0],
            temperature=DEFAULT_TEMPERATURE if temperature is None else temperature,
        )
        with open(prompt_file, "rb") as prompt:
            session.append_message_from_source(Role.SYSTEM, prompt)
        session.append_message_from_source(Role.USER, self.stdin)
        return session

    # ---------------- Conversation commands ---------------

    def extend_session(self, name: Optional[str]) -> None:
        hint = (
            "use the --new-session option to create a new session"
            if name
            else "select a session using --session or create a new session using --new-session"
        )
        session = self._load(name, hint)
        session.append_message_from_source(Role.USER, self.stdin)
        self._extend(session)
        self.store.save(name, session)
        if name:
            self.store.set_last(name)

    def retry_session(self, name: Optional[str]) -> None:
        """Replace the last assistant reply with a fresh one."""
        session = self._load(name, "" if name else "select a session using --session")
        if session.last_role is Role.ASSISTANT:
            session.remove_last_message()
        self._extend(session)
        self.store.save(name, session)
        if name:
            self.store.set_last(name)

    def rollback_session(self, name: Optional[str]) -> None:
        """Drop the most recent user message together with its reply."""
        session = self._load(name, "" if name else "select a session using --session")
        if session.last_role is Role.ASSISTANT:
            session.remove_last_message()
        if session.last_role is not Role.USER:
            raise AIChatError(ErrorKind.SESSION_NO_MESSAGES, "no user message to roll back")
        session.remove_last_message()
        self.store.save(name, session)
        if name:
            self.store.set_last(name)

    def create_session(
        self,
        name: str,
        prompt_file: Path,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> None:
        validate_name(name)
        if self.store.exists(name):
            raise FileExistsError(
                f"session '{name}' already exists: use the --session option to extend an existing session"
            )
        session = self._new_session(prompt_file, model, temperature)
        self._extend(session)
        self.store.create(name, session)
        self.store.set_last(name)

    def once(self, prompt_file: Path, model: Optional[str] = None, temperature: Optional[float] = None) -> None:
        session = self._new_session(prompt_file, model, temperature)
        self._extend(session)

    # ---------------- Session management ---------------

    def prompt_from(self, name: str) -> None:
        session = self._load(name)
        for message in session.messages:
            if message.role is Role.SYSTEM:
                self.stdout.write(message.text + "\n")
                return
        raise ValueError(f"session '{name}' has no system prompt")

    def delete_session(self, name: str) -> None:
        self.store.delete(name)
        console.print(f"session '{escape(name)}' deleted")

    def delete_all_sessions(self) -> None:
        console.print(
            f"To delete all sessions, delete the directory '{escape(str(self.store.sessions_dir))}'"
        )

    def list_sessions(self) -> None:
        for name, is_last in self.store.list():
            marker = f" {LAST_SESSION_LABEL}" if is_last else ""
            console.print(f"{escape(name)}{marker}")

    def export_session(self, name: str) -> None:
        session = self._load(name)
        session.write_json(self.stdout)

    def import_session(self, name: str) -> None:
        validate_name(name)
        if self.store.exists(name):
            raise FileExistsError(
                f"session '{name}' already exists: use the --session option to extend an existing session"
            )
        session = Session.read_json(self.stdin)
        if session.last_role is not Role.ASSISTANT:
            raise ValueError("last message in session must be from the assistant")
        self.store.create(name, session)

    # ---------------- Dispatch ---------------

    def run(self, args: argparse.Namespace) -> None:
        if args.new_session is not None:
            self.create_session(args.new_session, args.prompt, args.model, args.temperature)
        elif args.once:
            self.once(args.prompt, args.model, args.temperature)
        elif args.retry:
            self.retry_session(args.session)
        elif args.rollback:
            self.rollback_session(args.session)
        elif args.prompt_from is not None:
            self.prompt_from(args.prompt_from)
        elif args.delete is not None:
            self.delete_session(args.delete)
        elif args.delete_all:
            self.delete_all_sessions()
        elif args.list:
            self.list_sessions()
        elif args.export is not None:
            self.export_session(args.export)
        elif args.import_ is not None:
            self.import_session(args.import_)
        else:
            self.extend_session(args.session)


# ---------------------------------------------------------------------------
# Argument handling
# ---------------------------------------------------------------------------

_EPILOG = """\
examples:
  chatty --new-session=NAME --prompt=FILE   start NAME with the system prompt in FILE
  chatty --session=NAME                     continue NAME with user text from stdin
  chatty                                    continue the most recent session
  chatty --once --prompt=FILE               one exchange, nothing is saved
  chatty [--session=NAME] --retry           get a new reply for the last user text
  chatty [--session=NAME] --rollback        remove the last user text and its reply

If no options are provided, the most recent conversation is continued.
"""

# Action options and the combinations in which they may appear together.
_ACTIONS = ("session", "new_session", "prompt", "once", "retry", "rollback",
            "prompt_from", "delete", "delete_all", "list", "export", "import_")
_ALLOWED_COMBINATIONS = [
    {"new_session", "prompt"},
    {"once", "prompt"},
    {"session", "retry"},
    {"session", "rollback"},
]
_SESSION_OPTIONS = ("session", "new_session", "prompt_from", "delete", "export", "import_")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatty",
        description="Persistent command-line conversations with OpenAI chat models.",
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--session", metavar="NAME", help="continue the conversation in session NAME")
    parser.add_argument("--new-session", metavar="NAME", help="start a new session NAME (requires --prompt)")
    parser.add_argument("--prompt", metavar="FILE", type=Path, help="file holding the system prompt")
    parser.add_argument("--once", action="store_true", help="run a single exchange without saving (requires --prompt)")
    parser.add_argument("--retry", action="store_true", help="get a new response for the last user text")
    parser.add_argument("--rollback", action="store_true", help="remove the last user text and its response")
    parser.add_argument("--prompt-from", metavar="NAME", help="print the system prompt of session NAME")
    parser.add_argument("--delete", metavar="NAME", help="delete session NAME")
    parser.add_argument("--delete-all", action="store_true", help="show how to delete all sessions")
    parser.add_argument("--list", action="store_true", help="list all sessions")
    parser.add_argument("--export", metavar="NAME", help="print session NAME as JSON")
    parser.add_argument("--import", dest="import_", metavar="NAME", help="create session NAME from JSON on stdin")
    parser.add_argument("--model", choices=SUPPORTED_MODELS, help="model for --new-session/--once")
    parser.add_argument("--temperature", type=float, help="sampling temperature for --new-session/--once")
    parser.add_argument("--verbose", "-v", action="store_true", help="log debugging information to stderr")
    return parser


def _selected(args: argparse.Namespace) -> set:
    selected = set()
    for name in _ACTIONS:
        value = getattr(args, name)
        if value is not None and value is not False:
            selected.add(name)
    return selected


def validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    """Reject option combinations chatty does not understand (exits via *parser*)."""
    selected = _selected(args)

    if "new_session" in selected and not args.prompt:
        parser.error("--new-session requires --prompt")
    if "once" in selected and not args.prompt:
        parser.error("--once requires --prompt")
    if "prompt" in selected and not selected & {"new_session", "once"}:
        parser.error("--prompt is only valid with --new-session or --once")
    if (args.model or args.temperature is not None) and not selected & {"new_session", "once"}:
        parser.error("--model and --temperature are only valid with --new-session or --once")

    for option in _SESSION_OPTIONS:
        value = getattr(args, option)
        if value is not None:
            try:
                validate_name(value)
            except ValueError as exc:
                parser.error(str(exc))

    if len(selected) > 1 and selected not in _ALLOWED_COMBINATIONS:
        parser.error("invalid combination of arguments")


# ---------------------------------------------------------------------------
# Entrypoint helpers (keeping it separate simplifies __main__ handling)
# ---------------------------------------------------------------------------


def _fail(message: str) -> None:
    err_console.print(f"chatty: {ERROR_LABEL}: {escape(message)}")


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    validate_args(parser, args)

    try:
        config = ChattyConfig.from_env()
    except ConfigError as exc:
        _fail(str(exc))
        return USAGE_ERROR

    setup_logging("DEBUG" if args.verbose else config.log_level)

    store = SessionStore.from_config(config)
    cli = ChatCLI(
        store,
        client_factory=lambda: CompletionClient.from_credential(
            config.api_key, base_url=config.base_url, timeout=config.timeout
        ),
    )

    try:
        store.ensure_directories()
        cli.run(args)
    except AIChatError as exc:
        logger.debug("command failed with {}", exc.kind.name)
        _fail(str(exc))
        return int(exc.kind)
    except (FileNotFoundError, FileExistsError, ValueError) as exc:
        _fail(str(exc))
        return USAGE_ERROR
    except OSError as exc:
        _fail(str(exc))
        return int(ErrorKind.IO)
    return 0


def main() -> None:  # pragma: no cover
    sys.exit(run_cli())


if __name__ == "__main__":  # pragma: no cover
    main()
