import io
import json
import os
import unittest
from contextlib import redirect_stderr
from unittest.mock import MagicMock, patch

from chatty import AIChatError, ChatCLI, ErrorKind, Role, run_cli
from chatty.cli import build_parser, validate_args

from .test_base import BaseChatCLITest, completion_body


class TestCommands(BaseChatCLITest):
    def write_prompt(self, text="You are terse."):
        path = self.data_home / "prompt.txt"
        path.write_text(text, encoding="utf-8")
        return path

    def test_extend_named_session(self):
        """User text from stdin is sent and the reply printed and saved"""
        self.save_session("work", (Role.SYSTEM, "Be brief."), (Role.USER, "Hi"), (Role.ASSISTANT, "Hello"))
        self.respond_with(completion_body("Fine, thanks."))

        self.make_cli(b"How are you?").extend_session("work")

        self.assertEqual(self.stdout.getvalue(), "Fine, thanks.\n")
        messages = self.store.load("work").messages
        self.assertEqual(len(messages), 5)
        self.assertEqual((messages[3].role, messages[3].text), (Role.USER, "How are you?"))
        self.assertEqual(self.store.last_name(), "work")

    def test_extend_last_session(self):
        """Without a name the most recent session is continued"""
        self.save_session("work", (Role.SYSTEM, "Be brief."), last=True)
        self.respond_with(completion_body("Yes."))

        self.make_cli(b"Still there?").extend_session(None)

        self.assertEqual(self.store.load("work").peek_last_message_text(), "Yes.")

    def test_failed_extend_keeps_file(self):
        """A failed exchange leaves the stored session untouched"""
        self.save_session("work", (Role.SYSTEM, "Be brief."))
        self.respond_with(b'{"error":{"message":"rate limited"}}')

        with self.assertRaises(AIChatError) as ctx:
            self.make_cli(b"Hello?").extend_session("work")

        self.assertEqual(ctx.exception.kind, ErrorKind.API_ERROR)
        self.assertEqual(len(self.store.load("work")), 1)
        self.assertEqual(self.stdout.getvalue(), "")

    def test_extend_missing_session(self):
        with self.assertRaisesRegex(FileNotFoundError, "--new-session"):
            self.make_cli(b"Hello?").extend_session("missing")
        self.create_mock.assert_not_called()

    def test_create_session(self):
        """--new-session stores prompt, user text and reply"""
        self.respond_with(completion_body("Hi."))

        self.make_cli(b"Hello").create_session("fresh", self.write_prompt(), "gpt-3.5-turbo-16k", 0.2)

        session = self.store.load("fresh")
        self.assertEqual(
            [(m.role, m.text) for m in session.messages],
            [(Role.SYSTEM, "You are terse."), (Role.USER, "Hello"), (Role.ASSISTANT, "Hi.")],
        )
        self.assertEqual(session.model.value, "gpt-3.5-turbo-16k")
        self.assertEqual(session.temperature, 0.2)
        self.assertEqual(self.store.last_name(), "fresh")

    def test_create_existing_session(self):
        self.save_session("work", (Role.USER, "Hi"))
        with self.assertRaises(FileExistsError):
            self.make_cli(b"Hello").create_session("work", self.write_prompt())
        self.create_mock.assert_not_called()

    def test_once_saves_nothing(self):
        self.respond_with(completion_body("Done."))

        self.make_cli(b"Hello").once(self.write_prompt())

        self.assertEqual(self.stdout.getvalue(), "Done.\n")
        self.assertEqual(self.store.list(), [])

    def test_retry_replaces_reply(self):
        """--retry drops the last reply and asks again"""
        self.save_session("work", (Role.SYSTEM, "s"), (Role.USER, "Hi"), (Role.ASSISTANT, "old"))
        self.respond_with(completion_body("new"))

        self.make_cli(b"").retry_session("work")

        session = self.store.load("work")
        self.assertEqual(len(session), 3)
        self.assertEqual(session.peek_last_message_text(), "new")
        sent = self.create_mock.call_args.kwargs["messages"]
        self.assertEqual(sent[-1], {"role": "user", "content": "Hi"})

    def test_rollback_removes_exchange(self):
        """--rollback removes the last user message and its reply"""
        self.save_session(
            "work",
            (Role.SYSTEM, "s"),
            (Role.USER, "q1"),
            (Role.ASSISTANT, "a1"),
            (Role.USER, "q2"),
            (Role.ASSISTANT, "a2"),
            last=True,
        )

        self.chat_cli.rollback_session(None)

        session = self.store.load("work")
        self.assertEqual([m.text for m in session.messages], ["s", "q1", "a1"])
        self.create_mock.assert_not_called()

    def test_rollback_without_user_message(self):
        self.save_session("work", (Role.SYSTEM, "s"))
        with self.assertRaises(AIChatError) as ctx:
            self.chat_cli.rollback_session("work")
        self.assertEqual(ctx.exception.kind, ErrorKind.SESSION_NO_MESSAGES)

    def test_prompt_from(self):
        self.save_session("work", (Role.SYSTEM, "Be brief."), (Role.USER, "Hi"))
        self.chat_cli.prompt_from("work")
        self.assertEqual(self.stdout.getvalue(), "Be brief.\n")

    def test_export_import(self):
        """An exported session can be imported under a new name"""
        self.save_session("work", (Role.SYSTEM, "s"), (Role.USER, "Hi"), (Role.ASSISTANT, "Hello"))
        self.chat_cli.export_session("work")
        exported = self.stdout.getvalue()
        self.assertEqual(json.loads(exported)["messages"][2]["content"], "Hello")

        self.make_cli(exported.encode("utf-8")).import_session("copy")

        self.assertEqual(self.store.load("copy").messages, self.store.load("work").messages)

    def test_import_requires_assistant_last(self):
        document = b'{"messages": [{"role": "user", "content": "Hi"}]}'
        with self.assertRaises(ValueError):
            self.make_cli(document).import_session("copy")
        self.assertFalse(self.store.exists("copy"))

    def test_list_and_delete(self):
        self.save_session("alpha", (Role.USER, "a"), last=True)
        self.save_session("beta", (Role.USER, "b"))

        self.chat_cli.list_sessions()
        lines = self.console_output.getvalue().splitlines()
        self.assertEqual(lines, ["alpha (last session)", "beta"])

        self.chat_cli.delete_session("beta")
        self.assertFalse(self.store.exists("beta"))
        self.assertEqual(self.console_output.getvalue().splitlines()[-1], "session 'beta' deleted")

    def test_delete_all_points_at_directory(self):
        self.chat_cli.delete_all_sessions()
        self.assertIn("sessions", self.console_output.getvalue())

    def test_run_cli_exit_codes(self):
        """run_cli maps failures to exit statuses"""
        env = {"XDG_DATA_HOME": self.tmpdir.name, "OPENAI_API_KEY": "sk-test"}
        stdin = io.TextIOWrapper(io.BytesIO(b""))
        with patch.dict(os.environ, env), patch("sys.stdin", stdin), redirect_stderr(io.StringIO()), patch(
            "chatty.cli.CompletionClient.from_credential", return_value=self.completion_client
        ):
            self.assertEqual(run_cli(["--list"]), 0)
            self.assertEqual(run_cli(["--session=missing"]), 1)
            with patch("chatty.cli.ChatCLI.run", side_effect=AIChatError(ErrorKind.API_ERROR)):
                self.assertEqual(run_cli(["--session=work"]), int(ErrorKind.API_ERROR))


class TestArguments(unittest.TestCase):
    def parse(self, argv):
        parser = build_parser()
        args = parser.parse_args(argv)
        validate_args(parser, args)
        return args

    def test_valid_combinations(self):
        for argv in (
            [],
            ["--session=work"],
            ["--retry"],
            ["--session=work", "--retry"],
            ["--session=work", "--rollback"],
            ["--new-session=work", "--prompt=p.txt", "--model=gpt-3.5-turbo-16k"],
            ["--once", "--prompt=p.txt", "--temperature=0.1"],
            ["--list", "--verbose"],
            ["--import=work"],
        ):
            with self.subTest(argv=argv):
                self.parse(argv)

    def test_invalid_combinations(self):
        for argv in (
            ["--new-session=work"],
            ["--once"],
            ["--prompt=p.txt"],
            ["--list", "--delete=work"],
            ["--retry", "--rollback"],
            ["--session=a/b"],
            ["--delete=.."],
            ["--session=work", "--model=gpt-3.5-turbo"],
            ["--model=gpt-99", "--once", "--prompt=p.txt"],
        ):
            with self.subTest(argv=argv):
                with redirect_stderr(io.StringIO()), self.assertRaises(SystemExit):
                    self.parse(argv)


class TestWithoutCredential(BaseChatCLITest):
    def run_offline(self, argv, stdin_bytes=b""):
        env = {"XDG_DATA_HOME": self.tmpdir.name, "HOME": self.tmpdir.name}
        stdout = io.StringIO()
        stdin = io.TextIOWrapper(io.BytesIO(stdin_bytes))
        with patch.dict(os.environ, env, clear=True), patch("sys.stdin", stdin), patch(
            "sys.stdout", stdout
        ), redirect_stderr(io.StringIO()):
            status = run_cli(argv)
        return status, stdout.getvalue()

    def test_offline_commands_need_no_key(self):
        """Commands that never call the API work without OPENAI_API_KEY"""
        self.save_session("work", (Role.SYSTEM, "s"), (Role.USER, "Hi"), (Role.ASSISTANT, "Hello"))

        self.assertEqual(self.run_offline(["--list"])[0], 0)

        status, exported = self.run_offline(["--export=work"])
        self.assertEqual(status, 0)
        self.assertEqual(json.loads(exported)["messages"][2]["content"], "Hello")

        self.assertEqual(self.run_offline(["--delete=work"])[0], 0)
        self.assertFalse(self.store.exists("work"))

    def test_client_only_built_for_exchanges(self):
        """The client factory is not called by session management commands"""
        factory = MagicMock(return_value=self.completion_client)
        self.save_session("work", (Role.SYSTEM, "s"), (Role.USER, "Hi"), (Role.ASSISTANT, "Hello"))
        cli = ChatCLI(self.store, stdin=io.BytesIO(b"Again"), stdout=self.stdout, client_factory=factory)

        cli.export_session("work")
        cli.list_sessions()
        factory.assert_not_called()

        self.respond_with(completion_body("Sure."))
        cli.extend_session("work")
        factory.assert_called_once_with()
