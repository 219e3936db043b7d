import io
import time
import unittest

from hook_deployer.local import LocalSession


class LocalSessionTests(unittest.TestCase):
    def test_captures_and_echoes_merged_output(self) -> None:
        echo = io.StringIO()
        session = LocalSession(echo=echo)
        result = session.run(["bash", "-c", "echo out; echo err >&2"])
        self.assertTrue(result.ok)
        self.assertIn("out", result.output)
        self.assertIn("err", result.output)
        self.assertIn("out", echo.getvalue())

    def test_exit_status_and_env(self) -> None:
        session = LocalSession(echo=io.StringIO())
        result = session.run(["bash", "-c", 'echo "$GREETING"; exit 4'], env={"GREETING": "hi"})
        self.assertEqual(result.exit_status, 4)
        self.assertEqual(result.output, "hi")

    def test_missing_binary(self) -> None:
        result = LocalSession(echo=io.StringIO()).run(["definitely-not-a-real-binary-xyz"])
        self.assertEqual(result.exit_status, 127)
        self.assertFalse(result.ok)

    def test_timeout_kills_command(self) -> None:
        result = LocalSession(echo=io.StringIO()).run(["sleep", "5"], timeout=0.3)
        self.assertEqual(result.exit_status, -1)
        self.assertIn("TIMEOUT", result.output)

    def test_timeout_applies_to_output_without_newline(self) -> None:
        echo = io.StringIO()
        started = time.monotonic()
        result = LocalSession(echo=echo).run(["bash", "-c", "printf progress; sleep 5"], timeout=1)
        self.assertLess(time.monotonic() - started, 4)
        self.assertEqual(result.exit_status, -1)
        self.assertIn("progress", result.output)
        self.assertIn("TIMEOUT", result.output)
        self.assertIn("progress", echo.getvalue())

    def test_multibyte_output_split_across_reads(self) -> None:
        result = LocalSession(echo=io.StringIO()).run(
            ["bash", "-c", "printf '\\xe9'; sleep 0.2; printf '\\x83\\xa8'"]
        )
        self.assertTrue(result.ok)
        self.assertEqual(result.output, "\u90e8")

    def test_quiet_mode_does_not_echo(self) -> None:
        echo = io.StringIO()
        LocalSession(echo=echo).run(["echo", "hidden"], stream_output=False)
        self.assertEqual(echo.getvalue(), "")


if __name__ == "__main__":
    unittest.main()
