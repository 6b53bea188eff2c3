import io
import os
import tempfile
import unittest
from unittest.mock import patch

from Jobshell.errors import ShellExit
from Jobshell.shell import Shell
from Jobshell.state import ShellState


class TestShell(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.root = os.path.abspath(self.tmpdir.name)
        env = dict(os.environ, USER="alice", HOME=self.root)
        self.shell = Shell(state=ShellState(cwd=self.root, env=env))
        self.addCleanup(self.shell.jobs.close)

    # Helpers
    def run_line(self, line):
        out, err = io.StringIO(), io.StringIO()
        status = self.shell.run_line(line, io.StringIO(""), out, err)
        return status, out.getvalue(), err.getvalue()

    def test_run_line(self):
        self.assertEqual((0, "hi\n", ""), self.run_line("echo hi"))

    def test_syntax_error(self):
        status, out, err = self.run_line("ls |")
        self.assertEqual(2, status)
        self.assertEqual("", out)
        self.assertEqual("minishell: syntax error: missing command after '|'\n", err)
        self.assertEqual(2, self.shell.state.last_status)

    def test_alias_expansion(self):
        self.run_line("alias greet='echo hello'")
        self.assertEqual("hello world\n", self.run_line("greet world")[1])

    def test_exit_propagates(self):
        with self.assertRaises(ShellExit):
            self.run_line("exit 1")

    def test_prompt(self):
        with patch("Jobshell.shell.PROMPT_TEMPLATE", "{user}:{cwd}$ "):
            self.assertEqual("alice:~$ ", self.shell.prompt())
            os.mkdir(os.path.join(self.root, "sub"))
            self.run_line("cd sub")
            self.assertEqual("alice:~/sub$ ", self.shell.prompt())

    def test_run_loop_until_exit(self):
        lines = iter(["echo one", "", "exit 3", "echo never"])
        out = io.StringIO()
        with patch("builtins.input", lambda prompt: next(lines)), \
                patch("Jobshell.shell.load_history"), \
                patch("Jobshell.shell.save_history"), \
                patch("Jobshell.shell.add_to_history"), \
                patch("sys.stdout", out):
            status = self.shell.run()
        self.assertEqual(3, status)
        self.assertEqual("one\n", out.getvalue())

    def test_run_loop_until_eof(self):
        def read(prompt):
            raise EOFError

        with patch("builtins.input", read), \
                patch("Jobshell.shell.load_history"), \
                patch("Jobshell.shell.save_history"), \
                patch("sys.stdout", io.StringIO()):
            self.assertEqual(0, self.shell.run())


if __name__ == "__main__":
    unittest.main()
