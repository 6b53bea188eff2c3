import os
import tempfile
import unittest

from Jobshell.expansion import expand_word, expand_words
from Jobshell.state import ShellState


class TestExpandWord(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.state = ShellState(cwd=self.tmpdir.name, env={"HOME": "/home/u", "X": "val"})

    def touch(self, *names):
        for name in names:
            open(os.path.join(self.tmpdir.name, name), "w").close()

    def test_variables(self):
        self.assertEqual(["val"], expand_word("$X", self.state))
        self.assertEqual(["valz"], expand_word("${X}z", self.state))
        self.assertEqual(["val y"], expand_word('"$X y"', self.state))
        self.assertEqual(["$X"], expand_word("'$X'", self.state))

    def test_special_variables(self):
        self.state.set_status(3)
        self.assertEqual(["3"], expand_word("$?", self.state))
        self.assertEqual([str(os.getpid())], expand_word("$$", self.state))
        self.state.last_background_pid = 4242
        self.assertEqual(["4242"], expand_word("$!", self.state))

    def test_last_background_pid_empty_before_any_job(self):
        self.assertEqual([], expand_word("$!", self.state))
        self.assertEqual([""], expand_word('"$!"', self.state))

    def test_unset_variable_disappears_unless_quoted(self):
        self.assertEqual([], expand_word("$NOPE", self.state))
        self.assertEqual([""], expand_word('"$NOPE"', self.state))
        self.assertEqual([""], expand_word("''", self.state))

    def test_lone_dollar_is_literal(self):
        self.assertEqual(["$"], expand_word("$", self.state))
        self.assertEqual(["a$-b"], expand_word("a$-b", self.state))

    def test_tilde(self):
        self.assertEqual(["/home/u"], expand_word("~", self.state))
        self.assertEqual(["/home/u/docs"], expand_word("~/docs", self.state))
        self.assertEqual(["a~b"], expand_word("a~b", self.state))

    def test_backslash_escapes(self):
        self.assertEqual(["a b"], expand_word("a\\ b", self.state))
        self.assertEqual(['a"b'], expand_word('"a\\"b"', self.state))
        self.assertEqual(["\\n"], expand_word('"\\n"', self.state))
        self.assertEqual(["$X"], expand_word("\\$X", self.state))

    def test_wildcards(self):
        self.touch("a.txt", "b.txt", "c.log")
        self.assertEqual(["a.txt", "b.txt"], expand_word("*.txt", self.state))
        self.assertEqual(["c.log"], expand_word("?.log", self.state))
        self.assertEqual(["a.txt"], expand_word("[a].txt", self.state))

    def test_quoted_wildcards_stay_literal(self):
        self.touch("a.txt")
        self.assertEqual(["*.txt"], expand_word("'*.txt'", self.state))
        self.assertEqual(["*.txt"], expand_word('"*.txt"', self.state))

    def test_wildcard_without_match_stays_literal(self):
        self.assertEqual(["*.none"], expand_word("*.none", self.state))

    def test_expand_words(self):
        self.assertEqual(
            ["echo", "val", "x"],
            expand_words(["echo", "$X", "$NOPE", "x"], self.state),
        )


if __name__ == "__main__":
    unittest.main()
