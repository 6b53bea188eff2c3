import unittest

from Jobshell.errors import ShellSyntaxError
from Jobshell.grammar import CommandGroup, Redirect, SimpleCommand, Subshell, format_command
from Jobshell.lexer import OP, REDIR, WORD, Token, tokenize
from Jobshell.parser import parse


class TestTokenize(unittest.TestCase):
    def test_words_and_operators(self):
        tokens = tokenize("ls -l | wc -l && echo ok")
        self.assertEqual(
            [Token(WORD, "ls"), Token(WORD, "-l"), Token(OP, "|"), Token(WORD, "wc"),
             Token(WORD, "-l"), Token(OP, "&&"), Token(WORD, "echo"), Token(WORD, "ok")],
            tokens,
        )

    def test_redirects_are_their_own_token_class(self):
        tokens = tokenize("cmd>out 2>>err 2>&1 <in")
        self.assertEqual(
            [Token(WORD, "cmd"), Token(REDIR, ">"), Token(WORD, "out"), Token(REDIR, "2>>"),
             Token(WORD, "err"), Token(REDIR, "2>&1"), Token(REDIR, "<"), Token(WORD, "in")],
            tokens,
        )

    def test_stderr_dup_takes_a_word(self):
        self.assertEqual(
            [Token(WORD, "cmd"), Token(REDIR, "2>&"), Token(WORD, "2")],
            tokenize("cmd 2>&2"),
        )
        self.assertEqual(
            [Token(WORD, "cmd"), Token(REDIR, "2>&"), Token(WORD, "err.txt")],
            tokenize("cmd 2>&err.txt"),
        )

    def test_quotes_are_kept_raw(self):
        tokens = tokenize("echo 'a | b' \"c > d\"")
        self.assertEqual([Token(WORD, "echo"), Token(WORD, "'a | b'"), Token(WORD, '"c > d"')], tokens)

    def test_unterminated_quotes(self):
        with self.assertRaises(ShellSyntaxError):
            tokenize("echo 'abc")
        with self.assertRaises(ShellSyntaxError):
            tokenize('echo "abc')


class TestParse(unittest.TestCase):
    def test_simple_command(self):
        cmd = parse("ls -l /tmp")
        self.assertEqual(1, len(cmd.blocks))
        element = cmd.blocks[0].first.elements[0]
        self.assertEqual(("ls", "-l", "/tmp"), element.parts)
        self.assertEqual("ls", element.name)

    def test_precedence(self):
        cmd = parse("a | b && c || d ; e")
        self.assertEqual(2, len(cmd.blocks))
        block = cmd.blocks[0]
        self.assertEqual(2, len(block.first.elements))
        self.assertEqual(["&&", "||"], [op for op, _ in block.rest])
        self.assertEqual(("e",), cmd.blocks[1].first.elements[0].parts)

    def test_redirects_interspersed_with_words(self):
        element = parse("echo a > f.txt b").blocks[0].first.elements[0]
        self.assertEqual(("echo", "a", "b"), element.parts)
        self.assertEqual((Redirect(">", "f.txt"),), element.redirects)

    def test_redirect_order_is_kept(self):
        element = parse("cmd > out 2>&1 2>> err").blocks[0].first.elements[0]
        self.assertEqual(
            (Redirect(">", "out"), Redirect("2>&1"), Redirect("2>>", "err")),
            element.redirects,
        )

    def test_stderr_dup_to_descriptor(self):
        element = parse("sh -c 'echo x' 2>&2").blocks[0].first.elements[0]
        self.assertEqual(("sh", "-c", "'echo x'"), element.parts)
        self.assertEqual((Redirect("2>&", "2"),), element.redirects)

    def test_background_marks_pipeline(self):
        pipeline = parse("sleep 1 &").blocks[0].first
        self.assertTrue(pipeline.background)
        self.assertEqual(("sleep", "1"), pipeline.elements[0].parts)
        self.assertTrue(pipeline.elements[0].background)

    def test_background_separates_blocks(self):
        cmd = parse("sleep 1 & echo hi")
        self.assertEqual(2, len(cmd.blocks))
        self.assertTrue(cmd.blocks[0].first.background)
        self.assertFalse(cmd.blocks[1].first.background)

    def test_single_trailing_semicolon_is_trimmed(self):
        self.assertEqual(parse("echo hi"), parse("echo hi;"))

    def test_subshell(self):
        element = parse("(cd /tmp; pwd) > out").blocks[0].first.elements[0]
        self.assertIsInstance(element, Subshell)
        self.assertEqual(2, len(element.body.blocks))
        self.assertEqual((Redirect(">", "out"),), element.redirects)

    def test_group(self):
        element = parse("{ echo a; echo b; } | cat").blocks[0].first.elements[0]
        self.assertIsInstance(element, CommandGroup)
        self.assertEqual(2, len(element.body.blocks))

    def test_brace_is_a_word_outside_groups(self):
        element = parse("echo }").blocks[0].first.elements[0]
        self.assertEqual(SimpleCommand(("echo", "}")), element)

    def test_syntax_errors(self):
        bad = [
            "",
            "   ",
            ";",
            "ls |",
            "ls &&",
            "|| ls",
            "| ls",
            "echo >",
            "echo hi 2>",
            "> out",
            "(echo hi",
            "{ echo hi",
            "( )",
            "echo hi;;",
            "echo 'abc",
            "ls | | wc",
        ]
        for line in bad:
            with self.subTest(line=line):
                with self.assertRaises(ShellSyntaxError):
                    parse(line)

    def test_format_round_trip(self):
        lines = [
            "ls -l | grep py > out.txt 2>&1",
            "false && echo a || echo b; echo c",
            "sleep 1 & echo hi",
            "(cd /tmp; ls) | wc -l",
            "{ echo a; echo b & } > f",
            "cat < in.txt >> out.txt 2>> err.txt",
            "echo 'a b' \"c d\" &> both",
            "sleep 2 &",
            "cmd 2>&2 > out",
        ]
        for line in lines:
            with self.subTest(line=line):
                first = parse(line)
                self.assertEqual(first, parse(format_command(first)))


if __name__ == "__main__":
    unittest.main()
