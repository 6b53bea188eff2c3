from Jobshell.errors import ShellSyntaxError
from Jobshell.grammar import (
    AND, OR, REDIRECT_ERR_TO_OUT,
    Command, CommandGroup, LogicalBlock, Pipeline, Redirect, SimpleCommand, Subshell,
)
from Jobshell.lexer import OP, REDIR, WORD, tokenize


def parse(line):
    """
    Parse a command line into a Command tree.
    Raises ShellSyntaxError for empty input, dangling operators, missing
    redirection targets, unterminated quotes and unterminated groups.
    """
    text = line.strip()
    if text.endswith(";") and not text.endswith("\\;"):
        text = text[:-1].rstrip()
    if not text:
        raise ShellSyntaxError("empty command")

    parser = CommandParser(tokenize(text))
    command = parser.parse_command()
    if not parser.at_end():
        raise ShellSyntaxError(f"unexpected token '{parser.peek().value}'")
    return command


class CommandParser:
    """Recursive descent over the token list; one method per grammar level."""

    def __init__(self, tokens):
        self.tokens = tokens
        self.pos = 0
        self.group_depth = 0

    # ---------- token helpers ----------

    def peek(self):
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def at_end(self):
        return self.pos >= len(self.tokens)

    def advance(self):
        tok = self.peek()
        self.pos += 1
        return tok

    def is_op(self, *values):
        tok = self.peek()
        return tok is not None and tok.kind == OP and tok.value in values

    def is_word(self, value):
        tok = self.peek()
        return tok is not None and tok.kind == WORD and tok.value == value

    def at_closer(self):
        """True at a token that closes the enclosing subshell or group."""
        if self.is_op(")"):
            return True
        return self.group_depth > 0 and self.is_word("}")

    def describe(self):
        tok = self.peek()
        return "end of input" if tok is None else f"'{tok.value}'"

    # ---------- grammar ----------

    def parse_command(self):
        blocks = []
        while True:
            block = self.parse_block()
            blocks.append(block)
            ended_in_background = block.rest[-1][1].background if block.rest else block.first.background

            if self.is_op(";"):
                self.advance()
                if self.at_closer():
                    # trailing ';' inside a group or subshell: "{ echo hi; }"
                    break
                if self.at_end():
                    raise ShellSyntaxError("missing command after ';'")
                continue
            if self.at_end() or self.at_closer():
                break
            if ended_in_background and self.peek().kind != OP:
                # "sleep 1 & echo hi": '&' already separates the two blocks
                continue
            raise ShellSyntaxError(f"unexpected token {self.describe()}")
        return Command(tuple(blocks))

    def parse_block(self):
        first = self.parse_pipeline()
        rest = []
        while not first.background and self.is_op(AND, OR):
            op = self.advance().value
            if self.at_end() or self.at_closer() or self.is_op(";", "&", "|", AND, OR):
                raise ShellSyntaxError(f"missing command after '{op}'")
            pipeline = self.parse_pipeline()
            rest.append((op, pipeline))
            if pipeline.background:
                break
        return LogicalBlock(first, tuple(rest))

    def parse_pipeline(self):
        elements = [self.parse_element()]
        while self.is_op("|"):
            self.advance()
            if self.at_end() or self.at_closer() or self.is_op(";", "&", "|", AND, OR):
                raise ShellSyntaxError("missing command after '|'")
            elements.append(self.parse_element())

        background = False
        if self.is_op("&"):
            self.advance()
            background = True
            last = elements[-1]
            if isinstance(last, SimpleCommand):
                elements[-1] = SimpleCommand(last.parts, last.redirects, background=True)
        return Pipeline(tuple(elements), background)

    def parse_element(self):
        tok = self.peek()
        if tok is None:
            raise ShellSyntaxError("missing command")

        if tok.kind == OP and tok.value == "(":
            self.advance()
            body = self.parse_nested(")")
            if not self.is_op(")"):
                raise ShellSyntaxError("unterminated subshell, expected ')'")
            self.advance()
            return Subshell(body, self.parse_redirects())

        if tok.kind == WORD and tok.value == "{":
            self.advance()
            self.group_depth += 1
            try:
                body = self.parse_nested("}")
            finally:
                self.group_depth -= 1
            if not self.is_word("}"):
                raise ShellSyntaxError("unterminated command group, expected '}'")
            self.advance()
            return CommandGroup(body, self.parse_redirects())

        if tok.kind == OP:
            raise ShellSyntaxError(f"unexpected token '{tok.value}'")

        return self.parse_simple()

    def parse_nested(self, closer):
        if self.at_end():
            raise ShellSyntaxError(f"unterminated group, expected '{closer}'")
        if self.at_closer():
            raise ShellSyntaxError(f"empty group before '{closer}'")
        saved = self.group_depth
        if closer == ")":
            # braces inside a subshell are matched by their own group
            self.group_depth = 0
        try:
            return self.parse_command()
        finally:
            self.group_depth = saved

    def parse_redirect(self):
        op = self.advance().value
        if op == REDIRECT_ERR_TO_OUT:
            return Redirect(op)
        tok = self.peek()
        if tok is None or tok.kind != WORD:
            raise ShellSyntaxError(f"missing redirection target after '{op}'")
        self.advance()
        return Redirect(op, tok.value)

    def parse_redirects(self):
        redirects = []
        while self.peek() is not None and self.peek().kind == REDIR:
            redirects.append(self.parse_redirect())
        return tuple(redirects)

    def parse_simple(self):
        parts = []
        redirects = []
        while True:
            tok = self.peek()
            if tok is None or tok.kind == OP:
                break
            if tok.kind == REDIR:
                redirects.append(self.parse_redirect())
                continue
            if self.group_depth > 0 and tok.value == "}":
                break
            parts.append(self.advance().value)

        if not parts:
            if redirects:
                raise ShellSyntaxError("missing command before redirection")
            raise ShellSyntaxError(f"unexpected token {self.describe()}")
        return SimpleCommand(tuple(parts), tuple(redirects))
