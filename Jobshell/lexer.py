from collections import namedtuple

from Jobshell.errors import ShellSyntaxError

WORD = "WORD"
OP = "OP"
REDIR = "REDIR"

Token = namedtuple("Token", ["kind", "value"])

# Longest operators first
OPERATORS = ("&&", "||", ";", "|", "&", "(", ")")
REDIRECTS = ("2>&1", "2>&", "2>>", "2>", "&>", ">>", ">&", ">", "<")

WHITESPACE = " \t\n"
BREAK_CHARS = WHITESPACE + ";|&()<>"


def _match_redirect(line, i, word):
    """Return the redirect operator starting at line[i], or None."""
    rest = line[i:]
    if word:
        # fd prefixes only count at the start of a word: "a2>f" is the word "a2" then ">"
        rest_ops = [op for op in REDIRECTS if not op.startswith("2")]
    else:
        if rest.startswith("1>"):
            # 1> and 1>> are the same as > and >>
            rest = rest[1:]
            for op in (">>", ">&", ">"):
                if rest.startswith(op):
                    return op, len(op) + 1
            return None
        rest_ops = REDIRECTS
    for op in rest_ops:
        if rest.startswith(op):
            return op, len(op)
    return None


def tokenize(line):
    """
    Split a command line into tokens.
    Words keep their quotes and backslashes; they are removed later by the
    expansion pass, so a quoted '>' or '|' stays an ordinary word.
    """
    tokens = []
    word = ""
    i = 0
    n = len(line)

    def flush():
        nonlocal word
        if word:
            tokens.append(Token(WORD, word))
            word = ""

    while i < n:
        ch = line[i]

        if ch == "'":
            end = line.find("'", i + 1)
            if end < 0:
                raise ShellSyntaxError("unterminated single quote")
            word += line[i:end + 1]
            i = end + 1
            continue

        if ch == '"':
            j = i + 1
            while j < n and line[j] != '"':
                if line[j] == "\\" and j + 1 < n:
                    j += 1
                j += 1
            if j >= n:
                raise ShellSyntaxError("unterminated double quote")
            word += line[i:j + 1]
            i = j + 1
            continue

        if ch == "\\":
            word += line[i:i + 2]
            i += 2
            continue

        if ch in WHITESPACE:
            flush()
            i += 1
            continue

        redirect = _match_redirect(line, i, word) if ch in "<>&12" else None
        if redirect and (ch in "<>&" or not word):
            op, length = redirect
            flush()
            tokens.append(Token(REDIR, op))
            i += length
            continue

        if ch in BREAK_CHARS:
            flush()
            for op in OPERATORS:
                if line.startswith(op, i):
                    tokens.append(Token(OP, op))
                    i += len(op)
                    break
            continue

        word += ch
        i += 1

    flush()
    return tokens
