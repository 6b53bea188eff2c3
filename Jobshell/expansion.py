import glob
import os
import re

GLOB_CHARS = set("*?[")
NAME_RX = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
SPECIAL_VARS = ("?", "!", "$")
# characters a backslash escapes inside double quotes
DQUOTE_ESCAPES = '"\\$`'


def _special_value(name, state):
    if name == "?":
        return str(state.last_status)
    if name == "!":
        return str(state.last_background_pid) if state.last_background_pid else ""
    return str(state.shell_pid)


def expand_dollar(word, i, state):
    """Expand the $-expression starting at word[i]. Returns (text, next index)."""
    nxt = word[i + 1] if i + 1 < len(word) else ""

    if nxt and nxt in SPECIAL_VARS:
        return _special_value(nxt, state), i + 2

    if nxt == "{":
        end = word.find("}", i + 2)
        if end >= 0:
            name = word[i + 2:end]
            if name in SPECIAL_VARS:
                return _special_value(name, state), end + 1
            if NAME_RX.fullmatch(name):
                return state.get_var(name), end + 1
        # not a valid ${...} form; treat '$' literally
        return "$", i + 1

    m = NAME_RX.match(word, i + 1)
    if m:
        return state.get_var(m.group()), m.end()
    return "$", i + 1


def expand_word(word, state):
    """
    Expand one raw word: quote removal, escapes, $variables, a leading ~ and
    wildcards. Returns a list because a wildcard can match several paths and
    an unquoted expansion to the empty string disappears.
    """
    value = []
    pattern = []
    has_glob = False
    had_quotes = False

    def add(text, quoted):
        value.append(text)
        pattern.append(glob.escape(text) if quoted else text)

    i = 0
    n = len(word)
    if word == "~" or word.startswith("~/"):
        add(state.get_var("HOME") or os.path.expanduser("~"), quoted=True)
        i = 1

    while i < n:
        ch = word[i]
        if ch == "'":
            had_quotes = True
            end = word.find("'", i + 1)
            end = n if end < 0 else end
            add(word[i + 1:end], quoted=True)
            i = end + 1
        elif ch == '"':
            had_quotes = True
            i = _expand_double_quoted(word, i + 1, state, add)
        elif ch == "\\":
            add(word[i + 1:i + 2], quoted=True)
            i += 2
        elif ch == "$":
            text, i = expand_dollar(word, i, state)
            add(text, quoted=True)
        else:
            if ch in GLOB_CHARS:
                has_glob = True
            add(ch, quoted=False)
            i += 1

    literal = "".join(value)
    if not literal and not had_quotes:
        return []

    if has_glob:
        matches = glob.glob("".join(pattern), root_dir=state.cwd)
        if matches:
            return sorted(matches)
        # POSIX behavior: leave token unchanged
    return [literal]


def _expand_double_quoted(word, i, state, add):
    """Expand the inside of a double-quoted section starting at word[i]; return the index past the closing quote."""
    n = len(word)
    while i < n and word[i] != '"':
        ch = word[i]
        if ch == "\\" and i + 1 < n and word[i + 1] in DQUOTE_ESCAPES:
            add(word[i + 1], quoted=True)
            i += 2
        elif ch == "$":
            text, i = expand_dollar(word, i, state)
            add(text, quoted=True)
        else:
            add(ch, quoted=True)
            i += 1
    return i + 1


def expand_words(words, state):
    expanded = []
    for word in words:
        expanded.extend(expand_word(word, state))
    return expanded
