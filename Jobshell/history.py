import os
import readline
import sys

from Jobshell.config import HISTORY_FILE, MAX_HISTORY


def init_readline():
    """Configure readline so the prompt behaves like a Linux terminal"""
    try:
        if not sys.stdin.isatty():
            return

        # Up/down arrows walk the history
        readline.parse_and_bind("\\e[A: previous-history")
        readline.parse_and_bind("\\e[B: next-history")

        # Ctrl+Left/Right jump between words
        readline.parse_and_bind("\\e[1;5D: backward-word")
        readline.parse_and_bind("\\e[1;5C: forward-word")

        readline.parse_and_bind("set editing-mode emacs")
        readline.parse_and_bind("set completion-ignore-case on")
        readline.parse_and_bind("set show-all-if-ambiguous on")

    except Exception as e:
        print(f"Warning: Could not configure readline: {e}", file=sys.stderr)


def save_history(path=HISTORY_FILE):
    """Write the history to a file"""
    try:
        readline.set_history_length(MAX_HISTORY)
        readline.write_history_file(path)
    except OSError as e:
        print(f"Warning: Could not save history: {e}", file=sys.stderr)


def load_history(path=HISTORY_FILE):
    """Load the history from a file"""
    try:
        if os.path.exists(path):
            readline.read_history_file(path)
        readline.set_history_length(MAX_HISTORY)
    except OSError as e:
        print(f"Warning: Could not load history: {e}", file=sys.stderr)


def add_to_history(line):
    """Add a command to the history, skipping immediate repeats"""
    hlen = readline.get_current_history_length()
    if hlen and readline.get_history_item(hlen) == line:
        return
    readline.add_history(line)


def show_history(stream=None):
    """Print the whole history"""
    stream = sys.stdout if stream is None else stream
    hlen = readline.get_current_history_length()
    for i in range(1, hlen + 1):
        print(f"{i}\t{readline.get_history_item(i)}", file=stream)
