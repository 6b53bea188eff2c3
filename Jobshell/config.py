import os

SHELL_NAME = "minishell"

HISTORY_FILE = os.path.expanduser(
    os.environ.get("MINISHELL_HISTFILE", "~/.minishell_history")
)

try:
    MAX_HISTORY = int(os.environ.get("MINISHELL_HISTSIZE", "1000"))
except ValueError:
    MAX_HISTORY = 1000

PROMPT_TEMPLATE = os.environ.get("MINISHELL_PROMPT", "{user}@minishell:{cwd}$ ")

PIPEFAIL_DEFAULT = os.environ.get("MINISHELL_PIPEFAIL", "").lower() in ("1", "yes", "on", "true")

# Mode for files created by output redirection
REDIRECT_FILE_MODE = 0o644
