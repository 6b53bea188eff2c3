import os

from Jobshell.config import PIPEFAIL_DEFAULT


class ShellState:
    """
    Per-session shell state: working directory, environment, $?, $! and aliases.
    One instance per shell; subshells work on a copy.
    """

    def __init__(self, cwd=None, env=None):
        self.env = dict(os.environ if env is None else env)
        self.cwd = os.path.abspath(cwd or os.getcwd())
        self.previous_dir = self.env.get("OLDPWD", "")
        self.last_status = 0
        self.last_background_pid = 0
        self.shell_pid = os.getpid()
        self.aliases = {}
        self.pipefail = PIPEFAIL_DEFAULT
        self.env["PWD"] = self.cwd

    def copy(self):
        """Return an independent copy, used to run a subshell."""
        clone = ShellState.__new__(ShellState)
        clone.env = dict(self.env)
        clone.cwd = self.cwd
        clone.previous_dir = self.previous_dir
        clone.last_status = self.last_status
        clone.last_background_pid = self.last_background_pid
        clone.shell_pid = self.shell_pid
        clone.aliases = dict(self.aliases)
        clone.pipefail = self.pipefail
        return clone

    # ---------- variables ----------

    def get_var(self, name):
        return self.env.get(name, "")

    def set_var(self, name, value):
        self.env[name] = value

    def unset_var(self, name):
        self.env.pop(name, None)

    def set_status(self, status):
        # normalize like shells do
        self.last_status = int(status) & 0xFF if status is not None else 0

    # ---------- paths ----------

    def resolve_path(self, path):
        """Resolve a user path (with ~) against the shell's working directory."""
        path = os.path.expanduser(path)
        if not os.path.isabs(path):
            path = os.path.join(self.cwd, path)
        return os.path.normpath(path)

    def change_directory(self, target):
        """
        Change the working directory. Raises OSError subclasses for missing
        or non-directory targets. Updates PWD and OLDPWD on success.
        """
        path = self.resolve_path(target)
        if not os.path.exists(path):
            raise FileNotFoundError(f"no such file or directory: {target}")
        if not os.path.isdir(path):
            raise NotADirectoryError(f"not a directory: {target}")
        if not os.access(path, os.X_OK):
            raise PermissionError(f"permission denied: {target}")

        if path != self.cwd:
            self.previous_dir = self.cwd
        self.cwd = path
        self.env["OLDPWD"] = self.previous_dir
        self.env["PWD"] = self.cwd
        return path
