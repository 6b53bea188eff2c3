import os
import sys

from Jobshell.builtin import expand_alias
from Jobshell.config import PROMPT_TEMPLATE, SHELL_NAME
from Jobshell.errors import ShellExit, ShellSyntaxError
from Jobshell.history import add_to_history, init_readline, load_history, save_history
from Jobshell.job_control import JobManager
from Jobshell.orchestrator import run_command
from Jobshell.parser import parse
from Jobshell.state import ShellState


class Shell:
    """One interactive session: a ShellState and the JobManager that goes with it."""

    def __init__(self, state=None, jobs=None):
        self.state = state or ShellState()
        self.jobs = jobs or JobManager()

    def prompt(self):
        """Generate shell prompt"""
        user = self.state.get_var("USER") or self.state.get_var("USERNAME") or "user"
        cwd = self.state.cwd
        home = self.state.get_var("HOME")
        if home and (cwd == home or cwd.startswith(home.rstrip("/") + "/")):
            cwd = "~" + cwd[len(home.rstrip("/")):]
        base = os.path.basename(self.state.cwd) or "/"
        return PROMPT_TEMPLATE.format(user=user, cwd=cwd, base=base, status=self.state.last_status)

    def run_line(self, line, stdin=None, stdout=None, stderr=None):
        """
        Parse and run one command line. Returns its exit status; syntax errors
        are reported and give status 2. ShellExit propagates to the caller.
        """
        stderr = sys.stderr if stderr is None else stderr
        line = expand_alias(line, self.state.aliases)
        try:
            command = parse(line)
        except ShellSyntaxError as e:
            print(f"{SHELL_NAME}: syntax error: {e}", file=stderr)
            self.state.set_status(e.exit_code)
            return e.exit_code
        return run_command(command, self.state, self.jobs, stdin, stdout, stderr)

    def run(self):
        """Main shell loop. Returns the status to exit with."""
        self.jobs.install_signal_handlers()
        init_readline()
        load_history()
        status = 0

        try:
            while True:
                self.jobs.report_events(sys.stdout)
                try:
                    line = input(self.prompt()).strip()
                except EOFError:
                    print()
                    status = self.state.last_status
                    break
                except KeyboardInterrupt:
                    print()
                    continue

                if not line:
                    continue
                add_to_history(line)

                try:
                    self.run_line(line)
                except ShellExit as e:
                    status = e.status
                    break
                except KeyboardInterrupt:
                    print()
                    self.state.set_status(130)

        finally:
            save_history()
            self.jobs.close()
            self.jobs.report_events(sys.stdout)
        return status


def main():
    return Shell().run()
