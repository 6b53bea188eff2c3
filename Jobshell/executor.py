import contextlib
import io
import os
import signal
import subprocess
import sys
import threading
from functools import partial

from Jobshell.builtin import BUILTINS, BuiltinContext
from Jobshell.config import REDIRECT_FILE_MODE, SHELL_NAME
from Jobshell.errors import ExecutionError, RedirectionError, ShellError, ShellExit
from Jobshell.expansion import expand_word, expand_words
from Jobshell.grammar import (
    REDIRECT_APPEND, REDIRECT_BOTH, REDIRECT_BOTH_ALT, REDIRECT_ERR, REDIRECT_ERR_APPEND,
    REDIRECT_ERR_DUP, REDIRECT_ERR_TO_OUT, REDIRECT_IN, REDIRECT_OUT,
    SimpleCommand, Subshell, format_pipeline, single_element_command,
)
from Jobshell.job_control import exit_status

# Redirect targets that mean "wherever this stream goes by default"
STDOUT = "<stdout>"
STDERR = "<stderr>"

# Source of a stage's input when it reads the pipeline's own stdin
PIPELINE_INPUT = "<stdin>"

OPEN_MODES = {
    REDIRECT_OUT: "w",
    REDIRECT_APPEND: "a",
    REDIRECT_ERR: "w",
    REDIRECT_ERR_APPEND: "a",
    REDIRECT_ERR_DUP: "w",
    REDIRECT_BOTH: "w",
    REDIRECT_BOTH_ALT: "w",
}


class Redirections:
    """Where one element reads and writes after its redirects are applied."""

    def __init__(self):
        self.stdin = None
        self.stdout = STDOUT
        self.stderr = STDERR


def _create_file(path, flags):
    return os.open(path, flags, REDIRECT_FILE_MODE)


def open_redirect_file(path, mode):
    if mode != "r":
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
    return open(path, mode, encoding="utf-8", errors="replace", opener=_create_file)


def redirect_target(redirect, state):
    words = expand_word(redirect.file, state)
    if len(words) != 1 or not words[0]:
        raise RedirectionError(f"{redirect.file}: ambiguous redirect")
    return words[0]


def resolve_redirections(element, state, files):
    """
    Open every redirect target of one element, in order; the last redirect of
    a direction wins. Opened files are registered on the ExitStack `files`.
    """
    plan = Redirections()
    for redirect in element.redirects:
        if redirect.type == REDIRECT_ERR_TO_OUT:
            plan.stderr = plan.stdout
            continue

        target = redirect_target(redirect, state)
        if redirect.type in (REDIRECT_BOTH_ALT, REDIRECT_ERR_DUP) and target in ("1", "2"):
            # >&2 and 2>&1 duplicate a descriptor; >&1 and 2>&2 change nothing
            if redirect.type == REDIRECT_BOTH_ALT and target == "2":
                plan.stdout = plan.stderr
            elif redirect.type == REDIRECT_ERR_DUP and target == "1":
                plan.stderr = plan.stdout
            continue

        path = state.resolve_path(target)
        mode = "r" if redirect.type == REDIRECT_IN else OPEN_MODES[redirect.type]
        try:
            f = files.enter_context(open_redirect_file(path, mode))
        except FileNotFoundError as e:
            raise RedirectionError(f"no such file or directory: {target}") from e
        except IsADirectoryError as e:
            raise RedirectionError(f"is a directory: {target}") from e
        except PermissionError as e:
            raise RedirectionError(f"permission denied: {target}") from e
        except OSError as e:
            raise RedirectionError(f"{target}: {e.strerror or e}") from e

        if redirect.type == REDIRECT_IN:
            plan.stdin = f
        elif redirect.type in (REDIRECT_OUT, REDIRECT_APPEND):
            plan.stdout = f
        elif redirect.type in (REDIRECT_ERR, REDIRECT_ERR_APPEND, REDIRECT_ERR_DUP):
            plan.stderr = f
        else:
            plan.stdout = plan.stderr = f
    return plan


def _fileno(stream):
    try:
        return stream.fileno()
    except (AttributeError, OSError, ValueError):
        # io.StringIO and friends have no descriptor
        return None


def _flush(*streams):
    for stream in streams:
        if stream is None or isinstance(stream, int):
            continue
        try:
            stream.flush()
        except (AttributeError, ValueError):
            pass


def write_bytes(stream, data):
    """Write raw process output to a text stream, through its buffer when it has one."""
    buffer = getattr(stream, "buffer", None)
    if buffer is not None:
        stream.flush()
        buffer.write(data)
        buffer.flush()
    else:
        stream.write(data.decode("utf-8", errors="replace"))
        stream.flush()


def _pump(pipe, stream):
    """Copy a child's output pipe into a stream without a descriptor."""
    with pipe:
        for chunk in iter(partial(pipe.read1, 65536), b""):
            write_bytes(stream, chunk)


def _feed(pipe, data):
    """Write buffered stage output into a child's stdin, then close it."""
    # the reader may exit early, as `head` does
    with contextlib.suppress(BrokenPipeError):
        try:
            pipe.write(data)
        finally:
            pipe.close()


def spawn_process(args, **popen_kwargs):
    """Start one external command; failures to start it raise ExecutionError."""
    try:
        return subprocess.Popen(args, **popen_kwargs)
    except PermissionError as e:
        raise ExecutionError(f"permission denied: {args[0]}") from e
    except FileNotFoundError as e:
        raise ExecutionError(f"command not found: {args[0]}") from e
    except (OSError, subprocess.SubprocessError) as e:
        raise ExecutionError(f"failed to execute '{args[0]}': {e}") from e


def _join_process_group(pgid):
    try:
        os.setpgid(0, pgid)
    except OSError:
        # the group leader is already gone
        os.setpgrp()


def execute_pipeline(pipeline, state, jobs, stdin=None, stdout=None, stderr=None):
    """
    Run one pipeline and return its exit status.
    Redirections are resolved before anything starts; a failure there aborts
    the pipeline with status 1. Background pipelines return 0 as soon as
    every process is started.
    """
    stdout = sys.stdout if stdout is None else stdout
    stderr = sys.stderr if stderr is None else stderr

    with contextlib.ExitStack() as files:
        try:
            plans = [resolve_redirections(e, state, files) for e in pipeline.elements]
        except RedirectionError as e:
            print(f"{SHELL_NAME}: {e}", file=stderr)
            return 1

        run = PipelineRun(pipeline, state, jobs, stdin, stdout, stderr)
        run.start(plans)
        if pipeline.background:
            return run.detach()
        return run.wait()


class PipelineRun:
    """
    Starts the stages of one pipeline left to right. External commands run as
    child processes connected by OS pipes; builtins and nested commands run
    inline and hand their output to the next stage as a byte buffer.
    """

    def __init__(self, pipeline, state, jobs, stdin, stdout, stderr):
        self.pipeline = pipeline
        self.state = state
        self.jobs = jobs
        self.stdin = stdin
        self.stdout = stdout
        self.stderr = stderr
        self.codes = [0] * len(pipeline.elements)
        self.processes = []
        self.process_stage = []
        self.threads = []
        self.pgid = None

    def _thread(self, target, *args):
        thread = threading.Thread(target=target, args=args, daemon=True)
        thread.start()
        self.threads.append(thread)

    # ---------- stages ----------

    def start(self, plans):
        upstream = PIPELINE_INPUT
        last = len(plans) - 1
        for index, (element, plan) in enumerate(zip(self.pipeline.elements, plans)):
            is_last = index == last
            args = None
            if isinstance(element, SimpleCommand):
                args = expand_words(element.parts, self.state)
                if not args:
                    self._close_upstream(upstream)
                    upstream = b""
                    continue

            if args is None or args[0] in BUILTINS:
                upstream = self._run_inline(index, element, args, plan, upstream, is_last)
            else:
                upstream = self._spawn(index, args, plan, upstream, is_last)

    def _close_upstream(self, upstream):
        if hasattr(upstream, "close"):
            upstream.close()

    def _inline_input(self, plan, upstream):
        if plan.stdin is not None:
            return plan.stdin
        if upstream is PIPELINE_INPUT:
            return sys.stdin if self.stdin is None else self.stdin
        if isinstance(upstream, bytes):
            return io.StringIO(upstream.decode("utf-8", errors="replace"))
        return io.TextIOWrapper(upstream, encoding="utf-8", errors="replace")

    def _run_inline(self, index, element, args, plan, upstream, is_last):
        buffer = None

        def target(where):
            nonlocal buffer
            if where is STDOUT:
                if is_last:
                    return self.stdout
                if buffer is None:
                    buffer = io.StringIO()
                return buffer
            if where is STDERR:
                return self.stderr
            return where

        stdin = self._inline_input(plan, upstream)
        stdout = target(plan.stdout)
        stderr = target(plan.stderr)
        try:
            if args is None:
                code = self._run_nested(element, stdin, stdout, stderr)
            else:
                code = run_builtin(element, args, stdin, stdout, stderr, self.state, self.jobs)
        except ShellExit as e:
            if len(self.pipeline.elements) == 1:
                raise
            # `exit` as one stage of a pipeline only ends that stage
            code = exit_status(e.status)
        finally:
            self._close_upstream(upstream)
            _flush(stdout, stderr)

        self.codes[index] = code
        return buffer.getvalue().encode("utf-8") if buffer is not None else b""

    def _run_nested(self, element, stdin, stdout, stderr):
        from Jobshell.orchestrator import run_command

        if isinstance(element, Subshell):
            sub_state = self.state.copy()
            try:
                return run_command(element.body, sub_state, self.jobs, stdin, stdout, stderr)
            except ShellExit as e:
                return exit_status(e.status)
        return run_command(element.body, self.state, self.jobs, stdin, stdout, stderr)

    def _spawn(self, index, args, plan, upstream, is_last):
        pipe_r = pipe_w = None
        pumps = []
        feed = None

        def target(where):
            nonlocal pipe_r, pipe_w
            if where is STDOUT:
                if is_last:
                    return self.stdout
                if pipe_w is None:
                    pipe_r, pipe_w = os.pipe()
                return pipe_w
            if where is STDERR:
                return self.stderr
            return where

        def popen_arg(stream):
            if isinstance(stream, int):
                return stream
            fd = _fileno(stream)
            if fd is not None:
                return fd
            pumps.append(stream)
            return subprocess.PIPE

        # stdin
        if plan.stdin is not None:
            stdin_arg = plan.stdin.fileno()
        elif upstream is PIPELINE_INPUT:
            stdin_arg = None if self.stdin is None else _fileno(self.stdin)
            if self.stdin is not None and stdin_arg is None:
                feed = self.stdin.read().encode("utf-8")
                stdin_arg = subprocess.PIPE
        elif isinstance(upstream, bytes):
            feed = upstream
            stdin_arg = subprocess.PIPE
        else:
            stdin_arg = upstream

        # stdout / stderr
        out_stream = target(plan.stdout)
        err_stream = target(plan.stderr)
        stdout_arg = popen_arg(out_stream)
        if err_stream == out_stream:
            stderr_arg = subprocess.STDOUT
        else:
            stderr_arg = popen_arg(err_stream)

        popen_kwargs = {}
        if self.pipeline.background:
            if self.pgid is None:
                popen_kwargs["preexec_fn"] = os.setpgrp
            else:
                popen_kwargs["preexec_fn"] = partial(_join_process_group, self.pgid)

        _flush(self.stdout, self.stderr, out_stream, err_stream)
        try:
            proc = spawn_process(
                args,
                stdin=stdin_arg,
                stdout=stdout_arg,
                stderr=stderr_arg,
                cwd=self.state.cwd,
                env=self.state.env,
                **popen_kwargs
            )
        except ExecutionError as e:
            proc = None
            print(f"{SHELL_NAME}: {e}", file=self.stderr)
        finally:
            if pipe_w is not None:
                os.close(pipe_w)
            self._close_upstream(upstream)

        if proc is None:
            if pipe_r is not None:
                os.close(pipe_r)
            self.codes[index] = 1
            return b""

        if self.pgid is None and self.pipeline.background:
            self.pgid = proc.pid
        self.processes.append(proc)
        self.process_stage.append(index)

        if feed is not None:
            self._thread(_feed, proc.stdin, feed)
        if pumps:
            if stdout_arg == subprocess.PIPE:
                self._thread(_pump, proc.stdout, pumps.pop(0))
            if stderr_arg == subprocess.PIPE:
                self._thread(_pump, proc.stderr, pumps.pop(0))

        if pipe_r is not None:
            return os.fdopen(pipe_r, "rb")
        return b""

    # ---------- completion ----------

    def exit_code(self):
        if self.state.pipefail:
            for code in reversed(self.codes):
                if code:
                    return code
            return 0
        return self.codes[-1]

    def wait(self):
        if self.processes:
            command = format_pipeline(self.pipeline, with_background=False)
            codes, stopped = self.jobs.wait_foreground(
                command, self.processes, pgid=self.pgid, threads=self.threads
            )
            if stopped is not None:
                return 128 + signal.SIGTSTP
            for index, code in zip(self.process_stage, codes):
                self.codes[index] = code
        for thread in self.threads:
            thread.join()
        return self.exit_code()

    def detach(self):
        """Register the started processes as a background job and return at once."""
        if not self.processes:
            # nothing left running: builtins and groups already ran inline and
            # commands that failed to start were reported; `nosuchcmd &` is 0
            for thread in self.threads:
                thread.join()
            return 0
        command = format_pipeline(self.pipeline, with_background=False)
        job = self.jobs.add_job(command, self.processes, pgid=self.pgid, threads=self.threads, watch=True)
        self.state.last_background_pid = job.pid
        print(f"[{job.id}] {job.pid}", file=self.stdout)
        _flush(self.stdout)
        return 0


def run_builtin(element, args, stdin, stdout, stderr, state, jobs):
    """
    Run a builtin with its output streams swapped in for this call only.
    A ShellError or OSError becomes `name: message` on stderr and status 1.
    """
    name = args[0]
    ctx = BuiltinContext(name, args[1:], stdin, stdout, stderr, state, jobs,
                         element=single_element_command(element))
    try:
        with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
            code = BUILTINS[name](ctx)
    except ShellError as e:
        print(f"{name}: {e}", file=stderr)
        return e.exit_code
    except OSError as e:
        print(f"{name}: {e.strerror or e}", file=stderr)
        return 1
    return exit_status(ctx.exit_code if code is None else code)
