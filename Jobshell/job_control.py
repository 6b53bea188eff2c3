"""
Job registry, process waiting and signal routing.

Every tracked job has exactly one waiter at a time: either the caller that
runs it in the foreground, or a monitor thread started by watch(). Monitors
never print; they publish JobEvents on a queue and the REPL writes them out
before the next prompt.
"""
import os
import queue
import signal
import sys
import threading
from collections import namedtuple

import psutil

from Jobshell.config import SHELL_NAME
from Jobshell.errors import JobNotFoundError, SignalDeliveryError

RUNNING = "Running"
STOPPED = "Stopped"
FOREGROUND = "Foreground"
DONE = "Done"

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTSTP, signal.SIGCONT, signal.SIGTERM, signal.SIGCHLD)

# Kinds of WaitResult
EXITED = "exited"
SIGNALED = "signaled"
PROC_STOPPED = "stopped"
CONTINUED = "continued"

WaitResult = namedtuple("WaitResult", ["kind", "value"])


class JobEvent(namedtuple("JobEvent", ["job_id", "label", "command"])):
    """A status change of a job, rendered as '[id]+ <Status> <command>'."""

    def __str__(self):
        return f"[{self.job_id}]+ {self.label} {self.command}"


def exit_status(returncode):
    """Map a Popen returncode to a shell exit status in [0, 255]."""
    if returncode is None:
        return 0
    if returncode < 0:
        return 128 + (-returncode)
    return returncode & 0xFF


def signal_label(signum):
    try:
        return signal.strsignal(signum) or f"Signal {signum}"
    except ValueError:
        return f"Signal {signum}"


def exit_label(result):
    """Status word of a finished job: Done, Exit N or the signal name."""
    if result.kind == SIGNALED:
        return signal_label(result.value)
    if result.value:
        return f"Exit {result.value}"
    return DONE


def wait_process(proc, options=0):
    """
    waitpid() on one Popen and decode the result.
    Returns None when WNOHANG is set and nothing changed. Keeps
    proc.returncode in sync so Popen never waits on a reaped pid.
    """
    if proc.returncode is not None:
        return _exit_result(proc.returncode)
    try:
        pid, status = os.waitpid(proc.pid, options)
    except ChildProcessError:
        # collected elsewhere; Popen treats this the same way
        if proc.returncode is None:
            proc.returncode = 0
        return _exit_result(proc.returncode)

    if pid == 0:
        return None
    if os.WIFSTOPPED(status):
        return WaitResult(PROC_STOPPED, os.WSTOPSIG(status))
    if os.WIFCONTINUED(status):
        return WaitResult(CONTINUED, 0)

    proc.returncode = os.waitstatus_to_exitcode(status)
    return _exit_result(proc.returncode)


def _exit_result(returncode):
    if returncode < 0:
        return WaitResult(SIGNALED, -returncode)
    return WaitResult(EXITED, returncode)


def process_state(pid):
    """OS-level state of a process as reported by psutil."""
    try:
        return psutil.Process(pid).status()
    except psutil.NoSuchProcess:
        return "terminated"
    except psutil.AccessDenied:
        return "unknown"


class Job:
    """
    A pipeline under job control. The last process is the primary handle:
    its status is the job's status.
    """

    def __init__(self, job_id, command, processes, status=RUNNING, pgid=None, threads=None):
        self.id = job_id
        self.command = command
        self.processes = list(processes)
        self.status = status
        self.pgid = pgid
        self.threads = list(threads or [])
        self.exit_code = None
        self.monitored = False
        self.changed = threading.Condition()

    @property
    def process(self):
        return self.processes[-1]

    @property
    def pid(self):
        return self.process.pid

    def describe(self, long=False):
        if long:
            return f"[{self.id}] {self.pid} {self.status} ({process_state(self.pid)}) {self.command}"
        return f"[{self.id}] {self.status} {self.command}"

    def __repr__(self):
        return f"Job(id={self.id}, pid={self.pid}, status={self.status}, command={self.command!r})"


class JobManager:
    """
    Registry of jobs plus the single foreground-job pointer. The registry and
    the pointer have separate locks so a long foreground wait never blocks
    `jobs`.
    """

    def __init__(self):
        self._jobs = {}
        self._next_id = 1
        self._lock = threading.RLock()
        self._fg_job = None
        self._fg_lock = threading.RLock()
        self._events = queue.SimpleQueue()
        self._previous_handlers = {}

    # ---------- registry ----------

    def add_job(self, command, processes, pgid=None, threads=None, status=RUNNING, watch=False):
        """Register a job under the next id. With watch=True a monitor thread owns its wait."""
        if not isinstance(processes, (list, tuple)):
            processes = [processes]
        with self._lock:
            job = Job(self._next_id, command, processes, status=status, pgid=pgid, threads=threads)
            job.monitored = watch
            self._jobs[job.id] = job
            self._next_id += 1
        if watch:
            self._start_monitor(job)
        return job

    def list_jobs(self):
        with self._lock:
            return [self._jobs[k] for k in sorted(self._jobs)]

    def get_job(self, job_id):
        with self._lock:
            return self._jobs.get(job_id)

    def remove_job(self, job_id):
        with self._lock:
            self._jobs.pop(job_id, None)

    def current_job(self):
        """The most recently started job still in the registry, or None."""
        with self._lock:
            return self._jobs[max(self._jobs)] if self._jobs else None

    def _require(self, job_id):
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"{job_id}: no such job")
        return job

    # ---------- foreground pointer ----------

    def set_foreground_job(self, job):
        with self._fg_lock:
            self._fg_job = job

    def get_foreground_job(self):
        with self._fg_lock:
            return self._fg_job

    # ---------- events ----------

    def publish(self, job, label):
        self._events.put(JobEvent(job.id, label, job.command))

    def drain_events(self):
        events = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                return events

    def report_events(self, stream=None):
        """Write pending job notices; the only place job notices are printed."""
        stream = sys.stdout if stream is None else stream
        events = self.drain_events()
        for event in events:
            print(event, file=stream)
        if events:
            stream.flush()
        return len(events)

    # ---------- state transitions ----------

    def _set_status(self, job, status):
        with job.changed:
            # Done is final; a monitor may finish the job while fg/bg runs
            if job.status != DONE:
                job.status = status
            job.changed.notify_all()

    def _finish(self, job, result, label=None):
        with job.changed:
            if job.status == DONE:
                return
            job.exit_code = exit_status(-result.value if result.kind == SIGNALED else result.value)
            job.status = DONE
            job.changed.notify_all()
        if job.id is not None:
            self.remove_job(job.id)
            self.publish(job, label or exit_label(result))

    def _apply(self, job, result):
        """Apply one wait result to a job. Returns True once the job is finished."""
        if result.kind == PROC_STOPPED:
            self._set_status(job, STOPPED)
            self.publish(job, STOPPED)
            return False
        if result.kind == CONTINUED:
            with job.changed:
                resumed = job.status == STOPPED
                if resumed:
                    job.status = RUNNING
                    job.changed.notify_all()
            if resumed:
                self.publish(job, "Continued")
            return False
        # the rest of the pipeline has exited or will die of SIGPIPE
        for proc in job.processes[:-1]:
            proc.wait()
        for thread in job.threads:
            thread.join()
        self._finish(job, result)
        return True

    # ---------- waiting ----------

    def watch(self, job):
        """Hand the job's wait over to a monitor thread (no-op if it already has one)."""
        with job.changed:
            if job.monitored or job.status == DONE:
                return
            job.monitored = True
        self._start_monitor(job)

    def _start_monitor(self, job):
        thread = threading.Thread(target=self._monitor, args=(job,), name=f"job-{job.id}", daemon=True)
        thread.start()

    def _monitor(self, job):
        try:
            while True:
                result = wait_process(job.process, os.WUNTRACED | os.WCONTINUED)
                if self._apply(job, result):
                    return
        except OSError as e:
            # wait failures stay in the background; report and forget the job
            self._finish(job, WaitResult(EXITED, 1), label=f"Error ({e.strerror or e})")

    def wait_foreground(self, command, processes, pgid=None, threads=None):
        """
        Wait for a pipeline started in the foreground.
        Returns (exit codes per process, None) when every process exited, or
        (None, job) when the pipeline was stopped and registered as a job.
        """
        job = Job(None, command, processes, status=FOREGROUND, pgid=pgid, threads=threads)
        self.set_foreground_job(job)
        try:
            result = wait_process(job.process, os.WUNTRACED)
            if result.kind == PROC_STOPPED:
                stopped = self.add_job(command, processes, pgid=pgid, threads=threads, status=STOPPED)
                self.publish(stopped, STOPPED)
                self.watch(stopped)
                return None, stopped
            codes = [exit_status(proc.wait()) for proc in processes[:-1]]
            codes.append(exit_status(job.process.returncode))
            return codes, None
        finally:
            self.set_foreground_job(None)

    def foreground_job(self, job_id):
        """
        Continue a job in the foreground and block until it exits or stops.
        Returns the job's exit status (128+SIGTSTP if it stopped again).
        """
        job = self._require(job_id)
        self.watch(job)
        self._set_status(job, FOREGROUND)
        self.set_foreground_job(job)
        try:
            self.signal_job(job, signal.SIGCONT)
            with job.changed:
                while job.status not in (STOPPED, DONE):
                    # short timeout so signal handlers run promptly in the main thread
                    job.changed.wait(0.2)
        finally:
            self.set_foreground_job(None)
        if job.status == STOPPED:
            return 128 + signal.SIGTSTP
        return job.exit_code

    def background_job(self, job_id):
        """Continue a stopped job in the background without waiting for it."""
        job = self._require(job_id)
        self._set_status(job, RUNNING)
        self.watch(job)
        self.signal_job(job, signal.SIGCONT)
        return job

    def reap_children(self):
        """
        Non-blocking pass over tracked jobs nobody is waiting on: collect
        exited processes and record stop/continue transitions.
        Only tracked children are waited for, so foreground waits never lose
        their status to this pass.
        """
        reaped = 0
        for job in self.list_jobs():
            if job.monitored:
                continue
            while True:
                result = wait_process(job.process, os.WNOHANG | os.WUNTRACED | os.WCONTINUED)
                if result is None:
                    break
                if result.kind in (EXITED, SIGNALED):
                    for proc in job.processes[:-1]:
                        proc.poll()
                    self._finish(job, result)
                    reaped += 1
                    break
                self._apply(job, result)
        return reaped

    # ---------- signals ----------

    def signal_job(self, job, signum):
        """Send a signal to every process of a job (its process group when it has one)."""
        try:
            if job.pgid:
                os.killpg(job.pgid, signum)
            else:
                alive = [p for p in job.processes if p.returncode is None]
                if not alive:
                    raise ProcessLookupError(f"job {job.id} has no live process")
                for proc in alive:
                    os.kill(proc.pid, signum)
        except ProcessLookupError as e:
            if job.id is not None:
                self.remove_job(job.id)
            raise SignalDeliveryError(f"job {job.id} has already exited") from e
        except PermissionError as e:
            raise SignalDeliveryError(f"cannot signal job {job.id}: {e.strerror}") from e

    def install_signal_handlers(self):
        """Subscribe to the job-control signals. Must be called from the main thread."""
        if self._previous_handlers:
            return
        for signum in HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self.handle_signal)

    def uninstall_signal_handlers(self):
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        self._previous_handlers = {}

    def handle_signal(self, signum, frame=None):
        if signum in (signal.SIGINT, signal.SIGTSTP):
            fg_job = self.get_foreground_job()
            if fg_job is None:
                if signum == signal.SIGINT:
                    # no job to interrupt: interrupt the prompt instead
                    raise KeyboardInterrupt
                return
            try:
                self.signal_job(fg_job, signum)
            except SignalDeliveryError as e:
                print(f"{SHELL_NAME}: {e}", file=sys.stderr)
        elif signum == signal.SIGTERM:
            for job in self.list_jobs():
                try:
                    self.signal_job(job, signal.SIGTERM)
                except SignalDeliveryError:
                    pass
        elif signum == signal.SIGCHLD:
            self.reap_children()
        # SIGCONT comes from our own fg/bg; nothing to do

    def close(self, terminate=True):
        """Remove the signal subscription and terminate jobs that are still alive."""
        self.uninstall_signal_handlers()
        if not terminate:
            return
        for job in self.list_jobs():
            if not psutil.pid_exists(job.pid):
                continue
            try:
                self.signal_job(job, signal.SIGTERM)
                if job.status == STOPPED:
                    self.signal_job(job, signal.SIGCONT)
            except SignalDeliveryError:
                continue

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
