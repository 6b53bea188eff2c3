import re
import shutil
import types

from Jobshell.errors import JobNotFoundError, ShellError, ShellExit
from Jobshell.history import show_history

ALIAS_NAME_RX = re.compile(r"\s*([^\s;|&<>()'\"\\]+)(?=[\s;|&<>()]|$)")
VAR_NAME_RX = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

SHELL_OPTIONS = ("pipefail",)


class BuiltinContext:
    """
    What a builtin gets to see: its arguments, its streams, the shell state,
    the job manager and the single command element it was called from.
    A builtin may set exit_code instead of returning one.
    """

    def __init__(self, name, args, stdin, stdout, stderr, state, jobs, element=None):
        self.name = name
        self.args = list(args)
        self.stdin = stdin
        self.stdout = stdout
        self.stderr = stderr
        self.state = state
        self.jobs = jobs
        self.element = element
        self.exit_code = 0

    def write(self, text=""):
        print(text, file=self.stdout)


def builtin_help(ctx):
    """Print help message"""
    ctx.write("""MiniShell help:
 Built-in commands:
  cd [dir|-]        : change directory
  pwd               : print working directory
  echo [-n] [args]  : print arguments
  exit [n]          : exit shell
  help              : print this help
  history           : show command history
  env               : print environment
  export NAME=VALUE : set an environment variable
  unset NAME        : remove an environment variable
  alias             : create or show aliases
  unalias           : remove aliases
  jobs [-l]         : list background jobs
  fg [id]           : resume a job in the foreground
  bg [id]           : resume a stopped job in the background
  type name         : describe a command
  set -o|+o option  : enable or disable a shell option (pipefail)

Features:
  Pipes using |
  Lists using ; && ||
  Redirection using > >> < 2> 2>> &> >& 2>&1 2>&N
  Subshells ( ... ) and groups { ...; }
  Background with & (run command in background)
""")


def builtin_cd(ctx):
    """Change directory"""
    state = ctx.state
    if not ctx.args:
        target = state.get_var("HOME")
        if not target:
            raise ShellError("HOME not set")
    elif ctx.args[0] == "-":
        target = state.previous_dir
        if not target:
            raise ShellError("OLDPWD not set")
    else:
        target = ctx.args[0]

    path = state.change_directory(target)
    if ctx.args and ctx.args[0] == "-":
        ctx.write(path)
    return 0


def builtin_pwd(ctx):
    ctx.write(ctx.state.cwd)
    return 0


def builtin_echo(ctx):
    args = ctx.args
    newline = True
    if args and args[0] == "-n":
        newline = False
        args = args[1:]
    print(" ".join(args), end="\n" if newline else "", file=ctx.stdout)
    return 0


def builtin_exit(ctx):
    status = ctx.state.last_status
    if ctx.args:
        try:
            status = int(ctx.args[0])
        except ValueError:
            raise ShellError(f"{ctx.args[0]}: numeric argument required")
    raise ShellExit(status & 0xFF)


def builtin_history(ctx):
    """Show command history"""
    show_history(ctx.stdout)
    return 0


def builtin_env(ctx):
    for name, value in sorted(ctx.state.env.items()):
        ctx.write(f"{name}={value}")
    return 0


def builtin_export(ctx):
    state = ctx.state
    if not ctx.args:
        for name, value in sorted(state.env.items()):
            ctx.write(f'export {name}="{value}"')
        return 0

    status = 0
    for arg in ctx.args:
        name, sep, value = arg.partition("=")
        if not VAR_NAME_RX.fullmatch(name):
            print(f"export: `{arg}': not a valid identifier", file=ctx.stderr)
            status = 1
            continue
        if sep:
            state.set_var(name, value)
        elif name not in state.env:
            state.set_var(name, "")
    return status


def builtin_unset(ctx):
    for name in ctx.args:
        ctx.state.unset_var(name)
    return 0


def builtin_alias(ctx):
    """Create or show aliases"""
    aliases = ctx.state.aliases
    if not ctx.args:
        for k, v in sorted(aliases.items()):
            ctx.write(f"alias {k}='{v}'")
        return 0

    status = 0
    for arg in ctx.args:
        if "=" in arg:
            name, val = arg.split("=", 1)
            aliases[name] = val
        elif arg in aliases:
            ctx.write(f"alias {arg}='{aliases[arg]}'")
        else:
            print(f"alias: {arg}: not found", file=ctx.stderr)
            status = 1
    return status


def builtin_unalias(ctx):
    """Remove aliases"""
    if not ctx.args:
        print("unalias: usage: unalias name", file=ctx.stderr)
        return 2
    status = 0
    for name in ctx.args:
        if ctx.state.aliases.pop(name, None) is None:
            print(f"unalias: {name}: not found", file=ctx.stderr)
            status = 1
    return status


def builtin_jobs(ctx):
    """List background jobs"""
    long = "-l" in ctx.args
    jobs = ctx.jobs.list_jobs()
    if not jobs:
        ctx.write("No background jobs")
        return 0
    for job in jobs:
        ctx.write(job.describe(long=long))
    return 0


def _job_id(ctx):
    """The job named by the first argument (`N` or `%N`), or the most recent job."""
    if not ctx.args:
        job = ctx.jobs.current_job()
        if job is None:
            raise JobNotFoundError("current: no such job")
        return job.id
    word = ctx.args[0]
    try:
        return int(word[1:] if word.startswith("%") else word)
    except ValueError:
        raise JobNotFoundError(f"{word}: no such job")


def builtin_fg(ctx):
    """Resume a job in the foreground"""
    job_id = _job_id(ctx)
    job = ctx.jobs.get_job(job_id)
    if job is None:
        raise JobNotFoundError(f"{job_id}: no such job")
    ctx.write(job.command)
    ctx.stdout.flush()
    return ctx.jobs.foreground_job(job_id)


def builtin_bg(ctx):
    """Resume a stopped job in the background"""
    job = ctx.jobs.background_job(_job_id(ctx))
    ctx.write(f"[{job.id}]+ {job.command} &")
    return 0


def builtin_true(ctx):
    return 0


def builtin_false(ctx):
    return 1


def builtin_type(ctx):
    state = ctx.state
    status = 0
    for name in ctx.args:
        if name in state.aliases:
            ctx.write(f"{name} is aliased to `{state.aliases[name]}'")
        elif name in BUILTINS:
            ctx.write(f"{name} is a shell builtin")
        else:
            path = shutil.which(name, path=state.get_var("PATH") or None)
            if path:
                ctx.write(f"{name} is {path}")
            else:
                print(f"type: {name}: not found", file=ctx.stderr)
                status = 1
    return status


def builtin_set(ctx):
    """set -o / +o for shell options"""
    state = ctx.state
    if len(ctx.args) < 2:
        for option in SHELL_OPTIONS:
            ctx.write(f"{option:<15} {'on' if getattr(state, option) else 'off'}")
        return 0

    flag, option = ctx.args[0], ctx.args[1]
    if flag not in ("-o", "+o"):
        raise ShellError(f"{flag}: invalid option")
    if option not in SHELL_OPTIONS:
        raise ShellError(f"{option}: invalid option name")
    setattr(state, option, flag == "-o")
    return 0


BUILTINS = types.MappingProxyType({
    "cd": builtin_cd,
    "pwd": builtin_pwd,
    "echo": builtin_echo,
    "exit": builtin_exit,
    "help": builtin_help,
    "history": builtin_history,
    "env": builtin_env,
    "export": builtin_export,
    "unset": builtin_unset,
    "alias": builtin_alias,
    "unalias": builtin_unalias,
    "jobs": builtin_jobs,
    "fg": builtin_fg,
    "bg": builtin_bg,
    "true": builtin_true,
    "false": builtin_false,
    "type": builtin_type,
    "set": builtin_set,
})


def is_builtin(name):
    return name in BUILTINS


def expand_alias(line, aliases):
    """
    Replace an alias in the first word of a command line.
    Returns: expanded line
    """
    m = ALIAS_NAME_RX.match(line)
    if not m:
        return line

    cmd = m.group(1)
    if cmd in aliases:
        # keep the rest of the line, arguments and operators included
        return aliases[cmd] + line[m.end():]
    return line
