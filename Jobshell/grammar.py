"""
Syntax tree for one command line.

    Command       -> LogicalBlock (';' LogicalBlock)*
    LogicalBlock  -> Pipeline (('&&' | '||') Pipeline)*
    Pipeline      -> CommandElement ('|' CommandElement)* ['&']
    CommandElement-> Subshell | CommandGroup | SimpleCommand

Nodes are frozen dataclasses holding tuples, so a parsed line can be shared
between the executor, builtins and job display strings without copying.
"""
from dataclasses import dataclass, field
from typing import Tuple, Union

AND = "&&"
OR = "||"

# Redirect types
REDIRECT_IN = "<"
REDIRECT_OUT = ">"
REDIRECT_APPEND = ">>"
REDIRECT_ERR = "2>"
REDIRECT_ERR_APPEND = "2>>"
REDIRECT_BOTH = "&>"
REDIRECT_BOTH_ALT = ">&"
REDIRECT_ERR_TO_OUT = "2>&1"
REDIRECT_ERR_DUP = "2>&"

REDIRECT_TYPES = (
    REDIRECT_IN,
    REDIRECT_OUT,
    REDIRECT_APPEND,
    REDIRECT_ERR,
    REDIRECT_ERR_APPEND,
    REDIRECT_BOTH,
    REDIRECT_BOTH_ALT,
    REDIRECT_ERR_TO_OUT,
    REDIRECT_ERR_DUP,
)


@dataclass(frozen=True)
class Redirect:
    type: str
    file: str = ""

    def __str__(self):
        if self.type == REDIRECT_ERR_TO_OUT:
            return self.type
        return f"{self.type} {self.file}"


@dataclass(frozen=True)
class SimpleCommand:
    parts: Tuple[str, ...]
    redirects: Tuple[Redirect, ...] = ()
    background: bool = False

    @property
    def name(self):
        return self.parts[0] if self.parts else ""


@dataclass(frozen=True)
class Subshell:
    """Nested command run against a copy of the shell state."""
    body: "Command"
    redirects: Tuple[Redirect, ...] = ()


@dataclass(frozen=True)
class CommandGroup:
    """Nested command run against the caller's shell state."""
    body: "Command"
    redirects: Tuple[Redirect, ...] = ()


CommandElement = Union[Subshell, CommandGroup, SimpleCommand]


@dataclass(frozen=True)
class Pipeline:
    elements: Tuple[CommandElement, ...]
    background: bool = False


@dataclass(frozen=True)
class LogicalBlock:
    first: Pipeline
    rest: Tuple[Tuple[str, Pipeline], ...] = ()

    def pipelines(self):
        """Yield (operator, pipeline) pairs; the first operator is None."""
        yield None, self.first
        yield from self.rest


@dataclass(frozen=True)
class Command:
    blocks: Tuple[LogicalBlock, ...] = field(default_factory=tuple)


def single_element_command(element):
    """Wrap one element in a Command, used for scoped builtin contexts and job names."""
    return Command((LogicalBlock(Pipeline((element,))),))


# ---------- Formatting ----------

def format_element(element):
    if isinstance(element, SimpleCommand):
        words = list(element.parts) + [str(r) for r in element.redirects]
        return " ".join(words)

    if isinstance(element, Subshell):
        text = f"( {format_command(element.body)} )"
    elif isinstance(element, CommandGroup):
        body = format_command(element.body)
        # a group body needs a terminator before the closing brace
        sep = " " if body.endswith("&") else "; "
        text = "{ " + body + sep + "}"
    else:
        raise TypeError(f"unknown command element: {element!r}")

    if element.redirects:
        text += " " + " ".join(str(r) for r in element.redirects)
    return text


def format_pipeline(pipeline, with_background=True):
    text = " | ".join(format_element(e) for e in pipeline.elements)
    if pipeline.background and with_background:
        text += " &"
    return text


def format_block(block):
    text = format_pipeline(block.first)
    for op, pipeline in block.rest:
        text += f" {op} {format_pipeline(pipeline)}"
    return text


def format_command(command):
    """Render a Command back to shell text; parsing the result gives the same tree."""
    out = ""
    for i, block in enumerate(command.blocks):
        text = format_block(block)
        if i > 0:
            prev = command.blocks[i - 1]
            last = prev.rest[-1][1] if prev.rest else prev.first
            # a background pipeline already terminates its block
            out += " " if last.background else "; "
        out += text
    return out
