"""Diagnostic output for the agent.

Everything goes to stderr so the host application's stdout is untouched.
"""

from typing import Callable

from rich.console import Console
from rich.text import Text
from rich.traceback import Traceback

from cloudprof.cloudprof_config import LOG_PREFIX

console = Console(stderr=True, highlight=False)

ErrorReporter = Callable[[BaseException], None]

_quiet = False


def set_quiet(quiet: bool) -> None:
    """Suppress informational lines (error reports are always shown)."""
    global _quiet
    _quiet = quiet


def log(message: str) -> None:
    if _quiet:
        return
    console.print(Text.assemble((LOG_PREFIX, "dim"), " ", message))


def warn(message: str) -> None:
    console.print(Text.assemble((LOG_PREFIX, "yellow"), " ", message))


def report_error(exc: BaseException) -> None:
    """Default error reporter: a one-line summary plus a rich traceback."""
    console.print(
        Text.assemble((LOG_PREFIX, "bold red"), f" unexpected error: {exc!r}")
    )
    if exc.__traceback__ is not None:
        console.print(
            Traceback.from_exception(type(exc), exc, exc.__traceback__)
        )
