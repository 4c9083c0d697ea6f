import argparse
import re
import sys
from textwrap import dedent
from typing import Any, List, Optional, Tuple

from cloudprof.cloudprof_arguments import CloudProfArguments
from cloudprof.cloudprof_config import cloudprof_date, cloudprof_version


def _colorize_help_for_rich(text: str) -> str:
    """Color usage, headings, options and metavars with Rich markup."""
    text = re.sub(
        r"^(usage:|options:|positional arguments:|optional arguments:)",
        r"[bold blue]\1[/bold blue]",
        text,
        flags=re.MULTILINE,
    )
    text = re.sub(
        r"(^  |, )(--[a-zA-Z][a-zA-Z0-9_-]*)",
        r"\1[bold cyan]\2[/bold cyan]",
        text,
        flags=re.MULTILINE,
    )
    text = re.sub(
        r"(\[/bold cyan\] )([A-Z][A-Z0-9_]*)\b",
        r"\1[bold yellow]\2[/bold yellow]",
        text,
    )
    return text


class RichArgParser(argparse.ArgumentParser):
    """ArgumentParser that prints help and errors through Rich."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        from rich.console import Console

        self._console = Console(stderr=True)
        super().__init__(*args, **kwargs)

    def _print_message(self, message: Optional[str], file: Any = None) -> None:
        if message:
            # Literal brackets (e.g. "[--quiet]") must not read as markup.
            escaped = message.replace("[", r"\[")
            self._console.print(_colorize_help_for_rich(escaped), highlight=False)


class CloudProfParseArgs:
    @staticmethod
    def parse_args(
        argv: Optional[List[str]] = None,
    ) -> Tuple[CloudProfArguments, List[str]]:
        """Parse the command line into agent arguments and the program to run."""
        defaults = CloudProfArguments()
        usage = dedent(
            f"""cloudprof: continuous profiling agent, version {cloudprof_version} ({cloudprof_date})

command-line:
  % python3 -m cloudprof [options] your_program.py [your_program_args]
"""
        )
        parser = RichArgParser(
            prog="cloudprof",
            description=usage,
            formatter_class=argparse.RawTextHelpFormatter,
            allow_abbrev=False,
        )
        parser.add_argument(
            "--version",
            dest="version",
            action="store_const",
            const=True,
            help="prints the version number for this release of cloudprof and exits",
        )
        parser.add_argument("--service", type=str, help="service name reported to the backend")
        parser.add_argument(
            "--service-version",
            dest="service_version",
            type=str,
            default="",
            help="service version reported to the backend",
        )
        parser.add_argument("--project", type=str, help="backend project id")
        parser.add_argument("--zone", type=str, default=None, help="zone label")
        parser.add_argument("--instance", type=str, default=None, help="instance label")
        parser.add_argument(
            "--api-url",
            dest="api_url",
            type=str,
            default=defaults.api_url,
            help=f"profiling backend endpoint (default: {defaults.api_url})",
        )
        parser.add_argument(
            "--runtime-label",
            dest="runtime_label",
            type=str,
            default=defaults.runtime_label,
            help=f"runtime the agent reports itself as (default: {defaults.runtime_label})",
        )
        parser.add_argument(
            "--sampling-rate",
            dest="sampling_rate",
            type=int,
            default=defaults.sampling_rate,
            help=f"CPU stack samples per second (default: {defaults.sampling_rate})",
        )
        parser.add_argument(
            "--max-attempts",
            dest="max_attempts",
            type=int,
            default=defaults.max_attempts,
            help=f"attempts per create/upload before a cycle is abandoned (default: {defaults.max_attempts})",
        )
        parser.add_argument(
            "--off",
            dest="off",
            action="store_const",
            const=True,
            default=False,
            help="start with profiling disabled (the agent only polls)",
        )
        parser.add_argument(
            "--quiet",
            dest="quiet",
            action="store_const",
            const=True,
            default=defaults.quiet,
            help="only print errors",
        )
        parser.add_argument("program", nargs=argparse.REMAINDER, help=argparse.SUPPRESS)

        parsed = parser.parse_args(argv)
        if parsed.version:
            print(f"cloudprof version {cloudprof_version} ({cloudprof_date})")
            sys.exit(0)
        if not parsed.program:
            parser.print_help(sys.stderr)
            sys.exit(-1)
        if not parsed.service:
            parser.error("--service is required")
        if not parsed.project:
            parser.error("--project is required")
        if parsed.sampling_rate <= 0:
            parser.error("--sampling-rate must be positive")
        if parsed.max_attempts < 1:
            parser.error("--max-attempts must be at least 1")

        args = defaults
        for key, value in vars(parsed).items():
            if key not in ("program", "version"):
                setattr(args, key, value)
        return args, list(parsed.program)
