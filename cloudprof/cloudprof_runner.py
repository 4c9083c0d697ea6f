"""Runs a Python program with the profiling agent attached."""

import os
import runpy
import sys
from typing import List, Optional

from cloudprof.cloudprof_agent import start_profiling
from cloudprof.cloudprof_parseargs import CloudProfParseArgs


def run_program(program: List[str]) -> None:
    """Execute `program` (path plus arguments) as __main__."""
    path = program[0]
    if not os.path.isfile(path):
        raise FileNotFoundError(f"no such program: {path}")
    saved_argv = sys.argv
    saved_path = list(sys.path)
    sys.argv = list(program)
    sys.path.insert(0, os.path.dirname(os.path.abspath(path)))
    try:
        runpy.run_path(path, run_name="__main__")
    finally:
        sys.argv = saved_argv
        sys.path[:] = saved_path


def main(argv: Optional[List[str]] = None) -> None:
    args, program = CloudProfParseArgs.parse_args(argv)
    agent = start_profiling(
        args.service,
        args.service_version,
        not args.off,
        args.project,
        zone=args.zone,
        instance=args.instance,
        args=args,
    )
    exit_code = 0
    try:
        run_program(program)
    except SystemExit as exc:
        if exc.code is None:
            exit_code = 0
        elif isinstance(exc.code, int):
            exit_code = exc.code
        else:
            exit_code = 1
    finally:
        agent.stop(timeout=1.0)
    sys.exit(exit_code)
