"""
The command construction loop.

Each iteration asks a command builder for the next command line. A probing
command (again=True) is run with its output captured, and the output lines are
handed to the builder on the next iteration. The first command with
again=False is run attached to the terminal, and the loop ends there.
"""

import logging
import shlex
from dataclasses import dataclass
from typing import Mapping, Self

from dbhub.errors import (
    CommandNotFound,
    CommandSyntaxError,
    EmptyCommandError,
    IterationCapExceeded,
    ProcessFailure,
)
from dbhub.launcher import ProcessLauncher, mask_command
from dbhub.scripts import CommandBuilder, ScriptState

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 5


@dataclass(frozen=True)
class LoopOutcome:
    """
    A finished connection attempt. `exit_status` is the interactive client's
    exit status; it's reported, but the attempt succeeded regardless.
    """

    iterations: int
    command: tuple[str, ...]
    exit_status: int


def split_output_lines(output: str) -> list[str]:
    """
    Split captured output on newlines. A single trailing newline ends the
    last line rather than starting an empty one, so "\\n" is one empty line,
    while empty output has no lines at all. A trailing "\\r" on a line is
    dropped, so CRLF output splits cleanly.
    """
    if output == "":
        return []
    lines = output.removesuffix("\n").split("\n")
    return [line.removesuffix("\r") for line in lines]


def split_command(command_line: str) -> list[str]:
    """
    Split a command line the way a POSIX shell would (quotes and backslash
    escapes are honored, nothing is expanded).
    """
    try:
        return shlex.split(command_line, posix=True)
    except ValueError as e:
        raise CommandSyntaxError(command_line, str(e)) from e


class CommandLoop:
    """
    Drives one connection attempt. A CommandLoop holds no state between runs,
    so the same loop can be run more than once.
    """

    def __init__(
        self: Self,
        builder: CommandBuilder,
        launcher: ProcessLauncher | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        """
        :param builder: decides the command line for each iteration
        :param launcher: spawns processes; defaults to a ProcessLauncher
        :param max_iterations: the most times the builder is consulted
        """
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, not {max_iterations}")
        self.builder = builder
        self.launcher = launcher or ProcessLauncher()
        self.max_iterations = max_iterations

    def run(
        self: Self,
        variables: Mapping[str, str],
        annotations: Mapping[str, str] | None = None,
    ) -> LoopOutcome:
        """
        Negotiate a command with the builder and run it.

        :param variables: the DSN-derived variables
        :param annotations: the connection's annotations

        :returns: the outcome once the interactive client has exited

        :raises IterationCapExceeded: if the builder asks for another round
            every time
        :raises DBHubError: for any other failure; see dbhub.errors
        """
        annotations = annotations or {}
        last_output: list[str] = []

        for count in range(self.max_iterations):
            state = ScriptState.snapshot(count, variables, annotations, last_output)
            decision = self.builder.build(state)
            LOGGER.info(
                "command_built",
                extra={
                    "iteration": count,
                    "command": mask_command(decision.command_with_args),
                    "again": decision.again,
                },
            )

            argv = split_command(decision.command_with_args)
            if not argv:
                raise EmptyCommandError(count)

            executable, *args = argv
            if self.launcher.resolve(executable) is None:
                raise CommandNotFound(executable)

            if decision.again:
                result = self.launcher.capture(executable, args)
                if result.returncode != 0:
                    raise ProcessFailure(executable, result.returncode, result.stderr)
                last_output = split_output_lines(result.stdout)
                LOGGER.debug(
                    "probe_finished",
                    extra={"iteration": count, "lines": len(last_output)},
                )
                continue

            exit_status = self.launcher.interactive(executable, args)
            if exit_status != 0:
                LOGGER.info(
                    "interactive_exit_status",
                    extra={"executable": executable, "returncode": exit_status},
                )
            return LoopOutcome(
                iterations=count + 1,
                command=tuple(argv),
                exit_status=exit_status,
            )

        LOGGER.warning(
            "iteration_cap_exceeded", extra={"max_iterations": self.max_iterations}
        )
        raise IterationCapExceeded(self.max_iterations)
