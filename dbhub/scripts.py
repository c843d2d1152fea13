"""
Command builders. A command builder looks at the current loop state and
decides what to run next: either a probing command whose output it wants to
see, or the final interactive client.

There are two kinds of builder:

- TemplateCommandBuilder fills a command template from the connection's
  variables. It always asks for the interactive client straight away.
- ScriptCommandBuilder delegates to a per-resource-type customization
  script, a Python file that defines a build(state) function. Scripts are
  found through a resolver: FileScriptResolver looks in the user's script
  directory and falls back to a bundled default, which it copies into that
  directory on first use; MemoryScriptResolver serves scripts from a
  dictionary.
"""

# pylint: disable=too-few-public-methods

import abc
import logging
import re
from dataclasses import dataclass, field
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Self, Sequence

from dbhub.errors import ScriptExecutionError, ScriptResolutionError
from dbhub.template import fill

LOGGER = logging.getLogger(__name__)

SCRIPT_SUFFIX = ".py"
BUILD_FUNCTION = "build"
RESULT_FIELDS = frozenset({"command_with_args", "again"})
RESOURCE_TYPE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]*$")


@dataclass(frozen=True)
class ScriptState:
    """
    Read-only snapshot of the loop, handed to a command builder once per
    iteration. Use ScriptState.snapshot() to build one; it copies its
    arguments, so nothing the builder holds on to changes underneath it.
    """

    count: int
    variables: Mapping[str, str] = field(default_factory=dict)
    annotations: Mapping[str, str] = field(default_factory=dict)
    last_output_lines: tuple[str, ...] = ()

    @classmethod
    def snapshot(
        cls,
        count: int,
        variables: Mapping[str, str],
        annotations: Mapping[str, str],
        last_output_lines: Sequence[str],
    ) -> Self:
        """
        Build a state from copies of the supplied values.
        """
        return cls(
            count=count,
            variables=MappingProxyType(dict(variables)),
            annotations=MappingProxyType(dict(annotations)),
            last_output_lines=tuple(last_output_lines),
        )


@dataclass(frozen=True)
class ScriptResult:
    """
    A builder's decision: the command line to run, and whether its output
    should be captured and fed back for another round.
    """

    command_with_args: str
    again: bool


@dataclass(frozen=True)
class ScriptHandle:
    """
    A resolved customization script. `origin` names where the source came
    from (a path, or a pseudo-path for in-memory scripts).
    """

    resource_type: str
    origin: str
    source: str


class CommandBuilder(abc.ABC):
    """
    Decides the next command line from the loop state.
    """

    @abc.abstractmethod
    def build(self, state: ScriptState) -> ScriptResult:
        """Return the decision for this iteration."""


class ScriptResolver(abc.ABC):
    """
    Finds the customization script for a resource type.
    """

    @abc.abstractmethod
    def resolve(self, resource_type: str) -> ScriptHandle:
        """
        Return the script for `resource_type`, or raise
        ScriptResolutionError.
        """


def bundled_scripts() -> Traversable:
    """
    The directory of default scripts shipped with dbhub.
    """
    return resources.files("dbhub") / "defaults"


class FileScriptResolver(ScriptResolver):
    """
    Resolves scripts from a user-writable directory, materializing bundled
    defaults there the first time a resource type is used.
    """

    def __init__(
        self: Self,
        script_dir: Path,
        bundled_dir: Traversable | Path | None = None,
    ) -> None:
        """
        :param script_dir: the user's script directory, which does not have
            to exist
        :param bundled_dir: where default scripts live. Defaults to the
            scripts bundled with the package.
        """
        self.script_dir = script_dir
        self.bundled_dir = bundled_scripts() if bundled_dir is None else bundled_dir

    def resolve(self: Self, resource_type: str) -> ScriptHandle:
        if RESOURCE_TYPE.match(resource_type) is None:
            raise ScriptResolutionError(
                resource_type, "Resource types must be plain file names."
            )

        name = f"{resource_type}{SCRIPT_SUFFIX}"
        path = self.script_dir / name
        if not path.is_file():
            default = self.bundled_dir / name
            if not default.is_file():
                raise ScriptResolutionError(resource_type)

            LOGGER.info(
                "script_materialized",
                extra={"resource_type": resource_type, "path": str(path)},
            )
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(default.read_bytes())
            except OSError as e:
                raise ScriptResolutionError(
                    resource_type, f'Cannot copy the default script to "{path}": {e}'
                ) from e

        try:
            source = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ScriptExecutionError(
                resource_type, str(path), f"cannot read script: {e}"
            ) from e

        return ScriptHandle(resource_type=resource_type, origin=str(path), source=source)


class MemoryScriptResolver(ScriptResolver):
    """
    Serves scripts from a dictionary of resource type to source text.
    """

    def __init__(self: Self, scripts: Mapping[str, str]) -> None:
        self.scripts = dict(scripts)

    def resolve(self: Self, resource_type: str) -> ScriptHandle:
        try:
            source = self.scripts[resource_type]
        except KeyError:
            # pylint: disable=raise-missing-from
            raise ScriptResolutionError(resource_type)

        return ScriptHandle(
            resource_type=resource_type,
            origin=f"<memory:{resource_type}>",
            source=source,
        )


def validate_result(handle: ScriptHandle, value: Any) -> ScriptResult:
    """
    Check a script's return value and convert it to a ScriptResult.

    :raises ScriptExecutionError: if the value isn't a mapping with exactly
        a string "command_with_args" and a boolean "again"
    """

    def fail(reason: str) -> ScriptExecutionError:
        return ScriptExecutionError(handle.resource_type, handle.origin, reason)

    if not isinstance(value, Mapping):
        raise fail(f"build() returned {type(value).__name__}, not a mapping")

    keys = set(value.keys())
    if keys != RESULT_FIELDS:
        expected = ", ".join(sorted(RESULT_FIELDS))
        got = ", ".join(sorted(map(str, keys))) or "nothing"
        raise fail(f"build() must return exactly {expected}; got {got}")

    command = value["command_with_args"]
    again = value["again"]
    if not isinstance(command, str):
        raise fail('"command_with_args" must be a string')
    if not isinstance(again, bool):
        raise fail('"again" must be a boolean')

    return ScriptResult(command_with_args=command, again=again)


class ScriptRunner:
    """
    Runs customization scripts. The embedded interpreter is Python itself:
    each run compiles the script into a fresh namespace and calls its
    build() function with the state snapshot.
    """

    def __init__(self: Self, resolver: ScriptResolver) -> None:
        self.resolver = resolver
        self._handles: dict[str, ScriptHandle] = {}

    def handle_for(self: Self, resource_type: str) -> ScriptHandle:
        """
        Resolve the script for a resource type. Each type is resolved once
        per runner.
        """
        handle = self._handles.get(resource_type)
        if handle is None:
            handle = self.resolver.resolve(resource_type)
            self._handles[resource_type] = handle
        return handle

    def run(self: Self, resource_type: str, state: ScriptState) -> ScriptResult:
        """
        Run the script for `resource_type` against `state`.

        :raises ScriptResolutionError: if there is no script for the type
        :raises ScriptExecutionError: if the script fails or returns a
            malformed decision
        """
        handle = self.handle_for(resource_type)
        namespace: dict[str, Any] = {
            "__name__": f"dbhub_script_{resource_type}",
            "__file__": handle.origin,
        }
        # pylint: disable=broad-exception-caught,exec-used
        try:
            code = compile(handle.source, handle.origin, "exec")
            exec(code, namespace)
        except (Exception, SystemExit) as e:
            raise ScriptExecutionError(
                resource_type, handle.origin, f"cannot load script: {e!r}"
            ) from e

        build = namespace.get(BUILD_FUNCTION)
        if not callable(build):
            raise ScriptExecutionError(
                resource_type, handle.origin, f"script defines no {BUILD_FUNCTION}()"
            )

        try:
            value = build(state)
        except (Exception, SystemExit) as e:
            raise ScriptExecutionError(
                resource_type, handle.origin, f"{BUILD_FUNCTION}() raised {e!r}"
            ) from e

        return validate_result(handle, value)


class ScriptCommandBuilder(CommandBuilder):
    """
    Builds commands by running the customization script for a resource type.
    """

    def __init__(self: Self, resource_type: str, runner: ScriptRunner) -> None:
        self.resource_type = resource_type
        self.runner = runner

    def build(self: Self, state: ScriptState) -> ScriptResult:
        return self.runner.run(self.resource_type, state)


class TemplateCommandBuilder(CommandBuilder):
    """
    Builds the interactive command by filling a template with the
    connection's variables, e.g. "redis-cli -h {host} -p {port}".
    """

    def __init__(self: Self, command_template: str) -> None:
        self.command_template = command_template

    def build(self: Self, state: ScriptState) -> ScriptResult:
        return ScriptResult(
            command_with_args=fill(self.command_template, state.variables),
            again=False,
        )
