"""
Exceptions raised by dbhub. Every failure of a connection attempt is terminal
for that attempt, so each exception carries enough context to diagnose the
problem without re-running.
"""

from typing import Sequence


class DBHubError(Exception):
    """
    Base class for all dbhub errors.
    """


class TemplateError(DBHubError):
    """
    Base class for errors raised while matching a template against a string.
    """

    def __init__(self, message: str, template: str, text: str | None = None):
        super().__init__(message)
        self.template = template
        self.text = text


class TemplateMismatch(TemplateError):
    """
    Thrown when a concrete string does not match a template: a literal is
    missing or misplaced, or input is left over after the last token.
    """

    def __init__(self, template: str, text: str, position: int, reason: str):
        super().__init__(
            f'"{text}" does not match template "{template}" at offset '
            f"{position}: {reason}",
            template,
            text,
        )
        self.position = position
        self.reason = reason


class UnboundVariableSegmentation(TemplateError):
    """
    Thrown when a template has two adjacent variables, so there is no literal
    to tell where the first one ends.
    """

    def __init__(self, template: str, first: str, second: str):
        super().__init__(
            f'Template "{template}" places {{{first}}} directly before '
            f"{{{second}}}; their boundary cannot be determined.",
            template,
        )
        self.variables = (first, second)


class BindingError(DBHubError):
    """
    Thrown when a connection string can't be parsed with the DSN pattern
    registered for its resource type.
    """

    def __init__(self, resource_type: str, connection_string: str, pattern: str):
        super().__init__(
            f'Cannot parse {resource_type} connection string "{connection_string}" '
            f'with pattern "{pattern}".'
        )
        self.resource_type = resource_type
        self.connection_string = connection_string
        self.pattern = pattern


class ScriptResolutionError(DBHubError):
    """
    Thrown when neither a user script nor a bundled default exists for a
    resource type.
    """

    def __init__(self, resource_type: str, detail: str | None = None):
        message = f'No customization script available for resource type "{resource_type}".'
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)
        self.resource_type = resource_type


class ScriptExecutionError(DBHubError):
    """
    Thrown when a customization script fails to compile, raises, or returns
    something other than a well-formed command decision.
    """

    def __init__(self, resource_type: str, origin: str, reason: str):
        super().__init__(f'Script "{origin}" for "{resource_type}" failed: {reason}')
        self.resource_type = resource_type
        self.origin = origin
        self.reason = reason


class EmptyCommandError(DBHubError):
    """
    Thrown when a command builder returns a command line with no tokens.
    """

    def __init__(self, iteration: int):
        super().__init__(f"No command provided (iteration {iteration}).")
        self.iteration = iteration


class CommandSyntaxError(DBHubError):
    """
    Thrown when a command line can't be split into arguments, e.g. because
    of an unbalanced quote.
    """

    def __init__(self, command_line: str, reason: str):
        super().__init__(f"Cannot split command line {command_line!r}: {reason}")
        self.command_line = command_line


class CommandNotFound(DBHubError):
    """
    Thrown when an executable can't be found on the search path.
    """

    def __init__(self, executable: str):
        super().__init__(f'Command "{executable}" not found on PATH.')
        self.executable = executable


class ProcessSpawnError(DBHubError):
    """
    Thrown when an executable exists but the process could not be started
    (permission denied, bad format, and so on).
    """

    def __init__(self, executable: str, cause: OSError):
        super().__init__(f'Unable to start "{executable}": {cause}')
        self.executable = executable
        self.cause = cause


class ProcessFailure(DBHubError):
    """
    Thrown when a probing command exits with a non-zero (or abnormal) status.
    """

    def __init__(self, executable: str, returncode: int, stderr: str):
        detail = stderr.strip()
        message = f'"{executable}" exited with status {returncode}'
        message = f"{message}: {detail}" if detail else f"{message}."
        super().__init__(message)
        self.executable = executable
        self.returncode = returncode
        self.stderr = stderr


class IterationCapExceeded(DBHubError):
    """
    Thrown when the command builder keeps asking for another round beyond the
    iteration bound.
    """

    def __init__(self, limit: int):
        super().__init__(
            f"Command construction did not settle after {limit} iterations."
        )
        self.limit = limit


class ConfigurationError(DBHubError):
    """
    Thrown to indicate a configuration error.
    """


class TooManyMatchesError(DBHubError):
    """
    Thrown to indicate that a connection name matched too many entries in the
    configuration file.
    """

    def __init__(self, spec: str, candidates: Sequence[str]):
        names = ", ".join(sorted(candidates))
        super().__init__(f'"{spec}" matches more than one connection: {names}')
        self.spec = spec
        self.candidates = tuple(candidates)
