"""
dbhub connects you to a database by name. Connections are listed in a
configuration file; each one has a type (mysql, redis, ...) and a URL. To
connect, dbhub parses the URL with the DSN pattern for its type, and hands the
parsed fields to a customization script, which decides what client command to
run. A script may first run probing commands (for instance, asking a Redis
Sentinel where the master is) and look at their output before choosing the
final, interactive command.

Run with -h or --help for an extended usage message.
"""

# pylint: disable=too-few-public-methods

import logging
import os
import sys
from pathlib import Path
from typing import Self

import click
from termcolor import colored

from dbhub.binder import bind_variables
from dbhub.config import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_FILE,
    Configuration,
    ConnectionConfig,
    Settings,
    TemplateConfig,
    empty_configuration,
    load_configuration,
    write_default_configuration,
)
from dbhub.errors import DBHubError
from dbhub.launcher import ProcessLauncher
from dbhub.loop import CommandLoop, LoopOutcome
from dbhub.scripts import (
    CommandBuilder,
    FileScriptResolver,
    ScriptCommandBuilder,
    ScriptRunner,
    TemplateCommandBuilder,
)

NAME = "dbhub"
VERSION = "0.3.0"
CLICK_CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}
LOG_ENV_VAR = "DBHUB_LOG"
LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
# Attributes every LogRecord has; anything else came in through "extra".
STANDARD_LOG_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime"}

LOGGER = logging.getLogger(__name__)


class AbortError(DBHubError):
    """
    Thrown to force an abort with a non-zero exit code.
    """


class AliasedGroup(click.Group):
    """
    A click group whose commands can also be invoked by a short alias, e.g.
    "dbhub c prod" for "dbhub connect prod".
    """

    ALIASES = {"c": "connect", "e": "context"}

    def get_command(self: Self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        return super().get_command(ctx, self.ALIASES.get(cmd_name, cmd_name))

    def resolve_command(
        self: Self, ctx: click.Context, args: list[str]
    ) -> tuple[str | None, click.Command | None, list[str]]:
        # Report the full name, so help and error text don't show the alias.
        _, cmd, args = super().resolve_command(ctx, args)
        return (cmd.name if cmd else None), cmd, args


class ExtraFormatter(logging.Formatter):
    """
    Appends the structured fields passed via "extra" to each log line.
    """

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = [
            f"{k}={v!r}"
            for k, v in record.__dict__.items()
            if k not in STANDARD_LOG_ATTRS
        ]
        return f"{line} {' '.join(extras)}" if extras else line


def init_logging(verbosity: int) -> None:
    """
    Configure logging. The level comes from DBHUB_LOG, if set; otherwise it's
    WARNING, INFO with -v, or DEBUG with -vv.
    """
    match os.environ.get(LOG_ENV_VAR, "").strip().upper():
        case "":
            level = {0: logging.WARNING, 1: logging.INFO}.get(verbosity, logging.DEBUG)
        case name:
            level = logging.getLevelName(name)
            if not isinstance(level, int):
                error(f'{LOG_ENV_VAR} has an invalid value of "{name}". Using WARNING.')
                level = logging.WARNING

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ExtraFormatter(LOG_FORMAT))
    root = logging.getLogger(NAME)
    root.handlers[:] = [handler]
    root.setLevel(level)


def error(msg: str) -> None:
    """
    Print error messages in a consistent way.
    """
    print(f"{colored('Error:', 'red')} {msg}", file=sys.stderr)


def read_configuration(path: Path) -> Configuration:
    """
    Load the configuration file, or fall back to an empty configuration
    (built-in templates, no connections) if it doesn't exist.
    """
    if not path.exists():
        LOGGER.info("config_missing", extra={"path": str(path)})
        return empty_configuration()
    if not path.is_file():
        raise AbortError(f'Configuration file "{path}" is not a file.')
    return load_configuration(path)


def make_builder(template: TemplateConfig, settings: Settings) -> CommandBuilder:
    """
    Choose how commands for a resource type are built: from the template's
    "command" setting, if it has one, or by the type's customization script.
    """
    if template.command is not None:
        return TemplateCommandBuilder(template.command)

    resolver = FileScriptResolver(settings.script_dir)
    return ScriptCommandBuilder(template.resource_type, ScriptRunner(resolver))


def connect_to(
    connection: ConnectionConfig,
    configuration: Configuration,
    launcher: ProcessLauncher | None = None,
) -> LoopOutcome:
    """
    Bind a connection's URL, negotiate the client command, and run it.

    :param connection: the connection to open
    :param configuration: supplies the template registry and settings
    :param launcher: spawns processes; defaults to a ProcessLauncher

    :returns: the loop's outcome, once the interactive client has exited
    """
    template = configuration.template_for(connection.resource_type)
    bound = bind_variables(
        connection.resource_type,
        connection.url,
        template.dsn,
        connection.annotations,
    )
    LOGGER.info(
        "connecting",
        extra={
            "alias": connection.name,
            "resource_type": connection.resource_type,
            "url": connection.display_url,
        },
    )
    loop = CommandLoop(
        make_builder(template, configuration.settings),
        launcher=launcher,
        max_iterations=configuration.settings.max_iterations,
    )
    return loop.run(bound.variables, bound.annotations)


def show_connections(
    configuration: Configuration, env: str | None, resource_type: str | None
) -> None:
    """
    List connections, grouped by environment, and the template registry.
    """
    connections = configuration.filter(env=env, resource_type=resource_type)
    if not connections:
        print("No matching connections.")

    for env_name, members in configuration.environments(connections).items():
        print(colored(f"{env_name}:", "blue", attrs=["bold"]))
        for c in members:
            print(f"  {c.name} ({c.resource_type}) {c.display_url}")
            if c.description:
                print(f"      {c.description}")

    print()
    print(colored("Templates:", "blue", attrs=["bold"]))
    for name, template in sorted(configuration.templates.items()):
        print(f"  {name}: {template.dsn}")
        if template.command is not None:
            print(f"      command: {template.command}")


@click.group(name=NAME, cls=AliasedGroup, context_settings=CLICK_CONTEXT_SETTINGS)
@click.option(
    "-c",
    "--config",
    is_flag=False,
    default=str(DEFAULT_CONFIG_FILE),
    envvar=CONFIG_ENV_VAR,
    show_default=True,
    type=click.Path(dir_okay=False),
    help=f"The location of the configuration file. Also read from ${CONFIG_ENV_VAR}.",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help=f"Log more: -v for progress, -vv for debugging. ${LOG_ENV_VAR} overrides.",
)
@click.version_option(VERSION)
@click.pass_context
def main(ctx: click.Context, config: str, verbose: int) -> None:
    """
    Connect to databases by name.

    Connections live in a TOML configuration file (see "dbhub context
    --generate"). Each connection has a type and a URL; the URL is parsed with
    the DSN pattern registered for the type, e.g.

    mysql://{user}:{password}@{host}:{port}/{database}

    The parsed fields are passed to a customization script for the type,
    which builds the client command line. Default scripts for mysql, mongodb
    and redis are copied into the script directory the first time they're
    used, so they can be edited.
    """
    init_logging(verbose)
    ctx.obj = Path(config).expanduser()


@main.command(context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("alias", required=True, type=str)
@click.pass_obj
def connect(config: Path, alias: str) -> None:
    """
    Connect to the database named ALIAS (short form: "c"). ALIAS only needs
    to be long enough to be unique.
    """
    try:
        configuration = read_configuration(config)
        connection = configuration.lookup(alias)
        if connection is None:
            raise AbortError(f'No connection matches "{alias}".')

        outcome = connect_to(connection, configuration)
        LOGGER.info(
            "connection_closed",
            extra={"iterations": outcome.iterations, "exit_status": outcome.exit_status},
        )

    except DBHubError as e:
        error(str(e))
        sys.exit(1)


@main.command(context_settings=CLICK_CONTEXT_SETTINGS)
@click.option("--env", "env", default=None, help="Only show this environment.")
@click.option(
    "--db-type", "db_type", default=None, help="Only show this database type."
)
@click.option(
    "--generate",
    is_flag=True,
    default=False,
    help="Write a default configuration file instead of listing.",
)
@click.pass_obj
def context(config: Path, env: str | None, db_type: str | None, generate: bool) -> None:
    """
    List configured connections and DSN templates (short form: "e").
    """
    try:
        if generate:
            write_default_configuration(config)
            print(f'Wrote "{config}".')
            return

        if not config.exists():
            print(
                f'WARNING: Configuration file "{config}" does not exist. '
                'Run "dbhub context --generate" to create one.'
            )
        show_connections(read_configuration(config), env, db_type)

    except DBHubError as e:
        error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    # pylint: disable=no-value-for-parameter
    main()
