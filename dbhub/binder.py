"""
Turns a configured connection into the variables a command builder sees.
"""

import logging
from dataclasses import dataclass, field
from typing import Mapping

from dbhub.errors import BindingError, TemplateError
from dbhub.template import Bindings, extract

LOGGER = logging.getLogger(__name__)

# Reserved binding that always holds the full, unparsed connection string.
DSN_KEY = "dsn"


@dataclass(frozen=True)
class BoundConnection:
    """
    The result of binding a connection string: DSN-derived variables and the
    connection's annotations, kept apart so neither can shadow the other.
    """

    resource_type: str
    variables: Bindings
    annotations: dict[str, str] = field(default_factory=dict)


def bind_variables(
    resource_type: str,
    connection_string: str,
    pattern: str,
    annotations: Mapping[str, str] | None = None,
) -> BoundConnection:
    """
    Extract variables from a connection string using the DSN pattern for its
    resource type, and add the reserved "dsn" variable.

    :param resource_type: the resource type tag (e.g., "mysql")
    :param connection_string: the raw connection string
    :param pattern: the DSN pattern registered for the resource type
    :param annotations: optional key/value metadata for the connection

    :returns: the bound connection

    :raises BindingError: if the connection string doesn't match the pattern
    """
    try:
        variables = extract(pattern, connection_string)
    except TemplateError as e:
        raise BindingError(resource_type, connection_string, pattern) from e

    variables[DSN_KEY] = connection_string
    LOGGER.debug(
        "variables_bound",
        extra={
            "resource_type": resource_type,
            "variables": sorted(variables),
            "annotations": sorted(annotations or {}),
        },
    )
    return BoundConnection(
        resource_type=resource_type,
        variables=variables,
        annotations=dict(annotations or {}),
    )
