"""
Default dbhub script for MySQL: connects with the "mysql" client.

dbhub calls build() once per round with a read-only state:

    state.count              the round, starting at 0
    state.variables          values extracted from the connection URL,
                             plus "dsn", the URL itself
    state.annotations        the connection's annotations
    state.last_output_lines  output of the previous round's command

build() returns {"command_with_args": ..., "again": ...}. With "again" set,
the command's output is captured and build() is called again; otherwise the
command is run interactively. Edit this copy freely; dbhub won't replace it.
"""

import shlex
from urllib.parse import unquote


def build(state):
    v = state.variables
    args = ["mysql", "-h", v.get("host") or "localhost"]
    if v.get("port"):
        args += ["-P", v["port"]]
    if v.get("user"):
        args += ["-u", unquote(v["user"])]
    if v.get("password"):
        args.append(f"-p{unquote(v['password'])}")
    if v.get("database"):
        args.append(v["database"])

    return {"command_with_args": shlex.join(args), "again": False}
