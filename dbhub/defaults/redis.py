"""
Default dbhub script for Redis: connects with "redis-cli".

If the connection has the annotation redis-sentinel = "1", the URL is taken
to point at a Sentinel. The first round asks the Sentinel for the address of
the master named by the "master-name" annotation (default "mymaster"), and
the second round connects to that master.

See mysql.py for the contract build() must follow.
"""

import shlex
from urllib.parse import unquote


def auth_args(variables):
    args = []
    if variables.get("user"):
        args += ["--user", unquote(variables["user"])]
    if variables.get("password"):
        args += ["-a", unquote(variables["password"]), "--no-auth-warning"]
    return args


def build(state):
    v = state.variables
    sentinel = state.annotations.get("redis-sentinel") == "1"

    if sentinel and state.count == 0:
        master = state.annotations.get("master-name", "mymaster")
        args = [
            "redis-cli",
            "-h", v.get("host") or "localhost",
            "-p", v.get("port") or "26379",
            "--raw",
            "SENTINEL", "get-master-addr-by-name", master,
        ]
        return {"command_with_args": shlex.join(args), "again": True}

    host, port = v.get("host") or "localhost", v.get("port") or "6379"
    if sentinel:
        lines = [line.strip() for line in state.last_output_lines if line.strip()]
        if len(lines) < 2:
            raise RuntimeError(f"Sentinel did not report a master: {lines!r}")
        host, port = lines[0], lines[1]

    args = ["redis-cli", "-h", host, "-p", port, *auth_args(v)]
    if v.get("database"):
        args += ["-n", v["database"]]

    return {"command_with_args": shlex.join(args), "again": False}
