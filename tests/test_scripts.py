from __future__ import annotations

import shlex
from pathlib import Path

import pytest

from dbhub.errors import ScriptExecutionError, ScriptResolutionError
from dbhub.scripts import (
    FileScriptResolver,
    MemoryScriptResolver,
    ScriptCommandBuilder,
    ScriptResult,
    ScriptRunner,
    ScriptState,
    TemplateCommandBuilder,
    bundled_scripts,
)

ECHO_SCRIPT = """
def build(state):
    return {"command_with_args": "echo " + state.variables["host"], "again": False}
"""


def make_state(**overrides: object) -> ScriptState:
    values: dict[str, object] = {
        "count": 0,
        "variables": {"host": "db1", "dsn": "x://db1"},
        "annotations": {},
        "last_output_lines": [],
    }
    values.update(overrides)
    return ScriptState.snapshot(**values)  # type: ignore[arg-type]


def run_source(source: str, state: ScriptState | None = None) -> ScriptResult:
    runner = ScriptRunner(MemoryScriptResolver({"t": source}))
    return runner.run("t", state or make_state())


def test_state_snapshot_is_a_read_only_copy() -> None:
    variables = {"host": "db1"}
    lines = ["a"]
    state = ScriptState.snapshot(0, variables, {}, lines)
    variables["host"] = "db2"
    lines.append("b")

    assert state.variables["host"] == "db1"
    assert state.last_output_lines == ("a",)
    with pytest.raises(TypeError):
        state.variables["host"] = "db3"  # type: ignore[index]


def test_runner_executes_build() -> None:
    assert run_source(ECHO_SCRIPT) == ScriptResult("echo db1", False)


def test_runner_exposes_full_state() -> None:
    source = """
def build(state):
    parts = [str(state.count), state.annotations["role"], *state.last_output_lines]
    return {"command_with_args": " ".join(parts), "again": True}
"""
    state = make_state(count=3, annotations={"role": "primary"}, last_output_lines=["x", "y"])
    assert run_source(source, state) == ScriptResult("3 primary x y", True)


@pytest.mark.parametrize(
    ("source", "reason"),
    [
        ("def build(state):\n    return None\n", "not a mapping"),
        ("def build(state):\n    return {'command_with_args': 'ls'}\n", "exactly"),
        (
            "def build(state):\n"
            "    return {'command_with_args': 'ls', 'again': False, 'extra': 1}\n",
            "exactly",
        ),
        ("def build(state):\n    return {'command_with_args': 1, 'again': False}\n", "string"),
        ("def build(state):\n    return {'command_with_args': 'ls', 'again': 1}\n", "boolean"),
        ("x = 1\n", "no build()"),
        ("def build(state)\n", "cannot load"),
        ("raise RuntimeError('boom')\n", "cannot load"),
        ("def build(state):\n    return 1 / 0\n", "ZeroDivisionError"),
        ("import sys\ndef build(state):\n    sys.exit(3)\n", "SystemExit"),
        ("raise SystemExit(0)\n", "cannot load"),
    ],
)
def test_runner_rejects_bad_scripts(source: str, reason: str) -> None:
    with pytest.raises(ScriptExecutionError, match=reason) as excinfo:
        run_source(source)
    assert excinfo.value.resource_type == "t"
    assert excinfo.value.origin == "<memory:t>"


def test_runner_chains_the_underlying_error() -> None:
    with pytest.raises(ScriptExecutionError) as excinfo:
        run_source("def build(state):\n    raise KeyError('host')\n")
    assert isinstance(excinfo.value.__cause__, KeyError)


def test_memory_resolver_unknown_type() -> None:
    runner = ScriptRunner(MemoryScriptResolver({}))
    with pytest.raises(ScriptResolutionError) as excinfo:
        runner.run("nope", make_state())
    assert excinfo.value.resource_type == "nope"


def test_file_resolver_prefers_user_script(tmp_path: Path) -> None:
    bundled = tmp_path / "bundled"
    bundled.mkdir()
    (bundled / "t.py").write_text("# bundled\n", encoding="utf-8")
    user = tmp_path / "user"
    user.mkdir()
    (user / "t.py").write_text(ECHO_SCRIPT, encoding="utf-8")

    handle = FileScriptResolver(user, bundled).resolve("t")

    assert handle.origin == str(user / "t.py")
    assert handle.source == ECHO_SCRIPT


def test_file_resolver_copies_bundled_default_on_first_use(tmp_path: Path) -> None:
    bundled = tmp_path / "bundled"
    bundled.mkdir()
    (bundled / "t.py").write_text(ECHO_SCRIPT, encoding="utf-8")
    user = tmp_path / "does" / "not" / "exist"

    handle = FileScriptResolver(user, bundled).resolve("t")

    assert (user / "t.py").read_text(encoding="utf-8") == ECHO_SCRIPT
    assert handle.origin == str(user / "t.py")


def test_file_resolver_keeps_edited_copy(tmp_path: Path) -> None:
    bundled = tmp_path / "bundled"
    bundled.mkdir()
    (bundled / "t.py").write_text(ECHO_SCRIPT, encoding="utf-8")
    resolver = FileScriptResolver(tmp_path / "user", bundled)
    resolver.resolve("t")
    (tmp_path / "user" / "t.py").write_text("# edited\n", encoding="utf-8")

    assert resolver.resolve("t").source == "# edited\n"


def test_file_resolver_without_any_script(tmp_path: Path) -> None:
    with pytest.raises(ScriptResolutionError, match="cassandra"):
        FileScriptResolver(tmp_path / "user", tmp_path).resolve("cassandra")
    assert not (tmp_path / "user").exists()


@pytest.mark.parametrize("resource_type", ["../evil", "a/b", ".hidden", ""])
def test_file_resolver_rejects_path_like_types(tmp_path: Path, resource_type: str) -> None:
    with pytest.raises(ScriptResolutionError):
        FileScriptResolver(tmp_path, tmp_path).resolve(resource_type)


def test_file_resolver_script_dir_is_a_file(tmp_path: Path) -> None:
    bundled = tmp_path / "bundled"
    bundled.mkdir()
    (bundled / "t.py").write_text(ECHO_SCRIPT, encoding="utf-8")
    not_a_dir = tmp_path / "scripts"
    not_a_dir.write_text("", encoding="utf-8")

    with pytest.raises(ScriptResolutionError, match="Cannot copy") as excinfo:
        FileScriptResolver(not_a_dir, bundled).resolve("t")
    assert excinfo.value.resource_type == "t"
    assert isinstance(excinfo.value.__cause__, OSError)


def test_file_resolver_undecodable_script(tmp_path: Path) -> None:
    (tmp_path / "t.py").write_bytes(b"\xff\xfe bad")

    with pytest.raises(ScriptExecutionError, match="cannot read script") as excinfo:
        FileScriptResolver(tmp_path, tmp_path / "bundled").resolve("t")
    assert excinfo.value.origin == str(tmp_path / "t.py")
    assert isinstance(excinfo.value.__cause__, UnicodeDecodeError)


def test_runner_resolves_once() -> None:
    calls: list[str] = []

    class CountingResolver(MemoryScriptResolver):
        def resolve(self, resource_type: str):  # type: ignore[override]
            calls.append(resource_type)
            return super().resolve(resource_type)

    runner = ScriptRunner(CountingResolver({"t": ECHO_SCRIPT}))
    runner.run("t", make_state())
    runner.run("t", make_state(count=1))
    assert calls == ["t"]


def test_script_command_builder_delegates() -> None:
    builder = ScriptCommandBuilder("t", ScriptRunner(MemoryScriptResolver({"t": ECHO_SCRIPT})))
    assert builder.build(make_state()) == ScriptResult("echo db1", False)


def test_template_command_builder_fills_and_finishes() -> None:
    builder = TemplateCommandBuilder("redis-cli -h {host} -u {dsn} {missing}")
    assert builder.build(make_state()) == ScriptResult("redis-cli -h db1 -u x://db1 ", False)


def bundled_runner(tmp_path: Path) -> ScriptRunner:
    return ScriptRunner(FileScriptResolver(tmp_path, bundled_scripts()))


def test_bundled_mysql_script(tmp_path: Path) -> None:
    variables = {
        "user": "root",
        "password": "p%40ss word",
        "host": "localhost",
        "port": "3306",
        "database": "test_db",
        "dsn": "mysql://root:p%40ss word@localhost:3306/test_db",
    }
    result = bundled_runner(tmp_path).run("mysql", make_state(variables=variables))

    assert result.again is False
    assert shlex.split(result.command_with_args) == [
        "mysql", "-h", "localhost", "-P", "3306", "-u", "root", "-pp@ss word", "test_db",
    ]
    assert (tmp_path / "mysql.py").is_file()


def test_bundled_mongodb_script(tmp_path: Path) -> None:
    dsn = "mongodb://u:p@localhost:27017/app"
    result = bundled_runner(tmp_path).run("mongodb", make_state(variables={"dsn": dsn}))
    assert shlex.split(result.command_with_args) == ["mongosh", dsn]
    assert result.again is False


def test_bundled_redis_script_direct(tmp_path: Path) -> None:
    variables = {"user": "", "password": "", "host": "cache", "port": "6380", "database": "2"}
    result = bundled_runner(tmp_path).run("redis", make_state(variables=variables))
    assert shlex.split(result.command_with_args) == [
        "redis-cli", "-h", "cache", "-p", "6380", "-n", "2",
    ]
    assert result.again is False


def test_bundled_redis_script_asks_sentinel_first(tmp_path: Path) -> None:
    runner = bundled_runner(tmp_path)
    variables = {"user": "", "password": "s3cret", "host": "sentinel", "port": "26379", "database": "0"}
    annotations = {"redis-sentinel": "1", "master-name": "cache-master"}

    probe = runner.run("redis", make_state(variables=variables, annotations=annotations))
    assert probe.again is True
    assert shlex.split(probe.command_with_args) == [
        "redis-cli", "-h", "sentinel", "-p", "26379", "--raw",
        "SENTINEL", "get-master-addr-by-name", "cache-master",
    ]

    final = runner.run(
        "redis",
        make_state(
            count=1,
            variables=variables,
            annotations=annotations,
            last_output_lines=["10.0.0.5", "6379"],
        ),
    )
    assert final.again is False
    assert shlex.split(final.command_with_args) == [
        "redis-cli", "-h", "10.0.0.5", "-p", "6379",
        "-a", "s3cret", "--no-auth-warning", "-n", "0",
    ]


def test_bundled_redis_script_without_master(tmp_path: Path) -> None:
    state = make_state(
        count=1,
        variables={"host": "sentinel", "port": "26379"},
        annotations={"redis-sentinel": "1"},
        last_output_lines=[],
    )
    with pytest.raises(ScriptExecutionError, match="did not report a master"):
        bundled_runner(tmp_path).run("redis", state)
