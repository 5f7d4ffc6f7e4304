"""Tests for the llamabuild command-line interface."""

import io
import logging
from pathlib import Path
from unittest.mock import patch

import pytest
from rich.console import Console

from llamabuild.build.binding_generator import BindingResult
from llamabuild.build.build_context import OPTIONAL_ENV, REQUIRED_ENV
from llamabuild.build.errors import NativeBuildError
from llamabuild.build.native_build import NativeBuildResult
from llamabuild.cli import CommonArgs, PlanArgs, main, merged_environment, plan_command


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def build_env(monkeypatch, tmp_path):
    for name in (*REQUIRED_ENV, *OPTIONAL_ENV, "CMAKE_BUILD_PARALLEL_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TARGET", "x86_64-unknown-linux-gnu")
    monkeypatch.setenv("OUT_DIR", str(tmp_path / "out"))
    monkeypatch.setenv("PROFILE", "release")
    monkeypatch.setenv("MANIFEST_DIR", str(tmp_path / "consumer"))
    return tmp_path


def test_no_command_prints_help(capsys):
    assert main([]) == 0
    assert "usage: llamabuild" in capsys.readouterr().out


def test_version(capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["--version"])
    assert exc_info.value.code == 0
    assert "llamabuild" in capsys.readouterr().out


def test_missing_inputs_exit_1(monkeypatch, captured_output):
    for name in REQUIRED_ENV:
        monkeypatch.delenv(name, raising=False)

    with patch("llamabuild.cli.run_build") as mock_build:
        assert main(["build"]) == 1

    mock_build.assert_not_called()
    assert "ERROR: Missing required build input(s)" in captured_output.log.getvalue()


def test_build_uses_environment(build_env):
    with patch("llamabuild.cli.run_build") as mock_build:
        assert main(["build"]) == 0

    ctx = mock_build.call_args[0][0]
    assert ctx.target == "x86_64-unknown-linux-gnu"
    assert ctx.out_dir == build_env / "out"
    assert mock_build.call_args[1]["style"] == "cargo"


def test_command_line_overrides_environment(build_env, tmp_path):
    with patch("llamabuild.cli.run_build") as mock_build:
        main(["build", "--target", "aarch64-apple-darwin", "--profile", "debug", "--out-dir", str(tmp_path / "elsewhere"), "--features", "cuda", "--format", "flags"])

    ctx = mock_build.call_args[0][0]
    assert ctx.target == "aarch64-apple-darwin"
    assert ctx.out_dir == tmp_path / "elsewhere"
    assert str(ctx.profile) == "debug"
    assert ctx.shared_libs is True
    assert mock_build.call_args[1]["style"] == "flags"


def test_merged_environment_ignores_unset_overrides(build_env):
    env = merged_environment(CommonArgs(target="x86_64-pc-windows-msvc"))
    assert env["TARGET"] == "x86_64-pc-windows-msvc"
    assert env["PROFILE"] == "release"


def test_native_build_failure_exit_1(build_env, captured_output):
    failed = NativeBuildResult(success=False, output_dir=None, build_dir=Path("/out/build"), stage="build", returncode=2, message="CMake build failed with exit code 2")
    with patch("llamabuild.cli.run_build", side_effect=NativeBuildError(failed)):
        assert main(["build"]) == 1

    log = captured_output.log.getvalue()
    assert "CMake build failed with exit code 2" in log
    assert "stage: build" in log


def test_keyboard_interrupt_exit_130(build_env):
    with patch("llamabuild.cli.run_build", side_effect=KeyboardInterrupt):
        assert main(["build"]) == 130


def test_unexpected_error_exit_1(build_env, captured_output):
    with patch("llamabuild.cli.run_build", side_effect=RuntimeError("surprise")):
        assert main(["build"]) == 1
    assert "RuntimeError: surprise" in captured_output.log.getvalue()


def test_build_debug_enables_debug_lines(build_env, monkeypatch):
    monkeypatch.setenv("BUILD_DEBUG", "1")
    with patch("llamabuild.cli.run_build") as mock_build:
        main(["build"])

    assert mock_build.call_args[0][0].debug is True
    assert logging.getLogger().level == logging.DEBUG


def test_bindings_command(build_env):
    result = BindingResult(path=build_env / "out" / "bindings.py", headers=(), function_count=0, type_count=0)
    with patch("llamabuild.cli.run_bindings", return_value=result) as mock_bindings, patch("llamabuild.cli.run_build") as mock_build:
        assert main(["bindings"]) == 0

    mock_bindings.assert_called_once()
    mock_build.assert_not_called()


def test_plan_table(build_env):
    lib_dir = build_env / "out" / "lib"
    lib_dir.mkdir(parents=True)
    (lib_dir / "libllama.a").write_bytes(b"")
    console = Console(file=io.StringIO(), width=200)

    assert plan_command(PlanArgs(common=CommonArgs()), console=console) == 0

    table = console.file.getvalue()
    assert "Link plan" in table
    assert "llama" in table
    assert "stdc++" in table


def test_plan_directives(build_env, captured_output):
    lib_dir = build_env / "out" / "lib"
    lib_dir.mkdir(parents=True)
    (lib_dir / "libllama.a").write_bytes(b"")

    assert main(["plan", "--format", "cargo"]) == 0

    assert "cargo:rustc-link-lib=static=llama" in captured_output.directive_lines()
