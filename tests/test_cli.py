"""Tests for the CLI module."""

import json
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from codegen_orchestrator.cli import (
	_check_config_toml,
	_check_runtimes,
	build_parser,
	cmd_models,
	cmd_run,
	main,
)
from codegen_orchestrator.errors import LLMError

from .helpers import ScriptedProvider, make_runtime


@pytest.fixture
def isolated_env(tmp_path: Path, monkeypatch):
	monkeypatch.setenv("CODEGEN_ORCHESTRATOR_DATA_DIR", str(tmp_path / "data"))
	monkeypatch.setenv("CODEGEN_ORCHESTRATOR_CONFIG_DIR", str(tmp_path / "config"))
	for var in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY"):
		monkeypatch.delenv(var, raising=False)
	return tmp_path


def test_parser_run_options():
	"""run should accept every workflow option."""
	args = build_parser().parse_args([
		"run", "a todo app",
		"--quality", "draft",
		"--language", "python",
		"--no-exec",
		"--max-clarifications", "0",
		"--timeout", "30",
		"-o", "out.py",
	])
	assert args.command == "run"
	assert args.message == "a todo app"
	assert args.quality == "draft"
	assert args.no_exec is True
	assert args.max_clarifications == 0
	assert args.timeout == 30.0
	assert args.output == "out.py"
	assert args.func is cmd_run


def test_parser_rejects_unknown_quality():
	with pytest.raises(SystemExit):
		build_parser().parse_args(["run", "x", "--quality", "perfect"])


def test_main_without_command_exits():
	"""No subcommand prints help and exits 1."""
	with patch.object(sys, "argv", ["codegen-orchestrator"]):
		with pytest.raises(SystemExit) as exc_info:
			main()
	assert exc_info.value.code == 1


def test_models_json(isolated_env, capsys):
	"""models --json lists every configured provider."""
	cmd_models(build_parser().parse_args(["models", "--json"]))

	data = json.loads(capsys.readouterr().out)
	assert set(data) == {"openai", "anthropic", "google", "ollama"}
	assert data["openai"]["available"] is False
	assert data["openai"]["models"]


def test_check_config_toml(tmp_path: Path):
	"""config.toml is optional, but must parse when present."""
	assert _check_config_toml(tmp_path) == ("not found (optional)", None)

	(tmp_path / "config.toml").write_text('log_level = "DEBUG"\n')
	assert _check_config_toml(tmp_path) == ("valid", None)

	(tmp_path / "config.toml").write_text("log_level = \n")
	status, issue = _check_config_toml(tmp_path)
	assert status.startswith("INVALID")
	assert issue.startswith("config.toml parse error")


def test_check_runtimes_finds_python():
	runtimes = dict(_check_runtimes())
	assert runtimes["python"] == sys.executable


class TestRunCommand:
	"""cmd_run against a scripted runtime."""

	def _run(self, tmp_path: Path, argv: list[str], provider=None) -> int:
		runtime = make_runtime(tmp_path, provider)
		with patch("codegen_orchestrator.runtime.build_runtime", return_value=runtime):
			with pytest.raises(SystemExit) as exc_info:
				cmd_run(build_parser().parse_args(argv))
		return exc_info.value.code

	def test_success_writes_output(self, isolated_env, capsys):
		out = isolated_env / "fib.py"

		code = self._run(isolated_env, ["run", "Write a python fibonacci cli", "--no-input", "--json", "-o", str(out)])

		assert code == 0
		assert "def greet" in out.read_text()
		assert '"success": true' in capsys.readouterr().out

	def test_rendered_output(self, isolated_env, capsys):
		code = self._run(isolated_env, ["run", "Write a python fibonacci cli", "--no-input", "--steps", "--usage"])

		assert code == 0
		out = capsys.readouterr().out
		assert "Generated python" in out
		assert "Steps" in out
		assert "Provider Usage" in out

	def test_failure_exit_code(self, isolated_env):
		provider = ScriptedProvider(responses=[LLMError("bad key", provider="scripted", model="m", code="auth")])
		assert self._run(isolated_env, ["run", "Write a python fibonacci cli", "--no-input"], provider) == 1

	def test_invalid_options_exit_code(self, isolated_env):
		assert self._run(isolated_env, ["run", "x", "--no-input", "--timeout", "0"]) == 2
