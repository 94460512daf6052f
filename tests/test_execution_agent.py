"""Tests for the execution agent: validation, execution and test runs."""

import shutil
from pathlib import Path

import pytest

from codegen_orchestrator.agents import ExecutionAgent, estimate_coverage
from codegen_orchestrator.cache import Cache
from codegen_orchestrator.config import SandboxSettings
from codegen_orchestrator.sandbox import SandboxManager

from .helpers import DEFAULT_PYTHON

PASSING_AND_FAILING = '''\
from solution import *


def test_greet():
    assert greet("Ada") == "Hello, Ada!"


def test_wrong_expectation():
    assert greet("Ada") == "Bye"
'''

UNITTEST_STYLE = '''\
import unittest

from solution import greet


class TestGreet(unittest.TestCase):
    def test_hello(self):
        self.assertEqual(greet("x"), "Hello, x!")
'''


@pytest.fixture
def sandbox(tmp_path: Path) -> SandboxManager:
	return SandboxManager(SandboxSettings(timeout=10.0), root=tmp_path / "sandbox")


@pytest.fixture
def agent(sandbox: SandboxManager) -> ExecutionAgent:
	return ExecutionAgent(sandbox, cache=Cache("execution"))


class TestExecute:
	"""Validation before launch, then a sandbox run."""

	@pytest.mark.asyncio
	async def test_runs_valid_code(self, agent: ExecutionAgent):
		result = await agent.execute(DEFAULT_PYTHON, "python")
		assert result.success
		assert result.output.strip() == "Hello, world!"

	@pytest.mark.asyncio
	async def test_syntax_error_is_not_launched(self, agent: ExecutionAgent):
		result = await agent.execute("print(", "python")

		assert not result.success
		assert result.execution_time == 0.0
		assert result.logs

	@pytest.mark.asyncio
	async def test_policy_violation(self, agent: ExecutionAgent):
		result = await agent.execute("import socket\nprint(1)\n", "python")
		assert not result.success
		assert result.error.startswith("Policy violation")

	@pytest.mark.asyncio
	async def test_unsupported_language(self, agent: ExecutionAgent):
		result = await agent.execute("const x: number = 1;", "typescript")
		assert not result.success
		assert result.error == "Unsupported language: typescript"

	@pytest.mark.asyncio
	async def test_results_are_cached(self, agent: ExecutionAgent):
		first = await agent.execute("print(1)", "python")
		second = await agent.execute("print(1)", "python")
		assert second is first

	@pytest.mark.asyncio
	async def test_cache_can_be_bypassed(self, agent: ExecutionAgent):
		first = await agent.execute("print(1)", "python")
		second = await agent.execute("print(1)", "python", use_cache=False)
		assert second is not first
		assert second.output == first.output

	@pytest.mark.asyncio
	async def test_runs_in_named_session(self, agent: ExecutionAgent, sandbox: SandboxManager):
		session_id = await sandbox.create_session()
		try:
			await agent.execute("print(1)", "python", session_id=session_id, use_cache=False)
			assert sandbox.get_session_status(session_id)["executions"] == 1
		finally:
			await sandbox.close_session(session_id)


class TestRunTests:
	"""Running generated tests against generated code."""

	@pytest.mark.asyncio
	async def test_counts_passes_and_failures(self, agent: ExecutionAgent, sandbox: SandboxManager):
		report = await agent.run_tests(DEFAULT_PYTHON, PASSING_AND_FAILING, "python")

		assert report.total_tests == 2
		assert report.passed_tests == 1
		assert report.failed_tests == 1
		assert not report.passed
		failed = next(r for r in report.test_results if not r.passed)
		assert failed.name == "test_wrong_expectation"
		assert failed.error.startswith("AssertionError")
		assert report.coverage == 100.0
		assert sandbox.list_sessions() == []

	@pytest.mark.asyncio
	async def test_unittest_cases(self, agent: ExecutionAgent):
		report = await agent.run_tests(DEFAULT_PYTHON, UNITTEST_STYLE, "python")

		assert report.passed
		assert [r.name for r in report.test_results] == ["TestGreet.test_hello"]

	@pytest.mark.asyncio
	async def test_broken_test_module(self, agent: ExecutionAgent):
		report = await agent.run_tests(DEFAULT_PYTHON, "import not_a_real_module\n", "python")

		assert not report.passed
		assert report.test_results[0].name == "import"
		assert "ModuleNotFoundError" in report.test_results[0].error

	@pytest.mark.asyncio
	async def test_no_tests_pass(self, agent: ExecutionAgent):
		report = await agent.run_tests(DEFAULT_PYTHON, "  ", "python")
		assert report.passed
		assert report.total_tests == 0

	@pytest.mark.asyncio
	@pytest.mark.skipif(shutil.which("bash") is None, reason="bash not installed")
	async def test_bash_counts_as_one_test(self, agent: ExecutionAgent):
		code = "double() {\n  echo $(( $1 * 2 ))\n}\n"
		tests = '[ "$(double 4)" = "8" ] || exit 1\n'

		report = await agent.run_tests(code, tests, "bash")

		assert report.passed
		assert report.total_tests == 1
		assert report.coverage == 100.0

	def test_report_to_dict(self):
		from codegen_orchestrator.agents import TestCaseResult, TestRunReport

		report = TestRunReport.from_results([TestCaseResult("a", True), TestCaseResult("b", False, "boom")], 50.0, 3.0)
		data = report.to_dict()
		assert data["passed"] is False
		assert data["failed_tests"] == 1
		assert data["test_results"][1]["error"] == "boom"


class TestCoverage:
	"""Definition-level coverage estimate."""

	def test_python(self):
		code = "def a():\n    pass\n\n\ndef b():\n    pass\n\n\ndef _private():\n    pass\n"
		assert estimate_coverage(code, "a()", "python") == 50.0

	def test_javascript(self):
		code = "function add(a, b) { return a + b; }\nconst sub = (a, b) => a - b;\n"
		assert estimate_coverage(code, "add(1, 2); sub(2, 1);", "javascript") == 100.0

	def test_no_definitions(self):
		assert estimate_coverage("print(1)", "assert True", "python") == 0.0
