"""
Execution Agent - validates code, then runs it (and its tests) in the sandbox.

Test runs happen in a single session. For Python a small harness imports
the test module, runs plain test functions and unittest cases, and prints
one JSON line of results. Other languages run code and tests as one
program and count as a single test.
"""

import ast
import json
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from typing import Optional

from ..cache import Cache, make_key
from ..models import ExecutionResult
from ..sandbox import SandboxManager, SandboxOptions, check_policy, normalize_language
from .validation import ValidationReport, validate_code

logger = logging.getLogger(__name__)

RESULTS_MARKER = "__TEST_RESULTS__"

PYTHON_HARNESS = '''\
import importlib
import inspect
import json
import os
import sys
import time
import traceback
import unittest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))


def _last_line(text):
	lines = [l for l in text.strip().splitlines() if l.strip()]
	return lines[-1] if lines else text


def _cases(suite):
	for item in suite:
		if isinstance(item, unittest.TestSuite):
			yield from _cases(item)
		else:
			yield item


results = []
try:
	module = importlib.import_module("test_solution")
except BaseException as e:
	results.append({"name": "import", "passed": False, "error": f"{type(e).__name__}: {e}", "duration": 0.0})
	module = None

if module is not None:
	for name, obj in sorted(vars(module).items()):
		if name.startswith("test") and inspect.isfunction(obj) and obj.__module__ == module.__name__:
			start = time.perf_counter()
			try:
				obj()
				results.append({"name": name, "passed": True, "error": None, "duration": time.perf_counter() - start})
			except BaseException as e:
				results.append({
					"name": name,
					"passed": False,
					"error": f"{type(e).__name__}: {e}",
					"duration": time.perf_counter() - start,
				})

	for case in _cases(unittest.TestLoader().loadTestsFromModule(module)):
		outcome = unittest.TestResult()
		start = time.perf_counter()
		case.run(outcome)
		problems = outcome.failures + outcome.errors
		results.append({
			"name": case.id().split(".", 1)[-1],
			"passed": outcome.wasSuccessful(),
			"error": _last_line(problems[0][1]) if problems else None,
			"duration": time.perf_counter() - start,
		})

print("__TEST_RESULTS__" + json.dumps(results))
'''


@dataclass
class TestCaseResult:
	name: str
	passed: bool
	error: Optional[str] = None
	duration: float = 0.0


@dataclass
class TestRunReport:
	"""Outcome of one run_tests call. execution_time is in milliseconds."""
	passed: bool
	total_tests: int = 0
	passed_tests: int = 0
	failed_tests: int = 0
	test_results: list[TestCaseResult] = field(default_factory=list)
	coverage: float = 0.0
	execution_time: float = 0.0
	error: Optional[str] = None

	@classmethod
	def from_results(
		cls,
		results: list[TestCaseResult],
		coverage: float,
		execution_time: float,
		error: Optional[str] = None,
	) -> "TestRunReport":
		passed = sum(1 for r in results if r.passed)
		return cls(
			passed=passed == len(results),
			total_tests=len(results),
			passed_tests=passed,
			failed_tests=len(results) - passed,
			test_results=results,
			coverage=coverage,
			execution_time=execution_time,
			error=error,
		)

	def to_dict(self) -> dict:
		return asdict(self)


_JS_DEFINITIONS = re.compile(
	r"^\s*(?:export\s+)?(?:async\s+)?(?:function\s+(\w+)|class\s+(\w+)|(?:const|let|var)\s+(\w+)\s*=\s*(?:async\s*)?(?:function|\())",
	re.MULTILINE,
)
_BASH_DEFINITIONS = re.compile(r"^\s*(?:function\s+)?(\w+)\s*\(\)\s*\{", re.MULTILINE)


def top_level_definitions(code: str, language: str) -> list[str]:
	"""Names of top-level functions and classes."""
	if language == "python":
		try:
			tree = ast.parse(code)
		except SyntaxError:
			return []
		return [
			node.name
			for node in tree.body
			if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)) and not node.name.startswith("_")
		]
	if language in ("javascript", "typescript"):
		return [next(g for g in m.groups() if g) for m in _JS_DEFINITIONS.finditer(code)]
	if language == "bash":
		return _BASH_DEFINITIONS.findall(code)
	return []


def estimate_coverage(code: str, test_code: str, language: str) -> float:
	"""Percentage of top-level definitions the tests mention by name."""
	names = top_level_definitions(code, language)
	if not names or not test_code.strip():
		return 0.0
	covered = sum(1 for name in names if re.search(rf"\b{re.escape(name)}\b", test_code))
	return round(100.0 * covered / len(names), 1)


class ExecutionAgent:
	"""Runs generated code through the sandbox manager."""

	def __init__(
		self,
		sandbox: SandboxManager,
		cache: Optional[Cache] = None,
	):
		self.sandbox = sandbox
		self.cache = cache

	def validate_execution(
		self,
		code: str,
		language: str,
		options: Optional[SandboxOptions] = None,
	) -> ValidationReport:
		"""Check that code can be handed to the sandbox at all."""
		language = normalize_language(language)
		options = options or self.sandbox.default_options()
		report = validate_code(code, language)
		if not report.valid:
			return report
		if not self.sandbox.supports(language):
			report.valid = False
			report.errors.append(f"Unsupported language: {language}")
			return report
		if len(code.encode("utf-8")) > self.sandbox.settings.max_code_bytes:
			report.valid = False
			report.errors.append(f"Code exceeds {self.sandbox.settings.max_code_bytes} bytes")
			return report
		violations = check_policy(
			code,
			language,
			allow_network_access=options.allow_network_access,
			allow_file_system_access=options.allow_file_system_access,
		)
		if violations:
			report.valid = False
			report.errors.extend(f"Policy violation: {v}" for v in violations)
		return report

	async def execute(
		self,
		code: str,
		language: str,
		session_id: Optional[str] = None,
		options: Optional[SandboxOptions] = None,
		use_cache: bool = True,
	) -> ExecutionResult:
		"""
		Validate, then run code in `session_id` (or an ephemeral session).

		Validation failures come back as an unsuccessful result without
		touching the sandbox.

		Raises:
			SandboxError: for an unknown/closed session or an exhausted pool
		"""
		language = normalize_language(language)
		options = options or self.sandbox.default_options()
		report = self.validate_execution(code, language, options)
		if not report.valid:
			return ExecutionResult(success=False, error=report.errors[0], logs=tuple(report.errors))

		key = make_key("exec", code, language, asdict(options))
		if use_cache and self.cache is not None:
			cached = self.cache.get(key)
			if cached is not None:
				return cached

		if session_id is None:
			result = await self.sandbox.execute_code(code, language, options)
		else:
			result = await self.sandbox.execute_in_session(session_id, code, language)

		if use_cache and self.cache is not None:
			self.cache.set(key, result)
		return result

	async def run_tests(
		self,
		code: str,
		test_code: str,
		language: str,
		session_id: Optional[str] = None,
		options: Optional[SandboxOptions] = None,
	) -> TestRunReport:
		"""
		Run tests against code in one sandbox session.

		No tests means passed=True with total_tests=0.
		"""
		language = normalize_language(language)
		if not test_code or not test_code.strip():
			return TestRunReport(passed=True)

		coverage = estimate_coverage(code, test_code, language)
		own_session = session_id is None
		if own_session:
			session_id = await self.sandbox.create_session(options)

		start = time.monotonic()
		try:
			if language == "python":
				result = await self.sandbox.execute_in_session(
					session_id,
					PYTHON_HARNESS,
					"python",
					files={"solution.py": code, "test_solution.py": test_code},
				)
				results = self._parse_results(result)
			else:
				result = await self.sandbox.execute_in_session(session_id, f"{code}\n\n{test_code}\n", language)
				results = [TestCaseResult(
					name="test_program",
					passed=result.success,
					error=result.error,
					duration=result.execution_time / 1000,
				)]
		finally:
			if own_session:
				await self.sandbox.close_session(session_id)

		elapsed = (time.monotonic() - start) * 1000
		error = None if result.success else result.error
		report = TestRunReport.from_results(results, coverage, elapsed, error=error)
		logger.info(f"Tests: {report.passed_tests}/{report.total_tests} passed, coverage ~{coverage:.0f}%")
		return report

	def _parse_results(self, result: ExecutionResult) -> list[TestCaseResult]:
		for line in reversed(result.output.splitlines()):
			if line.startswith(RESULTS_MARKER):
				try:
					raw = json.loads(line[len(RESULTS_MARKER):])
				except json.JSONDecodeError:
					break
				return [
					TestCaseResult(
						name=str(r.get("name", "")),
						passed=bool(r.get("passed")),
						error=r.get("error"),
						duration=float(r.get("duration") or 0.0),
					)
					for r in raw
				]
		return [TestCaseResult(name="test_run", passed=False, error=result.error or "Test harness produced no results")]
