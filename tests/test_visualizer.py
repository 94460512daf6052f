"""Tests for the Rich views."""

from rich.console import Console

from codegen_orchestrator.models import ExecutionResult
from codegen_orchestrator.orchestrator import RunStatus, WorkflowResult
from codegen_orchestrator.visualizer import render_models, render_steps, render_usage, render_workflow_result
from codegen_orchestrator.visualizer.utils import format_duration, syntax_lexer, truncate

from .helpers import ScriptedProvider, make_gateway


def recording_console() -> Console:
	return Console(record=True, width=120, color_system=None)


def make_result(**overrides) -> WorkflowResult:
	fields = dict(
		workflow_id="wf-1",
		success=True,
		status=RunStatus.COMPLETED,
		messages=[],
		generated_code="print('hi')\n",
		language="python",
		explanation="Says hi.",
		execution_result=ExecutionResult(success=True, output="hi\n", execution_time=12.0),
		metadata={
			"duration": 1.5,
			"steps": [
				{"name": "generate", "duration": 0.8, "success": True, "error": None, "skipped": False},
				{"name": "test", "duration": 0.0, "success": True, "error": "no tests generated", "skipped": True},
			],
		},
	)
	fields.update(overrides)
	return WorkflowResult(**fields)


class TestUtils:
	def test_format_duration(self):
		assert format_duration(0.0001) == "<1ms"
		assert format_duration(0.045) == "45ms"
		assert format_duration(1.24) == "1.2s"
		assert format_duration(125) == "2m 5s"

	def test_truncate(self):
		assert truncate("a\n  b") == "a b"
		assert truncate("x" * 100, 10) == "xxxxxxx..."

	def test_syntax_lexer(self):
		assert syntax_lexer("typescript") == "tsx"
		assert syntax_lexer("") == "text"


class TestWorkflowView:
	"""Result rendering."""

	def test_completed_result(self):
		console = recording_console()
		render_workflow_result(make_result(), console)

		text = console.export_text()
		assert "Generated python" in text
		assert "print('hi')" in text
		assert "Execution OK (12ms)" in text
		assert "completed" in text
		assert "1.5s" in text

	def test_clarification_result(self):
		console = recording_console()
		result = make_result(
			generated_code="",
			execution_result=None,
			needs_clarification=True,
			clarification_questions=["Which language?"],
		)

		render_workflow_result(result, console)

		text = console.export_text()
		assert "Clarification needed" in text
		assert "1. Which language?" in text
		assert "Generated" not in text

	def test_failed_result_shows_error(self):
		console = recording_console()
		result = make_result(success=False, status=RunStatus.FAILED, error="Workflow timed out after 1s")

		render_workflow_result(result, console)
		assert "Workflow timed out after 1s" in console.export_text()

	def test_steps_table(self):
		console = recording_console()
		render_steps(make_result(), console)

		text = console.export_text()
		assert "generate" in text
		assert "800ms" in text
		assert "skipped" in text

	def test_no_steps(self):
		console = recording_console()
		render_steps(make_result(metadata={}), console)
		assert "No steps recorded." in console.export_text()


class TestUsageView:
	"""Provider tables."""

	def test_models(self):
		console = recording_console()
		render_models(make_gateway(ScriptedProvider("local", models=["tiny", "small"])), console)

		text = console.export_text()
		assert "local" in text
		assert "tiny, small" in text
		assert "yes" in text

	def test_usage_empty(self):
		console = recording_console()
		render_usage(make_gateway(ScriptedProvider("local")), console)
		assert "No provider calls recorded yet." in console.export_text()
