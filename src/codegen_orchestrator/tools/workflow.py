"""Workflow tools - run, start, inspect and cancel code generation workflows."""

import json

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..errors import ConfigError
from ..orchestrator import WorkflowInput
from ..runtime import get_runtime


def register_workflow_tools(mcp: FastMCP, config: Config) -> None:
	"""Register workflow tools."""

	@mcp.tool()
	async def execute_workflow(
		message: str,
		conversation_id: str = "",
		quality: str = "",
		language: str = "",
		execute_code: bool = True,
		max_clarifications: int = -1,
	) -> str:
		"""
		Turn a request into working code: clarify, generate, run and report.

		If the request is too vague the result has needs_clarification=true
		and a list of questions. Answer them by calling this tool again with
		the same conversation_id.

		Args:
			message: What to build, or the answer to the previous questions
			conversation_id: Continue an earlier conversation (from a previous result)
			quality: draft, production or optimized (default from config)
			language: Force the output language (e.g. "python")
			execute_code: Run the generated program in the sandbox
			max_clarifications: Clarification rounds allowed (-1 = config default)
		"""
		runtime = get_runtime(config)
		try:
			options = runtime.default_options(
				quality=quality or None,
				language=language or None,
				execute_code=execute_code,
				max_clarifications=max_clarifications if max_clarifications >= 0 else None,
			)
			result = await runtime.run_turn(message, conversation_id, options)
		except ConfigError as e:
			return json.dumps({"success": False, "error": str(e)})
		return json.dumps(result.to_dict(), indent=2)

	@mcp.tool()
	async def start_workflow(message: str, conversation_id: str = "", quality: str = "") -> str:
		"""
		Start a workflow in the background and return its id immediately.

		Poll with get_workflow_status; stop with cancel_workflow.

		Args:
			message: What to build
			conversation_id: Continue an earlier conversation
			quality: draft, production or optimized
		"""
		runtime = get_runtime(config)
		try:
			workflow_id = await runtime.orchestrator.start(WorkflowInput(
				user_message=message,
				context=runtime.get_conversation(conversation_id),
				options=runtime.default_options(quality=quality or None),
			))
		except ConfigError as e:
			return json.dumps({"success": False, "error": str(e)})
		return json.dumps({"success": True, "workflow_id": workflow_id})

	@mcp.tool()
	async def get_workflow_status(workflow_id: str) -> str:
		"""
		Get status and progress (0-100) of a workflow; includes the result once finished.

		Args:
			workflow_id: ID returned by start_workflow or execute_workflow
		"""
		runtime = get_runtime(config)
		status = runtime.orchestrator.get_status(workflow_id)
		if status is None:
			return json.dumps({"success": False, "error": f"Workflow not found: {workflow_id}"})

		response = {"success": True, "status": status.to_dict()}
		result = runtime.orchestrator.get_result(workflow_id)
		if result is not None:
			runtime.save_conversation(result.conversation)
			response["result"] = result.to_dict()
		return json.dumps(response, indent=2)

	@mcp.tool()
	async def cancel_workflow(workflow_id: str) -> str:
		"""
		Cancel a running workflow. Its sandbox session is closed.

		Args:
			workflow_id: Workflow to cancel
		"""
		runtime = get_runtime(config)
		cancelled = await runtime.orchestrator.cancel(workflow_id)
		if not cancelled:
			return json.dumps({"success": False, "error": f"Workflow not running: {workflow_id}"})
		return json.dumps({"success": True, "workflow_id": workflow_id, "status": "cancelled"})

	@mcp.tool()
	async def list_workflows() -> str:
		"""List running and recently finished workflows."""
		runtime = get_runtime(config)
		workflows = runtime.orchestrator.list_workflows()
		return json.dumps({"success": True, "count": len(workflows), "workflows": workflows})
