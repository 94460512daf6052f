"""Sandbox execution tool."""

import json

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..errors import SandboxError
from ..runtime import get_runtime
from ..sandbox import SandboxOptions


def register_sandbox_tools(mcp: FastMCP, config: Config) -> None:
	"""Register sandbox tools."""

	@mcp.tool()
	async def run_code(
		code: str,
		language: str = "python",
		timeout: float = 0,
		memory_limit_mb: int = 0,
	) -> str:
		"""
		Run a snippet in a fresh sandbox session (no network, no file access).

		Args:
			code: Source to run
			language: python, javascript or bash
			timeout: Seconds before the program is killed (0 = config default)
			memory_limit_mb: Memory cap in MB (0 = config default)
		"""
		runtime = get_runtime(config)
		options = SandboxOptions(
			timeout=timeout or config.sandbox.timeout,
			memory_limit=memory_limit_mb or config.sandbox.memory_limit_mb,
		)
		try:
			result = await runtime.execution.execute(code, language, options=options, use_cache=False)
		except SandboxError as e:
			return json.dumps({"success": False, "error": str(e), "code": e.code})
		return json.dumps(result.model_dump(mode="json"), indent=2)
