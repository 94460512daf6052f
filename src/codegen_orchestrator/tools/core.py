"""Core health check tool."""

import json

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..runtime import get_runtime


def register_core_tools(mcp: FastMCP, config: Config) -> None:
	"""Register core tools."""

	@mcp.tool()
	async def health_check() -> str:
		"""
		Check the health of the codegen-orchestrator server.
		Returns status of all components.
		"""
		runtime = get_runtime(config)
		status = {
			"server": "running",
			"config_dir": str(config.config_dir),
			"data_dir": str(config.data_dir),
			"providers": {
				name: runtime.gateway.is_provider_available(name)
				for name in runtime.gateway.provider_names
			},
			"languages": runtime.sandbox.supported_languages(),
			"sandbox_sessions": len(runtime.sandbox.list_sessions()),
			"caches": runtime.caches.stats(),
		}
		return json.dumps(status, indent=2)
