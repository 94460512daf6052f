"""Language model gateway tools."""

import json

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..runtime import get_runtime


def register_gateway_tools(mcp: FastMCP, config: Config) -> None:
	"""Register gateway introspection tools."""

	@mcp.tool()
	async def list_models(provider: str = "") -> str:
		"""
		List configured providers, whether each is usable, and their models.

		Args:
			provider: Only this provider (openai, anthropic, google, ollama)
		"""
		gateway = get_runtime(config).gateway
		names = [provider] if provider else gateway.provider_names
		providers = {
			name: {
				"available": gateway.is_provider_available(name),
				"models": gateway.get_available_models(name),
			}
			for name in names
		}
		return json.dumps({"success": True, "providers": providers})

	@mcp.tool()
	async def provider_usage(provider: str = "") -> str:
		"""
		Usage counters: requests, successes, failures, tokens, cost estimate, average latency.

		Args:
			provider: Only this provider (default: all that have been called)
		"""
		gateway = get_runtime(config).gateway
		if provider:
			usage = {provider: gateway.get_usage_stats(provider).to_dict()}
		else:
			usage = {name: stats.to_dict() for name, stats in gateway.get_usage_stats().items()}
		return json.dumps({"success": True, "usage": usage})
