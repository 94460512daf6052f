"""codegen-orchestrator MCP server."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from mcp.server.fastmcp import FastMCP

from .config import load_config
from .logging_config import setup_logging
from .runtime import Runtime, get_runtime
from .tools import register_all_tools

config = load_config()
setup_logging(config.log_level, config.log_dir)


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[Runtime]:
	"""Run the sandbox reaper while the server is up; close every session on exit."""
	runtime = get_runtime(config)
	await runtime.start()
	try:
		yield runtime
	finally:
		await runtime.shutdown()


mcp = FastMCP("codegen-orchestrator", lifespan=lifespan)
register_all_tools(mcp, config)
