"""MCP tool registration - modular tool definitions."""

import logging

from mcp.server.fastmcp import FastMCP

from ..config import Config
from .core import register_core_tools
from .gateway import register_gateway_tools
from .sandbox import register_sandbox_tools
from .workflow import register_workflow_tools

logger = logging.getLogger(__name__)


def register_all_tools(mcp: FastMCP, config: Config) -> None:
	"""Register all MCP tools."""
	register_core_tools(mcp, config)
	register_workflow_tools(mcp, config)
	register_gateway_tools(mcp, config)
	register_sandbox_tools(mcp, config)
	logger.debug("MCP tools registered")
