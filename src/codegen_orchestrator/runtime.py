"""
Runtime - one wired-up set of components built from a Config.

Holds the gateway, sandbox manager, caches, agents and orchestrator that
the CLI and the MCP server share, plus the conversations carried between
turns.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .agents import CodeGenerationAgent, ConversationalAgent, ExecutionAgent
from .cache import CacheManager
from .config import Config, get_config
from .gateway import LLMGateway
from .models import ConversationState
from .orchestrator import WorkflowInput, WorkflowOptions, WorkflowOrchestrator, WorkflowResult
from .sandbox import SandboxManager

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
	config: Config
	gateway: LLMGateway
	sandbox: SandboxManager
	caches: CacheManager
	conversational: ConversationalAgent
	code_generation: CodeGenerationAgent
	execution: ExecutionAgent
	orchestrator: WorkflowOrchestrator

	def default_options(self, **overrides) -> WorkflowOptions:
		options = WorkflowOptions.from_settings(self.config.workflow)
		for key, value in overrides.items():
			if value is not None:
				setattr(options, key, value)
		return options

	def get_conversation(self, conversation_id: str) -> Optional[ConversationState]:
		if not conversation_id:
			return None
		return self.caches.conversation.get(f"state:{conversation_id}")

	def save_conversation(self, conversation: Optional[ConversationState]) -> None:
		if conversation is not None:
			self.caches.conversation.set(f"state:{conversation.conversation_id}", conversation)

	async def run_turn(
		self,
		message: str,
		conversation_id: str = "",
		options: Optional[WorkflowOptions] = None,
	) -> WorkflowResult:
		"""Execute one turn, continuing a stored conversation when its id is given."""
		result = await self.orchestrator.execute(WorkflowInput(
			user_message=message,
			context=self.get_conversation(conversation_id),
			options=options or self.default_options(),
		))
		self.save_conversation(result.conversation)
		return result

	async def start(self) -> None:
		await self.sandbox.start()

	async def shutdown(self) -> None:
		await self.sandbox.stop()
		self.caches.clear()


def build_runtime(
	config: Config,
	gateway: Optional[LLMGateway] = None,
	sandbox: Optional[SandboxManager] = None,
) -> Runtime:
	"""Wire every component from configuration. Gateway and sandbox can be injected."""
	gateway = gateway or LLMGateway.from_settings(config.gateway, config.providers)
	sandbox = sandbox or SandboxManager(config.sandbox, root=config.sandbox_dir)
	caches = CacheManager(config.caches)

	conversational = ConversationalAgent(gateway, cache=caches.conversation)
	code_generation = CodeGenerationAgent(gateway, cache=caches.code)
	execution = ExecutionAgent(sandbox, cache=caches.execution)
	orchestrator = WorkflowOrchestrator(
		conversational,
		code_generation,
		execution,
		sandbox,
		defaults=WorkflowOptions.from_settings(config.workflow),
		max_history=config.workflow.max_history,
	)
	logger.debug(f"Runtime built with providers {gateway.available_providers()}")
	return Runtime(
		config=config,
		gateway=gateway,
		sandbox=sandbox,
		caches=caches,
		conversational=conversational,
		code_generation=code_generation,
		execution=execution,
		orchestrator=orchestrator,
	)


# Global instance
_runtime: Runtime | None = None


def get_runtime(config: Optional[Config] = None) -> Runtime:
	"""Get or create the global runtime."""
	global _runtime
	if _runtime is None:
		_runtime = build_runtime(config or get_config())
	return _runtime
