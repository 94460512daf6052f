"""
Core data model - messages, conversation state, agent handoff and results.

Immutable records (Message, AgentMessage, ExecutionResult) are frozen models.
ConversationState and WorkflowState are mutable but owned by exactly one
orchestrator run; agents only ever see snapshots of them.
"""

import time
import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
	"""Author of a message."""
	USER = "user"
	ASSISTANT = "assistant"
	SYSTEM = "system"


class AgentType(str, Enum):
	"""Which agent produced an assistant message."""
	CONVERSATIONAL = "conversational"
	CODE_GENERATION = "code_generation"


class Priority(str, Enum):
	LOW = "low"
	MEDIUM = "medium"
	HIGH = "high"


class Complexity(str, Enum):
	SIMPLE = "simple"
	MEDIUM = "medium"
	COMPLEX = "complex"


def _new_id() -> str:
	return uuid.uuid4().hex[:12]


class Message(BaseModel):
	"""A single conversation message. Never mutated after creation."""
	model_config = ConfigDict(frozen=True)

	id: str = Field(default_factory=_new_id)
	role: Role
	content: str
	timestamp: float = Field(default_factory=time.time)
	agent_type: Optional[AgentType] = None

	def to_llm(self) -> dict[str, str]:
		"""Shape for the gateway chat contract."""
		return {"role": self.role.value, "content": self.content}


class Clarification(BaseModel):
	"""A question asked to the user and the answer received."""
	model_config = ConfigDict(frozen=True)

	question: str
	answer: str


class RefinedRequirements(BaseModel):
	"""Structured requirements extracted from the conversation."""
	model_config = ConfigDict(frozen=True)

	tech_stack: tuple[str, ...] = ()
	features: tuple[str, ...] = ()
	database: Optional[str] = None
	additional_constraints: tuple[str, ...] = ()

	def missing_fields(self) -> list[str]:
		"""Required fields that could not be extracted."""
		missing = []
		if not self.tech_stack:
			missing.append("tech_stack")
		if not self.features:
			missing.append("features")
		return missing

	@property
	def is_complete(self) -> bool:
		return not self.missing_fields()


class AgentMessage(BaseModel):
	"""
	Structured handoff from the conversational agent to code generation.

	Created once per successful refinement and consumed once.
	"""
	model_config = ConfigDict(frozen=True)

	conversation_id: str
	user_intent: str
	refined_requirements: RefinedRequirements = Field(default_factory=RefinedRequirements)
	clarifications: tuple[Clarification, ...] = ()
	priority: Priority = Priority.MEDIUM
	estimated_complexity: Complexity = Complexity.MEDIUM
	refined_prompt: str = ""


class ExecutionResult(BaseModel):
	"""Terminal artifact of one sandbox run. execution_time is in milliseconds."""
	model_config = ConfigDict(frozen=True)

	success: bool
	output: str = ""
	error: Optional[str] = None
	logs: tuple[str, ...] = ()
	execution_time: float = 0.0


class ConversationState(BaseModel):
	"""State of one user-facing conversation."""

	conversation_id: str = Field(default_factory=_new_id)
	messages: list[Message] = Field(default_factory=list)
	user_intent: str = ""
	needs_clarification: bool = False
	clarification_questions: list[str] = Field(default_factory=list)
	refined_prompt: Optional[str] = None
	clarifications: list[Clarification] = Field(default_factory=list)
	clarification_rounds: int = 0

	def add_message(self, message: Message) -> None:
		"""Append to the ordered log. Messages are never removed individually."""
		self.messages.append(message)

	def clear_messages(self) -> None:
		self.messages.clear()

	def user_messages(self) -> list[str]:
		return [m.content for m in self.messages if m.role == Role.USER]

	def history(self, limit: Optional[int] = None) -> list[dict[str, str]]:
		"""Messages in gateway shape, most recent `limit` only."""
		messages = self.messages if limit is None else self.messages[-limit:]
		return [m.to_llm() for m in messages]


class CodeGenerationState(BaseModel):
	"""Generated code, completed progressively by generation then execution."""

	generated_code: str = ""
	language: str = ""
	explanation: str = ""
	execution_result: Optional[ExecutionResult] = None


_CONVERSATION_FIELDS = (
	"conversation_id",
	"messages",
	"user_intent",
	"needs_clarification",
	"clarification_questions",
	"refined_prompt",
	"clarifications",
	"clarification_rounds",
)


class WorkflowState(BaseModel):
	"""
	Snapshot of one workflow run.

	Union of the conversation and code generation state plus the
	should_continue flag. Only the orchestrator mutates it, through merge().
	"""

	conversation_id: str = Field(default_factory=_new_id)
	messages: list[Message] = Field(default_factory=list)
	user_intent: str = ""
	needs_clarification: bool = False
	clarification_questions: list[str] = Field(default_factory=list)
	refined_prompt: Optional[str] = None
	clarifications: list[Clarification] = Field(default_factory=list)
	clarification_rounds: int = 0

	generated_code: str = ""
	language: str = ""
	explanation: str = ""
	execution_result: Optional[ExecutionResult] = None

	agent_message: Optional[AgentMessage] = None
	should_continue: bool = True

	@classmethod
	def from_conversation(cls, conversation: Optional[ConversationState]) -> "WorkflowState":
		"""Start a run from a previous turn's conversation (or a fresh one)."""
		if conversation is None:
			return cls()
		data = conversation.model_copy(deep=True).model_dump(include=set(_CONVERSATION_FIELDS))
		# A new run has not refined anything yet
		data["refined_prompt"] = None
		return cls.model_validate(data)

	def conversation(self) -> ConversationState:
		"""Deep-copied conversation view handed to agents."""
		return ConversationState.model_validate(
			self.model_copy(deep=True).model_dump(include=set(_CONVERSATION_FIELDS))
		)

	def code_state(self) -> CodeGenerationState:
		return CodeGenerationState(
			generated_code=self.generated_code,
			language=self.language,
			explanation=self.explanation,
			execution_result=self.execution_result,
		)

	def snapshot(self) -> "WorkflowState":
		return self.model_copy(deep=True)

	def add_message(self, message: Message) -> None:
		self.messages.append(message)

	def merge(self, **updates: Any) -> None:
		"""
		Apply a partial update returned by an agent step.

		Raises ValueError (leaving the state untouched) if the result would
		break a state invariant.
		"""
		if "messages" in updates:
			raise ValueError("messages are append-only; use add_message()")
		unknown = set(updates) - set(type(self).model_fields)
		if unknown:
			raise ValueError(f"Unknown workflow state fields: {sorted(unknown)}")

		previous = {name: getattr(self, name) for name in updates}
		for name, value in updates.items():
			setattr(self, name, value)

		problem = self.invariant_violation()
		if problem:
			for name, value in previous.items():
				setattr(self, name, value)
			raise ValueError(problem)

	def invariant_violation(self) -> Optional[str]:
		"""Describe the first broken invariant, or None."""
		if self.clarification_questions and not self.needs_clarification:
			return "clarification_questions set while needs_clarification is false"
		resolved = not self.needs_clarification and self.agent_message is not None
		if (self.refined_prompt is not None) != resolved:
			return "refined_prompt must be set exactly when clarification is resolved"
		if self.execution_result is not None and not self.generated_code:
			return "execution_result set before generated_code"
		return None
