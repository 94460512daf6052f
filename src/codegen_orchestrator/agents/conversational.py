"""
Conversational Agent - turns a chat into requirements a coder can act on.

Extracts structured requirements (tech stack, features, database,
constraints), decides whether the user must be asked for more, and
produces the refined prompt handed to code generation.

Whether clarification is needed depends only on the required fields
being present, never on the model's self-reported confidence.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from ..cache import Cache, make_key
from ..gateway import ChatOptions, LLMGateway
from ..models import (
	AgentMessage,
	Clarification,
	Complexity,
	ConversationState,
	Priority,
	RefinedRequirements,
	WorkflowState,
)
from ..schemas import CLARIFICATION_SCHEMA, CONVERSATION_ANALYSIS_SCHEMA

logger = logging.getLogger(__name__)

MAX_QUESTIONS = 3

# Keywords that map user wording to requirement values
_TECH_KEYWORDS: dict[str, str] = {
	"python": "Python",
	"django": "Django",
	"flask": "Flask",
	"fastapi": "FastAPI",
	"pandas": "pandas",
	"javascript": "JavaScript",
	"js": "JavaScript",
	"typescript": "TypeScript",
	"ts": "TypeScript",
	"react": "React",
	"vue": "Vue",
	"angular": "Angular",
	"svelte": "Svelte",
	"next.js": "Next.js",
	"nextjs": "Next.js",
	"node": "Node.js",
	"node.js": "Node.js",
	"express": "Express",
	"html": "HTML",
	"css": "CSS",
	"tailwind": "Tailwind CSS",
	"bash": "Bash",
	"shell": "Bash",
	"java": "Java",
	"golang": "Go",
	"rust": "Rust",
}

_DATABASE_KEYWORDS: dict[str, str] = {
	"postgres": "PostgreSQL",
	"postgresql": "PostgreSQL",
	"mysql": "MySQL",
	"sqlite": "SQLite",
	"mongodb": "MongoDB",
	"mongo": "MongoDB",
	"redis": "Redis",
}

_FEATURE_KEYWORDS: dict[str, str] = {
	"todo": "todo list",
	"to-do": "todo list",
	"login": "user authentication",
	"authentication": "user authentication",
	"signup": "user registration",
	"chat": "chat",
	"blog": "blog posts",
	"dashboard": "dashboard",
	"calculator": "calculator",
	"crud": "CRUD operations",
	"rest api": "REST API",
	"search": "search",
	"upload": "file upload",
	"fibonacci": "fibonacci sequence",
	"factorial": "factorial",
	"prime": "prime numbers",
	"sort": "sorting",
	"sorting": "sorting",
	"game": "game",
	"tic-tac-toe": "tic-tac-toe game",
	"scraper": "web scraping",
	"cli": "command-line interface",
	"timer": "timer",
	"weather": "weather lookup",
	"palindrome": "palindrome check",
	"converter": "unit conversion",
	"parser": "parsing",
}

_CONSTRAINT_RE = re.compile(r"[^.!?\n]*\b(must|should|without|only|no external)\b[^.!?\n]*", re.IGNORECASE)

_FALLBACK_QUESTIONS = {
	"tech_stack": "Which language or framework should I use (for example Python, React or Node.js)?",
	"features": "What should it do? Please list the main features you need.",
}


def _keyword_hits(text: str, table: dict[str, str]) -> list[str]:
	lowered = text.lower()
	hits: list[tuple[int, str]] = []
	for keyword, value in table.items():
		match = re.search(rf"(?<![\w.-]){re.escape(keyword)}(?![\w-])", lowered)
		if match:
			hits.append((match.start(), value))
	return _dedupe(value for _, value in sorted(hits))


def _dedupe(values) -> list[str]:
	seen = set()
	out = []
	for value in values:
		value = str(value).strip()
		if value and value.lower() not in seen:
			seen.add(value.lower())
			out.append(value)
	return out


def extract_requirements(text: str) -> RefinedRequirements:
	"""Keyword scan of user text for requirement fields."""
	databases = _keyword_hits(text, _DATABASE_KEYWORDS)
	constraints = _dedupe(m.group(0) for m in _CONSTRAINT_RE.finditer(text))
	return RefinedRequirements(
		tech_stack=tuple(_keyword_hits(text, _TECH_KEYWORDS)),
		features=tuple(_keyword_hits(text, _FEATURE_KEYWORDS)),
		database=databases[0] if databases else None,
		additional_constraints=tuple(constraints),
	)


def merge_requirements(*parts: RefinedRequirements) -> RefinedRequirements:
	"""Union of several extractions, first occurrence wins on order."""
	return RefinedRequirements(
		tech_stack=tuple(_dedupe(v for p in parts for v in p.tech_stack)),
		features=tuple(_dedupe(v for p in parts for v in p.features)),
		database=next((p.database for p in parts if p.database), None),
		additional_constraints=tuple(_dedupe(v for p in parts for v in p.additional_constraints)),
	)


def estimate_complexity(requirements: RefinedRequirements) -> Complexity:
	size = len(requirements.features) + (1 if requirements.database else 0)
	if size <= 1:
		return Complexity.SIMPLE
	if size <= 3:
		return Complexity.MEDIUM
	return Complexity.COMPLEX


@dataclass
class ConversationAnalysis:
	"""What the agent understood from the conversation so far."""
	needs_clarification: bool
	user_intent: str
	requirements: RefinedRequirements
	clarification_questions: list[str] = field(default_factory=list)
	refined_prompt: Optional[str] = None
	confidence: float = 0.0
	suggested_actions: list[str] = field(default_factory=list)
	priority: Priority = Priority.MEDIUM
	estimated_complexity: Complexity = Complexity.MEDIUM


class ConversationalAgent:
	"""Refines a user conversation into an AgentMessage."""

	SYSTEM_PROMPT = (
		"You are a senior engineer scoping a small programming task. "
		"Extract what the user wants built. Only list technologies and features "
		"the user actually asked for; leave a list empty rather than guessing."
	)

	def __init__(
		self,
		gateway: LLMGateway,
		cache: Optional[Cache] = None,
		provider: Optional[str] = None,
		model: Optional[str] = None,
		retries: Optional[int] = None,
	):
		self.gateway = gateway
		self.cache = cache
		self.provider = provider
		self.model = model
		self.retries = retries

	def with_retries(self, retries: Optional[int]) -> "ConversationalAgent":
		"""Copy of this agent using a different gateway retry count."""
		agent = copy.copy(self)
		agent.retries = retries
		return agent

	async def _ask(self, system: str, user: str, temperature: float = 0.2) -> str:
		response = await self.gateway.chat(
			self.provider,
			self.model,
			[{"role": "system", "content": system}, {"role": "user", "content": user}],
			ChatOptions(temperature=temperature, retries=self.retries),
		)
		return response.content

	@staticmethod
	def _transcript(context: ConversationState, message: str) -> str:
		lines = context.user_messages()
		if not lines or lines[-1] != message:
			lines.append(message)
		for c in context.clarifications:
			lines.append(f"Q: {c.question}\nA: {c.answer}")
		return "\n".join(lines)

	async def process_message(
		self,
		message: str,
		context: ConversationState,
		refine: bool = True,
	) -> ConversationAnalysis:
		"""
		Analyze the latest user message in the context of the conversation.

		Args:
			message: Latest user message
			context: Snapshot of the conversation (not modified)
			refine: Also produce the refined prompt when nothing is missing

		Raises:
			LLMError: if the analysis call fails
		"""
		transcript = self._transcript(context, message)
		data = await self._analyze(transcript)

		model_requirements = RefinedRequirements(
			tech_stack=tuple(_dedupe(data.get("tech_stack") or [])),
			features=tuple(_dedupe(data.get("features") or [])),
			database=data.get("database") or None,
			additional_constraints=tuple(_dedupe(data.get("constraints") or [])),
		)
		requirements = merge_requirements(model_requirements, extract_requirements(transcript))
		intent = (data.get("user_intent") or "").strip() or context.user_intent or message.strip()

		missing = requirements.missing_fields()
		needs_clarification = bool(missing)

		confidence = data.get("confidence")
		if not isinstance(confidence, (int, float)):
			confidence = 0.3 + 0.35 * bool(requirements.tech_stack) + 0.35 * bool(requirements.features)

		analysis = ConversationAnalysis(
			needs_clarification=needs_clarification,
			user_intent=intent,
			requirements=requirements,
			confidence=max(0.0, min(1.0, float(confidence))),
			suggested_actions=_dedupe(data.get("suggested_actions") or [])
			or (["ask_clarification"] if needs_clarification else ["generate_code"]),
			priority=_enum_or(Priority, data.get("priority"), Priority.MEDIUM),
			estimated_complexity=_enum_or(Complexity, data.get("complexity"), estimate_complexity(requirements)),
		)

		if needs_clarification:
			analysis.clarification_questions = await self.generate_clarification_questions(
				intent, context, missing=missing
			)
		elif refine:
			analysis.refined_prompt = await self.refine_prompt(
				context.history() + [{"role": "user", "content": message}],
				intent,
				requirements=requirements,
			)

		logger.info(
			f"Analysis for {context.conversation_id}: clarify={needs_clarification} "
			f"tech={list(requirements.tech_stack)} features={list(requirements.features)}"
		)
		return analysis

	async def _analyze(self, transcript: str) -> dict:
		"""Model extraction, cached per transcript. Unparseable output yields {}."""
		key = make_key("analysis", transcript)
		if self.cache is not None:
			cached = self.cache.get(key)
			if cached is not None:
				return dict(cached)

		content = await self._ask(
			f"{self.SYSTEM_PROMPT}\n\n{CONVERSATION_ANALYSIS_SCHEMA.instructions()}",
			transcript,
		)
		ok, data, error = CONVERSATION_ANALYSIS_SCHEMA.validate(content)
		if not ok:
			logger.warning(f"Analysis response rejected ({error}); using keyword extraction only")
			data = data if isinstance(data, dict) else {}

		if self.cache is not None:
			self.cache.set(key, dict(data))
		return data

	async def generate_clarification_questions(
		self,
		intent: str,
		context: ConversationState,
		missing: Optional[list[str]] = None,
	) -> list[str]:
		"""
		Ask the model what to ask the user. One gateway call.

		Always returns at least one question when fields are missing.
		"""
		asked = [c.question for c in context.clarifications]
		prompt = (
			f"The user wants: {intent}\n"
			f"Missing information: {', '.join(missing or []) or 'details'}\n"
			f"Already asked: {asked or 'nothing'}\n\n"
			f"{CLARIFICATION_SCHEMA.instructions()}"
		)
		content = await self._ask("You write short clarification questions for a software request.", prompt)

		ok, data, _ = CLARIFICATION_SCHEMA.validate(content)
		if ok:
			questions = [str(q) for q in data.get("questions", [])]
		else:
			questions = [line.strip(" -*\t") for line in content.splitlines() if line.strip().endswith("?")]

		questions = [q for q in _dedupe(questions) if q not in asked]
		if not questions:
			questions = [_FALLBACK_QUESTIONS[f] for f in (missing or []) if f in _FALLBACK_QUESTIONS]
		return questions[:MAX_QUESTIONS]

	async def refine_prompt(
		self,
		history: list[dict],
		intent: str,
		requirements: Optional[RefinedRequirements] = None,
	) -> str:
		"""Condense the conversation into one self-contained coding prompt. One gateway call."""
		lines = [f"{m['role']}: {m['content']}" for m in history]
		req = ""
		if requirements is not None:
			req = (
				f"\nTech stack: {', '.join(requirements.tech_stack) or 'unspecified'}"
				f"\nFeatures: {', '.join(requirements.features) or 'unspecified'}"
				f"\nDatabase: {requirements.database or 'none'}"
				f"\nConstraints: {'; '.join(requirements.additional_constraints) or 'none'}"
			)
		content = await self._ask(
			"Rewrite the conversation as a single, complete, unambiguous instruction for a programmer. "
			"Reply with the instruction only.",
			f"Goal: {intent}{req}\n\nConversation:\n" + "\n".join(lines),
		)
		refined = content.strip()
		return refined or f"{intent}{req}".strip()

	def build_agent_message(
		self,
		conversation_id: str,
		analysis: ConversationAnalysis,
		clarifications: list[Clarification],
		refined_prompt: str,
	) -> AgentMessage:
		"""Immutable handoff to code generation."""
		return AgentMessage(
			conversation_id=conversation_id,
			user_intent=analysis.user_intent,
			refined_requirements=analysis.requirements,
			clarifications=tuple(clarifications),
			priority=analysis.priority,
			estimated_complexity=analysis.estimated_complexity,
			refined_prompt=refined_prompt,
		)

	def compose_clarification(self, questions: list[str]) -> str:
		body = "\n".join(f"{i}. {q}" for i, q in enumerate(questions, 1))
		return f"Before I write any code I need a bit more detail:\n{body}"

	def compose_report(self, state: WorkflowState) -> str:
		"""Presentation message for the user once a run completes."""
		parts = []
		if state.explanation:
			parts.append(state.explanation.strip())
		if state.generated_code:
			parts.append(f"```{state.language}\n{state.generated_code.rstrip()}\n```")

		result = state.execution_result
		if result is None:
			if state.generated_code:
				parts.append(f"The {state.language or 'generated'} code was not executed.")
		elif result.success:
			output = result.output.strip()
			summary = f"It ran successfully in {result.execution_time:.0f} ms"
			parts.append(f"{summary}. Output:\n```\n{output[:2000]}\n```" if output else f"{summary}.")
		else:
			parts.append(f"Running it failed: {result.error or 'unknown error'}")
		return "\n\n".join(parts)


def _enum_or(enum_cls, value, default):
	try:
		return enum_cls(str(value).lower())
	except ValueError:
		return default
