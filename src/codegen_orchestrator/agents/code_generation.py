"""
Code Generation Agent - writes, validates and formats the program.

Generation is a bounded regenerate-and-revalidate loop: a draft is
accepted as soon as it passes static validation, otherwise the model
gets the errors back and tries again. The number of extra attempts and
the extra artifacts (tests, documentation) depend on the quality level.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..cache import Cache, make_key
from ..errors import CodeValidationError
from ..gateway import ChatOptions, LLMGateway
from ..models import AgentMessage
from ..schemas import GENERATED_CODE_SCHEMA, extract_code_block
from .validation import ValidationReport, format_code, validate_code

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QualityProfile:
	regenerations: int
	tests: bool
	documentation: bool
	temperature: float


QUALITY_PROFILES: dict[str, QualityProfile] = {
	"draft": QualityProfile(regenerations=0, tests=False, documentation=False, temperature=0.4),
	"production": QualityProfile(regenerations=2, tests=True, documentation=False, temperature=0.2),
	"optimized": QualityProfile(regenerations=3, tests=True, documentation=True, temperature=0.1),
}

# Tech stack entries that decide the output language
_STACK_LANGUAGES: list[tuple[str, str]] = [
	("typescript", "typescript"),
	("next.js", "typescript"),
	("angular", "typescript"),
	("react", "javascript"),
	("vue", "javascript"),
	("svelte", "javascript"),
	("node.js", "javascript"),
	("express", "javascript"),
	("javascript", "javascript"),
	("bash", "bash"),
	("html", "html"),
	("java", "java"),
	("go", "go"),
	("rust", "rust"),
]

LANGUAGE_NAMES = {
	"py": "python",
	"python3": "python",
	"js": "javascript",
	"node": "javascript",
	"ts": "typescript",
	"tsx": "typescript",
	"jsx": "javascript",
	"sh": "bash",
	"shell": "bash",
}


def normalize_language(language: Optional[str]) -> str:
	lang = (language or "").strip().lower()
	return LANGUAGE_NAMES.get(lang, lang)


def infer_language(tech_stack: tuple[str, ...] | list[str], default: str = "python") -> str:
	"""Pick the output language from the requested tech stack."""
	stack = [t.lower() for t in tech_stack]
	for entry, language in _STACK_LANGUAGES:
		if entry in stack:
			return language
	return default


@dataclass
class GenerationContext:
	"""Everything generate_code needs besides the prompt."""
	language: Optional[str] = None
	quality: str = "production"
	agent_message: Optional[AgentMessage] = None
	retries: Optional[int] = None


@dataclass
class GeneratedCode:
	"""A validated, formatted program and its side artifacts."""
	code: str
	language: str
	explanation: str = ""
	metadata: dict[str, Any] = field(default_factory=dict)
	suggestions: list[str] = field(default_factory=list)
	files: list[dict[str, str]] = field(default_factory=list)
	tests: str = ""
	documentation: str = ""


class CodeGenerationAgent:
	"""Turns a refined prompt into validated source code."""

	SYSTEM_PROMPT = (
		"You are an expert programmer. Write complete, runnable code with no placeholders. "
		"When run as a script the program should demonstrate its behaviour by printing a short sample "
		"and then exit; it must not wait for input or run a server forever."
	)

	def __init__(
		self,
		gateway: LLMGateway,
		cache: Optional[Cache] = None,
		provider: Optional[str] = None,
		model: Optional[str] = None,
	):
		self.gateway = gateway
		self.cache = cache
		self.provider = provider
		self.model = model

	async def _ask(self, system: str, user: str, temperature: float, retries: Optional[int] = None) -> str:
		response = await self.gateway.chat(
			self.provider,
			self.model,
			[{"role": "system", "content": system}, {"role": "user", "content": user}],
			ChatOptions(temperature=temperature, retries=retries),
		)
		return response.content

	def _target_language(self, context: GenerationContext) -> str:
		if context.language:
			return normalize_language(context.language)
		if context.agent_message is not None:
			return infer_language(context.agent_message.refined_requirements.tech_stack)
		return "python"

	async def generate_code(self, refined_prompt: str, context: Optional[GenerationContext] = None) -> GeneratedCode:
		"""
		Generate code for a refined prompt.

		Raises:
			CodeValidationError: if every attempt fails static validation
			LLMError: if the gateway call fails
		"""
		context = context or GenerationContext()
		if context.quality not in QUALITY_PROFILES:
			raise ValueError(f"Unknown quality level: {context.quality}")
		profile = QUALITY_PROFILES[context.quality]
		language = self._target_language(context)

		key = make_key("code", refined_prompt, language, context.quality)
		if self.cache is not None:
			cached = self.cache.get(key)
			if cached is not None:
				logger.debug("Generated code served from cache")
				return copy.deepcopy(cached)

		feedback: Optional[ValidationReport] = None
		previous = ""
		attempts = 0
		for attempt in range(profile.regenerations + 1):
			attempts = attempt + 1
			content = await self._ask(
				f"{self.SYSTEM_PROMPT}\n\n{GENERATED_CODE_SCHEMA.instructions()}",
				self._generation_prompt(refined_prompt, language, feedback, previous),
				profile.temperature,
				context.retries,
			)
			draft = self._parse(content, language)
			report = validate_code(draft.code, draft.language)
			if report.valid:
				break
			logger.warning(f"Generated {draft.language} failed validation (attempt {attempts}): {report.errors[:1]}")
			feedback = report
			previous = draft.code
		else:
			raise CodeValidationError(
				f"Generated code failed validation after {attempts} attempts",
				errors=report.errors,
				details={"language": draft.language, "attempts": attempts},
			)

		draft.code = format_code(draft.code, draft.language)
		draft.metadata.update({
			"attempts": attempts,
			"quality": context.quality,
			"lines": draft.code.count("\n"),
			"warnings": report.warnings,
		})

		if profile.tests:
			draft.tests = await self.generate_tests(draft.code, draft.language)
		if profile.documentation:
			draft.documentation = await self.generate_documentation(draft.code, draft.language)

		if self.cache is not None:
			# Callers own what they get back; the cache keeps its own copy
			self.cache.set(key, copy.deepcopy(draft))
		return draft

	def _generation_prompt(
		self,
		refined_prompt: str,
		language: str,
		feedback: Optional[ValidationReport],
		previous: str,
	) -> str:
		prompt = f"Task:\n{refined_prompt}\n\nLanguage: {language}"
		if feedback is not None:
			prompt += (
				"\n\nYour previous answer did not pass validation:\n"
				+ "\n".join(feedback.errors)
				+ f"\n\nPrevious code:\n{previous}\n\nFix the errors and return the full program."
			)
		return prompt

	def _parse(self, content: str, language: str) -> GeneratedCode:
		"""Structured JSON answer, or the first fenced block as a fallback."""
		ok, data, _ = GENERATED_CODE_SCHEMA.validate(content)
		if ok:
			files = [
				{"path": str(f.get("path", "")), "content": str(f.get("content", ""))}
				for f in data.get("files") or []
				if isinstance(f, dict)
			]
			return GeneratedCode(
				code=str(data["code"]),
				language=normalize_language(data.get("language")) or language,
				explanation=str(data.get("explanation") or ""),
				suggestions=[str(s) for s in data.get("suggestions") or []],
				files=files,
			)

		fence_language, code = extract_code_block(content)
		return GeneratedCode(code=code, language=normalize_language(fence_language) or language)

	def validate_code(self, code: str, language: str) -> ValidationReport:
		return validate_code(code, normalize_language(language))

	def format_code(self, code: str, language: str) -> str:
		return format_code(code, normalize_language(language))

	async def generate_tests(self, code: str, language: str) -> str:
		"""Best-effort unit tests for `code`. Returns "" on any failure."""
		if language == "python":
			style = (
				"Write pytest-style test functions (def test_...) using plain assert. "
				"Import the code under test with `from solution import *`."
			)
		else:
			style = "Write a short test script that throws an error if any check fails."
		try:
			content = await self._ask(
				f"You write focused unit tests in {language}. {style} Reply with one code block.",
				f"Code under test:\n```{language}\n{code}\n```",
				0.1,
			)
			_, tests = extract_code_block(content)
		except Exception as e:
			logger.warning(f"Test generation failed: {e}")
			return ""
		if not validate_code(tests, language).valid:
			logger.warning("Generated tests failed validation; dropping them")
			return ""
		return format_code(tests, language)

	async def generate_documentation(self, code: str, language: str) -> str:
		"""Best-effort markdown documentation for `code`. Returns "" on any failure."""
		try:
			content = await self._ask(
				"You write concise README-style markdown documentation for code: purpose, usage, functions.",
				f"```{language}\n{code}\n```",
				0.3,
			)
		except Exception as e:
			logger.warning(f"Documentation generation failed: {e}")
			return ""
		return content.strip()
