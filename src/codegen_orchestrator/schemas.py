"""
Structured output schemas for model responses.

Defines the JSON shapes the agents ask the gateway for, and the parsing
used to pull a JSON object out of a free-form completion.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class ResponseSchema:
	"""A schema for structured output from a model."""

	name: str
	description: str
	json_schema: dict[str, Any] = field(default_factory=dict)

	def validate(self, response_str: str) -> tuple[bool, Optional[dict[str, Any]], Optional[str]]:
		"""
		Parse and validate a response against this schema.

		Returns:
			Tuple of (is_valid, parsed_data, error_message)
		"""
		try:
			data = extract_json_object(response_str)
		except ValueError as e:
			return False, None, str(e)

		required = self.json_schema.get("required", [])
		properties = self.json_schema.get("properties", {})

		for key in required:
			if key not in data:
				return False, data, f"Missing required key: {key}"

		# Validate property types (best-effort)
		for key, prop_schema in properties.items():
			if key in data and data[key] is not None:
				expected_type = prop_schema.get("type")
				if expected_type and not _check_type(data[key], expected_type):
					return False, data, f"Key '{key}' expected type '{expected_type}', got '{type(data[key]).__name__}'"

		return True, data, None

	def instructions(self) -> str:
		"""Prompt fragment asking for output in this shape."""
		return (
			f"Respond with a single JSON object ({self.description}) matching this schema, "
			f"and nothing else:\n{json.dumps(self.json_schema, indent=2)}"
		)


def _check_type(value: Any, expected: str) -> bool:
	"""Check if a value matches the expected JSON schema type."""
	type_map = {
		"string": str,
		"number": (int, float),
		"integer": int,
		"boolean": bool,
		"array": list,
		"object": dict,
	}
	expected_type = type_map.get(expected)
	if expected_type is None:
		return True  # Unknown type, skip validation
	return isinstance(value, expected_type)


_THINK_RE = re.compile(r"<think>[\s\S]*?</think>", re.IGNORECASE)
_FENCE_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*\})\s*```", re.IGNORECASE)


def extract_json_object(text: str) -> dict[str, Any]:
	"""
	Pull the first JSON object out of a completion.

	Strips reasoning blocks and markdown fences, then falls back to the
	outermost brace pair. Raises ValueError if nothing parses to an object.
	"""
	text = _THINK_RE.sub("", text or "").strip()

	match = _FENCE_RE.search(text)
	if match:
		text = match.group(1).strip()

	start = text.find("{")
	end = text.rfind("}")
	if start != -1 and end > start:
		text = text[start:end + 1]

	try:
		obj = json.loads(text)
	except json.JSONDecodeError as e:
		raise ValueError(f"Invalid JSON: {e}") from e

	if not isinstance(obj, dict):
		raise ValueError("Model output must be a JSON object")
	return obj


_CODE_BLOCK_RE = re.compile(r"```([A-Za-z0-9_+#-]*)[^\n]*\n([\s\S]*?)```")


def extract_code_block(text: str) -> tuple[Optional[str], str]:
	"""
	Return (language, code) of the first fenced code block.

	Text without a fence is returned whole with no language.
	"""
	match = _CODE_BLOCK_RE.search(text or "")
	if not match:
		return None, (text or "").strip()
	language = match.group(1).lower() or None
	return language, match.group(2)


# Predefined schemas

CONVERSATION_ANALYSIS_SCHEMA = ResponseSchema(
	name="conversation_analysis",
	description="analysis of what the user wants built",
	json_schema={
		"type": "object",
		"required": ["user_intent", "tech_stack", "features"],
		"properties": {
			"user_intent": {"type": "string", "description": "One sentence describing the goal"},
			"tech_stack": {
				"type": "array",
				"description": "Languages, frameworks and libraries the user asked for",
				"items": {"type": "string"},
			},
			"features": {
				"type": "array",
				"description": "Concrete features the program must have",
				"items": {"type": "string"},
			},
			"database": {"type": "string", "description": "Database, if any"},
			"constraints": {"type": "array", "items": {"type": "string"}},
			"confidence": {"type": "number", "description": "0.0 to 1.0"},
			"priority": {"type": "string", "enum": ["low", "medium", "high"]},
			"complexity": {"type": "string", "enum": ["simple", "medium", "complex"]},
			"suggested_actions": {"type": "array", "items": {"type": "string"}},
		},
	},
)

CLARIFICATION_SCHEMA = ResponseSchema(
	name="clarification",
	description="questions to ask the user",
	json_schema={
		"type": "object",
		"required": ["questions"],
		"properties": {
			"questions": {
				"type": "array",
				"description": "At most three short, specific questions",
				"items": {"type": "string"},
			},
		},
	},
)

GENERATED_CODE_SCHEMA = ResponseSchema(
	name="generated_code",
	description="a complete program",
	json_schema={
		"type": "object",
		"required": ["code", "language"],
		"properties": {
			"code": {"type": "string", "description": "Complete runnable source"},
			"language": {"type": "string", "description": "python, javascript, typescript, bash, ..."},
			"explanation": {"type": "string"},
			"suggestions": {"type": "array", "items": {"type": "string"}},
			"files": {
				"type": "array",
				"items": {
					"type": "object",
					"properties": {
						"path": {"type": "string"},
						"content": {"type": "string"},
					},
				},
			},
		},
	},
)


_SCHEMAS: dict[str, ResponseSchema] = {
	"conversation_analysis": CONVERSATION_ANALYSIS_SCHEMA,
	"clarification": CLARIFICATION_SCHEMA,
	"generated_code": GENERATED_CODE_SCHEMA,
}


def get_schema(name: str) -> Optional[ResponseSchema]:
	"""Get a predefined schema by name."""
	return _SCHEMAS.get(name)


def validate_response(
	response_str: str, schema: ResponseSchema,
) -> tuple[bool, Optional[dict[str, Any]], Optional[str]]:
	"""
	Validate a response string against a schema.

	Returns:
		Tuple of (is_valid, parsed_data, error_message)
	"""
	return schema.validate(response_str)
