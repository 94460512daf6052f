"""Tests for structured output schemas."""

import json

import pytest

from codegen_orchestrator.schemas import (
	CLARIFICATION_SCHEMA,
	CONVERSATION_ANALYSIS_SCHEMA,
	GENERATED_CODE_SCHEMA,
	ResponseSchema,
	extract_code_block,
	extract_json_object,
	get_schema,
	validate_response,
)


class TestResponseSchema:
	"""Tests for ResponseSchema validation."""

	def test_validate_valid_json(self):
		"""Valid JSON matching schema should pass."""
		schema = ResponseSchema(
			name="test",
			description="test",
			json_schema={
				"type": "object",
				"required": ["name"],
				"properties": {
					"name": {"type": "string"},
				},
			},
		)
		is_valid, data, error = schema.validate('{"name": "hello"}')
		assert is_valid is True
		assert data == {"name": "hello"}
		assert error is None

	def test_validate_invalid_json(self):
		"""Invalid JSON should fail."""
		schema = ResponseSchema(name="test", description="test")
		is_valid, data, error = schema.validate("not json")
		assert is_valid is False
		assert data is None
		assert "Invalid JSON" in error

	def test_validate_missing_required_key(self):
		"""Missing required key should fail."""
		is_valid, data, error = GENERATED_CODE_SCHEMA.validate('{"code": "print(1)"}')
		assert is_valid is False
		assert data == {"code": "print(1)"}
		assert "Missing required key: language" in error

	def test_validate_wrong_type(self):
		"""Wrong property type should fail."""
		response = json.dumps({"questions": "which language?"})
		is_valid, _, error = CLARIFICATION_SCHEMA.validate(response)
		assert is_valid is False
		assert "expected type 'array'" in error

	def test_null_optional_values_pass(self):
		response = json.dumps({"user_intent": "x", "tech_stack": [], "features": [], "database": None})
		is_valid, _, _ = CONVERSATION_ANALYSIS_SCHEMA.validate(response)
		assert is_valid is True

	def test_instructions_embed_schema(self):
		text = GENERATED_CODE_SCHEMA.instructions()
		assert "a complete program" in text
		assert '"required"' in text


class TestExtraction:
	"""Pulling JSON and code out of free-form completions."""

	def test_fenced_json(self):
		text = 'Sure!\n```json\n{"a": 1}\n```\nAnything else?'
		assert extract_json_object(text) == {"a": 1}

	def test_reasoning_block_is_stripped(self):
		text = '<think>maybe {"wrong": true}</think>{"right": true}'
		assert extract_json_object(text) == {"right": True}

	def test_surrounding_prose(self):
		assert extract_json_object('Here you go: {"a": [1, 2]} done') == {"a": [1, 2]}

	def test_non_object_rejected(self):
		with pytest.raises(ValueError, match="JSON object"):
			extract_json_object("[1, 2, 3]")

	def test_code_block(self):
		language, code = extract_code_block("text\n```python\nprint(1)\n```\nmore")
		assert language == "python"
		assert code == "print(1)\n"

	def test_code_block_without_fence(self):
		assert extract_code_block("  print(1)  ") == (None, "print(1)")


class TestSchemaRegistry:
	"""Tests for predefined schemas."""

	def test_get_schema(self):
		assert get_schema("generated_code") is GENERATED_CODE_SCHEMA
		assert get_schema("clarification") is CLARIFICATION_SCHEMA
		assert get_schema("nonexistent") is None

	def test_validate_response_helper(self):
		response = json.dumps({"user_intent": "todo app", "tech_stack": ["react"], "features": ["add"]})
		is_valid, data, error = validate_response(response, CONVERSATION_ANALYSIS_SCHEMA)
		assert is_valid is True
		assert data["tech_stack"] == ["react"]
		assert error is None
