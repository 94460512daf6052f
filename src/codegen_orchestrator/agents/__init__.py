"""Conversational, code generation and execution agents."""

from .code_generation import CodeGenerationAgent, GeneratedCode, GenerationContext, QUALITY_PROFILES
from .conversational import ConversationAnalysis, ConversationalAgent, extract_requirements
from .execution import ExecutionAgent, TestCaseResult, TestRunReport, estimate_coverage
from .validation import ValidationReport, format_code, validate_code

__all__ = [
	"CodeGenerationAgent",
	"ConversationAnalysis",
	"ConversationalAgent",
	"ExecutionAgent",
	"GeneratedCode",
	"GenerationContext",
	"QUALITY_PROFILES",
	"TestCaseResult",
	"TestRunReport",
	"ValidationReport",
	"estimate_coverage",
	"extract_requirements",
	"format_code",
	"validate_code",
]
