"""
Error taxonomy for the orchestrator.

Every error raised across a component boundary belongs to one category:
- communication: gateway / provider failures
- execution: sandbox failures
- validation: generated code failing static checks
- timeout: per-call or per-workflow budget exhausted

Each carries a severity and a recovery descriptor so the orchestrator can
decide whether to retry locally or fail the workflow.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
	"""Which layer an error originated in."""
	COMMUNICATION = "communication"
	EXECUTION = "execution"
	VALIDATION = "validation"
	TIMEOUT = "timeout"


class Severity(str, Enum):
	"""How bad an error is for the surrounding workflow."""
	LOW = "low"
	MEDIUM = "medium"
	HIGH = "high"
	CRITICAL = "critical"


@dataclass(frozen=True)
class Recovery:
	"""What can be done about an error."""
	automatic: bool
	actions: tuple[str, ...] = ()
	fallback: str = ""

	def to_dict(self) -> dict:
		return {
			"automatic": self.automatic,
			"actions": list(self.actions),
			"fallback": self.fallback,
		}


class OrchestratorError(Exception):
	"""Base exception for all orchestrator errors."""

	category: ErrorCategory = ErrorCategory.EXECUTION
	default_severity: Severity = Severity.MEDIUM
	default_recovery = Recovery(automatic=False)

	def __init__(
		self,
		message: str,
		*,
		code: str = "error",
		severity: Optional[Severity] = None,
		recovery: Optional[Recovery] = None,
		details: Optional[dict[str, Any]] = None,
	):
		super().__init__(message)
		self.message = message
		self.code = code
		self.severity = severity or self.default_severity
		self.recovery = recovery or self.default_recovery
		self.details = details or {}
		self.timestamp = time.time()

	@property
	def is_critical(self) -> bool:
		return self.severity == Severity.CRITICAL

	def to_dict(self) -> dict:
		"""Serialize for status reports and MCP responses."""
		return {
			"code": self.code,
			"message": self.message,
			"category": self.category.value,
			"severity": self.severity.value,
			"recovery": self.recovery.to_dict(),
			"details": self.details,
			"timestamp": self.timestamp,
		}


# Provider failure codes that are worth another attempt
TRANSIENT_LLM_CODES = frozenset({"network", "timeout", "rate_limited", "server_error"})


class LLMError(OrchestratorError):
	"""Raised when a gateway call fails (after retries, if any)."""

	category = ErrorCategory.COMMUNICATION
	default_severity = Severity.HIGH
	default_recovery = Recovery(
		automatic=True,
		actions=("retry_with_backoff", "failover_provider"),
		fallback="fail_workflow",
	)

	def __init__(self, message: str, *, provider: str, model: str, code: str = "network", **kwargs):
		super().__init__(message, code=code, **kwargs)
		self.provider = provider
		self.model = model

	@property
	def retryable(self) -> bool:
		return self.code in TRANSIENT_LLM_CODES

	def to_dict(self) -> dict:
		data = super().to_dict()
		data["provider"] = self.provider
		data["model"] = self.model
		return data


class SandboxError(OrchestratorError):
	"""Raised for contract-level sandbox faults (unknown session, exhausted pool)."""

	category = ErrorCategory.EXECUTION
	default_recovery = Recovery(
		automatic=True,
		actions=("close_session", "create_session"),
		fallback="skip_execution",
	)

	def __init__(self, message: str, *, session_id: str = "", code: str = "sandbox_error", **kwargs):
		super().__init__(message, code=code, **kwargs)
		self.session_id = session_id

	def to_dict(self) -> dict:
		data = super().to_dict()
		data["session_id"] = self.session_id
		return data


class CodeValidationError(OrchestratorError):
	"""Raised when generated code still fails static checks after regeneration."""

	category = ErrorCategory.VALIDATION
	default_recovery = Recovery(
		automatic=True,
		actions=("regenerate", "revalidate"),
		fallback="fail_workflow",
	)

	def __init__(self, message: str, *, errors: Optional[list[str]] = None, **kwargs):
		kwargs.setdefault("code", "invalid_code")
		super().__init__(message, **kwargs)
		self.errors = errors or []
		self.details.setdefault("errors", self.errors)


class WorkflowTimeoutError(OrchestratorError):
	"""Raised when a workflow exceeds its wall-clock budget."""

	category = ErrorCategory.TIMEOUT
	default_severity = Severity.CRITICAL
	default_recovery = Recovery(automatic=False, fallback="fail_workflow")

	def __init__(self, message: str, *, timeout: float, step: str = "", **kwargs):
		kwargs.setdefault("code", "workflow_timeout")
		super().__init__(message, **kwargs)
		self.timeout = timeout
		self.step = step


class ClarificationExhaustedError(OrchestratorError):
	"""Raised when clarification rounds run out and the policy is 'fail'."""

	category = ErrorCategory.VALIDATION
	default_severity = Severity.HIGH

	def __init__(self, message: str, **kwargs):
		kwargs.setdefault("code", "clarifications_exhausted")
		super().__init__(message, **kwargs)


class WorkflowCancelled(Exception):
	"""Raised inside a run when cancellation is observed at a suspension point."""
	pass


@dataclass
class FieldError:
	"""A single invalid configuration or option value."""
	field: str
	message: str
	value: Any = None


class ConfigError(ValueError):
	"""Raised when configuration or workflow options fail validation."""

	def __init__(self, errors: list[FieldError]):
		self.errors = errors
		super().__init__(str(self))

	def __str__(self) -> str:
		return "; ".join(f"{e.field}: {e.message} (got {e.value!r})" for e in self.errors)


def describe_error(exc: BaseException) -> str:
	"""Human-readable one-line summary of an error, never a stack trace."""
	if isinstance(exc, LLMError):
		return f"Language model call failed ({exc.provider}/{exc.model}, {exc.code}): {exc.message}"
	if isinstance(exc, SandboxError):
		where = f" in session {exc.session_id}" if exc.session_id else ""
		return f"Sandbox error{where} ({exc.code}): {exc.message}"
	if isinstance(exc, CodeValidationError):
		first = f": {exc.errors[0]}" if exc.errors else ""
		return f"Generated code failed validation{first}"
	if isinstance(exc, WorkflowTimeoutError):
		step = f" during '{exc.step}'" if exc.step else ""
		return f"Workflow timed out after {exc.timeout:g}s{step}"
	if isinstance(exc, OrchestratorError):
		return exc.message
	if isinstance(exc, WorkflowCancelled):
		return "Workflow cancelled"
	text = str(exc) or exc.__class__.__name__
	return f"Unexpected error: {text}"
