"""codegen-orchestrator - clarify a request, generate code, run it in a sandbox."""

__version__ = "0.1.0"

from .config import Config, get_config, load_config
from .errors import (
	ClarificationExhaustedError,
	CodeValidationError,
	ConfigError,
	LLMError,
	OrchestratorError,
	SandboxError,
	WorkflowCancelled,
	WorkflowTimeoutError,
)
from .orchestrator import WorkflowInput, WorkflowOptions, WorkflowOrchestrator, WorkflowResult
from .runtime import Runtime, build_runtime, get_runtime

__all__ = [
	"ClarificationExhaustedError",
	"CodeValidationError",
	"Config",
	"ConfigError",
	"LLMError",
	"OrchestratorError",
	"Runtime",
	"SandboxError",
	"WorkflowCancelled",
	"WorkflowInput",
	"WorkflowOptions",
	"WorkflowOrchestrator",
	"WorkflowResult",
	"WorkflowTimeoutError",
	"build_runtime",
	"get_config",
	"get_runtime",
	"load_config",
]
