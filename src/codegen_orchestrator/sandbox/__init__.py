"""Sandboxed code execution."""

from .manager import (
	Runtime,
	SandboxManager,
	SandboxOptions,
	Session,
	SessionStatus,
	normalize_language,
)
from .policy import PolicyViolation, check_policy

__all__ = [
	"PolicyViolation",
	"Runtime",
	"SandboxManager",
	"SandboxOptions",
	"Session",
	"SessionStatus",
	"check_policy",
	"normalize_language",
]
