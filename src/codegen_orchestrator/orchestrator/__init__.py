"""Orchestrator module - the workflow state machine."""

from .workflow import (
	EventType,
	Phase,
	RunStatus,
	StepRecord,
	TRANSITIONS,
	WorkflowEvent,
	WorkflowInput,
	WorkflowOptions,
	WorkflowOrchestrator,
	WorkflowResult,
	WorkflowStatus,
)

__all__ = [
	"EventType",
	"Phase",
	"RunStatus",
	"StepRecord",
	"TRANSITIONS",
	"WorkflowEvent",
	"WorkflowInput",
	"WorkflowOptions",
	"WorkflowOrchestrator",
	"WorkflowResult",
	"WorkflowStatus",
]
