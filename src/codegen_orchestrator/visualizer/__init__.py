"""Visualizer package - Rich terminal views for workflows and provider usage."""

from .usage_view import render_models, render_usage
from .workflow_view import render_steps, render_workflow_result

__all__ = [
	"render_models",
	"render_steps",
	"render_usage",
	"render_workflow_result",
]
