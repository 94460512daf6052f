"""Shared utilities for visualizer views."""


def format_duration(seconds: float) -> str:
	"""Format a duration for display. e.g. '1.2s', '45ms', '2m 3s'."""
	if seconds < 0.001:
		return "<1ms"
	if seconds < 1.0:
		return f"{seconds * 1000:.0f}ms"
	if seconds < 60.0:
		return f"{seconds:.1f}s"
	minutes = int(seconds // 60)
	secs = seconds % 60
	return f"{minutes}m {secs:.0f}s"


def truncate(text: str, max_len: int = 60) -> str:
	"""Shorten a single-line preview for table display."""
	if not text:
		return ""
	text = " ".join(text.split())
	if len(text) <= max_len:
		return text
	return text[:max_len - 3] + "..."


def status_style(success: bool) -> str:
	"""Return a Rich style string for pass/fail."""
	return "green" if success else "red"


def status_text(success: bool) -> str:
	return "OK" if success else "FAIL"


def syntax_lexer(language: str) -> str:
	"""Map a workflow language name to a Pygments lexer name."""
	return {
		"typescript": "tsx",
		"javascript": "jsx",
		"bash": "bash",
		"shell": "bash",
	}.get(language, language or "text")
