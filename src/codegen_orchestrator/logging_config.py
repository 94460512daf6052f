"""Centralized logging configuration for codegen-orchestrator."""

import logging
import os
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "codegen_orchestrator"


class SensitiveDataFilter(logging.Filter):
	"""Redact API keys and bearer tokens before a record is written."""

	SENSITIVE_PATTERNS = [
		(re.compile(r"sk-[A-Za-z0-9_\-]{8,}"), "[REDACTED_API_KEY]"),
		(re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-]+"), "Bearer [REDACTED_TOKEN]"),
		(re.compile(r"(?i)(api[_-]?key|token|secret|password)(\s*[=:]\s*)\S+"), r"\1\2[REDACTED]"),
	]

	def filter(self, record: logging.LogRecord) -> bool:
		message = record.getMessage()
		redacted = message
		for pattern, replacement in self.SENSITIVE_PATTERNS:
			redacted = pattern.sub(replacement, redacted)
		if redacted != message:
			record.msg = redacted
			record.args = None
		return True


def setup_logging(
	level: Optional[str] = None,
	log_dir: Optional[Path] = None,
	name: str = ROOT_LOGGER,
	console: bool = True,
) -> logging.Logger:
	"""
	Set up logging with console and file handlers.

	Args:
		level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL or INFO.
		log_dir: Directory for the rotating log file. No file handler if None.
		name: Logger name
		console: Attach a stderr handler (off for the stdio MCP server's stdout)

	Returns:
		Configured logger
	"""
	level = level or os.getenv("LOG_LEVEL", "INFO")
	log_level = getattr(logging, level.upper(), logging.INFO)

	logger = logging.getLogger(name)
	logger.setLevel(log_level)

	# Avoid duplicate handlers
	if logger.handlers:
		return logger

	detailed_formatter = logging.Formatter(
		"%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
		datefmt="%Y-%m-%d %H:%M:%S",
	)
	simple_formatter = logging.Formatter(
		"%(asctime)s [%(levelname)s] %(message)s",
		datefmt="%H:%M:%S",
	)
	redactor = SensitiveDataFilter()

	if console:
		# stdout is reserved for the MCP stdio transport
		console_handler = logging.StreamHandler(sys.stderr)
		console_handler.setLevel(log_level)
		console_handler.setFormatter(simple_formatter)
		console_handler.addFilter(redactor)
		logger.addHandler(console_handler)

	if log_dir is not None:
		log_path = Path(log_dir)
		log_path.mkdir(parents=True, exist_ok=True)

		file_handler = RotatingFileHandler(
			log_path / f"{name}.log",
			maxBytes=10 * 1024 * 1024,  # 10 MB
			backupCount=5,
		)
		file_handler.setLevel(logging.DEBUG)
		file_handler.setFormatter(detailed_formatter)
		file_handler.addFilter(redactor)
		logger.addHandler(file_handler)

	return logger


def get_logger(name: str) -> logging.Logger:
	"""Get a child logger with the given name."""
	return logging.getLogger(f"{ROOT_LOGGER}.{name}")
