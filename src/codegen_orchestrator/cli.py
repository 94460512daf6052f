"""CLI for codegen-orchestrator: run, serve, doctor, and models commands."""

import argparse
import asyncio
import json
import platform
import shutil
import sys
from pathlib import Path
from typing import Optional

from importlib.metadata import version as pkg_version

from rich.console import Console

from .config import QUALITY_LEVELS, load_config
from .errors import ConfigError

CORE_DEPS = ["mcp", "litellm", "platformdirs", "python-dotenv", "rich", "pydantic"]

RUNTIME_BINARIES = {
	"python": sys.executable,
	"javascript": "node",
	"bash": "bash",
}


def _prompt_answers(console: Console):
	"""Build an answer callback that asks the questions on the terminal."""

	async def answer(questions: list[str]) -> Optional[str]:
		console.print("[yellow]A few questions before generating code:[/yellow]")
		for i, question in enumerate(questions, 1):
			console.print(f"  {i}. {question}")
		try:
			reply = await asyncio.to_thread(input, "> ")
		except EOFError:
			return None
		return reply.strip() or None

	return answer


async def _run_workflow(args: argparse.Namespace, console: Console) -> int:
	from .logging_config import setup_logging
	from .orchestrator import WorkflowInput
	from .runtime import build_runtime
	from .visualizer import render_usage, render_workflow_result

	config = load_config()
	setup_logging(config.log_level, config.log_dir, console=args.verbose)
	runtime = build_runtime(config)

	interactive = sys.stdin.isatty() and not args.no_input
	await runtime.start()
	try:
		options = runtime.default_options(
			quality=args.quality,
			language=args.language,
			execute_code=not args.no_exec,
			max_clarifications=args.max_clarifications,
			timeout=args.timeout,
		)
		result = await runtime.orchestrator.execute(WorkflowInput(
			user_message=args.message,
			options=options,
			answer_clarification=_prompt_answers(console) if interactive else None,
		))
	finally:
		await runtime.shutdown()

	if args.json:
		print(json.dumps(result.to_dict(), indent=2))
	else:
		render_workflow_result(result, console, show_steps=args.steps)
		if args.usage:
			render_usage(runtime.gateway, console)

	if args.output and result.generated_code:
		Path(args.output).write_text(result.generated_code)
		console.print(f"[dim]Code written to {args.output}[/dim]")

	return 0 if result.success else 1


def cmd_run(args: argparse.Namespace) -> None:
	"""Run one workflow for a request and render the result."""
	console = Console()
	try:
		code = asyncio.run(_run_workflow(args, console))
	except ConfigError as e:
		console.print(f"[red]Invalid options: {e}[/red]")
		sys.exit(2)
	except KeyboardInterrupt:
		console.print("[yellow]Interrupted[/yellow]")
		sys.exit(130)
	sys.exit(code)


def cmd_serve(args: argparse.Namespace) -> None:
	"""Run the MCP server (stdio transport)."""
	from .server import mcp
	mcp.run()


def cmd_models(args: argparse.Namespace) -> None:
	"""List providers and their models."""
	from .gateway import LLMGateway
	from .visualizer import render_models

	config = load_config()
	gateway = LLMGateway.from_settings(config.gateway, config.providers)
	if args.json:
		data = {
			name: {
				"available": gateway.is_provider_available(name),
				"models": gateway.get_available_models(name),
			}
			for name in gateway.provider_names
		}
		print(json.dumps(data, indent=2))
		return
	render_models(gateway)


def _check_config_toml(config_dir: Path) -> tuple[str, str | None]:
	"""Validate config.toml. Returns (status, issue_or_none)."""
	import tomllib

	toml_path = config_dir / "config.toml"
	if not toml_path.exists():
		return "not found (optional)", None
	try:
		with open(toml_path, "rb") as f:
			tomllib.load(f)
		return "valid", None
	except tomllib.TOMLDecodeError as e:
		return f"INVALID ({e})", f"config.toml parse error: {e}"


def _check_runtimes() -> list[tuple[str, str | None]]:
	"""Locate the interpreters the sandbox runs code with."""
	results = []
	for language, binary in RUNTIME_BINARIES.items():
		path = binary if Path(binary).is_absolute() else shutil.which(binary)
		results.append((language, path))
	return results


def _check_server_startup() -> tuple[str, str | None]:
	"""Try importing and counting registered tools. Returns (status, issue_or_none)."""
	try:
		from .server import mcp as server_instance
		# FastMCP stores tools internally - count them
		tools = server_instance._tool_manager._tools
		return f"OK ({len(tools)} tools registered)", None
	except Exception as e:
		return f"FAILED ({e})", f"Server startup failed: {e}"


def cmd_doctor(args: argparse.Namespace) -> None:
	"""Health check - verify installation, providers and sandbox runtimes."""
	print("codegen-orchestrator doctor")
	print(f"{'=' * 40}")

	issues: list[str] = []
	try:
		config = load_config()
	except ConfigError as e:
		print(f"  Config:       INVALID ({e})")
		sys.exit(1)

	py_ver = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
	print(f"  Python:       {py_ver}")
	print(f"  Platform:     {platform.system()} {platform.machine()}")
	print()

	print("  Core deps:")
	for dep in CORE_DEPS:
		try:
			dep_ver = pkg_version(dep)
			print(f"    {dep:22s} {dep_ver}")
		except Exception:
			print(f"    {dep:22s} NOT INSTALLED")
			issues.append(f"{dep} package not installed")
	print()

	print("  Config:")
	print(f"    config dir:          {config.config_dir}")
	print(f"    data dir:            {config.data_dir}")
	toml_status, toml_issue = _check_config_toml(config.config_dir)
	print(f"    config.toml:         {toml_status}")
	if toml_issue:
		issues.append(toml_issue)
	print()

	print("  Providers:")
	configured = 0
	for name, provider in config.providers.items():
		if not provider.enabled:
			status = "disabled"
		elif provider.api_key_env and not provider.api_key:
			status = f"no key ({provider.api_key_env} not set)"
		else:
			status = "configured"
			configured += 1
		print(f"    {name:22s} {status}")
	if not configured:
		issues.append("No language model provider configured")
	print()

	print("  Sandbox runtimes:")
	for language, path in _check_runtimes():
		print(f"    {language:22s} {path or 'NOT FOUND'}")
		if path is None:
			issues.append(f"{language} runtime not found; {language} code will not be executed")
	print()

	print("  Server:")
	server_status, server_issue = _check_server_startup()
	print(f"    {server_status}")
	if server_issue:
		issues.append(server_issue)
	print()

	if issues:
		print(f"  {len(issues)} issue(s) found:")
		for issue in issues:
			print(f"    - {issue}")
		sys.exit(1)
	else:
		print("  All checks passed.")


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="codegen-orchestrator",
		description="Clarify a request, generate code for it, and run it in a sandbox",
	)
	subparsers = parser.add_subparsers(dest="command")

	# run
	run_parser = subparsers.add_parser("run", help="Generate code for a request")
	run_parser.add_argument("message", help="What to build")
	run_parser.add_argument("--quality", choices=QUALITY_LEVELS, default=None, help="Quality level")
	run_parser.add_argument("--language", type=str, default=None, help="Force the output language")
	run_parser.add_argument("--no-exec", action="store_true", help="Skip running the generated code")
	run_parser.add_argument("--max-clarifications", type=int, default=None, help="Clarification rounds allowed")
	run_parser.add_argument("--timeout", type=float, default=None, help="Workflow timeout in seconds")
	run_parser.add_argument("--no-input", action="store_true", help="Never prompt for clarification answers")
	run_parser.add_argument("--output", "-o", type=str, default=None, help="Write the generated code to a file")
	run_parser.add_argument("--steps", action="store_true", help="Show the step timeline")
	run_parser.add_argument("--usage", action="store_true", help="Show provider usage after the run")
	run_parser.add_argument("--json", action="store_true", help="Print the result as JSON")
	run_parser.add_argument("--verbose", "-v", action="store_true", help="Log to stderr")
	run_parser.set_defaults(func=cmd_run)

	# serve
	serve_parser = subparsers.add_parser("serve", help="Run MCP server (stdio)")
	serve_parser.set_defaults(func=cmd_serve)

	# doctor
	doctor_parser = subparsers.add_parser("doctor", help="Health check")
	doctor_parser.set_defaults(func=cmd_doctor)

	# models
	models_parser = subparsers.add_parser("models", help="List providers and models")
	models_parser.add_argument("--json", action="store_true", help="Print as JSON")
	models_parser.set_defaults(func=cmd_models)

	return parser


def main() -> None:
	"""CLI entry point."""
	parser = build_parser()
	args = parser.parse_args()

	if not args.command:
		parser.print_help()
		sys.exit(1)

	args.func(args)


if __name__ == "__main__":
	main()
