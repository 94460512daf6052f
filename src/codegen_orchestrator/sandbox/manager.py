"""
Sandbox Manager - Pooled, time-boxed sessions for running generated code.

Provides:
- Session create / execute / status / close
- One-shot execution in an ephemeral session
- Per-session timeout, memory limit and network / file-system policy
- Per-session locking (one execution at a time per session)
- Background reaping of sessions past their lifetime or idle timeout
"""

import asyncio
import logging
import math
import os
import resource
import shutil
import signal
import sys
import tempfile
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Optional

from ..config import SandboxSettings
from ..errors import SandboxError
from ..models import ExecutionResult
from .policy import check_policy

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
	"""State of a sandbox session."""
	IDLE = "idle"
	BUSY = "busy"
	CLOSED = "closed"


@dataclass
class SandboxOptions:
	"""Per-session policy. timeout is in seconds, memory_limit in MB."""
	timeout: float = 10.0
	memory_limit: int = 256
	allow_network_access: bool = False
	allow_file_system_access: bool = False

	@classmethod
	def from_settings(cls, settings: SandboxSettings) -> "SandboxOptions":
		return cls(timeout=settings.timeout, memory_limit=settings.memory_limit_mb)


@dataclass
class Runtime:
	"""How to launch one language."""
	language: str
	file_name: str
	executable: Optional[str]
	# RLIMIT_AS breaks V8's address-space reservation, so node gets a heap cap instead
	address_space_limit: bool = True

	@property
	def available(self) -> bool:
		return self.executable is not None

	def command(self, path: Path, options: SandboxOptions) -> list[str]:
		if self.language == "python":
			return [self.executable, "-I", "-u", str(path)]
		if self.language == "javascript":
			return [self.executable, f"--max-old-space-size={options.memory_limit}", str(path)]
		return [self.executable, str(path)]


def _default_runtimes() -> dict[str, Runtime]:
	return {
		"python": Runtime("python", "main.py", sys.executable or shutil.which("python3")),
		"javascript": Runtime("javascript", "main.js", shutil.which("node"), address_space_limit=False),
		"bash": Runtime("bash", "main.sh", shutil.which("bash")),
	}


LANGUAGE_ALIASES = {
	"py": "python",
	"python3": "python",
	"js": "javascript",
	"node": "javascript",
	"nodejs": "javascript",
	"sh": "bash",
	"shell": "bash",
}


def normalize_language(language: str) -> str:
	lang = (language or "").strip().lower()
	return LANGUAGE_ALIASES.get(lang, lang)


MEMORY_ERROR_MARKERS = (
	"MemoryError",
	"JavaScript heap out of memory",
	"Allocation failed",
	"Cannot allocate memory",
	"std::bad_alloc",
)


@dataclass
class Session:
	"""One sandbox session and its working directory."""
	id: str
	options: SandboxOptions
	workdir: Path
	created_at: float
	last_used: float
	status: SessionStatus = SessionStatus.IDLE
	executions: int = 0
	cpu_time: float = 0.0
	peak_memory: int = 0
	process: Optional[asyncio.subprocess.Process] = field(default=None, repr=False)

	def to_dict(self, now: Optional[float] = None) -> dict:
		"""Status report for get_session_status / list_sessions."""
		now = time.monotonic() if now is None else now
		return {
			"id": self.id,
			"status": self.status.value,
			"uptime": round(now - self.created_at, 3),
			"memory_usage": self.peak_memory,
			"cpu_usage": round(self.cpu_time, 3),
			"executions": self.executions,
			"options": {
				"timeout": self.options.timeout,
				"memory_limit": self.options.memory_limit,
				"allow_network_access": self.options.allow_network_access,
				"allow_file_system_access": self.options.allow_file_system_access,
			},
		}


def _limit_resources(memory_limit_mb: int, cpu_seconds: int, address_space: bool):
	"""Build a preexec_fn applying rlimits in the child."""

	def apply() -> None:
		if address_space:
			limit = memory_limit_mb * 1024 * 1024
			resource.setrlimit(resource.RLIMIT_AS, (limit, limit))
		resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds + 1))
		resource.setrlimit(resource.RLIMIT_CORE, (0, 0))

	return apply


def _kill_group(proc: asyncio.subprocess.Process) -> None:
	if proc.returncode is not None:
		return
	try:
		os.killpg(proc.pid, signal.SIGKILL)
	except (ProcessLookupError, PermissionError):
		try:
			proc.kill()
		except ProcessLookupError:
			pass


# Runs the program as its only child and writes that child's rusage
# ("<maxrss KB> <cpu seconds>") to argv[1]. RUSAGE_CHILDREN in the manager
# would mix in every other session's programs.
USAGE_LAUNCHER = """
import os, signal, sys
report, argv = sys.argv[1], sys.argv[2:]
pid = os.fork()
if pid == 0:
    try:
        os.execv(argv[0], argv)
    finally:
        os._exit(127)
_, status, usage = os.wait4(pid, 0)
with open(report, "w") as f:
    f.write(f"{usage.ru_maxrss} {usage.ru_utime + usage.ru_stime}")
code = os.waitstatus_to_exitcode(status)
if code < 0:
    if -code != signal.SIGKILL:
        signal.signal(-code, signal.SIG_DFL)
    os.kill(os.getpid(), -code)
sys.exit(code)
"""

USAGE_REPORT = ".rusage"


def _read_usage(path: Path) -> tuple[int, float]:
	"""Peak RSS (bytes) and CPU seconds from a launcher report; zeros if missing."""
	try:
		maxrss_kb, cpu = path.read_text().split()
		return int(maxrss_kb) * 1024, float(cpu)
	except (OSError, ValueError):
		return 0, 0.0
	finally:
		path.unlink(missing_ok=True)


async def _read_stream(stream: asyncio.StreamReader, limit: int) -> tuple[str, bool]:
	"""Read a pipe to EOF, keeping at most `limit` bytes."""
	kept = bytearray()
	truncated = False
	while True:
		chunk = await stream.read(65536)
		if not chunk:
			break
		room = limit - len(kept)
		if room > 0:
			kept.extend(chunk[:room])
		if len(chunk) > room:
			truncated = True
	return kept.decode("utf-8", errors="replace"), truncated


class SandboxManager:
	"""
	Manages sandbox sessions.

	Thread-safety: a global lock guards session creation/deletion and a
	per-session lock serializes executions within one session.
	"""

	def __init__(
		self,
		settings: Optional[SandboxSettings] = None,
		root: Optional[Path] = None,
		runtimes: Optional[dict[str, Runtime]] = None,
	):
		self.settings = settings or SandboxSettings()
		self.root = Path(root) if root else None
		self.runtimes = runtimes or _default_runtimes()
		self.launcher = sys.executable or shutil.which("python3")

		self._sessions: dict[str, Session] = {}
		self._global_lock = asyncio.Lock()
		self._session_locks: dict[str, asyncio.Lock] = {}
		self._reaper_task: Optional[asyncio.Task] = None
		self._running = False

	# -- Languages --

	def supports(self, language: str) -> bool:
		"""Whether code in `language` can be executed here."""
		lang = normalize_language(language)
		runtime = self.runtimes.get(lang)
		return (
			runtime is not None
			and runtime.available
			and lang in [normalize_language(a) for a in self.settings.allowed_languages]
		)

	def supported_languages(self) -> list[str]:
		return [lang for lang in self.runtimes if self.supports(lang)]

	# -- Session lifecycle --

	def default_options(self) -> SandboxOptions:
		return SandboxOptions.from_settings(self.settings)

	async def create_session(self, options: Optional[SandboxOptions] = None) -> str:
		"""
		Create a new session.

		Raises:
			SandboxError: pool_exhausted when max_sessions are open
		"""
		options = options or self.default_options()
		async with self._global_lock:
			open_count = sum(1 for s in self._sessions.values() if s.status != SessionStatus.CLOSED)
			if open_count >= self.settings.max_sessions:
				raise SandboxError(
					f"Maximum concurrent sessions ({self.settings.max_sessions}) reached",
					code="pool_exhausted",
				)

			if self.root is not None:
				self.root.mkdir(parents=True, exist_ok=True)
			session_id = uuid.uuid4().hex[:12]
			workdir = Path(tempfile.mkdtemp(prefix=f"sandbox-{session_id}-", dir=self.root))
			now = time.monotonic()
			self._sessions[session_id] = Session(
				id=session_id,
				options=replace(options),
				workdir=workdir,
				created_at=now,
				last_used=now,
			)
			self._session_locks[session_id] = asyncio.Lock()

		logger.info(f"Sandbox session {session_id} created ({workdir})")
		return session_id

	def _get_open(self, session_id: str) -> Session:
		session = self._sessions.get(session_id)
		if session is None:
			raise SandboxError(f"Unknown session: {session_id}", session_id=session_id, code="unknown_session")
		if session.status == SessionStatus.CLOSED:
			raise SandboxError(f"Session is closed: {session_id}", session_id=session_id, code="session_closed")
		return session

	def get_session_status(self, session_id: str) -> dict:
		"""
		Status, uptime (s), memory_usage (bytes) and cpu_usage (s) of a session.

		Raises:
			SandboxError: unknown_session
		"""
		session = self._sessions.get(session_id)
		if session is None:
			raise SandboxError(f"Unknown session: {session_id}", session_id=session_id, code="unknown_session")
		return session.to_dict()

	def list_sessions(self) -> list[dict]:
		now = time.monotonic()
		return [s.to_dict(now) for s in self._sessions.values()]

	async def close_session(self, session_id: str) -> None:
		"""Close a session, killing any running program. Unknown or closed ids are a no-op."""
		async with self._global_lock:
			session = self._sessions.pop(session_id, None)
			self._session_locks.pop(session_id, None)
		if session is None or session.status == SessionStatus.CLOSED:
			return

		session.status = SessionStatus.CLOSED
		if session.process is not None:
			_kill_group(session.process)
		shutil.rmtree(session.workdir, ignore_errors=True)
		logger.info(f"Sandbox session {session_id} closed after {session.executions} executions")

	async def close_all(self) -> None:
		for session_id in list(self._sessions):
			await self.close_session(session_id)

	# -- Execution --

	async def execute_in_session(
		self,
		session_id: str,
		code: str,
		language: str,
		files: Optional[dict[str, str]] = None,
	) -> ExecutionResult:
		"""
		Run code in an open session.

		Program failures (errors, timeouts, limit violations) are reported in
		the ExecutionResult, never raised.

		Args:
			session_id: Session to run in
			code: Entry point source
			language: python, javascript or bash
			files: Extra files written next to the entry point

		Raises:
			SandboxError: unknown_session or session_closed
		"""
		session = self._get_open(session_id)
		lock = self._session_locks[session_id]
		async with lock:
			session = self._get_open(session_id)
			session.status = SessionStatus.BUSY
			try:
				return await self._run(session, code, normalize_language(language), files or {})
			finally:
				session.executions += 1
				session.last_used = time.monotonic()
				if session.status == SessionStatus.BUSY:
					session.status = SessionStatus.IDLE

	async def execute_code(
		self,
		code: str,
		language: str,
		options: Optional[SandboxOptions] = None,
	) -> ExecutionResult:
		"""Run code in an ephemeral session that is always closed afterwards."""
		session_id = await self.create_session(options)
		try:
			return await self.execute_in_session(session_id, code, language)
		finally:
			await self.close_session(session_id)

	def _failure(self, error: str, logs: Optional[list[str]] = None, elapsed_ms: float = 0.0) -> ExecutionResult:
		return ExecutionResult(success=False, error=error, logs=tuple(logs or ()), execution_time=elapsed_ms)

	async def _run(self, session: Session, code: str, language: str, files: dict[str, str]) -> ExecutionResult:
		options = session.options
		runtime = self.runtimes.get(language)
		if runtime is None or not self.supports(language):
			return self._failure(f"Unsupported language: {language}")

		sources = {runtime.file_name: code, **files}
		if sum(len(s.encode("utf-8")) for s in sources.values()) > self.settings.max_code_bytes:
			return self._failure(f"Code exceeds {self.settings.max_code_bytes} bytes")

		violations = []
		for source in sources.values():
			violations += check_policy(
				source,
				language,
				allow_network_access=options.allow_network_access,
				allow_file_system_access=options.allow_file_system_access,
			)
		if violations:
			logger.warning(f"Session {session.id}: policy violation: {violations[0]}")
			return self._failure(f"Policy violation: {violations[0]}", [str(v) for v in violations])

		for name, source in sources.items():
			target = session.workdir / Path(name).name
			target.write_text(source, encoding="utf-8")

		env = {
			"PATH": os.environ.get("PATH", "/usr/bin:/bin"),
			"HOME": str(session.workdir),
			"TMPDIR": str(session.workdir),
			"LANG": "C.UTF-8",
			"PYTHONIOENCODING": "utf-8",
		}
		cpu_seconds = max(1, math.ceil(options.timeout))
		report = session.workdir / USAGE_REPORT
		command = runtime.command(session.workdir / runtime.file_name, options)
		start = time.monotonic()

		try:
			proc = await asyncio.create_subprocess_exec(
				self.launcher, "-I", "-c", USAGE_LAUNCHER, str(report), *command,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				cwd=str(session.workdir),
				env=env,
				start_new_session=True,
				preexec_fn=_limit_resources(options.memory_limit, cpu_seconds, runtime.address_space_limit),
			)
		except OSError as e:
			return self._failure(f"Could not start {language} runtime: {e}")

		session.process = proc
		limit = self.settings.max_output_bytes
		stdout_task = asyncio.create_task(_read_stream(proc.stdout, limit))
		stderr_task = asyncio.create_task(_read_stream(proc.stderr, limit))
		timed_out = False
		try:
			try:
				await asyncio.wait_for(proc.wait(), timeout=options.timeout)
			except asyncio.TimeoutError:
				timed_out = True
				_kill_group(proc)
				await proc.wait()
			(stdout, out_truncated), (stderr, err_truncated) = await asyncio.gather(stdout_task, stderr_task)
		finally:
			_kill_group(proc)
			for task in (stdout_task, stderr_task):
				if not task.done():
					task.cancel()
			session.process = None

		elapsed_ms = (time.monotonic() - start) * 1000
		peak_memory, cpu_time = _read_usage(report)
		session.cpu_time += cpu_time
		session.peak_memory = max(session.peak_memory, peak_memory)

		logs = [line for line in stderr.splitlines() if line.strip()]
		if out_truncated or err_truncated:
			logs.append(f"[output truncated to {limit} bytes]")

		returncode = proc.returncode
		error = None
		if timed_out:
			error = f"Execution timed out after {options.timeout:g}s"
		elif any(marker in stderr for marker in MEMORY_ERROR_MARKERS):
			error = f"Memory limit exceeded ({options.memory_limit} MB)"
		elif returncode is not None and returncode < 0:
			sig = -returncode
			if sig == signal.SIGXCPU:
				error = f"CPU time limit exceeded ({cpu_seconds}s)"
			else:
				try:
					name = signal.Signals(sig).name
				except ValueError:
					name = str(sig)
				error = f"Process killed by signal {name}"
		elif returncode != 0:
			error = logs[-1] if logs else f"Process exited with code {returncode}"

		success = error is None
		logger.debug(
			f"Session {session.id}: {language} run finished in {elapsed_ms:.0f}ms "
			f"(rc={returncode}, success={success})"
		)
		return ExecutionResult(
			success=success,
			output=stdout,
			error=error,
			logs=tuple(logs),
			execution_time=elapsed_ms,
		)

	# -- Reaping --

	async def reap_expired(self) -> list[str]:
		"""Close sessions past their lifetime or idle too long."""
		now = time.monotonic()
		expired = []
		for session in list(self._sessions.values()):
			too_old = now - session.created_at > self.settings.session_lifetime
			too_idle = (
				session.status == SessionStatus.IDLE
				and now - session.last_used > self.settings.idle_timeout
			)
			if too_old or too_idle:
				expired.append(session.id)

		for session_id in expired:
			logger.info(f"Reaping sandbox session {session_id}")
			await self.close_session(session_id)
		return expired

	async def start(self) -> None:
		"""Start the background reaper."""
		if self._running:
			return
		self._running = True
		self._reaper_task = asyncio.create_task(self._reaper_loop())
		logger.info("Sandbox manager started")

	async def stop(self) -> None:
		"""Stop the reaper and close every session."""
		self._running = False
		if self._reaper_task:
			self._reaper_task.cancel()
			try:
				await self._reaper_task
			except asyncio.CancelledError:
				pass
			self._reaper_task = None
		await self.close_all()
		logger.info("Sandbox manager stopped")

	async def _reaper_loop(self) -> None:
		while self._running:
			try:
				await asyncio.sleep(self.settings.reap_interval)
				await self.reap_expired()
			except asyncio.CancelledError:
				break
			except Exception as e:
				logger.error(f"Sandbox reaper error: {e}")
