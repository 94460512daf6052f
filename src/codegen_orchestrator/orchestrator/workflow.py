"""
Workflow Orchestrator - the state machine driving one request end to end.

Phases:
	start -> clarifying (<-> user answers) -> refining -> generating
	-> executing -> reporting -> complete

Any non-terminal phase may move to failed or cancelled. The orchestrator
owns each run's WorkflowState; agents receive snapshots and their results
are merged back one step at a time.
"""

import asyncio
import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..agents import (
	CodeGenerationAgent,
	ConversationalAgent,
	ExecutionAgent,
	GenerationContext,
)
from ..config import EXHAUSTION_POLICIES, QUALITY_LEVELS, WorkflowSettings
from ..errors import (
	ClarificationExhaustedError,
	ConfigError,
	FieldError,
	OrchestratorError,
	WorkflowCancelled,
	WorkflowTimeoutError,
	describe_error,
)
from ..models import (
	AgentType,
	Clarification,
	ConversationState,
	ExecutionResult,
	Message,
	Role,
	WorkflowState,
)
from ..sandbox import SandboxManager

logger = logging.getLogger(__name__)


class Phase(str, Enum):
	"""State machine phase."""
	START = "start"
	CLARIFYING = "clarifying"
	REFINING = "refining"
	GENERATING = "generating"
	EXECUTING = "executing"
	REPORTING = "reporting"
	COMPLETE = "complete"
	FAILED = "failed"
	CANCELLED = "cancelled"


TERMINAL_PHASES = frozenset({Phase.COMPLETE, Phase.FAILED, Phase.CANCELLED})

_ABORT = {Phase.FAILED, Phase.CANCELLED}

TRANSITIONS: dict[Phase, set[Phase]] = {
	Phase.START: {Phase.CLARIFYING} | _ABORT,
	Phase.CLARIFYING: {Phase.CLARIFYING, Phase.REFINING, Phase.REPORTING} | _ABORT,
	Phase.REFINING: {Phase.GENERATING} | _ABORT,
	Phase.GENERATING: {Phase.EXECUTING} | _ABORT,
	Phase.EXECUTING: {Phase.REPORTING} | _ABORT,
	Phase.REPORTING: {Phase.COMPLETE} | _ABORT,
	Phase.COMPLETE: set(),
	Phase.FAILED: set(),
	Phase.CANCELLED: set(),
}

PHASE_PROGRESS: dict[Phase, int] = {
	Phase.START: 5,
	Phase.CLARIFYING: 20,
	Phase.REFINING: 35,
	Phase.GENERATING: 55,
	Phase.EXECUTING: 80,
	Phase.REPORTING: 95,
	Phase.COMPLETE: 100,
}


class RunStatus(str, Enum):
	"""Externally visible run status."""
	RUNNING = "running"
	COMPLETED = "completed"
	FAILED = "failed"
	CANCELLED = "cancelled"


_TERMINAL_STATUS = {
	Phase.COMPLETE: RunStatus.COMPLETED,
	Phase.FAILED: RunStatus.FAILED,
	Phase.CANCELLED: RunStatus.CANCELLED,
}


@dataclass
class WorkflowOptions:
	"""Per-run options. timeout is in seconds."""
	max_clarifications: int = 3
	timeout: float = 300.0
	retries: int = 2
	quality: str = "production"
	on_clarifications_exhausted: str = "proceed"
	execute_code: bool = True
	language: Optional[str] = None

	@classmethod
	def from_settings(cls, settings: WorkflowSettings) -> "WorkflowOptions":
		return cls(
			max_clarifications=settings.max_clarifications,
			timeout=settings.timeout,
			retries=settings.retries,
			quality=settings.quality,
			on_clarifications_exhausted=settings.on_clarifications_exhausted,
		)

	def validate(self) -> None:
		errors = []
		if self.max_clarifications < 0:
			errors.append(FieldError("max_clarifications", "must be >= 0", self.max_clarifications))
		if self.timeout <= 0:
			errors.append(FieldError("timeout", "must be > 0", self.timeout))
		if self.retries < 0:
			errors.append(FieldError("retries", "must be >= 0", self.retries))
		if self.quality not in QUALITY_LEVELS:
			errors.append(FieldError("quality", f"must be one of {QUALITY_LEVELS}", self.quality))
		if self.on_clarifications_exhausted not in EXHAUSTION_POLICIES:
			errors.append(FieldError(
				"on_clarifications_exhausted",
				f"must be one of {EXHAUSTION_POLICIES}",
				self.on_clarifications_exhausted,
			))
		if errors:
			raise ConfigError(errors)

	def to_dict(self) -> dict:
		return {f.name: getattr(self, f.name) for f in fields(self)}


AnswerCallback = Callable[[list[str]], Awaitable[Optional[str]]]


@dataclass
class WorkflowInput:
	"""
	One user turn.

	context is the conversation returned by the previous turn's result.
	answer_clarification, when given, is awaited with the questions and
	lets clarification rounds happen inside a single run.
	"""
	user_message: str
	context: Optional[ConversationState] = None
	options: Optional[WorkflowOptions] = None
	workflow_id: Optional[str] = None
	answer_clarification: Optional[AnswerCallback] = None


@dataclass
class StepRecord:
	"""One executed (or skipped) step. duration is in seconds."""
	name: str
	duration: float
	success: bool
	error: Optional[str] = None
	skipped: bool = False

	def to_dict(self) -> dict:
		return {
			"name": self.name,
			"duration": round(self.duration, 4),
			"success": self.success,
			"error": self.error,
			"skipped": self.skipped,
		}


@dataclass
class WorkflowStatus:
	"""Progress snapshot. Times are epoch seconds."""
	workflow_id: str
	status: RunStatus
	current_step: str
	progress: int
	start_time: float
	end_time: Optional[float] = None

	def to_dict(self) -> dict:
		return {
			"workflow_id": self.workflow_id,
			"status": self.status.value,
			"current_step": self.current_step,
			"progress": self.progress,
			"start_time": self.start_time,
			"end_time": self.end_time,
		}


@dataclass
class WorkflowResult:
	"""Outcome of one run. success means the run reached `complete`."""
	workflow_id: str
	success: bool
	status: RunStatus
	messages: list[Message]
	generated_code: str = ""
	language: str = ""
	explanation: str = ""
	execution_result: Optional[ExecutionResult] = None
	error: Optional[str] = None
	needs_clarification: bool = False
	clarification_questions: list[str] = field(default_factory=list)
	metadata: dict[str, Any] = field(default_factory=dict)
	conversation: Optional[ConversationState] = None

	def to_dict(self) -> dict:
		return {
			"workflow_id": self.workflow_id,
			"success": self.success,
			"status": self.status.value,
			"messages": [m.model_dump(mode="json") for m in self.messages],
			"generated_code": self.generated_code,
			"language": self.language,
			"explanation": self.explanation,
			"execution_result": self.execution_result.model_dump(mode="json") if self.execution_result else None,
			"error": self.error,
			"needs_clarification": self.needs_clarification,
			"clarification_questions": list(self.clarification_questions),
			"metadata": self.metadata,
			"conversation_id": self.conversation.conversation_id if self.conversation else None,
		}


class EventType(str, Enum):
	MESSAGE = "message"
	CODE_GENERATED = "code_generated"
	EXECUTION_COMPLETE = "execution_complete"
	STATUS = "status"


@dataclass
class WorkflowEvent:
	"""Notification published to subscribers as a run progresses."""
	type: EventType
	workflow_id: str
	payload: dict[str, Any]
	timestamp: float = field(default_factory=time.time)


EventCallback = Callable[[WorkflowEvent], None]


@dataclass
class _Run:
	"""Internal bookkeeping for one run."""
	workflow_id: str
	input: WorkflowInput
	options: WorkflowOptions
	state: WorkflowState
	status: WorkflowStatus
	phase: Phase = Phase.START
	steps: list[StepRecord] = field(default_factory=list)
	quality: dict[str, Any] = field(default_factory=dict)
	error: Optional[str] = None
	error_detail: Optional[dict] = None
	cancel_requested: bool = False
	session_id: Optional[str] = None
	in_flight: Optional[tuple[str, float]] = None
	# Rounds asked by this run; state.clarification_rounds spans turns
	clarifications_asked: int = 0
	driver: Optional[asyncio.Task] = None
	task: Optional[asyncio.Task] = None
	result: Optional[WorkflowResult] = None
	started: float = field(default_factory=time.monotonic)

	@property
	def terminal(self) -> bool:
		return self.phase in TERMINAL_PHASES


class WorkflowOrchestrator:
	"""
	Runs workflows and answers status / cancel requests for them.

	Multiple runs may execute concurrently; they share the agents, the
	gateway and the sandbox manager but never each other's state.
	"""

	def __init__(
		self,
		conversational: ConversationalAgent,
		code_generation: CodeGenerationAgent,
		execution: ExecutionAgent,
		sandbox: SandboxManager,
		defaults: Optional[WorkflowOptions] = None,
		max_history: int = 100,
	):
		self.conversational = conversational
		self.code_generation = code_generation
		self.execution = execution
		self.sandbox = sandbox
		self.defaults = defaults or WorkflowOptions()
		self.max_history = max_history

		self._active: dict[str, _Run] = {}
		self._history: OrderedDict[str, _Run] = OrderedDict()
		self._subscribers: list[EventCallback] = []

	# -- Events --

	def subscribe(self, callback: EventCallback) -> Callable[[], None]:
		"""Register an event callback. Returns a function that unsubscribes it."""
		self._subscribers.append(callback)

		def unsubscribe() -> None:
			if callback in self._subscribers:
				self._subscribers.remove(callback)

		return unsubscribe

	def _emit(self, run: _Run, event_type: EventType, payload: dict[str, Any]) -> None:
		event = WorkflowEvent(type=event_type, workflow_id=run.workflow_id, payload=payload)
		for callback in list(self._subscribers):
			try:
				callback(event)
			except Exception as e:
				logger.error(f"Event subscriber failed: {e}")

	# -- Public API --

	async def execute(self, workflow_input: WorkflowInput) -> WorkflowResult:
		"""
		Run a workflow to complete, failed or cancelled.

		Raises:
			ConfigError: if the options are invalid
		"""
		run = self._create_run(workflow_input)
		return await self._execute_run(run)

	async def start(self, workflow_input: WorkflowInput) -> str:
		"""Launch a workflow in the background and return its id."""
		run = self._create_run(workflow_input)
		run.task = asyncio.create_task(self._execute_run(run))
		return run.workflow_id

	async def wait(self, workflow_id: str) -> WorkflowResult:
		"""
		Wait for a workflow started with start().

		Raises:
			KeyError: for an unknown workflow id
		"""
		run = self._lookup(workflow_id)
		if run is None:
			raise KeyError(workflow_id)
		if run.result is not None:
			return run.result
		if run.task is None:
			raise KeyError(f"Workflow {workflow_id} was not started in the background")
		return await asyncio.shield(run.task)

	def get_status(self, workflow_id: str) -> Optional[WorkflowStatus]:
		run = self._lookup(workflow_id)
		return run.status if run else None

	def get_result(self, workflow_id: str) -> Optional[WorkflowResult]:
		run = self._lookup(workflow_id)
		return run.result if run else None

	def list_workflows(self) -> list[dict]:
		runs = list(self._active.values()) + list(self._history.values())
		return [run.status.to_dict() for run in runs]

	async def cancel(self, workflow_id: str) -> bool:
		"""
		Cancel a running workflow.

		Once this returns, the status is `cancelled` and the run makes no
		further transitions. Returns False for unknown or finished runs.
		"""
		run = self._active.get(workflow_id)
		if run is None or run.terminal:
			return False

		run.cancel_requested = True
		self._transition(run, Phase.CANCELLED)
		run.state.should_continue = False
		await self._close_session(run)
		if run.driver is not None and not run.driver.done():
			run.driver.cancel()
		logger.info(f"Workflow {workflow_id} cancelled")
		return True

	# -- Run lifecycle --

	def _lookup(self, workflow_id: str) -> Optional[_Run]:
		return self._active.get(workflow_id) or self._history.get(workflow_id)

	def _create_run(self, workflow_input: WorkflowInput) -> _Run:
		options = workflow_input.options or WorkflowOptions(**self.defaults.to_dict())
		options.validate()

		workflow_id = workflow_input.workflow_id or uuid.uuid4().hex[:12]
		if self._lookup(workflow_id) is not None:
			raise ValueError(f"Workflow id already in use: {workflow_id}")

		run = _Run(
			workflow_id=workflow_id,
			input=workflow_input,
			options=options,
			state=WorkflowState.from_conversation(workflow_input.context),
			status=WorkflowStatus(
				workflow_id=workflow_id,
				status=RunStatus.RUNNING,
				current_step=Phase.START.value,
				progress=PHASE_PROGRESS[Phase.START],
				start_time=time.time(),
			),
		)
		self._active[workflow_id] = run
		logger.info(f"Workflow {workflow_id} started (quality={options.quality})")
		return run

	async def _execute_run(self, run: _Run) -> WorkflowResult:
		try:
			if not run.cancel_requested:
				run.driver = asyncio.create_task(self._drive(run))
				await asyncio.wait_for(run.driver, timeout=run.options.timeout)
		except asyncio.TimeoutError:
			error = WorkflowTimeoutError(
				f"Workflow exceeded {run.options.timeout:g}s",
				timeout=run.options.timeout,
				step=run.in_flight[0] if run.in_flight else run.phase.value,
			)
			self._record_in_flight(run, describe_error(error))
			self._fail(run, error)
		except WorkflowCancelled:
			self._record_in_flight(run, "cancelled")
		except asyncio.CancelledError:
			self._record_in_flight(run, "cancelled")
			task = asyncio.current_task()
			if not run.cancel_requested or (task is not None and task.cancelling()):
				# The caller itself was cancelled
				if not run.terminal:
					run.cancel_requested = True
					self._transition(run, Phase.CANCELLED)
				await self._close_session(run)
				self._finish(run)
				raise
		except Exception as e:
			self._fail(run, e)
		finally:
			await self._close_session(run)

		return self._finish(run)

	def _finish(self, run: _Run) -> WorkflowResult:
		if run.result is not None:
			return run.result
		if not run.terminal:
			self._fail(run, RuntimeError("Workflow stopped before reaching a terminal phase"))

		state = run.state
		if run.phase != Phase.COMPLETE:
			state.should_continue = False
		run.result = WorkflowResult(
			workflow_id=run.workflow_id,
			success=run.phase == Phase.COMPLETE,
			status=run.status.status,
			messages=list(state.messages),
			generated_code=state.generated_code,
			language=state.language,
			explanation=state.explanation,
			execution_result=state.execution_result,
			error=run.error,
			needs_clarification=state.needs_clarification,
			clarification_questions=list(state.clarification_questions),
			metadata={
				"duration": round(time.monotonic() - run.started, 4),
				"steps": [s.to_dict() for s in run.steps],
				"clarifications": run.clarifications_asked,
				"quality": dict(run.quality),
				"options": run.options.to_dict(),
				"error_detail": run.error_detail,
			},
			conversation=state.conversation(),
		)

		self._active.pop(run.workflow_id, None)
		self._history[run.workflow_id] = run
		while len(self._history) > self.max_history:
			self._history.popitem(last=False)

		logger.info(
			f"Workflow {run.workflow_id} {run.status.status.value} "
			f"in {run.result.metadata['duration']:.2f}s"
		)
		return run.result

	# -- State machine helpers --

	def _transition(self, run: _Run, phase: Phase) -> None:
		if run.cancel_requested and phase != Phase.CANCELLED:
			raise WorkflowCancelled()
		if phase not in TRANSITIONS[run.phase]:
			raise RuntimeError(f"Illegal workflow transition {run.phase.value} -> {phase.value}")

		run.phase = phase
		run.status.current_step = phase.value
		if phase in PHASE_PROGRESS:
			run.status.progress = max(run.status.progress, PHASE_PROGRESS[phase])
		if phase in TERMINAL_PHASES:
			run.status.status = _TERMINAL_STATUS[phase]
			run.status.end_time = time.time()
		logger.debug(f"Workflow {run.workflow_id} -> {phase.value}")
		self._emit(run, EventType.STATUS, run.status.to_dict())

	def _checkpoint(self, run: _Run) -> None:
		if run.cancel_requested:
			raise WorkflowCancelled()

	def _fail(self, run: _Run, error: BaseException) -> None:
		if run.terminal:
			return
		run.error = describe_error(error)
		if isinstance(error, OrchestratorError):
			run.error_detail = error.to_dict()
		logger.error(f"Workflow {run.workflow_id} failed: {run.error}")
		run.state.should_continue = False
		self._transition(run, Phase.FAILED)

	def _record_in_flight(self, run: _Run, error: str) -> None:
		if run.in_flight is None:
			return
		name, started = run.in_flight
		run.steps.append(StepRecord(name=name, duration=time.monotonic() - started, success=False, error=error))
		run.in_flight = None

	async def _step(self, run: _Run, name: str, action: Callable[[], Awaitable[Any]]) -> Any:
		"""Run one step and record it. A result arriving after cancel is discarded."""
		self._checkpoint(run)
		run.in_flight = (name, time.monotonic())
		try:
			result = await action()
		except Exception as e:
			self._record_in_flight(run, describe_error(e))
			raise
		self._checkpoint(run)
		_, started = run.in_flight
		run.steps.append(StepRecord(name=name, duration=time.monotonic() - started, success=True))
		run.in_flight = None
		return result

	def _skip(self, run: _Run, name: str, reason: str) -> None:
		run.steps.append(StepRecord(name=name, duration=0.0, success=True, error=reason, skipped=True))

	async def _close_session(self, run: _Run) -> None:
		session_id, run.session_id = run.session_id, None
		if session_id is not None:
			await self.sandbox.close_session(session_id)

	async def _ask_user(self, run: _Run, questions: list[str]) -> Optional[str]:
		callback = run.input.answer_clarification
		if callback is None:
			return None
		try:
			answer = await callback(questions)
		except Exception as e:
			logger.error(f"Clarification callback failed: {e}")
			return None
		self._checkpoint(run)
		answer = (answer or "").strip()
		return answer or None

	# -- The machine --

	async def _drive(self, run: _Run) -> None:
		state = run.state
		options = run.options
		conversational = self.conversational.with_retries(options.retries)
		message = run.input.user_message.strip()

		self._transition(run, Phase.CLARIFYING)

		# The previous turn ended on questions; this message answers them
		if state.needs_clarification and state.clarification_questions:
			state.merge(
				clarifications=state.clarifications + [
					Clarification(question=q, answer=message) for q in state.clarification_questions
				],
				needs_clarification=False,
				clarification_questions=[],
			)
		elif state.needs_clarification:
			state.merge(needs_clarification=False)

		state.add_message(Message(role=Role.USER, content=message))
		self._emit(run, EventType.MESSAGE, {"role": Role.USER.value, "content": message})

		while True:
			analysis = await self._step(
				run,
				"analyze",
				lambda: conversational.process_message(message, state.conversation(), refine=False),
			)
			state.merge(user_intent=analysis.user_intent)
			questions = analysis.clarification_questions if analysis.needs_clarification else []
			if not questions:
				break

			if state.clarification_rounds >= options.max_clarifications:
				if options.on_clarifications_exhausted == "fail":
					raise ClarificationExhaustedError(
						f"Still missing {', '.join(analysis.requirements.missing_fields())} "
						f"after {state.clarification_rounds} clarification rounds",
						details={"questions": questions},
					)
				logger.info(f"Workflow {run.workflow_id}: clarifications exhausted, proceeding with best information")
				run.quality["clarifications_exhausted"] = True
				break

			state.merge(
				needs_clarification=True,
				clarification_questions=list(questions),
				clarification_rounds=state.clarification_rounds + 1,
			)
			run.clarifications_asked += 1
			prompt = conversational.compose_clarification(questions)
			state.add_message(Message(role=Role.ASSISTANT, content=prompt, agent_type=AgentType.CONVERSATIONAL))
			self._emit(run, EventType.MESSAGE, {"role": Role.ASSISTANT.value, "content": prompt})

			answer = await self._ask_user(run, questions)
			if answer is None:
				# Present the questions; the caller continues with the next turn
				self._transition(run, Phase.REPORTING)
				self._transition(run, Phase.COMPLETE)
				return

			state.merge(
				clarifications=state.clarifications + [Clarification(question=q, answer=answer) for q in questions],
				needs_clarification=False,
				clarification_questions=[],
			)
			state.add_message(Message(role=Role.USER, content=answer))
			self._emit(run, EventType.MESSAGE, {"role": Role.USER.value, "content": answer})
			message = answer
			self._transition(run, Phase.CLARIFYING)

		# Refining
		self._transition(run, Phase.REFINING)
		refined = await self._step(
			run,
			"refine",
			lambda: conversational.refine_prompt(
				state.conversation().history(),
				analysis.user_intent,
				requirements=analysis.requirements,
			),
		)
		agent_message = conversational.build_agent_message(
			state.conversation_id,
			analysis,
			list(state.clarifications),
			refined,
		)
		# A later request in this conversation starts with a fresh budget
		state.merge(
			needs_clarification=False,
			clarification_questions=[],
			clarification_rounds=0,
			agent_message=agent_message,
			refined_prompt=refined,
		)

		# Generating
		self._transition(run, Phase.GENERATING)
		generated = await self._step(
			run,
			"generate",
			lambda: self.code_generation.generate_code(
				refined,
				GenerationContext(
					language=options.language,
					quality=options.quality,
					agent_message=agent_message,
					retries=options.retries,
				),
			),
		)
		state.merge(
			generated_code=generated.code,
			language=generated.language,
			explanation=generated.explanation,
		)
		run.quality.update({
			"attempts": generated.metadata.get("attempts", 1),
			"validation_warnings": list(generated.metadata.get("warnings", [])),
			"tests_generated": bool(generated.tests),
			"documentation_generated": bool(generated.documentation),
		})
		if generated.documentation:
			run.quality["documentation"] = generated.documentation
		self._emit(run, EventType.CODE_GENERATED, {"language": generated.language, "lines": generated.code.count("\n")})

		# Executing
		self._transition(run, Phase.EXECUTING)
		await self._execute_phase(run, generated)

		# Reporting
		self._transition(run, Phase.REPORTING)

		async def compose() -> str:
			return conversational.compose_report(state.snapshot())

		report = await self._step(run, "report", compose)
		state.add_message(Message(role=Role.ASSISTANT, content=report, agent_type=AgentType.CODE_GENERATION))
		self._emit(run, EventType.MESSAGE, {"role": Role.ASSISTANT.value, "content": report})
		state.merge(should_continue=False)
		self._transition(run, Phase.COMPLETE)

	async def _execute_phase(self, run: _Run, generated) -> None:
		state = run.state
		if not run.options.execute_code:
			self._skip(run, "execute", "execution disabled")
			self._skip(run, "test", "execution disabled")
			return
		if not self.sandbox.supports(generated.language):
			self._skip(run, "execute", f"{generated.language} cannot be executed in the sandbox")
			self._skip(run, "test", f"{generated.language} cannot be executed in the sandbox")
			return

		async def run_code() -> ExecutionResult:
			run.session_id = await self.sandbox.create_session()
			return await self.execution.execute(generated.code, generated.language, session_id=run.session_id)

		try:
			result = await self._step(run, "execute", run_code)
			state.merge(execution_result=result)
			run.quality["execution_passed"] = result.success
			self._emit(run, EventType.EXECUTION_COMPLETE, result.model_dump(mode="json"))

			if generated.tests:
				report = await self._step(
					run,
					"test",
					lambda: self.execution.run_tests(
						generated.code,
						generated.tests,
						generated.language,
						session_id=run.session_id,
					),
				)
				run.quality.update({
					"tests_passed": report.passed,
					"total_tests": report.total_tests,
					"passed_tests": report.passed_tests,
					"coverage": report.coverage,
				})
			else:
				self._skip(run, "test", "no tests generated")
		finally:
			await self._close_session(run)
