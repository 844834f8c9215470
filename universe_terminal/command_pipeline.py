# --- API DOCUMENTATION for universe_terminal/command_pipeline.py ---
#
# **Purpose:** One request/response cycle for a submitted command:
# safety check -> optional authorization -> execution -> streamed results.
#
# **States:**
#   RECEIVED -> SAFETY_CHECKED -> BLOCKED
#   RECEIVED -> SAFETY_CHECKED -> AUTHORIZATION_PENDING -> DENIED -> BLOCKED
#   RECEIVED -> SAFETY_CHECKED [-> AUTHORIZATION_PENDING -> AUTHORIZED] -> EXECUTING -> COMPLETE | ERROR
#
# **Public Classes:**
#
# class ExecutionContext:
#     Per-invocation record of the command, its session/tab and the states it passed through.
#
# class CommandPipeline:
#     def __init__(self, safety_engine, executor, authorizer=None, hooks=None, authorization_timeout=30.0):
#
#     async def run(self, context, record_history=None):
#         """
#         Async generator of CommandResultEvent. Empty input yields nothing.
#         Blocked is always the only event of a refused command. `record_history`
#         is called with the command once, before the terminal event is yielded
#         (or when the stream is closed early).
#         """
#
# --- END API DOCUMENTATION ---

import logging
from enum import Enum, auto
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, List, Optional

from universe_terminal.authorization import (
    DEFAULT_AUTHORIZATION_TIMEOUT, Authorizer, request_authorization,
)
from universe_terminal.command_executor import CommandExecutor
from universe_terminal.models import (
    Blocked, CommandResultEvent, Error, Output, ResultKind, SafetyVerdict,
)
from universe_terminal.plugin_hooks import HookContext, HookPoint, HookRegistry
from universe_terminal.safety_engine import SafetyEngine

logger = logging.getLogger(__name__)

AUTHORIZATION_TITLE = "🔐 Authorization required"


class PipelineState(Enum):
    RECEIVED = auto()
    SAFETY_CHECKED = auto()
    BLOCKED = auto()
    AUTHORIZATION_PENDING = auto()
    AUTHORIZED = auto()
    DENIED = auto()
    EXECUTING = auto()
    COMPLETE = auto()
    ERROR = auto()


@dataclass
class ExecutionContext:
    command: str
    session_id: str
    tab_id: str
    working_directory: str
    environment: Dict[str, str] = field(default_factory=dict)
    state: PipelineState = PipelineState.RECEIVED
    transitions: List[PipelineState] = field(default_factory=lambda: [PipelineState.RECEIVED])
    verdict: Optional[SafetyVerdict] = None

    def transition(self, new_state: PipelineState):
        logger.debug(f"[{self.session_id[:8]}/{self.tab_id[:8]}] {self.state.name} -> {new_state.name}: '{self.command}'")
        self.state = new_state
        self.transitions.append(new_state)


class CommandPipeline:
    def __init__(self, safety_engine: SafetyEngine, executor: CommandExecutor,
                 authorizer: Optional[Authorizer] = None, hooks: Optional[HookRegistry] = None,
                 authorization_timeout: float = DEFAULT_AUTHORIZATION_TIMEOUT):
        self.safety_engine = safety_engine
        self.executor = executor
        self.authorizer = authorizer
        self.hooks = hooks
        self.authorization_timeout = authorization_timeout

    async def run(self, context: ExecutionContext,
                  record_history: Optional[Callable[[str], None]] = None) -> AsyncIterator[CommandResultEvent]:
        command = context.command.strip()
        if not command:
            logger.debug("Ignoring empty command submission.")
            return
        context.command = command

        verdict = self.safety_engine.check(command)
        context.verdict = verdict
        context.transition(PipelineState.SAFETY_CHECKED)

        if not verdict.is_safe:
            if not verdict.requires_authorization:
                logger.warning(f"Command blocked ({verdict.severity.name}): '{command}' - {verdict.reason}")
                context.transition(PipelineState.BLOCKED)
                yield await self._refuse(context, verdict.reason, record_history)
                return

            context.transition(PipelineState.AUTHORIZATION_PENDING)
            outcome = await request_authorization(
                self.authorizer, f"{AUTHORIZATION_TITLE}: {verdict.reason}", command,
                timeout=self.authorization_timeout,
            )
            if not outcome.approved:
                context.transition(PipelineState.DENIED)
                context.transition(PipelineState.BLOCKED)
                yield await self._refuse(context, f"Authorization failed: {outcome.reason}", record_history)
                return
            context.transition(PipelineState.AUTHORIZED)

        await self._invoke_hooks(HookPoint.BEFORE_COMMAND, context)
        context.transition(PipelineState.EXECUTING)

        history_recorded = False
        stream = self.executor.execute(command, context.working_directory, context.environment)
        try:
            async for event in stream:
                if not event.is_terminal:
                    if isinstance(event, Output) and event.working_directory:
                        context.working_directory = event.working_directory
                    await self._invoke_hooks(HookPoint.ON_OUTPUT, context, event)
                    yield event
                    continue

                context.transition(PipelineState.COMPLETE if event.kind is ResultKind.COMPLETE else PipelineState.ERROR)
                self._record(command, record_history)
                history_recorded = True
                if event.kind is ResultKind.ERROR:
                    await self._invoke_hooks(HookPoint.ON_ERROR, context, event)
                await self._invoke_hooks(HookPoint.AFTER_COMMAND, context, event)
                yield event
                return

            # Executor contract guarantees a terminal event; keep the stream well-formed regardless.
            logger.error(f"Executor stream for '{command}' ended without a terminal event.")
            context.transition(PipelineState.ERROR)
            self._record(command, record_history)
            history_recorded = True
            yield Error("Command ended without a result")
        finally:
            await stream.aclose()
            if not history_recorded:
                logger.info(f"Execution of '{command}' was cancelled in state {context.state.name}.")
                self._record(command, record_history)

    async def _refuse(self, context: ExecutionContext, reason: str,
                      record_history: Optional[Callable[[str], None]]) -> Blocked:
        event = Blocked(command=context.command, reason=reason)
        self._record(context.command, record_history)
        await self._invoke_hooks(HookPoint.ON_ERROR, context, event)
        return event

    def _record(self, command: str, record_history: Optional[Callable[[str], None]]):
        if record_history is not None:
            record_history(command)

    async def _invoke_hooks(self, hook_point: HookPoint, context: ExecutionContext,
                            event: Optional[CommandResultEvent] = None):
        if self.hooks is None or not self.hooks.has_handlers(hook_point):
            return
        await self.hooks.invoke(HookContext(
            hook_point=hook_point,
            command=context.command,
            session_id=context.session_id,
            working_directory=context.working_directory,
            environment=dict(context.environment),
            event=event,
        ))
