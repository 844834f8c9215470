# --- API DOCUMENTATION for universe_terminal/session_manager.py ---
#
# **Purpose:** Owns every Session and Tab. Routes submitted commands through
# the CommandPipeline, runs per-tab advisory analysis, monitors session
# resource usage and persists session state.
#
# **Public Classes:**
#
# class SessionManager:
#     def __init__(self, pipeline, advisory_engine, sandbox, session_store=None,
#                  learning_tracker=None, monitor_interval=1.0, idle_timeout=None):
#
#     async def start(self):                 # restore persisted sessions, start monitors
#     async def shutdown(self):              # cancel background work, persist sessions
#
#     async def create_session(self, working_directory=None, environment=None) -> Session:
#     async def close_session(self, session_id):
#     def switch_session(self, session_id):
#     def create_tab(self, session_id, name="terminal") -> Tab:
#     async def close_tab(self, session_id, tab_id):
#     def split_terminal(self, session_id, orientation=SplitOrientation.HORIZONTAL):
#     def set_tab_preferences(self, session_id, tab_id, font_size=None, color_scheme=None):
#
#     def update_input(self, session_id, tab_id, text) -> asyncio.Task:
#         """Starts advisory analysis for the tab, superseding any analysis still running."""
#     def get_advisories(self, session_id, tab_id) -> List[AdvisoryEvent]:
#     def add_advisory_listener(self, listener):
#
#     async def execute_command(self, session_id, tab_id, command):
#         """Async generator of CommandResultEvent for one submission."""
#         # Ends with Error(SESSION_CLOSED_REASON / TAB_CLOSED_REASON / SHUTDOWN_REASON)
#         # when the command is cancelled by closing its session or tab.
#
#     def get_session(self, session_id) -> Session:   # deep copy
#     sessions (property) -> List[Session]            # deep copies
#
# All operations taking ids raise SessionNotFoundError / TabNotFoundError
# for unknown ids.
#
# --- END API DOCUMENTATION ---

import os
import copy
import time
import uuid
import asyncio
import logging
from types import MappingProxyType
from typing import (
    AsyncIterator, Callable, Dict, Iterable, List, Mapping, Optional, Tuple,
)

import psutil

from universe_terminal.advisory_engine import AdvisoryEngine
from universe_terminal.command_pipeline import CommandPipeline, ExecutionContext
from universe_terminal.errors import SessionNotFoundError, TabNotFoundError
from universe_terminal.learning_tracker import LearningTracker
from universe_terminal.models import (
    AdvisoryEvent, Blocked, ColorScheme, CommandResultEvent, Error, Output, ResultKind,
    Session, SessionStats, SplitOrientation, Tab,
)
from universe_terminal.persistence import SessionStore
from universe_terminal.sandbox import SandboxedFileSystem

logger = logging.getLogger(__name__)

BUSY_TAB_REASON = "A command is already running in this tab"
SESSION_CLOSED_REASON = "Session closed while command was running"
TAB_CLOSED_REASON = "Tab closed while command was running"
SHUTDOWN_REASON = "Terminal shut down while command was running"

TabKey = Tuple[str, str]
AdvisoryListener = Callable[[str, str, List[AdvisoryEvent]], None]

_END_OF_STREAM = object()


class SessionManager:
    def __init__(self, pipeline: CommandPipeline, advisory_engine: AdvisoryEngine,
                 sandbox: SandboxedFileSystem, session_store: Optional[SessionStore] = None,
                 learning_tracker: Optional[LearningTracker] = None,
                 monitor_interval: float = 1.0, idle_timeout: Optional[float] = None):
        self.pipeline = pipeline
        self.advisory_engine = advisory_engine
        self.sandbox = sandbox
        self.session_store = session_store
        self.learning_tracker = learning_tracker
        self.monitor_interval = monitor_interval
        self.idle_timeout = idle_timeout

        # Replaced wholesale on every change; readers never see a half-updated mapping.
        self._sessions: Mapping[str, Session] = MappingProxyType({})
        self.current_session_id: Optional[str] = None

        self._monitors: Dict[str, asyncio.Task] = {}
        self._executions: Dict[TabKey, asyncio.Task] = {}
        self._interrupt_reasons: Dict[asyncio.Task, str] = {}
        self._advisory_tasks: Dict[TabKey, asyncio.Task] = {}
        self._advisory_generation: Dict[TabKey, int] = {}
        self._advisories: Dict[TabKey, List[AdvisoryEvent]] = {}
        self._advisory_listeners: List[AdvisoryListener] = []
        self._process = psutil.Process()

    # --- Lifecycle ---

    async def start(self):
        self.sandbox.ensure_base()
        if self.session_store is None:
            return
        for session in self.session_store.restore_all():
            if not os.path.isdir(session.working_directory):
                logger.warning(f"Restored session {session.id} points at missing directory "
                               f"'{session.working_directory}'; resetting to sandbox root.")
                session.working_directory = os.fspath(self.sandbox.base_dir)
            if not session.tabs:
                session.tabs.append(Tab())
            self._put_session(session)
            self._start_monitor(session.id)
        if self._sessions and self.current_session_id is None:
            self.current_session_id = next(iter(self._sessions))
        logger.info(f"SessionManager started with {len(self._sessions)} restored session(s).")

    async def shutdown(self):
        logger.info("SessionManager shutting down.")
        for task in self._executions.values():
            self._interrupt_reasons[task] = SHUTDOWN_REASON
        tasks = list(self._executions.values()) + list(self._advisory_tasks.values()) + list(self._monitors.values())
        await self._cancel_tasks(tasks)
        self._executions.clear()
        self._advisory_tasks.clear()
        self._monitors.clear()
        for session in self._sessions.values():
            self._persist(session)

    # --- Snapshots ---

    @property
    def sessions(self) -> List[Session]:
        return [copy.deepcopy(s) for s in self._sessions.values()]

    def get_session(self, session_id: str) -> Session:
        return copy.deepcopy(self._require_session(session_id))

    def get_tab(self, session_id: str, tab_id: str) -> Tab:
        return copy.deepcopy(self._require_tab(session_id, tab_id)[1])

    def is_busy(self, session_id: str, tab_id: str) -> bool:
        return (session_id, tab_id) in self._executions

    # --- Sessions ---

    async def create_session(self, working_directory: Optional[str] = None,
                             environment: Optional[Dict[str, str]] = None) -> Session:
        self.sandbox.ensure_base()
        session = Session(
            id=str(uuid.uuid4()),
            working_directory=os.path.abspath(working_directory or os.fspath(self.sandbox.base_dir)),
            environment=dict(environment or {}),
            tabs=[Tab(name="terminal")],
        )
        self._put_session(session)
        self.current_session_id = session.id
        self._start_monitor(session.id)
        self._persist(session)
        logger.info(f"Created session {session.id} in '{session.working_directory}'")
        return copy.deepcopy(session)

    async def close_session(self, session_id: str):
        session = self._require_session(session_id)
        tasks: List[asyncio.Task] = []
        monitor = self._monitors.pop(session_id, None)
        if monitor:
            tasks.append(monitor)
        for tab in session.tabs:
            tasks.extend(self._detach_tab_tasks((session_id, tab.id), SESSION_CLOSED_REASON))
        await self._cancel_tasks(tasks)

        remaining = dict(self._sessions)
        remaining.pop(session_id, None)
        self._sessions = MappingProxyType(remaining)
        if self.current_session_id == session_id:
            self.current_session_id = next(iter(remaining), None)
        if self.session_store is not None:
            self.session_store.delete(session_id)
        logger.info(f"Closed session {session_id}; {len(remaining)} session(s) remain.")

    def switch_session(self, session_id: str):
        self._require_session(session_id)
        self.current_session_id = session_id
        self._touch(session_id)

    def split_terminal(self, session_id: str, orientation: SplitOrientation = SplitOrientation.HORIZONTAL):
        def apply(session: Session):
            session.is_split_mode = True
            session.split_orientation = orientation
        self._persist(self._update_session(session_id, apply))
        logger.info(f"Session {session_id} split {orientation.value}")

    # --- Tabs ---

    def create_tab(self, session_id: str, name: str = "terminal") -> Tab:
        tab = Tab(name=name)
        self._persist(self._update_session(session_id, lambda s: s.tabs.append(tab)))
        logger.info(f"Created tab {tab.id} ('{name}') in session {session_id}")
        return copy.deepcopy(tab)

    async def close_tab(self, session_id: str, tab_id: str):
        self._require_tab(session_id, tab_id)
        await self._cancel_tasks(self._detach_tab_tasks((session_id, tab_id), TAB_CLOSED_REASON))

        def apply(session: Session):
            session.tabs = [t for t in session.tabs if t.id != tab_id]
        self._persist(self._update_session(session_id, apply))
        logger.info(f"Closed tab {tab_id} in session {session_id}")

    def set_tab_preferences(self, session_id: str, tab_id: str, font_size: Optional[float] = None,
                            color_scheme: Optional[ColorScheme] = None):
        if font_size is not None and font_size <= 0:
            raise ValueError(f"Font size must be positive, got {font_size}")

        def apply(tab: Tab):
            if font_size is not None:
                tab.font_size = float(font_size)
            if color_scheme is not None:
                tab.color_scheme = color_scheme
        self._persist(self._update_tab(session_id, tab_id, apply))

    # --- Advisory ---

    def add_advisory_listener(self, listener: AdvisoryListener):
        self._advisory_listeners.append(listener)

    def get_advisories(self, session_id: str, tab_id: str) -> List[AdvisoryEvent]:
        self._require_tab(session_id, tab_id)
        return list(self._advisories.get((session_id, tab_id), []))

    def update_input(self, session_id: str, tab_id: str, text: str) -> asyncio.Task:
        self._update_tab(session_id, tab_id, lambda tab: setattr(tab, "current_input", text))
        key = (session_id, tab_id)

        previous = self._advisory_tasks.get(key)
        if previous is not None and not previous.done():
            previous.cancel()

        generation = self._advisory_generation.get(key, 0) + 1
        self._advisory_generation[key] = generation
        task = asyncio.create_task(self._run_advisory(key, text, generation),
                                   name=f"advisory-{session_id[:8]}-{tab_id[:8]}")
        self._advisory_tasks[key] = task
        return task

    async def _run_advisory(self, key: TabKey, text: str, generation: int):
        try:
            events = await self.advisory_engine.analyze(text)
        except Exception as e:
            logger.error(f"Advisory analysis failed for '{text}': {e}", exc_info=True)
            return
        if self._advisory_generation.get(key) != generation:
            logger.debug(f"Discarding stale advisory result for '{text}'")
            return
        self._publish_advisories(key, events)

    def _publish_advisories(self, key: TabKey, events: List[AdvisoryEvent]):
        if key[0] not in self._sessions:
            return
        self._advisories[key] = list(events)
        for listener in list(self._advisory_listeners):
            try:
                listener(key[0], key[1], list(events))
            except Exception as e:
                logger.error(f"Advisory listener {listener!r} failed: {e}", exc_info=True)

    # --- Execution ---

    async def execute_command(self, session_id: str, tab_id: str, command: str) -> AsyncIterator[CommandResultEvent]:
        session, _ = self._require_tab(session_id, tab_id)
        command = command.strip()
        if not command:
            return

        key = (session_id, tab_id)
        if key in self._executions:
            logger.warning(f"Rejected '{command}': tab {tab_id} already has a command in flight.")
            yield Blocked(command=command, reason=BUSY_TAB_REASON)
            return

        self._touch(session_id)
        context = ExecutionContext(
            command=command,
            session_id=session_id,
            tab_id=tab_id,
            working_directory=session.working_directory,
            environment=dict(session.environment),
        )
        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(self._run_execution(context, queue),
                                   name=f"exec-{session_id[:8]}-{tab_id[:8]}")
        self._executions[key] = task
        finished = False
        try:
            while True:
                event = await queue.get()
                if event is _END_OF_STREAM:
                    break
                if isinstance(event, Output) and event.working_directory:
                    self._set_working_directory(session_id, event.working_directory)
                if event.is_terminal:
                    finished = True
                    self._after_execution(context, event)
                yield event

            # asyncio.wait does not re-raise the task's cancellation into this frame.
            await asyncio.wait({task})
            if not finished and task.cancelled():
                reason = self._interrupt_reasons.get(task, SHUTDOWN_REASON)
                logger.warning(f"'{command}' in tab {tab_id} was interrupted: {reason}")
                yield Error(reason)
        finally:
            if not task.done():
                task.cancel()
            await asyncio.wait({task})
            self._interrupt_reasons.pop(task, None)
            if self._executions.get(key) is task:
                del self._executions[key]

    async def _run_execution(self, context: ExecutionContext, queue: asyncio.Queue):
        def record(cmd: str):
            self._append_history(context.session_id, context.tab_id, cmd)

        stream = self.pipeline.run(context, record_history=record)
        try:
            async for event in stream:
                await queue.put(event)
        except Exception as e:
            logger.error(f"Pipeline failed for '{context.command}': {e}", exc_info=True)
            await queue.put(Error(f"Internal error while running command: {e}"))
        finally:
            try:
                # Cancelled while parked on queue.put: the pipeline must still kill and record.
                await stream.aclose()
            finally:
                queue.put_nowait(_END_OF_STREAM)

    def _after_execution(self, context: ExecutionContext, event: CommandResultEvent):
        session = self._sessions.get(context.session_id)
        if session is None:
            return
        if event.kind is ResultKind.COMPLETE and self.learning_tracker is not None:
            self.learning_tracker.record_command(context.command)
        tips = self.advisory_engine.post_submit(context.command)
        if tips:
            self._publish_advisories((context.session_id, context.tab_id), tips)
        self._persist(session)

    def _append_history(self, session_id: str, tab_id: str, command: str):
        if session_id not in self._sessions:
            logger.debug(f"Session {session_id} closed before '{command}' could be recorded.")
            return
        try:
            self._update_tab(session_id, tab_id, lambda tab: tab.command_history.append(command))
        except TabNotFoundError:
            logger.debug(f"Tab {tab_id} closed before '{command}' could be recorded.")

    def _set_working_directory(self, session_id: str, working_directory: str):
        if session_id not in self._sessions:
            return
        self._update_session(session_id, lambda s: setattr(s, "working_directory", working_directory))
        logger.info(f"Session {session_id} working directory is now '{working_directory}'")

    # --- Monitoring ---

    def _start_monitor(self, session_id: str):
        self._monitors[session_id] = asyncio.create_task(
            self._monitor_session(session_id), name=f"monitor-{session_id[:8]}")

    async def _monitor_session(self, session_id: str):
        logger.debug(f"Monitor started for session {session_id}")
        while True:
            await asyncio.sleep(self.monitor_interval)
            session = self._sessions.get(session_id)
            if session is None:
                break
            try:
                stats = self._collect_stats(session)
                idle = (self.idle_timeout is not None
                        and time.time() - session.last_activity >= self.idle_timeout)
                if idle and not session.is_idle:
                    logger.info(f"Session {session_id} is idle (no activity for {self.idle_timeout}s)")

                def apply(s: Session):
                    s.stats = stats
                    s.is_idle = idle
                self._update_session(session_id, apply)
            except SessionNotFoundError:
                break
            except Exception as e:
                logger.error(f"Monitor for session {session_id} failed: {e}", exc_info=True)
        logger.debug(f"Monitor stopped for session {session_id}")

    def _collect_stats(self, session: Session) -> SessionStats:
        memory = self._process.memory_info().rss
        for child in self._process.children(recursive=True):
            try:
                memory += child.memory_info().rss
            except psutil.NoSuchProcess:
                continue
        return SessionStats(
            cpu_usage=self._process.cpu_percent(interval=None),
            memory_usage=memory,
            uptime=time.time() - session.created_at,
        )

    # --- Internal registry helpers ---

    def _require_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _require_tab(self, session_id: str, tab_id: str) -> Tuple[Session, Tab]:
        session = self._require_session(session_id)
        tab = session.find_tab(tab_id)
        if tab is None:
            raise TabNotFoundError(session_id, tab_id)
        return session, tab

    def _put_session(self, session: Session):
        updated = dict(self._sessions)
        updated[session.id] = session
        self._sessions = MappingProxyType(updated)

    def _update_session(self, session_id: str, apply: Callable[[Session], None]) -> Session:
        session = copy.deepcopy(self._require_session(session_id))
        apply(session)
        self._put_session(session)
        return session

    def _update_tab(self, session_id: str, tab_id: str, apply: Callable[[Tab], None]) -> Session:
        self._require_tab(session_id, tab_id)

        def apply_to_session(session: Session):
            apply(session.find_tab(tab_id))
        return self._update_session(session_id, apply_to_session)

    def _touch(self, session_id: str):
        def apply(session: Session):
            session.last_activity = time.time()
            session.is_idle = False
        self._update_session(session_id, apply)

    def _detach_tab_tasks(self, key: TabKey, reason: str) -> List[asyncio.Task]:
        self._advisory_generation.pop(key, None)
        self._advisories.pop(key, None)
        execution = self._executions.pop(key, None)
        if execution is not None:
            self._interrupt_reasons[execution] = reason
        return [t for t in (execution, self._advisory_tasks.pop(key, None)) if t is not None]

    async def _cancel_tasks(self, tasks: Iterable[asyncio.Task]):
        pending = [t for t in tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)

    def _persist(self, session: Session):
        if self.session_store is not None:
            self.session_store.save(session)
