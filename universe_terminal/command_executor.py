# --- API DOCUMENTATION for universe_terminal/command_executor.py ---
#
# **Purpose:** Runs a single command and streams its results. Built-in commands
# are handled in-process; everything else is handed to the system shell.
#
# **Public Classes:**
#
# class CommandExecutor:
#     def __init__(self, sandbox, timeout_seconds=60.0, shell_executable=None):
#         """
#         Args:
#             sandbox (SandboxedFileSystem): Root used for `~` and the /sandbox built-in.
#             timeout_seconds (float): Hard limit for external commands.
#             shell_executable (str | None): Shell used for external commands
#                 (defaults to the platform shell, /bin/sh on POSIX).
#         """
#
#     def is_builtin(self, name: str) -> bool:
#
#     async def execute(self, command, working_directory, environment=None):
#         """
#         Async generator of CommandResultEvent. Each call is a fresh stream.
#         Yields zero or more Output events followed by exactly one terminal
#         event (Complete or Error). Closing or cancelling the stream kills the
#         external process.
#         """
#
# --- END API DOCUMENTATION ---

import asyncio
import os
import signal
import logging
from typing import AsyncIterator, Callable, Dict, List, Optional

from universe_terminal.models import (
    Complete, CommandResultEvent, Control, Error, Output, ParsedCommand, parse_command,
)
from universe_terminal.sandbox import SandboxedFileSystem

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
STREAM_LIMIT_BYTES = 1024 * 1024
CLEAR_SCREEN_SEQUENCE = "\u001b[2J\u001b[H"

BuiltinHandler = Callable[[ParsedCommand, str], List[CommandResultEvent]]


class CommandExecutor:
    def __init__(self, sandbox: SandboxedFileSystem,
                 timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
                 shell_executable: Optional[str] = None):
        self.sandbox = sandbox
        self.timeout_seconds = timeout_seconds
        self.shell_executable = shell_executable
        self.builtins: Dict[str, BuiltinHandler] = {
            "cd": self._builtin_cd,
            "pwd": self._builtin_pwd,
            "clear": self._builtin_clear,
            "exit": self._builtin_exit,
            "/sandbox": self._builtin_sandbox,
        }
        logger.info(f"CommandExecutor initialized. Timeout: {self.timeout_seconds}s, "
                    f"built-ins: {', '.join(sorted(self.builtins))}")

    def is_builtin(self, name: str) -> bool:
        return name in self.builtins

    async def execute(self, command: str, working_directory: str,
                      environment: Optional[Dict[str, str]] = None) -> AsyncIterator[CommandResultEvent]:
        parsed = parse_command(command)
        if not parsed.name:
            yield Complete()
            return

        handler = self.builtins.get(parsed.name)
        if handler is not None:
            logger.info(f"Executing built-in '{parsed.name}' in '{working_directory}'")
            for event in handler(parsed, working_directory):
                yield event
            return

        stream = self._execute_external(command, working_directory, environment)
        try:
            async for event in stream:
                yield event
        finally:
            await stream.aclose()

    # --- External commands ---

    async def _execute_external(self, command: str, working_directory: str,
                                environment: Optional[Dict[str, str]]) -> AsyncIterator[CommandResultEvent]:
        env = {**os.environ, **environment} if environment else None
        logger.info(f"Executing command: '{command}' in '{working_directory}'")
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=working_directory,
                env=env,
                executable=self.shell_executable,
                start_new_session=True,
                limit=STREAM_LIMIT_BYTES,
            )
        except OSError as e:
            logger.error(f"Failed to start '{command}' in '{working_directory}': {e}")
            yield Error(f"Failed to start '{command}': {e.strerror or e}")
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                try:
                    line = await asyncio.wait_for(process.stdout.readline(), timeout=remaining)
                except ValueError:
                    # Line longer than the stream limit; its content is discarded by the reader.
                    yield Output(f"[output line longer than {STREAM_LIMIT_BYTES} bytes skipped]")
                    continue
                if not line:
                    break
                yield Output(line.decode(errors='replace').rstrip("\r\n"))

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError()
            returncode = await asyncio.wait_for(process.wait(), timeout=remaining)
        except asyncio.TimeoutError:
            logger.warning(f"Command '{command}' timed out after {self.timeout_seconds}s; killing it.")
            await self._terminate(process)
            yield Error(f"Command timed out after {self.timeout_seconds:g} seconds")
            return
        finally:
            if process.returncode is None:
                logger.info(f"Stream for '{command}' closed before the process exited; killing pid {process.pid}.")
                await self._terminate(process)

        if returncode == 0:
            yield Complete()
        else:
            logger.warning(f"Command '{command}' exited with code {returncode}")
            yield Error(f"Command failed with exit code: {returncode}", exit_code=returncode)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Kills the process and its process group, then reaps it."""
        if process.returncode is None:
            try:
                if hasattr(os, "killpg"):
                    os.killpg(process.pid, signal.SIGKILL)
                else:
                    process.kill()
            except ProcessLookupError:
                logger.debug(f"Process {process.pid} already exited before kill.")
        try:
            await asyncio.wait_for(process.wait(), timeout=5)
        except asyncio.TimeoutError:
            logger.error(f"Process {process.pid} did not exit after SIGKILL.")

    # --- Built-ins ---

    def _builtin_cd(self, parsed: ParsedCommand, working_directory: str) -> List[CommandResultEvent]:
        target = " ".join(parsed.args) if parsed.args else "~"
        sandbox_root = os.fspath(self.sandbox.base_dir)

        if target == "~":
            new_dir = sandbox_root
        elif target.startswith("~/"):
            new_dir = os.path.join(sandbox_root, target[2:])
        elif os.path.isabs(target):
            new_dir = target
        else:
            new_dir = os.path.join(working_directory, target)
        new_dir = os.path.abspath(new_dir)

        if not os.path.isdir(new_dir):
            logger.warning(f"Failed cd to '{new_dir}'. Target '{target}' does not exist or is not a directory.")
            return [Error(f"Directory not found: {target}")]

        logger.info(f"Directory changed to: {new_dir}")
        return [Output(new_dir, working_directory=new_dir), Complete()]

    def _builtin_pwd(self, parsed: ParsedCommand, working_directory: str) -> List[CommandResultEvent]:
        return [Output(working_directory), Complete()]

    def _builtin_clear(self, parsed: ParsedCommand, working_directory: str) -> List[CommandResultEvent]:
        return [Output(CLEAR_SCREEN_SEQUENCE, control=Control.CLEAR), Complete()]

    def _builtin_exit(self, parsed: ParsedCommand, working_directory: str) -> List[CommandResultEvent]:
        return [Output("Session terminated", control=Control.EXIT), Complete()]

    def _builtin_sandbox(self, parsed: ParsedCommand, working_directory: str) -> List[CommandResultEvent]:
        usage = "Usage: /sandbox ls [path] | touch <path> | rm <path>"
        if not parsed.args or parsed.args[0] not in ("ls", "touch", "rm"):
            return [Error(usage)]

        action = parsed.args[0]
        raw_path = " ".join(parsed.args[1:]) or ("." if action == "ls" else "")
        if not raw_path:
            return [Error(usage)]

        joined = raw_path if os.path.isabs(raw_path) else os.path.join(working_directory, raw_path)
        target = self.sandbox.resolve(joined)
        if target is None:
            return [Error(f"'{raw_path}' is outside the sandbox ({self.sandbox.base_dir})")]

        if action == "ls":
            if not target.is_dir():
                return [Error(f"Not a directory: {raw_path}")]
            events: List[CommandResultEvent] = [
                Output(entry.name + ("/" if entry.is_dir() else "")) for entry in self.sandbox.list(target)
            ]
            events.append(Complete())
            return events
        if action == "touch":
            if not self.sandbox.create(target):
                return [Error(f"Could not create '{raw_path}' (it may already exist)")]
            return [Output(f"Created {target}"), Complete()]
        if not self.sandbox.delete(target):
            return [Error(f"Could not delete '{raw_path}' (missing, non-empty or the sandbox root)")]
        return [Output(f"Deleted {target}"), Complete()]
