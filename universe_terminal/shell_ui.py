# universe_terminal/shell_ui.py

import os
import logging
from typing import List, Optional, Tuple

from prompt_toolkit import PromptSession, print_formatted_text
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout
from prompt_toolkit.shortcuts import clear
from prompt_toolkit.styles import Style

from universe_terminal.advisory_engine import AdvisoryEngine
from universe_terminal.errors import UniverseTerminalError
from universe_terminal.learning_tracker import Level, LearningTracker, LEARNING_PATH_NAME
from universe_terminal.models import (
    AdvisoryEvent, AdvisoryKind, Control, ResultKind, Severity, SplitOrientation,
)
from universe_terminal.session_manager import SessionManager

logger = logging.getLogger(__name__)

STYLE = Style.from_dict({
    'prompt': '#61afef bold', 'default': '#abb2bf',
    'welcome': 'bold #86c07c', 'info': '#61afef',
    'info-header': 'bold #61afef', 'info-item': '#abb2bf',
    'success': '#98c379', 'error': '#e06c75', 'warning': '#d19a66',
    'security-critical': 'bold #e06c75 bg:#5c0000', 'security-warning': '#e06c75',
    'typo': 'italic #e5c07b', 'suggestion': '#c678dd', 'tip': 'italic #56b6c2',
    'explanation': '#abb2bf', 'level-up': 'bold #e5c07b',
    'help-title': 'bold underline #e5c07b', 'help-command': '#c678dd', 'help-description': '#abb2bf',
    'bottom-toolbar': 'bg:#282c34 #abb2bf',
})

WELCOME_MESSAGE = (
    "Welcome to Universe Terminal 🌌\n"
    "Type a command to run it in the current session. Suggestions appear below as you type.\n"
    "Type '/help' for session, tab and learning commands.\n"
)

HELP_ENTRIES = [
    ("/help", "Show this help"),
    ("/session new|list|switch <n>|close [n]", "Manage sessions"),
    ("/tab new [name]|list|switch <n>|close [n]", "Manage tabs in the current session"),
    ("/split [horizontal|vertical]", "Split the current session's view"),
    ("/explain <command>", "Explain a command and its arguments"),
    ("/level", "Show experience, level, achievements and the next objective"),
    ("/sandbox ls|touch|rm <path>", "Work with files inside the sandbox"),
    ("/exit", "Quit Universe Terminal"),
]

# /sandbox is a built-in of the executor, not a front-end command.
SLASH_COMMANDS = frozenset(entry.split()[0] for entry, _ in HELP_ENTRIES) - {"/sandbox"}

SEVERITY_STYLES = {
    Severity.CRITICAL: 'class:security-critical',
    Severity.HIGH: 'class:security-warning',
    Severity.MEDIUM: 'class:warning',
    Severity.LOW: 'class:warning',
}


class ShellUI:
    """prompt_toolkit front-end: one prompt, live advisories in the bottom toolbar."""

    def __init__(self, manager: SessionManager, advisory_engine: AdvisoryEngine,
                 learning_tracker: Optional[LearningTracker], config: dict, history_path: str):
        self.manager = manager
        self.advisory_engine = advisory_engine
        self.learning_tracker = learning_tracker
        self.config = config
        self.current_tab_id: Optional[str] = None
        self.show_advisories = config.get('ui', {}).get('show_advisories', True)
        self.max_prompt_len = config.get('ui', {}).get('max_prompt_length', 20)

        self.prompt_session = PromptSession(
            history=FileHistory(history_path),
            bottom_toolbar=self._bottom_toolbar if self.show_advisories else None,
            style=STYLE,
        )
        self.prompt_session.default_buffer.on_text_changed += self._on_text_changed
        self.manager.add_advisory_listener(self._on_advisories)
        if self.learning_tracker is not None:
            self.learning_tracker.add_level_up_listener(self._on_level_up)

    # --- Output helpers ---

    def append_output(self, text: str, style_class: str = 'default'):
        print_formatted_text(FormattedText([(f'class:{style_class}', text)]), style=STYLE)
        logger.debug(f"UI_OUTPUT ({style_class}): {text.strip()}")

    # --- Main loop ---

    async def run(self):
        if not self.manager.sessions:
            await self.manager.create_session()
        self._select_default_tab()
        self.append_output(WELCOME_MESSAGE, 'welcome')

        with patch_stdout():
            while True:
                try:
                    text = await self.prompt_session.prompt_async(self._prompt_message)
                except KeyboardInterrupt:
                    continue
                except EOFError:
                    logger.info("EOF received at prompt; leaving shell loop.")
                    break
                try:
                    if not await self.handle_line(text):
                        break
                except UniverseTerminalError as e:
                    logger.warning(f"Command '{text}' failed: {e}")
                    self.append_output(f"❌ {e}", 'error')

    async def handle_line(self, text: str) -> bool:
        """Processes one submitted line. Returns False when the shell should exit."""
        stripped = text.strip()
        if not stripped:
            return True
        logger.info(f"User input: '{stripped}'")

        if stripped.split()[0] in ("/exit", "/quit"):
            return False
        if stripped.split()[0] in SLASH_COMMANDS:
            await self._handle_slash_command(stripped)
            return True

        session_id, tab_id = self._current_ids()
        keep_running = True
        async for event in self.manager.execute_command(session_id, tab_id, stripped):
            if event.kind is ResultKind.OUTPUT:
                if event.control is Control.CLEAR:
                    clear()
                elif event.control is Control.EXIT:
                    self.append_output(event.text, 'info')
                    keep_running = await self._end_current_session()
                elif event.working_directory:
                    self.append_output(f"📂 {event.text}", 'info')
                else:
                    self.append_output(event.text)
            elif event.kind is ResultKind.ERROR:
                self.append_output(f"❌ {event.message}", 'error')
            elif event.kind is ResultKind.BLOCKED:
                self.append_output(f"⛔ Blocked: {event.reason}", 'security-critical')
        return keep_running

    # --- Slash commands ---

    async def _handle_slash_command(self, text: str):
        parts = text.split()
        command, args = parts[0], parts[1:]
        if command == "/help":
            self._show_help()
        elif command == "/session":
            await self._handle_session_command(args)
        elif command == "/tab":
            await self._handle_tab_command(args)
        elif command == "/split":
            orientation = SplitOrientation.VERTICAL if args[:1] == ["vertical"] else SplitOrientation.HORIZONTAL
            self.manager.split_terminal(self._current_ids()[0], orientation)
            self.append_output(f"🪟 Split mode enabled ({orientation.value}).", 'success')
        elif command == "/explain":
            if not args:
                self.append_output("Usage: /explain <command>", 'warning')
            else:
                self.append_output(self.advisory_engine.explain(" ".join(args)), 'explanation')
        elif command == "/level":
            self._show_level()

    async def _handle_session_command(self, args: List[str]):
        action = args[0] if args else "list"
        sessions = self.manager.sessions
        if action == "new":
            session = await self.manager.create_session()
            self.current_tab_id = session.tabs[0].id
            self.append_output(f"✨ Created session {len(sessions) + 1} ({session.id[:8]}).", 'success')
        elif action == "list":
            for index, session in enumerate(sessions, start=1):
                marker = "*" if session.id == self.manager.current_session_id else " "
                self.append_output(
                    f"{marker} {index}. {session.id[:8]}  {session.working_directory}  "
                    f"tabs={len(session.tabs)}  cpu={session.stats.cpu_usage:.1f}%  "
                    f"mem={session.stats.memory_usage // (1024 * 1024)}MiB"
                    f"{'  (idle)' if session.is_idle else ''}", 'info-item')
        elif action in ("switch", "close"):
            target = self._pick(sessions, args[1:], default_id=self.manager.current_session_id)
            if target is None:
                self.append_output(f"Usage: /session {action} <number>", 'warning')
            elif action == "switch":
                self.manager.switch_session(target.id)
                self._select_default_tab()
                self.append_output(f"🔀 Switched to session {target.id[:8]}.", 'success')
            else:
                await self.manager.close_session(target.id)
                self.append_output(f"🗑️ Closed session {target.id[:8]}.", 'success')
                if not self.manager.sessions:
                    await self.manager.create_session()
                self._select_default_tab()
        else:
            self.append_output("Usage: /session new|list|switch <n>|close [n]", 'warning')

    async def _handle_tab_command(self, args: List[str]):
        session_id, tab_id = self._current_ids()
        action = args[0] if args else "list"
        tabs = self.manager.get_session(session_id).tabs
        if action == "new":
            tab = self.manager.create_tab(session_id, " ".join(args[1:]) or "terminal")
            self.current_tab_id = tab.id
            self.append_output(f"✨ Opened tab '{tab.name}'.", 'success')
        elif action == "list":
            for index, tab in enumerate(tabs, start=1):
                marker = "*" if tab.id == tab_id else " "
                self.append_output(f"{marker} {index}. {tab.name}  ({len(tab.command_history)} commands)", 'info-item')
        elif action in ("switch", "close"):
            target = self._pick(tabs, args[1:], default_id=tab_id)
            if target is None:
                self.append_output(f"Usage: /tab {action} <number>", 'warning')
            elif action == "switch":
                self.current_tab_id = target.id
                self.append_output(f"🔀 Switched to tab '{target.name}'.", 'success')
            elif len(tabs) == 1:
                self.append_output("Cannot close the last tab of a session; use /session close instead.", 'warning')
            else:
                await self.manager.close_tab(session_id, target.id)
                self._select_default_tab()
                self.append_output(f"🗑️ Closed tab '{target.name}'.", 'success')
        else:
            self.append_output("Usage: /tab new [name]|list|switch <n>|close [n]", 'warning')

    def _show_help(self):
        self.append_output("Universe Terminal commands", 'help-title')
        for command, description in HELP_ENTRIES:
            print_formatted_text(FormattedText([
                ('class:help-command', f"  {command:<45}"),
                ('class:help-description', description),
            ]), style=STYLE)

    def _show_level(self):
        tracker = self.learning_tracker
        if tracker is None:
            self.append_output("Learning progress is not enabled.", 'info')
            return
        self.append_output(f"🏆 Level: {tracker.level.title}  ({tracker.experience} XP)", 'info-header')
        state = tracker.state
        if state.achievements:
            self.append_output("Achievements: " + ", ".join(state.achievements), 'info-item')
        unlocked = state.unlocked_features + state.unlocked_themes + state.badges
        if unlocked:
            self.append_output("Unlocked: " + ", ".join(unlocked), 'info-item')
        objective = tracker.next_objective()
        if objective:
            self.append_output(f"🎯 Next objective: {objective.title} - {objective.description} "
                               f"({', '.join(objective.commands)}; +{objective.xp_reward} XP)", 'info')
        self.append_output(f"📚 {LEARNING_PATH_NAME}", 'info-header')
        for module, done in tracker.learning_path_progress():
            self.append_output(f"  {module.name}: {done}/{len(module.lessons)} lessons", 'info-item')

    # --- Callbacks ---

    def _on_text_changed(self, buffer):
        if not self.show_advisories or self.current_tab_id is None:
            return
        session_id = self.manager.current_session_id
        if session_id is None:
            return
        try:
            self.manager.update_input(session_id, self.current_tab_id, buffer.text)
        except UniverseTerminalError as e:
            logger.warning(f"Could not update advisory input: {e}")

    def _on_advisories(self, session_id: str, tab_id: str, events: List[AdvisoryEvent]):
        if session_id == self.manager.current_session_id and tab_id == self.current_tab_id:
            self.prompt_session.app.invalidate()

    def _on_level_up(self, level: Level):
        self.append_output(f"🎉 Level up! You are now a {level.title}.", 'level-up')

    def _bottom_toolbar(self):
        session_id, tab_id = self.manager.current_session_id, self.current_tab_id
        if session_id is None or tab_id is None:
            return ""
        try:
            events = self.manager.get_advisories(session_id, tab_id)
        except UniverseTerminalError:
            return ""
        return FormattedText(self._format_advisories(events))

    def _format_advisories(self, events: List[AdvisoryEvent]) -> List[Tuple[str, str]]:
        fragments: List[Tuple[str, str]] = []
        for event in events:
            if event.kind is AdvisoryKind.TYPO_CORRECTION:
                fragments.append(('class:typo', f" Did you mean: {event.correction} ? "))
            elif event.kind is AdvisoryKind.SUGGESTIONS:
                names = "  ".join(s.command for s in event.suggestions)
                fragments.append(('class:suggestion', f" 💡 {names} "))
            elif event.kind is AdvisoryKind.WARNING:
                fragments.append((SEVERITY_STYLES[event.severity], f" {event.message} "))
            elif event.kind is AdvisoryKind.LEARNING_TIP:
                fragments.append(('class:tip', f" {event.tips[0]} "))
        return fragments

    # --- Session/tab selection ---

    def _current_ids(self) -> Tuple[str, str]:
        session_id = self.manager.current_session_id
        if session_id is None or self.current_tab_id is None:
            raise UniverseTerminalError("No active session; use '/session new'.")
        return session_id, self.current_tab_id

    def _select_default_tab(self):
        session_id = self.manager.current_session_id
        if session_id is None:
            self.current_tab_id = None
            return
        tabs = self.manager.get_session(session_id).tabs
        if not any(t.id == self.current_tab_id for t in tabs):
            self.current_tab_id = tabs[0].id if tabs else None

    async def _end_current_session(self) -> bool:
        session_id = self.manager.current_session_id
        if session_id is not None:
            await self.manager.close_session(session_id)
        if not self.manager.sessions:
            return False
        self._select_default_tab()
        return True

    def _prompt_message(self):
        session_id = self.manager.current_session_id
        if session_id is None:
            return FormattedText([('class:prompt', "(no session) > ")])
        directory = self.manager.get_session(session_id).working_directory
        sandbox_root = os.fspath(self.manager.sandbox.base_dir)
        if directory == sandbox_root:
            shown = "~"
        elif directory.startswith(sandbox_root + os.sep):
            shown = "~/" + directory[len(sandbox_root) + 1:]
        else:
            shown = directory
        if len(shown) > self.max_prompt_len:
            shown = "..." + shown[-(self.max_prompt_len - 3):]
        return FormattedText([('class:prompt', f"({shown}) > ")])

    @staticmethod
    def _pick(items, args: List[str], default_id: Optional[str]):
        """Item by 1-based index from args, or the item with default_id when no index is given."""
        if not args:
            return next((item for item in items if item.id == default_id), None)
        try:
            index = int(args[0]) - 1
        except ValueError:
            return next((item for item in items if item.id.startswith(args[0])), None)
        return items[index] if 0 <= index < len(items) else None
