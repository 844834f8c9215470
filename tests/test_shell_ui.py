# tests/test_shell_ui.py

import asyncio
import sys
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from prompt_toolkit.application import create_app_session
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.output import DummyOutput

from universe_terminal.advisory_engine import AdvisoryEngine
from universe_terminal.command_executor import CommandExecutor
from universe_terminal.command_pipeline import CommandPipeline
from universe_terminal.learning_tracker import Level, LearningTracker
from universe_terminal.models import AdvisoryWarning, Severity, TypoCorrection
from universe_terminal.session_manager import SessionManager
from universe_terminal.shell_ui import ShellUI

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="shell UI tests use a POSIX shell")


@pytest.fixture
def app_session():
    """Runs prompt_toolkit against a pipe input and a dummy output instead of the real terminal."""
    with create_pipe_input() as pipe_input:
        with create_app_session(input=pipe_input, output=DummyOutput()):
            yield


@pytest_asyncio.fixture
async def ui(app_session, sandbox, safety_engine, catalog, tmp_path, mocker):
    tracker = LearningTracker()
    executor = CommandExecutor(sandbox, timeout_seconds=5)
    advisory = AdvisoryEngine(catalog, safety_engine, tip_provider=tracker, builtin_names=executor.builtins)
    manager = SessionManager(CommandPipeline(safety_engine, executor), advisory, sandbox, monitor_interval=3600)
    await manager.start()
    await manager.create_session()

    shell = ShellUI(manager, advisory, tracker, {"ui": {"max_prompt_length": 20}}, str(tmp_path / "history"))
    shell._select_default_tab()
    mocker.patch.object(shell, "append_output")
    yield shell
    await manager.shutdown()


def printed(ui):
    return [call.args[0] for call in ui.append_output.call_args_list]


@pytest.mark.asyncio
async def test_exit_commands_stop_the_loop(ui):
    assert await ui.handle_line("/exit") is False
    assert await ui.handle_line("/quit") is False
    assert await ui.handle_line("   ") is True


@pytest.mark.asyncio
async def test_command_output_is_printed(ui, sandbox):
    assert await ui.handle_line("pwd") is True
    ui.append_output.assert_any_call(str(sandbox.base_dir))


@pytest.mark.asyncio
async def test_blocked_command_is_reported(ui):
    await ui.handle_line("rm -rf /")
    ui.append_output.assert_any_call(
        "⛔ Blocked: Authorization failed: no authorization provider available", 'security-critical')


@pytest.mark.asyncio
async def test_error_is_reported(ui):
    await ui.handle_line("cd /definitely/not/here")
    ui.append_output.assert_any_call("❌ Directory not found: /definitely/not/here", 'error')


@pytest.mark.asyncio
async def test_prompt_shows_directory_relative_to_sandbox(ui, sandbox):
    assert ui._prompt_message()[0][1] == "(~) > "
    (sandbox.base_dir / "projects").mkdir()
    await ui.handle_line("cd projects")
    assert ui._prompt_message()[0][1] == "(~/projects) > "
    ui.append_output.assert_any_call(f"📂 {sandbox.base_dir / 'projects'}", 'info')


@pytest.mark.asyncio
async def test_session_commands(ui):
    first_session = ui.manager.current_session_id
    await ui.handle_line("/session new")
    assert len(ui.manager.sessions) == 2
    assert ui.manager.current_session_id != first_session

    await ui.handle_line("/session switch 1")
    assert ui.manager.current_session_id == first_session
    assert ui.current_tab_id == ui.manager.get_session(first_session).tabs[0].id

    ui.append_output.reset_mock()
    await ui.handle_line("/session list")
    assert printed(ui)[0].startswith(f"* 1. {first_session[:8]}")

    await ui.handle_line("/session close")
    assert [s.id for s in ui.manager.sessions] != [first_session]
    assert len(ui.manager.sessions) == 1


@pytest.mark.asyncio
async def test_tab_commands(ui):
    session_id = ui.manager.current_session_id
    original_tab = ui.current_tab_id

    await ui.handle_line("/tab close")
    ui.append_output.assert_any_call(
        "Cannot close the last tab of a session; use /session close instead.", 'warning')

    await ui.handle_line("/tab new build")
    assert ui.current_tab_id != original_tab
    assert [t.name for t in ui.manager.get_session(session_id).tabs] == ["terminal", "build"]

    await ui.handle_line("/tab switch 1")
    assert ui.current_tab_id == original_tab

    await ui.handle_line("/tab close 2")
    assert [t.name for t in ui.manager.get_session(session_id).tabs] == ["terminal"]


@pytest.mark.asyncio
async def test_exit_builtin_closes_last_session(ui):
    assert await ui.handle_line("exit") is False
    assert ui.manager.sessions == []


@pytest.mark.asyncio
async def test_exit_builtin_keeps_running_with_other_sessions(ui):
    await ui.handle_line("/session new")
    assert await ui.handle_line("exit") is True
    assert len(ui.manager.sessions) == 1
    assert ui.current_tab_id == ui.manager.sessions[0].tabs[0].id


@pytest.mark.asyncio
async def test_explain_command(ui):
    await ui.handle_line("/explain ls -l")
    assert printed(ui)[-1].startswith("📌 ls")


@pytest.mark.asyncio
async def test_absolute_path_commands_reach_the_shell(ui):
    assert await ui.handle_line("/bin/echo hello") is True
    ui.append_output.assert_any_call("hello")

    await ui.handle_line("/frobnicate")
    ui.append_output.assert_any_call("❌ Command failed with exit code: 127", 'error')


@pytest.mark.asyncio
async def test_level_report_and_level_up_message(ui):
    ui.learning_tracker.grant_experience(100)
    ui.append_output.assert_any_call(f"🎉 Level up! You are now a {Level.HACKER.title}.", 'level-up')

    await ui.handle_line("/level")
    assert any(line.startswith("🏆 Level: Hacker") for line in printed(ui))


@pytest.mark.asyncio
async def test_typing_updates_advisories(ui):
    ui._on_text_changed(MagicMock(text="sl -la"))
    for _ in range(50):
        if ui.manager.get_advisories(ui.manager.current_session_id, ui.current_tab_id):
            break
        await asyncio.sleep(0.01)

    fragments = ui._bottom_toolbar()
    assert ('class:typo', " Did you mean: ls -la ? ") in list(fragments)


@pytest.mark.asyncio
async def test_format_advisories_styles_by_severity(ui):
    fragments = ui._format_advisories([
        TypoCorrection("gti", "git", 0.33),
        AdvisoryWarning("Recursive deletion detected", Severity.CRITICAL),
    ])
    assert fragments == [
        ('class:typo', " Did you mean: git ? "),
        ('class:security-critical', " Recursive deletion detected "),
    ]
