# tests/test_command_pipeline.py

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from universe_terminal.command_pipeline import (
    AUTHORIZATION_TITLE, CommandPipeline, ExecutionContext, PipelineState,
)
from universe_terminal.models import Blocked, Complete, Error, Output, ResultKind
from universe_terminal.plugin_hooks import HookPoint, HookRegistry


class FakeExecutor:
    """Replays a scripted list of events and records every call."""

    def __init__(self, events=None, hang_after_events=False):
        self.events = events if events is not None else [Output("hello"), Complete()]
        self.hang_after_events = hang_after_events
        self.calls = []
        self.closed = False

    async def execute(self, command, working_directory, environment=None):
        self.calls.append((command, working_directory, environment))
        try:
            for event in self.events:
                yield event
            if self.hang_after_events:
                await asyncio.sleep(3600)
        finally:
            self.closed = True


def make_authorizer(answer=True, side_effect=None):
    authorizer = MagicMock()
    authorizer.request = AsyncMock(return_value=answer, side_effect=side_effect)
    return authorizer


def make_context(command, cwd="/home/user"):
    return ExecutionContext(command=command, session_id="session-1", tab_id="tab-1", working_directory=cwd)


async def run(pipeline, context, history=None):
    record = history.append if history is not None else None
    return [event async for event in pipeline.run(context, record_history=record)]


@pytest.mark.asyncio
async def test_denied_authorization_blocks_without_executing(safety_engine):
    executor = FakeExecutor()
    authorizer = make_authorizer(answer=False)
    pipeline = CommandPipeline(safety_engine, executor, authorizer=authorizer)
    context = make_context("rm -rf /")
    history = []

    events = await run(pipeline, context, history)

    assert len(events) == 1
    assert isinstance(events[0], Blocked)
    assert events[0].command == "rm -rf /"
    assert events[0].reason == "Authorization failed: denied by user"
    assert executor.calls == []
    assert history == ["rm -rf /"]
    title, subtitle = authorizer.request.await_args.args
    assert title.startswith(AUTHORIZATION_TITLE)
    assert subtitle == "rm -rf /"
    assert context.transitions == [
        PipelineState.RECEIVED, PipelineState.SAFETY_CHECKED, PipelineState.AUTHORIZATION_PENDING,
        PipelineState.DENIED, PipelineState.BLOCKED,
    ]


@pytest.mark.asyncio
async def test_approved_authorization_executes(safety_engine):
    executor = FakeExecutor([Output("gone"), Complete()])
    pipeline = CommandPipeline(safety_engine, executor, authorizer=make_authorizer(answer=True))
    context = make_context("rm -rf /")

    events = await run(pipeline, context)

    assert events == [Output("gone"), Complete()]
    assert executor.calls == [("rm -rf /", "/home/user", {})]
    assert context.transitions == [
        PipelineState.RECEIVED, PipelineState.SAFETY_CHECKED, PipelineState.AUTHORIZATION_PENDING,
        PipelineState.AUTHORIZED, PipelineState.EXECUTING, PipelineState.COMPLETE,
    ]


@pytest.mark.asyncio
async def test_missing_authorizer_is_a_denial(safety_engine):
    executor = FakeExecutor()
    pipeline = CommandPipeline(safety_engine, executor)

    events = await run(pipeline, make_context("mkfs.ext4 /dev/sdb1"))

    assert events == [Blocked("mkfs.ext4 /dev/sdb1", "Authorization failed: no authorization provider available")]
    assert executor.calls == []


@pytest.mark.asyncio
async def test_authorization_timeout_is_a_denial(safety_engine):
    async def never_answers(title, subtitle):
        await asyncio.sleep(3600)

    authorizer = MagicMock()
    authorizer.request = never_answers
    executor = FakeExecutor()
    pipeline = CommandPipeline(safety_engine, executor, authorizer=authorizer, authorization_timeout=0.05)

    events = await run(pipeline, make_context("rm -rf /"))

    assert [e.kind for e in events] == [ResultKind.BLOCKED]
    assert "no response within 0.05 seconds" in events[0].reason
    assert executor.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("error, reason", [
    (EOFError(), "prompt cancelled"),
    (RuntimeError("tty gone"), "authorizer error: tty gone"),
])
async def test_authorizer_failures_are_denials(safety_engine, error, reason):
    executor = FakeExecutor()
    pipeline = CommandPipeline(safety_engine, executor, authorizer=make_authorizer(side_effect=error))

    events = await run(pipeline, make_context("rm -rf /"))

    assert events == [Blocked("rm -rf /", f"Authorization failed: {reason}")]
    assert executor.calls == []


@pytest.mark.asyncio
async def test_unsafe_command_without_authorization_requirement_is_blocked(safety_engine):
    executor = FakeExecutor()
    authorizer = make_authorizer(answer=True)
    pipeline = CommandPipeline(safety_engine, executor, authorizer=authorizer)
    context = make_context("chmod 777 script.sh")

    events = await run(pipeline, context)

    assert [e.kind for e in events] == [ResultKind.BLOCKED]
    assert events[0].reason == safety_engine.check("chmod 777 script.sh").reason
    authorizer.request.assert_not_awaited()
    assert executor.calls == []
    assert context.state is PipelineState.BLOCKED


@pytest.mark.asyncio
async def test_safe_command_runs_without_authorization(safety_engine):
    executor = FakeExecutor()
    authorizer = make_authorizer()
    pipeline = CommandPipeline(safety_engine, executor, authorizer=authorizer)
    context = make_context("  echo hello  ")

    events = await run(pipeline, context)

    assert events == [Output("hello"), Complete()]
    assert executor.calls[0][0] == "echo hello"
    authorizer.request.assert_not_awaited()
    assert context.transitions == [
        PipelineState.RECEIVED, PipelineState.SAFETY_CHECKED, PipelineState.EXECUTING, PipelineState.COMPLETE,
    ]


@pytest.mark.asyncio
async def test_empty_command_yields_nothing(safety_engine):
    executor = FakeExecutor()
    history = []
    pipeline = CommandPipeline(safety_engine, executor)

    assert await run(pipeline, make_context("   "), history) == []
    assert executor.calls == []
    assert history == []


@pytest.mark.asyncio
async def test_error_result_ends_in_error_state(safety_engine):
    executor = FakeExecutor([Output("oops"), Error("Command failed with exit code: 2", exit_code=2)])
    pipeline = CommandPipeline(safety_engine, executor)
    context = make_context("false")

    events = await run(pipeline, context)

    assert events[-1].exit_code == 2
    assert context.state is PipelineState.ERROR


@pytest.mark.asyncio
async def test_stream_without_terminal_event_gets_one(safety_engine):
    pipeline = CommandPipeline(safety_engine, FakeExecutor([Output("partial")]))
    events = await run(pipeline, make_context("echo partial"))
    assert events == [Output("partial"), Error("Command ended without a result")]


@pytest.mark.asyncio
async def test_history_is_recorded_before_terminal_event(safety_engine):
    history = []
    seen_at_terminal = []
    pipeline = CommandPipeline(safety_engine, FakeExecutor())

    async for event in pipeline.run(make_context("echo hello"), record_history=history.append):
        if event.is_terminal:
            seen_at_terminal.append(list(history))
        else:
            assert history == []

    assert seen_at_terminal == [["echo hello"]]


@pytest.mark.asyncio
async def test_working_directory_follows_cd_output(safety_engine):
    pipeline = CommandPipeline(safety_engine, FakeExecutor([Output("/tmp", working_directory="/tmp"), Complete()]))
    context = make_context("cd /tmp")
    await run(pipeline, context)
    assert context.working_directory == "/tmp"


@pytest.mark.asyncio
async def test_closing_stream_closes_executor_and_records_history(safety_engine):
    executor = FakeExecutor([Output("tick")], hang_after_events=True)
    history = []
    pipeline = CommandPipeline(safety_engine, executor)
    stream = pipeline.run(make_context("watch date"), record_history=history.append)

    assert await stream.__anext__() == Output("tick")
    await stream.aclose()

    assert executor.closed is True
    assert history == ["watch date"]


# --- Hooks ---

@pytest.mark.asyncio
async def test_hooks_run_in_pipeline_order(safety_engine):
    calls = []
    hooks = HookRegistry()
    for point in HookPoint:
        hooks.register(point, lambda ctx: calls.append((ctx.hook_point, ctx.event)))
    executor = FakeExecutor([Output("x"), Error("bad", exit_code=1)])
    pipeline = CommandPipeline(safety_engine, executor, hooks=hooks)

    await run(pipeline, make_context("false"))

    assert calls == [
        (HookPoint.BEFORE_COMMAND, None),
        (HookPoint.ON_OUTPUT, Output("x")),
        (HookPoint.ON_ERROR, Error("bad", exit_code=1)),
        (HookPoint.AFTER_COMMAND, Error("bad", exit_code=1)),
    ]


@pytest.mark.asyncio
async def test_blocked_command_runs_only_error_hook(safety_engine):
    hooks = HookRegistry()
    seen = []
    for point in HookPoint:
        hooks.register(point, lambda ctx: seen.append(ctx.hook_point))
    pipeline = CommandPipeline(safety_engine, FakeExecutor(), hooks=hooks)

    events = await run(pipeline, make_context("rm -rf /"))

    assert [e.kind for e in events] == [ResultKind.BLOCKED]
    assert seen == [HookPoint.ON_ERROR]


@pytest.mark.asyncio
async def test_failing_hook_does_not_interrupt_execution(safety_engine):
    hooks = HookRegistry()

    async def broken(ctx):
        raise RuntimeError("plugin bug")

    hooks.register(HookPoint.BEFORE_COMMAND, broken)
    hooks.register(HookPoint.ON_OUTPUT, broken)
    pipeline = CommandPipeline(safety_engine, FakeExecutor(), hooks=hooks)

    assert await run(pipeline, make_context("echo hello")) == [Output("hello"), Complete()]
