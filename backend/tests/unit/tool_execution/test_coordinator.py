"""
Unit Tests for the parallel tool coordinator (session + worker paths end to end)
"""
import asyncio
import json
import re
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select

from appweaver.models import AppFile
from appweaver.modules.tool_execution.coordinator import BatchSession
from appweaver.modules.tool_execution.executor import ToolExecutor
from appweaver.modules.tool_execution.records import Failure, Success, UpdateOutcome
from appweaver.modules.tool_execution.tasks import run_tool
from tests.conftest import start_batch, write_call, write_requests


class InProcessWorkers:
    """Enqueue callable that runs each worker unit as an asyncio task"""

    def __init__(self, api, app_id, session_factory, delays=None):
        self.api = api
        self.app_id = app_id
        self.session_factory = session_factory
        self.delays = delays or {}
        self.tasks = []

    def __call__(self, message_id, execution_id, tool_index, tool_call, iteration_count, countdown):
        self.tasks.append(asyncio.get_running_loop().create_task(
            self._run(message_id, execution_id, tool_index, tool_call, iteration_count)
        ))

    async def _run(self, message_id, execution_id, tool_index, tool_call, iteration_count):
        await asyncio.sleep(self.delays.get(tool_index, 0))
        executor = ToolExecutor(self.app_id, self.session_factory)
        return await run_tool(
            self.api, message_id, execution_id, tool_index, tool_call, iteration_count, executor=executor
        )

    async def join(self):
        return await asyncio.gather(*self.tasks)


def session_for(api, message, workers, timeout=5):
    return BatchSession(
        message.id, message.app_id, iteration_count=1,
        api=api, enqueue=workers, poll_interval=0.01, timeout=timeout,
    )


class TestBatchSession:
    """Tests for BatchSession.execute_tools_in_parallel"""

    @pytest.mark.asyncio
    async def test_parallel_writes_succeed_and_deploy(
        self, api, deploy_trigger, execution_log, session_factory, test_message, test_app
    ):
        """Three writes finish out of order; results come back in request order"""
        workers = InProcessWorkers(api, test_app.id, session_factory, delays={0: 0.05, 1: 0.02, 2: 0})
        calls = [
            write_call("src/App.tsx", "export const App = 1", call_id="toolu_a"),
            write_call("src/main.tsx", "import App", call_id="toolu_b"),
            write_call("index.html", "<div id=root>", call_id="toolu_c"),
        ]

        session = session_for(api, test_message, workers)
        results = await session.execute_tools_in_parallel(calls)
        await workers.join()

        assert [result.tool_call_id for result in results] == ["toolu_a", "toolu_b", "toolu_c"]
        assert [result.content for result in results] == [
            "File src/App.tsx written successfully",
            "File src/main.tsx written successfully",
            "File index.html written successfully",
        ]
        assert not any(result.is_error for result in results)

        deploy_trigger.assert_called_once_with(test_app.id, session.execution_id)

        batch = await execution_log.get_batch(test_message.id, session.execution_id)
        assert batch["status"] == "completed"
        assert [tool["status"] for tool in batch["tools"]] == ["complete"] * 3

        async with session_factory() as db:
            paths = (await db.execute(select(AppFile.path).order_by(AppFile.path))).scalars().all()
        assert paths == ["index.html", "src/App.tsx", "src/main.tsx"]

    @pytest.mark.asyncio
    async def test_one_failure_blocks_deployment(self, api, deploy_trigger, session_factory, test_message, test_app):
        workers = InProcessWorkers(api, test_app.id, session_factory)
        calls = [
            write_call("src/App.tsx", call_id="toolu_a"),
            {"id": "toolu_b", "name": "os-view", "arguments": {"file_path": "missing.ts"}},
        ]

        results = await session_for(api, test_message, workers).execute_tools_in_parallel(calls)
        await workers.join()

        assert results[0].is_error is False
        assert results[1].is_error is True
        assert results[1].content == "File not found: missing.ts"
        deploy_trigger.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_batch(self, api, execution_log, test_message):
        enqueue = MagicMock()

        results = await session_for(api, test_message, enqueue).execute_tools_in_parallel([])

        assert results == []
        enqueue.assert_not_called()
        assert await execution_log.list_batches(test_message.id) == []

    @pytest.mark.asyncio
    async def test_execution_id_format(self, api, test_message):
        session = session_for(api, test_message, MagicMock())

        execution_id = session.generate_execution_id()

        assert re.fullmatch(rf"{test_message.id}_[0-9a-f]{{16}}", execution_id)
        assert execution_id != session.generate_execution_id()

    @pytest.mark.asyncio
    async def test_workers_never_report_back(self, api, deploy_trigger, execution_log, test_message):
        session = session_for(api, test_message, MagicMock(), timeout=0.05)

        results = await session.execute_tools_in_parallel([write_call("a.ts"), write_call("b.ts")])

        assert [result.content for result in results] == ["Tool execution timed out"] * 2
        assert all(result.is_error for result in results)
        deploy_trigger.assert_not_called()
        batch = await execution_log.get_batch(test_message.id, session.execution_id)
        assert batch["status"] == "completed"

    @pytest.mark.asyncio
    async def test_redis_outage_falls_back_to_log(self, api, mock_redis, session_factory, test_message, test_app):
        mock_redis.fail = True
        workers = InProcessWorkers(api, test_app.id, session_factory)

        results = await session_for(api, test_message, workers).execute_tools_in_parallel([
            write_call("a.ts", call_id="toolu_a"),
        ])
        await workers.join()

        assert results[0].content == "File a.ts written successfully"

    @pytest.mark.asyncio
    async def test_openai_shaped_and_malformed_calls(self, api, session_factory, test_message, test_app):
        workers = InProcessWorkers(api, test_app.id, session_factory)
        calls = [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "os-write", "arguments": json.dumps({"file_path": "x.ts", "content": "1"})},
            },
            {"id": "call_2", "function": {"arguments": "{}"}},
        ]

        results = await session_for(api, test_message, workers).execute_tools_in_parallel(calls)
        await workers.join()

        assert results[0].content == "File x.ts written successfully"
        assert results[1].is_error
        assert results[1].tool_call_id == "call_2"
        assert len(workers.tasks) == 1


class TestCoordinatorAPI:
    """Tests for the stateless reporting path"""

    @pytest.mark.asyncio
    async def test_report_completion_writes_log_before_cache(self, api, execution_log, state_store, test_message):
        await execution_log.append_batch(test_message.id, "exec_1", write_requests(1))
        order = []
        original_update = execution_log.update_tool
        original_write = state_store.write_completion

        async def update_tool(*args, **kwargs):
            order.append("log")
            return await original_update(*args, **kwargs)

        async def write_completion(*args, **kwargs):
            order.append("cache")
            return await original_write(*args, **kwargs)

        execution_log.update_tool = update_tool
        state_store.write_completion = write_completion

        await api.report_completion(test_message.id, "exec_1", 0, Success("x"), finalize=False)

        assert order == ["log", "cache"]

    @pytest.mark.asyncio
    async def test_duplicate_terminal_report_keeps_first_signal(self, api, execution_log, state_store, test_message):
        await execution_log.append_batch(test_message.id, "exec_1", write_requests(1))

        first = await api.report_completion(
            test_message.id, "exec_1", 0, Failure("Tool execution timed out"), finalize=False
        )
        second = await api.report_completion(test_message.id, "exec_1", 0, Success("late"), finalize=False)

        assert first == UpdateOutcome.APPLIED
        assert second == UpdateOutcome.SKIPPED_TERMINAL
        signal = await state_store.read_completion("exec_1", 0)
        assert signal.status == "error"

    @pytest.mark.asyncio
    async def test_signal_written_once_when_log_write_abandoned(self, api, execution_log, state_store, test_message):
        await execution_log.append_batch(test_message.id, "exec_1", write_requests(1))

        with patch.object(execution_log, "update_tool", AsyncMock(return_value=UpdateOutcome.ABANDONED)):
            first = await api.report_completion(
                test_message.id, "exec_1", 0, Failure("Tool execution timed out"), finalize=False
            )
            second = await api.report_completion(test_message.id, "exec_1", 0, Success("late"), finalize=False)

        assert first == UpdateOutcome.ABANDONED
        assert second == UpdateOutcome.SKIPPED_TERMINAL
        signal = await state_store.read_completion("exec_1", 0)
        assert signal.status == "error"
        assert signal.error == "Tool execution timed out"

    @pytest.mark.asyncio
    async def test_last_worker_finalizes(self, api, deploy_trigger, execution_log, test_message, test_app):
        await start_batch(api, test_message, "exec_1", 2)

        await api.report_completion(test_message.id, "exec_1", 0, Success("a"))
        deploy_trigger.assert_not_called()

        await api.report_completion(test_message.id, "exec_1", 1, Success("b"))
        deploy_trigger.assert_called_once_with(test_app.id, "exec_1")
        batch = await execution_log.get_batch(test_message.id, "exec_1")
        assert batch["status"] == "completed"

    @pytest.mark.asyncio
    async def test_mark_running_is_dropped_after_terminal(self, api, execution_log, test_message):
        await execution_log.append_batch(test_message.id, "exec_1", write_requests(1))
        await api.report_completion(
            test_message.id, "exec_1", 0, Failure("Tool execution timed out"), finalize=False
        )

        assert await api.mark_running(test_message.id, "exec_1", 0) == UpdateOutcome.SKIPPED_TERMINAL
