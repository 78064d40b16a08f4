"""
Batch Finalizer - closes out a tool batch

Reachable from two places: the orchestrating session after its watcher
returns, and the worker whose completion made the batch complete. Every step
is idempotent, and the deployment trigger is guarded by a check-and-set on the
batch entry so it fires at most once per batch.
"""

from typing import Callable, Dict, Optional, Tuple

from appweaver.core.logging_config import logger
from appweaver.modules.tool_execution.broadcaster import ProgressBroadcaster
from appweaver.modules.tool_execution.execution_log import DurableExecutionLog
from appweaver.modules.tool_execution.records import CompletionRecord
from appweaver.modules.tool_execution.state_store import SharedStateStore
from appweaver.modules.tool_execution.watcher import collect_completions

DeployTrigger = Callable[[str, str], None]


def enqueue_deployment(app_id: str, execution_id: str) -> None:
    """Default trigger: hand the app to the deployment queue"""
    from appweaver.modules.deployment.tasks import deploy_app

    deploy_app.delay(app_id, execution_id)


def summarize(completed: Dict[int, CompletionRecord]) -> str:
    errors = sum(1 for record in completed.values() if not record.succeeded)
    if errors:
        return f"All tools completed with {errors} errors"
    return "All tools completed"


class BatchFinalizer:
    def __init__(
        self,
        state_store: SharedStateStore,
        execution_log: DurableExecutionLog,
        broadcaster: Optional[ProgressBroadcaster] = None,
        deploy_trigger: Optional[DeployTrigger] = None,
    ):
        self.state_store = state_store
        self.execution_log = execution_log
        self.broadcaster = broadcaster
        self.deploy_trigger = deploy_trigger or enqueue_deployment

    # ========== Batch facts (cache first, log fallback) ==========

    async def resolve_tool_count(self, message_id: str, execution_id: str) -> int:
        state = await self.state_store.get_execution_state(execution_id)
        if state and state.get("tool_count") is not None:
            return int(state["tool_count"])
        batch = await self.execution_log.get_batch(message_id, execution_id)
        if batch:
            return len(batch.get("tools") or [])
        return 0

    async def resolve_app_id(self, message_id: str, execution_id: str) -> Optional[str]:
        state = await self.state_store.get_execution_state(execution_id)
        if state and state.get("app_id"):
            return state["app_id"]
        return await self.execution_log.get_app_id(message_id)

    async def completions(self, message_id: str, execution_id: str) -> Tuple[int, Dict[int, CompletionRecord]]:
        tool_count = await self.resolve_tool_count(message_id, execution_id)
        completed = await collect_completions(
            self.state_store, self.execution_log, message_id, execution_id, range(tool_count)
        )
        return tool_count, completed

    async def all_tools_completed(self, message_id: str, execution_id: str) -> bool:
        tool_count, completed = await self.completions(message_id, execution_id)
        return tool_count > 0 and len(completed) == tool_count

    async def all_tools_successful(self, message_id: str, execution_id: str) -> bool:
        """True only when every tool is known and every status is exactly 'complete'"""
        tool_count, completed = await self.completions(message_id, execution_id)
        return self._successful(execution_id, tool_count, completed)

    @staticmethod
    def _successful(execution_id: str, tool_count: int, completed: Dict[int, CompletionRecord]) -> bool:
        if tool_count == 0:
            logger.warning(f"[Finalizer] No batch information for {execution_id}, treating as unsuccessful")
            return False
        if len(completed) < tool_count:
            return False
        return all(record.succeeded for record in completed.values())

    # ========== Finalization ==========

    async def finalize(self, message_id: str, execution_id: str) -> bool:
        """
        Complete the batch, trigger deployment when every tool succeeded,
        broadcast the summary and clean up shared state.

        Returns True when this call triggered the deployment.
        """
        if await self.execution_log.mark_batch_completed(message_id, execution_id):
            logger.log_batch_event(execution_id, "marked completed")

        app_id = await self.resolve_app_id(message_id, execution_id)
        tool_count, completed = await self.completions(message_id, execution_id)

        triggered = False
        if self._successful(execution_id, tool_count, completed):
            triggered = await self._trigger_deployment(message_id, execution_id, app_id)
        else:
            logger.info(f"[Finalizer] Not all tools succeeded in {execution_id}, skipping deployment")

        if self.broadcaster:
            await self.broadcaster.progress(app_id, message_id, summarize(completed))

        await self.cleanup(message_id, execution_id)
        return triggered

    async def _trigger_deployment(self, message_id: str, execution_id: str, app_id: Optional[str]) -> bool:
        if not app_id:
            logger.warning(f"[Finalizer] No app for message {message_id}, cannot deploy {execution_id}")
            return False

        if not await self.execution_log.claim_deployment(message_id, execution_id):
            logger.info(f"[Finalizer] Deployment for {execution_id} already triggered")
            return False

        try:
            self.deploy_trigger(app_id, execution_id)
        except Exception as e:
            logger.log_error_with_context(e, "BatchFinalizer.trigger_deployment", app_id=app_id)
            return False

        logger.log_batch_event(execution_id, "deployment triggered", app_id=app_id)
        if self.broadcaster:
            await self.broadcaster.progress(app_id, message_id, "Deploying app...")
        return True

    async def cleanup(self, message_id: str, execution_id: str) -> int:
        """Delete the state key and every completion key of the batch"""
        tool_count = await self.resolve_tool_count(message_id, execution_id)
        deleted = await self.state_store.clear_execution(execution_id, tool_count)
        logger.debug(f"[Finalizer] Cleaned up {deleted} keys for {execution_id}")
        return deleted
