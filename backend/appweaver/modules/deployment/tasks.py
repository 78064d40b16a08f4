"""
Celery tasks for app deployment

Triggered once per fully successful tool batch. The finalizer already
guarantees a single trigger per batch; this consumer additionally holds a
per-app lock so a redelivered or concurrent request for the same app is
logged and dropped.

Deployment flow:
1. Acquire deploy_lock:{app_id}
2. Record an AppDeployment row
3. POST to the deployment webhook when one is configured,
   otherwise leave the row queued for the external deployer
4. Release the lock, unless it expired and another run now holds it
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from celery import Task
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from appweaver.core.celery_app import celery_app
from appweaver.core.config import settings
from appweaver.core.database import close_db, get_session_local
from appweaver.core.exceptions import AppNotFoundError, DeploymentError
from appweaver.core.logging_config import logger
from appweaver.models.app import App, AppStatus
from appweaver.models.app_deployment import AppDeployment, DeploymentStatus
from appweaver.modules.tool_execution.broadcaster import ProgressBroadcaster
from appweaver.modules.tool_execution.records import utc_now_iso
from appweaver.modules.tool_execution.state_store import SharedStateStore


def deploy_lock_key(app_id: str) -> str:
    return f"deploy_lock:{app_id}"


async def release_deploy_lock(state_store: SharedStateStore, app_id: str, execution_id: str) -> bool:
    """Delete the app lock only while it still names ``execution_id`` as its owner"""
    lock_key = deploy_lock_key(app_id)
    lock = await state_store.read(lock_key)
    if not lock or lock.get("execution_id") != execution_id:
        logger.warning(f"[Deployment] Lock for app {app_id} no longer held by {execution_id}, leaving it")
        return False
    return await state_store.delete(lock_key) > 0


class DeploymentTask(Task):
    """Custom Celery task with proper async support"""
    abstract = True

    def run_async(self, coro):
        """Run async coroutine in sync context"""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            return loop.run_until_complete(coro)
        finally:
            loop.close()


@celery_app.task(
    bind=True,
    base=DeploymentTask,
    acks_late=True,
    time_limit=settings.DEPLOYMENT_LOCK_TTL,
    soft_time_limit=settings.DEPLOYMENT_LOCK_TTL - 60
)
def deploy_app(self, app_id: str, execution_id: str, environment: str = "production"):
    """
    Celery task to deploy an app after a successful tool batch

    Args:
        app_id: App to deploy
        execution_id: Tool batch that triggered the deployment
        environment: Target environment
    """
    return self.run_async(_async_deploy_app(app_id, execution_id, environment))


async def _async_deploy_app(app_id: str, execution_id: str, environment: str) -> Dict[str, Any]:
    state_store = SharedStateStore.from_settings()
    broadcaster = ProgressBroadcaster.from_settings()
    try:
        return await run_deployment(app_id, execution_id, environment, state_store, broadcaster)
    finally:
        await state_store.close()
        await broadcaster.close()
        await close_db()


async def run_deployment(
    app_id: str,
    execution_id: str,
    environment: str,
    state_store: SharedStateStore,
    broadcaster: Optional[ProgressBroadcaster] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> Dict[str, Any]:
    """Deployment consumer body, independent of Celery"""
    lock_key = deploy_lock_key(app_id)
    acquired = await state_store.write_if_absent(
        lock_key,
        {"execution_id": execution_id, "acquired_at": utc_now_iso()},
        ttl=settings.DEPLOYMENT_LOCK_TTL
    )
    if not acquired:
        logger.info(f"[Deployment] App {app_id} is already being deployed, dropping request from {execution_id}")
        return {"app_id": app_id, "status": "duplicate"}

    session_factory = session_factory or get_session_local()
    try:
        async with session_factory() as db:
            app = await db.get(App, app_id)
            if not app:
                logger.error(f"[Deployment] {AppNotFoundError(app_id).message}")
                return {"app_id": app_id, "status": DeploymentStatus.FAILED.value, "error": "App not found"}

            deployment = AppDeployment(
                app_id=app_id,
                execution_id=execution_id,
                environment=environment,
                status=DeploymentStatus.QUEUED.value
            )
            db.add(deployment)
            app.status = AppStatus.DEPLOYING.value
            await db.commit()

            logger.info(f"[Deployment] Starting deployment {deployment.id} for app {app_id} ({environment})")
            if broadcaster:
                await broadcaster.progress(app_id, None, f"Deploying to {environment}...")

            if settings.DEPLOYMENT_WEBHOOK_URL:
                deployment.status = DeploymentStatus.DEPLOYING.value
                await db.commit()
                try:
                    deployment.external_id = await request_deployment(
                        app_id, execution_id, environment, transport=transport
                    )
                    deployment.status = DeploymentStatus.SUCCEEDED.value
                    app.status = AppStatus.READY.value
                    text = "Deployment succeeded"
                except DeploymentError as e:
                    logger.error(f"[Deployment] Deployment {deployment.id} failed: {e.message}")
                    deployment.status = DeploymentStatus.FAILED.value
                    deployment.error = e.message
                    app.status = AppStatus.FAILED.value
                    text = f"Deployment failed: {e.message}"
                deployment.completed_at = datetime.utcnow()
            else:
                logger.info(f"[Deployment] No webhook configured, deployment {deployment.id} queued")
                text = "Deployment queued"

            await db.commit()
            if broadcaster:
                await broadcaster.progress(app_id, None, text)

            return {
                "app_id": app_id,
                "deployment_id": deployment.id,
                "status": deployment.status,
            }
    finally:
        await release_deploy_lock(state_store, app_id, execution_id)


async def request_deployment(
    app_id: str,
    execution_id: str,
    environment: str,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> Optional[str]:
    """POST the deployment request; returns the deployer's ID for it, if any"""
    payload = {"app_id": app_id, "execution_id": execution_id, "environment": environment}
    try:
        async with httpx.AsyncClient(timeout=settings.DEPLOYMENT_REQUEST_TIMEOUT, transport=transport) as client:
            response = await client.post(settings.DEPLOYMENT_WEBHOOK_URL, json=payload)
            response.raise_for_status()
    except httpx.HTTPError as e:
        raise DeploymentError(f"Deployment request failed: {e}", app_id=app_id)

    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        external_id = data.get("id") or data.get("deployment_id")
        return str(external_id) if external_id else None
    return None
