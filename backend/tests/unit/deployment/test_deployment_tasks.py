"""
Unit Tests for the deployment consumer
"""
import json
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy import select

from appweaver.core.exceptions import DeploymentError
from appweaver.models import App, AppDeployment
from appweaver.models.app import AppStatus
from appweaver.models.app_deployment import DeploymentStatus
from appweaver.modules.deployment.tasks import (
    deploy_lock_key,
    release_deploy_lock,
    request_deployment,
    run_deployment,
)

WEBHOOK_URL = "https://deployer.test/hooks/deploy"


def deployer(status_code=200, body=None, seen=None):
    """MockTransport standing in for the external deployer"""
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(json.loads(request.content))
        return httpx.Response(status_code, json=body if body is not None else {})
    return httpx.MockTransport(handler)


async def deployments_for(session_factory, app_id):
    async with session_factory() as db:
        result = await db.execute(select(AppDeployment).where(AppDeployment.app_id == app_id))
        return result.scalars().all()


async def app_status(session_factory, app_id):
    async with session_factory() as db:
        return (await db.get(App, app_id)).status


class TestRunDeployment:
    """Tests for run_deployment"""

    @pytest.mark.asyncio
    async def test_without_webhook_records_queued_deployment(
        self, state_store, broadcaster, mock_redis, session_factory, test_app
    ):
        result = await run_deployment(test_app.id, "exec_1", "production", state_store, broadcaster, session_factory)

        assert result["status"] == DeploymentStatus.QUEUED.value
        deployments = await deployments_for(session_factory, test_app.id)
        assert len(deployments) == 1
        assert deployments[0].execution_id == "exec_1"
        assert await app_status(session_factory, test_app.id) == AppStatus.DEPLOYING.value

        texts = [json.loads(m)["text"] for m in mock_redis.messages_on(f"app_{test_app.id}_chat")]
        assert texts == ["Deploying to production...", "Deployment queued"]

    @pytest.mark.asyncio
    async def test_webhook_success(self, state_store, session_factory, test_app):
        seen = []
        with patch("appweaver.modules.deployment.tasks.settings.DEPLOYMENT_WEBHOOK_URL", WEBHOOK_URL):
            result = await run_deployment(
                test_app.id, "exec_1", "staging", state_store,
                session_factory=session_factory,
                transport=deployer(body={"id": "dpl_42"}, seen=seen),
            )

        assert result["status"] == DeploymentStatus.SUCCEEDED.value
        assert seen == [{"app_id": test_app.id, "execution_id": "exec_1", "environment": "staging"}]
        deployment = (await deployments_for(session_factory, test_app.id))[0]
        assert deployment.external_id == "dpl_42"
        assert deployment.completed_at is not None
        assert await app_status(session_factory, test_app.id) == AppStatus.READY.value

    @pytest.mark.asyncio
    async def test_webhook_failure_marks_app_failed(self, state_store, session_factory, test_app):
        with patch("appweaver.modules.deployment.tasks.settings.DEPLOYMENT_WEBHOOK_URL", WEBHOOK_URL):
            result = await run_deployment(
                test_app.id, "exec_1", "production", state_store,
                session_factory=session_factory,
                transport=deployer(status_code=502),
            )

        assert result["status"] == DeploymentStatus.FAILED.value
        deployment = (await deployments_for(session_factory, test_app.id))[0]
        assert deployment.error.startswith("Deployment request failed")
        assert await app_status(session_factory, test_app.id) == AppStatus.FAILED.value

    @pytest.mark.asyncio
    async def test_concurrent_request_for_same_app_is_dropped(self, state_store, session_factory, test_app):
        await state_store.write_if_absent(deploy_lock_key(test_app.id), {"execution_id": "exec_0"})

        result = await run_deployment(test_app.id, "exec_1", "production", state_store, session_factory=session_factory)

        assert result == {"app_id": test_app.id, "status": "duplicate"}
        assert await deployments_for(session_factory, test_app.id) == []

    @pytest.mark.asyncio
    async def test_lock_is_released(self, state_store, session_factory, test_app):
        await run_deployment(test_app.id, "exec_1", "production", state_store, session_factory=session_factory)

        assert await state_store.read(deploy_lock_key(test_app.id)) is None

    @pytest.mark.asyncio
    async def test_lock_taken_over_after_expiry_is_kept(self, state_store, mock_redis, session_factory, test_app):
        lock_key = deploy_lock_key(test_app.id)

        def slow_deployer(request: httpx.Request) -> httpx.Response:
            # The lock TTL ran out mid-request and a newer run acquired it
            mock_redis.store[lock_key] = (json.dumps({"execution_id": "exec_2"}), None)
            return httpx.Response(200, json={})

        with patch("appweaver.modules.deployment.tasks.settings.DEPLOYMENT_WEBHOOK_URL", WEBHOOK_URL):
            await run_deployment(
                test_app.id, "exec_1", "production", state_store,
                session_factory=session_factory,
                transport=httpx.MockTransport(slow_deployer),
            )

        assert await state_store.read(lock_key) == {"execution_id": "exec_2"}

    @pytest.mark.asyncio
    async def test_release_deploy_lock_checks_owner(self, state_store, test_app):
        await state_store.write_if_absent(deploy_lock_key(test_app.id), {"execution_id": "exec_1"})

        assert not await release_deploy_lock(state_store, test_app.id, "exec_0")
        assert await release_deploy_lock(state_store, test_app.id, "exec_1")
        assert await state_store.read(deploy_lock_key(test_app.id)) is None

    @pytest.mark.asyncio
    async def test_unknown_app(self, state_store, session_factory):
        result = await run_deployment("missing-app", "exec_1", "production", state_store, session_factory=session_factory)

        assert result["status"] == "failed"
        assert result["error"] == "App not found"
        assert await state_store.read(deploy_lock_key("missing-app")) is None


class TestRequestDeployment:
    @pytest.mark.asyncio
    async def test_returns_deployment_id(self):
        with patch("appweaver.modules.deployment.tasks.settings.DEPLOYMENT_WEBHOOK_URL", WEBHOOK_URL):
            external_id = await request_deployment(
                "app_1", "exec_1", "production", transport=deployer(body={"deployment_id": 7})
            )

        assert external_id == "7"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        with patch("appweaver.modules.deployment.tasks.settings.DEPLOYMENT_WEBHOOK_URL", WEBHOOK_URL):
            with pytest.raises(DeploymentError):
                await request_deployment("app_1", "exec_1", "production", transport=httpx.MockTransport(refuse))
