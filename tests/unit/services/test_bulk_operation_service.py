"""Tests for BulkOperationCoordinator."""

import asyncio

import pytest

from application.entity import (
    AssignManagerOperation,
    DeleteOperation,
    EntityType,
    UpdateStatusOperation,
    UpdateTeamOperation,
)
from application.services.bulk_operation_service import BulkOperationCoordinator
from application.services.entity_gateway import EntityGateway
from application.services.workflow.engine import StatusWorkflowEngine
from application.store.entity_store import EntityStore
from common.auth.auth_provider import AuthProvider
from tests.fixtures.entity_fixtures import (
    create_mock_api_client,
    create_test_project,
    create_test_report,
    failed,
    ok,
)


@pytest.fixture
def store():
    store = EntityStore()
    for project_id in ("A", "B", "C"):
        store.upsert(create_test_project(project_id=project_id, status="InProgress"))
    return store


@pytest.fixture
def api_client():
    return create_mock_api_client()


def make_coordinator(api_client, store, concurrency=10):
    auth = AuthProvider()
    engines = {
        entity_type: StatusWorkflowEngine(entity_type, api_client, store, auth)
        for entity_type in (EntityType.PROJECT, EntityType.DAILY_REPORT)
    }
    return BulkOperationCoordinator(
        EntityGateway(api_client, store), store, engines, concurrency=concurrency
    )


def fail_for(entity_id, response):
    """side_effect that fails requests whose path names ``entity_id``."""

    async def handler(path, body=None):
        if f"/{entity_id}" in path:
            return response
        return ok()

    return handler


class TestApplyPerEntity:
    @pytest.mark.asyncio
    async def test_partial_failure_reported(self, store, api_client):
        """Test that B failing leaves A and C successful."""
        api_client.patch.side_effect = fail_for("B", failed(400, "Project B is locked"))
        coordinator = make_coordinator(api_client, store)

        result = await coordinator.apply(
            UpdateStatusOperation(status="OnHold", reason="Storm"), ["A", "B", "C"]
        )

        assert result.summary.total == 3
        assert result.summary.successful == 2
        assert result.summary.failed == 1
        assert result.failed[0].entity_id == "B"
        assert result.failed[0].error == "Project B is locked"
        assert sorted(result.successful) == ["A", "C"]
        assert store.get(EntityType.PROJECT, "A").status == "OnHold"
        assert store.get(EntityType.PROJECT, "B").status == "InProgress"

    @pytest.mark.asyncio
    async def test_status_changes_validated_per_entity(self, store, api_client):
        store.upsert(create_test_project(project_id="B", status="Completed"))
        coordinator = make_coordinator(api_client, store)

        result = await coordinator.apply(
            {"operation": "update_status", "status": "OnHold", "reason": "Storm"}, ["A", "B", "Z"]
        )

        assert result.summary.total == 3
        assert sorted(result.failed_ids) == ["B", "Z"]
        assert api_client.patch.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_manager_assignment_rolled_back(self, store, api_client):
        api_client.patch.side_effect = fail_for("B", failed(None))
        coordinator = make_coordinator(api_client, store)

        result = await coordinator.apply(AssignManagerOperation(project_manager_id="mgr-9"), ["A", "B"])

        assert result.failed_ids == ["B"]
        assert result.failed[0].error == "Could not reach the server. Please try again."
        assert store.get(EntityType.PROJECT, "A").project_manager_id == "mgr-9"
        assert store.get(EntityType.PROJECT, "B").project_manager_id == "mgr-1"
        assert store.pending_patches == []
        api_client.patch.assert_any_await("/api/v1/projects/A", {"projectManagerId": "mgr-9"})

    @pytest.mark.asyncio
    async def test_team_update_visible_before_confirmation(self, store, api_client):
        coordinator = make_coordinator(api_client, store)
        seen = {}

        async def slow_patch(path, body=None):
            seen["team"] = store.get(EntityType.PROJECT, "A").team
            return ok()

        api_client.patch.side_effect = slow_patch

        await coordinator.apply(UpdateTeamOperation(team="East"), ["A"])

        assert seen["team"] == "East"

    @pytest.mark.asyncio
    async def test_delete_removes_on_success_only(self, store, api_client):
        api_client.delete.side_effect = fail_for("C", failed(403, "Access denied. Insufficient permissions."))
        coordinator = make_coordinator(api_client, store)

        result = await coordinator.apply(DeleteOperation(), ["A", "C"])

        assert result.failed_ids == ["C"]
        assert result.failed[0].error == "Access denied. Insufficient permissions."
        assert store.get(EntityType.PROJECT, "A") is None
        assert store.get(EntityType.PROJECT, "C") is not None

    @pytest.mark.asyncio
    async def test_unexpected_exception_does_not_cancel_others(self, store, api_client):
        async def handler(path, body=None):
            if "/B" in path:
                raise RuntimeError("driver crashed")
            return ok()

        api_client.patch.side_effect = handler
        coordinator = make_coordinator(api_client, store)

        result = await coordinator.apply(UpdateTeamOperation(team="East"), ["A", "B", "C"])

        assert result.summary.successful == 2
        assert result.failed[0].error == "driver crashed"

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self, store, api_client):
        in_flight = 0
        peak = 0

        async def handler(path, body=None):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return ok()

        api_client.patch.side_effect = handler
        coordinator = make_coordinator(api_client, store, concurrency=2)

        await coordinator.apply(UpdateTeamOperation(team="East"), ["A", "B", "C"])

        assert peak == 2

    @pytest.mark.asyncio
    async def test_project_only_operation_on_reports(self, store, api_client):
        store.upsert(create_test_report())
        coordinator = make_coordinator(api_client, store)

        with pytest.raises(ValueError):
            await coordinator.apply(
                AssignManagerOperation(project_manager_id="m"), ["rep-1"], EntityType.DAILY_REPORT
            )
        api_client.patch.assert_not_called()

    @pytest.mark.asyncio
    async def test_report_status_bulk(self, store, api_client):
        store.upsert(create_test_report(report_id="r1", approval_status="Submitted"))
        store.upsert(create_test_report(report_id="r2", approval_status="Draft"))
        coordinator = make_coordinator(api_client, store)

        result = await coordinator.apply(
            UpdateStatusOperation(status="Approved", reason="Reviewed"), ["r1", "r2"], EntityType.DAILY_REPORT
        )

        assert result.successful == ["r1"]
        assert result.failed_ids == ["r2"]

    @pytest.mark.asyncio
    async def test_empty_id_list(self, store, api_client):
        result = await make_coordinator(api_client, store).apply(DeleteOperation(), [])
        assert result.summary.total == 0


class TestApplyRemote:
    @pytest.mark.asyncio
    async def test_single_bulk_request(self, store, api_client):
        api_client.post.return_value = ok(
            {
                "successful": ["A", "C"],
                "failed": [{"projectId": "B", "error": "locked"}],
                "summary": {"total": 3, "successful": 2, "failed": 1},
            }
        )
        coordinator = make_coordinator(api_client, store)

        result = await coordinator.apply_remote(
            UpdateStatusOperation(status="OnHold", reason="Storm"), ["A", "B", "C"]
        )

        api_client.post.assert_awaited_once_with(
            "/api/v1/projects/bulk",
            {
                "operation": "update_status",
                "projectIds": ["A", "B", "C"],
                "data": {"status": "OnHold", "reason": "Storm", "notifyStakeholders": True},
            },
        )
        assert result.summary.total == 3
        assert result.failed_ids == ["B"]

    @pytest.mark.asyncio
    async def test_transport_failure_fails_every_id(self, store, api_client):
        api_client.post.return_value = failed(None)
        coordinator = make_coordinator(api_client, store)

        result = await coordinator.apply_remote(DeleteOperation(), ["A", "B"])

        assert result.summary.failed == 2
        assert store.get(EntityType.PROJECT, "A") is not None

    @pytest.mark.asyncio
    async def test_unreported_ids_count_as_failed(self, store, api_client):
        api_client.post.return_value = ok(
            {"successful": ["A"], "failed": [], "summary": {"total": 1, "successful": 1, "failed": 0}}
        )
        coordinator = make_coordinator(api_client, store)

        result = await coordinator.apply_remote(DeleteOperation(), ["A", "B"])

        assert result.summary.total == 2
        assert result.failed_ids == ["B"]
        assert store.get(EntityType.PROJECT, "A") is None


class TestDailyReportBulkEndpoints:
    @pytest.mark.asyncio
    async def test_approval_sent_to_bulk_approve(self, store, api_client):
        api_client.post.return_value = ok(
            {"successful": ["r1", "r2"], "failed": [], "summary": {"total": 2, "successful": 2, "failed": 0}}
        )
        coordinator = make_coordinator(api_client, store)

        result = await coordinator.apply_remote(
            UpdateStatusOperation(status="approved", reason="Checked on site"),
            ["r1", "r2"],
            EntityType.DAILY_REPORT,
        )

        api_client.post.assert_awaited_once_with(
            "/api/v1/daily-reports/bulk-approve",
            {"reportIds": ["r1", "r2"], "comments": "Checked on site"},
        )
        assert result.summary.successful == 2

    @pytest.mark.asyncio
    async def test_rejection_sent_to_bulk_reject_with_reason(self, store, api_client):
        api_client.post.return_value = ok(
            {
                "successful": ["r1"],
                "failed": [{"reportId": "r2", "error": "Already approved"}],
                "summary": {"total": 2, "successful": 1, "failed": 1},
            }
        )
        coordinator = make_coordinator(api_client, store)

        result = await coordinator.apply_remote(
            UpdateStatusOperation(status="Rejected", reason="Missing photos"),
            ["r1", "r2"],
            EntityType.DAILY_REPORT,
        )

        api_client.post.assert_awaited_once_with(
            "/api/v1/daily-reports/bulk-reject",
            {"reportIds": ["r1", "r2"], "rejectionReason": "Missing photos"},
        )
        assert result.failed_ids == ["r2"]
        assert result.failed[0].error == "Already approved"

    @pytest.mark.asyncio
    async def test_no_report_endpoint_for_other_operations(self, store, api_client):
        coordinator = make_coordinator(api_client, store)

        assert coordinator.supports_remote(DeleteOperation(), EntityType.DAILY_REPORT) is False
        assert (
            coordinator.supports_remote(
                {"operation": "update_status", "status": "Submitted", "reason": "x"},
                EntityType.DAILY_REPORT,
            )
            is False
        )
        with pytest.raises(ValueError):
            await coordinator.apply_remote(DeleteOperation(), ["r1"], EntityType.DAILY_REPORT)
        api_client.post.assert_not_called()

    def test_projects_always_have_bulk_endpoint(self, store, api_client):
        coordinator = make_coordinator(api_client, store)
        assert coordinator.supports_remote(UpdateTeamOperation(team="East")) is True
