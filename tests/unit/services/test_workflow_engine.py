"""Tests for StatusWorkflowEngine."""

from datetime import timedelta

import pytest

from application.entity import EntityType, TransitionFailure
from application.services.workflow.engine import StatusWorkflowEngine
from application.services.workflow.transition_graph import PROJECT_GRAPH
from application.store.entity_store import EntityStore
from common.auth.auth_provider import AuthProvider
from common.exception.exceptions import (
    ApprovalRequiredError,
    ConflictError,
    ServerRejection,
    TransportError,
    ValidationError,
)
from tests.fixtures.entity_fixtures import (
    create_mock_api_client,
    create_test_project,
    create_test_report,
    failed,
    ok,
)

TERMINAL_CASES = [
    (EntityType.PROJECT, "Completed", ["Planning", "InProgress", "OnHold", "Cancelled"]),
    (EntityType.PROJECT, "Cancelled", ["Planning", "InProgress", "OnHold", "Completed"]),
    (EntityType.DAILY_REPORT, "Approved", ["Draft", "Submitted", "Rejected"]),
]

VALID_PROJECT_TRANSITIONS = [
    (source, edge.target)
    for source in ("Planning", "InProgress", "OnHold")
    for edge in PROJECT_GRAPH.edges_from(source)
]


@pytest.fixture
def store():
    return EntityStore()


@pytest.fixture
def api_client():
    return create_mock_api_client()


def make_engine(entity_type, api_client, store):
    return StatusWorkflowEngine(entity_type, api_client, store, AuthProvider())


class TestLocalValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("entity_type,terminal,targets", TERMINAL_CASES)
    async def test_terminal_status_rejected_without_network(
        self, entity_type, terminal, targets, store, api_client
    ):
        """Test that nothing leaves a terminal status and no request is sent."""
        if entity_type == EntityType.PROJECT:
            store.upsert(create_test_project(status=terminal))
            entity_id = "proj-1"
        else:
            store.upsert(create_test_report(approval_status=terminal))
            entity_id = "rep-1"
        engine = make_engine(entity_type, api_client, store)

        for target in targets:
            result = await engine.request_transition(entity_id, target, "reason")
            assert result.success is False
            assert result.failure == TransitionFailure.INVALID_TRANSITION
            assert isinstance(result.error, ValidationError)

        api_client.patch.assert_not_called()

    @pytest.mark.asyncio
    async def test_skipping_in_progress_rejected(self, store, api_client):
        """Test Planning -> Completed is refused and the store keeps Planning."""
        store.upsert(create_test_project(status="Planning"))
        engine = make_engine(EntityType.PROJECT, api_client, store)

        result = await engine.request_transition("proj-1", "Completed", "done early")

        assert result.failure == TransitionFailure.INVALID_TRANSITION
        assert store.get(EntityType.PROJECT, "proj-1").status == "Planning"
        api_client.patch.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_current_status_fails_closed(self, store, api_client):
        store.upsert(create_test_project(status="Archived"))
        engine = make_engine(EntityType.PROJECT, api_client, store)

        assert engine.allowed_transitions("proj-1") == []
        result = await engine.request_transition("proj-1", "Planning", "revive")

        assert result.failure == TransitionFailure.INVALID_TRANSITION
        api_client.patch.assert_not_called()

    @pytest.mark.asyncio
    async def test_entity_not_loaded_is_conflict(self, store, api_client):
        engine = make_engine(EntityType.PROJECT, api_client, store)

        result = await engine.request_transition("ghost", "OnHold", "x")

        assert result.failure == TransitionFailure.CONFLICTING_STATE
        assert isinstance(result.error, ConflictError)
        api_client.patch.assert_not_called()

    def test_validate_transition_raises(self, store, api_client):
        store.upsert(create_test_project(status="OnHold"))
        engine = make_engine(EntityType.PROJECT, api_client, store)

        engine.validate_transition("proj-1", "in_progress")
        with pytest.raises(ValidationError, match="Allowed: InProgress, Cancelled"):
            engine.validate_transition("proj-1", "Completed")


class TestCommit:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("source,target", VALID_PROJECT_TRANSITIONS)
    async def test_success_updates_store_and_appends_one_history_entry(
        self, source, target, store, api_client
    ):
        store.upsert(create_test_project(status=source))
        engine = make_engine(EntityType.PROJECT, api_client, store)
        api_client.patch.return_value = ok(None)

        result = await engine.request_transition("proj-1", target, "scheduled")

        assert result.success is True
        assert store.get(EntityType.PROJECT, "proj-1").status == target
        history = engine.get_workflow("proj-1").status_history
        assert len(history) == 1
        assert history[0].status == target
        assert history[0].reason == "scheduled"

    @pytest.mark.asyncio
    async def test_request_body(self, store, api_client):
        store.upsert(create_test_project(status="Planning"))
        engine = make_engine(EntityType.PROJECT, api_client, store)

        await engine.request_transition("proj-1", "on hold", "Permit delay", notify_stakeholders=False)

        path, body = api_client.patch.await_args.args
        assert path == "/api/v1/projects/proj-1/status"
        assert body["status"] == "OnHold"
        assert body["reason"] == "Permit delay"
        assert body["notifyStakeholders"] is False
        assert "effectiveDate" in body

    @pytest.mark.asyncio
    async def test_returned_entity_replaces_snapshot(self, store, api_client):
        store.upsert(create_test_project(status="Planning"))
        engine = make_engine(EntityType.PROJECT, api_client, store)
        api_client.patch.return_value = ok(
            {"projectId": "proj-1", "status": "InProgress", "projectName": "Renamed", "team": "North"}
        )

        result = await engine.request_transition("proj-1", "InProgress", "kickoff")

        assert result.entity.project_name == "Renamed"
        assert store.get(EntityType.PROJECT, "proj-1").project_name == "Renamed"

    @pytest.mark.asyncio
    async def test_daily_report_status_written_to_approval_status(self, store, api_client):
        store.upsert(create_test_report(approval_status="Submitted"))
        engine = make_engine(EntityType.DAILY_REPORT, api_client, store)

        result = await engine.request_transition("rep-1", "Approved", "Looks good")

        assert result.success is True
        assert result.requires_approval is True
        assert result.approval_level == "supervisor"
        assert store.get(EntityType.DAILY_REPORT, "rep-1").snapshot()["approvalStatus"] == "Approved"
        path, _ = api_client.patch.await_args.args
        assert path == "/api/v1/daily-reports/rep-1/status"

    @pytest.mark.asyncio
    async def test_history_duration_days(self, store, api_client):
        store.upsert(create_test_project(status="Planning"))
        engine = make_engine(EntityType.PROJECT, api_client, store)

        await engine.request_transition("proj-1", "InProgress", "start")
        engine._history["proj-1"][0].changed_at -= timedelta(days=3, hours=2)
        await engine.request_transition("proj-1", "OnHold", "weather")

        history = engine.history("proj-1")
        assert [entry.status for entry in history] == ["InProgress", "OnHold"]
        assert history[0].duration_days is None
        assert history[1].duration_days == 3


class TestFailureMapping:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response,failure,error_type",
        [
            (failed(None, "Could not reach the server."), TransitionFailure.NETWORK_FAILURE, TransportError),
            (failed(503, "Service Unavailable"), TransitionFailure.NETWORK_FAILURE, TransportError),
            (failed(409, "Version mismatch"), TransitionFailure.CONFLICTING_STATE, ConflictError),
            (failed(404, "Resource not found."), TransitionFailure.CONFLICTING_STATE, ConflictError),
            (failed(400, "Reason is too short"), TransitionFailure.REJECTED, ServerRejection),
            (
                failed(403, "Status change requires manager approval"),
                TransitionFailure.APPROVAL_REQUIRED,
                ApprovalRequiredError,
            ),
            (
                failed(400, "Denied", data={"requiresApproval": True, "approvalLevel": "admin"}),
                TransitionFailure.APPROVAL_REQUIRED,
                ApprovalRequiredError,
            ),
        ],
    )
    async def test_failure_leaves_status_unchanged(
        self, response, failure, error_type, store, api_client
    ):
        store.upsert(create_test_project(status="InProgress"))
        engine = make_engine(EntityType.PROJECT, api_client, store)
        api_client.patch.return_value = response

        result = await engine.request_transition("proj-1", "Completed", "finished")

        assert result.success is False
        assert result.failure == failure
        assert isinstance(result.error, error_type)
        assert store.get(EntityType.PROJECT, "proj-1").status == "InProgress"
        assert engine.history("proj-1") == []

    @pytest.mark.asyncio
    async def test_only_network_failures_are_retryable(self, store, api_client):
        store.upsert(create_test_project(status="InProgress"))
        engine = make_engine(EntityType.PROJECT, api_client, store)

        api_client.patch.return_value = failed(None)
        assert (await engine.request_transition("proj-1", "OnHold", "x")).retryable is True

        api_client.patch.return_value = failed(400, "no")
        assert (await engine.request_transition("proj-1", "OnHold", "x")).retryable is False

    @pytest.mark.asyncio
    async def test_approval_level_from_server(self, store, api_client):
        store.upsert(create_test_project(status="InProgress"))
        engine = make_engine(EntityType.PROJECT, api_client, store)
        api_client.patch.return_value = failed(
            400, "Denied", data={"requiresApproval": True, "approvalLevel": "director"}
        )

        result = await engine.request_transition("proj-1", "Completed", "finished")

        assert result.approval_level == "director"
        assert result.error.approval_level == "director"


class TestWorkflowSnapshot:
    def test_local_workflow(self, store, api_client):
        store.upsert(create_test_project(status="InProgress"))
        engine = make_engine(EntityType.PROJECT, api_client, store)

        workflow = engine.get_workflow("proj-1")

        assert workflow.current_status == "InProgress"
        assert workflow.allowed_transitions == ["OnHold", "Completed", "Cancelled"]
        assert workflow.requires_approval is True
        assert workflow.approval_level == "manager"

    def test_unknown_entity_has_no_workflow(self, store, api_client):
        assert make_engine(EntityType.PROJECT, api_client, store).get_workflow("ghost") is None

    @pytest.mark.asyncio
    async def test_fetch_workflow_merges_server_view(self, store, api_client):
        store.upsert(create_test_project(status="InProgress"))
        engine = make_engine(EntityType.PROJECT, api_client, store)
        api_client.get.return_value = ok(
            {
                "currentStatus": "InProgress",
                "allowedTransitions": ["OnHold", "Completed", "Planning"],
                "requiresApproval": True,
                "approvalLevel": "manager",
                "statusHistory": [
                    {"status": "Planning", "changedAt": "2024-04-01T00:00:00Z", "changedBy": "alice"},
                    {"status": "InProgress", "changedAt": "2024-04-10T00:00:00Z", "changedBy": "bob", "durationDays": 9},
                ],
            }
        )

        workflow = await engine.fetch_workflow("proj-1")

        api_client.get.assert_awaited_once_with("/api/v1/projects/proj-1/status-workflow")
        assert workflow.allowed_transitions == ["OnHold", "Completed"]
        assert [entry.status for entry in workflow.status_history] == ["Planning", "InProgress"]
        assert workflow.status_history[1].duration_days == 9
        assert engine.history("proj-1") == []

    @pytest.mark.asyncio
    async def test_fetch_workflow_failure_raises(self, store, api_client):
        engine = make_engine(EntityType.PROJECT, api_client, store)
        api_client.get.return_value = failed(404, "Resource not found.")

        with pytest.raises(TransportError):
            await engine.fetch_workflow("proj-1")

    @pytest.mark.asyncio
    async def test_committed_history_survives_fetch_workflow(self, store, api_client):
        """Test that a later fetch never drops an entry this client committed."""
        store.upsert(create_test_project(status="Planning"))
        engine = make_engine(EntityType.PROJECT, api_client, store)
        await engine.request_transition("proj-1", "InProgress", "kickoff")
        local_entry = engine.history("proj-1")[0]
        api_client.get.return_value = ok(
            {
                "currentStatus": "InProgress",
                "statusHistory": [
                    {"status": "Planning", "changedAt": "2024-04-01T00:00:00Z", "changedBy": "alice"},
                ],
            }
        )

        workflow = await engine.fetch_workflow("proj-1")

        assert engine.history("proj-1") == [local_entry]
        assert [entry.status for entry in workflow.status_history] == ["Planning", "InProgress"]
        assert workflow.status_history[1] == local_entry

    @pytest.mark.asyncio
    async def test_daily_report_workflow_built_locally(self, store, api_client):
        store.upsert(create_test_report(approval_status="Submitted"))
        engine = make_engine(EntityType.DAILY_REPORT, api_client, store)

        workflow = await engine.fetch_workflow("rep-1")

        api_client.get.assert_not_called()
        assert workflow.current_status == "Submitted"
        assert workflow == engine.get_workflow("rep-1")

    @pytest.mark.asyncio
    async def test_daily_report_workflow_unknown_entity(self, store, api_client):
        engine = make_engine(EntityType.DAILY_REPORT, api_client, store)

        with pytest.raises(ConflictError):
            await engine.fetch_workflow("ghost")


class TestConcurrentRemoval:
    @pytest.mark.asyncio
    async def test_entity_removed_during_commit_not_restored(self, store, api_client):
        """Test that a delete landing while the PATCH is in flight wins."""
        store.upsert(create_test_project(status="Planning"))
        engine = make_engine(EntityType.PROJECT, api_client, store)

        async def patch(path, body=None):
            store.remove(EntityType.PROJECT, "proj-1")
            return ok(None)

        api_client.patch.side_effect = patch

        result = await engine.request_transition("proj-1", "InProgress", "kickoff")

        assert result.success is True
        assert result.entity.status == "InProgress"
        assert store.get(EntityType.PROJECT, "proj-1") is None
        assert [entry.status for entry in engine.history("proj-1")] == ["InProgress"]

    @pytest.mark.asyncio
    async def test_returned_entity_not_restored_after_removal(self, store, api_client):
        store.upsert(create_test_project(status="Planning"))
        engine = make_engine(EntityType.PROJECT, api_client, store)

        async def patch(path, body=None):
            store.remove(EntityType.PROJECT, "proj-1")
            return ok({"projectId": "proj-1", "status": "InProgress"})

        api_client.patch.side_effect = patch

        await engine.request_transition("proj-1", "InProgress", "kickoff")

        assert store.get(EntityType.PROJECT, "proj-1") is None
