"""
Bulk operation payloads and results.

A bulk operation is a closed tagged union keyed by ``operation``; each
variant carries its own typed payload.
"""

from typing import Annotated, Any, Dict, List, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter


class UpdateStatusOperation(BaseModel):
    operation: Literal["update_status"] = "update_status"
    status: str
    reason: str
    notify_stakeholders: bool = True

    def request_data(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "reason": self.reason,
            "notifyStakeholders": self.notify_stakeholders,
        }


class AssignManagerOperation(BaseModel):
    operation: Literal["assign_manager"] = "assign_manager"
    project_manager_id: str

    def request_data(self) -> Dict[str, Any]:
        return {"projectManagerId": self.project_manager_id}


class UpdateTeamOperation(BaseModel):
    operation: Literal["update_team"] = "update_team"
    team: str

    def request_data(self) -> Dict[str, Any]:
        return {"team": self.team}


class DeleteOperation(BaseModel):
    operation: Literal["delete"] = "delete"

    def request_data(self) -> Dict[str, Any]:
        return {}


BulkOperation = Annotated[
    Union[
        UpdateStatusOperation,
        AssignManagerOperation,
        UpdateTeamOperation,
        DeleteOperation,
    ],
    Field(discriminator="operation"),
]

_bulk_operation_adapter: TypeAdapter = TypeAdapter(BulkOperation)


def parse_bulk_operation(data: Dict[str, Any]) -> BulkOperation:
    """Validate a raw ``{"operation": ..., ...}`` mapping into its variant."""
    return _bulk_operation_adapter.validate_python(data)


class BulkOperationFailure(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    entity_id: str = Field(
        validation_alias=AliasChoices("entityId", "entity_id", "projectId", "reportId")
    )
    error: str


class BulkOperationSummary(BaseModel):
    total: int
    successful: int
    failed: int


class BulkOperationResult(BaseModel):
    """Per-id outcome of a bulk operation. Lists are unordered."""

    model_config = ConfigDict(extra="ignore")

    successful: List[str] = Field(default_factory=list)
    failed: List[BulkOperationFailure] = Field(default_factory=list)
    summary: BulkOperationSummary

    @property
    def failed_ids(self) -> List[str]:
        return [failure.entity_id for failure in self.failed]
