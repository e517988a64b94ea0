"""Daily report entity."""

from enum import Enum
from typing import ClassVar, Optional

from pydantic import AliasChoices, Field

from application.entity.synced_entity import EntityType, SyncedEntity


class DailyReportStatus(str, Enum):
    """Approval status of a daily report."""

    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class DailyReport(SyncedEntity):
    """Daily site report; its status is the approval status."""

    ENTITY_TYPE: ClassVar[EntityType] = EntityType.DAILY_REPORT
    STATUS_ENUM: ClassVar[type] = DailyReportStatus
    UNKNOWN_NAME: ClassVar[str] = "Unknown Report"

    id: str = Field(
        ...,
        validation_alias=AliasChoices("id", "reportId", "dailyReportId"),
        serialization_alias="id",
    )

    status: str = Field(
        ...,
        validation_alias=AliasChoices("approvalStatus", "status"),
        serialization_alias="approvalStatus",
    )

    project_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("projectId", "project_id"),
        serialization_alias="projectId",
    )

    report_date: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("reportDate", "report_date"),
        serialization_alias="reportDate",
    )

    @property
    def display_name(self) -> str:
        if self.report_date:
            return f"Daily report {self.report_date}"
        return self.UNKNOWN_NAME
