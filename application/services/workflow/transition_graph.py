"""
Status transition graphs.

A graph maps each status of an entity type to the ordered list of statuses it
may move to. Edges may be marked as requiring approval, with a hint of who
approves. Graphs are checked once at construction; a malformed graph is a
configuration defect, not a runtime condition.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Type

from application.entity import (
    DailyReportStatus,
    EntityType,
    ProjectStatus,
    parse_status,
)
from common.exception.exceptions import ConfigurationError


@dataclass(frozen=True)
class TransitionEdge:
    """One allowed move from a status to ``target``."""

    target: str
    requires_approval: bool = False
    approval_level: Optional[str] = None


class TransitionGraph:
    """Allowed status transitions of one entity type."""

    def __init__(
        self,
        entity_type: EntityType,
        status_enum: Type[Enum],
        edges: Mapping[Enum, Sequence[TransitionEdge]],
        terminal: Iterable[Enum] = (),
    ):
        """
        Raises:
            ConfigurationError: If an edge leaves a terminal status, points at
                a status outside ``status_enum``, or is listed twice
        """
        self.entity_type = entity_type
        self.status_enum = status_enum
        self.terminal = frozenset(member.value for member in terminal)
        self._edges: Dict[str, List[TransitionEdge]] = {
            member.value: [] for member in status_enum
        }

        for source, outgoing in edges.items():
            if not isinstance(source, status_enum):
                raise ConfigurationError(
                    f"{entity_type.value} graph: {source!r} is not a {status_enum.__name__}"
                )
            if source.value in self.terminal and outgoing:
                raise ConfigurationError(
                    f"{entity_type.value} graph: terminal status {source.value} has outgoing edges"
                )
            seen = set()
            for edge in outgoing:
                target = parse_status(status_enum, edge.target)
                if target is None:
                    raise ConfigurationError(
                        f"{entity_type.value} graph: unknown target status {edge.target!r}"
                    )
                if target.value in seen:
                    raise ConfigurationError(
                        f"{entity_type.value} graph: duplicate edge {source.value} -> {target.value}"
                    )
                seen.add(target.value)
                self._edges[source.value].append(
                    TransitionEdge(target.value, edge.requires_approval, edge.approval_level)
                )

    def canonical(self, status: Optional[str]) -> Optional[str]:
        member = parse_status(self.status_enum, status)
        return member.value if member is not None else None

    def is_terminal(self, status: Optional[str]) -> bool:
        return self.canonical(status) in self.terminal

    def edges_from(self, current: Optional[str]) -> List[TransitionEdge]:
        """Outgoing edges in order. Unknown statuses have none."""
        key = self.canonical(current)
        if key is None:
            return []
        return list(self._edges[key])

    def allowed_transitions(self, current: Optional[str]) -> List[str]:
        return [edge.target for edge in self.edges_from(current)]

    def edge(self, current: Optional[str], target: Optional[str]) -> Optional[TransitionEdge]:
        target_key = self.canonical(target)
        if target_key is None:
            return None
        for candidate in self.edges_from(current):
            if candidate.target == target_key:
                return candidate
        return None


PROJECT_GRAPH = TransitionGraph(
    EntityType.PROJECT,
    ProjectStatus,
    {
        ProjectStatus.PLANNING: [
            TransitionEdge(ProjectStatus.IN_PROGRESS.value),
            TransitionEdge(ProjectStatus.ON_HOLD.value),
            TransitionEdge(ProjectStatus.CANCELLED.value, True, "manager"),
        ],
        ProjectStatus.IN_PROGRESS: [
            TransitionEdge(ProjectStatus.ON_HOLD.value),
            TransitionEdge(ProjectStatus.COMPLETED.value, True, "manager"),
            TransitionEdge(ProjectStatus.CANCELLED.value, True, "admin"),
        ],
        ProjectStatus.ON_HOLD: [
            TransitionEdge(ProjectStatus.IN_PROGRESS.value),
            TransitionEdge(ProjectStatus.CANCELLED.value, True, "admin"),
        ],
    },
    terminal=(ProjectStatus.COMPLETED, ProjectStatus.CANCELLED),
)

DAILY_REPORT_GRAPH = TransitionGraph(
    EntityType.DAILY_REPORT,
    DailyReportStatus,
    {
        DailyReportStatus.DRAFT: [
            TransitionEdge(DailyReportStatus.SUBMITTED.value),
        ],
        DailyReportStatus.SUBMITTED: [
            TransitionEdge(DailyReportStatus.APPROVED.value, True, "supervisor"),
            TransitionEdge(DailyReportStatus.REJECTED.value, True, "supervisor"),
        ],
        DailyReportStatus.REJECTED: [
            TransitionEdge(DailyReportStatus.DRAFT.value),
            TransitionEdge(DailyReportStatus.SUBMITTED.value),
        ],
    },
    terminal=(DailyReportStatus.APPROVED,),
)

GRAPHS: Dict[EntityType, TransitionGraph] = {
    EntityType.PROJECT: PROJECT_GRAPH,
    EntityType.DAILY_REPORT: DAILY_REPORT_GRAPH,
}


def graph_for(entity_type: EntityType) -> TransitionGraph:
    try:
        return GRAPHS[entity_type]
    except KeyError:
        raise ConfigurationError(f"No transition graph registered for {entity_type!r}")
