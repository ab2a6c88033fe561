"""Pipeline transition rules.

The board pipeline is the ordered status list in ``TASK_STATUSES``. The
default edge set only allows a single step forward; ``rework`` additionally
allows sending a task back to an earlier column.
"""

from collections.abc import Mapping

from agent_board.core.errors import InvalidTransitionError, ValidationError
from agent_board.db.models import TASK_STATUSES


def _linear_edges() -> dict[str, frozenset[str]]:
    edges = {}
    for current, following in zip(TASK_STATUSES, TASK_STATUSES[1:]):
        edges[current] = frozenset({following})
    edges[TASK_STATUSES[-1]] = frozenset()
    return edges


LINEAR_TRANSITIONS: dict[str, frozenset[str]] = _linear_edges()

REWORK_EDGES: dict[str, frozenset[str]] = {
    "refinement": frozenset({"backlog"}),
    "pending_approval": frozenset({"refinement"}),
    "todo": frozenset({"backlog"}),
    "in_progress": frozenset({"backlog"}),
    "review": frozenset({"refinement", "backlog"}),
    "done": frozenset({"backlog"}),
}

REWORK_TRANSITIONS: dict[str, frozenset[str]] = {
    status: LINEAR_TRANSITIONS[status] | REWORK_EDGES.get(status, frozenset())
    for status in TASK_STATUSES
}

PRESETS = {
    "linear": LINEAR_TRANSITIONS,
    "rework": REWORK_TRANSITIONS,
}


def validate_status(status: str) -> str:
    if status not in TASK_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(TASK_STATUSES)}"
        )
    return status


class TransitionGuard:
    """Checks status changes against a fixed edge set."""

    def __init__(self, edges: Mapping[str, set[str] | frozenset[str]] | None = None):
        edges = LINEAR_TRANSITIONS if edges is None else edges
        unknown = {s for s in edges if s not in TASK_STATUSES}
        for targets in edges.values():
            unknown |= {t for t in targets if t not in TASK_STATUSES}
        if unknown:
            raise ValueError(f"Unknown statuses in transition map: {sorted(unknown)}")
        self.edges = {s: frozenset(edges.get(s, ())) for s in TASK_STATUSES}

    @classmethod
    def from_preset(cls, name: str) -> "TransitionGuard":
        try:
            return cls(PRESETS[name])
        except KeyError:
            raise ValueError(
                f"Unknown transition preset '{name}'. Choose from: {', '.join(PRESETS)}"
            ) from None

    def allowed(self, current: str) -> list[str]:
        """Targets reachable from ``current`` in pipeline order."""
        return [s for s in TASK_STATUSES if s in self.edges.get(current, ())]

    def can_move(self, current: str, target: str) -> bool:
        return target in self.edges.get(current, ())

    def check(self, current: str, target: str) -> None:
        validate_status(target)
        if not self.can_move(current, target):
            raise InvalidTransitionError(current, target)
