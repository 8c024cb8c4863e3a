from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from incidentops.core.errors import StatusTransitionInvalid
from incidentops.domain.entities import Incident
from incidentops.persistence.repos.base import UNSET, IncidentChanges


STATUS_TRANSITIONS: Mapping[str, frozenset[str]] = MappingProxyType(
    {
        "declared": frozenset({"investigating", "mitigating", "monitoring", "resolved"}),
        "investigating": frozenset({"mitigating", "monitoring", "resolved"}),
        "mitigating": frozenset({"monitoring", "resolved"}),
        "monitoring": frozenset({"resolved"}),
        "resolved": frozenset({"closed"}),
        "closed": frozenset(),
    }
)

# Entering one of these states needs incidents.resolve on top of incidents.update.
RESOLUTION_STATUSES = frozenset({"resolved", "closed"})


def can_transition(current: str, target: str) -> bool:
    if current == target:
        return True
    return target in STATUS_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    # Self-transitions are a no-op success; anything else must be a listed edge.
    if not can_transition(current, target):
        raise StatusTransitionInvalid(
            f"Cannot move incident from {current} to {target}.",
            details={"from": current, "to": target},
        )


def required_actions(incident: Incident, changes: IncidentChanges) -> list[str]:
    """Policy actions an update needs, in evaluation order.

    The base update action is always present; status and severity changes add
    their own stronger actions rather than replacing it.
    """
    actions = ["incidents.update"]
    status = changes.status
    if status is not UNSET and status != incident.status and status in RESOLUTION_STATUSES:
        actions.append("incidents.resolve")
    severity = changes.severity
    if severity is not UNSET and severity != incident.severity:
        actions.append("incidents.change_severity")
    return actions
