from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Literal, Mapping, get_args

from incidentops.core.errors import PermissionDenied
from incidentops.domain.entities import INCIDENT_ROLES, ORG_ROLES


PolicyAction = Literal[
    "tenant.read",
    "tenant.update_settings",
    "members.invite",
    "members.remove",
    "members.change_role",
    "services.create",
    "services.update",
    "services.archive",
    "incidents.create",
    "incidents.read",
    "incidents.update",
    "incidents.change_severity",
    "incidents.resolve",
    "incidents.close",
    "incidents.assign_incident_roles",
    "timeline.add_event",
    "updates.publish_internal",
    "updates.publish_external",
    "tasks.create",
    "tasks.assign",
    "postmortems.create",
    "postmortems.edit",
    "postmortems.publish",
    "api_keys.manage",
    "webhooks.manage",
    "audit_log.read",
    "exports.create",
    "billing.read",
    "billing.manage_plan",
]

POLICY_ACTIONS: tuple[str, ...] = get_args(PolicyAction)


@dataclass(frozen=True)
class PolicyRule:
    allowed_roles: frozenset[str]
    # When set, a Responder must also hold one of these incident roles.
    responder_incident_roles: frozenset[str] | None = None


@dataclass(frozen=True)
class PolicySubject:
    # Who is asking, in which tenant, holding which org roles.
    user_id: str
    tenant_id: str
    roles: tuple[str, ...]


@dataclass(frozen=True)
class ResourceContext:
    # Incident-scoped roles the caller holds on the target resource.
    incident_roles: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    reason: str | None = None


def _rule(*roles: str, responder_incident_roles: Iterable[str] | None = None) -> PolicyRule:
    return PolicyRule(
        allowed_roles=frozenset(roles),
        responder_incident_roles=(
            frozenset(responder_incident_roles) if responder_incident_roles is not None else None
        ),
    )


_ALL_ROLES = ORG_ROLES
_MANAGERS = ("Owner", "Admin")
_OPERATORS = ("Owner", "Admin", "Responder")
_READERS = ("Owner", "Admin", "Responder", "Viewer")
_BILLING = ("Owner", "Billing")

POLICY_RULES: Mapping[str, PolicyRule] = MappingProxyType(
    {
        "tenant.read": _rule(*_ALL_ROLES),
        "tenant.update_settings": _rule(*_MANAGERS),
        "members.invite": _rule(*_MANAGERS),
        "members.remove": _rule(*_MANAGERS),
        "members.change_role": _rule(*_MANAGERS),
        "services.create": _rule(*_OPERATORS),
        "services.update": _rule(*_OPERATORS),
        "services.archive": _rule(*_OPERATORS),
        "incidents.create": _rule(*_OPERATORS),
        "incidents.read": _rule(*_READERS),
        "incidents.update": _rule(*_OPERATORS),
        "incidents.change_severity": _rule(*_OPERATORS),
        "incidents.resolve": _rule(*_OPERATORS),
        "incidents.close": _rule(*_OPERATORS),
        "incidents.assign_incident_roles": _rule(*_OPERATORS, responder_incident_roles=("IC",)),
        "timeline.add_event": _rule(*_OPERATORS),
        "updates.publish_internal": _rule(*_OPERATORS),
        "updates.publish_external": _rule(*_OPERATORS, responder_incident_roles=("IC", "CL")),
        "tasks.create": _rule(*_OPERATORS),
        "tasks.assign": _rule(*_OPERATORS),
        "postmortems.create": _rule(*_OPERATORS),
        "postmortems.edit": _rule(*_OPERATORS),
        "postmortems.publish": _rule(*_OPERATORS, responder_incident_roles=("IC",)),
        "api_keys.manage": _rule(*_MANAGERS),
        "webhooks.manage": _rule(*_MANAGERS),
        "audit_log.read": _rule(*_OPERATORS),
        "exports.create": _rule(*_MANAGERS),
        "billing.read": _rule(*_BILLING),
        "billing.manage_plan": _rule(*_BILLING),
    }
)


def validate_policy_table(rules: Mapping[str, PolicyRule] = POLICY_RULES) -> None:
    # Every action needs exactly one rule drawn from the known role vocabularies.
    missing = set(POLICY_ACTIONS) - set(rules)
    extra = set(rules) - set(POLICY_ACTIONS)
    if missing or extra:
        raise RuntimeError(
            f"Policy table mismatch: missing={sorted(missing)} unknown={sorted(extra)}"
        )
    for action, rule in rules.items():
        unknown_roles = rule.allowed_roles - set(ORG_ROLES)
        if unknown_roles or not rule.allowed_roles:
            raise RuntimeError(f"Policy rule for {action} has invalid roles: {sorted(unknown_roles)}")
        if rule.responder_incident_roles is not None:
            unknown_incident_roles = rule.responder_incident_roles - set(INCIDENT_ROLES)
            if unknown_incident_roles or not rule.responder_incident_roles:
                raise RuntimeError(
                    f"Policy rule for {action} has invalid incident roles: "
                    f"{sorted(unknown_incident_roles)}"
                )


validate_policy_table()


def denial_reason(action: str) -> str:
    # Name the action only; never explain which role would have been needed.
    return f"Missing permission for action '{action}'."


def authorize(
    action: str,
    subject: PolicySubject,
    resource: ResourceContext | None = None,
) -> AuthorizationDecision:
    rule = POLICY_RULES.get(action)
    if rule is None:
        return AuthorizationDecision(allowed=False, reason=denial_reason(action))
    incident_roles = resource.incident_roles if resource is not None else frozenset()

    for role in subject.roles:
        if role not in rule.allowed_roles:
            continue
        if role == "Responder" and rule.responder_incident_roles is not None:
            if not (incident_roles & rule.responder_incident_roles):
                continue
        return AuthorizationDecision(allowed=True)

    return AuthorizationDecision(allowed=False, reason=denial_reason(action))


def assert_authorized(
    action: str,
    subject: PolicySubject,
    resource: ResourceContext | None = None,
) -> None:
    decision = authorize(action, subject, resource)
    if not decision.allowed:
        raise PermissionDenied(decision.reason or denial_reason(action))
