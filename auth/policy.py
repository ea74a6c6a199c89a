"""
auth/policy.py -- Policy Engine: role, scope, and attribute-based checks.

The engine is stateless. Every function takes the facts it needs and returns
a bool; nothing here reads a token or a store.

Check semantics:
  Role check       -- OR: grant if the subject holds at least one required role.
  Scope check      -- AND: grant only if the subject holds every required scope.
  Scope sets       -- grant if any one of several scope sets is fully held.
  Attribute check  -- OR across an ordered policy list: one true policy grants.
                      There is no deny-override; a policy cannot veto another.

Fail-closed rules:
  - An empty requirement grants nothing. No checks configured -> deny.
  - Policies read context with .get() and treat a missing field as False.
  - A policy that raises KeyError/TypeError/ValueError/AttributeError on
    unexpected input is logged and counted as False, never as a grant.

Combination: a Requirement bundles any mix of the checks with mode "all"
(every configured check must pass) or "any" (one configured check is
enough). The caller picks the mode per protected operation.
"""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Callable, Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from auth.models import Subject

logger = logging.getLogger("authcore.policy")

Policy = Callable[[Subject, Mapping, Mapping], bool]

_EMPTY: Mapping = {}


# ---------------------------------------------------------------------------
# Primitive checks
# ---------------------------------------------------------------------------


def has_any_role(subject_roles: Iterable[str], required_roles: Iterable[str]) -> bool:
    """Role check: non-empty intersection."""
    return bool(set(subject_roles) & set(required_roles))


def has_all_scopes(subject_scopes: Iterable[str], required_scopes: Iterable[str]) -> bool:
    """Scope check: subject scopes must be a superset. Empty requirement -> deny."""
    required = set(required_scopes)
    if not required:
        return False
    return required <= set(subject_scopes)


def has_any_scope_set(subject_scopes: Iterable[str], scope_sets: Iterable[Iterable[str]]) -> bool:
    """Grant if at least one of the alternative scope sets is fully held."""
    held = set(subject_scopes)
    return any(has_all_scopes(held, required) for required in scope_sets)


def _safe_call(policy: Policy, subject: Subject, resource: Mapping, context: Mapping) -> bool:
    try:
        return policy(subject, resource, context) is True
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        name = getattr(policy, "__name__", repr(policy))
        logger.warning("Policy %s failed on its input (%s); treating as deny", name, exc.__class__.__name__)
        return False


def evaluate_policies(
    policies: Sequence[Policy],
    subject: Subject,
    resource: Mapping | None = None,
    context: Mapping | None = None,
) -> bool:
    """Attribute check: True if at least one policy returns True. Empty list -> deny."""
    resource = resource if resource is not None else _EMPTY
    context = context if context is not None else _EMPTY
    return any(_safe_call(p, subject, resource, context) for p in policies)


# ---------------------------------------------------------------------------
# Built-in policies
# ---------------------------------------------------------------------------


def ownership_policy(subject: Subject, resource: Mapping, context: Mapping) -> bool:
    """Allow if the subject owns the resource (resource["owner_id"] == subject.id)."""
    owner = resource.get("owner_id")
    return owner is not None and str(owner) == subject.id


def admin_role_policy(subject: Subject, resource: Mapping, context: Mapping) -> bool:
    """Allow if the subject holds the "admin" role."""
    return "admin" in subject.roles


def role_policy(*roles: str) -> Policy:
    """Build a policy that allows any subject holding one of ``roles``."""

    def policy(subject: Subject, resource: Mapping, context: Mapping) -> bool:
        return has_any_role(subject.roles, roles)

    policy.__name__ = f"role_policy({', '.join(roles)})"
    return policy


def _context_time(context: Mapping) -> datetime | None:
    value = context.get("time")
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def time_window_policy(start_hour: int = 9, end_hour: int = 17) -> Policy:
    """Allow when context["time"] falls in [start_hour, end_hour] (hour of day, inclusive).

    context["time"] may be a datetime or an ISO 8601 string. Missing or
    unparseable time -> deny. The default is working hours, 09:00-17:59.
    """
    if not (0 <= start_hour <= 23 and 0 <= end_hour <= 23):
        raise ValueError("Hours must be within 0-23")

    def policy(subject: Subject, resource: Mapping, context: Mapping) -> bool:
        moment = _context_time(context)
        if moment is None:
            return False
        if start_hour <= end_hour:
            return start_hour <= moment.hour <= end_hour
        # Window wraps midnight, e.g. 22-5.
        return moment.hour >= start_hour or moment.hour <= end_hour

    policy.__name__ = f"time_window_policy({start_hour}-{end_hour})"
    return policy


def ip_allowlist_policy(networks: Iterable[str]) -> Policy:
    """Allow when context["ip"] is inside one of ``networks`` (CIDR strings)."""
    parsed = [ipaddress.ip_network(n, strict=False) for n in networks]

    def policy(subject: Subject, resource: Mapping, context: Mapping) -> bool:
        raw = context.get("ip")
        if not isinstance(raw, str):
            return False
        try:
            address = ipaddress.ip_address(raw)
        except ValueError:
            return False
        return any(address in net for net in parsed)

    policy.__name__ = "ip_allowlist_policy"
    return policy


# ---------------------------------------------------------------------------
# Requirements
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Requirement:
    """What a protected operation demands.

    None means "this check is not part of the requirement". A configured
    check with an empty collection can never pass.

    mode="all": every configured check must pass (default).
    mode="any": at least one configured check must pass.
    """

    roles: Collection[str] | None = None
    scopes: Collection[str] | None = None
    scope_sets: Sequence[Collection[str]] | None = None
    policies: Sequence[Policy] | None = None
    mode: Literal["all", "any"] = "all"

    def __post_init__(self) -> None:
        if self.mode not in ("all", "any"):
            raise ValueError(f"Unknown requirement mode: {self.mode!r}")
        # A bare string would be read as a set of single characters.
        for name in ("roles", "scopes", "scope_sets"):
            if isinstance(getattr(self, name), str):
                raise TypeError(f"Requirement.{name} must be a collection of strings, not a str")
        if self.scope_sets is not None and any(isinstance(s, str) for s in self.scope_sets):
            raise TypeError("Requirement.scope_sets must contain collections of scopes, not bare strings")


def authorize(
    requirement: Requirement,
    subject: Subject,
    resource: Mapping | None = None,
    context: Mapping | None = None,
) -> bool:
    """Evaluate ``requirement`` for ``subject``. Default answer is deny."""
    checks: list[Callable[[], bool]] = []
    if requirement.roles is not None:
        checks.append(lambda: has_any_role(subject.roles, requirement.roles))
    if requirement.scopes is not None:
        checks.append(lambda: has_all_scopes(subject.scopes, requirement.scopes))
    if requirement.scope_sets is not None:
        checks.append(lambda: has_any_scope_set(subject.scopes, requirement.scope_sets))
    if requirement.policies is not None:
        checks.append(lambda: evaluate_policies(requirement.policies, subject, resource, context))
    if not checks:
        return False
    if requirement.mode == "any":
        return any(check() for check in checks)
    return all(check() for check in checks)


@dataclass
class RequirementMap:
    """Operation name -> Requirement table. Unknown operations are denied.

    Usage:
        requirements = RequirementMap({
            "users:list": Requirement(scopes={"read:users"}),
            "posts:create": Requirement(scopes={"write:posts"}),
        })
        requirements.for_operation("users:list")
    """

    requirements: dict[str, Requirement] = field(default_factory=dict)

    def register(self, operation: str, requirement: Requirement) -> None:
        self.requirements[operation] = requirement

    def for_operation(self, operation: str) -> Requirement:
        # An empty Requirement never passes.
        return self.requirements.get(operation, Requirement())
