"""Change-safety gate.

Compares the last applied spec against a fully defaulted candidate, field
by field, and rejects deltas that would disrupt a live data plane. The
policy itself is the FIELD_POLICIES table in models.spec: each field path
is immutable, mirrored from the cluster config, or free. Paths with no
entry are rejected.
"""

from dataclasses import dataclass
from typing import Any

from network_operator.exceptions import UnsafeChangeError
from network_operator.logging_config import get_logger
from network_operator.models.spec import (
    MTU_RELEVANT_FIELDS,
    DesiredSpec,
    FieldPolicy,
    Mutability,
    flatten_spec,
    policy_for,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class FieldChange:
    """A single field that differs between two specs."""

    path: str
    previous: Any
    candidate: Any


def diff_specs(previous: DesiredSpec | None, candidate: DesiredSpec | None) -> list[FieldChange]:
    """Structural per-field comparison of two specs, sorted by path."""
    before = flatten_spec(previous)
    after = flatten_spec(candidate)
    changes = []
    for path in sorted(set(before) | set(after)):
        old, new = before.get(path), after.get(path)
        if old != new:
            changes.append(FieldChange(path=path, previous=old, candidate=new))
    return changes


def _migration_covers(coverage: str, change: FieldChange, candidate: DesiredSpec) -> bool:
    """Whether the candidate's declared migration permits this change."""
    if not candidate.has_active_migration():
        return False
    migration = candidate.migration
    if coverage == "network_type":
        return bool(migration.network_type) and migration.network_type == candidate.network_type
    if coverage == "mtu":
        target = migration.mtu.network if migration.mtu else None
        return target is not None and target.to is not None and change.candidate == target.to
    return False


def _is_append(change: FieldChange) -> bool:
    old, new = change.previous or [], change.candidate or []
    return isinstance(old, list) and isinstance(new, list) and new[: len(old)] == old


def _check_change(
    change: FieldChange, policy: FieldPolicy | None, candidate: DesiredSpec
) -> str | None:
    """Return a violation message, or None when the change is allowed."""
    if policy is None:
        return f"cannot change unrecognized field {change.path}"
    if policy.mutability == Mutability.FREE:
        return None
    if policy.mutability == Mutability.MIRRORED:
        if policy.append_only and _is_append(change):
            return None
        return (
            f"cannot change {change.path} from {change.previous!r} to {change.candidate!r}; "
            "it is mirrored from the cluster network configuration"
        )
    if any(_migration_covers(c, change, candidate) for c in policy.covered_by):
        return None
    return f"cannot change {change.path} from {change.previous!r} to {change.candidate!r}"


def find_violations(previous: DesiredSpec | None, candidate: DesiredSpec) -> list[str]:
    """List every unsafe field change. Empty when the change may be applied."""
    if previous is None:
        return []
    violations = []
    for change in diff_specs(previous, candidate):
        message = _check_change(change, policy_for(change.path), candidate)
        if message:
            violations.append(message)
    return violations


def check_change_safe(previous: DesiredSpec | None, candidate: DesiredSpec) -> None:
    """Gate a candidate spec against the last applied one.

    Args:
        previous: Last applied spec, None before the first apply
        candidate: Fully defaulted candidate spec

    Raises:
        UnsafeChangeError: If any field change is not allowed
    """
    violations = find_violations(previous, candidate)
    if violations:
        logger.debug(f"Change rejected with {len(violations)} violations")
        raise UnsafeChangeError("; ".join(violations), violations=violations)


def mtu_relevant_change(previous: DesiredSpec | None, candidate: DesiredSpec) -> bool:
    """Whether the delta touches a field that needs a fresh host MTU."""
    if previous is None:
        return False
    for change in diff_specs(previous, candidate):
        if any(
            change.path == f or change.path.startswith(f + ".") for f in MTU_RELEVANT_FIELDS
        ):
            return True
    return False
