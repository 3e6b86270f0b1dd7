"""Role and assignment resolver.

Capabilities are resolved from the caller's global roles once per request and
combined with the evaluation's current assignments. Nothing here is cached:
assignments change between requests, so every operation resolves again.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping

from evalflow.engine.aggregate import Assignment, Evaluation
from evalflow.engine.errors import Unauthorized
from evalflow.engine.sections import MULTI_ENTRY_SECTIONS, SECTION_ORDER, SectionId


class Capability(str, Enum):
    DRAFTING = "DRAFTING"
    COORDINATION = "COORDINATION"
    COMMITTEE = "COMMITTEE"


ROLE_CAPABILITIES: dict[str, frozenset[Capability]] = {
    "ADMIN": frozenset(Capability),
    "ADMINISTRATOR": frozenset(Capability),
    "SUPER_ADMIN": frozenset(Capability),
    "PROCUREMENT_MANAGER": frozenset({Capability.DRAFTING, Capability.COORDINATION}),
    "PROCUREMENT_OFFICER": frozenset({Capability.DRAFTING}),
    "PROCUREMENT": frozenset({Capability.DRAFTING}),
    "EVALUATION_COMMITTEE": frozenset({Capability.COMMITTEE}),
    "COMMITTEE_MEMBER": frozenset({Capability.COMMITTEE}),
}


def normalize_role(name: str) -> str:
    return "_".join(name.strip().upper().replace("-", " ").split())


def capabilities_from_roles(role_names: Iterable[str]) -> frozenset[Capability]:
    """Map free-text role names to capabilities. Unknown roles grant nothing."""
    capabilities: set[Capability] = set()
    for name in role_names:
        capabilities |= ROLE_CAPABILITIES.get(normalize_role(name), frozenset())
    return frozenset(capabilities)


@dataclass(frozen=True)
class Caller:
    """Authenticated user and the capabilities resolved for this request."""

    user_id: int
    capabilities: frozenset[Capability] = frozenset()
    name: str | None = None

    @classmethod
    def from_roles(cls, user_id: int, roles: Iterable[str], name: str | None = None) -> "Caller":
        return cls(user_id=user_id, capabilities=capabilities_from_roles(roles), name=name)

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities


@dataclass(frozen=True)
class SectionCapabilities:
    can_edit: bool = False
    can_submit: bool = False
    can_verify: bool = False
    can_return: bool = False
    own_entry_only: bool = False
    # Edit comes only from a structure grant: saves must be flagged as table
    # structure changes and cannot submit.
    structure_only: bool = False


@dataclass
class StructureEditGrant:
    """One-shot permission to reshape a section's tables regardless of assignment.

    Covers saves flagged as structure changes, not content saves or submits.
    Lives only in the service's memory; the first structure save on the
    section consumes it.
    """

    evaluation_id: int
    section: SectionId
    user_id: int
    granted_by: int
    used: bool = field(default=False)

    def applies_to(self, caller: Caller, evaluation: Evaluation, section: SectionId) -> bool:
        return (
            not self.used
            and self.user_id == caller.user_id
            and self.evaluation_id == evaluation.id
            and self.section == section
        )

    def consume(self) -> None:
        self.used = True


def is_drafting_owner(caller: Caller, evaluation: Evaluation) -> bool:
    """Creator with drafting rights, or any coordinator."""
    if caller.has(Capability.COORDINATION):
        return True
    return caller.has(Capability.DRAFTING) and evaluation.created_by == caller.user_id


def _may_draft(caller: Caller, evaluation: Evaluation, section: SectionId) -> bool:
    if not caller.has(Capability.DRAFTING):
        return False
    own = evaluation.assignment_for(caller.user_id)
    if own is not None:
        # An active assignment is the caller's whole scope, owners included.
        return own.covers(section)
    covered = any(a.covers(section) for a in evaluation.active_assignments())
    # Sections nobody is assigned to fall back to the drafting owner.
    return not covered and is_drafting_owner(caller, evaluation)


def section_capabilities(
    caller: Caller,
    evaluation: Evaluation,
    section: SectionId,
    grant: StructureEditGrant | None = None,
) -> SectionCapabilities:
    committee = caller.has(Capability.COMMITTEE)
    drafting = _may_draft(caller, evaluation, section)
    structure_only = (
        not drafting
        and grant is not None
        and caller.has(Capability.DRAFTING)
        and grant.applies_to(caller, evaluation, section)
    )
    return SectionCapabilities(
        can_edit=drafting or structure_only,
        can_submit=drafting,
        can_verify=committee,
        can_return=committee,
        own_entry_only=(drafting or structure_only) and section in MULTI_ENTRY_SECTIONS,
        structure_only=structure_only,
    )


def resolve(
    caller: Caller,
    evaluation: Evaluation,
    grants: Mapping[SectionId, StructureEditGrant] | None = None,
) -> dict[SectionId, SectionCapabilities]:
    """Capabilities of the caller on every section of the evaluation."""
    grants = grants or {}
    return {
        section: section_capabilities(caller, evaluation, section, grants.get(section))
        for section in SECTION_ORDER
    }


def require(allowed: bool, action: str, section: SectionId | None = None) -> None:
    if not allowed:
        where = f" section {section.value}" if section is not None else ""
        raise Unauthorized(
            f"Not permitted to {action}{where}",
            action=action,
            section=section.value if section is not None else None,
        )


def find_overlaps(
    assignments: Iterable[Assignment],
    user_ids: Iterable[int],
    sections: Iterable[SectionId],
) -> dict[SectionId, list[int]]:
    """Single-owner sections that would end up actively held by several users.

    Maps each such section to the users involved. C allows several assignees.
    """
    requested_users = set(user_ids)
    active = [a for a in assignments if a.is_active]
    overlaps: dict[SectionId, list[int]] = {}
    for section in sections:
        if section in MULTI_ENTRY_SECTIONS:
            continue
        holders = {a.user_id for a in active if a.covers(section)} | requested_users
        if len(holders) > 1:
            overlaps[section] = sorted(holders)
    return overlaps
