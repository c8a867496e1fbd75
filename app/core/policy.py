"""Workflow authority policy.

Pure decision functions: no database, no I/O. Callers resolve the actor's
approval authority once (see ``app.auth.deps.get_current_actor``) and pass
plain values in, which keeps every rule here testable as a table of
(actor flags, template flags, chain shape) -> decision.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from app.db.models.assignment import AssignmentStatus
from app.db.models.user import Role, ADMIN_ROLES


@dataclass(frozen=True, slots=True)
class Actor:
    """The authenticated caller, as seen by the workflow."""

    id: int
    role: Role = Role.USER
    lab_id: int | None = None
    designation: str = ""
    has_approval_authority: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


@dataclass(frozen=True, slots=True)
class TemplateRules:
    created_by_id: int
    allow_delegation: bool = True
    allow_multiple_submissions: bool = False


@dataclass(frozen=True, slots=True)
class ChainHop:
    """One hop of a delegation chain: ``assigned_by`` handed the form to ``assigned_to``."""

    assignment_id: int
    assigned_to_id: int
    assigned_by_id: int


DELEGABLE_STATES = (AssignmentStatus.PENDING, AssignmentStatus.EDITED)


def resolve_approval_authority(designation: str | None, designations: Iterable[str]) -> bool:
    d = (designation or "").strip().lower()
    if not d:
        return False
    return d in {x.strip().lower() for x in designations if x and x.strip()}


def can_delegate(actor: Actor, template: TemplateRules, status: AssignmentStatus | None = None) -> bool:
    # Authority does not override a template that disables delegation.
    if not template.allow_delegation:
        return False
    if status is None:
        return True
    return status in DELEGABLE_STATES


def can_approve_directly(actor: Actor) -> bool:
    return bool(actor.has_approval_authority)


def eligible_approval_targets(chain: Sequence[ChainHop], actor: Actor, template: TemplateRules) -> list[int]:
    """Prior chain members ``actor`` may route a finalized form to for sign-off.

    ``chain`` is ordered root first and ends with the actor's own hop.

    - Delegation disabled: only the actor's own assigner.
    - Otherwise every earlier member except the actor, in chain order.
    - Without approval authority the template creator is dropped, as long as
      somebody else is left to route through.
    """
    if not chain:
        return []

    if not template.allow_delegation:
        assigner = chain[-1].assigned_by_id
        return [assigner] if assigner != actor.id else []

    members: list[int] = []
    for hop in chain:
        for uid in (hop.assigned_by_id, hop.assigned_to_id):
            if uid != actor.id and uid not in members:
                members.append(uid)

    if actor.has_approval_authority:
        return members

    without_creator = [uid for uid in members if uid != template.created_by_id]
    return without_creator or members
