"""Workflow / State Machine for form assignments.

This module centralizes the transition table for one assignment node.

Goals:
1) No scattered status checks across routers and the chain engine
2) Rules are data-driven, testable, and easy to extend
3) One source of truth for:
   - allowed actions per status
   - state transitions
   - which actions need approval authority or a routing target

Who may act (custody, authority) is decided by ``app.core.policy`` and the
chain engine; this table only says what each status permits.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.core.policy import Actor, TemplateRules, can_approve_directly, can_delegate
from app.db.models.assignment import AssignmentStatus


Action = str  # "save_draft" | "delegate" | "mark_final" | "mark_back" | "approve" | "submit"

S = AssignmentStatus


@dataclass(frozen=True, slots=True)
class Transition:
    """One transition edge in the state machine."""

    from_status: AssignmentStatus
    action: Action
    to_status: AssignmentStatus
    # action needs the durable approval-authority capability
    requires_authority: bool = False
    # action needs a target user (delegate: new holder, mark_back: approver)
    needs_target: bool = False
    # only valid when the template disables delegation
    restricted_mode_only: bool = False


# ---- State machine configuration ----


TRANSITIONS: tuple[Transition, ...] = (
    # drafting (Edited is re-entrant)
    Transition(S.PENDING, "save_draft", S.EDITED),
    Transition(S.EDITED, "save_draft", S.EDITED),
    # edit-in-place after the gate, status unchanged
    Transition(S.FINALIZED, "save_draft", S.FINALIZED, requires_authority=True),
    Transition(S.APPROVED, "save_draft", S.APPROVED),
    # hand-off: creates a child node, this node keeps its status
    Transition(S.PENDING, "delegate", S.PENDING, needs_target=True),
    Transition(S.EDITED, "delegate", S.EDITED, needs_target=True),
    # freeze
    Transition(S.EDITED, "mark_final", S.FINALIZED),
    # routing hint for sign-off, status unchanged
    Transition(S.FINALIZED, "mark_back", S.FINALIZED, needs_target=True),
    # sign-off
    Transition(S.FINALIZED, "approve", S.APPROVED, requires_authority=True),
    Transition(S.EDITED, "approve", S.APPROVED, requires_authority=True),
    # final hand-in to the distributor
    Transition(S.APPROVED, "submit", S.SUBMITTED),
    Transition(S.EDITED, "submit", S.SUBMITTED, restricted_mode_only=True),
)

TERMINAL_STATUSES = (S.SUBMITTED,)


def get_transition(status: AssignmentStatus, action: Action) -> Transition:
    for t in TRANSITIONS:
        if t.from_status == status and t.action == action:
            return t
    raise KeyError("unknown transition")


def has_transition(status: AssignmentStatus, action: Action) -> bool:
    try:
        get_transition(status, action)
    except KeyError:
        return False
    return True


def allowed_actions(
    actor: Actor,
    status: AssignmentStatus,
    template: TemplateRules,
    *,
    is_holder: bool,
    is_custodian: bool,
    is_root_holder: bool = False,
    is_routed: bool = False,
) -> list[Action]:
    """Actions ``actor`` can execute on a live leaf right now.

    ``is_holder``: actor is the leaf's assignee.
    ``is_routed``: actor is the approver the leaf was last sent to.
    ``is_custodian``: holder, the routed-to approver, or the root assignee.
    """
    if status in TERMINAL_STATUSES or not is_custodian:
        return []

    out: list[Action] = []
    for t in TRANSITIONS:
        if t.from_status != status or t.action in out:
            continue
        if t.requires_authority and not can_approve_directly(actor):
            continue
        if t.restricted_mode_only and template.allow_delegation:
            continue

        if t.action == "delegate":
            if not (is_holder and can_delegate(actor, template, status)):
                continue
        elif t.action == "mark_final":
            if not is_holder:
                continue
        elif t.action == "mark_back":
            # a routed-to approver without authority passes it further up
            if not (is_holder or is_routed):
                continue
        elif t.action == "approve":
            # approving straight from a draft is for the holder only
            if status == S.EDITED and not is_holder:
                continue
        elif t.action == "save_draft":
            if status == S.APPROVED and not (is_root_holder or can_approve_directly(actor)):
                continue
            if status in (S.PENDING, S.EDITED) and not is_holder:
                continue
        elif t.action == "submit":
            if status == S.EDITED and not is_holder:
                continue
            if status == S.APPROVED and not (is_root_holder or can_approve_directly(actor)):
                continue
        out.append(t.action)
    return out
