"""Assignment chain engine.

The only writer of FormAssignment and Submission rows. Each public mutating
function:

1. takes the per-chain lock (``app.core.locks``),
2. re-reads the chain with locking reads (every node row ``FOR UPDATE``) and
   re-checks custody against that fresh state,
3. validates the transition against ``app.core.workflow.TRANSITIONS`` and
   the authority policy,
4. bumps the root's ``chain_version`` with a compare-and-swap, writes the
   assignment, the submission, a WorkflowLog row and the emitted events,
5. commits once. Any error rolls the whole transaction back.

"Current holder" is read from the root's ``leaf_assignment_id`` pointer;
``walk_current_holder`` re-derives it by walking child links and
``verify_chain`` checks the two agree.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, TypeVar

from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from app.core.config import settings
from app.core.directory import is_eligible
from app.core.errors import (
    AlreadyFinalized,
    ApprovalAuthorityRequired,
    ChainClosed,
    ConcurrentModification,
    DelegationNotAllowed,
    InvalidTarget,
    NotCurrentHolder,
    NotFound,
    TemplateInactiveOrExpired,
    ValidationFailed,
)
from app.core.locks import chain_key, chain_lock, root_key
from app.core.policy import (
    Actor,
    ChainHop,
    TemplateRules,
    can_approve_directly,
    can_delegate,
    eligible_approval_targets,
)
from app.core.workflow import allowed_actions, get_transition
from app.db.models.assignment import AssignmentStatus, FINALIZED_STATES, FormAssignment
from app.db.models.form_template import FormTemplate
from app.db.models.submission import Submission
from app.db.models.user import User
from app.db.models.workflow_log import WorkflowLog
from app.utils.events import DbEventSink, EventSink, WorkflowEvent
from app.utils.schema import is_declared, parse_schema, validate_payload
from app.utils.store import create_or_update, dump_payload, get_by_id, load_payload

logger = logging.getLogger("form_portal.workflow")

S = AssignmentStatus
T = TypeVar("T")

DEFAULT_INSTRUCTIONS = "Please fill the form"

_sink: EventSink = DbEventSink()


def set_event_sink(sink: EventSink) -> EventSink:
    """Swap the event sink; returns the previous one."""
    global _sink
    previous, _sink = _sink, sink
    return previous


# ---- Chain snapshot ----


@dataclass
class Chain:
    """All nodes of one chain, loaded fresh inside the chain lock."""

    root: FormAssignment
    nodes: dict[int, FormAssignment]
    leaf: FormAssignment

    @property
    def version(self) -> int:
        return int(self.root.chain_version or 0)

    @property
    def is_closed(self) -> bool:
        return self.leaf.status == S.SUBMITTED

    def path(self) -> list[FormAssignment]:
        """Root to leaf, following parent links back from the leaf."""
        out: list[FormAssignment] = []
        seen: set[int] = set()
        cur: FormAssignment | None = self.leaf
        while cur is not None and cur.id not in seen:
            seen.add(cur.id)
            out.append(cur)
            cur = self.nodes.get(cur.parent_assignment_id) if cur.parent_assignment_id else None
        out.reverse()
        return out

    def hops(self) -> list[ChainHop]:
        return [ChainHop(n.id, n.assigned_to_id, n.assigned_by_id) for n in self.path()]

    def custody(self, actor: Actor) -> tuple[bool, bool, bool]:
        """(is_holder, is_custodian, is_root_holder) for ``actor`` on the live leaf."""
        is_holder = self.leaf.assigned_to_id == actor.id
        is_root_holder = self.root.assigned_to_id == actor.id
        is_custodian = is_holder or is_root_holder or self.is_routed_to(actor)
        return is_holder, is_custodian, is_root_holder

    def is_routed_to(self, actor: Actor) -> bool:
        return self.leaf.routed_to_id is not None and self.leaf.routed_to_id == actor.id

    def approval_targets(self, actor: Actor, rules: TemplateRules) -> list[int]:
        """Who ``actor`` may send the finalized leaf to.

        The holder picks from the whole chain. A routed-to approver picks from
        the part of the chain above their own hop.
        """
        hops = self.hops()
        if self.leaf.assigned_to_id != actor.id:
            own = [i for i, hop in enumerate(hops) if hop.assigned_to_id == actor.id]
            if not own:
                return []
            hops = hops[: own[0] + 1]
        return eligible_approval_targets(hops, actor, rules)


@dataclass(frozen=True)
class ChainSegment:
    """One hop of the custody history as shown to users."""

    assignment_id: int
    type: str  # Initiated | Delegated | Sent for Approval | Submitted | Action
    from_user_id: int | None
    to_user_id: int | None
    remarks: str
    timestamp: datetime | None
    status: str
    action: str
    is_current: bool = False


# ---- Loading ----


def _get_template(db: Session, template_id: int) -> FormTemplate:
    t = db.get(FormTemplate, template_id)
    if t is None:
        raise NotFound("Form template not found.")
    return t


def _get_assignment(db: Session, assignment_id: int) -> FormAssignment:
    a = db.get(FormAssignment, assignment_id)
    if a is None:
        raise NotFound("Assignment not found.")
    return a


def _root_id(a: FormAssignment) -> int:
    return a.root_assignment_id or a.id


def rules_for(template: FormTemplate) -> TemplateRules:
    return TemplateRules(
        created_by_id=template.created_by_id,
        allow_delegation=bool(template.allow_delegation),
        allow_multiple_submissions=bool(template.allow_multiple_submissions),
    )


def _check_open(template: FormTemplate) -> None:
    if not template.is_active:
        raise TemplateInactiveOrExpired("This form has been deactivated by its distributor.")
    if template.is_expired():
        raise TemplateInactiveOrExpired("The deadline for this form has passed.")


def load_chain(db: Session, root_id: int, *, for_update: bool = False) -> Chain:
    """Load every node of the chain rooted at ``root_id``.

    With ``for_update`` all rows are locking reads, so they reflect the latest
    committed state even if the transaction already holds an older snapshot
    (InnoDB REPEATABLE READ). A leaf pointer that names a row we could not
    see means the snapshot is stale; the caller must retry.
    """
    q = db.query(FormAssignment).filter(FormAssignment.id == root_id)
    if for_update:
        q = q.with_for_update()
    root = q.populate_existing().one_or_none()
    if root is None:
        raise NotFound("Assignment chain not found.")

    rows_q = db.query(FormAssignment).filter(FormAssignment.root_assignment_id == root_id)
    if for_update:
        rows_q = rows_q.with_for_update()
    nodes = {n.id: n for n in rows_q.populate_existing().all()}
    nodes[root.id] = root

    leaf = nodes.get(root.leaf_assignment_id) if root.leaf_assignment_id else None
    if leaf is None:
        if for_update and root.leaf_assignment_id:
            logger.warning("Chain %s points at leaf %s which is not visible", root_id, root.leaf_assignment_id)
            raise ConcurrentModification()
        leaf = _walk_leaf(root, nodes)
    return Chain(root=root, nodes=nodes, leaf=leaf)


def _load_submission(db: Session, submission_id: int | None) -> Submission | None:
    if not submission_id:
        return None
    return (
        db.query(Submission)
        .filter(Submission.id == submission_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )


def _children(node_id: int, nodes: dict[int, FormAssignment]) -> list[FormAssignment]:
    kids = [n for n in nodes.values() if n.parent_assignment_id == node_id]
    kids.sort(key=lambda n: (n.created_at or datetime.min, n.id))
    return kids


def _walk_leaf(root: FormAssignment, nodes: dict[int, FormAssignment]) -> FormAssignment:
    cur = root
    seen = {root.id}
    while True:
        kids = _children(cur.id, nodes)
        if not kids or kids[-1].id in seen:
            return cur
        cur = kids[-1]
        seen.add(cur.id)


# ---- Holder resolution ----


def current_holder(db: Session, assignment_id: int) -> FormAssignment | None:
    """Live leaf of the chain containing ``assignment_id``; None once submitted."""
    a = _get_assignment(db, assignment_id)
    chain = load_chain(db, _root_id(a))
    return None if chain.is_closed else chain.leaf


def walk_current_holder(db: Session, root_id: int) -> FormAssignment | None:
    """Same answer as ``current_holder`` but derived by walking child links."""
    chain = load_chain(db, root_id)
    leaf = _walk_leaf(chain.root, chain.nodes)
    return None if leaf.status == S.SUBMITTED else leaf


def verify_chain(db: Session, root_id: int) -> bool:
    """Single-holder check: linear chain and leaf pointer matches the walk."""
    chain = load_chain(db, root_id)
    for node_id in chain.nodes:
        if len(_children(node_id, chain.nodes)) > 1:
            return False
    return _walk_leaf(chain.root, chain.nodes).id == chain.leaf.id


# ---- Transaction plumbing ----


def _run(db: Session, key: str, fn: Callable[[], T]) -> T:
    with chain_lock(key):
        try:
            result = fn()
            db.commit()
        except ConcurrentModification:
            db.rollback()
            logger.warning("Concurrent modification on %s", key)
            raise
        except Exception:
            db.rollback()
            raise
    return result


def _check_expected(chain: Chain, expected_version: int | None) -> None:
    if expected_version is not None and int(expected_version) != chain.version:
        raise ConcurrentModification()


def _bump(db: Session, chain: Chain) -> int:
    seen = chain.version
    res = db.execute(
        update(FormAssignment)
        .where(FormAssignment.id == chain.root.id, FormAssignment.chain_version == seen)
        .values(chain_version=seen + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise ConcurrentModification()
    set_committed_value(chain.root, "chain_version", seen + 1)
    return seen + 1


def _ensure_live(chain: Chain, node: FormAssignment) -> None:
    if chain.is_closed:
        raise ChainClosed()
    if node.id != chain.leaf.id:
        raise NotCurrentHolder()


def _log(
    db: Session,
    chain: Chain,
    node: FormAssignment,
    actor: Actor,
    action: str,
    from_status: AssignmentStatus,
    comment: str = "",
    target_user_id: int | None = None,
) -> None:
    db.add(
        WorkflowLog(
            root_assignment_id=chain.root.id,
            assignment_id=node.id,
            submission_id=node.data_id,
            actor_id=actor.id,
            target_user_id=target_user_id,
            from_status=from_status.value,
            to_status=node.status.value,
            action=action,
            comment=comment or "",
        )
    )
    logger.info(
        "workflow %s assignment=%s actor=%s %s->%s version=%s",
        action, node.id, actor.id, from_status.value, node.status.value, chain.version,
    )


def _mirror_status(db: Session, node: FormAssignment) -> Submission | None:
    if not node.data_id:
        return None
    sub = db.get(Submission, node.data_id)
    if sub is not None:
        sub.status = node.status
    return sub


def _set_remarks(node: FormAssignment, remarks: str) -> None:
    if not node.instructions and node.remarks:
        node.instructions = node.remarks
    if remarks:
        node.remarks = remarks


def _user_name(db: Session, user_id: int) -> str:
    u = db.get(User, user_id)
    return (u.full_name or u.email) if u else str(user_id)


# ---- Payload ----


def _write_payload(
    db: Session,
    actor: Actor,
    template: FormTemplate,
    node: FormAssignment,
    payload: dict,
    ip_address: str = "",
) -> tuple[Submission, bool]:
    """Write ``payload`` for ``node``. Returns (submission, changed)."""
    new_json = dump_payload(payload)
    sub = _load_submission(db, node.data_id)

    if sub is None:
        sub = Submission(
            template_id=template.id,
            submitted_by_id=actor.id,
            lab_id=actor.lab_id,
            status=node.status,
            payload_json=new_json,
            ip_address=ip_address or "",
        )
        create_or_update(db, sub)
        node.data_id = sub.id
        return sub, True

    if dump_payload(load_payload(sub)) == new_json:
        return sub, False

    if sub.status in FINALIZED_STATES and sub.submitted_by_id != actor.id:
        # start a new lineage so the signed-off record stays as it was
        fork = Submission(
            template_id=template.id,
            submitted_by_id=actor.id,
            lab_id=actor.lab_id,
            status=node.status,
            payload_json=new_json,
            ip_address=ip_address or "",
        )
        create_or_update(db, fork)
        node.data_id = fork.id
        return fork, True

    sub.payload_json = new_json
    if ip_address:
        sub.ip_address = ip_address
    create_or_update(db, sub)
    return sub, True


def _validate_complete(template: FormTemplate, sub: Submission | None) -> dict:
    if sub is None:
        raise ValidationFailed("No form data has been saved yet.")
    data = load_payload(sub)
    errors = validate_payload(parse_schema(template.schema_json), data)
    if errors:
        raise ValidationFailed(errors=errors)
    return data


# ---- Root resolution ----


def _resolve_or_create_root(db: Session, actor: Actor, template: FormTemplate) -> FormAssignment:
    """Live leaf held by ``actor`` on ``template``, creating a root if they have none.

    Caller holds the ``root_key(template, actor)`` lock.
    """
    mine = (
        db.query(FormAssignment)
        .filter(FormAssignment.template_id == template.id, FormAssignment.assigned_to_id == actor.id)
        .order_by(FormAssignment.id.desc())
        .all()
    )

    delegated_away = False
    submitted_roots = 0
    for root_id in dict.fromkeys(_root_id(a) for a in mine):
        chain = load_chain(db, root_id)
        if chain.is_closed:
            if chain.root.assigned_to_id == actor.id:
                submitted_roots += 1
            continue
        if chain.leaf.assigned_to_id == actor.id:
            return chain.leaf
        delegated_away = True

    if delegated_away:
        raise NotCurrentHolder()
    if submitted_roots and not template.allow_multiple_submissions:
        raise ChainClosed("You have already submitted this form.")
    if not is_eligible(db, template, actor.id):
        raise InvalidTarget("You are not a recipient of this form.")

    root = FormAssignment(
        template_id=template.id,
        assigned_to_id=actor.id,
        assigned_by_id=template.created_by_id,
        parent_assignment_id=None,
        status=S.PENDING,
        last_action="Initiated",
        remarks="",
        instructions=DEFAULT_INSTRUCTIONS,
        chain_version=0,
    )
    db.add(root)
    db.flush()
    root.root_assignment_id = root.id
    root.leaf_assignment_id = root.id
    db.flush()
    return root


# ---- Operations ----


def save_draft(
    db: Session,
    actor: Actor,
    template_id: int,
    payload: dict,
    assignment_id: int | None = None,
    *,
    expected_version: int | None = None,
    ip_address: str = "",
) -> tuple[FormAssignment, Submission]:
    """Persist draft data for the actor's assignment (creating the root on first save)."""
    template = _get_template(db, template_id)
    _check_open(template)

    def apply(node_id: int) -> tuple[FormAssignment, Submission]:
        chain = load_chain(db, _root_id(_get_assignment(db, node_id)), for_update=True)
        node = chain.nodes[node_id]
        _ensure_live(chain, node)
        is_holder, is_custodian, is_root_holder = chain.custody(actor)
        if not is_custodian:
            raise NotCurrentHolder()

        status = node.status
        if status in (S.PENDING, S.EDITED) and not is_holder:
            raise NotCurrentHolder()
        if status == S.FINALIZED and not can_approve_directly(actor):
            raise AlreadyFinalized("This form has been marked final and can no longer be edited.")
        if status == S.APPROVED and not (is_root_holder or can_approve_directly(actor)):
            raise AlreadyFinalized("This form has been approved; only the primary recipient or an approver can edit it.")

        t = get_transition(status, "save_draft")
        _check_expected(chain, expected_version)
        sub, changed = _write_payload(db, actor, template, node, payload or {}, ip_address)
        if not changed and status == t.to_status:
            return node, sub

        _bump(db, chain)
        node.status = t.to_status
        node.last_action = "Draft Saved" if status == S.PENDING else "Draft Updated"
        _mirror_status(db, node)
        _log(db, chain, node, actor, "save_draft", status)
        return node, sub

    if assignment_id is not None:
        a = _get_assignment(db, assignment_id)
        if a.template_id != template.id:
            raise NotFound("Assignment does not belong to this form.")
        return _run(db, chain_key(_root_id(a)), lambda: apply(a.id))

    with chain_lock(root_key(template.id, actor.id)):
        try:
            node = _resolve_or_create_root(db, actor, template)
        except Exception:
            db.rollback()
            raise
        return _run(db, chain_key(_root_id(node)), lambda: apply(node.id))


def delegate(
    db: Session,
    actor: Actor,
    template_id: int,
    to_user_id: int,
    remarks: str = "",
    parent_assignment_id: int | None = None,
    *,
    expected_version: int | None = None,
) -> FormAssignment:
    """Hand the form to ``to_user_id`` as a new child of the actor's live assignment."""
    template = _get_template(db, template_id)
    _check_open(template)
    if not template.allow_delegation:
        raise DelegationNotAllowed()

    def apply(node_id: int) -> FormAssignment:
        chain = load_chain(db, _root_id(_get_assignment(db, node_id)), for_update=True)
        node = chain.nodes[node_id]
        _ensure_live(chain, node)
        # approval freezes the chain for everyone
        if node.status == S.APPROVED:
            raise DelegationNotAllowed("Cannot delegate: this form has already been approved.")
        if node.assigned_to_id != actor.id:
            raise NotCurrentHolder()
        if node.status == S.FINALIZED:
            raise AlreadyFinalized("Cannot delegate: this form has been marked final.")
        if not can_delegate(actor, rules_for(template), node.status):
            raise DelegationNotAllowed()

        _check_target(db, actor, template, to_user_id)
        _check_expected(chain, expected_version)
        _bump(db, chain)

        child = FormAssignment(
            template_id=template.id,
            assigned_to_id=to_user_id,
            assigned_by_id=actor.id,
            parent_assignment_id=node.id,
            root_assignment_id=chain.root.id,
            data_id=node.data_id,
            status=S.PENDING,
            last_action="Assigned",
            remarks=remarks or "",
            instructions=remarks or DEFAULT_INSTRUCTIONS,
        )
        db.add(child)
        db.flush()
        chain.root.leaf_assignment_id = child.id

        node.last_action = "Delegated"
        node.routed_to_id = None
        _log(db, chain, node, actor, "delegate", node.status, remarks, target_user_id=to_user_id)
        _sink.emit(
            db,
            WorkflowEvent(
                kind="FORM_DELEGATED",
                assignment_id=child.id,
                template_id=template.id,
                actor_id=actor.id,
                recipient_ids=(to_user_id,),
                title="Form Task Assigned",
                message=f'{_user_name(db, actor.id)} has marked the form "{template.title}" to you for filling/processing.',
                remarks=remarks,
                lab_id=actor.lab_id,
                extra={"parent_assignment_id": node.id, "assigned_to_id": to_user_id},
            ),
        )
        return child

    if parent_assignment_id is not None:
        a = _get_assignment(db, parent_assignment_id)
        if a.template_id != template.id:
            raise NotFound("Assignment does not belong to this form.")
        return _run(db, chain_key(_root_id(a)), lambda: apply(a.id))

    with chain_lock(root_key(template.id, actor.id)):
        try:
            node = _resolve_or_create_root(db, actor, template)
        except Exception:
            db.rollback()
            raise
        return _run(db, chain_key(_root_id(node)), lambda: apply(node.id))


def _check_target(db: Session, actor: Actor, template: FormTemplate, to_user_id: int) -> None:
    if to_user_id == actor.id:
        raise InvalidTarget("You cannot delegate a form to yourself.")
    target = db.get(User, to_user_id)
    if target is None or not target.is_active:
        raise InvalidTarget("The selected user does not exist or is inactive.")
    if not is_eligible(db, template, to_user_id):
        raise InvalidTarget()
    if settings.DELEGATION_SAME_LAB_ONLY and target.lab_id != actor.lab_id:
        raise InvalidTarget("Delegation is restricted to your own lab.")


def mark_final(
    db: Session,
    actor: Actor,
    assignment_id: int,
    remarks: str = "",
    *,
    expected_version: int | None = None,
) -> FormAssignment:
    a = _get_assignment(db, assignment_id)
    template = _get_template(db, a.template_id)
    _check_open(template)

    def apply() -> FormAssignment:
        chain = load_chain(db, _root_id(a), for_update=True)
        node = chain.nodes[a.id]
        _ensure_live(chain, node)
        if node.assigned_to_id != actor.id:
            raise NotCurrentHolder()
        if node.status in FINALIZED_STATES:
            raise AlreadyFinalized()
        if node.status == S.PENDING:
            raise ValidationFailed("Save the form before marking it final.")

        t = get_transition(node.status, "mark_final")
        _validate_complete(template, _load_submission(db, node.data_id))
        _check_expected(chain, expected_version)
        _bump(db, chain)

        before = node.status
        node.status = t.to_status
        node.last_action = "Marked Final"
        _set_remarks(node, remarks)
        _mirror_status(db, node)
        _log(db, chain, node, actor, "mark_final", before, remarks or "Marked as Final")
        _sink.emit(
            db,
            WorkflowEvent(
                kind="FORM_MARKED_FINAL",
                assignment_id=node.id,
                template_id=template.id,
                actor_id=actor.id,
                remarks=remarks,
                lab_id=actor.lab_id,
            ),
        )
        return node

    return _run(db, chain_key(_root_id(a)), apply)


def approve(
    db: Session,
    actor: Actor,
    assignment_id: int,
    remarks: str = "",
    payload: dict | None = None,
    *,
    expected_version: int | None = None,
    ip_address: str = "",
) -> FormAssignment:
    """Sign off the live leaf. ``payload`` (if given) is saved first, in the same transaction."""
    a = _get_assignment(db, assignment_id)
    template = _get_template(db, a.template_id)
    _check_open(template)
    if not can_approve_directly(actor):
        raise ApprovalAuthorityRequired()

    def apply() -> FormAssignment:
        chain = load_chain(db, _root_id(a), for_update=True)
        node = chain.nodes[a.id]
        _ensure_live(chain, node)
        is_holder, is_custodian, _ = chain.custody(actor)
        if not is_custodian:
            raise NotCurrentHolder()
        if node.status == S.APPROVED:
            raise AlreadyFinalized("This form has already been approved.")
        if node.status == S.PENDING:
            raise ValidationFailed("Nothing has been filled in yet.")
        if node.status == S.EDITED and not is_holder:
            raise ValidationFailed("The form must be marked final before it can be approved.")

        t = get_transition(node.status, "approve")
        _check_expected(chain, expected_version)
        if payload is not None:
            _write_payload(db, actor, template, node, payload, ip_address)
        data = _validate_complete(template, _load_submission(db, node.data_id))
        if not is_declared(data, settings.APPROVAL_DECLARATION_FIELD):
            raise ValidationFailed("You must agree to the declaration before approving.")
        _bump(db, chain)

        before = node.status
        node.status = t.to_status
        node.last_action = "Approved"
        _set_remarks(node, remarks)
        _mirror_status(db, node)
        _log(db, chain, node, actor, "approve", before, remarks)
        _sink.emit(
            db,
            WorkflowEvent(
                kind="FORM_APPROVED",
                assignment_id=node.id,
                template_id=template.id,
                actor_id=actor.id,
                recipient_ids=tuple(dict.fromkeys((node.assigned_to_id, chain.root.assigned_to_id))),
                title="Form Approved",
                message=f'The form "{template.title}" has been approved by {_user_name(db, actor.id)}.',
                remarks=remarks,
                lab_id=actor.lab_id,
                extra={"submission_id": node.data_id},
            ),
        )
        return node

    return _run(db, chain_key(_root_id(a)), apply)


def mark_back(
    db: Session,
    actor: Actor,
    assignment_id: int,
    target_user_id: int,
    remarks: str = "",
    *,
    expected_version: int | None = None,
) -> FormAssignment:
    """Route a finalized form to a prior chain member for sign-off (status unchanged)."""
    a = _get_assignment(db, assignment_id)
    template = _get_template(db, a.template_id)
    _check_open(template)

    def apply() -> FormAssignment:
        chain = load_chain(db, _root_id(a), for_update=True)
        node = chain.nodes[a.id]
        _ensure_live(chain, node)
        if node.assigned_to_id != actor.id and not chain.is_routed_to(actor):
            raise NotCurrentHolder("Only the current holder or the approver it was sent to can route this form.")
        if node.status == S.APPROVED:
            raise DelegationNotAllowed("This form is already approved; submit it instead.")
        if node.status in (S.PENDING, S.EDITED):
            raise ValidationFailed("Mark the form final before sending it for approval.")

        get_transition(node.status, "mark_back")
        targets = chain.approval_targets(actor, rules_for(template))
        if target_user_id not in targets:
            raise InvalidTarget("The selected user cannot approve this form from your position in the chain.")
        _check_expected(chain, expected_version)
        _bump(db, chain)

        node.routed_to_id = target_user_id
        node.last_action = "Sent for Approval"
        _set_remarks(node, remarks)
        _log(db, chain, node, actor, "mark_back", node.status, remarks, target_user_id=target_user_id)
        _sink.emit(
            db,
            WorkflowEvent(
                kind="FORM_MARKED_BACK",
                assignment_id=node.id,
                template_id=template.id,
                actor_id=actor.id,
                recipient_ids=(target_user_id,),
                title="Form Returned for Approval",
                message=f'{_user_name(db, actor.id)} has sent the form "{template.title}" back for your approval.',
                remarks=remarks,
                lab_id=actor.lab_id,
                extra={"target_user_id": target_user_id},
            ),
        )
        return node

    return _run(db, chain_key(_root_id(a)), apply)


def submit_to_distributor(
    db: Session,
    actor: Actor,
    assignment_id: int,
    remarks: str = "",
    *,
    expected_version: int | None = None,
) -> FormAssignment:
    a = _get_assignment(db, assignment_id)
    template = _get_template(db, a.template_id)
    _check_open(template)

    def apply() -> FormAssignment:
        chain = load_chain(db, _root_id(a), for_update=True)
        node = chain.nodes[a.id]
        _ensure_live(chain, node)
        is_holder, is_custodian, is_root_holder = chain.custody(actor)
        if not is_custodian:
            raise NotCurrentHolder()

        if node.status == S.APPROVED:
            if not (is_root_holder or can_approve_directly(actor)):
                raise ApprovalAuthorityRequired("Only the primary recipient or an approver can submit this form.")
        elif node.status == S.EDITED and not template.allow_delegation and is_holder:
            pass
        else:
            raise ValidationFailed("Form must be Approved before submitting to distributor.")

        t = get_transition(node.status, "submit")
        _validate_complete(template, _load_submission(db, node.data_id))
        _check_expected(chain, expected_version)
        _bump(db, chain)

        before = node.status
        node.status = t.to_status
        node.last_action = "Submitted"
        _set_remarks(node, remarks)
        _mirror_status(db, node)
        _log(db, chain, node, actor, "submit", before, remarks, target_user_id=chain.root.assigned_by_id)
        _sink.emit(
            db,
            WorkflowEvent(
                kind="FORM_SUBMITTED",
                assignment_id=node.id,
                template_id=template.id,
                actor_id=actor.id,
                recipient_ids=(template.created_by_id,),
                title="Form Submitted",
                message=f'{_user_name(db, actor.id)} has submitted the form "{template.title}".',
                remarks=remarks,
                lab_id=actor.lab_id,
                extra={"submission_id": node.data_id},
            ),
        )
        return node

    return _run(db, chain_key(_root_id(a)), apply)


# ---- Read side ----


def permissions(db: Session, actor: Actor, assignment_id: int) -> dict:
    """What ``actor`` can do on this assignment right now, plus approval targets."""
    a = _get_assignment(db, assignment_id)
    template = _get_template(db, a.template_id)
    chain = load_chain(db, _root_id(a))
    rules = rules_for(template)

    is_holder, is_custodian, is_root_holder = chain.custody(actor)
    actions: list[str] = []
    if a.id == chain.leaf.id and template.is_active and not template.is_expired():
        actions = allowed_actions(
            actor,
            chain.leaf.status,
            rules,
            is_holder=is_holder,
            is_custodian=is_custodian,
            is_root_holder=is_root_holder,
            is_routed=chain.is_routed_to(actor),
        )

    targets: list[int] = []
    if "mark_back" in actions:
        targets = chain.approval_targets(actor, rules)

    return {
        "assignment_id": a.id,
        "root_assignment_id": chain.root.id,
        "chain_version": chain.version,
        "current_holder_id": None if chain.is_closed else chain.leaf.assigned_to_id,
        "current_assignment_id": chain.leaf.id,
        "status": chain.leaf.status.value,
        "is_finalized": chain.leaf.is_finalized,
        "is_closed": chain.is_closed,
        "is_current_holder": is_holder and not chain.is_closed,
        "allowed_actions": actions,
        "approval_target_ids": targets,
    }


def _segments(db: Session, chain: Chain) -> list[ChainSegment]:
    logs = (
        db.query(WorkflowLog)
        .filter(WorkflowLog.root_assignment_id == chain.root.id, WorkflowLog.action.in_(("mark_back", "submit")))
        .order_by(WorkflowLog.id.asc())
        .all()
    )
    last_log: dict[tuple[int, str], WorkflowLog] = {}
    for log in logs:
        last_log[(log.assignment_id, log.action)] = log

    out: list[ChainSegment] = []
    path = chain.path()
    for i, n in enumerate(path):
        out.append(
            ChainSegment(
                assignment_id=n.id,
                type="Initiated" if i == 0 else "Delegated",
                from_user_id=n.assigned_by_id,
                to_user_id=n.assigned_to_id,
                remarks=n.instructions or n.remarks or DEFAULT_INSTRUCTIONS,
                timestamp=n.created_at,
                status=n.status.value,
                action=n.last_action,
                is_current=(n.id == chain.leaf.id and not chain.is_closed and not n.routed_to_id),
            )
        )
        routed = last_log.get((n.id, "mark_back"))
        if n.routed_to_id and routed is not None:
            out.append(
                ChainSegment(
                    assignment_id=n.id,
                    type="Sent for Approval",
                    from_user_id=n.assigned_to_id,
                    to_user_id=n.routed_to_id,
                    remarks=routed.comment,
                    timestamp=routed.created_at,
                    status=routed.to_status,
                    action="Sent for Approval",
                    is_current=(n.id == chain.leaf.id and not chain.is_closed),
                )
            )

    if chain.is_closed:
        submitted = last_log.get((chain.leaf.id, "submit"))
        out.append(
            ChainSegment(
                assignment_id=chain.leaf.id,
                type="Submitted",
                from_user_id=submitted.actor_id if submitted else chain.leaf.assigned_to_id,
                to_user_id=chain.root.assigned_by_id,
                remarks=(submitted.comment if submitted else chain.leaf.remarks) or "",
                timestamp=submitted.created_at if submitted else chain.leaf.updated_at,
                status=S.SUBMITTED.value,
                action="Submitted",
                is_current=True,
            )
        )
    return out


def get_chain(db: Session, assignment_id: int) -> list[ChainSegment]:
    a = _get_assignment(db, assignment_id)
    return _segments(db, load_chain(db, _root_id(a)))


_HISTORY_TYPES = {
    "delegate": "Delegated",
    "mark_back": "Sent for Approval",
    "submit": "Submitted",
}


def get_chain_by_data_id(db: Session, submission_id: int) -> list[ChainSegment]:
    """Chain for a payload id; falls back to the payload's movement history."""
    a = (
        db.query(FormAssignment)
        .filter(FormAssignment.data_id == submission_id)
        .order_by(FormAssignment.id.desc())
        .first()
    )
    if a is not None:
        return get_chain(db, a.id)

    sub = get_by_id(db, submission_id)
    logs = (
        db.query(WorkflowLog)
        .filter(WorkflowLog.submission_id == sub.id)
        .order_by(WorkflowLog.id.asc())
        .all()
    )
    out: list[ChainSegment] = []
    for i, log in enumerate(logs):
        out.append(
            ChainSegment(
                assignment_id=log.assignment_id,
                type="Initiated" if i == 0 else _HISTORY_TYPES.get(log.action, "Action"),
                from_user_id=log.actor_id,
                to_user_id=log.target_user_id,
                remarks=log.comment,
                timestamp=log.created_at,
                status=sub.status.value,
                action=log.action,
                is_current=(i == len(logs) - 1),
            )
        )
    return out
