import pytest

from app.core.policy import (
    Actor,
    ChainHop,
    TemplateRules,
    can_approve_directly,
    can_delegate,
    eligible_approval_targets,
    resolve_approval_authority,
)
from app.core.workflow import allowed_actions, get_transition, has_transition
from app.db.models.assignment import AssignmentStatus as S

CREATOR, A, B, C, D = 1, 10, 20, 30, 40

OPEN = TemplateRules(created_by_id=CREATOR, allow_delegation=True)
CLOSED = TemplateRules(created_by_id=CREATOR, allow_delegation=False)

ROOT = ChainHop(100, A, CREATOR)
TO_B = ChainHop(101, B, A)
TO_C = ChainHop(102, C, B)


def actor(uid, authority=False):
    return Actor(id=uid, has_approval_authority=authority)


@pytest.mark.parametrize(
    "designation, expected",
    [
        ("Director", True),
        ("  director ", True),
        ("Section Officer", True),
        ("Technical Officer", False),
        ("", False),
        (None, False),
    ],
)
def test_resolve_approval_authority(designation, expected):
    assert resolve_approval_authority(designation, ["Director", "Section Officer"]) is expected


@pytest.mark.parametrize(
    "template, status, expected",
    [
        (OPEN, None, True),
        (OPEN, S.PENDING, True),
        (OPEN, S.EDITED, True),
        (OPEN, S.FINALIZED, False),
        (OPEN, S.APPROVED, False),
        (CLOSED, None, False),
        (CLOSED, S.EDITED, False),
    ],
)
def test_can_delegate(template, status, expected):
    assert can_delegate(actor(A), template, status) is expected


def test_authority_never_overrides_disabled_delegation():
    assert can_delegate(actor(A, authority=True), CLOSED, S.PENDING) is False


def test_can_approve_directly_follows_flag():
    assert can_approve_directly(actor(A, authority=True))
    assert not can_approve_directly(actor(A))


@pytest.mark.parametrize(
    "chain, who, template, expected",
    [
        # two hops, no authority: creator is the only other option besides A, A stays
        ([ROOT, TO_B], actor(B), OPEN, [A]),
        # three hops, no authority: creator skipped, route through intermediates
        ([ROOT, TO_B, TO_C], actor(C), OPEN, [A, B]),
        # authority may route all the way back
        ([ROOT, TO_B, TO_C], actor(C, authority=True), OPEN, [CREATOR, A, B]),
        # root holder without authority: nobody but the creator
        ([ROOT], actor(A), OPEN, [CREATOR]),
        # delegation disabled: only the actor's own assigner
        ([ROOT], actor(A), CLOSED, [CREATOR]),
        ([ROOT, TO_B], actor(B, authority=True), CLOSED, [A]),
        ([], actor(A), OPEN, []),
    ],
)
def test_eligible_approval_targets(chain, who, template, expected):
    assert eligible_approval_targets(chain, who, template) == expected


def test_non_authority_never_bypasses_to_creator_on_longer_chains():
    chains = [[ROOT, TO_B], [ROOT, TO_B, TO_C], [ROOT, TO_B, TO_C, ChainHop(103, D, C)]]
    for hops in chains:
        me = actor(hops[-1].assigned_to_id)
        assert CREATOR not in eligible_approval_targets(hops, me, OPEN)


def test_transition_table_lookup():
    assert get_transition(S.PENDING, "save_draft").to_status == S.EDITED
    assert get_transition(S.FINALIZED, "approve").to_status == S.APPROVED
    assert get_transition(S.APPROVED, "submit").to_status == S.SUBMITTED
    assert not has_transition(S.SUBMITTED, "save_draft")
    assert not has_transition(S.APPROVED, "delegate")
    with pytest.raises(KeyError):
        get_transition(S.PENDING, "approve")


@pytest.mark.parametrize(
    "who, status, template, flags, expected",
    [
        (actor(B), S.PENDING, OPEN, dict(is_holder=True, is_custodian=True), ["save_draft", "delegate"]),
        (actor(B), S.EDITED, OPEN, dict(is_holder=True, is_custodian=True), ["save_draft", "delegate", "mark_final"]),
        (
            actor(B, authority=True),
            S.EDITED,
            OPEN,
            dict(is_holder=True, is_custodian=True),
            ["save_draft", "delegate", "mark_final", "approve"],
        ),
        (actor(B), S.EDITED, CLOSED, dict(is_holder=True, is_custodian=True), ["save_draft", "mark_final", "submit"]),
        (actor(B), S.FINALIZED, OPEN, dict(is_holder=True, is_custodian=True), ["mark_back"]),
        (actor(B), S.FINALIZED, OPEN, dict(is_holder=False, is_custodian=True, is_routed=True), ["mark_back"]),
        (
            actor(A, authority=True),
            S.FINALIZED,
            OPEN,
            dict(is_holder=False, is_custodian=True, is_routed=True),
            ["save_draft", "mark_back", "approve"],
        ),
        (actor(A), S.FINALIZED, OPEN, dict(is_holder=False, is_custodian=True, is_root_holder=True), []),
        (
            actor(A, authority=True),
            S.FINALIZED,
            OPEN,
            dict(is_holder=False, is_custodian=True, is_root_holder=True),
            ["save_draft", "approve"],
        ),
        (
            actor(A),
            S.APPROVED,
            OPEN,
            dict(is_holder=False, is_custodian=True, is_root_holder=True),
            ["save_draft", "submit"],
        ),
        (actor(B), S.APPROVED, OPEN, dict(is_holder=True, is_custodian=True), []),
        (actor(A, authority=True), S.SUBMITTED, OPEN, dict(is_holder=True, is_custodian=True), []),
        (actor(D), S.EDITED, OPEN, dict(is_holder=False, is_custodian=False), []),
    ],
)
def test_allowed_actions(who, status, template, flags, expected):
    assert allowed_actions(who, status, template, **flags) == expected
