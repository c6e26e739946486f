import pytest

from app.errors import (
    DuplicateDecisionError,
    InvalidStateError,
    UnauthorizedApproverError,
    ValidationError,
)
from app.models import ApprovalStatus, DecisionType, LevelPolicy
from app.services.approval_state_machine import ApprovalStateMachine, parse_decision

USER_A, USER_B, USER_C = 1, 2, 3


def two_level_machine(policy=LevelPolicy.ANY_ONE):
    return ApprovalStateMachine.start([[USER_A, USER_B], [USER_C]], policy)


def test_starts_awaiting_first_level():
    machine = two_level_machine()

    assert machine.state == "AWAITING_LEVEL(0)"
    assert machine.awaiting_approvers() == [USER_A, USER_B]


def test_start_rejects_empty_levels():
    with pytest.raises(ValidationError):
        ApprovalStateMachine.start([])
    with pytest.raises(ValidationError):
        ApprovalStateMachine.start([[USER_A], []])


def test_any_one_approval_advances_then_reject_ends_with_reason():
    machine = two_level_machine()

    transition = machine.record_decision(0, USER_B, DecisionType.APPROVE)
    assert transition.advanced and not transition.terminal
    assert machine.state == "AWAITING_LEVEL(1)"

    transition = machine.record_decision(1, USER_C, "reject", "duplicate")
    assert transition.terminal
    assert machine.state == "REJECTED"
    assert machine.rejection_reason == "duplicate"


def test_last_level_approval_is_terminal():
    machine = two_level_machine()
    machine.record_decision(0, USER_A, DecisionType.APPROVE)

    transition = machine.record_decision(1, USER_C, DecisionType.APPROVE)

    assert transition.terminal
    assert transition.status is ApprovalStatus.APPROVED
    assert machine.awaiting_approvers() == []


def test_single_rejection_is_terminal_even_with_pending_peers():
    machine = two_level_machine(LevelPolicy.ALL_REQUIRED)
    machine.record_decision(0, USER_A, DecisionType.APPROVE)

    machine.record_decision(0, USER_B, DecisionType.REJECT, "over budget")

    assert machine.status is ApprovalStatus.REJECTED


def test_all_required_waits_for_every_member():
    machine = two_level_machine(LevelPolicy.ALL_REQUIRED)

    first = machine.record_decision(0, USER_A, DecisionType.APPROVE)
    assert not first.advanced
    assert machine.awaiting_approvers() == [USER_B]

    second = machine.record_decision(0, USER_B, DecisionType.APPROVE)
    assert second.advanced
    assert machine.current_level == 1


def test_reject_requires_comments():
    machine = two_level_machine()

    with pytest.raises(ValidationError):
        machine.record_decision(0, USER_A, DecisionType.REJECT, "   ")
    assert machine.status is ApprovalStatus.PENDING
    assert machine.decisions == []


def test_non_member_is_unauthorized():
    machine = two_level_machine()

    with pytest.raises(UnauthorizedApproverError):
        machine.record_decision(0, USER_C, DecisionType.APPROVE)


def test_duplicate_decision_at_active_level():
    machine = two_level_machine(LevelPolicy.ALL_REQUIRED)
    machine.record_decision(0, USER_A, DecisionType.APPROVE)

    with pytest.raises(DuplicateDecisionError):
        machine.record_decision(0, USER_A, DecisionType.APPROVE)


def test_peer_acting_after_level_advanced_gets_invalid_state():
    machine = two_level_machine()
    machine.record_decision(0, USER_B, DecisionType.APPROVE)

    level = machine.level_for_approver(USER_A)
    assert level == 0
    with pytest.raises(InvalidStateError):
        machine.record_decision(level, USER_A, DecisionType.APPROVE)


def test_future_level_is_not_ready():
    machine = two_level_machine()

    with pytest.raises(InvalidStateError):
        machine.record_decision(1, USER_C, DecisionType.APPROVE)


def test_terminal_machine_refuses_decisions():
    machine = ApprovalStateMachine.start([[USER_A]])
    machine.record_decision(0, USER_A, DecisionType.APPROVE)

    with pytest.raises(InvalidStateError):
        machine.record_decision(0, USER_A, DecisionType.REJECT, "changed my mind")


def test_unresolved_approval_accepts_no_decisions():
    machine = ApprovalStateMachine([], status=ApprovalStatus.UNRESOLVED)

    with pytest.raises(InvalidStateError):
        machine.record_decision(0, USER_A, DecisionType.APPROVE)


def test_find_replay_only_matches_applied_identical_decisions():
    machine = two_level_machine()
    machine.record_decision(0, USER_B, DecisionType.APPROVE)

    assert machine.find_replay(USER_B, DecisionType.APPROVE) is not None
    assert machine.find_replay(USER_B, DecisionType.REJECT) is None
    assert machine.find_replay(USER_A, DecisionType.APPROVE) is None


def test_same_approver_on_consecutive_levels_is_not_a_replay():
    machine = ApprovalStateMachine.start([[USER_A], [USER_A, USER_C]])
    machine.record_decision(0, USER_A, DecisionType.APPROVE)

    assert machine.find_replay(USER_A, DecisionType.APPROVE) is None
    assert machine.level_for_approver(USER_A) == 1
    assert machine.record_decision(1, USER_A, DecisionType.APPROVE).terminal


def test_parse_decision_accepts_case_insensitive_names():
    assert parse_decision("approve") is DecisionType.APPROVE
    assert parse_decision(" Reject ") is DecisionType.REJECT
    with pytest.raises(ValidationError):
        parse_decision("maybe")
