"""Lifecycle of a single expense's multi-level approval.

The machine is a plain object built from a snapshot of the approval: the
ordered approver levels, the level policy, the active level, the status and
the decisions already recorded. It never touches the database; the approval
service loads the snapshot, asks the machine for a transition and persists
the result.

States::

    AWAITING_LEVEL(0) -> AWAITING_LEVEL(1) -> ... -> APPROVED
            \\                  \\
             +-------------------+----------------> REJECTED

A single rejection at the active level is terminal. Under ``ANY_ONE`` the
first approval satisfies a level; under ``ALL_REQUIRED`` every approver of
the level must approve.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Union

from app.errors import (
    DuplicateDecisionError,
    InvalidStateError,
    UnauthorizedApproverError,
    ValidationError,
)
from app.models import ApprovalStatus, DecisionType, ExpenseApproval, LevelPolicy
from app.services.flow_repository import validate_levels
from app.utils.helpers import utcnow

TERMINAL_STATUSES = frozenset({ApprovalStatus.APPROVED, ApprovalStatus.REJECTED})


@dataclass(frozen=True)
class RecordedDecision:
    level: int
    approver_id: int
    decision: DecisionType
    comments: Optional[str] = None
    decided_at: Optional[datetime] = None


@dataclass(frozen=True)
class Transition:
    previous_status: ApprovalStatus
    status: ApprovalStatus
    previous_level: int
    current_level: int
    decision: RecordedDecision

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def advanced(self) -> bool:
        return self.current_level != self.previous_level


def parse_decision(value: Union[str, DecisionType]) -> DecisionType:
    if isinstance(value, DecisionType):
        return value
    try:
        return DecisionType[str(value).strip().upper()]
    except KeyError:
        raise ValidationError(f"Unknown decision '{value}'.", decision=value) from None


class ApprovalStateMachine:
    def __init__(
        self,
        levels: Sequence[Iterable[int]],
        policy: LevelPolicy = LevelPolicy.ANY_ONE,
        current_level: int = 0,
        status: ApprovalStatus = ApprovalStatus.PENDING,
        decisions: Iterable[RecordedDecision] = (),
    ) -> None:
        self.levels: List[List[int]] = [list(level) for level in levels]
        self.policy = policy
        self.current_level = current_level
        self.status = status
        self.decisions: List[RecordedDecision] = list(decisions)

    @classmethod
    def start(cls, levels: Sequence[Iterable[int]], policy: LevelPolicy = LevelPolicy.ANY_ONE):
        """New machine at ``AWAITING_LEVEL(0)``."""
        validate_levels(levels, require_levels=True)
        return cls(levels, policy=policy)

    @classmethod
    def from_approval(cls, approval: ExpenseApproval) -> "ApprovalStateMachine":
        return cls(
            approval.levels or [],
            policy=approval.level_policy or LevelPolicy.ANY_ONE,
            current_level=approval.current_level,
            status=approval.status,
            decisions=[
                RecordedDecision(
                    level=row.level,
                    approver_id=row.approver_user_id,
                    decision=row.decision,
                    comments=row.comments,
                    decided_at=row.decided_at,
                )
                for row in approval.decisions
            ],
        )

    @property
    def state(self) -> str:
        if self.status is ApprovalStatus.PENDING:
            return f"AWAITING_LEVEL({self.current_level})"
        return self.status.value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def rejection_reason(self) -> Optional[str]:
        for recorded in self.decisions:
            if recorded.decision is DecisionType.REJECT:
                return recorded.comments
        return None

    def decisions_at(self, level: int) -> List[RecordedDecision]:
        return [recorded for recorded in self.decisions if recorded.level == level]

    def awaiting_approvers(self) -> List[int]:
        """Approvers of the active level who have not acted yet."""
        if self.status is not ApprovalStatus.PENDING:
            return []
        decided = {recorded.approver_id for recorded in self.decisions_at(self.current_level)}
        return [user_id for user_id in self.levels[self.current_level] if user_id not in decided]

    def level_for_approver(self, approver_id: int) -> int:
        """Level an approver would act on.

        The active level when the approver belongs to it, otherwise the most
        recent already-passed level they belong to, otherwise the active level.
        """
        if self.status is ApprovalStatus.PENDING and approver_id in self.levels[self.current_level]:
            return self.current_level
        upper = min(self.current_level, len(self.levels) - 1)
        if self.is_terminal:
            upper = len(self.levels) - 1
        for level in range(upper, -1, -1):
            if approver_id in self.levels[level]:
                return level
        return self.current_level

    def find_replay(self, approver_id: int, decision: Union[str, DecisionType]) -> Optional[RecordedDecision]:
        """An identical decision that has already taken effect, if any."""
        decision = parse_decision(decision)
        if self.status is ApprovalStatus.PENDING and approver_id in self.awaiting_approvers():
            return None
        for recorded in self.decisions:
            if recorded.approver_id != approver_id or recorded.decision is not decision:
                continue
            if self.is_terminal or recorded.level < self.current_level:
                return recorded
        return None

    def record_decision(
        self,
        level_index: int,
        approver_id: int,
        decision: Union[str, DecisionType],
        comments: Optional[str] = None,
        decided_at: Optional[datetime] = None,
    ) -> Transition:
        decision = parse_decision(decision)
        comments = comments.strip() if isinstance(comments, str) else comments

        if self.is_terminal:
            raise InvalidStateError(
                f"Expense approval is already {self.status.value.lower()}.", state=self.state
            )
        if self.status is not ApprovalStatus.PENDING:
            raise InvalidStateError("Expense approval has no approval route.", state=self.state)
        if level_index < self.current_level:
            raise InvalidStateError(
                f"Approval level {level_index + 1} has already been completed.",
                level=level_index,
                current_level=self.current_level,
            )
        if level_index > self.current_level:
            raise InvalidStateError(
                "This approval is not ready to be processed yet.",
                level=level_index,
                current_level=self.current_level,
            )
        if approver_id not in self.levels[level_index]:
            raise UnauthorizedApproverError(
                "You are not an approver for the current approval level.",
                approver_id=approver_id,
                level=level_index,
            )
        if any(recorded.approver_id == approver_id for recorded in self.decisions_at(level_index)):
            raise DuplicateDecisionError(
                "You have already recorded a decision at this approval level.",
                approver_id=approver_id,
                level=level_index,
            )
        if decision is DecisionType.REJECT and not comments:
            raise ValidationError("Comments are required for rejection.", field="comments")

        recorded = RecordedDecision(
            level=level_index,
            approver_id=approver_id,
            decision=decision,
            comments=comments or None,
            decided_at=decided_at or utcnow(),
        )
        previous_status, previous_level = self.status, self.current_level
        self.decisions.append(recorded)

        if decision is DecisionType.REJECT:
            self.status = ApprovalStatus.REJECTED
        elif self._level_satisfied(level_index):
            if level_index + 1 >= len(self.levels):
                self.status = ApprovalStatus.APPROVED
            else:
                self.current_level = level_index + 1

        return Transition(
            previous_status=previous_status,
            status=self.status,
            previous_level=previous_level,
            current_level=self.current_level,
            decision=recorded,
        )

    def _level_satisfied(self, level: int) -> bool:
        approvals = {
            recorded.approver_id
            for recorded in self.decisions_at(level)
            if recorded.decision is DecisionType.APPROVE
        }
        if self.policy is LevelPolicy.ALL_REQUIRED:
            return set(self.levels[level]) <= approvals
        return bool(approvals)
