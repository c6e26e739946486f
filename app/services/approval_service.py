"""Orchestration of expense approvals.

Ties flow selection, the per-expense state machine, persistence and the
downstream hooks together. Decisions on one expense are serialized by a
row lock on its ``expense_approvals`` row plus the optimistic ``version``
column; a lost race is rolled back and re-evaluated against fresh state.
Status changes are committed before any terminal hook runs.
"""
from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from app import db
from app.errors import (
    ApprovalError,
    ConcurrentDecisionError,
    ConfigurationError,
    InvalidStateError,
    NotFoundError,
)
from app.models import (
    ApprovalDecision,
    ApprovalFlow,
    ApprovalRouting,
    ApprovalStatus,
    AuditLog,
    DecisionType,
    Expense,
    ExpenseApproval,
    ExpenseStatus,
    LevelPolicy,
    User,
)
from app.services import hooks
from app.services.approval_state_machine import ApprovalStateMachine, Transition, parse_decision
from app.services.email_service import email_service
from app.services.flow_selector import FlowSelector, flow_selector
from app.services.org_chart import FallbackPolicy, configured_policy, manager_chain_levels
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

RESCINDED_REASON = "Rescinded by submitter"
AUTO_APPROVAL_COMMENT = "Automatically approved via marketplace fast path"
DECISION_CONSTRAINT = "uq_approval_decision_level_approver"

_STATUS_FOR_APPROVAL = {
    ApprovalStatus.PENDING: ExpenseStatus.PENDING,
    ApprovalStatus.UNRESOLVED: ExpenseStatus.PENDING,
    ApprovalStatus.APPROVED: ExpenseStatus.APPROVED,
    ApprovalStatus.REJECTED: ExpenseStatus.REJECTED,
}


@dataclass(frozen=True)
class DecisionResult:
    expense_id: int
    new_status: ExpenseStatus
    terminal: bool
    current_level: int
    replayed: bool = False
    decided_level: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "expense_id": self.expense_id,
            "new_status": self.new_status.value,
            "terminal": self.terminal,
            "current_level": self.current_level,
            "decided_level": self.decided_level,
            "replayed": self.replayed,
        }


@dataclass(frozen=True)
class AutoApprovalCriteria:
    vendor_name: Optional[str] = None
    category: Optional[str] = None
    submitter_id: Optional[int] = None

    def is_empty(self) -> bool:
        return not (self.vendor_name or self.category or self.submitter_id)


@dataclass(frozen=True)
class AutoApprovalReport:
    expense_id: int
    success: bool
    status: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None
    levels_approved: Tuple[int, ...] = ()

    def to_dict(self) -> dict:
        return {
            "expense_id": self.expense_id,
            "success": self.success,
            "status": self.status,
            "error": self.error,
            "code": self.code,
            "levels_approved": list(self.levels_approved),
        }


def _is_decision_conflict(exc: IntegrityError) -> bool:
    """True when a competing writer already stored this approver's decision for the level."""
    message = str(exc.orig)
    # PostgreSQL names the constraint; SQLite lists its columns.
    return DECISION_CONSTRAINT in message or "approval_decisions.expense_approval_id" in message


class ApprovalService:
    def __init__(self, selector: Optional[FlowSelector] = None) -> None:
        self.selector = selector or flow_selector

    # -- initiation -----------------------------------------------------------

    def initiate_approval(self, expense: Expense) -> ExpenseApproval:
        """Route a freshly submitted expense and persist its approval state."""
        if expense.id is not None and ExpenseApproval.query.filter_by(expense_id=expense.id).first():
            raise InvalidStateError("Approval has already been initiated for this expense.", expense_id=expense.id)

        db.session.add(expense)
        db.session.flush()

        flow = self.selector.select_flow(Decimal(expense.amount), expense.cost_center_id)
        if flow is not None:
            return self._start(expense, deepcopy(flow.levels), flow.level_policy, ApprovalRouting.FLOW, flow)

        policy = configured_policy()
        if policy is FallbackPolicy.AUTO_APPROVE:
            return self._bypass(expense)

        if policy is FallbackPolicy.ORG_CHART:
            levels = manager_chain_levels(db.session.get(User, expense.submitter_user_id))
            if levels:
                return self._start(expense, levels, LevelPolicy.ANY_ONE, ApprovalRouting.ORG_CHART)

        self._leave_unresolved(expense, policy)
        raise ConfigurationError(
            "No approval flow applies to this expense and no fallback route is available.",
            expense_id=expense.id,
            amount=str(expense.amount),
            cost_center_id=expense.cost_center_id,
        )

    def _start(
        self,
        expense: Expense,
        levels: List[List[int]],
        policy: LevelPolicy,
        routing: ApprovalRouting,
        flow: Optional[ApprovalFlow] = None,
    ) -> ExpenseApproval:
        machine = ApprovalStateMachine.start(levels, policy)
        approval = ExpenseApproval(
            expense=expense,
            flow=flow,
            levels=machine.levels,
            level_policy=machine.policy,
            current_level=machine.current_level,
            total_levels=len(machine.levels),
            status=ApprovalStatus.PENDING,
            routing=routing,
        )
        expense.status = ExpenseStatus.PENDING
        db.session.add(approval)
        AuditLog.record(
            "approval_initiated",
            "expense",
            expense.id,
            user_id=expense.submitter_user_id,
            routing=routing.value,
            flow_id=flow.id if flow else None,
            levels=machine.levels,
        )
        db.session.commit()
        logger.info(
            "Expense %s routed via %s (flow=%s, %d level(s))",
            expense.id,
            routing.value,
            flow.id if flow else None,
            len(machine.levels),
        )
        self._notify_level(approval)
        return approval

    def _bypass(self, expense: Expense) -> ExpenseApproval:
        # No flow matched: approve immediately and audit it.
        now = utcnow()
        approval = ExpenseApproval(
            expense=expense,
            levels=[],
            level_policy=LevelPolicy.ANY_ONE,
            current_level=0,
            total_levels=0,
            status=ApprovalStatus.APPROVED,
            routing=ApprovalRouting.BYPASS,
        )
        expense.status = ExpenseStatus.APPROVED
        expense.decided_at = now
        db.session.add(approval)
        AuditLog.record(
            "approval_bypassed",
            "expense",
            expense.id,
            user_id=expense.submitter_user_id,
            amount=str(expense.amount),
            cost_center_id=expense.cost_center_id,
        )
        db.session.commit()
        logger.warning("Expense %s auto-approved: no approval flow matched", expense.id)
        self._dispatch_terminal(approval)
        return approval

    def _leave_unresolved(self, expense: Expense, policy: FallbackPolicy) -> None:
        approval = ExpenseApproval(
            expense=expense,
            levels=[],
            level_policy=LevelPolicy.ANY_ONE,
            current_level=0,
            total_levels=0,
            status=ApprovalStatus.UNRESOLVED,
            routing=ApprovalRouting.UNRESOLVED,
        )
        expense.status = ExpenseStatus.PENDING
        db.session.add(approval)
        AuditLog.record(
            "approval_unresolved",
            "expense",
            expense.id,
            user_id=expense.submitter_user_id,
            fallback_policy=policy.value,
        )
        db.session.commit()
        logger.error("Expense %s has no approval route (fallback=%s)", expense.id, policy.value)

    # -- decisions ------------------------------------------------------------

    def submit_decision(
        self,
        expense_id: int,
        approver_id: int,
        decision: Union[str, DecisionType],
        comments: Optional[str] = None,
    ) -> DecisionResult:
        decision = parse_decision(decision)
        retries = int(current_app.config.get("APPROVAL_CONFLICT_RETRIES", 3))
        for attempt in range(retries + 1):
            try:
                return self._apply_decision(expense_id, approver_id, decision, comments)
            except (StaleDataError, IntegrityError) as exc:
                db.session.rollback()
                if isinstance(exc, IntegrityError) and not _is_decision_conflict(exc):
                    raise
                logger.warning(
                    "Concurrent decision on expense %s (attempt %d); re-evaluating", expense_id, attempt + 1
                )
        raise ConcurrentDecisionError(
            "The expense was modified concurrently; please retry.", expense_id=expense_id
        )

    def _apply_decision(
        self,
        expense_id: int,
        approver_id: int,
        decision: DecisionType,
        comments: Optional[str],
    ) -> DecisionResult:
        approval = self._load_for_update(expense_id)
        machine = ApprovalStateMachine.from_approval(approval)

        replay = machine.find_replay(approver_id, decision)
        if replay is not None:
            db.session.rollback()
            logger.info("Ignoring replayed %s by user %s on expense %s", decision.value, approver_id, expense_id)
            return self._result(approval, replayed=True, decided_level=replay.level)

        try:
            transition = machine.record_decision(
                machine.level_for_approver(approver_id), approver_id, decision, comments
            )
        except ApprovalError:
            db.session.rollback()
            raise

        self._persist(approval, transition)
        db.session.commit()
        logger.info(
            "Expense %s: %s by user %s at level %d -> %s",
            expense_id,
            decision.value,
            approver_id,
            transition.decision.level,
            machine.state,
        )

        if transition.terminal:
            self._dispatch_terminal(approval)
        elif transition.advanced:
            self._notify_level(approval)
        return self._result(approval, decided_level=transition.decision.level)

    def _persist(self, approval: ExpenseApproval, transition: Transition) -> None:
        recorded = transition.decision
        approval.decisions.append(
            ApprovalDecision(
                level=recorded.level,
                approver_user_id=recorded.approver_id,
                decision=recorded.decision,
                comments=recorded.comments,
                decided_at=recorded.decided_at,
            )
        )
        approval.current_level = transition.current_level
        approval.status = transition.status
        # Always touch the row so the version check covers every decision.
        approval.updated_at = recorded.decided_at

        expense = approval.expense
        expense.status = _STATUS_FOR_APPROVAL[transition.status]
        if transition.terminal:
            expense.decided_by_user_id = recorded.approver_id
            expense.decided_at = recorded.decided_at
        if transition.status is ApprovalStatus.REJECTED:
            approval.rejection_reason = recorded.comments
            expense.rejection_reason = recorded.comments

        AuditLog.record(
            f"decision_{recorded.decision.value.lower()}",
            "expense",
            expense.id,
            user_id=recorded.approver_id,
            level=recorded.level,
            status=transition.status.value,
            comments=recorded.comments,
        )

    def _load_for_update(self, expense_id: int) -> ExpenseApproval:
        approval = db.session.execute(
            select(ExpenseApproval)
            .where(ExpenseApproval.expense_id == expense_id)
            .with_for_update(of=ExpenseApproval)
            .execution_options(populate_existing=True)
        ).unique().scalar_one_or_none()
        if approval is not None:
            return approval
        if db.session.get(Expense, expense_id) is None:
            raise NotFoundError("Expense not found.", expense_id=expense_id)
        raise InvalidStateError("Expense has no approval in progress.", expense_id=expense_id)

    @staticmethod
    def _result(
        approval: ExpenseApproval, replayed: bool = False, decided_level: Optional[int] = None
    ) -> DecisionResult:
        return DecisionResult(
            expense_id=approval.expense_id,
            new_status=approval.expense.status,
            terminal=approval.is_terminal,
            current_level=approval.current_level,
            replayed=replayed,
            decided_level=decided_level,
        )

    # -- bulk fast path -------------------------------------------------------

    def auto_approve_matching(
        self, criteria: AutoApprovalCriteria, approver_id: Optional[int] = None
    ) -> List[AutoApprovalReport]:
        """Approve matching pending expenses on behalf of the automated approver.

        Each expense goes through ``submit_decision`` for every consecutive
        level the automated approver belongs to.
        """
        if criteria.is_empty():
            raise ConfigurationError("Auto-approval needs at least one matching criterion.")
        approver_id = approver_id or current_app.config.get("AUTOMATED_APPROVER_ID")
        if not approver_id:
            raise ConfigurationError("No automated approver is configured (AUTOMATED_APPROVER_ID).")

        query = (
            Expense.query.join(ExpenseApproval, ExpenseApproval.expense_id == Expense.id)
            .filter(Expense.status == ExpenseStatus.PENDING)
            .filter(ExpenseApproval.status == ApprovalStatus.PENDING)
        )
        if criteria.vendor_name:
            query = query.filter(Expense.vendor_name.ilike(f"%{criteria.vendor_name}%"))
        if criteria.category:
            query = query.filter(Expense.category == criteria.category)
        if criteria.submitter_id:
            query = query.filter(Expense.submitter_user_id == criteria.submitter_id)
        expense_ids = [expense.id for expense in query.order_by(Expense.created_at.asc(), Expense.id.asc()).all()]

        logger.info("Auto-approving %d expense(s) as user %s", len(expense_ids), approver_id)
        reports: List[AutoApprovalReport] = []
        for expense_id in expense_ids:
            approved_levels: List[int] = []
            try:
                result = self._approve_through_levels(expense_id, int(approver_id), approved_levels)
            except ApprovalError as exc:
                expense = db.session.get(Expense, expense_id)
                reports.append(
                    AutoApprovalReport(
                        expense_id=expense_id,
                        success=False,
                        status=expense.status.value if expense else None,
                        error=exc.message,
                        code=exc.code,
                        levels_approved=tuple(approved_levels),
                    )
                )
                continue
            reports.append(
                AutoApprovalReport(
                    expense_id=expense_id,
                    success=True,
                    status=result.new_status.value,
                    levels_approved=tuple(approved_levels),
                )
            )
        return reports

    def _approve_through_levels(self, expense_id: int, approver_id: int, approved_levels: List[int]) -> DecisionResult:
        # Levels are appended as they commit so a later failure still reports them.
        while True:
            result = self.submit_decision(expense_id, approver_id, DecisionType.APPROVE, AUTO_APPROVAL_COMMENT)
            if result.replayed:
                return result
            approved_levels.append(result.decided_level)
            if result.terminal or result.current_level == result.decided_level:
                return result
            approval = ExpenseApproval.query.filter_by(expense_id=expense_id).one()
            if approver_id not in approval.approvers_at(approval.current_level):
                return result

    # -- queries --------------------------------------------------------------

    def pending_for(self, user_id: int) -> List[ExpenseApproval]:
        """Approvals waiting on ``user_id`` at their active level."""
        approvals = (
            ExpenseApproval.query.filter_by(status=ApprovalStatus.PENDING)
            .order_by(ExpenseApproval.created_at.asc(), ExpenseApproval.id.asc())
            .all()
        )
        return [
            approval
            for approval in approvals
            if user_id in ApprovalStateMachine.from_approval(approval).awaiting_approvers()
        ]

    def pending_overview(self) -> List[ExpenseApproval]:
        return (
            ExpenseApproval.query.filter(
                ExpenseApproval.status.in_([ApprovalStatus.PENDING, ApprovalStatus.UNRESOLVED])
            )
            .order_by(ExpenseApproval.created_at.asc(), ExpenseApproval.id.asc())
            .all()
        )

    def history(self, expense_id: int) -> List[ApprovalDecision]:
        expense = db.session.get(Expense, expense_id)
        if expense is None:
            raise NotFoundError("Expense not found.", expense_id=expense_id)
        return list(expense.approval.decisions) if expense.approval else []

    def preview(
        self, amount: Decimal, cost_center_id: Optional[int], submitter: Optional[User] = None
    ) -> Dict[str, Any]:
        """Describe how an expense with these attributes would be routed."""
        flow = self.selector.select_flow(Decimal(amount), cost_center_id)
        if flow is not None:
            return {
                "requires_approval": True,
                "routing": ApprovalRouting.FLOW.value,
                "approval_flow": flow.to_dict(),
                "levels": flow.levels,
            }

        policy = configured_policy()
        if policy is FallbackPolicy.ORG_CHART:
            levels = manager_chain_levels(submitter)
            if levels:
                return {"requires_approval": True, "routing": ApprovalRouting.ORG_CHART.value, "levels": levels}
        if policy is FallbackPolicy.AUTO_APPROVE:
            return {
                "requires_approval": False,
                "routing": ApprovalRouting.BYPASS.value,
                "message": "No approval flow applicable for this amount",
            }
        return {
            "requires_approval": True,
            "routing": ApprovalRouting.UNRESOLVED.value,
            "message": "No approval route can be determined for this expense",
        }

    # -- lifecycle outside the approval chain ---------------------------------

    def rescind(self, expense_id: int, user_id: int) -> Expense:
        """Let the submitter withdraw an expense that is still pending."""
        expense = Expense.query.filter_by(id=expense_id, submitter_user_id=user_id).first()
        if expense is None:
            raise NotFoundError("Expense not found.", expense_id=expense_id)
        if expense.status is not ExpenseStatus.PENDING:
            raise InvalidStateError("Can only rescind pending expenses.", status=expense.status.value)

        approval = expense.approval
        if approval is not None:
            approval = self._load_for_update(expense_id)
            if approval.is_terminal:
                db.session.rollback()
                raise InvalidStateError("Can only rescind pending expenses.", status=approval.status.value)
            approval.status = ApprovalStatus.REJECTED
            approval.rejection_reason = RESCINDED_REASON
            approval.updated_at = utcnow()

        expense.status = ExpenseStatus.REJECTED
        expense.rejection_reason = RESCINDED_REASON
        expense.decided_at = utcnow()
        AuditLog.record("expense_rescinded", "expense", expense.id, user_id=user_id)
        try:
            db.session.commit()
        except StaleDataError:
            db.session.rollback()
            raise ConcurrentDecisionError(
                "The expense was modified concurrently; please retry.", expense_id=expense_id
            ) from None

        if approval is not None:
            self._dispatch_terminal(approval)
        return expense

    # -- terminal hooks -------------------------------------------------------

    def redispatch_hooks(self) -> int:
        """Fire terminal hooks that were never stamped as dispatched."""
        approvals = (
            ExpenseApproval.query.filter(
                ExpenseApproval.status.in_([ApprovalStatus.APPROVED, ApprovalStatus.REJECTED]),
                ExpenseApproval.hook_dispatched_at.is_(None),
            )
            .order_by(ExpenseApproval.id.asc())
            .all()
        )
        for approval in approvals:
            self._dispatch_terminal(approval)
        return len(approvals)

    def _dispatch_terminal(self, approval: ExpenseApproval) -> None:
        expense = approval.expense
        event = hooks.TerminalEvent(
            expense_id=expense.id,
            status=expense.status,
            reason=approval.rejection_reason,
            rescinded=approval.rejection_reason == RESCINDED_REASON,
        )
        results = hooks.dispatch_terminal(event)
        # Stamp with a conditional UPDATE; it carries no version check.
        stamped = db.session.execute(
            update(ExpenseApproval)
            .where(ExpenseApproval.id == approval.id, ExpenseApproval.hook_dispatched_at.is_(None))
            .values(hook_dispatched_at=utcnow(), version=ExpenseApproval.version + 1)
            .execution_options(synchronize_session=False)
        ).rowcount
        if not stamped:
            logger.warning("Terminal hooks for expense %s were already stamped by another dispatcher", expense.id)
        AuditLog.record("terminal_hook_dispatched", "expense", expense.id, status=expense.status.value, results=results)
        db.session.commit()

    def _notify_level(self, approval: ExpenseApproval) -> None:
        approver_ids = ApprovalStateMachine.from_approval(approval).awaiting_approvers()
        if not approver_ids:
            return
        approvers = User.query.filter(User.id.in_(approver_ids)).all()
        email_service.send_pending_approval(approval.expense, approvers, approval.current_level)


approval_service = ApprovalService()
