"""Approval-related models."""
from __future__ import annotations

import enum
from decimal import Decimal
from typing import Dict, List, Optional

from app import db


class LevelPolicy(enum.Enum):
    """How many approvers of one level must approve before it is satisfied."""

    ANY_ONE = "ANY_ONE"
    ALL_REQUIRED = "ALL_REQUIRED"


class ApprovalStatus(enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    UNRESOLVED = "UNRESOLVED"


class ApprovalRouting(enum.Enum):
    FLOW = "FLOW"
    ORG_CHART = "ORG_CHART"
    BYPASS = "BYPASS"
    UNRESOLVED = "UNRESOLVED"


class DecisionType(enum.Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class ApprovalFlow(db.Model):
    __tablename__ = "approval_flows"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    min_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    max_amount = db.Column(db.Numeric(12, 2), nullable=True)
    cost_center_id = db.Column(db.Integer, db.ForeignKey("cost_centers.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    levels = db.Column(db.JSON, nullable=False, default=list)
    level_policy = db.Column(
        db.Enum(LevelPolicy, name="level_policy"),
        nullable=False,
        default=LevelPolicy.ANY_ONE,
    )
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now(), nullable=False)

    cost_center = db.relationship("CostCenter", lazy="joined")

    @property
    def band_width(self) -> Optional[Decimal]:
        """Width of the amount band, ``None`` when unbounded."""
        if self.max_amount is None:
            return None
        return Decimal(self.max_amount) - Decimal(self.min_amount)

    def matches(self, amount: Decimal, cost_center_id: Optional[int]) -> bool:
        if Decimal(amount) < Decimal(self.min_amount):
            return False
        if self.max_amount is not None and Decimal(amount) > Decimal(self.max_amount):
            return False
        return self.cost_center_id is None or self.cost_center_id == cost_center_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "min_amount": float(self.min_amount) if self.min_amount is not None else None,
            "max_amount": float(self.max_amount) if self.max_amount is not None else None,
            "cost_center_id": self.cost_center_id,
            "cost_center_code": self.cost_center.code if self.cost_center else None,
            "is_active": self.is_active,
            "levels": self.levels,
            "level_policy": self.level_policy.value if self.level_policy else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<ApprovalFlow {self.name}>"


class ExpenseApproval(db.Model):
    """Persisted approval state of one expense.

    ``levels`` and ``level_policy`` are copied from the flow when the approval
    starts, so later edits to the flow never reach an in-flight approval.
    ``version`` is checked on every update to serialize concurrent decisions.
    """

    __tablename__ = "expense_approvals"

    id = db.Column(db.Integer, primary_key=True)
    expense_id = db.Column(db.Integer, db.ForeignKey("expenses.id"), nullable=False, unique=True)
    approval_flow_id = db.Column(db.Integer, db.ForeignKey("approval_flows.id"), nullable=True, index=True)
    levels = db.Column(db.JSON, nullable=False, default=list)
    level_policy = db.Column(
        db.Enum(LevelPolicy, name="level_policy"),
        nullable=False,
        default=LevelPolicy.ANY_ONE,
    )
    current_level = db.Column(db.Integer, nullable=False, default=0)
    total_levels = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(
        db.Enum(ApprovalStatus, name="approval_status"),
        nullable=False,
        default=ApprovalStatus.PENDING,
        index=True,
    )
    routing = db.Column(db.Enum(ApprovalRouting, name="approval_routing"), nullable=False)
    rejection_reason = db.Column(db.Text, nullable=True)
    hook_dispatched_at = db.Column(db.DateTime, nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version}

    expense = db.relationship("Expense", back_populates="approval", lazy="joined")
    flow = db.relationship("ApprovalFlow", lazy="joined")
    decisions = db.relationship(
        "ApprovalDecision",
        back_populates="expense_approval",
        lazy="selectin",
        order_by=lambda: (ApprovalDecision.level, ApprovalDecision.id),
        cascade="all, delete-orphan",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED}

    def approvers_at(self, level: int) -> List[int]:
        if 0 <= level < len(self.levels or []):
            return list(self.levels[level])
        return []

    def level_decisions(self) -> Dict[int, List["ApprovalDecision"]]:
        grouped: Dict[int, List[ApprovalDecision]] = {}
        for decision in self.decisions:
            grouped.setdefault(decision.level, []).append(decision)
        return grouped

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_id": self.expense_id,
            "approval_flow_id": self.approval_flow_id,
            "approval_flow_name": self.flow.name if self.flow else None,
            "levels": self.levels,
            "level_policy": self.level_policy.value if self.level_policy else None,
            "current_level": self.current_level,
            "total_levels": self.total_levels,
            "status": self.status.value if self.status else None,
            "routing": self.routing.value if self.routing else None,
            "rejection_reason": self.rejection_reason,
            "decisions": [decision.to_dict() for decision in self.decisions],
        }

    def __repr__(self) -> str:
        return (
            f"<ExpenseApproval expense_id={self.expense_id} "
            f"status={self.status.value if self.status else None} level={self.current_level}>"
        )


class ApprovalDecision(db.Model):
    __tablename__ = "approval_decisions"
    __table_args__ = (
        db.UniqueConstraint(
            "expense_approval_id", "level", "approver_user_id", name="uq_approval_decision_level_approver"
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    expense_approval_id = db.Column(
        db.Integer, db.ForeignKey("expense_approvals.id"), nullable=False, index=True
    )
    level = db.Column(db.Integer, nullable=False)
    approver_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    decision = db.Column(db.Enum(DecisionType, name="decision_type"), nullable=False)
    comments = db.Column(db.Text, nullable=True)
    decided_at = db.Column(db.DateTime, nullable=False)

    expense_approval = db.relationship("ExpenseApproval", back_populates="decisions")
    approver = db.relationship("User", lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "level": self.level,
            "approver_user_id": self.approver_user_id,
            "approver_name": self.approver.full_name if self.approver else None,
            "decision": self.decision.value if self.decision else None,
            "comments": self.comments,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
        }

    def __repr__(self) -> str:
        return f"<ApprovalDecision level={self.level} approver={self.approver_user_id} {self.decision.value}>"
