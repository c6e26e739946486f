"""Expense model definitions."""
from __future__ import annotations

import enum

from app import db


class ExpenseStatus(enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"


class Expense(db.Model):
    __tablename__ = "expenses"

    id = db.Column(db.Integer, primary_key=True)
    submitter_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    cost_center_id = db.Column(db.Integer, db.ForeignKey("cost_centers.id"), nullable=True, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(10), nullable=False)
    category = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    vendor_name = db.Column(db.String(255), nullable=True, index=True)
    date_spent = db.Column(db.Date, nullable=False)
    status = db.Column(db.Enum(ExpenseStatus, name="expense_status"), nullable=False, default=ExpenseStatus.PENDING)
    rejection_reason = db.Column(db.Text, nullable=True)
    decided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    decided_at = db.Column(db.DateTime, nullable=True)
    receipt_path = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now(), nullable=False)

    submitter = db.relationship(
        "User",
        foreign_keys=[submitter_user_id],
        back_populates="submitted_expenses",
        lazy="joined",
    )
    decided_by = db.relationship("User", foreign_keys=[decided_by_user_id], lazy="joined")
    cost_center = db.relationship("CostCenter", lazy="joined")
    approval = db.relationship(
        "ExpenseApproval",
        back_populates="expense",
        uselist=False,
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in {ExpenseStatus.APPROVED, ExpenseStatus.REJECTED, ExpenseStatus.PAID}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "submitter_user_id": self.submitter_user_id,
            "cost_center_id": self.cost_center_id,
            "amount": float(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "category": self.category,
            "description": self.description,
            "vendor_name": self.vendor_name,
            "date_spent": self.date_spent.isoformat() if self.date_spent else None,
            "status": self.status.value if self.status else None,
            "rejection_reason": self.rejection_reason,
            "decided_by_user_id": self.decided_by_user_id,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "receipt_path": self.receipt_path,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Expense id={self.id} status={self.status.value if self.status else None}>"
