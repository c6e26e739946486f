"""Application data models exposed for easy imports."""
from app import db  # noqa: F401
from .user import APPROVER_ROLES, EmployeeProfile, User, UserRole  # noqa: F401
from .cost_center import CostCenter  # noqa: F401
from .expense import Expense, ExpenseStatus  # noqa: F401
from .approval import (  # noqa: F401
    ApprovalDecision,
    ApprovalFlow,
    ApprovalRouting,
    ApprovalStatus,
    DecisionType,
    ExpenseApproval,
    LevelPolicy,
)
from .audit import AuditLog  # noqa: F401

__all__ = [
    "db",
    "APPROVER_ROLES",
    "User",
    "UserRole",
    "EmployeeProfile",
    "CostCenter",
    "Expense",
    "ExpenseStatus",
    "ApprovalFlow",
    "ApprovalDecision",
    "ApprovalRouting",
    "ApprovalStatus",
    "DecisionType",
    "ExpenseApproval",
    "LevelPolicy",
    "AuditLog",
]
