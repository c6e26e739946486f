"""User-related models."""
from __future__ import annotations

import enum
from typing import List, Optional

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from app import db


class UserRole(enum.Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"


APPROVER_ROLES = frozenset({UserRole.ADMIN, UserRole.MANAGER})


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.Enum(UserRole, name="user_role"), nullable=False, default=UserRole.EMPLOYEE)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)

    employee_profile = db.relationship(
        "EmployeeProfile",
        foreign_keys="EmployeeProfile.user_id",
        back_populates="user",
        uselist=False,
        lazy="joined",
        cascade="all, delete-orphan",
    )
    submitted_expenses = db.relationship(
        "Expense",
        foreign_keys="Expense.submitter_user_id",
        back_populates="submitter",
        lazy="selectin",
    )

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def get_id(self) -> str:
        return str(self.id)

    @property
    def full_name(self) -> str:
        """Get user's full name."""
        return f"{self.first_name} {self.last_name}"

    @property
    def is_approver(self) -> bool:
        return self.role in APPROVER_ROLES

    @property
    def manager_id(self) -> Optional[int]:
        return self.employee_profile.manager_id if self.employee_profile else None

    def management_chain(self, depth: int) -> List["User"]:
        """Walk up the org chart, nearest manager first, at most ``depth`` users."""
        chain: List[User] = []
        seen = {self.id}
        current: Optional[User] = self
        while current is not None and len(chain) < depth:
            manager_id = current.manager_id
            if manager_id is None or manager_id in seen:
                break
            manager = db.session.get(User, manager_id)
            if manager is None or not manager.is_active:
                break
            chain.append(manager)
            seen.add(manager.id)
            current = manager
        return chain

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role.value,
            "manager_id": self.manager_id,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class EmployeeProfile(db.Model):
    __tablename__ = "employee_profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    user = db.relationship(
        "User",
        foreign_keys=[user_id],
        back_populates="employee_profile",
        lazy="joined",
    )
    manager = db.relationship("User", foreign_keys=[manager_id], lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "manager_id": self.manager_id,
        }

    def __repr__(self) -> str:
        return f"<EmployeeProfile user_id={self.user_id} manager_id={self.manager_id}>"
