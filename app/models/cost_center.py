"""Cost center model."""
from __future__ import annotations

from app import db


class CostCenter(db.Model):
    __tablename__ = "cost_centers"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    budget = db.Column(db.Numeric(14, 2), nullable=True)
    department = db.Column(db.String(120), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "budget": float(self.budget) if self.budget is not None else None,
            "department": self.department,
            "is_active": self.is_active,
        }

    def __repr__(self) -> str:
        return f"<CostCenter {self.code}>"
