"""Approver routes."""
from __future__ import annotations

from typing import Any

from flask import current_app
from flask_login import current_user, login_required

from app.models import DecisionType, UserRole
from app.services.approval_service import approval_service
from app.utils.helpers import json_response, request_payload, role_required

from . import manager_bp


def _approval_rows(approvals) -> list:
    return [
        {**approval.to_dict(), "expense": approval.expense.to_dict() if approval.expense else None}
        for approval in approvals
    ]


@manager_bp.route("/pending", methods=["GET"])
@login_required
@role_required(UserRole.MANAGER, UserRole.ADMIN)
def pending_approvals() -> Any:
    """Expenses waiting on the current user at their active level."""
    approvals = approval_service.pending_for(current_user.id)
    return json_response({"approvals": _approval_rows(approvals)})


@manager_bp.route("/pending/all", methods=["GET"])
@login_required
@role_required(UserRole.MANAGER, UserRole.ADMIN)
def all_pending_approvals() -> Any:
    return json_response({"approvals": _approval_rows(approval_service.pending_overview())})


def _decide(expense_id: int, decision: DecisionType) -> Any:
    payload = request_payload()
    comments = payload.get("comments", payload.get("comment"))
    result = approval_service.submit_decision(expense_id, current_user.id, decision, comments)
    current_app.logger.info(
        "User %s %s expense %s (status=%s, replayed=%s)",
        current_user.id,
        decision.value.lower(),
        expense_id,
        result.new_status.value,
        result.replayed,
    )
    if result.replayed:
        message = "Decision already recorded."
    elif result.terminal:
        message = f"Expense {result.new_status.value.lower()}."
    else:
        message = "Decision recorded; expense moved to the next approval level."
    return json_response({"message": message, "result": result.to_dict()})


@manager_bp.route("/approve/<int:expense_id>", methods=["POST"])
@login_required
@role_required(UserRole.MANAGER, UserRole.ADMIN)
def approve_expense(expense_id: int) -> Any:
    return _decide(expense_id, DecisionType.APPROVE)


@manager_bp.route("/reject/<int:expense_id>", methods=["POST"])
@login_required
@role_required(UserRole.MANAGER, UserRole.ADMIN)
def reject_expense(expense_id: int) -> Any:
    """Reject an expense; comments are required."""
    return _decide(expense_id, DecisionType.REJECT)


@manager_bp.route("/expenses/<int:expense_id>/history", methods=["GET"])
@login_required
@role_required(UserRole.MANAGER, UserRole.ADMIN)
def approval_history(expense_id: int) -> Any:
    decisions = approval_service.history(expense_id)
    return json_response({"expense_id": expense_id, "decisions": [decision.to_dict() for decision in decisions]})
