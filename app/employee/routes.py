"""Employee-facing routes."""
from __future__ import annotations

from datetime import date
from typing import Any

from flask import current_app
from flask_login import current_user, login_required

from app import db
from app.errors import NotFoundError, ValidationError
from app.models import CostCenter, Expense, ExpenseStatus
from app.services.approval_service import approval_service
from app.utils.helpers import (
    json_response,
    parse_decimal,
    parse_optional_int,
    request_payload,
    require_fields,
)

from . import employee_bp


@employee_bp.route("/expenses", methods=["GET"])
@login_required
def list_expenses() -> Any:
    """List expenses submitted by the current user."""
    expenses = (
        Expense.query.filter_by(submitter_user_id=current_user.id)
        .order_by(Expense.created_at.desc(), Expense.id.desc())
        .all()
    )
    return json_response({"expenses": [expense.to_dict() for expense in expenses]})


@employee_bp.route("/expenses", methods=["POST"])
@login_required
def submit_expense() -> Any:
    """Submit a new expense and route it for approval."""
    payload = request_payload()
    require_fields(payload, {"amount", "category", "date_spent"})

    amount = parse_decimal(payload["amount"], "amount")
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero.", field="amount")

    try:
        spent_date = date.fromisoformat(str(payload["date_spent"]))
    except ValueError:
        raise ValidationError("Invalid 'date_spent' format. Use YYYY-MM-DD.", field="date_spent") from None

    cost_center_id = parse_optional_int(payload.get("cost_center_id"), "cost_center_id")
    if cost_center_id is not None and db.session.get(CostCenter, cost_center_id) is None:
        raise ValidationError("Cost center not found.", cost_center_id=cost_center_id)

    expense = Expense(
        submitter_user_id=current_user.id,
        cost_center_id=cost_center_id,
        amount=amount,
        currency=(payload.get("currency") or current_app.config["DEFAULT_CURRENCY"]).upper(),
        category=payload["category"],
        description=payload.get("description"),
        vendor_name=payload.get("vendor_name"),
        date_spent=spent_date,
        status=ExpenseStatus.PENDING,
        receipt_path=payload.get("receipt_path"),
    )
    # An unroutable expense is kept PENDING and the ConfigurationError is
    # rendered by the error handler.
    approval = approval_service.initiate_approval(expense)
    current_app.logger.info("User %s submitted expense %s", current_user.id, expense.id)

    return json_response(
        {
            "message": "Expense submitted successfully.",
            "expense": expense.to_dict(),
            "approval": approval.to_dict(),
        },
        status=201,
    )


@employee_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@login_required
def expense_detail(expense_id: int) -> Any:
    expense = Expense.query.filter_by(id=expense_id, submitter_user_id=current_user.id).first()
    if expense is None:
        raise NotFoundError("Expense not found.", expense_id=expense_id)
    return json_response(
        {
            "expense": expense.to_dict(),
            "approval": expense.approval.to_dict() if expense.approval else None,
        }
    )


@employee_bp.route("/expenses/<int:expense_id>/rescind", methods=["POST"])
@login_required
def rescind_expense(expense_id: int) -> Any:
    expense = approval_service.rescind(expense_id, current_user.id)
    current_app.logger.info("User %s rescinded expense %s", current_user.id, expense_id)
    return json_response({"message": "Expense rescinded.", "expense": expense.to_dict()})
