"""Administrative routes."""
from __future__ import annotations

from typing import Any

from flask import current_app, request
from flask_login import current_user, login_required

from app import db
from app.errors import ValidationError
from app.models import User, UserRole
from app.services.approval_service import AutoApprovalCriteria, approval_service
from app.services.flow_repository import flow_repository
from app.utils.helpers import (
    json_response,
    parse_decimal,
    parse_optional_int,
    request_payload,
    role_required,
)

from . import admin_bp


@admin_bp.route("/approval-flows", methods=["GET"])
@login_required
@role_required(UserRole.ADMIN)
def approval_flows() -> Any:
    """List every approval flow, active or not."""
    flows = flow_repository.list_flows()
    return json_response({"flows": [flow.to_dict() for flow in flows]})


@admin_bp.route("/approval-flows", methods=["POST"])
@login_required
@role_required(UserRole.ADMIN)
def create_flow() -> Any:
    flow = flow_repository.create_flow(request_payload(), created_by=current_user.id)
    current_app.logger.info("Admin %s created approval flow %s", current_user.id, flow.id)
    return json_response({"message": "Approval flow created successfully.", "flow": flow.to_dict()}, status=201)


@admin_bp.route("/approval-flows/<int:flow_id>", methods=["GET"])
@login_required
@role_required(UserRole.ADMIN)
def get_flow(flow_id: int) -> Any:
    return json_response({"flow": flow_repository.find_by_id(flow_id).to_dict()})


@admin_bp.route("/approval-flows/<int:flow_id>", methods=["PUT"])
@login_required
@role_required(UserRole.ADMIN)
def update_flow(flow_id: int) -> Any:
    """Update a flow; approvals already in progress keep their levels."""
    flow = flow_repository.update_flow(flow_id, request_payload())
    current_app.logger.info("Admin %s updated approval flow %s", current_user.id, flow.id)
    return json_response({"message": "Approval flow updated successfully.", "flow": flow.to_dict()})


@admin_bp.route("/approval-flows/<int:flow_id>", methods=["DELETE"])
@login_required
@role_required(UserRole.ADMIN)
def delete_flow(flow_id: int) -> Any:
    flow_repository.delete_flow(flow_id)
    current_app.logger.info("Admin %s deleted approval flow %s", current_user.id, flow_id)
    return json_response({"message": "Approval flow deleted successfully."})


@admin_bp.route("/approval-flows/applicable", methods=["GET"])
@login_required
@role_required(UserRole.ADMIN)
def applicable_flow() -> Any:
    """Show how an expense with the given amount would be routed."""
    if request.args.get("amount") is None:
        raise ValidationError("Amount parameter is required.", field="amount")
    amount = parse_decimal(request.args["amount"], "amount")
    cost_center_id = parse_optional_int(request.args.get("cost_center_id"), "cost_center_id")
    submitter_id = parse_optional_int(request.args.get("submitter_id"), "submitter_id")
    submitter = db.session.get(User, submitter_id) if submitter_id else None
    return json_response(approval_service.preview(amount, cost_center_id, submitter))


@admin_bp.route("/auto-approve", methods=["POST"])
@login_required
@role_required(UserRole.ADMIN)
def auto_approve() -> Any:
    """Approve pending expenses matching vendor/category/submitter in bulk."""
    payload = request_payload()
    criteria = AutoApprovalCriteria(
        vendor_name=payload.get("vendor_name") or None,
        category=payload.get("category") or None,
        submitter_id=parse_optional_int(payload.get("submitter_id"), "submitter_id"),
    )
    approver_id = parse_optional_int(payload.get("approver_id"), "approver_id")
    reports = approval_service.auto_approve_matching(criteria, approver_id=approver_id)
    approved = sum(1 for report in reports if report.success)
    current_app.logger.info("Admin %s auto-approved %d of %d expense(s)", current_user.id, approved, len(reports))
    return json_response(
        {
            "processed": len(reports),
            "approved": approved,
            "results": [report.to_dict() for report in reports],
        }
    )
