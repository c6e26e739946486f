"""Storage and validation of approval flow definitions."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_

from app import db
from app.errors import NotFoundError, ValidationError
from app.models import (
    ApprovalFlow,
    CostCenter,
    ExpenseApproval,
    LevelPolicy,
    User,
)
from app.utils.helpers import parse_decimal, parse_optional_int

logger = logging.getLogger(__name__)


class FlowRepository:
    """Reads approval flows for the engine and persists admin edits."""

    def find_active_flows(self) -> List[ApprovalFlow]:
        return (
            ApprovalFlow.query.filter_by(is_active=True)
            .order_by(ApprovalFlow.min_amount.asc(), ApprovalFlow.id.asc())
            .all()
        )

    def find_by_id(self, flow_id: int) -> ApprovalFlow:
        flow = db.session.get(ApprovalFlow, flow_id)
        if flow is None:
            raise NotFoundError("Approval flow not found.", flow_id=flow_id)
        return flow

    def list_flows(self) -> List[ApprovalFlow]:
        return ApprovalFlow.query.order_by(ApprovalFlow.min_amount.asc(), ApprovalFlow.created_at.desc()).all()

    def create_flow(self, data: Dict[str, Any], created_by: Optional[int] = None) -> ApprovalFlow:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("'name' is required.", field="name")
        if "levels" not in data:
            raise ValidationError("'levels' is required.", field="levels")

        flow = ApprovalFlow(
            name=name,
            description=data.get("description"),
            min_amount=parse_decimal(data.get("min_amount", 0), "min_amount"),
            max_amount=_optional_amount(data.get("max_amount")),
            cost_center_id=parse_optional_int(data.get("cost_center_id"), "cost_center_id"),
            is_active=bool(data.get("is_active", True)),
            levels=normalize_levels(data["levels"]),
            level_policy=_parse_policy(data.get("level_policy", LevelPolicy.ANY_ONE.value)),
            created_by_user_id=created_by,
        )
        self._validate(flow)
        db.session.add(flow)
        db.session.commit()
        logger.info("Created approval flow %s (%s) with %d level(s)", flow.id, flow.name, len(flow.levels))
        return flow

    def update_flow(self, flow_id: int, data: Dict[str, Any]) -> ApprovalFlow:
        """Apply a partial update; absent keys keep their stored value."""
        flow = self.find_by_id(flow_id)
        changes = _parse_changes(data)

        try:
            with db.session.no_autoflush:
                for field, value in changes.items():
                    setattr(flow, field, value)
                self._validate(flow)
        except ValidationError:
            db.session.rollback()
            raise
        db.session.commit()
        logger.info("Updated approval flow %s", flow.id)
        return flow

    def delete_flow(self, flow_id: int) -> None:
        flow = self.find_by_id(flow_id)
        in_use = ExpenseApproval.query.filter_by(approval_flow_id=flow.id).count()
        if in_use:
            raise ValidationError(
                "Cannot delete approval flow that is being used by expenses. Deactivate it instead.",
                flow_id=flow.id,
                expense_count=in_use,
            )
        db.session.delete(flow)
        db.session.commit()
        logger.info("Deleted approval flow %s", flow_id)

    def find_overlapping(self, flow: ApprovalFlow) -> List[ApprovalFlow]:
        """Active flows with the same scope whose amount band intersects ``flow``'s."""
        query = ApprovalFlow.query.filter(ApprovalFlow.is_active.is_(True))
        if flow.id is not None:
            query = query.filter(ApprovalFlow.id != flow.id)
        if flow.cost_center_id is None:
            query = query.filter(ApprovalFlow.cost_center_id.is_(None))
        else:
            query = query.filter(ApprovalFlow.cost_center_id == flow.cost_center_id)

        # Bands [a, b] and [c, d] intersect when a <= d and c <= b.
        query = query.filter(or_(ApprovalFlow.max_amount.is_(None), ApprovalFlow.max_amount >= flow.min_amount))
        if flow.max_amount is not None:
            query = query.filter(ApprovalFlow.min_amount <= flow.max_amount)
        return query.order_by(ApprovalFlow.id.asc()).all()

    def _validate(self, flow: ApprovalFlow) -> None:
        min_amount = Decimal(flow.min_amount)
        if min_amount < 0:
            raise ValidationError("'min_amount' cannot be negative.", field="min_amount")
        if flow.max_amount is not None and min_amount >= Decimal(flow.max_amount):
            raise ValidationError(
                "Maximum amount must be greater than minimum amount.",
                min_amount=str(flow.min_amount),
                max_amount=str(flow.max_amount),
            )

        if flow.cost_center_id is not None and db.session.get(CostCenter, flow.cost_center_id) is None:
            raise ValidationError("Cost center not found.", cost_center_id=flow.cost_center_id)

        validate_levels(flow.levels, require_levels=flow.is_active)

        approver_ids = {user_id for level in flow.levels for user_id in level}
        if approver_ids:
            approvers = User.query.filter(User.id.in_(approver_ids)).all()
            missing = approver_ids - {user.id for user in approvers}
            if missing:
                raise ValidationError("One or more approvers not found.", approver_ids=sorted(missing))
            not_allowed = sorted(user.id for user in approvers if not user.is_approver)
            if not_allowed:
                raise ValidationError("All approvers must be managers or admins.", approver_ids=not_allowed)

        if flow.is_active:
            overlapping = self.find_overlapping(flow)
            if overlapping:
                raise ValidationError(
                    f"This amount range overlaps with existing approval flow: {overlapping[0].name}",
                    conflicting_flow_id=overlapping[0].id,
                )


def normalize_levels(raw_levels: Any) -> List[List[int]]:
    """Coerce ``[[1, 2], [3]]``-shaped input into lists of ints."""
    if not isinstance(raw_levels, (list, tuple)):
        raise ValidationError("'levels' must be a list of approver lists.", field="levels")
    levels: List[List[int]] = []
    for index, level in enumerate(raw_levels):
        if not isinstance(level, (list, tuple)):
            raise ValidationError(f"Level {index + 1} must be a list of user ids.", level=index)
        try:
            levels.append([int(user_id) for user_id in level])
        except (TypeError, ValueError):
            raise ValidationError(f"Level {index + 1} contains an invalid user id.", level=index) from None
    return levels


def validate_levels(levels: Iterable[Iterable[int]], require_levels: bool = True) -> None:
    levels = [list(level) for level in levels]
    if require_levels and not levels:
        raise ValidationError("An active approval flow needs at least one level.", field="levels")
    for index, level in enumerate(levels):
        if not level:
            raise ValidationError(f"Level {index + 1} has no approvers.", level=index)
        if len(set(level)) != len(level):
            raise ValidationError(f"Level {index + 1} lists the same approver twice.", level=index)


def _parse_changes(data: Dict[str, Any]) -> Dict[str, Any]:
    """Parse the fields present in ``data`` without touching the stored flow."""
    changes: Dict[str, Any] = {}
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("'name' cannot be empty.", field="name")
        changes["name"] = name
    if "description" in data:
        changes["description"] = data["description"]
    if "min_amount" in data:
        changes["min_amount"] = parse_decimal(data["min_amount"], "min_amount")
    if "max_amount" in data:
        changes["max_amount"] = _optional_amount(data["max_amount"])
    if "cost_center_id" in data:
        changes["cost_center_id"] = parse_optional_int(data["cost_center_id"], "cost_center_id")
    if "is_active" in data:
        changes["is_active"] = bool(data["is_active"])
    if "levels" in data:
        changes["levels"] = normalize_levels(data["levels"])
    if "level_policy" in data:
        changes["level_policy"] = _parse_policy(data["level_policy"])
    return changes


def _optional_amount(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    return parse_decimal(value, "max_amount")


def _parse_policy(value: Any) -> LevelPolicy:
    if isinstance(value, LevelPolicy):
        return value
    try:
        return LevelPolicy[str(value).upper()]
    except KeyError:
        raise ValidationError(f"Unknown level policy '{value}'.", field="level_policy") from None


flow_repository = FlowRepository()
