"""Pick the approval flow that governs an expense."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from app.models import ApprovalFlow
from app.services.flow_repository import FlowRepository, flow_repository

logger = logging.getLogger(__name__)


def candidate_flows(
    flows: Iterable[ApprovalFlow], amount: Decimal, cost_center_id: Optional[int]
) -> List[ApprovalFlow]:
    """Flows matching the amount and scope, best candidate first.

    Ordering: flows scoped to the cost center before org-wide ones, then the
    narrowest amount band (unbounded counts as infinitely wide), then the
    lowest id.
    """
    amount = Decimal(amount)
    matching = [
        flow
        for flow in flows
        if flow.is_active and flow.levels and flow.matches(amount, cost_center_id)
    ]
    return sorted(matching, key=_priority)


def _priority(flow: ApprovalFlow) -> Tuple[int, int, Decimal, int]:
    scoped = 0 if flow.cost_center_id is not None else 1
    width = flow.band_width
    return (scoped, 1 if width is None else 0, width if width is not None else Decimal(0), flow.id)


class FlowSelector:
    def __init__(self, repository: Optional[FlowRepository] = None) -> None:
        self.repository = repository or flow_repository

    def select_flow(self, amount: Decimal, cost_center_id: Optional[int]) -> Optional[ApprovalFlow]:
        """Return the single applicable flow, or ``None`` when nothing matches."""
        candidates = candidate_flows(self.repository.find_active_flows(), amount, cost_center_id)
        if not candidates:
            logger.info("No approval flow matches amount=%s cost_center=%s", amount, cost_center_id)
            return None
        if len(candidates) > 1 and _priority(candidates[0])[:3] == _priority(candidates[1])[:3]:
            logger.warning(
                "Ambiguous approval flows %s for amount=%s cost_center=%s; using flow %s",
                [flow.id for flow in candidates],
                amount,
                cost_center_id,
                candidates[0].id,
            )
        return candidates[0]


flow_selector = FlowSelector()
