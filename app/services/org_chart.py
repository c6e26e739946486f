"""Routing for expenses that no approval flow covers."""
from __future__ import annotations

import enum
import logging
from typing import List, Optional

from flask import current_app

from app.errors import ConfigurationError
from app.models import User

logger = logging.getLogger(__name__)


class FallbackPolicy(enum.Enum):
    AUTO_APPROVE = "auto_approve"
    ORG_CHART = "org_chart"
    DISABLED = "disabled"


def configured_policy() -> FallbackPolicy:
    raw = current_app.config.get("APPROVAL_FALLBACK_POLICY", FallbackPolicy.AUTO_APPROVE.value)
    try:
        return FallbackPolicy(str(raw).lower())
    except ValueError:
        raise ConfigurationError(f"Unknown APPROVAL_FALLBACK_POLICY '{raw}'.", policy=raw) from None


def manager_chain_levels(submitter: Optional[User], depth: Optional[int] = None) -> List[List[int]]:
    """One single-approver level per manager up the submitter's chain."""
    if submitter is None:
        return []
    if depth is None:
        depth = int(current_app.config.get("APPROVAL_FALLBACK_LEVELS", 1))
    chain = submitter.management_chain(max(depth, 0))
    if not chain:
        logger.info("No manager chain found for user %s", submitter.id)
    return [[manager.id] for manager in chain]
