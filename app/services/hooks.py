"""Downstream collaborators informed when an expense reaches a final status.

Listeners run after the status is committed. A failing listener is logged
and skipped; it never rolls the expense back. Dispatch can be repeated for
approvals whose ``hook_dispatched_at`` is still empty.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import requests
from flask import current_app

from app import db
from app.models import Expense, ExpenseStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TerminalEvent:
    expense_id: int
    status: ExpenseStatus
    reason: Optional[str] = None
    # Submitter withdrawals notify but are never synced to accounting.
    rescinded: bool = False

    def to_dict(self) -> dict:
        return {"expense_id": self.expense_id, "status": self.status.value}


TerminalListener = Callable[[TerminalEvent], None]

_listeners: Dict[str, TerminalListener] = {}


def register_listener(name: str, listener: TerminalListener) -> None:
    """Register (or replace) a terminal-state listener under ``name``."""
    _listeners[name] = listener


def unregister_listener(name: str) -> None:
    _listeners.pop(name, None)


def registered_listeners() -> Dict[str, TerminalListener]:
    return dict(_listeners)


def dispatch_terminal(event: TerminalEvent) -> Dict[str, bool]:
    """Call every listener once; returns success per listener name."""
    results: Dict[str, bool] = {}
    for name, listener in list(_listeners.items()):
        try:
            listener(event)
            results[name] = True
        except Exception:
            logger.exception("Terminal listener %s failed for expense %s", name, event.expense_id)
            results[name] = False
    return results


def accounting_sync_listener(event: TerminalEvent) -> None:
    """Push approved expenses to the accounting sync endpoint, when configured."""
    if event.status is not ExpenseStatus.APPROVED or event.rescinded:
        return
    url = current_app.config.get("ACCOUNTING_SYNC_URL")
    if not url:
        logger.debug("Skipping accounting sync for expense %s - no endpoint configured", event.expense_id)
        return

    expense = db.session.get(Expense, event.expense_id)
    payload = event.to_dict()
    if expense is not None:
        payload["expense"] = expense.to_dict()

    response = requests.post(
        url,
        json=payload,
        timeout=current_app.config.get("ACCOUNTING_SYNC_TIMEOUT", 10),
    )
    response.raise_for_status()
    logger.info("Queued accounting sync for expense %s", event.expense_id)


def notification_listener(event: TerminalEvent) -> None:
    from app.services.email_service import email_service

    expense = db.session.get(Expense, event.expense_id)
    if expense is None:
        return
    email_service.send_decision(expense, reason=event.reason)


def register_default_listeners() -> None:
    register_listener("accounting_sync", accounting_sync_listener)
    register_listener("notification", notification_listener)
