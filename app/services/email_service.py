"""Email notifications for approval events."""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from flask import current_app
from flask_mail import Mail, Message

from app.models import Expense, ExpenseStatus, User

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending approval notification emails."""

    def __init__(self, mail: Optional[Mail] = None):
        self.mail = mail

    def send_pending_approval(self, expense: Expense, approvers: Iterable[User], level: int) -> int:
        """Tell each approver of a newly active level that an expense awaits them."""
        sent = 0
        submitter = expense.submitter.full_name if expense.submitter else "An employee"
        subject = f"ExpenseFlow - Expense #{expense.id} is pending your approval"
        for approver in approvers:
            body = (
                f"Hi {approver.first_name},\n\n"
                f"{submitter} submitted an expense that needs your approval "
                f"(approval level {level + 1}).\n\n"
                f"Amount: {expense.amount} {expense.currency}\n"
                f"Category: {expense.category}\n"
                f"Description: {expense.description or '-'}\n\n"
                "Sign in to ExpenseFlow to approve or reject it.\n\n"
                "-- ExpenseFlow"
            )
            if self._send_email(approver.email, subject, body):
                sent += 1
        return sent

    def send_decision(self, expense: Expense, reason: Optional[str] = None) -> bool:
        """Tell the submitter about the final outcome of their expense."""
        submitter = expense.submitter
        if submitter is None or not submitter.email:
            return False

        outcome = _OUTCOMES.get(expense.status, expense.status.value.lower())
        subject = f"ExpenseFlow - Your expense #{expense.id} was {outcome}"
        reason_text = f"\nReason: {reason}\n" if reason else ""
        body = (
            f"Hi {submitter.first_name},\n\n"
            f"Your expense of {expense.amount} {expense.currency} "
            f"({expense.category}) has been {outcome}.\n"
            f"{reason_text}\n"
            "Sign in to ExpenseFlow to review the full details.\n\n"
            "-- ExpenseFlow"
        )
        return self._send_email(submitter.email, subject, body)

    def _send_email(self, to_email: str, subject: str, text_body: str) -> bool:
        """Send email using Flask-Mail."""
        if not current_app.config.get("NOTIFICATIONS_ENABLED", True):
            return False
        if not self.mail:
            logger.error("Mail service not initialized")
            return False
        try:
            msg = Message(
                subject=subject,
                sender=current_app.config.get("MAIL_DEFAULT_SENDER"),
                recipients=[to_email],
                body=text_body,
            )
            self.mail.send(msg)
            logger.info("Email sent successfully to %s", to_email)
            return True
        except Exception as exc:
            logger.error("Failed to send email to %s: %s", to_email, exc)
            return False


_OUTCOMES = {
    ExpenseStatus.APPROVED: "approved",
    ExpenseStatus.REJECTED: "rejected",
    ExpenseStatus.PAID: "paid",
}


# Global email service instance
email_service = EmailService()


def init_email_service(mail: Mail) -> None:
    """Initialize the email service with Flask-Mail instance."""
    email_service.mail = mail
