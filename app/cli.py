"""``flask approvals`` maintenance commands."""
from __future__ import annotations

import click
from flask import Flask
from flask.cli import AppGroup

from app.errors import ApprovalError
from app.services.approval_service import AutoApprovalCriteria, approval_service

approvals_cli = AppGroup("approvals", help="Approval engine maintenance commands.")


@approvals_cli.command("auto-approve")
@click.option("--vendor", "vendor_name", help="Case-insensitive vendor name substring.")
@click.option("--category", help="Exact expense category.")
@click.option("--submitter-id", type=int, help="Only expenses from this user.")
@click.option("--approver-id", type=int, help="Act as this approver instead of AUTOMATED_APPROVER_ID.")
def auto_approve(vendor_name, category, submitter_id, approver_id):
    """Approve pending expenses that match the given criteria."""
    criteria = AutoApprovalCriteria(vendor_name=vendor_name, category=category, submitter_id=submitter_id)
    try:
        reports = approval_service.auto_approve_matching(criteria, approver_id=approver_id)
    except ApprovalError as exc:
        raise click.ClickException(exc.message) from exc

    for report in reports:
        if report.success:
            click.echo(f"expense {report.expense_id}: {report.status}")
        else:
            click.echo(f"expense {report.expense_id}: FAILED ({report.code}) {report.error}", err=True)
    approved = sum(1 for report in reports if report.success)
    click.echo(f"{approved} of {len(reports)} matching expense(s) processed successfully.")


@approvals_cli.command("redispatch-hooks")
def redispatch_hooks():
    """Fire terminal hooks that never completed."""
    count = approval_service.redispatch_hooks()
    click.echo(f"Re-dispatched terminal hooks for {count} expense(s).")


def register_cli(app: Flask) -> None:
    app.cli.add_command(approvals_cli)
