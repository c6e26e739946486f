import pytest

from app.models import ExpenseStatus
from app.services import hooks


@pytest.fixture
def isolated_listeners(app, monkeypatch):
    monkeypatch.setattr(hooks, "_listeners", {})
    return hooks


def test_default_listeners_are_registered(app):
    assert {"accounting_sync", "notification"} <= set(hooks.registered_listeners())


def test_failing_listener_does_not_stop_the_others(isolated_listeners):
    seen = []

    def broken(event):
        raise ValueError("boom")

    isolated_listeners.register_listener("broken", broken)
    isolated_listeners.register_listener("recorder", seen.append)

    results = isolated_listeners.dispatch_terminal(hooks.TerminalEvent(7, ExpenseStatus.APPROVED))

    assert results == {"broken": False, "recorder": True}
    assert [event.expense_id for event in seen] == [7]


def test_registering_twice_replaces_listener(isolated_listeners):
    calls = []
    isolated_listeners.register_listener("audit", lambda event: calls.append("old"))
    isolated_listeners.register_listener("audit", lambda event: calls.append("new"))

    isolated_listeners.dispatch_terminal(hooks.TerminalEvent(1, ExpenseStatus.REJECTED, reason="nope"))

    assert calls == ["new"]


@pytest.mark.parametrize(
    "event",
    [
        hooks.TerminalEvent(1, ExpenseStatus.REJECTED, reason="duplicate"),
        hooks.TerminalEvent(1, ExpenseStatus.APPROVED, rescinded=True),
    ],
)
def test_accounting_sync_ignores_non_approvals(app, monkeypatch, event):
    app.config["ACCOUNTING_SYNC_URL"] = "https://accounting.example.com/sync"

    def unexpected(*args, **kwargs):
        raise AssertionError("accounting sync should not be called")

    monkeypatch.setattr(hooks.requests, "post", unexpected)

    hooks.accounting_sync_listener(event)


def test_accounting_sync_skipped_without_endpoint(app, monkeypatch):
    def unexpected(*args, **kwargs):
        raise AssertionError("accounting sync should not be called")

    monkeypatch.setattr(hooks.requests, "post", unexpected)

    hooks.accounting_sync_listener(hooks.TerminalEvent(1, ExpenseStatus.APPROVED))
