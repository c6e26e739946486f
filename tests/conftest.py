from __future__ import annotations

import itertools
from datetime import date
from decimal import Decimal

import pytest

from app import create_app, db
from app.models import CostCenter, EmployeeProfile, Expense, LevelPolicy, User, UserRole
from app.services import hooks
from app.services.flow_repository import flow_repository

PASSWORD = "correct-horse"


@pytest.fixture
def app():
    app = create_app("testing")
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def _make(role=UserRole.MANAGER, first_name=None, manager=None, is_active=True):
        n = next(counter)
        user = User(
            first_name=first_name or f"User{n}",
            last_name="Tester",
            email=f"{(first_name or 'user').lower()}{n}@example.com",
            role=role,
            is_active=is_active,
        )
        user.set_password(PASSWORD)
        db.session.add(user)
        db.session.flush()
        if manager is not None:
            db.session.add(EmployeeProfile(user_id=user.id, manager_id=manager.id))
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_cost_center(app):
    counter = itertools.count(1)

    def _make(code=None, name="Engineering"):
        cost_center = CostCenter(code=code or f"CC-{next(counter):03d}", name=name)
        db.session.add(cost_center)
        db.session.commit()
        return cost_center

    return _make


@pytest.fixture
def make_flow(app):
    counter = itertools.count(1)

    def _make(levels, min_amount=0, max_amount=None, cost_center=None, policy=LevelPolicy.ANY_ONE, **extra):
        data = {
            "name": extra.pop("name", f"Flow {next(counter)}"),
            "min_amount": min_amount,
            "max_amount": max_amount,
            "cost_center_id": cost_center.id if cost_center else None,
            "levels": [[user.id if isinstance(user, User) else user for user in level] for level in levels],
            "level_policy": policy.value,
        }
        data.update(extra)
        return flow_repository.create_flow(data)

    return _make


@pytest.fixture
def make_expense(app):
    def _make(submitter, amount, cost_center=None, vendor_name=None, category="Travel"):
        return Expense(
            submitter_user_id=submitter.id,
            cost_center_id=cost_center.id if cost_center else None,
            amount=Decimal(str(amount)),
            currency="USD",
            category=category,
            description="Client visit",
            vendor_name=vendor_name,
            date_spent=date(2026, 10, 1),
        )

    return _make


@pytest.fixture
def terminal_events(app):
    """Collect terminal events dispatched during a test."""
    events = []
    hooks.register_listener("test_recorder", events.append)
    yield events
    hooks.unregister_listener("test_recorder")


@pytest.fixture
def login(client):
    def _login(user):
        response = client.post("/auth/login", json={"email": user.email, "password": PASSWORD})
        assert response.status_code == 200, response.get_json()
        return response

    return _login
