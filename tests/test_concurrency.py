import pytest
from sqlalchemy.orm import Session

from app import create_app, db
from app.errors import InvalidStateError
from app.models import ApprovalDecision, DecisionType, ExpenseApproval, UserRole
from app.services.approval_service import approval_service
from app.services.approval_state_machine import ApprovalStateMachine
from app.utils.helpers import utcnow


@pytest.fixture
def app(tmp_path):
    # Two sessions need two connections to one database, so no in-memory SQLite here.
    app = create_app("testing", {"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'race.db'}"})
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def approvers(make_user):
    return make_user(UserRole.MANAGER, "Alice"), make_user(UserRole.MANAGER, "Bob"), make_user(UserRole.ADMIN, "Carol")


@pytest.fixture
def expense_id(make_flow, make_user, make_expense, approvers):
    user_a, user_b, user_c = approvers
    make_flow([[user_a, user_b], [user_c]], min_amount=0, max_amount=5000)
    employee = make_user(UserRole.EMPLOYEE, "Erin")
    return approval_service.initiate_approval(make_expense(employee, 1000)).expense_id


def _commit_competing_approval(expense_id, approver_id):
    with Session(db.engine) as other:
        approval = other.query(ExpenseApproval).filter_by(expense_id=expense_id).one()
        decided_at = utcnow()
        approval.decisions.append(
            ApprovalDecision(level=0, approver_user_id=approver_id, decision=DecisionType.APPROVE, decided_at=decided_at)
        )
        approval.current_level = 1
        approval.updated_at = decided_at
        other.commit()


@pytest.fixture
def race(monkeypatch):
    """Let another writer commit between loading the approval and recording the decision."""
    original = ApprovalStateMachine.record_decision
    competing = []

    def _arm(expense_id, approver_id):
        def racing(self, *args, **kwargs):
            if not competing:
                competing.append(approver_id)
                _commit_competing_approval(expense_id, approver_id)
            return original(self, *args, **kwargs)

        monkeypatch.setattr(ApprovalStateMachine, "record_decision", racing)
        return competing

    return _arm


def _stored_decisions(expense_id):
    db.session.expire_all()
    approval = ExpenseApproval.query.filter_by(expense_id=expense_id).one()
    return approval, [(d.level, d.approver_user_id) for d in approval.decisions]


def test_losing_writer_sees_level_already_completed(expense_id, approvers, race):
    user_a, user_b, _ = approvers
    version = ExpenseApproval.query.filter_by(expense_id=expense_id).one().version
    competing = race(expense_id, user_a.id)

    with pytest.raises(InvalidStateError):
        approval_service.submit_decision(expense_id, user_b.id, DecisionType.APPROVE)

    approval, decisions = _stored_decisions(expense_id)
    assert competing == [user_a.id]
    assert approval.current_level == 1
    assert approval.version == version + 1
    assert decisions == [(0, user_a.id)]


def test_same_approver_racing_itself_is_a_replay(expense_id, approvers, race):
    _, user_b, _ = approvers
    race(expense_id, user_b.id)

    result = approval_service.submit_decision(expense_id, user_b.id, DecisionType.APPROVE)

    approval, decisions = _stored_decisions(expense_id)
    assert result.replayed
    assert result.decided_level == 0
    assert approval.current_level == 1
    assert decisions == [(0, user_b.id)]
