import pytest

from app import db
from app.errors import NotFoundError, ValidationError
from app.models import ApprovalFlow, LevelPolicy, UserRole
from app.services.approval_service import approval_service
from app.services.flow_repository import flow_repository, normalize_levels


@pytest.fixture
def managers(make_user):
    return make_user(UserRole.MANAGER), make_user(UserRole.MANAGER)


def test_create_flow_persists_levels_and_policy(make_flow, managers):
    first, second = managers

    flow = make_flow([[first, second], [second]], min_amount=500, max_amount=2500, policy=LevelPolicy.ALL_REQUIRED)

    stored = flow_repository.find_by_id(flow.id)
    assert stored.levels == [[first.id, second.id], [second.id]]
    assert stored.level_policy is LevelPolicy.ALL_REQUIRED
    assert stored in flow_repository.find_active_flows()


def test_find_by_id_missing_raises_not_found(app):
    with pytest.raises(NotFoundError):
        flow_repository.find_by_id(404)


@pytest.mark.parametrize(
    "overrides",
    [
        {"min_amount": 100, "max_amount": 100},
        {"min_amount": 500, "max_amount": 100},
        {"min_amount": -1},
        {"levels": []},
        {"levels": [[]]},
        {"levels": "not-a-list"},
        {"level_policy": "MAJORITY"},
        {"name": "  "},
    ],
)
def test_malformed_flows_are_rejected(managers, overrides):
    first, _ = managers
    data = {"name": "Travel", "min_amount": 0, "max_amount": 1000, "levels": [[first.id]]}
    data.update(overrides)

    with pytest.raises(ValidationError):
        flow_repository.create_flow(data)
    assert ApprovalFlow.query.count() == 0


def test_approvers_must_exist_and_hold_an_approver_role(make_user, managers):
    employee = make_user(UserRole.EMPLOYEE)
    manager, _ = managers

    with pytest.raises(ValidationError) as missing:
        flow_repository.create_flow({"name": "Ghost", "levels": [[manager.id, 999]]})
    assert missing.value.details["approver_ids"] == [999]

    with pytest.raises(ValidationError) as not_allowed:
        flow_repository.create_flow({"name": "Employee", "levels": [[employee.id]]})
    assert not_allowed.value.details["approver_ids"] == [employee.id]


def test_duplicate_approver_within_level_is_rejected(managers):
    first, _ = managers

    with pytest.raises(ValidationError):
        flow_repository.create_flow({"name": "Twice", "levels": [[first.id, first.id]]})


def test_overlapping_active_flows_in_same_scope_are_rejected(make_flow, make_cost_center, managers):
    first, _ = managers
    existing = make_flow([[first]], min_amount=0, max_amount=1000)

    with pytest.raises(ValidationError) as exc:
        make_flow([[first]], min_amount=1000, max_amount=2000)
    assert exc.value.details["conflicting_flow_id"] == existing.id

    # A different scope or an inactive flow may share the band.
    make_flow([[first]], min_amount=0, max_amount=1000, cost_center=make_cost_center())
    make_flow([[first]], min_amount=500, max_amount=1500, is_active=False)


def test_update_is_partial_and_validated(make_flow, managers):
    first, second = managers
    flow = make_flow([[first]], min_amount=0, max_amount=1000)
    make_flow([[first]], min_amount=2000, max_amount=None)

    updated = flow_repository.update_flow(flow.id, {"levels": [[second.id]], "description": "Small items"})
    assert updated.levels == [[second.id]]
    assert updated.max_amount == 1000

    with pytest.raises(ValidationError):
        flow_repository.update_flow(flow.id, {"max_amount": 2500})
    db.session.expire_all()
    assert flow_repository.find_by_id(flow.id).max_amount == 1000


def test_rejected_update_leaves_no_pending_changes(make_flow, managers):
    first, _ = managers
    flow = make_flow([[first]], min_amount=0, max_amount=1000, name="Original")

    with pytest.raises(ValidationError):
        flow_repository.update_flow(flow.id, {"name": "Changed", "levels": "bad"})
    with pytest.raises(ValidationError):
        flow_repository.update_flow(flow.id, {"name": "Changed", "level_policy": "MAJORITY"})
    db.session.commit()

    db.session.expire_all()
    assert flow_repository.find_by_id(flow.id).name == "Original"


def test_editing_flow_does_not_touch_in_flight_approvals(make_flow, make_user, make_expense, managers):
    first, second = managers
    flow = make_flow([[first]], min_amount=0, max_amount=1000)
    approval = approval_service.initiate_approval(make_expense(make_user(UserRole.EMPLOYEE), 100))

    flow_repository.update_flow(flow.id, {"levels": [[second.id], [first.id]]})

    db.session.expire_all()
    assert approval.levels == [[first.id]]
    assert approval.total_levels == 1


def test_flow_in_use_cannot_be_deleted(make_flow, make_user, make_expense, managers):
    first, _ = managers
    flow = make_flow([[first]], min_amount=0, max_amount=1000)
    approval_service.initiate_approval(make_expense(make_user(UserRole.EMPLOYEE), 100))

    with pytest.raises(ValidationError):
        flow_repository.delete_flow(flow.id)

    unused = make_flow([[first]], min_amount=5000, max_amount=9000)
    flow_repository.delete_flow(unused.id)
    assert db.session.get(ApprovalFlow, unused.id) is None


def test_normalize_levels_coerces_ids():
    assert normalize_levels([["1", 2], [3]]) == [[1, 2], [3]]
    with pytest.raises(ValidationError):
        normalize_levels([["abc"]])
