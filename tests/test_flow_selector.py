from decimal import Decimal

import pytest

from app.models import ApprovalFlow, UserRole
from app.services.flow_selector import candidate_flows, flow_selector


@pytest.fixture
def approver(make_user):
    return make_user(UserRole.MANAGER)


def test_selected_flow_covers_amount_and_scope(make_flow, make_cost_center, approver):
    travel = make_cost_center()
    small = make_flow([[approver]], min_amount=0, max_amount=500)
    medium = make_flow([[approver]], min_amount=500.01, max_amount=2500)
    scoped = make_flow([[approver]], min_amount=1000, max_amount=5000, cost_center=travel)

    for amount, cost_center_id in [
        (Decimal("10"), None),
        (Decimal("500"), travel.id),
        (Decimal("750"), None),
        (Decimal("1200"), travel.id),
        (Decimal("2500"), None),
        (Decimal("4999.99"), travel.id),
    ]:
        flow = flow_selector.select_flow(amount, cost_center_id)
        assert flow is not None
        assert Decimal(flow.min_amount) <= amount
        assert flow.max_amount is None or amount <= Decimal(flow.max_amount)
        assert flow.cost_center_id in (None, cost_center_id)

    assert flow_selector.select_flow(Decimal("500"), None).id == small.id
    assert flow_selector.select_flow(Decimal("750"), None).id == medium.id
    assert flow_selector.select_flow(Decimal("1200"), travel.id).id == scoped.id


def test_scoped_flow_wins_over_org_wide_flow_with_same_band(make_flow, make_cost_center, approver):
    marketing = make_cost_center()
    org_wide = make_flow([[approver]], min_amount=100, max_amount=1000)
    scoped = make_flow([[approver]], min_amount=100, max_amount=1000, cost_center=marketing)

    assert flow_selector.select_flow(Decimal("400"), marketing.id).id == scoped.id
    assert flow_selector.select_flow(Decimal("400"), None).id == org_wide.id


def test_flow_scoped_to_other_cost_center_does_not_apply(make_flow, make_cost_center, approver):
    sales, support = make_cost_center(), make_cost_center()
    make_flow([[approver]], min_amount=0, max_amount=1000, cost_center=sales)

    assert flow_selector.select_flow(Decimal("200"), support.id) is None


def test_no_flow_below_all_minimums(make_flow, approver):
    make_flow([[approver]], min_amount=500, max_amount=2500)

    assert flow_selector.select_flow(Decimal("50"), None) is None


def test_inactive_flows_are_ignored(make_flow, approver):
    make_flow([[approver]], min_amount=0, max_amount=1000, is_active=False)

    assert flow_selector.select_flow(Decimal("100"), None) is None


def test_unbounded_flow_matches_large_amounts(make_flow, approver):
    flow = make_flow([[approver]], min_amount=10000, max_amount=None)

    assert flow_selector.select_flow(Decimal("1000000"), None).id == flow.id


def _flow(flow_id, min_amount, max_amount, cost_center_id=None):
    return ApprovalFlow(
        id=flow_id,
        name=f"flow-{flow_id}",
        min_amount=Decimal(min_amount),
        max_amount=Decimal(max_amount) if max_amount is not None else None,
        cost_center_id=cost_center_id,
        is_active=True,
        levels=[[1]],
    )


def test_equal_specificity_prefers_narrowest_band_then_lowest_id():
    wide = _flow(1, "0", "10000")
    narrow = _flow(7, "100", "200")
    unbounded = _flow(2, "50", None)
    narrow_twin = _flow(5, "150", "250")

    ordered = candidate_flows([wide, narrow, unbounded, narrow_twin], Decimal("175"), None)

    assert [flow.id for flow in ordered] == [5, 7, 1, 2]


def test_flows_without_levels_are_never_candidates():
    empty = _flow(3, "0", "100")
    empty.levels = []

    assert candidate_flows([empty], Decimal("10"), None) == []
