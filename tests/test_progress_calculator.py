from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from app.config import PROGRESS_SETTINGS
from app.models.db.enums import (
    AcceptanceStatus,
    CampaignStatus,
    CampaignType,
    ContractType,
    PolicyStatus,
    PolicyType,
    TargetType,
)
from app.models.domain import CampaignRecord, Criterion, LinkedPolicy, MalformedCriterion, PolicySnapshot
from app.services.criteria import parse_criteria
from app.services.progress_calculator import calculate_progress

ACCEPTED_AT = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_campaign(*, type=CampaignType.VALUE, target=10000, criteria=None, accepted=True, **overrides) -> CampaignRecord:
    fields = dict(
        id=1,
        user_id=7,
        title="Campaign",
        type=type,
        target=target,
        start_date=date(2025, 3, 1),
        end_date=date(2025, 6, 30),
        acceptance_status=AcceptanceStatus.ACCEPTED if accepted else AcceptanceStatus.PENDING,
        status=CampaignStatus.ACTIVE,
        accepted_at=ACCEPTED_AT if accepted else None,
        criteria=tuple(parse_criteria(criteria)),
    )
    fields.update(overrides)
    return CampaignRecord(**fields)


_next_id = iter(range(1, 10_000))


def make_link(*, policy_type=PolicyType.AUTO, premium=1000.0, linked_at=None, is_active=True,
              contract_type=ContractType.NEW, status=PolicyStatus.ACTIVE, policy_id=None) -> LinkedPolicy:
    pid = policy_id if policy_id is not None else next(_next_id)
    return LinkedPolicy(
        link_id=pid,
        linked_at=linked_at or ACCEPTED_AT + timedelta(days=1),
        is_active=is_active,
        policy=PolicySnapshot(
            policy_id=pid,
            policy_number=f"P{pid}",
            policy_type=policy_type,
            contract_type=contract_type,
            premium_value=premium,
            status=status,
        ),
    )


SCENARIO_B_CRITERIA = [
    {"policy_type": "auto", "target_type": "quantity", "target_value": 2},
    {"policy_type": "residential", "target_type": "quantity", "target_value": 1},
]


def test_value_campaign_without_criteria_completes_at_target():
    campaign = make_campaign(type=CampaignType.VALUE, target=10000)
    result = calculate_progress(campaign, [make_link(premium=4000), make_link(premium=6000)])
    assert result.current_value == 10000
    assert result.progress_percentage == 100
    assert result.is_completed is True
    assert result.total_policies == 2


def test_quantity_campaign_without_criteria_counts_policies():
    campaign = make_campaign(type=CampaignType.QUANTITY, target=4)
    result = calculate_progress(campaign, [make_link(), make_link(), make_link()])
    assert result.current_value == 3
    assert result.progress_percentage == 75
    assert result.is_completed is False


def test_and_composition_with_average_display():
    campaign = make_campaign(criteria=SCENARIO_B_CRITERIA)
    result = calculate_progress(campaign, [make_link(), make_link()], aggregation="average")
    assert [c.is_satisfied for c in result.criteria] == [True, False]
    assert [c.percentage for c in result.criteria] == [100.0, 0.0]
    assert result.is_completed is False
    assert result.progress_percentage == 50


def test_strong_criterion_does_not_mask_failing_one():
    criteria = [
        {"policy_type": "auto", "target_type": "quantity", "target_value": 2},
        {"policy_type": "residential", "target_type": "quantity", "target_value": 5},
    ]
    links = [make_link() for _ in range(3)] + [make_link(policy_type=PolicyType.RESIDENTIAL) for _ in range(2)]
    result = calculate_progress(make_campaign(criteria=criteria), links)
    assert result.criteria[0].percentage == 150
    assert result.criteria[1].percentage == 40
    assert result.is_completed is False


def test_minimum_aggregation_shows_weakest_criterion():
    campaign = make_campaign(criteria=SCENARIO_B_CRITERIA)
    result = calculate_progress(campaign, [make_link(), make_link()], aggregation="minimum")
    assert result.progress_percentage == 0
    assert result.aggregation == "minimum"


def test_aggregation_defaults_to_config(monkeypatch):
    monkeypatch.setitem(PROGRESS_SETTINGS, "aggregation", "minimum")
    result = calculate_progress(make_campaign(criteria=SCENARIO_B_CRITERIA), [make_link(), make_link()])
    assert result.aggregation == "minimum"
    assert result.progress_percentage == 0


def test_links_before_acceptance_are_excluded():
    campaign = make_campaign(type=CampaignType.QUANTITY, target=10)
    before = make_link(linked_at=ACCEPTED_AT - timedelta(days=1))
    after = make_link(linked_at=ACCEPTED_AT + timedelta(days=1))

    only_before = calculate_progress(campaign, [before])
    both = calculate_progress(campaign, [before, after])
    assert only_before.total_policies == 0
    assert both.total_policies == only_before.total_policies + 1
    assert both.current_value == 1


def test_link_at_exact_acceptance_instant_counts():
    campaign = make_campaign(type=CampaignType.QUANTITY, target=1)
    result = calculate_progress(campaign, [make_link(linked_at=ACCEPTED_AT)])
    assert result.is_completed is True


def test_naive_link_timestamps_are_treated_as_utc():
    campaign = make_campaign(type=CampaignType.QUANTITY, target=1)
    naive_before = (ACCEPTED_AT - timedelta(hours=1)).replace(tzinfo=None)
    result = calculate_progress(campaign, [make_link(linked_at=naive_before)])
    assert result.total_policies == 0


@pytest.mark.parametrize("acceptance", [AcceptanceStatus.PENDING, AcceptanceStatus.REJECTED])
def test_unaccepted_campaign_reports_zero(acceptance):
    campaign = make_campaign(target=1000, acceptance_status=acceptance, accepted_at=None)
    result = calculate_progress(campaign, [make_link(premium=5000)])
    assert result.progress_percentage == 0
    assert result.is_completed is False
    assert result.total_policies == 0
    assert result.accepted is False


def test_inactive_links_and_cancelled_policies_do_not_count():
    campaign = make_campaign(type=CampaignType.QUANTITY, target=2)
    links = [
        make_link(),
        make_link(is_active=False),
        make_link(status=PolicyStatus.CANCELLED),
    ]
    result = calculate_progress(campaign, links)
    assert result.total_policies == 1
    assert result.current_value == 1


def test_same_policy_linked_twice_counts_once():
    campaign = make_campaign(type=CampaignType.QUANTITY, target=2)
    result = calculate_progress(campaign, [make_link(policy_id=500), make_link(policy_id=500)])
    assert result.total_policies == 1


def test_display_percentage_is_capped_but_completion_is_not():
    campaign = make_campaign(type=CampaignType.VALUE, target=100)
    result = calculate_progress(campaign, [make_link(premium=5000)])
    assert result.progress_percentage == PROGRESS_SETTINGS["max_display_percentage"]
    assert result.uncapped_percentage == 5000
    assert result.is_completed is True


def test_current_value_sums_policies_matching_any_criterion_once():
    criteria = [
        {"policy_type": "auto", "target_type": "value", "target_value": 1000},
        {"target_type": "quantity", "target_value": 1, "min_value_per_policy": 500},
    ]
    links = [
        make_link(premium=800),
        make_link(policy_type=PolicyType.RESIDENTIAL, premium=300),
    ]
    result = calculate_progress(make_campaign(criteria=criteria), links)
    # the auto policy matches both criteria, the 300 residential matches neither
    assert result.current_value == 800


def test_malformed_criterion_blocks_completion_without_aborting_siblings():
    criteria = [
        {"policy_type": "auto", "target_type": "quantity", "target_value": 1},
        {"policy_type": "auto", "target_type": "unknown", "target_value": 1},
    ]
    campaign = make_campaign(criteria=criteria)
    assert isinstance(campaign.criteria[1], MalformedCriterion)

    result = calculate_progress(campaign, [make_link()])
    assert result.criteria[0].is_satisfied is True
    assert result.criteria[1].is_satisfied is False
    assert result.criteria[1].error
    assert result.criteria[1].current_progress == 0
    assert result.is_completed is False
    assert result.progress_percentage == 50


def test_calculation_is_idempotent():
    campaign = make_campaign(criteria=SCENARIO_B_CRITERIA)
    links = [make_link(), make_link(), make_link(policy_type=PolicyType.RESIDENTIAL, premium=700)]
    first = calculate_progress(campaign, links)
    second = calculate_progress(campaign, links)
    assert first.to_dict() == second.to_dict()
    assert first.is_completed is True
    assert first.to_dict()["criteria"][1]["matching_policy_ids"] == [links[2].policy.policy_id]


def test_criterion_failing_at_evaluation_counts_as_zero_and_keeps_siblings():
    satisfied = Criterion(index=0, target_type=TargetType.QUANTITY, target_value=1, policy_type=PolicyType.AUTO)
    # unparsed value reaching the evaluator: float < str raises TypeError
    broken = Criterion(index=1, target_type=TargetType.QUANTITY, target_value=1, min_value_per_policy="50")
    campaign = replace(make_campaign(), criteria=(satisfied, broken))

    result = calculate_progress(campaign, [make_link()])

    assert len(result.criteria) == 2
    assert result.criteria[0].is_satisfied is True
    assert result.criteria[0].percentage == 100
    assert result.criteria[1].is_satisfied is False
    assert result.criteria[1].current_progress == 0
    assert "evaluation failed" in result.criteria[1].error
    assert result.is_completed is False
    assert result.progress_percentage == 50
