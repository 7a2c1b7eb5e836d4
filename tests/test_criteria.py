import pytest

from app.models.db.enums import ContractType, PolicyType, TargetType
from app.models.domain import Criterion, MalformedCriterion, PolicySnapshot
from app.services.criteria import evaluate, matches, parse_criteria, parse_criterion
from app.services.errors import InvalidCriterionConfiguration


def _policy(pid: int, policy_type=PolicyType.AUTO, contract_type=ContractType.NEW, premium=1000.0) -> PolicySnapshot:
    return PolicySnapshot(
        policy_id=pid,
        policy_number=f"P{pid}",
        policy_type=policy_type,
        contract_type=contract_type,
        premium_value=premium,
    )


def test_quantity_criterion_counts_matching_policies():
    criterion = Criterion(index=0, target_type=TargetType.QUANTITY, target_value=2, policy_type=PolicyType.AUTO)
    result = evaluate(criterion, [_policy(1), _policy(2, PolicyType.RESIDENTIAL), _policy(3)])
    assert result.current_progress == 2
    assert result.percentage == 100.0
    assert result.is_satisfied is True
    assert [p.policy_id for p in result.matching_policies] == [1, 3]


def test_value_criterion_sums_premiums_with_minimum_per_policy():
    criterion = Criterion(index=0, target_type=TargetType.VALUE, target_value=5000, min_value_per_policy=1500)
    result = evaluate(criterion, [_policy(1, premium=1000), _policy(2, premium=2000), _policy(3, premium=1500)])
    assert result.current_progress == 3500
    assert result.percentage == pytest.approx(70.0)
    assert result.is_satisfied is False


def test_contract_type_filter():
    criterion = Criterion(index=0, target_type=TargetType.QUANTITY, target_value=1, contract_type=ContractType.RENEWAL)
    assert matches(criterion, _policy(1, contract_type=ContractType.RENEWAL))
    assert not matches(criterion, _policy(2, contract_type=ContractType.NEW))


def test_empty_candidates_never_divide_by_zero():
    criterion = Criterion(index=0, target_type=TargetType.VALUE, target_value=0)
    result = evaluate(criterion, [])
    assert result.current_progress == 0
    assert result.percentage == 0
    assert result.is_satisfied is False


def test_zero_target_is_never_satisfied():
    criterion = Criterion(index=0, target_type=TargetType.QUANTITY, target_value=0)
    result = evaluate(criterion, [_policy(1)])
    assert result.percentage == 0
    assert result.is_satisfied is False


def test_parse_accepts_legacy_labels():
    parsed = parse_criterion(
        {"policy_type": "Seguro Auto", "contract_type": "Renovação Bradesco", "target_type": "quantity", "target_value": "3"},
        0,
    )
    assert parsed.policy_type == PolicyType.AUTO
    assert parsed.contract_type == ContractType.RENEWAL
    assert parsed.target_value == 3.0


@pytest.mark.parametrize("contract_label", ["ambos", "both", "", None])
def test_parse_both_contract_types_means_no_filter(contract_label):
    parsed = parse_criterion({"target_type": "value", "target_value": 100, "contract_type": contract_label}, 0)
    assert parsed.contract_type is None


def test_parse_infers_quantity_from_legacy_target_count():
    parsed = parse_criterion({"policy_type": "residencial", "target_count": 4}, 1)
    assert parsed.target_type == TargetType.QUANTITY
    assert parsed.target_value == 4
    assert parsed.policy_type == PolicyType.RESIDENTIAL


def test_parse_infers_value_without_target_type():
    parsed = parse_criterion({"target_value": 2500}, 0)
    assert parsed.target_type == TargetType.VALUE


def test_parse_rejects_unknown_target_type():
    with pytest.raises(InvalidCriterionConfiguration):
        parse_criterion({"target_type": "premium_points", "target_value": 1}, 0)


def test_parse_criteria_keeps_malformed_entries():
    parsed = parse_criteria([
        {"target_type": "quantity", "target_value": 1},
        {"target_type": "quantity", "target_value": "lots"},
        {"policy_type": "boat", "target_type": "quantity", "target_value": 1},
    ])
    assert isinstance(parsed[0], Criterion)
    assert isinstance(parsed[1], MalformedCriterion)
    assert isinstance(parsed[2], MalformedCriterion)
    assert "target_value" in parsed[1].reason


def test_parse_criteria_from_json_string_and_positional_dict():
    from_json = parse_criteria('[{"target_type": "value", "target_value": 10}]')
    assert len(from_json) == 1 and isinstance(from_json[0], Criterion)

    positional = parse_criteria({
        "1": {"target_type": "quantity", "target_value": 2},
        "0": {"target_type": "value", "target_value": 5},
    })
    assert [c.target_type for c in positional] == [TargetType.VALUE, TargetType.QUANTITY]


def test_parse_criteria_invalid_json_is_malformed():
    parsed = parse_criteria("{not json")
    assert len(parsed) == 1
    assert isinstance(parsed[0], MalformedCriterion)


def test_parse_criteria_empty():
    assert parse_criteria(None) == []
    assert parse_criteria([]) == []
