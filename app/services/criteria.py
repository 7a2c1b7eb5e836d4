"""Criterion parsing and evaluation.

Stored criteria are loose JSON written by several generations of the admin UI.
``parse_criteria`` turns them into typed ``Criterion`` records once, keeping any
entry it cannot understand as a ``MalformedCriterion`` (never dropped: a
campaign with a broken criterion must not complete).

``evaluate`` applies one criterion to a candidate policy set:

1. Filter by policy type (skipped when unset), contract type (skipped when
   unset or "both") and ``premium_value >= min_value_per_policy`` (skipped when unset).
2. Quantity targets count matches, value targets sum their premiums.
3. ``percentage = current / target * 100`` (0 when the target is not positive).
4. ``is_satisfied = target > 0 and current >= target``.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from app.models.db.enums import ContractType, PolicyType, TargetType
from app.models.domain import Criterion, CriterionSpec, MalformedCriterion, PolicySnapshot
from app.services.errors import InvalidCriterionConfiguration
from app.utils.metrics import pct_of_target

_LEGACY_QUANTITY_KEYS = ("target_count", "target_quantity")


@dataclass(slots=True)
class CriterionResult:
    index: int
    target_type: Optional[TargetType]
    target_value: float
    current_progress: float
    percentage: float
    is_satisfied: bool
    matching_policies: List[PolicySnapshot] = field(default_factory=list)
    policy_type: Optional[PolicyType] = None
    contract_type: Optional[ContractType] = None
    description: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "target_type": self.target_type.value if self.target_type else None,
            "target_value": self.target_value,
            "current_progress": self.current_progress,
            "percentage": self.percentage,
            "is_satisfied": self.is_satisfied,
            "policy_type": self.policy_type.value if self.policy_type else None,
            "contract_type": self.contract_type.value if self.contract_type else None,
            "description": self.description,
            "matching_policy_ids": [p.policy_id for p in self.matching_policies],
            "error": self.error,
        }


def _to_float(value: Any, field_name: str, index: int) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InvalidCriterionConfiguration(f"Criterion {index}: {field_name} must be numeric, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidCriterionConfiguration(f"Criterion {index}: {field_name} must be numeric, got {value!r}")


def _legacy_quantity_target(raw: Mapping[str, Any], index: int) -> Optional[float]:
    for key in _LEGACY_QUANTITY_KEYS:
        value = _to_float(raw.get(key), key, index)
        if value:
            return value
    return None


def parse_criterion(raw: Any, index: int) -> Criterion:
    """Parse one stored criterion. Raises InvalidCriterionConfiguration."""
    if not isinstance(raw, Mapping):
        raise InvalidCriterionConfiguration(f"Criterion {index}: expected an object, got {type(raw).__name__}")

    raw_target_type = raw.get("target_type")
    if raw_target_type in (None, ""):
        # Older rows carry no target_type; infer it from which target field is set
        legacy_quantity = _legacy_quantity_target(raw, index)
        if legacy_quantity is not None:
            target_type, target_value = TargetType.QUANTITY, legacy_quantity
        else:
            target_value_opt = _to_float(raw.get("target_value"), "target_value", index)
            if target_value_opt is None:
                raise InvalidCriterionConfiguration(f"Criterion {index}: no target_type and no target field")
            target_type, target_value = TargetType.VALUE, target_value_opt
    else:
        try:
            target_type = TargetType.parse(raw_target_type)
        except ValueError as e:
            raise InvalidCriterionConfiguration(f"Criterion {index}: {e}")
        target_value_opt = _to_float(raw.get("target_value"), "target_value", index)
        if target_value_opt is None and target_type == TargetType.QUANTITY:
            target_value_opt = _legacy_quantity_target(raw, index)
        if target_value_opt is None:
            raise InvalidCriterionConfiguration(f"Criterion {index}: target_value is required")
        target_value = target_value_opt

    try:
        policy_type = PolicyType.parse_filter(raw.get("policy_type"))
        contract_type = ContractType.parse_filter(raw.get("contract_type"))
    except ValueError as e:
        raise InvalidCriterionConfiguration(f"Criterion {index}: {e}")

    min_value = _to_float(raw.get("min_value_per_policy"), "min_value_per_policy", index)
    description = raw.get("description") or raw.get("label")

    return Criterion(
        index=index,
        target_type=target_type,
        target_value=target_value,
        policy_type=policy_type,
        contract_type=contract_type,
        min_value_per_policy=min_value,
        description=str(description) if description else None,
    )


def parse_criteria(raw: Any) -> List[CriterionSpec]:
    """Parse the stored ``criteria`` column.

    Accepts a list, a JSON string holding a list, a single criterion object, or
    the legacy dict keyed by position ({"0": {...}, "1": {...}}).
    """
    if raw is None or raw == "" or raw == [] or raw == {}:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return [MalformedCriterion(index=0, reason="criteria is not valid JSON", raw=raw)]
        return parse_criteria(raw)
    if isinstance(raw, Mapping):
        if "target_type" in raw or "target_value" in raw or any(k in raw for k in _LEGACY_QUANTITY_KEYS):
            items = [raw]
        else:
            items = [raw[k] for k in sorted(raw, key=lambda k: (len(str(k)), str(k)))]
    elif isinstance(raw, list):
        items = raw
    else:
        return [MalformedCriterion(index=0, reason=f"unsupported criteria type {type(raw).__name__}", raw=raw)]

    parsed: List[CriterionSpec] = []
    for index, item in enumerate(items):
        try:
            parsed.append(parse_criterion(item, index))
        except InvalidCriterionConfiguration as e:
            parsed.append(MalformedCriterion(index=index, reason=e.message, raw=item))
    return parsed


def matches(criterion: Criterion, policy: PolicySnapshot) -> bool:
    if criterion.policy_type is not None and policy.policy_type != criterion.policy_type:
        return False
    if criterion.contract_type is not None and policy.contract_type != criterion.contract_type:
        return False
    if criterion.min_value_per_policy is not None and policy.premium_value < criterion.min_value_per_policy:
        return False
    return True


def evaluate(criterion: Criterion, policies: Iterable[PolicySnapshot]) -> CriterionResult:
    matching = [p for p in policies if matches(criterion, p)]
    if criterion.target_type == TargetType.QUANTITY:
        current: float = float(len(matching))
    else:
        current = float(sum(p.premium_value for p in matching))
    target = criterion.target_value
    return CriterionResult(
        index=criterion.index,
        target_type=criterion.target_type,
        target_value=target,
        current_progress=current,
        percentage=pct_of_target(current, target),
        is_satisfied=target > 0 and current >= target,
        matching_policies=matching,
        policy_type=criterion.policy_type,
        contract_type=criterion.contract_type,
        description=criterion.description,
    )


def malformed_result(criterion: MalformedCriterion) -> CriterionResult:
    """Zero-progress, unsatisfied result reported in place of a broken criterion."""
    return CriterionResult(
        index=criterion.index,
        target_type=None,
        target_value=0.0,
        current_progress=0.0,
        percentage=0.0,
        is_satisfied=False,
        error=criterion.reason,
    )


__all__ = [
    "CriterionResult",
    "parse_criterion",
    "parse_criteria",
    "matches",
    "evaluate",
    "malformed_result",
]
