"""
Tactic Engine — applies a markup tactic to BOQ items and whole tenders.

Covers:
  - Parameter set resolution (fallback table when a tender has none)
  - Subcontract growth exclusions (sequence filtering with index rewiring)
  - Cost kind classification and pricing distribution (material / work columns)
  - Per-item commercial cost and stale-cost detection
  - Tender-level markup aggregation by parameter and by category

Every calculation goes through MarkupEngine; nothing here does markup math
of its own.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from tender.config import (
    DEFAULT_MARKUP_PARAMETERS,
    GROWTH_EXCLUSION_KEYS,
    PARAMETER_LABELS,
    RECALCULATION_TOLERANCE,
)
from tender.models.markup_schema import (
    BaseAmount,
    BoqItem,
    CostTarget,
    ItemCategory,
    MarkupTactic,
    MaterialKind,
    PricingDistribution,
    Step,
    StepResult,
    coerce_step,
)
from tender.services.markup_engine import CalculationResult, MarkupEngine, StepDetail
from tender.services.perf_monitor import timed

logger = logging.getLogger("tender-tactics")

_ENGINE = MarkupEngine()


class CostKind(str, Enum):
    BASIC = "basic"
    AUXILIARY = "auxiliary"
    COMPONENT_MATERIAL = "component_material"
    SUBCONTRACT_BASIC = "subcontract_basic"
    SUBCONTRACT_AUXILIARY = "subcontract_auxiliary"
    WORK = "work"
    COMPONENT_WORK = "component_work"


@dataclass
class GrowthExclusions:
    """Detail cost category ids excluded from subcontract growth."""
    works: Set[str] = field(default_factory=set)
    materials: Set[str] = field(default_factory=set)


# ---------------------------------------------------------------------------
# Parameters & tactic checks
# ---------------------------------------------------------------------------

def resolve_parameter_set(values: Optional[Mapping[str, Any]]) -> Dict[str, float]:
    """Return a plain percent table; falls back to DEFAULT_MARKUP_PARAMETERS when empty."""
    if not values:
        logger.warning("No markup parameters for tender, using fallback table")
        return dict(DEFAULT_MARKUP_PARAMETERS)
    return {str(key): float(value) for key, value in values.items() if value is not None}


def validate_tactic(tactic: MarkupTactic) -> List[str]:
    """Structural diagnostics for every category sequence, prefixed by category."""
    errors: List[str] = []
    for category, sequence in tactic.sequences.items():
        errors.extend(f"{category.value}: {msg}" for msg in _ENGINE.validate(sequence))
    return errors


# ---------------------------------------------------------------------------
# Subcontract growth exclusions
# ---------------------------------------------------------------------------

def is_excluded_from_growth(item: BoqItem, exclusions: Optional[GrowthExclusions]) -> bool:
    if exclusions is None or not item.detail_cost_category_id:
        return False
    if item.category is ItemCategory.SUBCONTRACT_WORK:
        return item.detail_cost_category_id in exclusions.works
    if item.category is ItemCategory.SUBCONTRACT_MATERIAL:
        return item.detail_cost_category_id in exclusions.materials
    return False


def _remap(index: int, positions: Dict[int, int]) -> int:
    if index == -1:
        return -1
    # Forward or out-of-range references are left for the validator to report
    return positions.get(index, index)


def _rewire(step: Step, positions: Dict[int, int]) -> Step:
    base_index = _remap(step.base_index, positions)
    operations = [
        op.model_copy(update={"operand": StepResult(index=_remap(op.operand.index, positions))})
        if isinstance(op.operand, StepResult) else op
        for op in step.operations
    ]
    return step.model_copy(update={
        "base": BaseAmount() if base_index == -1 else StepResult(index=base_index),
        "operations": operations,
    })


def filter_sequence_for_exclusions(
    sequence: Iterable[Union[Step, Dict[str, Any]]],
    category: Union[str, ItemCategory],
) -> List[Step]:
    """
    Drop the steps that apply the category's subcontract growth parameter.

    Surviving references are rewired: a reference to a dropped step follows
    that step's own base, and indexes shift down to the compacted positions.
    Categories without a growth parameter are returned unchanged.
    """
    steps = [coerce_step(raw) for raw in sequence]
    growth_key = GROWTH_EXCLUSION_KEYS.get(ItemCategory.from_stored_key(category).value)
    if growth_key is None:
        return steps

    positions: Dict[int, int] = {}
    kept: List[Step] = []
    for position, step in enumerate(steps):
        if growth_key in step.parameter_keys:
            positions[position] = _remap(step.base_index, positions)
            continue
        kept.append(_rewire(step, positions))
        positions[position] = len(kept) - 1

    if len(kept) != len(steps):
        logger.debug(
            "Growth exclusion removed %d step(s)", len(steps) - len(kept),
            extra={"category": ItemCategory.from_stored_key(category).value},
        )
    return kept


# ---------------------------------------------------------------------------
# Pricing distribution
# ---------------------------------------------------------------------------

def classify_cost_kind(
    category: Union[str, ItemCategory],
    material_kind: Optional[Union[str, MaterialKind]] = None,
) -> CostKind:
    category = ItemCategory.from_stored_key(category)
    auxiliary = material_kind in (MaterialKind.AUXILIARY, MaterialKind.AUXILIARY.value)

    if category is ItemCategory.MATERIAL:
        return CostKind.AUXILIARY if auxiliary else CostKind.BASIC
    if category is ItemCategory.COMPONENT_MATERIAL:
        return CostKind.AUXILIARY if auxiliary else CostKind.COMPONENT_MATERIAL
    if category is ItemCategory.SUBCONTRACT_MATERIAL:
        return CostKind.SUBCONTRACT_AUXILIARY if auxiliary else CostKind.SUBCONTRACT_BASIC
    if category is ItemCategory.COMPONENT_WORK:
        return CostKind.COMPONENT_WORK
    # Subcontract works are distributed like own works
    return CostKind.WORK


def _targets(
    distribution: PricingDistribution, kind: CostKind
) -> Optional[Tuple[CostTarget, CostTarget]]:
    d = distribution
    if kind is CostKind.BASIC:
        return d.basic_material_base_target, d.basic_material_markup_target
    if kind is CostKind.AUXILIARY:
        return d.auxiliary_material_base_target, d.auxiliary_material_markup_target
    if kind is CostKind.COMPONENT_MATERIAL:
        if d.component_material_base_target and d.component_material_markup_target:
            return d.component_material_base_target, d.component_material_markup_target
        return d.auxiliary_material_base_target, d.auxiliary_material_markup_target
    if kind is CostKind.SUBCONTRACT_BASIC:
        if d.subcontract_basic_material_base_target and d.subcontract_basic_material_markup_target:
            return d.subcontract_basic_material_base_target, d.subcontract_basic_material_markup_target
        return None
    if kind is CostKind.SUBCONTRACT_AUXILIARY:
        if d.subcontract_auxiliary_material_base_target and d.subcontract_auxiliary_material_markup_target:
            return d.subcontract_auxiliary_material_base_target, d.subcontract_auxiliary_material_markup_target
        return None
    if kind is CostKind.COMPONENT_WORK:
        if d.component_work_base_target and d.component_work_markup_target:
            return d.component_work_base_target, d.component_work_markup_target
    return d.work_base_target, d.work_markup_target


def apply_pricing_distribution(
    base_amount: float,
    commercial_cost: float,
    category: Union[str, ItemCategory],
    material_kind: Optional[Union[str, MaterialKind]],
    distribution: Optional[PricingDistribution],
) -> Tuple[float, float]:
    """
    Split a commercial cost into (material_cost, work_cost).

    The base part and the markup part (commercial - base) are booked
    separately according to the distribution. Without a distribution the
    whole cost goes to the material column for material categories and to
    the work column otherwise. Subcontract materials without their own
    settings go entirely to work.
    """
    category = ItemCategory.from_stored_key(category)
    if distribution is None:
        return (commercial_cost, 0.0) if category.is_material else (0.0, commercial_cost)

    targets = _targets(distribution, classify_cost_kind(category, material_kind))
    if targets is None:
        return 0.0, commercial_cost

    base_target, markup_target = targets
    markup = commercial_cost - base_amount
    material_cost = work_cost = 0.0
    if base_target is CostTarget.MATERIAL:
        material_cost += base_amount
    else:
        work_cost += base_amount
    if markup_target is CostTarget.MATERIAL:
        material_cost += markup
    else:
        work_cost += markup
    return material_cost, work_cost


# ---------------------------------------------------------------------------
# Per-item cost
# ---------------------------------------------------------------------------

@dataclass
class ItemCostResult:
    item_id: str
    category: ItemCategory
    base_amount: float
    commercial_cost: float
    material_cost: float
    work_cost: float
    markup_coefficient: float
    errors: List[str] = field(default_factory=list)
    calculation: Optional[CalculationResult] = None


def calculate_item_cost(
    item: BoqItem,
    tactic: MarkupTactic,
    parameters: Mapping[str, float],
    distribution: Optional[PricingDistribution] = None,
    excluded: bool = False,
    engine: Optional[MarkupEngine] = None,
) -> Optional[ItemCostResult]:
    """Commercial cost of one BOQ item; None when its category has no sequence."""
    sequence = tactic.sequence_for(item.category)
    if not sequence:
        return None
    if excluded:
        sequence = filter_sequence_for_exclusions(sequence, item.category)

    result = (engine or _ENGINE).calculate(sequence, item.total_amount, parameters)
    material_cost, work_cost = apply_pricing_distribution(
        item.total_amount, result.result, item.category, item.material_kind, distribution,
    )
    if result.errors:
        logger.warning(
            "Item markup finished with %d diagnostic(s)", len(result.errors),
            extra={"item_id": item.id, "category": item.category.value},
        )
    return ItemCostResult(
        item_id=item.id,
        category=item.category,
        base_amount=item.total_amount,
        commercial_cost=result.result,
        material_cost=material_cost,
        work_cost=work_cost,
        markup_coefficient=result.markup_coefficient,
        errors=list(result.errors),
        calculation=result,
    )


def needs_recalculation(item: BoqItem, tolerance: float = RECALCULATION_TOLERANCE) -> bool:
    """
    True when the stored commercial cost is missing or no longer equals
    total_amount × commercial_markup within ``tolerance``.
    """
    if not item.total_amount:
        return False

    commercial = (
        item.total_commercial_material_cost
        if item.category.is_material
        else item.total_commercial_work_cost
    )
    if not commercial:
        return True
    if item.commercial_markup:
        return abs(item.total_amount * item.commercial_markup - commercial) > tolerance
    return True


# ---------------------------------------------------------------------------
# Tender aggregation
# ---------------------------------------------------------------------------

@dataclass
class ParameterMarkupAggregate:
    parameter_key: str
    label: Optional[str] = None
    total_markup_amount: float = 0.0
    item_count: int = 0
    steps_count: int = 0
    by_category: Dict[ItemCategory, float] = field(default_factory=dict)


@dataclass
class ItemMarkupDetail:
    item_id: str
    category: ItemCategory
    base_amount: float
    commercial_cost: float
    step_details: List[StepDetail]
    errors: List[str] = field(default_factory=list)


@dataclass
class TenderMarkupAggregation:
    by_parameter: Dict[str, ParameterMarkupAggregate]
    direct_costs: Dict[ItemCategory, float]
    total_base_amount: float
    total_commercial_cost: float
    item_details: Optional[List[ItemMarkupDetail]] = None

    @property
    def total_markup_amount(self) -> float:
        return self.total_commercial_cost - self.total_base_amount

    @property
    def direct_cost_total(self) -> float:
        return sum(self.direct_costs.values())

    def markup_by_parameter(self, key: str) -> float:
        aggregate = self.by_parameter.get(key)
        return aggregate.total_markup_amount if aggregate else 0.0

    def markup_by_parameters(self, keys: Iterable[str]) -> float:
        return sum(self.markup_by_parameter(key) for key in keys)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direct_costs": {c.value: round(v, 2) for c, v in self.direct_costs.items()},
            "direct_cost_total": round(self.direct_cost_total, 2),
            "total_base_amount": round(self.total_base_amount, 2),
            "total_commercial_cost": round(self.total_commercial_cost, 2),
            "total_markup_amount": round(self.total_markup_amount, 2),
            "by_parameter": {
                key: {
                    "label": agg.label,
                    "total_markup_amount": round(agg.total_markup_amount, 2),
                    "item_count": agg.item_count,
                    "steps_count": agg.steps_count,
                    "by_category": {c.value: round(v, 2) for c, v in agg.by_category.items()},
                }
                for key, agg in self.by_parameter.items()
            },
        }


@timed
def aggregate_tender_markup(
    items: Iterable[BoqItem],
    tactic: MarkupTactic,
    parameters: Mapping[str, float],
    exclusions: Optional[GrowthExclusions] = None,
    include_item_details: bool = False,
    engine: Optional[MarkupEngine] = None,
) -> TenderMarkupAggregation:
    """
    Run the tactic over every BOQ item and total the markup by parameter.

    Items with a non-positive base are skipped. Categories without a
    sequence contribute their base cost unchanged to the commercial total.
    """
    engine = engine or _ENGINE
    by_parameter: Dict[str, ParameterMarkupAggregate] = {}
    direct_costs: Dict[ItemCategory, float] = {c: 0.0 for c in ItemCategory}
    item_details: List[ItemMarkupDetail] = []
    total_base = 0.0
    total_commercial = 0.0

    for item in items:
        base = item.total_amount or 0.0
        if base <= 0:
            continue
        direct_costs[item.category] += base
        total_base += base

        sequence = tactic.sequence_for(item.category)
        if not sequence:
            total_commercial += base
            continue
        if is_excluded_from_growth(item, exclusions):
            sequence = filter_sequence_for_exclusions(sequence, item.category)

        result = engine.calculate(sequence, base, parameters)
        total_commercial += result.result

        seen: Set[str] = set()
        for detail in result.step_details:
            for key in detail.parameter_keys:
                aggregate = by_parameter.get(key)
                if aggregate is None:
                    aggregate = ParameterMarkupAggregate(parameter_key=key, label=PARAMETER_LABELS.get(key))
                    by_parameter[key] = aggregate
                aggregate.total_markup_amount += detail.markup_amount
                aggregate.steps_count += 1
                aggregate.by_category[item.category] = (
                    aggregate.by_category.get(item.category, 0.0) + detail.markup_amount
                )
                if key not in seen:
                    aggregate.item_count += 1
                    seen.add(key)

        if include_item_details:
            item_details.append(ItemMarkupDetail(
                item_id=item.id,
                category=item.category,
                base_amount=base,
                commercial_cost=result.result,
                step_details=result.step_details,
                errors=list(result.errors),
            ))

    aggregation = TenderMarkupAggregation(
        by_parameter=by_parameter,
        direct_costs=direct_costs,
        total_base_amount=total_base,
        total_commercial_cost=total_commercial,
        item_details=item_details if include_item_details else None,
    )
    logger.info(
        "Tender markup aggregated: base %.2f, commercial %.2f, %d parameter(s)",
        total_base, total_commercial, len(by_parameter),
    )
    return aggregation
