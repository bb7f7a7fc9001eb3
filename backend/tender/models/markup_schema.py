"""
Markup tactic schema — operations, steps, tactics and BOQ items.

Sequences are authored by configuration tooling and stored outside the
markup engine. These models parse and freeze them; they hold no logic
beyond shape conversion.

Operand sources are an explicit tagged variant (``kind``):

    base       — the item's base amount
    step       — result of an earlier step (index -1 also means base amount)
    parameter  — a named markup percentage from the tender's parameter set
    literal    — a constant

The legacy stored shape (``baseIndex`` plus flat ``action1..N`` /
``operand1Type..N`` fields with operand types ``markup|step|number``) is
accepted on input and converted to an ordered operation list.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tender.config import LEGACY_CATEGORY_KEYS, LEGACY_MATERIAL_KINDS


class Action(str, Enum):
    MULTIPLY = "multiply"
    DIVIDE = "divide"
    ADD = "add"
    SUBTRACT = "subtract"


class MultiplyFormat(str, Enum):
    """How a percentage parameter enters multiply/divide: (1 + p/100) or p/100."""
    ADD_ONE = "addOne"
    DIRECT = "direct"


class ItemCategory(str, Enum):
    """BOQ item categories; each has its own markup sequence."""
    WORK = "work"
    MATERIAL = "material"
    SUBCONTRACT_WORK = "subcontract_work"
    SUBCONTRACT_MATERIAL = "subcontract_material"
    COMPONENT_WORK = "component_work"
    COMPONENT_MATERIAL = "component_material"

    @classmethod
    def from_stored_key(cls, key: Union[str, "ItemCategory"]) -> "ItemCategory":
        if isinstance(key, cls):
            return key
        value = LEGACY_CATEGORY_KEYS.get(str(key), str(key))
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown BOQ item category '{key}'") from None

    @property
    def is_material(self) -> bool:
        return self in (
            ItemCategory.MATERIAL,
            ItemCategory.SUBCONTRACT_MATERIAL,
            ItemCategory.COMPONENT_MATERIAL,
        )


class MaterialKind(str, Enum):
    BASIC = "basic"
    AUXILIARY = "auxiliary"


class CostTarget(str, Enum):
    MATERIAL = "material"
    WORK = "work"


# ── Operands ──────────────────────────────────────────────────────────────────

class BaseAmount(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["base"] = "base"


class StepResult(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["step"] = "step"
    index: int = Field(..., description="0-based step position; -1 means the base amount")


class Parameter(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["parameter"] = "parameter"
    name: str = Field(..., description="Markup parameter key, e.g. overhead_own_forces")


class LiteralValue(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["literal"] = "literal"
    value: Optional[float] = None


Operand = Annotated[
    Union[BaseAmount, StepResult, Parameter, LiteralValue],
    Field(discriminator="kind"),
]
StepBase = Annotated[Union[BaseAmount, StepResult], Field(discriminator="kind")]


class Operation(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: Action
    operand: Operand
    multiply_format: MultiplyFormat = Field(
        MultiplyFormat.DIRECT,
        description="Only meaningful for parameter operands under multiply/divide",
    )

    @field_validator("multiply_format", mode="before")
    @classmethod
    def _missing_format_is_direct(cls, value: Any) -> Any:
        return MultiplyFormat.DIRECT if value is None else value


# ── Legacy flat-field conversion ──────────────────────────────────────────────

_LEGACY_SLOT = re.compile(r"^(?:action|operand)(\d+)")


def _number(cast: Any, value: Any, what: str) -> Any:
    # Null or text in stored JSON must surface as a validation error
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValueError(f"{what} {value!r} is not a number") from None


def _legacy_operand(kind: Any, key: Any, index: Any) -> Dict[str, Any]:
    if kind == "markup":
        if key in (None, ""):
            raise ValueError("markup operand has no parameter key")
        return {"kind": "parameter", "name": str(key)}
    if kind == "step":
        if index is None:
            raise ValueError("step operand has no index")
        return {"kind": "step", "index": _number(int, index, "step operand index")}
    if kind == "number":
        return {"kind": "literal", "value": None if key in (None, "") else _number(float, key, "number operand")}
    raise ValueError(f"unknown operand type '{kind}'")


def _legacy_operations(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    slots = sorted({1} | {int(m.group(1)) for k in data for m in [_LEGACY_SLOT.match(k)] if m})
    operations: List[Dict[str, Any]] = []
    for n in slots:
        action = data.get(f"action{n}")
        kind = data.get(f"operand{n}Type")
        if not action or not kind:
            if n == 1:
                # Without its first operation the step is malformed; later
                # operations must not silently take its place.
                return []
            continue
        operations.append({
            "action": action,
            "operand": _legacy_operand(kind, data.get(f"operand{n}Key"), data.get(f"operand{n}Index")),
            "multiply_format": data.get(f"operand{n}MultiplyFormat"),
        })
    return operations


class Step(BaseModel):
    """One node of a markup sequence, producing one memoized result."""
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    base: StepBase = Field(default_factory=BaseAmount)
    operations: List[Operation] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _coerce_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for key in ("baseIndex", "base_index"):
            if key in data:
                index = _number(int, data.pop(key), "base index")
                data.setdefault("base", {"kind": "base"} if index == -1 else {"kind": "step", "index": index})
        if "operations" not in data and any(_LEGACY_SLOT.match(k) for k in data):
            data["operations"] = _legacy_operations(data)
        return {k: v for k, v in data.items() if not _LEGACY_SLOT.match(k)}

    @property
    def base_index(self) -> int:
        """Legacy view of the base source: -1 for the base amount."""
        return -1 if isinstance(self.base, BaseAmount) else self.base.index

    @property
    def parameter_keys(self) -> List[str]:
        return [op.operand.name for op in self.operations if isinstance(op.operand, Parameter)]


def coerce_step(raw: Union[Step, Dict[str, Any]]) -> Step:
    """Accept a Step or its stored dict form; raises pydantic.ValidationError."""
    if isinstance(raw, Step):
        return raw
    return Step.model_validate(raw)


# ── Tactics & BOQ items ───────────────────────────────────────────────────────

class MarkupTactic(BaseModel):
    """A named set of markup sequences, one per BOQ item category."""
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: Optional[str] = None
    is_global: bool = False
    sequences: Dict[ItemCategory, List[Step]] = Field(default_factory=dict)

    @field_validator("sequences", mode="before")
    @classmethod
    def _stored_category_keys(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {ItemCategory.from_stored_key(k): v for k, v in value.items()}
        return value

    def sequence_for(self, category: Union[str, ItemCategory]) -> List[Step]:
        return list(self.sequences.get(ItemCategory.from_stored_key(category), []))


class BoqItem(BaseModel):
    """The slice of a BOQ line item the markup layer reads."""
    model_config = ConfigDict(frozen=True)

    id: str
    category: ItemCategory
    total_amount: float = Field(0.0, description="Summed direct cost of the line item")
    material_kind: Optional[MaterialKind] = None
    detail_cost_category_id: Optional[str] = None
    commercial_markup: Optional[float] = None
    total_commercial_material_cost: Optional[float] = None
    total_commercial_work_cost: Optional[float] = None

    @field_validator("category", mode="before")
    @classmethod
    def _stored_category(cls, value: Any) -> Any:
        return ItemCategory.from_stored_key(value)

    @field_validator("material_kind", mode="before")
    @classmethod
    def _stored_material_kind(cls, value: Any) -> Any:
        if value is None:
            return None
        value = LEGACY_MATERIAL_KINDS.get(str(value), str(value))
        # Unknown labels are treated as basic material
        return value if value in (MaterialKind.BASIC.value, MaterialKind.AUXILIARY.value) else None


class PricingDistribution(BaseModel):
    """
    Where the base cost and the markup of each cost kind are booked:
    the material column or the work column of the commercial estimate.
    Component and subcontract targets are optional.
    """
    model_config = ConfigDict(frozen=True)

    basic_material_base_target: CostTarget = CostTarget.MATERIAL
    basic_material_markup_target: CostTarget = CostTarget.MATERIAL
    auxiliary_material_base_target: CostTarget = CostTarget.MATERIAL
    auxiliary_material_markup_target: CostTarget = CostTarget.MATERIAL
    component_material_base_target: Optional[CostTarget] = None
    component_material_markup_target: Optional[CostTarget] = None
    subcontract_basic_material_base_target: Optional[CostTarget] = None
    subcontract_basic_material_markup_target: Optional[CostTarget] = None
    subcontract_auxiliary_material_base_target: Optional[CostTarget] = None
    subcontract_auxiliary_material_markup_target: Optional[CostTarget] = None
    work_base_target: CostTarget = CostTarget.WORK
    work_markup_target: CostTarget = CostTarget.WORK
    component_work_base_target: Optional[CostTarget] = None
    component_work_markup_target: Optional[CostTarget] = None
