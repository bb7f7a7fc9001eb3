"""
Markup Engine — turns a BOQ line item's direct cost into its commercial cost.

A sequence is an ordered list of steps. Each step takes its base value from
the item's base amount or from an earlier step's result, then applies its
operations left to right on the running value. Step results are kept in an
append-only memo table; a step may only read entries before its own
position, which keeps the dependency graph acyclic.

Percentage parameters change meaning with the action:
  - multiply / divide  → factor (1 + p/100) under addOne, p/100 under direct
  - add / subtract     → p% of the current running value
Every other operand kind is used as a plain number.

Failures never escape a step: the step falls back to the last value it knew,
a diagnostic tagged with the 1-based step number is recorded, and the next
step proceeds. The engine is a pure function of its inputs.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from tender.models.markup_schema import (
    Action,
    BaseAmount,
    LiteralValue,
    MultiplyFormat,
    Parameter,
    Step,
    StepResult,
    coerce_step,
)
from tender.services.markup_validator import validate_sequence

logger = logging.getLogger("tender-markup")

ParameterSet = Mapping[str, float]


# ── Errors ────────────────────────────────────────────────────────────────────

class MarkupError(ValueError):
    code = "MarkupError"


class MissingParameterError(MarkupError):
    code = "MissingParameter"


class InvalidStepReferenceError(MarkupError):
    code = "InvalidStepReference"


class InvalidBaseIndexError(InvalidStepReferenceError):
    code = "InvalidBaseIndex"


class MissingLiteralError(MarkupError):
    code = "MissingLiteral"


class DivisionByZeroError(MarkupError):
    code = "DivisionByZero"


class MalformedSequenceError(MarkupError):
    code = "MalformedSequence"


# ── Results ───────────────────────────────────────────────────────────────────

@dataclass
class StepDetail:
    index: int                      # 0-based position in the sequence
    name: Optional[str]
    parameter_keys: List[str]
    base_value: float
    result: float
    error: Optional[str] = None

    @property
    def markup_amount(self) -> float:
        return self.result - self.base_value


@dataclass
class StepOutcome:
    value: float
    base_value: float
    error: Optional[str] = None


@dataclass
class CalculationResult:
    result: float
    base_amount: float
    step_results: List[float] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    step_details: List[StepDetail] = field(default_factory=list)

    @property
    def markup_coefficient(self) -> float:
        return self.result / self.base_amount if self.base_amount > 0 else 1.0

    @property
    def markup_percentage(self) -> float:
        """Effective markup in percent; reporting only."""
        return markup_percentage(self.base_amount, self.result)

    def to_dict(self) -> Dict[str, Any]:
        details = []
        for d in self.step_details:
            row = asdict(d)
            row["markup_amount"] = d.markup_amount
            details.append(row)
        return {
            "result": self.result,
            "base_amount": self.base_amount,
            "step_results": list(self.step_results),
            "errors": list(self.errors),
            "markup_coefficient": self.markup_coefficient,
            "markup_percentage": self.markup_percentage,
            "step_details": details,
        }


def markup_percentage(base_amount: float, commercial_cost: float) -> float:
    if base_amount == 0:
        return 0.0
    return (commercial_cost - base_amount) / base_amount * 100


def _describe(operand: Any) -> str:
    if isinstance(operand, Parameter):
        return f"parameter '{operand.name}'"
    if isinstance(operand, StepResult):
        return "base amount" if operand.index == -1 else f"step {operand.index + 1}"
    if isinstance(operand, LiteralValue):
        return f"literal {operand.value}"
    return "base amount"


# ── ArithmeticReducer ─────────────────────────────────────────────────────────

def _percent_factor(value: float, multiply_format: Optional[MultiplyFormat]) -> float:
    if multiply_format == MultiplyFormat.ADD_ONE:
        return 1 + value / 100
    return value / 100


def apply_operation(
    base: float,
    action: Union[Action, str],
    operand: Any,
    value: float,
    multiply_format: Optional[Union[MultiplyFormat, str]] = MultiplyFormat.DIRECT,
) -> float:
    """Apply one action to the running value ``base`` given a resolved operand value."""
    try:
        action = Action(action)
        multiply_format = MultiplyFormat(multiply_format or MultiplyFormat.DIRECT)
    except ValueError as exc:
        raise MalformedSequenceError(str(exc)) from None

    is_percent = isinstance(operand, Parameter)

    if action is Action.MULTIPLY:
        return base * (_percent_factor(value, multiply_format) if is_percent else value)

    if action is Action.DIVIDE:
        divisor = _percent_factor(value, multiply_format) if is_percent else value
        if divisor == 0:
            raise DivisionByZeroError(f"division by zero ({_describe(operand)} = {value:g})")
        return base / divisor

    if action is Action.ADD:
        return base + (base * value / 100 if is_percent else value)

    return base - (base * value / 100 if is_percent else value)


# ── OperandResolver ───────────────────────────────────────────────────────────

def resolve_operand(
    operand: Any,
    parameters: Optional[ParameterSet],
    prior_results: Sequence[float],
    base_amount: float,
) -> float:
    if isinstance(operand, Parameter):
        value = (parameters or {}).get(operand.name)
        if value is None:
            raise MissingParameterError(f"markup parameter '{operand.name}' not found")
        return float(value)

    if isinstance(operand, StepResult):
        if operand.index == -1:
            return base_amount
        if 0 <= operand.index < len(prior_results):
            return prior_results[operand.index]
        raise InvalidStepReferenceError(
            f"step index {operand.index} is not available ({len(prior_results)} prior step(s))"
        )

    if isinstance(operand, LiteralValue):
        if operand.value is None:
            raise MissingLiteralError("literal operand has no value")
        return operand.value

    if isinstance(operand, BaseAmount):
        return base_amount

    raise MalformedSequenceError(f"unknown operand {operand!r}")


def resolve_step_base(step: Step, base_amount: float, prior_results: Sequence[float]) -> float:
    index = step.base_index
    if index == -1:
        return base_amount
    if 0 <= index < len(prior_results):
        return prior_results[index]
    raise InvalidBaseIndexError(
        f"base index {index} is not available ({len(prior_results)} prior step(s))"
    )


# ── StepEvaluator ─────────────────────────────────────────────────────────────

def _diagnostic(step_no: int, exc: Exception, op_no: Optional[int] = None) -> str:
    code = getattr(exc, "code", type(exc).__name__)
    where = f"Step {step_no}" if op_no is None else f"Step {step_no}, operation {op_no}"
    return f"{where}: {code}: {exc}"


def evaluate_step(
    step: Step,
    base_amount: float,
    prior_results: Sequence[float],
    parameters: Optional[ParameterSet],
) -> StepOutcome:
    """
    Evaluate one step; never raises.

    The step's position is ``len(prior_results)``. On failure the outcome
    carries the fallback value (running value so far, the step base when the
    first operation failed, the previous result when the base itself could
    not be resolved) together with the diagnostic.
    """
    step_no = len(prior_results) + 1

    try:
        base_value = resolve_step_base(step, base_amount, prior_results)
    except MarkupError as exc:
        fallback = prior_results[-1] if prior_results else base_amount
        return StepOutcome(value=fallback, base_value=fallback, error=_diagnostic(step_no, exc))

    if not step.operations:
        exc = MalformedSequenceError("step has no operations")
        return StepOutcome(value=base_value, base_value=base_value, error=_diagnostic(step_no, exc))

    running = base_value
    for op_no, operation in enumerate(step.operations, start=1):
        try:
            value = resolve_operand(operation.operand, parameters, prior_results, base_amount)
            running = apply_operation(
                running, operation.action, operation.operand, value, operation.multiply_format
            )
        except (MarkupError, ArithmeticError) as exc:
            return StepOutcome(value=running, base_value=base_value, error=_diagnostic(step_no, exc, op_no))

    return StepOutcome(value=running, base_value=base_value)


# ── SequenceCalculator ────────────────────────────────────────────────────────

def _malformed(base_amount: float, message: str) -> CalculationResult:
    return CalculationResult(
        result=base_amount,
        base_amount=base_amount,
        errors=[f"{MalformedSequenceError.code}: {message}"],
    )


def calculate_markup(
    sequence: Any,
    base_amount: float,
    parameters: Optional[ParameterSet] = None,
) -> CalculationResult:
    """
    Run ``sequence`` over ``base_amount`` and return the commercial cost with
    the per-step memo table, step details and diagnostics.

    Non-positive base amounts are returned unchanged without evaluating any
    step: percentage markups are never applied to zero or negative costs.
    """
    if not isinstance(sequence, (list, tuple)):
        logger.warning("Markup sequence is not defined", extra={"base_amount": base_amount})
        return _malformed(base_amount, "markup sequence is not defined")
    if not sequence:
        return _malformed(base_amount, "markup sequence is empty")

    if base_amount <= 0:
        errors = [] if base_amount == 0 else [f"base amount {base_amount:g} is negative; markup not applied"]
        return CalculationResult(result=base_amount, base_amount=base_amount, errors=errors)

    step_results: List[float] = []
    errors: List[str] = []
    details: List[StepDetail] = []

    for position, raw in enumerate(sequence):
        name = None
        try:
            step = coerce_step(raw)
        except ValidationError as exc:
            # A step that cannot be parsed fails alone, like any other step error
            fallback = step_results[-1] if step_results else base_amount
            malformed = MalformedSequenceError(f"step is malformed ({exc.error_count()} field error(s))")
            outcome = StepOutcome(value=fallback, base_value=fallback, error=_diagnostic(position + 1, malformed))
            keys: List[str] = []
        else:
            name = step.name
            outcome = evaluate_step(step, base_amount, step_results, parameters)
            keys = step.parameter_keys if outcome.error is None else []

        step_results.append(outcome.value)
        if outcome.error:
            errors.append(outcome.error)
            logger.warning(outcome.error, extra={"step": position + 1})
        details.append(StepDetail(
            index=position,
            name=name,
            parameter_keys=keys,
            base_value=outcome.base_value,
            result=outcome.value,
            error=outcome.error,
        ))

    result = step_results[-1]
    logger.debug(
        "Markup calculated: %s -> %s over %d step(s)",
        base_amount, result, len(step_results),
    )
    return CalculationResult(
        result=result,
        base_amount=base_amount,
        step_results=step_results,
        errors=errors,
        step_details=details,
    )


# ── Public interface ──────────────────────────────────────────────────────────

class MarkupEngine:
    """
    The one markup evaluation engine behind live preview, save-time
    calculation and verification. Stateless; safe to share across threads.
    """

    def calculate(
        self,
        sequence: Any,
        base_amount: float,
        parameters: Optional[ParameterSet] = None,
    ) -> CalculationResult:
        return calculate_markup(sequence, base_amount, parameters)

    def validate(self, sequence: Any) -> List[str]:
        return validate_sequence(sequence)

    @staticmethod
    def markup_percentage(base_amount: float, commercial_cost: float) -> float:
        return markup_percentage(base_amount, commercial_cost)
