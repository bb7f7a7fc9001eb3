"""
Static structural check for markup sequences.

Run before a sequence is saved. A step may only read the base amount or the
result of a step strictly before it; that ordering is the whole acyclicity
guarantee, so no graph walk is needed. Nothing is evaluated here.
"""
from __future__ import annotations

from typing import Any, List

from pydantic import ValidationError

from tender.models.markup_schema import StepResult, coerce_step


def _is_backward(index: int, position: int) -> bool:
    return index == -1 or 0 <= index < position


def _allowed(position: int) -> str:
    return "-1" if position == 0 else f"-1 or 0..{position - 1}"


def validate_sequence(sequence: Any) -> List[str]:
    """
    Return structural diagnostics for ``sequence`` (empty list = valid).

    Per step at 0-based position i:
      - the base index is -1 or in [0, i)
      - at least one operation is present
      - every step-result operand index is -1 or in [0, i)
    """
    if not isinstance(sequence, (list, tuple)):
        return ["Sequence: markup sequence must be a list of steps"]

    errors: List[str] = []
    for position, raw in enumerate(sequence):
        step_no = position + 1
        try:
            step = coerce_step(raw)
        except ValidationError as exc:
            errors.append(f"Step {step_no}: malformed step ({exc.error_count()} field error(s))")
            continue

        if not _is_backward(step.base_index, position):
            errors.append(
                f"Step {step_no}: invalid base index {step.base_index} "
                f"(allowed: {_allowed(position)})"
            )

        if not step.operations:
            errors.append(f"Step {step_no}: the first operation is required")

        for op_no, operation in enumerate(step.operations, start=1):
            operand = operation.operand
            if isinstance(operand, StepResult) and not _is_backward(operand.index, position):
                errors.append(
                    f"Step {step_no}: operation {op_no} references step index {operand.index} "
                    f"(allowed: {_allowed(position)})"
                )

    return errors
