"""
test_markup_validator.py — Structural checks run before a sequence is saved.

A step at 0-based position i may read only the base amount (-1) or a step in
[0, i); its first operation is required. Validation never evaluates.
"""

import pytest

from tender.models.markup_schema import (
    BaseAmount,
    LiteralValue,
    Operation,
    Parameter,
    Step,
    StepResult,
)
from tender.services.markup_validator import validate_sequence


def _add(operand):
    return Operation(action="add", operand=operand)


def _step(base_index, *operands):
    base = BaseAmount() if base_index == -1 else StepResult(index=base_index)
    return Step(base=base, operations=[_add(o) for o in operands or (LiteralValue(value=1),)])


class TestValidSequences:

    def test_empty_sequence_is_structurally_valid(self):
        assert validate_sequence([]) == []

    def test_chained_sequence(self, full_work_sequence):
        assert validate_sequence(full_work_sequence) == []

    def test_legacy_stored_sequence(self, subcontract_work_sequence):
        assert validate_sequence(subcontract_work_sequence) == []

    def test_missing_parameters_are_not_checked(self):
        """Parameters are resolved at calculation time, not at save time."""
        assert validate_sequence([_step(-1, Parameter(name="does_not_exist"))]) == []

    def test_operand_reading_base_amount_via_minus_one(self):
        assert validate_sequence([_step(-1, StepResult(index=-1))]) == []


class TestBackwardReferenceLaw:
    """For every position i, an index is valid iff it is -1 or in [0, i)."""

    @pytest.mark.parametrize("position,index,valid", [
        (0, -1, True),
        (0, 0, False),
        (0, 1, False),
        (2, -1, True),
        (2, 0, True),
        (2, 1, True),
        (2, 2, False),
        (2, 5, False),
        (2, -2, False),
    ])
    def test_base_index(self, position, index, valid):
        sequence = [_step(-1) for _ in range(position)] + [_step(index)]
        errors = validate_sequence(sequence)
        assert (errors == []) is valid
        if not valid:
            assert errors == [
                f"Step {position + 1}: invalid base index {index} "
                f"(allowed: {'-1' if position == 0 else f'-1 or 0..{position - 1}'})"
            ]

    @pytest.mark.parametrize("position,index,valid", [
        (0, 0, False),
        (1, 0, True),
        (1, 1, False),
        (3, 2, True),
        (3, 3, False),
    ])
    def test_step_result_operand(self, position, index, valid):
        sequence = [_step(-1) for _ in range(position)] + [_step(-1, StepResult(index=index))]
        errors = validate_sequence(sequence)
        assert (errors == []) is valid
        if not valid:
            assert errors[0].startswith(f"Step {position + 1}: operation 1 references step index {index}")


class TestInvalidSequences:

    def test_not_a_list(self):
        assert validate_sequence({"baseIndex": -1}) == ["Sequence: markup sequence must be a list of steps"]
        assert validate_sequence(None) == ["Sequence: markup sequence must be a list of steps"]

    def test_step_without_operations(self):
        assert validate_sequence([Step()]) == ["Step 1: the first operation is required"]

    def test_legacy_step_without_first_operation(self):
        sequence = [{"baseIndex": -1, "action2": "add", "operand2Type": "number", "operand2Key": 5}]
        assert validate_sequence(sequence) == ["Step 1: the first operation is required"]

    def test_malformed_step(self):
        sequence = [{"baseIndex": -1, "action1": "multiply", "operand1Type": "step"}]
        errors = validate_sequence(sequence)
        assert len(errors) == 1
        assert errors[0].startswith("Step 1: malformed step")

    @pytest.mark.parametrize("raw", [
        {"baseIndex": None, "action1": "add", "operand1Type": "number", "operand1Key": 1},
        {"baseIndex": "first", "action1": "add", "operand1Type": "number", "operand1Key": 1},
        {"baseIndex": -1, "action1": "add", "operand1Type": "step", "operand1Index": None},
        {"baseIndex": -1, "action1": "add", "operand1Type": "step", "operand1Index": [0]},
    ])
    def test_null_or_non_numeric_index_is_reported(self, raw):
        errors = validate_sequence([raw, {"baseIndex": 0, "action1": "add", "operand1Type": "number",
                                          "operand1Key": 1}])
        assert len(errors) == 1
        assert errors[0].startswith("Step 1: malformed step")

    def test_every_problem_is_reported(self):
        """Validation does not stop at the first bad step."""
        sequence = [
            _step(0),
            _step(-1, StepResult(index=1), StepResult(index=4)),
            Step(base=StepResult(index=0)),
        ]
        errors = validate_sequence(sequence)
        assert len(errors) == 4
        assert errors[0].startswith("Step 1:")
        assert errors[1].startswith("Step 2: operation 1")
        assert errors[2].startswith("Step 2: operation 2")
        assert errors[3] == "Step 3: the first operation is required"

    def test_input_is_not_modified(self, subcontract_work_sequence):
        before = [dict(step) for step in subcontract_work_sequence]
        validate_sequence(subcontract_work_sequence)
        assert subcontract_work_sequence == before
