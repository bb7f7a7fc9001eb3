"""
conftest.py — Shared pytest fixtures for the tender markup test suite.

No database or external service fixtures are defined here.  All tests in this
suite are pure unit tests that exercise the markup engine and tactic layer in
isolation.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``tender.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any tender imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def markup_engine():
    """MarkupEngine — stateless, one instance shared by the whole session."""
    from tender.services.markup_engine import MarkupEngine
    return MarkupEngine()


# ---------------------------------------------------------------------------
# Parameter sets
# ---------------------------------------------------------------------------

@pytest.fixture
def standard_parameters():
    """
    Production-like markup percentages.

    material/works growth 10 %, subcontract growth 10 %, overhead 10 %,
    profit own forces 10 %, profit subcontract 16 %, VAT 22 %.
    """
    return {
        "material_cost_growth": 10.0,
        "works_cost_growth": 10.0,
        "subcontract_works_cost_growth": 10.0,
        "subcontract_materials_cost_growth": 10.0,
        "mechanization_service": 5.0,
        "mbp_gsm": 5.0,
        "warranty_period": 5.0,
        "works_16_markup": 60.0,
        "contingency_costs": 3.0,
        "overhead_own_forces": 10.0,
        "overhead_subcontract": 10.0,
        "general_costs_without_subcontract": 20.0,
        "profit_own_forces": 10.0,
        "profit_subcontract": 16.0,
        "nds_22": 22.0,
    }


# ---------------------------------------------------------------------------
# Sequences
# ---------------------------------------------------------------------------

def _growth_step(base_index, key, fmt="addOne", name=None):
    return {
        "name": name,
        "base_index": base_index,
        "operations": [
            {"action": "multiply", "operand": {"kind": "parameter", "name": key}, "multiply_format": fmt},
        ],
    }


@pytest.fixture
def overhead_then_fee_sequence():
    """
    Step 1 = base × (1 + overhead%)
    Step 2 = step 1 + 500
    """
    from tender.models.markup_schema import Step
    return [
        Step.model_validate(_growth_step(-1, "overhead", name="Overhead")),
        Step.model_validate({
            "name": "Fixed fee",
            "base_index": 0,
            "operations": [{"action": "add", "operand": {"kind": "literal", "value": 500}}],
        }),
    ]


@pytest.fixture
def full_work_sequence():
    """growth → overhead → profit → VAT, each compounding on the previous step."""
    from tender.models.markup_schema import Step
    return [
        Step.model_validate(_growth_step(-1, "works_cost_growth")),
        Step.model_validate(_growth_step(0, "overhead_own_forces")),
        Step.model_validate(_growth_step(1, "profit_own_forces")),
        Step.model_validate(_growth_step(2, "nds_22")),
    ]


@pytest.fixture
def subcontract_work_sequence():
    """Legacy stored shape: subcontract growth → overhead → profit → VAT."""
    return [
        {"baseIndex": -1, "action1": "multiply", "operand1Type": "markup",
         "operand1Key": "subcontract_works_cost_growth", "operand1MultiplyFormat": "addOne"},
        {"baseIndex": 0, "action1": "multiply", "operand1Type": "markup",
         "operand1Key": "overhead_subcontract", "operand1MultiplyFormat": "addOne"},
        {"baseIndex": 1, "action1": "multiply", "operand1Type": "markup",
         "operand1Key": "profit_subcontract", "operand1MultiplyFormat": "addOne"},
        {"baseIndex": 2, "action1": "multiply", "operand1Type": "markup",
         "operand1Key": "nds_22", "operand1MultiplyFormat": "addOne"},
    ]
