"""
Markup configuration — single source of truth for parameter defaults,
stored category keys, growth exclusions and recalculation tolerances.

Import from here in services and models rather than hardcoding values.
Runtime settings are read from the environment (``.env`` is loaded in dev).
"""
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


# ── Runtime settings ───────────────────────────────────────────────────────────

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# "json" (default) for production log shipping, "text" for local development
LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json").lower()
JSON_LOGS: bool = LOG_FORMAT != "text"

# Level for the tender-perf timing logger; DEBUG to see aggregation durations
PERF_LOG_LEVEL: str = os.getenv("PERF_LOG_LEVEL", "WARNING")


# ── Markup parameters ──────────────────────────────────────────────────────────

# Percent values used when a tender has no parameter set of its own.
DEFAULT_MARKUP_PARAMETERS: dict[str, float] = {
    "mechanization_service":             5.0,
    "mbp_gsm":                           5.0,
    "warranty_period":                   5.0,
    "works_16_markup":                  60.0,
    "works_cost_growth":                10.0,
    "material_cost_growth":             10.0,
    "subcontract_works_cost_growth":    10.0,
    "subcontract_materials_cost_growth": 10.0,
    "contingency_costs":                 3.0,
    "overhead_own_forces":              10.0,
    "overhead_subcontract":             10.0,
    "general_costs_without_subcontract": 20.0,
    "profit_own_forces":                10.0,
    "profit_subcontract":               16.0,
    "nds_22":                           22.0,
}

# Report labels for the per-parameter markup breakdown
PARAMETER_LABELS: dict[str, str] = {
    "mechanization_service":             "Mechanization service",
    "mbp_gsm":                           "Low-value items & fuel",
    "warranty_period":                   "Warranty period",
    "works_16_markup":                   "Works 1.6 markup",
    "works_cost_growth":                 "Works cost growth",
    "material_cost_growth":              "Material cost growth",
    "subcontract_works_cost_growth":     "Subcontract works cost growth",
    "subcontract_materials_cost_growth": "Subcontract materials cost growth",
    "contingency_costs":                 "Contingency",
    "overhead_own_forces":               "Overhead (own forces)",
    "overhead_subcontract":              "Overhead (subcontract)",
    "general_costs_without_subcontract": "General costs excl. subcontract",
    "profit_own_forces":                 "Profit (own forces)",
    "profit_subcontract":                "Profit (subcontract)",
    "nds_22":                            "VAT 22%",
}


# ── Item categories ────────────────────────────────────────────────────────────

# Keys written by the legacy configuration tooling -> ItemCategory values
LEGACY_CATEGORY_KEYS: dict[str, str] = {
    "раб":       "work",
    "мат":       "material",
    "суб-раб":   "subcontract_work",
    "суб-мат":   "subcontract_material",
    "раб-комп.": "component_work",
    "мат-комп.": "component_material",
}

# Legacy material kind labels -> MaterialKind values
LEGACY_MATERIAL_KINDS: dict[str, str] = {
    "основн.":   "basic",
    "вспомогат.": "auxiliary",
}

# Growth parameter removed from a subcontract sequence when the item's cost
# category is excluded from subcontract growth
GROWTH_EXCLUSION_KEYS: dict[str, str] = {
    "subcontract_work":     "subcontract_works_cost_growth",
    "subcontract_material": "subcontract_materials_cost_growth",
}


# ── Recalculation ──────────────────────────────────────────────────────────────

# Stored commercial cost may drift from base × coefficient by at most this much
RECALCULATION_TOLERANCE: float = 0.01
