"""ADSYNC — Unified Metric Registry.

Defines which metrics are summed across days and which are derived from
those sums. Derived ratios are always recomputed from totals; a ratio is
never averaged or summed.
"""

from enum import Enum
from typing import Callable, Dict, Mapping


class MetricType(str, Enum):
    """How a metric is categorised."""

    VOLUME = "volume"  # Raw counts: impressions, clicks, reach
    COST = "cost"  # Monetary: spend
    REVENUE = "revenue"  # Income: conversion_value
    DERIVED = "derived"  # Ratios of summed totals: ctr, roas, cpa


class MetricDefinition:
    """Describes a single metric."""

    def __init__(
        self, name: str, metric_type: MetricType, unit: str = "", description: str = ""
    ):
        self.name = name
        self.metric_type = metric_type
        self.unit = unit
        self.description = description

    def __repr__(self) -> str:
        return f"<Metric {self.name} ({self.metric_type.value})>"


def safe_divide(numerator: float, denominator: float) -> float:
    """Divide, returning 0 when the denominator is zero."""
    if not denominator:
        return 0.0
    return numerator / denominator


# ─────────────────────────────────────────────
# SUMMED METRICS — folded across days by addition
# ─────────────────────────────────────────────

SUMMED_METRICS: Dict[str, MetricDefinition] = {
    "spend": MetricDefinition("spend", MetricType.COST, "currency", "Amount spent"),
    "impressions": MetricDefinition(
        "impressions", MetricType.VOLUME, "count", "Times the ad was shown"
    ),
    "clicks": MetricDefinition("clicks", MetricType.VOLUME, "count", "Total clicks"),
    "reach": MetricDefinition(
        "reach", MetricType.VOLUME, "count", "Users reached (summed per day)"
    ),
    "conversions": MetricDefinition(
        "conversions",
        MetricType.VOLUME,
        "count",
        "Meta 'results' — the platform's own conversion count",
    ),
    "conversion_value": MetricDefinition(
        "conversion_value", MetricType.REVENUE, "currency", "Purchase value"
    ),
}


# ─────────────────────────────────────────────
# DERIVED METRICS — pure ratios of summed totals
# ─────────────────────────────────────────────

DERIVED_METRICS: Dict[str, MetricDefinition] = {
    "ctr": MetricDefinition("ctr", MetricType.DERIVED, "%", "Clicks / Impressions"),
    "cpm": MetricDefinition(
        "cpm", MetricType.DERIVED, "currency", "Cost per 1000 impressions"
    ),
    "cpc": MetricDefinition("cpc", MetricType.DERIVED, "currency", "Cost per click"),
    "cpa": MetricDefinition(
        "cpa", MetricType.DERIVED, "currency", "Cost per acquisition"
    ),
    "roas": MetricDefinition("roas", MetricType.DERIVED, "ratio", "Return on ad spend"),
    "frequency": MetricDefinition(
        "frequency", MetricType.DERIVED, "avg", "Impressions / Reach"
    ),
}

DERIVED_FORMULAS: Dict[str, Callable[[Mapping[str, float]], float]] = {
    "ctr": lambda t: safe_divide(t["clicks"], t["impressions"]) * 100,
    "cpm": lambda t: safe_divide(t["spend"], t["impressions"]) * 1000,
    "cpc": lambda t: safe_divide(t["spend"], t["clicks"]),
    "cpa": lambda t: safe_divide(t["spend"], t["conversions"]),
    "roas": lambda t: safe_divide(t["conversion_value"], t["spend"]),
    "frequency": lambda t: safe_divide(t["impressions"], t["reach"]),
}


# ─────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────

ALL_METRICS = {**SUMMED_METRICS, **DERIVED_METRICS}


def get_metric(name: str) -> MetricDefinition | None:
    """Look up a metric by name."""
    return ALL_METRICS.get(name)


def derive_ratios(totals: Mapping[str, float]) -> Dict[str, float]:
    """Compute every derived ratio from a mapping of summed totals."""
    filled = {name: float(totals.get(name, 0) or 0) for name in SUMMED_METRICS}
    return {name: formula(filled) for name, formula in DERIVED_FORMULAS.items()}
