"""Analysis modules for substrate benchmarking."""

from src.analysis.footprint import (
    DensityProjection,
    FootprintComparison,
    FootprintSummary,
    InstanceSpec,
    ResourceBudget,
    compare_footprints,
    parse_cpu,
    parse_memory,
    project_density,
    summarize_footprint,
)
from src.analysis.trial_statistics import (
    OutlierAnalysis,
    SubstrateComparison,
    TrialStatistics,
    compare_substrates,
    detect_outliers_iqr,
    format_statistics,
    summarize,
)

__all__ = [
    # Trial statistics
    "TrialStatistics",
    "SubstrateComparison",
    "OutlierAnalysis",
    "summarize",
    "compare_substrates",
    "detect_outliers_iqr",
    "format_statistics",
    # Resource footprint
    "InstanceSpec",
    "ResourceBudget",
    "FootprintSummary",
    "DensityProjection",
    "FootprintComparison",
    "parse_cpu",
    "parse_memory",
    "summarize_footprint",
    "project_density",
    "compare_footprints",
]
