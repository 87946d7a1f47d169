"""Statistical aggregation of trial results.

Timeouts are counted, never averaged: descriptive statistics cover numeric
results only, and a run with no numeric result reports its statistics as
undefined rather than zero.
"""

from typing import Iterable, List, Optional, Sequence, Union

import numpy as np
from pydantic import BaseModel, Field, computed_field
from scipy import stats

from src.harness.models import TIMEOUT, TrialResult


class TrialStatistics(BaseModel):
    """Descriptive statistics over the numeric results of one TrialSet."""

    total: int = Field(ge=0, description="Number of trials, timeouts included")
    count: int = Field(ge=0, description="Number of numeric results")
    timeouts: int = Field(ge=0, description="Number of timed-out trials")

    average: Optional[float] = Field(default=None, description="Mean of numeric results (unrounded)")
    min_value: Optional[float] = Field(default=None, description="Minimum numeric result")
    max_value: Optional[float] = Field(default=None, description="Maximum numeric result")
    median: Optional[float] = Field(default=None, description="Median of numeric results")
    std_dev: Optional[float] = Field(default=None, description="Sample standard deviation (count >= 2)")

    @computed_field
    @property
    def defined(self) -> bool:
        """Whether at least one numeric result exists."""
        return self.count > 0


class OutlierAnalysis(BaseModel):
    """Analysis of outliers in a set of trial durations."""

    outliers_count: int = Field(description="Number of outliers detected", ge=0)
    outlier_indices: List[int] = Field(description="Indices of outlier values")
    outlier_values: List[float] = Field(description="Outlier values")
    lower_bound: float = Field(description="Lower bound for outlier detection")
    upper_bound: float = Field(description="Upper bound for outlier detection")


class SubstrateComparison(BaseModel):
    """Welch's t-test between two substrates' numeric results."""

    label_a: str
    label_b: str
    stats_a: TrialStatistics
    stats_b: TrialStatistics
    t_statistic: float = Field(description="Welch's t-statistic")
    p_value: float = Field(description="Two-sided p-value")
    alpha: float = Field(default=0.05, description="Significance level")

    @computed_field
    @property
    def is_significant(self) -> bool:
        return self.p_value < self.alpha

    @computed_field
    @property
    def mean_difference(self) -> float:
        """Mean of b minus mean of a, in milliseconds."""
        return float(self.stats_b.average) - float(self.stats_a.average)

    @computed_field
    @property
    def percent_difference(self) -> float:
        """Difference relative to a's mean."""
        if not self.stats_a.average:
            return 0.0
        return self.mean_difference / float(self.stats_a.average) * 100


def numeric_results(results: Iterable[TrialResult]) -> List[float]:
    """The numeric results, timeouts removed, order preserved."""
    return [float(r) for r in results if not _is_timeout(r)]


def _is_timeout(result: Union[int, float, str, None]) -> bool:
    return result is None or result == TIMEOUT


def summarize(results: Sequence[TrialResult]) -> TrialStatistics:
    """Count, average, min and max over numeric results; timeouts counted apart.

    Args:
        results: Trial results in run order, each a number of ms or "timeout".

    Returns:
        TrialStatistics. With no numeric result every statistic is None.
    """
    values = numeric_results(results)
    total = len(results)
    timeouts = total - len(values)

    if not values:
        return TrialStatistics(total=total, count=0, timeouts=timeouts)

    arr = np.array(values, dtype=float)
    return TrialStatistics(
        total=total,
        count=len(values),
        timeouts=timeouts,
        average=float(arr.sum() / len(arr)),
        min_value=float(np.min(arr)),
        max_value=float(np.max(arr)),
        median=float(np.median(arr)),
        std_dev=float(np.std(arr, ddof=1)) if len(arr) >= 2 else None,
    )


def detect_outliers_iqr(values: Sequence[float], multiplier: float = 1.5) -> OutlierAnalysis:
    """Flag values outside [Q1 - multiplier*IQR, Q3 + multiplier*IQR].

    Raises:
        ValueError: If ``values`` is empty.
    """
    if not values:
        raise ValueError("Data cannot be empty")

    arr = np.array(values, dtype=float)
    q1 = np.percentile(arr, 25)
    q3 = np.percentile(arr, 75)
    iqr = q3 - q1
    lower_bound = q1 - multiplier * iqr
    upper_bound = q3 + multiplier * iqr

    outlier_mask = (arr < lower_bound) | (arr > upper_bound)
    return OutlierAnalysis(
        outliers_count=int(outlier_mask.sum()),
        outlier_indices=np.where(outlier_mask)[0].tolist(),
        outlier_values=arr[outlier_mask].tolist(),
        lower_bound=float(lower_bound),
        upper_bound=float(upper_bound),
    )


def compare_substrates(
    label_a: str,
    results_a: Sequence[TrialResult],
    label_b: str,
    results_b: Sequence[TrialResult],
    alpha: float = 0.05,
) -> Optional[SubstrateComparison]:
    """Welch's t-test on the numeric results of two runs.

    Returns None when either side has fewer than two numeric results, since
    no variance can be estimated.
    """
    a = numeric_results(results_a)
    b = numeric_results(results_b)
    if len(a) < 2 or len(b) < 2:
        return None

    t_stat, p_val = stats.ttest_ind(a, b, equal_var=False)
    if np.isnan(p_val):
        # Both samples constant: identical means are not a significant difference.
        t_stat, p_val = 0.0, 1.0

    return SubstrateComparison(
        label_a=label_a,
        label_b=label_b,
        stats_a=summarize(results_a),
        stats_b=summarize(results_b),
        t_statistic=float(t_stat),
        p_value=float(p_val),
        alpha=alpha,
    )


def format_statistics(statistics: TrialStatistics, unit: str = "ms") -> str:
    """Human-readable block for the run log. Rounding happens only here."""
    lines = []
    if statistics.defined:
        lines.extend([
            f"  Average: {statistics.average:.1f}{unit}",
            f"  Min:     {statistics.min_value:.0f}{unit}",
            f"  Max:     {statistics.max_value:.0f}{unit}",
            f"  Count:   {statistics.count}",
        ])
        if statistics.std_dev is not None:
            lines.append(f"  Std dev: {statistics.std_dev:.1f}{unit}")
    else:
        lines.append("  Statistics undefined: no trial completed")

    if statistics.timeouts:
        noun = "timeout" if statistics.timeouts == 1 else "timeouts"
        lines.append(f"  {statistics.timeouts} {noun} (excluded from statistics)")
    return "\n".join(lines)
