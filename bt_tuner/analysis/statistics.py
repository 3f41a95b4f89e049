"""
Statistical routines used by the analyzer.

All functions are pure and guard degenerate input (empty, single element,
zero variance) by returning neutral values instead of raising.
"""
from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence

import numpy as np

from .models import (
    BasicStatistics,
    ConfidenceInterval,
    CorrelationMatrix,
    DistributionAnalysis,
    DistributionType,
    HistogramBin,
    METRICS,
    OutlierInfo,
    OutlierType,
    PerformanceDataPoint,
    SeasonalityAnalysis,
    TrendAnalysis,
    TrendDirection,
)

SEASONALITY_THRESHOLD = 0.3
TREND_EPSILON = 0.001
TREND_SIGNIFICANT_R2 = 0.5
IQR_FENCE = 1.5


def _array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(list(values), dtype=float)


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Linear-interpolation percentile at index ``p * (n - 1)``; ``p`` in [0, 1]."""
    n = len(sorted_values)
    if n == 0:
        return 0.0
    if n == 1:
        return float(sorted_values[0])
    index = p * (n - 1)
    lower = int(math.floor(index))
    upper = min(lower + 1, n - 1)
    weight = index - lower
    return float(sorted_values[lower] * (1 - weight) + sorted_values[upper] * weight)


def mode(values: Sequence[float], decimals: int = 2) -> float:
    """Most frequent value after rounding; ties go to the first seen."""
    counts: Dict[float, int] = {}
    for v in values:
        key = round(float(v), decimals)
        counts[key] = counts.get(key, 0) + 1
    if not counts:
        return 0.0
    best = max(counts.values())
    return next(k for k, c in counts.items() if c == best)


def skewness(values: Sequence[float]) -> float:
    """Mean cubed z-score (sample standard deviation); 0 below 3 values."""
    arr = _array(values)
    if arr.size < 3:
        return 0.0
    sd = float(arr.std(ddof=1))
    if sd == 0:
        return 0.0
    z = (arr - arr.mean()) / sd
    return float(np.mean(z ** 3))


def kurtosis(values: Sequence[float]) -> float:
    """Excess kurtosis (mean z^4 - 3); 0 below 4 values."""
    arr = _array(values)
    if arr.size < 4:
        return 0.0
    sd = float(arr.std(ddof=1))
    if sd == 0:
        return 0.0
    z = (arr - arr.mean()) / sd
    return float(np.mean(z ** 4) - 3.0)


def describe(values: Sequence[float]) -> BasicStatistics:
    """Descriptive statistics of one series."""
    arr = _array(values)
    n = int(arr.size)
    if n == 0:
        return BasicStatistics()

    ordered = np.sort(arr)
    variance = float(arr.var(ddof=1)) if n > 1 else 0.0
    q1 = percentile(ordered, 0.25)
    q3 = percentile(ordered, 0.75)

    return BasicStatistics(
        count=n,
        mean=float(arr.mean()),
        median=float(np.median(arr)),
        mode=mode(arr),
        standard_deviation=math.sqrt(variance),
        variance=variance,
        minimum=float(ordered[0]),
        maximum=float(ordered[-1]),
        range=float(ordered[-1] - ordered[0]),
        quartile1=q1,
        quartile3=q3,
        interquartile_range=q3 - q1,
        skewness=skewness(arr),
        kurtosis=kurtosis(arr),
    )


def t_critical(df: int) -> float:
    """Approximate two-sided 95% t value by degrees-of-freedom bucket."""
    if df >= 30:
        return 1.96
    if df >= 10:
        return 2.2
    return 2.5


def confidence_interval(values: Sequence[float], level: float = 0.95) -> ConfidenceInterval:
    """Mean +- t * sd / sqrt(n); needs at least 2 values."""
    arr = _array(values)
    n = int(arr.size)
    if n < 2:
        mean = float(arr.mean()) if n else 0.0
        return ConfidenceInterval(mean=mean, lower_bound=mean, upper_bound=mean, confidence_level=level)

    mean = float(arr.mean())
    sd = float(arr.std(ddof=1))
    margin = t_critical(n - 1) * sd / math.sqrt(n)
    return ConfidenceInterval(
        mean=mean,
        lower_bound=mean - margin,
        upper_bound=mean + margin,
        confidence_level=level,
        margin_of_error=margin,
    )


def moving_average(values: Sequence[float], window: int) -> List[float]:
    """Trailing moving average; early points average what is available."""
    arr = _array(values)
    window = max(1, window)
    out: List[float] = []
    for i in range(arr.size):
        start = max(0, i - window + 1)
        out.append(float(arr[start:i + 1].mean()))
    return out


def pearson(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Pearson correlation; 0 for mismatched lengths, fewer than 2 points or zero variance."""
    if len(xs) != len(ys) or len(xs) < 2:
        return 0.0
    x = _array(xs)
    y = _array(ys)
    dx = x - x.mean()
    dy = y - y.mean()
    denominator = math.sqrt(float(np.sum(dx ** 2)) * float(np.sum(dy ** 2)))
    if denominator == 0:
        return 0.0
    return float(np.sum(dx * dy)) / denominator


def correlation_matrix(points: Sequence[PerformanceDataPoint], metrics: Sequence[str] = METRICS) -> CorrelationMatrix:
    """Full pairwise correlation matrix over ``metrics``."""
    series = {m: [p.value(m) for p in points] for m in metrics}
    values = [
        [1.0 if a == b else pearson(series[a], series[b]) for b in metrics]
        for a in metrics
    ]
    return CorrelationMatrix(labels=list(metrics), values=values)


def classify_distribution(skew: float, kurt: float) -> DistributionType:
    if abs(skew) < 0.5 and abs(kurt) < 0.5:
        return DistributionType.NORMAL
    if skew > 1:
        return DistributionType.RIGHT_SKEWED
    if skew < -1:
        return DistributionType.LEFT_SKEWED
    if kurt > 2:
        return DistributionType.LEPTOKURTIC
    if kurt < -1:
        return DistributionType.PLATYKURTIC
    return DistributionType.UNKNOWN


def normality_p_value(values: Sequence[float]) -> float:
    """
    Heuristic normality score in [0, 1] from skewness and kurtosis.

    Not a real test statistic: 1 - (|skew| + |kurt|) / 4, clamped.
    """
    if len(values) < 3:
        return 1.0
    score = 1.0 - (abs(skewness(values)) + abs(kurtosis(values))) / 4.0
    return max(0.0, min(1.0, score))


def histogram(values: Sequence[float], bins: int = 10) -> List[HistogramBin]:
    """Equal-width bins between min and max; the last bin includes the max."""
    arr = _array(values)
    n = int(arr.size)
    if n == 0:
        return []
    bins = max(1, bins)
    lo = float(arr.min())
    hi = float(arr.max())
    width = (hi - lo) / bins

    result = [HistogramBin(lo + i * width, lo + (i + 1) * width) for i in range(bins)]
    for v in arr:
        if width == 0:
            index = 0
        else:
            index = min(int((v - lo) / width), bins - 1)
        result[index].count += 1

    for b in result:
        b.frequency = b.count / n
    return result


def analyze_distribution(values: Sequence[float], bins: int = 10) -> DistributionAnalysis:
    p_value = normality_p_value(values)
    return DistributionAnalysis(
        distribution_type=classify_distribution(skewness(values), kurtosis(values)),
        is_normal=p_value > 0.05,
        normality_p_value=p_value,
        histogram=histogram(values, bins),
    )


def iqr_outliers(
    values: Sequence[float],
    timestamps: Optional[Sequence[float]] = None,
    metric: str = "success_rate",
    severity_scale: float = 2.5,
) -> List[OutlierInfo]:
    """
    Points outside [Q1 - 1.5 IQR, Q3 + 1.5 IQR].

    Severity is the relative distance past the fence times ``severity_scale``.
    """
    arr = _array(values)
    if arr.size < 3:
        return []
    ordered = np.sort(arr)
    q1 = percentile(ordered, 0.25)
    q3 = percentile(ordered, 0.75)
    iqr = q3 - q1
    lower = q1 - IQR_FENCE * iqr
    upper = q3 + IQR_FENCE * iqr

    outliers: List[OutlierInfo] = []
    for i, v in enumerate(arr):
        ts = float(timestamps[i]) if timestamps is not None else float(i)
        if v < lower:
            severity = (lower - v) / (abs(lower) or 1.0) * severity_scale
            outliers.append(OutlierInfo(i, ts, float(v), metric, OutlierType.LOW, float(severity)))
        elif v > upper:
            severity = (v - upper) / (abs(upper) or 1.0) * severity_scale
            outliers.append(OutlierInfo(i, ts, float(v), metric, OutlierType.HIGH, float(severity)))
    return outliers


def autocorrelations(values: Sequence[float], max_lag: int) -> List[float]:
    """Autocorrelation for lags 1..max_lag."""
    arr = _array(values)
    n = int(arr.size)
    if n < 2:
        return []
    centered = arr - arr.mean()
    denominator = float(np.sum(centered ** 2))

    out: List[float] = []
    for lag in range(1, max_lag + 1):
        if lag >= n or denominator == 0:
            out.append(0.0)
            continue
        out.append(float(np.sum(centered[:n - lag] * centered[lag:])) / denominator)
    return out


def seasonality(values: Sequence[float], period: int = 24) -> SeasonalityAnalysis:
    """Seasonal when the strongest autocorrelation up to ``period`` exceeds 0.3."""
    if len(values) < 2 * period:
        return SeasonalityAnalysis()

    acs = autocorrelations(values, period)
    strength = max(acs) if acs else 0.0
    seasonal = strength > SEASONALITY_THRESHOLD
    return SeasonalityAnalysis(
        has_seasonality=seasonal,
        period=acs.index(strength) + 1 if seasonal else 0,
        strength=strength,
        autocorrelations=acs,
    )


def linear_trend(values: Sequence[float]) -> TrendAnalysis:
    """Least-squares line over x = 0..n-1."""
    y = _array(values)
    n = int(y.size)
    if n < 3:
        return TrendAnalysis()

    x = np.arange(n, dtype=float)
    sum_x = float(x.sum())
    sum_y = float(y.sum())
    sum_xy = float(np.sum(x * y))
    sum_x2 = float(np.sum(x * x))

    denominator = n * sum_x2 - sum_x * sum_x
    slope = (n * sum_xy - sum_x * sum_y) / denominator if abs(denominator) >= 1e-10 else 0.0
    intercept = (sum_y - slope * sum_x) / n

    predicted = slope * x + intercept
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    ss_res = float(np.sum((y - predicted) ** 2))
    r_squared = 1.0 - ss_res / ss_tot if ss_tot > 0 else 0.0

    if slope > TREND_EPSILON:
        direction = TrendDirection.INCREASING
    elif slope < -TREND_EPSILON:
        direction = TrendDirection.DECREASING
    else:
        direction = TrendDirection.STABLE

    return TrendAnalysis(
        direction=direction,
        slope=slope,
        r_squared=r_squared,
        strength=abs(slope),
        is_significant=r_squared > TREND_SIGNIFICANT_R2,
    )


def two_sample_t_test(a: Sequence[float], b: Sequence[float], critical_value: float = 2.0) -> bool:
    """
    Pooled-variance two-sample t test against a fixed critical value.

    Returns True when the means differ significantly.
    """
    x = _array(a)
    y = _array(b)
    n1, n2 = int(x.size), int(y.size)
    if n1 < 2 or n2 < 2:
        return False

    pooled = ((n1 - 1) * float(x.var(ddof=1)) + (n2 - 1) * float(y.var(ddof=1))) / (n1 + n2 - 2)
    standard_error = math.sqrt(pooled * (1.0 / n1 + 1.0 / n2))
    difference = abs(float(x.mean()) - float(y.mean()))
    if standard_error == 0:
        # Two constant samples: any gap at all is decisive.
        return difference > 0

    t = difference / standard_error
    return t > critical_value
