"""
Configuration for the node core and the self-tuning layer.

Every section is a bounded dataclass with safe defaults. A full
``TunerConfig`` can be loaded from YAML/JSON files or taken from a
built-in preset, so thresholds can be tuned without modifying code.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def _filter_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in (data or {}).items() if k in names}


@dataclass
class CacheConfig:
    """
    Node result caching.

    Attributes:
        enabled: Default caching switch for capability nodes
        window_ticks: Ticks a cached result stays valid (6 ticks ~ 0.1 s at 60 Hz)
        position_tolerance: Max position delta for a "similar" observation
        hp_tolerance: Max HP delta for a "similar" observation
    """
    enabled: bool = True
    window_ticks: int = 6
    position_tolerance: float = 0.1
    hp_tolerance: float = 1.0

    def __post_init__(self):
        self.window_ticks = max(1, min(600, int(self.window_ticks)))
        self.position_tolerance = max(0.0, self.position_tolerance)
        self.hp_tolerance = max(0.0, self.hp_tolerance)


@dataclass
class TelemetryConfig:
    """Per-tree telemetry aggregation."""
    max_history: int = 1000
    analytics_every: int = 10
    bottleneck_time_threshold_ms: float = 5.0
    bottleneck_failure_rate_threshold: float = 0.3
    min_correlation_points: int = 3
    max_correlation_points: int = 500

    def __post_init__(self):
        self.max_history = max(1, min(100000, self.max_history))
        self.analytics_every = max(1, self.analytics_every)
        self.bottleneck_time_threshold_ms = max(0.001, self.bottleneck_time_threshold_ms)
        self.bottleneck_failure_rate_threshold = max(0.001, min(1.0, self.bottleneck_failure_rate_threshold))
        self.min_correlation_points = max(2, self.min_correlation_points)
        self.max_correlation_points = max(self.min_correlation_points, self.max_correlation_points)


@dataclass
class MonitorConfig:
    """
    Runtime performance monitor thresholds.

    Attributes:
        interval: Seconds between monitoring cycles
        history_size: Snapshots kept in the rolling history
        fps_warning: Alert below this FPS
        exec_time_warning_ms: Alert when a tree's average time exceeds this
        memory_warning_mb: Alert above this memory usage
        failure_rate_warning: Alert when failure rate exceeds this
        trend_window: Snapshots inspected for trend alerts
        trend_change: Relative change that counts as a trend (0.1 = 10%)
        recovery_margin: Extra margin a metric must recover by to resolve
        resolved_purge_after: Seconds a resolved alert is kept
        auto_optimization: Start optimization automatically
        optimization_trigger: Score at which auto-optimization fires
        optimization_cooldown: Seconds between auto-optimizations
    """
    enabled: bool = True
    interval: float = 1.0
    history_size: int = 100
    fps_warning: float = 30.0
    exec_time_warning_ms: float = 5.0
    memory_warning_mb: float = 500.0
    failure_rate_warning: float = 0.3
    trend_window: int = 10
    trend_change: float = 0.1
    recovery_margin: float = 0.1
    resolved_purge_after: float = 60.0
    bottleneck_alert_severity: float = 2.0
    low_efficiency_threshold: float = 0.1
    low_efficiency_min_executions: int = 10
    auto_optimization: bool = False
    optimization_trigger: float = 0.7
    optimization_cooldown: float = 30.0
    log_warnings: bool = True

    def __post_init__(self):
        self.interval = max(0.01, self.interval)
        self.history_size = max(2, min(100000, self.history_size))
        self.failure_rate_warning = max(0.0, min(1.0, self.failure_rate_warning))
        self.trend_window = max(2, self.trend_window)
        self.trend_change = max(0.0, min(1.0, self.trend_change))
        self.recovery_margin = max(0.0, min(1.0, self.recovery_margin))
        self.resolved_purge_after = max(0.0, self.resolved_purge_after)
        self.optimization_trigger = max(0.0, min(1.0, self.optimization_trigger))
        self.optimization_cooldown = max(0.0, self.optimization_cooldown)


@dataclass
class AnalyzerConfig:
    """Statistical analyzer settings."""
    enabled: bool = True
    analysis_interval: float = 60.0
    minimum_data_points: int = 10
    window_size: int = 100
    confidence_level: float = 0.95
    moving_average_window: int = 20
    outlier_threshold: float = 2.5
    seasonality_period: int = 24
    histogram_bins: int = 10
    chart_points: int = 50
    regression_threshold: float = 0.1
    regression_sensitivity: float = 0.8
    regression_lookback: int = 50
    critical_value: float = 2.0
    max_suggestions: int = 10
    enable_regression_detection: bool = True
    enable_optimization_analysis: bool = True
    enable_visualization: bool = True

    def __post_init__(self):
        self.analysis_interval = max(0.01, self.analysis_interval)
        self.minimum_data_points = max(2, self.minimum_data_points)
        self.window_size = max(self.minimum_data_points, self.window_size)
        self.confidence_level = max(0.5, min(0.999, self.confidence_level))
        self.moving_average_window = max(1, self.moving_average_window)
        self.seasonality_period = max(1, self.seasonality_period)
        self.histogram_bins = max(1, self.histogram_bins)
        self.chart_points = max(2, self.chart_points)
        self.regression_threshold = max(0.0, self.regression_threshold)
        self.regression_sensitivity = max(0.0, min(1.0, self.regression_sensitivity))
        self.regression_lookback = max(4, self.regression_lookback)
        self.critical_value = max(0.0, self.critical_value)
        self.max_suggestions = max(1, self.max_suggestions)


ALGORITHMS = ("random", "grid", "bayesian", "genetic")
OBJECTIVES = ("success_rate", "execution_speed", "efficiency", "memory_efficiency", "overall")


@dataclass
class OptimizerConfig:
    """
    Parameter optimization and A/B testing.

    Attributes:
        algorithm: Default candidate generator (random, grid, bayesian, genetic)
        objective: Default objective function
        data_collection_interval: Seconds between metric samples
        max_data_points: Bound on stored metrics and dataset points per tree
        max_iterations: Iteration cap per optimization run
        convergence_threshold: Variance of recent scores that counts as converged
        convergence_min_iterations: Iterations before convergence is checked
        convergence_window: Number of recent scores inspected
        objective_window: Metrics averaged by an objective
        experiment_duration: Seconds an A/B test runs
        critical_value: t statistic above which a difference is significant
        prng_seed: Seed for deterministic candidate generation (None = random)
    """
    algorithm: str = "bayesian"
    objective: str = "success_rate"
    data_collection_interval: float = 5.0
    max_data_points: int = 10000
    max_iterations: int = 100
    convergence_threshold: float = 0.001
    convergence_min_iterations: int = 10
    convergence_window: int = 5
    objective_window: int = 5
    experiment_duration: float = 300.0
    critical_value: float = 2.0
    prng_seed: Optional[int] = None

    def __post_init__(self):
        if self.algorithm not in ALGORITHMS:
            logger.warning(f"Unknown algorithm {self.algorithm!r}, using 'bayesian'")
            self.algorithm = "bayesian"
        if self.objective not in OBJECTIVES:
            logger.warning(f"Unknown objective {self.objective!r}, using 'success_rate'")
            self.objective = "success_rate"
        self.data_collection_interval = max(0.01, self.data_collection_interval)
        self.max_data_points = max(10, min(1000000, self.max_data_points))
        self.max_iterations = max(1, min(100000, self.max_iterations))
        self.convergence_threshold = max(0.0, self.convergence_threshold)
        self.convergence_min_iterations = max(0, self.convergence_min_iterations)
        self.convergence_window = max(3, self.convergence_window)
        self.objective_window = max(1, self.objective_window)
        self.experiment_duration = max(0.01, self.experiment_duration)
        self.critical_value = max(0.0, self.critical_value)


@dataclass
class TunerConfig:
    """
    Complete configuration for a tuned behavior-tree deployment.

    Can be loaded from YAML/JSON files or created programmatically.
    """
    name: str = "default"
    cache: CacheConfig = field(default_factory=CacheConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TunerConfig":
        """Create from dictionary; unknown keys are ignored."""
        data = data or {}
        return cls(
            name=data.get("name", "default"),
            cache=CacheConfig(**_filter_fields(CacheConfig, data.get("cache"))),
            telemetry=TelemetryConfig(**_filter_fields(TelemetryConfig, data.get("telemetry"))),
            monitor=MonitorConfig(**_filter_fields(MonitorConfig, data.get("monitor"))),
            analyzer=AnalyzerConfig(**_filter_fields(AnalyzerConfig, data.get("analyzer"))),
            optimizer=OptimizerConfig(**_filter_fields(OptimizerConfig, data.get("optimizer"))),
        )

    def save(self, path: str) -> None:
        """Save config to JSON file (or YAML if the extension says so)."""
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            if path.endswith((".yaml", ".yml")):
                import yaml
                yaml.safe_dump(self.to_dict(), f, sort_keys=False)
            else:
                json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> Optional["TunerConfig"]:
        """Load config from JSON or YAML file."""
        if not os.path.exists(path):
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                content = f.read()

            if path.endswith((".yaml", ".yml")):
                import yaml
                data = yaml.safe_load(content)
            else:
                data = json.loads(content)

            return cls.from_dict(data)

        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return None


# Default configuration instance
DEFAULT_CONFIG = TunerConfig()


class TunerPresets:
    """Pre-configured tuning presets."""

    @staticmethod
    def default() -> TunerConfig:
        """Stock thresholds, no auto-optimization."""
        return TunerConfig(name="default")

    @staticmethod
    def realtime() -> TunerConfig:
        """Tight monitoring for frame-budgeted hosts."""
        return TunerConfig(
            name="realtime",
            monitor=MonitorConfig(interval=0.5, exec_time_warning_ms=2.0, fps_warning=55.0),
            analyzer=AnalyzerConfig(analysis_interval=30.0),
        )

    @staticmethod
    def aggressive_tuning() -> TunerConfig:
        """Auto-optimization on, fast genetic search."""
        return TunerConfig(
            name="aggressive_tuning",
            monitor=MonitorConfig(auto_optimization=True, optimization_trigger=0.5, optimization_cooldown=15.0),
            optimizer=OptimizerConfig(algorithm="genetic", data_collection_interval=2.0, max_iterations=50),
        )

    @staticmethod
    def deterministic_test(seed: int = 42) -> TunerConfig:
        """Deterministic configuration for testing."""
        return TunerConfig(
            name="deterministic_test",
            monitor=MonitorConfig(log_warnings=False),
            optimizer=OptimizerConfig(prng_seed=seed, data_collection_interval=1.0, max_iterations=20),
        )


PRESETS = {
    "default": TunerPresets.default,
    "realtime": TunerPresets.realtime,
    "aggressive_tuning": TunerPresets.aggressive_tuning,
    "deterministic_test": TunerPresets.deterministic_test,
}


def get_preset(name: str) -> Optional[TunerConfig]:
    """Get a built-in preset by name (a fresh instance each call)."""
    factory = PRESETS.get(name.lower())
    return factory() if factory else None


def list_presets() -> List[str]:
    """List available preset names."""
    return list(PRESETS.keys())


class ConfigManager:
    """
    Manages tuner configurations with preset + custom file support.

    Example:
        >>> manager = ConfigManager("./tuner_configs")
        >>> config = manager.get("realtime")   # Uses built-in preset
        >>> config = manager.get("arena_duel") # Loads ./tuner_configs/arena_duel.yaml
    """

    def __init__(self, config_dir: str = "./tuner_configs"):
        """
        Initialize config manager.

        Args:
            config_dir: Directory for custom configs
        """
        self.config_dir = config_dir
        self._cache: Dict[str, TunerConfig] = {}

    def get(self, name: str) -> Optional[TunerConfig]:
        """
        Get config by name.

        Checks in order:
        1. Cache
        2. Custom file (config_dir/name.json, .yaml or .yml)
        3. Built-in presets
        """
        name_lower = name.lower()

        if name_lower in self._cache:
            return self._cache[name_lower]

        for ext in [".json", ".yaml", ".yml"]:
            path = os.path.join(self.config_dir, f"{name_lower}{ext}")
            config = TunerConfig.load(path)
            if config:
                self._cache[name_lower] = config
                return config

        preset = get_preset(name_lower)
        if preset:
            self._cache[name_lower] = preset
            return preset

        return None

    def save(self, config: TunerConfig, name: Optional[str] = None) -> str:
        """
        Save a config to file.

        Returns:
            Path where config was saved
        """
        name = (name or config.name).lower()
        os.makedirs(self.config_dir, exist_ok=True)
        path = os.path.join(self.config_dir, f"{name}.json")
        config.save(path)
        self._cache[name] = config
        return path

    def list_available(self) -> List[str]:
        """List all available configs (presets + custom files)."""
        available = set(list_presets())

        if os.path.exists(self.config_dir):
            for f in os.listdir(self.config_dir):
                if f.endswith((".json", ".yaml", ".yml")):
                    available.add(os.path.splitext(f)[0])

        return sorted(available)
