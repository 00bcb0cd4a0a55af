"""
Monte Carlo cost simulation.

Each variable is a three-point estimate (min, most likely, max) carrying a
share of the base cost. Every iteration samples each variable from a
triangular approximation of its PERT distribution and scales its share by
sampled / most-likely.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
import logging
import math

import numpy as np

logger = logging.getLogger(__name__)

PERCENTILES = {"p10": 0.10, "p25": 0.25, "p50": 0.50, "p75": 0.75, "p80": 0.80, "p90": 0.90, "p95": 0.95}


@dataclass
class SimulationVariable:
    name: str
    min: float
    most_likely: float
    max: float
    weight: float   # fraction of the base cost this variable drives


@dataclass
class HistogramBin:
    bin_start: float
    bin_end: float
    count: int
    frequency: float


@dataclass
class SimulationResult:
    iterations: int
    min: float
    max: float
    mean: float
    std_dev: float
    p10: float
    p25: float
    p50: float
    p75: float
    p80: float
    p90: float
    p95: float
    distribution: np.ndarray
    histogram: List[HistogramBin] = field(default_factory=list)

    @property
    def percentiles(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in PERCENTILES}


class MonteCarlo:
    def __init__(self, iterations: int = 1000, seed: Optional[int] = None):
        if iterations < 1:
            raise ValueError(f"iterations must be at least 1, got {iterations}")
        self.iterations = int(iterations)
        self.rng = np.random.default_rng(seed)

    def sample_pert(self, min_value, most_likely, max_value, size=None):
        """Inverse-CDF triangular sample. Degenerate ranges collapse to a point."""
        if min_value == max_value:
            return min_value if size is None else np.full(size, float(min_value))
        if min_value >= max_value:
            return most_likely if size is None else np.full(size, float(most_likely))

        span = max_value - min_value
        fc = (most_likely - min_value) / span
        u = self.rng.random(size)
        low = min_value + np.sqrt(np.clip(u * span * (most_likely - min_value), 0, None))
        high = max_value - np.sqrt(np.clip((1 - u) * span * (max_value - most_likely), 0, None))
        sample = np.where(u < fc, low, high)
        return float(sample) if size is None else sample

    def run(self, base_cost: float, variables: Sequence[SimulationVariable]) -> SimulationResult:
        totals = np.zeros(self.iterations)
        for v in variables:
            sampled = self.sample_pert(v.min, v.most_likely, v.max, size=self.iterations)
            ratio = sampled / v.most_likely if v.most_likely > 0 else np.ones(self.iterations)
            totals += (v.weight * base_cost) * ratio
        logger.info("Simulated %d iterations over %d variables", self.iterations, len(variables))
        return self._analyze(totals)

    def _analyze(self, totals: np.ndarray) -> SimulationResult:
        results = np.sort(totals)
        n = len(results)
        picks = {name: float(results[min(math.floor(n * p), n - 1)]) for name, p in PERCENTILES.items()}
        return SimulationResult(
            iterations=n,
            min=float(results[0]),
            max=float(results[-1]),
            mean=float(np.mean(results)),
            std_dev=float(np.std(results)),
            distribution=results,
            **picks,
        )

    @staticmethod
    def histogram(distribution, bins: int = 20) -> List[HistogramBin]:
        """Equal-width bins over min..max; a zero-width range lands in the first bin."""
        values = np.asarray(distribution, dtype=float)
        if values.size == 0 or bins < 1:
            return []
        lo, hi = float(values.min()), float(values.max())
        width = (hi - lo) / bins
        if width > 0:
            index = np.minimum(np.floor((values - lo) / width).astype(int), bins - 1)
        else:
            index = np.zeros(values.size, dtype=int)
        counts = np.bincount(index, minlength=bins)
        total = values.size
        return [
            HistogramBin(lo + i * width, lo + (i + 1) * width, int(counts[i]), counts[i] / total)
            for i in range(bins)
        ]


def run_simulation(base_cost: float, variables: Sequence[SimulationVariable], iterations: int = 1000,
                   bins: int = 20, seed: Optional[int] = None) -> SimulationResult:
    """Run the simulator on its own, histogram included."""
    mc = MonteCarlo(iterations, seed)
    result = mc.run(base_cost, variables)
    result.histogram = MonteCarlo.histogram(result.distribution, bins)
    return result
