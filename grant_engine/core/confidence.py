"""
Confidence scoring.

The only path from raw evidence to a 0-100 confidence value. Every analytical
component routes its confidence through ConfidenceScorer so values are
comparable across extraction, eligibility, compliance and pattern mining.

Evidence kinds and their mappings (all monotone non-decreasing):

    corroboration   count of independent supporting excerpts
                    100 * (1 - 0.5 ** count)          1 -> 50, 2 -> 75, 3 -> 87.5
    exactness       rule/field match certainty in [0, 1]
                    100 * exactness
    sample size     number of contributing examples n, policy minimum m
                    100 * n / (n + m), capped at LOW_SAMPLE_CEILING when n < m
    completeness    present / required profile or document fields
                    100 * present / required
    importance      1-10 requirement importance
                    10 * importance
    frequency       0-1 share of examples
                    100 * frequency

Importance and frequency keep their native scales on the models; the mappings
above exist for the places that must rank them against confidences.
"""

import math
from typing import Iterable, Optional, Sequence


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    if value is None or math.isnan(value):
        return low
    return max(low, min(high, value))


class ConfidenceScorer:
    """Maps heterogeneous evidence strengths onto the unified [0, 100] scale."""

    LOW_SAMPLE_CEILING = 40.0
    EMPTY_EXTRACTION_CONFIDENCE = 20.0   # text was read, nothing matched
    INFERENCE_DISCOUNT = 0.85            # deep extraction: inference adds uncertainty
    PRECISION = 1                        # decimal places on emitted values

    def _emit(self, value: float) -> float:
        return round(clamp(value), self.PRECISION)

    def from_corroboration(self, count: int) -> float:
        if count <= 0:
            return 0.0
        return self._emit(100.0 * (1.0 - 0.5 ** count))

    def from_exactness(self, exactness: float) -> float:
        return self._emit(100.0 * clamp(exactness, 0.0, 1.0))

    def from_sample_size(self, sample_size: int, minimum: int) -> float:
        if sample_size <= 0:
            return 0.0
        minimum = max(1, minimum)
        value = 100.0 * sample_size / (sample_size + minimum)
        if sample_size < minimum:
            value = min(value, self.LOW_SAMPLE_CEILING)
        return self._emit(value)

    def from_completeness(self, present: int, required: int) -> float:
        if required <= 0:
            return 100.0
        return self._emit(100.0 * present / required)

    def from_importance(self, importance: int) -> float:
        return self._emit(10.0 * clamp(importance, 1, 10))

    def from_frequency(self, frequency: float) -> float:
        return self._emit(100.0 * clamp(frequency, 0.0, 1.0))

    def combine(self, values: Sequence[float], weights: Optional[Sequence[float]] = None) -> float:
        """Weighted mean of values already on the [0, 100] scale."""
        values = list(values)
        if not values:
            return 0.0
        if weights is None:
            weights = [1.0] * len(values)
        total_weight = sum(weights)
        if total_weight <= 0:
            return 0.0
        return self._emit(sum(v * w for v, w in zip(values, weights)) / total_weight)

    def product(self, values: Iterable[float]) -> float:
        """Joint confidence of independent judgments (each on [0, 100])."""
        result = 1.0
        for value in values:
            result *= clamp(value) / 100.0
        return self._emit(100.0 * result)

    def cap(self, value: float, ceiling: float) -> float:
        return self._emit(min(value, ceiling))

    def discount(self, value: float, factor: float) -> float:
        return self._emit(value * clamp(factor, 0.0, 1.0))

    # -------------------------------------------------------------------------
    # Composite scores used by the analytical components
    # -------------------------------------------------------------------------

    def extraction_item(self, corroborating_excerpts: int, exactness: float) -> float:
        """Confidence of one extracted requirement or criterion."""
        return self.combine(
            [self.from_corroboration(corroborating_excerpts), self.from_exactness(exactness)],
            [1.0, 2.0],
        )

    def extraction_aggregate(self, item_confidences: Sequence[float], inferred: bool) -> float:
        """
        Aggregate confidence of an extraction pass.

        Deep (inferred) passes are discounted so they always report strictly
        lower confidence than a basic pass over the same evidence.
        """
        if item_confidences:
            value = self.combine(item_confidences)
        else:
            value = self.EMPTY_EXTRACTION_CONFIDENCE
        if inferred:
            value = self.discount(value, self.INFERENCE_DISCOUNT)
        return value

    def priority(self, importance: int, confidence: float) -> float:
        """Rank requirements by importance and certainty on one scale."""
        return self.combine([self.from_importance(importance), clamp(confidence)], [2.0, 1.0])


# Shared instance. The scorer holds no state.
scorer = ConfidenceScorer()
