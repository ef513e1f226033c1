"""
Combination weights and the policies turning predicted losses into weights.

A policy maps an array of predicted losses (lower is better) to a
non-negative array summing to one, monotonically: a lower loss never gets a
smaller weight. Policies are looked up by name so the transform is a
configuration choice; new ones can be added with ``register_policy``.
"""

from collections.abc import Mapping
from typing import Callable, Dict, Iterable, Iterator, Tuple

import numpy as np

from metaforecast.models.candidates import CandidateModel

WEIGHT_TOLERANCE = 1e-6

WeightingPolicy = Callable[..., np.ndarray]

WEIGHTING_POLICIES: Dict[str, WeightingPolicy] = {}


def register_policy(name: str) -> Callable[[WeightingPolicy], WeightingPolicy]:
    """Decorator adding a loss-to-weight transform to the registry."""
    def decorator(func: WeightingPolicy) -> WeightingPolicy:
        WEIGHTING_POLICIES[name] = func
        return func
    return decorator


@register_policy("softmax")
def softmax_weights(losses: np.ndarray, temperature: float = 0.1) -> np.ndarray:
    """w_i proportional to exp(-loss_i / temperature)."""
    if temperature <= 0:
        raise ValueError(f"temperature must be positive, got {temperature}")
    logits = -np.asarray(losses, dtype=float) / temperature
    logits -= logits.max()
    weights = np.exp(logits)
    return weights / weights.sum()


@register_policy("inverse")
def inverse_loss_weights(losses: np.ndarray, power: float = 1.0, floor: float = 1e-12) -> np.ndarray:
    """w_i proportional to loss_i ** -power, with losses floored at ``floor``."""
    clipped = np.maximum(np.asarray(losses, dtype=float), floor)
    weights = clipped ** -power
    return weights / weights.sum()


@register_policy("best")
def best_model_weights(losses: np.ndarray) -> np.ndarray:
    """Unit weight on the lowest loss."""
    weights = np.zeros(len(losses))
    weights[int(np.argmin(losses))] = 1.0
    return weights


class ModelWeights(Mapping):
    """
    Validated mapping from candidate model to combination weight.

    Weights are finite, non-negative and sum to one within WEIGHT_TOLERANCE.
    """

    def __init__(self, weights: Mapping, tolerance: float = WEIGHT_TOLERANCE):
        parsed = {CandidateModel(k): float(v) for k, v in weights.items()}
        if not parsed:
            raise ValueError("ModelWeights needs at least one model")
        values = np.array(list(parsed.values()))
        if not np.all(np.isfinite(values)):
            raise ValueError(f"Weights must be finite: {parsed}")
        if np.any(values < 0):
            raise ValueError(f"Weights must be non-negative: {parsed}")
        if abs(values.sum() - 1.0) > tolerance:
            raise ValueError(f"Weights must sum to 1, got {values.sum():.8f}")
        self._weights = parsed

    @classmethod
    def from_losses(
        cls,
        losses: Mapping[CandidateModel, float],
        policy: str = "softmax",
        **policy_kwargs
    ) -> "ModelWeights":
        """Apply a registered policy to per-model predicted losses."""
        if policy not in WEIGHTING_POLICIES:
            raise ValueError(
                f"Unknown weighting policy '{policy}'; available: {sorted(WEIGHTING_POLICIES)}"
            )
        models = list(losses)
        weights = WEIGHTING_POLICIES[policy](np.array([losses[m] for m in models]), **policy_kwargs)
        return cls(dict(zip(models, weights)))

    @classmethod
    def uniform(cls, models: Iterable[CandidateModel]) -> "ModelWeights":
        models = list(models)
        return cls({m: 1.0 / len(models) for m in models})

    def __getitem__(self, model) -> float:
        return self._weights[CandidateModel(model)]

    def __iter__(self) -> Iterator[CandidateModel]:
        return iter(self._weights)

    def __len__(self) -> int:
        return len(self._weights)

    @property
    def models(self) -> Tuple[CandidateModel, ...]:
        return tuple(self._weights)

    @property
    def best(self) -> CandidateModel:
        return max(self._weights, key=self._weights.get)

    def restricted_to(self, models: Iterable[CandidateModel]) -> "ModelWeights":
        """
        Renormalise over a subset of models.

        Raises:
            ValueError: If the subset carries no weight
        """
        keep = {m: self._weights[m] for m in models if m in self._weights}
        total = sum(keep.values())
        if total <= 0:
            raise ValueError(f"No weight left on models {sorted(m.value for m in keep)}")
        return ModelWeights({m: w / total for m, w in keep.items()})

    def to_dict(self) -> Dict[str, float]:
        return {m.value: w for m, w in self._weights.items()}

    def __repr__(self) -> str:
        body = ", ".join(f"{m.value}={w:.4f}" for m, w in self._weights.items())
        return f"ModelWeights({body})"
