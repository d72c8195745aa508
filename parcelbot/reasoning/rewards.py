"""Reward decay model and reward/distance normalizations.

A strategy folds a (reward, distance) pair into one comparable value:

* ``linear``        — ``(r * w_r) / (d * w_d)``
* ``aggressive``    — ``r / d ** w_a``
* ``sophisticated`` — ``r ** s_r / d ** s_d``

Distances below one hop are clamped to one before normalizing.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Callable, Dict, Optional

from parcelbot.config import RewardWeights


class Strategy(Enum):
    LINEAR = "linear"
    AGGRESSIVE = "aggressive"
    SOPHISTICATED = "sophisticated"


def decayed_reward(reward: float, elapsed_s: float, decay_interval_s: float) -> float:
    """Reward left after *elapsed_s* seconds: ``max(0, R - floor(t / τ))``.

    An infinite decay interval means the reward never decays.
    """
    if not math.isfinite(decay_interval_s) or decay_interval_s <= 0:
        return max(0.0, reward)
    return max(0.0, reward - math.floor(elapsed_s / decay_interval_s))


def _linear(reward: float, distance: float, w: RewardWeights) -> float:
    return (reward * w.reward_weight) / (distance * w.distance_weight)


def _aggressive(reward: float, distance: float, w: RewardWeights) -> float:
    return reward / distance ** w.aggressive_distance_weight


def _sophisticated(reward: float, distance: float, w: RewardWeights) -> float:
    return reward ** w.sophisticated_reward_weight / distance ** w.sophisticated_distance_weight


_NORMALIZERS: Dict[Strategy, Callable[[float, float, RewardWeights], float]] = {
    Strategy.LINEAR: _linear,
    Strategy.AGGRESSIVE: _aggressive,
    Strategy.SOPHISTICATED: _sophisticated,
}


def normalize(
    strategy: Strategy,
    reward: float,
    distance: float,
    weights: Optional[RewardWeights] = None,
) -> float:
    """Score a reward that takes *distance* hops to cash in.

    Returns 0 for non-positive rewards and for unreachable (infinite)
    distances.
    """
    if reward <= 0 or not math.isfinite(distance):
        return 0.0
    return _NORMALIZERS[strategy](reward, max(distance, 1.0), weights or RewardWeights())
