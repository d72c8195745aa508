"""Desires, intentions and the reward model."""

from parcelbot.reasoning.desires import DesireGenerator
from parcelbot.reasoning.intentions import Family, Intention, IntentionKind, IntentionManager
from parcelbot.reasoning.rewards import Strategy, decayed_reward, normalize

__all__ = [
    "DesireGenerator",
    "Family",
    "Intention",
    "IntentionKind",
    "IntentionManager",
    "Strategy",
    "decayed_reward",
    "normalize",
]
