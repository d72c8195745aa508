"""Agent settings and environment configuration.

Two kinds of configuration reach an agent:

* :class:`AgentSettings` — tuning parameters read once from a YAML file
  (:func:`load_settings`) and passed explicitly to the agent.
* :class:`ServerConfig` — parameters announced by the environment at
  connection time, cleaned up by :func:`sanitize_server_config`.

Durations are stored in seconds throughout.
"""

from __future__ import annotations

import functools
import logging
import math
import re
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Tuple

import yaml

from parcelbot.errors import ConfigError

logger = logging.getLogger("ParcelBot.Config")

STRATEGIES = ("linear", "aggressive", "sophisticated")
PLANNERS = ("handlers", "pddl")


@dataclass
class RewardWeights:
    """Exponents and weights used by the reward normalizations."""

    reward_weight: float = 1.0
    distance_weight: float = 1.5
    aggressive_distance_weight: float = 1.17
    sophisticated_reward_weight: float = 0.7
    sophisticated_distance_weight: float = 0.5

    @classmethod
    def from_dict(cls, d: dict) -> RewardWeights:
        known = {f.name for f in fields(cls)}
        return cls(**{k: float(v) for k, v in d.items() if k in known})


@dataclass
class AgentSettings:
    """Tuning knobs for a single agent.

    Example::

        settings = load_settings("config/agent.yaml")
        agent = ParcelAgent(gateway, settings)
    """

    name: str = "parcelbot"
    strategy: str = "linear"
    planner: str = "handlers"
    solver_url: str = "https://solver.planning.domains/solve"
    solver_timeout_s: float = 30.0
    teammates: List[str] = field(default_factory=list)
    weights: RewardWeights = field(default_factory=RewardWeights)
    max_block_retries: int = 3
    wait_for_agent_move_on_s: float = 1.0
    max_distance_exploration: int = 30
    fallback_min_distance: int = 3
    collaboration_timeout_s: float = 60.0
    request_jitter_s: Tuple[float, float] = (0.0, 1.0)
    courier_exploration_range: int = 7
    max_agent_logs: int = 4
    readiness_poll_s: float = 1.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> AgentSettings:
        """Build settings from a validated mapping; unknown keys are ignored."""
        d = dict(d)
        weights = RewardWeights.from_dict(d.pop("weights", None) or {})
        jitter = d.pop("request_jitter_s", None)
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in d.items() if k in known}
        kwargs["teammates"] = [str(t) for t in kwargs.get("teammates", [])]
        if jitter is not None:
            kwargs["request_jitter_s"] = (float(jitter[0]), float(jitter[1]))
        return cls(weights=weights, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["request_jitter_s"] = list(self.request_jitter_s)
        return data


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

_POSITIVE_INT_KEYS = (
    "max_distance_exploration",
    "fallback_min_distance",
    "courier_exploration_range",
    "max_agent_logs",
)


def validate_settings(config: dict) -> Tuple[bool, List[str]]:
    """Validate a loaded settings mapping.

    Returns:
        A ``(is_valid, errors)`` tuple. ``is_valid`` is ``True`` only when
        ``errors`` is empty.
    """
    if not isinstance(config, dict):
        return False, ["Settings must be a mapping (check YAML syntax)"]

    errors: List[str] = []

    strategy = config.get("strategy", "linear")
    if strategy not in STRATEGIES:
        errors.append(f"Unknown strategy '{strategy}' (expected one of {', '.join(STRATEGIES)})")

    planner = config.get("planner", "handlers")
    if planner not in PLANNERS:
        errors.append(f"Unknown planner '{planner}' (expected one of {', '.join(PLANNERS)})")

    teammates = config.get("teammates", [])
    if not isinstance(teammates, list):
        errors.append("'teammates' must be a list of agent ids")

    weights = config.get("weights")
    if weights is not None and not isinstance(weights, dict):
        errors.append("'weights' must be a mapping")

    retries = config.get("max_block_retries", 3)
    if not isinstance(retries, int) or retries < 0:
        errors.append("'max_block_retries' must be a non-negative integer")

    for key in _POSITIVE_INT_KEYS:
        value = config.get(key)
        if value is not None and (not isinstance(value, int) or value < 1):
            errors.append(f"'{key}' must be a positive integer")

    jitter = config.get("request_jitter_s")
    if jitter is not None:
        if not isinstance(jitter, (list, tuple)) or len(jitter) != 2 or jitter[0] > jitter[1]:
            errors.append("'request_jitter_s' must be a [low, high] pair with low <= high")

    return len(errors) == 0, errors


@functools.lru_cache(maxsize=None)
def load_settings(path: str) -> AgentSettings:
    """Read, validate and build :class:`AgentSettings` from a YAML file.

    The result is cached per path, so the file is read once per process.

    Raises:
        ConfigError: if the file content does not validate.
    """
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    ok, errors = validate_settings(raw)
    if not ok:
        for msg in errors:
            logger.error("Settings validation error: %s", msg)
        raise ConfigError(f"{path}: " + "; ".join(errors))
    logger.debug("Loaded settings from %s", path)
    return AgentSettings.from_dict(raw)


# ---------------------------------------------------------------------------
# Server configuration
# ---------------------------------------------------------------------------

_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)\s*$")

# keys whose values are textual durations
DURATION_KEYS = ("PARCELS_GENERATION_INTERVAL", "PARCEL_DECADING_INTERVAL", "RANDOM_AGENT_SPEED")
# keys whose values are numeric milliseconds
MILLISECOND_KEYS = ("MOVEMENT_DURATION", "CLOCK")


def parse_duration(value: Any, clock_s: float) -> float:
    """Convert an environment duration to seconds.

    Accepts ``"<n>ms"``, ``"<n>s"``, ``"<n>m"``, ``"<n>h"``, ``"infinite"``,
    ``"frame"`` (one clock tick) or a bare number of milliseconds.

    Raises:
        ConfigError: on an unrecognised unit.
    """
    if isinstance(value, (int, float)):
        return float(value) / 1000.0
    text = str(value).strip().lower()
    if text == "infinite":
        return math.inf
    if text == "frame":
        return clock_s
    match = _DURATION_RE.match(text)
    if match is None:
        raise ConfigError(f"Unrecognised duration {value!r}")
    return float(match.group(1)) * _UNIT_SECONDS[match.group(2)]


def sanitize_server_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of *raw* with every duration converted to seconds."""
    clean = dict(raw)
    for key in MILLISECOND_KEYS:
        if key in clean:
            clean[key] = float(clean[key]) / 1000.0
    clock_s = clean.get("CLOCK", 0.05)
    for key in DURATION_KEYS:
        if key in clean:
            clean[key] = parse_duration(clean[key], clock_s)
    return clean


@dataclass
class ServerConfig:
    """Environment parameters an agent needs to reason about time and range."""

    movement_duration_s: float = 0.5
    parcel_decay_interval_s: float = 1.0
    parcels_observation_distance: int = 5
    agents_observation_distance: int = 5
    clock_s: float = 0.05
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_environment(cls, raw: Dict[str, Any]) -> ServerConfig:
        """Sanitize the environment's mapping and pick out the known values."""
        clean = sanitize_server_config(raw)
        return cls(
            movement_duration_s=float(clean.get("MOVEMENT_DURATION", 0.5)),
            parcel_decay_interval_s=float(clean.get("PARCEL_DECADING_INTERVAL", 1.0)),
            parcels_observation_distance=int(clean.get("PARCELS_OBSERVATION_DISTANCE", 5)),
            agents_observation_distance=int(clean.get("AGENTS_OBSERVATION_DISTANCE", 5)),
            clock_s=float(clean.get("CLOCK", 0.05)),
            raw=clean,
        )

    def get(self, name: str, default: Any = None) -> Any:
        """Look up a sanitized value by the environment's key name."""
        return self.raw.get(name, default)
