"""Exception hierarchy for ParcelBot.

Unreachable targets are *not* errors: planners and the spatial layer return
``None`` (or an empty plan) for them. Exceptions are reserved for conditions
the caller has to handle explicitly.
"""

from __future__ import annotations

from typing import Optional


class ParcelBotError(Exception):
    """Root of every error raised by the package."""


class ConfigError(ParcelBotError, ValueError):
    """A settings file or a server configuration value could not be used."""


class GridModelError(ParcelBotError, ValueError):
    """Two consecutive tiles of a path are not 4-neighbours."""


class SolverError(ParcelBotError):
    """The external PDDL solver failed or returned an unusable plan."""


class PlanExecutionError(ParcelBotError):
    """A plan stopped on an action that could not be completed.

    Attributes:
        action: The action that failed.
        reason: ``"blocked"`` when the retry budget ran out on a blocked move,
            ``"rejected"`` when the environment refused a non-retryable action.
    """

    def __init__(self, action: Optional[str], reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(f"action {action!r} failed: {reason}")
