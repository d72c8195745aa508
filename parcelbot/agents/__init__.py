"""ParcelBot agents."""

from parcelbot.agents.base import AgentStatus, BaseAgent
from parcelbot.agents.bdi import ParcelAgent

__all__ = ["AgentStatus", "BaseAgent", "ParcelAgent"]
