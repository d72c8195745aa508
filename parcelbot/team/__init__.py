"""Teammate messaging and explorer/courier negotiation."""

from parcelbot.team.messages import MessageType, TeamMessage
from parcelbot.team.negotiation import NegotiationProtocol

__all__ = ["MessageType", "NegotiationProtocol", "TeamMessage"]
