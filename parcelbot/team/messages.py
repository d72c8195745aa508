"""
Teammate message envelope.

Every message between teammates is JSON text of the form
``{"type": <type>, "data": {...}}``. Types::

    available_to_help      -- sender is idle and offers to become a courier
    help_here              -- accept the offer; data carries the midpoint
    not_available_to_help  -- withdraw / reset any collaboration
    position_update        -- sender's current tile
    intention_update       -- sender's current intention kind
    book_parcel            -- parcel ids the sender is about to pick up

Text that is not valid JSON, or names an unknown type, parses to ``None``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from parcelbot.world import Position

logger = logging.getLogger("ParcelBot.Team.Messages")


class MessageType(Enum):
    AVAILABLE_TO_HELP = "available_to_help"
    HELP_HERE = "help_here"
    NOT_AVAILABLE_TO_HELP = "not_available_to_help"
    POSITION_UPDATE = "position_update"
    INTENTION_UPDATE = "intention_update"
    BOOK_PARCEL = "book_parcel"


@dataclass
class TeamMessage:
    """One message between teammates.

    Attributes:
        type: Message type.
        data: JSON-serialisable payload.
    """

    type: MessageType
    data: Dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Factory methods
    # ------------------------------------------------------------------
    @classmethod
    def availability(cls, available: bool, position: Position) -> TeamMessage:
        kind = MessageType.AVAILABLE_TO_HELP if available else MessageType.NOT_AVAILABLE_TO_HELP
        return cls(kind, {"position": position.to_dict()})

    @classmethod
    def help_here(cls, midpoint: Position) -> TeamMessage:
        return cls(MessageType.HELP_HERE, {"midpoint": midpoint.to_dict()})

    @classmethod
    def position_update(cls, position: Position) -> TeamMessage:
        return cls(MessageType.POSITION_UPDATE, {"position": position.to_dict()})

    @classmethod
    def intention_update(cls, intention_kind: str) -> TeamMessage:
        return cls(MessageType.INTENTION_UPDATE, {"intentionType": intention_kind})

    @classmethod
    def book_parcel(cls, parcel_ids: List[str]) -> TeamMessage:
        return cls(MessageType.BOOK_PARCEL, {"parcelsIds": list(parcel_ids)})

    # ------------------------------------------------------------------
    # Payload accessors
    # ------------------------------------------------------------------
    def position(self, key: str = "position") -> Optional[Position]:
        """Position stored under *key*, or None if absent/malformed."""
        raw = self.data.get(key)
        if not isinstance(raw, dict):
            return None
        try:
            return Position.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            return None

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------
    def to_json(self) -> str:
        return json.dumps({"type": self.type.value, "data": self.data})

    @classmethod
    def from_json(cls, text: str) -> Optional[TeamMessage]:
        """Parse message text; returns None for anything unusable."""
        try:
            raw = json.loads(text)
        except (TypeError, ValueError):
            logger.debug("Dropping unparseable message: %r", text)
            return None
        if not isinstance(raw, dict):
            return None
        try:
            kind = MessageType(raw.get("type"))
        except ValueError:
            logger.debug("Ignoring message of unknown type %r", raw.get("type"))
            return None
        data = raw.get("data")
        return cls(kind, data if isinstance(data, dict) else {})
