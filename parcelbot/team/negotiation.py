"""Explorer/courier negotiation between teammates.

Two agents agree on a split of work with a three-message handshake:

1. An idle agent offers help (``available_to_help``).
2. A teammate that needs help becomes the **explorer**, picks a midpoint
   between the two agents and answers ``help_here``.
3. The offering agent, if still idle, becomes the **courier** and shuttles
   parcels from the midpoint to delivery tiles; otherwise it answers
   ``not_available_to_help``, which resets both sides.

Role assignment only looks at local state when a message arrives, so two
agents offering help at the same time can end up with the same role. The
collaboration timeout clears such states.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Awaitable, Callable, Dict, List, Optional

from parcelbot.beliefs import Belief, BeliefStore, Role
from parcelbot.config import AgentSettings
from parcelbot.gateway.base import EnvironmentGateway
from parcelbot.reasoning.intentions import Family, IntentionManager
from parcelbot.spatial.geometry import can_reach, compute_midpoint
from parcelbot.team.messages import MessageType, TeamMessage
from parcelbot.world import Position, TileKind

logger = logging.getLogger("ParcelBot.Team.Negotiation")


async def _no_plan_to_stop() -> None:
    return None


class NegotiationProtocol:
    """Message handling and role bookkeeping for one agent.

    Args:
        beliefs: The agent's belief store (roles and midpoint live there).
        gateway: Used to ``say`` messages to teammates.
        intentions: Read to decide whether the agent is busy.
        settings: Timeout and jitter settings.
        stop_plan: Coroutine function that aborts the running plan.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        beliefs: BeliefStore,
        gateway: EnvironmentGateway,
        intentions: IntentionManager,
        settings: AgentSettings,
        stop_plan: Callable[[], Awaitable[None]] = _no_plan_to_stop,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.beliefs = beliefs
        self.gateway = gateway
        self.intentions = intentions
        self.settings = settings
        self.stop_plan = stop_plan
        self._clock = clock
        self.last_collaboration_time: Optional[float] = None
        self.next_request_time: float = 0.0
        self._handlers: Dict[MessageType, Callable[[str, TeamMessage], Awaitable[None]]] = {
            MessageType.AVAILABLE_TO_HELP: self._on_available,
            MessageType.HELP_HERE: self._on_help_here,
            MessageType.NOT_AVAILABLE_TO_HELP: self._on_not_available,
            MessageType.POSITION_UPDATE: self._on_position_update,
            MessageType.INTENTION_UPDATE: self._on_intention_update,
            MessageType.BOOK_PARCEL: self._on_book_parcel,
        }

    # ------------------------------------------------------------------
    # Outgoing
    # ------------------------------------------------------------------

    def _recipients(self) -> List[str]:
        me = self.beliefs.agent_id
        return [t for t in self.beliefs.teammates if t != me]

    async def send(self, to_id: str, message: TeamMessage) -> bool:
        return await self.gateway.say(to_id, message.to_json())

    async def broadcast(self, message: TeamMessage) -> None:
        """Send *message* to every declared teammate."""
        for teammate in self._recipients():
            await self.send(teammate, message)

    async def announce_availability(self, available: bool) -> None:
        """Offer help (``True``) or withdraw from any collaboration (``False``)."""
        position = self.beliefs.position
        if position is None or self.beliefs.agent_id is None:
            return
        await self.broadcast(TeamMessage.availability(available, position))
        if available:
            self.beliefs.attempting_to_help = True
        else:
            self.end_collaboration()

    async def share_position(self, position: Position) -> None:
        await self.broadcast(TeamMessage.position_update(position))

    async def share_intention(self, kind: str) -> None:
        await self.broadcast(TeamMessage.intention_update(kind))

    async def book(self, parcel_ids: List[str]) -> None:
        """Tell teammates which parcels we are going for (empty list un-books)."""
        await self.broadcast(TeamMessage.book_parcel(parcel_ids))

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def needs_help(self) -> bool:
        """Can reach a spawn tile, is not collaborating and is not mid-delivery."""
        index = self.beliefs.index
        me = self.beliefs.position
        if index is None or me is None or self.beliefs.collaborating:
            return False
        if not can_reach(index, me, TileKind.SPAWN):
            return False
        current = self.intentions.current
        return current is None or current.family is not Family.DELIVER

    def should_offer_help(self) -> bool:
        """Idle, near spawn tiles and past the jittered request time."""
        index = self.beliefs.index
        me = self.beliefs.position
        if index is None or me is None or not self._recipients():
            return False
        if self.beliefs.attempting_to_help or self.beliefs.collaborating:
            return False
        current = self.intentions.current
        if current is not None and current.family is not Family.MOVE:
            return False
        if self._clock() < self.next_request_time:
            return False
        return can_reach(index, me, TileKind.SPAWN)

    async def offer_help_if_idle(self) -> bool:
        """Send ``available_to_help`` when :meth:`should_offer_help` allows it."""
        if not self.should_offer_help():
            return False
        low, high = self.settings.request_jitter_s
        self.next_request_time = self._clock() + random.uniform(low, high)
        await self.announce_availability(True)
        return True

    # ------------------------------------------------------------------
    # Collaboration clock
    # ------------------------------------------------------------------

    def start_collaboration(self, role: Role, midpoint: Position) -> None:
        self.beliefs.collaborating = True
        self.beliefs.midpoint = midpoint
        self.beliefs.role = role
        self.last_collaboration_time = self._clock()
        logger.info("Collaborating as %s, midpoint (%d,%d)", role.value, midpoint.x, midpoint.y)

    def end_collaboration(self) -> None:
        if self.beliefs.role is not None:
            logger.info("Collaboration as %s ended", self.beliefs.role.value)
        self.beliefs.reset_collaboration()
        self.last_collaboration_time = None

    def record_progress(self) -> None:
        """A handoff or delivery happened; restart the timeout."""
        if self.beliefs.collaborating:
            self.last_collaboration_time = self._clock()

    async def check_timeout(self) -> bool:
        """Withdraw if the collaboration has been idle for too long."""
        if not self.beliefs.collaborating or self.last_collaboration_time is None:
            return False
        if self._clock() - self.last_collaboration_time <= self.settings.collaboration_timeout_s:
            return False
        logger.info("Collaboration timed out")
        await self.announce_availability(False)
        return True

    # ------------------------------------------------------------------
    # Incoming
    # ------------------------------------------------------------------

    async def handle(self, sender_id: str, text: str) -> bool:
        """Process one incoming message.

        Returns:
            True if the message was from a teammate and understood.
        """
        if sender_id not in self.beliefs.teammates:
            logger.debug("Ignoring message from non-teammate %s", sender_id)
            return False
        message = TeamMessage.from_json(text)
        if message is None:
            return False
        await self._handlers[message.type](sender_id, message)
        return True

    async def _on_available(self, sender_id: str, message: TeamMessage) -> None:
        if self.beliefs.collaborating:
            return
        sender_pos = message.position() or self.beliefs.teammate_positions().get(sender_id)
        if sender_pos is not None:
            self.beliefs.set(Belief.AVAILABLE_TEAMMATE_POSITION, sender_pos)
        midpoint = None
        if self.needs_help() and sender_pos is not None:
            midpoint = compute_midpoint(self.beliefs.index, self.beliefs.position, sender_pos)
        if midpoint is None:
            await self.announce_availability(False)
            return
        self.start_collaboration(Role.EXPLORER, midpoint)
        await self.stop_plan()
        await self.send(sender_id, TeamMessage.help_here(midpoint))

    async def _on_help_here(self, sender_id: str, message: TeamMessage) -> None:
        if self.beliefs.collaborating:
            return
        midpoint = message.position("midpoint")
        current = self.intentions.current
        idle = current is None or current.family is Family.MOVE
        if midpoint is None or not idle:
            await self.announce_availability(False)
            return
        await self.stop_plan()
        self.start_collaboration(Role.COURIER, midpoint)

    async def _on_not_available(self, sender_id: str, message: TeamMessage) -> None:
        self.end_collaboration()

    async def _on_position_update(self, sender_id: str, message: TeamMessage) -> None:
        position = message.position()
        if position is not None:
            self.beliefs.set_teammate_position(sender_id, position)

    async def _on_intention_update(self, sender_id: str, message: TeamMessage) -> None:
        kind = message.data.get("intentionType")
        if isinstance(kind, str):
            self.beliefs.set_teammate_intention(sender_id, kind)

    async def _on_book_parcel(self, sender_id: str, message: TeamMessage) -> None:
        ids = message.data.get("parcelsIds") or []
        if isinstance(ids, list):
            self.beliefs.book_for(sender_id, [str(i) for i in ids])
