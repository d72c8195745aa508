"""ParcelAgent — the belief/desire/intention deliberation loop.

Perception events from the gateway only update beliefs and revise the
active intention. Planning happens exclusively in :meth:`ParcelAgent.step`,
which runs every two movement durations once self-state, map and server
configuration have arrived. At most one plan runs at a time: a new plan is
only started after the previous one has finished or been stopped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from parcelbot.agents.base import BaseAgent
from parcelbot.beliefs import Belief, BeliefStore
from parcelbot.config import AgentSettings, ServerConfig
from parcelbot.errors import PlanExecutionError
from parcelbot.gateway.base import EnvironmentGateway, GatewayEvent
from parcelbot.planning.executor import PlanExecutor, StepEvent, StepStatus
from parcelbot.planning.pddl import OnlineSolver, PddlPlanner
from parcelbot.planning.planner import PlanResult, Planner
from parcelbot.reasoning.desires import DesireGenerator
from parcelbot.reasoning.intentions import Family, Intention, IntentionManager
from parcelbot.spatial.index import build_index
from parcelbot.team.negotiation import NegotiationProtocol
from parcelbot.world import Action, AgentInfo, GridMap, Parcel

logger = logging.getLogger("ParcelBot.Agents.Bdi")


class ParcelAgent(BaseAgent):
    """A delivery agent driven by one :class:`EnvironmentGateway`.

    Example::

        agent = ParcelAgent(gateway, load_settings("agent.yaml"))
        await agent.start()
        await gateway.connect()
        ...
        await agent.stop()
    """

    name = "parcel_agent"

    def __init__(
        self,
        gateway: EnvironmentGateway,
        settings: Optional[AgentSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or AgentSettings()
        super().__init__(name=self.settings.name, poll_s=self.settings.readiness_poll_s)
        self.gateway = gateway
        self._clock = clock
        self.beliefs = BeliefStore(self.settings.teammates, self.settings.max_agent_logs)
        self.intentions = IntentionManager(courier_range=self.settings.courier_exploration_range)
        self.desires = DesireGenerator(self.settings, clock)
        self.planner = self._make_planner()
        self.negotiation = NegotiationProtocol(
            self.beliefs,
            gateway,
            self.intentions,
            self.settings,
            stop_plan=self.stop_current_plan,
            clock=clock,
        )
        self.events: List[StepEvent] = []
        self._plan_task: Optional[asyncio.Task] = None  # type: ignore[type-arg]
        self._plan_lock = asyncio.Lock()
        self._abort = False
        self._background: Set[asyncio.Task] = set()  # type: ignore[type-arg]
        self._subscriptions = [
            gateway.on(GatewayEvent.YOU, self._on_you),
            gateway.on(GatewayEvent.PARCELS, self._on_parcels),
            gateway.on(GatewayEvent.AGENTS, self._on_agents),
            gateway.on(GatewayEvent.MAP, self._on_map),
            gateway.on(GatewayEvent.CONFIG, self._on_config),
            gateway.on(GatewayEvent.MESSAGE, self._on_message),
        ]

    def _make_planner(self):
        fallback = Planner(self.settings)
        if self.settings.planner == "pddl":
            solver = OnlineSolver(self.settings.solver_url, self.settings.solver_timeout_s)
            return PddlPlanner(solver, fallback)
        return fallback

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ready(self) -> bool:
        return self.beliefs.ready

    def interval_s(self) -> float:
        return 2 * self.beliefs.server_config.movement_duration_s

    @property
    def plan_running(self) -> bool:
        return self._plan_task is not None and not self._plan_task.done()

    async def stop(self) -> None:
        await super().stop()
        if self.plan_running:
            self._abort = True
            self._plan_task.cancel()
            try:
                await self._plan_task
            except asyncio.CancelledError:
                pass
        for task in list(self._background):
            task.cancel()
        for sub_id in self._subscriptions:
            self.gateway.off(sub_id)
        self._subscriptions = []

    def health(self) -> Dict[str, Any]:
        report = super().health()
        role = self.beliefs.role
        current = self.intentions.current
        report["role"] = role.value if role is not None else None
        report["intention"] = current.describe() if current is not None else None
        return report

    # ------------------------------------------------------------------
    # Perception
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable[Any]) -> None:
        """Run *coro* in the background on the current event loop."""
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop; dropping background work")
            return
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task) -> None:  # type: ignore[type-arg]
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._record_error(f"background task failed: {task.exception()}")

    def _on_you(self, me: AgentInfo) -> None:
        self.beliefs.set(Belief.ID, me.id)
        self.beliefs.set(Belief.NAME, me.name)
        self.beliefs.set(Belief.SCORE, me.score)
        self.beliefs.position = me.position
        self.beliefs.record_visit(me.position, self._clock())
        if self.beliefs.teammates:
            self._spawn(self.negotiation.share_position(me.position))
        self._revise()

    def _on_parcels(self, parcels: List[Parcel]) -> None:
        self.beliefs.parcels = parcels
        self._revise()

    def _on_agents(self, agents: List[AgentInfo]) -> None:
        self.beliefs.update_agents(agents, self._clock())
        self._revise()

    def _on_map(self, grid: GridMap) -> None:
        self.beliefs.set(Belief.MAP, grid)
        self.beliefs.set(Belief.INDEX, build_index(grid))

    def _on_config(self, raw: Dict[str, Any]) -> None:
        self.beliefs.set(Belief.SERVER_CONFIG, ServerConfig.from_environment(raw))

    def _on_message(self, sender_id: str, sender_name: str, payload: str) -> None:
        self._spawn(self.negotiation.handle(sender_id, payload))

    def _revise(self) -> None:
        dropped = self.intentions.revise(self.beliefs)
        if dropped is None:
            return
        if self.plan_running:
            self._abort = True
        if dropped.family is Family.PICKUP and self.beliefs.teammates:
            self._spawn(self.negotiation.book([]))

    # ------------------------------------------------------------------
    # Deliberation
    # ------------------------------------------------------------------

    async def step(self) -> None:
        """One deliberation cycle."""
        await self.negotiation.check_timeout()
        self._revise()
        if self.plan_running and not self._abort:
            return

        async with self._plan_lock:
            if self.plan_running or self.intentions.current is not None:
                await self._stop_locked()
            await self.negotiation.offer_help_if_idle()

            for desire in self.desires.generate(self.beliefs):
                result = await self.planner.plan(desire, self.beliefs)
                if result:
                    await self._start_plan(result)
                    return
            logger.debug("No viable plan this tick")

    async def stop_current_plan(self) -> None:
        """Abort the running plan (if any) and drop the active intention."""
        async with self._plan_lock:
            await self._stop_locked()

    async def _stop_locked(self) -> None:
        if self.plan_running:
            self._abort = True
            await asyncio.wait({self._plan_task})
        self._abort = False
        dropped = self.intentions.drop()
        if dropped is not None and dropped.family is Family.PICKUP and self.beliefs.teammates:
            await self.negotiation.book([])

    async def _start_plan(self, result: PlanResult) -> None:
        await self._commit(result.intention)
        logger.info("Executing %s", result.describe())
        self._abort = False
        self._plan_task = asyncio.create_task(self._execute(result, allow_replan=True))
        self._plan_task.add_done_callback(self._plan_done)

    def _plan_done(self, task: asyncio.Task) -> None:  # type: ignore[type-arg]
        if not task.cancelled() and task.exception() is not None:
            self._record_error(f"plan task failed: {task.exception()}")

    async def _commit(self, intention: Intention) -> None:
        """Adopt *intention* and tell teammates what they need to know."""
        self.intentions.adopt(intention)
        if not self.beliefs.teammates:
            return
        if intention.family is Family.PICKUP:
            await self.negotiation.book(intention.parcel_ids())
        if self.beliefs.collaborating:
            await self.negotiation.share_intention(intention.kind.value)
        elif self.beliefs.attempting_to_help and intention.family is not Family.MOVE:
            await self.negotiation.announce_availability(False)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _is_blocked(self, action: Action) -> bool:
        position = self.beliefs.position
        if position is None:
            return False
        return position.step(action) in self.beliefs.obstacles()

    def _on_step(self, event: StepEvent) -> None:
        self.events.append(event)
        if event.status is StepStatus.OK and event.action is Action.PUTDOWN:
            self.negotiation.record_progress()

    def _executor(self) -> PlanExecutor:
        return PlanExecutor(
            self.gateway,
            is_blocked=self._is_blocked,
            should_abort=lambda: self._abort,
            max_retries=self.settings.max_block_retries,
            backoff_s=self.settings.wait_for_agent_move_on_s,
            wait_s=self.beliefs.server_config.movement_duration_s,
        )

    async def _execute(self, result: PlanResult, allow_replan: bool) -> None:
        try:
            await self._executor().run(result.plan, on_event=self._on_step)
        except PlanExecutionError as exc:
            logger.warning("Plan for %s failed: %s", result.intention.describe(), exc)
            await self._recover(result.intention, allow_replan)
            return
        except Exception as exc:
            self._record_error(f"plan for {result.intention.describe()} failed: {exc}")
            await self._recover(result.intention, allow_replan=False)
            return
        if not self._abort and self.intentions.current == result.intention:
            self.intentions.drop()

    async def _recover(self, intention: Intention, allow_replan: bool) -> None:
        """Drop a failed intention and try planning it once more."""
        if self.intentions.current == intention:
            self.intentions.drop()
        if intention.family is Family.PICKUP and self.beliefs.teammates:
            await self.negotiation.book([])
        if not allow_replan or self._abort:
            return
        retry = await self.planner.plan(intention, self.beliefs)
        if not retry:
            return
        logger.info("Replanning %s", retry.describe())
        await self._commit(retry.intention)
        await self._execute(retry, allow_replan=False)
