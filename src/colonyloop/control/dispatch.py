from __future__ import annotations

import logging
from dataclasses import dataclass, field

from colonyloop.control.constants import STATE_SPAWNING
from colonyloop.control.memory import MemoryStore
from colonyloop.control.roles import AgentContext, Role, RoleTable, default_role_table
from colonyloop.control.settings import ControlSettings
from colonyloop.control.targeting import find_recycle_facility
from colonyloop.sim.core import OK, AgentState, Simulation

LOGGER = logging.getLogger("colonyloop.dispatch")

OUTCOME_SPAWNING = "spawning"
OUTCOME_UNKNOWN_ROLE = "unknown_role"
OUTCOME_RECYCLED = "recycled"
OUTCOME_RAN = "ran"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class AgentStepResult:
    name: str
    outcome: str
    error: str | None = None


@dataclass
class DispatchReport:
    tick: int
    results: list[AgentStepResult] = field(default_factory=list)

    @property
    def failures(self) -> list[AgentStepResult]:
        return [result for result in self.results if result.outcome == OUTCOME_FAILED]

    def count(self, outcome: str) -> int:
        return sum(1 for result in self.results if result.outcome == outcome)


class AgentDispatcher:
    """Drives every live agent through its role once per tick.

    Agents are visited in name order so that anything depending on scan order, such as resource
    node claims, behaves the same on every run. A fault inside one agent's step is recorded in
    the report and never stops the remaining agents.
    """

    def __init__(self, role_table: RoleTable | None = None, settings: ControlSettings | None = None) -> None:
        self.role_table = role_table if role_table is not None else default_role_table()
        self.settings = settings if settings is not None else ControlSettings()

    def run_all(self, sim: Simulation, store: MemoryStore) -> DispatchReport:
        report = DispatchReport(tick=sim.tick)
        for name in sorted(sim.state.agents):
            agent = sim.get_agent(name)
            if agent is None:
                continue
            report.results.append(self.step(sim, store, agent))
        return report

    def step(self, sim: Simulation, store: MemoryStore, agent: AgentState) -> AgentStepResult:
        memory = store.agent(agent.name)
        if not memory.initialized:
            memory.initialize(role=memory.role or self.settings.fallback_role, site_id=agent.site_id, tick=sim.tick)

        if agent.spawning:
            memory.state = STATE_SPAWNING
            store.commit_agent(agent.name, memory)
            return AgentStepResult(name=agent.name, outcome=OUTCOME_SPAWNING)

        role = self.role_table.get(memory.role)
        if role is None:
            LOGGER.warning("unknown role %r for agent %s; skipping", memory.role, agent.name)
            store.commit_agent(agent.name, memory)
            return AgentStepResult(name=agent.name, outcome=OUTCOME_UNKNOWN_ROLE)

        ctx = AgentContext(sim=sim, agent=agent, memory=memory, store=store, settings=self.settings)
        try:
            if role.should_recycle(ctx):
                outcome = self._recycle(role, ctx)
            else:
                self._advance_state(role, ctx)
                role.run(ctx)
                outcome = OUTCOME_RAN
        except Exception as exc:
            LOGGER.exception("agent %s (%s) failed in state %s", agent.name, memory.role, memory.state)
            store.commit_agent(agent.name, memory)
            return AgentStepResult(name=agent.name, outcome=OUTCOME_FAILED, error=f"{type(exc).__name__}: {exc}")

        if sim.get_agent(agent.name) is None:
            store.forget_agent(agent.name)
        else:
            store.commit_agent(agent.name, memory)
        return AgentStepResult(name=agent.name, outcome=outcome)

    def _advance_state(self, role: Role, ctx: AgentContext) -> None:
        next_state = role.next_state(ctx)
        if next_state != ctx.memory.state:
            ctx.memory.state = next_state

    def _recycle(self, role: Role, ctx: AgentContext) -> str:
        facility = find_recycle_facility(ctx.sim, ctx.agent)
        if facility is None:
            ctx.memory.target = None
            return OUTCOME_RECYCLED
        ctx.memory.target = facility.structure_id
        if ctx.agent.pos.is_near_to(facility.pos):
            if ctx.sim.recycle_agent(facility.structure_id, ctx.agent.name) == OK:
                LOGGER.info("recycled agent %s at %s", ctx.agent.name, facility.structure_id)
        else:
            role.move_to_target(ctx, facility)
        return OUTCOME_RECYCLED
