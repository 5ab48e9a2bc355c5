from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from colonyloop.control.constants import (
    BUILD_RANGE,
    ROLE_BUILDER,
    ROLE_HARVESTER,
    ROLE_HAULER,
    ROLE_MINER,
    ROLE_UPGRADER,
    STATE_BUILDING,
    STATE_DELIVERING,
    STATE_HARVESTING,
    STATE_MINING,
    STATE_MOVING,
    STATE_UPGRADING,
    UPGRADE_RANGE,
)
from colonyloop.control.memory import AgentMemory, MemoryStore
from colonyloop.control.settings import ControlSettings
from colonyloop.control.targeting import (
    ACQUISITION_CHAIN,
    HAULER_ACQUISITION_CHAIN,
    find_build_target,
    find_energy_sink,
    find_energy_source,
)
from colonyloop.sim.core import ERR_NO_PATH, ERR_NOT_IN_RANGE, OK, AgentState, Simulation
from colonyloop.sim.world import STRUCTURE_CONTAINER, DroppedResource, ResourceNode, SiteState


@dataclass
class AgentContext:
    """Everything a role needs for one agent step."""

    sim: Simulation
    agent: AgentState
    memory: AgentMemory
    store: MemoryStore
    settings: ControlSettings

    @property
    def site(self) -> SiteState:
        return self.sim.site(self.agent.site_id)


class Role:
    """Behavior contract shared by every role: run, should_recycle and next_state."""

    name = ""
    states: tuple[str, ...] = ()
    initial_state = ""

    def run(self, ctx: AgentContext) -> None:
        """Issue this tick's intents for the agent; the base role does nothing."""

    def should_recycle(self, ctx: AgentContext) -> bool:
        ticks_to_live = ctx.agent.ticks_to_live
        return ticks_to_live is not None and ticks_to_live < ctx.settings.recycle_below_ticks

    def next_state(self, ctx: AgentContext) -> str:
        if ctx.memory.state not in self.states:
            return self.initial_state
        return self.transition(ctx)

    def transition(self, ctx: AgentContext) -> str:
        return ctx.memory.state

    def move_to_target(self, ctx: AgentContext, target: Any, *, range_: int = 1) -> str:
        result = ctx.sim.move_to(ctx.agent.name, target.pos, range_=range_)
        if result == ERR_NO_PATH:
            ctx.memory.target = None
        return result


class GatherDeliverRole(Role):
    """Collect until full, then spend until empty."""

    use_state = STATE_DELIVERING
    acquisition_chain = ACQUISITION_CHAIN
    initial_state = STATE_HARVESTING

    def __init__(self) -> None:
        self.states = (STATE_HARVESTING, self.use_state)

    def transition(self, ctx: AgentContext) -> str:
        agent = ctx.agent
        if agent.capacity == 0:
            return ctx.memory.state
        if ctx.memory.state == STATE_HARVESTING and agent.free_capacity == 0:
            return self.use_state
        if ctx.memory.state == self.use_state and agent.used_capacity == 0:
            return STATE_HARVESTING
        return ctx.memory.state

    def run(self, ctx: AgentContext) -> None:
        if ctx.memory.state == STATE_HARVESTING:
            self.collect(ctx)
        elif ctx.memory.state == self.use_state:
            carried = ctx.agent.carry
            self.use(ctx)
            spent = carried - ctx.agent.carry
            ctx.memory.add_stat("spent", spent)
            if self.use_state != STATE_DELIVERING:
                ctx.memory.add_stat("work_done", spent)

    def collect(self, ctx: AgentContext) -> None:
        source = find_energy_source(ctx.sim, ctx.agent, self.acquisition_chain)
        if source is None:
            return
        ctx.memory.target = source.object_id
        carried = ctx.agent.carry
        if isinstance(source, ResourceNode):
            result = ctx.sim.harvest(ctx.agent.name, source.node_id)
        elif isinstance(source, DroppedResource):
            result = ctx.sim.pickup(ctx.agent.name, source.drop_id)
        else:
            result = ctx.sim.withdraw(ctx.agent.name, source.structure_id)
        if result == ERR_NOT_IN_RANGE:
            self.move_to_target(ctx, source)
        ctx.memory.add_stat("gathered", ctx.agent.carry - carried)

    def use(self, ctx: AgentContext) -> None:
        self.deliver(ctx)

    def deliver(self, ctx: AgentContext) -> None:
        sink = find_energy_sink(ctx.sim, ctx.agent)
        if sink is None:
            return
        ctx.memory.target = sink.object_id
        if ctx.sim.transfer(ctx.agent.name, sink.structure_id) == ERR_NOT_IN_RANGE:
            self.move_to_target(ctx, sink)

    def upgrade(self, ctx: AgentContext) -> None:
        controller = ctx.site.controller
        if controller is None:
            return
        ctx.memory.target = controller.object_id
        if ctx.sim.upgrade_controller(ctx.agent.name) == ERR_NOT_IN_RANGE:
            self.move_to_target(ctx, controller, range_=UPGRADE_RANGE)


class HarvesterRole(GatherDeliverRole):
    name = ROLE_HARVESTER


class HaulerRole(GatherDeliverRole):
    name = ROLE_HAULER
    acquisition_chain = HAULER_ACQUISITION_CHAIN


class UpgraderRole(GatherDeliverRole):
    name = ROLE_UPGRADER
    use_state = STATE_UPGRADING

    def use(self, ctx: AgentContext) -> None:
        self.upgrade(ctx)


class BuilderRole(GatherDeliverRole):
    name = ROLE_BUILDER
    use_state = STATE_BUILDING

    def use(self, ctx: AgentContext) -> None:
        site_memory = ctx.store.site(ctx.agent.site_id, tick=ctx.sim.tick)
        target = find_build_target(ctx.sim, ctx.agent, site_memory.construction_plans)
        if target is None:
            self.upgrade(ctx)
            return
        ctx.memory.target = target.target_id
        if ctx.sim.build(ctx.agent.name, target.target_id) == ERR_NOT_IN_RANGE:
            self.move_to_target(ctx, target, range_=BUILD_RANGE)


class MinerRole(Role):
    """Parks next to one exclusively claimed resource node and extracts from it."""

    name = ROLE_MINER
    states = (STATE_MOVING, STATE_MINING)
    initial_state = STATE_MOVING

    def next_state(self, ctx: AgentContext) -> str:
        node = self.assigned_node(ctx)
        if node is not None and ctx.agent.pos.is_near_to(node.pos):
            return STATE_MINING
        return STATE_MOVING

    def run(self, ctx: AgentContext) -> None:
        node = self.assigned_node(ctx)
        if node is None:
            return
        if ctx.memory.state == STATE_MOVING:
            self.move_to_target(ctx, node)
        elif ctx.memory.state == STATE_MINING:
            self.mine(ctx, node)

    def mine(self, ctx: AgentContext, node: ResourceNode) -> None:
        before = node.amount
        result = ctx.sim.harvest(ctx.agent.name, node.node_id)
        ctx.memory.add_stat("gathered", before - node.amount)
        if ctx.agent.capacity > 0 and ctx.agent.free_capacity == 0:
            self.unload(ctx)
        if result == ERR_NOT_IN_RANGE:
            ctx.memory.state = STATE_MOVING

    def unload(self, ctx: AgentContext) -> None:
        for container in ctx.site.structures_of(STRUCTURE_CONTAINER):
            if ctx.agent.pos.is_near_to(container.pos) and container.free_capacity > 0:
                if ctx.sim.transfer(ctx.agent.name, container.structure_id) == OK:
                    return
        ctx.sim.drop(ctx.agent.name)

    def assigned_node(self, ctx: AgentContext) -> ResourceNode | None:
        site = ctx.site
        if ctx.memory.target is not None:
            node = site.resource_nodes.get(ctx.memory.target)
            if node is not None:
                return node
            ctx.memory.target = None
        return self.claim_node(ctx)

    def claim_node(self, ctx: AgentContext) -> ResourceNode | None:
        """Claim the first reachable node no peer miner at the site holds, committing the claim at once."""
        claimed: set[str] = set()
        for peer in ctx.sim.agents_at(ctx.agent.site_id):
            if peer.name == ctx.agent.name or not ctx.store.has_agent(peer.name):
                continue
            peer_memory = ctx.store.agent(peer.name)
            if peer_memory.role == self.name and peer_memory.target is not None:
                claimed.add(peer_memory.target)
        site = ctx.site
        for node_id in sorted(site.resource_nodes):
            node = site.resource_nodes[node_id]
            if node_id in claimed or site.path_cost(ctx.agent.pos, node.pos) is None:
                continue
            ctx.memory.target = node_id
            ctx.store.commit_agent(ctx.agent.name, ctx.memory)
            return node
        return None


class RoleTable:
    """Explicit registry of role behaviors keyed by role tag."""

    def __init__(self) -> None:
        self._roles: dict[str, Role] = {}

    def register(self, role: Role) -> None:
        if not role.name:
            raise ValueError("role name must be a non-empty string")
        if role.name in self._roles:
            raise ValueError(f"duplicate role: {role.name}")
        self._roles[role.name] = role

    def get(self, name: str) -> Role | None:
        return self._roles.get(name)

    def names(self) -> list[str]:
        return sorted(self._roles)

    def __contains__(self, name: object) -> bool:
        return name in self._roles


def default_role_table() -> RoleTable:
    table = RoleTable()
    for role in (HarvesterRole(), UpgraderRole(), BuilderRole(), HaulerRole(), MinerRole()):
        table.register(role)
    return table
