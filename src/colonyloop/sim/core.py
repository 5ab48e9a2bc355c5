from __future__ import annotations

import copy
import hashlib
import random
from dataclasses import dataclass, field
from typing import Any

from colonyloop.sim.rules import RuleModule
from colonyloop.sim.world import (
    NEIGHBOR_OFFSETS,
    RESOURCE_NODE_REGEN_TICKS,
    STRUCTURE_CAPACITY,
    STRUCTURE_EXTENSION,
    STRUCTURE_SPAWN,
    STRUCTURE_TOWER,
    ConstructionTarget,
    DroppedResource,
    Position,
    SiteState,
    Structure,
    WorldState,
)

PART_WORK = "work"
PART_CARRY = "carry"
PART_MOVE = "move"
PART_ATTACK = "attack"
PART_RANGED_ATTACK = "ranged_attack"
PART_HEAL = "heal"
PART_CLAIM = "claim"
PART_TOUGH = "tough"

BODY_PART_COST = {
    PART_WORK: 100,
    PART_CARRY: 50,
    PART_MOVE: 50,
    PART_ATTACK: 80,
    PART_RANGED_ATTACK: 150,
    PART_HEAL: 250,
    PART_CLAIM: 600,
    PART_TOUGH: 10,
}
MAX_BODY_PARTS = 50
CARRY_CAPACITY_PER_PART = 50
HARVEST_POWER = 2
BUILD_POWER = 5
REPAIR_POWER = 100
REPAIR_HITS_PER_ENERGY = 100
TOWER_ENERGY_COST = 10
TOWER_POWER_REPAIR = 800
UPGRADE_POWER = 1
SPAWN_TICKS_PER_PART = 3
AGENT_LIFETIME = 1500
MAX_CONTROLLER_LEVEL = 8
CONTROLLER_LEVEL_PROGRESS = {
    1: 200,
    2: 45_000,
    3: 135_000,
    4: 405_000,
    5: 1_215_000,
    6: 3_645_000,
    7: 10_935_000,
}
MAX_ACTION_TRACE = 256

OK = "ok"
ERR_NOT_IN_RANGE = "not_in_range"
ERR_NO_PATH = "no_path"
ERR_NOT_ENOUGH_BUDGET = "not_enough_budget"
ERR_NOT_ENOUGH_RESOURCES = "empty"
ERR_FULL = "full"
ERR_BUSY = "busy"
ERR_NAME_EXISTS = "name_exists"
ERR_INVALID_TARGET = "invalid_target"
ERR_INVALID_ARGS = "invalid_args"
ERR_NO_BODYPART = "no_bodypart"


def body_cost(body: list[str] | tuple[str, ...]) -> int:
    return sum(BODY_PART_COST[part] for part in body)


@dataclass
class AgentState:
    name: str
    site_id: str
    pos: Position
    body: list[str]
    carry: int = 0
    ticks_to_live: int | None = AGENT_LIFETIME
    spawning: bool = False

    def parts(self, part: str) -> int:
        return sum(1 for current in self.body if current == part)

    @property
    def capacity(self) -> int:
        return self.parts(PART_CARRY) * CARRY_CAPACITY_PER_PART

    @property
    def free_capacity(self) -> int:
        return max(0, self.capacity - self.carry)

    @property
    def used_capacity(self) -> int:
        return self.carry

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "site_id": self.site_id,
            "pos": self.pos.to_dict(),
            "body": list(self.body),
            "carry": self.carry,
            "ticks_to_live": self.ticks_to_live,
            "spawning": self.spawning,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentState":
        return cls(
            name=str(data["name"]),
            site_id=str(data["site_id"]),
            pos=Position.from_dict(data["pos"]),
            body=[str(part) for part in data.get("body", [])],
            carry=int(data.get("carry", 0)),
            ticks_to_live=(int(data["ticks_to_live"]) if data.get("ticks_to_live") is not None else None),
            spawning=bool(data.get("spawning", False)),
        )


@dataclass
class SimulationState:
    world: WorldState
    tick: int = 0
    agents: dict[str, AgentState] = field(default_factory=dict)
    action_trace: list[dict[str, Any]] = field(default_factory=list)


def derive_stream_seed(master_seed: int, stream_name: str) -> int:
    """Derive a deterministic child RNG seed from (master_seed, stream_name)."""
    digest = hashlib.sha256(f"{master_seed}:{stream_name}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], byteorder="big", signed=False)


class Simulation:
    """Host environment: owns the world, the live agents and the durable memory root.

    Everything registered as a rule module runs inside ``on_tick_start`` and talks to the
    world only through the query helpers and the action surface below. Actions return string
    result codes and never raise for in-world failures.
    """

    def __init__(self, world: WorldState, seed: int = 0) -> None:
        self.state = SimulationState(world=world)
        self.seed = seed
        self.memory: dict[str, Any] = {}
        self.rule_modules: list[RuleModule] = []
        self._rng_streams: dict[str, random.Random] = {}

    @property
    def tick(self) -> int:
        return self.state.tick

    @property
    def world(self) -> WorldState:
        return self.state.world

    def site(self, site_id: str) -> SiteState:
        return self.state.world.sites[site_id]

    def add_agent(self, agent: AgentState) -> None:
        if agent.name in self.state.agents:
            raise ValueError(f"duplicate agent name: {agent.name}")
        if agent.site_id not in self.state.world.sites:
            raise ValueError(f"agent '{agent.name}' references unknown site '{agent.site_id}'")
        unknown_parts = [part for part in agent.body if part not in BODY_PART_COST]
        if unknown_parts:
            raise ValueError(f"agent '{agent.name}' has unknown body parts: {unknown_parts}")
        self.state.agents[agent.name] = agent

    def get_agent(self, name: str) -> AgentState | None:
        return self.state.agents.get(name)

    def agents(self) -> list[AgentState]:
        return list(self.state.agents.values())

    def agents_at(self, site_id: str) -> list[AgentState]:
        return sorted(
            (agent for agent in self.state.agents.values() if agent.site_id == site_id),
            key=lambda agent: agent.name,
        )

    def get_object(self, object_id: str | None) -> Any:
        found = self.state.world.find_object(object_id)
        return None if found is None else found[1]

    def rng_stream(self, name: str) -> random.Random:
        if name not in self._rng_streams:
            self._rng_streams[name] = random.Random(derive_stream_seed(master_seed=self.seed, stream_name=name))
        return self._rng_streams[name]

    def get_rule_module(self, module_name: str) -> RuleModule | None:
        for module in self.rule_modules:
            if module.name == module_name:
                return module
        return None

    def register_rule_module(self, module: RuleModule) -> None:
        if any(existing.name == module.name for existing in self.rule_modules):
            raise ValueError(f"duplicate rule module name: {module.name}")
        self.rule_modules.append(module)
        module.on_simulation_start(self)

    def action_trace(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self.state.action_trace)

    def advance_ticks(self, ticks: int) -> None:
        for _ in range(ticks):
            self._tick_once()

    # Production

    def spawn_agent(
        self,
        facility_id: str,
        body: list[str],
        name: str,
        memory: dict[str, Any] | None = None,
    ) -> str:
        found = self.state.world.find_object(facility_id)
        if found is None or not isinstance(found[1], Structure) or found[1].kind != STRUCTURE_SPAWN:
            return ERR_INVALID_TARGET
        site, facility = found
        if not facility.owned:
            return ERR_INVALID_TARGET
        if facility.is_spawning:
            return ERR_BUSY
        if not body or len(body) > MAX_BODY_PARTS or any(part not in BODY_PART_COST for part in body):
            return ERR_INVALID_ARGS
        if not name or name in self.state.agents:
            return ERR_NAME_EXISTS
        cost = body_cost(body)
        if cost > site.energy_available:
            return ERR_NOT_ENOUGH_BUDGET

        self._spend_budget(site, cost)
        facility.spawning_name = name
        facility.spawning_remaining = len(body) * SPAWN_TICKS_PER_PART
        self.state.agents[name] = AgentState(
            name=name,
            site_id=site.site_id,
            pos=facility.pos,
            body=list(body),
            ticks_to_live=None,
            spawning=True,
        )
        self.memory.setdefault("agents", {})[name] = copy.deepcopy(memory or {})
        self._record_action(name, "spawn", facility_id, OK)
        return OK

    def recycle_agent(self, facility_id: str, name: str) -> str:
        agent = self.state.agents.get(name)
        facility = self.get_object(facility_id)
        if agent is None or not isinstance(facility, Structure) or facility.kind != STRUCTURE_SPAWN:
            return ERR_INVALID_TARGET
        if facility_id not in self.site(agent.site_id).structures:
            return ERR_INVALID_TARGET
        if not agent.pos.is_near_to(facility.pos):
            return ERR_NOT_IN_RANGE
        del self.state.agents[name]
        self._record_action(name, "recycle", facility_id, OK)
        return OK

    # Agent actions

    def move_to(self, name: str, goal: Position, *, range_: int = 1) -> str:
        agent = self.state.agents.get(name)
        if agent is None:
            return ERR_INVALID_TARGET
        if agent.spawning:
            return ERR_BUSY
        if agent.pos.range_to(goal) <= range_:
            return OK
        if agent.parts(PART_MOVE) == 0:
            return ERR_NO_BODYPART
        path = self.site(agent.site_id).find_path(agent.pos, goal, range_=range_)
        if path is None:
            self._record_action(name, "move", f"{goal.x},{goal.y}", ERR_NO_PATH)
            return ERR_NO_PATH
        agent.pos = path[0]
        return OK

    def harvest(self, name: str, node_id: str) -> str:
        agent, site, failure = self._acting_agent(name)
        if failure is not None:
            return failure
        node = site.resource_nodes.get(node_id)
        if node is None:
            return ERR_INVALID_TARGET
        if not agent.pos.is_near_to(node.pos):
            return ERR_NOT_IN_RANGE
        work = agent.parts(PART_WORK)
        if work == 0:
            return ERR_NO_BODYPART
        if node.amount == 0:
            return ERR_NOT_ENOUGH_RESOURCES
        mined = min(HARVEST_POWER * work, node.amount)
        node.amount -= mined
        kept = min(mined, agent.free_capacity)
        agent.carry += kept
        if mined > kept:
            self._drop_at(site, agent.pos, mined - kept)
        return self._record_action(name, "harvest", node_id, OK)

    def pickup(self, name: str, drop_id: str) -> str:
        agent, site, failure = self._acting_agent(name)
        if failure is not None:
            return failure
        drop = site.dropped.get(drop_id)
        if drop is None:
            return ERR_INVALID_TARGET
        if not agent.pos.is_near_to(drop.pos):
            return ERR_NOT_IN_RANGE
        if agent.free_capacity == 0:
            return ERR_FULL
        amount = min(agent.free_capacity, drop.amount)
        drop.amount -= amount
        agent.carry += amount
        if drop.amount <= 0:
            del site.dropped[drop_id]
        return self._record_action(name, "pickup", drop_id, OK)

    def withdraw(self, name: str, structure_id: str) -> str:
        agent, site, failure = self._acting_agent(name)
        if failure is not None:
            return failure
        structure = site.structures.get(structure_id)
        if structure is None:
            return ERR_INVALID_TARGET
        if not agent.pos.is_near_to(structure.pos):
            return ERR_NOT_IN_RANGE
        if structure.store == 0:
            return ERR_NOT_ENOUGH_RESOURCES
        if agent.free_capacity == 0:
            return ERR_FULL
        amount = min(agent.free_capacity, structure.store)
        structure.store -= amount
        agent.carry += amount
        return self._record_action(name, "withdraw", structure_id, OK)

    def transfer(self, name: str, structure_id: str) -> str:
        agent, site, failure = self._acting_agent(name)
        if failure is not None:
            return failure
        structure = site.structures.get(structure_id)
        if structure is None:
            return ERR_INVALID_TARGET
        if not agent.pos.is_near_to(structure.pos):
            return ERR_NOT_IN_RANGE
        if agent.carry == 0:
            return ERR_NOT_ENOUGH_RESOURCES
        if structure.free_capacity == 0:
            return ERR_FULL
        amount = min(agent.carry, structure.free_capacity)
        structure.store += amount
        agent.carry -= amount
        return self._record_action(name, "transfer", structure_id, OK)

    def upgrade_controller(self, name: str) -> str:
        agent, site, failure = self._acting_agent(name)
        if failure is not None:
            return failure
        controller = site.controller
        if controller is None or not controller.owned:
            return ERR_INVALID_TARGET
        if agent.pos.range_to(controller.pos) > 3:
            return ERR_NOT_IN_RANGE
        if agent.carry == 0:
            return ERR_NOT_ENOUGH_RESOURCES
        work = agent.parts(PART_WORK)
        if work == 0:
            return ERR_NO_BODYPART
        spent = min(agent.carry, work * UPGRADE_POWER)
        agent.carry -= spent
        controller.progress += spent
        threshold = CONTROLLER_LEVEL_PROGRESS.get(controller.level)
        if threshold is not None and controller.level < MAX_CONTROLLER_LEVEL and controller.progress >= threshold:
            controller.progress -= threshold
            controller.level += 1
        return self._record_action(name, "upgrade", controller.object_id, OK)

    def build(self, name: str, target_id: str) -> str:
        agent, site, failure = self._acting_agent(name)
        if failure is not None:
            return failure
        target = site.construction.get(target_id)
        if target is None:
            return ERR_INVALID_TARGET
        if agent.pos.range_to(target.pos) > 3:
            return ERR_NOT_IN_RANGE
        if agent.carry == 0:
            return ERR_NOT_ENOUGH_RESOURCES
        work = agent.parts(PART_WORK)
        if work == 0:
            return ERR_NO_BODYPART
        spent = min(agent.carry, work * BUILD_POWER, target.progress_total - target.progress)
        agent.carry -= spent
        target.progress += spent
        if target.progress >= target.progress_total:
            self._complete_construction(site, target)
        return self._record_action(name, "build", target_id, OK)

    def repair(self, name: str, structure_id: str) -> str:
        agent, site, failure = self._acting_agent(name)
        if failure is not None:
            return failure
        structure = site.structures.get(structure_id)
        if structure is None:
            return ERR_INVALID_TARGET
        if agent.pos.range_to(structure.pos) > 3:
            return ERR_NOT_IN_RANGE
        if agent.carry == 0:
            return ERR_NOT_ENOUGH_RESOURCES
        work = agent.parts(PART_WORK)
        if work == 0:
            return ERR_NO_BODYPART
        if not structure.is_damaged:
            return ERR_FULL
        missing = int(structure.hits_max or 0) - int(structure.hits or 0)
        repaired = min(work * REPAIR_POWER, missing, agent.carry * REPAIR_HITS_PER_ENERGY)
        agent.carry -= -(-repaired // REPAIR_HITS_PER_ENERGY)
        structure.hits = int(structure.hits or 0) + repaired
        return self._record_action(name, "repair", structure_id, OK)

    def tower_repair(self, tower_id: str, structure_id: str) -> str:
        """Spend tower energy on a damaged structure anywhere in the tower's site."""
        found = self.state.world.find_object(tower_id)
        if found is None or not isinstance(found[1], Structure) or found[1].kind != STRUCTURE_TOWER:
            return ERR_INVALID_TARGET
        site, tower = found
        if not tower.owned:
            return ERR_INVALID_TARGET
        structure = site.structures.get(structure_id)
        if structure is None:
            return ERR_INVALID_TARGET
        if tower.store < TOWER_ENERGY_COST:
            return ERR_NOT_ENOUGH_RESOURCES
        if not structure.is_damaged:
            return ERR_FULL
        missing = int(structure.hits_max or 0) - int(structure.hits or 0)
        tower.store -= TOWER_ENERGY_COST
        structure.hits = int(structure.hits or 0) + min(TOWER_POWER_REPAIR, missing)
        return self._record_action(tower_id, "repair", structure_id, OK)

    def drop(self, name: str) -> str:
        agent, site, failure = self._acting_agent(name)
        if failure is not None:
            return failure
        if agent.carry == 0:
            return ERR_NOT_ENOUGH_RESOURCES
        self._drop_at(site, agent.pos, agent.carry)
        agent.carry = 0
        return self._record_action(name, "drop", None, OK)

    # Internals

    def _acting_agent(self, name: str) -> tuple[Any, Any, str | None]:
        agent = self.state.agents.get(name)
        if agent is None:
            return None, None, ERR_INVALID_TARGET
        if agent.spawning:
            return agent, None, ERR_BUSY
        return agent, self.site(agent.site_id), None

    def _spend_budget(self, site: SiteState, cost: int) -> None:
        remaining = cost
        for kind in (STRUCTURE_SPAWN, STRUCTURE_EXTENSION):
            for structure in site.structures_of(kind, owned_only=True):
                taken = min(structure.store, remaining)
                structure.store -= taken
                remaining -= taken
                if remaining == 0:
                    return

    def _drop_at(self, site: SiteState, pos: Position, amount: int) -> None:
        for drop in site.dropped.values():
            if drop.pos == pos:
                drop.amount += amount
                return
        drop_id = self.state.world.allocate_object_id("drop")
        site.dropped[drop_id] = DroppedResource(drop_id=drop_id, pos=pos, amount=amount)

    def _complete_construction(self, site: SiteState, target: ConstructionTarget) -> None:
        del site.construction[target.target_id]
        site.structures[target.target_id] = Structure(
            structure_id=target.target_id,
            kind=target.kind,
            pos=target.pos,
            capacity=STRUCTURE_CAPACITY.get(target.kind, 0),
        )

    def _record_action(self, name: str, action: str, target_id: str | None, result: str) -> str:
        self.state.action_trace.append(
            {"tick": self.state.tick, "agent": name, "action": action, "target": target_id, "result": result}
        )
        if len(self.state.action_trace) > MAX_ACTION_TRACE:
            overflow = len(self.state.action_trace) - MAX_ACTION_TRACE
            del self.state.action_trace[:overflow]
        return result

    def _tick_once(self) -> None:
        for module in self.rule_modules:
            module.on_tick_start(self, self.state.tick)
        self._advance_facilities()
        self._age_agents()
        self._regenerate_nodes()
        for module in self.rule_modules:
            module.on_tick_end(self, self.state.tick)
        self.state.tick += 1

    def _advance_facilities(self) -> None:
        for site_id in sorted(self.state.world.sites):
            site = self.state.world.sites[site_id]
            for facility in site.structures_of(STRUCTURE_SPAWN):
                if not facility.is_spawning:
                    continue
                facility.spawning_remaining -= 1
                if facility.spawning_remaining > 0:
                    continue
                agent = self.state.agents.get(str(facility.spawning_name))
                facility.spawning_name = None
                facility.spawning_remaining = 0
                if agent is None:
                    continue
                agent.spawning = False
                agent.ticks_to_live = AGENT_LIFETIME
                agent.pos = self._free_cell_near(site, facility.pos)

    def _free_cell_near(self, site: SiteState, origin: Position) -> Position:
        blocked = site.blocked_positions()
        for dx, dy in NEIGHBOR_OFFSETS:
            candidate = Position(origin.x + dx, origin.y + dy)
            if site.in_bounds(candidate) and candidate not in blocked:
                return candidate
        return origin

    def _age_agents(self) -> None:
        for name in sorted(self.state.agents):
            agent = self.state.agents[name]
            if agent.spawning or agent.ticks_to_live is None:
                continue
            agent.ticks_to_live -= 1
            if agent.ticks_to_live > 0:
                continue
            if agent.carry > 0:
                self._drop_at(self.site(agent.site_id), agent.pos, agent.carry)
            del self.state.agents[name]

    def _regenerate_nodes(self) -> None:
        for site_id in sorted(self.state.world.sites):
            for node in self.state.world.sites[site_id].resource_nodes.values():
                if node.amount >= node.capacity:
                    continue
                node.ticks_to_regeneration -= 1
                if node.ticks_to_regeneration <= 0:
                    node.amount = node.capacity
                    node.ticks_to_regeneration = RESOURCE_NODE_REGEN_TICKS
