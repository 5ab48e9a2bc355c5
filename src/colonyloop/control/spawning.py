from __future__ import annotations

import copy
import logging
import math
from dataclasses import dataclass, field
from typing import Any

from colonyloop.control.constants import (
    CONSTRUCTION_TARGETS_PER_BUILDER,
    HAULERS_PER_NODE,
    MAX_BUILDERS,
    MIN_HARVESTERS,
    MIN_UPGRADERS,
    MINING_MIN_CAPACITY,
    MINING_MIN_LEVEL,
    PRIORITY_CRITICAL,
    PRIORITY_HIGH,
    PRIORITY_NAMES,
    PRIORITY_NORMAL,
    ROLE_BUILDER,
    ROLE_HARVESTER,
    ROLE_HAULER,
    ROLE_MINER,
    ROLE_UPGRADER,
)
from colonyloop.control.memory import MemoryStore
from colonyloop.control.settings import ControlSettings
from colonyloop.control.targeting import get_optimal_body
from colonyloop.sim.core import BODY_PART_COST, ERR_NOT_ENOUGH_BUDGET, OK, Simulation
from colonyloop.sim.world import STRUCTURE_SPAWN

LOGGER = logging.getLogger("colonyloop.spawning")

NAME_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
NAME_SUFFIX_LENGTH = 3


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("value must be >= 0")
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(NAME_ALPHABET[remainder])
    return "".join(reversed(digits))


@dataclass
class SpawnRequest:
    role: str
    priority: int
    body: list[str]
    site_id: str
    name: str | None = None
    memory: dict[str, Any] = field(default_factory=dict)
    sequence: int = 0

    def __post_init__(self) -> None:
        if not self.role:
            raise ValueError("spawn request role must be a non-empty string")
        if self.priority not in PRIORITY_NAMES:
            raise ValueError(f"spawn request priority must be one of {sorted(PRIORITY_NAMES)}")
        if not self.body or any(part not in BODY_PART_COST for part in self.body):
            raise ValueError("spawn request body must list known body parts")
        if not self.site_id:
            raise ValueError("spawn request site_id must be a non-empty string")

    @property
    def key(self) -> tuple[str, str]:
        return (self.role, self.site_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "priority": self.priority,
            "body": list(self.body),
            "site_id": self.site_id,
            "name": self.name,
            "memory": copy.deepcopy(self.memory),
            "sequence": self.sequence,
        }


class SpawnScheduler:
    """Per-site production: tally, synthesize demand, then assign requests to idle facilities.

    The queue is shared across sites but every pass only rewrites the partition of the site it
    is processing.
    """

    def __init__(self, settings: ControlSettings | None = None) -> None:
        self.settings = settings if settings is not None else ControlSettings()
        self._queue: list[SpawnRequest] = []
        self._next_sequence = 0

    @property
    def queue(self) -> list[SpawnRequest]:
        return list(self._queue)

    def request_spawn(self, request: SpawnRequest) -> bool:
        if any(existing.key == request.key for existing in self._queue):
            return False
        request.sequence = self._next_sequence
        self._next_sequence += 1
        self._queue.append(request)
        return True

    def run(self, sim: Simulation, store: MemoryStore, site_id: str) -> list[str]:
        site = sim.site(site_id)
        if not site.structures_of(STRUCTURE_SPAWN, owned_only=True):
            return []
        counts = self.tally(sim, store, site_id)
        site_memory = store.site(site_id, tick=sim.tick)
        site_memory.creep_counts_by_role = dict(counts)
        store.commit_site(site_id, site_memory)
        self.generate_requests(sim, site_id, counts)
        return self.process_queue(sim, site_id)

    def tally(self, sim: Simulation, store: MemoryStore, site_id: str) -> dict[str, int]:
        counts: dict[str, int] = {}
        for agent in sim.agents_at(site_id):
            role = store.agent(agent.name).role or self.settings.fallback_role
            counts[role] = counts.get(role, 0) + 1
        return dict(sorted(counts.items()))

    def generate_requests(self, sim: Simulation, site_id: str, counts: dict[str, int]) -> list[SpawnRequest]:
        site = sim.site(site_id)
        level = site.level
        budget = site.energy_capacity_available
        demand: list[tuple[str, int]] = []

        if counts.get(ROLE_HARVESTER, 0) < MIN_HARVESTERS:
            demand.append((ROLE_HARVESTER, PRIORITY_CRITICAL))
        if counts.get(ROLE_UPGRADER, 0) < MIN_UPGRADERS:
            demand.append((ROLE_UPGRADER, PRIORITY_HIGH))
        targets = len(site.construction)
        if targets > 0:
            wanted_builders = min(MAX_BUILDERS, math.ceil(targets / CONSTRUCTION_TARGETS_PER_BUILDER))
            if counts.get(ROLE_BUILDER, 0) < wanted_builders:
                demand.append((ROLE_BUILDER, PRIORITY_NORMAL))
        if level >= MINING_MIN_LEVEL and budget >= MINING_MIN_CAPACITY:
            nodes = len(site.resource_nodes)
            if counts.get(ROLE_MINER, 0) < nodes:
                demand.append((ROLE_MINER, PRIORITY_HIGH))
            if counts.get(ROLE_HAULER, 0) < nodes * HAULERS_PER_NODE:
                demand.append((ROLE_HAULER, PRIORITY_NORMAL))

        enqueued: list[SpawnRequest] = []
        for role, priority in demand:
            request = SpawnRequest(
                role=role,
                priority=priority,
                body=get_optimal_body(role, budget, level),
                site_id=site_id,
            )
            if self.request_spawn(request):
                enqueued.append(request)
        return enqueued

    def process_queue(self, sim: Simulation, site_id: str) -> list[str]:
        site = sim.site(site_id)
        pending = sorted(
            (request for request in self._queue if request.site_id == site_id),
            key=lambda request: (-request.priority, request.sequence),
        )
        spawned: list[str] = []
        for facility in site.structures_of(STRUCTURE_SPAWN, owned_only=True):
            if facility.is_spawning:
                continue
            if not pending:
                break
            request = pending.pop(0)
            name = request.name or self.generate_name(sim, request.role)
            memory = {**copy.deepcopy(request.memory), "role": request.role}
            result = sim.spawn_agent(facility.structure_id, list(request.body), name, memory=memory)
            if result == OK:
                LOGGER.info("spawning %s: %s at %s (%s)", request.role, name, site_id, facility.structure_id)
                spawned.append(name)
            elif result == ERR_NOT_ENOUGH_BUDGET:
                pending.insert(0, request)
                break
            else:
                LOGGER.warning("failed to spawn %s at %s: %s", request.role, site_id, result)

        self._queue = [request for request in self._queue if request.site_id != site_id] + pending
        return spawned

    def generate_name(self, sim: Simulation, role: str) -> str:
        rng = sim.rng_stream(self.settings.name_stream)
        suffix = "".join(rng.choice(NAME_ALPHABET) for _ in range(NAME_SUFFIX_LENGTH))
        return f"{role}_{to_base36(sim.tick)}_{suffix}"

    def prune(self, site_ids: list[str] | set[str]) -> int:
        keep = set(site_ids)
        before = len(self._queue)
        self._queue = [request for request in self._queue if request.site_id in keep]
        return before - len(self._queue)

    def queue_status(self) -> dict[str, list[dict[str, Any]]]:
        status: dict[str, list[dict[str, Any]]] = {}
        for request in self._queue:
            status.setdefault(request.site_id, []).append(request.to_dict())
        return status
