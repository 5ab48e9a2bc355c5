from __future__ import annotations

import hashlib
import json
from typing import Any

from colonyloop.sim.core import Simulation
from colonyloop.sim.world import WorldState


def _canonical_digest(payload: Any) -> str:
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def world_hash(world: WorldState) -> str:
    return _canonical_digest(world.to_dict())


def memory_hash(memory: dict[str, Any]) -> str:
    return _canonical_digest(memory)


def record_hash(record: dict[str, Any]) -> str:
    return _canonical_digest(record)


def simulation_hash(simulation: Simulation) -> str:
    payload = {
        "seed": simulation.seed,
        "tick": simulation.state.tick,
        "world": simulation.state.world.to_dict(),
        "agents": [
            simulation.state.agents[name].to_dict() for name in sorted(simulation.state.agents)
        ],
        "memory": simulation.memory,
    }
    return _canonical_digest(payload)
