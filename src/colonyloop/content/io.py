from __future__ import annotations

import json
import os
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any

from colonyloop.control.memory import migrate_memory_root
from colonyloop.sim.core import AgentState, Simulation
from colonyloop.sim.hash import memory_hash, record_hash, world_hash
from colonyloop.sim.world import WorldState

SCHEMA_VERSION = 1
CANONICAL_JSON_INDENT = 2
CANONICAL_JSON_SEPARATORS = (",", ": ")


def _canonical_json(payload: dict[str, Any]) -> str:
    return json.dumps(
        payload,
        indent=CANONICAL_JSON_INDENT,
        separators=CANONICAL_JSON_SEPARATORS,
        sort_keys=True,
    )


def _write_atomic_json(path: str | Path, payload: dict[str, Any]) -> None:
    destination = Path(path)
    destination.parent.mkdir(parents=True, exist_ok=True)
    serialized = _canonical_json(payload)

    temp_path: Path | None = None
    try:
        with NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=destination.parent,
            delete=False,
            suffix=".tmp",
        ) as temp_file:
            temp_file.write(serialized)
            temp_file.flush()
            os.fsync(temp_file.fileno())
            temp_path = Path(temp_file.name)
        os.replace(temp_path, destination)
    except Exception:
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)
        raise


def _read_json_object(path: str | Path) -> dict[str, Any]:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return payload


def _check_schema_version(payload: dict[str, Any]) -> None:
    version = payload.get("schema_version", SCHEMA_VERSION)
    if version != SCHEMA_VERSION:
        raise ValueError(f"unsupported schema_version: {version}")


def load_world_json(path: str | Path) -> WorldState:
    """Load a world description; a stored ``world_hash`` is verified when present."""
    payload = _read_json_object(path)
    _check_schema_version(payload)
    world = WorldState.from_dict(payload)
    expected_hash = payload.get("world_hash")
    if expected_hash is not None:
        actual_hash = world_hash(world)
        if expected_hash != actual_hash:
            raise ValueError(
                f"world_hash mismatch while loading world (stored={expected_hash}, recomputed={actual_hash})"
            )
    return world


def save_world_json(path: str | Path, world: WorldState) -> None:
    payload = {
        "schema_version": SCHEMA_VERSION,
        "world_hash": world_hash(world),
        **world.to_dict(),
    }
    _write_atomic_json(path, payload)


def save_memory_json(path: str | Path, memory: dict[str, Any]) -> None:
    _write_atomic_json(path, {"memory": memory, "memory_hash": memory_hash(memory)})


def load_memory_json(path: str | Path) -> dict[str, Any]:
    payload = _read_json_object(path)
    memory = payload.get("memory")
    if not isinstance(memory, dict):
        raise ValueError("memory payload must contain a memory object")
    expected_hash = payload.get("memory_hash")
    actual_hash = memory_hash(memory)
    if expected_hash != actual_hash:
        raise ValueError(
            f"memory_hash mismatch while loading memory (stored={expected_hash}, recomputed={actual_hash})"
        )
    return migrate_memory_root(memory)


def save_simulation_json(path: str | Path, simulation: Simulation) -> None:
    payload: dict[str, Any] = {
        "schema_version": SCHEMA_VERSION,
        "seed": simulation.seed,
        "tick": simulation.tick,
        "world_state": simulation.world.to_dict(),
        "agents": [simulation.state.agents[name].to_dict() for name in sorted(simulation.state.agents)],
        "memory": simulation.memory,
    }
    payload["save_hash"] = record_hash(payload)
    _write_atomic_json(path, payload)


def load_simulation_json(path: str | Path) -> Simulation:
    payload = _read_json_object(path)
    _check_schema_version(payload)
    expected_hash = payload.get("save_hash")
    actual_hash = record_hash({key: value for key, value in payload.items() if key != "save_hash"})
    if expected_hash != actual_hash:
        raise ValueError(f"save_hash mismatch while loading save (stored={expected_hash}, recomputed={actual_hash})")

    simulation = Simulation(world=WorldState.from_dict(payload["world_state"]), seed=int(payload.get("seed", 0)))
    simulation.state.tick = int(payload.get("tick", 0))
    for row in payload.get("agents", []):
        simulation.add_agent(AgentState.from_dict(row))
    memory = payload.get("memory", {})
    if not isinstance(memory, dict):
        raise ValueError("save memory must be an object")
    simulation.memory = migrate_memory_root(memory)
    return simulation
