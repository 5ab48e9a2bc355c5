import json

import pytest

from colonyloop.control.constants import STATE_SPAWNING
from colonyloop.control.memory import (
    MEMORY_SCHEMA_VERSION,
    AgentMemory,
    MemoryStore,
    SiteMemory,
    migrate_memory_root,
)
from colonyloop.sim.core import AgentState, Simulation
from colonyloop.sim.world import ControllerState, Position, SiteState, Structure, WorldState


def _sim(*, with_storage: bool = False) -> Simulation:
    site = SiteState(
        site_id="S1",
        width=10,
        height=10,
        controller=ControllerState(pos=Position(1, 1), level=3, owned=True),
    )
    site.structures["spawn-1"] = Structure(structure_id="spawn-1", kind="spawn", pos=Position(5, 5), store=120)
    if with_storage:
        site.structures["storage-1"] = Structure(structure_id="storage-1", kind="storage", pos=Position(7, 7), store=5000)
    world = WorldState()
    world.add_site(site)
    return Simulation(world=world, seed=1)


def _full_agent_record() -> dict:
    return {
        "role": "hauler",
        "state": "delivering",
        "target": "container-1",
        "home_site": "S1",
        "work_site": "S2",
        "initialized": True,
        "born": 77,
        "stats": {"gathered": 10, "spent": 4, "work_done": 0},
        "custom_note": {"keep": [1, 2, 3]},
    }


def test_agent_memory_fills_documented_defaults() -> None:
    memory = AgentMemory.from_dict({})

    assert memory.role == ""
    assert memory.state == STATE_SPAWNING
    assert memory.target is None
    assert memory.initialized is False
    assert memory.born == 0
    assert memory.stats == {"gathered": 0, "spent": 0, "work_done": 0}


def test_fully_populated_agent_record_reads_back_byte_identical() -> None:
    record = _full_agent_record()

    restored = AgentMemory.from_dict(record).to_dict()

    assert json.dumps(restored, sort_keys=True) == json.dumps(record, sort_keys=True)


def test_site_memory_round_trip_preserves_unknown_keys() -> None:
    record = SiteMemory(last_seen=5).to_dict()
    record["legacy_field"] = "kept"

    assert SiteMemory.from_dict(record).to_dict() == record


def test_malformed_site_record_names_the_field() -> None:
    with pytest.raises(ValueError, match="site memory sources"):
        SiteMemory.from_dict({"sources": "nope"})


def test_untouched_root_reads_back_identically_on_the_next_tick() -> None:
    root: dict = {}
    store = MemoryStore(root)
    store.commit_agent("a1", AgentMemory.from_dict(_full_agent_record()))
    store.commit_site("S1", SiteMemory(last_seen=3))
    before = json.dumps(root, sort_keys=True)

    again = MemoryStore(root)
    again.commit_agent("a1", again.agent("a1"))
    again.commit_site("S1", again.site("S1", tick=4))

    assert json.dumps(root, sort_keys=True) == before


def test_missing_version_is_migrated_in_place() -> None:
    root = {"agents": {"a1": {"role": "harvester"}}}

    migrate_memory_root(root)

    assert root["schema_version"] == MEMORY_SCHEMA_VERSION
    assert root["sites"] == {}
    assert root["empire"] == {}
    assert root["stats"] == {}
    assert root["agents"] == {"a1": {"role": "harvester"}}


def test_newer_version_is_rejected() -> None:
    with pytest.raises(ValueError, match="unsupported memory schema_version"):
        MemoryStore({"schema_version": MEMORY_SCHEMA_VERSION + 1})


def test_malformed_section_is_rejected() -> None:
    with pytest.raises(ValueError, match="memory.agents"):
        MemoryStore({"agents": []})


def test_commit_is_visible_to_later_readers_in_the_same_tick() -> None:
    store = MemoryStore({})
    memory = store.agent("m1")
    memory.target = "node-a"
    store.commit_agent("m1", memory)

    assert MemoryStore(store.root).agent("m1").target == "node-a"


def test_site_record_is_created_on_first_use() -> None:
    store = MemoryStore({})

    memory = store.site("S1", tick=42)

    assert memory.last_seen == 42
    assert store.root["sites"]["S1"]["initialized"] is True
    assert store.root["sites"]["S1"]["economy"] == {"energy_capacity": 0, "energy_available": 0}


def test_cache_entry_expires_after_ttl() -> None:
    store = MemoryStore({})
    store.set_cache("S1", "analysis", {"value": 1}, ttl=5, tick=10)

    assert store.get_cache("S1", "analysis", tick=15) == {"value": 1}
    assert store.get_cache("S1", "analysis", tick=16) is None
    assert "analysis" not in store.root["sites"]["S1"]["cache"]


def test_cache_reads_return_copies() -> None:
    store = MemoryStore({})
    store.set_cache("S1", "k", {"items": [1]}, ttl=10, tick=0)

    store.get_cache("S1", "k", tick=1)["items"].append(2)

    assert store.get_cache("S1", "k", tick=1) == {"items": [1]}


def test_cache_rejects_values_that_are_not_json() -> None:
    store = MemoryStore({})

    with pytest.raises(ValueError, match="cache"):
        store.set_cache("S1", "k", {"when": object()}, ttl=10, tick=0)


def test_cleanup_collects_dead_agents_and_stale_sites() -> None:
    sim = _sim(with_storage=True)
    sim.add_agent(AgentState(name="alive", site_id="S1", pos=Position(3, 3), body=["work", "carry", "move"]))
    store = MemoryStore(sim.memory)
    store.commit_agent("alive", AgentMemory(role="harvester"))
    store.commit_agent("dead", AgentMemory(role="harvester"))
    store.commit_site("S1", SiteMemory(last_seen=0))
    store.commit_site("FAR", SiteMemory(last_seen=0))
    store.commit_site("NEAR", SiteMemory(last_seen=0))
    store.set_cache("S1", "old", 1, ttl=1, tick=0)
    sim.state.tick = 10_001

    store.root["sites"]["NEAR"]["last_seen"] = 5
    removed = store.cleanup(sim, stale_site_ticks=10_000)

    assert removed == {"agents": 1, "sites": 1, "cache_entries": 1}
    assert store.agent_names() == ["alive"]
    assert sorted(store.root["sites"]) == ["NEAR", "S1"]
    assert store.root["empire"] == {"total_energy": 5120, "total_agents": 1, "level": 3}
