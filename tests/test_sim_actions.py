import pytest

from colonyloop.sim.core import (
    AGENT_LIFETIME,
    ERR_BUSY,
    ERR_FULL,
    ERR_INVALID_ARGS,
    ERR_INVALID_TARGET,
    ERR_NAME_EXISTS,
    ERR_NO_BODYPART,
    ERR_NOT_ENOUGH_BUDGET,
    ERR_NOT_ENOUGH_RESOURCES,
    ERR_NOT_IN_RANGE,
    OK,
    AgentState,
    Simulation,
    body_cost,
)
from colonyloop.sim.world import (
    ConstructionTarget,
    ControllerState,
    Position,
    ResourceNode,
    SiteState,
    Structure,
    WorldState,
)


def _build_sim(spawn_store: int = 300) -> Simulation:
    site = SiteState(
        site_id="S1",
        width=12,
        height=12,
        controller=ControllerState(pos=Position(1, 1), level=1, owned=True),
    )
    site.structures["spawn-1"] = Structure(structure_id="spawn-1", kind="spawn", pos=Position(5, 5), store=spawn_store)
    site.resource_nodes["node-a"] = ResourceNode(node_id="node-a", pos=Position(9, 9))
    world = WorldState()
    world.add_site(site)
    return Simulation(world=world, seed=4)


def _add_worker(sim: Simulation, name: str, pos: Position, *, carry: int = 0, body=None) -> AgentState:
    agent = AgentState(
        name=name,
        site_id="S1",
        pos=pos,
        body=list(body or ["work", "carry", "move"]),
        carry=carry,
    )
    sim.add_agent(agent)
    return agent


def test_spawn_agent_charges_budget_and_stamps_memory() -> None:
    sim = _build_sim()

    result = sim.spawn_agent("spawn-1", ["work", "carry", "move"], "h1", {"role": "harvester"})

    assert result == OK
    assert sim.site("S1").energy_available == 300 - body_cost(["work", "carry", "move"])
    assert sim.get_agent("h1").spawning is True
    assert sim.memory["agents"]["h1"] == {"role": "harvester"}


def test_spawn_agent_result_codes() -> None:
    sim = _build_sim(spawn_store=100)

    assert sim.spawn_agent("missing", ["move"], "a1") == ERR_INVALID_TARGET
    assert sim.spawn_agent("node-a", ["move"], "a1") == ERR_INVALID_TARGET
    assert sim.spawn_agent("spawn-1", [], "a1") == ERR_INVALID_ARGS
    assert sim.spawn_agent("spawn-1", ["wings"], "a1") == ERR_INVALID_ARGS
    assert sim.spawn_agent("spawn-1", ["work", "carry", "move"], "a1") == ERR_NOT_ENOUGH_BUDGET
    assert sim.spawn_agent("spawn-1", ["move"], "a1") == OK
    assert sim.spawn_agent("spawn-1", ["move"], "a2") == ERR_BUSY


def test_spawn_agent_rejects_taken_name() -> None:
    sim = _build_sim()
    _add_worker(sim, "h1", Position(2, 2))

    assert sim.spawn_agent("spawn-1", ["move"], "h1") == ERR_NAME_EXISTS


def test_spawned_agent_emerges_next_to_facility() -> None:
    sim = _build_sim()
    sim.spawn_agent("spawn-1", ["work", "carry", "move"], "h1")

    sim.advance_ticks(8)
    assert sim.get_agent("h1").spawning is True
    sim.advance_ticks(1)

    agent = sim.get_agent("h1")
    assert agent.spawning is False
    assert agent.pos == Position(4, 4)
    assert agent.ticks_to_live == AGENT_LIFETIME - 1
    assert sim.site("S1").structures["spawn-1"].is_spawning is False


def test_spawning_agent_cannot_act() -> None:
    sim = _build_sim()
    sim.spawn_agent("spawn-1", ["work", "carry", "move"], "h1")

    assert sim.move_to("h1", Position(8, 8)) == ERR_BUSY
    assert sim.harvest("h1", "node-a") == ERR_BUSY


def test_move_to_steps_one_cell_toward_goal() -> None:
    sim = _build_sim()
    agent = _add_worker(sim, "h1", Position(2, 8))

    assert sim.move_to("h1", Position(9, 9)) == OK
    assert agent.pos.range_to(Position(2, 8)) == 1
    assert sim.move_to("h1", agent.pos) == OK


def test_move_without_move_parts_fails() -> None:
    sim = _build_sim()
    _add_worker(sim, "h1", Position(2, 8), body=["work", "carry"])

    assert sim.move_to("h1", Position(9, 9)) == ERR_NO_BODYPART


def test_harvest_overflow_is_dropped_on_the_ground() -> None:
    sim = _build_sim()
    agent = _add_worker(sim, "h1", Position(8, 8), carry=49, body=["work", "work", "carry", "move"])

    assert sim.harvest("h1", "node-a") == OK

    site = sim.site("S1")
    assert agent.carry == 50
    assert site.resource_nodes["node-a"].amount == 3000 - 4
    assert [(drop.pos, drop.amount) for drop in site.dropped.values()] == [(Position(8, 8), 3)]


def test_harvest_requires_adjacency() -> None:
    sim = _build_sim()
    _add_worker(sim, "h1", Position(2, 2))

    assert sim.harvest("h1", "node-a") == ERR_NOT_IN_RANGE
    assert sim.harvest("h1", "missing") == ERR_INVALID_TARGET


def test_withdraw_and_transfer_move_energy() -> None:
    sim = _build_sim()
    spawn = sim.site("S1").structures["spawn-1"]
    agent = _add_worker(sim, "h1", Position(4, 5))

    assert sim.withdraw("h1", "spawn-1") == OK
    assert agent.carry == 50
    assert spawn.store == 250
    assert sim.withdraw("h1", "spawn-1") == ERR_FULL

    assert sim.transfer("h1", "spawn-1") == OK
    assert agent.carry == 0
    assert spawn.store == 300
    assert sim.transfer("h1", "spawn-1") == ERR_NOT_ENOUGH_RESOURCES


def test_pickup_removes_exhausted_drop() -> None:
    sim = _build_sim()
    agent = _add_worker(sim, "h1", Position(3, 3), carry=30)
    sim.drop("h1")
    assert agent.carry == 0

    [drop_id] = sim.site("S1").dropped

    assert sim.pickup("h1", drop_id) == OK
    assert agent.carry == 30
    assert sim.site("S1").dropped == {}


def test_upgrade_levels_up_the_controller() -> None:
    sim = _build_sim()
    controller = sim.site("S1").controller
    controller.progress = 199
    _add_worker(sim, "u1", Position(4, 4), carry=10)

    assert sim.upgrade_controller("u1") == OK

    assert controller.level == 2
    assert controller.progress == 0


def test_upgrade_requires_range_three() -> None:
    sim = _build_sim()
    _add_worker(sim, "u1", Position(5, 5), carry=10)

    assert sim.upgrade_controller("u1") == ERR_NOT_IN_RANGE


def test_build_completion_creates_structure() -> None:
    sim = _build_sim()
    site = sim.site("S1")
    site.construction["cs-1"] = ConstructionTarget(
        target_id="cs-1", kind="extension", pos=Position(7, 3), progress=0, progress_total=8
    )
    agent = _add_worker(sim, "b1", Position(5, 3), carry=50, body=["work", "work", "carry", "move"])

    assert sim.build("b1", "cs-1") == OK

    assert "cs-1" not in site.construction
    assert site.structures["cs-1"].kind == "extension"
    assert site.structures["cs-1"].capacity == 50
    assert agent.carry == 42
    assert site.energy_capacity_available == 350


def test_build_spends_at_most_build_power_per_work_part() -> None:
    sim = _build_sim()
    site = sim.site("S1")
    site.construction["cs-1"] = ConstructionTarget(target_id="cs-1", kind="road", pos=Position(7, 3))
    agent = _add_worker(sim, "b1", Position(7, 6), carry=50)

    assert sim.build("b1", "cs-1") == OK

    assert site.construction["cs-1"].progress == 5
    assert agent.carry == 45


def test_expired_agent_drops_its_carry() -> None:
    sim = _build_sim()
    agent = _add_worker(sim, "h1", Position(3, 7), carry=20)
    agent.ticks_to_live = 1

    sim.advance_ticks(1)

    site = sim.site("S1")
    assert sim.get_agent("h1") is None
    assert [(drop.drop_id, drop.pos, drop.amount) for drop in site.dropped.values()] == [
        ("drop-000001", Position(3, 7), 20)
    ]


def test_depleted_node_regenerates() -> None:
    sim = _build_sim()
    node = sim.site("S1").resource_nodes["node-a"]
    node.amount = 0
    node.ticks_to_regeneration = 2

    sim.advance_ticks(1)
    assert node.amount == 0
    sim.advance_ticks(1)

    assert node.amount == node.capacity


def test_recycle_requires_adjacent_spawn() -> None:
    sim = _build_sim()
    _add_worker(sim, "h1", Position(1, 9))
    _add_worker(sim, "h2", Position(6, 6))

    assert sim.recycle_agent("spawn-1", "h1") == ERR_NOT_IN_RANGE
    assert sim.recycle_agent("spawn-1", "h2") == OK
    assert sim.get_agent("h2") is None


def test_add_agent_validates_site_and_body() -> None:
    sim = _build_sim()

    with pytest.raises(ValueError, match="unknown site"):
        sim.add_agent(AgentState(name="x", site_id="S9", pos=Position(0, 0), body=["move"]))
    with pytest.raises(ValueError, match="unknown body parts"):
        sim.add_agent(AgentState(name="x", site_id="S1", pos=Position(0, 0), body=["wings"]))


def test_action_trace_records_results() -> None:
    sim = _build_sim()
    _add_worker(sim, "h1", Position(8, 8))
    sim.harvest("h1", "node-a")

    assert sim.action_trace()[-1] == {"tick": 0, "agent": "h1", "action": "harvest", "target": "node-a", "result": OK}


def test_repair_restores_hits_and_spends_energy() -> None:
    sim = _build_sim()
    site = sim.site("S1")
    site.structures["road-1"] = Structure(structure_id="road-1", kind="road", pos=Position(7, 5), hits=1000)
    agent = _add_worker(sim, "r1", Position(4, 5), carry=50)

    assert sim.repair("r1", "road-1") == OK

    assert site.structures["road-1"].hits == 1100
    assert agent.carry == 49


def test_repair_result_codes() -> None:
    sim = _build_sim()
    site = sim.site("S1")
    site.structures["road-1"] = Structure(structure_id="road-1", kind="road", pos=Position(10, 2), hits=10)
    _add_worker(sim, "r1", Position(5, 2), carry=50)
    _add_worker(sim, "r2", Position(6, 5), carry=50)

    assert sim.repair("r1", "road-1") == ERR_NOT_IN_RANGE
    assert sim.repair("r2", "spawn-1") == ERR_FULL
    assert sim.repair("r2", "missing") == ERR_INVALID_TARGET


def test_tower_repair_spends_tower_energy() -> None:
    sim = _build_sim()
    site = sim.site("S1")
    site.structures["tower-1"] = Structure(structure_id="tower-1", kind="tower", pos=Position(2, 8), store=500)
    site.structures["road-1"] = Structure(structure_id="road-1", kind="road", pos=Position(10, 2), hits=4500)

    assert sim.tower_repair("tower-1", "road-1") == OK

    assert site.structures["road-1"].hits == 5000
    assert site.structures["tower-1"].store == 490
    assert sim.tower_repair("tower-1", "road-1") == ERR_FULL


def test_tower_repair_result_codes() -> None:
    sim = _build_sim()
    site = sim.site("S1")
    site.structures["tower-1"] = Structure(structure_id="tower-1", kind="tower", pos=Position(2, 8), store=5)
    site.structures["road-1"] = Structure(structure_id="road-1", kind="road", pos=Position(10, 2), hits=10)

    assert sim.tower_repair("tower-1", "road-1") == ERR_NOT_ENOUGH_RESOURCES
    assert sim.tower_repair("spawn-1", "road-1") == ERR_INVALID_TARGET
    assert sim.tower_repair("tower-1", "missing") == ERR_INVALID_TARGET
