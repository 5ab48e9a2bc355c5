import logging

from colonyloop.control.constants import ROLE_HARVESTER, STATE_HARVESTING, STATE_SPAWNING
from colonyloop.control.dispatch import (
    OUTCOME_FAILED,
    OUTCOME_RAN,
    OUTCOME_RECYCLED,
    OUTCOME_SPAWNING,
    OUTCOME_UNKNOWN_ROLE,
    AgentDispatcher,
)
from colonyloop.control.memory import AgentMemory, MemoryStore
from colonyloop.control.roles import AgentContext, HarvesterRole, Role, RoleTable
from colonyloop.sim.core import ERR_NO_PATH, OK, AgentState, Simulation
from colonyloop.sim.world import ControllerState, Position, ResourceNode, SiteState, Structure, WorldState

WORKER = ["work", "carry", "move"]


class _ExplodingRole(Role):
    name = "exploder"
    states = ("busy",)
    initial_state = "busy"

    def run(self, ctx: AgentContext) -> None:
        raise RuntimeError("boom")


def _sim() -> Simulation:
    site = SiteState(
        site_id="S1",
        width=12,
        height=12,
        controller=ControllerState(pos=Position(1, 1), level=1, owned=True),
    )
    site.structures["spawn-1"] = Structure(structure_id="spawn-1", kind="spawn", pos=Position(6, 6), store=300)
    site.resource_nodes["node-a"] = ResourceNode(node_id="node-a", pos=Position(10, 10))
    world = WorldState()
    world.add_site(site)
    sim = Simulation(world=world, seed=3)
    MemoryStore(sim.memory)
    return sim


def _add(sim: Simulation, name: str, *, role: str | None, pos: Position, ticks_to_live: int | None = 1500) -> None:
    sim.add_agent(AgentState(name=name, site_id="S1", pos=pos, body=list(WORKER), ticks_to_live=ticks_to_live))
    if role is not None:
        MemoryStore(sim.memory).commit_agent(name, AgentMemory(role=role, state=STATE_HARVESTING, initialized=True))


def test_spawning_agent_is_initialized_and_skipped() -> None:
    sim = _sim()
    sim.state.tick = 12
    assert sim.spawn_agent("spawn-1", list(WORKER), "fresh", memory={"role": ROLE_HARVESTER}) == OK

    report = AgentDispatcher().run_all(sim, MemoryStore(sim.memory))

    assert [(result.name, result.outcome) for result in report.results] == [("fresh", OUTCOME_SPAWNING)]
    memory = MemoryStore(sim.memory).agent("fresh")
    assert memory.initialized is True
    assert memory.state == STATE_SPAWNING
    assert memory.born == 12
    assert memory.home_site == "S1"
    assert memory.work_site == "S1"


def test_agent_without_memory_gets_fallback_role_and_initial_state() -> None:
    sim = _sim()
    _add(sim, "bare", role=None, pos=Position(3, 3))

    report = AgentDispatcher().run_all(sim, MemoryStore(sim.memory))

    assert report.results[0].outcome == OUTCOME_RAN
    memory = MemoryStore(sim.memory).agent("bare")
    assert memory.role == ROLE_HARVESTER
    assert memory.state == STATE_HARVESTING
    assert memory.stats == {"gathered": 0, "spent": 0, "work_done": 0}


def test_unknown_role_is_logged_every_tick_and_stays_inert(caplog) -> None:
    sim = _sim()
    _add(sim, "lost", role="scout", pos=Position(3, 3))
    _add(sim, "worker", role=ROLE_HARVESTER, pos=Position(8, 8))
    dispatcher = AgentDispatcher()

    with caplog.at_level(logging.WARNING, logger="colonyloop.dispatch"):
        first = dispatcher.run_all(sim, MemoryStore(sim.memory))
        second = dispatcher.run_all(sim, MemoryStore(sim.memory))

    warnings = [record for record in caplog.records if "scout" in record.getMessage()]
    assert len(warnings) == 2
    assert sim.get_agent("lost").pos == Position(3, 3)
    for report in (first, second):
        outcomes = {result.name: result.outcome for result in report.results}
        assert outcomes == {"lost": OUTCOME_UNKNOWN_ROLE, "worker": OUTCOME_RAN}


def test_recycling_triggers_below_fifty_ticks_only() -> None:
    sim = _sim()
    _add(sim, "old", role=ROLE_HARVESTER, pos=Position(5, 5), ticks_to_live=49)
    _add(sim, "fine", role=ROLE_HARVESTER, pos=Position(7, 7), ticks_to_live=50)

    report = AgentDispatcher().run_all(sim, MemoryStore(sim.memory))

    outcomes = {result.name: result.outcome for result in report.results}
    assert outcomes == {"fine": OUTCOME_RAN, "old": OUTCOME_RECYCLED}
    assert sim.get_agent("old") is None
    assert "old" not in sim.memory["agents"]
    assert sim.get_agent("fine") is not None


def test_recycling_agent_walks_to_nearest_facility() -> None:
    sim = _sim()
    _add(sim, "old", role=ROLE_HARVESTER, pos=Position(9, 6), ticks_to_live=10)

    report = AgentDispatcher().run_all(sim, MemoryStore(sim.memory))

    assert report.results[0].outcome == OUTCOME_RECYCLED
    assert sim.get_agent("old").pos.range_to(Position(6, 6)) == 2
    assert MemoryStore(sim.memory).agent("old").target == "spawn-1"


def test_behavior_fault_is_isolated_to_its_agent(caplog) -> None:
    sim = _sim()
    table = RoleTable()
    table.register(_ExplodingRole())
    table.register(HarvesterRole())
    _add(sim, "a-bomb", role="exploder", pos=Position(3, 3))
    _add(sim, "b-worker", role=ROLE_HARVESTER, pos=Position(8, 8))

    with caplog.at_level(logging.ERROR, logger="colonyloop.dispatch"):
        report = AgentDispatcher(role_table=table).run_all(sim, MemoryStore(sim.memory))

    assert [result.name for result in report.failures] == ["a-bomb"]
    assert report.failures[0].error == "RuntimeError: boom"
    assert report.count(OUTCOME_RAN) == 1
    assert report.count(OUTCOME_FAILED) == 1
    assert "a-bomb" in caplog.text
    assert MemoryStore(sim.memory).agent("a-bomb").state == "busy"
    assert sim.get_agent("b-worker").pos == Position(9, 9)


def test_agents_are_visited_in_name_order() -> None:
    sim = _sim()
    for name in ("zeta", "alpha", "mid"):
        _add(sim, name, role=ROLE_HARVESTER, pos=Position(3, 8))

    report = AgentDispatcher().run_all(sim, MemoryStore(sim.memory))

    assert [result.name for result in report.results] == ["alpha", "mid", "zeta"]


def test_recycling_agent_drops_target_when_move_finds_no_path(monkeypatch) -> None:
    sim = _sim()
    _add(sim, "old", role=ROLE_HARVESTER, pos=Position(9, 6), ticks_to_live=10)
    monkeypatch.setattr(sim, "move_to", lambda name, goal, range_=1: ERR_NO_PATH)

    report = AgentDispatcher().run_all(sim, MemoryStore(sim.memory))

    assert report.results[0].outcome == OUTCOME_RECYCLED
    assert MemoryStore(sim.memory).agent("old").target is None


def test_recycling_agent_walled_off_from_every_facility_clears_target() -> None:
    sim = _sim()
    site = sim.site("S1")
    site.walls = {Position(6 + dx, 6 + dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if (dx, dy) != (0, 0)}
    _add(sim, "old", role=ROLE_HARVESTER, pos=Position(9, 9), ticks_to_live=10)
    store = MemoryStore(sim.memory)
    memory = store.agent("old")
    memory.target = "node-a"
    store.commit_agent("old", memory)

    AgentDispatcher().run_all(sim, MemoryStore(sim.memory))

    assert sim.get_agent("old").pos == Position(9, 9)
    assert MemoryStore(sim.memory).agent("old").target is None
