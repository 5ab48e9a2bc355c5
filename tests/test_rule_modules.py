from pathlib import Path

import pytest

from colonyloop.content.io import load_world_json
from colonyloop.sim.core import Simulation
from colonyloop.sim.rules import RuleModule

EXAMPLE_WORLD = Path(__file__).resolve().parents[1] / "content" / "examples" / "basic_colony.json"


class RecordingModule(RuleModule):
    def __init__(self, name: str, calls: list[str]) -> None:
        self.name = name
        self.calls = calls

    def on_simulation_start(self, sim: Simulation) -> None:
        self.calls.append(f"{self.name}:simulation_start")

    def on_tick_start(self, sim: Simulation, tick: int) -> None:
        self.calls.append(f"{self.name}:tick_start:{tick}")

    def on_tick_end(self, sim: Simulation, tick: int) -> None:
        self.calls.append(f"{self.name}:tick_end:{tick}")


class RngCaptureModule(RuleModule):
    def __init__(self, name: str, outputs: list[float]) -> None:
        self.name = name
        self.outputs = outputs

    def on_tick_start(self, sim: Simulation, tick: int) -> None:
        self.outputs.append(sim.rng_stream("test").random())


def _build_sim(seed: int) -> Simulation:
    return Simulation(world=load_world_json(EXAMPLE_WORLD), seed=seed)


def test_module_tick_ordering() -> None:
    sim = _build_sim(seed=100)
    calls: list[str] = []

    sim.register_rule_module(RecordingModule(name="A", calls=calls))
    sim.register_rule_module(RecordingModule(name="B", calls=calls))

    sim.advance_ticks(1)

    assert calls == [
        "A:simulation_start",
        "B:simulation_start",
        "A:tick_start:0",
        "B:tick_start:0",
        "A:tick_end:0",
        "B:tick_end:0",
    ]


def test_duplicate_module_name_rejected() -> None:
    sim = _build_sim(seed=1)
    sim.register_rule_module(RecordingModule(name="A", calls=[]))

    with pytest.raises(ValueError, match="duplicate rule module name"):
        sim.register_rule_module(RecordingModule(name="A", calls=[]))


def test_module_rng_streams_are_seeded() -> None:
    first: list[float] = []
    second: list[float] = []
    other_seed: list[float] = []

    for seed, outputs in ((5, first), (5, second), (6, other_seed)):
        sim = _build_sim(seed=seed)
        sim.register_rule_module(RngCaptureModule(name="rng", outputs=outputs))
        sim.advance_ticks(3)

    assert first == second
    assert first != other_seed
    assert len(first) == 3
