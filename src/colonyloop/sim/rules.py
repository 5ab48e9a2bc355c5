from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from colonyloop.sim.core import Simulation


class RuleModule:
    """Per-tick hook substrate for code that runs inside the host simulation.

    Rule modules are registered on a ``Simulation`` instance and are executed in
    stable registration order for every lifecycle hook.
    """

    name: str

    def on_simulation_start(self, sim: Simulation) -> None:
        """Called once, immediately when the module is registered."""

    def on_tick_start(self, sim: Simulation, tick: int) -> None:
        """Called before the environment advances the tick; control code issues intents here."""

    def on_tick_end(self, sim: Simulation, tick: int) -> None:
        """Called after spawning, aging and regeneration have been applied for the tick."""
