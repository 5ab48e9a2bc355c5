from __future__ import annotations

from collections.abc import Callable

from colonyloop.sim.core import Simulation
from colonyloop.sim.rules import RuleModule


class PeriodicScheduler(RuleModule):
    """Deterministic cadence substrate: fires registered callbacks every N ticks at tick end."""

    name = "periodic_scheduler"

    def __init__(self) -> None:
        self._task_intervals: dict[str, int] = {}
        self._task_start_ticks: dict[str, int] = {}
        self._registration_order: list[str] = []
        self._callbacks: dict[str, Callable[[Simulation, int], None]] = {}

    def register_task(self, *, task_name: str, interval_ticks: int, start_tick: int = 0) -> None:
        if not task_name:
            raise ValueError("task_name must be a non-empty string")
        if not isinstance(interval_ticks, int) or interval_ticks <= 0:
            raise ValueError("interval_ticks must be a positive integer")
        if not isinstance(start_tick, int) or start_tick < 0:
            raise ValueError("start_tick must be a non-negative integer")

        existing_interval = self._task_intervals.get(task_name)
        if existing_interval is not None:
            if existing_interval != interval_ticks:
                raise ValueError(
                    f"periodic task {task_name!r} already registered with interval "
                    f"{existing_interval}; got {interval_ticks}"
                )
            existing_start_tick = self._task_start_ticks[task_name]
            if existing_start_tick != start_tick:
                raise ValueError(
                    f"periodic task {task_name!r} already registered with start_tick "
                    f"{existing_start_tick}; got {start_tick}"
                )
            return

        self._task_intervals[task_name] = interval_ticks
        self._task_start_ticks[task_name] = start_tick
        self._registration_order.append(task_name)

    def set_task_callback(self, task_name: str, callback: Callable[[Simulation, int], None]) -> None:
        if task_name not in self._task_intervals:
            raise ValueError(f"cannot set callback for unknown periodic task: {task_name}")
        self._callbacks[task_name] = callback

    def is_due(self, task_name: str, tick: int) -> bool:
        interval = self._task_intervals[task_name]
        start_tick = self._task_start_ticks[task_name]
        return tick >= start_tick and (tick - start_tick) % interval == 0

    def on_tick_end(self, sim: Simulation, tick: int) -> None:
        for task_name in self._registration_order:
            callback = self._callbacks.get(task_name)
            if callback is not None and self.is_due(task_name, tick):
                callback(sim, tick)
