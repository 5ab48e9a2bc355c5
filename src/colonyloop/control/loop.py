from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from colonyloop.control.dispatch import AgentDispatcher, DispatchReport
from colonyloop.control.intel import SiteIntelligence
from colonyloop.control.memory import MemoryStore
from colonyloop.control.planning import BuildPlanner, maintain_structures
from colonyloop.control.roles import RoleTable
from colonyloop.control.settings import ControlSettings
from colonyloop.control.spawning import SpawnScheduler
from colonyloop.sim.core import Simulation
from colonyloop.sim.periodic import PeriodicScheduler
from colonyloop.sim.rules import RuleModule

LOGGER = logging.getLogger("colonyloop.loop")

SUMMARY_TASK_NAME = "control.summary"


class ControlLoop(RuleModule):
    """Per-tick driver: housekeeping, per-site production, then agent dispatch.

    Nothing raised inside a tick escapes ``on_tick_start``; a fault ends that tick early and the
    next tick starts from whatever the memory store holds.
    """

    name = "control_loop"

    def __init__(
        self,
        *,
        settings: ControlSettings | None = None,
        role_table: RoleTable | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.settings = settings if settings is not None else ControlSettings()
        self.scheduler = SpawnScheduler(self.settings)
        self.dispatcher = AgentDispatcher(role_table, self.settings)
        self.intelligence = SiteIntelligence(self.settings)
        self.planner = BuildPlanner(self.settings)
        self.last_report: DispatchReport | None = None
        self._clock = clock

    def on_simulation_start(self, sim: Simulation) -> None:
        MemoryStore(sim.memory)
        scheduler = sim.get_rule_module(PeriodicScheduler.name)
        if scheduler is None:
            scheduler = PeriodicScheduler()
            sim.register_rule_module(scheduler)
        if not isinstance(scheduler, PeriodicScheduler):
            raise TypeError("periodic_scheduler module must be a PeriodicScheduler")
        scheduler.register_task(
            task_name=SUMMARY_TASK_NAME,
            interval_ticks=self.settings.summary_interval_ticks,
            start_tick=0,
        )
        scheduler.set_task_callback(SUMMARY_TASK_NAME, self._log_summary)

    def on_tick_start(self, sim: Simulation, tick: int) -> None:
        self.run_tick(sim)

    def run_tick(self, sim: Simulation) -> DispatchReport | None:
        started = self._clock()
        try:
            report, spawned = self._run_tick(sim)
        except Exception:
            LOGGER.exception("control tick %d aborted", sim.tick)
            return None
        self.last_report = report
        sim.memory["stats"] = {
            "tick": sim.tick,
            "cpu_ms": round((self._clock() - started) * 1000.0, 3),
            "agents": len(sim.agents()),
            "sites": len(sim.world.owned_site_ids()),
            "spawned": len(spawned),
            "failures": len(report.failures),
            "queued": len(self.scheduler.queue),
        }
        return report

    def _run_tick(self, sim: Simulation) -> tuple[DispatchReport, list[str]]:
        store = MemoryStore(sim.memory)
        store.cleanup(sim, stale_site_ticks=self.settings.stale_site_ticks)
        for site_id in sorted(sim.world.sites):
            store.touch_site(site_id, tick=sim.tick)

        owned_site_ids = sim.world.owned_site_ids()
        spawned: list[str] = []
        for site_id in owned_site_ids:
            self.intelligence.analyze(sim, store, site_id)
            self.planner.run(sim, store, site_id)
            maintain_structures(sim, site_id)
            spawned.extend(self.scheduler.run(sim, store, site_id))
        self.scheduler.prune(owned_site_ids)

        report = self.dispatcher.run_all(sim, store)
        return report, spawned

    def _log_summary(self, sim: Simulation, tick: int) -> None:
        stats: dict[str, Any] = sim.memory.get("stats", {})
        LOGGER.info(
            "tick %d: agents=%d sites=%d queued=%d failures=%d cpu=%.3fms",
            tick,
            int(stats.get("agents", 0)),
            int(stats.get("sites", 0)),
            int(stats.get("queued", 0)),
            int(stats.get("failures", 0)),
            float(stats.get("cpu_ms", 0.0)),
        )
