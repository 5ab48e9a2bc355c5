from __future__ import annotations

import logging
from typing import Any

from colonyloop.control.constants import (
    PRIORITY_MINIMAL,
    PRIORITY_NAMES,
    REPAIR_SKIPPED_KINDS,
    STRUCTURE_PLAN_PRIORITY,
    TOWER_REPAIR_MIN_FILL,
)
from colonyloop.control.memory import MemoryStore
from colonyloop.control.settings import ControlSettings
from colonyloop.sim.core import OK, Simulation
from colonyloop.sim.world import STRUCTURE_TOWER

LOGGER = logging.getLogger("colonyloop.planning")


class BuildPlanner:
    """Ranks a site's outstanding construction targets into ``construction_plans``.

    Placement is outside this planner; it only orders what already exists so builders work on
    the most important targets first.
    """

    def __init__(self, settings: ControlSettings | None = None) -> None:
        self.settings = settings if settings is not None else ControlSettings()

    def is_due(self, sim: Simulation, store: MemoryStore, site_id: str) -> bool:
        site_memory = store.site(site_id, tick=sim.tick)
        if site_memory.last_plan_update is None:
            return True
        if site_memory.last_plan_level != sim.site(site_id).level:
            return True
        return sim.tick - site_memory.last_plan_update >= self.settings.plan_interval_ticks

    def run(self, sim: Simulation, store: MemoryStore, site_id: str) -> bool:
        if not self.is_due(sim, store, site_id):
            return False
        site = sim.site(site_id)
        site_memory = store.site(site_id, tick=sim.tick)
        site_memory.construction_plans = self.rank(sim, site_id)
        site_memory.last_plan_update = sim.tick
        site_memory.last_plan_level = site.level
        store.commit_site(site_id, site_memory)
        LOGGER.debug("planned %d construction targets at %s", len(site_memory.construction_plans), site_id)
        return True

    def rank(self, sim: Simulation, site_id: str) -> list[dict[str, Any]]:
        site = sim.site(site_id)
        plans = []
        for target in site.construction.values():
            priority = STRUCTURE_PLAN_PRIORITY.get(target.kind, PRIORITY_MINIMAL)
            plans.append(
                {
                    "target_id": target.target_id,
                    "kind": target.kind,
                    "pos": target.pos.to_dict(),
                    "priority": priority,
                    "priority_name": PRIORITY_NAMES[priority],
                    "progress": target.progress,
                    "progress_total": target.progress_total,
                }
            )
        plans.sort(key=lambda plan: (-plan["priority"], plan["target_id"]))
        return plans


def maintain_structures(sim: Simulation, site_id: str) -> list[str]:
    """Let every sufficiently stocked tower repair the nearest damaged structure.

    Walls and ramparts are left alone. Returns the ids of the structures repaired this tick.
    """
    site = sim.site(site_id)
    repaired: list[str] = []
    for tower in site.structures_of(STRUCTURE_TOWER, owned_only=True):
        if tower.store < int(tower.capacity or 0) * TOWER_REPAIR_MIN_FILL:
            continue
        damaged = [
            structure
            for structure in site.structures.values()
            if structure.is_damaged and structure.kind not in REPAIR_SKIPPED_KINDS
        ]
        if not damaged:
            break
        target = min(damaged, key=lambda structure: (tower.pos.range_to(structure.pos), structure.structure_id))
        if sim.tower_repair(tower.structure_id, target.structure_id) == OK:
            repaired.append(target.structure_id)
    if repaired:
        LOGGER.debug("towers repaired %s at %s", ", ".join(repaired), site_id)
    return repaired
