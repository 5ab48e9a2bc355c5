"""Cached per-site analysis: controller, resources, structures, threats, economy and defense."""

from __future__ import annotations

import re
from typing import Any

from colonyloop.control.constants import THREAT_COMBAT_PARTS
from colonyloop.control.memory import MemoryStore
from colonyloop.control.settings import ControlSettings
from colonyloop.sim.core import PART_ATTACK, PART_RANGED_ATTACK, Simulation, body_cost
from colonyloop.sim.world import (
    NEIGHBOR_OFFSETS,
    STRUCTURE_EXTENSION,
    STRUCTURE_FACTORY,
    STRUCTURE_LAB,
    STRUCTURE_RAMPART,
    STRUCTURE_SPAWN,
    STRUCTURE_STORAGE,
    STRUCTURE_TERMINAL,
    STRUCTURE_TOWER,
    Position,
    SiteState,
)

ANALYSIS_CACHE_KEY = "analysis"

SITE_TYPE_OWNED = "owned"
SITE_TYPE_HOSTILE = "hostile"
SITE_TYPE_HIGHWAY = "highway"
SITE_TYPE_SOURCE_KEEPER = "source_keeper"
SITE_TYPE_NEUTRAL = "neutral"

_GRID_SITE_ID = re.compile(r"^[WE](\d+)[NS](\d+)$")

DEFENSE_PER_TOWER = 100
DEFENSE_PER_RAMPART = 10
OFFENSE_PER_PART = 30


def threat_level(body: list[str]) -> int:
    if not body:
        return 1
    combat_parts = sum(1 for part in body if part in THREAT_COMBAT_PARTS)
    ratio = combat_parts / len(body)
    if ratio > 0.5:
        return 5
    if ratio > 0.3:
        return 4
    if ratio > 0.1:
        return 3
    if combat_parts > 0:
        return 2
    return 1


def site_type(site: SiteState) -> str:
    controller = site.controller
    if controller is not None and controller.owned:
        return SITE_TYPE_OWNED
    if controller is not None and controller.owner:
        return SITE_TYPE_HOSTILE
    match = _GRID_SITE_ID.match(site.site_id)
    if match:
        x, y = int(match.group(1)), int(match.group(2))
        if x % 10 == 0 or y % 10 == 0:
            return SITE_TYPE_HIGHWAY
        if x % 10 == 5 and y % 10 == 5:
            return SITE_TYPE_SOURCE_KEEPER
    return SITE_TYPE_NEUTRAL


class SiteIntelligence:
    def __init__(self, settings: ControlSettings | None = None) -> None:
        self.settings = settings if settings is not None else ControlSettings()

    def analyze(self, sim: Simulation, store: MemoryStore, site_id: str) -> dict[str, Any]:
        tick = sim.tick
        cached = store.get_cache(site_id, ANALYSIS_CACHE_KEY, tick=tick)
        if cached is not None and tick % self.settings.analysis_interval_ticks != 0:
            return cached

        analysis = self.perform_analysis(sim, site_id)
        store.set_cache(site_id, ANALYSIS_CACHE_KEY, analysis, ttl=self.settings.analysis_cache_ttl, tick=tick)
        site_memory = store.site(site_id, tick=tick)
        site_memory.controller = dict(analysis["controller"])
        site_memory.sources = [dict(row) for row in analysis["sources"]]
        site_memory.minerals = [dict(row) for row in analysis["minerals"]]
        site_memory.threats = [dict(row) for row in analysis["threats"]]
        site_memory.economy = dict(analysis["economy"])
        site_memory.military = dict(analysis["military"])
        site_memory.last_analysis_tick = tick
        store.commit_site(site_id, site_memory)
        return analysis

    def perform_analysis(self, sim: Simulation, site_id: str) -> dict[str, Any]:
        site = sim.site(site_id)
        return {
            "site_id": site_id,
            "site_type": site_type(site),
            "controller": self._controller(site),
            "sources": self._sources(site),
            "minerals": [
                {
                    "id": mineral.mineral_id,
                    "pos": mineral.pos.to_dict(),
                    "mineral_type": mineral.mineral_type,
                    "density": mineral.density,
                }
                for mineral in (site.minerals[key] for key in sorted(site.minerals))
            ],
            "structures": self._structure_counts(site),
            "threats": self._threats(site, sim.tick),
            "economy": self._economy(sim, site),
            "military": self._military(sim, site),
        }

    def _controller(self, site: SiteState) -> dict[str, Any]:
        controller = site.controller
        if controller is None:
            return {}
        return {"level": controller.level, "owner": controller.owner, "progress": controller.progress}

    def _sources(self, site: SiteState) -> list[dict[str, Any]]:
        occupied = {structure.pos for structure in site.structures.values()}
        rows: list[dict[str, Any]] = []
        for node_id in sorted(site.resource_nodes):
            node = site.resource_nodes[node_id]
            adjacent = [Position(node.pos.x + dx, node.pos.y + dy) for dx, dy in NEIGHBOR_OFFSETS]
            open_cells = [cell for cell in adjacent if site.in_bounds(cell) and cell not in site.walls]
            container_pos = next((cell for cell in open_cells if cell not in occupied), None)
            rows.append(
                {
                    "id": node_id,
                    "pos": node.pos.to_dict(),
                    "capacity": node.capacity,
                    "efficiency": len(open_cells) / 8,
                    "container_pos": container_pos.to_dict() if container_pos is not None else None,
                }
            )
        return rows

    def _structure_counts(self, site: SiteState) -> dict[str, Any]:
        return {
            "spawns": len(site.structures_of(STRUCTURE_SPAWN)),
            "extensions": len(site.structures_of(STRUCTURE_EXTENSION)),
            "towers": len(site.structures_of(STRUCTURE_TOWER)),
            "storage": bool(site.structures_of(STRUCTURE_STORAGE)),
            "terminal": bool(site.structures_of(STRUCTURE_TERMINAL)),
            "labs": len(site.structures_of(STRUCTURE_LAB)),
            "factories": len(site.structures_of(STRUCTURE_FACTORY)),
        }

    def _threats(self, site: SiteState, tick: int) -> list[dict[str, Any]]:
        return [
            {
                "id": hostile.hostile_id,
                "owner": hostile.owner,
                "pos": hostile.pos.to_dict(),
                "body": list(hostile.body),
                "last_seen": tick,
                "threat_level": threat_level(hostile.body),
            }
            for hostile in (site.hostiles[key] for key in sorted(site.hostiles))
        ]

    def _economy(self, sim: Simulation, site: SiteState) -> dict[str, Any]:
        capacity = site.energy_capacity_available
        available = site.energy_available
        income = sum(node.capacity for node in site.resource_nodes.values()) / 300
        expenditure = sum(body_cost(agent.body) for agent in sim.agents_at(site.site_id))
        return {
            "energy_capacity": capacity,
            "energy_available": available,
            "energy_income": income,
            "energy_expenditure": expenditure,
            "efficiency": available / capacity if capacity > 0 else 0,
        }

    def _military(self, sim: Simulation, site: SiteState) -> dict[str, Any]:
        towers = site.structures_of(STRUCTURE_TOWER, owned_only=True)
        ramparts = site.structures_of(STRUCTURE_RAMPART)
        offense = sum(
            (agent.parts(PART_ATTACK) + agent.parts(PART_RANGED_ATTACK)) * OFFENSE_PER_PART
            for agent in sim.agents_at(site.site_id)
        )
        return {
            "defense_rating": len(towers) * DEFENSE_PER_TOWER + len(ramparts) * DEFENSE_PER_RAMPART,
            "offense_rating": offense,
            "under_attack": bool(site.hostiles),
            "safe_mode": site.controller.safe_mode if site.controller is not None else 0,
            "ramparts": len(ramparts),
        }
