"""Body sizing and target acquisition chains shared by the role behaviors.

Every chain is an ordered tuple of tiers. A tier returns the candidates it offers for an agent and
the chain picks the nearest one by path cost from the first tier that yields anything reachable.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

from colonyloop.control.constants import (
    BODY_TABLES,
    BUILD_RANGE,
    DROPPED_RESOURCE_MIN_AMOUNT,
    MINIMAL_WORKER,
    STORAGE_WITHDRAW_FLOOR,
)
from colonyloop.sim.core import AgentState, Simulation
from colonyloop.sim.world import (
    STRUCTURE_CONTAINER,
    STRUCTURE_EXTENSION,
    STRUCTURE_SPAWN,
    STRUCTURE_STORAGE,
    STRUCTURE_TOWER,
    ConstructionTarget,
    SiteState,
    Structure,
)

Tier = Callable[[SiteState], Sequence[Any]]


def get_optimal_body(role: str, budget: int, level: int = 0) -> list[str]:
    """Return the largest fixed body for ``role`` whose budget floor is met.

    ``level`` is accepted for parity with the demand rules; none of the current tables depend on it.
    """
    table = BODY_TABLES.get(role)
    if table is None:
        return list(MINIMAL_WORKER)
    tiers, fallback = table
    for floor, body in tiers:
        if budget >= floor:
            return list(body)
    return list(fallback)


def dropped_tier(site: SiteState) -> list[Any]:
    return [drop for drop in site.dropped.values() if drop.amount > DROPPED_RESOURCE_MIN_AMOUNT]


def container_tier(site: SiteState) -> list[Any]:
    return [container for container in site.structures_of(STRUCTURE_CONTAINER) if container.store > 0]


def storage_tier(site: SiteState) -> list[Any]:
    storage = site.storage()
    if storage is not None and storage.store > STORAGE_WITHDRAW_FLOOR:
        return [storage]
    return []


def resource_node_tier(site: SiteState) -> list[Any]:
    return [node for node in site.resource_nodes.values() if node.amount > 0]


def _sink_tier(kind: str) -> Tier:
    def _tier(site: SiteState) -> list[Any]:
        return [structure for structure in site.structures_of(kind, owned_only=True) if structure.free_capacity > 0]

    return _tier


ACQUISITION_CHAIN: tuple[Tier, ...] = (dropped_tier, container_tier, storage_tier, resource_node_tier)
HAULER_ACQUISITION_CHAIN: tuple[Tier, ...] = (dropped_tier, container_tier, resource_node_tier)
DELIVERY_CHAIN: tuple[Tier, ...] = (
    _sink_tier(STRUCTURE_SPAWN),
    _sink_tier(STRUCTURE_EXTENSION),
    _sink_tier(STRUCTURE_TOWER),
    _sink_tier(STRUCTURE_STORAGE),
)


def select_from_chain(sim: Simulation, agent: AgentState, chain: Sequence[Tier], *, range_: int = 1) -> Any:
    site = sim.site(agent.site_id)
    for tier in chain:
        candidates = tier(site)
        if not candidates:
            continue
        chosen = site.closest_by_path(agent.pos, candidates, range_=range_)
        if chosen is not None:
            return chosen
    return None


def find_energy_source(sim: Simulation, agent: AgentState, chain: Sequence[Tier] = ACQUISITION_CHAIN) -> Any:
    return select_from_chain(sim, agent, chain)


def find_energy_sink(sim: Simulation, agent: AgentState) -> Structure | None:
    return select_from_chain(sim, agent, DELIVERY_CHAIN)


def find_build_target(
    sim: Simulation,
    agent: AgentState,
    plans: Sequence[dict[str, Any]] = (),
) -> ConstructionTarget | None:
    """Nearest outstanding construction target.

    When ``plans`` lists ranked targets, only the highest-priority group that still exists is
    considered; otherwise every target at the site is a candidate.
    """
    site = sim.site(agent.site_id)
    if not site.construction:
        return None
    live_plans = [plan for plan in plans if plan.get("target_id") in site.construction]
    if live_plans:
        top_priority = max(int(plan.get("priority", 0)) for plan in live_plans)
        candidates = [
            site.construction[str(plan["target_id"])]
            for plan in live_plans
            if int(plan.get("priority", 0)) == top_priority
        ]
        chosen = site.closest_by_path(agent.pos, candidates, range_=BUILD_RANGE)
        if chosen is not None:
            return chosen
    return site.closest_by_path(agent.pos, list(site.construction.values()), range_=BUILD_RANGE)


def find_recycle_facility(sim: Simulation, agent: AgentState) -> Structure | None:
    site = sim.site(agent.site_id)
    return site.closest_by_path(agent.pos, site.structures_of(STRUCTURE_SPAWN, owned_only=True))
