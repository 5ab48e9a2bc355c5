"""Durable key-value memory preserved by the host between ticks.

The host hands back whatever it stored last time, which after a redeploy may be a stale or
partially populated tree. Everything here therefore loads through ``from_dict`` helpers that
fill missing fields with defaults and carry unknown keys through untouched, so a record that
nobody mutates is written back exactly as it was read.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from colonyloop.control.constants import STATE_SPAWNING

if TYPE_CHECKING:
    from colonyloop.sim.core import Simulation

MEMORY_SCHEMA_VERSION = 1
MEMORY_ROOT_SECTIONS = ("agents", "sites", "empire", "stats")
AGENT_STAT_KEYS = ("gathered", "spent", "work_done")

_AGENT_FIELDS = {"role", "state", "target", "home_site", "work_site", "initialized", "born", "stats"}
_SITE_FIELDS = {
    "initialized",
    "last_seen",
    "controller",
    "sources",
    "minerals",
    "threats",
    "economy",
    "military",
    "construction_plans",
    "last_plan_update",
    "last_plan_level",
    "cache",
    "creep_counts_by_role",
    "last_analysis_tick",
}


def _is_json_primitive(value: Any) -> bool:
    return value is None or isinstance(value, (bool, int, float, str))


def _validate_json_value(value: Any, *, field_name: str) -> None:
    if _is_json_primitive(value):
        return
    if isinstance(value, list):
        for item in value:
            _validate_json_value(item, field_name=field_name)
        return
    if isinstance(value, dict):
        for key, nested_value in value.items():
            if not isinstance(key, str):
                raise ValueError(f"{field_name} keys must be strings")
            _validate_json_value(nested_value, field_name=field_name)
        return
    raise ValueError(f"{field_name} must contain only canonical JSON primitives")


def _optional_str(value: Any) -> str | None:
    return str(value) if value is not None else None


def _optional_int(value: Any) -> int | None:
    return int(value) if value is not None else None


def _require_mapping(value: Any, *, field_name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"{field_name} must be an object")
    return value


def _require_list(value: Any, *, field_name: str) -> list[Any]:
    if not isinstance(value, list):
        raise ValueError(f"{field_name} must be a list")
    return value


def default_agent_stats() -> dict[str, int]:
    return {key: 0 for key in AGENT_STAT_KEYS}


def default_economy() -> dict[str, Any]:
    return {"energy_capacity": 0, "energy_available": 0}


@dataclass
class AgentMemory:
    role: str = ""
    state: str = STATE_SPAWNING
    target: str | None = None
    home_site: str | None = None
    work_site: str | None = None
    initialized: bool = False
    born: int = 0
    stats: dict[str, int] = field(default_factory=default_agent_stats)
    unknown_fields: dict[str, Any] = field(default_factory=dict)

    def initialize(self, *, role: str, site_id: str, tick: int) -> None:
        self.role = role
        self.state = STATE_SPAWNING
        self.home_site = self.home_site or site_id
        self.work_site = self.work_site or site_id
        self.initialized = True
        self.born = tick
        self.stats = default_agent_stats()

    def add_stat(self, key: str, amount: int) -> None:
        if amount > 0:
            self.stats[key] = int(self.stats.get(key, 0)) + amount

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "role": self.role,
            "state": self.state,
            "target": self.target,
            "home_site": self.home_site,
            "work_site": self.work_site,
            "initialized": self.initialized,
            "born": self.born,
            "stats": dict(self.stats),
        }
        payload.update(copy.deepcopy(self.unknown_fields))
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentMemory":
        _require_mapping(data, field_name="agent memory")
        raw_stats = data.get("stats")
        stats = default_agent_stats()
        if raw_stats is not None:
            for key, value in _require_mapping(raw_stats, field_name="agent memory stats").items():
                stats[str(key)] = int(value)
        return cls(
            role=str(data.get("role") or ""),
            state=str(data.get("state") or STATE_SPAWNING),
            target=_optional_str(data.get("target")),
            home_site=_optional_str(data.get("home_site")),
            work_site=_optional_str(data.get("work_site")),
            initialized=bool(data.get("initialized", False)),
            born=int(data.get("born", 0)),
            stats=stats,
            unknown_fields={key: copy.deepcopy(value) for key, value in data.items() if key not in _AGENT_FIELDS},
        )


@dataclass
class SiteMemory:
    initialized: bool = True
    last_seen: int = 0
    controller: dict[str, Any] = field(default_factory=dict)
    sources: list[dict[str, Any]] = field(default_factory=list)
    minerals: list[dict[str, Any]] = field(default_factory=list)
    threats: list[dict[str, Any]] = field(default_factory=list)
    economy: dict[str, Any] = field(default_factory=default_economy)
    military: dict[str, Any] = field(default_factory=dict)
    construction_plans: list[dict[str, Any]] = field(default_factory=list)
    last_plan_update: int | None = None
    last_plan_level: int | None = None
    cache: dict[str, dict[str, Any]] = field(default_factory=dict)
    creep_counts_by_role: dict[str, int] = field(default_factory=dict)
    last_analysis_tick: int | None = None
    unknown_fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "initialized": self.initialized,
            "last_seen": self.last_seen,
            "controller": copy.deepcopy(self.controller),
            "sources": copy.deepcopy(self.sources),
            "minerals": copy.deepcopy(self.minerals),
            "threats": copy.deepcopy(self.threats),
            "economy": copy.deepcopy(self.economy),
            "military": copy.deepcopy(self.military),
            "construction_plans": copy.deepcopy(self.construction_plans),
            "last_plan_update": self.last_plan_update,
            "last_plan_level": self.last_plan_level,
            "cache": copy.deepcopy(self.cache),
            "creep_counts_by_role": dict(self.creep_counts_by_role),
            "last_analysis_tick": self.last_analysis_tick,
        }
        payload.update(copy.deepcopy(self.unknown_fields))
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SiteMemory":
        _require_mapping(data, field_name="site memory")
        cache = _require_mapping(data.get("cache", {}), field_name="site memory cache")
        for key, entry in cache.items():
            _require_mapping(entry, field_name=f"site memory cache[{key}]")
        return cls(
            initialized=bool(data.get("initialized", True)),
            last_seen=int(data.get("last_seen", 0)),
            controller=copy.deepcopy(_require_mapping(data.get("controller", {}), field_name="site memory controller")),
            sources=copy.deepcopy(_require_list(data.get("sources", []), field_name="site memory sources")),
            minerals=copy.deepcopy(_require_list(data.get("minerals", []), field_name="site memory minerals")),
            threats=copy.deepcopy(_require_list(data.get("threats", []), field_name="site memory threats")),
            economy=copy.deepcopy(
                _require_mapping(data.get("economy", default_economy()), field_name="site memory economy")
            ),
            military=copy.deepcopy(_require_mapping(data.get("military", {}), field_name="site memory military")),
            construction_plans=copy.deepcopy(
                _require_list(data.get("construction_plans", []), field_name="site memory construction_plans")
            ),
            last_plan_update=_optional_int(data.get("last_plan_update")),
            last_plan_level=_optional_int(data.get("last_plan_level")),
            cache=copy.deepcopy(cache),
            creep_counts_by_role={
                str(role): int(count)
                for role, count in _require_mapping(
                    data.get("creep_counts_by_role", {}), field_name="site memory creep_counts_by_role"
                ).items()
            },
            last_analysis_tick=_optional_int(data.get("last_analysis_tick")),
            unknown_fields={key: copy.deepcopy(value) for key, value in data.items() if key not in _SITE_FIELDS},
        )


def migrate_memory_root(root: dict[str, Any]) -> dict[str, Any]:
    """Bring a raw memory root up to the current schema in place."""
    _require_mapping(root, field_name="memory root")
    raw_version = root.get("schema_version", 0)
    if isinstance(raw_version, bool) or not isinstance(raw_version, int) or raw_version < 0:
        raise ValueError("memory schema_version must be a non-negative integer")
    if raw_version > MEMORY_SCHEMA_VERSION:
        raise ValueError(f"unsupported memory schema_version: {raw_version}")
    for section in MEMORY_ROOT_SECTIONS:
        _require_mapping(root.setdefault(section, {}), field_name=f"memory.{section}")
    root["schema_version"] = MEMORY_SCHEMA_VERSION
    return root


class MemoryStore:
    """Typed view over the host's raw memory root.

    Commits write straight into the root, so anything committed earlier in a tick is visible
    to every later reader in the same tick.
    """

    def __init__(self, root: dict[str, Any]) -> None:
        self.root = migrate_memory_root(root)

    # Agents

    def agent_names(self) -> list[str]:
        return sorted(self.root["agents"])

    def has_agent(self, name: str) -> bool:
        return name in self.root["agents"]

    def agent(self, name: str) -> AgentMemory:
        return AgentMemory.from_dict(self.root["agents"].get(name, {}))

    def commit_agent(self, name: str, memory: AgentMemory) -> None:
        self.root["agents"][name] = memory.to_dict()

    def forget_agent(self, name: str) -> None:
        self.root["agents"].pop(name, None)

    # Sites

    def site(self, site_id: str, *, tick: int) -> SiteMemory:
        raw = self.root["sites"].get(site_id)
        if raw is None:
            memory = SiteMemory(last_seen=tick)
            self.commit_site(site_id, memory)
            return memory
        return SiteMemory.from_dict(raw)

    def commit_site(self, site_id: str, memory: SiteMemory) -> None:
        self.root["sites"][site_id] = memory.to_dict()

    def touch_site(self, site_id: str, *, tick: int) -> None:
        memory = self.site(site_id, tick=tick)
        memory.last_seen = tick
        self.commit_site(site_id, memory)

    # Cache

    def set_cache(self, site_id: str, key: str, data: Any, *, ttl: int, tick: int) -> None:
        if not isinstance(key, str) or not key:
            raise ValueError("cache key must be a non-empty string")
        _validate_json_value(data, field_name=f"cache[{key}]")
        memory = self.site(site_id, tick=tick)
        memory.cache[key] = {"data": copy.deepcopy(data), "created": tick, "expires": tick + ttl}
        self.commit_site(site_id, memory)

    def get_cache(self, site_id: str, key: str, *, tick: int) -> Any:
        raw_site = self.root["sites"].get(site_id)
        if raw_site is None:
            return None
        entry = raw_site.get("cache", {}).get(key)
        if entry is None:
            return None
        expires = entry.get("expires")
        if expires is not None and tick > int(expires):
            del raw_site["cache"][key]
            return None
        return copy.deepcopy(entry.get("data"))

    # Housekeeping

    def cleanup(self, sim: Simulation, *, stale_site_ticks: int) -> dict[str, int]:
        """Garbage-collect records whose live counterpart is gone and refresh empire totals."""
        tick = sim.tick
        removed_agents = 0
        for name in self.agent_names():
            if sim.get_agent(name) is None:
                self.forget_agent(name)
                removed_agents += 1

        removed_sites = 0
        for site_id in sorted(self.root["sites"]):
            if site_id in sim.world.sites:
                continue
            last_seen = int(self.root["sites"][site_id].get("last_seen", 0))
            if tick - last_seen > stale_site_ticks:
                del self.root["sites"][site_id]
                removed_sites += 1

        expired_entries = 0
        for site_id in sorted(self.root["sites"]):
            cache = self.root["sites"][site_id].get("cache", {})
            for key in sorted(cache):
                expires = cache[key].get("expires")
                if expires is not None and tick > int(expires):
                    del cache[key]
                    expired_entries += 1

        total_energy = 0
        owned_site_ids = sim.world.owned_site_ids()
        for site_id in owned_site_ids:
            site = sim.site(site_id)
            total_energy += site.energy_available
            storage = site.storage()
            if storage is not None:
                total_energy += storage.store
        self.root["empire"] = {
            "total_energy": total_energy,
            "total_agents": len(sim.agents()),
            "level": max((sim.site(site_id).level for site_id in owned_site_ids), default=0),
        }
        return {"agents": removed_agents, "sites": removed_sites, "cache_entries": expired_entries}
