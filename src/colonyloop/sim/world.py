from __future__ import annotations

from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

DEFAULT_SITE_SIZE = 50
RESOURCE_NODE_CAPACITY = 3000
RESOURCE_NODE_REGEN_TICKS = 300

STRUCTURE_SPAWN = "spawn"
STRUCTURE_EXTENSION = "extension"
STRUCTURE_TOWER = "tower"
STRUCTURE_CONTAINER = "container"
STRUCTURE_STORAGE = "storage"
STRUCTURE_ROAD = "road"
STRUCTURE_RAMPART = "rampart"
STRUCTURE_WALL = "constructed_wall"
STRUCTURE_LINK = "link"
STRUCTURE_TERMINAL = "terminal"
STRUCTURE_LAB = "lab"
STRUCTURE_FACTORY = "factory"

STRUCTURE_CAPACITY = {
    STRUCTURE_SPAWN: 300,
    STRUCTURE_EXTENSION: 50,
    STRUCTURE_TOWER: 1000,
    STRUCTURE_CONTAINER: 2000,
    STRUCTURE_STORAGE: 1_000_000,
    STRUCTURE_LINK: 800,
    STRUCTURE_TERMINAL: 300_000,
}
STRUCTURE_HITS = {
    STRUCTURE_SPAWN: 5000,
    STRUCTURE_EXTENSION: 1000,
    STRUCTURE_TOWER: 3000,
    STRUCTURE_CONTAINER: 250_000,
    STRUCTURE_STORAGE: 10_000,
    STRUCTURE_ROAD: 5000,
    STRUCTURE_RAMPART: 300_000_000,
    STRUCTURE_WALL: 300_000_000,
    STRUCTURE_LINK: 1000,
    STRUCTURE_TERMINAL: 3000,
    STRUCTURE_LAB: 500,
    STRUCTURE_FACTORY: 1000,
}
STRUCTURE_KINDS = {
    STRUCTURE_SPAWN,
    STRUCTURE_EXTENSION,
    STRUCTURE_TOWER,
    STRUCTURE_CONTAINER,
    STRUCTURE_STORAGE,
    STRUCTURE_ROAD,
    STRUCTURE_RAMPART,
    STRUCTURE_WALL,
    STRUCTURE_LINK,
    STRUCTURE_TERMINAL,
    STRUCTURE_LAB,
    STRUCTURE_FACTORY,
}
WALKABLE_STRUCTURE_KINDS = {STRUCTURE_ROAD, STRUCTURE_CONTAINER, STRUCTURE_RAMPART}
BUDGET_STRUCTURE_KINDS = {STRUCTURE_SPAWN, STRUCTURE_EXTENSION}

NEIGHBOR_OFFSETS = tuple((dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if (dx, dy) != (0, 0))


class Positioned(Protocol):
    @property
    def object_id(self) -> str: ...

    @property
    def pos(self) -> Position: ...


T = TypeVar("T", bound=Positioned)


def _require_non_empty_str(value: Any, *, field_name: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{field_name} must be a non-empty string")
    return value


def _require_non_negative_int(value: Any, *, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name} must be an integer")
    if value < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return value


@dataclass(frozen=True, order=True)
class Position:
    """Grid cell inside a site."""

    x: int
    y: int

    def range_to(self, other: Position) -> int:
        return max(abs(self.x - other.x), abs(self.y - other.y))

    def is_near_to(self, other: Position) -> bool:
        return self.range_to(other) <= 1

    def to_dict(self) -> dict[str, int]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: Any) -> "Position":
        if isinstance(data, (list, tuple)) and len(data) == 2:
            return cls(x=int(data[0]), y=int(data[1]))
        if not isinstance(data, dict) or "x" not in data or "y" not in data:
            raise ValueError("position requires x and y")
        return cls(x=int(data["x"]), y=int(data["y"]))


@dataclass
class ControllerState:
    pos: Position
    level: int = 0
    progress: int = 0
    owned: bool = False
    owner: str | None = None
    safe_mode: int = 0

    @property
    def object_id(self) -> str:
        return "controller"

    def to_dict(self) -> dict[str, Any]:
        return {
            "pos": self.pos.to_dict(),
            "level": self.level,
            "progress": self.progress,
            "owned": self.owned,
            "owner": self.owner,
            "safe_mode": self.safe_mode,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ControllerState":
        return cls(
            pos=Position.from_dict(data["pos"]),
            level=_require_non_negative_int(int(data.get("level", 0)), field_name="controller.level"),
            progress=int(data.get("progress", 0)),
            owned=bool(data.get("owned", False)),
            owner=(str(data["owner"]) if data.get("owner") is not None else None),
            safe_mode=int(data.get("safe_mode", 0)),
        )


@dataclass
class ResourceNode:
    node_id: str
    pos: Position
    amount: int = RESOURCE_NODE_CAPACITY
    capacity: int = RESOURCE_NODE_CAPACITY
    ticks_to_regeneration: int = RESOURCE_NODE_REGEN_TICKS

    def __post_init__(self) -> None:
        _require_non_empty_str(self.node_id, field_name="resource_node.node_id")
        _require_non_negative_int(self.amount, field_name="resource_node.amount")

    @property
    def object_id(self) -> str:
        return self.node_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "pos": self.pos.to_dict(),
            "amount": self.amount,
            "capacity": self.capacity,
            "ticks_to_regeneration": self.ticks_to_regeneration,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResourceNode":
        capacity = int(data.get("capacity", RESOURCE_NODE_CAPACITY))
        return cls(
            node_id=str(data["node_id"]),
            pos=Position.from_dict(data["pos"]),
            amount=int(data.get("amount", capacity)),
            capacity=capacity,
            ticks_to_regeneration=int(data.get("ticks_to_regeneration", RESOURCE_NODE_REGEN_TICKS)),
        )


@dataclass
class MineralDeposit:
    mineral_id: str
    pos: Position
    mineral_type: str
    density: int = 0

    @property
    def object_id(self) -> str:
        return self.mineral_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "mineral_id": self.mineral_id,
            "pos": self.pos.to_dict(),
            "mineral_type": self.mineral_type,
            "density": self.density,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MineralDeposit":
        return cls(
            mineral_id=str(data["mineral_id"]),
            pos=Position.from_dict(data["pos"]),
            mineral_type=str(data["mineral_type"]),
            density=int(data.get("density", 0)),
        )


@dataclass
class Structure:
    structure_id: str
    kind: str
    pos: Position
    store: int = 0
    capacity: int | None = None
    owned: bool = True
    spawning_name: str | None = None
    spawning_remaining: int = 0
    hits: int | None = None
    hits_max: int | None = None

    def __post_init__(self) -> None:
        _require_non_empty_str(self.structure_id, field_name="structure.structure_id")
        if self.kind not in STRUCTURE_KINDS:
            raise ValueError(f"invalid structure kind: {self.kind}")
        if self.capacity is None:
            self.capacity = STRUCTURE_CAPACITY.get(self.kind, 0)
        if self.hits_max is None:
            self.hits_max = STRUCTURE_HITS[self.kind]
        if self.hits is None:
            self.hits = self.hits_max
        if not 0 < self.hits <= self.hits_max:
            raise ValueError("structure.hits must be in 1..hits_max")
        _require_non_negative_int(self.store, field_name="structure.store")

    @property
    def object_id(self) -> str:
        return self.structure_id

    @property
    def free_capacity(self) -> int:
        return max(0, int(self.capacity or 0) - self.store)

    @property
    def is_spawning(self) -> bool:
        return self.spawning_name is not None

    @property
    def is_damaged(self) -> bool:
        return int(self.hits or 0) < int(self.hits_max or 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "structure_id": self.structure_id,
            "kind": self.kind,
            "pos": self.pos.to_dict(),
            "store": self.store,
            "capacity": self.capacity,
            "owned": self.owned,
            "spawning_name": self.spawning_name,
            "spawning_remaining": self.spawning_remaining,
            "hits": self.hits,
            "hits_max": self.hits_max,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Structure":
        return cls(
            structure_id=str(data["structure_id"]),
            kind=str(data["kind"]),
            pos=Position.from_dict(data["pos"]),
            store=int(data.get("store", 0)),
            capacity=(int(data["capacity"]) if data.get("capacity") is not None else None),
            owned=bool(data.get("owned", True)),
            spawning_name=(str(data["spawning_name"]) if data.get("spawning_name") is not None else None),
            spawning_remaining=int(data.get("spawning_remaining", 0)),
            hits=(int(data["hits"]) if data.get("hits") is not None else None),
            hits_max=(int(data["hits_max"]) if data.get("hits_max") is not None else None),
        )


@dataclass
class DroppedResource:
    drop_id: str
    pos: Position
    amount: int

    @property
    def object_id(self) -> str:
        return self.drop_id

    def to_dict(self) -> dict[str, Any]:
        return {"drop_id": self.drop_id, "pos": self.pos.to_dict(), "amount": self.amount}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DroppedResource":
        return cls(drop_id=str(data["drop_id"]), pos=Position.from_dict(data["pos"]), amount=int(data["amount"]))


@dataclass
class ConstructionTarget:
    target_id: str
    kind: str
    pos: Position
    progress: int = 0
    progress_total: int = 1000

    def __post_init__(self) -> None:
        if self.kind not in STRUCTURE_KINDS:
            raise ValueError(f"invalid construction kind: {self.kind}")
        if self.progress_total <= 0:
            raise ValueError("construction.progress_total must be > 0")

    @property
    def object_id(self) -> str:
        return self.target_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "kind": self.kind,
            "pos": self.pos.to_dict(),
            "progress": self.progress,
            "progress_total": self.progress_total,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConstructionTarget":
        return cls(
            target_id=str(data["target_id"]),
            kind=str(data["kind"]),
            pos=Position.from_dict(data["pos"]),
            progress=int(data.get("progress", 0)),
            progress_total=int(data.get("progress_total", 1000)),
        )


@dataclass
class HostileRecord:
    hostile_id: str
    owner: str
    pos: Position
    body: list[str] = field(default_factory=list)

    @property
    def object_id(self) -> str:
        return self.hostile_id

    def to_dict(self) -> dict[str, Any]:
        return {"hostile_id": self.hostile_id, "owner": self.owner, "pos": self.pos.to_dict(), "body": list(self.body)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HostileRecord":
        return cls(
            hostile_id=str(data["hostile_id"]),
            owner=str(data.get("owner", "unknown")),
            pos=Position.from_dict(data["pos"]),
            body=[str(part) for part in data.get("body", [])],
        )


@dataclass
class SiteState:
    site_id: str
    width: int = DEFAULT_SITE_SIZE
    height: int = DEFAULT_SITE_SIZE
    walls: set[Position] = field(default_factory=set)
    controller: ControllerState | None = None
    resource_nodes: dict[str, ResourceNode] = field(default_factory=dict)
    minerals: dict[str, MineralDeposit] = field(default_factory=dict)
    structures: dict[str, Structure] = field(default_factory=dict)
    dropped: dict[str, DroppedResource] = field(default_factory=dict)
    construction: dict[str, ConstructionTarget] = field(default_factory=dict)
    hostiles: dict[str, HostileRecord] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _require_non_empty_str(self.site_id, field_name="site.site_id")
        if self.width <= 0 or self.height <= 0:
            raise ValueError("site width and height must be > 0")

    @property
    def is_owned(self) -> bool:
        return self.controller is not None and self.controller.owned

    @property
    def level(self) -> int:
        return self.controller.level if self.controller is not None else 0

    @property
    def energy_available(self) -> int:
        return sum(s.store for s in self.structures.values() if s.owned and s.kind in BUDGET_STRUCTURE_KINDS)

    @property
    def energy_capacity_available(self) -> int:
        return sum(
            int(s.capacity or 0) for s in self.structures.values() if s.owned and s.kind in BUDGET_STRUCTURE_KINDS
        )

    def structures_of(self, kind: str, *, owned_only: bool = False) -> list[Structure]:
        return [
            structure
            for structure in sorted(self.structures.values(), key=lambda current: current.structure_id)
            if structure.kind == kind and (structure.owned or not owned_only)
        ]

    def storage(self) -> Structure | None:
        storages = self.structures_of(STRUCTURE_STORAGE, owned_only=True)
        return storages[0] if storages else None

    def in_bounds(self, pos: Position) -> bool:
        return 0 <= pos.x < self.width and 0 <= pos.y < self.height

    def blocked_positions(self) -> set[Position]:
        blocked = set(self.walls)
        blocked.update(node.pos for node in self.resource_nodes.values())
        blocked.update(mineral.pos for mineral in self.minerals.values())
        blocked.update(
            structure.pos
            for structure in self.structures.values()
            if structure.kind not in WALKABLE_STRUCTURE_KINDS
        )
        if self.controller is not None:
            blocked.add(self.controller.pos)
        return blocked

    def find_path(self, start: Position, goal: Position, *, range_: int = 1) -> list[Position] | None:
        """Breadth-first 8-way path from ``start`` to any cell within ``range_`` of ``goal``.

        Returns the steps to take (excluding ``start``), an empty list when already in range,
        or None when no cell in range is reachable.
        """
        if start.range_to(goal) <= range_:
            return []
        blocked = self.blocked_positions()
        came_from: dict[Position, Position | None] = {start: None}
        frontier: deque[Position] = deque([start])
        while frontier:
            current = frontier.popleft()
            for dx, dy in NEIGHBOR_OFFSETS:
                candidate = Position(current.x + dx, current.y + dy)
                if candidate in came_from or not self.in_bounds(candidate) or candidate in blocked:
                    continue
                came_from[candidate] = current
                if candidate.range_to(goal) <= range_:
                    return _walk_back(came_from, candidate)
                frontier.append(candidate)
        return None

    def path_cost(self, start: Position, goal: Position, *, range_: int = 1) -> int | None:
        path = self.find_path(start, goal, range_=range_)
        return None if path is None else len(path)

    def closest_by_path(self, start: Position, candidates: Sequence[T], *, range_: int = 1) -> T | None:
        """Nearest candidate by path cost; ties break by object id, unreachable ones are skipped."""
        if not candidates:
            return None
        reached = [candidate for candidate in candidates if start.range_to(candidate.pos) <= range_]
        if reached:
            return min(reached, key=lambda candidate: candidate.object_id)
        blocked = self.blocked_positions()
        seen = {start}
        frontier = [start]
        while frontier:
            next_frontier: list[Position] = []
            for current in frontier:
                for dx, dy in NEIGHBOR_OFFSETS:
                    candidate_pos = Position(current.x + dx, current.y + dy)
                    if candidate_pos in seen or not self.in_bounds(candidate_pos) or candidate_pos in blocked:
                        continue
                    seen.add(candidate_pos)
                    next_frontier.append(candidate_pos)
            hits = [
                candidate
                for candidate in candidates
                if any(cell.range_to(candidate.pos) <= range_ for cell in next_frontier)
            ]
            if hits:
                return min(hits, key=lambda candidate: candidate.object_id)
            frontier = next_frontier
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "site_id": self.site_id,
            "width": self.width,
            "height": self.height,
            "walls": [[pos.x, pos.y] for pos in sorted(self.walls)],
            "controller": self.controller.to_dict() if self.controller is not None else None,
            "resource_nodes": [self.resource_nodes[key].to_dict() for key in sorted(self.resource_nodes)],
            "minerals": [self.minerals[key].to_dict() for key in sorted(self.minerals)],
            "structures": [self.structures[key].to_dict() for key in sorted(self.structures)],
            "dropped": [self.dropped[key].to_dict() for key in sorted(self.dropped)],
            "construction": [self.construction[key].to_dict() for key in sorted(self.construction)],
            "hostiles": [self.hostiles[key].to_dict() for key in sorted(self.hostiles)],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SiteState":
        nodes = [ResourceNode.from_dict(row) for row in data.get("resource_nodes", [])]
        minerals = [MineralDeposit.from_dict(row) for row in data.get("minerals", [])]
        structures = [Structure.from_dict(row) for row in data.get("structures", [])]
        dropped = [DroppedResource.from_dict(row) for row in data.get("dropped", [])]
        construction = [ConstructionTarget.from_dict(row) for row in data.get("construction", [])]
        hostiles = [HostileRecord.from_dict(row) for row in data.get("hostiles", [])]
        controller_payload = data.get("controller")
        return cls(
            site_id=str(data["site_id"]),
            width=int(data.get("width", DEFAULT_SITE_SIZE)),
            height=int(data.get("height", DEFAULT_SITE_SIZE)),
            walls={Position.from_dict(row) for row in data.get("walls", [])},
            controller=(ControllerState.from_dict(controller_payload) if controller_payload is not None else None),
            resource_nodes={node.node_id: node for node in nodes},
            minerals={mineral.mineral_id: mineral for mineral in minerals},
            structures={structure.structure_id: structure for structure in structures},
            dropped={drop.drop_id: drop for drop in dropped},
            construction={target.target_id: target for target in construction},
            hostiles={hostile.hostile_id: hostile for hostile in hostiles},
        )


def _walk_back(came_from: dict[Position, Position | None], end: Position) -> list[Position]:
    steps: list[Position] = []
    current: Position | None = end
    while current is not None and came_from[current] is not None:
        steps.append(current)
        current = came_from[current]
    steps.reverse()
    return steps


@dataclass
class WorldState:
    sites: dict[str, SiteState] = field(default_factory=dict)
    next_object_counter: int = 1

    def add_site(self, site: SiteState) -> None:
        if site.site_id in self.sites:
            raise ValueError(f"duplicate site_id: {site.site_id}")
        self.sites[site.site_id] = site

    def owned_site_ids(self) -> list[str]:
        return sorted(site_id for site_id, site in self.sites.items() if site.is_owned)

    def allocate_object_id(self, prefix: str) -> str:
        object_id = f"{prefix}-{self.next_object_counter:06d}"
        self.next_object_counter += 1
        return object_id

    def find_object(self, object_id: str | None) -> tuple[SiteState, Any] | None:
        if not object_id:
            return None
        for site_id in sorted(self.sites):
            site = self.sites[site_id]
            for collection in (site.resource_nodes, site.structures, site.dropped, site.construction, site.minerals):
                if object_id in collection:
                    return site, collection[object_id]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sites": [self.sites[site_id].to_dict() for site_id in sorted(self.sites)],
            "next_object_counter": self.next_object_counter,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorldState":
        if not isinstance(data, dict):
            raise ValueError("world payload must be an object")
        world = cls(next_object_counter=int(data.get("next_object_counter", 1)))
        for row in data.get("sites", []):
            world.add_site(SiteState.from_dict(row))
        return world
