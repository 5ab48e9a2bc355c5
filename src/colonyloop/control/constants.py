from __future__ import annotations

from colonyloop.sim.core import PART_CARRY, PART_MOVE, PART_WORK
from colonyloop.sim.world import (
    STRUCTURE_CONTAINER,
    STRUCTURE_EXTENSION,
    STRUCTURE_LINK,
    STRUCTURE_RAMPART,
    STRUCTURE_ROAD,
    STRUCTURE_SPAWN,
    STRUCTURE_STORAGE,
    STRUCTURE_TERMINAL,
    STRUCTURE_TOWER,
    STRUCTURE_WALL,
)

ROLE_HARVESTER = "harvester"
ROLE_UPGRADER = "upgrader"
ROLE_BUILDER = "builder"
ROLE_MINER = "miner"
ROLE_HAULER = "hauler"

STATE_SPAWNING = "spawning"
STATE_HARVESTING = "harvesting"
STATE_DELIVERING = "delivering"
STATE_UPGRADING = "upgrading"
STATE_BUILDING = "building"
STATE_MOVING = "moving"
STATE_MINING = "mining"

PRIORITY_CRITICAL = 5
PRIORITY_HIGH = 4
PRIORITY_NORMAL = 3
PRIORITY_LOW = 2
PRIORITY_MINIMAL = 1
PRIORITY_NAMES = {
    PRIORITY_CRITICAL: "critical",
    PRIORITY_HIGH: "high",
    PRIORITY_NORMAL: "normal",
    PRIORITY_LOW: "low",
    PRIORITY_MINIMAL: "minimal",
}

MINIMAL_WORKER = (PART_WORK, PART_CARRY, PART_MOVE)

# Per-role body tables: (budget floor, body) pairs checked highest floor first; the
# trailing body applies below every floor.
BODY_TABLES: dict[str, tuple[tuple[tuple[int, tuple[str, ...]], ...], tuple[str, ...]]] = {
    ROLE_HARVESTER: (
        (
            (550, (PART_WORK, PART_WORK, PART_CARRY, PART_CARRY, PART_MOVE, PART_MOVE)),
            (300, MINIMAL_WORKER),
        ),
        MINIMAL_WORKER,
    ),
    ROLE_UPGRADER: (
        (
            (800, (PART_WORK, PART_WORK, PART_WORK, PART_WORK, PART_CARRY, PART_CARRY, PART_MOVE, PART_MOVE)),
            (550, (PART_WORK, PART_WORK, PART_WORK, PART_CARRY, PART_CARRY, PART_MOVE, PART_MOVE)),
            (300, MINIMAL_WORKER),
        ),
        MINIMAL_WORKER,
    ),
    ROLE_BUILDER: (
        (
            (
                800,
                (PART_WORK, PART_WORK, PART_WORK, PART_CARRY, PART_CARRY, PART_CARRY, PART_MOVE, PART_MOVE, PART_MOVE),
            ),
            (550, (PART_WORK, PART_WORK, PART_CARRY, PART_CARRY, PART_MOVE, PART_MOVE)),
            (300, MINIMAL_WORKER),
        ),
        MINIMAL_WORKER,
    ),
    ROLE_MINER: (
        (
            (550, (PART_WORK, PART_WORK, PART_WORK, PART_WORK, PART_WORK, PART_MOVE)),
            (450, (PART_WORK, PART_WORK, PART_WORK, PART_WORK, PART_MOVE)),
        ),
        (PART_WORK, PART_WORK, PART_WORK, PART_MOVE),
    ),
    ROLE_HAULER: (
        (
            (
                600,
                (PART_CARRY, PART_CARRY, PART_CARRY, PART_CARRY, PART_CARRY, PART_CARRY, PART_MOVE, PART_MOVE, PART_MOVE),
            ),
            (300, (PART_CARRY, PART_CARRY, PART_CARRY, PART_MOVE, PART_MOVE)),
        ),
        (PART_CARRY, PART_CARRY, PART_MOVE),
    ),
}

# Demand thresholds.
MIN_HARVESTERS = 2
MIN_UPGRADERS = 1
MAX_BUILDERS = 3
CONSTRUCTION_TARGETS_PER_BUILDER = 5
MINING_MIN_LEVEL = 2
MINING_MIN_CAPACITY = 550
HAULERS_PER_NODE = 2

# Target acquisition floors.
DROPPED_RESOURCE_MIN_AMOUNT = 50
STORAGE_WITHDRAW_FLOOR = 1000

BUILD_RANGE = 3
UPGRADE_RANGE = 3

STRUCTURE_PLAN_PRIORITY = {
    STRUCTURE_SPAWN: PRIORITY_HIGH,
    STRUCTURE_EXTENSION: PRIORITY_HIGH,
    STRUCTURE_TOWER: PRIORITY_HIGH,
    STRUCTURE_CONTAINER: PRIORITY_NORMAL,
    STRUCTURE_STORAGE: PRIORITY_NORMAL,
    STRUCTURE_LINK: PRIORITY_NORMAL,
    STRUCTURE_TERMINAL: PRIORITY_NORMAL,
    STRUCTURE_ROAD: PRIORITY_LOW,
    STRUCTURE_RAMPART: PRIORITY_LOW,
    STRUCTURE_WALL: PRIORITY_MINIMAL,
}

TOWER_REPAIR_MIN_FILL = 0.1
REPAIR_SKIPPED_KINDS = {STRUCTURE_WALL, STRUCTURE_RAMPART}

THREAT_COMBAT_PARTS = {"attack", "ranged_attack", "heal"}
