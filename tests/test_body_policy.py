import pytest

from colonyloop.control.constants import BODY_TABLES, ROLE_HARVESTER, ROLE_HAULER, ROLE_MINER, ROLE_UPGRADER
from colonyloop.control.spawning import SpawnRequest
from colonyloop.control.targeting import get_optimal_body
from colonyloop.sim.core import body_cost


def test_harvester_body_at_300_is_minimal_worker() -> None:
    assert get_optimal_body(ROLE_HARVESTER, 300) == ["work", "carry", "move"]


def test_harvester_body_at_550_doubles_every_part() -> None:
    assert get_optimal_body(ROLE_HARVESTER, 550) == ["work", "work", "carry", "carry", "move", "move"]


def test_budget_below_every_floor_uses_fallback_body() -> None:
    assert get_optimal_body(ROLE_HARVESTER, 0) == ["work", "carry", "move"]
    assert get_optimal_body(ROLE_MINER, 449) == ["work", "work", "work", "move"]
    assert get_optimal_body(ROLE_HAULER, 299) == ["carry", "carry", "move"]


def test_unknown_role_gets_minimal_worker() -> None:
    assert get_optimal_body("scout", 10_000) == ["work", "carry", "move"]


def test_body_size_is_monotone_in_budget() -> None:
    for role in BODY_TABLES:
        previous = 0
        for budget in range(0, 1001, 50):
            current = body_cost(get_optimal_body(role, budget))
            assert current >= previous
            previous = current


def test_upgrader_thresholds() -> None:
    assert len(get_optimal_body(ROLE_UPGRADER, 799)) == 7
    assert len(get_optimal_body(ROLE_UPGRADER, 800)) == 8


def test_returned_body_is_a_fresh_list() -> None:
    body = get_optimal_body(ROLE_HARVESTER, 300)
    body.append("move")

    assert get_optimal_body(ROLE_HARVESTER, 300) == ["work", "carry", "move"]


def test_spawn_request_rejects_unknown_body_parts() -> None:
    with pytest.raises(ValueError, match="body"):
        SpawnRequest(ROLE_HARVESTER, 5, ["work", "wings"], "S1")
    with pytest.raises(ValueError, match="priority"):
        SpawnRequest(ROLE_HARVESTER, 9, ["work"], "S1")
