from __future__ import annotations

from dataclasses import dataclass

from colonyloop.control.constants import ROLE_HARVESTER


@dataclass(frozen=True)
class ControlSettings:
    """Tunables for the per-tick control loop."""

    recycle_below_ticks: int = 50
    """Agents with fewer remaining ticks than this are sent to a facility for disposal."""
    fallback_role: str = ROLE_HARVESTER
    """Role stamped onto an uninitialized agent whose memory carries none."""
    analysis_interval_ticks: int = 10
    analysis_cache_ttl: int = 500
    plan_interval_ticks: int = 100
    summary_interval_ticks: int = 100
    stale_site_ticks: int = 10_000
    """Site records unseen for longer than this are dropped during cleanup."""
    name_stream: str = "agent_names"

    def __post_init__(self) -> None:
        for field_name in (
            "recycle_below_ticks",
            "analysis_interval_ticks",
            "analysis_cache_ttl",
            "plan_interval_ticks",
            "summary_interval_ticks",
            "stale_site_ticks",
        ):
            value = getattr(self, field_name)
            if not isinstance(value, int) or value <= 0:
                raise ValueError(f"{field_name} must be a positive integer")
        if not self.fallback_role:
            raise ValueError("fallback_role must be a non-empty string")
